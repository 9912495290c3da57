"""Credential format handler interface and registry."""

from typing import (
    TYPE_CHECKING,
    Any,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Union,
)

from .credential import Credential
from .error import FormatHandlerError

if TYPE_CHECKING:
    from cryptography import x509

    from .dcql import ValidCredentialMatch
    from .presentation import AuthorizationRequest
    from .signer import Signer


class FormatHandler(Protocol):
    """Decode and present credentials of one format."""

    format: str

    def parse(self, raw: Union[str, bytes]) -> Credential:
        """Decode a raw credential.

        Raises:
            CodecParseError: if raw is not an encoding of this format at all
            CodecValidationError: if raw decodes but is not a valid credential
        """
        ...

    async def present(
        self,
        credential: Credential,
        match: "ValidCredentialMatch",
        request: "AuthorizationRequest",
        signer: "Signer",
    ) -> Any:
        """Build the encoded presentation of a matched credential."""
        ...


class FormatHandlers:
    """Registry for credential format handlers."""

    def __init__(self, handlers: Optional[Mapping[str, FormatHandler]] = None):
        """Initialize the handler registry."""
        self.handlers = dict(handlers) if handlers else {}

    @classmethod
    def default(
        cls,
        issuer_jwk: Optional[Mapping[str, Any]] = None,
        trust_anchors: Optional[Sequence["x509.Certificate"]] = None,
    ) -> "FormatHandlers":
        """Return a registry with the built-in SD-JWT VC and mdoc handlers.

        Args:
            issuer_jwk: Issuer key SD-JWT VCs must be signed with
            trust_anchors: CA certificates mdoc issuers must chain to
        """
        from mso_mdoc.cred_processor import MsoMdocFormatHandler
        from sd_jwt_vc.cred_processor import SdJwtFormatHandler

        registry = cls()
        registry.register(SdJwtFormatHandler(issuer_jwk=issuer_jwk))
        registry.register(MsoMdocFormatHandler(trust_anchors=trust_anchors))
        return registry

    def register(self, handler: FormatHandler, format: Optional[str] = None):
        """Register a handler for its format."""
        self.handlers[format or handler.format] = handler

    def handler_for_format(self, format: str) -> FormatHandler:
        """Return the handler for the given format."""
        handler = self.handlers.get(format)
        if not handler:
            raise FormatHandlerError(f"No loaded handler for format {format}")
        return handler

    def formats(self) -> List[str]:
        """Return the registered formats in registration order."""
        return list(self.handlers)
