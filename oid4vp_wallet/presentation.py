"""Verifiable Presentation token assembly."""

import asyncio
import logging
import secrets
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple, Union

from .credential import Credential
from .dcql import DCQLQueryMatcher
from .error import CredentialError, PresentationBuildError
from .models.dcql_query import DCQLQuery
from .processors import FormatHandlers
from .signer import Signer
from .store import CredentialStore

LOGGER = logging.getLogger(__name__)

MDOC_NONCE_BYTES = 16


def _generate_mdoc_nonce() -> str:
    return secrets.token_urlsafe(MDOC_NONCE_BYTES)


@dataclass(frozen=True)
class AuthorizationRequest:
    """The parts of an OpenID4VP authorization request bound into presentations.

    ``mdoc_generated_nonce`` is the wallet nonce bound into the mdoc session
    transcript; the response assembler must forward it to the verifier.
    """

    client_id: Optional[str]
    nonce: Optional[str]
    response_uri: Optional[str]
    mdoc_generated_nonce: str = field(default_factory=_generate_mdoc_nonce)

    @classmethod
    def from_request_object(
        cls, request_object: Mapping[str, Any], client_id: Optional[str] = None
    ) -> "AuthorizationRequest":
        """Create from a decoded request object."""
        return cls(
            client_id=client_id or request_object.get("client_id"),
            nonce=request_object.get("nonce"),
            response_uri=request_object.get("response_uri"),
        )

    def ensure_complete(self):
        """Check that everything needed to bind a presentation is present.

        Raises:
            PresentationBuildError: naming the missing parameters
        """
        missing = [
            name
            for name in ("client_id", "nonce", "response_uri")
            if not getattr(self, name)
        ]
        if missing:
            raise PresentationBuildError(
                f"Authorization request is missing {', '.join(missing)}"
            )


def presentation_key(credential_query_id: str, position: int) -> str:
    """Return the vp_token key of the n-th presentation for a credential query."""
    if position == 0:
        return credential_query_id
    return f"{credential_query_id}.{position}"


def merge_vp_tokens(
    *entries: Union[Mapping[str, Any], Iterable[Tuple[str, Any]]],
) -> Dict[str, Any]:
    """Merge vp_token entries into one mapping.

    Raises:
        PresentationBuildError: if two entries share a key
    """
    merged: Dict[str, Any] = {}
    for entry in entries:
        items = entry.items() if isinstance(entry, Mapping) else entry
        for key, presentation in items:
            if key in merged:
                raise PresentationBuildError(f"Duplicate vp_token entry for {key}")
            merged[key] = presentation
    return merged


class VpTokenBuilder:
    """Select credentials for a DCQL query and build the vp_token."""

    def __init__(self, handlers: Optional[FormatHandlers] = None):
        """Initialize the builder."""
        self.handlers = handlers or FormatHandlers.default()

    async def build(
        self,
        query: Union[Mapping[str, Any], DCQLQuery],
        credentials: Sequence[Credential],
        request: AuthorizationRequest,
        signer: Signer,
    ) -> Dict[str, Any]:
        """Build the vp_token answering query.

        Raises:
            PresentationBuildError: if the request lacks required parameters;
                checked before anything is signed
            QueryUnsatisfiable: if the credentials cannot satisfy the query
            CredentialError: if a match references an unknown credential
        """
        request.ensure_complete()

        matcher = DCQLQueryMatcher.compile(query)
        result = matcher.require([credential.to_dcql() for credential in credentials])

        keys = []
        pending = []
        for match in result.successful_matches():
            selected = match.selected
            if not selected:
                raise PresentationBuildError(
                    "No valid credentials found for credential_query_id "
                    f"{match.credential_query_id}"
                )
            for position, valid in enumerate(selected):
                index = valid.input_credential_index
                if not 0 <= index < len(credentials):
                    raise CredentialError(
                        f"Credential index {index} not found for "
                        f"credential_query_id {match.credential_query_id}"
                    )
                credential = credentials[index]
                handler = self.handlers.handler_for_format(credential.format)
                LOGGER.debug(
                    "Presenting credential %d for %s",
                    index,
                    match.credential_query_id,
                )
                keys.append(presentation_key(match.credential_query_id, position))
                pending.append(handler.present(credential, valid, request, signer))

        presentations = await asyncio.gather(*pending)
        return merge_vp_tokens(zip(keys, presentations))

    async def build_from_store(
        self,
        query: Union[Mapping[str, Any], DCQLQuery],
        store: CredentialStore,
        request: AuthorizationRequest,
        signer: Signer,
    ) -> Dict[str, Any]:
        """Build the vp_token from every credential in a store."""
        return await self.build(query, store.credentials(), request, signer)
