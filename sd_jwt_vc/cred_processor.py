"""SD-JWT VC format handler."""

import logging
from typing import Any, Mapping, Optional, Union

from oid4vp_wallet.credential import SD_JWT_FORMAT, Credential
from oid4vp_wallet.dcql import ValidCredentialMatch
from oid4vp_wallet.error import CodecValidationError, PresentationBuildError
from oid4vp_wallet.presentation import AuthorizationRequest
from oid4vp_wallet.signer import Signer

from .presentation import create_vp_token_sd_jwt
from .sd_jwt import SdJwtCredential, parse_sd_jwt

LOGGER = logging.getLogger(__name__)


class SdJwtFormatHandler:
    """Decode and present dc+sd-jwt credentials."""

    format = SD_JWT_FORMAT

    def __init__(self, issuer_jwk: Optional[Mapping[str, Any]] = None):
        """Initialize the handler.

        Args:
            issuer_jwk: Public issuer key; when given, only credentials whose
                issuer signature verifies against it are accepted
        """
        self.issuer_jwk = issuer_jwk

    def parse(self, raw: Union[str, bytes]) -> SdJwtCredential:
        """Decode a compact SD-JWT VC.

        Raises:
            CodecParseError: if raw is not a compact SD-JWT
            CodecValidationError: if raw is not a valid SD-JWT VC or its
                issuer signature does not verify
        """
        credential = parse_sd_jwt(raw)
        if self.issuer_jwk and not credential.verify_issuer_signature(
            self.issuer_jwk
        ):
            raise CodecValidationError(
                f"Issuer signature of {credential.vct} does not verify"
            )
        return credential

    async def present(
        self,
        credential: Credential,
        match: ValidCredentialMatch,
        request: AuthorizationRequest,
        signer: Signer,
    ) -> str:
        """Present the disclosures needed for the matched claims.

        When the credential query named no claims every disclosure is
        presented.
        """
        if not isinstance(credential, SdJwtCredential):
            raise PresentationBuildError(
                f"Expected an SD-JWT VC, got {type(credential).__name__}"
            )
        request.ensure_complete()

        sd_jwt = credential.presentation_for(match.claim_paths)
        LOGGER.debug(
            "Presenting %s with %d disclosures",
            credential.vct,
            len(credential.select_disclosures(match.claim_paths)),
        )
        return await create_vp_token_sd_jwt(
            sd_jwt,
            client_id=request.client_id,
            nonce=request.nonce,
            signer=signer,
        )
