"""Present a mso_mdoc credential.

This module builds OpenID4VP mdoc presentations: the held IssuerSigned
document is narrowed to the requested data elements and returned inside a
DeviceResponse whose device signature binds it to the authorization request.

Key Protocol Compliance:
- OpenID4VP 1.0 Appendix B.2: mso_mdoc credential format
- ISO/IEC 18013-5:2021 § 8.3.2.1.2.2: DeviceResponse
- ISO/IEC 18013-7 Annex B: SessionTranscript for OpenID4VP
"""

import logging
from typing import Optional, Sequence, Union

from acapy_agent.wallet.util import bytes_to_b64
from cryptography import x509

from oid4vp_wallet.credential import MDOC_FORMAT, Credential
from oid4vp_wallet.dcql import ValidCredentialMatch
from oid4vp_wallet.error import CodecValidationError, PresentationBuildError
from oid4vp_wallet.presentation import AuthorizationRequest
from oid4vp_wallet.signer import Signer
from oid4vp_wallet.x509 import issued_by_trust_anchor, load_der_certificates

from .mdoc.codec import (
    MdocCredential,
    check_mdoc_profile,
    parse_mdoc,
    verify_issuer_auth,
)
from .mdoc.device_response import build_device_response, oid4vp_session_transcript

LOGGER = logging.getLogger(__name__)


class MsoMdocFormatHandler:
    """Decode and present mso_mdoc credentials."""

    format = MDOC_FORMAT

    def __init__(
        self,
        check_profile: bool = True,
        trust_anchors: Optional[Sequence[x509.Certificate]] = None,
    ):
        """Initialize the handler.

        Args:
            check_profile: Reject mdocs that fail the held credential profile
                checks of ``check_mdoc_profile``
            trust_anchors: CA certificates; when given, only mdocs whose
                issuer signature verifies and whose issuer certificate is
                one of, or is issued by one of, these are accepted
        """
        self.check_profile = check_profile
        self.trust_anchors = list(trust_anchors) if trust_anchors else None

    def parse(self, raw: Union[str, bytes]) -> MdocCredential:
        """Decode an issuer-signed mdoc from bytes or base64url text.

        Raises:
            CodecParseError: if raw is not CBOR
            CodecValidationError: if raw is not a valid mdoc, fails the
                profile check, or is not signed by a trusted issuer
        """
        credential = parse_mdoc(raw)
        if self.check_profile:
            check_mdoc_profile(credential)
        if self.trust_anchors is not None:
            self._check_issuer(credential)
        return credential

    def _check_issuer(self, credential: MdocCredential):
        if not verify_issuer_auth(credential):
            raise CodecValidationError(
                f"Issuer signature of {credential.doctype} does not verify"
            )
        leaf = load_der_certificates(credential.issuer_auth.x5chain)[0]
        if not issued_by_trust_anchor(leaf, self.trust_anchors):
            raise CodecValidationError(
                f"Issuer certificate of {credential.doctype} is not trusted"
            )

    async def present(
        self,
        credential: Credential,
        match: ValidCredentialMatch,
        request: AuthorizationRequest,
        signer: Signer,
    ) -> str:
        """Return the base64url DeviceResponse for a matched mdoc.

        Only the data elements named by the matched claims are disclosed;
        when the credential query named no claims every element is.
        """
        if not isinstance(credential, MdocCredential):
            raise PresentationBuildError(
                f"Expected an mdoc, got {type(credential).__name__}"
            )
        request.ensure_complete()

        transcript = oid4vp_session_transcript(
            request.client_id,
            request.response_uri,
            request.nonce,
            request.mdoc_generated_nonce,
        )
        elements = credential.select_elements(match.claim_paths)
        response = await build_device_response(
            credential, transcript, signer, elements
        )
        LOGGER.debug("Presenting %s", credential.doctype)
        return bytes_to_b64(response, urlsafe=True, pad=False)
