"""DeviceResponse assembly for OpenID4VP mdoc presentations.

Protocol Compliance:
- ISO/IEC 18013-5:2021 § 8.3.2.1.2.2: DeviceResponse structure
- ISO/IEC 18013-5:2021 § 9.1.3: mdoc authentication (DeviceAuthentication)
- ISO/IEC 18013-7 Annex B: SessionTranscript for OpenID4VP
"""

import hashlib
import logging
from typing import Any, Collection, List, Mapping, Optional, Union

import cbor2
from cbor2 import CBORTag

from oid4vp_wallet.error import CodecParseError, CodecValidationError
from oid4vp_wallet.signer import Signer, verify_signature

from .codec import ENCODED_CBOR_TAG, MdocCredential, decode_cbor
from .cose import COSE_ALGS, HEADER_ALG, sig_structure, sign1

LOGGER = logging.getLogger(__name__)

DEVICE_RESPONSE_VERSION = "1.0"
STATUS_OK = 0


def oid4vp_session_transcript(
    client_id: str, response_uri: str, nonce: str, mdoc_generated_nonce: str
) -> List[Any]:
    """Return the SessionTranscript binding a presentation to a request.

    ``[null, null, [clientIdHash, responseUriHash, nonce]]`` where each hash
    is SHA-256 over the CBOR array of the value and the wallet nonce.
    """
    client_id_hash = hashlib.sha256(
        cbor2.dumps([client_id, mdoc_generated_nonce])
    ).digest()
    response_uri_hash = hashlib.sha256(
        cbor2.dumps([response_uri, mdoc_generated_nonce])
    ).digest()
    return [None, None, [client_id_hash, response_uri_hash, nonce]]


def device_authentication_bytes(
    session_transcript: List[Any], doctype: str, device_namespaces: CBORTag
) -> bytes:
    """Return DeviceAuthenticationBytes, the payload of the device signature."""
    device_authentication = [
        "DeviceAuthentication",
        session_transcript,
        doctype,
        device_namespaces,
    ]
    return cbor2.dumps(CBORTag(ENCODED_CBOR_TAG, cbor2.dumps(device_authentication)))


async def build_device_response(
    credential: MdocCredential,
    session_transcript: List[Any],
    signer: Signer,
    elements: Optional[Mapping[str, Collection[str]]] = None,
) -> bytes:
    """Create a single-document DeviceResponse signed by the device key.

    Args:
        credential: The issuer-signed mdoc
        session_transcript: Transcript the device signature is bound to
        signer: Device key signing capability
        elements: Element identifiers to disclose per namespace; all
            elements when None

    Returns:
        The CBOR encoded DeviceResponse
    """
    device_namespaces = CBORTag(ENCODED_CBOR_TAG, cbor2.dumps({}))
    device_signature = await sign1(
        signer,
        device_authentication_bytes(
            session_transcript, credential.doctype, device_namespaces
        ),
        detached=True,
    )
    document = {
        "docType": credential.doctype,
        "issuerSigned": credential.issuer_signed(elements),
        "deviceSigned": {
            "nameSpaces": device_namespaces,
            "deviceAuth": {"deviceSignature": device_signature},
        },
    }
    LOGGER.debug("Built DeviceResponse for %s", credential.doctype)
    return cbor2.dumps(
        {
            "version": DEVICE_RESPONSE_VERSION,
            "documents": [document],
            "status": STATUS_OK,
        }
    )


def verify_device_signature(
    device_response: Union[bytes, str],
    session_transcript: List[Any],
    device_jwk: Mapping[str, Any],
) -> bool:
    """Verify the device signature of every document in a DeviceResponse.

    Raises:
        CodecParseError: if the response is not CBOR
        CodecValidationError: if the response has no documents
    """
    response = decode_cbor(device_response).value
    if not isinstance(response, dict) or not response.get("documents"):
        raise CodecValidationError("DeviceResponse carries no documents")

    for document in response["documents"]:
        try:
            device_signed = document["deviceSigned"]
            protected, _, payload, signature = device_signed["deviceAuth"][
                "deviceSignature"
            ]
            doctype = document["docType"]
            device_namespaces = device_signed["nameSpaces"]
        except (KeyError, TypeError, ValueError) as err:
            raise CodecValidationError(f"Malformed DeviceResponse: {err}") from err

        if payload is not None:
            LOGGER.warning("Device signature payload is not detached")
            return False
        try:
            alg = cbor2.loads(protected).get(HEADER_ALG)
        except (cbor2.CBORDecodeError, AttributeError) as err:
            raise CodecParseError(f"Invalid device signature header: {err}") from err
        if alg not in COSE_ALGS.values():
            LOGGER.warning("Unsupported device signature algorithm %s", alg)
            return False

        detached = device_authentication_bytes(
            session_transcript, doctype, device_namespaces
        )
        if not verify_signature(
            device_jwk, sig_structure(protected, detached), signature
        ):
            return False
    return True
