"""Issue mso_mdoc credentials for test and mock issuance flows.

Creates the IssuerSigned structure of ISO/IEC 18013-5:2021 § 8.3.2.1.2.2:
each data element becomes a tag 24 IssuerSignedItem whose digest goes into
the Mobile Security Object, and the MSO is signed by the issuer as a
COSE_Sign1 carrying the issuer certificate in the x5chain header.
"""

import logging
import secrets
from datetime import timedelta
from typing import Any, Dict, Mapping, Optional

import cbor2
from acapy_agent.messaging.util import datetime_now
from acapy_agent.wallet.util import bytes_to_b64
from cbor2 import CBORTag

from oid4vp_wallet.signer import Signer

from .codec import DIGEST_ALGORITHMS, ENCODED_CBOR_TAG, MSO_VERSION
from .cose import HEADER_X5CHAIN, jwk_to_cose_key, sign1

LOGGER = logging.getLogger(__name__)

MDL_DOCTYPE = "org.iso.18013.5.1.mDL"
MDL_NAMESPACE = "org.iso.18013.5.1"
RANDOM_BYTES = 16
DEFAULT_VALIDITY = timedelta(days=365)


def _issuer_signed_item(digest_id: int, identifier: str, value: Any) -> CBORTag:
    item = {
        "digestID": digest_id,
        "random": secrets.token_bytes(RANDOM_BYTES),
        "elementIdentifier": identifier,
        "elementValue": value,
    }
    return CBORTag(ENCODED_CBOR_TAG, cbor2.dumps(item))


async def issue_mdoc(
    doctype: str,
    namespaces: Mapping[str, Mapping[str, Any]],
    device_jwk: Mapping[str, Any],
    signer: Signer,
    issuer_certificate: bytes,
    *,
    validity: timedelta = DEFAULT_VALIDITY,
    digest_algorithm: str = "SHA-256",
    version: str = MSO_VERSION,
    status: Optional[Mapping[str, Any]] = None,
) -> str:
    """Issue an mdoc and return its base64url IssuerSigned encoding.

    Args:
        doctype: Document type, e.g. ``org.iso.18013.5.1.mDL``
        namespaces: Data elements keyed by namespace and element identifier
        device_jwk: Public device key bound into the Mobile Security Object
        signer: Issuer signing capability (ES256)
        issuer_certificate: DER certificate of the issuer key
        validity: Validity period starting now
        digest_algorithm: Value digest algorithm
        version: Mobile Security Object version
        status: Optional status reference

    Returns:
        base64url encoded CBOR IssuerSigned document, without padding
    """
    hasher = DIGEST_ALGORITHMS[digest_algorithm]

    issuer_namespaces: Dict[str, list] = {}
    value_digests: Dict[str, Dict[int, bytes]] = {}
    for namespace, elements in namespaces.items():
        items = [
            _issuer_signed_item(digest_id, identifier, value)
            for digest_id, (identifier, value) in enumerate(elements.items())
        ]
        issuer_namespaces[namespace] = items
        value_digests[namespace] = {
            digest_id: hasher(cbor2.dumps(item)).digest()
            for digest_id, item in enumerate(items)
        }

    now = datetime_now().replace(microsecond=0)
    mso = {
        "version": version,
        "digestAlgorithm": digest_algorithm,
        "valueDigests": value_digests,
        "deviceKeyInfo": {"deviceKey": jwk_to_cose_key(device_jwk)},
        "docType": doctype,
        "validityInfo": {
            "signed": now,
            "validFrom": now,
            "validUntil": now + validity,
        },
    }
    if status:
        mso["status"] = dict(status)

    payload = cbor2.dumps(CBORTag(ENCODED_CBOR_TAG, cbor2.dumps(mso)))
    issuer_auth = await sign1(
        signer, payload, unprotected={HEADER_X5CHAIN: issuer_certificate}
    )

    LOGGER.debug(
        "Issued %s with %d namespaces", doctype, len(issuer_namespaces)
    )
    encoded = cbor2.dumps(
        {"issuerAuth": issuer_auth, "nameSpaces": issuer_namespaces}
    )
    return bytes_to_b64(encoded, urlsafe=True, pad=False)
