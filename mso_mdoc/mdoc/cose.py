"""COSE_Sign1 and COSE_Key helpers for mdoc issuer and device authentication.

Protocol Compliance:
- RFC 9052 § 4.2: COSE_Sign1 structure
- RFC 9052 § 4.4: Sig_structure for signature creation and verification
- RFC 9053 § 7.1.1: EC2 keys
- ISO/IEC 18013-5:2021 § 9.1.2.4: issuerAuth with x5chain in the unprotected header
"""

from typing import Any, List, Mapping, Optional

import cbor2
from acapy_agent.wallet.util import b64_to_bytes, bytes_to_b64
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature

from oid4vp_wallet.signer import Signer

COSE_SIGN1_TAG = 18
HEADER_ALG = 1
HEADER_X5CHAIN = 33

COSE_ALGS = {"ES256": -7, "EdDSA": -8}

# COSE_Key labels
KTY = 1
CRV = -1
X = -2
Y = -3
KTY_OKP = 1
KTY_EC2 = 2
CRV_P256 = 1
CRV_ED25519 = 6


def sig_structure(protected: bytes, payload: bytes, external_aad: bytes = b"") -> bytes:
    """Return the encoded Sig_structure signed by a COSE_Sign1."""
    return cbor2.dumps(["Signature1", protected, external_aad, payload])


async def sign1(
    signer: Signer,
    payload: bytes,
    *,
    unprotected: Optional[Mapping[int, Any]] = None,
    detached: bool = False,
) -> List[Any]:
    """Create an untagged COSE_Sign1 array.

    Args:
        signer: Signing capability; its ``alg`` goes in the protected header
        payload: Payload bytes
        unprotected: Unprotected header parameters
        detached: Leave the payload out of the structure (``nil``)
    """
    if signer.alg not in COSE_ALGS:
        raise ValueError(f"Unsupported COSE algorithm {signer.alg}")
    protected = cbor2.dumps({HEADER_ALG: COSE_ALGS[signer.alg]})
    signature = await signer.sign(sig_structure(protected, payload))
    return [
        protected,
        dict(unprotected or {}),
        None if detached else payload,
        signature,
    ]


def verify_es256(
    public_key: ec.EllipticCurvePublicKey,
    protected: bytes,
    payload: bytes,
    signature: bytes,
) -> bool:
    """Verify a raw ``r || s`` ES256 signature over a Sig_structure."""
    if len(signature) != 64:
        return False
    r = int.from_bytes(signature[:32], "big")
    s = int.from_bytes(signature[32:], "big")
    try:
        public_key.verify(
            encode_dss_signature(r, s),
            sig_structure(protected, payload),
            ec.ECDSA(hashes.SHA256()),
        )
    except InvalidSignature:
        return False
    return True


def jwk_to_cose_key(jwk: Mapping[str, Any]) -> dict:
    """Convert a public JWK into a COSE_Key map."""
    if jwk.get("kty") == "EC" and jwk.get("crv") == "P-256":
        return {
            KTY: KTY_EC2,
            CRV: CRV_P256,
            X: b64_to_bytes(jwk["x"], urlsafe=True),
            Y: b64_to_bytes(jwk["y"], urlsafe=True),
        }
    if jwk.get("kty") == "OKP" and jwk.get("crv") == "Ed25519":
        return {
            KTY: KTY_OKP,
            CRV: CRV_ED25519,
            X: b64_to_bytes(jwk["x"], urlsafe=True),
        }
    raise ValueError(f"Unsupported device key {jwk.get('kty')}/{jwk.get('crv')}")


def cose_key_to_jwk(cose_key: Mapping[int, Any]) -> dict:
    """Convert a COSE_Key map into a public JWK."""
    kty = cose_key.get(KTY)
    crv = cose_key.get(CRV)
    if kty == KTY_EC2 and crv == CRV_P256:
        return {
            "kty": "EC",
            "crv": "P-256",
            "x": bytes_to_b64(cose_key[X], urlsafe=True, pad=False),
            "y": bytes_to_b64(cose_key[Y], urlsafe=True, pad=False),
        }
    if kty == KTY_OKP and crv == CRV_ED25519:
        return {
            "kty": "OKP",
            "crv": "Ed25519",
            "x": bytes_to_b64(cose_key[X], urlsafe=True, pad=False),
        }
    raise ValueError(f"Unsupported COSE key type {kty} with curve {crv}")
