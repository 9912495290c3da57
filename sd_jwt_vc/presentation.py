"""SD-JWT VC presentation with a key binding JWT."""

import binascii
import logging
from typing import Mapping, Optional, Union

from acapy_agent.messaging.util import datetime_now
from acapy_agent.wallet.jwt import b64_to_dict, dict_to_b64
from acapy_agent.wallet.util import b64_to_bytes, bytes_to_b64

from oid4vp_wallet.signer import Signer, verify_signature

from .sd_jwt import SEPARATOR, sd_hash

LOGGER = logging.getLogger(__name__)

KB_JWT_TYP = "kb+jwt"


async def create_vp_token_sd_jwt(
    sd_jwt: str,
    *,
    client_id: str,
    nonce: str,
    signer: Signer,
    issued_at: Optional[int] = None,
) -> str:
    """Append a key binding JWT to an SD-JWT with its selected disclosures.

    The result has the form
    ``<issuer-jwt>~<disclosure 1>~...~<disclosure n>~<kb-jwt>``.
    """
    if not sd_jwt.endswith(SEPARATOR):
        sd_jwt = f"{sd_jwt}{SEPARATOR}"

    headers = {"alg": signer.alg, "typ": KB_JWT_TYP}
    payload = {
        "nonce": nonce,
        "sd_hash": sd_hash(sd_jwt),
        "aud": client_id,
        "iat": issued_at if issued_at is not None else int(datetime_now().timestamp()),
    }
    signing_input = f"{dict_to_b64(headers)}.{dict_to_b64(payload)}"
    signature = await signer.sign(signing_input.encode())
    kb_jwt = f"{signing_input}.{bytes_to_b64(signature, urlsafe=True, pad=False)}"

    LOGGER.debug("Created key binding JWT for audience %s", client_id)
    return f"{sd_jwt}{kb_jwt}"


def verify_key_binding(
    presentation: str,
    holder_jwk: Union[Mapping, str],
    *,
    nonce: str,
    audience: str,
) -> bool:
    """Verify the key binding JWT closing an SD-JWT presentation."""
    sd_jwt, separator, kb_jwt = presentation.rpartition(SEPARATOR)
    if not separator or not kb_jwt:
        return False
    sd_jwt = f"{sd_jwt}{SEPARATOR}"

    parts = kb_jwt.split(".")
    if len(parts) != 3:
        return False
    encoded_headers, encoded_payload, encoded_signature = parts
    try:
        headers = b64_to_dict(encoded_headers)
        payload = b64_to_dict(encoded_payload)
        signature = b64_to_bytes(encoded_signature, urlsafe=True)
    except (binascii.Error, ValueError):
        return False
    if not isinstance(headers, dict) or not isinstance(payload, dict):
        return False
    if headers.get("typ") != KB_JWT_TYP:
        return False
    if payload.get("sd_hash") != sd_hash(sd_jwt):
        return False
    if payload.get("nonce") != nonce or payload.get("aud") != audience:
        return False

    return verify_signature(
        holder_jwk,
        f"{encoded_headers}.{encoded_payload}".encode(),
        signature,
    )
