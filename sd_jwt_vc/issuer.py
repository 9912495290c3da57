"""Issue SD-JWT VCs for test and mock issuance flows."""

import copy
import json
import logging
import secrets
from datetime import timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence

from acapy_agent.messaging.util import datetime_now
from acapy_agent.wallet.jwt import dict_to_b64
from acapy_agent.wallet.util import bytes_to_b64

from oid4vp_wallet.credential import SD_JWT_FORMAT
from oid4vp_wallet.signer import Signer

from .sd_jwt import SD_ALG, SD_DIGESTS_KEY, SEPARATOR, sd_hash

LOGGER = logging.getLogger(__name__)

SALT_BYTES = 16
DEFAULT_VALIDITY = timedelta(days=365)


def create_disclosure(claim_name: str, claim_value: Any) -> str:
    """Create an encoded disclosure for an object property."""
    salt = bytes_to_b64(secrets.token_bytes(SALT_BYTES), urlsafe=True, pad=False)
    disclosure = json.dumps([salt, claim_name, claim_value]).encode()
    return bytes_to_b64(disclosure, urlsafe=True, pad=False)


def _split_pointer(pointer: str) -> List[str]:
    if not pointer.startswith("/"):
        raise ValueError(f"Selectively disclosable claim must be a pointer: {pointer}")
    return [
        part.replace("~1", "/").replace("~0", "~")
        for part in pointer[1:].split("/")
    ]


def make_disclosable(
    claims: Mapping[str, Any], sd_list: Sequence[str]
) -> tuple[Dict[str, Any], List[str]]:
    """Replace the claims named by sd_list with digests.

    ``sd_list`` holds JSON pointers such as ``/email`` or
    ``/address/postal_code``. Deeper claims are processed first so that
    nested disclosures are embedded in the value of their parent.

    Returns:
        The payload claims and the encoded disclosures
    """
    payload = copy.deepcopy(dict(claims))
    disclosures = []
    for pointer in sorted(sd_list, key=lambda p: len(_split_pointer(p)), reverse=True):
        *parents, name = _split_pointer(pointer)
        container = payload
        for parent in parents:
            container = container[parent]
        if name not in container:
            raise ValueError(f"Claim {pointer} not found in credential claims")
        disclosure = create_disclosure(name, container.pop(name))
        container.setdefault(SD_DIGESTS_KEY, []).append(sd_hash(disclosure))
        disclosures.append(disclosure)

    _sort_digests(payload)
    return payload, disclosures


def _sort_digests(node: Any):
    if isinstance(node, dict):
        if SD_DIGESTS_KEY in node:
            node[SD_DIGESTS_KEY].sort()
        for value in node.values():
            _sort_digests(value)
    elif isinstance(node, list):
        for value in node:
            _sort_digests(value)


async def issue_sd_jwt(
    claims: Mapping[str, Any],
    sd_list: Sequence[str],
    signer: Signer,
    *,
    vct: str,
    iss: str,
    holder_jwk: Mapping[str, Any],
    sub: Optional[str] = None,
    kid: Optional[str] = None,
    expires_in: timedelta = DEFAULT_VALIDITY,
    headers: Optional[Mapping[str, Any]] = None,
) -> str:
    """Issue a dc+sd-jwt credential.

    Args:
        claims: Credential subject claims
        sd_list: JSON pointers of the selectively disclosable claims
        signer: Issuer signing capability
        vct: Verifiable credential type
        iss: Issuer identifier
        holder_jwk: Public key the credential is bound to
        sub: Subject identifier
        kid: Issuer key id
        expires_in: Validity of the credential
        headers: Additional JOSE headers, e.g. ``x5c`` or ``trust_chain``

    Returns:
        The compact SD-JWT with all disclosures and a trailing separator
    """
    payload, disclosures = make_disclosable(claims, sd_list)
    now = datetime_now()
    payload.update(
        {
            "vct": vct,
            "iss": iss,
            "iat": int(now.timestamp()),
            "exp": int((now + expires_in).timestamp()),
            "cnf": {"jwk": dict(holder_jwk)},
            "_sd_alg": SD_ALG,
        }
    )
    if sub:
        payload["sub"] = sub

    jws_headers = {**(headers or {}), "alg": signer.alg, "typ": SD_JWT_FORMAT}
    if kid:
        jws_headers["kid"] = kid

    signing_input = f"{dict_to_b64(jws_headers)}.{dict_to_b64(payload)}"
    signature = await signer.sign(signing_input.encode())
    issuer_jwt = f"{signing_input}.{bytes_to_b64(signature, urlsafe=True, pad=False)}"

    LOGGER.debug("Issued %s with %d disclosures", vct, len(disclosures))
    return SEPARATOR.join([issuer_jwt, *disclosures, ""])
