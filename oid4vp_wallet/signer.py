"""Signing capability used for key binding and device authentication."""

import json
from typing import Mapping, Protocol, Union

from aries_askar import Key, KeyAlg

ALG_FOR_KEY = {KeyAlg.P256: "ES256", KeyAlg.ED25519: "EdDSA"}


class Signer(Protocol):
    """A signing capability.

    Implementations may be backed by remote or hardware keys; ``sign``
    returns the raw signature as used in JWS and COSE (``r || s`` for ES256).
    """

    alg: str

    async def sign(self, message: bytes) -> bytes:
        """Sign a message."""
        ...


class AskarSigner:
    """Signer backed by an in-memory askar key."""

    def __init__(self, key: Key):
        """Initialize the signer."""
        alg = ALG_FOR_KEY.get(key.algorithm)
        if not alg:
            raise ValueError(f"Unsupported signing key algorithm {key.algorithm}")
        self.key = key
        self.alg = alg

    @classmethod
    def from_jwk(cls, jwk: Union[Mapping, str]) -> "AskarSigner":
        """Create a signer from a private JWK."""
        if not isinstance(jwk, str):
            jwk = json.dumps(dict(jwk))
        return cls(Key.from_jwk(jwk))

    @classmethod
    def generate(cls, alg: KeyAlg = KeyAlg.P256) -> "AskarSigner":
        """Create a signer with a new random key."""
        return cls(Key.generate(alg))

    @property
    def public_jwk(self) -> dict:
        """Return the public key as a JWK."""
        return json.loads(self.key.get_jwk_public())

    async def sign(self, message: bytes) -> bytes:
        """Sign a message with the askar key."""
        return self.key.sign_message(message)


def verify_signature(jwk: Union[Mapping, str], message: bytes, signature: bytes) -> bool:
    """Verify a raw signature with a public JWK."""
    if not isinstance(jwk, str):
        jwk = json.dumps(dict(jwk))
    return Key.from_jwk(jwk).verify_signature(message, signature)
