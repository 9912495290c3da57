"""SD-JWT VC decoding and selective disclosure processing."""

import binascii
import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import (
    Any,
    ClassVar,
    Dict,
    FrozenSet,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from acapy_agent.wallet.util import b64_to_bytes, bytes_to_b64
from marshmallow import INCLUDE, Schema, fields, validate

from oid4vp_wallet.credential import SD_JWT_FORMAT, Credential, DcqlCredential
from oid4vp_wallet.error import CodecParseError, CodecValidationError
from oid4vp_wallet.models.dcql_query import ClaimsPath
from oid4vp_wallet.signer import verify_signature
from oid4vp_wallet.x509 import key_identifiers, load_der_certificates

LOGGER = logging.getLogger(__name__)

SEPARATOR = "~"
SD_ALG = "sha-256"
SD_DIGESTS_KEY = "_sd"
ARRAY_DIGEST_KEY = "..."


class SdJwtHeaderSchema(Schema):
    """Issuer-signed JWT header of an SD-JWT VC."""

    class Meta:
        """SdJwtHeaderSchema metadata."""

        unknown = INCLUDE

    alg = fields.Str(required=True)
    kid = fields.Str(required=False)
    typ = fields.Str(required=True, validate=validate.Equal(SD_JWT_FORMAT))
    trust_chain = fields.List(fields.Str(), required=False)
    x5c = fields.List(fields.Str(), required=False)


class ConfirmationSchema(Schema):
    """Holder key confirmation claim."""

    class Meta:
        """ConfirmationSchema metadata."""

        unknown = INCLUDE

    jwk = fields.Dict(required=True)


class SdJwtPayloadSchema(Schema):
    """Issuer-signed JWT payload of an SD-JWT VC."""

    class Meta:
        """SdJwtPayloadSchema metadata."""

        unknown = INCLUDE

    vct = fields.Str(required=True)
    iss = fields.Str(required=False)
    sub = fields.Str(required=False)
    cnf = fields.Nested(ConfirmationSchema, required=False)
    iat = fields.Int(required=False, strict=True, validate=validate.Range(min=0))
    exp = fields.Int(required=False, strict=True, validate=validate.Range(min=0))
    nbf = fields.Int(required=False, strict=True, validate=validate.Range(min=0))
    status = fields.Dict(required=False)
    sd_digests = fields.List(fields.Str(), required=False, data_key=SD_DIGESTS_KEY)
    sd_alg = fields.Str(
        required=False, data_key="_sd_alg", validate=validate.Equal(SD_ALG)
    )


def _b64_to_json(value: str, what: str) -> Any:
    try:
        return json.loads(b64_to_bytes(value, urlsafe=True))
    except (binascii.Error, ValueError) as err:
        raise CodecParseError(f"Unable to decode {what}: {err}") from err


def sd_hash(value: str) -> str:
    """Return the base64url SHA-256 digest of a string."""
    return bytes_to_b64(
        hashlib.sha256(value.encode("utf-8")).digest(), urlsafe=True, pad=False
    )


@dataclass(frozen=True)
class Disclosure:
    """A decoded selective disclosure.

    ``claim_name`` is None for array element disclosures.
    """

    encoded: str
    salt: str
    claim_name: Optional[str]
    claim_value: Any

    @classmethod
    def decode(cls, encoded: str) -> "Disclosure":
        """Decode a base64url disclosure."""
        decoded = _b64_to_json(encoded, "disclosure")
        if not isinstance(decoded, list) or len(decoded) not in (2, 3):
            raise CodecValidationError(
                "Disclosure must be an array of salt, [claim name,] claim value"
            )
        if not isinstance(decoded[0], str):
            raise CodecValidationError("Disclosure salt must be a string")
        if len(decoded) == 2:
            return cls(encoded, decoded[0], None, decoded[1])
        if not isinstance(decoded[1], str):
            raise CodecValidationError("Disclosure claim name must be a string")
        if decoded[1] in (SD_DIGESTS_KEY, ARRAY_DIGEST_KEY):
            raise CodecValidationError(f"Disclosure claim name {decoded[1]} is reserved")
        return cls(encoded, decoded[0], decoded[1], decoded[2])

    @property
    def digest(self) -> str:
        """Return the digest referencing this disclosure."""
        return sd_hash(self.encoded)


def _federation_entities(header: Mapping, payload: Mapping) -> FrozenSet[str]:
    """Return the federation entities named by the credential trust chain."""
    entities = set()
    if isinstance(payload.get("iss"), str):
        entities.add(payload["iss"])
    chain = header.get("trust_chain") or []
    if not isinstance(chain, list):
        raise CodecValidationError("trust_chain must be an array")
    for statement in chain:
        parts = statement.split(".") if isinstance(statement, str) else []
        if len(parts) != 3:
            raise CodecValidationError("Invalid entity statement in trust_chain")
        try:
            claims = _b64_to_json(parts[1], "trust_chain entity statement")
        except CodecParseError as err:
            raise CodecValidationError(str(err)) from err
        if not isinstance(claims, dict):
            raise CodecValidationError("Invalid entity statement in trust_chain")
        entities.update(
            value
            for value in (claims.get("iss"), claims.get("sub"))
            if isinstance(value, str)
        )
    return frozenset(entities)


def _x5c_key_identifiers(header: Mapping) -> FrozenSet[str]:
    chain = []
    for cert in header.get("x5c") or []:
        try:
            chain.append(b64_to_bytes(cert))
        except binascii.Error as err:
            raise CodecValidationError(f"Invalid x5c entry: {err}") from err
    return key_identifiers(load_der_certificates(chain))


def _path_compatible(disclosed: Tuple, requested: ClaimsPath) -> bool:
    """Check whether a disclosure path lies on or below a requested path."""
    for have, want in zip(disclosed, requested):
        if want is None:
            if not isinstance(have, int):
                return False
            continue
        if have != want:
            return False
    return True


@dataclass
class SdJwtCredential(Credential):
    """A held SD-JWT VC."""

    format: ClassVar[str] = SD_JWT_FORMAT

    compact: str
    issuer_jwt: str
    header: Dict[str, Any]
    payload: Dict[str, Any]
    disclosures: List[Disclosure]
    claims: Dict[str, Any] = field(default_factory=dict)
    disclosure_paths: List[Tuple[Tuple, Disclosure]] = field(default_factory=list)
    authorities: Dict[str, FrozenSet[str]] = field(default_factory=dict)

    @property
    def vct(self) -> str:
        """Accessor for the credential type."""
        return self.payload["vct"]

    @property
    def sub(self) -> Optional[str]:
        """Accessor for the subject."""
        return self.payload.get("sub")

    @property
    def holder_jwk(self) -> Optional[dict]:
        """Accessor for the holder binding key."""
        return (self.payload.get("cnf") or {}).get("jwk")

    def subject_ids(self) -> FrozenSet[str]:
        """Return the subject of the credential."""
        return frozenset([self.sub]) if self.sub else frozenset()

    def to_dcql(self) -> DcqlCredential:
        """Return the matcher view of this credential."""
        return DcqlCredential(
            format=self.format,
            vct=self.vct,
            claims=self.claims,
            authorities=self.authorities,
        )

    def select_disclosures(
        self, paths: Optional[Sequence[ClaimsPath]] = None
    ) -> List[Disclosure]:
        """Return the disclosures needed to reveal the given claim paths.

        Every disclosure on the way to a requested claim and below it is
        included; with no paths all disclosures are returned. Issuance order
        is kept.
        """
        if paths is None:
            return list(self.disclosures)
        selected = {
            disclosure.encoded
            for disclosed_path, disclosure in self.disclosure_paths
            if any(_path_compatible(disclosed_path, path) for path in paths)
        }
        return [d for d in self.disclosures if d.encoded in selected]

    def presentation_for(self, paths: Optional[Sequence[ClaimsPath]] = None) -> str:
        """Return the issuer JWT with the disclosures revealing paths."""
        disclosures = self.select_disclosures(paths)
        return SEPARATOR.join(
            [self.issuer_jwt, *(d.encoded for d in disclosures), ""]
        )

    def verify_issuer_signature(self, issuer_jwk: Union[Mapping, str]) -> bool:
        """Verify the issuer signature of the credential."""
        encoded_headers, encoded_payload, encoded_signature = self.issuer_jwt.split(".")
        try:
            signature = b64_to_bytes(encoded_signature, urlsafe=True)
        except binascii.Error:
            return False
        return verify_signature(
            issuer_jwk, f"{encoded_headers}.{encoded_payload}".encode(), signature
        )


class _DisclosureResolver:
    """Replace digests in an SD-JWT payload with the disclosed claims."""

    def __init__(self, disclosures: Sequence[Disclosure]):
        self.by_digest = {}
        for disclosure in disclosures:
            if disclosure.digest in self.by_digest:
                raise CodecValidationError("Duplicate disclosure in SD-JWT")
            self.by_digest[disclosure.digest] = disclosure
        self.used = set()
        self.paths: List[Tuple[Tuple, Disclosure]] = []

    def _take(self, digest: Any) -> Optional[Disclosure]:
        if not isinstance(digest, str):
            raise CodecValidationError("Digests must be strings")
        if digest in self.used:
            raise CodecValidationError("Digest referenced more than once")
        disclosure = self.by_digest.get(digest)
        if disclosure:
            self.used.add(digest)
        return disclosure

    def resolve(self, node: Any, path: Tuple = ()) -> Any:
        if isinstance(node, dict):
            claims = {
                key: self.resolve(value, path + (key,))
                for key, value in node.items()
                if key not in (SD_DIGESTS_KEY, "_sd_alg")
            }
            digests = node.get(SD_DIGESTS_KEY, [])
            if not isinstance(digests, list):
                raise CodecValidationError(f"{SD_DIGESTS_KEY} must be an array")
            for digest in digests:
                disclosure = self._take(digest)
                if not disclosure:
                    continue
                if disclosure.claim_name is None:
                    raise CodecValidationError(
                        "Array element disclosure referenced from an object"
                    )
                if disclosure.claim_name in claims:
                    raise CodecValidationError(
                        f"Disclosed claim {disclosure.claim_name} already present"
                    )
                claim_path = path + (disclosure.claim_name,)
                self.paths.append((claim_path, disclosure))
                claims[disclosure.claim_name] = self.resolve(
                    disclosure.claim_value, claim_path
                )
            return claims

        if isinstance(node, list):
            elements = []
            for element in node:
                if isinstance(element, dict) and set(element) == {ARRAY_DIGEST_KEY}:
                    disclosure = self._take(element[ARRAY_DIGEST_KEY])
                    if not disclosure:
                        continue
                    if disclosure.claim_name is not None:
                        raise CodecValidationError(
                            "Object property disclosure referenced from an array"
                        )
                    element_path = path + (len(elements),)
                    self.paths.append((element_path, disclosure))
                    elements.append(self.resolve(disclosure.claim_value, element_path))
                else:
                    elements.append(self.resolve(element, path + (len(elements),)))
            return elements

        return node


def parse_sd_jwt(raw: Union[str, bytes]) -> SdJwtCredential:
    """Decode and validate an SD-JWT VC in compact serialization.

    Signature verification is not performed here; see
    ``SdJwtCredential.verify_issuer_signature``.

    Raises:
        CodecParseError: if raw is not a compact SD-JWT
        CodecValidationError: if the header or payload violate the SD-JWT VC
            profile, or disclosures are inconsistent with the payload digests
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("ascii")
        except UnicodeDecodeError as err:
            raise CodecParseError("SD-JWT must be ascii text") from err
    compact = raw.strip()

    parts = compact.split(SEPARATOR)
    issuer_jwt = parts[0]
    if len(parts) > 1 and parts[-1]:
        raise CodecValidationError("Held SD-JWT must not carry a key binding JWT")
    encoded_disclosures = parts[1:-1]

    jwt_parts = issuer_jwt.split(".")
    if len(jwt_parts) != 3 or not all(jwt_parts):
        raise CodecParseError("Issuer-signed JWT is not a compact JWS")
    header = _b64_to_json(jwt_parts[0], "JWT header")
    payload = _b64_to_json(jwt_parts[1], "JWT payload")
    if not isinstance(header, dict) or not isinstance(payload, dict):
        raise CodecParseError("JWT header and payload must be JSON objects")

    if header.get("typ") != SD_JWT_FORMAT:
        raise CodecValidationError(f"Unsupported credential format: {header.get('typ')}")
    if not isinstance(payload.get("vct"), str):
        raise CodecValidationError("vct is missing or invalid in the credential payload")

    errors = SdJwtHeaderSchema().validate(header)
    if errors:
        raise CodecValidationError(f"Invalid SD-JWT header: {errors}")
    errors = SdJwtPayloadSchema().validate(payload)
    if errors:
        raise CodecValidationError(f"Invalid SD-JWT payload: {errors}")

    disclosures = [Disclosure.decode(encoded) for encoded in encoded_disclosures]
    resolver = _DisclosureResolver(disclosures)
    claims = resolver.resolve(payload)
    unused = len(disclosures) - len(resolver.used)
    if unused:
        raise CodecValidationError(
            f"{unused} disclosure(s) not referenced by the credential payload"
        )

    LOGGER.debug(
        "Parsed SD-JWT VC %s with %d disclosures", payload["vct"], len(disclosures)
    )
    return SdJwtCredential(
        compact=compact,
        issuer_jwt=issuer_jwt,
        header=header,
        payload=payload,
        disclosures=disclosures,
        claims=claims,
        disclosure_paths=resolver.paths,
        authorities={
            "aki": _x5c_key_identifiers(header),
            "openid_federation": _federation_entities(header, payload),
        },
    )
