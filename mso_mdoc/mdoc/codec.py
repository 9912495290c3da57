"""Decoding and validation of mdoc issuer-signed documents.

Decoding happens in two stages so that callers can tell "not CBOR" apart
from "CBOR, but not an mdoc":

1. ``decode_cbor`` turns bytes (or base64url text) into a ``RawCbor`` value
   and raises ``CodecParseError`` when the input is not CBOR.
2. ``validate_issuer_signed`` checks a ``RawCbor`` against the IssuerSigned
   structure of ISO/IEC 18013-5:2021 § 8.3.2.1.2.2 and raises
   ``CodecValidationError`` on any mismatch.

``parse_mdoc`` composes both stages.
"""

import binascii
import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import (
    Any,
    ClassVar,
    Collection,
    Dict,
    FrozenSet,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

import cbor2
from acapy_agent.wallet.util import b64_to_bytes
from cbor2 import CBORTag
from cryptography.hazmat.primitives.asymmetric import ec
from marshmallow import EXCLUDE, INCLUDE, Schema, ValidationError, fields, validate

from oid4vp_wallet.credential import MDOC_FORMAT, Credential, DcqlCredential
from oid4vp_wallet.error import CodecParseError, CodecValidationError
from oid4vp_wallet.models.dcql_query import ClaimsPath
from oid4vp_wallet.x509 import key_identifiers, load_der_certificates

from .cose import COSE_ALGS, COSE_SIGN1_TAG, HEADER_ALG, HEADER_X5CHAIN
from .cose import cose_key_to_jwk, verify_es256

LOGGER = logging.getLogger(__name__)

ENCODED_CBOR_TAG = 24
MSO_VERSION = "1.0"
DIGEST_ALGORITHMS = {
    "SHA-256": hashlib.sha256,
    "SHA-384": hashlib.sha384,
    "SHA-512": hashlib.sha512,
}
REQUIRED_ELEMENTS = ("issuing_country", "issuing_authority")
SUBJECT_ELEMENT = "sub"


class CborBytes(fields.Field):
    """A CBOR byte string."""

    default_error_messages = {"invalid": "Not a byte string."}

    def _deserialize(self, value, attr, data, **kwargs):
        if not isinstance(value, bytes):
            raise self.make_error("invalid")
        return value


class EncodedCbor(fields.Field):
    """A byte string tagged as embedded CBOR (tag 24); yields the inner bytes."""

    default_error_messages = {"invalid": "Not a tag 24 encoded CBOR byte string."}

    def _deserialize(self, value, attr, data, **kwargs):
        if (
            not isinstance(value, CBORTag)
            or value.tag != ENCODED_CBOR_TAG
            or not isinstance(value.value, bytes)
        ):
            raise self.make_error("invalid")
        return value.value


class CborDateTime(fields.Field):
    """A CBOR tdate, decoded by cbor2 into a datetime."""

    default_error_messages = {"invalid": "Not a date-time."}

    def _deserialize(self, value, attr, data, **kwargs):
        if not isinstance(value, datetime):
            raise self.make_error("invalid")
        return value


def _decode_protected_header(protected: bytes) -> dict:
    if not protected:
        return {}
    try:
        header = cbor2.loads(protected)
    except cbor2.CBORDecodeError as err:
        raise CodecValidationError(f"Invalid protected header: {err}") from err
    if not isinstance(header, dict):
        raise CodecValidationError("Protected header must be a map")
    return header


@dataclass
class IssuerAuth:
    """The issuer's COSE_Sign1 over the Mobile Security Object."""

    protected: bytes
    unprotected: Dict[int, bytes]
    payload: bytes
    signature: bytes
    tagged: bool = False

    @property
    def protected_header(self) -> dict:
        """Return the decoded protected header.

        Raises:
            CodecValidationError: if the header is not a CBOR map
        """
        return _decode_protected_header(self.protected)

    @property
    def x5chain(self) -> List[bytes]:
        """Return the DER certificates of the x5chain header, leaf first."""
        chain = self.unprotected.get(HEADER_X5CHAIN)
        return [chain] if chain else []

    def to_cbor(self) -> Union[list, CBORTag]:
        """Return the CBOR value of the COSE_Sign1."""
        value = [self.protected, self.unprotected, self.payload, self.signature]
        return CBORTag(COSE_SIGN1_TAG, value) if self.tagged else value


class IssuerAuthField(fields.Field):
    """COSE_Sign1 array: protected bstr, unprotected map, payload bstr, signature bstr.

    The array may carry the optional COSE_Sign1 tag.
    """

    default_error_messages = {
        "invalid": "issuerAuth must be an array of 4 elements.",
        "header": "Unprotected header must map integer labels to byte strings.",
    }

    def _deserialize(self, value, attr, data, **kwargs):
        tagged = isinstance(value, CBORTag) and value.tag == COSE_SIGN1_TAG
        if tagged:
            value = value.value
        if not isinstance(value, (list, tuple)) or len(value) != 4:
            raise self.make_error("invalid")

        protected, unprotected, payload, signature = value
        for name, element in (
            ("protected", protected),
            ("payload", payload),
            ("signature", signature),
        ):
            if not isinstance(element, bytes):
                raise ValidationError(f"issuerAuth {name} must be a byte string.")
        if not isinstance(unprotected, dict) or not all(
            isinstance(label, int)
            and not isinstance(label, bool)
            and isinstance(header, bytes)
            for label, header in unprotected.items()
        ):
            raise self.make_error("header")

        return IssuerAuth(protected, unprotected, payload, signature, tagged)


class IssuerSignedSchema(Schema):
    """IssuerSigned structure."""

    class Meta:
        """IssuerSignedSchema metadata."""

        unknown = EXCLUDE

    issuer_auth = IssuerAuthField(required=True, data_key="issuerAuth")
    name_spaces = fields.Dict(
        keys=fields.Str(),
        values=fields.List(EncodedCbor()),
        required=True,
        data_key="nameSpaces",
    )


class IssuerSignedItemSchema(Schema):
    """IssuerSignedItem structure."""

    class Meta:
        """IssuerSignedItemSchema metadata."""

        unknown = EXCLUDE

    digest_id = fields.Int(
        required=True, strict=True, validate=validate.Range(min=0), data_key="digestID"
    )
    random = CborBytes(required=True)
    element_identifier = fields.Str(required=True, data_key="elementIdentifier")
    element_value = fields.Raw(required=True, allow_none=True, data_key="elementValue")


class DeviceKeyInfoSchema(Schema):
    """DeviceKeyInfo of a Mobile Security Object."""

    class Meta:
        """DeviceKeyInfoSchema metadata."""

        unknown = INCLUDE

    deviceKey = fields.Dict(keys=fields.Int(strict=True), required=True)


class ValidityInfoSchema(Schema):
    """ValidityInfo of a Mobile Security Object."""

    class Meta:
        """ValidityInfoSchema metadata."""

        unknown = INCLUDE

    signed = CborDateTime(required=True)
    validFrom = CborDateTime(required=True)
    validUntil = CborDateTime(required=True)
    expectedUpdate = CborDateTime(required=False)


class MobileSecurityObjectSchema(Schema):
    """Mobile Security Object (ISO/IEC 18013-5:2021 § 9.1.2.4)."""

    class Meta:
        """MobileSecurityObjectSchema metadata."""

        unknown = INCLUDE

    version = fields.Str(required=True, validate=validate.Equal(MSO_VERSION))
    digestAlgorithm = fields.Str(
        required=True, validate=validate.OneOf(list(DIGEST_ALGORITHMS))
    )
    docType = fields.Str(required=True)
    valueDigests = fields.Dict(
        keys=fields.Str(),
        values=fields.Dict(keys=fields.Int(strict=True), values=CborBytes()),
        required=True,
    )
    deviceKeyInfo = fields.Nested(DeviceKeyInfoSchema, required=True)
    validityInfo = fields.Nested(ValidityInfoSchema, required=True)
    status = fields.Dict(required=False)


@dataclass(frozen=True)
class RawCbor:
    """A decoded CBOR value together with the bytes it was decoded from."""

    value: Any
    data: bytes


@dataclass
class IssuerSignedItem:
    """One issuer-signed data element.

    ``encoded`` holds the exact bytes wrapped in tag 24, so the item can be
    re-emitted and digested without re-encoding.
    """

    digest_id: int
    random: bytes
    element_identifier: str
    element_value: Any
    encoded: bytes

    @property
    def tagged(self) -> CBORTag:
        """Return the IssuerSignedItemBytes value."""
        return CBORTag(ENCODED_CBOR_TAG, self.encoded)

    def digest(self, algorithm: str) -> bytes:
        """Return the value digest of this item."""
        return DIGEST_ALGORITHMS[algorithm](cbor2.dumps(self.tagged)).digest()


@dataclass
class MdocCredential(Credential):
    """An issuer-signed mdoc held by the wallet."""

    format: ClassVar[str] = MDOC_FORMAT

    doctype: str
    issuer_auth: IssuerAuth
    namespaces: Dict[str, List[IssuerSignedItem]]
    mso: Dict[str, Any]
    authorities: Dict[str, FrozenSet[str]] = field(default_factory=dict)
    key_order: Tuple[str, ...] = ("issuerAuth", "nameSpaces")

    @property
    def claims(self) -> Dict[str, Dict[str, Any]]:
        """Return the element values keyed by namespace and identifier."""
        return {
            namespace: {
                item.element_identifier: item.element_value for item in items
            }
            for namespace, items in self.namespaces.items()
        }

    @property
    def device_jwk(self) -> Optional[dict]:
        """Return the device key from the Mobile Security Object as a JWK."""
        device_key = (self.mso.get("deviceKeyInfo") or {}).get("deviceKey")
        if not device_key:
            return None
        return cose_key_to_jwk(device_key)

    def subject_ids(self) -> FrozenSet[str]:
        """Return the values of ``sub`` elements in any namespace."""
        return frozenset(
            item.element_value
            for items in self.namespaces.values()
            for item in items
            if item.element_identifier == SUBJECT_ELEMENT
            and isinstance(item.element_value, str)
        )

    def to_dcql(self) -> DcqlCredential:
        """Return the matcher view of this mdoc."""
        return DcqlCredential(
            format=self.format,
            claims=self.claims,
            doctype=self.doctype,
            authorities=self.authorities,
        )

    def select_elements(
        self, paths: Optional[Sequence[ClaimsPath]] = None
    ) -> Optional[Dict[str, FrozenSet[str]]]:
        """Map claim paths of the form ``[namespace, element]`` to identifiers.

        Returns None, meaning every element, when paths is None.
        """
        if paths is None:
            return None
        selected: Dict[str, set] = {}
        for path in paths:
            if len(path) == 2 and all(isinstance(part, str) for part in path):
                selected.setdefault(path[0], set()).add(path[1])
        return {namespace: frozenset(ids) for namespace, ids in selected.items()}

    def issuer_signed(
        self, elements: Optional[Mapping[str, Collection[str]]] = None
    ) -> Dict[str, Any]:
        """Return the IssuerSigned CBOR value.

        Args:
            elements: Element identifiers to keep per namespace; every item
                is kept when None. Namespaces left empty are dropped.
        """
        namespaces = {}
        for namespace, items in self.namespaces.items():
            if elements is None:
                kept = items
            else:
                wanted = elements.get(namespace, ())
                kept = [item for item in items if item.element_identifier in wanted]
            if kept:
                namespaces[namespace] = [item.tagged for item in kept]

        values = {
            "nameSpaces": namespaces,
            "issuerAuth": self.issuer_auth.to_cbor(),
        }
        return {key: values[key] for key in self.key_order}

    def encode(self, elements: Optional[Mapping[str, Collection[str]]] = None) -> bytes:
        """Encode the issuer-signed document as CBOR."""
        return cbor2.dumps(self.issuer_signed(elements))


def decode_cbor(data: Union[bytes, str]) -> RawCbor:
    """Decode bytes, or base64url text, into a generic CBOR value.

    Raises:
        CodecParseError: if the input is not CBOR
    """
    if isinstance(data, str):
        try:
            data = b64_to_bytes(data.strip(), urlsafe=True)
        except (binascii.Error, ValueError) as err:
            raise CodecParseError(f"Invalid base64url mdoc encoding: {err}") from err
    if not data:
        raise CodecParseError("Empty mdoc encoding")

    try:
        value = cbor2.loads(data)
    except cbor2.CBORDecodeError as err:
        raise CodecParseError(f"Invalid CBOR: {err}") from err
    return RawCbor(value=value, data=data)


def _decode_embedded(data: bytes, what: str) -> Any:
    try:
        value = cbor2.loads(data)
    except cbor2.CBORDecodeError as err:
        raise CodecValidationError(f"Invalid CBOR in {what}: {err}") from err
    if isinstance(value, CBORTag) and value.tag == ENCODED_CBOR_TAG:
        return _decode_embedded(value.value, what)
    return value


def _decode_mso(payload: bytes) -> Dict[str, Any]:
    mso = _decode_embedded(payload, "issuerAuth payload")
    if not isinstance(mso, dict):
        raise CodecValidationError("issuerAuth payload is not a Mobile Security Object")
    if mso.get("version") != MSO_VERSION:
        raise CodecValidationError(
            f"The issuerAuth version must be '{MSO_VERSION}', "
            f"got {mso.get('version')!r}"
        )
    if not isinstance(mso.get("docType"), str):
        raise CodecValidationError("Mobile Security Object is missing docType")
    return mso


def _decode_item(encoded: bytes, namespace: str) -> IssuerSignedItem:
    value = _decode_embedded(encoded, f"namespace {namespace}")
    try:
        item = IssuerSignedItemSchema().load(value)
    except ValidationError as err:
        raise CodecValidationError(
            f"Invalid IssuerSignedItem in namespace {namespace}: {err.messages}"
        ) from err
    return IssuerSignedItem(encoded=encoded, **item)


def validate_issuer_signed(raw: RawCbor) -> MdocCredential:
    """Validate a decoded CBOR value as an issuer-signed mdoc.

    Raises:
        CodecValidationError: if the value is not an IssuerSigned structure,
            the issuerAuth protected header is not a map, the Mobile Security
            Object version is not "1.0", or an x5chain entry is not a
            certificate
    """
    try:
        issuer_signed = IssuerSignedSchema().load(raw.value)
    except ValidationError as err:
        raise CodecValidationError(
            f"Invalid mdoc issuer-signed structure: {err.messages}"
        ) from err

    issuer_auth: IssuerAuth = issuer_signed["issuer_auth"]
    _decode_protected_header(issuer_auth.protected)
    mso = _decode_mso(issuer_auth.payload)
    namespaces = {
        namespace: [_decode_item(encoded, namespace) for encoded in items]
        for namespace, items in issuer_signed["name_spaces"].items()
    }

    authorities = {}
    if issuer_auth.x5chain:
        authorities["aki"] = key_identifiers(load_der_certificates(issuer_auth.x5chain))

    key_order = tuple(
        key for key in raw.value if key in ("nameSpaces", "issuerAuth")
    )
    return MdocCredential(
        doctype=mso["docType"],
        issuer_auth=issuer_auth,
        namespaces=namespaces,
        mso=mso,
        authorities=authorities,
        key_order=key_order,
    )


def parse_mdoc(data: Union[bytes, str]) -> MdocCredential:
    """Decode and validate an issuer-signed mdoc.

    Raises:
        CodecParseError: if data is not CBOR
        CodecValidationError: if data is CBOR but not a valid mdoc
    """
    return validate_issuer_signed(decode_cbor(data))


def check_mdoc_profile(credential: MdocCredential):
    """Check an mdoc against the profile expected of held credentials.

    Every namespace must carry ``issuing_country`` and ``issuing_authority``,
    the issuer must name its algorithm in the protected header and its
    certificate in the unprotected header, and the Mobile Security Object
    must be complete.

    Raises:
        CodecValidationError: on the first violation found
    """
    try:
        MobileSecurityObjectSchema().load(credential.mso)
    except ValidationError as err:
        raise CodecValidationError(
            f"Invalid Mobile Security Object: {err.messages}"
        ) from err

    for namespace, items in credential.namespaces.items():
        present = {item.element_identifier for item in items}
        for element in REQUIRED_ELEMENTS:
            if element not in present:
                raise CodecValidationError(
                    f"Namespace {namespace} is missing {element}"
                )

    protected = credential.issuer_auth.protected_header
    if HEADER_ALG not in protected:
        raise CodecValidationError("Protected header is missing the algorithm")
    if HEADER_X5CHAIN not in credential.issuer_auth.unprotected:
        raise CodecValidationError("Unprotected header is missing the x5chain")


def verify_issuer_auth(credential: MdocCredential) -> bool:
    """Verify the issuer signature and the value digests of an mdoc.

    The issuer key is taken from the leaf certificate of the x5chain; only
    ES256 is supported.
    """
    chain = credential.issuer_auth.x5chain
    if not chain:
        LOGGER.warning("mdoc %s carries no x5chain", credential.doctype)
        return False
    public_key = load_der_certificates(chain)[0].public_key()
    if not isinstance(public_key, ec.EllipticCurvePublicKey):
        LOGGER.warning("Unsupported issuer key type %s", type(public_key).__name__)
        return False
    if credential.issuer_auth.protected_header.get(HEADER_ALG) != COSE_ALGS["ES256"]:
        LOGGER.warning("Unsupported issuerAuth algorithm")
        return False

    if not verify_es256(
        public_key,
        credential.issuer_auth.protected,
        credential.issuer_auth.payload,
        credential.issuer_auth.signature,
    ):
        LOGGER.warning("Invalid issuer signature on mdoc %s", credential.doctype)
        return False

    algorithm = credential.mso.get("digestAlgorithm")
    if algorithm not in DIGEST_ALGORITHMS:
        LOGGER.warning("Unsupported digest algorithm %s", algorithm)
        return False
    value_digests = credential.mso.get("valueDigests")
    if not isinstance(value_digests, dict):
        LOGGER.warning("mdoc %s has no valueDigests map", credential.doctype)
        return False
    for namespace, items in credential.namespaces.items():
        digests = value_digests.get(namespace)
        if not isinstance(digests, dict):
            LOGGER.warning("No value digests for namespace %s", namespace)
            return False
        for item in items:
            if digests.get(item.digest_id) != item.digest(algorithm):
                LOGGER.warning(
                    "Digest mismatch for %s/%s",
                    namespace,
                    item.element_identifier,
                )
                return False
    return True
