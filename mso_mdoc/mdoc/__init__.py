"""MDoc module."""

from .codec import (
    IssuerAuth,
    IssuerSignedItem,
    MdocCredential,
    RawCbor,
    check_mdoc_profile,
    decode_cbor,
    parse_mdoc,
    validate_issuer_signed,
    verify_issuer_auth,
)
from .device_response import (
    build_device_response,
    oid4vp_session_transcript,
    verify_device_signature,
)
from .issuer import issue_mdoc

__all__ = [
    "IssuerAuth",
    "IssuerSignedItem",
    "MdocCredential",
    "RawCbor",
    "build_device_response",
    "check_mdoc_profile",
    "decode_cbor",
    "issue_mdoc",
    "oid4vp_session_transcript",
    "parse_mdoc",
    "validate_issuer_signed",
    "verify_device_signature",
    "verify_issuer_auth",
]
