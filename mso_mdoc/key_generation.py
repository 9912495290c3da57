"""Key and certificate generation utilities for mso_mdoc.

This module provides the issuer and device key material used by mock mdoc
issuance. All generated keys use ECDSA with the P-256 curve as specified in
ISO 18013-5 § 9.1.3.5.

Key Protocol Compliance:
- ISO/IEC 18013-5:2021 § 9.1.3.5 - Cryptographic algorithms for mDoc
- RFC 7517 - JSON Web Key (JWK) format
- RFC 7518 § 3.4 - ES256 signature algorithm
- RFC 5280 § 4.2.1 - Key identifier extensions
"""

import logging
import uuid
from datetime import timedelta
from typing import Any, Dict, Optional, Tuple

from acapy_agent.messaging.util import datetime_now
from acapy_agent.wallet.util import bytes_to_b64
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from oid4vp_wallet.signer import AskarSigner

LOGGER = logging.getLogger(__name__)

DEFAULT_ISSUER_DN = "CN=mDoc Test Issuer,O=OID4VP Wallet,C=IT"

NAME_ATTRIBUTES = {
    "CN": NameOID.COMMON_NAME,
    "O": NameOID.ORGANIZATION_NAME,
    "C": NameOID.COUNTRY_NAME,
    "ST": NameOID.STATE_OR_PROVINCE_NAME,
    "L": NameOID.LOCALITY_NAME,
}


def _int_to_base64url_uint(val: int) -> str:
    # P-256 coordinates are always 32 bytes
    return bytes_to_b64(val.to_bytes(32, byteorder="big"), urlsafe=True, pad=False)


def generate_ec_key_pair() -> Tuple[str, str, Dict[str, Any]]:
    """Generate an ECDSA key pair for mDoc signing.

    Generates a P-256 (secp256r1) elliptic curve key pair compliant with
    ISO 18013-5 § 9.1.3.5 requirements for mDoc cryptographic operations.

    Returns:
        Tuple containing:
        - private_key_pem: PEM-encoded private key string
        - public_key_pem: PEM-encoded public key string
        - jwk: private JSON Web Key dictionary with EC parameters

    Example:
        >>> private_pem, public_pem, jwk = generate_ec_key_pair()
        >>> print(jwk['crv'])  # 'P-256'
    """
    private_key = ec.generate_private_key(ec.SECP256R1())

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")

    public_key = private_key.public_key()
    public_pem = public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("utf-8")

    private_numbers = private_key.private_numbers()
    public_numbers = private_numbers.public_numbers
    jwk = {
        "kty": "EC",
        "crv": "P-256",
        "x": _int_to_base64url_uint(public_numbers.x),
        "y": _int_to_base64url_uint(public_numbers.y),
        "d": _int_to_base64url_uint(private_numbers.private_value),
    }

    return private_pem, public_pem, jwk


def parse_dn(dn_string: str) -> x509.Name:
    """Parse a simple DN string like 'CN=Test,O=Org'."""
    name_parts = []
    for part in dn_string.split(","):
        attr, sep, value = part.strip().partition("=")
        oid = NAME_ATTRIBUTES.get(attr.strip().upper())
        if sep and oid:
            name_parts.append(x509.NameAttribute(oid, value.strip()))
    return x509.Name(name_parts)


def generate_self_signed_certificate(
    private_key_pem: str,
    subject_name: str = DEFAULT_ISSUER_DN,
    issuer_name: Optional[str] = None,
    validity_days: int = 365,
) -> str:
    """Generate a self-signed X.509 certificate for an mDoc issuer.

    The certificate carries subject and authority key identifiers so that
    credentials it signs can be matched by ``aki`` trusted authority queries.

    Args:
        private_key_pem: Private key in PEM format for signing
        subject_name: Subject Distinguished Name
        issuer_name: Issuer DN (uses subject_name if None)
        validity_days: Certificate validity period in days

    Returns:
        Certificate in PEM format
    """
    private_key = serialization.load_pem_private_key(
        private_key_pem.encode("utf-8"), password=None
    )
    public_key = private_key.public_key()

    now = datetime_now()
    ski = x509.SubjectKeyIdentifier.from_public_key(public_key)
    cert_builder = (
        x509.CertificateBuilder()
        .subject_name(parse_dn(subject_name))
        .issuer_name(parse_dn(issuer_name or subject_name))
        .public_key(public_key)
        .serial_number(int(uuid.uuid4()))
        .not_valid_before(now)
        .not_valid_after(now + timedelta(days=validity_days))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                key_cert_sign=True,
                crl_sign=True,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                content_commitment=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(ski, critical=False)
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_subject_key_identifier(ski),
            critical=False,
        )
    )

    certificate = cert_builder.sign(private_key, hashes.SHA256())
    return certificate.public_bytes(serialization.Encoding.PEM).decode("utf-8")


def certificate_der(certificate_pem: str) -> bytes:
    """Convert a PEM certificate to DER."""
    certificate = x509.load_pem_x509_certificate(certificate_pem.encode("utf-8"))
    return certificate.public_bytes(serialization.Encoding.DER)


def generate_issuer_material(
    subject_name: str = DEFAULT_ISSUER_DN, validity_days: int = 365
) -> Dict[str, Any]:
    """Generate an issuer key and its self-signed certificate.

    Returns:
        Dictionary containing:
        - signer: AskarSigner for the issuer key
        - jwk: private JWK of the issuer key
        - certificate_pem: the self-signed certificate
        - certificate_der: the same certificate in DER, as placed in x5chain
    """
    private_pem, _, jwk = generate_ec_key_pair()
    certificate_pem = generate_self_signed_certificate(
        private_pem, subject_name=subject_name, validity_days=validity_days
    )
    LOGGER.debug("Generated mDoc issuer certificate for %s", subject_name)
    return {
        "signer": AskarSigner.from_jwk(jwk),
        "jwk": jwk,
        "certificate_pem": certificate_pem,
        "certificate_der": certificate_der(certificate_pem),
    }
