"""X.509 helpers for trusted authority matching and issuer trust anchors."""

from typing import FrozenSet, Iterable, List

from acapy_agent.wallet.util import bytes_to_b64
from cryptography import x509
from cryptography.exceptions import InvalidSignature

from .error import CodecValidationError


def load_der_certificates(chain: Iterable[bytes]) -> List[x509.Certificate]:
    """Load a chain of DER encoded certificates.

    Raises:
        CodecValidationError: if an entry is not a DER certificate
    """
    certs = []
    for der in chain:
        try:
            certs.append(x509.load_der_x509_certificate(der))
        except ValueError as err:
            raise CodecValidationError(f"Invalid certificate in chain: {err}") from err
    return certs


def key_identifiers(certs: Iterable[x509.Certificate]) -> FrozenSet[str]:
    """Return the base64url key identifiers found in a certificate chain.

    Both subject and authority key identifiers are collected so that a
    query naming the issuing authority matches a leaf certificate.
    """
    identifiers = set()
    for cert in certs:
        try:
            ski = cert.extensions.get_extension_for_class(x509.SubjectKeyIdentifier)
            identifiers.add(bytes_to_b64(ski.value.digest, urlsafe=True, pad=False))
        except x509.ExtensionNotFound:
            pass
        try:
            aki = cert.extensions.get_extension_for_class(
                x509.AuthorityKeyIdentifier
            )
            if aki.value.key_identifier:
                identifiers.add(
                    bytes_to_b64(aki.value.key_identifier, urlsafe=True, pad=False)
                )
        except x509.ExtensionNotFound:
            pass
    return frozenset(identifiers)


def load_pem_certificates(data: bytes) -> List[x509.Certificate]:
    """Load every certificate of a PEM bundle.

    Raises:
        CodecValidationError: if the bundle holds no valid certificate
    """
    try:
        return x509.load_pem_x509_certificates(data)
    except ValueError as err:
        raise CodecValidationError(f"Invalid PEM certificates: {err}") from err


def issued_by_trust_anchor(
    cert: x509.Certificate, trust_anchors: Iterable[x509.Certificate]
) -> bool:
    """Check that a certificate is a trust anchor or is signed by one."""
    for anchor in trust_anchors:
        if cert == anchor:
            return True
        try:
            cert.verify_directly_issued_by(anchor)
        except (ValueError, TypeError, InvalidSignature):
            continue
        return True
    return False
