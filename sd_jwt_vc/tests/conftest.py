"""Fixtures for sd-jwt vc tests."""

import pytest

from oid4vp_wallet.signer import AskarSigner
from sd_jwt_vc.issuer import issue_sd_jwt

PID_VCT = "urn:eudi:pid:1"
ISSUER = "https://issuer.example.org"

PID_CLAIMS = {
    "given_name": "Mario",
    "family_name": "Rossi",
    "birth_date": "1980-01-10",
    "nationalities": ["IT"],
    "address": {"street_address": "Via Roma 1", "postal_code": "00100"},
}
PID_SD = [
    "/given_name",
    "/family_name",
    "/birth_date",
    "/nationalities",
    "/address",
    "/address/postal_code",
]


@pytest.fixture
def issuer_signer():
    yield AskarSigner.generate()


@pytest.fixture
def holder_signer():
    yield AskarSigner.generate()


@pytest.fixture
async def pid_sd_jwt(issuer_signer: AskarSigner, holder_signer: AskarSigner):
    yield await issue_sd_jwt(
        PID_CLAIMS,
        PID_SD,
        issuer_signer,
        vct=PID_VCT,
        iss=ISSUER,
        holder_jwk=holder_signer.public_jwk,
        sub="pid-subject-1",
    )
