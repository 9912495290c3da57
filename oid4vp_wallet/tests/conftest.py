"""Fixtures for wallet matching and presentation tests."""

import pytest

from mso_mdoc.key_generation import generate_issuer_material
from mso_mdoc.mdoc.issuer import MDL_DOCTYPE, MDL_NAMESPACE, issue_mdoc
from oid4vp_wallet.signer import AskarSigner
from sd_jwt_vc.issuer import issue_sd_jwt

PID_VCT = "urn:eudi:pid:1"


@pytest.fixture(scope="session")
def mdoc_issuer():
    yield generate_issuer_material()


@pytest.fixture
def issuer_signer():
    yield AskarSigner.generate()


@pytest.fixture
def holder_signer():
    yield AskarSigner.generate()


@pytest.fixture
def issue_pid(issuer_signer: AskarSigner, holder_signer: AskarSigner):
    """Return a coroutine function issuing PID SD-JWTs bound to the holder."""

    async def _issue(given_name: str = "Mario", sub: str = "pid-subject-1", **kwargs):
        claims = {
            "given_name": given_name,
            "family_name": "Rossi",
            "birth_date": "1980-01-10",
            "nationalities": ["IT"],
            "is_over_18": True,
        }
        return await issue_sd_jwt(
            claims,
            ["/given_name", "/family_name", "/birth_date", "/nationalities"],
            issuer_signer,
            vct=kwargs.pop("vct", PID_VCT),
            iss=kwargs.pop("iss", "https://issuer.example.org"),
            holder_jwk=holder_signer.public_jwk,
            sub=sub,
            **kwargs,
        )

    yield _issue


@pytest.fixture
async def pid_sd_jwt(issue_pid):
    yield await issue_pid()


@pytest.fixture
async def mdl(mdoc_issuer: dict, holder_signer: AskarSigner):
    yield await issue_mdoc(
        MDL_DOCTYPE,
        {
            MDL_NAMESPACE: {
                "family_name": "Rossi",
                "given_name": "Mario",
                "birth_date": "1980-01-10",
                "issuing_country": "IT",
                "issuing_authority": "MIT",
                "document_number": "XX1234567",
            }
        },
        holder_signer.public_jwk,
        mdoc_issuer["signer"],
        mdoc_issuer["certificate_der"],
    )
