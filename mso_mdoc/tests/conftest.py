"""Fixtures for mso_mdoc tests."""

import pytest

from mso_mdoc.key_generation import generate_issuer_material
from mso_mdoc.mdoc.issuer import MDL_DOCTYPE, MDL_NAMESPACE, issue_mdoc
from oid4vp_wallet.signer import AskarSigner

MDL_ELEMENTS = {
    "family_name": "Rossi",
    "given_name": "Mario",
    "birth_date": "1980-01-10",
    "issuing_country": "IT",
    "issuing_authority": "Ministero delle Infrastrutture e dei Trasporti",
    "document_number": "XX1234567",
    "driving_privileges": [{"vehicle_category_code": "B"}],
    "sub": "mdl-subject-1",
}


@pytest.fixture(scope="session")
def issuer():
    yield generate_issuer_material()


@pytest.fixture
def device_signer():
    yield AskarSigner.generate()


@pytest.fixture
async def mdl(issuer: dict, device_signer: AskarSigner):
    yield await issue_mdoc(
        MDL_DOCTYPE,
        {MDL_NAMESPACE: MDL_ELEMENTS},
        device_signer.public_jwk,
        issuer["signer"],
        issuer["certificate_der"],
    )
