import json

import pytest

from oid4vp_wallet.error import DCQLQueryError
from oid4vp_wallet.models.dcql_query import DCQLQuery

PID_QUERY = {
    "credentials": [
        {
            "id": "pid",
            "format": "dc+sd-jwt",
            "meta": {"vct_values": ["urn:eudi:pid:1"]},
            "claims": [
                {"id": "a", "path": ["given_name"]},
                {"id": "b", "path": ["nationalities", None]},
                {"id": "c", "path": ["address", "postal_code"]},
            ],
            "claim_sets": [["a", "c"], ["a", "b"]],
        },
        {
            "id": "mdl",
            "format": "mso_mdoc",
            "meta": {"doctype_value": "org.iso.18013.5.1.mDL"},
            "claims": [
                {"path": ["org.iso.18013.5.1", "family_name"]},
                {"namespace": "org.iso.18013.5.1", "claim_name": "given_name"},
            ],
        },
    ]
}


def _query(**credential):
    return {"credentials": [{"id": "q", "format": "dc+sd-jwt", **credential}]}


def test_parse():
    query = DCQLQuery.parse(PID_QUERY)

    assert query.credential_query_ids == ["pid", "mdl"]
    pid = query.credential_query("pid")
    assert pid.format == "dc+sd-jwt"
    assert pid.vct_values == ["urn:eudi:pid:1"]
    assert pid.multiple is False
    assert pid.require_cryptographic_holder_binding is True
    assert pid.claims[1].claims_path == ["nationalities", None]
    assert pid.claim_sets == [["a", "c"], ["a", "b"]]

    mdl = query.credential_query("mdl")
    assert mdl.doctype_value == "org.iso.18013.5.1.mDL"
    assert mdl.claims[1].claims_path == ["org.iso.18013.5.1", "given_name"]
    assert query.credential_query("unknown") is None


def test_parse_json():
    query = DCQLQuery.parse(json.dumps(PID_QUERY))
    assert query.credential_query_ids == ["pid", "mdl"]
    assert DCQLQuery.parse(query) is query


@pytest.mark.parametrize(
    "query",
    [
        {},
        {"credentials": []},
        "not json",
        _query(format="jwt_vc_json"),
        _query(id="has space"),
        _query(claims=[{"path": []}]),
        _query(claims=[{"path": ["a", -1]}]),
        _query(claims=[{"path": ["a", 1.5]}]),
        _query(claims=[{"path": ["a", True]}]),
        _query(claims=[{"path": ["a"], "namespace": "ns", "claim_name": "a"}]),
        _query(claims=[{"namespace": "ns"}]),
        _query(claims=[{"path": ["a"], "values": [{"nested": True}]}]),
        _query(claims=[{"id": "x", "path": ["a"]}], claim_sets=[["y"]]),
        _query(claims=[{"path": ["a"]}], claim_sets=[["a"]]),
        _query(claims=[{"id": "x", "path": ["a"]}, {"id": "x", "path": ["b"]}]),
        _query(claim_sets=[["a"]]),
        _query(trusted_authorities=[{"type": "unknown", "values": ["x"]}]),
        _query(trusted_authorities=[{"type": "aki", "values": []}]),
        {
            "credentials": [
                {"id": "mdl", "format": "mso_mdoc", "claims": [{"path": ["ns"]}]}
            ]
        },
        {
            "credentials": [
                {"id": "q", "format": "dc+sd-jwt"},
                {"id": "q", "format": "mso_mdoc"},
            ]
        },
    ],
)
def test_parse_invalid(query):
    with pytest.raises(DCQLQueryError):
        DCQLQuery.parse(query)
