import pytest

from oid4vp_wallet.credential import DcqlCredential
from oid4vp_wallet.dcql import ClaimsPathPointer, DCQLQueryMatcher
from oid4vp_wallet.error import QueryUnsatisfiable
from sd_jwt_vc.sd_jwt import parse_sd_jwt

PID_VCT = "urn:eudi:pid:1"
MDL_DOCTYPE = "org.iso.18013.5.1.mDL"
MDL_NS = "org.iso.18013.5.1"


def sd_jwt(vct=PID_VCT, authorities=None, **claims):
    return DcqlCredential(
        format="dc+sd-jwt", vct=vct, claims=claims, authorities=authorities or {}
    )


def mdoc(doctype=MDL_DOCTYPE, authorities=None, **elements):
    return DcqlCredential(
        format="mso_mdoc",
        doctype=doctype,
        claims={MDL_NS: elements},
        authorities=authorities or {},
    )


def pid_query(*claims, **extra):
    credential = {
        "id": "pid",
        "format": "dc+sd-jwt",
        "meta": {"vct_values": [PID_VCT]},
        **extra,
    }
    if claims:
        credential["claims"] = list(claims)
    return {"credentials": [credential]}


class TestClaimsPathPointer:
    CLAIMS = {
        "name": "Arthur Dent",
        "address": {"street_address": "42 Market Street"},
        "degrees": [{"type": "BSc"}, {"type": "MSc"}],
        "nationalities": ["British", "Betelgeusian"],
    }

    @pytest.mark.parametrize(
        "path,expected",
        [
            (["name"], ["Arthur Dent"]),
            (["address", "street_address"], ["42 Market Street"]),
            (["degrees", None, "type"], ["BSc", "MSc"]),
            (["nationalities", 1], ["Betelgeusian"]),
            (["nationalities", 5], []),
            (["missing"], []),
        ],
    )
    def test_resolve(self, path, expected):
        assert ClaimsPathPointer(path).resolve(self.CLAIMS) == expected

    @pytest.mark.parametrize(
        "path", [["name", "first"], ["address", 0], ["name", None], [1.5]]
    )
    def test_resolve_type_mismatch(self, path):
        with pytest.raises(ValueError):
            ClaimsPathPointer(path).resolve(self.CLAIMS)


class TestMatcher:
    async def test_sd_jwt_claim_match(self, pid_sd_jwt: str):
        credential = parse_sd_jwt(pid_sd_jwt)
        assert credential.claims["given_name"] == "Mario"
        matcher = DCQLQueryMatcher.compile(pid_query({"path": ["given_name"]}))

        result = matcher.match([credential.to_dcql()])

        assert result.can_be_satisfied
        match = result.credential_matches["pid"]
        assert len(match.valid_credentials) == 1
        assert match.valid_credentials[0].input_credential_index == 0
        assert match.valid_credentials[0].claims[0].values == ["Mario"]

    def test_unknown_vct_is_unsatisfiable(self):
        matcher = DCQLQueryMatcher.compile(
            {
                "credentials": [
                    {
                        "id": "other",
                        "format": "dc+sd-jwt",
                        "meta": {"vct_values": ["urn:example:unknown"]},
                    }
                ]
            }
        )
        credentials = [sd_jwt(given_name="Mario")]

        assert not matcher.match(credentials).can_be_satisfied
        with pytest.raises(QueryUnsatisfiable) as exc_info:
            matcher.require(credentials)
        assert exc_info.value.unmet_ids == ["other"]
        assert "other" in str(exc_info.value)

    def test_format_mismatch(self):
        matcher = DCQLQueryMatcher.compile(
            {"credentials": [{"id": "mdl", "format": "mso_mdoc"}]}
        )
        assert not matcher.match([sd_jwt()]).can_be_satisfied
        assert matcher.match([sd_jwt(), mdoc()]).credential_matches[
            "mdl"
        ].valid_credentials[0].input_credential_index == 1

    def test_doctype(self):
        matcher = DCQLQueryMatcher.compile(
            {
                "credentials": [
                    {
                        "id": "mdl",
                        "format": "mso_mdoc",
                        "meta": {"doctype_value": MDL_DOCTYPE},
                        "claims": [{"path": [MDL_NS, "family_name"]}],
                    }
                ]
            }
        )
        credentials = [
            mdoc(doctype="eu.europa.ec.eudi.pid.1", family_name="Rossi"),
            mdoc(family_name="Rossi"),
        ]

        result = matcher.match(credentials)

        assert [
            valid.input_credential_index
            for valid in result.credential_matches["mdl"].valid_credentials
        ] == [1]

    def test_legacy_mdoc_claim(self):
        matcher = DCQLQueryMatcher.compile(
            {
                "credentials": [
                    {
                        "id": "mdl",
                        "format": "mso_mdoc",
                        "claims": [{"namespace": MDL_NS, "claim_name": "given_name"}],
                    }
                ]
            }
        )
        result = matcher.match([mdoc(given_name="Mario")])
        assert result.credential_matches["mdl"].valid_credentials[0].claim_paths == [
            [MDL_NS, "given_name"]
        ]

    def test_missing_claim(self):
        matcher = DCQLQueryMatcher.compile(pid_query({"path": ["family_name"]}))
        assert not matcher.match([sd_jwt(given_name="Mario")]).can_be_satisfied

    def test_values_compare_types_strictly(self):
        matcher = DCQLQueryMatcher.compile(
            pid_query({"path": ["is_over_18"], "values": [True]})
        )

        assert matcher.match([sd_jwt(is_over_18=True)]).can_be_satisfied
        assert not matcher.match([sd_jwt(is_over_18=1)]).can_be_satisfied
        assert not matcher.match([sd_jwt(is_over_18="true")]).can_be_satisfied

    def test_values_filter_wildcard_results(self):
        matcher = DCQLQueryMatcher.compile(
            pid_query({"path": ["nationalities", None], "values": ["DE"]})
        )

        result = matcher.match([sd_jwt(nationalities=["IT", "DE"])])

        assert result.credential_matches["pid"].valid_credentials[0].claims[
            0
        ].values == ["DE"]

    def test_claim_sets_in_preference_order(self):
        matcher = DCQLQueryMatcher.compile(
            pid_query(
                {"id": "a", "path": ["given_name"]},
                {"id": "b", "path": ["postal_code"]},
                {"id": "c", "path": ["birth_date"]},
                claim_sets=[["a", "b"], ["a", "c"]],
            )
        )

        result = matcher.match([sd_jwt(given_name="Mario", birth_date="1980-01-10")])

        claims = result.credential_matches["pid"].valid_credentials[0].claims
        assert [claim.claim_id for claim in claims] == ["a", "c"]

    def test_first_matching_credential_is_selected(self):
        matcher = DCQLQueryMatcher.compile(pid_query({"path": ["given_name"]}))
        credentials = [
            sd_jwt(vct="urn:example:other", given_name="Luigi"),
            sd_jwt(given_name="Mario"),
            sd_jwt(given_name="Maria"),
        ]

        match = matcher.match(credentials).credential_matches["pid"]

        assert [v.input_credential_index for v in match.valid_credentials] == [1, 2]
        assert [v.input_credential_index for v in match.selected] == [1]

    def test_multiple_selects_every_match(self):
        matcher = DCQLQueryMatcher.compile(
            pid_query({"path": ["given_name"]}, multiple=True)
        )
        credentials = [sd_jwt(given_name="Mario"), sd_jwt(given_name="Maria")]

        match = matcher.match(credentials).credential_matches["pid"]

        assert [v.input_credential_index for v in match.selected] == [0, 1]

    def test_no_claims_selects_whole_credential(self):
        matcher = DCQLQueryMatcher.compile(pid_query())

        match = matcher.match([sd_jwt(given_name="Mario")]).credential_matches["pid"]

        assert match.valid_credentials[0].claims is None
        assert match.valid_credentials[0].claim_paths is None

    def test_matching_is_idempotent(self):
        query = {
            "credentials": [
                {"id": "pid", "format": "dc+sd-jwt", "claims": [{"path": ["given_name"]}]},
                {"id": "mdl", "format": "mso_mdoc"},
            ]
        }
        credentials = [sd_jwt(given_name="Mario"), mdoc(family_name="Rossi")]
        matcher = DCQLQueryMatcher.compile(query)

        first = matcher.match(credentials).serialize()
        second = matcher.match(credentials).serialize()

        assert first == second
        assert first == DCQLQueryMatcher.compile(query).match(credentials).serialize()
        assert list(first["credential_matches"]) == ["pid", "mdl"]

    def test_partial_result_lists_unmet(self):
        query = {
            "credentials": [
                {"id": "pid", "format": "dc+sd-jwt"},
                {"id": "mdl", "format": "mso_mdoc"},
            ]
        }
        result = DCQLQueryMatcher.compile(query).match([sd_jwt()])

        assert not result.can_be_satisfied
        assert result.unmet_ids == ["mdl"]
        assert [m.credential_query_id for m in result.successful_matches()] == ["pid"]


class TestTrustedAuthorities:
    def _matcher(self, type, values):
        return DCQLQueryMatcher.compile(
            pid_query(trusted_authorities=[{"type": type, "values": values}])
        )

    def test_aki(self):
        credential = sd_jwt(authorities={"aki": frozenset({"s9tIpPmhxdiuNkHMEWNpYim8S8Y"})})

        assert self._matcher("aki", ["s9tIpPmhxdiuNkHMEWNpYim8S8Y"]).match(
            [credential]
        ).can_be_satisfied
        assert not self._matcher("aki", ["other"]).match([credential]).can_be_satisfied

    def test_openid_federation(self):
        credential = sd_jwt(
            authorities={"openid_federation": frozenset({"https://ta.example.org"})}
        )

        assert self._matcher(
            "openid_federation", ["https://ta.example.org"]
        ).match([credential]).can_be_satisfied

    def test_etsi_tl_never_matches(self):
        credential = sd_jwt(authorities={"aki": frozenset({"x"})})
        assert not self._matcher("etsi_tl", ["x"]).match([credential]).can_be_satisfied

    def test_credential_without_authorities(self):
        assert not self._matcher("aki", ["x"]).match([sd_jwt()]).can_be_satisfied

    async def test_issued_credential_federation_entity(self, issue_pid):
        credential = parse_sd_jwt(await issue_pid(iss="https://pid.example.org"))

        assert self._matcher(
            "openid_federation", ["https://pid.example.org"]
        ).match([credential.to_dcql()]).can_be_satisfied
