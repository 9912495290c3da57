"""Digital Credentials Query Language matching against held credentials."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from .credential import MDOC_FORMAT, SD_JWT_FORMAT, DcqlCredential
from .error import QueryUnsatisfiable
from .models.dcql_query import ClaimsPath, ClaimsQuery, CredentialQuery, DCQLQuery

LOGGER = logging.getLogger(__name__)


class ClaimsPathPointer:
    """A pointer into a JSON structure, identifying one or more claims.

    Given the claims

        {
            "name": "Arthur Dent",
            "address": {"street_address": "42 Market Street"},
            "degrees": [{"type": "BSc"}, {"type": "MSc"}],
            "nationalities": ["British", "Betelgeusian"]
        }

    ``["address", "street_address"]`` selects ``"42 Market Street"``,
    ``["degrees", None, "type"]`` selects every degree type and
    ``["nationalities", 1]`` selects ``"Betelgeusian"``. mdoc claims are
    addressed as ``[namespace, element_identifier]`` over
    ``{namespace: {element_identifier: value}}``.
    """

    def __init__(self, path: ClaimsPath):
        """Init the path pointer."""
        self.path = list(path)

    @staticmethod
    def _step(component: Union[str, int, None], element: Any) -> List[Any]:
        if isinstance(component, str):
            if not isinstance(element, dict):
                raise ValueError(
                    f"Cannot select key {component!r} from a non-object value"
                )
            return [element[component]] if component in element else []

        if component is None:
            if not isinstance(element, list):
                raise ValueError("Cannot select all elements of a non-array value")
            return list(element)

        if isinstance(component, int) and not isinstance(component, bool):
            if component < 0:
                raise ValueError("Array index in claims path must be non-negative")
            if not isinstance(element, list):
                raise ValueError(
                    f"Cannot select index {component} from a non-array value"
                )
            return [element[component]] if component < len(element) else []

        raise ValueError(
            f"Invalid type {type(component).__name__} component in path pointer"
        )

    def resolve(self, source: Any) -> List[Any]:
        """Return every value selected by this pointer in source.

        Raises:
            ValueError: when the path steps into a value of the wrong type
        """
        selected = [source]
        for component in self.path:
            selected = [
                value
                for element in selected
                for value in self._step(component, element)
            ]
        return selected


@dataclass
class MatchedClaim:
    """A claim of a held credential that satisfied a claims query."""

    path: ClaimsPath
    values: List[Any]
    claim_id: Optional[str] = None


@dataclass
class ValidCredentialMatch:
    """A held credential satisfying a credential query.

    ``claims`` is None when the credential query requested no specific
    claims, meaning the whole credential is presented.
    """

    input_credential_index: int
    claims: Optional[List[MatchedClaim]] = None

    @property
    def claim_paths(self) -> Optional[List[ClaimsPath]]:
        """Return the paths of the matched claims, if claims were requested."""
        if self.claims is None:
            return None
        return [claim.path for claim in self.claims]

    def serialize(self) -> dict:
        """Return a dict representation of this match."""
        return {
            "input_credential_index": self.input_credential_index,
            "claims": (
                None
                if self.claims is None
                else [
                    {"id": claim.claim_id, "path": claim.path, "values": claim.values}
                    for claim in self.claims
                ]
            ),
        }


@dataclass
class CredentialMatch:
    """Outcome of matching one credential query."""

    credential_query_id: str
    format: str
    valid_credentials: List[ValidCredentialMatch] = field(default_factory=list)
    multiple: bool = False

    @property
    def success(self) -> bool:
        """Whether at least one held credential satisfies the credential query."""
        return bool(self.valid_credentials)

    @property
    def selected(self) -> List[ValidCredentialMatch]:
        """Return the matches to present, preferred candidate first."""
        if self.multiple:
            return list(self.valid_credentials)
        return self.valid_credentials[:1]

    def serialize(self) -> dict:
        """Return a dict representation of this result."""
        return {
            "success": self.success,
            "credential_query_id": self.credential_query_id,
            "valid_credentials": [
                valid.serialize() for valid in self.valid_credentials
            ],
        }


@dataclass
class DCQLQueryResult:
    """Outcome of matching a full DCQL query."""

    credential_matches: Dict[str, CredentialMatch]

    @property
    def can_be_satisfied(self) -> bool:
        """Whether every credential query is satisfied."""
        return all(match.success for match in self.credential_matches.values())

    @property
    def unmet_ids(self) -> List[str]:
        """Return the ids of credential queries without a match."""
        return [
            query_id
            for query_id, match in self.credential_matches.items()
            if not match.success
        ]

    def successful_matches(self) -> List[CredentialMatch]:
        """Return the satisfied credential queries in declared order."""
        return [
            match for match in self.credential_matches.values() if match.success
        ]

    def serialize(self) -> dict:
        """Return a dict representation of this result."""
        return {
            "can_be_satisfied": self.can_be_satisfied,
            "credential_matches": {
                query_id: match.serialize()
                for query_id, match in self.credential_matches.items()
            },
        }


def _value_matches(value: Any, accepted: Sequence[Any]) -> bool:
    """Compare a claim value against literals without bool/int coercion."""
    return any(type(value) is type(literal) and value == literal for literal in accepted)


class DCQLQueryMatcher:
    """Select held credentials satisfying a DCQL query.

    Matching has no side effects; the same query matched twice against the
    same credentials yields equal results.
    """

    def __init__(self, query: DCQLQuery):
        """Init the matcher."""
        self.query = query

    @classmethod
    def compile(cls, query: Union[Mapping[str, Any], str, DCQLQuery]) -> "DCQLQueryMatcher":
        """Compile a matcher from a DCQL query or its JSON representation."""
        return cls(DCQLQuery.parse(query))

    @staticmethod
    def _match_claim(
        claim: ClaimsQuery, credential: DcqlCredential
    ) -> Optional[MatchedClaim]:
        path = claim.claims_path
        try:
            values = ClaimsPathPointer(path).resolve(credential.claims)
        except ValueError as err:
            LOGGER.debug("Claim path %s not resolvable: %s", path, err)
            return None

        if not values:
            return None
        if claim.values:
            values = [value for value in values if _value_matches(value, claim.values)]
            if not values:
                return None
        return MatchedClaim(path=path, values=values, claim_id=claim.id)

    def _match_claims(
        self, cred_query: CredentialQuery, credential: DcqlCredential
    ) -> Optional[List[MatchedClaim]]:
        """Return the claims satisfying the credential query, or None."""
        matched = [self._match_claim(claim, credential) for claim in cred_query.claims]

        if not cred_query.claim_sets:
            if all(matched):
                return matched
            return None

        by_id = {claim.claim_id: claim for claim in matched if claim}
        for claim_set in cred_query.claim_sets:
            if all(claim_id in by_id for claim_id in claim_set):
                return [by_id[claim_id] for claim_id in claim_set]
        return None

    @staticmethod
    def _match_trusted_authorities(
        cred_query: CredentialQuery, credential: DcqlCredential
    ) -> bool:
        for authority in cred_query.trusted_authorities:
            known = credential.authorities.get(authority.type, frozenset())
            if known.intersection(authority.values):
                return True
        return False

    def _match_meta(self, cred_query: CredentialQuery, credential: DcqlCredential) -> bool:
        if credential.format != cred_query.format:
            return False
        if cred_query.format == SD_JWT_FORMAT and cred_query.vct_values:
            return credential.vct in cred_query.vct_values
        if cred_query.format == MDOC_FORMAT and cred_query.doctype_value:
            return credential.doctype == cred_query.doctype_value
        return True

    def match_credential_query(
        self, cred_query: CredentialQuery, credentials: Sequence[DcqlCredential]
    ) -> CredentialMatch:
        """Match a single credential query against the held credentials."""
        result = CredentialMatch(
            credential_query_id=cred_query.credential_query_id,
            format=cred_query.format,
            multiple=cred_query.multiple,
        )
        for index, credential in enumerate(credentials):
            if not self._match_meta(cred_query, credential):
                continue
            if cred_query.trusted_authorities and not self._match_trusted_authorities(
                cred_query, credential
            ):
                continue

            claims = None
            if cred_query.claims:
                claims = self._match_claims(cred_query, credential)
                if claims is None:
                    continue

            result.valid_credentials.append(
                ValidCredentialMatch(input_credential_index=index, claims=claims)
            )
        return result

    def match(self, credentials: Sequence[DcqlCredential]) -> DCQLQueryResult:
        """Match every credential query, in declared order."""
        return DCQLQueryResult(
            credential_matches={
                cred_query.credential_query_id: self.match_credential_query(
                    cred_query, credentials
                )
                for cred_query in self.query.credentials
            }
        )

    def require(self, credentials: Sequence[DcqlCredential]) -> DCQLQueryResult:
        """Match the query and require every credential query to be satisfied.

        Raises:
            QueryUnsatisfiable: naming every credential query without a match
        """
        result = self.match(credentials)
        if not result.can_be_satisfied:
            raise QueryUnsatisfiable(result.unmet_ids)
        return result
