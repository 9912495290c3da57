"""Digital Credentials Query Language models."""

from typing import Any, List, Mapping, Optional, Sequence, Union

from acapy_agent.messaging.models.base import (
    BaseModel,
    BaseModelError,
    BaseModelSchema,
)
from marshmallow import EXCLUDE, ValidationError, fields, validate, validates_schema

from ..credential import MDOC_FORMAT, SD_JWT_FORMAT
from ..error import DCQLQueryError

ClaimsPath = List[Union[str, int, None]]

SUPPORTED_FORMATS = (SD_JWT_FORMAT, MDOC_FORMAT)
TRUSTED_AUTHORITY_TYPES = ("aki", "etsi_tl", "openid_federation")


class ClaimsQuery(BaseModel):
    """A request for a single claim of a credential."""

    class Meta:
        """ClaimsQuery metadata."""

        schema_class = "ClaimsQuerySchema"

    def __init__(
        self,
        *,
        id: Optional[str] = None,
        path: Optional[ClaimsPath] = None,
        values: Optional[List[Any]] = None,
        namespace: Optional[str] = None,
        claim_name: Optional[str] = None,
        intent_to_retain: Optional[bool] = None,
    ):
        """Initialize a ClaimsQuery.

        mdoc claims may be expressed either as a two element ``path`` of
        namespace and element identifier or with the older ``namespace`` and
        ``claim_name`` pair; ``claims_path`` normalizes both.
        """
        self.id = id
        self.path = path
        self.values = values
        self.namespace = namespace
        self.claim_name = claim_name
        self.intent_to_retain = intent_to_retain

    @property
    def claims_path(self) -> ClaimsPath:
        """Return the claims path pointer for this claim."""
        if self.path is not None:
            return list(self.path)
        return [self.namespace, self.claim_name]


class ClaimsQuerySchema(BaseModelSchema):
    """ClaimsQuery schema."""

    class Meta:
        """ClaimsQuerySchema metadata."""

        model_class = ClaimsQuery
        unknown = EXCLUDE

    id = fields.Str(required=False, metadata={"description": "Claim identifier"})
    path = fields.List(
        fields.Raw(allow_none=True),
        required=False,
        validate=validate.Length(min=1),
        metadata={"description": "Claims path pointer", "example": ["given_name"]},
    )
    values = fields.List(
        fields.Raw(),
        required=False,
        validate=validate.Length(min=1),
        metadata={"description": "Acceptable values of the claim"},
    )
    namespace = fields.Str(
        required=False, metadata={"description": "mdoc namespace (legacy syntax)"}
    )
    claim_name = fields.Str(
        required=False,
        metadata={"description": "mdoc element identifier (legacy syntax)"},
    )
    intent_to_retain = fields.Bool(required=False)

    @validates_schema
    def validate_path(self, data: Mapping[str, Any], **kwargs):
        """Check that exactly one claim addressing style is used."""
        path = data.get("path")
        legacy = data.get("namespace") is not None or data.get("claim_name") is not None
        if path is None and not legacy:
            raise ValidationError("One of path or namespace/claim_name is required")
        if path is not None and legacy:
            raise ValidationError("path cannot be combined with namespace/claim_name")
        if legacy and (data.get("namespace") is None or data.get("claim_name") is None):
            raise ValidationError("namespace and claim_name must be used together")
        for component in path or []:
            if component is None or isinstance(component, str):
                continue
            if isinstance(component, int) and not isinstance(component, bool):
                if component < 0:
                    raise ValidationError("Array indexes in path must be >= 0")
                continue
            raise ValidationError(
                f"Invalid path component of type {type(component).__name__}"
            )
        for value in data.get("values") or []:
            if not isinstance(value, (str, int, bool)):
                raise ValidationError("Claim values must be strings, integers or bools")


class CredentialMeta(BaseModel):
    """Format specific constraints of a credential query."""

    class Meta:
        """CredentialMeta metadata."""

        schema_class = "CredentialMetaSchema"

    def __init__(
        self,
        *,
        vct_values: Optional[List[str]] = None,
        doctype_value: Optional[str] = None,
    ):
        """Initialize a CredentialMeta."""
        self.vct_values = vct_values
        self.doctype_value = doctype_value


class CredentialMetaSchema(BaseModelSchema):
    """CredentialMeta schema."""

    class Meta:
        """CredentialMetaSchema metadata."""

        model_class = CredentialMeta
        unknown = EXCLUDE

    vct_values = fields.List(
        fields.Str(),
        required=False,
        metadata={"example": ["urn:eudi:pid:1"]},
    )
    doctype_value = fields.Str(
        required=False, metadata={"example": "org.iso.18013.5.1.mDL"}
    )


class TrustedAuthorityQuery(BaseModel):
    """An acceptable issuer authority for a credential query."""

    class Meta:
        """TrustedAuthorityQuery metadata."""

        schema_class = "TrustedAuthorityQuerySchema"

    def __init__(self, *, type: str, values: List[str]):
        """Initialize a TrustedAuthorityQuery."""
        self.type = type
        self.values = values


class TrustedAuthorityQuerySchema(BaseModelSchema):
    """TrustedAuthorityQuery schema."""

    class Meta:
        """TrustedAuthorityQuerySchema metadata."""

        model_class = TrustedAuthorityQuery
        unknown = EXCLUDE

    type = fields.Str(
        required=True, validate=validate.OneOf(TRUSTED_AUTHORITY_TYPES)
    )
    values = fields.List(
        fields.Str(), required=True, validate=validate.Length(min=1)
    )


class CredentialQuery(BaseModel):
    """A request for one credential."""

    class Meta:
        """CredentialQuery metadata."""

        schema_class = "CredentialQuerySchema"

    def __init__(
        self,
        *,
        credential_query_id: str,
        format: str,
        multiple: bool = False,
        meta: Optional[CredentialMeta] = None,
        trusted_authorities: Optional[List[TrustedAuthorityQuery]] = None,
        require_cryptographic_holder_binding: bool = True,
        claims: Optional[List[ClaimsQuery]] = None,
        claim_sets: Optional[List[List[str]]] = None,
    ):
        """Initialize a CredentialQuery."""
        self.credential_query_id = credential_query_id
        self.format = format
        self.multiple = multiple
        self.meta = meta
        self.trusted_authorities = trusted_authorities
        self.require_cryptographic_holder_binding = (
            require_cryptographic_holder_binding
        )
        self.claims = claims
        self.claim_sets = claim_sets

    @property
    def vct_values(self) -> Optional[List[str]]:
        """Accessor for the accepted vct values, if constrained."""
        return self.meta.vct_values if self.meta else None

    @property
    def doctype_value(self) -> Optional[str]:
        """Accessor for the accepted doctype, if constrained."""
        return self.meta.doctype_value if self.meta else None


class CredentialQuerySchema(BaseModelSchema):
    """CredentialQuery schema."""

    class Meta:
        """CredentialQuerySchema metadata."""

        model_class = CredentialQuery
        unknown = EXCLUDE

    credential_query_id = fields.Str(
        required=True,
        data_key="id",
        validate=validate.Regexp(r"^[A-Za-z0-9_-]+$"),
        metadata={"example": "pid"},
    )
    format = fields.Str(required=True, validate=validate.OneOf(SUPPORTED_FORMATS))
    multiple = fields.Bool(required=False, load_default=False)
    meta = fields.Nested(CredentialMetaSchema, required=False)
    trusted_authorities = fields.List(
        fields.Nested(TrustedAuthorityQuerySchema),
        required=False,
        validate=validate.Length(min=1),
    )
    require_cryptographic_holder_binding = fields.Bool(
        required=False, load_default=True
    )
    claims = fields.List(
        fields.Nested(ClaimsQuerySchema),
        required=False,
        validate=validate.Length(min=1),
    )
    claim_sets = fields.List(
        fields.List(fields.Str(), validate=validate.Length(min=1)),
        required=False,
        validate=validate.Length(min=1),
    )

    @validates_schema
    def validate_claims(self, data: Mapping[str, Any], **kwargs):
        """Check claim identifiers and format specific claim paths."""
        claims: Sequence[ClaimsQuery] = data.get("claims") or []
        claim_sets = data.get("claim_sets")

        if claim_sets and not claims:
            raise ValidationError("claim_sets requires claims")

        ids = [claim.id for claim in claims if claim.id is not None]
        if len(ids) != len(set(ids)):
            raise ValidationError("Claim ids must be unique within a credential query")

        if claim_sets:
            if len(ids) != len(claims):
                raise ValidationError("Every claim must have an id when using claim_sets")
            for claim_set in claim_sets:
                unknown = set(claim_set) - set(ids)
                if unknown:
                    raise ValidationError(
                        f"claim_sets references unknown claim ids: {sorted(unknown)}"
                    )

        if data.get("format") == MDOC_FORMAT:
            for claim in claims:
                if claim.path is not None and len(claim.path) != 2:
                    raise ValidationError(
                        "mso_mdoc claim paths must be [namespace, element_identifier]"
                    )


class DCQLQuery(BaseModel):
    """A DCQL query: the credentials a relying party requests."""

    class Meta:
        """DCQLQuery metadata."""

        schema_class = "DCQLQuerySchema"

    def __init__(self, *, credentials: List[CredentialQuery]):
        """Initialize a DCQLQuery."""
        self.credentials = credentials

    @classmethod
    def parse(cls, query: Union[str, Mapping[str, Any], "DCQLQuery"]) -> "DCQLQuery":
        """Parse and validate a DCQL query.

        Raises:
            DCQLQueryError: if the query is malformed
        """
        if isinstance(query, DCQLQuery):
            return query
        try:
            if isinstance(query, str):
                return cls.from_json(query)
            return cls.deserialize(query)
        except BaseModelError as err:
            details = err.__cause__ if err.__cause__ else err
            raise DCQLQueryError(f"Invalid DCQL query: {details}") from err

    @property
    def credential_query_ids(self) -> List[str]:
        """Return the credential query ids in declared order."""
        return [cred.credential_query_id for cred in self.credentials]

    def credential_query(self, credential_query_id: str) -> Optional[CredentialQuery]:
        """Return the credential query with the given id, if any."""
        for cred in self.credentials:
            if cred.credential_query_id == credential_query_id:
                return cred
        return None


class DCQLQuerySchema(BaseModelSchema):
    """DCQLQuery schema."""

    class Meta:
        """DCQLQuerySchema metadata."""

        model_class = DCQLQuery
        unknown = EXCLUDE

    credentials = fields.List(
        fields.Nested(CredentialQuerySchema),
        required=True,
        validate=validate.Length(min=1),
    )

    @validates_schema
    def validate_ids(self, data: Mapping[str, Any], **kwargs):
        """Check that credential query ids are unique."""
        ids = [cred.credential_query_id for cred in data.get("credentials") or []]
        duplicates = sorted({id for id in ids if ids.count(id) > 1})
        if duplicates:
            raise ValidationError(f"Duplicate credential query ids: {duplicates}")
