"""Held credential types."""

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, FrozenSet, Optional

SD_JWT_FORMAT = "dc+sd-jwt"
MDOC_FORMAT = "mso_mdoc"


@dataclass(frozen=True)
class DcqlCredential:
    """Comparison view of a held credential used by the query matcher.

    SD-JWT credentials populate ``vct`` and ``claims`` with the processed
    (disclosed) claim set. mdoc credentials populate ``doctype`` and
    ``claims`` as ``{namespace: {element_identifier: element_value}}``.
    ``authorities`` lists the identifiers usable by trusted-authority
    predicates, keyed by predicate type.
    """

    format: str
    claims: Dict[str, Any]
    vct: Optional[str] = None
    doctype: Optional[str] = None
    authorities: Dict[str, FrozenSet[str]] = field(default_factory=dict)


class Credential:
    """A decoded credential held by the wallet.

    Concrete variants are ``sd_jwt_vc.SdJwtCredential`` and
    ``mso_mdoc.MdocCredential``; dispatch on the variant with ``isinstance``
    or on ``format``.
    """

    format: ClassVar[str]

    def subject_ids(self) -> FrozenSet[str]:
        """Return the subject identifiers carried by this credential."""
        raise NotImplementedError()

    def to_dcql(self) -> DcqlCredential:
        """Return the view of this credential used for query matching."""
        raise NotImplementedError()


@dataclass
class CredentialRecord:
    """A named credential in the credential store."""

    name: str
    credential: Credential
    subject_ids: FrozenSet[str]

    @property
    def format(self) -> str:
        """Accessor for the credential format."""
        return self.credential.format
