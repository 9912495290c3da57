"""In-memory credential store."""

import logging
from threading import Lock
from typing import Dict, Iterator, List, Optional

from .credential import Credential, CredentialRecord
from .error import CredentialError

LOGGER = logging.getLogger(__name__)


class CredentialStore:
    """Named collection of decoded credentials.

    No two records may share a subject identifier. The duplicate check scans
    every existing record for each insert, which is quadratic in the number
    of held credentials; wallets hold a handful of credentials so this is
    accepted.
    """

    def __init__(self):
        """Initialize an empty store."""
        self._records: Dict[str, CredentialRecord] = {}
        self._lock = Lock()

    def add(self, name: str, credential: Credential) -> CredentialRecord:
        """Add a credential under a local name.

        Raises:
            CredentialError: if the name is taken or a subject identifier of
                the credential is already held by another record. The store
                is left unchanged.
        """
        subject_ids = frozenset(credential.subject_ids())
        record = CredentialRecord(
            name=name, credential=credential, subject_ids=subject_ids
        )
        with self._lock:
            if name in self._records:
                raise CredentialError(f"credential '{name}' is already loaded")
            for existing in self._records.values():
                if existing.subject_ids & subject_ids:
                    raise CredentialError(
                        f"duplicate 'sub' found between credentials "
                        f"{existing.name} and {name}"
                    )
            self._records[name] = record

        LOGGER.debug("Added %s credential %s", credential.format, name)
        return record

    def get(self, name: str) -> Optional[CredentialRecord]:
        """Return the record stored under name, or None."""
        return self._records.get(name)

    def records(self, format: Optional[str] = None) -> List[CredentialRecord]:
        """Return records in insertion order, optionally filtered by format."""
        return [
            record
            for record in self._records.values()
            if format is None or record.format == format
        ]

    def credentials(self) -> List[Credential]:
        """Return held credentials in insertion order."""
        return [record.credential for record in self._records.values()]

    def __len__(self) -> int:
        """Return the number of held credentials."""
        return len(self._records)

    def __iter__(self) -> Iterator[CredentialRecord]:
        """Iterate over records in insertion order."""
        return iter(self.records())

    def __contains__(self, name: object) -> bool:
        """Check whether a credential with the given name is held."""
        return name in self._records
