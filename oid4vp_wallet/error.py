"""Wallet presentation errors."""

from typing import Iterable

from acapy_agent.core.error import BaseError


class WalletError(BaseError):
    """Base class for wallet presentation errors."""


class CodecError(WalletError):
    """Base class for credential codec errors."""


class CodecParseError(CodecError):
    """Raised when raw credential bytes cannot be decoded at all."""


class CodecValidationError(CodecError):
    """Raised when a decoded credential does not match the expected schema."""


class CredentialError(WalletError):
    """Raised on credential store inconsistencies."""


class DCQLQueryError(WalletError):
    """Raised when a DCQL query is malformed."""


class QueryUnsatisfiable(WalletError):
    """Raised when held credentials cannot satisfy a DCQL query."""

    def __init__(self, unmet_ids: Iterable[str]):
        """Initialize the error with the unmet credential query ids."""
        self.unmet_ids = list(unmet_ids)
        super().__init__(
            "DCQL query cannot be satisfied by held credentials; "
            f"unmet credential queries: {', '.join(self.unmet_ids)}"
        )


class PresentationBuildError(WalletError):
    """Raised when a presentation cannot be assembled."""


class FormatHandlerError(WalletError):
    """Raised when no handler is registered for a credential format."""
