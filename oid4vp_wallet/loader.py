"""Load held credentials from a directory."""

import logging
from pathlib import Path
from typing import Any, Callable, List, Mapping, Optional, Sequence, Union

from cryptography import x509

from .credential import Credential
from .error import CodecError, CredentialError
from .processors import FormatHandlers
from .store import CredentialStore

LOGGER = logging.getLogger(__name__)

SkipHandler = Callable[[str, str], None]


def _log_skip(name: str, reason: str):
    LOGGER.warning("Skipping local credential '%s': %s", name, reason)


def parse_credential(raw: str, handlers: FormatHandlers) -> Credential:
    """Decode raw credential text with the first handler that accepts it.

    Handlers are tried in registration order.

    Raises:
        CodecError: carrying the reason given by every handler when none
            accepts the credential
    """
    reasons = []
    for format in handlers.formats():
        try:
            return handlers.handler_for_format(format).parse(raw)
        except CodecError as err:
            reasons.append(f"not a valid {format} credential: {err}")
    raise CodecError("; ".join(reasons) or "no credential formats registered")


def load_credentials(
    store: CredentialStore,
    path: Union[str, Path],
    types: Optional[Sequence[str]] = None,
    handlers: Optional[FormatHandlers] = None,
    on_skip: Optional[SkipHandler] = None,
    issuer_jwk: Optional[Mapping[str, Any]] = None,
    trust_anchors: Optional[Sequence[x509.Certificate]] = None,
) -> List[str]:
    """Load every credential file in a directory into a store.

    Files are read in name order; each file name becomes the credential name.
    Files that are not listed in types (when given), cannot be decoded, are
    not signed by a trusted issuer, or collide with a held subject are
    reported through on_skip and skipped.

    Args:
        store: Store receiving the credentials
        path: Directory holding one encoded credential per file; created
            when missing
        types: File names to accept
        handlers: Format handlers used for decoding; defaults to the built-in
            handlers configured with issuer_jwk and trust_anchors
        on_skip: Called with the file name and the reason it was skipped
        issuer_jwk: Issuer key SD-JWT VCs must verify against
        trust_anchors: CA certificates mdoc issuers must chain to

    Returns:
        Names of the loaded credentials

    Raises:
        CredentialError: if the directory cannot be created or read
    """
    path = Path(path)
    handlers = handlers or FormatHandlers.default(
        issuer_jwk=issuer_jwk, trust_anchors=trust_anchors
    )
    on_skip = on_skip or _log_skip

    try:
        path.mkdir(parents=True, exist_ok=True)
        files = sorted(entry for entry in path.iterdir() if entry.is_file())
    except OSError as err:
        raise CredentialError(
            f"Unable to find or create credentials directory {path}: {err}"
        ) from err

    loaded = []
    for file in files:
        name = file.name
        if types is not None and name not in types:
            on_skip(name, "not included in credential types")
            continue

        try:
            raw = file.read_text(encoding="utf-8").strip()
        except (OSError, UnicodeDecodeError) as err:
            on_skip(name, f"unreadable: {err}")
            continue

        try:
            store.add(name, parse_credential(raw, handlers))
        except (CodecError, CredentialError) as err:
            on_skip(name, str(err))
            continue

        loaded.append(name)

    LOGGER.info("Loaded %d credentials from %s", len(loaded), path)
    return loaded
