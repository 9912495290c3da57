"""OID4VP wallet plugin."""

import logging

from acapy_agent.config.injection_context import InjectionContext

from .config import Config
from .loader import load_credentials
from .processors import FormatHandlers
from .store import CredentialStore

LOGGER = logging.getLogger(__name__)


async def setup(context: InjectionContext):
    """Setup the plugin."""
    LOGGER.info("Setting up OID4VP wallet plugin...")

    config = Config.from_settings(context.settings)

    # Format plugins register into this registry from their own setup()
    handlers = FormatHandlers.default(
        issuer_jwk=config.issuer_jwk, trust_anchors=config.trust_anchors()
    )
    context.injector.bind_instance(FormatHandlers, handlers)
    LOGGER.info("Registered credential formats: %s", ", ".join(handlers.formats()))

    store = CredentialStore()
    context.injector.bind_instance(CredentialStore, store)

    if config.credentials_dir:
        load_credentials(
            store,
            config.credentials_path,
            types=config.credential_types or None,
            handlers=handlers,
        )
    else:
        LOGGER.info("No credentials directory configured; wallet starts empty")
