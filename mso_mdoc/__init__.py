"""MSO_MDOC Credential Handler Plugin."""

import logging

from acapy_agent.config.injection_context import InjectionContext

from oid4vp_wallet.config import Config
from oid4vp_wallet.processors import FormatHandlers

from .cred_processor import MsoMdocFormatHandler
from .mdoc import MdocCredential, parse_mdoc

LOGGER = logging.getLogger(__name__)

__all__ = ["MdocCredential", "MsoMdocFormatHandler", "parse_mdoc"]


async def setup(context: InjectionContext):
    """Setup the plugin."""
    LOGGER.info("Setting up MSO_MDOC plugin")
    handlers = context.inject(FormatHandlers)
    config = Config.from_settings(context.settings)
    handlers.register(MsoMdocFormatHandler(trust_anchors=config.trust_anchors()))
