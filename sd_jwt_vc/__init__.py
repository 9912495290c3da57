"""SD-JWT VC credential format plugin."""

import logging

from acapy_agent.config.injection_context import InjectionContext

from oid4vp_wallet.config import Config
from oid4vp_wallet.processors import FormatHandlers

from .cred_processor import SdJwtFormatHandler
from .sd_jwt import Disclosure, SdJwtCredential, parse_sd_jwt

LOGGER = logging.getLogger(__name__)

__all__ = ["Disclosure", "SdJwtCredential", "SdJwtFormatHandler", "parse_sd_jwt"]


async def setup(context: InjectionContext):
    """Setup the plugin."""
    LOGGER.info("Setting up SD-JWT VC plugin")
    handlers = context.inject(FormatHandlers)
    config = Config.from_settings(context.settings)
    handlers.register(SdJwtFormatHandler(issuer_jwk=config.issuer_jwk))
