"""Provider registry.

Routes the configured ``provider.name`` to one of the closed set of
provider variants:
- "ark"  -> ArkProvider (Volcengine Ark + Volc ASR + DashScope TTS)
- "mock" -> MockProvider (offline, deterministic)
"""

import logging
from typing import Optional

import httpx

from taleweaver.config import Settings
from taleweaver.errors import ConfigurationError
from taleweaver.providers.base import GenerationProvider

logger = logging.getLogger(__name__)

PROVIDER_NAMES = ("ark", "mock")


def get_provider(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> GenerationProvider:
    """Return the provider variant selected by configuration.

    Args:
        settings: Application settings
        transport: Optional httpx transport for the HTTP-backed variant

    Returns:
        Configured provider ready for use
    """
    name = settings.provider.name
    if name == "mock":
        from taleweaver.providers.mock import MockProvider

        logger.debug("Using MockProvider")
        return MockProvider()

    if name == "ark":
        from taleweaver.providers.ark import ArkProvider

        missing = settings.missing_credentials()
        if missing:
            logger.warning(f"ArkProvider selected with missing credentials: {', '.join(missing)}")
        return ArkProvider(settings.ark, settings.speech, settings.tts, transport=transport)

    raise ConfigurationError(f"unknown_provider:{name}")
