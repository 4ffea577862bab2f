from __future__ import annotations

import asyncio
import sys

import aiohttp
import structlog
from dotenv import load_dotenv
from pydantic import ValidationError as SettingsValidationError

from capx.config.settings import CacheSettings, get_settings
from capx.infra.di.bootstrap import bootstrap_container
from capx.infra.logging.config import configure_logging
from capx.infra.result import CapacityUnavailableError
from capx.models.capacity_models import Credentials
from capx.services.capacity_store import CapacityTreeStore

LOGGER = structlog.get_logger(__name__)

EXIT_CONFIG = 78
EXIT_UNAVAILABLE = 69


async def warm_cache(settings: CacheSettings) -> int:
    """Build the tree for ``settings.language`` once and log a summary."""
    credentials = Credentials(settings.api_token)
    if not credentials:
        LOGGER.error("capx.main.missing_token", hint="set CAPX_API_TOKEN")
        return EXIT_CONFIG

    async with aiohttp.ClientSession() as session:
        container = bootstrap_container(settings, session)
        store = container.resolve(CapacityTreeStore)
        try:
            tree = await store.update_language(settings.language, credentials)
        except CapacityUnavailableError as exc:
            LOGGER.error("capx.main.unavailable", error=str(exc), context=exc.log_safe_context())
            return EXIT_UNAVAILABLE

    LOGGER.info(
        "capx.main.ready",
        language=tree.language,
        nodes=len(tree),
        roots=len(tree.roots()),
        fallbacks=sum(1 for node in tree.code_index.values() if node.is_fallback_translation),
        timestamp=tree.timestamp,
    )
    return 0


def main() -> int:
    """Entry point invoked via ``python -m capx.main``."""
    load_dotenv(override=False)
    configure_logging()
    try:
        settings = get_settings()
    except SettingsValidationError as exc:
        LOGGER.error("capx.main.invalid_settings", errors=exc.errors(include_url=False))
        return EXIT_CONFIG

    try:
        return asyncio.run(warm_cache(settings))
    except KeyboardInterrupt:
        LOGGER.warning("capx.main.interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
