"""Wait for the post-login session cookies to show up in the browser."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Protocol

from ..config import HarvestSettings
from ..models.session import CookieSet
from .errors import MissingCookiesError

logger = logging.getLogger(__name__)


class CookieSource(Protocol):
    async def cookies(self) -> list[dict]: ...


class CookieHarvester:
    """Polls a browser's cookies until every required name is present at once.

    Cookies seen in different readings are never combined: a value from an
    earlier reading may already have been replaced by the server.
    """

    def __init__(
        self,
        settings: HarvestSettings,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self._sleep = sleep

    async def harvest(self, source: CookieSource) -> CookieSet:
        required = tuple(self.settings.required_cookies)
        attempts = self.settings.max_attempts
        missing: list[str] = list(required)

        for attempt in range(1, attempts + 1):
            raw = await source.cookies()
            cookie_set, missing = CookieSet.from_observation(raw, required)
            if not missing:
                logger.info(f"[COOKIES] All required cookies found on attempt {attempt}")
                return cookie_set

            logger.info(
                f"[COOKIES] Attempt {attempt}/{attempts}: {len(raw)} cookies, "
                f"missing {', '.join(missing)}"
            )
            if attempt < attempts:
                await self._sleep(self.settings.poll_interval)

        waited_ms = int(attempts * self.settings.poll_interval * 1000)
        raise MissingCookiesError(missing, waited_ms)
