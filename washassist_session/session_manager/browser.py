"""Camoufox/Chromium browser automation: launch, page actions, teardown."""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Optional

from camoufox.async_api import AsyncCamoufox
from playwright.async_api import BrowserContext, Page, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from pydantic import BaseModel, Field

from ..config import BrowserSettings
from ..constants import CHROMIUM_ARGS, CONTAINER_CHROMIUM_PATH
from .errors import BrowserError, NavigationError

logger = logging.getLogger(__name__)


class LaunchOptions(BaseModel):
    """Resolved launch configuration for one browser instance."""

    engine: str
    deployment: str
    headless: bool
    args: list[str] = Field(default_factory=list)
    executable_path: Optional[str] = None
    proxy: Optional[dict[str, str]] = None
    user_agent: Optional[str] = None
    ignore_https_errors: bool = False


def detect_deployment(environ: Mapping[str, str]) -> str:
    """Guess where we are running from well-known environment variables."""
    if environ.get("VERCEL") or environ.get("NOW_REGION"):
        return "serverless"
    if environ.get("APP_ENV", "").lower() == "production":
        return "container"
    return "local"


def resolve_launch_options(
    settings: BrowserSettings, environ: Optional[Mapping[str, str]] = None
) -> LaunchOptions:
    """Turn browser settings plus the hosting environment into launch options.

    Chromium gets the sandbox-free flag set that containers need, a forced
    ``--single-process`` on serverless hosts and the system Chromium binary in
    containers. Camoufox handles its own fingerprint, so it only takes the
    proxy.
    """
    deployment = settings.deployment or detect_deployment(os.environ if environ is None else environ)
    proxy = {"server": settings.proxy_url} if settings.proxy_url else None

    if settings.engine == "camoufox":
        return LaunchOptions(
            engine="camoufox",
            deployment=deployment,
            headless=settings.headless,
            executable_path=settings.executable_path,
            proxy=proxy,
        )

    args = list(CHROMIUM_ARGS)
    args.append(f"--user-agent={settings.user_agent}")
    if settings.proxy_url:
        args.append(f"--proxy-server={settings.proxy_url}")
    if deployment == "serverless":
        args.extend(["--single-process", "--hide-scrollbars"])

    executable_path = settings.executable_path
    if executable_path is None and deployment == "container":
        executable_path = CONTAINER_CHROMIUM_PATH

    return LaunchOptions(
        engine="chromium",
        deployment=deployment,
        headless=settings.headless,
        args=args,
        executable_path=executable_path,
        proxy=proxy,
        user_agent=settings.user_agent,
        ignore_https_errors=deployment == "serverless",
    )


class BrowserDriver:
    """One isolated browser + page, owned by a single login attempt.

    Use as an async context manager; the browser is closed on exit no matter
    how the block ends. ``close`` is idempotent.
    """

    def __init__(self, settings: BrowserSettings, options: Optional[LaunchOptions] = None):
        self._settings = settings
        self._options = options or resolve_launch_options(settings)
        self._camoufox: Optional[AsyncCamoufox] = None
        self._playwright = None
        self._browser = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None
        self._closed = False

    async def __aenter__(self) -> "BrowserDriver":
        try:
            await self.launch()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    @property
    def page(self) -> Page:
        if self._page is None:
            raise BrowserError("Browser is not running.")
        return self._page

    @property
    def url(self) -> str:
        return self._page.url if self._page is not None else ""

    async def launch(self) -> None:
        opts = self._options
        logger.info(
            f"Launching {opts.engine} (headless={opts.headless}, deployment={opts.deployment}, "
            f"proxy={'yes' if opts.proxy else 'no'})"
        )
        try:
            if opts.engine == "camoufox":
                kwargs: dict[str, Any] = {
                    "headless": opts.headless,
                    "humanize": True,
                    "i_know_what_im_doing": True,
                }
                if opts.proxy:
                    kwargs["proxy"] = opts.proxy
                    kwargs["geoip"] = True
                if opts.executable_path:
                    kwargs["executable_path"] = opts.executable_path
                self._camoufox = AsyncCamoufox(**kwargs)
                self._browser = await self._camoufox.__aenter__()
                self._context = await self._browser.new_context(
                    viewport={"width": 1366, "height": 768},
                )
            else:
                self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(
                    headless=opts.headless,
                    args=opts.args,
                    executable_path=opts.executable_path,
                    proxy=opts.proxy,
                )
                self._context = await self._browser.new_context(
                    user_agent=opts.user_agent,
                    ignore_https_errors=opts.ignore_https_errors,
                )
            self._page = await self._context.new_page()
            self._page.set_default_timeout(self._settings.timeout_ms)
        except PlaywrightError as e:
            raise BrowserError(f"Failed to launch browser: {e}") from e

    async def goto(self, url: str, timeout: float) -> None:
        """Load ``url`` until DOMContentLoaded.

        Raises:
            NavigationError: On network failure or timeout.
        """
        try:
            await self.page.goto(url, wait_until="domcontentloaded", timeout=timeout * 1000)
        except PlaywrightError as e:
            raise NavigationError(f"Failed to load {url}: {e}") from e

    async def get_attribute(self, selector: str, name: str) -> Optional[str]:
        """Return ``name`` of the first element matching ``selector``, or None."""
        try:
            element = await self.page.query_selector(selector)
            if element is None:
                return None
            return await element.get_attribute(name)
        except PlaywrightError as e:
            raise BrowserError(f"Failed to query {selector}: {e}") from e

    async def type(self, selector: str, text: str) -> None:
        try:
            await self.page.type(selector, text)
        except PlaywrightError as e:
            raise BrowserError(f"Failed to type into {selector}: {e}") from e

    async def evaluate(self, expression: str, arg: Any = None, timeout: float = 15.0) -> Any:
        """Evaluate ``expression`` in the page and return its (JSON) result."""
        try:
            return await asyncio.wait_for(self.page.evaluate(expression, arg), timeout)
        except asyncio.TimeoutError as e:
            raise BrowserError(f"Page script did not finish within {timeout}s") from e
        except PlaywrightError as e:
            raise BrowserError(f"Page script failed: {e}") from e

    async def click_and_wait_for_navigation(self, selector: str, timeout: float) -> bool:
        """Click ``selector`` and wait for the resulting navigation to settle.

        Returns False when no navigation completed in time; some logins finish
        in-page, so that is not an error.
        """
        try:
            async with self.page.expect_navigation(wait_until="networkidle", timeout=timeout * 1000):
                await self.page.click(selector)
            return True
        except PlaywrightTimeoutError:
            logger.warning(f"Navigation after clicking {selector} timed out, current URL: {self.url}")
            return False
        except PlaywrightError as e:
            raise BrowserError(f"Failed to submit via {selector}: {e}") from e

    async def cookies(self) -> list[dict]:
        if self._context is None:
            raise BrowserError("Browser is not running.")
        try:
            return await self._context.cookies()
        except PlaywrightError as e:
            raise BrowserError(f"Failed to read cookies: {e}") from e

    async def screenshot(self, directory: str, prefix: str = "washassist-debug") -> Path:
        path = Path(directory)
        path.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        target = path / f"{prefix}-{stamp}.png"
        try:
            await self.page.screenshot(path=str(target), full_page=True)
        except PlaywrightError as e:
            raise BrowserError(f"Failed to take screenshot: {e}") from e
        return target

    async def close(self) -> None:
        """Close the page context and browser process."""
        if self._closed:
            return
        self._closed = True

        try:
            if self._context:
                await self._context.close()
        except Exception as e:
            logger.warning(f"Error closing context: {e}")
        finally:
            self._context = None
            self._page = None

        try:
            if self._camoufox:
                await self._camoufox.__aexit__(None, None, None)
            elif self._browser:
                await self._browser.close()
        except Exception as e:
            logger.warning(f"Error closing browser: {e}")
        finally:
            self._camoufox = None
            self._browser = None

        try:
            if self._playwright:
                await self._playwright.stop()
        except Exception as e:
            logger.warning(f"Error stopping playwright: {e}")
        finally:
            self._playwright = None

        logger.info("Browser closed.")
