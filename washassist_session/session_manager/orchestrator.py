"""WashAssist login flow: CAPTCHA, credentials, second factor, cookie harvest.

One ``LoginOrchestrator`` is built at startup and shared by all requests. Each
call to :meth:`LoginOrchestrator.run` opens its own browser, walks the login
states and returns exactly one ``SessionResult``. The browser is closed on
every exit path.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from typing import Any, AsyncContextManager, Awaitable, Callable, Optional

from ..config import Settings
from ..constants import (
    CAPTCHA_SELECTORS,
    INJECT_TOKEN_JS,
    PAGE_STATE_JS,
    READ_TOKEN_FIELDS_JS,
    SELECTORS,
    TWO_FACTOR_PROBE_JS,
    TWO_FACTOR_PROBE_PATH,
)
from ..models.session import CaptchaChallenge, CookieSet, SessionRequest, SessionResult
from .browser import BrowserDriver
from .captcha import AntiCaptchaClient
from .cookies import CookieHarvester
from .errors import (
    BrowserError,
    CaptchaInjectionError,
    CaptchaTimeoutError,
    ChallengeNotFoundError,
    CredentialError,
    ErrorKind,
    SessionError,
    TwoFactorRequiredError,
)

logger = logging.getLogger(__name__)

BrowserFactory = Callable[[], AsyncContextManager[BrowserDriver]]


class LoginState(str, enum.Enum):
    INIT = "init"
    NAVIGATED = "navigated"
    CHALLENGE_EXTRACTED = "challenge_extracted"
    CHALLENGE_SOLVING = "challenge_solving"
    TOKEN_INJECTED = "token_injected"
    FORM_SUBMITTED = "form_submitted"
    POST_LOGIN_CHECK = "post_login_check"
    COOKIES_HARVESTED = "cookies_harvested"
    DONE = "done"
    FAILED = "failed"


class LoginAttempt:
    """Per-request progress through the login states."""

    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        self.state = LoginState.INIT
        self.started = time.monotonic()

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)

    def advance(self, state: LoginState) -> None:
        logger.info(f"[LOGIN] {self.request_id}: {self.state.value} -> {state.value} ({self.elapsed_ms}ms)")
        self.state = state


class ClickSubmission:
    """Submit the login form by clicking its button and awaiting navigation."""

    def __init__(self, selector: str, navigation_timeout: float) -> None:
        self.selector = selector
        self.navigation_timeout = navigation_timeout

    async def submit(self, driver: BrowserDriver) -> bool:
        return await driver.click_and_wait_for_navigation(self.selector, self.navigation_timeout)


class LoginOrchestrator:
    def __init__(
        self,
        settings: Settings,
        solver: AntiCaptchaClient,
        harvester: CookieHarvester,
        browser_factory: Optional[BrowserFactory] = None,
        submission: Optional[ClickSubmission] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.solver = solver
        self.harvester = harvester
        self.browser_factory = browser_factory or (lambda: BrowserDriver(settings.browser))
        self.submission = submission or ClickSubmission(
            SELECTORS["login_submit"], settings.login.navigation_timeout
        )
        self._sleep = sleep

    async def run(self, request: SessionRequest) -> SessionResult:
        """Log in for ``request`` and return its terminal result. Never raises."""
        attempt = LoginAttempt(request.correlation_id)
        logger.info(f"[LOGIN] {attempt.request_id}: starting login for user {request.identity}")

        try:
            async with self.browser_factory() as driver:
                cookie_set = await self._login(driver, request, attempt)
        except SessionError as e:
            failed_in = attempt.state
            attempt.advance(LoginState.FAILED)
            logger.error(f"[LOGIN] {attempt.request_id}: failed in {failed_in.value}: {e}")
            return SessionResult.failed(e.kind, str(e), failed_in.value)
        except Exception as e:
            failed_in = attempt.state
            attempt.advance(LoginState.FAILED)
            logger.exception(f"[LOGIN] {attempt.request_id}: unexpected error in {failed_in.value}")
            return SessionResult.failed(ErrorKind.INTERNAL, str(e) or type(e).__name__, failed_in.value)

        result = SessionResult.succeeded(cookie_set, self.settings.login.session_ttl_minutes)
        attempt.advance(LoginState.DONE)
        logger.info(
            f"[LOGIN] {attempt.request_id}: completed in {attempt.elapsed_ms}ms, "
            f"{len(cookie_set.cookies)} cookies, expires {result.expires}"
        )
        return result

    async def _login(self, driver: BrowserDriver, request: SessionRequest, attempt: LoginAttempt) -> CookieSet:
        login = self.settings.login

        await driver.goto(login.entry_url, login.navigation_timeout)
        attempt.advance(LoginState.NAVIGATED)

        site_key = await self.extract_site_key(driver)
        logger.info(f"[LOGIN] {attempt.request_id}: found reCAPTCHA sitekey {site_key}")
        attempt.advance(LoginState.CHALLENGE_EXTRACTED)

        challenge = await self._solve_while_filling(driver, request, site_key, attempt)

        if challenge.is_expired():
            raise CaptchaTimeoutError("Captcha token expired before it could be injected")
        await self.inject_token(driver, challenge)
        attempt.advance(LoginState.TOKEN_INJECTED)

        if challenge.is_expired():
            raise CaptchaTimeoutError("Captcha token expired before the form could be submitted")
        navigated = await self.submission.submit(driver)
        if not navigated:
            logger.warning(f"[LOGIN] {attempt.request_id}: no navigation after submit, continuing at {driver.url}")
        attempt.advance(LoginState.FORM_SUBMITTED)

        await self._sleep(login.settle_delay)
        await self._capture_debug(driver, attempt)

        await self.check_post_login(driver)
        attempt.advance(LoginState.POST_LOGIN_CHECK)

        cookie_set = await self.harvester.harvest(driver)
        attempt.advance(LoginState.COOKIES_HARVESTED)
        return cookie_set

    async def extract_site_key(self, driver: BrowserDriver) -> str:
        for selector in CAPTCHA_SELECTORS:
            site_key = await driver.get_attribute(selector, "data-sitekey")
            if site_key:
                return site_key
            logger.debug(f"[LOGIN] No sitekey on {selector}")
        raise ChallengeNotFoundError("Could not extract reCAPTCHA sitekey from page")

    async def _solve_while_filling(
        self, driver: BrowserDriver, request: SessionRequest, site_key: str, attempt: LoginAttempt
    ) -> CaptchaChallenge:
        """Type the credentials while the solver works on the challenge."""
        solving = asyncio.create_task(self.solver.solve(site_key))
        attempt.advance(LoginState.CHALLENGE_SOLVING)
        try:
            await driver.type(SELECTORS["login_user"], request.identity)
            await driver.type(SELECTORS["login_password"], request.secret.get_secret_value())
            await driver.type(SELECTORS["login_code"], request.tenant_code)
            logger.info(f"[LOGIN] {attempt.request_id}: form filled, waiting for captcha token")
            return await solving
        finally:
            if not solving.done():
                solving.cancel()
                await asyncio.wait([solving])
            if not solving.cancelled():
                solving.exception()  # marks it retrieved

    async def inject_token(self, driver: BrowserDriver, challenge: CaptchaChallenge) -> None:
        """Write the token into every response field, then read them back.

        Raises:
            CaptchaInjectionError: No response field exists or one of them does
                not hold the token after injection.
        """
        field = SELECTORS["captcha_response"]
        timeout = self.settings.login.evaluate_timeout

        written = await driver.evaluate(
            INJECT_TOKEN_JS, [challenge.token, field, SELECTORS["captcha_container"]], timeout
        )
        if not written:
            raise CaptchaInjectionError("Failed to inject captcha token into page")

        await self._sleep(self.settings.login.post_injection_delay)

        values = await driver.evaluate(READ_TOKEN_FIELDS_JS, field, timeout) or []
        logger.info(f"[LOGIN] Token injected into {written} field(s), read back {len(values)}")
        if not values or any(value != challenge.token for value in values):
            raise CaptchaInjectionError("Captcha token was not properly set in the form")

    async def check_post_login(self, driver: BrowserDriver) -> None:
        """Stop on an enabled second factor or a rejected login.

        The second-factor probe runs first so that an account which did log in
        is never reported as a credential failure.
        """
        timeout = self.settings.login.evaluate_timeout
        two_factor = await driver.evaluate(TWO_FACTOR_PROBE_JS, TWO_FACTOR_PROBE_PATH, timeout)
        if two_factor:
            raise TwoFactorRequiredError("2FA enabled - abort / ask user to disable")

        state = await driver.evaluate(
            PAGE_STATE_JS, [SELECTORS["login_user"], SELECTORS["login_errors"]], timeout
        ) or {}
        logger.info(
            f"[LOGIN] Page after submit: url={state.get('url')} title={state.get('title')!r} "
            f"login_form={state.get('hasLoginForm')} errors={state.get('hasErrorMessages')}"
        )
        if state.get("hasLoginForm") and state.get("hasErrorMessages"):
            raise CredentialError("Invalid credentials")

    async def _capture_debug(self, driver: BrowserDriver, attempt: LoginAttempt) -> None:
        directory = self.settings.login.debug_screenshot_dir
        if not directory:
            return
        try:
            path = await driver.screenshot(directory)
            logger.info(f"[LOGIN] {attempt.request_id}: screenshot saved to {path}")
        except (BrowserError, OSError) as e:
            logger.warning(f"[LOGIN] {attempt.request_id}: failed to take screenshot: {e}")
