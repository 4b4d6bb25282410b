"""Shared fixtures: settings with tiny delays and an in-memory browser."""

from __future__ import annotations

from typing import Any, Optional

import pytest

from washassist_session.config import HarvestSettings, LoginSettings, Settings, SolverSettings
from washassist_session.constants import (
    INJECT_TOKEN_JS,
    PAGE_STATE_JS,
    READ_TOKEN_FIELDS_JS,
    REQUIRED_COOKIES,
    TWO_FACTOR_PROBE_JS,
)
from washassist_session.models.session import CaptchaChallenge, SessionRequest

SITE_KEY = "6LdTestSiteKey000000000000000000000000000"
TOKEN = "03AGdBq2-solved-token"


def full_cookies() -> list[dict]:
    return [
        {"name": "ASP.NET_SessionId", "value": "sess123", "domain": "lb.washassist.com"},
        {"name": ".micrologicAUTH", "value": "auth456", "domain": "lb.washassist.com"},
        {"name": "r_ssoCookie", "value": "sso789", "domain": "lb.washassist.com"},
        {"name": "_ga", "value": "GA1.2.3", "domain": ".washassist.com"},
    ]


class FakeDriver:
    """Stands in for BrowserDriver; records what the orchestrator does to it."""

    def __init__(
        self,
        site_key: Optional[str] = SITE_KEY,
        cookie_readings: Optional[list[list[dict]]] = None,
        two_factor: bool = False,
        login_rejected: bool = False,
        navigates: bool = True,
        fail_at: Optional[str] = None,
    ):
        self.site_key = site_key
        self.cookie_readings = cookie_readings if cookie_readings is not None else [full_cookies()]
        self.two_factor = two_factor
        self.login_rejected = login_rejected
        self.navigates = navigates
        self.fail_at = fail_at
        self.typed: dict[str, str] = {}
        self.token_fields: list[str] = [""]
        self.close_count = 0
        self.cookie_reads = 0
        self.calls: list[str] = []
        self.url = "https://lb.washassist.com/"

    def _maybe_fail(self, step: str) -> None:
        self.calls.append(step)
        if self.fail_at == step:
            raise RuntimeError(f"boom at {step}")

    async def __aenter__(self):
        try:
            self._maybe_fail("launch")
        except Exception:
            await self.close()
            raise
        return self

    async def __aexit__(self, *args):
        await self.close()

    async def close(self):
        self.close_count += 1

    async def goto(self, url: str, timeout: float) -> None:
        self._maybe_fail("goto")

    async def get_attribute(self, selector: str, name: str) -> Optional[str]:
        self._maybe_fail("get_attribute")
        if selector == "[data-sitekey]":
            return self.site_key
        return None

    async def type(self, selector: str, text: str) -> None:
        self._maybe_fail("type")
        self.typed[selector] = text

    async def evaluate(self, expression: str, arg: Any = None, timeout: float = 15.0) -> Any:
        if expression == INJECT_TOKEN_JS:
            self._maybe_fail("inject")
            token = arg[0]
            self.token_fields = [token for _ in self.token_fields]
            return len(self.token_fields)
        if expression == READ_TOKEN_FIELDS_JS:
            self._maybe_fail("read_token")
            return list(self.token_fields)
        if expression == TWO_FACTOR_PROBE_JS:
            self._maybe_fail("two_factor")
            return self.two_factor
        if expression == PAGE_STATE_JS:
            self._maybe_fail("page_state")
            return {
                "url": self.url,
                "title": "WashAssist",
                "hasLoginForm": self.login_rejected,
                "hasErrorMessages": self.login_rejected,
            }
        raise AssertionError(f"unexpected script: {expression[:40]}")

    async def click_and_wait_for_navigation(self, selector: str, timeout: float) -> bool:
        self._maybe_fail("submit")
        return self.navigates

    async def cookies(self) -> list[dict]:
        self._maybe_fail("cookies")
        reading = self.cookie_readings[min(self.cookie_reads, len(self.cookie_readings) - 1)]
        self.cookie_reads += 1
        return reading


class FakeSolver:
    def __init__(self, token: str = TOKEN, error: Optional[Exception] = None, validity: float = 120.0):
        self.token = token
        self.error = error
        self.validity = validity
        self.site_keys: list[str] = []

    async def solve(self, site_key: str) -> CaptchaChallenge:
        self.site_keys.append(site_key)
        if self.error is not None:
            raise self.error
        challenge = CaptchaChallenge.issue(site_key, self.validity)
        return challenge.model_copy(update={"task_id": "42", "token": self.token})


async def no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def settings() -> Settings:
    return Settings(
        solver=SolverSettings(api_key="test-key", poll_interval=0.01, max_wait=1.0, token_validity=2.0),
        login=LoginSettings(post_injection_delay=0, settle_delay=0),
        harvest=HarvestSettings(required_cookies=REQUIRED_COOKIES, poll_interval=0.01, max_attempts=3),
    )


@pytest.fixture
def session_request() -> SessionRequest:
    return SessionRequest.from_body({"user": "alice", "pass": "s3cret", "code": "ACME"})
