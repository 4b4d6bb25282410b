"""Anti-Captcha client: task creation, polling, and the wall-clock budget."""

import json

import httpx
import pytest

from washassist_session.config import SolverSettings
from washassist_session.session_manager.captcha import AntiCaptchaClient
from washassist_session.session_manager.errors import (
    CaptchaTimeoutError,
    SolverRejectedError,
    UnexpectedStatusError,
)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += seconds


def make_client(handler, clock, **overrides) -> AntiCaptchaClient:
    values = {"api_key": "key", "poll_interval": 3.0, "max_attempts": 20, "max_wait": 90.0}
    settings = SolverSettings(**{**values, **overrides})
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AntiCaptchaClient(settings, http, clock=clock, sleep=clock.sleep)


def script(responses, clock=None, latency=0.0):
    """Handler returning ``responses`` in order for getTaskResult calls."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        calls.append((request.url.path, body))
        if clock is not None:
            clock.now += latency
        if request.url.path == "/createTask":
            return httpx.Response(200, json={"errorId": 0, "taskId": 7})
        polls = [c for c in calls if c[0] == "/getTaskResult"]
        return httpx.Response(200, json=responses[min(len(polls) - 1, len(responses) - 1)])

    return handler, calls


class TestSubmit:
    @pytest.mark.asyncio
    async def test_submit_sends_task_and_returns_id(self):
        clock = FakeClock()
        handler, calls = script([])
        client = make_client(handler, clock)

        task_id = await client.submit("site-key")

        assert task_id == "7"
        path, body = calls[0]
        assert path == "/createTask"
        assert body["clientKey"] == "key"
        assert body["softId"] == 0
        assert body["task"] == {
            "type": "NoCaptchaTaskProxyless",
            "websiteURL": "https://lb.washassist.com/Home/Login",
            "websiteKey": "site-key",
        }

    @pytest.mark.asyncio
    async def test_submit_non_zero_error_is_rejected(self):
        clock = FakeClock()

        def handler(request):
            return httpx.Response(200, json={
                "errorId": 1, "errorCode": "ERROR_KEY_DOES_NOT_EXIST", "errorDescription": "bad key",
            })

        client = make_client(handler, clock)
        with pytest.raises(SolverRejectedError, match="ERROR_KEY_DOES_NOT_EXIST"):
            await client.submit("site-key")

    @pytest.mark.asyncio
    async def test_transport_failure_is_rejected(self):
        clock = FakeClock()

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = make_client(handler, clock)
        with pytest.raises(SolverRejectedError):
            await client.submit("site-key")


class TestPoll:
    @pytest.mark.asyncio
    async def test_returns_token_when_ready(self):
        clock = FakeClock()
        handler, calls = script([
            {"errorId": 0, "status": "processing"},
            {"errorId": 0, "status": "ready", "solution": {"gRecaptchaResponse": "tok"}},
        ])
        client = make_client(handler, clock)

        token = await client.poll("7", deadline=clock.now + 90)

        assert token == "tok"
        assert [c[0] for c in calls] == ["/getTaskResult", "/getTaskResult"]
        assert calls[0][1] == {"clientKey": "key", "taskId": "7"}

    @pytest.mark.asyncio
    async def test_unknown_status_is_fatal(self):
        clock = FakeClock()
        handler, calls = script([{"errorId": 0, "status": "failed"}])
        client = make_client(handler, clock)

        with pytest.raises(UnexpectedStatusError, match="failed"):
            await client.poll("7", deadline=clock.now + 90)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_error_id_while_polling_is_rejected(self):
        clock = FakeClock()
        handler, _ = script([{"errorId": 12, "errorCode": "ERROR_CAPTCHA_UNSOLVABLE"}])
        client = make_client(handler, clock)

        with pytest.raises(SolverRejectedError, match="ERROR_CAPTCHA_UNSOLVABLE"):
            await client.poll("7", deadline=clock.now + 90)

    @pytest.mark.asyncio
    async def test_attempts_exhausted(self):
        clock = FakeClock()
        handler, calls = script([{"errorId": 0, "status": "processing"}])
        client = make_client(handler, clock, max_attempts=4)

        with pytest.raises(CaptchaTimeoutError, match="4 attempts"):
            await client.poll("7", deadline=clock.now + 90)
        assert len(calls) == 4

    @pytest.mark.asyncio
    async def test_never_returns_token_after_deadline(self):
        clock = FakeClock()
        # The call takes 10s upstream, so the answer lands after the deadline.
        handler, calls = script(
            [{"errorId": 0, "status": "ready", "solution": {"gRecaptchaResponse": "late"}}],
            clock=clock,
            latency=10.0,
        )
        client = make_client(handler, clock)
        deadline = clock.now + 12

        with pytest.raises(CaptchaTimeoutError):
            await client.poll("7", deadline=deadline)
        assert clock.now >= deadline

    @pytest.mark.asyncio
    async def test_budget_includes_time_spent_before_polling(self):
        clock = FakeClock()
        handler, calls = script([{"errorId": 0, "status": "processing"}])
        client = make_client(handler, clock)
        deadline = clock.now + 90
        clock.now += 88  # submission latency already consumed

        with pytest.raises(CaptchaTimeoutError, match="token would expire"):
            await client.poll("7", deadline=deadline)
        assert len(calls) == 0


class TestSolve:
    @pytest.mark.asyncio
    async def test_solve_returns_challenge_with_token(self):
        clock = FakeClock()
        handler, _ = script([{"errorId": 0, "status": "ready", "solution": {"gRecaptchaResponse": "tok"}}])
        client = make_client(handler, clock)

        challenge = await client.solve("site-key")

        assert challenge.site_key == "site-key"
        assert challenge.task_id == "7"
        assert challenge.token == "tok"
        assert (challenge.valid_until - challenge.issued_at).total_seconds() == 120
        assert not challenge.is_expired()

    @pytest.mark.asyncio
    async def test_solve_times_out_when_never_ready(self):
        clock = FakeClock()
        handler, calls = script([{"errorId": 0, "status": "processing"}], clock=clock, latency=1.0)
        client = make_client(handler, clock, max_attempts=100)

        with pytest.raises(CaptchaTimeoutError):
            await client.solve("site-key")
        # 90s budget at ~4s per round trip.
        assert len(calls) < 30
