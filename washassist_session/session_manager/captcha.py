"""Anti-Captcha API client for solving the WashAssist reCAPTCHA.

Tasks are created via ``createTask`` and polled via ``getTaskResult``. Polling
is bounded twice: by attempt count and by an absolute wall-clock deadline
that starts before submission, so a token is never handed back once it is too
old to be used on the login form.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

import httpx

from ..config import SolverSettings
from ..models.session import CaptchaChallenge
from .errors import CaptchaTimeoutError, SolverRejectedError, UnexpectedStatusError

logger = logging.getLogger(__name__)

# Anything else coming back from getTaskResult is treated as fatal.
STATUS_READY = "ready"
STATUS_PROCESSING = "processing"


class AntiCaptchaClient:
    """Async client for the Anti-Captcha service.

    Example::

        solver = AntiCaptchaClient(settings.solver, http_client)
        challenge = await solver.solve(site_key)
        challenge.token
    """

    def __init__(
        self,
        settings: SolverSettings,
        client: httpx.AsyncClient,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self._client = client
        self._clock = clock
        self._sleep = sleep

    async def _post(self, method: str, payload: dict, timeout: float) -> dict:
        url = f"{self.settings.base_url.rstrip('/')}/{method}"
        try:
            response = await self._client.post(url, json=payload, timeout=timeout)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as e:
            raise SolverRejectedError(f"Anti-captcha {method} timed out") from e
        except (httpx.HTTPError, ValueError) as e:
            raise SolverRejectedError(f"Anti-captcha {method} request failed: {e}") from e

    async def submit(self, site_key: str) -> str:
        """Create a solving task and return its id.

        Raises:
            SolverRejectedError: If the service reports a non-zero ``errorId``.
        """
        payload = {
            "clientKey": self.settings.api_key,
            "task": {
                "type": self.settings.task_type,
                "websiteURL": self.settings.website_url,
                "websiteKey": site_key,
            },
            "softId": 0,
        }
        data = await self._post("createTask", payload, self.settings.request_timeout)
        if data.get("errorId") != 0:
            raise SolverRejectedError(
                f"Anti-captcha create task error: {data.get('errorCode', 'UNKNOWN')} - "
                f"{data.get('errorDescription', 'No description')}"
            )
        task_id = str(data.get("taskId"))
        logger.info(f"[CAPTCHA] Task created: {task_id}")
        return task_id

    async def poll(self, task_id: str, deadline: float) -> str:
        """Wait for ``task_id`` to be solved and return the token.

        Args:
            task_id: Id returned by :meth:`submit`.
            deadline: Absolute time on this client's clock after which no token
                may be returned.

        Raises:
            CaptchaTimeoutError: Deadline reached or attempts exhausted.
            UnexpectedStatusError: The service returned an unknown status.
            SolverRejectedError: The service returned a non-zero ``errorId``.
        """
        started = self._clock()
        interval = self.settings.poll_interval

        for attempt in range(1, self.settings.max_attempts + 1):
            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            await self._sleep(min(interval, remaining))

            remaining = deadline - self._clock()
            if remaining <= 0:
                break

            data = await self._post(
                "getTaskResult",
                {"clientKey": self.settings.api_key, "taskId": task_id},
                min(self.settings.request_timeout, remaining),
            )
            if data.get("errorId") != 0:
                raise SolverRejectedError(
                    f"Anti-captcha get result error: {data.get('errorCode', 'UNKNOWN')} - "
                    f"{data.get('errorDescription', 'No description')}"
                )

            status = data.get("status")
            elapsed = self._clock() - started
            if status == STATUS_READY:
                if self._clock() >= deadline:
                    break
                token = (data.get("solution") or {}).get("gRecaptchaResponse")
                if not token:
                    raise UnexpectedStatusError("Anti-captcha returned ready without a token")
                logger.info(f"[CAPTCHA] Task {task_id} solved in {elapsed:.1f}s ({attempt} attempts)")
                return token
            if status == STATUS_PROCESSING:
                logger.debug(f"[CAPTCHA] Task {task_id} still processing (attempt {attempt}, {elapsed:.1f}s)")
                continue
            raise UnexpectedStatusError(f"Unexpected captcha status: {status}")
        else:
            elapsed = self._clock() - started
            raise CaptchaTimeoutError(
                f"Captcha timeout after {self.settings.max_attempts} attempts ({elapsed * 1000:.0f}ms)"
            )

        elapsed = self._clock() - started
        raise CaptchaTimeoutError(f"Captcha timeout after {elapsed * 1000:.0f}ms - token would expire")

    async def solve(self, site_key: str) -> CaptchaChallenge:
        """Submit ``site_key`` and wait for the token.

        The wall-clock budget starts here, before submission, so time spent
        creating the task counts against it.
        """
        challenge = CaptchaChallenge.issue(site_key, self.settings.token_validity)
        deadline = self._clock() + self.settings.max_wait

        task_id = await self.submit(site_key)
        token = await self.poll(task_id, deadline)
        return challenge.model_copy(update={"task_id": task_id, "token": token})
