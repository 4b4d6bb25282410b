"""Session Manager HTTP service.

Endpoints:
    POST /session        - Log in and return the session cookies
    POST /session-async  - Queue a login, deliver the result to a webhook
    POST /refresh        - Not implemented (501)
    GET  /health         - Liveness probe
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx
from aiohttp import web
from aiohttp.abc import AbstractAccessLogger
from limits import parse
from limits.aio.storage import MemoryStorage
from limits.aio.strategies import FixedWindowRateLimiter

from ..config import Settings, get_settings
from ..models.session import SessionFailure, SessionRequest, SessionResult, isoformat, utcnow
from .captcha import AntiCaptchaClient
from .cookies import CookieHarvester
from .errors import ValidationError
from .orchestrator import LoginOrchestrator
from .results import failure_response, to_response
from .webhook import WebhookNotifier

logger = logging.getLogger(__name__)

UNGUARDED_PATHS = frozenset({"/health"})


class SessionManager:
    """Owns the shared collaborators and the in-flight async logins."""

    def __init__(
        self,
        settings: Settings,
        orchestrator: Optional[LoginOrchestrator] = None,
        notifier: Optional[WebhookNotifier] = None,
    ):
        self.settings = settings
        self.orchestrator = orchestrator
        self.notifier = notifier
        self._solver_http: httpx.AsyncClient | None = None
        self._webhook_http: httpx.AsyncClient | None = None
        self._tasks: set[asyncio.Task] = set()

    async def setup(self):
        """Build the collaborators that were not injected."""
        if self.orchestrator is None:
            if not self.settings.solver.api_key:
                logger.warning("ANTI_CAPTCHA_KEY is not set; captcha solving will be rejected.")
            self._solver_http = httpx.AsyncClient()
            self.orchestrator = LoginOrchestrator(
                self.settings,
                AntiCaptchaClient(self.settings.solver, self._solver_http),
                CookieHarvester(self.settings.harvest),
            )
        if self.notifier is None:
            self._webhook_http = httpx.AsyncClient(verify=self.settings.webhook.verify_tls)
            self.notifier = WebhookNotifier(self._webhook_http, self.settings.webhook.timeout)

    async def cleanup(self):
        """Cancel queued logins and close HTTP clients."""
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        for client in (self._solver_http, self._webhook_http):
            if client is not None:
                await client.aclose()

    async def create_session(self, request: SessionRequest) -> SessionResult:
        return await self.orchestrator.run(request)

    def submit_async(self, request: SessionRequest) -> asyncio.Task:
        task = asyncio.create_task(self.process_async(request))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def process_async(self, request: SessionRequest) -> None:
        """Run one queued login and report it to the caller's webhook.

        Nothing may escape from here: the task has no awaiting caller.
        """
        request_id = request.correlation_id
        logger.info(f"[ASYNC] {request_id}: starting authentication")
        try:
            result = await self.orchestrator.run(request)
            if result.success:
                logger.info(f"[ASYNC] {request_id}: authentication completed")
            else:
                logger.error(f"[ASYNC] {request_id}: authentication failed: {result.failure.message}")
            await self.notifier.notify(request.callback_address, result.to_webhook_payload(request_id))
        except asyncio.CancelledError:
            logger.warning(f"[ASYNC] {request_id}: cancelled during shutdown")
            raise
        except Exception:
            logger.exception(f"[ASYNC] {request_id}: unexpected error")


class RateLimiter:
    """Fixed one-minute window per client address."""

    def __init__(self, per_minute: int, storage: Optional[MemoryStorage] = None):
        self.per_minute = per_minute
        self.limit = parse(f"{per_minute}/minute") if per_minute > 0 else None
        self._strategy = FixedWindowRateLimiter(storage or MemoryStorage())

    async def allow(self, client: str) -> bool:
        if self.limit is None:
            return True
        return await self._strategy.hit(self.limit, "washassist-session", client)


class AccessLogger(AbstractAccessLogger):
    """Access log that leaves out the health probe."""

    def log(self, request, response, elapsed):
        if request.path in UNGUARDED_PATHS:
            return
        self.logger.info(
            f"{request.remote} \"{request.method} {request.path}\" {response.status} {elapsed * 1000:.0f}ms"
        )


@web.middleware
async def guard_middleware(request: web.Request, handler):
    if request.path in UNGUARDED_PATHS:
        return await handler(request)

    settings: Settings = request.app["settings"]
    api_key = settings.server.api_key
    if api_key and request.headers.get("X-API-Key") != api_key:
        return web.json_response({"error": "Unauthorized"}, status=401)

    limiter: RateLimiter = request.app["rate_limiter"]
    if not await limiter.allow(request.remote or "unknown"):
        return web.json_response({"error": "Too many requests"}, status=429)

    return await handler(request)


# ── HTTP Handlers ────────────────────────────────────────────────────────────


async def _read_json(request: web.Request):
    try:
        return await request.json()
    except ValueError as e:
        raise ValidationError("Invalid JSON body") from e


def _validation_response(error: ValidationError) -> web.Response:
    status, body = failure_response(SessionFailure(kind=error.kind, message=str(error)))
    return web.json_response(body, status=status)


async def handle_session(request: web.Request) -> web.Response:
    mgr: SessionManager = request.app["manager"]
    try:
        session_request = SessionRequest.from_body(await _read_json(request))
    except ValidationError as e:
        return _validation_response(e)

    result = await mgr.create_session(session_request)
    status, body = to_response(result)
    return web.json_response(body, status=status)


async def handle_session_async(request: web.Request) -> web.Response:
    mgr: SessionManager = request.app["manager"]
    try:
        session_request = SessionRequest.from_async_body(await _read_json(request))
    except ValidationError as e:
        return _validation_response(e)

    mgr.submit_async(session_request)
    logger.info(f"[ASYNC] {session_request.correlation_id}: queued")
    return web.json_response(
        {
            "success": True,
            "message": "Authentication request queued",
            "request_id": session_request.correlation_id,
        },
        status=202,
    )


async def handle_refresh(request: web.Request) -> web.Response:
    return web.json_response(
        {"error": "Refresh endpoint not implemented - use /session endpoint"},
        status=501,
    )


async def handle_health(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok", "timestamp": isoformat(utcnow())})


# ── App Factory ──────────────────────────────────────────────────────────────


async def on_startup(app: web.Application):
    mgr: SessionManager = app["manager"]
    await mgr.setup()
    server = mgr.settings.server
    logger.info(f"Session Manager started on {server.host}:{server.port}")


async def on_cleanup(app: web.Application):
    mgr: SessionManager = app["manager"]
    await mgr.cleanup()
    logger.info("Session Manager stopped.")


def create_app(settings: Optional[Settings] = None, manager: Optional[SessionManager] = None) -> web.Application:
    settings = settings or (manager.settings if manager else get_settings())
    app = web.Application(middlewares=[guard_middleware])
    app["settings"] = settings
    app["manager"] = manager or SessionManager(settings)
    app["rate_limiter"] = RateLimiter(settings.server.rate_limit_per_minute)
    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)

    app.router.add_post("/session", handle_session)
    app.router.add_post("/session-async", handle_session_async)
    app.router.add_post("/refresh", handle_refresh)
    app.router.add_get("/health", handle_health)

    return app

