import json

import httpx
import pytest

from washassist_session.session_manager.webhook import WebhookNotifier

URL = "https://caller.example.com/hooks/washassist"


def notifier(handler) -> WebhookNotifier:
    return WebhookNotifier(httpx.AsyncClient(transport=httpx.MockTransport(handler)), timeout=5.0)


@pytest.mark.asyncio
async def test_delivers_payload():
    received = []

    def handler(request):
        received.append((str(request.url), json.loads(request.content)))
        return httpx.Response(200)

    ok = await notifier(handler).notify(URL, {"request_id": "r1", "success": True})

    assert ok is True
    assert received == [(URL, {"request_id": "r1", "success": True})]


@pytest.mark.asyncio
async def test_error_status_is_swallowed():
    ok = await notifier(lambda request: httpx.Response(503)).notify(URL, {"request_id": "r1"})
    assert ok is False


@pytest.mark.asyncio
async def test_connection_error_is_swallowed():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    ok = await notifier(handler).notify(URL, {"request_id": "r1"})
    assert ok is False


@pytest.mark.asyncio
async def test_timeout_is_swallowed():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    ok = await notifier(handler).notify(URL, {"request_id": "r1"})
    assert ok is False


@pytest.mark.asyncio
async def test_configured_timeout_bounds_the_request():
    timeouts = []

    def handler(request):
        timeouts.append(request.extensions["timeout"])
        return httpx.Response(204)

    ok = await notifier(handler).notify(URL, {"request_id": "r1"})

    assert ok is True
    assert timeouts[0]["read"] == 5.0
    assert timeouts[0]["connect"] == 5.0
