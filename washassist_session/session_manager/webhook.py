"""Best-effort delivery of async results to the caller's webhook."""

from __future__ import annotations

import logging

import httpx

from .errors import WebhookDeliveryError

logger = logging.getLogger(__name__)


class WebhookNotifier:
    """POSTs a JSON payload to a callback URL and never raises.

    There is nobody left to report a failed delivery to, so failures are
    logged and reported through the return value only.
    """

    def __init__(self, client: httpx.AsyncClient, timeout: float) -> None:
        self._client = client
        self._timeout = timeout

    async def _deliver(self, url: str, payload: dict) -> int:
        try:
            response = await self._client.post(url, json=payload, timeout=self._timeout)
        except httpx.HTTPError as e:
            raise WebhookDeliveryError(f"Webhook request failed: {e!r}") from e
        if not response.is_success:
            raise WebhookDeliveryError(f"Webhook call failed with status {response.status_code}")
        return response.status_code

    async def notify(self, url: str, payload: dict) -> bool:
        request_id = payload.get("request_id")
        logger.info(f"[WEBHOOK] Calling {url} for request {request_id}")
        try:
            status = await self._deliver(url, payload)
        except WebhookDeliveryError as e:
            logger.error(f"[WEBHOOK] Delivery to {url} for request {request_id} failed: {e}")
            return False
        except Exception:
            logger.exception(f"[WEBHOOK] Unexpected error delivering request {request_id} to {url}")
            return False

        logger.info(f"[WEBHOOK] Delivered request {request_id} to {url} (status {status})")
        return True
