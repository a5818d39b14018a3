"""Webhook delivery for matched rules.

POSTs ``{event, rule, firedAt}`` as JSON to the action's URL. One call
to ``deliver`` is one attempt; retry policy lives in the dispatcher.
Any 2xx response within the action's ``timeout_ms`` counts as success.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

import aiohttp

from ..exceptions import DeliveryError, DeliveryHTTPError, DeliveryTimeoutError
from ..rules.models import DeliveryAttempt, utcnow

logger = logging.getLogger("vms-rules")


class WebhookClient:
    """Sends single webhook attempts over a shared aiohttp session."""

    def __init__(self) -> None:
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    @staticmethod
    def build_payload(attempt: DeliveryAttempt, fired_at: datetime | None = None) -> dict:
        rule = attempt.rule
        return {
            "event": attempt.event.model_dump(mode="json", by_alias=True),
            "rule": {
                "id": rule.id,
                "name": rule.name,
                "eventType": rule.event_type,
                "cameraName": rule.camera_name,
            },
            "firedAt": (fired_at or utcnow()).isoformat(),
        }

    async def deliver(self, attempt: DeliveryAttempt) -> int:
        """Perform one POST. Returns the HTTP status, raises DeliveryError."""
        action = attempt.action
        headers = {
            **action.headers,
            "X-Delivery-Id": attempt.id,
            "X-Delivery-Attempt": str(attempt.attempt_number),
        }
        payload = self.build_payload(attempt)
        timeout = aiohttp.ClientTimeout(total=action.timeout_ms / 1000)

        try:
            status = await self._post(action.url, payload, headers, timeout)
        except asyncio.TimeoutError as e:
            raise DeliveryTimeoutError(
                f"Timed out after {action.timeout_ms}ms → {action.url}"
            ) from e
        except aiohttp.ClientError as e:
            raise DeliveryError(f"Transport error → {action.url}: {e}") from e

        if not 200 <= status < 300:
            raise DeliveryHTTPError(status, action.url)
        logger.debug(f"Webhook delivered: {attempt.rule.name} → {action.url}")
        return status

    async def _post(
        self,
        url: str,
        payload: dict,
        headers: dict[str, str],
        timeout: aiohttp.ClientTimeout,
    ) -> int:
        session = self._get_session()
        # 3xx is the target's own answer and is never followed
        async with session.post(
            url, json=payload, headers=headers, timeout=timeout, allow_redirects=False
        ) as resp:
            return resp.status

    async def close(self) -> None:
        """Close the aiohttp session."""
        if self._session:
            await self._session.close()
            self._session = None
