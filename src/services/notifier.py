"""Webhook notifier: hands payloads to a chat relay over HTTP.

The relay owns presentation (embeds, DMs); this side only POSTs JSON to
``notify_webhook_url`` with ``{recipient_id}`` substituted.
"""

from __future__ import annotations

import logging

import httpx

from src.autoclaim.base import DeliveryResult, Notifier
from src.autoclaim.errors import DeliveryFailure

logger = logging.getLogger("autoclaim.notifier")


class WebhookNotifier(Notifier):
    """POST each payload to a per-recipient relay URL."""

    def __init__(
        self,
        url_template: str,
        token: str = "",
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        """Initialize the notifier.

        Args:
            url_template: URL containing ``{recipient_id}``.
            token:        Optional bearer token for the relay.
            http_client:  Optional pre-configured httpx client (for testing).
            timeout:      Per-delivery timeout in seconds.

        Raises:
            ValueError: If the template has placeholders other than ``{recipient_id}``.
        """
        try:
            url_template.format(recipient_id="")
        except (KeyError, IndexError, ValueError) as exc:
            raise ValueError(
                f"notify_webhook_url may only contain {{recipient_id}}: {exc!r}"
            ) from exc
        self._url_template = url_template
        self._token = token
        self._http_client = http_client
        self._timeout = httpx.Timeout(timeout)

    async def deliver(self, recipient_id: str, payload: dict) -> DeliveryResult:
        try:
            await self._post(recipient_id, payload)
        except DeliveryFailure as exc:
            return DeliveryResult(recipient_id, delivered=False, error=exc.reason)
        return DeliveryResult(recipient_id, delivered=True)

    async def _post(self, recipient_id: str, payload: dict) -> None:
        url = self._url_template.format(recipient_id=recipient_id)
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
        try:
            if self._http_client:
                response = await self._http_client.post(
                    url, json=payload, headers=headers, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise DeliveryFailure(recipient_id, type(exc).__name__) from exc

        if response.status_code >= 400:
            logger.warning("Relay rejected delivery to %s: HTTP %d", recipient_id, response.status_code)
            raise DeliveryFailure(recipient_id, f"HTTP {response.status_code}")


class LoggingNotifier(Notifier):
    """Fallback when no relay is configured: log and report delivered."""

    async def deliver(self, recipient_id: str, payload: dict) -> DeliveryResult:
        logger.info(
            "Notification for %s (%s): no relay configured",
            recipient_id,
            payload.get("kind", payload.get("feed", "?")),
        )
        return DeliveryResult(recipient_id, delivered=True)
