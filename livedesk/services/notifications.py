"""Outbound notification dispatch.

Delivery is a JSON POST to a single webhook that fans out to the
email/WhatsApp providers. ``notify()`` never blocks the caller: the POST
runs as a background task with 3 retries + exponential backoff, and a
delivery that still fails is logged and dropped.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

import httpx
import structlog

from livedesk.core.exceptions import ExternalServiceError

logger = structlog.get_logger(__name__)

_BACKOFF_SECONDS = [1, 2, 4]


class Notifier:
    """Fire-and-forget webhook notifications."""

    def __init__(
        self,
        webhook_url: str | None,
        timeout_seconds: float = 10.0,
        max_retries: int = 3,
    ) -> None:
        self._webhook_url = webhook_url or None
        self._timeout_seconds = timeout_seconds
        self._max_retries = max_retries
        self._pending: set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return self._webhook_url is not None

    def notify(self, event: str, payload: dict[str, Any]) -> None:
        """Schedule delivery of ``event`` and return immediately."""
        if not self.enabled:
            logger.debug("notification_skipped", notification_event=event)
            return
        task = asyncio.create_task(self._deliver_safely(event, payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def send(self, event: str, payload: dict[str, Any]) -> None:
        """Deliver one notification, retrying with backoff.

        Raises ExternalServiceError once every attempt has failed.
        """
        body = {
            "event": event,
            "payload": payload,
            "sent_at": datetime.now(timezone.utc).isoformat(),
        }
        for attempt in range(self._max_retries):
            try:
                async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                    response = await client.post(
                        self._webhook_url,
                        json=body,
                        headers={"Content-Type": "application/json"},
                    )
                    response.raise_for_status()

                logger.info(
                    "notification_sent",
                    notification_event=event,
                    status_code=response.status_code,
                    attempt=attempt + 1,
                )
                return

            except httpx.HTTPError as e:
                logger.warning(
                    "notification_attempt_failed",
                    notification_event=event,
                    attempt=attempt + 1,
                    error=str(e),
                )
                if attempt < self._max_retries - 1:
                    await asyncio.sleep(
                        _BACKOFF_SECONDS[min(attempt, len(_BACKOFF_SECONDS) - 1)]
                    )

        raise ExternalServiceError(
            f"Notification '{event}' failed after {self._max_retries} attempts"
        )

    async def _deliver_safely(self, event: str, payload: dict[str, Any]) -> None:
        """Background task body. Exceptions never reach the event loop."""
        try:
            await self.send(event, payload)
        except ExternalServiceError as e:
            logger.error(
                "notification_all_retries_failed",
                notification_event=event,
                webhook_url=self._webhook_url,
                error=e.message,
            )
        except Exception as e:
            logger.error("notification_task_error", notification_event=event, error=str(e))

    async def aclose(self) -> None:
        """Wait briefly for in-flight deliveries, then cancel the rest."""
        if not self._pending:
            return
        pending = list(self._pending)
        _, still_running = await asyncio.wait(pending, timeout=self._timeout_seconds)
        for task in still_running:
            task.cancel()
        logger.info("notifier_closed", cancelled=len(still_running))


class PendingNotifications:
    """Notifications raised inside one unit of work.

    Handed to the notifier once the transaction commits. A rolled-back unit
    discards them, so no webhook ever describes a ticket that was not stored.
    """

    def __init__(self, notifier: Notifier) -> None:
        self._notifier = notifier
        self._pending: list[tuple[str, dict[str, Any]]] = []

    def notify(self, event: str, payload: dict[str, Any]) -> None:
        self._pending.append((event, payload))

    def release(self) -> None:
        pending, self._pending = self._pending, []
        for event, payload in pending:
            self._notifier.notify(event, payload)

    def discard(self) -> None:
        self._pending.clear()
