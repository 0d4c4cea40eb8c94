"""Best-effort event sinks.

The engine hands every recorded event to a sink *after* committing the
state transition.  Sinks must never raise back into the engine; the
engine also guards each call, so a broken sink can only lose
notifications, never block or roll back a transition.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Protocol

import httpx

from pledge_dispute_engine.config import settings
from pledge_dispute_engine.schemas import DisputeEvent

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Dispute-Signature"
EVENT_HEADER = "X-Dispute-Event"


class EventSink(Protocol):
    def emit(self, event: DisputeEvent) -> None: ...


class LoggingEventSink:
    """Default sink: writes each event to the log and nothing else."""

    def emit(self, event: DisputeEvent) -> None:
        logger.debug(
            "Dispute event %s on %s by %s: %s",
            event.type.value,
            event.dispute_id,
            event.actor,
            event.description,
        )


def sign_payload(body: bytes, secret: str) -> str:
    """HMAC-SHA256 signature in ``sha256=<hex>`` form."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


class WebhookEventSink:
    """POST each event as JSON to a webhook from a background thread pool."""

    def __init__(
        self,
        url: str,
        secret: str = "",
        timeout: float = 5.0,
        max_workers: int = 2,
    ) -> None:
        self._url = url
        self._secret = secret
        self._timeout = timeout
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="dispute-webhook"
        )

    def emit(self, event: DisputeEvent) -> None:
        self._executor.submit(self._deliver, event)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _deliver(self, event: DisputeEvent) -> None:
        body = json.dumps(event.model_dump(mode="json"), separators=(",", ":")).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            EVENT_HEADER: event.type.value,
        }
        if self._secret:
            headers[SIGNATURE_HEADER] = sign_payload(body, self._secret)

        try:
            with httpx.Client(timeout=self._timeout) as client:
                resp = client.post(self._url, content=body, headers=headers)
            if not resp.is_success:
                logger.warning(
                    "Event webhook returned %d for %s on %s",
                    resp.status_code,
                    event.type.value,
                    event.dispute_id,
                )
        except httpx.HTTPError as exc:
            logger.warning(
                "Event webhook delivery failed for %s on %s: %s",
                event.type.value,
                event.dispute_id,
                exc,
            )


def sink_from_settings() -> EventSink:
    if not settings.notify_webhook_url:
        return LoggingEventSink()
    return WebhookEventSink(
        settings.notify_webhook_url,
        secret=settings.notify_webhook_secret,
        timeout=settings.notify_timeout_seconds,
    )
