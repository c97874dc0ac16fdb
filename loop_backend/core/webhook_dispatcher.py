"""
Outbound merchant webhook delivery.

Each call to :meth:`WebhookDispatcher.deliver` makes exactly one signed POST
and persists the outcome on the WebhookEvent row:

- 2xx: ``delivered``, ``delivered_at`` stamped, no retry time
- other HTTP status: ``pending`` with ``next_retry_at`` from the backoff
- transport error / timeout: ``pending`` with a retry time, or ``failed``
  once the attempt number reaches ``webhook_max_attempts``

Only the transport-error path is capped. A merchant that keeps answering
with non-2xx statuses is rescheduled indefinitely (with the delay capped at
24 hours). Re-invoking the dispatcher when ``next_retry_at`` comes due is
the caller's job.
"""
import asyncio
import hashlib
import hmac
import json
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import httpx
import structlog
from pydantic import BaseModel, Field
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from loop_backend.config import Settings, get_settings
from loop_backend.core.webhook_events import STATUS_DELIVERED, STATUS_FAILED, STATUS_PENDING
from loop_backend.database.models import WebhookEvent, as_uuid
from loop_backend.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

BASE_RETRY_DELAY_MS = 60 * 1000  # 1 minute
MAX_RETRY_DELAY_MS = 24 * 60 * 60 * 1000  # 24 hours
SIGNATURE_VERSION = "v1"


class DeliveryResult(BaseModel):
    """Outcome of a single delivery attempt."""

    success: bool = Field(..., description="Whether the merchant answered with a 2xx")
    status_code: Optional[int] = Field(
        default=None, description="HTTP status, absent on transport errors"
    )
    attempts: int = Field(..., description="Attempt number of this delivery")
    delivered_at: Optional[datetime] = Field(default=None, description="Delivery time")
    error_message: Optional[str] = Field(default=None, description="Failure description")


def backoff_delay(attempt: int) -> int:
    """
    Delay before the next attempt, in milliseconds.

    ``min(1 minute * 2 ** (attempt - 1), 24 hours)``; no jitter.

    Args:
        attempt: Attempt number that just failed (1-based)

    Returns:
        int: Delay in milliseconds

    Raises:
        ValueError: If attempt is less than 1
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    # Past 2**11 minutes the cap always wins; avoid building huge ints
    exponent = min(attempt - 1, 32)
    return min(BASE_RETRY_DELAY_MS * 2**exponent, MAX_RETRY_DELAY_MS)


def serialize_payload(payload: Dict[str, Any]) -> str:
    """Serialize a payload to the compact JSON body that gets signed and sent."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


def sign_payload(secret: str, timestamp: str, body: str) -> str:
    """
    Compute the signature header value for a webhook body.

    Args:
        secret: Merchant webhook secret
        timestamp: Millisecond epoch timestamp sent in the timestamp header
        body: Serialized JSON body

    Returns:
        str: ``v1=<hex hmac-sha256>`` over ``"{timestamp}.{body}"``
    """
    digest = hmac.new(
        secret.encode("utf-8"),
        f"{timestamp}.{body}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return f"{SIGNATURE_VERSION}={digest}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WebhookDispatcher:
    """
    Signs, sends and records merchant webhook deliveries.

    The HTTP client and clock are injectable so the dispatcher can be
    exercised without a network or a wall clock.
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize dispatcher.

        Args:
            http_client: Optional shared HTTP client (a short-lived client is
                opened per delivery if not provided)
            settings: Optional settings (uses the cached settings if not provided)
            clock: Optional callable returning the current UTC time
        """
        self.settings = settings or get_settings()
        self.http_client = http_client
        self.clock = clock or _utcnow
        self.timeout = httpx.Timeout(self.settings.webhook_timeout_seconds)

        prefix = self.settings.webhook_header_prefix
        self.event_id_header = f"{prefix}-Event-Id"
        self.timestamp_header = f"{prefix}-Timestamp"
        self.signature_header = f"{prefix}-Signature"

    def build_headers(
        self,
        webhook_event_id: uuid.UUID,
        body: str,
        timestamp_ms: int,
        webhook_secret: Optional[str] = None,
    ) -> Dict[str, str]:
        """
        Build the outbound headers, signing the body when a secret is set.

        Args:
            webhook_event_id: Event identifier
            body: Serialized JSON body
            timestamp_ms: Millisecond epoch timestamp
            webhook_secret: Optional merchant signing secret

        Returns:
            Dict[str, str]: Request headers
        """
        timestamp = str(timestamp_ms)
        headers = {
            "Content-Type": "application/json",
            self.event_id_header: str(webhook_event_id),
            self.timestamp_header: timestamp,
        }
        if webhook_secret:
            headers[self.signature_header] = sign_payload(webhook_secret, timestamp, body)
        return headers

    async def _send(self, url: str, body: str, headers: Dict[str, str]) -> httpx.Response:
        if self.http_client is not None:
            return await self.http_client.post(
                url,
                content=body.encode("utf-8"),
                headers=headers,
                timeout=self.timeout,
                follow_redirects=True,
            )
        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
            return await client.post(url, content=body.encode("utf-8"), headers=headers)

    async def _post(
        self, url: Optional[str], body: str, headers: Dict[str, str]
    ) -> httpx.Response:
        """
        POST the body, following redirects, under one overall deadline.

        The httpx timeout limits each phase separately; ``asyncio.wait_for``
        bounds the whole exchange, including a body streamed back slowly.

        Raises:
            httpx.InvalidURL: If no webhook URL is configured
            asyncio.TimeoutError: If the deadline passes
            httpx.HTTPError: On transport failures
        """
        if not url:
            raise httpx.InvalidURL("Webhook URL is not configured")
        return await asyncio.wait_for(
            self._send(url, body, headers), timeout=self.settings.webhook_timeout_seconds
        )

    async def _record_attempt(
        self, db: AsyncSession, webhook_event_id: uuid.UUID, **values: Any
    ) -> None:
        await db.execute(
            update(WebhookEvent).where(WebhookEvent.id == webhook_event_id).values(**values)
        )
        await db.flush()

    async def deliver(
        self,
        db: AsyncSession,
        webhook_event_id: uuid.UUID,
        webhook_url: Optional[str],
        payload: Dict[str, Any],
        webhook_secret: Optional[str] = None,
    ) -> DeliveryResult:
        """
        Make one delivery attempt and persist its outcome.

        Never raises for delivery failures; only store errors propagate. A
        missing URL and a deadline overrun are recorded like transport errors.

        Args:
            db: Database session
            webhook_event_id: Event being delivered
            webhook_url: Merchant endpoint (None when the merchant has none)
            payload: JSON payload
            webhook_secret: Optional merchant signing secret

        Returns:
            DeliveryResult: Outcome of this attempt
        """
        webhook_event_id = as_uuid(webhook_event_id)
        previous = await db.scalar(
            select(WebhookEvent.attempts).where(WebhookEvent.id == webhook_event_id)
        )
        attempts = (previous or 0) + 1

        log = logger.bind(webhook_event_id=str(webhook_event_id), attempts=attempts)

        body = serialize_payload(payload)
        sent_at = self.clock()
        headers = self.build_headers(
            webhook_event_id,
            body,
            int(sent_at.timestamp() * 1000),
            webhook_secret,
        )

        started = time.perf_counter()
        try:
            response = await self._post(webhook_url, body, headers)
        except asyncio.TimeoutError:
            error_message = f"Timed out after {self.settings.webhook_timeout_seconds}s"
            error_type = "TimeoutError"
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            error_message = str(e) or type(e).__name__
            error_type = type(e).__name__
        else:
            error_message = None

        if error_message is not None:
            now = self.clock()
            exhausted = attempts >= self.settings.webhook_max_attempts

            await self._record_attempt(
                db,
                webhook_event_id,
                status=STATUS_FAILED if exhausted else STATUS_PENDING,
                attempts=attempts,
                last_attempt_at=now,
                next_retry_at=(
                    None if exhausted else now + timedelta(milliseconds=backoff_delay(attempts))
                ),
            )

            metrics.record_webhook_delivery(
                "failed" if exhausted else "retry_scheduled", time.perf_counter() - started
            )
            log.error(
                "webhook_delivery_failed",
                error=error_message,
                error_type=error_type,
                exhausted=exhausted,
            )

            return DeliveryResult(success=False, attempts=attempts, error_message=error_message)

        duration = time.perf_counter() - started
        now = self.clock()
        success = response.is_success

        if success:
            await self._record_attempt(
                db,
                webhook_event_id,
                status=STATUS_DELIVERED,
                attempts=attempts,
                last_attempt_at=now,
                delivered_at=now,
                next_retry_at=None,
            )
        else:
            await self._record_attempt(
                db,
                webhook_event_id,
                status=STATUS_PENDING,
                attempts=attempts,
                last_attempt_at=now,
                next_retry_at=now + timedelta(milliseconds=backoff_delay(attempts)),
            )

        metrics.record_webhook_delivery("delivered" if success else "retry_scheduled", duration)
        log.info(
            "webhook_delivery_attempt",
            success=success,
            status_code=response.status_code,
        )

        return DeliveryResult(
            success=success,
            status_code=response.status_code,
            attempts=attempts,
            delivered_at=now if success else None,
            error_message=None if success else f"HTTP {response.status_code}",
        )


async def deliver_webhook(
    db: AsyncSession,
    webhook_event_id: uuid.UUID,
    webhook_url: Optional[str],
    payload: Dict[str, Any],
    webhook_secret: Optional[str] = None,
    dispatcher: Optional[WebhookDispatcher] = None,
) -> DeliveryResult:
    """Make one delivery attempt with the given (or a default) dispatcher."""
    dispatcher = dispatcher or WebhookDispatcher()
    return await dispatcher.deliver(
        db,
        webhook_event_id=webhook_event_id,
        webhook_url=webhook_url,
        payload=payload,
        webhook_secret=webhook_secret,
    )
