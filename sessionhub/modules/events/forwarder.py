"""
Lifecycle event forwarder.

Sessions hand events to publish(), which never blocks. A single delivery
worker drains the queue in FIFO order, so events of one profile reach the
sink in the order their transitions happened.

Delivery is at-most-once: an event is retried with exponential backoff up
to max_attempts and then dropped with an error log. Dropped events are not
replayed; consumers that cannot tolerate gaps should poll /status or read
the event journal.
"""

import asyncio
import hashlib
import hmac
import json
import logging
from typing import Optional

import httpx

from sessionhub.modules.errors import SinkDeliveryError

from .events import LifecycleEvent
from .journal import EventJournal

logger = logging.getLogger("sessionhub.events")

SIGNATURE_HEADER = "X-Sessionhub-Signature"

# Client errors worth another attempt
RETRYABLE_STATUS = {408, 429}


def sign_body(secret: str, body: bytes) -> str:
    """HMAC-SHA256 signature header value for a webhook body."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


class EventForwarder:
    def __init__(
        self,
        sink_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        *,
        secret: Optional[str] = None,
        timeout: float = 10.0,
        max_attempts: int = 3,
        backoff: float = 0.5,
        max_backoff: float = 10.0,
        queue_size: int = 1000,
        journal: Optional[EventJournal] = None,
    ):
        """
        Initialize event forwarder.

        Args:
            sink_url: Webhook URL; None disables HTTP delivery
            client: Optional shared httpx client
            secret: Optional HMAC key for the signature header
            timeout: Per-request timeout in seconds
            max_attempts: Delivery attempts per event
            backoff: First retry delay in seconds, doubled per attempt
            max_backoff: Upper bound for the retry delay
            queue_size: Max undelivered events before new ones are dropped
            journal: Optional Redis journal mirroring every event
        """
        self.sink_url = sink_url
        self.secret = secret
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.backoff = backoff
        self.max_backoff = max_backoff
        self.journal = journal

        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._worker: Optional[asyncio.Task] = None
        self.dropped = 0

    @property
    def pending(self) -> int:
        """Number of events waiting for delivery."""
        return self._queue.qsize()

    def publish(self, event: LifecycleEvent) -> bool:
        """
        Queue an event for delivery without waiting.

        Returns:
            True if queued, False if dropped because the queue is full
        """
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.error(
                f"Event queue full, dropping {event.kind.value} for {event.profile_id}"
            )
            return False
        return True

    def start(self) -> None:
        """Start the delivery worker."""
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="event-forwarder")
            logger.info(f"Event forwarder started (sink: {self.sink_url or 'disabled'})")

    async def stop(self, drain_timeout: Optional[float] = None) -> None:
        """Drain queued events (bounded by drain_timeout) and stop the worker."""
        if self._worker is not None:
            try:
                await asyncio.wait_for(self._queue.join(), drain_timeout or self.timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Stopping forwarder with {self.pending} undelivered events")

            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

        if self._owns_client:
            await self.client.aclose()

    async def join(self) -> None:
        """Wait until every queued event has been processed."""
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._dispatch(event)
            except Exception as e:
                logger.exception(f"Unexpected error forwarding {event.kind.value}: {e}")
            finally:
                self._queue.task_done()

    async def _dispatch(self, event: LifecycleEvent) -> None:
        if self.journal:
            await self.journal.record(event)

        if not self.sink_url:
            logger.debug(f"No sink configured, {event.kind.value} for {event.profile_id} not sent")
            return

        try:
            await self.deliver(event)
        except SinkDeliveryError as e:
            self.dropped += 1
            logger.error(f"Dropping {event.kind.value} for {event.profile_id}: {e}")

    async def deliver(self, event: LifecycleEvent) -> None:
        """
        POST one event to the sink, retrying with exponential backoff.

        Raises:
            SinkDeliveryError: If every attempt failed
        """
        body = json.dumps(event.to_dict()).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        if self.secret:
            headers[SIGNATURE_HEADER] = sign_body(self.secret, body)

        delay = self.backoff
        last_error = "no attempt made"

        for attempt in range(1, self.max_attempts + 1):
            try:
                response = await self.client.post(
                    self.sink_url, content=body, headers=headers, timeout=self.timeout
                )
                if response.status_code < 400:
                    logger.info(
                        f"Forwarded {event.kind.value} for {event.profile_id} "
                        f"(attempt {attempt})"
                    )
                    return

                last_error = f"sink responded {response.status_code}"
                if response.status_code < 500 and response.status_code not in RETRYABLE_STATUS:
                    break
            except httpx.HTTPError as e:
                last_error = f"{type(e).__name__}: {e}"

            logger.warning(
                f"Delivery of {event.kind.value} for {event.profile_id} failed "
                f"(attempt {attempt}/{self.max_attempts}): {last_error}"
            )
            if attempt < self.max_attempts:
                await asyncio.sleep(delay)
                delay = min(delay * 2, self.max_backoff)

        raise SinkDeliveryError(last_error)
