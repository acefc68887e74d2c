"""
Outbox dispatcher — background delivery of pending outbox entries.

One dispatch cycle:
  1. Read up to batch_size pending entries, oldest first
  2. Publish each one, retrying with capped exponential backoff
  3. After a confirmed publish, stamp sent_at and commit (per entry)
  4. Delete sent entries older than the retention window

Failure handling:
  - A publish that keeps failing until the retry budget is spent raises
    PermanentDispatchError. It is logged and the entry stays pending; the
    rest of the batch is still processed and the entry is retried on a
    later cycle.
  - A publisher that raises InvalidArgumentError (a payload it cannot
    encode) fails the entry at once, without spending the retry budget.
  - If stamping sent_at fails for one entry, the error is logged and the
    batch moves on; that entry is published again on a later cycle.
  - An unexpected error in a cycle (e.g. the database is unreachable) is
    logged and the loop carries on after the poll interval.
  - If the dispatcher task is cancelled mid-retry, the entry is left
    pending. Nothing is ever marked sent before publish() returned.

Delivery is at-least-once: a crash between publish() and the sent_at
commit re-publishes the entry on the next cycle.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from card_issuer.config import Settings, settings
from card_issuer.database import AsyncSessionLocal
from card_issuer.exceptions import InvalidArgumentError, PermanentDispatchError
from card_issuer.models.outbox import OutboxEntry
from card_issuer.services.outbox_store import OutboxStore
from card_issuer.services.publishers import MessagePublisher

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded exponential backoff.

    With max_attempts=5, initial_delay=0.5, backoff_factor=2, max_delay=3
    the waits between attempts are 0.5, 1.0, 2.0, 3.0.
    """
    max_attempts: int = 5
    initial_delay: float = 0.5
    backoff_factor: float = 2.0
    max_delay: float = 30.0

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "RetryPolicy":
        return cls(
            max_attempts=config.OUTBOX_RETRY_MAX_ATTEMPTS,
            initial_delay=config.OUTBOX_RETRY_INITIAL_DELAY_SECONDS,
            backoff_factor=config.OUTBOX_RETRY_BACKOFF_FACTOR,
            max_delay=config.OUTBOX_RETRY_MAX_DELAY_SECONDS,
        )

    def delays(self) -> Iterator[float]:
        """Wait before each retry, i.e. max_attempts - 1 values."""
        delay = self.initial_delay
        for _ in range(self.max_attempts - 1):
            yield min(delay, self.max_delay)
            delay *= self.backoff_factor


class OutboxDispatcher:
    """Publishes pending outbox entries until stopped."""

    def __init__(
        self,
        publisher: MessagePublisher,
        session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
        *,
        retry_policy: RetryPolicy | None = None,
        batch_size: int | None = None,
        poll_interval: float | None = None,
        retention_days: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
        config: Settings = settings,
    ):
        self.publisher = publisher
        self._session_factory = session_factory
        self.retry_policy = retry_policy or RetryPolicy.from_settings(config)
        self.batch_size = batch_size if batch_size is not None else config.OUTBOX_BATCH_SIZE
        self.poll_interval = (
            poll_interval if poll_interval is not None else config.OUTBOX_POLL_INTERVAL_SECONDS
        )
        self.retention_days = (
            retention_days if retention_days is not None else config.OUTBOX_RETENTION_DAYS
        )
        self._sleep = sleep
        self._clock = clock
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def publish_with_retry(self, entry: OutboxEntry) -> None:
        """
        Publish one entry, retrying per the retry policy.

        Raises:
            PermanentDispatchError: If every attempt failed.
        """
        delays = self.retry_policy.delays()
        attempt = 0
        while True:
            attempt += 1
            try:
                await self.publisher.publish(entry.topic, entry.payload)
                return
            except InvalidArgumentError as exc:
                # Retrying cannot fix a message the transport refuses to encode
                raise PermanentDispatchError(entry.id, attempt) from exc
            except Exception as exc:
                delay = next(delays, None)
                if delay is None:
                    raise PermanentDispatchError(entry.id, attempt) from exc
                logger.warning(
                    "Publish failed entry_id=%s topic=%s attempt=%d; retrying in %.2fs: %s",
                    entry.id, entry.topic, attempt, delay, exc,
                )
            await self._sleep(delay)

    async def dispatch_pending(self) -> int:
        """Publish one batch of pending entries. Returns how many were sent."""
        async with self._session_factory() as session:
            entries = await OutboxStore(session).fetch_pending(self.batch_size)
            await session.commit()

        if not entries:
            return 0
        logger.debug("Dispatching %d pending outbox entries", len(entries))

        sent = 0
        for entry in entries:
            try:
                await self.publish_with_retry(entry)
            except PermanentDispatchError as exc:
                logger.error("%s; leaving it pending", exc.detail)
                continue

            try:
                async with self._session_factory() as session:
                    await OutboxStore(session).mark_sent(entry.id, self._clock())
                    await session.commit()
            except Exception:
                # Published but not stamped: the next cycle sends it again.
                logger.exception(
                    "Could not mark outbox entry sent entry_id=%s topic=%s",
                    entry.id, entry.topic,
                )
                continue
            sent += 1

        logger.info("Outbox batch done sent=%d pending=%d", sent, len(entries) - sent)
        return sent

    async def purge_sent(self) -> int:
        """Delete sent entries older than the retention window."""
        cutoff = self._clock() - timedelta(days=self.retention_days)
        async with self._session_factory() as session:
            removed = await OutboxStore(session).purge_sent(cutoff)
            await session.commit()
        if removed:
            logger.info("Purged %d sent outbox entries older than %s", removed, cutoff)
        return removed

    async def run_once(self) -> None:
        """One dispatch + retention cycle. Errors are logged, never raised."""
        try:
            await self.dispatch_pending()
            await self.purge_sent()
        except Exception:
            logger.exception("Outbox dispatch cycle failed")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Run cycles until stop() is called."""
        logger.info("Outbox dispatcher started (poll every %.2fs)", self.poll_interval)
        while not self._stop_event.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                continue
        logger.info("Outbox dispatcher stopped")

    def start(self) -> asyncio.Task:
        """Start the dispatch loop as a background task."""
        if self.running:
            return self._task
        self._stop_event.clear()
        self._task = asyncio.create_task(self.run(), name="outbox-dispatcher")
        return self._task

    async def stop(self, timeout: float = 5.0) -> None:
        """
        Ask the loop to stop and wait for it.

        If the current cycle does not finish within `timeout` (e.g. it is
        sleeping between retries) the task is cancelled; the entry being
        retried stays pending.
        """
        if self._task is None:
            return
        self._stop_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Outbox dispatcher did not stop within %.1fs; cancelled", timeout)
        finally:
            self._task = None
