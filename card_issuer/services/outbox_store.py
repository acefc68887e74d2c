"""
Outbox store — durable record of domain events awaiting publication.

Writers (the issuance and activation workflows) call append() inside the
same session as their card changes, so the event is committed together
with the change that caused it.

The dispatcher is the only reader. It fetches pending entries oldest
first, marks each one sent after a confirmed publish, and periodically
purges sent entries past the retention window. A single dispatcher
instance is assumed; nothing here claims or leases entries.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from card_issuer.exceptions import InvalidArgumentError
from card_issuer.models.outbox import OutboxEntry


class OutboxStore:
    """Outbox operations bound to one database session."""

    def __init__(self, db: AsyncSession):
        self._db = db

    async def append(self, topic: str, payload: str) -> OutboxEntry:
        """
        Add a pending entry to the current transaction.

        Raises:
            InvalidArgumentError: If the topic or payload is empty.
        """
        if not topic or not topic.strip():
            raise InvalidArgumentError("outbox topic must not be empty")
        if not payload or not payload.strip():
            raise InvalidArgumentError("outbox payload must not be empty")

        entry = OutboxEntry(
            topic=topic,
            payload=payload,
            created_at=datetime.now(timezone.utc),
        )
        self._db.add(entry)
        await self._db.flush()
        return entry

    async def fetch_pending(self, limit: int) -> list[OutboxEntry]:
        """Up to `limit` unsent entries, oldest first."""
        result = await self._db.execute(
            select(OutboxEntry)
            .where(OutboxEntry.sent_at.is_(None))
            .order_by(OutboxEntry.created_at, OutboxEntry.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def mark_sent(self, entry_id: uuid.UUID, sent_at: datetime) -> bool:
        """
        Stamp an entry as sent.

        Only pending entries are updated, so an existing sent_at is never
        overwritten. Returns False if the entry was missing or already sent.
        """
        result = await self._db.execute(
            update(OutboxEntry)
            .where(OutboxEntry.id == entry_id, OutboxEntry.sent_at.is_(None))
            .values(sent_at=sent_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def purge_sent(self, older_than: datetime) -> int:
        """Delete sent entries created before `older_than`. Pending entries are kept."""
        result = await self._db.execute(
            delete(OutboxEntry)
            .where(
                OutboxEntry.sent_at.is_not(None),
                OutboxEntry.created_at < older_than,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def list_entries(self, topic: str | None = None) -> list[OutboxEntry]:
        """All entries (optionally for one topic), oldest first."""
        query = select(OutboxEntry).order_by(OutboxEntry.created_at, OutboxEntry.id)
        if topic is not None:
            query = query.where(OutboxEntry.topic == topic)
        result = await self._db.execute(query)
        return list(result.scalars().all())
