"""
Outbox entry — a domain event waiting to be delivered.

Transactional outbox pattern:
  A workflow that changes a card writes an OutboxEntry in the SAME database
  transaction as the card change. Either both are committed or neither is.
  The OutboxDispatcher later publishes pending entries to the message
  transport and stamps `sent_at` once the transport confirmed the publish.

Lifecycle:
  - sent_at IS NULL     -> pending, picked up by the dispatcher (oldest first)
  - sent_at IS NOT NULL -> delivered; never cleared again
  - sent and older than the retention window -> deleted by the retention sweep

Delivery is at-least-once: consumers must tolerate duplicates.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Text, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from card_issuer.database import Base


class OutboxEntry(Base):
    __tablename__ = "outbox_entries"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    # e.g. "card.issued", "card.activated"
    topic: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    # Serialized JSON event body
    payload: Mapped[str] = mapped_column(Text, nullable=False)

    # Indexed for the oldest-first dispatch query and the retention sweep
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )

    # NULL while pending
    sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
    )

    @property
    def is_pending(self) -> bool:
        return self.sent_at is None
