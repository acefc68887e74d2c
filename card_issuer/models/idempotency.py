"""
Idempotency record — remembers which cards an idempotency key produced.

The UNIQUE constraint on `key` is what makes issuance race-safe: when two
requests carry the same key, the database accepts exactly one insert and
rejects the other, and the loser replays what the winner produced.

Card IDs are stored as an ordered JSON list so a replay returns the cards
in the same order as the original response. Records are written once and
never updated.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import String, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column

from card_issuer.database import Base


class IdempotencyRecord(Base):
    __tablename__ = "card_idempotency_keys"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    # Caller-supplied key, UNIQUE so a second insert for the same key fails
    key: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
    )

    # Ordered list of card UUIDs (as strings) produced for this key
    card_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    @property
    def card_uuids(self) -> list[uuid.UUID]:
        return [uuid.UUID(value) for value in self.card_ids]
