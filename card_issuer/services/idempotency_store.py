"""
Idempotency store — which card IDs an idempotency key already produced.

Race safety comes from the storage layer, not from a check-then-act in
Python: `card_idempotency_keys.key` carries a UNIQUE constraint, so when
two requests with the same key both try to register it, the database
accepts one insert and rejects the other with an IntegrityError. The
rejected request learns it lost the race and replays the winner's cards.

On PostgreSQL the second insert blocks until the first transaction
finishes: if the winner commits, the loser gets the unique violation; if
the winner rolls back (failed issuance), the loser's insert succeeds and
it issues the cards itself.
"""

import uuid
from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from card_issuer.exceptions import IdempotencyKeyConflictError, InvalidArgumentError
from card_issuer.models.idempotency import IdempotencyRecord


class IdempotencyStore:
    """Reads and claims idempotency keys within the caller's session."""

    def __init__(self, db: AsyncSession):
        self._db = db

    async def lookup(self, key: str) -> list[uuid.UUID] | None:
        """Return the card IDs recorded for a key, or None if the key is new."""
        result = await self._db.execute(
            select(IdempotencyRecord).where(IdempotencyRecord.key == key)
        )
        record = result.scalar_one_or_none()
        if record is None:
            return None
        return record.card_uuids

    async def register(self, key: str, card_ids: Sequence[uuid.UUID]) -> IdempotencyRecord:
        """
        Record a key against the ordered card IDs it produces.

        Must be the first write of the caller's transaction: on a conflict
        the caller rolls the whole session back before replaying.

        Raises:
            InvalidArgumentError: If the key is empty.
            IdempotencyKeyConflictError: If the key is already registered.
        """
        if not key or not key.strip():
            raise InvalidArgumentError("idempotency key must not be empty")

        record = IdempotencyRecord(key=key, card_ids=[str(card_id) for card_id in card_ids])
        self._db.add(record)
        try:
            await self._db.flush()
        except IntegrityError as exc:
            raise IdempotencyKeyConflictError(key) from exc
        return record
