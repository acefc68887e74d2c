"""
Tests for the consumed "card issuance requested" event handler.

These tests verify:
  - A score at or above the threshold issues cards
  - A score below the threshold emits "card.issuance.failed" and issues nothing
  - An invalid request is reported as a failure event, not an exception
  - Out-of-range scores are rejected
  - Redelivery of the same event replays instead of issuing again
"""

import json
from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select

from card_issuer.exceptions import InvalidArgumentError
from card_issuer.models.card import Card
from card_issuer.schemas.events import CardIssuanceRequestedEvent
from card_issuer.services.card_issuance import IssuanceOutcome
from card_issuer.services.issuance_requests import handle_issuance_requested
from card_issuer.services.outbox_store import OutboxStore

NOW = datetime(2025, 3, 10, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def requested_event(issuance_payload):
    def build(**overrides):
        payload = issuance_payload(credit_score=720, idempotency_key="evt-1")
        payload.update(overrides)
        return CardIssuanceRequestedEvent(**payload)

    return build


async def card_count(db) -> int:
    return (await db.execute(select(func.count()).select_from(Card))).scalar_one()


class TestHandleIssuanceRequested:
    """Tests for handle_issuance_requested."""

    async def test_good_score_issues_cards(self, db_session, vault, pan_generator, requested_event):
        result = await handle_issuance_requested(
            db_session, requested_event(), vault, pan_generator, now=NOW,
        )
        await db_session.commit()

        assert result.outcome == IssuanceOutcome.CREATED
        assert len(result.cards) == 2
        assert await card_count(db_session) == 2

    async def test_threshold_score_is_accepted(self, db_session, vault, pan_generator, requested_event):
        result = await handle_issuance_requested(
            db_session, requested_event(credit_score=600), vault, pan_generator, now=NOW,
        )
        assert result.outcome == IssuanceOutcome.CREATED

    async def test_low_score_rejected_with_failure_event(
        self, db_session, vault, pan_generator, requested_event
    ):
        event = requested_event(credit_score=450)

        result = await handle_issuance_requested(db_session, event, vault, pan_generator, now=NOW)
        await db_session.commit()

        assert result.outcome == IssuanceOutcome.REJECTED
        assert result.failure_kind == "insufficient_credit_score"
        assert result.cards == []
        assert await card_count(db_session) == 0

        entries = await OutboxStore(db_session).list_entries()
        assert [entry.topic for entry in entries] == ["card.issuance.failed"]
        failed = json.loads(entries[0].payload)
        assert failed["customerId"] == str(event.customer_id)
        assert "450" in failed["reason"]
        assert "attemptedAt" in failed

    async def test_invalid_request_becomes_failure_event(
        self, db_session, vault, pan_generator, requested_event
    ):
        result = await handle_issuance_requested(
            db_session, requested_event(card_count=5), vault, pan_generator, now=NOW,
        )
        await db_session.commit()

        assert result.outcome == IssuanceOutcome.REJECTED
        assert result.failure_kind == "invalid_argument"
        assert "card_count" in result.failure_reason
        entries = await OutboxStore(db_session).list_entries(topic="card.issuance.failed")
        assert len(entries) == 1

    @pytest.mark.parametrize("score", [-1, 1001])
    async def test_score_out_of_range(self, db_session, vault, pan_generator, requested_event, score):
        with pytest.raises(InvalidArgumentError):
            await handle_issuance_requested(
                db_session, requested_event(credit_score=score), vault, pan_generator, now=NOW,
            )

    async def test_redelivery_replays(self, db_session, vault, pan_generator, requested_event):
        event = requested_event()

        first = await handle_issuance_requested(db_session, event, vault, pan_generator, now=NOW)
        await db_session.commit()
        second = await handle_issuance_requested(db_session, event, vault, pan_generator, now=NOW)
        await db_session.commit()

        assert second.outcome == IssuanceOutcome.REPLAYED
        assert second.card_ids == first.card_ids
        assert await card_count(db_session) == 2
