"""
Handler for the consumed "card issuance requested" integration event.

The onboarding service publishes this event once a credit proposal is
approved. The handler gates issuance on the customer's credit score and
turns rejections into a "card.issuance.failed" event instead of an error,
so the upstream service learns the outcome asynchronously.

Transient failures (storage, vault) are NOT converted: they propagate so
the consumer can redeliver the event. Redelivery is safe because the
event carries an idempotency key.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from card_issuer.config import Settings, settings
from card_issuer.exceptions import InvalidArgumentError
from card_issuer.schemas.events import (
    CardIssuanceFailedEvent,
    CardIssuanceRequestedEvent,
    TOPIC_CARD_ISSUANCE_FAILED,
)
from card_issuer.security import TokenVault
from card_issuer.services.card_issuance import IssuanceOutcome, IssuanceResult, issue_cards
from card_issuer.services.outbox_store import OutboxStore
from card_issuer.services.pan_generator import PanGenerator

logger = logging.getLogger(__name__)

MIN_CREDIT_SCORE = 0
MAX_CREDIT_SCORE = 1000

FAILURE_INSUFFICIENT_SCORE = "insufficient_credit_score"
FAILURE_INVALID_ARGUMENT = "invalid_argument"


async def handle_issuance_requested(
    db: AsyncSession,
    event: CardIssuanceRequestedEvent,
    vault: TokenVault,
    pan_generator: PanGenerator,
    *,
    config: Settings = settings,
    now: datetime | None = None,
) -> IssuanceResult:
    """
    Process one issuance request event.

    Returns:
        IssuanceResult — CREATED or REPLAYED when cards were (or had been)
        issued, REJECTED when the request was turned down.

    Raises:
        InvalidArgumentError: If the credit score is outside 0–1000.
        Transient vault/storage errors, unchanged.
    """
    if not MIN_CREDIT_SCORE <= event.credit_score <= MAX_CREDIT_SCORE:
        raise InvalidArgumentError(
            f"credit_score must be between {MIN_CREDIT_SCORE} and {MAX_CREDIT_SCORE}"
        )

    now = now or datetime.now(timezone.utc)

    if event.credit_score < config.CREDIT_SCORE_THRESHOLD:
        reason = (
            f"Credit score {event.credit_score} is below the minimum "
            f"of {config.CREDIT_SCORE_THRESHOLD}"
        )
        return await _reject(db, event, FAILURE_INSUFFICIENT_SCORE, reason, now)

    try:
        return await issue_cards(
            db,
            event.to_issuance_request(),
            vault,
            pan_generator,
            config=config,
            now=now,
        )
    except InvalidArgumentError as exc:
        # Drop anything the failed attempt flushed before recording the failure
        await db.rollback()
        return await _reject(db, event, FAILURE_INVALID_ARGUMENT, exc.detail, now)


async def _reject(
    db: AsyncSession,
    event: CardIssuanceRequestedEvent,
    failure_kind: str,
    reason: str,
    now: datetime,
) -> IssuanceResult:
    failed = CardIssuanceFailedEvent(
        customer_id=event.customer_id,
        reason=reason,
        attempted_at=now,
    )
    await OutboxStore(db).append(TOPIC_CARD_ISSUANCE_FAILED, failed.to_payload())

    logger.warning(
        "Issuance rejected customer_id=%s kind=%s correlation_id=%s",
        event.customer_id, failure_kind, event.correlation_id,
    )
    return IssuanceResult(
        outcome=IssuanceOutcome.REJECTED,
        failure_kind=failure_kind,
        failure_reason=reason,
    )
