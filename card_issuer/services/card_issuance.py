"""
Card issuance service — idempotent issuance of one or two cards per request.

THIS IS THE CORE WORKFLOW OF THE SERVICE. For one request it:
  1. Validates the request (no side effects on failure)
  2. Replays the earlier result if the idempotency key was already used
  3. Decides which card classes to issue (VIRTUAL / PHYSICAL)
  4. Claims the idempotency key (storage-level UNIQUE constraint)
  5. For each card: picks the BIN, generates PAN + CVV, tokenizes both in
     the vault, creates the card (REQUESTED), flushes, marks it ISSUED,
     flushes again
  6. Appends one "card.issued" outbox entry listing every card
  7. Returns the cards

Atomicity:
  Everything in steps 4–6 is written through the caller's session and
  committed once by the caller (get_db for HTTP requests). If anything
  fails — vault, database, validation — the exception propagates, the
  session rolls back, and neither the cards, the idempotency record nor
  the event survive. A retry with the same key then runs from scratch.

Race safety:
  The key is claimed BEFORE the cards are built, with card IDs assigned up
  front. If a concurrent request already claimed it, the UNIQUE constraint
  rejects our insert; we roll back and return what the winner produced.

The PAN and CVV exist in clear text only inside _build_card(); the card
row, the response and the outbox event carry vault tokens.
"""

import enum
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from cryptography.fernet import InvalidToken
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from card_issuer.config import Settings, settings
from card_issuer.exceptions import (
    CardNotFoundError,
    IdempotencyKeyConflictError,
    InvalidArgumentError,
    TokenNotFoundError,
)
from card_issuer.models.card import Card, CardClass, NIL_UUID
from card_issuer.schemas.card import CardIssuanceRequest, DeliveryPreference
from card_issuer.schemas.events import CardIssuedEvent, IssuedCardSummary, TOPIC_CARD_ISSUED
from card_issuer.security import TokenVault, mask_pan
from card_issuer.services.idempotency_store import IdempotencyStore
from card_issuer.services.outbox_store import OutboxStore
from card_issuer.services.pan_generator import PanGenerator

logger = logging.getLogger(__name__)


class IssuanceOutcome(str, enum.Enum):
    CREATED = "created"
    REPLAYED = "replayed"
    REJECTED = "rejected"


@dataclass
class IssuanceResult:
    """
    What an issuance attempt produced.

    Callers branch on `outcome` rather than on exceptions:
      - CREATED:  new cards were issued
      - REPLAYED: the idempotency key was seen before; `cards` are the
                  cards issued the first time, nothing new was written
      - REJECTED: the request was turned down (consumed-event path only);
                  `failure_kind` and `failure_reason` say why
    """
    outcome: IssuanceOutcome
    cards: list[Card] = field(default_factory=list)
    failure_kind: str | None = None
    failure_reason: str | None = None

    @property
    def replayed(self) -> bool:
        return self.outcome == IssuanceOutcome.REPLAYED

    @property
    def card_ids(self) -> list[uuid.UUID]:
        return [card.id for card in self.cards]


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def validate_issuance_request(request: CardIssuanceRequest) -> None:
    """
    Check the business rules of an issuance request.

    Raises:
        InvalidArgumentError: On the first rule that is broken.
    """
    for name in ("customer_id", "proposal_id", "account_id"):
        if getattr(request, name) == NIL_UUID:
            raise InvalidArgumentError(f"{name} must not be empty")
    if not request.product_code or not request.product_code.strip():
        raise InvalidArgumentError("product_code must not be empty")
    if request.credit_limit_cents <= 0:
        raise InvalidArgumentError("credit_limit_cents must be greater than zero")
    if request.card_count not in (1, 2):
        raise InvalidArgumentError("card_count must be 1 or 2")
    if not request.delivery.physical and not request.delivery.virtual:
        raise InvalidArgumentError("at least one delivery channel must be enabled")
    if not request.correlation_id or not request.correlation_id.strip():
        raise InvalidArgumentError("correlation_id must not be empty")
    if request.idempotency_key is not None and not request.idempotency_key.strip():
        raise InvalidArgumentError("idempotency_key must not be blank")


def determine_card_classes(delivery: DeliveryPreference, card_count: int) -> list[CardClass]:
    """
    Map a delivery preference and card count to the classes to issue.

    One card: VIRTUAL when virtual delivery is enabled, else PHYSICAL.
    Two cards: one of each when both are enabled, otherwise two of the
    single enabled class.
    """
    if card_count == 1:
        return [CardClass.VIRTUAL if delivery.virtual else CardClass.PHYSICAL]

    classes = []
    if delivery.virtual:
        classes.append(CardClass.VIRTUAL)
    if delivery.physical:
        classes.append(CardClass.PHYSICAL)
    if len(classes) == 1:
        classes.append(classes[0])
    return classes


def select_bin(product_code: str, config: Settings = settings) -> str:
    """BIN for a product code, falling back to the default BIN."""
    return config.PRODUCT_BINS.get(product_code, config.DEFAULT_BIN)


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------

async def issue_cards(
    db: AsyncSession,
    request: CardIssuanceRequest,
    vault: TokenVault,
    pan_generator: PanGenerator,
    *,
    config: Settings = settings,
    now: datetime | None = None,
) -> IssuanceResult:
    """
    Issue the cards described by a request, at most once per idempotency key.

    Args:
        db: Database session; the caller commits it.
        request: The issuance request.
        vault: Token vault for PAN/CVV.
        pan_generator: PAN/CVV source.
        config: Settings providing the BIN table and validity years.
        now: Issuance time (defaults to the current UTC time).

    Returns:
        IssuanceResult with outcome CREATED or REPLAYED.

    Raises:
        InvalidArgumentError: If the request breaks a business rule.
        Any vault or storage error, unchanged. The caller must roll back.
    """
    validate_issuance_request(request)
    now = now or datetime.now(timezone.utc)
    key = request.idempotency_key
    idempotency = IdempotencyStore(db)

    if key:
        existing = await idempotency.lookup(key)
        if existing is not None:
            return await _replay(db, key, existing, request.correlation_id)

    classes = determine_card_classes(request.delivery, request.card_count)
    card_ids = [uuid.uuid4() for _ in classes]

    if key:
        try:
            await idempotency.register(key, card_ids)
        except IdempotencyKeyConflictError:
            # A concurrent request with the same key got there first
            await db.rollback()
            existing = await idempotency.lookup(key)
            if existing is None:
                raise
            return await _replay(db, key, existing, request.correlation_id)

    card_bin = select_bin(request.product_code, config)
    cards = []
    for card_id, card_class in zip(card_ids, classes):
        card = _build_card(request, card_id, card_class, card_bin, vault, pan_generator, config, now)
        db.add(card)
        await db.flush()

        card.mark_issued()
        await db.flush()
        cards.append(card)

        logger.info(
            "Card issued card_id=%s card_class=%s correlation_id=%s",
            card.id, card.card_class.value, request.correlation_id,
        )

    event = CardIssuedEvent(
        proposal_id=request.proposal_id,
        customer_id=request.customer_id,
        account_id=request.account_id,
        correlation_id=request.correlation_id,
        issued_at=now,
        cards=[
            IssuedCardSummary(
                card_id=card.id,
                pan_token=card.pan_token,
                expiry=card.expiry_label,
                card_class=card.card_class.value,
                status=card.status.value,
            )
            for card in cards
        ],
    )
    await OutboxStore(db).append(TOPIC_CARD_ISSUED, event.to_payload())

    logger.info(
        "Issuance complete count=%d customer_id=%s correlation_id=%s",
        len(cards), request.customer_id, request.correlation_id,
    )
    return IssuanceResult(outcome=IssuanceOutcome.CREATED, cards=cards)


def _build_card(
    request: CardIssuanceRequest,
    card_id: uuid.UUID,
    card_class: CardClass,
    card_bin: str,
    vault: TokenVault,
    pan_generator: PanGenerator,
    config: Settings,
    now: datetime,
) -> Card:
    pan = pan_generator.generate_pan(card_bin)
    cvv = pan_generator.generate_cvv()
    pan_token = vault.store_pan(pan)
    cvv_token = vault.store_cvv(cvv)

    return Card.create(
        card_id=card_id,
        customer_id=request.customer_id,
        proposal_id=request.proposal_id,
        account_id=request.account_id,
        product_code=request.product_code,
        card_class=card_class,
        pan_token=pan_token,
        cvv_token=cvv_token,
        expiry_month=now.month,
        expiry_year=now.year + config.CARD_VALIDITY_YEARS,
        credit_limit_cents=request.credit_limit_cents,
        correlation_id=request.correlation_id,
        now=now,
    )


async def _replay(
    db: AsyncSession,
    key: str,
    card_ids: list[uuid.UUID],
    correlation_id: str,
) -> IssuanceResult:
    cards = await load_cards(db, card_ids)
    logger.info(
        "Idempotent replay key=%s cards=%d correlation_id=%s",
        key, len(cards), correlation_id,
    )
    return IssuanceResult(outcome=IssuanceOutcome.REPLAYED, cards=cards)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def load_cards(db: AsyncSession, card_ids: list[uuid.UUID]) -> list[Card]:
    """Load cards by ID, preserving the order of `card_ids`."""
    if not card_ids:
        return []
    result = await db.execute(select(Card).where(Card.id.in_(card_ids)))
    by_id = {card.id: card for card in result.scalars().all()}
    return [by_id[card_id] for card_id in card_ids if card_id in by_id]


async def get_card(db: AsyncSession, card_id: uuid.UUID) -> Card:
    """
    Raises:
        CardNotFoundError: If no card has this ID.
    """
    card = await db.get(Card, card_id)
    if card is None:
        raise CardNotFoundError(card_id)
    return card


async def list_customer_cards(db: AsyncSession, customer_id: uuid.UUID) -> list[Card]:
    """All cards of a customer, newest first."""
    if customer_id == NIL_UUID:
        raise InvalidArgumentError("customer_id must not be empty")
    result = await db.execute(
        select(Card)
        .where(Card.customer_id == customer_id)
        .order_by(Card.created_at.desc())
    )
    return list(result.scalars().all())


def masked_number(card: Card, vault: TokenVault) -> str:
    """
    Display form of the card number, e.g. "5162 **** **** 1234".

    Falls back to masking the token's tail when the vault cannot resolve
    the token (the in-memory vault loses its contents on restart).
    """
    try:
        pan = vault.retrieve(card.pan_token)
    except (TokenNotFoundError, InvalidToken):
        logger.warning("PAN token could not be resolved for masking card_id=%s", card.id)
        return f"**** **** **** {card.pan_token[-4:]}"
    return mask_pan(pan)
