"""
Card activation service — moves an issued card to ACTIVE.

Activation steps:
  1. Validate the credential (3–6 digits), channel (APP or OTP) and
     correlation ID
  2. Load the card
  3. Reject it if it cannot be activated (wrong state or expired)
  4. Verify the credential
  5. Activate the card and append a "card.activated" outbox entry

The card update and the outbox entry share the caller's transaction, so
the event exists if and only if the activation was committed.
"""

import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from card_issuer.exceptions import CardNotFoundError, InvalidArgumentError, InvalidStateError
from card_issuer.models.card import ActivationChannel, Card
from card_issuer.schemas.events import CardActivatedEvent, TOPIC_CARD_ACTIVATED
from card_issuer.services.outbox_store import OutboxStore

logger = logging.getLogger(__name__)

# FIRST_PURCHASE activations come from the authorization flow, not this endpoint
REQUEST_CHANNELS = (ActivationChannel.APP, ActivationChannel.OTP)

_CREDENTIAL_PATTERN = re.compile(r"[0-9]{3,6}")


@dataclass
class ActivationResult:
    card_id: uuid.UUID
    customer_id: uuid.UUID
    status: str
    activated_at: datetime
    channel: str
    correlation_id: str


def _verify_credential(card: Card, credential: str) -> bool:
    """
    Check the OTP/CVV presented for activation.

    Placeholder policy: any well-formed numeric credential is accepted.
    A real check would compare against the issued OTP or the vaulted CVV.
    """
    return _CREDENTIAL_PATTERN.fullmatch(credential) is not None


async def activate_card(
    db: AsyncSession,
    card_id: uuid.UUID,
    credential: str,
    channel: str,
    correlation_id: str,
    *,
    now: datetime | None = None,
) -> ActivationResult:
    """
    Activate an issued card.

    Args:
        db: Database session; the caller commits it.
        card_id: The card to activate.
        credential: OTP or CVV presented by the customer.
        channel: "APP" or "OTP".
        correlation_id: Tracing ID for the request.
        now: Activation time (defaults to the current UTC time).

    Returns:
        ActivationResult describing the activated card.

    Raises:
        InvalidArgumentError: Malformed credential, channel or correlation ID,
            or a credential that does not verify.
        CardNotFoundError: If the card does not exist.
        InvalidStateError: If the card is not awaiting activation or is expired.
    """
    if not credential or _CREDENTIAL_PATTERN.fullmatch(credential) is None:
        raise InvalidArgumentError("credential must be 3 to 6 digits")
    if channel not in {c.value for c in REQUEST_CHANNELS}:
        raise InvalidArgumentError("channel must be APP or OTP")
    if not correlation_id or not correlation_id.strip():
        raise InvalidArgumentError("correlation_id must not be empty")

    now = now or datetime.now(timezone.utc)

    card = await db.get(Card, card_id)
    if card is None:
        raise CardNotFoundError(card_id)

    if not card.can_activate(now):
        if card.is_expired(now):
            raise InvalidStateError("Card is expired")
        raise InvalidStateError(f"Card cannot be activated from status {card.status.value}")

    if not _verify_credential(card, credential):
        raise InvalidArgumentError("credential could not be verified")

    card.activate(channel, now)
    await db.flush()

    event = CardActivatedEvent(
        card_id=card.id,
        customer_id=card.customer_id,
        status=card.status.value,
        activated_at=now,
        channel=card.activation_channel.value,
        correlation_id=correlation_id,
    )
    await OutboxStore(db).append(TOPIC_CARD_ACTIVATED, event.to_payload())

    logger.info(
        "Card activated card_id=%s channel=%s correlation_id=%s",
        card.id, channel, correlation_id,
    )

    return ActivationResult(
        card_id=card.id,
        customer_id=card.customer_id,
        status=card.status.value,
        activated_at=now,
        channel=card.activation_channel.value,
        correlation_id=correlation_id,
    )
