"""
Integration event schemas.

Outbound events are serialized into outbox payloads and published at least
once; inbound events arrive from the customer-onboarding service. Both use
camelCase JSON keys on the wire (via the alias generator) and snake_case
attributes in Python.

Topics:
  card.issued            — one per successful issuance, lists every card
  card.activated         — one per activation
  card.issuance.failed   — a consumed issuance request was rejected
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from card_issuer.schemas.card import CardIssuanceRequest, DeliveryPreference

TOPIC_CARD_ISSUED = "card.issued"
TOPIC_CARD_ACTIVATED = "card.activated"
TOPIC_CARD_ISSUANCE_FAILED = "card.issuance.failed"


class EventModel(BaseModel):
    """Base for integration events: camelCase on the wire, snake_case in Python."""

    model_config = {"alias_generator": to_camel, "populate_by_name": True}

    def to_payload(self) -> str:
        """Serialize for the outbox."""
        return self.model_dump_json(by_alias=True)


class IssuedCardSummary(EventModel):
    card_id: uuid.UUID
    pan_token: str
    expiry: str
    card_class: str
    status: str


class CardIssuedEvent(EventModel):
    proposal_id: uuid.UUID
    customer_id: uuid.UUID
    account_id: uuid.UUID
    correlation_id: str
    issued_at: datetime
    cards: list[IssuedCardSummary]


class CardActivatedEvent(EventModel):
    card_id: uuid.UUID
    customer_id: uuid.UUID
    status: str
    activated_at: datetime
    channel: str
    correlation_id: str


class CardIssuanceFailedEvent(EventModel):
    customer_id: uuid.UUID
    reason: str
    attempted_at: datetime


class CardIssuanceRequestedEvent(EventModel):
    """
    Consumed event: a credit proposal was approved and cards should be issued.

    Carries the issuance fields plus the customer's credit score, which
    gates issuance.
    """
    customer_id: uuid.UUID
    proposal_id: uuid.UUID
    account_id: uuid.UUID
    product_code: str
    card_count: int = 1
    credit_limit_cents: int
    delivery: DeliveryPreference
    correlation_id: str
    idempotency_key: str | None = Field(None, max_length=100)
    credit_score: int

    def to_issuance_request(self) -> CardIssuanceRequest:
        return CardIssuanceRequest(
            customer_id=self.customer_id,
            proposal_id=self.proposal_id,
            account_id=self.account_id,
            product_code=self.product_code,
            card_count=self.card_count,
            credit_limit_cents=self.credit_limit_cents,
            delivery=self.delivery,
            correlation_id=self.correlation_id,
            idempotency_key=self.idempotency_key,
        )


class IssuanceRequestOutcome(EventModel):
    """Response body for the consumed-event intake endpoint."""
    outcome: str
    card_ids: list[uuid.UUID]
    failure_kind: str | None = None
    reason: str | None = None
