"""
Pydantic schemas for Card endpoints.

Card numbers and CVVs are NEVER returned in API responses. Issuance
responses carry only the vault token of the PAN; card lookups show a
masked number (first and last four digits).

Credit limits are integer cents (e.g., $5,000.00 = 500000).
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from card_issuer.models.card import Card


class DeliveryPreference(BaseModel):
    """Which card classes the customer wants delivered."""
    physical: bool = False
    virtual: bool = False


class CardIssuanceRequest(BaseModel):
    """
    Request body for POST /cards/issue.

    Business rules (card count, positive limit, delivery choice, non-empty
    IDs) are checked by the issuance workflow, so every caller — HTTP or
    consumed event — gets the same validation.
    """
    customer_id: uuid.UUID
    proposal_id: uuid.UUID
    account_id: uuid.UUID
    product_code: str
    card_count: int = Field(default=1, description="Number of cards to issue (1 or 2)")
    credit_limit_cents: int = Field(description="Approved credit limit per card, in cents")
    delivery: DeliveryPreference
    correlation_id: str
    idempotency_key: str | None = Field(
        None,
        max_length=100,
        description="Optional; the Idempotency-Key header takes precedence",
    )


class IssuedCard(BaseModel):
    """One card in an issuance response — token only, never the PAN."""
    card_id: uuid.UUID
    pan_token: str
    expiry: str
    card_class: str
    status: str

    @classmethod
    def from_card(cls, card: Card) -> "IssuedCard":
        return cls(
            card_id=card.id,
            pan_token=card.pan_token,
            expiry=card.expiry_label,
            card_class=card.card_class.value,
            status=card.status.value,
        )


class CardIssuanceResponse(BaseModel):
    """Response body for POST /cards/issue."""
    cards: list[IssuedCard]
    correlation_id: str
    issued_at: datetime
    replayed: bool = Field(
        description="True when the idempotency key was already processed"
    )


class CardActivationRequest(BaseModel):
    """Request body for POST /cards/{card_id}/activate."""
    credential: str = Field(description="OTP or CVV, 3 to 6 digits")
    channel: str = "APP"
    correlation_id: str


class CardActivationResponse(BaseModel):
    """Response body for a successful activation."""
    card_id: uuid.UUID
    customer_id: uuid.UUID
    status: str
    activated_at: datetime
    channel: str
    correlation_id: str

    model_config = {"from_attributes": True}


class CardResponse(BaseModel):
    """Public representation of a card (masked — no full number, no CVV, no tokens)."""
    id: uuid.UUID
    customer_id: uuid.UUID
    account_id: uuid.UUID
    product_code: str
    card_class: str
    masked_number: str
    expiry: str
    credit_limit_cents: int
    status: str
    is_expired: bool
    activation_channel: str | None
    activated_at: datetime | None
    created_at: datetime

    @classmethod
    def from_card(cls, card: Card, masked_number: str) -> "CardResponse":
        return cls(
            id=card.id,
            customer_id=card.customer_id,
            account_id=card.account_id,
            product_code=card.product_code,
            card_class=card.card_class.value,
            masked_number=masked_number,
            expiry=card.expiry_label,
            credit_limit_cents=card.credit_limit_cents,
            status=card.status.value,
            is_expired=card.is_expired(),
            activation_channel=card.activation_channel.value if card.activation_channel else None,
            activated_at=card.activated_at,
            created_at=card.created_at,
        )
