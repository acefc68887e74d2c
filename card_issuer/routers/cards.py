"""
Cards router — issuance, activation and retrieval.

Endpoints:
  POST /cards/issue              — Issue 1 or 2 cards (idempotent)
  POST /cards/{card_id}/activate — Activate an issued card
  GET  /cards/{card_id}          — Get one card (masked number, no CVV)

Idempotency:
  Clients send an Idempotency-Key header (or idempotency_key in the body;
  the header wins). Repeating a request with the same key returns the
  cards issued the first time with 200 instead of 201 and issues nothing.

Card numbers and CVVs are never returned — issuance responses carry the
PAN's vault token, lookups a masked number.
"""

import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Header, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from card_issuer.database import get_db
from card_issuer.dependencies import get_pan_generator, get_token_vault
from card_issuer.schemas.card import (
    CardActivationRequest,
    CardActivationResponse,
    CardIssuanceRequest,
    CardIssuanceResponse,
    CardResponse,
    IssuedCard,
)
from card_issuer.security import TokenVault
from card_issuer.services import card_activation, card_issuance
from card_issuer.services.pan_generator import PanGenerator

router = APIRouter()


@router.post(
    "/issue",
    response_model=CardIssuanceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Issue cards for an approved proposal",
    responses={200: {"description": "Replay of an already-processed idempotency key"}},
)
async def issue_cards(
    request: CardIssuanceRequest,
    response: Response,
    idempotency_key: str | None = Header(default=None, max_length=100),
    db: AsyncSession = Depends(get_db),
    vault: TokenVault = Depends(get_token_vault),
    pan_generator: PanGenerator = Depends(get_pan_generator),
):
    """
    Issue one or two cards.

    - card_count 1: a VIRTUAL card if virtual delivery is enabled, else PHYSICAL
    - card_count 2: one VIRTUAL + one PHYSICAL when both channels are enabled
    - Each card gets a Luhn-valid PAN and a CVV, both stored only as tokens
    - A "card.issued" event is queued in the outbox in the same transaction
    """
    if idempotency_key is not None:
        request = request.model_copy(update={"idempotency_key": idempotency_key})

    result = await card_issuance.issue_cards(db, request, vault, pan_generator)
    if result.replayed:
        response.status_code = status.HTTP_200_OK

    return CardIssuanceResponse(
        cards=[IssuedCard.from_card(card) for card in result.cards],
        correlation_id=request.correlation_id,
        issued_at=result.cards[0].created_at if result.cards else datetime.now(timezone.utc),
        replayed=result.replayed,
    )


@router.post(
    "/{card_id}/activate",
    response_model=CardActivationResponse,
    summary="Activate an issued card",
)
async def activate_card(
    card_id: uuid.UUID,
    request: CardActivationRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Activate a card with an OTP or CVV through the APP or OTP channel.

    - 404 if the card does not exist
    - 409 if the card is already active, blocked or expired
    """
    return await card_activation.activate_card(
        db,
        card_id,
        request.credential,
        request.channel,
        request.correlation_id,
    )


@router.get(
    "/{card_id}",
    response_model=CardResponse,
    summary="Get card details (masked)",
)
async def get_card(
    card_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    vault: TokenVault = Depends(get_token_vault),
):
    """Card details with the number masked to its first and last four digits."""
    card = await card_issuance.get_card(db, card_id)
    return CardResponse.from_card(card, card_issuance.masked_number(card, vault))
