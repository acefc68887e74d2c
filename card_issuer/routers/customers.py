"""
Customers router — a customer's cards.

Endpoints:
  GET /customers/{customer_id}/cards — All cards of a customer (masked)
"""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from card_issuer.database import get_db
from card_issuer.dependencies import get_token_vault
from card_issuer.schemas.card import CardResponse
from card_issuer.security import TokenVault
from card_issuer.services import card_issuance

router = APIRouter()


@router.get(
    "/{customer_id}/cards",
    response_model=list[CardResponse],
    summary="List a customer's cards (masked)",
)
async def list_customer_cards(
    customer_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    vault: TokenVault = Depends(get_token_vault),
):
    """Newest first. An unknown customer simply has no cards."""
    cards = await card_issuance.list_customer_cards(db, customer_id)
    return [
        CardResponse.from_card(card, card_issuance.masked_number(card, vault))
        for card in cards
    ]
