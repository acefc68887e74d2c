"""
Events router — intake for integration events consumed by this service.

Endpoints:
  POST /events/card-issuance-requested — An approved proposal asks for cards

This HTTP intake stands in for a broker consumer: whatever consumes the
onboarding topic forwards each message here. The response is 202 with the
outcome; a rejection (low credit score, invalid request) is reported in
the body and as a "card.issuance.failed" event, not as an HTTP error.
A 503 tells the consumer to redeliver.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from card_issuer.database import get_db
from card_issuer.dependencies import get_pan_generator, get_token_vault
from card_issuer.schemas.events import CardIssuanceRequestedEvent, IssuanceRequestOutcome
from card_issuer.security import TokenVault
from card_issuer.services.issuance_requests import handle_issuance_requested
from card_issuer.services.pan_generator import PanGenerator

router = APIRouter()


@router.post(
    "/card-issuance-requested",
    response_model=IssuanceRequestOutcome,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Consume a card issuance request event",
)
async def card_issuance_requested(
    event: CardIssuanceRequestedEvent,
    db: AsyncSession = Depends(get_db),
    vault: TokenVault = Depends(get_token_vault),
    pan_generator: PanGenerator = Depends(get_pan_generator),
):
    result = await handle_issuance_requested(db, event, vault, pan_generator)
    return IssuanceRequestOutcome(
        outcome=result.outcome.value,
        card_ids=result.card_ids,
        failure_kind=result.failure_kind,
        reason=result.failure_reason,
    )
