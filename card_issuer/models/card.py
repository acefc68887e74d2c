"""
Card model — one issued payment card and its lifecycle state machine.

Sensitive data:
  The card never holds a PAN or CVV. Both are tokenized by the TokenVault
  at issuance, and only the tokens (pan_token, cvv_token) are stored here.

State machine:

    REQUESTED ──mark_issued()──> ISSUED ──activate()──> ACTIVE
                                   │                      ▲
                                   └─> ACTIVATION_PENDING ┘

  BLOCKED is a named state reachable from any non-terminal state; blocking
  itself is handled elsewhere.

Expiry is never a stored state. A card is expired once the current time
reaches the first day of the month after its expiry month/year, and
is_expired() is evaluated whenever the card is read.

Credit limits are integer cents (e.g., $5,000.00 = 500000), never floats.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Integer, DateTime, Enum, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from card_issuer.database import Base
from card_issuer.exceptions import InvalidArgumentError, InvalidStateError

NIL_UUID = uuid.UUID(int=0)


class CardStatus(str, enum.Enum):
    """Lifecycle status of a card. Inherits from str so it serializes to JSON as-is."""
    REQUESTED = "REQUESTED"
    ISSUED = "ISSUED"
    ACTIVATION_PENDING = "ACTIVATION_PENDING"
    ACTIVE = "ACTIVE"
    BLOCKED = "BLOCKED"


class CardClass(str, enum.Enum):
    """How the card is delivered to the customer."""
    VIRTUAL = "VIRTUAL"
    PHYSICAL = "PHYSICAL"


class ActivationChannel(str, enum.Enum):
    """Channel through which a card was activated."""
    APP = "APP"
    OTP = "OTP"
    FIRST_PURCHASE = "FIRST_PURCHASE"


ACTIVATABLE_STATUSES = (CardStatus.ISSUED, CardStatus.ACTIVATION_PENDING)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Card(Base):
    __tablename__ = "cards"

    __table_args__ = (
        CheckConstraint("credit_limit_cents > 0", name="ck_cards_positive_limit"),
        CheckConstraint(
            "expiry_month >= 1 AND expiry_month <= 12",
            name="ck_cards_expiry_month_range",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    customer_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    proposal_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    account_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)

    # e.g. "VISA_GOLD"; selects the BIN at issuance
    product_code: Mapped[str] = mapped_column(String(50), nullable=False)

    card_class: Mapped[CardClass] = mapped_column(
        Enum(CardClass, native_enum=False, length=20),
        nullable=False,
    )

    # Vault tokens, never the clear PAN/CVV
    pan_token: Mapped[str] = mapped_column(String(100), nullable=False)
    cvv_token: Mapped[str] = mapped_column(String(100), nullable=False)

    expiry_month: Mapped[int] = mapped_column(Integer, nullable=False)
    expiry_year: Mapped[int] = mapped_column(Integer, nullable=False)

    credit_limit_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    # Distributed tracing ID carried from the originating request
    correlation_id: Mapped[str] = mapped_column(String(100), nullable=False)

    status: Mapped[CardStatus] = mapped_column(
        Enum(CardStatus, native_enum=False, length=20),
        default=CardStatus.REQUESTED,
        nullable=False,
        index=True,
    )

    activation_channel: Mapped[ActivationChannel | None] = mapped_column(
        Enum(ActivationChannel, native_enum=False, length=20),
        nullable=True,
    )
    activated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False,
    )

    @classmethod
    def create(
        cls,
        *,
        customer_id: uuid.UUID,
        proposal_id: uuid.UUID,
        account_id: uuid.UUID,
        product_code: str,
        card_class: CardClass | str,
        pan_token: str,
        cvv_token: str,
        expiry_month: int,
        expiry_year: int,
        credit_limit_cents: int,
        correlation_id: str,
        card_id: uuid.UUID | None = None,
        now: datetime | None = None,
    ) -> "Card":
        """
        Build a new card in the REQUESTED state.

        Raises:
            InvalidArgumentError: If any field is empty, out of range, or the
                expiry does not lie in the future.
        """
        now = now or _utcnow()

        for name, value in (
            ("customer_id", customer_id),
            ("proposal_id", proposal_id),
            ("account_id", account_id),
        ):
            if value is None or value == NIL_UUID:
                raise InvalidArgumentError(f"{name} must not be empty")
        if not product_code or not product_code.strip():
            raise InvalidArgumentError("product_code must not be empty")
        try:
            card_class = CardClass(card_class)
        except ValueError:
            raise InvalidArgumentError("card_class must be VIRTUAL or PHYSICAL")
        if not pan_token or not cvv_token:
            raise InvalidArgumentError("pan_token and cvv_token must not be empty")
        if expiry_month < 1 or expiry_month > 12:
            raise InvalidArgumentError("expiry_month must be between 1 and 12")
        if (expiry_year, expiry_month) <= (now.year, now.month):
            raise InvalidArgumentError("expiry must lie in the future")
        if credit_limit_cents <= 0:
            raise InvalidArgumentError("credit_limit_cents must be greater than zero")
        if not correlation_id or not correlation_id.strip():
            raise InvalidArgumentError("correlation_id must not be empty")

        return cls(
            id=card_id or uuid.uuid4(),
            customer_id=customer_id,
            proposal_id=proposal_id,
            account_id=account_id,
            product_code=product_code,
            card_class=card_class,
            pan_token=pan_token,
            cvv_token=cvv_token,
            expiry_month=expiry_month,
            expiry_year=expiry_year,
            credit_limit_cents=credit_limit_cents,
            correlation_id=correlation_id,
            status=CardStatus.REQUESTED,
            created_at=now,
            updated_at=now,
        )

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def mark_issued(self) -> None:
        """Move REQUESTED -> ISSUED."""
        if self.status != CardStatus.REQUESTED:
            raise InvalidStateError(
                f"Card cannot be marked ISSUED from status {self.status.value}"
            )
        self.status = CardStatus.ISSUED

    def activate(self, channel: ActivationChannel | str, now: datetime | None = None) -> None:
        """
        Move ISSUED/ACTIVATION_PENDING -> ACTIVE and record how and when.

        Raises:
            InvalidStateError: If the card is in another state or expired.
            InvalidArgumentError: If the channel is not APP, OTP or FIRST_PURCHASE.
        """
        now = now or _utcnow()
        if self.status not in ACTIVATABLE_STATUSES:
            raise InvalidStateError(
                f"Card cannot be activated from status {self.status.value}"
            )
        if self.is_expired(now):
            raise InvalidStateError("Card is expired")
        try:
            channel = ActivationChannel(channel)
        except ValueError:
            raise InvalidArgumentError("activation channel must be APP, OTP or FIRST_PURCHASE")

        self.status = CardStatus.ACTIVE
        self.activation_channel = channel
        self.activated_at = now

    def can_activate(self, now: datetime | None = None) -> bool:
        """True iff the card is awaiting activation and not expired."""
        return self.status in ACTIVATABLE_STATUSES and not self.is_expired(now)

    def is_expired(self, now: datetime | None = None) -> bool:
        """True once now reaches the first day of the month after expiry."""
        now = now or _utcnow()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        if self.expiry_month == 12:
            year, month = self.expiry_year + 1, 1
        else:
            year, month = self.expiry_year, self.expiry_month + 1
        return now >= datetime(year, month, 1, tzinfo=timezone.utc)

    @property
    def expiry_label(self) -> str:
        """Expiry as printed on the card: "MM/YY"."""
        return f"{self.expiry_month:02d}/{self.expiry_year % 100:02d}"
