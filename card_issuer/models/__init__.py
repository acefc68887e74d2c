"""
SQLAlchemy ORM models package.

All models are imported here so that:
  1. Base.metadata knows every table before create_all() runs
  2. Other modules can import from card_issuer.models directly
"""

from card_issuer.models.card import Card, CardStatus, CardClass, ActivationChannel  # noqa: F401
from card_issuer.models.idempotency import IdempotencyRecord  # noqa: F401
from card_issuer.models.outbox import OutboxEntry  # noqa: F401
