"""
Custom exception classes and FastAPI exception handlers.

The service layer raises domain-specific errors without importing HTTP
concepts. The handler layer then translates these into HTTP responses.

Exception hierarchy:
    CardIssuerError (base)
    ├── InvalidArgumentError        — malformed or out-of-range input (400)
    ├── NotFoundError               — referenced entity absent (404)
    │   ├── CardNotFoundError
    │   └── TokenNotFoundError
    ├── InvalidStateError           — operation not legal for current state (409)
    ├── TransientDependencyError    — storage or transport unavailable (503)
    ├── PermanentDispatchError      — outbox publish retries exhausted
    └── IdempotencyKeyConflictError — another request already claimed the key

Retry policy by kind:
  - InvalidArgument / NotFound / InvalidState are never retried and are
    raised before any side effect.
  - TransientDependency is retried by the outbox dispatcher's backoff loop.
    On the synchronous issuance/activation path it propagates to the caller
    untouched; retrying part of an issuance inside the request could issue
    cards twice.
  - PermanentDispatch stays inside the dispatcher: it is logged and the
    entry remains pending for the next poll cycle.
"""

import uuid

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


# ---------------------------------------------------------------------------
# Base exception
# ---------------------------------------------------------------------------

class CardIssuerError(Exception):
    """Base exception for all Card Issuer domain errors."""

    def __init__(self, detail: str = "An error occurred"):
        self.detail = detail
        super().__init__(self.detail)


# ---------------------------------------------------------------------------
# Domain exceptions
# ---------------------------------------------------------------------------

class InvalidArgumentError(CardIssuerError):
    """Raised when input is malformed or out of range."""


class NotFoundError(CardIssuerError):
    """Raised when a referenced entity does not exist."""


class CardNotFoundError(NotFoundError):
    """Raised when a requested card does not exist."""

    def __init__(self, card_id: uuid.UUID):
        self.card_id = card_id
        super().__init__(f"Card {card_id} not found")


class TokenNotFoundError(NotFoundError):
    """Raised when the vault holds no entry for a token."""

    def __init__(self, token: str):
        self.token = token
        super().__init__("Token not found in vault")


class InvalidStateError(CardIssuerError):
    """Raised when an operation is not legal for the entity's current state."""


class TransientDependencyError(CardIssuerError):
    """Raised when storage or the message transport is temporarily unavailable."""


class PermanentDispatchError(CardIssuerError):
    """
    Raised when an outbox entry could not be published within the retry budget.

    Attributes:
        entry_id: The outbox entry that failed.
        attempts: How many publish attempts were made.
    """

    def __init__(self, entry_id: uuid.UUID, attempts: int):
        self.entry_id = entry_id
        self.attempts = attempts
        super().__init__(
            f"Outbox entry {entry_id} not published after {attempts} attempts"
        )


class IdempotencyKeyConflictError(CardIssuerError):
    """Raised when an idempotency key has already been claimed by another request."""

    def __init__(self, key: str):
        self.key = key
        super().__init__("Idempotency key already registered")


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

def _error_response(status_code: int, exc: CardIssuerError, error_type: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.detail, "error_type": error_type},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register custom exception handlers with the FastAPI application.

    Each handler maps a domain exception to an HTTP status code and a
    consistent JSON response format: {"detail": ..., "error_type": ...}

    This is called once during app startup in main.py.
    """

    @app.exception_handler(InvalidArgumentError)
    async def invalid_argument_handler(
        request: Request, exc: InvalidArgumentError
    ) -> JSONResponse:
        return _error_response(400, exc, "invalid_argument")

    @app.exception_handler(NotFoundError)
    async def not_found_handler(
        request: Request, exc: NotFoundError
    ) -> JSONResponse:
        return _error_response(404, exc, "not_found")

    @app.exception_handler(InvalidStateError)
    async def invalid_state_handler(
        request: Request, exc: InvalidStateError
    ) -> JSONResponse:
        return _error_response(409, exc, "invalid_state")

    @app.exception_handler(TransientDependencyError)
    async def transient_dependency_handler(
        request: Request, exc: TransientDependencyError
    ) -> JSONResponse:
        # Service Unavailable: the caller may retry with the same idempotency key
        return _error_response(503, exc, "transient_dependency")
