"""
Message publishers — the transport the outbox dispatcher delivers through.

MessagePublisher is the port. publish() returns only once the transport
has accepted the message and raises otherwise; the dispatcher marks an
entry sent only after publish() returned.

Implementations:
  LoggingPublisher — dry-run transport that logs each message
  HttpPublisher    — POSTs each message to a broker's HTTP endpoint
"""

import abc
import json
import logging

import httpx

from card_issuer.config import Settings, settings
from card_issuer.exceptions import InvalidArgumentError, TransientDependencyError

logger = logging.getLogger(__name__)


class MessagePublisher(abc.ABC):
    """Delivers one message to a topic."""

    @abc.abstractmethod
    async def publish(self, topic: str, payload: str) -> None:
        """Raises on any failure to deliver."""

    async def aclose(self) -> None:
        """Release transport resources."""


class LoggingPublisher(MessagePublisher):
    """Publisher used when no broker is configured."""

    async def publish(self, topic: str, payload: str) -> None:
        logger.info("Published topic=%s bytes=%d", topic, len(payload.encode()))


class HttpPublisher(MessagePublisher):
    """
    Publishes by POSTing {"topic": ..., "payload": {...}} as JSON.

    Any transport error or non-2xx response raises TransientDependencyError;
    the dispatcher's retry policy decides when to give up. A payload that is
    not JSON raises InvalidArgumentError before anything is sent.
    """

    def __init__(self, url: str, timeout: float = 5.0, client: httpx.AsyncClient | None = None):
        self._url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def publish(self, topic: str, payload: str) -> None:
        try:
            body = {"topic": topic, "payload": json.loads(payload)}
        except ValueError as exc:
            raise InvalidArgumentError(f"Payload for {topic} is not valid JSON") from exc
        try:
            response = await self._client.post(self._url, json=body)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise TransientDependencyError(f"Broker publish failed: {exc}") from exc

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def build_publisher(config: Settings = settings) -> MessagePublisher:
    """HttpPublisher when BROKER_URL is set, else LoggingPublisher."""
    if config.BROKER_URL:
        logger.info("Outbox publishing over HTTP to %s", config.BROKER_URL)
        return HttpPublisher(config.BROKER_URL, timeout=config.BROKER_TIMEOUT_SECONDS)
    logger.info("No BROKER_URL configured; outbox messages will only be logged")
    return LoggingPublisher()
