"""
Security utilities: the token vault for card data.

This module centralizes all cryptographic operations so they're easy to
audit and update.

TOKENIZATION
  Cards never carry a PAN or CVV. At issuance the clear values are handed
  to a TokenVault, which encrypts them and returns opaque tokens
  ("tok_pan_<hex>", "tok_cvv_<hex>"). Only the tokens are stored on the
  card row and placed in outbound events.

FERNET ENCRYPTION (AES-128-CBC + HMAC-SHA256)
  - Every stored value gets its own random IV, carried inside the Fernet
    token together with the ciphertext
  - Fernet provides authenticated encryption: data is both encrypted and
    integrity-checked, preventing tampering
  - The key comes from TOKEN_VAULT_KEY and is never logged

Enterprise note:
  The vault is its own trust boundary. InMemoryTokenVault is the reference
  implementation used for development and tests; a real deployment backs
  the TokenVault interface with a Hardware Security Module or a managed
  secret vault (AWS KMS, HashiCorp Vault) instead of process memory or
  general-purpose application storage.
"""

import abc
import threading
import uuid

from cryptography.fernet import Fernet

from card_issuer.exceptions import InvalidArgumentError, TokenNotFoundError

PAN_TOKEN_PREFIX = "tok_pan_"
CVV_TOKEN_PREFIX = "tok_cvv_"


def mask_pan(pan: str) -> str:
    """Mask a 16-digit PAN for display, e.g. "4111 **** **** 1234"."""
    return f"{pan[:4]} **** **** {pan[-4:]}"


class TokenVault(abc.ABC):
    """Stores sensitive card values and hands back opaque tokens."""

    @abc.abstractmethod
    def store_pan(self, pan: str) -> str:
        """Encrypt and store a 16-digit PAN, returning a "tok_pan_" token."""

    @abc.abstractmethod
    def store_cvv(self, cvv: str) -> str:
        """Encrypt and store a 3 or 4 digit CVV, returning a "tok_cvv_" token."""

    @abc.abstractmethod
    def retrieve(self, token: str) -> str:
        """
        Return the clear value behind a token.

        For internal use only (masked display). The clear value must never
        leave the service beyond its first and last four digits.

        Raises:
            TokenNotFoundError: If the token is unknown.
        """


class InMemoryTokenVault(TokenVault):
    """
    Token vault holding Fernet ciphertexts in a process-local dictionary.

    Safe for concurrent use: every access to the mapping is guarded by a lock.
    Contents do not survive a restart.
    """

    def __init__(self, key: str | bytes):
        if not key:
            raise InvalidArgumentError("Vault encryption key must not be empty")
        if isinstance(key, str):
            key = key.encode()
        self._fernet = Fernet(key)
        self._store: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def store_pan(self, pan: str) -> str:
        if not pan or len(pan) != 16 or not pan.isdigit():
            raise InvalidArgumentError("PAN must have exactly 16 digits")
        return self._put(PAN_TOKEN_PREFIX, pan)

    def store_cvv(self, cvv: str) -> str:
        if not cvv or len(cvv) not in (3, 4) or not cvv.isdigit():
            raise InvalidArgumentError("CVV must have 3 or 4 digits")
        return self._put(CVV_TOKEN_PREFIX, cvv)

    def retrieve(self, token: str) -> str:
        with self._lock:
            ciphertext = self._store.get(token)
        if ciphertext is None:
            raise TokenNotFoundError(token)
        return self._fernet.decrypt(ciphertext).decode()

    def _put(self, prefix: str, plaintext: str) -> str:
        token = f"{prefix}{uuid.uuid4().hex}"
        ciphertext = self._fernet.encrypt(plaintext.encode())
        with self._lock:
            self._store[token] = ciphertext
        return token

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)
