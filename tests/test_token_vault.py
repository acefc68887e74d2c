"""
Tests for the token vault and PAN masking.

These tests verify:
  - Tokens have the documented prefixes and never contain the value
  - Values are encrypted at rest (the stored ciphertext is not the value)
  - retrieve() returns the original value; unknown tokens are NotFound
  - Input validation for PANs and CVVs
"""

import re
import threading

import pytest
from cryptography.fernet import Fernet

from card_issuer.exceptions import InvalidArgumentError, NotFoundError, TokenNotFoundError
from card_issuer.security import InMemoryTokenVault, mask_pan

PAN = "5162331234567897"


class TestStore:
    """Tests for store_pan / store_cvv."""

    def test_pan_token_format(self, vault):
        token = vault.store_pan(PAN)
        assert re.fullmatch(r"tok_pan_[0-9a-f]{32}", token)
        assert PAN not in token

    def test_cvv_token_format(self, vault):
        token = vault.store_cvv("123")
        assert re.fullmatch(r"tok_cvv_[0-9a-f]{32}", token)

    def test_four_digit_cvv_accepted(self, vault):
        token = vault.store_cvv("1234")
        assert vault.retrieve(token) == "1234"

    def test_same_value_gets_distinct_tokens(self, vault):
        assert vault.store_pan(PAN) != vault.store_pan(PAN)

    def test_value_encrypted_at_rest(self, vault):
        token = vault.store_pan(PAN)
        ciphertext = vault._store[token]
        assert PAN.encode() not in ciphertext

    @pytest.mark.parametrize("pan", ["", "516233123456789", "51623312345678970", "516233123456789X"])
    def test_invalid_pan_rejected(self, vault, pan):
        with pytest.raises(InvalidArgumentError):
            vault.store_pan(pan)

    @pytest.mark.parametrize("cvv", ["", "12", "12345", "12a"])
    def test_invalid_cvv_rejected(self, vault, cvv):
        with pytest.raises(InvalidArgumentError):
            vault.store_cvv(cvv)

    def test_empty_key_rejected(self):
        with pytest.raises(InvalidArgumentError):
            InMemoryTokenVault("")


class TestRetrieve:
    """Tests for retrieve()."""

    def test_round_trip(self, vault):
        token = vault.store_pan(PAN)
        assert vault.retrieve(token) == PAN

    def test_unknown_token_is_not_found(self, vault):
        with pytest.raises(TokenNotFoundError) as exc_info:
            vault.retrieve("tok_pan_" + "0" * 32)
        assert isinstance(exc_info.value, NotFoundError)
        assert exc_info.value.detail == "Token not found in vault"

    def test_vaults_with_different_keys_do_not_share_tokens(self, vault):
        token = vault.store_pan(PAN)
        other = InMemoryTokenVault(Fernet.generate_key())
        with pytest.raises(TokenNotFoundError):
            other.retrieve(token)

    def test_concurrent_stores(self, vault):
        tokens = []
        lock = threading.Lock()

        def store_many():
            for _ in range(50):
                token = vault.store_cvv("123")
                with lock:
                    tokens.append(token)

        threads = [threading.Thread(target=store_many) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(set(tokens)) == 400
        assert len(vault) == 400


class TestMaskPan:
    def test_shows_first_and_last_four(self):
        assert mask_pan(PAN) == "5162 **** **** 7897"
