"""
FastAPI dependencies for the card workflows.

Besides the database session (get_db in database.py), routes depend on:

  get_token_vault   -> the process-wide TokenVault
  get_pan_generator -> the PAN/CVV generator

Both are cached, so every request shares one vault and one generator.
Tests replace them through app.dependency_overrides.
"""

from functools import lru_cache

from card_issuer.config import settings
from card_issuer.security import InMemoryTokenVault, TokenVault
from card_issuer.services.pan_generator import PanGenerator


@lru_cache
def get_token_vault() -> TokenVault:
    """The vault holding every PAN/CVV issued by this process."""
    return InMemoryTokenVault(settings.TOKEN_VAULT_KEY.get_secret_value())


@lru_cache
def get_pan_generator() -> PanGenerator:
    """PAN/CVV generator backed by the system CSPRNG."""
    return PanGenerator()
