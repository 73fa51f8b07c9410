"""Tradovate broker access: REST client, token cache, credential providers."""

from .client import TradovateClient
from .credentials import StaticCredentialProvider
from .tokens import TokenManager

__all__ = ["StaticCredentialProvider", "TokenManager", "TradovateClient"]
