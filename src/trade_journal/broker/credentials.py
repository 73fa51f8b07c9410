"""Credential providers for broker logins.

Secrets are resolved per journal account id at login time and never
cached by the token manager.
"""

from __future__ import annotations

from typing import Mapping

from trade_journal.core.errors import ConfigError
from trade_journal.core.models import LoginSecrets


class StaticCredentialProvider:
    """Serves login secrets from a fixed mapping (settings file or env)."""

    def __init__(self, secrets: Mapping[str, LoginSecrets]) -> None:
        self._secrets = dict(secrets)

    async def login_secrets(self, account_id: str) -> LoginSecrets:
        try:
            return self._secrets[account_id]
        except KeyError:
            raise ConfigError(
                f"No broker credentials configured for account {account_id!r}"
            ) from None
