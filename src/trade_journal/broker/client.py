"""Tradovate REST client.

Thin async wrapper over the Tradovate v1 API with bounded timeouts and
retry with exponential backoff on transient failures.

Usage::

    async with TradovateClient(settings.broker) as client:
        grant = await client.request_token(Environment.DEMO, secrets)
        fills = await client.list_fills(Environment.DEMO, grant.access_token, 123)
"""

from __future__ import annotations

import asyncio
import logging
import random
from datetime import datetime, timezone
from typing import Any, Sequence

import httpx

from trade_journal.core.config import BrokerConfig
from trade_journal.core.enums import Environment
from trade_journal.core.errors import AuthFailure, BrokerError, TransientNetworkFailure
from trade_journal.core.interfaces import TokenGrant
from trade_journal.core.models import LoginSecrets

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = frozenset({408, 418, 429})


class TradovateClient:
    """Async client for the Tradovate REST API.

    Parameters
    ----------
    config:
        Base URLs, app identity, timeout and retry policy.
    transport:
        Optional httpx transport (``httpx.MockTransport`` in tests).
    """

    def __init__(
        self,
        config: BrokerConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or BrokerConfig()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    # -- Lifecycle -----------------------------------------------------------

    async def open(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._config.timeout_seconds),
                transport=self._transport,
                headers={"Accept": "application/json"},
            )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> TradovateClient:
        await self.open()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    def base_url(self, environment: Environment) -> str:
        if environment is Environment.LIVE:
            return self._config.live_url.rstrip("/")
        return self._config.demo_url.rstrip("/")

    # -- Auth ----------------------------------------------------------------

    async def request_token(
        self, environment: Environment, secrets: LoginSecrets,
    ) -> TokenGrant:
        """Authenticate from scratch (``auth/accesstokenrequest``)."""
        body = {
            "name": secrets.username,
            "password": secrets.password,
            "appId": self._config.app_id,
            "appVersion": self._config.app_version,
            "deviceId": self._config.device_id,
            "cid": secrets.cid,
            "sec": secrets.sec,
        }
        data = await self._request(
            "POST", environment, "auth/accesstokenrequest", json=body,
        )
        return _token_grant(data)

    async def renew_token(
        self, environment: Environment, access_token: str,
    ) -> TokenGrant:
        """Extend a still-valid token (``auth/renewaccesstoken``)."""
        data = await self._request(
            "POST", environment, "auth/renewaccesstoken", token=access_token,
        )
        return _token_grant(data)

    # -- Data ----------------------------------------------------------------

    async def list_accounts(
        self, environment: Environment, access_token: str,
    ) -> list[dict[str, Any]]:
        data = await self._request("GET", environment, "account/list", token=access_token)
        return _as_list(data, "account/list")

    async def list_fills(
        self, environment: Environment, access_token: str, broker_account_id: int,
    ) -> list[dict[str, Any]]:
        data = await self._request(
            "GET", environment, "fill/list",
            token=access_token, params={"accountId": broker_account_id},
        )
        return _as_list(data, "fill/list")

    async def contract_names(
        self, environment: Environment, access_token: str, contract_ids: Sequence[int],
    ) -> dict[int, str]:
        """Resolve contract ids to contract names (``MNQH6``) in one call."""
        if not contract_ids:
            return {}
        ids = ",".join(str(i) for i in sorted(set(contract_ids)))
        data = await self._request(
            "GET", environment, "contract/items", token=access_token, params={"ids": ids},
        )
        return {
            int(item["id"]): str(item["name"])
            for item in _as_list(data, "contract/items")
            if item.get("id") is not None and item.get("name")
        }

    # -- Transport -----------------------------------------------------------

    async def _request(
        self,
        method: str,
        environment: Environment,
        path: str,
        *,
        token: str | None = None,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        """Execute a request with retry and backoff.

        Retries on:
        - 5xx server errors
        - 408/418/429 responses
        - Network / timeout errors

        Raises :class:`AuthFailure` on 401/403 and :class:`BrokerError` on any
        other 4xx without retrying.
        """
        if self._client is None:
            raise RuntimeError("Client not opened. Use 'async with' or call open().")

        url = f"{self.base_url(environment)}/{path}"
        headers = {"Authorization": f"Bearer {token}"} if token else None
        max_retries = max(1, self._config.max_retries)

        for attempt in range(1, max_retries + 1):
            try:
                resp = await self._client.request(
                    method, url, params=params, json=json, headers=headers,
                )
            except (httpx.TimeoutException, httpx.NetworkError) as exc:
                if attempt == max_retries:
                    raise TransientNetworkFailure(
                        f"Max retries ({max_retries}) exhausted for {path}: {exc}"
                    ) from exc
                wait = self._backoff_delay(attempt)
                logger.warning(
                    "Network error on %s (attempt %d/%d), retrying in %.1fs: %s",
                    path, attempt, max_retries, wait, exc,
                )
                await asyncio.sleep(wait)
                continue

            if resp.status_code in (401, 403):
                raise AuthFailure(f"Tradovate rejected {path}: HTTP {resp.status_code}")

            if resp.status_code in _RETRYABLE_STATUS or resp.status_code >= 500:
                if attempt == max_retries:
                    raise TransientNetworkFailure(
                        f"Max retries ({max_retries}) exhausted for {path}: "
                        f"HTTP {resp.status_code}"
                    )
                wait = self._retry_after(resp) or self._backoff_delay(attempt)
                logger.warning(
                    "HTTP %d on %s (attempt %d/%d), retrying in %.1fs",
                    resp.status_code, path, attempt, max_retries, wait,
                )
                await asyncio.sleep(wait)
                continue

            if resp.status_code >= 400:
                raise BrokerError(
                    f"Tradovate API error {resp.status_code} on {path}: {resp.text[:200]}"
                )

            try:
                return resp.json()
            except ValueError as exc:
                raise BrokerError(f"Non-JSON response from {path}") from exc

        raise TransientNetworkFailure(f"Max retries ({max_retries}) exhausted for {path}")

    def _backoff_delay(self, attempt: int) -> float:
        """Exponential backoff with jitter."""
        base = self._config.base_backoff_seconds * (2 ** (attempt - 1))
        return base + random.uniform(0, base * 0.5)

    def _retry_after(self, resp: httpx.Response) -> float | None:
        value = resp.headers.get("Retry-After")
        if value is None:
            return None
        try:
            return min(float(value), 60.0)
        except ValueError:
            return None


# ---------------------------------------------------------------------------
# Response helpers
# ---------------------------------------------------------------------------

def _token_grant(data: Any) -> TokenGrant:
    if not isinstance(data, dict):
        raise BrokerError("Unexpected token response shape")
    # Wrong credentials come back as HTTP 200 with a captcha ticket.
    if data.get("p-ticket") or data.get("errorText"):
        raise AuthFailure(
            f"Invalid Tradovate credentials: {data.get('errorText') or 'p-ticket issued'}"
        )
    token = data.get("accessToken")
    if not token:
        raise AuthFailure("Tradovate did not return an access token")
    raw_expiry = data.get("expirationTime")
    if not raw_expiry:
        raise BrokerError("Token response has no expirationTime")
    try:
        expires_at = datetime.fromisoformat(str(raw_expiry).replace("Z", "+00:00"))
    except ValueError as exc:
        raise BrokerError(f"Unparseable expirationTime {raw_expiry!r}") from exc
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return TokenGrant(access_token=str(token), expires_at=expires_at)


def _as_list(data: Any, path: str) -> list[dict[str, Any]]:
    if data is None:
        return []
    if not isinstance(data, list):
        raise BrokerError(f"Expected a list from {path}, got {type(data).__name__}")
    return data
