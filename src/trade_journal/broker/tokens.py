"""Broker access-token cache with single-flight renewal.

:meth:`TokenManager.acquire` returns a token with more than the safety
margin of lifetime left.  Otherwise it renews the cached token, falling
back to a fresh login when renewal is refused or nothing is cached.

Concurrent callers for one account share one in-flight refresh; refreshes
for different accounts run independently.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from trade_journal.core.clock import IClock, WallClock
from trade_journal.core.enums import Environment
from trade_journal.core.errors import AuthFailure
from trade_journal.core.interfaces import IBrokerClient, ICredentialProvider, TokenGrant
from trade_journal.core.models import BrokerCredential

logger = logging.getLogger(__name__)


class TokenManager:
    """Per-account cache of short-lived broker access tokens.

    Parameters
    ----------
    client:
        Broker API used for ``accesstokenrequest`` / ``renewaccesstoken``.
    credentials:
        Supplies login secrets when a full login is needed.
    safety_margin:
        Tokens expiring within this window are refreshed before use.
    clock:
        Time source for expiry checks.
    """

    def __init__(
        self,
        client: IBrokerClient,
        credentials: ICredentialProvider,
        *,
        safety_margin: timedelta = timedelta(minutes=5),
        clock: IClock | None = None,
    ) -> None:
        self._client = client
        self._credentials = credentials
        self._margin = safety_margin
        self._clock = clock or WallClock()
        self._tokens: dict[str, BrokerCredential] = {}
        self._inflight: dict[str, asyncio.Future[BrokerCredential]] = {}

    def cached(self, account_id: str) -> BrokerCredential | None:
        return self._tokens.get(account_id)

    async def acquire(
        self, account_id: str, environment: Environment = Environment.DEMO,
    ) -> BrokerCredential:
        """Return a usable token for *account_id*, refreshing if needed."""
        current = self._tokens.get(account_id)
        if current is not None and not current.expires_within(self._clock.now(), self._margin):
            return current

        pending = self._inflight.get(account_id)
        if pending is not None:
            return await asyncio.shield(pending)

        future: asyncio.Future[BrokerCredential] = asyncio.get_running_loop().create_future()
        self._inflight[account_id] = future
        try:
            credential = await self._refresh(account_id, environment, current)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Mark retrieved so an unawaited future does not log at GC.
            future.exception()
            raise
        else:
            self._tokens[account_id] = credential
            future.set_result(credential)
            return credential
        finally:
            self._inflight.pop(account_id, None)

    def invalidate(self, account_id: str) -> None:
        """Drop the cached token so the next :meth:`acquire` logs in again."""
        if self._tokens.pop(account_id, None) is not None:
            logger.info("Invalidated broker token for %s", account_id)

    async def _refresh(
        self,
        account_id: str,
        environment: Environment,
        current: BrokerCredential | None,
    ) -> BrokerCredential:
        now = self._clock.now()
        if current is not None and current.expires_at > now:
            try:
                grant = await self._client.renew_token(current.environment, current.access_token)
                logger.info("Renewed broker token for %s", account_id)
                return self._credential(account_id, current.environment, grant)
            except AuthFailure:
                logger.warning("Token renewal refused for %s, logging in again", account_id)

        secrets = await self._credentials.login_secrets(account_id)
        grant = await self._client.request_token(environment, secrets)
        logger.info("Obtained broker token for %s (%s)", account_id, environment.value)
        return self._credential(account_id, environment, grant)

    @staticmethod
    def _credential(
        account_id: str, environment: Environment, grant: TokenGrant,
    ) -> BrokerCredential:
        return BrokerCredential(
            account_id=account_id,
            environment=environment,
            access_token=grant.access_token,
            expires_at=grant.expires_at,
        )
