"""Tests for the Tradovate REST client (httpx MockTransport)."""

import json
from datetime import datetime, timezone

import httpx
import pytest

from trade_journal.broker.client import TradovateClient
from trade_journal.core.config import BrokerConfig
from trade_journal.core.enums import Environment
from trade_journal.core.errors import AuthFailure, BrokerError, TransientNetworkFailure
from trade_journal.core.models import LoginSecrets

TOKEN_BODY = {
    "accessToken": "tok-abc",
    "expirationTime": "2024-03-01T16:00:00.000Z",
    "userId": 1,
}


class Recorder:
    """Replays canned responses and records requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(
            outcome.status_code, headers=outcome.headers, content=outcome.content,
        )


def _client(recorder, **config):
    cfg = BrokerConfig(base_backoff_seconds=0, **config)
    return TradovateClient(cfg, transport=httpx.MockTransport(recorder))


SECRETS = LoginSecrets(username="trader", password="pw", cid=8, sec="s3c")


class TestAuth:
    @pytest.mark.asyncio
    async def test_request_token(self):
        rec = Recorder(httpx.Response(200, json=TOKEN_BODY))
        async with _client(rec) as client:
            grant = await client.request_token(Environment.DEMO, SECRETS)

        assert grant.access_token == "tok-abc"
        assert grant.expires_at == datetime(2024, 3, 1, 16, 0, tzinfo=timezone.utc)
        request = rec.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://demo.tradovateapi.com/v1/auth/accesstokenrequest"
        body = json.loads(request.content)
        assert body["name"] == "trader"
        assert body["cid"] == 8
        assert body["appId"] == "TradeJournal"

    @pytest.mark.asyncio
    async def test_live_environment_url(self):
        rec = Recorder(httpx.Response(200, json=TOKEN_BODY))
        async with _client(rec) as client:
            await client.request_token(Environment.LIVE, SECRETS)
        assert rec.requests[0].url.host == "live.tradovateapi.com"

    @pytest.mark.asyncio
    async def test_p_ticket_is_auth_failure(self):
        rec = Recorder(httpx.Response(200, json={"p-ticket": "xyz", "p-time": 15}))
        async with _client(rec) as client:
            with pytest.raises(AuthFailure, match="p-ticket"):
                await client.request_token(Environment.DEMO, SECRETS)

    @pytest.mark.asyncio
    async def test_error_text_is_auth_failure(self):
        rec = Recorder(httpx.Response(200, json={"errorText": "Incorrect username or password"}))
        async with _client(rec) as client:
            with pytest.raises(AuthFailure, match="Incorrect"):
                await client.request_token(Environment.DEMO, SECRETS)

    @pytest.mark.asyncio
    async def test_missing_expiry(self):
        rec = Recorder(httpx.Response(200, json={"accessToken": "t"}))
        async with _client(rec) as client:
            with pytest.raises(BrokerError, match="expirationTime"):
                await client.request_token(Environment.DEMO, SECRETS)

    @pytest.mark.asyncio
    async def test_renew_sends_bearer(self):
        rec = Recorder(httpx.Response(200, json=TOKEN_BODY))
        async with _client(rec) as client:
            await client.renew_token(Environment.DEMO, "old-token")
        request = rec.requests[0]
        assert request.url.path == "/v1/auth/renewaccesstoken"
        assert request.headers["Authorization"] == "Bearer old-token"


class TestData:
    @pytest.mark.asyncio
    async def test_list_fills(self):
        fills = [{"id": 1, "orderId": 2}]
        rec = Recorder(httpx.Response(200, json=fills))
        async with _client(rec) as client:
            assert await client.list_fills(Environment.DEMO, "tok", 123) == fills
        request = rec.requests[0]
        assert request.url.path == "/v1/fill/list"
        assert request.url.params["accountId"] == "123"
        assert request.headers["Authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_list_accounts(self):
        accounts = [{"id": 101, "name": "DEMO101"}]
        rec = Recorder(httpx.Response(200, json=accounts))
        async with _client(rec) as client:
            assert await client.list_accounts(Environment.LIVE, "tok") == accounts
        assert str(rec.requests[0].url) == "https://live.tradovateapi.com/v1/account/list"

    @pytest.mark.asyncio
    async def test_null_body_is_empty_list(self):
        rec = Recorder(httpx.Response(
            200, content=b"null", headers={"Content-Type": "application/json"},
        ))
        async with _client(rec) as client:
            assert await client.list_fills(Environment.DEMO, "tok", 1) == []

    @pytest.mark.asyncio
    async def test_unexpected_shape(self):
        rec = Recorder(httpx.Response(200, json={"fills": []}))
        async with _client(rec) as client:
            with pytest.raises(BrokerError, match="Expected a list"):
                await client.list_fills(Environment.DEMO, "tok", 1)

    @pytest.mark.asyncio
    async def test_contract_names(self):
        rec = Recorder(httpx.Response(200, json=[
            {"id": 7, "name": "MNQH6"},
            {"id": 3, "name": "ESH6"},
        ]))
        async with _client(rec) as client:
            names = await client.contract_names(Environment.DEMO, "tok", [7, 3, 7])
        assert names == {7: "MNQH6", 3: "ESH6"}
        assert rec.requests[0].url.params["ids"] == "3,7"

    @pytest.mark.asyncio
    async def test_contract_names_empty_skips_request(self):
        rec = Recorder(httpx.Response(500))
        async with _client(rec) as client:
            assert await client.contract_names(Environment.DEMO, "tok", []) == {}
        assert rec.requests == []

    @pytest.mark.asyncio
    async def test_not_opened(self):
        client = TradovateClient(BrokerConfig())
        with pytest.raises(RuntimeError, match="not opened"):
            await client.list_fills(Environment.DEMO, "tok", 1)


class TestRetries:
    @pytest.mark.asyncio
    async def test_server_error_retried(self):
        rec = Recorder(
            httpx.Response(502),
            httpx.Response(503),
            httpx.Response(200, json=[]),
        )
        async with _client(rec) as client:
            assert await client.list_fills(Environment.DEMO, "tok", 1) == []
        assert len(rec.requests) == 3

    @pytest.mark.asyncio
    async def test_retries_exhausted(self):
        rec = Recorder(httpx.Response(500))
        async with _client(rec, max_retries=2) as client:
            with pytest.raises(TransientNetworkFailure, match="HTTP 500"):
                await client.list_fills(Environment.DEMO, "tok", 1)
        assert len(rec.requests) == 2

    @pytest.mark.asyncio
    async def test_rate_limit_honours_retry_after(self):
        rec = Recorder(
            httpx.Response(429, headers={"Retry-After": "0"}),
            httpx.Response(200, json=[]),
        )
        async with _client(rec) as client:
            await client.list_fills(Environment.DEMO, "tok", 1)
        assert len(rec.requests) == 2

    @pytest.mark.asyncio
    async def test_network_error_retried(self):
        rec = Recorder(
            httpx.ConnectError("connection refused"),
            httpx.Response(200, json=[]),
        )
        async with _client(rec) as client:
            assert await client.list_fills(Environment.DEMO, "tok", 1) == []
        assert len(rec.requests) == 2

    @pytest.mark.asyncio
    async def test_timeout_exhausted(self):
        rec = Recorder(httpx.ReadTimeout("slow"))
        async with _client(rec) as client:
            with pytest.raises(TransientNetworkFailure):
                await client.list_fills(Environment.DEMO, "tok", 1)
        assert len(rec.requests) == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_auth_status_not_retried(self, status):
        rec = Recorder(httpx.Response(status))
        async with _client(rec) as client:
            with pytest.raises(AuthFailure):
                await client.list_fills(Environment.DEMO, "tok", 1)
        assert len(rec.requests) == 1

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        rec = Recorder(httpx.Response(404, text="no such account"))
        async with _client(rec) as client:
            with pytest.raises(BrokerError) as exc_info:
                await client.list_fills(Environment.DEMO, "tok", 1)
        assert not isinstance(exc_info.value, TransientNetworkFailure)
        assert "no such account" in str(exc_info.value)
        assert len(rec.requests) == 1

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        rec = Recorder(httpx.Response(200, text="<html>maintenance</html>"))
        async with _client(rec) as client:
            with pytest.raises(BrokerError, match="Non-JSON"):
                await client.list_fills(Environment.DEMO, "tok", 1)
