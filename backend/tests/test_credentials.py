"""Tests for the session token client."""
import httpx
import pytest

from voice_agent.core.exceptions import CredentialError
from voice_agent.services.credentials import CredentialClient

TOKEN_URL = "http://token.test/api/session"

TOKEN_BODY = {
    "id": "sess_001",
    "object": "realtime.session",
    "model": "gpt-4o-realtime-preview",
    "voice": "alloy",
    "client_secret": {"value": "ek_abc123", "expires_at": 1700000060},
}


def _client(handler) -> CredentialClient:
    return CredentialClient(url=TOKEN_URL, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_fetch_binds_session():
    client = _client(lambda request: httpx.Response(200, json=TOKEN_BODY))

    session = await client.fetch()

    assert session.model == "gpt-4o-realtime-preview"
    assert session.voice == "alloy"
    assert session.client_secret == "ek_abc123"
    assert session.expires_at == 1700000060
    assert "ek_abc123" not in session.redacted_secret()


@pytest.mark.asyncio
async def test_missing_model_rejected():
    body = dict(TOKEN_BODY, model=None)
    client = _client(lambda request: httpx.Response(200, json=body))

    with pytest.raises(CredentialError, match="model"):
        await client.fetch()


@pytest.mark.asyncio
async def test_missing_voice_rejected():
    body = {k: v for k, v in TOKEN_BODY.items() if k != "voice"}
    client = _client(lambda request: httpx.Response(200, json=body))

    with pytest.raises(CredentialError, match="voice"):
        await client.fetch()


@pytest.mark.asyncio
async def test_missing_secret_rejected():
    body = dict(TOKEN_BODY, client_secret={"expires_at": 1})
    client = _client(lambda request: httpx.Response(200, json=body))

    with pytest.raises(CredentialError):
        await client.fetch()


@pytest.mark.asyncio
async def test_non_2xx_status():
    client = _client(lambda request: httpx.Response(500, json={"error": "boom"}))

    with pytest.raises(CredentialError) as exc_info:
        await client.fetch()

    assert exc_info.value.details["status"] == 500


@pytest.mark.asyncio
async def test_malformed_body():
    client = _client(lambda request: httpx.Response(200, text="<html>oops</html>"))

    with pytest.raises(CredentialError, match="Malformed"):
        await client.fetch()


@pytest.mark.asyncio
async def test_network_failure():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(CredentialError):
        await _client(handler).fetch()
