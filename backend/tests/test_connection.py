"""Tests for the connection establisher and SDP signaling."""
import httpx
import pytest

from voice_agent.core.exceptions import CredentialError, HandshakeError, MediaAcquisitionError
from voice_agent.session.connection import (
    EVENT_CHANNEL_LABEL,
    ConnectionEstablisher,
    HttpSignaling,
    validate_answer,
)
from voice_agent.session.models import ConnectionState, Session


def _recording(connection):
    states = []
    connection.add_listener(states.append)
    return states


@pytest.mark.asyncio
async def test_establish_success(session, transport, media_source, signaling):
    connection = ConnectionEstablisher(transport, media_source, signaling)
    states = _recording(connection)

    state = await connection.establish(session)

    assert state == ConnectionState.CONNECTED
    assert states == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]
    assert transport.tracks == ["mic-track"]
    assert [c.label for c in transport.channels] == [EVENT_CHANNEL_LABEL]
    assert transport.local_sdp == signaling.offers[0]
    assert transport.remote_sdp.startswith("v=0")


@pytest.mark.asyncio
async def test_capture_constraints(session, transport, media_source, signaling):
    """Test capture is requested at 24kHz mono with voice processing enabled."""
    connection = ConnectionEstablisher(transport, media_source, signaling)
    await connection.establish(session)

    constraints = media_source.constraints
    assert constraints.sample_rate == 24000
    assert constraints.channel_count == 1
    assert constraints.echo_cancellation
    assert constraints.auto_gain_control
    assert constraints.noise_suppression


@pytest.mark.asyncio
async def test_malformed_answer_never_connects(session, transport, media_source):
    """Test an answer without a media line fails and never passes through Connected."""
    from conftest import FakeSignaling

    connection = ConnectionEstablisher(transport, media_source, FakeSignaling(answer="v=0\r\ns=-\r\n"))
    states = _recording(connection)

    with pytest.raises(HandshakeError):
        await connection.establish(session)

    assert connection.state == ConnectionState.DISCONNECTED
    assert ConnectionState.CONNECTED not in states
    assert transport.remote_sdp is None


@pytest.mark.asyncio
async def test_rejected_offer(session, transport, media_source, rejecting_signaling):
    connection = ConnectionEstablisher(transport, media_source, rejecting_signaling)

    with pytest.raises(HandshakeError):
        await connection.establish(session)

    assert connection.state == ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_missing_model_is_credential_error(transport, media_source, signaling):
    connection = ConnectionEstablisher(transport, media_source, signaling)
    unbound = Session(model="", voice="alloy", client_secret="ek_x")

    with pytest.raises(CredentialError):
        await connection.establish(unbound)

    assert connection.state == ConnectionState.DISCONNECTED
    assert signaling.offers == []


@pytest.mark.asyncio
async def test_media_failure(session, transport, signaling):
    from conftest import FakeMediaSource

    connection = ConnectionEstablisher(transport, FakeMediaSource(fail=True), signaling)

    with pytest.raises(MediaAcquisitionError):
        await connection.establish(session)

    assert connection.state == ConnectionState.DISCONNECTED
    assert transport.channels == []


@pytest.mark.asyncio
async def test_unexpected_media_exception_is_wrapped(session, transport, signaling):
    from conftest import FakeMediaSource

    class BrokenSource(FakeMediaSource):
        async def acquire(self, constraints):
            raise OSError("no input device")

    connection = ConnectionEstablisher(transport, BrokenSource(), signaling)

    with pytest.raises(MediaAcquisitionError):
        await connection.establish(session)


@pytest.mark.asyncio
async def test_transport_failure_after_connect(session, transport, media_source, signaling):
    connection = ConnectionEstablisher(transport, media_source, signaling)
    states = _recording(connection)
    await connection.establish(session)

    transport.fire_state("failed")
    transport.fire_state("connected")

    assert connection.state == ConnectionState.FAILED
    assert states[-1] == ConnectionState.FAILED


@pytest.mark.asyncio
async def test_establish_is_one_shot(session, transport, media_source, signaling):
    connection = ConnectionEstablisher(transport, media_source, signaling)
    await connection.establish(session)

    with pytest.raises(HandshakeError):
        await connection.establish(session)


@pytest.mark.asyncio
async def test_close_is_idempotent(session, transport, media_source, signaling):
    connection = ConnectionEstablisher(transport, media_source, signaling)
    await connection.establish(session)
    channel = transport.channels[0]
    stream = media_source.streams[0]

    await connection.close()
    await connection.close()

    assert channel.close_calls == 1
    assert stream.stop_calls == 1
    assert transport.close_calls == 1
    assert connection.state == ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_close_before_establish(transport, media_source, signaling):
    connection = ConnectionEstablisher(transport, media_source, signaling)

    await connection.close()

    assert transport.close_calls == 0
    assert connection.state == ConnectionState.IDLE


def test_validate_answer():
    validate_answer("v=0\r\nm=audio 9 RTP/AVP 0\r\n")
    with pytest.raises(HandshakeError):
        validate_answer("m=audio 9 RTP/AVP 0\r\n")
    with pytest.raises(HandshakeError):
        validate_answer("v=0\r\n")
    with pytest.raises(HandshakeError):
        validate_answer("")


@pytest.mark.asyncio
async def test_http_signaling_posts_offer(session):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["type"] = request.headers["Content-Type"]
        seen["body"] = request.content.decode()
        return httpx.Response(201, text="v=0\r\nm=audio 9 RTP/AVP 0\r\n")

    signaling = HttpSignaling(url="https://realtime.test/v1/realtime", transport=httpx.MockTransport(handler))

    answer = await signaling.exchange("v=0\r\noffer", session)

    assert answer.startswith("v=0")
    assert seen["url"] == "https://realtime.test/v1/realtime?model=gpt-4o-realtime-preview"
    assert seen["auth"] == "Bearer ek_test_secret_value"
    assert seen["type"] == "application/sdp"
    assert seen["body"] == "v=0\r\noffer"


@pytest.mark.asyncio
async def test_http_signaling_rejection(session):
    transport = httpx.MockTransport(lambda request: httpx.Response(401, text="invalid token"))
    signaling = HttpSignaling(url="https://realtime.test/v1/realtime", transport=transport)

    with pytest.raises(HandshakeError) as exc_info:
        await signaling.exchange("v=0", session)

    assert exc_info.value.details["status"] == 401
