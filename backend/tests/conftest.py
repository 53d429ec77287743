"""Shared fakes for the peer transport collaborators."""
import asyncio
import json
from typing import Any, Callable, Dict, List

import pytest

from voice_agent.core.exceptions import HandshakeError, MediaAcquisitionError
from voice_agent.session.connection import (
    ConnectionEstablisher,
    EventChannel,
    MediaSource,
    MediaStream,
    PeerTransport,
    Signaling,
)
from voice_agent.session.controller import SessionController
from voice_agent.session.models import Session

VALID_ANSWER = "v=0\r\no=- 1 2 IN IP4 127.0.0.1\r\ns=-\r\nt=0 0\r\nm=audio 9 UDP/TLS/RTP/SAVPF 111\r\n"


class FakeChannel(EventChannel):
    def __init__(self, label: str):
        self.label = label
        self._state = "connecting"
        self.sent: List[Dict[str, Any]] = []
        self.callbacks: Dict[str, List[Callable[..., Any]]] = {}
        self.close_calls = 0

    @property
    def ready_state(self) -> str:
        return self._state

    def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    def close(self) -> None:
        self.close_calls += 1
        self._state = "closed"

    def on(self, event: str, callback: Callable[..., Any]) -> None:
        self.callbacks.setdefault(event, []).append(callback)

    def open(self) -> None:
        self._state = "open"
        for callback in self.callbacks.get("open", []):
            callback()

    def deliver(self, event: Dict[str, Any]) -> None:
        for callback in self.callbacks.get("message", []):
            callback(json.dumps(event))

    @property
    def sent_types(self) -> List[str]:
        return [event["type"] for event in self.sent]


class FakeMediaStream(MediaStream):
    def __init__(self):
        self._tracks = ["mic-track"]
        self.enabled = True
        self.stop_calls = 0

    @property
    def tracks(self) -> List[Any]:
        return self._tracks

    def set_enabled(self, enabled: bool) -> None:
        self.enabled = enabled

    def stop(self) -> None:
        self.stop_calls += 1


class FakeMediaSource(MediaSource):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.constraints = None
        self.streams: List[FakeMediaStream] = []

    async def acquire(self, constraints):
        self.constraints = constraints
        if self.fail:
            raise MediaAcquisitionError("Permission denied")
        stream = FakeMediaStream()
        self.streams.append(stream)
        return stream


class FakeTransport(PeerTransport):
    def __init__(self, auto_connect: bool = True):
        self.auto_connect = auto_connect
        self.tracks: List[Any] = []
        self.channels: List[FakeChannel] = []
        self.callbacks: Dict[str, List[Callable[..., Any]]] = {}
        self.local_sdp = None
        self.remote_sdp = None
        self.close_calls = 0

    def add_track(self, track, stream) -> None:
        self.tracks.append(track)

    def create_data_channel(self, label: str, ordered: bool = True) -> FakeChannel:
        assert ordered
        channel = FakeChannel(label)
        self.channels.append(channel)
        return channel

    async def create_offer(self) -> str:
        return "v=0\r\nm=audio 9 UDP/TLS/RTP/SAVPF 111\r\na=sendrecv\r\n"

    async def set_local_description(self, sdp: str) -> None:
        self.local_sdp = sdp

    async def set_remote_description(self, sdp: str) -> None:
        self.remote_sdp = sdp
        if self.auto_connect:
            self.fire_state("connected")

    def on(self, event: str, callback: Callable[..., Any]) -> None:
        self.callbacks.setdefault(event, []).append(callback)

    def fire_state(self, state: str) -> None:
        for callback in self.callbacks.get("connectionstatechange", []):
            callback(state)

    async def close(self) -> None:
        self.close_calls += 1


class FakeSignaling(Signaling):
    def __init__(self, answer: str = VALID_ANSWER, error: Exception = None):
        self.answer = answer
        self.error = error
        self.offers: List[str] = []

    async def exchange(self, offer_sdp: str, session: Session) -> str:
        self.offers.append(offer_sdp)
        if self.error is not None:
            raise self.error
        return self.answer


@pytest.fixture
def session():
    return Session(
        model="gpt-4o-realtime-preview",
        voice="alloy",
        client_secret="ek_test_secret_value",
        expires_at=1700000000,
    )


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def media_source():
    return FakeMediaSource()


@pytest.fixture
def signaling():
    return FakeSignaling()


@pytest.fixture
def connected(session, transport, media_source, signaling):
    """A controller whose handshake completed and whose channel is open."""
    connection = ConnectionEstablisher(transport, media_source, signaling)
    controller = SessionController(session, connection, instructions="Be brief.")
    asyncio.run(connection.establish(session, on_channel=controller.attach_channel))
    channel = transport.channels[0]
    channel.open()
    channel.sent.clear()
    return controller, channel


@pytest.fixture
def rejecting_signaling():
    return FakeSignaling(error=HandshakeError("SDP exchange failed: 401 - invalid token"))
