"""Connection Establisher.

Binds the local audio track and the event channel to a peer transport,
runs the offer/answer exchange with the remote realtime endpoint using a
short-lived credential, and reports connection-state transitions.

The peer connection, media capture and event channel are external
collaborators; they are reached only through the abstract interfaces
below so that any WebRTC stack can be plugged in.
"""
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional

import httpx

from voice_agent.core.config import settings
from voice_agent.core.exceptions import (
    CredentialError,
    HandshakeError,
    MediaAcquisitionError,
)
from voice_agent.core.logging import logger
from voice_agent.session.models import ConnectionState, MediaConstraints, Session

EVENT_CHANNEL_LABEL = "oai-events"

StateListener = Callable[[ConnectionState], None]


class EventChannel(ABC):
    """Ordered, reliable bidirectional message channel."""

    label: str

    @property
    @abstractmethod
    def ready_state(self) -> str:
        """One of "connecting", "open", "closing", "closed"."""

    @abstractmethod
    def send(self, data: str) -> None:
        ...

    @abstractmethod
    def close(self) -> None:
        ...

    @abstractmethod
    def on(self, event: str, callback: Callable[..., Any]) -> None:
        """Register a callback for "open", "message", "close" or "error"."""

    @property
    def is_open(self) -> bool:
        return self.ready_state == "open"


class MediaStream(ABC):
    """A live local capture stream."""

    @property
    @abstractmethod
    def tracks(self) -> List[Any]:
        ...

    @abstractmethod
    def set_enabled(self, enabled: bool) -> None:
        """Enable or disable all audio tracks (mute)."""

    @abstractmethod
    def stop(self) -> None:
        """Stop capture on every track."""


class MediaSource(ABC):
    """Acquires local audio capture."""

    @abstractmethod
    async def acquire(self, constraints: MediaConstraints) -> MediaStream:
        ...


class PeerTransport(ABC):
    """The underlying peer connection (media path + channel factory)."""

    @abstractmethod
    def add_track(self, track: Any, stream: MediaStream) -> None:
        ...

    @abstractmethod
    def create_data_channel(self, label: str, ordered: bool = True) -> EventChannel:
        ...

    @abstractmethod
    async def create_offer(self) -> str:
        """Create a local offer and return its SDP."""

    @abstractmethod
    async def set_local_description(self, sdp: str) -> None:
        ...

    @abstractmethod
    async def set_remote_description(self, sdp: str) -> None:
        ...

    @abstractmethod
    def on(self, event: str, callback: Callable[..., Any]) -> None:
        """Register a callback for "connectionstatechange" or "track"."""

    @abstractmethod
    async def close(self) -> None:
        ...


class Signaling(ABC):
    """Handshake primitive: offer + bearer credential in, answer out."""

    @abstractmethod
    async def exchange(self, offer_sdp: str, session: Session) -> str:
        ...


class HttpSignaling(Signaling):
    """Posts the SDP offer to the realtime endpoint over HTTPS."""

    def __init__(
        self,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.url = url or settings.realtime_url
        self.timeout = timeout or settings.http_timeout_seconds
        self._transport = transport

    async def exchange(self, offer_sdp: str, session: Session) -> str:
        """
        Send the offer and return the remote answer SDP.

        Raises:
            HandshakeError: on transport failure or a non-2xx response
        """
        logger.info(f"Sending SDP offer to {self.url} (model={session.model})")
        logger.debug(f"Using ephemeral token: {session.redacted_secret()}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.url,
                    params={"model": session.model},
                    content=offer_sdp,
                    headers={
                        "Authorization": f"Bearer {session.client_secret}",
                        "Content-Type": "application/sdp",
                    },
                )
        except httpx.HTTPError as e:
            raise HandshakeError(f"SDP exchange failed: {e}") from e

        logger.info(f"SDP response status: {response.status_code}")
        if response.status_code >= 400:
            raise HandshakeError(
                f"SDP exchange failed: {response.status_code} - {response.text[:200]}",
                details={"status": response.status_code, "body": response.text},
            )
        return response.text


def validate_answer(sdp: str) -> None:
    """
    Check that an answer looks like a session description.

    A valid answer carries a protocol version line and at least one
    media line.

    Raises:
        HandshakeError: if either is missing
    """
    lines = [line.strip() for line in (sdp or "").splitlines()]
    has_version = "v=0" in lines
    has_media = any(line.startswith("m=") for line in lines)
    if not (has_version and has_media):
        logger.error(f"Invalid SDP answer received: {(sdp or '')[:200]}")
        raise HandshakeError(
            "Received invalid SDP answer",
            details={"has_version": has_version, "has_media": has_media},
        )


_TRANSPORT_STATES = {
    "connected": ConnectionState.CONNECTED,
    "failed": ConnectionState.FAILED,
    "disconnected": ConnectionState.DISCONNECTED,
}


class ConnectionEstablisher:
    """Owns ConnectionState and the resources bound during the handshake."""

    def __init__(
        self,
        transport: PeerTransport,
        media_source: MediaSource,
        signaling: Optional[Signaling] = None
    ):
        self.transport = transport
        self.media_source = media_source
        self.signaling = signaling or HttpSignaling()
        self.state = ConnectionState.IDLE
        self.channel: Optional[EventChannel] = None
        self.media_stream: Optional[MediaStream] = None
        self._listeners: List[StateListener] = []
        self._transport_closed = False

    def add_listener(self, listener: StateListener) -> None:
        """Subscribe to connection state transitions."""
        self._listeners.append(listener)

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    def _set_state(self, state: ConnectionState) -> None:
        if state == self.state:
            return
        logger.info(f"Connection state: {self.state.value} -> {state.value}")
        self.state = state
        for listener in list(self._listeners):
            listener(state)

    def _on_transport_state(self, raw_state: str) -> None:
        state = _TRANSPORT_STATES.get(raw_state)
        if state is None:
            logger.debug(f"Transport state: {raw_state}")
            return
        # Disconnected and Failed are terminal until a full teardown.
        if self.state not in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            logger.debug(f"Ignoring transport state {raw_state} while {self.state.value}")
            return
        self._set_state(state)

    async def establish(
        self,
        session: Session,
        constraints: Optional[MediaConstraints] = None,
        on_channel: Optional[Callable[[EventChannel], None]] = None
    ) -> ConnectionState:
        """
        Run the one-time handshake for ``session``.

        Args:
            session: Session carrying the model and ephemeral credential
            constraints: Capture settings (defaults from configuration)
            on_channel: Called with the event channel as soon as it exists,
                before it can open

        Returns:
            The connection state once the remote answer is applied

        Raises:
            CredentialError: no model bound to the credential
            MediaAcquisitionError: capture could not start
            HandshakeError: remote rejected the offer or answered malformed SDP
        """
        if self.state != ConnectionState.IDLE:
            raise HandshakeError(f"Handshake already attempted (state={self.state.value})")

        self._set_state(ConnectionState.CONNECTING)
        try:
            if not session.model:
                raise CredentialError("No model specified in session data")

            constraints = constraints or MediaConstraints(
                sample_rate=settings.sample_rate,
                channel_count=settings.channels,
                echo_cancellation=settings.echo_cancellation,
                auto_gain_control=settings.auto_gain_control,
                noise_suppression=settings.noise_suppression,
            )
            self.media_stream = await self._acquire_media(constraints)
            for track in self.media_stream.tracks:
                self.transport.add_track(track, self.media_stream)

            self.channel = self.transport.create_data_channel(EVENT_CHANNEL_LABEL, ordered=True)
            if on_channel is not None:
                on_channel(self.channel)
            self.transport.on("connectionstatechange", self._on_transport_state)

            offer = await self.transport.create_offer()
            await self.transport.set_local_description(offer)
            logger.info("Created SDP offer, sending to remote endpoint")

            answer = await self.signaling.exchange(offer, session)
            logger.info(f"Received SDP answer ({len(answer or '')} chars)")
            validate_answer(answer)

            await self.transport.set_remote_description(answer)
        except Exception as e:
            logger.error(f"Connection setup failed: {e}")
            self._set_state(ConnectionState.DISCONNECTED)
            raise

        logger.info("Handshake complete, waiting for transport to connect")
        return self.state

    async def _acquire_media(self, constraints: MediaConstraints) -> MediaStream:
        try:
            return await self.media_source.acquire(constraints)
        except MediaAcquisitionError:
            raise
        except Exception as e:
            raise MediaAcquisitionError(f"Could not start audio capture: {e}") from e

    def close_channel(self) -> None:
        """Terminate the event channel if one was created."""
        if self.channel is None:
            return
        channel, self.channel = self.channel, None
        channel.close()
        logger.info("Event channel closed")

    def stop_media(self) -> None:
        """Stop local capture if it was acquired."""
        if self.media_stream is None:
            return
        stream, self.media_stream = self.media_stream, None
        stream.stop()
        logger.info("Local audio capture stopped")

    async def close_transport(self) -> None:
        """Release the media path; marks the connection disconnected."""
        if not self._transport_closed and self.state != ConnectionState.IDLE:
            self._transport_closed = True
            await self.transport.close()
            logger.info("Peer transport closed")
        if self.state != ConnectionState.IDLE:
            self._set_state(ConnectionState.DISCONNECTED)

    async def close(self) -> None:
        """Release everything in teardown order; idempotent."""
        self.close_channel()
        self.stop_media()
        await self.close_transport()
