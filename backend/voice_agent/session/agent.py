"""Voice agent: session start/stop, mute, context injection and metering."""
from typing import Any, Callable, Dict, Optional

from voice_agent.audio.levels import LevelAnalyser
from voice_agent.audio.models import AudioFrame
from voice_agent.audio.sampler import LevelSampler
from voice_agent.core.exceptions import NotConnectedError, VoiceAgentError
from voice_agent.core.logging import logger
from voice_agent.services.credentials import CredentialClient
from voice_agent.services.interrupter import VoiceActivityInterrupter
from voice_agent.services.transcript import TranscriptAssembler
from voice_agent.services.usage_ledger import UsageLedger
from voice_agent.session.connection import (
    ConnectionEstablisher,
    MediaSource,
    PeerTransport,
    Signaling,
)
from voice_agent.session.controller import SessionController
from voice_agent.session.models import ConnectionState, Role, Session

TransportFactory = Callable[[], PeerTransport]


class VoiceAgent:
    """
    One conversation at a time over a realtime peer connection.

    The agent owns the long-lived pieces (transcript, usage ledger,
    interrupter, level analysers) and builds the per-session pieces
    (connection, controller, sampler) on ``start_session``.
    """

    def __init__(
        self,
        transport_factory: TransportFactory,
        media_source: MediaSource,
        credentials: Optional[CredentialClient] = None,
        signaling: Optional[Signaling] = None,
        ledger: Optional[UsageLedger] = None,
        interrupter: Optional[VoiceActivityInterrupter] = None,
        tick_interval_ms: Optional[int] = None
    ):
        self.transport_factory = transport_factory
        self.media_source = media_source
        self.credentials = credentials or CredentialClient()
        self.signaling = signaling
        self.ledger = ledger or UsageLedger()
        self.interrupter = interrupter or VoiceActivityInterrupter()
        self.transcript = TranscriptAssembler()
        self.input_analyser = LevelAnalyser()
        self.output_analyser = LevelAnalyser()
        self.tick_interval_ms = tick_interval_ms

        self.session: Optional[Session] = None
        self.connection: Optional[ConnectionEstablisher] = None
        self.controller: Optional[SessionController] = None
        self.sampler: Optional[LevelSampler] = None
        self.is_muted = False
        self.input_level = 0.0
        self.output_level = 0.0
        self._stopping = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def connection_state(self) -> ConnectionState:
        if self.connection is None:
            return ConnectionState.DISCONNECTED if self.session else ConnectionState.IDLE
        return self.connection.state

    @property
    def is_connected(self) -> bool:
        return self.controller is not None and self.controller.is_connected

    async def start_session(self, instructions: Optional[str] = None) -> Session:
        """
        Obtain a credential, run the handshake and start level sampling.

        Args:
            instructions: Assistant instructions announced when the channel opens

        Returns:
            The bound session

        Raises:
            VoiceAgentError: a session is already running, or any of
                CredentialError / MediaAcquisitionError / HandshakeError
                from the start sequence
        """
        if self.connection is not None:
            raise VoiceAgentError("A session is already running; stop it before starting another")

        self.ledger.reset()
        try:
            self.session = await self.credentials.fetch()
            self._log(Role.SYSTEM, "Session token obtained successfully")

            transport = self.transport_factory()
            transport.on("track", self._on_remote_track)
            self.connection = ConnectionEstablisher(transport, self.media_source, self.signaling)
            self.connection.add_listener(self._on_connection_state)
            self.controller = SessionController(
                self.session,
                self.connection,
                ledger=self.ledger,
                transcript=self.transcript,
                interrupter=self.interrupter,
                instructions=instructions,
            )

            await self.connection.establish(self.session, on_channel=self.controller.attach_channel)
        except Exception as e:
            self._log(Role.ERROR, f"Failed to start session: {e}")
            await self.stop_session()
            raise

        self.interrupter.reset()
        self.sampler = LevelSampler(
            input_source=lambda: self.input_analyser.level,
            on_input_level=self._on_input_level,
            output_source=lambda: self.output_analyser.level,
            on_output_level=self._on_output_level,
            interval_ms=self.tick_interval_ms,
        )
        self.sampler.start()
        self._log(Role.SYSTEM, "Connection established successfully")
        return self.session

    async def stop_session(self) -> None:
        """
        Tear down the session; idempotent and safe on partial setups.

        Order: event channel, local capture, level metering, media path.
        """
        if self.connection is None and self.sampler is None:
            return
        self._stopping = True

        if self.connection is not None:
            self.connection.close_channel()
            self.connection.stop_media()

        if self.sampler is not None:
            await self.sampler.stop()
            self.sampler = None
        self.input_analyser.reset()
        self.output_analyser.reset()
        self.input_level = 0.0
        self.output_level = 0.0

        if self.connection is not None:
            await self.connection.close_transport()
            self.connection = None

        self.controller = None
        self.is_muted = False
        self._stopping = False
        self._log(Role.SYSTEM, "Session ended")

    def _on_connection_state(self, state: ConnectionState) -> None:
        self._log(Role.SYSTEM, f"Connection state: {state.value}")
        if state in (ConnectionState.FAILED, ConnectionState.DISCONNECTED) and not self._stopping:
            logger.warning("Transport lost; stop the session before starting a new one")

    def _on_remote_track(self, *args: Any) -> None:
        self._log(Role.SYSTEM, "Received remote audio track")

    # ------------------------------------------------------------------
    # Audio levels
    # ------------------------------------------------------------------

    def push_input_frame(self, frame: AudioFrame) -> None:
        """Feed captured microphone audio to the input level meter."""
        self.input_analyser.push(frame)

    def push_output_frame(self, frame: AudioFrame) -> None:
        """Feed received assistant audio to the output level meter."""
        self.output_analyser.push(frame)

    def _on_input_level(self, level: float) -> None:
        self.input_level = level
        if self.controller is not None:
            self.controller.on_input_level(level)

    def _on_output_level(self, level: float) -> None:
        self.output_level = level

    # ------------------------------------------------------------------
    # User commands
    # ------------------------------------------------------------------

    def toggle_mute(self) -> bool:
        """Flip the microphone mute state; returns the new state."""
        stream = self.connection.media_stream if self.connection else None
        if stream is None:
            return self.is_muted
        self.is_muted = not self.is_muted
        stream.set_enabled(not self.is_muted)
        self._log(Role.SYSTEM, "Microphone muted" if self.is_muted else "Microphone unmuted")
        return self.is_muted

    def inject_context(self, text: str, interrupt: bool = False, background: bool = False) -> int:
        """Inject text as a user turn; see SessionController.inject_context."""
        if self.controller is None:
            raise NotConnectedError("Cannot inject context: no active session")
        tokens = self.controller.inject_context(text, interrupt=interrupt, background=background)
        self._log(
            Role.SYSTEM,
            f"Context injection mode: Interrupt: {'ON' if interrupt else 'OFF'}, "
            f"Background: {'ON' if background else 'OFF'}",
        )
        return tokens

    def update_instructions(self, instructions: str) -> None:
        """Re-announce the session configuration with new instructions."""
        if self.controller is None:
            raise NotConnectedError("Cannot configure: no active session")
        self.controller.configure(instructions)

    def clear_log(self) -> None:
        """Clear the conversation log and reset token usage."""
        self.transcript.clear()
        self._log(Role.SYSTEM, "Conversation log cleared")
        self.ledger.reset()
        self._log(Role.SYSTEM, "Token usage reset")

    def status(self) -> Dict[str, Any]:
        """Snapshot of session, state machine, usage and recent events."""
        model = self.session.model if self.session else None
        cost = self.ledger.cost(model)
        controller = self.controller
        return {
            "connection": self.connection_state.value,
            "session": {
                "model": model,
                "voice": self.session.voice if self.session else None,
                "expires_at": self.session.expires_at if self.session else None,
            },
            "response": controller.response_state.value if controller else None,
            "speaking": controller.speaking_state.value if controller else None,
            "muted": self.is_muted,
            "levels": {"input": self.input_level, "output": self.output_level},
            "usage": {
                "tokens": {category.value: count for category, count in self.ledger.counts.items()},
                "total_tokens": self.ledger.total_tokens,
                "cost": {category.value: round(value, 4) for category, value in cost.per_category.items()},
                "total_cost": round(cost.total, 4),
            },
            "recent_events": list(controller.event_log)[-10:] if controller else [],
        }

    def _log(self, role: Role, message: str) -> None:
        self.transcript.add(role, message)
        if role == Role.ERROR:
            logger.error(message)
        else:
            logger.info(message)
