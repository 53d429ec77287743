"""Session Protocol State Machine.

Owns the response lifecycle and speaking state, routes every inbound
realtime event to its handler, and is the single outbound path onto the
event channel. All handlers run synchronously on the event loop, so
inbound events, level ticks and user commands never interleave inside a
state change.
"""
import json
import uuid
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional, Set

from voice_agent.core.config import settings
from voice_agent.core.exceptions import (
    CredentialError,
    NotConnectedError,
    RemoteProtocolError,
    classify_remote_error,
)
from voice_agent.core.logging import logger
from voice_agent.services.interrupter import VoiceActivityInterrupter
from voice_agent.services.transcript import TranscriptAssembler
from voice_agent.services.usage_ledger import UsageCategory, UsageLedger
from voice_agent.session import events
from voice_agent.session.connection import ConnectionEstablisher, EventChannel
from voice_agent.session.models import ResponseState, Role, Session, SpeakingState

EventHandler = Callable[[Dict[str, Any]], None]


class SessionController:
    """Turn-taking state machine over the realtime event channel."""

    def __init__(
        self,
        session: Session,
        connection: ConnectionEstablisher,
        ledger: Optional[UsageLedger] = None,
        transcript: Optional[TranscriptAssembler] = None,
        interrupter: Optional[VoiceActivityInterrupter] = None,
        instructions: Optional[str] = None
    ):
        self.session = session
        self.connection = connection
        self.ledger = ledger or UsageLedger()
        self.transcript = transcript or TranscriptAssembler()
        self.interrupter = interrupter or VoiceActivityInterrupter()
        self.instructions = instructions
        self.response_state = ResponseState.NO_ACTIVE_RESPONSE
        self.speaking_state = SpeakingState.ASSISTANT_SILENT
        self.event_log: Deque[Dict[str, Any]] = deque(maxlen=settings.event_log_size)
        self.last_remote_error: Optional[RemoteProtocolError] = None
        # Items we created ourselves; their usage is counted at injection time.
        self._injected_item_ids: Set[str] = set()

        self._handlers: Dict[str, EventHandler] = {
            "session.created": self._on_session_created,
            "response.created": self._on_response_created,
            "response.done": self._on_response_finished,
            "response.cancelled": self._on_response_finished,
            "conversation.item.created": self._on_item_created,
            "response.audio_transcript.delta": self._on_transcript_delta,
            "response.text.delta": self._on_transcript_delta,
            "response.audio_transcript.done": self._on_transcript_done,
            "response.audio.delta": self._on_audio_delta,
            "response.audio.done": self._on_audio_done,
            "conversation.item.input_audio_transcription.completed": self._on_input_transcription,
            "response.content_part.done": self._on_content_part_done,
            "response.output_item.done": self._on_output_item_done,
            "response.usage": self._on_usage,
            "error": self._on_error,
        }

    # ------------------------------------------------------------------
    # Channel wiring
    # ------------------------------------------------------------------

    def attach_channel(self, channel: EventChannel) -> None:
        """Hook the controller onto the event channel's callbacks."""
        channel.on("open", self._on_channel_open)
        channel.on("message", self.handle_message)
        channel.on("close", lambda *args: logger.info("Event channel closed by transport"))
        channel.on("error", lambda error=None: logger.error(f"Event channel error: {error}"))

    def _on_channel_open(self, *args: Any) -> None:
        logger.info("Event channel opened")
        self.configure(self.instructions)

    def handle_message(self, raw: Any) -> None:
        """Decode one channel message and dispatch it."""
        try:
            event = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"Dropping undecodable event: {e}")
            return
        if not isinstance(event, dict):
            logger.warning(f"Dropping non-object event: {raw!r:.200}")
            return
        self.dispatch(event)

    # ------------------------------------------------------------------
    # Outbound surface
    # ------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        channel = self.connection.channel
        return self.connection.is_connected and channel is not None and channel.is_open

    @property
    def response_active(self) -> bool:
        return self.response_state == ResponseState.RESPONSE_ACTIVE

    def send_event(self, event: Dict[str, Any]) -> None:
        """
        Send one structured event over the ordered channel.

        Raises:
            NotConnectedError: if the connection or channel is not open
        """
        if not self.is_connected:
            raise NotConnectedError(
                f"Cannot send {event.get('type')}: not connected",
                details={"connection_state": self.connection.state.value},
            )
        self.connection.channel.send(json.dumps(event))
        logger.debug(f"Sent event: {event.get('type')}")

    def configure(self, instructions: Optional[str] = None) -> None:
        """
        Announce the session configuration; safe to repeat.

        Args:
            instructions: Assistant instructions (blank uses the default)

        Raises:
            CredentialError: if no voice is bound to the session
        """
        if not self.session.voice:
            raise CredentialError("No voice specified in session data")
        text = (instructions or "").strip() or settings.default_instructions
        self.instructions = text
        self.send_event(events.session_update(text, self.session.voice))
        preview = text[:100] + ("..." if len(text) > 100 else "")
        logger.info(f"Session configured with instructions ({len(text)} chars): \"{preview}\"")

    def request_response(self) -> None:
        self.send_event(events.response_create())

    def cancel_active_response(self) -> bool:
        """
        Ask the remote side to stop the in-flight response.

        Best effort: nothing is sent when no response is active or the
        session is not connected. The outcome arrives later as a
        lifecycle event or a benign cancellation error.

        Returns:
            True if a cancel was requested
        """
        if not self.response_active:
            logger.debug("No active response to cancel")
            return False
        try:
            self.send_event(events.response_cancel())
        except NotConnectedError as e:
            logger.warning(f"Cancel skipped: {e.message}")
            return False
        return True

    def inject_context(self, text: str, interrupt: bool = False, background: bool = False) -> int:
        """
        Inject text into the conversation as a user turn.

        Args:
            text: Context text (trimmed; must not be empty)
            interrupt: Cancel the current response first
            background: Add the context without requesting a response

        Returns:
            Estimated input-text tokens recorded for the injection

        Raises:
            NotConnectedError: if not connected
            ValueError: if the trimmed text is empty
        """
        context = (text or "").strip()
        if not self.is_connected:
            raise NotConnectedError("Cannot inject context: not connected")
        if not context:
            raise ValueError("Context text is empty")

        tokens = self.ledger.record_text(UsageCategory.INPUT_TEXT, context)

        if interrupt:
            # A cancel with no active response yields a benign error event.
            self.send_event(events.response_cancel())
            logger.info("Interrupted current response for context injection")

        item_id = f"ctx_{uuid.uuid4().hex[:24]}"
        self.send_event(events.conversation_item_create(context, item_id=item_id))
        self._injected_item_ids.add(item_id)
        cost = (tokens / 1_000_000) * self.ledger.pricing.for_model(self.session.model).text_input
        logger.info(f"Context injected: {tokens} tokens (~${cost:.4f}) - \"{context[:50]}\"")

        if background:
            logger.info("Context processed in background mode (no response requested)")
        else:
            self.request_response()
            logger.info("Requesting AI response to context")

        return tokens

    # ------------------------------------------------------------------
    # Audio level input
    # ------------------------------------------------------------------

    def on_input_level(self, level: float) -> None:
        """Feed one input level tick to the interrupter."""
        if self.interrupter.tick(level, self.response_active):
            self.transcript.add(Role.SYSTEM, "User voice detected during AI response - interrupting AI")
            self.cancel_active_response()

    # ------------------------------------------------------------------
    # Inbound dispatch
    # ------------------------------------------------------------------

    def dispatch(self, event: Dict[str, Any]) -> None:
        """Route one inbound event to its handler; unknown types are ignored."""
        self.event_log.append(event)
        event_type = event.get("type")
        handler = self._handlers.get(event_type)
        if handler is None:
            logger.debug(f"Unhandled event: {event_type}")
            return
        handler(event)

    def _on_session_created(self, event: Dict[str, Any]) -> None:
        logger.info("Session created successfully")

    def _on_response_created(self, event: Dict[str, Any]) -> None:
        self.response_state = ResponseState.RESPONSE_ACTIVE
        logger.debug("Response created - can now be cancelled")

    def _on_response_finished(self, event: Dict[str, Any]) -> None:
        self.response_state = ResponseState.NO_ACTIVE_RESPONSE
        logger.debug(f"Response finished ({event.get('type')})")

    def _on_item_created(self, event: Dict[str, Any]) -> None:
        item = event.get("item") or {}
        if item.get("type") != "message":
            return
        role = item.get("role")
        content = (item.get("content") or [{}])[0] or {}
        text = content.get("transcript") or content.get("text") or "[Audio message]"
        try:
            self.transcript.add(Role(role), text)
        except ValueError:
            logger.debug(f"Ignoring item with unknown role: {role}")

        if item.get("id") in self._injected_item_ids:
            self._injected_item_ids.discard(item["id"])
            return
        if content.get("text"):
            if role == Role.USER.value:
                self.ledger.record_text(UsageCategory.INPUT_TEXT, content["text"])
            elif role == Role.ASSISTANT.value:
                self.ledger.record_text(UsageCategory.OUTPUT_TEXT, content["text"])

    def _on_transcript_delta(self, event: Dict[str, Any]) -> None:
        self.transcript.append_delta(event.get("delta") or "")

    def _on_transcript_done(self, event: Dict[str, Any]) -> None:
        transcript = event.get("transcript")
        if not transcript:
            return
        self.transcript.finalize(transcript)
        tokens = self.ledger.record_text(UsageCategory.OUTPUT_AUDIO, transcript)
        logger.info(f"Audio output: ~{tokens} tokens")

    def _on_audio_delta(self, event: Dict[str, Any]) -> None:
        if self.speaking_state != SpeakingState.ASSISTANT_SPEAKING:
            logger.debug("Assistant started speaking")
        self.speaking_state = SpeakingState.ASSISTANT_SPEAKING
        self.transcript.set_speaking(True)

    def _on_audio_done(self, event: Dict[str, Any]) -> None:
        logger.debug("Assistant stopped speaking")
        self.speaking_state = SpeakingState.ASSISTANT_SILENT
        self.transcript.set_speaking(False)

    def _on_input_transcription(self, event: Dict[str, Any]) -> None:
        transcript = event.get("transcript")
        if not transcript:
            return
        self.transcript.add(Role.USER, transcript)
        tokens = self.ledger.record_text(UsageCategory.INPUT_AUDIO, transcript)
        logger.info(f"Audio input: ~{tokens} tokens")

    def _on_content_part_done(self, event: Dict[str, Any]) -> None:
        part = event.get("part") or {}
        if part.get("type") == "audio" and part.get("transcript"):
            self.transcript.ensure(part["transcript"])

    def _on_output_item_done(self, event: Dict[str, Any]) -> None:
        item = event.get("item") or {}
        content = item.get("content") or []
        if item.get("role") == "assistant" and content and (content[0] or {}).get("transcript"):
            self.transcript.ensure(content[0]["transcript"])

    def _on_usage(self, event: Dict[str, Any]) -> None:
        usage = event.get("usage")
        if usage:
            self.ledger.reconcile(usage)

    def _on_error(self, event: Dict[str, Any]) -> None:
        error = classify_remote_error(event)
        self.last_remote_error = error
        if error.benign:
            # Speaking state is left to the audio events.
            logger.info(f"Cancellation failed - no active response, resetting state ({error.message})")
            self.response_state = ResponseState.NO_ACTIVE_RESPONSE
            return
        logger.error(f"API Error: {error.message}")
        self.transcript.add(Role.ERROR, f"API Error: {error.message}")
