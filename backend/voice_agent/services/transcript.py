"""Transcript Assembler.

Merges streaming deltas, completion events and redundant "done" signals
into one transcript entry per conversational turn. Both
``response.content_part.done`` and ``response.output_item.done`` can
carry the same finished assistant transcript, so completion goes through
``ensure`` which converges instead of appending.

The open assistant turn is tracked by reference, not by position: user
transcriptions, system notices and errors may be appended while it is
still streaming without splitting it.
"""
from typing import List, Optional

from voice_agent.core.logging import logger
from voice_agent.session.models import Role, TranscriptEntry


class TranscriptAssembler:
    """Ordered conversation log with streaming assistant turns."""

    def __init__(self):
        self._entries: List[TranscriptEntry] = []
        self._open_assistant: Optional[TranscriptEntry] = None

    @property
    def entries(self) -> List[TranscriptEntry]:
        return list(self._entries)

    @property
    def last(self) -> Optional[TranscriptEntry]:
        return self._entries[-1] if self._entries else None

    @property
    def open_assistant(self) -> Optional[TranscriptEntry]:
        """The assistant turn currently receiving deltas, if any."""
        return self._open_assistant

    def last_of(self, role: Role) -> Optional[TranscriptEntry]:
        """Most recent entry authored by ``role``."""
        for entry in reversed(self._entries):
            if entry.role == role:
                return entry
        return None

    def add(self, role: Role, text: str) -> TranscriptEntry:
        """Append a complete entry."""
        entry = TranscriptEntry(role=Role(role), text=text)
        self._entries.append(entry)
        return entry

    def append_delta(self, delta: str) -> TranscriptEntry:
        """
        Append a streaming chunk to the open assistant turn.

        Opens a new streaming turn (decorated as speaking) when none is open.
        """
        entry = self._open_assistant
        if entry is None:
            entry = TranscriptEntry(role=Role.ASSISTANT, streaming=True, speaking=True)
            self._entries.append(entry)
            self._open_assistant = entry
        entry.text += delta or ""
        return entry

    def finalize(self, full_text: str) -> TranscriptEntry:
        """
        Close the open assistant turn with its complete text.

        The streamed content is replaced, not extended, so partial deltas
        never survive next to the final text. With no open turn a new,
        already closed entry is added.
        """
        entry = self._open_assistant
        if entry is None:
            return self.add(Role.ASSISTANT, full_text)
        self._open_assistant = None
        entry.text = full_text
        entry.streaming = False
        entry.speaking = False
        return entry

    def ensure(self, full_text: str) -> TranscriptEntry:
        """
        Converge the latest assistant turn on ``full_text``.

        Idempotent: if the most recent assistant entry already holds the
        same trimmed text, it is closed and only its transient decoration
        is cleared.
        """
        latest = self.last_of(Role.ASSISTANT)
        if latest is not None and latest.text.strip() == full_text.strip():
            if latest is self._open_assistant:
                self._open_assistant = None
            latest.streaming = False
            latest.speaking = False
            logger.debug("Transcript already complete, skipping duplicate completion")
            return latest
        return self.finalize(full_text)

    def set_speaking(self, speaking: bool) -> None:
        """Toggle the speaking decoration on the open assistant turn."""
        if self._open_assistant is not None:
            self._open_assistant.speaking = speaking
        elif not speaking:
            latest = self.last_of(Role.ASSISTANT)
            if latest is not None:
                latest.speaking = False

    def clear(self) -> None:
        self._entries = []
        self._open_assistant = None
