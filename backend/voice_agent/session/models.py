"""Session data models and lifecycle states."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional
import time


class ConnectionState(str, Enum):
    """Peer connection state, owned by the connection establisher."""
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"


class ResponseState(str, Enum):
    """Whether the remote assistant has a response that can be cancelled."""
    NO_ACTIVE_RESPONSE = "no_active_response"
    RESPONSE_ACTIVE = "response_active"


class SpeakingState(str, Enum):
    """Whether assistant audio is currently streaming."""
    ASSISTANT_SILENT = "assistant_silent"
    ASSISTANT_SPEAKING = "assistant_speaking"


class Role(str, Enum):
    """Author of a transcript entry."""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    ERROR = "error"


@dataclass(frozen=True)
class Session:
    """One bound conversation: model, voice and its short-lived credential."""
    model: str
    voice: str
    client_secret: str
    expires_at: Optional[int] = None

    def redacted_secret(self) -> str:
        """First characters of the credential, safe for logs."""
        return f"{self.client_secret[:10]}..."


@dataclass
class MediaConstraints:
    """Capture-time settings for the local audio track."""
    sample_rate: int = 24000
    channel_count: int = 1
    echo_cancellation: bool = True
    auto_gain_control: bool = True
    noise_suppression: bool = True


@dataclass
class TranscriptEntry:
    """One turn in the conversation log."""
    role: Role
    text: str = ""
    streaming: bool = False
    speaking: bool = False
    timestamp: float = field(default_factory=time.time)
