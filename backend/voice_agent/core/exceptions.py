"""Error taxonomy for the voice session controller."""
from typing import Any, Dict, Optional


class VoiceAgentError(Exception):
    """Base exception for the voice agent."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class CredentialError(VoiceAgentError):
    """Missing or invalid session credential (fatal to session start)."""
    pass


class HandshakeError(VoiceAgentError):
    """Remote rejected the offer or returned a malformed answer."""
    pass


class MediaAcquisitionError(VoiceAgentError):
    """Local audio capture could not be started."""
    pass


class NotConnectedError(VoiceAgentError):
    """Outbound operation attempted while the session is not connected."""
    pass


class RemoteProtocolError(VoiceAgentError):
    """Error event reported by the remote side over the event channel."""

    def __init__(self, message: str, benign: bool = False, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.benign = benign


BENIGN_CANCELLATION_MARKERS = ("Cancellation failed", "no active response")


def classify_remote_error(event: Dict[str, Any]) -> RemoteProtocolError:
    """
    Build a RemoteProtocolError from an inbound ``error`` event.

    A failed cancellation (the response already finished) is benign: it
    only means our view of the response lifecycle was stale.
    """
    error = event.get("error") or {}
    if not isinstance(error, dict):
        error = {"message": str(error)}
    message = error.get("message") or "Unknown error"
    benign = any(marker in message for marker in BENIGN_CANCELLATION_MARKERS)
    return RemoteProtocolError(message, benign=benign, details=error)
