"""Outbound event vocabulary for the realtime event channel."""
from typing import Any, Dict, Optional

from voice_agent.core.config import settings

SESSION_UPDATE = "session.update"
CONVERSATION_ITEM_CREATE = "conversation.item.create"
RESPONSE_CREATE = "response.create"
RESPONSE_CANCEL = "response.cancel"


def session_update(instructions: str, voice: str) -> Dict[str, Any]:
    """
    Build the session.update event announcing the conversation setup.

    Args:
        instructions: System instructions for the assistant
        voice: Voice identifier bound to the session

    Returns:
        Event dictionary ready for JSON encoding
    """
    return {
        "type": SESSION_UPDATE,
        "session": {
            "modalities": ["text", "audio"],
            "instructions": instructions,
            "voice": voice,
            "input_audio_format": "pcm16",
            "output_audio_format": "pcm16",
            "input_audio_transcription": {
                "model": settings.transcription_model,
            },
            "turn_detection": {
                "type": "server_vad",
                "threshold": settings.turn_detection_threshold,
                "prefix_padding_ms": settings.turn_detection_prefix_padding_ms,
                "silence_duration_ms": settings.turn_detection_silence_duration_ms,
            },
        },
    }


def conversation_item_create(text: str, role: str = "user", item_id: Optional[str] = None) -> Dict[str, Any]:
    """Build a conversation.item.create event carrying one text message."""
    item: Dict[str, Any] = {
        "type": "message",
        "role": role,
        "content": [{"type": "input_text", "text": text}],
    }
    if item_id:
        item["id"] = item_id
    return {"type": CONVERSATION_ITEM_CREATE, "item": item}


def response_create() -> Dict[str, Any]:
    return {"type": RESPONSE_CREATE}


def response_cancel() -> Dict[str, Any]:
    return {"type": RESPONSE_CANCEL}
