"""Configuration settings for the Realtime Voice Agent."""
from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Server settings
    host: str = "0.0.0.0"
    port: int = 3000
    cors_origins: List[str] = ["*"]  # JSON list in the environment

    # Upstream realtime API (used by the token proxy and the SDP exchange)
    openai_api_key: Optional[str] = None
    model_name: str = "gpt-4o-realtime-preview"
    voice_id: str = "alloy"
    openai_base_url: str = "https://api.openai.com/v1"
    realtime_url: str = "https://api.openai.com/v1/realtime"
    session_token_url: str = "http://localhost:3000/api/session"
    http_timeout_seconds: float = 30.0

    # Audio capture constraints (capture-time only, not renegotiated)
    sample_rate: int = 24000  # Hz
    channels: int = 1  # mono
    echo_cancellation: bool = True
    auto_gain_control: bool = True
    noise_suppression: bool = True

    # Level sampling / voice interruption
    level_tick_interval_ms: int = 10  # sampling cadence for audio levels
    voice_interruption_enabled: bool = True
    voice_activity_threshold: float = 0.005  # level in [0, 1]
    voice_activity_trigger_count: int = 5  # ticks above threshold (~50ms at 10ms)

    # Session configuration announced over the event channel
    default_instructions: str = "You are a helpful AI assistant. Respond naturally and conversationally."
    transcription_model: str = "gpt-4o-transcribe"
    turn_detection_threshold: float = 0.5
    turn_detection_prefix_padding_ms: int = 300
    turn_detection_silence_duration_ms: int = 200

    # Debugging
    event_log_size: int = 100  # inbound events kept for inspection

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
