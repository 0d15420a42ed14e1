"""Application configuration."""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # OpenAI
    openai_api_key: str

    # Database (call metadata only, conversation content stays in memory)
    database_url: str = "sqlite+aiosqlite:///./calls.db"

    # Assistant persona
    assistant_name: str = "Dr. Careo"

    # Speech-to-text
    transcription_model: str = "whisper-1"

    # Reasoning
    reasoning_model: str = "gpt-4-turbo"
    reasoning_temperature: float = 0.5

    # Voice synthesis (remote)
    tts_model: str = "tts-1"
    tts_voice: str = "onyx"
    tts_format: str = "mp3"

    # On-device fallback synthesizer
    fallback_voice_language: str = "en-US"
    fallback_voice_pitch: float = 0.85
    fallback_voice_rate: float = 0.9

    # Call session timing
    connect_delay_seconds: float = 2.0
    max_recording_seconds: float = 30.0
    playback_timeout_seconds: float = 90.0
    capture_format: str = "m4a"

    # Logging
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


settings = Settings()
