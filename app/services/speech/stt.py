"""Speech-to-text client."""
import logging
from typing import Optional

from openai import AsyncOpenAI
from pydantic import BaseModel

from app.core.config import settings
from app.core.exceptions import TranscriptionFailed
from app.services.speech.capture import AudioArtifact

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = {
    "flac", "m4a", "mp3", "mp4", "mpeg", "mpga", "oga", "ogg", "wav", "webm",
}


class TranscriptionResult(BaseModel):
    """Text recognized from one recording."""

    text: str
    model: str


class TranscriptionClient:
    """Sends recordings to the remote transcription service."""

    def __init__(self, client: Optional[AsyncOpenAI] = None, model: Optional[str] = None):
        self.client = client or AsyncOpenAI(api_key=settings.openai_api_key)
        self.model = model or settings.transcription_model

    async def transcribe(self, artifact: AudioArtifact) -> TranscriptionResult:
        """
        Transcribe a recording to text using OpenAI Whisper.

        Args:
            artifact: Finalized recording

        Returns:
            Transcribed text

        Raises:
            TranscriptionFailed: unsupported format, network error, or empty result
        """
        audio_format = artifact.format.lower()
        if audio_format not in SUPPORTED_FORMATS:
            raise TranscriptionFailed(f"Unsupported audio format: {artifact.format}")

        logger.info(
            f"[STT] Transcribing recording - Bytes: {artifact.size}, "
            f"Format: {audio_format}, Model: {self.model}"
        )
        try:
            transcript = await self.client.audio.transcriptions.create(
                model=self.model,
                file=(f"recording.{audio_format}", artifact.content, f"audio/{audio_format}"),
            )
        except Exception as e:
            raise TranscriptionFailed(f"Transcription failed: {str(e)}") from e

        text = (getattr(transcript, "text", None) or "").strip()
        if not text:
            raise TranscriptionFailed("Transcription returned no text")

        logger.info(f"[STT] Transcript: '{text[:200]}'")
        return TranscriptionResult(text=text, model=self.model)
