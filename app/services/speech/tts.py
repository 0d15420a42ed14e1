"""Text-to-speech service."""
import logging
from typing import Optional

from openai import AsyncOpenAI
from pydantic import BaseModel

from app.core.config import settings
from app.core.exceptions import PlaybackFailed

logger = logging.getLogger(__name__)


class SynthesizedAudio(BaseModel):
    """Audio produced by the remote voice-synthesis service."""

    content: bytes
    format: str
    voice: str


class TextToSpeechService:
    """Service for converting text to speech."""

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: Optional[str] = None,
        voice: Optional[str] = None,
        audio_format: Optional[str] = None,
    ):
        self.client = client or AsyncOpenAI(api_key=settings.openai_api_key)
        self.model = model or settings.tts_model
        self.voice = voice or settings.tts_voice
        self.audio_format = audio_format or settings.tts_format

    async def synthesize(self, text: str) -> SynthesizedAudio:
        """
        Synthesize speech from text using OpenAI TTS.

        Args:
            text: Text to convert to speech

        Returns:
            Audio bytes in the configured format

        Raises:
            PlaybackFailed: the synthesis request failed or returned no audio
        """
        try:
            response = await self.client.audio.speech.create(
                model=self.model,
                voice=self.voice,
                input=text,
                response_format=self.audio_format,
            )
        except Exception as e:
            raise PlaybackFailed(f"TTS synthesis failed: {str(e)}") from e

        content = response.content
        if not content:
            raise PlaybackFailed("TTS synthesis returned no audio")

        logger.info(
            f"[TTS] Synthesized {len(content)} bytes - Voice: {self.voice}, Format: {self.audio_format}"
        )
        return SynthesizedAudio(content=content, format=self.audio_format, voice=self.voice)
