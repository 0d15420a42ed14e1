"""Language model reasoning client."""
import logging
from typing import Dict, List, Optional, Sequence

from openai import AsyncOpenAI
from pydantic import BaseModel

from app.core.config import settings
from app.core.exceptions import ReasoningFailed
from app.services.agent.prompt import get_system_prompt
from app.services.call_session.models import Turn

logger = logging.getLogger(__name__)


class ReasoningResult(BaseModel):
    """Assistant reply for one user utterance."""

    text: str
    model: str


class ReasoningClient:
    """Stateless client for the chat completion service.

    Conversation continuity is rebuilt from the caller's history on every call.
    """

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
    ):
        self.client = client or AsyncOpenAI(api_key=settings.openai_api_key)
        self.model = model or settings.reasoning_model
        self.temperature = (
            temperature if temperature is not None else settings.reasoning_temperature
        )

    def build_messages(
        self, history: Sequence[Turn], new_utterance: str
    ) -> List[Dict[str, str]]:
        """Build the request messages: system prompt, history oldest first, new utterance."""
        messages = [{"role": "system", "content": get_system_prompt()}]
        for turn in sorted(history, key=lambda t: t.sequence):
            messages.append({"role": turn.role.value, "content": turn.text})
        messages.append({"role": "user", "content": new_utterance})
        return messages

    async def reply(self, history: Sequence[Turn], new_utterance: str) -> ReasoningResult:
        """
        Generate the assistant's reply.

        Raises:
            ReasoningFailed: network error or malformed response
        """
        messages = self.build_messages(history, new_utterance)

        logger.info("=" * 80)
        logger.info(f"[REASONING] History turns: {len(history)}")
        logger.info(f"[REASONING] User utterance: '{new_utterance}'")
        logger.info("=" * 80)

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
            )
        except Exception as e:
            raise ReasoningFailed(f"Reasoning request failed: {str(e)}") from e

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as e:
            raise ReasoningFailed(f"Malformed reasoning response: {str(e)}") from e

        if not isinstance(content, str) or not content.strip():
            raise ReasoningFailed("Reasoning response was empty")

        text = content.strip()
        logger.info(f"[REASONING] Reply: '{text[:200]}'")
        return ReasoningResult(text=text, model=self.model)
