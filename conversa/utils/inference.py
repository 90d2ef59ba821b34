import logging
from typing import Optional, Protocol, Sequence

from groq import AsyncGroq

from conversa.config import Settings, get_settings
from conversa.services.history import ChatTurn


logger = logging.getLogger(__name__)


class InferenceGateway(Protocol):

    async def send_completion(self, system_prompt: str, history: Sequence[ChatTurn], prompt: str) -> Optional[str]:
        ...


class GroqInferenceGateway:
    """Chat completions against the Groq API."""

    def __init__(self, client: AsyncGroq, model: str, max_output_tokens: int) -> None:
        self._client = client
        self._model = model
        self._max_output_tokens = max_output_tokens

    @classmethod
    def from_settings(cls, settings: Settings) -> "GroqInferenceGateway":
        return cls(
            AsyncGroq(api_key=settings.GROQ_API_KEY),
            model=settings.GROQ_MODEL,
            max_output_tokens=settings.BOT_MAX_OUTPUT_TOKENS,
        )

    async def send_completion(self, system_prompt: str, history: Sequence[ChatTurn], prompt: str) -> Optional[str]:
        messages = [{"role": "system", "content": system_prompt}]
        messages.extend(turn.as_dict() for turn in history)
        messages.append({"role": "user", "content": prompt})
        logger.debug("Requesting completion from %s with %d history turns", self._model, len(history))
        completion = await self._client.chat.completions.create(
            model=self._model,
            messages=messages,
            max_tokens=self._max_output_tokens,
        )
        if not completion.choices:
            return None
        return completion.choices[0].message.content


_inference = None


def get_inference_gateway() -> InferenceGateway:
    global _inference
    if _inference is None:
        _inference = GroqInferenceGateway.from_settings(get_settings())
    return _inference
