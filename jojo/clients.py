# jojo/clients.py
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from openai import AsyncOpenAI

from .config import PROVIDER_KEY_NAMES, Settings

logger = logging.getLogger(__name__)


class ChatProvider:
    """Thin wrapper over an OpenAI-compatible chat completions endpoint."""

    def __init__(self, client: AsyncOpenAI):
        self._client = client

    async def complete(
        self,
        *,
        model: str,
        messages: List[Dict[str, Any]],
        max_output_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> str:
        resp = await self._client.chat.completions.create(
            model=model,
            messages=messages,
            max_tokens=max_output_tokens,
            temperature=temperature,
        )
        if not resp.choices:
            return ""
        return resp.choices[0].message.content or ""

    async def stream(
        self,
        *,
        model: str,
        messages: List[Dict[str, Any]],
        max_output_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> AsyncIterator[str]:
        """Yield the non-empty text fragments of a streamed reply."""
        stream = await self._client.chat.completions.create(
            model=model,
            messages=messages,
            max_tokens=max_output_tokens,
            temperature=temperature,
            stream=True,
        )
        async for chunk in stream:
            if not chunk.choices:
                continue
            text = chunk.choices[0].delta.content
            if text:
                yield text

    async def close(self) -> None:
        await self._client.close()


def create_provider(settings: Settings) -> Optional[ChatProvider]:
    if not settings.provider_api_key:
        logger.warning("No provider key configured (%s); chat requests will fail", " / ".join(PROVIDER_KEY_NAMES))
        return None
    client = AsyncOpenAI(api_key=settings.provider_api_key, base_url=settings.provider_base_url)
    return ChatProvider(client)
