"""Text-generation providers used by the cascade.

Each provider exposes the same narrow contract: ``available()`` checks that its
credentials/config exist, ``generate(prompt)`` returns the generated text and
``stream(prompt)`` yields text fragments. Providers never retry; fallback is
the cascade's job.
"""

import json
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

import httpx

from tender_engine.core.config import Settings, get_settings
from tender_engine.core.errors import ProviderError
from tender_engine.core.logging import get_logger

logger = get_logger(__name__)


class BaseProvider(ABC):
    """Base class for generation providers."""

    name: str = "base"

    @abstractmethod
    def available(self) -> bool:
        """Return True when the provider is configured and may be attempted."""

    @abstractmethod
    async def generate(self, prompt: str) -> str:
        """Generate a completion for ``prompt``.

        Raises:
            ProviderError: On API failure
        """

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        """Yield text fragments. Defaults to one fragment holding the full text."""
        yield await self.generate(prompt)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name}>"


class GeminiProvider(BaseProvider):
    """Google Gemini through LangChain's chat model wrapper."""

    name = "gemini"

    def __init__(self, settings: Settings):
        self.settings = settings
        self._llm: Any = None

    def available(self) -> bool:
        return bool(self.settings.GEMINI_API_KEY)

    def _get_llm(self) -> Any:
        if self._llm is None:
            from langchain_google_genai import ChatGoogleGenerativeAI

            self._llm = ChatGoogleGenerativeAI(
                model=self.settings.GEMINI_MODEL,
                google_api_key=self.settings.GEMINI_API_KEY,
                temperature=self.settings.GENERATION_TEMPERATURE,
                max_output_tokens=self.settings.GENERATION_MAX_TOKENS,
                timeout=self.settings.PROVIDER_TIMEOUT_SECONDS,
            )
        return self._llm

    @staticmethod
    def _content_text(content: Any) -> str:
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            parts = []
            for part in content:
                if isinstance(part, str):
                    parts.append(part)
                elif isinstance(part, dict) and part.get("type") == "text":
                    parts.append(part.get("text", ""))
            return "".join(parts)
        return ""

    async def generate(self, prompt: str) -> str:
        try:
            response = await self._get_llm().ainvoke(prompt)
        except Exception as e:
            raise ProviderError(self.name, str(e)) from e
        return self._content_text(getattr(response, "content", ""))

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        try:
            async for chunk in self._get_llm().astream(prompt):
                text = self._content_text(getattr(chunk, "content", ""))
                if text:
                    yield text
        except Exception as e:
            raise ProviderError(self.name, str(e)) from e


class AnthropicProvider(BaseProvider):
    """Anthropic Messages API."""

    name = "anthropic"

    def __init__(self, settings: Settings):
        self.settings = settings
        self._client: Any = None

    def available(self) -> bool:
        return bool(self.settings.ANTHROPIC_API_KEY)

    def _get_client(self) -> Any:
        if self._client is None:
            from anthropic import AsyncAnthropic

            self._client = AsyncAnthropic(
                api_key=self.settings.ANTHROPIC_API_KEY,
                timeout=self.settings.PROVIDER_TIMEOUT_SECONDS,
            )
        return self._client

    async def generate(self, prompt: str) -> str:
        try:
            message = await self._get_client().messages.create(
                model=self.settings.ANTHROPIC_MODEL,
                max_tokens=self.settings.GENERATION_MAX_TOKENS,
                messages=[{"role": "user", "content": prompt}],
            )
        except Exception as e:
            raise ProviderError(self.name, str(e)) from e
        return "".join(block.text for block in message.content if block.type == "text")

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        try:
            async with self._get_client().messages.stream(
                model=self.settings.ANTHROPIC_MODEL,
                max_tokens=self.settings.GENERATION_MAX_TOKENS,
                messages=[{"role": "user", "content": prompt}],
            ) as stream:
                async for text in stream.text_stream:
                    if text:
                        yield text
        except Exception as e:
            raise ProviderError(self.name, str(e)) from e


class NvidiaProvider(BaseProvider):
    """NVIDIA NIM through its OpenAI-compatible chat completions endpoint."""

    name = "nvidia"

    def __init__(self, settings: Settings):
        self.settings = settings
        self._client: Any = None

    def available(self) -> bool:
        return bool(self.settings.NVIDIA_API_KEY)

    def _get_client(self) -> Any:
        if self._client is None:
            from openai import AsyncOpenAI

            self._client = AsyncOpenAI(
                api_key=self.settings.NVIDIA_API_KEY,
                base_url=self.settings.NVIDIA_BASE_URL,
                timeout=self.settings.PROVIDER_TIMEOUT_SECONDS,
            )
        return self._client

    async def generate(self, prompt: str) -> str:
        try:
            response = await self._get_client().chat.completions.create(
                model=self.settings.NVIDIA_MODEL,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.settings.GENERATION_TEMPERATURE,
                max_tokens=self.settings.GENERATION_MAX_TOKENS,
            )
        except Exception as e:
            raise ProviderError(self.name, str(e)) from e
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        try:
            response = await self._get_client().chat.completions.create(
                model=self.settings.NVIDIA_MODEL,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.settings.GENERATION_TEMPERATURE,
                max_tokens=self.settings.GENERATION_MAX_TOKENS,
                stream=True,
            )
            async for chunk in response:
                if chunk.choices and chunk.choices[0].delta.content:
                    yield chunk.choices[0].delta.content
        except Exception as e:
            raise ProviderError(self.name, str(e)) from e


class OllamaProvider(BaseProvider):
    """Self-hosted Ollama server (``/api/generate``)."""

    name = "ollama"

    def __init__(self, settings: Settings):
        self.settings = settings

    def available(self) -> bool:
        return bool(self.settings.OLLAMA_BASE_URL)

    def _payload(self, prompt: str, stream: bool) -> dict[str, Any]:
        return {
            "model": self.settings.OLLAMA_MODEL,
            "prompt": prompt,
            "stream": stream,
            "options": {"temperature": self.settings.GENERATION_TEMPERATURE},
        }

    @property
    def _url(self) -> str:
        return f"{(self.settings.OLLAMA_BASE_URL or '').rstrip('/')}/api/generate"

    async def generate(self, prompt: str) -> str:
        try:
            async with httpx.AsyncClient(timeout=self.settings.PROVIDER_TIMEOUT_SECONDS) as client:
                response = await client.post(self._url, json=self._payload(prompt, stream=False))
                response.raise_for_status()
                return response.json().get("response", "")
        except httpx.HTTPStatusError as e:
            raise ProviderError(self.name, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ProviderError(self.name, str(e) or e.__class__.__name__) from e

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        try:
            async with httpx.AsyncClient(timeout=self.settings.PROVIDER_TIMEOUT_SECONDS) as client:
                async with client.stream(
                    "POST", self._url, json=self._payload(prompt, stream=True)
                ) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue
                        data = json.loads(line)
                        if data.get("response"):
                            yield data["response"]
                        if data.get("done"):
                            break
        except httpx.HTTPStatusError as e:
            raise ProviderError(self.name, f"HTTP {e.response.status_code}") from e
        except (httpx.HTTPError, json.JSONDecodeError) as e:
            raise ProviderError(self.name, str(e) or e.__class__.__name__) from e


class FunctionProvider(BaseProvider):
    """Provider assembled from plain callables.

    Useful to plug ad-hoc backends (or scripted doubles) into a cascade without
    subclassing.
    """

    def __init__(
        self,
        name: str,
        execute: Callable[[str], Awaitable[str]],
        available: Callable[[], bool] | None = None,
        stream: Callable[[str], AsyncIterator[str]] | None = None,
    ):
        self.name = name
        self._execute = execute
        self._available = available or (lambda: True)
        self._stream = stream

    def available(self) -> bool:
        return self._available()

    async def generate(self, prompt: str) -> str:
        return await self._execute(prompt)

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        if self._stream is None:
            yield await self.generate(prompt)
            return
        async for fragment in self._stream(prompt):
            yield fragment


PROVIDER_FACTORIES: dict[str, type[BaseProvider]] = {
    "gemini": GeminiProvider,
    "anthropic": AnthropicProvider,
    "nvidia": NvidiaProvider,
    "ollama": OllamaProvider,
}


def build_providers(order: list[str], settings: Settings | None = None) -> list[BaseProvider]:
    """
    Instantiate providers in cascade order.

    Unknown names are logged and skipped.

    Args:
        order: Provider names, highest priority first
        settings: Settings override (defaults to cached settings)

    Returns:
        Provider instances in the requested order
    """
    settings = settings or get_settings()
    providers: list[BaseProvider] = []
    for name in order:
        factory = PROVIDER_FACTORIES.get(name)
        if factory is None:
            logger.warning(f"Unknown generation provider '{name}' in cascade order, skipping")
            continue
        providers.append(factory(settings))
    return providers
