"""LLM provider abstraction for the AI fallback categoriser.

Supports Anthropic (Claude), OpenAI, Google Gemini and Ollama (local) behind
a single ``complete(prompt) -> str`` call. Providers never interpret the
response; they only turn transport failures into ``AIApiError`` and
``AITimeoutError`` so the categoriser can decide whether to retry.
"""

from abc import ABC, abstractmethod

import httpx
import structlog

from fincat.config import Settings
from fincat.core.exceptions import AIApiError, AITimeoutError

logger = structlog.get_logger()


class LLMProviderBase(ABC):
    """Abstract base for text-completion providers."""

    model: str = "?"

    @abstractmethod
    async def complete(self, prompt: str) -> str:
        """Send a single-turn prompt and return the raw response text.

        Raises:
            AITimeoutError: the provider did not answer in time.
            AIApiError: the provider was unreachable or returned an error.
        """

    @abstractmethod
    def is_configured(self) -> bool:
        """Whether credentials / endpoint are set."""

    def get_model_name(self) -> str:
        return self.model


class AnthropicProvider(LLMProviderBase):
    """Anthropic Claude provider using the messages API."""

    def __init__(self, settings: Settings) -> None:
        self.api_key = settings.anthropic_api_key
        self.model = settings.anthropic_model
        self.timeout = settings.ai_timeout
        self.max_tokens = settings.ai_max_tokens

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def complete(self, prompt: str) -> str:
        if not self.api_key:
            raise AIApiError("Anthropic API key not configured")

        import anthropic

        # Retries are handled by the categoriser so usage is counted per attempt.
        client = anthropic.AsyncAnthropic(
            api_key=self.api_key, timeout=self.timeout, max_retries=0
        )
        try:
            response = await client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=0,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APITimeoutError as e:
            raise AITimeoutError("Anthropic request timed out") from e
        except anthropic.APIError as e:
            logger.error("anthropic_completion_error", error=str(e))
            raise AIApiError(f"Anthropic request failed: {e}") from e

        return "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )


class OpenAIProvider(LLMProviderBase):
    """OpenAI provider using the chat completions API."""

    def __init__(self, settings: Settings) -> None:
        self.api_key = settings.openai_api_key
        self.model = settings.openai_model
        self.timeout = settings.ai_timeout
        self.max_tokens = settings.ai_max_tokens

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def complete(self, prompt: str) -> str:
        if not self.api_key:
            raise AIApiError("OpenAI API key not configured")

        import openai

        client = openai.AsyncOpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=0,
                max_tokens=self.max_tokens,
            )
        except openai.APITimeoutError as e:
            raise AITimeoutError("OpenAI request timed out") from e
        except openai.APIError as e:
            logger.error("openai_completion_error", error=str(e))
            raise AIApiError(f"OpenAI request failed: {e}") from e

        return response.choices[0].message.content or ""


class GeminiProvider(LLMProviderBase):
    """Google Gemini provider using the google-genai SDK."""

    def __init__(self, settings: Settings) -> None:
        self.api_key = settings.gemini_api_key
        self.model = settings.gemini_model
        self.max_tokens = settings.ai_max_tokens

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def complete(self, prompt: str) -> str:
        if not self.api_key:
            raise AIApiError("Gemini API key not configured")

        from google import genai
        from google.genai import errors, types

        client = genai.Client(api_key=self.api_key)
        try:
            response = await client.aio.models.generate_content(
                model=self.model,
                contents=prompt,
                config=types.GenerateContentConfig(
                    temperature=0,
                    max_output_tokens=self.max_tokens,
                ),
            )
        except httpx.TimeoutException as e:
            raise AITimeoutError("Gemini request timed out") from e
        except (errors.APIError, httpx.HTTPError) as e:
            logger.error("gemini_completion_error", error=str(e))
            raise AIApiError(f"Gemini request failed: {e}") from e

        return response.text or ""


class OllamaProvider(LLMProviderBase):
    """Ollama-based provider using the /api/generate endpoint."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.base_url = settings.llm_base_url.rstrip("/")
        self.model = settings.llm_model
        self.timeout = settings.ai_timeout
        self.max_tokens = settings.ai_max_tokens
        self.transport = transport

    def is_configured(self) -> bool:
        return bool(self.base_url)

    async def complete(self, prompt: str) -> str:
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(
                    connect=5.0,
                    read=self.timeout,
                    write=5.0,
                    pool=5.0,
                ),
                transport=self.transport,
            ) as client:
                resp = await client.post(
                    f"{self.base_url}/api/generate",
                    json={
                        "model": self.model,
                        "prompt": prompt,
                        "stream": False,
                        "options": {
                            "temperature": 0.1,
                            "num_predict": self.max_tokens,
                        },
                    },
                )
        except httpx.TimeoutException as e:
            logger.warning("ollama_timeout", model=self.model)
            raise AITimeoutError("Ollama request timed out") from e
        except httpx.HTTPError as e:
            logger.warning("ollama_unreachable", url=self.base_url, error=str(e))
            raise AIApiError(f"Ollama unreachable: {e}") from e

        if resp.status_code != 200:
            logger.warning("ollama_error", status=resp.status_code, body=resp.text[:200])
            raise AIApiError(f"Ollama returned HTTP {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as e:
            raise AIApiError("Ollama returned a non-JSON envelope") from e
        if not isinstance(data, dict) or not isinstance(data.get("response", ""), str):
            logger.warning("ollama_bad_envelope", body=resp.text[:200])
            raise AIApiError("Ollama returned an unexpected envelope")
        return data.get("response", "")


def get_llm_provider(settings: Settings) -> LLMProviderBase:
    """Factory: return the configured LLM provider."""
    provider = settings.ai_provider.lower()
    if provider == "openai":
        return OpenAIProvider(settings)
    if provider == "gemini":
        return GeminiProvider(settings)
    if provider == "ollama":
        return OllamaProvider(settings)
    return AnthropicProvider(settings)
