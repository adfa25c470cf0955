"""LLM client for lesson generation and audio transcription.

OpenAI-compatible API for every provider, configured from the
``providers`` section of the application config.

Supported providers:
- lmstudio: Local LM Studio server
- openai: OpenAI API
- anthropic: Anthropic API (via OpenAI-compatible endpoint)
"""

from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass, field
from typing import Any, Literal

import structlog
from openai import OpenAI

from classroom.config.app_config import get_provider_config, load_app_config

logger = structlog.get_logger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

Provider = Literal["lmstudio", "openai", "anthropic"]

PROVIDER_BASE_URLS: dict[str, str] = {
    "lmstudio": "http://localhost:1234/v1",
    "openai": "https://api.openai.com/v1",
    "anthropic": "https://api.anthropic.com/v1",
}

# Only providers listed here get response_format={"type": "json_object"}
JSON_OBJECT_PROVIDERS = ("openai",)

DEFAULT_TRANSCRIPTION_MODEL = "whisper-1"

JSON_REPAIR_PROMPT = """Fix the following text and return ONLY valid JSON:
<<<
{invalid_output}
>>>

Answer with the corrected JSON only, no explanations and no markdown."""

# Some models emit reasoning blocks before the answer
SANITIZE_PATTERNS = [
    re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE),
    re.compile(r"<analysis>.*?</analysis>", re.DOTALL | re.IGNORECASE),
    re.compile(r"<reasoning>.*?</reasoning>", re.DOTALL | re.IGNORECASE),
]


def _sanitize_for_json(text: str) -> str:
    """Remove thinking/reasoning tags before JSON parsing."""
    result = text
    for pattern in SANITIZE_PATTERNS:
        result = pattern.sub("", result)
    return result.strip()


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class LLMConfig:
    """Configuration for LLM client."""

    provider: Provider = "lmstudio"
    base_url: str = "http://localhost:1234/v1"
    model: str = "default"
    temperature: float = 0.7
    max_tokens: int = 4096
    timeout: int = 120
    api_key: str | None = None
    supports_json_object: bool | None = None

    @classmethod
    def from_app_config(cls, provider: str | None = None) -> LLMConfig:
        """Build the configuration of a provider (default: generation.default_provider)."""
        provider = provider or load_app_config().generation.default_provider
        pconfig = get_provider_config(provider)
        if pconfig is None:
            logger.warning("provider_not_configured", provider=provider)
            return cls(provider=provider, base_url=PROVIDER_BASE_URLS.get(provider, ""))  # type: ignore[arg-type]

        api_key = pconfig.get_api_key()
        if api_key is None and provider == "lmstudio":
            api_key = "lm-studio"

        return cls(
            provider=provider,  # type: ignore[arg-type]
            base_url=pconfig.base_url or PROVIDER_BASE_URLS.get(provider, ""),
            model=pconfig.default_model,
            api_key=api_key,
        )


@dataclass
class Message:
    """A chat message."""

    role: Literal["system", "user", "assistant"]
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class LLMResponse:
    """Response from LLM."""

    content: str
    model: str
    provider: str
    usage: dict[str, int] = field(default_factory=dict)
    latency_ms: int = 0

    @property
    def total_tokens(self) -> int:
        return self.usage.get("total_tokens", 0)


class LLMError(Exception):
    """Error during LLM interaction."""

    pass


class LLMConnectionError(LLMError):
    """Error connecting to LLM server."""

    pass


class LLMResponseError(LLMError):
    """Error in LLM response."""

    pass


# =============================================================================
# LLM CLIENT
# =============================================================================


class LLMClient:
    """Unified client for LLM interactions."""

    def __init__(
        self,
        config: LLMConfig | None = None,
        provider: Provider | None = None,
        model: str | None = None,
    ):
        """Initialize LLM client.

        Args:
            config: LLM configuration (built from the app config if not provided)
            provider: Provider to use instead of the configured default
            model: Override model from config
        """
        if config is None:
            config = LLMConfig.from_app_config(provider)

        self.config = config
        if model is not None:
            self.config.model = model

        self._client = OpenAI(
            base_url=self.config.base_url,
            api_key=self.config.api_key or "not-needed",
            timeout=self.config.timeout,
        )

        logger.info(
            "llm_client_initialized",
            provider=self.config.provider,
            model=self.config.model,
            base_url=self.config.base_url,
        )

    def _supports_json_object(self) -> bool:
        if self.config.supports_json_object is not None:
            return self.config.supports_json_object
        return self.config.provider in JSON_OBJECT_PROVIDERS

    def chat(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        """Send chat completion request.

        Raises:
            LLMConnectionError: If cannot connect to server
            LLMResponseError: If response is invalid
        """
        request_kwargs: dict[str, Any] = {
            "model": self.config.model,
            "messages": [m.to_dict() for m in messages],
            "temperature": self.config.temperature if temperature is None else temperature,
            "max_tokens": self.config.max_tokens if max_tokens is None else max_tokens,
        }
        if json_mode and self._supports_json_object():
            request_kwargs["response_format"] = {"type": "json_object"}

        start_time = time.time()
        try:
            response = self._client.chat.completions.create(**request_kwargs)
        except Exception as e:
            error_msg = str(e)
            if "Connection" in error_msg or "connect" in error_msg.lower():
                raise LLMConnectionError(
                    f"Could not connect to {self.config.provider} at {self.config.base_url}: {e}"
                ) from e
            raise LLMError(f"LLM call failed: {e}") from e

        latency_ms = int((time.time() - start_time) * 1000)

        if not response.choices:
            raise LLMResponseError("Empty response from LLM")

        usage = {}
        if response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        logger.debug(
            "llm_response",
            provider=self.config.provider,
            model=response.model,
            tokens=usage.get("total_tokens", 0),
            latency_ms=latency_ms,
        )

        return LLMResponse(
            content=response.choices[0].message.content or "",
            model=response.model,
            provider=self.config.provider,
            usage=usage,
            latency_ms=latency_ms,
        )

    def _try_parse_json(self, content: str) -> dict[str, Any] | None:
        """Try direct parse, then a ```json block, then the first {...} span."""
        content = _sanitize_for_json(content)

        try:
            return json.loads(content)
        except json.JSONDecodeError:
            pass

        json_match = re.search(r"```(?:json)?\s*([\s\S]*?)```", content)
        if json_match:
            try:
                return json.loads(json_match.group(1).strip())
            except json.JSONDecodeError:
                pass

        start = content.find("{")
        end = content.rfind("}") + 1
        if start >= 0 and end > start:
            try:
                return json.loads(content[start:end])
            except json.JSONDecodeError:
                pass

        return None

    def chat_json(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
        max_retries: int = 1,
    ) -> dict[str, Any]:
        """Send chat request expecting JSON response.

        On a parse failure the invalid output is sent back once with a
        repair prompt.

        Raises:
            LLMResponseError: If response is not valid JSON after retries
        """
        response = self.chat(messages, temperature, max_tokens, json_mode=True)
        parsed = self._try_parse_json(response.content)
        if parsed is not None:
            return parsed

        if max_retries > 0:
            logger.warning(
                "json_parse_failed_retrying",
                content=response.content[:100],
                provider=self.config.provider,
            )
            repair_prompt = JSON_REPAIR_PROMPT.format(invalid_output=response.content[:1000])
            retry_messages = messages + [Message(role="user", content=repair_prompt)]
            retry_response = self.chat(retry_messages, temperature, max_tokens, json_mode=True)

            parsed = self._try_parse_json(retry_response.content)
            if parsed is not None:
                logger.info("json_parse_recovered_after_retry")
                return parsed

        raise LLMResponseError(f"Could not get valid JSON: {response.content[:200]}...")

    def simple_json(
        self,
        system_prompt: str,
        user_message: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> dict[str, Any]:
        """Single-turn chat expecting a JSON object."""
        messages = [
            Message(role="system", content=system_prompt),
            Message(role="user", content=user_message),
        ]
        return self.chat_json(messages, temperature=temperature, max_tokens=max_tokens)

    def transcribe(
        self,
        audio: bytes,
        file_name: str = "audio.wav",
        model: str = DEFAULT_TRANSCRIPTION_MODEL,
    ) -> str:
        """Transcribe an audio recording to text.

        Raises:
            LLMError: If the transcription request fails
        """
        start_time = time.time()
        try:
            result = self._client.audio.transcriptions.create(
                model=model,
                file=(file_name, audio),
            )
        except Exception as e:
            raise LLMError(f"Transcription failed: {e}") from e

        text = getattr(result, "text", "") or ""
        logger.debug(
            "llm_transcription",
            provider=self.config.provider,
            chars=len(text),
            latency_ms=int((time.time() - start_time) * 1000),
        )
        return text

    def is_available(self) -> bool:
        """Check if LLM server is available."""
        try:
            self._client.models.list()
            return True
        except Exception:
            return False
