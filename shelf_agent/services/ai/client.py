"""AI client interface and provider abstraction."""

import json
import os
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from pydantic import BaseModel


class AIProvider(str, Enum):
    """Supported AI providers."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"


class GenerationResult(BaseModel):
    """Result of an AI generation attempt."""

    success: bool
    raw_response: str
    error_message: str | None = None


def detect_media_type(image: bytes) -> str:
    """Guess an image MIME type from its magic bytes (defaults to JPEG)."""
    if image.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if image[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    if image[:4] == b"RIFF" and image[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"


def extract_json(raw_response: str) -> Any:
    """
    Parse a JSON payload from a model response.

    Strips markdown code fences if present.

    Raises:
        ValueError: If the response is not valid JSON.
    """
    json_str = raw_response.strip()
    if json_str.startswith("```json"):
        json_str = json_str[7:]
    if json_str.startswith("```"):
        json_str = json_str[3:]
    if json_str.endswith("```"):
        json_str = json_str[:-3]
    json_str = json_str.strip()

    try:
        return json.loads(json_str)
    except json.JSONDecodeError as e:
        raise ValueError(f"JSON parse error: {e}") from e


class AIClient(ABC):
    """Abstract base class for AI providers."""

    provider: AIProvider
    model: str

    @abstractmethod
    def generate(
        self,
        prompt: str,
        system: str | None = None,
        image: bytes | None = None,
    ) -> GenerationResult:
        """
        Generate a response, optionally grounded on an image.

        Args:
            prompt: User prompt.
            system: Optional system prompt.
            image: Optional image bytes sent alongside the prompt.

        Returns:
            GenerationResult with the raw text or error details.
        """
        pass


def get_ai_client(
    provider: AIProvider | str,
    api_key: str,
    model: str | None = None,
) -> AIClient:
    """
    Factory function to get an AI client for the specified provider.

    Args:
        provider: The AI provider to use.
        api_key: The API key for the provider.
        model: Optional model name override.

    Returns:
        An AIClient instance for the specified provider.

    Raises:
        ValueError: If the provider is not supported.
    """
    if isinstance(provider, str):
        provider = AIProvider(provider.lower())

    if provider == AIProvider.ANTHROPIC:
        from shelf_agent.services.ai.providers.anthropic import AnthropicClient

        return AnthropicClient(api_key=api_key, model=model)
    elif provider == AIProvider.OPENAI:
        from shelf_agent.services.ai.providers.openai import OpenAIClient

        return OpenAIClient(api_key=api_key, model=model)
    else:
        raise ValueError(f"Unsupported AI provider: {provider}")


def get_ai_client_from_env() -> AIClient | None:
    """
    Create an AI client from environment variables.

    Reads AI_PROVIDER (default anthropic), AI_MODEL and the provider's
    API key. Returns None when no key is configured.

    Raises:
        ValueError: If AI_PROVIDER names an unsupported provider.
    """
    provider = os.environ.get("AI_PROVIDER", "anthropic").lower()
    model = os.environ.get("AI_MODEL") or None

    if provider == "anthropic":
        api_key = os.environ.get("ANTHROPIC_API_KEY")
    elif provider == "openai":
        api_key = os.environ.get("OPENAI_API_KEY")
    else:
        raise ValueError(f"Unsupported AI provider: {provider}")

    if not api_key:
        return None
    return get_ai_client(provider=provider, api_key=api_key, model=model)
