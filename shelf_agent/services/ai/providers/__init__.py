"""AI provider implementations."""

from shelf_agent.services.ai.providers.anthropic import AnthropicClient
from shelf_agent.services.ai.providers.openai import OpenAIClient

__all__ = ["AnthropicClient", "OpenAIClient"]
