"""OpenAI AI provider implementation."""

import base64
import logging

from shelf_agent.services.ai.client import (
    AIClient,
    AIProvider,
    GenerationResult,
    detect_media_type,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o"
MAX_TOKENS = 4096


class OpenAIClient(AIClient):
    """OpenAI GPT AI client."""

    provider = AIProvider.OPENAI

    def __init__(self, api_key: str, model: str | None = None):
        """
        Initialize the OpenAI client.

        Args:
            api_key: OpenAI API key.
            model: Model name (defaults to gpt-4o).
        """
        try:
            import openai
        except ImportError:
            raise ImportError(
                "openai package is required. Install with: pip install openai"
            )

        self.client = openai.OpenAI(api_key=api_key)
        self.model = model or DEFAULT_MODEL

    def generate(
        self,
        prompt: str,
        system: str | None = None,
        image: bytes | None = None,
    ) -> GenerationResult:
        messages: list[dict] = []
        if system:
            messages.append({"role": "system", "content": system})

        if image is not None:
            data_uri = (
                f"data:{detect_media_type(image)};base64,"
                f"{base64.b64encode(image).decode('ascii')}"
            )
            user_content: str | list[dict] = [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": data_uri}},
            ]
        else:
            user_content = prompt
        messages.append({"role": "user", "content": user_content})

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                max_tokens=MAX_TOKENS,
                messages=messages,
            )
            raw_response = response.choices[0].message.content or ""
        except Exception as e:
            logger.error(f"OpenAI API error: {e}")
            return GenerationResult(
                success=False,
                raw_response="",
                error_message=f"API error: {str(e)}",
            )

        logger.debug(f"Raw AI response: {raw_response[:500]}...")
        return GenerationResult(success=True, raw_response=raw_response)
