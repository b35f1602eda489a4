"""Vision model clients.

Provides one interface, ``generate(prompt, images)``, over the providers the
pipeline can use to look at page images (xAI and OpenRouter through the
OpenAI-compatible chat API, Gemini through google-genai) with optional
fallback to Gemini when the primary provider fails.
"""

import asyncio
import base64
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence, Union

import httpx
from google import genai
from google.genai import types

from contract_ai.core.base_llm_client import BaseLLMClient
from contract_ai.core.exceptions import APIClientError, ConfigurationError
from contract_ai.models.page_models import Page
from contract_ai.utils.logging import get_logger

LOGGER = get_logger(__name__)


class VisionModel(Protocol):
    """Anything that can answer a prompt about a set of page images."""

    async def generate(self, prompt: str, images: Sequence[Page]) -> str: ...


class VisionProvider(str, Enum):
    """Supported vision model providers."""
    XAI = "xai"
    OPENROUTER = "openrouter"
    GEMINI = "gemini"


def to_data_uri(page: Page) -> str:
    """Encode a page image as a base64 data URI."""
    encoded = base64.b64encode(page.image).decode("ascii")
    return f"data:{page.mime_type};base64,{encoded}"


class OpenAICompatibleVisionClient:
    """Vision client for OpenAI-compatible chat-completions APIs (xAI, OpenRouter)."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str,
        timeout: int = 120,
        max_retries: int = 3,
        max_output_tokens: int = 16000,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.model = model
        self.max_output_tokens = max_output_tokens
        self.client = BaseLLMClient(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=max_retries,
            transport=transport,
        )
        LOGGER.info(f"Initialized OpenAI-compatible vision client with model {self.model}")

    def build_payload(self, prompt: str, images: Sequence[Page]) -> Dict[str, Any]:
        content: List[Dict[str, Any]] = [{"type": "text", "text": prompt}]
        for page in images:
            content.append({
                "type": "image_url",
                "image_url": {"url": to_data_uri(page), "detail": "high"},
            })
        return {
            "model": self.model,
            "messages": [{"role": "user", "content": content}],
            "temperature": 0.0,
            "max_tokens": self.max_output_tokens,
        }

    async def generate(self, prompt: str, images: Sequence[Page]) -> str:
        """Send the prompt and images, return the raw text of the reply.

        Raises:
            APIClientError: If the call fails or the reply carries no text
        """
        response = await self.client.call_api(payload=self.build_payload(prompt, images))
        if not isinstance(response, dict):
            raise APIClientError(f"Unexpected vision response type: {type(response).__name__}")

        choices = response.get("choices") or []
        if not isinstance(choices, list) or not choices:
            raise APIClientError(f"No choices in vision response: {str(response)[:300]}")

        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        if not isinstance(message, dict):
            raise APIClientError(f"No message in vision response: {str(choices[0])[:300]}")

        content = message.get("content")
        # Some providers return a list of content parts
        if isinstance(content, list):
            content = "".join(
                str(part.get("text") or "") for part in content if isinstance(part, dict)
            )
        if not isinstance(content, str) or not content:
            raise APIClientError("Empty content in vision response")

        usage = response.get("usage") or {}
        LOGGER.debug(
            "Vision response received",
            extra={"model": self.model, "images": len(images), "usage": usage},
        )
        return content


class GeminiVisionClient:
    """Wrapper for the Google Gemini API with image parts."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash",
        max_retries: int = 3,
        max_output_tokens: int = 16000,
    ):
        self.model = model
        self.max_retries = max(1, max_retries)
        self.max_output_tokens = max_output_tokens

        try:
            self.client = genai.Client(api_key=api_key)
            LOGGER.info(f"Initialized Gemini vision client with model {self.model}")
        except Exception as e:
            LOGGER.error(f"Failed to initialize Gemini client: {e}")
            raise APIClientError(f"Failed to initialize Gemini client: {e}", e) from e

    def build_contents(self, prompt: str, images: Sequence[Page]) -> List[Any]:
        parts: List[Any] = [
            types.Part.from_bytes(data=page.image, mime_type=page.mime_type) for page in images
        ]
        parts.append(prompt)
        return parts

    async def generate(self, prompt: str, images: Sequence[Page]) -> str:
        """Send the prompt and images, return the raw text of the reply.

        Raises:
            APIClientError: If generation fails after retries
        """
        config = types.GenerateContentConfig(
            temperature=0.0,
            max_output_tokens=self.max_output_tokens,
        )
        contents = self.build_contents(prompt, images)

        for attempt in range(self.max_retries):
            try:
                response = await self.client.aio.models.generate_content(
                    model=self.model,
                    contents=contents,
                    config=config,
                )
                if not response.text:
                    raise APIClientError("Empty response from Gemini")
                return response.text

            except Exception as e:
                LOGGER.warning(
                    f"Gemini API error (Attempt {attempt + 1}/{self.max_retries}): {e}"
                )
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(2 ** attempt)
                else:
                    LOGGER.error(f"Gemini generation failed after retries: {e}", exc_info=True)
                    raise APIClientError(f"Gemini generation failed: {e}", e) from e

        raise APIClientError("Gemini generation failed")


VisionBackend = Union[OpenAICompatibleVisionClient, GeminiVisionClient]


class UnifiedVisionClient:
    """Vision client wrapping one provider plus an optional Gemini fallback."""

    def __init__(
        self,
        provider: Union[str, VisionProvider],
        client: VisionBackend,
        fallback_client: Optional[GeminiVisionClient] = None,
    ):
        self.provider = VisionProvider(provider)
        self.client = client
        self.fallback_client = fallback_client

    async def generate(self, prompt: str, images: Sequence[Page]) -> str:
        """Generate with the primary provider, falling back to Gemini if configured.

        Raises:
            APIClientError: If generation fails
        """
        try:
            return await self.client.generate(prompt, images)
        except Exception as e:
            if not self.fallback_client:
                raise
            LOGGER.warning(
                f"Primary provider ({self.provider.value}) failed, attempting Gemini fallback: {e}"
            )
            try:
                return await self.fallback_client.generate(prompt, images)
            except Exception as fallback_error:
                LOGGER.error(f"Fallback to Gemini also failed: {fallback_error}")
                raise APIClientError(
                    f"Both primary ({self.provider.value}) and fallback (Gemini) failed",
                    fallback_error,
                ) from fallback_error


def create_vision_client_from_settings(vision_settings) -> UnifiedVisionClient:
    """Create a unified vision client from ``VisionSettings``.

    Selects the API key, model and URL that belong to the configured provider.

    Raises:
        ConfigurationError: If the selected provider has no API key
    """
    provider = VisionProvider(vision_settings.provider)
    common = {
        "timeout": vision_settings.timeout,
        "max_retries": vision_settings.max_retries,
        "max_output_tokens": vision_settings.max_output_tokens,
    }

    if provider == VisionProvider.GEMINI:
        if not vision_settings.gemini_api_key:
            raise ConfigurationError("GEMINI_API_KEY is required for the gemini provider")
        client: VisionBackend = GeminiVisionClient(
            api_key=vision_settings.gemini_api_key,
            model=vision_settings.gemini_model,
            max_retries=vision_settings.max_retries,
            max_output_tokens=vision_settings.max_output_tokens,
        )
        return UnifiedVisionClient(provider, client)

    if provider == VisionProvider.XAI:
        api_key, model, url = (
            vision_settings.xai_api_key,
            vision_settings.xai_model,
            vision_settings.xai_api_url,
        )
    else:
        api_key, model, url = (
            vision_settings.openrouter_api_key,
            vision_settings.openrouter_model,
            vision_settings.openrouter_api_url,
        )

    if not api_key:
        raise ConfigurationError(f"API key is required for the {provider.value} provider")

    client = OpenAICompatibleVisionClient(api_key=api_key, model=model, base_url=url, **common)

    fallback = None
    if vision_settings.enable_fallback:
        if not vision_settings.gemini_api_key:
            raise ConfigurationError("GEMINI_API_KEY required when ENABLE_VISION_FALLBACK is set")
        fallback = GeminiVisionClient(
            api_key=vision_settings.gemini_api_key,
            model=vision_settings.gemini_model,
            max_retries=vision_settings.max_retries,
            max_output_tokens=vision_settings.max_output_tokens,
        )
        LOGGER.info(f"Vision provider {provider.value} with Gemini fallback")

    return UnifiedVisionClient(provider, client, fallback)
