"""
Gemini image generation provider.

Images are sent inline and come back inline, so the raw output is a
``data:`` URI rather than a hosted URL.
"""
import asyncio
from typing import Any, Dict, Optional

import aiohttp
import structlog

from enhancer.core.settings import settings
from .base import (
    IProvider,
    ProviderConnectionError,
    ProviderError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    ProviderValidationError,
)
from .retry import with_retry

logger = structlog.get_logger(__name__)


def split_data_url(image: str, default_mime: str = "image/jpeg"):
    """Return ``(mime_type, base64_payload)`` for a data URL or bare base64."""
    if image.startswith("data:") and "," in image:
        header, payload = image.split(",", 1)
        mime = header[5:].split(";", 1)[0] or default_mime
        return mime, payload
    return default_mime, image


class GeminiProvider(IProvider):
    """Calls ``generateContent`` with an inline image and a text prompt."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.gemini_api_key
        self.base_url = (base_url or settings.gemini_api_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.gemini_timeout_sec
        self.max_retries = max_retries if max_retries is not None else settings.provider_max_retries

    @property
    def name(self) -> str:
        return "gemini"

    def build_payload(self, backend_input: Dict[str, Any]) -> Dict[str, Any]:
        mime_type, data = split_data_url(
            backend_input["image"], backend_input.get("mime_type", "image/jpeg")
        )
        return {
            "contents": [{
                "parts": [
                    {"text": backend_input["prompt"]},
                    {"inline_data": {"mime_type": mime_type, "data": data}},
                ]
            }],
            "generationConfig": {"responseModalities": ["IMAGE", "TEXT"]},
        }

    def parse_response(self, body: Dict[str, Any]) -> str:
        """Inline image from a generateContent response as a data URL."""
        block_reason = (body.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            raise ProviderError(f"Request blocked by safety filter: {block_reason}", self.name)

        for candidate in body.get("candidates") or []:
            if candidate.get("finishReason") in ("SAFETY", "PROHIBITED_CONTENT"):
                raise ProviderError("Output blocked by safety filter", self.name)
            for part in (candidate.get("content") or {}).get("parts") or []:
                inline = part.get("inlineData") or part.get("inline_data")
                if inline and inline.get("data"):
                    mime = inline.get("mimeType") or inline.get("mime_type") or "image/png"
                    return f"data:{mime};base64,{inline['data']}"

        raise ProviderError("No image in Gemini response", self.name)

    async def _generate(self, session: aiohttp.ClientSession, url: str,
                        payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            async with session.post(
                url,
                json=payload,
                headers={"x-goog-api-key": self.api_key, "Content-Type": "application/json"},
            ) as response:
                if response.status == 429:
                    raise ProviderRateLimitError(
                        "Gemini rate limit exceeded (429)", self.name, status_code=429
                    )
                if response.status == 400:
                    error_text = await response.text()
                    raise ProviderValidationError(
                        f"Gemini rejected input: {error_text}", self.name, status_code=400
                    )
                if response.status >= 400:
                    error_text = await response.text()
                    raise ProviderError(
                        f"Gemini request failed: {response.status} - {error_text}",
                        self.name,
                        status_code=response.status
                    )
                return await response.json()
        except asyncio.TimeoutError:
            raise ProviderTimeoutError("Gemini request timed out", self.name)
        except aiohttp.ClientError as e:
            raise ProviderConnectionError(f"Failed to connect to Gemini: {str(e)}", self.name)

    async def call(self, model_version: str, backend_input: Dict[str, Any]) -> Any:
        if not self.api_key:
            raise ProviderError("GEMINI_API_KEY is not configured", self.name)

        url = f"{self.base_url}/models/{model_version}:generateContent"
        payload = self.build_payload(backend_input)
        logger.info("Calling Gemini", model=model_version)

        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
            body = await with_retry(
                lambda: self._generate(session, url, payload),
                provider=self.name,
                max_attempts=self.max_retries,
                base_delay=settings.provider_retry_base_delay,
                max_jitter=settings.provider_retry_max_jitter,
            )
        return self.parse_response(body)

    async def health_check(self) -> bool:
        return bool(self.api_key)
