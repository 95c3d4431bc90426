"""
Replicate predictions API provider.
"""
import asyncio
import time
from typing import Any, Dict, Optional

import aiohttp
import structlog

from enhancer.core.settings import settings
from .base import (
    IProvider,
    ProviderConnectionError,
    ProviderError,
    ProviderRateLimitError,
    ProviderStatus,
    ProviderTimeoutError,
    ProviderValidationError,
    TERMINAL_STATUSES,
)
from .retry import with_retry

logger = structlog.get_logger(__name__)


class ReplicateProvider(IProvider):
    """Runs predictions on Replicate and returns the raw ``output`` field."""

    def __init__(
        self,
        api_token: Optional[str] = None,
        base_url: Optional[str] = None,
        poll_interval: Optional[float] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
    ):
        self.api_token = api_token if api_token is not None else settings.replicate_api_token
        self.base_url = (base_url or settings.replicate_api_url).rstrip("/")
        self.poll_interval = poll_interval if poll_interval is not None else settings.replicate_poll_interval_sec
        self.timeout = timeout if timeout is not None else settings.replicate_timeout_sec
        self.max_retries = max_retries if max_retries is not None else settings.provider_max_retries

    @property
    def name(self) -> str:
        return "replicate"

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Token {self.api_token}",
            "Content-Type": "application/json",
            "Prefer": "wait",
        }

    def _create_url_and_payload(self, model_version: str, backend_input: Dict[str, Any]):
        # "owner/name:hash" runs a pinned version, "owner/name" the latest one
        if ":" in model_version:
            version = model_version.split(":", 1)[1]
            return f"{self.base_url}/predictions", {"version": version, "input": backend_input}
        return f"{self.base_url}/models/{model_version}/predictions", {"input": backend_input}

    async def _request(self, session: aiohttp.ClientSession, method: str, url: str,
                       **kwargs) -> Dict[str, Any]:
        try:
            async with session.request(method, url, headers=self._headers(), **kwargs) as response:
                if response.status == 429:
                    raise ProviderRateLimitError(
                        "Replicate rate limit exceeded (429)", self.name, status_code=429
                    )
                if response.status == 422:
                    error_text = await response.text()
                    raise ProviderValidationError(
                        f"Replicate rejected input: {error_text}", self.name, status_code=422
                    )
                if response.status >= 400:
                    error_text = await response.text()
                    raise ProviderError(
                        f"Replicate request failed: {response.status} - {error_text}",
                        self.name,
                        status_code=response.status
                    )
                return await response.json()
        except asyncio.TimeoutError:
            raise ProviderTimeoutError(f"Replicate request timed out: {method} {url}", self.name)
        except aiohttp.ClientError as e:
            raise ProviderConnectionError(f"Failed to connect to Replicate: {str(e)}", self.name)

    async def _start(self, session: aiohttp.ClientSession, model_version: str,
                     backend_input: Dict[str, Any]) -> Dict[str, Any]:
        url, payload = self._create_url_and_payload(model_version, backend_input)
        logger.info(
            "Starting Replicate prediction",
            model=model_version,
            inputs=sorted(backend_input.keys())
        )
        return await with_retry(
            lambda: self._request(session, "POST", url, json=payload),
            provider=self.name,
            max_attempts=self.max_retries,
            base_delay=settings.provider_retry_base_delay,
            max_jitter=settings.provider_retry_max_jitter,
        )

    async def _poll(self, session: aiohttp.ClientSession, prediction: Dict[str, Any]) -> Dict[str, Any]:
        prediction_id = prediction.get("id")
        url = prediction.get("urls", {}).get("get") or f"{self.base_url}/predictions/{prediction_id}"
        t0 = time.monotonic()

        while ProviderStatus(prediction.get("status", "starting")) not in TERMINAL_STATUSES:
            if time.monotonic() - t0 > self.timeout:
                logger.error(
                    "Replicate prediction timeout",
                    prediction_id=prediction_id,
                    timeout=self.timeout
                )
                raise ProviderTimeoutError(
                    f"Prediction {prediction_id} timed out after {self.timeout}s",
                    self.name,
                    prediction_id
                )
            await asyncio.sleep(self.poll_interval)
            prediction = await with_retry(
                lambda: self._request(session, "GET", url),
                provider=self.name,
                max_attempts=self.max_retries,
                base_delay=settings.provider_retry_base_delay,
                max_jitter=settings.provider_retry_max_jitter,
            )

        logger.info(
            "Replicate prediction completed",
            prediction_id=prediction_id,
            status=prediction.get("status"),
            elapsed=time.monotonic() - t0
        )
        return prediction

    async def call(self, model_version: str, backend_input: Dict[str, Any]) -> Any:
        if not self.api_token:
            raise ProviderError("REPLICATE_API_TOKEN is not configured", self.name)

        client_timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=client_timeout) as session:
            prediction = await self._start(session, model_version, backend_input)
            prediction = await self._poll(session, prediction)

        status = ProviderStatus(prediction["status"])
        if status != ProviderStatus.SUCCEEDED:
            raise ProviderError(
                str(prediction.get("error") or f"Prediction {status.value}"),
                self.name,
                prediction.get("id")
            )
        return prediction.get("output")

    async def health_check(self) -> bool:
        return bool(self.api_token)
