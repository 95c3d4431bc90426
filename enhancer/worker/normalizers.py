"""
Output and error normalization for provider responses.

Provider outputs come back as a plain URL string, a list whose first item
carries the URL, or an object exposing ``url`` (attribute or zero-argument
method) or ``href``. Errors come back as anything at all. Both are reduced
here to the canonical result and error shapes.
"""

import asyncio
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import structlog

from enhancer.core.config import ErrorCode, OUTPUT_URL_TTL_SECONDS
from enhancer.core.exceptions import ProcessingError
from enhancer.worker.providers.base import ProviderRateLimitError, ProviderTimeoutError

logger = structlog.get_logger(__name__)

RATE_LIMIT_PATTERNS = ("rate limit", "ratelimit", "429", "throttled", "too many requests")
SAFETY_PATTERNS = ("nsfw", "safety")
TIMEOUT_PATTERNS = ("timeout", "timed out")
NO_OUTPUT_PATTERNS = ("no output", "empty result", "no image")

_DATA_URI = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?[;,]", re.IGNORECASE)


@dataclass
class NormalizedOutput:
    image_url: str
    mime_type: str
    expires_at: Optional[int] = None


# Output extractors, tried in order; each returns a URL or None

def _from_string(value: Any) -> Optional[str]:
    # Any non-empty string is a reference (http, data:, s3:// ...)
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, (dict, list, tuple)) or value is None:
        return None
    # File-like outputs stringify to their address
    text = str(value)
    if text.startswith(("http://", "https://", "data:")):
        return text
    return None


def _from_url(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        candidate = value.get("url")
    else:
        candidate = getattr(value, "url", None)
    if callable(candidate):
        try:
            candidate = candidate()
        except TypeError:
            return None
    # Objects such as yarl.URL stringify to the address
    if candidate is not None and not isinstance(candidate, str):
        candidate = str(candidate)
    return candidate or None


def _from_href(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        candidate = value.get("href")
    else:
        candidate = getattr(value, "href", None)
    if isinstance(candidate, str) and candidate:
        return candidate
    return None


OUTPUT_EXTRACTORS: List[Callable[[Any], Optional[str]]] = [_from_string, _from_url, _from_href]


def extract_output_url(raw: Any) -> str:
    """First URL found by the extractor chain, raising NO_OUTPUT when none matches."""
    value = raw
    if isinstance(value, (list, tuple)):
        if not value:
            raise ProcessingError(ErrorCode.NO_OUTPUT, "Provider returned an empty output list")
        value = value[0]

    for extractor in OUTPUT_EXTRACTORS:
        url = extractor(value)
        if url:
            return url

    raise ProcessingError(
        ErrorCode.NO_OUTPUT,
        f"No image URL in provider output of type {type(raw).__name__}",
    )


def infer_mime_type(url: str) -> str:
    """
    Best guess at the image MIME type.

    ``data:`` URIs report their declared media type. For other URLs this is
    a heuristic on the file extension only (``.png``, ``.webp``, anything
    else is assumed JPEG); the provider may serve a different format.
    """
    match = _DATA_URI.match(url)
    if match:
        return (match.group("mime") or "image/jpeg").lower()

    path = url.split("?", 1)[0].split("#", 1)[0].lower()
    if ".png" in path:
        return "image/png"
    if ".webp" in path:
        return "image/webp"
    return "image/jpeg"


def normalize_output(raw: Any, now: Optional[float] = None) -> NormalizedOutput:
    """Canonical output from any supported provider response shape."""
    url = extract_output_url(raw)
    expires_at = None
    if not url.startswith("data:"):
        now = time.time() if now is None else now
        expires_at = int((now + OUTPUT_URL_TTL_SECONDS) * 1000)
    return NormalizedOutput(image_url=url, mime_type=infer_mime_type(url), expires_at=expires_at)


def _error_message(raw: Any) -> str:
    """Readable message from whatever was raised."""
    if raw is None:
        return ""
    if isinstance(raw, BaseException):
        message = str(raw)
        return message or type(raw).__name__
    if isinstance(raw, dict):
        for key in ("message", "error", "detail"):
            if raw.get(key):
                return str(raw[key])
    try:
        return str(raw)
    except Exception:  # objects with a broken __str__
        return repr(type(raw))


def _matches(text: str, patterns) -> bool:
    return any(p in text for p in patterns)


def is_rate_limit_error(raw: Any) -> bool:
    """Whether a failure belongs to the rate limit class."""
    if isinstance(raw, ProviderRateLimitError):
        return True
    if isinstance(raw, ProcessingError):
        return raw.code == ErrorCode.RATE_LIMITED
    if getattr(raw, "status_code", None) == 429 or getattr(raw, "status", None) == 429:
        return True
    return _matches(_error_message(raw).lower(), RATE_LIMIT_PATTERNS)


def normalize_error(raw: Any, details: Optional[Dict[str, Any]] = None) -> ProcessingError:
    """Map any raw failure to a canonical ProcessingError."""
    if isinstance(raw, ProcessingError):
        if details:
            raw.details = {**details, **raw.details}
        return raw

    message = _error_message(raw) or "Processing failed"
    text = message.lower()

    if is_rate_limit_error(raw):
        code = ErrorCode.RATE_LIMITED
    elif _matches(text, SAFETY_PATTERNS):
        code = ErrorCode.SAFETY
    elif isinstance(raw, (asyncio.TimeoutError, TimeoutError, ProviderTimeoutError)) or _matches(
        text, TIMEOUT_PATTERNS
    ):
        code = ErrorCode.TIMEOUT
    elif _matches(text, NO_OUTPUT_PATTERNS):
        code = ErrorCode.NO_OUTPUT
    else:
        code = ErrorCode.PROCESSING_FAILED

    logger.debug("Provider error normalized", code=code.value, error=message)
    return ProcessingError(code, message, details=details)
