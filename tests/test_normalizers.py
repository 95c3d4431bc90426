"""Tests for provider output and error normalization."""
import asyncio

import pytest

from enhancer.core.config import ErrorCode
from enhancer.core.exceptions import ProcessingError
from enhancer.worker.normalizers import (
    extract_output_url,
    infer_mime_type,
    is_rate_limit_error,
    normalize_error,
    normalize_output,
)
from enhancer.worker.providers.base import ProviderRateLimitError, ProviderTimeoutError


class FileOutput:
    """Mimics SDK file objects exposing url() as a method."""

    def __init__(self, url):
        self._url = url

    def url(self):
        return self._url


class HrefOutput:
    def __init__(self, href):
        self.href = href


class UrlLike:
    """Non-string URL object, stringifies to the address."""

    def __init__(self, address):
        self.address = address

    def __str__(self):
        return self.address


class TestOutputNormalization:
    """Output shapes"""

    def test_list_of_urls_with_uppercase_extension(self):
        output = normalize_output(["https://x/y/out.PNG"], now=1000.0)
        assert output.image_url == "https://x/y/out.PNG"
        assert output.mime_type == "image/png"
        assert output.expires_at == (1000 + 3600) * 1000

    def test_plain_string(self):
        assert extract_output_url("https://cdn.example.com/a.webp") == "https://cdn.example.com/a.webp"

    def test_url_method(self):
        assert extract_output_url(FileOutput("https://x/file.jpg")) == "https://x/file.jpg"

    def test_url_key_in_dict(self):
        assert extract_output_url({"url": "https://x/dict.png"}) == "https://x/dict.png"

    def test_href_attribute(self):
        assert extract_output_url([HrefOutput("https://x/h.png")]) == "https://x/h.png"

    def test_stringifiable_object(self):
        assert extract_output_url(UrlLike("https://x/obj.png")) == "https://x/obj.png"

    def test_any_string_reference(self):
        assert extract_output_url("s3://bucket/out.png") == "s3://bucket/out.png"

    def test_first_list_item_wins(self):
        assert extract_output_url(["https://x/1.png", "https://x/2.png"]) == "https://x/1.png"

    def test_data_uri_keeps_declared_type_and_never_expires(self):
        output = normalize_output("data:image/webp;base64,AAAA")
        assert output.mime_type == "image/webp"
        assert output.expires_at is None

    @pytest.mark.parametrize("raw", [[], None, {"status": "ok"}, "", "   ", 42])
    def test_unrecognized_output_is_no_output(self, raw):
        with pytest.raises(ProcessingError) as exc_info:
            normalize_output(raw)
        assert exc_info.value.code == ErrorCode.NO_OUTPUT

    @pytest.mark.parametrize("url,expected", [
        ("https://x/a.png?sig=abc", "image/png"),
        ("https://x/a.WEBP", "image/webp"),
        ("https://x/a.jpeg", "image/jpeg"),
        ("https://x/no-extension", "image/jpeg"),
    ])
    def test_mime_type_from_extension(self, url, expected):
        assert infer_mime_type(url) == expected


class TestErrorNormalization:
    """Error classification"""

    def test_rate_limit_message(self):
        error = normalize_error(Exception("Error: rate limit exceeded (429)"))
        assert error.code == ErrorCode.RATE_LIMITED
        assert error.status_code == 429

    def test_typed_rate_limit(self):
        error = normalize_error(ProviderRateLimitError("slow down", "replicate", status_code=429))
        assert error.code == ErrorCode.RATE_LIMITED

    def test_safety(self):
        assert normalize_error(Exception("NSFW content detected")).code == ErrorCode.SAFETY
        assert normalize_error("blocked by safety filter").code == ErrorCode.SAFETY

    def test_timeouts(self):
        assert normalize_error(asyncio.TimeoutError()).code == ErrorCode.TIMEOUT
        assert normalize_error(ProviderTimeoutError("slow", "replicate")).code == ErrorCode.TIMEOUT
        assert normalize_error(Exception("request timed out")).code == ErrorCode.TIMEOUT

    def test_no_output(self):
        assert normalize_error(Exception("No image in Gemini response")).code == ErrorCode.NO_OUTPUT

    def test_unknown_failure(self):
        error = normalize_error(ValueError("CUDA out of memory"))
        assert error.code == ErrorCode.PROCESSING_FAILED
        assert error.message == "CUDA out of memory"

    def test_dict_error(self):
        assert normalize_error({"error": "Too Many Requests"}).code == ErrorCode.RATE_LIMITED

    def test_none_has_a_message(self):
        error = normalize_error(None)
        assert error.code == ErrorCode.PROCESSING_FAILED
        assert error.message

    def test_canonical_error_passes_through(self):
        original = ProcessingError(ErrorCode.SAFETY, "flagged")
        assert normalize_error(original) is original

    def test_details_attached(self):
        error = normalize_error(Exception("boom"), details={"job_id": "rep_1_abc"})
        assert error.details == {"job_id": "rep_1_abc"}

    def test_is_rate_limit_error(self):
        assert is_rate_limit_error(Exception("throttled"))
        assert not is_rate_limit_error(Exception("bad input"))
