"""Tests for provider clients and the provider registry."""
from unittest.mock import AsyncMock, patch

import pytest

from enhancer.core.config import ErrorCode, ProviderKind
from enhancer.worker.normalizers import normalize_error
from enhancer.worker.providers import build_registry, get_provider
from enhancer.worker.providers.base import ProviderError
from enhancer.worker.providers.gemini import GeminiProvider, split_data_url
from enhancer.worker.providers.mock import MockProvider
from enhancer.worker.providers.replicate import ReplicateProvider
from tests.mocks import make_settings


class TestReplicateProvider:
    """Replicate predictions client"""

    def test_pinned_version_uses_predictions_endpoint(self):
        provider = ReplicateProvider(api_token="t", base_url="https://api.test/v1")
        url, payload = provider._create_url_and_payload("owner/model:abc123", {"image": "x"})

        assert url == "https://api.test/v1/predictions"
        assert payload == {"version": "abc123", "input": {"image": "x"}}

    def test_model_name_uses_model_endpoint(self):
        provider = ReplicateProvider(api_token="t", base_url="https://api.test/v1/")
        url, payload = provider._create_url_and_payload("google/nano-banana-pro", {"prompt": "p"})

        assert url == "https://api.test/v1/models/google/nano-banana-pro/predictions"
        assert payload == {"input": {"prompt": "p"}}

    @pytest.mark.asyncio
    async def test_missing_token(self):
        with pytest.raises(ProviderError):
            await ReplicateProvider(api_token="").call("owner/model", {})

    @pytest.mark.asyncio
    async def test_succeeded_prediction_returns_output(self):
        provider = ReplicateProvider(api_token="t", poll_interval=0)
        prediction = {"id": "p1", "status": "succeeded", "output": ["https://x/out.png"]}

        with patch.object(provider, "_start", AsyncMock(return_value=prediction)), \
                patch.object(provider, "_poll", AsyncMock(return_value=prediction)):
            output = await provider.call("owner/model", {"image": "x"})

        assert output == ["https://x/out.png"]

    @pytest.mark.asyncio
    async def test_failed_prediction_raises_provider_error(self):
        provider = ReplicateProvider(api_token="t", poll_interval=0)
        prediction = {"id": "p1", "status": "failed", "error": "NSFW content detected"}

        with patch.object(provider, "_start", AsyncMock(return_value=prediction)), \
                patch.object(provider, "_poll", AsyncMock(return_value=prediction)):
            with pytest.raises(ProviderError) as exc_info:
                await provider.call("owner/model", {"image": "x"})

        assert exc_info.value.remote_id == "p1"
        assert normalize_error(exc_info.value).code == ErrorCode.SAFETY


class TestGeminiProvider:
    """Gemini generateContent client"""

    def test_split_data_url(self):
        assert split_data_url("data:image/png;base64,AAAA") == ("image/png", "AAAA")
        assert split_data_url("AAAA", "image/webp") == ("image/webp", "AAAA")

    def test_payload_carries_prompt_and_inline_image(self):
        payload = GeminiProvider(api_key="k").build_payload({
            "prompt": "Upscale this image",
            "image": "data:image/png;base64,AAAA",
            "mime_type": "image/png",
        })

        parts = payload["contents"][0]["parts"]
        assert parts[0] == {"text": "Upscale this image"}
        assert parts[1] == {"inline_data": {"mime_type": "image/png", "data": "AAAA"}}

    def test_inline_image_response(self):
        body = {"candidates": [{"content": {"parts": [
            {"text": "done"},
            {"inlineData": {"mimeType": "image/webp", "data": "BBBB"}},
        ]}}]}
        assert GeminiProvider(api_key="k").parse_response(body) == "data:image/webp;base64,BBBB"

    def test_blocked_prompt_is_safety_error(self):
        with pytest.raises(ProviderError) as exc_info:
            GeminiProvider(api_key="k").parse_response({"promptFeedback": {"blockReason": "OTHER"}})
        assert normalize_error(exc_info.value).code == ErrorCode.SAFETY

    def test_text_only_response_is_no_output(self):
        body = {"candidates": [{"content": {"parts": [{"text": "I cannot do that"}]}}]}
        with pytest.raises(ProviderError) as exc_info:
            GeminiProvider(api_key="k").parse_response(body)
        assert normalize_error(exc_info.value).code == ErrorCode.NO_OUTPUT

    @pytest.mark.asyncio
    async def test_call(self):
        provider = GeminiProvider(api_key="k", base_url="https://gemini.test/v1beta")
        body = {"candidates": [{"content": {"parts": [{"inline_data": {"data": "CCCC"}}]}}]}

        with patch.object(provider, "_generate", AsyncMock(return_value=body)) as generate:
            output = await provider.call("gemini-2.5-flash-image", {
                "prompt": "p", "image": "AAAA", "mime_type": "image/jpeg",
            })

        assert output == "data:image/png;base64,CCCC"
        assert generate.call_args.args[1] == (
            "https://gemini.test/v1beta/models/gemini-2.5-flash-image:generateContent"
        )


class TestProviderRegistry:
    """Provider construction from settings"""

    def test_mock_mode_routes_everything_to_mock(self):
        registry = build_registry(make_settings(model_provider="mock"))
        for kind in ProviderKind:
            assert isinstance(registry.get(kind), MockProvider)

    def test_live_mode(self):
        settings = make_settings(
            model_provider="live", replicate_api_token="r-token", gemini_api_key="g-key"
        )

        replicate = get_provider(ProviderKind.REPLICATE, settings)
        gemini = get_provider(ProviderKind.GEMINI, settings)

        assert isinstance(replicate, ReplicateProvider)
        assert replicate.api_token == "r-token"
        assert isinstance(gemini, GeminiProvider)
        assert gemini.api_key == "g-key"
        assert isinstance(get_provider(ProviderKind.MOCK, settings), MockProvider)

    @pytest.mark.asyncio
    async def test_mock_provider_output_normalizes(self):
        provider = MockProvider()
        output = await provider.call("owner/model:hash", {"image": "x"})

        assert output[0].startswith("https://mock.example.com/outputs/owner-model/")
        assert provider.calls[0]["model_version"] == "owner/model:hash"

    @pytest.mark.asyncio
    async def test_mock_provider_keeps_recent_calls_only(self):
        provider = MockProvider(history=2)
        for version in ("a/one", "a/two", "a/three"):
            await provider.call(version, {})

        assert [c["model_version"] for c in provider.calls] == ["a/two", "a/three"]
