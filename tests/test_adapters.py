"""Tests for backend input adapters and prompt composition."""
import pytest

from enhancer.core.config import ProcessingMode
from enhancer.core.exceptions import ModelNotAvailableError
from enhancer.worker.adapters import build_backend_input, to_data_url
from enhancer.worker.prompts import (
    ENHANCE_FACES_SUFFIX,
    NO_CREATIVE_CHANGES_SUFFIX,
    PRESERVE_TEXT_SUFFIX,
    PromptBuilder,
    enhancement_instructions,
)
from enhancer.worker.providers.base import EnhancementSettings, NanoBananaProConfig, ProcessingRequest


def make_request(**overrides):
    values = dict(image_data="QUJD", mime_type="image/png", scale=4)
    values.update(overrides)
    return ProcessingRequest(**values)


class TestInputAdapters:
    """Canonical request to wire schema"""

    def test_bare_base64_becomes_data_url(self):
        assert to_data_url("QUJD", "image/png") == "data:image/png;base64,QUJD"
        assert to_data_url("https://x/in.jpg") == "https://x/in.jpg"

    def test_real_esrgan(self):
        wire = build_backend_input("real-esrgan", make_request(scale=8, enhance_faces=True))
        assert wire == {
            "image": "data:image/png;base64,QUJD",
            "scale": 4,
            "face_enhance": True,
        }

    def test_gfpgan(self):
        wire = build_backend_input("gfpgan", make_request(scale=2))
        assert wire["img"].startswith("data:image/png")
        assert wire["scale"] == 2
        assert wire["version"] == "v1.4"

    def test_nano_banana_pro_resolution_and_overrides(self):
        wire = build_backend_input("nano-banana-pro", make_request(scale=2))
        assert wire["resolution"] == "2K"
        assert wire["image_input"] == ["data:image/png;base64,QUJD"]

        overridden = build_backend_input(
            "nano-banana-pro",
            make_request(nano_banana_pro=NanoBananaProConfig(resolution="4K", output_format="webp")),
        )
        assert overridden["resolution"] == "4K"
        assert overridden["output_format"] == "webp"
        assert overridden["aspect_ratio"] == "match_input_image"

    def test_flux_prompt_forbids_creative_changes(self):
        wire = build_backend_input("flux-2-pro", make_request(mode=ProcessingMode.ENHANCE))
        assert wire["prompt"].endswith(NO_CREATIVE_CHANGES_SUFFIX)
        assert wire["input_images"] == ["data:image/png;base64,QUJD"]

    def test_custom_instructions_replace_prompt(self):
        wire = build_backend_input(
            "qwen-image-edit", make_request(custom_instructions="  Remove the scratches  ")
        )
        assert wire["prompt"] == "Remove the scratches"

    def test_nano_banana_keeps_mime_type(self):
        wire = build_backend_input("nano-banana", make_request(scale=8))
        assert wire["mime_type"] == "image/png"
        assert "8x" in wire["prompt"]

    def test_unknown_backend(self):
        with pytest.raises(ModelNotAvailableError):
            build_backend_input("does-not-exist", make_request())


class TestPromptBuilder:
    """Prompt composition"""

    def test_default_prompt_only(self):
        assert PromptBuilder().build("seedream", scale=2) == (
            "Improve this image quality while maintaining its original appearance."
        )

    def test_modifiers_appended_in_order(self):
        prompt = PromptBuilder().build(
            "clarity-upscaler",
            scale=2,
            enhance=True,
            enhance_faces=True,
            preserve_text=True,
            enhancement=EnhancementSettings(clarity=True, color=False, denoise=False, artifacts=False),
        )
        assert prompt == " ".join([
            "masterpiece, best quality, highres.",
            "Sharpen edges and improve overall clarity.",
            ENHANCE_FACES_SUFFIX,
            PRESERVE_TEXT_SUFFIX,
        ])

    def test_enhancement_instructions_empty_when_nothing_enabled(self):
        settings = EnhancementSettings(clarity=False, color=False, denoise=False, artifacts=False)
        assert enhancement_instructions(settings) == ""

    def test_backend_without_default_prompt(self):
        assert PromptBuilder().build("real-esrgan", scale=2, preserve_text=True) == PRESERVE_TEXT_SUFFIX
