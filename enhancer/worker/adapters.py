"""
Backend input adapters.

One pure function per backend id translates the canonical
``ProcessingRequest`` into that backend's wire schema. ``INPUT_BUILDERS``
is the lookup table the dispatcher uses; every catalog id needs an entry.
"""
from dataclasses import asdict
from typing import Any, Callable, Dict

from enhancer.core.exceptions import ModelNotAvailableError
from enhancer.worker.prompts import PromptBuilder
from enhancer.worker.providers.base import ProcessingRequest

InputBuilder = Callable[[ProcessingRequest], Dict[str, Any]]

prompt_builder = PromptBuilder()


def to_data_url(image_data: str, mime_type: str = "image/jpeg") -> str:
    """Prefix bare base64 with a data URL header; URLs pass through."""
    if image_data.startswith(("data:", "http://", "https://")):
        return image_data
    return f"data:{mime_type};base64,{image_data}"


def _capped_scale(scale: int) -> int:
    """Scale for backends that only run at 2x or 4x."""
    return 2 if scale == 2 else 4


def _prompt(backend_id: str, request: ProcessingRequest, **options) -> str:
    return prompt_builder.build(
        backend_id,
        scale=request.scale,
        enhance=request.enhance,
        enhance_faces=request.enhance_faces,
        preserve_text=request.preserve_text,
        enhancement=request.enhancement,
        custom_prompt=request.custom_instructions,
        **options,
    )


def build_real_esrgan(request: ProcessingRequest) -> Dict[str, Any]:
    return {
        "image": to_data_url(request.image_data, request.mime_type),
        "scale": _capped_scale(request.scale),
        "face_enhance": request.enhance_faces,
    }


def build_gfpgan(request: ProcessingRequest) -> Dict[str, Any]:
    return {
        "img": to_data_url(request.image_data, request.mime_type),
        "scale": _capped_scale(request.scale),
        "version": "v1.4",
    }


def build_realesrgan_anime(request: ProcessingRequest) -> Dict[str, Any]:
    return {
        "img": to_data_url(request.image_data, request.mime_type),
        "scale": _capped_scale(request.scale),
        "version": "Anime - anime6B",
        "face_enhance": request.enhance_faces,
    }


def build_clarity_upscaler(request: ProcessingRequest) -> Dict[str, Any]:
    return {
        "image": to_data_url(request.image_data, request.mime_type),
        "prompt": _prompt("clarity-upscaler", request),
        "scale_factor": request.scale,
        "output_format": "png",
    }


def build_flux_2_pro(request: ProcessingRequest) -> Dict[str, Any]:
    return {
        "prompt": _prompt("flux-2-pro", request, no_creative_changes=True),
        "input_images": [to_data_url(request.image_data, request.mime_type)],
        "aspect_ratio": "match_input_image",
        "output_format": "png",
        "safety_tolerance": 2,
        "prompt_upsampling": False,
    }


def build_nano_banana_pro(request: ProcessingRequest) -> Dict[str, Any]:
    wire = {
        "prompt": _prompt("nano-banana-pro", request),
        "image_input": [to_data_url(request.image_data, request.mime_type)],
        "aspect_ratio": "match_input_image",
        "resolution": "2K" if request.scale == 2 else "4K",
        "output_format": "png",
        "safety_filter_level": "block_only_high",
    }
    if request.nano_banana_pro is not None:
        overrides = {k: v for k, v in asdict(request.nano_banana_pro).items() if v is not None}
        wire.update(overrides)
    return wire


def build_qwen_image_edit(request: ProcessingRequest) -> Dict[str, Any]:
    return {
        "prompt": _prompt("qwen-image-edit", request),
        "image": [to_data_url(request.image_data, request.mime_type)],
        "aspect_ratio": "match_input_image",
        "output_format": "png",
        "output_quality": 95,
        "go_fast": True,
    }


def build_seedream(request: ProcessingRequest) -> Dict[str, Any]:
    return {
        "prompt": _prompt("seedream", request),
        "image_input": [to_data_url(request.image_data, request.mime_type)],
        "size": "4K",
        "aspect_ratio": "match_input_image",
    }


def build_nano_banana(request: ProcessingRequest) -> Dict[str, Any]:
    # Gemini takes the image inline next to the prompt
    return {
        "prompt": _prompt("nano-banana", request),
        "image": to_data_url(request.image_data, request.mime_type),
        "mime_type": request.mime_type,
    }


INPUT_BUILDERS: Dict[str, InputBuilder] = {
    "real-esrgan": build_real_esrgan,
    "gfpgan": build_gfpgan,
    "nano-banana": build_nano_banana,
    "clarity-upscaler": build_clarity_upscaler,
    "nano-banana-pro": build_nano_banana_pro,
    "flux-2-pro": build_flux_2_pro,
    "qwen-image-edit": build_qwen_image_edit,
    "seedream": build_seedream,
    "realesrgan-anime": build_realesrgan_anime,
}


def build_backend_input(backend_id: str, request: ProcessingRequest) -> Dict[str, Any]:
    """Wire input for ``backend_id``."""
    builder = INPUT_BUILDERS.get(backend_id)
    if builder is None:
        raise ModelNotAvailableError(f"No input adapter for backend {backend_id}", backend_id)
    return builder(request)
