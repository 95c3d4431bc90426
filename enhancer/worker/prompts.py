"""
Natural language prompt composition for instruction-driven backends.
"""
from typing import Callable, Dict, Optional, Union

from enhancer.worker.providers.base import EnhancementSettings

DEFAULT_PROMPTS: Dict[str, Union[str, Callable[[int], str]]] = {
    "clarity-upscaler": "masterpiece, best quality, highres",
    "flux-2-pro": "Restore this image exactly as it would look in higher resolution.",
    "nano-banana-pro": lambda scale: (
        f"Upscale this image to {scale}x resolution with enhanced sharpness and detail."
    ),
    "nano-banana": lambda scale: (
        f"Upscale this image to {scale}x resolution with enhanced sharpness and detail."
    ),
    "qwen-image-edit": "Improve this image while maintaining its original quality and sharpness.",
    "seedream": "Improve this image quality while maintaining its original appearance.",
}

# Enhancement flag to instruction, in prompt order
ENHANCEMENT_INSTRUCTIONS = (
    ("clarity", "sharpen edges and improve overall clarity"),
    ("color", "balance color saturation and correct color casts"),
    ("lighting", "optimize exposure and lighting balance"),
    ("denoise", "remove sensor noise and grain while preserving details"),
    ("artifacts", "eliminate compression artifacts and blocky patterns"),
    ("details", "enhance fine textures and subtle details"),
)

ENHANCE_FACES_SUFFIX = "Enhance facial features naturally without altering identity."
PRESERVE_TEXT_SUFFIX = "Preserve and sharpen any text or logos in the image."
NO_CREATIVE_CHANGES_SUFFIX = "No creative changes."


def enhancement_instructions(enhancement: EnhancementSettings) -> str:
    """Sentence listing the enabled enhancement actions, or an empty string."""
    actions = [text for flag, text in ENHANCEMENT_INSTRUCTIONS if getattr(enhancement, flag)]
    if not actions:
        return ""
    sentence = ", ".join(actions)
    return sentence[0].upper() + sentence[1:] + "."


def default_prompt(backend_id: str, scale: int) -> str:
    prompt = DEFAULT_PROMPTS.get(backend_id, "")
    if callable(prompt):
        return prompt(scale)
    return prompt


class PromptBuilder:
    """Builds the prompt sent to backends that take instructions."""

    def build(
        self,
        backend_id: str,
        *,
        scale: int,
        enhance: bool = False,
        enhance_faces: bool = False,
        preserve_text: bool = False,
        enhancement: Optional[EnhancementSettings] = None,
        custom_prompt: Optional[str] = None,
        base_prompt: Optional[str] = None,
        no_creative_changes: bool = False,
    ) -> str:
        """
        Compose a prompt for ``backend_id``.

        A non-empty ``custom_prompt`` is returned as is. Otherwise the base
        prompt (explicit or the backend default) is followed by enhancement
        instructions, face and text suffixes, and optionally the no creative
        changes suffix.
        """
        if custom_prompt and custom_prompt.strip():
            return custom_prompt.strip()

        base = (base_prompt if base_prompt is not None else default_prompt(backend_id, scale)).strip()
        has_modifiers = enhance or enhance_faces or preserve_text or no_creative_changes
        if base and has_modifiers and not base.endswith("."):
            base += "."

        parts = [base] if base else []
        if enhance:
            instructions = enhancement_instructions(enhancement or EnhancementSettings())
            if instructions:
                parts.append(instructions)
        if enhance_faces:
            parts.append(ENHANCE_FACES_SUFFIX)
        if preserve_text:
            parts.append(PRESERVE_TEXT_SUFFIX)
        if no_creative_changes:
            parts.append(NO_CREATIVE_CHANGES_SUFFIX)

        return " ".join(parts)
