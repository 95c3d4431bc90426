"""
Request and response schemas for the HTTP API.
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from enhancer.core.config import ContentType, ModelCapability, ProcessingMode
from enhancer.worker.providers.base import EnhancementSettings, NanoBananaProConfig, ProcessingRequest
from enhancer.api.services.recommendations import ImageAnalysis

Scale = Literal[2, 4, 8]


class EnhancementSettingsSchema(BaseModel):
    clarity: bool = True
    color: bool = True
    lighting: bool = False
    denoise: bool = True
    artifacts: bool = True
    details: bool = False


class NanoBananaProSchema(BaseModel):
    aspect_ratio: Optional[str] = None
    resolution: Optional[Literal["1K", "2K", "4K"]] = None
    output_format: Optional[Literal["png", "jpg", "webp"]] = None
    safety_filter_level: Optional[str] = None


class CreditEstimateRequest(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_id: str
    mode: ProcessingMode = ProcessingMode.UPSCALE
    scale: Scale = 2


class ImageAnalysisSchema(BaseModel):
    damage_level: float = Field(default=0.0, ge=0, le=1)
    face_count: int = Field(default=0, ge=0)
    text_coverage: float = Field(default=0.0, ge=0, le=1)
    noise_level: float = Field(default=0.0, ge=0, le=1)
    content_type: ContentType = ContentType.UNKNOWN

    def to_analysis(self) -> ImageAnalysis:
        return ImageAnalysis(**self.model_dump())


class RecommendRequest(BaseModel):
    analysis: ImageAnalysisSchema = Field(default_factory=ImageAnalysisSchema)
    mode: ProcessingMode = ProcessingMode.UPSCALE
    scale: Scale = 2


class ProcessRequest(BaseModel):
    """Processing request; omit ``model_id`` or pass "auto" for automatic selection."""
    model_config = ConfigDict(protected_namespaces=())

    image_data: str = Field(min_length=1)
    mime_type: str = "image/jpeg"
    mode: ProcessingMode = ProcessingMode.UPSCALE
    scale: Scale = 2
    model_id: Optional[str] = None
    enhance: bool = False
    enhance_faces: bool = False
    preserve_text: bool = False
    enhancement: EnhancementSettingsSchema = Field(default_factory=EnhancementSettingsSchema)
    custom_instructions: Optional[str] = Field(default=None, max_length=2000)
    prioritize_quality: bool = False
    denoise: bool = False
    required_capabilities: List[ModelCapability] = Field(default_factory=list)
    nano_banana_pro: Optional[NanoBananaProSchema] = None

    @field_validator("mime_type")
    def validate_mime_type(cls, v):
        if not v.startswith("image/"):
            raise ValueError("mime_type must be an image type")
        return v.lower()

    @property
    def wants_auto_selection(self) -> bool:
        return not self.model_id or self.model_id == "auto"

    def to_processing_request(self) -> ProcessingRequest:
        return ProcessingRequest(
            image_data=self.image_data,
            mime_type=self.mime_type,
            mode=self.mode,
            scale=self.scale,
            enhance=self.enhance,
            enhance_faces=self.enhance_faces,
            preserve_text=self.preserve_text,
            enhancement=EnhancementSettings(**self.enhancement.model_dump()),
            custom_instructions=self.custom_instructions,
            nano_banana_pro=(
                NanoBananaProConfig(**self.nano_banana_pro.model_dump())
                if self.nano_banana_pro else None
            ),
        )
