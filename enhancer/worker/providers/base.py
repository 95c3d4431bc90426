"""
Base provider interface for image processing backends.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from enhancer.core.config import ProcessingMode


class ProviderStatus(str, Enum):
    """Remote prediction status."""
    STARTING = "starting"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


TERMINAL_STATUSES = {ProviderStatus.SUCCEEDED, ProviderStatus.FAILED, ProviderStatus.CANCELED}


@dataclass
class EnhancementSettings:
    """Which aspects of the image an enhancement prompt should address."""
    clarity: bool = True
    color: bool = True
    lighting: bool = False
    denoise: bool = True
    artifacts: bool = True
    details: bool = False


@dataclass
class NanoBananaProConfig:
    """Optional overrides for the nano-banana-pro wire input."""
    aspect_ratio: Optional[str] = None
    resolution: Optional[str] = None
    output_format: Optional[str] = None
    safety_filter_level: Optional[str] = None


@dataclass
class ProcessingRequest:
    """Canonical, backend independent processing request."""
    image_data: str
    mode: ProcessingMode = ProcessingMode.UPSCALE
    scale: int = 2
    mime_type: str = "image/jpeg"
    enhance: bool = False
    enhance_faces: bool = False
    preserve_text: bool = False
    enhancement: EnhancementSettings = field(default_factory=EnhancementSettings)
    custom_instructions: Optional[str] = None
    nano_banana_pro: Optional[NanoBananaProConfig] = None


class ProviderError(Exception):
    """Base provider error."""
    def __init__(self, message: str, provider: str, remote_id: Optional[str] = None,
                 status_code: Optional[int] = None):
        self.message = message
        self.provider = provider
        self.remote_id = remote_id
        self.status_code = status_code
        super().__init__(f"{provider}: {message}")


class ProviderTimeoutError(ProviderError):
    """Provider timeout error."""
    pass


class ProviderConnectionError(ProviderError):
    """Provider connection error."""
    pass


class ProviderValidationError(ProviderError):
    """Provider rejected the input."""
    pass


class ProviderRateLimitError(ProviderError):
    """Provider answered with HTTP 429."""
    pass


class IProvider(ABC):
    """Abstract base class for processing backend clients."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name identifier."""
        pass

    def supports_mode(self, mode: ProcessingMode) -> bool:
        """Whether the provider can serve ``mode``. All modes by default."""
        ProcessingMode(mode)
        return True

    @abstractmethod
    async def call(self, model_version: str, backend_input: Dict[str, Any]) -> Any:
        """
        Run one prediction and return the raw output.

        Args:
            model_version: Provider model reference from the catalog
            backend_input: Wire input built by the backend adapter

        Returns:
            Raw provider output (string, list or URL bearing object)

        Raises:
            ProviderError: On any provider failure
        """
        pass

    async def health_check(self) -> bool:
        """Check if the provider is configured and reachable."""
        return True
