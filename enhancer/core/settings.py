"""
Application settings and configuration management.
"""
from typing import Dict, List
from pydantic_settings import BaseSettings
from pydantic import field_validator

from enhancer.core.config import BATCH_LIMITS, SubscriptionTier


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application Settings
    app_name: str = "Image Enhancer API"
    app_version: str = "1.0.0"
    environment: str = "development"
    enable_docs: bool = True

    # Logging
    log_level: str = "INFO"

    # Prometheus Metrics
    enable_metrics: bool = True

    # Database
    database_url: str = "sqlite:///./enhancer.db"
    default_credits: int = 10

    # Redis Configuration
    redis_url: str = "redis://localhost:6379"

    # Provider selection: "mock" routes every backend to the mock provider
    model_provider: str = "mock"

    # Replicate API Configuration
    replicate_api_token: str = ""
    replicate_api_url: str = "https://api.replicate.com/v1"
    replicate_poll_interval_sec: float = 1.5
    replicate_timeout_sec: float = 120.0

    # Gemini API Configuration
    gemini_api_key: str = ""
    gemini_api_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_timeout_sec: float = 120.0

    # Network-layer retry for rate limited provider calls
    provider_max_retries: int = 3
    provider_retry_base_delay: float = 1.0
    provider_retry_max_jitter: float = 0.2

    # Feature flags
    enable_premium_models: bool = False
    enable_auto_model_selection: bool = True

    # Model versions
    model_version_real_esrgan: str = "nightmareai/real-esrgan"
    model_version_gfpgan: str = (
        "tencentarc/gfpgan:0fbacf7afc6c144e5be9767cff80f25aff23e52b0708f17e20f9879b2f21516c"
    )
    model_version_nano_banana: str = "gemini-2.5-flash-image"
    model_version_clarity_upscaler: str = (
        "philz1337x/clarity-upscaler:dfad41707589d68ecdccd1dfa600d55a208f9310748e44bfe35b4a6291453d5e"
    )
    model_version_nano_banana_pro: str = "google/nano-banana-pro"
    model_version_flux_2_pro: str = "black-forest-labs/flux-2-pro"
    model_version_qwen_image_edit: str = "qwen/qwen-image-edit-plus"
    model_version_seedream: str = "bytedance/seedream-4"
    model_version_realesrgan_anime: str = (
        "xinntao/realesrgan:1b976a4d456ed9e4d1a846597b7614e79eadad3032e9124fa63859db0fd59b56"
    )

    # Use-case to backend assignments
    model_for_general_upscale: str = "real-esrgan"
    model_for_portraits: str = "gfpgan"
    model_for_damaged_photos: str = "nano-banana-pro"
    model_for_text_logos: str = "nano-banana"
    model_for_max_quality: str = "clarity-upscaler"

    # Credit pricing
    base_credits_upscale: int = 1
    base_credits_enhance: int = 2

    # Recommendation thresholds
    damage_high_threshold: float = 0.7
    text_high_threshold: float = 0.15
    noise_high_threshold: float = 0.5
    recommendation_confidence: float = 0.7

    # Batch admission control
    batch_limiter_backend: str = "memory"  # "memory", "redis" or "store"
    batch_window_hours: float = 1.0
    batch_cleanup_interval_sec: int = 300
    batch_limit_overrides: str = ""  # e.g. "free:1,hobby:10"

    @field_validator("model_provider", "batch_limiter_backend")
    def normalize_choice(cls, v):
        """Lowercase enum-like string settings."""
        return v.strip().lower()

    @field_validator("batch_limit_overrides")
    def validate_batch_overrides(cls, v):
        """Check comma-separated tier:limit pairs are well formed."""
        for pair in filter(None, (p.strip() for p in v.split(","))):
            tier, _, limit = pair.partition(":")
            if not tier or not limit.strip().isdigit():
                raise ValueError(f"Invalid batch limit override: {pair}")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment.lower() == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    def model_version_overrides(self) -> Dict[str, str]:
        """Backend id to provider model reference."""
        return {
            "real-esrgan": self.model_version_real_esrgan,
            "gfpgan": self.model_version_gfpgan,
            "nano-banana": self.model_version_nano_banana,
            "clarity-upscaler": self.model_version_clarity_upscaler,
            "nano-banana-pro": self.model_version_nano_banana_pro,
            "flux-2-pro": self.model_version_flux_2_pro,
            "qwen-image-edit": self.model_version_qwen_image_edit,
            "seedream": self.model_version_seedream,
            "realesrgan-anime": self.model_version_realesrgan_anime,
        }

    def use_case_assignments(self) -> Dict[str, str]:
        """Use case name to backend id."""
        return {
            "general-upscale": self.model_for_general_upscale,
            "portraits": self.model_for_portraits,
            "damaged-photos": self.model_for_damaged_photos,
            "text-logos": self.model_for_text_logos,
            "max-quality": self.model_for_max_quality,
        }

    def batch_limit_for(self, tier: str) -> int:
        """Per-tier job limit, honouring overrides."""
        for pair in filter(None, (p.strip() for p in self.batch_limit_overrides.split(","))):
            name, _, limit = pair.partition(":")
            if name.strip().lower() == str(getattr(tier, "value", tier)).lower():
                return int(limit)
        return BATCH_LIMITS[SubscriptionTier(tier)]

    def validate_production_config(self) -> List[str]:
        """Validate production configuration and return list of issues."""
        issues = []

        if self.is_production:
            if self.enable_docs:
                issues.append("API documentation should be disabled in production")

            if self.model_provider == "mock":
                issues.append("Mock providers should not serve production traffic")

            if self.batch_limiter_backend == "memory":
                issues.append("In-memory batch limiter is not safe for scaled deployments")

            if self.database_url.startswith("sqlite"):
                issues.append("SQLite credit store should be replaced in production")

        return issues

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"
        protected_namespaces = ()


# Global settings instance
settings = Settings()
