"""
Application configuration constants and enums.
"""
from enum import Enum


class ProcessingMode(str, Enum):
    """What the caller asked the backend to do."""
    UPSCALE = "upscale"
    ENHANCE = "enhance"
    BOTH = "both"
    CUSTOM = "custom"


class SubscriptionTier(str, Enum):
    """User subscription tiers."""
    FREE = "free"
    HOBBY = "hobby"
    PRO = "pro"
    BUSINESS = "business"


class ModelCapability(str, Enum):
    """Capabilities a processing backend may advertise."""
    UPSCALE = "upscale"
    ENHANCE = "enhance"
    TEXT_PRESERVATION = "text-preservation"
    FACE_RESTORATION = "face-restoration"
    DENOISE = "denoise"
    DAMAGE_REPAIR = "damage-repair"
    OUTPUT_4K = "4k-output"
    OUTPUT_8K = "8k-output"


class ProviderKind(str, Enum):
    """Backend families reachable through a provider client."""
    REPLICATE = "replicate"
    GEMINI = "gemini"
    MOCK = "mock"


class ContentType(str, Enum):
    """Coarse content classification produced by image analysis."""
    PHOTO = "photo"
    PORTRAIT = "portrait"
    PRODUCT = "product"
    DOCUMENT = "document"
    VINTAGE = "vintage"
    UNKNOWN = "unknown"


class UseCase(str, Enum):
    """Named intents mapped to a backend for automatic selection."""
    GENERAL_UPSCALE = "general-upscale"
    PORTRAITS = "portraits"
    DAMAGED_PHOTOS = "damaged-photos"
    TEXT_LOGOS = "text-logos"
    MAX_QUALITY = "max-quality"


class JobState(str, Enum):
    """Processing job lifecycle states."""
    CREATED = "created"
    DEBITED = "debited"
    CALLING_BACKEND = "calling_backend"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class ErrorCode(str, Enum):
    """Canonical error codes returned to callers."""
    RATE_LIMITED = "RATE_LIMITED"
    SAFETY = "SAFETY"
    TIMEOUT = "TIMEOUT"
    PROCESSING_FAILED = "PROCESSING_FAILED"
    NO_OUTPUT = "NO_OUTPUT"
    INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"
    GENERIC = "GENERIC"


class TransactionType(str, Enum):
    """Credit transaction types."""
    PURCHASE = "purchase"
    USAGE = "usage"
    BONUS = "bonus"
    REFUND = "refund"


# Tier ranks, free < hobby < pro < business
TIER_LEVELS = {
    SubscriptionTier.FREE: 0,
    SubscriptionTier.HOBBY: 1,
    SubscriptionTier.PRO: 2,
    SubscriptionTier.BUSINESS: 3,
}

SUPPORTED_SCALES = (2, 4, 8)

# Jobs a user may start per batch window
BATCH_LIMITS = {
    SubscriptionTier.FREE: 1,
    SubscriptionTier.HOBBY: 10,
    SubscriptionTier.PRO: 50,
    SubscriptionTier.BUSINESS: 500,
}

# Maximum image dimensions
MAX_INPUT_RESOLUTION = 2048 * 2048
MAX_OUTPUT_RESOLUTION = 4096 * 4096
MAX_OUTPUT_RESOLUTION_8K = 8192 * 8192

# Provider-hosted outputs expire after an hour
OUTPUT_URL_TTL_SECONDS = 3600

# Job id prefixes, one per provider family
JOB_ID_PREFIXES = {
    ProviderKind.REPLICATE: "rep",
    ProviderKind.GEMINI: "gem",
    ProviderKind.MOCK: "mck",
}


def tier_level(tier: SubscriptionTier) -> int:
    """Rank of a tier in the subscription order."""
    return TIER_LEVELS[SubscriptionTier(tier)]
