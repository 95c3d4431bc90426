"""
Capability catalog of processing backends.

The catalog is an immutable snapshot of backend descriptors plus the
use-case assignments used for automatic selection. ``reload`` builds a
complete new snapshot and swaps it in with a single assignment, so
concurrent readers see either the old catalog or the new one.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

import structlog

from enhancer.core.config import (
    MAX_INPUT_RESOLUTION,
    MAX_OUTPUT_RESOLUTION,
    MAX_OUTPUT_RESOLUTION_8K,
    SUPPORTED_SCALES,
    ModelCapability,
    ProcessingMode,
    ProviderKind,
    SubscriptionTier,
    UseCase,
    tier_level,
)
from enhancer.core.exceptions import CatalogError
from enhancer.core.settings import Settings

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class BackendDescriptor:
    """Static record describing one backend's capabilities, cost and eligibility."""
    id: str
    display_name: str
    provider_kind: ProviderKind
    model_version: str
    capabilities: FrozenSet[ModelCapability]
    cost_per_call: float
    credit_multiplier: float
    quality_score: float
    supported_scales: Tuple[int, ...] = ()
    processing_time_ms: int = 0
    max_input_resolution: int = MAX_INPUT_RESOLUTION
    max_output_resolution: int = MAX_OUTPUT_RESOLUTION
    enabled: bool = True
    tier_restriction: Optional[SubscriptionTier] = None
    description: str = ""

    def __post_init__(self):
        # Normalize collections so equal descriptors compare and hash equal
        object.__setattr__(self, "provider_kind", ProviderKind(self.provider_kind))
        object.__setattr__(
            self, "capabilities", frozenset(ModelCapability(c) for c in self.capabilities)
        )
        object.__setattr__(self, "supported_scales", tuple(sorted(set(self.supported_scales))))
        if self.tier_restriction is not None:
            object.__setattr__(self, "tier_restriction", SubscriptionTier(self.tier_restriction))
        self._validate()

    def _validate(self):
        if not self.id:
            raise CatalogError("Backend descriptor requires an id")
        unknown = set(self.supported_scales) - set(SUPPORTED_SCALES)
        if unknown:
            raise CatalogError(f"{self.id}: unsupported scales {sorted(unknown)}")
        has_upscale = ModelCapability.UPSCALE in self.capabilities
        if has_upscale and not self.supported_scales:
            raise CatalogError(f"{self.id}: upscale capability requires at least one supported scale")
        if self.supported_scales and not has_upscale:
            raise CatalogError(f"{self.id}: supported scales declared without upscale capability")
        if self.credit_multiplier < 0:
            raise CatalogError(f"{self.id}: credit multiplier must be >= 0")
        if not 0 <= self.quality_score <= 10:
            raise CatalogError(f"{self.id}: quality score must be within 0-10")
        if self.cost_per_call < 0:
            raise CatalogError(f"{self.id}: cost per call must be >= 0")

    def has_capability(self, capability: ModelCapability) -> bool:
        return ModelCapability(capability) in self.capabilities

    def supports_scale(self, scale: int) -> bool:
        return scale in self.supported_scales

    @property
    def is_enhancement_only(self) -> bool:
        """Backend keeps the input resolution."""
        return not self.supported_scales

    def supports_mode(self, mode: ProcessingMode) -> bool:
        """Whether the backend can serve a processing mode."""
        mode = ProcessingMode(mode)
        if mode in (ProcessingMode.UPSCALE, ProcessingMode.BOTH):
            return not self.is_enhancement_only
        return self.has_capability(ModelCapability.ENHANCE)

    def available_for_tier(self, tier: SubscriptionTier) -> bool:
        if self.tier_restriction is None:
            return True
        return tier_level(tier) >= tier_level(self.tier_restriction)

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "provider": self.provider_kind.value,
            "capabilities": sorted(c.value for c in self.capabilities),
            "cost_per_call": self.cost_per_call,
            "credit_multiplier": self.credit_multiplier,
            "quality_score": self.quality_score,
            "processing_time_ms": self.processing_time_ms,
            "supported_scales": list(self.supported_scales),
            "max_input_resolution": self.max_input_resolution,
            "max_output_resolution": self.max_output_resolution,
            "tier_restriction": self.tier_restriction.value if self.tier_restriction else None,
            "description": self.description,
        }


def default_descriptors(settings: Settings) -> List[BackendDescriptor]:
    """Default backend set, in catalog order."""
    versions = settings.model_version_overrides()
    premium = settings.enable_premium_models
    C = ModelCapability

    return [
        BackendDescriptor(
            id="real-esrgan",
            display_name="Real-ESRGAN",
            provider_kind=ProviderKind.REPLICATE,
            model_version=versions["real-esrgan"],
            capabilities=frozenset({C.UPSCALE, C.DENOISE}),
            cost_per_call=0.0017,
            credit_multiplier=1,
            quality_score=8.5,
            supported_scales=(2, 4),
            processing_time_ms=2000,
            description="Fast general purpose upscaler.",
        ),
        BackendDescriptor(
            id="gfpgan",
            display_name="GFPGAN",
            provider_kind=ProviderKind.REPLICATE,
            model_version=versions["gfpgan"],
            capabilities=frozenset({C.UPSCALE, C.FACE_RESTORATION, C.DENOISE, C.DAMAGE_REPAIR}),
            cost_per_call=0.0025,
            credit_multiplier=2,
            quality_score=9.0,
            supported_scales=(2, 4),
            processing_time_ms=5000,
            description="Face restoration for portraits and old photos.",
        ),
        BackendDescriptor(
            id="nano-banana",
            display_name="Nano Banana",
            provider_kind=ProviderKind.GEMINI,
            model_version=versions["nano-banana"],
            capabilities=frozenset({C.UPSCALE, C.TEXT_PRESERVATION, C.ENHANCE}),
            cost_per_call=0.0,
            credit_multiplier=2,
            quality_score=8.0,
            supported_scales=(2, 4, 8),
            processing_time_ms=8000,
            description="Prompted enhancement that keeps text and logos legible.",
        ),
        BackendDescriptor(
            id="clarity-upscaler",
            display_name="Clarity Upscaler",
            provider_kind=ProviderKind.REPLICATE,
            model_version=versions["clarity-upscaler"],
            capabilities=frozenset({C.UPSCALE, C.DENOISE, C.ENHANCE}),
            cost_per_call=0.017,
            credit_multiplier=4,
            quality_score=9.5,
            supported_scales=(2, 4, 8),
            processing_time_ms=15000,
            enabled=premium,
            tier_restriction=SubscriptionTier.HOBBY,
            description="Diffusion based upscaler with high detail.",
        ),
        BackendDescriptor(
            id="nano-banana-pro",
            display_name="Nano Banana Pro",
            provider_kind=ProviderKind.REPLICATE,
            model_version=versions["nano-banana-pro"],
            capabilities=frozenset({
                C.UPSCALE, C.ENHANCE, C.FACE_RESTORATION, C.DENOISE,
                C.DAMAGE_REPAIR, C.OUTPUT_4K, C.OUTPUT_8K,
            }),
            cost_per_call=0.13,
            credit_multiplier=8,
            quality_score=9.8,
            supported_scales=(2, 4),
            processing_time_ms=30000,
            max_output_resolution=MAX_OUTPUT_RESOLUTION_8K,
            enabled=premium,
            tier_restriction=SubscriptionTier.HOBBY,
            description="Premium restoration for heavily damaged images.",
        ),
        BackendDescriptor(
            id="flux-2-pro",
            display_name="FLUX.2 Pro",
            provider_kind=ProviderKind.REPLICATE,
            model_version=versions["flux-2-pro"],
            capabilities=frozenset({C.ENHANCE, C.DENOISE}),
            cost_per_call=0.05,
            credit_multiplier=6,
            quality_score=9.6,
            processing_time_ms=20000,
            tier_restriction=SubscriptionTier.HOBBY,
            description="Faithful enhancement without resolution change.",
        ),
        BackendDescriptor(
            id="qwen-image-edit",
            display_name="Qwen Image Edit",
            provider_kind=ProviderKind.REPLICATE,
            model_version=versions["qwen-image-edit"],
            capabilities=frozenset({C.ENHANCE, C.TEXT_PRESERVATION}),
            cost_per_call=0.03,
            credit_multiplier=3,
            quality_score=9.2,
            processing_time_ms=12000,
            tier_restriction=SubscriptionTier.HOBBY,
            description="Instruction driven enhancement.",
        ),
        BackendDescriptor(
            id="seedream",
            display_name="Seedream",
            provider_kind=ProviderKind.REPLICATE,
            model_version=versions["seedream"],
            capabilities=frozenset({C.ENHANCE}),
            cost_per_call=0.03,
            credit_multiplier=3,
            quality_score=9.0,
            processing_time_ms=15000,
            tier_restriction=SubscriptionTier.HOBBY,
            description="High resolution enhancement at 4K output.",
        ),
        BackendDescriptor(
            id="realesrgan-anime",
            display_name="Real-ESRGAN Anime",
            provider_kind=ProviderKind.REPLICATE,
            model_version=versions["realesrgan-anime"],
            capabilities=frozenset({C.UPSCALE}),
            cost_per_call=0.0025,
            credit_multiplier=2,
            quality_score=8.8,
            supported_scales=(2, 4),
            processing_time_ms=3000,
            description="Upscaler tuned for illustrations and anime.",
        ),
    ]


@dataclass(frozen=True)
class _Snapshot:
    backends: Mapping[str, BackendDescriptor]
    use_cases: Mapping[str, str]
    order: Tuple[str, ...] = field(default=())


def _build_snapshot(
    descriptors: Iterable[BackendDescriptor],
    use_cases: Mapping[str, str],
) -> _Snapshot:
    backends: Dict[str, BackendDescriptor] = {}
    for descriptor in descriptors:
        if descriptor.id in backends:
            raise CatalogError(f"Duplicate backend id: {descriptor.id}")
        backends[descriptor.id] = descriptor

    assignments: Dict[str, str] = {}
    for use_case, backend_id in use_cases.items():
        name = UseCase(use_case).value
        if backend_id not in backends:
            raise CatalogError(f"Use case {name} points at unknown backend {backend_id}")
        assignments[name] = backend_id

    return _Snapshot(
        backends=MappingProxyType(backends),
        use_cases=MappingProxyType(assignments),
        order=tuple(backends),
    )


class CapabilityCatalog:
    """
    Registry of processing backend descriptors.

    Args:
        loader: Callable returning ``(descriptors, use_case_assignments)``.
            Called once on construction and again on every ``reload``.
    """

    def __init__(
        self,
        loader: Callable[[], Tuple[Iterable[BackendDescriptor], Mapping[str, str]]],
    ):
        self._loader = loader
        self._snapshot = self._load()

    @classmethod
    def from_descriptors(
        cls,
        descriptors: Iterable[BackendDescriptor],
        use_cases: Optional[Mapping[str, str]] = None,
    ) -> "CapabilityCatalog":
        """Catalog over a fixed descriptor list, mainly for tests."""
        descriptors = list(descriptors)
        assignments = dict(use_cases or {})
        return cls(lambda: (descriptors, assignments))

    def _load(self) -> _Snapshot:
        descriptors, use_cases = self._loader()
        snapshot = _build_snapshot(descriptors, use_cases)
        logger.info(
            "Capability catalog loaded",
            backends=len(snapshot.backends),
            enabled=sum(1 for d in snapshot.backends.values() if d.enabled),
            use_cases=dict(snapshot.use_cases),
        )
        return snapshot

    def reload(self) -> None:
        """Rebuild the catalog; the current one stays live until the new one is complete."""
        snapshot = self._load()
        self._snapshot = snapshot

    def get_backend(self, backend_id: str) -> Optional[BackendDescriptor]:
        return self._snapshot.backends.get(backend_id)

    def list_all(self) -> List[BackendDescriptor]:
        snapshot = self._snapshot
        return [snapshot.backends[i] for i in snapshot.order]

    def list_enabled(self) -> List[BackendDescriptor]:
        return [d for d in self.list_all() if d.enabled]

    def list_by_capability(self, capability: ModelCapability) -> List[BackendDescriptor]:
        return [d for d in self.list_enabled() if d.has_capability(capability)]

    def list_by_tier(self, tier: SubscriptionTier) -> List[BackendDescriptor]:
        """Enabled backends open to ``tier`` under free < hobby < pro < business."""
        return [d for d in self.list_enabled() if d.available_for_tier(tier)]

    def get_backend_for_use_case(self, use_case: UseCase) -> Optional[BackendDescriptor]:
        backend_id = self._snapshot.use_cases.get(UseCase(use_case).value)
        return self.get_backend(backend_id) if backend_id else None

    def use_case_assignments(self) -> Dict[str, str]:
        return dict(self._snapshot.use_cases)

    def __contains__(self, backend_id: str) -> bool:
        return backend_id in self._snapshot.backends

    def __len__(self) -> int:
        return len(self._snapshot.backends)


def build_catalog(settings: Settings) -> CapabilityCatalog:
    """Catalog built from application settings."""
    return CapabilityCatalog(
        lambda: (default_descriptors(settings), settings.use_case_assignments())
    )
