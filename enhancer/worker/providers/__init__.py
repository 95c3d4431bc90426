# Provider package initialization

from typing import Dict, Optional

from enhancer.core.config import ProviderKind
from enhancer.core.settings import Settings, settings as app_settings
from .base import IProvider
from .mock import MockProvider


class ProviderRegistry:
    """Provider client per backend family."""

    def __init__(self, providers: Optional[Dict[ProviderKind, IProvider]] = None):
        self._providers: Dict[ProviderKind, IProvider] = {
            ProviderKind(kind): provider for kind, provider in (providers or {}).items()
        }

    def get(self, kind: ProviderKind) -> Optional[IProvider]:
        return self._providers.get(ProviderKind(kind))

    def items(self):
        return self._providers.items()


def get_provider(kind: ProviderKind, settings: Optional[Settings] = None) -> IProvider:
    """Get the configured provider instance for a backend family."""
    settings = settings or app_settings
    kind = ProviderKind(kind)
    if settings.model_provider == "mock" or kind == ProviderKind.MOCK:
        return MockProvider()
    if kind == ProviderKind.REPLICATE:
        from .replicate import ReplicateProvider
        return ReplicateProvider(
            api_token=settings.replicate_api_token,
            base_url=settings.replicate_api_url,
            poll_interval=settings.replicate_poll_interval_sec,
            timeout=settings.replicate_timeout_sec,
            max_retries=settings.provider_max_retries,
        )
    from .gemini import GeminiProvider
    return GeminiProvider(
        api_key=settings.gemini_api_key,
        base_url=settings.gemini_api_url,
        timeout=settings.gemini_timeout_sec,
        max_retries=settings.provider_max_retries,
    )


def build_registry(settings: Optional[Settings] = None) -> ProviderRegistry:
    """Registry with one configured client per provider kind."""
    return ProviderRegistry({kind: get_provider(kind, settings) for kind in ProviderKind})
