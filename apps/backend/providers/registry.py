"""
Provider registry: default selection, fallback ordering and best-by-confidence.
"""
import logging
from typing import Dict, List, Optional

from core.errors import NoProviderAvailable
from core.extraction_config import PROVIDER_IDS, ExtractionConfig
from providers.base import Capability, ExtractionProvider, ProviderStatus
from providers.llm import ChatCompletionProvider
from providers.vendors import get_vendor

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Registry of extraction providers, kept in priority order (higher first)."""

    def __init__(self, preferred_id: Optional[str] = None, priority_order: Optional[List[str]] = None):
        self.preferred_id = preferred_id or None
        self.priority_order = list(priority_order if priority_order is not None else PROVIDER_IDS)
        self._providers: List[ExtractionProvider] = []
        self._providers_by_id: Dict[str, ExtractionProvider] = {}

    def register(self, provider: ExtractionProvider):
        """Register a provider"""
        existing = self._providers_by_id.get(provider.provider_id)
        if existing is not None:
            logger.warning(f"Provider {provider.provider_id} already registered, replacing")
            self._providers.remove(existing)

        self._providers_by_id[provider.provider_id] = provider
        self._providers.append(provider)
        # Stable sort keeps registration order among equal priorities
        self._providers.sort(key=lambda p: p.priority, reverse=True)

        logger.info(f"Registered provider: {provider.provider_id} (priority={provider.priority})")

    def get(self, provider_id: str) -> Optional[ExtractionProvider]:
        return self._providers_by_id.get(provider_id)

    def providers(self) -> List[ExtractionProvider]:
        return list(self._providers)

    def available_providers(self, capability: Optional[Capability] = None) -> List[ExtractionProvider]:
        return [
            p for p in self._providers
            if p.available() and (capability is None or p.supports(capability))
        ]

    def default_provider(self) -> ExtractionProvider:
        """
        Select the default provider:
        1. explicitly configured id, if available
        2. first provider of the fixed priority list that reports available()
        3. any other available provider, by registry priority
        4. NoProviderAvailable
        """
        if self.preferred_id:
            preferred = self._providers_by_id.get(self.preferred_id)
            if preferred is not None and preferred.available():
                return preferred
            logger.warning(f"Configured provider '{self.preferred_id}' is not available, selecting automatically")

        for provider_id in self.priority_order:
            provider = self._providers_by_id.get(provider_id)
            if provider is not None and provider.available():
                return provider

        for provider in self._providers:
            if provider.available():
                return provider

        raise NoProviderAvailable("No extraction provider is available (check API keys)")

    def fallback_provider(self, exclude_id: str) -> Optional[ExtractionProvider]:
        """First available provider in priority order other than exclude_id."""
        for provider in self._providers:
            if provider.provider_id != exclude_id and provider.available():
                return provider
        return None

    def best_provider(
        self,
        html: str,
        site_id: Optional[str] = None,
        capability: Optional[Capability] = None,
    ) -> ExtractionProvider:
        """
        Available provider with the highest confidence; ties go to priority order.

        A provider whose scoring fails counts as 0.0 but stays a candidate.
        """
        candidates = self.available_providers(capability)
        if not candidates:
            raise NoProviderAvailable("No extraction provider is available (check API keys)")

        best = candidates[0]
        best_score = None
        for provider in candidates:
            try:
                score = float(provider.confidence(html, site_id))
            except Exception as e:
                logger.warning(f"Confidence scoring failed for {provider.provider_id}: {e}")
                score = 0.0
            if best_score is None or score > best_score:
                best, best_score = provider, score

        logger.debug(f"Best provider for site={site_id}: {best.provider_id} (confidence={best_score:.3f})")
        return best

    def select_provider(
        self,
        html: str,
        site_id: Optional[str] = None,
        capability: Optional[Capability] = None,
    ) -> ExtractionProvider:
        """Configured provider when usable for this capability, otherwise best by confidence."""
        if self.preferred_id:
            preferred = self._providers_by_id.get(self.preferred_id)
            if preferred is not None and preferred.available() and (
                capability is None or preferred.supports(capability)
            ):
                return preferred
            logger.warning(f"Configured provider '{self.preferred_id}' is not usable, selecting by confidence")
        return self.best_provider(html, site_id, capability)

    def ensure_available(self):
        if not self.available_providers():
            raise NoProviderAvailable("No extraction provider is available (check API keys)")

    def statuses(self) -> Dict[str, ProviderStatus]:
        return {p.provider_id: p.status() for p in self._providers}

    def list_providers(self) -> List[Dict]:
        return [
            {
                'provider_id': p.provider_id,
                'priority': p.priority,
                'available': p.available(),
                'class': p.__class__.__name__,
            }
            for p in self._providers
        ]


def build_registry(config: Optional[ExtractionConfig] = None, client=None) -> ProviderRegistry:
    """Create a registry with one ChatCompletionProvider per vendor that has credentials."""
    config = config or ExtractionConfig()
    registry = ProviderRegistry(preferred_id=config.provider or None)

    for index, provider_id in enumerate(PROVIDER_IDS):
        if not config.has_credentials(provider_id):
            logger.debug(f"Skipping provider {provider_id}: no API key")
            continue
        registry.register(ChatCompletionProvider(
            get_vendor(provider_id),
            api_key=config.api_keys[provider_id],
            model=config.models[provider_id],
            priority=100 - index * 10,
            timeout=config.request_timeout,
            temperature=config.temperature,
            detail_temperature=config.detail_temperature,
            max_output_tokens=config.max_output_tokens,
            client=client,
        ))

    return registry
