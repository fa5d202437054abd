"""
Base interface for extraction providers.
"""
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional

from providers.confidence import default_scorer

logger = logging.getLogger(__name__)


class Capability(Enum):
    HTML = "extract_from_html"
    TEXT = "extract_from_text"
    DETAIL = "extract_detail"


ALL_CAPABILITIES = frozenset(Capability)


class ExtractionRequest:
    """One provider call: content plus the hints needed to build a prompt."""

    def __init__(
        self,
        content: str,
        capability: Capability = Capability.TEXT,
        site_id: Optional[str] = None,
        base_record=None,
    ):
        self.content = content
        self.capability = capability
        self.site_id = site_id
        self.base_record = base_record

    def __repr__(self):
        return f"ExtractionRequest({self.capability.value}, site={self.site_id}, chars={len(self.content)})"


class ProviderStatus:
    def __init__(self, provider_id: str, available: bool, status: str, model: Optional[str] = None):
        self.provider_id = provider_id
        self.available = available
        self.status = status
        self.model = model

    def to_dict(self) -> Dict:
        return {
            'provider_id': self.provider_id,
            'available': self.available,
            'status': self.status,
            'model': self.model,
        }

    def __repr__(self):
        return f"ProviderStatus({self.provider_id}, available={self.available}, status={self.status!r})"


class ExtractionProvider(ABC):
    """
    Base class for extraction providers.

    A provider turns text or HTML into a raw, JSON-shaped model response.
    Retry, quota and pacing are handled by the invoker, not here.
    """

    def __init__(
        self,
        provider_id: str,
        priority: int = 50,
        capabilities: Optional[Iterable[Capability]] = None,
        scorer=None,
    ):
        """
        Args:
            provider_id: Provider name (e.g., 'openai', 'gemini')
            priority: Higher = preferred when selecting by priority
            capabilities: Supported capabilities (default: all)
            scorer: Confidence strategy (default: HeuristicConfidence)
        """
        self.provider_id = provider_id
        self.priority = priority
        self.capabilities: FrozenSet[Capability] = frozenset(capabilities or ALL_CAPABILITIES)
        self.scorer = scorer
        self.logger = logging.getLogger(f"{__name__}.{provider_id}")

    @abstractmethod
    def available(self) -> bool:
        """
        Whether the provider can be used.

        Must be idempotent and cheap: no network calls, no quota usage.
        """

    @abstractmethod
    async def complete(self, request: ExtractionRequest) -> str:
        """
        Perform one call and return the raw response text.

        Raises:
            ProviderError (or a classified subclass) on failure
        """

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def confidence(self, html: str, site_id: Optional[str] = None) -> float:
        """Estimated extraction confidence for a document (0.0 to 1.0)."""
        if self.scorer is None:
            self.scorer = default_scorer()
        return self.scorer.score(html, site_id, self.provider_id)

    @property
    def model(self) -> Optional[str]:
        return None

    def status(self) -> ProviderStatus:
        is_available = self.available()
        return ProviderStatus(
            self.provider_id,
            is_available,
            'ready' if is_available else 'missing credentials',
            self.model,
        )

    def __repr__(self):
        return f"<{self.__class__.__name__}(id={self.provider_id}, priority={self.priority})>"
