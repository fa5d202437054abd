"""
Pluggable confidence scoring for provider selection.

The heuristic combines coarse document signals with a site weight and a
per-model weight. None of the weights are calibrated against accuracy; swap
in another scorer with the same score() signature if better data exists.
"""
import logging
from typing import Dict, Optional

from core.sites import SiteProfiles, load_site_profiles

logger = logging.getLogger(__name__)

MODEL_WEIGHTS = {
    'anthropic': 0.98,
    'openai': 0.95,
    'openrouter': 0.9,
    'gemini': 0.88,
}
DEFAULT_MODEL_WEIGHT = 0.85

JOB_MARKERS = ('job', 'recruit', 'career', 'position', '채용')


def html_quality(html: Optional[str]) -> float:
    if not html:
        return 0.1
    quality = 0.5
    if '</div>' in html and 'class=' in html:
        quality += 0.2
    lowered = html.lower()
    if any(marker in lowered for marker in JOB_MARKERS):
        quality += 0.2
    if len(html) > 1000:
        quality += 0.1
    return min(1.0, quality)


class HeuristicConfidence:
    """quality(html) x site weight x model weight, clamped to [0, 1]."""

    def __init__(self, profiles: Optional[SiteProfiles] = None, model_weights: Optional[Dict[str, float]] = None):
        self.profiles = profiles
        self.model_weights = dict(MODEL_WEIGHTS)
        if model_weights:
            self.model_weights.update(model_weights)

    def score(self, html: Optional[str], site_id: Optional[str], provider_id: str) -> float:
        if self.profiles is None:
            self.profiles = load_site_profiles()
        site_weight = self.profiles.weight_for(site_id)
        model_weight = self.model_weights.get(provider_id, DEFAULT_MODEL_WEIGHT)
        return max(0.0, min(1.0, html_quality(html) * site_weight * model_weight))


class ConstantConfidence:
    """Same score for every document."""

    def __init__(self, value: float):
        self.value = value

    def score(self, html: Optional[str], site_id: Optional[str], provider_id: str) -> float:
        return self.value


def default_scorer() -> HeuristicConfidence:
    return HeuristicConfidence()
