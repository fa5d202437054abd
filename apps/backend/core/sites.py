"""
Site profile loader.
Reads config/sites.yaml and resolves a profile by site id, alias or URL host.
"""
import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse

import yaml

logger = logging.getLogger(__name__)

DEFAULT_SITES_PATH = Path(__file__).parent.parent / 'config' / 'sites.yaml'

FALLBACK_DEFAULTS = {
    'max_blocks': 30,
    'min_block_chars': 20,
    'keyword_window': [100, 1000],
    'keyword_max_blocks': 10,
    'keywords': ['hire', 'hiring', 'position', 'vacancy', 'job', 'career', 'recruit'],
    'fields': {},
    'detail_selectors': ['main', '.content'],
}

# Cache keyed by resolved path
_profile_cache: Dict[str, 'SiteProfiles'] = {}


class SiteProfile:
    """Reduction and scoring settings for one site."""

    def __init__(self, site_id: str, data: Dict, defaults: Dict):
        self.site_id = site_id
        self.aliases = [a.lower() for a in data.get('aliases', [])]
        self.base_url: Optional[str] = data.get('base_url')
        self.weight = float(data.get('weight', 0.7))
        self.selector_sets: List[List[str]] = [list(s) for s in data.get('selector_sets', [])]
        self.max_blocks = int(data.get('max_blocks', defaults['max_blocks']))
        self.min_block_chars = int(data.get('min_block_chars', defaults['min_block_chars']))
        window = data.get('keyword_window', defaults['keyword_window'])
        self.keyword_window: Tuple[int, int] = (int(window[0]), int(window[1]))
        self.keyword_max_blocks = int(data.get('keyword_max_blocks', defaults['keyword_max_blocks']))
        self.keywords = [k.lower() for k in data.get('keywords', defaults['keywords'])]

        # Site field selectors are tried before the shared ones
        self.fields: Dict[str, List[str]] = {}
        shared_fields = defaults.get('fields') or {}
        site_fields = data.get('fields') or {}
        for name in set(shared_fields) | set(site_fields):
            self.fields[name] = list(site_fields.get(name, [])) + list(shared_fields.get(name, []))

        self.detail_selectors = list(data.get('detail_selectors', [])) + list(defaults['detail_selectors'])

    def matches(self, key: str) -> bool:
        key = key.lower()
        return key == self.site_id or key in self.aliases

    def __repr__(self):
        return f"<SiteProfile({self.site_id}, weight={self.weight}, sets={len(self.selector_sets)})>"


class SiteProfiles:
    """All profiles from one sites file."""

    def __init__(self, profiles: Dict[str, SiteProfile], default: SiteProfile):
        self.profiles = profiles
        self.default = default

    def resolve(self, site_id: Optional[str] = None, url: Optional[str] = None) -> SiteProfile:
        """Find a profile by site id/alias, then by URL host. Unknown sites get the default profile."""
        if site_id:
            key = site_id.strip().lower()
            for profile in self.profiles.values():
                if profile.matches(key):
                    return profile

        if url:
            host = urlparse(url).netloc.lower()
            if host.startswith('www.'):
                host = host[4:]
            for profile in self.profiles.values():
                if host and any(host == a or host.endswith('.' + a) for a in profile.aliases):
                    return profile

        return self.default

    def weight_for(self, site_id: Optional[str]) -> float:
        return self.resolve(site_id).weight


def parse_site_profiles(raw: Dict) -> SiteProfiles:
    defaults = dict(FALLBACK_DEFAULTS)
    defaults.update(raw.get('defaults') or {})

    profiles: Dict[str, SiteProfile] = {}
    default_profile = None
    for site_id, data in (raw.get('sites') or {}).items():
        profile = SiteProfile(site_id.lower(), data or {}, defaults)
        if profile.site_id == 'default':
            default_profile = profile
        else:
            profiles[profile.site_id] = profile

    if default_profile is None:
        default_profile = SiteProfile('default', {}, defaults)

    return SiteProfiles(profiles, default_profile)


def load_site_profiles(path: Optional[Path] = None) -> SiteProfiles:
    """Load site profiles from YAML (cached per path)."""
    config_path = Path(path or DEFAULT_SITES_PATH)
    cache_key = str(config_path.resolve())
    if cache_key in _profile_cache:
        return _profile_cache[cache_key]

    raw: Dict = {}
    if not config_path.exists():
        logger.warning(f"[sites] Site profile file not found: {config_path}. Using defaults.")
    else:
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                raw = yaml.safe_load(f) or {}
            logger.info(f"[sites] Loaded site profiles from {config_path}")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"[sites] Error loading site profiles: {e}")
            raw = {}

    profiles = parse_site_profiles(raw)
    _profile_cache[cache_key] = profiles
    return profiles
