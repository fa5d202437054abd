"""
Building ExtractedRecord objects from recovered provider output.
"""
import logging
import re
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urljoin, urlparse

from dateutil import parser as date_parser

from pipeline.models import ExtractedRecord

logger = logging.getLogger(__name__)

ISO_DATE = re.compile(r'^\d{4}-\d{2}-\d{2}$')
NULL_STRINGS = {'', 'null', 'none', 'n/a', 'na', '-', 'unknown'}

# Provider keys -> record fields
FIELD_ALIASES = {
    'title': 'title',
    'job_title': 'title',
    'position': 'title',
    'company': 'company',
    'company_name': 'company',
    'companyName': 'company',
    'organization': 'company',
    'location': 'location',
    'salary': 'salary',
    'employment_type': 'employment_type',
    'employmentType': 'employment_type',
    'experience_level': 'experience_level',
    'experienceLevel': 'experience_level',
    'experience': 'experience_level',
    'source_url': 'source_url',
    'sourceUrl': 'source_url',
    'url': 'source_url',
    'link': 'source_url',
    'apply_url': 'source_url',
    'description': 'description',
    'requirements': 'requirements',
    'benefits': 'benefits',
    'deadline': 'deadline',
    'job_category': 'job_category',
    'jobCategory': 'job_category',
    'category': 'job_category',
}


def clean_value(value: Any) -> Optional[str]:
    """Coerce a provider value to a trimmed string, or None."""
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        parts = [clean_value(v) for v in value]
        value = '\n'.join(p for p in parts if p)
    elif isinstance(value, dict):
        return None
    text = str(value).strip()
    if text.lower() in NULL_STRINGS:
        return None
    return text


def normalize_url(url: Optional[str], base_url: Optional[str] = None) -> Optional[str]:
    """Resolve against base_url and keep only absolute http(s) URLs."""
    url = clean_value(url)
    if not url:
        return None
    if url.startswith(('javascript:', 'mailto:', 'tel:', '#')):
        return None
    if base_url:
        url = urljoin(base_url, url)
    parsed = urlparse(url)
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        return None
    return url


def normalize_deadline(value: Any) -> Optional[str]:
    """Return the deadline as YYYY-MM-DD, or None if it cannot be parsed."""
    text = clean_value(value)
    if not text:
        return None
    if ISO_DATE.match(text):
        return text
    try:
        return date_parser.parse(text).date().isoformat()
    except (ValueError, OverflowError) as e:
        logger.debug(f"[records] Unparseable deadline {text!r}: {e}")
        return None


def build_record(
    data: Dict[str, Any],
    source_site: Optional[str] = None,
    base_url: Optional[str] = None,
    require_url: bool = True,
) -> Optional[ExtractedRecord]:
    """
    Build a record from one recovered dict.

    Returns None when title or company is missing, or when require_url is set
    and no absolute source URL can be derived.
    """
    values: Dict[str, Optional[str]] = {}
    for key, raw in data.items():
        field_name = FIELD_ALIASES.get(key)
        if field_name and values.get(field_name) is None:
            values[field_name] = clean_value(raw)

    values['source_url'] = normalize_url(values.get('source_url'), base_url)
    values['deadline'] = normalize_deadline(values.get('deadline'))

    if not values.get('title') or not values.get('company'):
        return None
    if require_url and not values.get('source_url'):
        return None

    return ExtractedRecord(source_site=source_site, **values)


def build_records(
    items: Iterable[Dict[str, Any]],
    source_site: Optional[str] = None,
    base_url: Optional[str] = None,
    require_url: bool = True,
) -> List[ExtractedRecord]:
    records = []
    dropped = 0
    for item in items:
        record = build_record(item, source_site, base_url, require_url)
        if record is None:
            dropped += 1
            continue
        records.append(record)
    if dropped:
        logger.info(f"[records] Dropped {dropped} invalid records (missing title/company/url)")
    return records


def base_url_for(page_url: Optional[str], site_base_url: Optional[str] = None) -> Optional[str]:
    """Base for resolving relative links: the page URL if absolute, else the site base."""
    if page_url:
        parsed = urlparse(page_url)
        if parsed.scheme in ('http', 'https') and parsed.netloc:
            return page_url
    return site_base_url
