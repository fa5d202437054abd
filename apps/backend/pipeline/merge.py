"""
Record deduplication and field-level merge policy.

Key: normalized absolute source_url, else normalized (title, company).
Policy when a duplicate carries extra information:
- title / company: never overwritten
- description, requirements, benefits, and other text fields: filled only if empty
- salary / location: replaced only when the new value is strictly longer
"""
import logging
import re
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlparse

from pipeline.models import ExtractedRecord
from pipeline.records import clean_value, normalize_deadline, normalize_url

logger = logging.getLogger(__name__)

PROTECTED_FIELDS = ('title', 'company')
FILL_IF_EMPTY_FIELDS = (
    'description', 'requirements', 'benefits', 'employment_type',
    'experience_level', 'deadline', 'job_category', 'source_url',
)
LONGER_WINS_FIELDS = ('salary', 'location')


def normalize_text(value: Optional[str]) -> str:
    return re.sub(r'\s+', '', value or '').casefold()


def normalize_url_key(url: str) -> str:
    parsed = urlparse(url.strip())
    path = parsed.path.rstrip('/')
    key = f"{parsed.scheme.lower()}://{parsed.netloc.lower()}{path}"
    if parsed.query:
        key += f"?{parsed.query}"
    return key


def dedupe_key(record: ExtractedRecord) -> str:
    if record.source_url and record.source_url.strip():
        return 'url:' + normalize_url_key(record.source_url)
    return f"tc:{normalize_text(record.title)}|{normalize_text(record.company)}"


def _is_empty(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def merge_fields(base: ExtractedRecord, incoming: Dict[str, Optional[str]]) -> ExtractedRecord:
    """Apply the field policy; returns a new record, base is not modified."""
    changes = {}
    for name in FILL_IF_EMPTY_FIELDS:
        value = incoming.get(name)
        if not _is_empty(value) and _is_empty(getattr(base, name)):
            changes[name] = value
    for name in LONGER_WINS_FIELDS:
        value = incoming.get(name)
        current = getattr(base, name)
        if not _is_empty(value) and len(value.strip()) > len((current or '').strip()):
            changes[name] = value
    if not changes:
        return base
    return base.copy(**changes)


def apply_detail(
    record: ExtractedRecord,
    detail: Union[ExtractedRecord, Dict[str, Any]],
    base_url: Optional[str] = None,
) -> ExtractedRecord:
    """Merge detail-page fields into a list-stage record."""
    if isinstance(detail, ExtractedRecord):
        incoming = {name: getattr(detail, name) for name in FILL_IF_EMPTY_FIELDS + LONGER_WINS_FIELDS}
    else:
        incoming = {name: clean_value(detail.get(name)) for name in FILL_IF_EMPTY_FIELDS + LONGER_WINS_FIELDS}
        incoming['deadline'] = normalize_deadline(incoming.get('deadline'))
        incoming['source_url'] = normalize_url(incoming.get('source_url'), base_url or record.source_url)
    return merge_fields(record, incoming)


def merge_records(records: List[ExtractedRecord], backfill: bool = True) -> List[ExtractedRecord]:
    """
    Deduplicate records, keeping the first-seen record per key in order.

    backfill=True lets later duplicates fill gaps in the kept record using the
    field policy. backfill=False drops later duplicates entirely.
    """
    merged: Dict[str, ExtractedRecord] = {}
    duplicates = 0
    for record in records:
        key = dedupe_key(record)
        existing = merged.get(key)
        if existing is None:
            merged[key] = record
            continue
        duplicates += 1
        if backfill:
            merged[key] = apply_detail(existing, record)

    if duplicates:
        logger.debug(f"[merge] {len(records)} records -> {len(merged)} unique ({duplicates} duplicates)")
    return list(merged.values())
