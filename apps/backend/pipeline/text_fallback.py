"""
Rule-based fallback extraction.

Used when no provider call succeeded for a document: the labelled blocks
emitted by the reducer ("=== Posting N ===", "Title: ...", "Company: ...")
already carry most list-stage fields, so they are parsed directly.
"""
import logging
import re
from typing import Dict, List, Optional

from pipeline.models import ExtractedRecord, Fragment
from pipeline.records import build_records

logger = logging.getLogger(__name__)

BLOCK_HEADER = re.compile(r'^=== Posting \d+ ===$', re.MULTILINE)
LABELS = {
    'title': 'title',
    'company': 'company',
    'location': 'location',
    'salary': 'salary',
    'link': 'source_url',
}
LABEL_LINE = re.compile(r'^(Title|Company|Location|Salary|Link):\s*(.+)$', re.IGNORECASE)


def parse_labelled_blocks(text: str) -> List[Dict[str, str]]:
    """Parse reducer-formatted posting blocks into raw record dicts."""
    items = []
    for block in BLOCK_HEADER.split(text):
        item: Dict[str, str] = {}
        for line in block.splitlines():
            match = LABEL_LINE.match(line.strip())
            if match:
                key = LABELS[match.group(1).lower()]
                item.setdefault(key, match.group(2).strip())
        if item:
            items.append(item)
    return items


def fallback_records(
    fragments: List[Fragment],
    source_site: Optional[str] = None,
    base_url: Optional[str] = None,
) -> List[ExtractedRecord]:
    items = []
    for fragment in fragments:
        items.extend(parse_labelled_blocks(fragment.text))
    records = build_records(items, source_site=source_site, base_url=base_url)
    logger.info(f"[text_fallback] Recovered {len(records)} records from {len(items)} labelled blocks")
    return records
