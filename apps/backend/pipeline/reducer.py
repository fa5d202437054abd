"""
Content reduction: HTML document -> record-candidate text fragments.

Stages:
1. Structural cleaning (scripts, styles, comments, hidden nodes, nav/ad regions)
2. Site selector sets, tried in priority order
3. Keyword-density scan over block-level elements
4. Whole cleaned body as a single low-confidence fragment
"""
import logging
from typing import List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Comment, Tag

from core.errors import NoContentFound
from core.sites import SiteProfile, SiteProfiles, load_site_profiles
from pipeline.models import Fragment, RawDocument, ReducedContent
from pipeline.records import base_url_for

logger = logging.getLogger(__name__)

NOISE_TAGS = [
    'script', 'style', 'noscript', 'iframe', 'embed', 'object',
    'meta', 'link', 'template', 'svg',
]

NOISE_SELECTORS = [
    'header', 'nav', 'footer', 'aside',
    '.header', '.nav', '.footer', '.sidebar',
    '.advertisement', '.ads', '.ad-container', '.banner', '.popup',
    '[id*="banner"]', '[class*="cookie"]',
]

BLOCK_TAGS = ['div', 'li', 'article', 'section', 'tr', 'p']

FIELD_LABELS = [
    ('title', 'Title'),
    ('company', 'Company'),
    ('location', 'Location'),
    ('salary', 'Salary'),
]

SUMMARY_MAX_CHARS = 500
MAX_CHILD_DEPTH = 4


def _is_hidden(tag: Tag) -> bool:
    if tag.has_attr('hidden'):
        return True
    if str(tag.get('aria-hidden', '')).lower() == 'true':
        return True
    style = str(tag.get('style', '')).replace(' ', '').lower()
    return 'display:none' in style or 'visibility:hidden' in style


def _text(element: Tag, separator: str = ' ') -> str:
    return element.get_text(separator, strip=True)


def _outermost(elements: List[Tag]) -> List[Tag]:
    """Drop elements nested inside another selected element."""
    selected = {id(e) for e in elements}
    kept = []
    for element in elements:
        if any(id(parent) in selected for parent in element.parents):
            continue
        kept.append(element)
    return kept


def _innermost(elements: List[Tag]) -> List[Tag]:
    """Drop elements that contain another selected element."""
    selected = {id(e) for e in elements}
    has_selected_descendant = set()
    for element in elements:
        for parent in element.parents:
            if id(parent) in selected:
                has_selected_descendant.add(id(parent))
    return [e for e in elements if id(e) not in has_selected_descendant]


class ContentReducer:
    """
    Reduces a RawDocument to an ordered list of fragments.

    mode='text' emits labelled plain-text blocks (for extract_from_text),
    mode='html' emits cleaned outer HTML of each block (for extract_from_html).
    """

    def __init__(self, profiles: Optional[SiteProfiles] = None, mode: str = 'text', parser: str = 'lxml'):
        if mode not in ('text', 'html'):
            raise ValueError(f"Unknown reducer mode: {mode}")
        self.profiles = profiles or load_site_profiles()
        self.mode = mode
        self.parser = parser

    def get_soup(self, html: str) -> BeautifulSoup:
        return BeautifulSoup(html, self.parser)

    def reduce(self, doc: RawDocument) -> ReducedContent:
        """
        Extract record-candidate fragments from a listing page.

        Raises:
            NoContentFound: the HTML is empty or has no text once cleaned
        """
        if not doc.html or not doc.html.strip():
            raise NoContentFound(f"Empty HTML for {doc.source_url}", {'source_url': doc.source_url})

        profile = self.profiles.resolve(doc.site_id, doc.source_url)
        soup = self.get_soup(doc.html)
        self.clean(soup)

        blocks = self._select_blocks(soup, profile)
        if blocks:
            fragments = [self._block_fragment(b, i + 1, profile, doc) for i, b in enumerate(blocks)]
            logger.info(f"[reducer] {doc.source_url}: {len(fragments)} blocks via site selectors ({profile.site_id})")
            return ReducedContent(fragments, 'selector')

        blocks = self._keyword_blocks(soup, profile)
        if blocks:
            fragments = [self._block_fragment(b, i + 1, profile, doc) for i, b in enumerate(blocks)]
            logger.info(f"[reducer] {doc.source_url}: {len(fragments)} blocks via keyword scan")
            return ReducedContent(fragments, 'keyword')

        fragment = self._fulltext_fragment(soup)
        if fragment is None:
            raise NoContentFound(f"No text content in {doc.source_url}", {'source_url': doc.source_url})
        logger.warning(f"[reducer] {doc.source_url}: no blocks matched, using full body text (low confidence)")
        return ReducedContent([fragment], 'fulltext', low_confidence=True)

    def reduce_detail(self, doc: RawDocument) -> ReducedContent:
        """Reduce a detail page to its main content region as one fragment."""
        if not doc.html or not doc.html.strip():
            raise NoContentFound(f"Empty HTML for {doc.source_url}", {'source_url': doc.source_url})

        profile = self.profiles.resolve(doc.site_id, doc.source_url)
        soup = self.get_soup(doc.html)
        self.clean(soup)

        region = None
        for selector in profile.detail_selectors:
            try:
                candidate = soup.select_one(selector)
            except Exception as e:
                logger.warning(f"[reducer] Invalid detail selector {selector!r}: {e}")
                continue
            if candidate is not None and len(_text(candidate)) >= profile.min_block_chars:
                region = candidate
                break

        if region is None:
            fragment = self._fulltext_fragment(soup)
        else:
            fragment = self._lines_fragment(region)
        if fragment is None:
            raise NoContentFound(f"No text content in {doc.source_url}", {'source_url': doc.source_url})
        return ReducedContent([fragment], 'detail', low_confidence=region is None)

    def clean(self, soup: BeautifulSoup):
        """Remove non-content nodes in place. Structural rules only."""
        for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
            comment.extract()

        for tag in soup.find_all(NOISE_TAGS):
            tag.decompose()

        for tag in soup.select(', '.join(NOISE_SELECTORS)):
            if not getattr(tag, 'decomposed', False):
                tag.decompose()

        hidden = [t for t in soup.find_all(True) if _is_hidden(t)]
        for tag in hidden:
            if not getattr(tag, 'decomposed', False):
                tag.decompose()

    def _select_blocks(self, soup: BeautifulSoup, profile: SiteProfile) -> List[Tag]:
        for selector_set in profile.selector_sets:
            try:
                elements = soup.select(', '.join(selector_set))
            except Exception as e:
                logger.warning(f"[reducer] Invalid selector set {selector_set} for {profile.site_id}: {e}")
                continue

            blocks = [e for e in _outermost(elements) if len(_text(e)) >= profile.min_block_chars]
            if blocks:
                if len(blocks) > profile.max_blocks:
                    logger.debug(f"[reducer] Capping {len(blocks)} blocks to {profile.max_blocks}")
                return blocks[:profile.max_blocks]
        return []

    def _keyword_blocks(self, soup: BeautifulSoup, profile: SiteProfile) -> List[Tag]:
        low, high = profile.keyword_window
        matched = []
        for element in soup.find_all(BLOCK_TAGS):
            text = _text(element)
            if not (low <= len(text) <= high):
                continue
            lowered = text.lower()
            if any(keyword in lowered for keyword in profile.keywords):
                matched.append(element)
        return _innermost(matched)[:profile.keyword_max_blocks]

    def _block_fragment(self, element: Tag, index: int, profile: SiteProfile, doc: RawDocument) -> Fragment:
        children = self._child_fragments(element, depth=1)
        if self.mode == 'html':
            return Fragment(str(element), children)

        lines = [f"=== Posting {index} ==="]
        for field_name, label in FIELD_LABELS:
            value = self._field_text(element, profile.fields.get(field_name, []))
            if value:
                lines.append(f"{label}: {value}")

        link = self._block_link(element, base_url_for(doc.source_url, profile.base_url) or '')
        if link:
            lines.append(f"Link: {link}")

        summary = _text(element)
        if len(summary) > SUMMARY_MAX_CHARS:
            summary = summary[:SUMMARY_MAX_CHARS].rstrip() + '...'
        lines.append(f"Summary: {summary}")

        return Fragment('\n'.join(lines), children)

    def _child_fragments(self, element: Tag, depth: int) -> List[Fragment]:
        if depth > MAX_CHILD_DEPTH:
            return []
        children = []
        for child in element.find_all(True, recursive=False):
            text = str(child) if self.mode == 'html' else _text(child)
            if not _text(child):
                continue
            children.append(Fragment(text, self._child_fragments(child, depth + 1)))
        return children

    def _field_text(self, element: Tag, selectors: List[str]) -> Optional[str]:
        for selector in selectors:
            try:
                found = element.select_one(selector)
            except Exception as e:
                logger.debug(f"[reducer] Invalid field selector {selector!r}: {e}")
                continue
            if found is not None:
                value = _text(found)
                if value:
                    return value
        return None

    def _block_link(self, element: Tag, base_url: str) -> Optional[str]:
        anchors = [element] if element.name == 'a' and element.get('href') else element.find_all('a', href=True)
        for anchor in anchors:
            href = anchor.get('href', '').strip()
            if not href or href.startswith('#') or href.lower().startswith(('javascript:', 'mailto:', 'tel:')):
                continue
            return urljoin(base_url, href)
        return None

    def _lines_fragment(self, element: Tag) -> Optional[Fragment]:
        text = _text(element, separator='\n')
        if not text:
            return None
        lines = [line for line in text.split('\n') if line.strip()]
        return Fragment('\n'.join(lines), [Fragment(line) for line in lines])

    def _fulltext_fragment(self, soup: BeautifulSoup) -> Optional[Fragment]:
        body = soup.body or soup
        return self._lines_fragment(body)
