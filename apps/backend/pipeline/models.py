"""
Data types passed between pipeline stages.
"""
from dataclasses import dataclass, field, asdict, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class RawDocument:
    """HTML page handed over by the crawler. Read-only."""
    source_url: str
    site_id: str
    html: str
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class Fragment:
    """
    One record-candidate block produced by the reducer.

    children holds the fragments of the block's child elements so the packer
    can split an oversized block at structural boundaries.
    """
    text: str
    children: List['Fragment'] = field(default_factory=list)

    def __len__(self):
        return len(self.text)


@dataclass
class ReducedContent:
    fragments: List[Fragment]
    strategy: str  # 'selector', 'keyword', 'fulltext', 'detail'
    low_confidence: bool = False

    def texts(self) -> List[str]:
        return [f.text for f in self.fragments]


@dataclass(frozen=True)
class TextChunk:
    chunk_index: int
    total_chunks: int
    text: str
    approx_size_units: int
    oversized: bool = False


class AttemptOutcome(Enum):
    SUCCESS = "success"
    RATE_LIMITED = "rate_limited"
    TRANSIENT_ERROR = "transient_error"
    FATAL_ERROR = "fatal_error"


@dataclass
class InvocationAttempt:
    attempt_number: int
    started_at: datetime
    outcome: Optional[AttemptOutcome] = None
    retry_after: Optional[float] = None
    error: Optional[str] = None


@dataclass
class RecordBatch:
    """Raw provider output for one chunk, before recovery parsing."""
    provider_id: str
    chunk_index: int
    raw_text: str
    attempts: List[InvocationAttempt] = field(default_factory=list)


TEXT_FIELDS = (
    'location', 'salary', 'employment_type', 'experience_level',
    'description', 'requirements', 'benefits', 'deadline', 'job_category',
)


@dataclass
class ExtractedRecord:
    title: str
    company: str
    location: Optional[str] = None
    salary: Optional[str] = None
    employment_type: Optional[str] = None
    experience_level: Optional[str] = None
    source_url: Optional[str] = None
    description: Optional[str] = None
    requirements: Optional[str] = None
    benefits: Optional[str] = None
    deadline: Optional[str] = None
    job_category: Optional[str] = None
    source_site: Optional[str] = None
    extracted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def is_valid(self, require_url: bool = True) -> bool:
        if not (self.title or '').strip() or not (self.company or '').strip():
            return False
        if require_url and not (self.source_url or '').strip():
            return False
        return True

    def copy(self, **changes) -> 'ExtractedRecord':
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['extracted_at'] = self.extracted_at.isoformat()
        return data

    @classmethod
    def field_names(cls) -> Tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    def __repr__(self):
        return f"<ExtractedRecord(title={self.title!r}, company={self.company!r}, url={self.source_url!r})>"


@dataclass
class DocumentSummary:
    """Per-document observability metadata."""
    source_url: str = ''
    records_emitted: int = 0
    chunks_attempted: int = 0
    chunks_succeeded: int = 0
    chunks_failed: int = 0
    quota_exhausted_early: bool = False
    context_overflows: int = 0
    cancelled: bool = False
    fallback_used: bool = False
    no_content: bool = False
    provider_id: Optional[str] = None
    strategy: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DocumentResult:
    records: List[ExtractedRecord]
    summary: DocumentSummary


@dataclass
class DetailOutcome:
    record: ExtractedRecord
    refined: bool = False
    error: Optional[str] = None
