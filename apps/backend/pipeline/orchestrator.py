"""
Extraction orchestrator - drives one document through the pipeline.

Reducing -> Packing -> Dispatching(chunk i of N) -> Parsing -> Merging -> Done

Chunk failures are contained: a bad chunk is logged and skipped, quota
exhaustion stops dispatch but keeps what was collected, and cancellation
during dispatch merges the partial results.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Tuple

from core.errors import (
    ContextTooLarge,
    FatalProviderError,
    NoContentFound,
    ProviderUnavailable,
    QuotaExhausted,
    RetriesExhausted,
)
from core.extraction_config import ExtractionConfig
from core.invoker import ResilientInvoker
from core.quota import ConcurrencyGate, QuotaBook
from core.sites import SiteProfiles, load_site_profiles
from pipeline.merge import apply_detail, merge_records
from pipeline.models import (
    DetailOutcome,
    DocumentResult,
    DocumentSummary,
    ExtractedRecord,
    RawDocument,
    RecordBatch,
    TextChunk,
)
from pipeline.packer import ChunkPacker
from pipeline.recovery import recovery_parser
from pipeline.records import base_url_for, build_records
from pipeline.reducer import ContentReducer
from pipeline.text_fallback import fallback_records
from providers.base import Capability, ExtractionProvider
from providers.registry import ProviderRegistry, build_registry

logger = logging.getLogger(__name__)

CHUNK_FAILURES = (RetriesExhausted, FatalProviderError, ProviderUnavailable)


class RecordSink(ABC):
    """Receives merged records per document (the persistence layer lives behind this)."""

    @abstractmethod
    def write(self, records: List[ExtractedRecord], summary: DocumentSummary):
        pass


class ListSink(RecordSink):
    """Collects everything in memory."""

    def __init__(self):
        self.records: List[ExtractedRecord] = []
        self.summaries: List[DocumentSummary] = []

    def write(self, records: List[ExtractedRecord], summary: DocumentSummary):
        self.records.extend(records)
        self.summaries.append(summary)


class ExtractionOrchestrator:
    """
    Per-document extraction driver.

    Holds no per-document state between calls, so one instance can process
    documents serially or concurrently. The only shared mutable state is the
    invoker's quota book and concurrency gate.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        invoker: ResilientInvoker,
        reducer: Optional[ContentReducer] = None,
        packer: Optional[ChunkPacker] = None,
        config: Optional[ExtractionConfig] = None,
        profiles: Optional[SiteProfiles] = None,
    ):
        # Fails fast when no provider can ever be used
        registry.ensure_available()

        self.registry = registry
        self.invoker = invoker
        self.config = config or ExtractionConfig()
        self.profiles = profiles or (reducer.profiles if reducer else load_site_profiles(self.config.sites_file))
        self.reducer = reducer or ContentReducer(self.profiles)
        self.packer = packer or ChunkPacker.from_config(self.config)
        self.capability = Capability.HTML if self.reducer.mode == 'html' else Capability.TEXT

    @classmethod
    def from_config(
        cls,
        config: Optional[ExtractionConfig] = None,
        registry: Optional[ProviderRegistry] = None,
        quota_book: Optional[QuotaBook] = None,
        gate: Optional[ConcurrencyGate] = None,
        sleep=None,
    ) -> 'ExtractionOrchestrator':
        config = config or ExtractionConfig()
        registry = registry or build_registry(config)
        invoker = ResilientInvoker.from_config(config, quota_book=quota_book, gate=gate, sleep=sleep)
        return cls(registry, invoker, config=config)

    async def process_document(self, doc: RawDocument) -> DocumentResult:
        """Run one listing page through the pipeline. Never raises for chunk-level failures."""
        summary = DocumentSummary(source_url=doc.source_url)
        profile = self.profiles.resolve(doc.site_id, doc.source_url)
        base_url = base_url_for(doc.source_url, profile.base_url)

        logger.info(f"[orchestrator] Reducing {doc.source_url} (site={doc.site_id})")
        try:
            reduced = self.reducer.reduce(doc)
        except NoContentFound as e:
            logger.info(f"[orchestrator] No content: {e}")
            summary.no_content = True
            return DocumentResult([], summary)
        summary.strategy = reduced.strategy

        chunks = self.packer.pack(reduced.fragments)
        logger.info(f"[orchestrator] Packed {len(reduced.fragments)} fragments into {len(chunks)} chunks")
        if not chunks:
            return DocumentResult([], summary)

        provider = self.registry.select_provider(doc.html, doc.site_id, self.capability)
        summary.provider_id = provider.provider_id

        collected: List[ExtractedRecord] = []
        for chunk in chunks:
            try:
                batch = await self._dispatch(provider, chunk, doc, summary)
            except QuotaExhausted as e:
                logger.warning(
                    f"[orchestrator] {e}; stopping after {summary.chunks_attempted}/{len(chunks)} chunks"
                )
                summary.quota_exhausted_early = True
                break
            except asyncio.CancelledError:
                logger.warning(
                    f"[orchestrator] Cancelled during chunk {chunk.chunk_index + 1}/{len(chunks)}; "
                    f"merging partial results"
                )
                summary.cancelled = True
                summary.chunks_failed += 1
                self._absorb_cancellation()
                break

            if batch is None:
                continue

            summary.chunks_succeeded += 1
            items = recovery_parser.parse_array(batch.raw_text)
            records = build_records(items, source_site=doc.site_id, base_url=base_url)
            if not records:
                logger.info(f"[orchestrator] Chunk {chunk.chunk_index + 1}: zero records recovered")
            collected.extend(records)

        records = merge_records(collected, backfill=True)

        if (
            not records
            and summary.chunks_succeeded == 0
            and not summary.cancelled
            and not summary.quota_exhausted_early
            and self.config.enable_fallback
            and self.reducer.mode == 'text'
            and reduced.strategy in ('selector', 'keyword')
        ):
            records = merge_records(fallback_records(reduced.fragments, doc.site_id, base_url))
            summary.fallback_used = bool(records)

        summary.records_emitted = len(records)
        logger.info(
            f"[orchestrator] Done {doc.source_url}: {summary.records_emitted} records, "
            f"{summary.chunks_succeeded}/{summary.chunks_attempted} chunks succeeded, "
            f"quota_exhausted_early={summary.quota_exhausted_early}"
        )
        return DocumentResult(records, summary)

    async def _dispatch(
        self,
        provider: ExtractionProvider,
        chunk: TextChunk,
        doc: RawDocument,
        summary: DocumentSummary,
    ) -> Optional[RecordBatch]:
        """Invoke one chunk; returns None when the chunk failed and was skipped."""
        summary.chunks_attempted += 1
        try:
            return await self.invoker.invoke(provider, chunk, self.capability, doc.site_id)
        except QuotaExhausted:
            # Rejected before any call; not an attempt
            summary.chunks_attempted -= 1
            raise
        except ContextTooLarge as e:
            summary.context_overflows += 1
            summary.chunks_failed += 1
            logger.warning(
                f"[orchestrator] Chunk {chunk.chunk_index + 1} ({chunk.approx_size_units} tokens) exceeded "
                f"{provider.provider_id} context; consider lowering EXTRACTION_MAX_CHUNK_TOKENS: {e}"
            )
            return None
        except CHUNK_FAILURES as e:
            logger.error(f"[orchestrator] Chunk {chunk.chunk_index + 1} failed on {provider.provider_id}: {e}")

        fallback = self.registry.fallback_provider(provider.provider_id) if self.config.enable_provider_fallback else None
        if fallback is None or not fallback.supports(self.capability):
            summary.chunks_failed += 1
            return None

        logger.info(f"[orchestrator] Retrying chunk {chunk.chunk_index + 1} on fallback provider {fallback.provider_id}")
        try:
            return await self.invoker.invoke(fallback, chunk, self.capability, doc.site_id)
        except (QuotaExhausted, ContextTooLarge) + CHUNK_FAILURES as e:
            logger.error(f"[orchestrator] Chunk {chunk.chunk_index + 1} failed on fallback {fallback.provider_id}: {e}")
            summary.chunks_failed += 1
            return None

    def _absorb_cancellation(self):
        task = asyncio.current_task()
        if task is not None:
            task.uncancel()

    async def process_documents(
        self,
        docs: Iterable[RawDocument],
        sink: Optional[RecordSink] = None,
    ) -> List[DocumentResult]:
        """
        Process documents one after another, handing each result to the sink.

        A cancelled document still reaches the sink with its partial records,
        then the cancellation propagates and the remaining documents are skipped.
        """
        results = []
        for doc in docs:
            result = await self.process_document(doc)
            if sink is not None:
                sink.write(result.records, result.summary)
            results.append(result)
            if result.summary.cancelled:
                logger.warning(f"[orchestrator] Batch cancelled after {len(results)} document(s)")
                raise asyncio.CancelledError()
        return results

    def _detail_provider(self) -> Optional[ExtractionProvider]:
        provider = self.registry.default_provider()
        if provider.supports(Capability.DETAIL):
            return provider
        candidates = self.registry.available_providers(Capability.DETAIL)
        return candidates[0] if candidates else None

    async def refine_details(self, pairs: List[Tuple[ExtractedRecord, RawDocument]]) -> List[DetailOutcome]:
        """
        Refine list-stage records with their detail pages.

        Runs up to detail_parallelism workers (each call still goes through the
        invoker's global permit). The number of refinements is capped by the
        remaining quota minus detail_quota_reserve, with a floor of one.
        Records that are not refined are returned unchanged.
        """
        outcomes: List[Optional[DetailOutcome]] = [None] * len(pairs)
        if not pairs:
            return []

        provider = self._detail_provider()
        if provider is None:
            logger.warning("[orchestrator] No provider supports detail extraction")
            return [DetailOutcome(record, False, 'no detail provider') for record, _ in pairs]

        remaining = self.invoker.remaining_quota(provider.provider_id)
        budget = max(1, remaining - self.config.detail_quota_reserve) if remaining > 0 else 0
        budget = min(budget, len(pairs))
        logger.info(
            f"[orchestrator] Detail refinement: {budget}/{len(pairs)} records "
            f"(quota remaining={remaining}, workers={self.config.detail_parallelism})"
        )

        for index in range(budget, len(pairs)):
            outcomes[index] = DetailOutcome(pairs[index][0], False, 'quota budget exhausted')

        queue: asyncio.Queue = asyncio.Queue()
        for index in range(budget):
            queue.put_nowait(index)

        async def worker():
            while True:
                try:
                    index = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                record, doc = pairs[index]
                outcomes[index] = await self.refine_detail(record, doc, provider)

        workers = min(self.config.detail_parallelism, budget)
        if workers:
            await asyncio.gather(*(worker() for _ in range(workers)))

        refined = sum(1 for o in outcomes if o is not None and o.refined)
        logger.info(f"[orchestrator] Detail refinement done: {refined}/{len(pairs)} records refined")
        return outcomes

    async def refine_detail(
        self,
        record: ExtractedRecord,
        doc: RawDocument,
        provider: Optional[ExtractionProvider] = None,
    ) -> DetailOutcome:
        """Refine one record; on any failure the record is returned unchanged."""
        provider = provider or self._detail_provider()
        if provider is None:
            return DetailOutcome(record, False, 'no detail provider')

        try:
            reduced = self.reducer.reduce_detail(doc)
        except NoContentFound as e:
            return DetailOutcome(record, False, str(e))

        chunks = self.packer.pack(reduced.fragments)
        if not chunks:
            return DetailOutcome(record, False, 'empty detail page')
        if len(chunks) > 1:
            logger.debug(f"[orchestrator] Detail page {doc.source_url} spans {len(chunks)} chunks, using the first")

        try:
            batch = await self.invoker.invoke(provider, chunks[0], Capability.DETAIL, doc.site_id, base_record=record)
        except (QuotaExhausted, ContextTooLarge) + CHUNK_FAILURES as e:
            logger.warning(f"[orchestrator] Detail refinement failed for {doc.source_url}: {e}")
            return DetailOutcome(record, False, str(e))

        fields = recovery_parser.parse_object(batch.raw_text)
        profile = self.profiles.resolve(doc.site_id, doc.source_url)
        refined = apply_detail(record, fields, base_url_for(doc.source_url, profile.base_url))
        return DetailOutcome(refined, refined is not record)
