"""
Run the extraction pipeline on saved HTML files.

Usage:
    python scripts/extract_html.py page.html --site saramin --url https://www.saramin.co.kr/list
    python scripts/extract_html.py pages/*.html --site wanted --dry-run
    python scripts/extract_html.py page.html --out records.jsonl --provider gemini
"""

import os
import sys
import json
import asyncio
import logging
from pathlib import Path
from typing import List, Optional

# Add parent directory to path (apps/backend)
backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, backend_dir)

from dotenv import load_dotenv

from core.errors import NoContentFound, NoProviderAvailable
from core.extraction_config import ExtractionConfig
from core.sites import load_site_profiles
from pipeline.models import DocumentSummary, ExtractedRecord, RawDocument
from pipeline.orchestrator import ExtractionOrchestrator, RecordSink
from pipeline.packer import ChunkPacker
from pipeline.reducer import ContentReducer

logger = logging.getLogger(__name__)


class JsonLinesSink(RecordSink):
    """Writes one JSON object per record."""

    def __init__(self, stream):
        self.stream = stream

    def write(self, records: List[ExtractedRecord], summary: DocumentSummary):
        for record in records:
            self.stream.write(json.dumps(record.to_dict(), ensure_ascii=False) + "\n")
        self.stream.flush()
        logger.info(f"Summary: {json.dumps(summary.to_dict(), ensure_ascii=False)}")


def load_documents(paths: List[str], site_id: str, url: Optional[str]) -> List[RawDocument]:
    docs = []
    for path in paths:
        html = Path(path).read_text(encoding="utf-8", errors="replace")
        docs.append(RawDocument(source_url=url or Path(path).resolve().as_uri(), site_id=site_id, html=html))
    return docs


def dry_run(docs: List[RawDocument], config: ExtractionConfig):
    """Show reduction and packing stats without calling any provider."""
    reducer = ContentReducer(load_site_profiles(config.sites_file))
    packer = ChunkPacker.from_config(config)
    for doc in docs:
        try:
            reduced = reducer.reduce(doc)
        except NoContentFound as e:
            print(f"{doc.source_url}: no content ({e})")
            continue
        chunks = packer.pack(reduced.fragments)
        print(f"{doc.source_url}: strategy={reduced.strategy} fragments={len(reduced.fragments)} "
              f"chunks={len(chunks)} sizes={[c.approx_size_units for c in chunks]}")
        for chunk in chunks:
            flag = " (OVERSIZED)" if chunk.oversized else ""
            print(f"--- chunk {chunk.chunk_index + 1}/{chunk.total_chunks}{flag} ---")
            print(chunk.text[:1000])


async def run(docs: List[RawDocument], config: ExtractionConfig, out_path: Optional[str]) -> int:
    try:
        orchestrator = ExtractionOrchestrator.from_config(config)
    except NoProviderAvailable as e:
        logger.error(f"Cannot start: {e}")
        return 1

    stream = open(out_path, "w", encoding="utf-8") if out_path else sys.stdout
    try:
        results = await orchestrator.process_documents(docs, sink=JsonLinesSink(stream))
    finally:
        if out_path:
            stream.close()

    total = sum(r.summary.records_emitted for r in results)
    stopped = any(r.summary.quota_exhausted_early for r in results)
    logger.info(f"Extracted {total} records from {len(results)} documents (quota_exhausted_early={stopped})")
    return 0


def main():
    import argparse

    parser = argparse.ArgumentParser(description="Extract job postings from saved HTML files")
    parser.add_argument("files", nargs="+", help="HTML files to process")
    parser.add_argument("--site", default="default", help="Site id or alias (e.g. saramin, wanted)")
    parser.add_argument("--url", help="Source URL of the page (used to resolve relative links)")
    parser.add_argument("--provider", help="Force a provider id (openai, gemini, anthropic, openrouter)")
    parser.add_argument("--max-chunk-tokens", type=int, help="Override the chunk token budget")
    parser.add_argument("--out", help="Write JSON lines to this file instead of stdout")
    parser.add_argument("--dry-run", action="store_true", help="Only reduce and pack; no provider calls")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    load_dotenv()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
    )

    overrides = {}
    if args.provider:
        overrides["provider"] = args.provider.lower()
    if args.max_chunk_tokens:
        overrides["max_chunk_tokens"] = args.max_chunk_tokens
    config = ExtractionConfig(**overrides)

    docs = load_documents(args.files, args.site, args.url)
    if args.dry_run:
        dry_run(docs, config)
        return

    sys.exit(asyncio.run(run(docs, config, args.out)))


if __name__ == "__main__":
    main()
