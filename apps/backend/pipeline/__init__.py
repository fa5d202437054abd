"""
Job posting extraction pipeline.

Reduces crawled listing pages to compact text, packs it into size-bounded
chunks, sends the chunks to an LLM provider and recovers, validates and
deduplicates the records that come back.
"""

__version__ = "0.1.0"
