"""
Chunk packing: fragments -> size-bounded TextChunks.
"""
import logging
import math
from typing import List, Tuple

from pipeline.models import Fragment, TextChunk

logger = logging.getLogger(__name__)

SEPARATOR = '\n\n'


class ChunkPacker:
    """
    Greedy packer with a token budget estimated as ceil(chars / chars_per_token).

    Oversized fragments are split at child boundaries first, then by length
    with a small overlap. With allow_raw_split=False an oversized leaf is
    emitted whole and flagged.
    """

    def __init__(
        self,
        max_chunk_tokens: int = 4000,
        chars_per_token: int = 4,
        overlap_tokens: int = 50,
        allow_raw_split: bool = True,
    ):
        if max_chunk_tokens < 1:
            raise ValueError("max_chunk_tokens must be >= 1")
        if chars_per_token < 1:
            raise ValueError("chars_per_token must be >= 1")
        self.max_chunk_tokens = max_chunk_tokens
        self.chars_per_token = chars_per_token
        self.max_chars = max_chunk_tokens * chars_per_token
        # Overlap stays well below the window so slicing always advances
        self.overlap_chars = min(max(0, overlap_tokens) * chars_per_token, self.max_chars // 4)
        self.allow_raw_split = allow_raw_split

    @classmethod
    def from_config(cls, config) -> 'ChunkPacker':
        return cls(
            max_chunk_tokens=config.max_chunk_tokens,
            chars_per_token=config.chars_per_token,
            overlap_tokens=config.chunk_overlap_tokens,
        )

    def size(self, text: str) -> int:
        return math.ceil(len(text) / self.chars_per_token)

    def pack(self, fragments: List[Fragment]) -> List[TextChunk]:
        pieces: List[Tuple[str, bool]] = []
        for fragment in fragments:
            pieces.extend(self._explode(fragment))

        groups: List[Tuple[str, bool]] = []
        current: List[str] = []
        current_chars = 0

        for text, oversized in pieces:
            if oversized:
                if current:
                    groups.append((SEPARATOR.join(current), False))
                    current, current_chars = [], 0
                groups.append((text, True))
                continue

            added = len(text) + (len(SEPARATOR) if current else 0)
            if current and math.ceil((current_chars + added) / self.chars_per_token) > self.max_chunk_tokens:
                groups.append((SEPARATOR.join(current), False))
                current, current_chars = [], 0
                added = len(text)

            current.append(text)
            current_chars += added

        if current:
            groups.append((SEPARATOR.join(current), False))

        total = len(groups)
        chunks = [
            TextChunk(
                chunk_index=i,
                total_chunks=total,
                text=text,
                approx_size_units=self.size(text),
                oversized=oversized,
            )
            for i, (text, oversized) in enumerate(groups)
        ]
        if chunks:
            logger.debug(
                f"[packer] {len(fragments)} fragments -> {total} chunks "
                f"(budget={self.max_chunk_tokens}, sizes={[c.approx_size_units for c in chunks]})"
            )
        return chunks

    def _explode(self, fragment: Fragment) -> List[Tuple[str, bool]]:
        """Split a fragment into pieces that each fit the budget."""
        text = fragment.text.strip()
        if not text:
            return []
        if self.size(text) <= self.max_chunk_tokens:
            return [(text, False)]

        if fragment.children:
            pieces: List[Tuple[str, bool]] = []
            for child in fragment.children:
                pieces.extend(self._explode(child))
            if pieces:
                return pieces

        if self.allow_raw_split:
            return [(piece, False) for piece in self._slice(text)]

        logger.warning(
            f"[packer] Policy violation: irreducible fragment of {self.size(text)} tokens "
            f"exceeds budget {self.max_chunk_tokens}; emitting as oversized chunk"
        )
        return [(text, True)]

    def _slice(self, text: str) -> List[str]:
        """Length-based slicing with overlap, preferring whitespace boundaries."""
        slices = []
        start = 0
        length = len(text)
        while start < length:
            end = min(start + self.max_chars, length)
            if end < length:
                space = text.rfind(' ', start + self.max_chars // 2, end)
                if space > start:
                    end = space
            piece = text[start:end].strip()
            if piece:
                slices.append(piece)
            if end >= length:
                break
            start = max(end - self.overlap_chars, start + 1)
        return slices
