"""Text chunking with fixed-size overlapping character windows.

Splits extracted document text into windows sized for the embedding model
(1000 characters by default) with a 200-character overlap, so that a
sentence cut at one window boundary is still whole in the neighbouring
window.

The algorithm is deliberately character based: windows start at offsets
``0, step, 2*step, ...`` with ``step = chunk_size - overlap`` and each
window is ``text[start:start + chunk_size]``.  Every character of the
input therefore appears in at least one window, consecutive windows share
exactly ``overlap`` characters (except possibly the last), and the number
of windows for a text of length ``L > overlap`` is
``ceil((L - overlap) / step)``.
"""

from __future__ import annotations

import structlog

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_OVERLAP = 200


class TextChunker:
    """Splits text into fixed-size overlapping character windows.

    Parameters
    ----------
    chunk_size:
        Maximum characters per window (default 1000).
    overlap:
        Characters shared by consecutive windows (default 200).

    Raises
    ------
    ValueError
        Unless ``0 <= overlap < chunk_size``; a non-positive step would
        never advance.
    """

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE, overlap: int = DEFAULT_OVERLAP) -> None:
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if overlap < 0 or overlap >= chunk_size:
            raise ValueError(
                f"overlap must satisfy 0 <= overlap < chunk_size, got overlap={overlap} "
                f"with chunk_size={chunk_size}"
            )
        self._chunk_size = chunk_size
        self._overlap = overlap

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @property
    def overlap(self) -> int:
        return self._overlap

    def chunk(self, text: str) -> list[str]:
        """Split *text* into overlapping windows.

        Returns an empty list for empty input.  Windows are not trimmed
        or re-aligned, so joining them with the overlaps removed yields
        the original text.
        """
        if not text:
            return []

        step = self._chunk_size - self._overlap
        chunks: list[str] = []
        start = 0
        while start < len(text):
            chunks.append(text[start : start + self._chunk_size])
            # The last window already reaches the end of the text.
            if start + self._chunk_size >= len(text):
                break
            start += step

        logger.debug(
            "text_chunked",
            text_length=len(text),
            chunk_count=len(chunks),
            chunk_size=self._chunk_size,
            overlap=self._overlap,
        )
        return chunks


def chunk_text(text: str, chunk_size: int = DEFAULT_CHUNK_SIZE, overlap: int = DEFAULT_OVERLAP) -> list[str]:
    """Module-level shortcut for ``TextChunker(chunk_size, overlap).chunk(text)``."""
    return TextChunker(chunk_size=chunk_size, overlap=overlap).chunk(text)
