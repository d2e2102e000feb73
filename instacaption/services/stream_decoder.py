"""
Decoder for the newline-delimited JSON body of a streamed /api/generate call.

The transport hands over byte chunks of arbitrary size. Each chunk is decoded
as UTF-8 text and split on newlines; every non-blank line is parsed as one JSON
object and turned into a GenerationFragment. A line that does not parse is
skipped on its own and decoding continues.

With reassembly on (the default) the trailing partial line of a chunk is held
back and completed by the next chunk. With reassembly off, every chunk is split
on its own, so an object straddling a chunk boundary is dropped.
"""

import codecs
import json
import logging
from typing import Iterable, Iterator, List, Optional

from pydantic import ValidationError

from instacaption.schemas.caption_schema import GenerationFragment

logger = logging.getLogger(__name__)


def parse_fragment(line: str) -> Optional[GenerationFragment]:
    """Parse one NDJSON line; None if it is not a usable fragment object."""
    try:
        payload = json.loads(line)
    except json.JSONDecodeError:
        logger.debug(f"Skipping malformed stream line: {line[:80]!r}")
        return None

    if not isinstance(payload, dict):
        logger.debug(f"Skipping non-object stream line: {line[:80]!r}")
        return None

    try:
        return GenerationFragment.model_validate(payload)
    except ValidationError as e:
        logger.debug(f"Skipping ill-typed stream fragment: {e.error_count()} errors")
        return None


class StreamDecoder:
    """Incremental NDJSON decoder fed one byte chunk at a time."""

    def __init__(self, reassemble: bool = True, encoding: str = "utf-8"):
        self.reassemble = reassemble
        self._text = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._pending = ""
        self.lines_seen = 0
        self.skipped = 0

    def feed(self, chunk: bytes) -> List[GenerationFragment]:
        """Decode one chunk and return the fragments it completes."""
        text = self._pending + self._text.decode(chunk)
        self._pending = ""

        lines = text.split("\n")
        if self.reassemble:
            # Empty when the chunk ended on a newline
            self._pending = lines.pop()

        return self._parse_lines(lines)

    def flush(self) -> List[GenerationFragment]:
        """Parse whatever is left once the transport signals end of stream."""
        text = self._pending + self._text.decode(b"", final=True)
        self._pending = ""
        return self._parse_lines([text])

    @property
    def pending(self) -> str:
        return self._pending

    def _parse_lines(self, lines: Iterable[str]) -> List[GenerationFragment]:
        fragments = []
        for line in lines:
            line = line.strip()
            if not line:
                continue

            self.lines_seen += 1
            fragment = parse_fragment(line)
            if fragment is None:
                self.skipped += 1
                continue
            fragments.append(fragment)
        return fragments


def decode(
    chunks: Iterable[bytes],
    reassemble: bool = True
) -> Iterator[GenerationFragment]:
    """
    Lazily decode a chunked NDJSON byte stream into fragments.

    Args:
        chunks: Byte chunks in arrival order (e.g. OllamaClient.open_stream())
        reassemble: Carry partial lines across chunk boundaries

    Yields:
        GenerationFragment for every parseable line, in arrival order
    """
    decoder = StreamDecoder(reassemble=reassemble)
    for chunk in chunks:
        yield from decoder.feed(chunk)
    yield from decoder.flush()

    if decoder.skipped:
        logger.debug(
            f"Stream decoded: {decoder.lines_seen} lines, {decoder.skipped} skipped"
        )
