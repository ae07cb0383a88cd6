"""Split a raw engine output stream into complete text lines."""

from collections.abc import Iterator

LINE_SEPARATOR = b"\n"


class LineAssembler:
    """Accumulates byte chunks and yields each line once its terminator arrives.

    Chunk boundaries are arbitrary: a line may span several chunks and a
    chunk may carry several lines. Bytes after the last terminator are kept
    as carry-over for the next call to feed().
    """

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding
        self._buffer = bytearray()

    def feed(self, chunk: bytes) -> Iterator[str]:
        """Append chunk and return an iterator over the newly completed lines.

        The carry-over buffer is updated before this returns, so lines are
        never emitted twice even if the caller does not exhaust the iterator.
        """
        self._buffer.extend(chunk)
        *complete, rest = self._buffer.split(LINE_SEPARATOR)
        self._buffer = bytearray(rest)
        return iter([self._decode(raw) for raw in complete])

    def flush(self) -> str | None:
        """Return the unterminated tail as a final line, or None if empty."""
        if not self._buffer:
            return None
        line = self._decode(bytes(self._buffer))
        self._buffer.clear()
        return line

    @property
    def pending(self) -> bytes:
        """Bytes received since the last terminator."""
        return bytes(self._buffer)

    def _decode(self, raw: bytes) -> str:
        # Windows builds terminate lines with CRLF
        if raw.endswith(b"\r"):
            raw = raw[:-1]
        return raw.decode(self.encoding, errors="replace")
