"""Byte-chunk to line reassembly."""

from __future__ import annotations

import logging

_logger = logging.getLogger(__name__)

DEFAULT_MAX_LINE_LENGTH = 4096


class LineSplitter:
    """Reassemble newline-terminated lines from arbitrary byte chunks.

    A chunk may hold zero, one or many complete lines; a trailing partial
    line is carried over to the next :meth:`feed`. Both LF and CRLF
    terminators are accepted and stripped. Blank lines are dropped.
    """

    def __init__(self, *, max_line_length: int = DEFAULT_MAX_LINE_LENGTH) -> None:
        self._buffer = bytearray()
        self._max_line_length = max_line_length

    @property
    def pending(self) -> int:
        """Bytes of the partial line currently buffered."""
        return len(self._buffer)

    def feed(self, chunk: bytes) -> list[bytes]:
        self._buffer.extend(chunk)
        *complete, rest = self._buffer.split(b"\n")
        self._buffer = bytearray(rest)
        if len(self._buffer) > self._max_line_length:
            _logger.debug("Discarding %d-byte unterminated line", len(self._buffer))
            self._buffer.clear()
        return [bytes(line) for line in (self._strip(raw) for raw in complete) if line]

    def flush(self) -> list[bytes]:
        """Return the buffered partial line, if any, and reset."""
        rest = self._strip(self._buffer)
        self._buffer = bytearray()
        return [bytes(rest)] if rest else []

    def _strip(self, raw: bytearray) -> bytearray:
        line = raw.rstrip(b"\r")
        if len(line) > self._max_line_length:
            _logger.debug("Discarding %d-byte line", len(line))
            return bytearray()
        return line
