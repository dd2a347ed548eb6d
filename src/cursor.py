"""Cursor module.

The cursor is the whole mutable state of a reader: the window of bytes read
but not yet consumed, the offset of the first unconsumed byte, the line and
column of that byte and the current nesting depth.

Between two calls, either the window is empty (end of stream) or its first
byte is the first byte of the next token: insignificant whitespace is always
skipped before control returns to the caller.
"""

from typing import Optional

from chunk_source import CHUNK_SIZE, ChunkSource
from config import logger

# Column advance of a horizontal tab.
TAB_WIDTH = 8

SPACE = 0x20
TAB = 0x09
LF = 0x0A
CR = 0x0D

# Number of bytes shown on each side of the cursor in debug dumps.
SNAPSHOT_WIDTH = 20


class Cursor:
    """Sliding window over a ChunkSource with line/column bookkeeping.

    Args:
        source (ChunkSource): The stream the window is filled from.

    Attributes:
        buffer (bytearray): Bytes read from the source. Only the part starting
            at ``position`` is still unconsumed.
        position (int): Offset of the first unconsumed byte in ``buffer``.
        size (int): Number of unconsumed bytes (``len(buffer) - position``).
        line (int): 1-based line of the first unconsumed byte.
        col (int): 1-based column of the first unconsumed byte.
        depth (int): Number of objects/arrays currently open.
    """

    def __init__(self, source: ChunkSource) -> None:
        self.source = source
        self.buffer = bytearray()
        self.position = 0
        self.size = 0
        self.line = 1
        self.col = 1
        self.depth = 0

    def load_chunk(self) -> bool:
        """Drop the consumed prefix of the window and append the next chunk.

        Returns:
            bool: True if at least one byte was appended, False at end of stream.
        """
        if self.position != 0:
            del self.buffer[: self.position]
            self.position = 0

        chunk = self.source.read_chunk(CHUNK_SIZE)
        if not chunk:
            return False

        self.buffer += chunk
        self.size += len(chunk)
        logger.debug({"event": "chunk loaded", "bytes": len(chunk), "buffered": self.size})

        return True

    def ensure(self, length: int) -> bool:
        """Load chunks until ``length`` bytes are buffered or the stream ends."""
        while self.size < length:
            if not self.load_chunk():
                return False

        return True

    def skip_whitespace(self) -> None:
        """Consume spaces, tabs, line feeds and carriage returns.

        Only a line feed starts a new line. A carriage return counts as one
        column, a tab as ``TAB_WIDTH`` columns.
        """
        while True:
            if self.size == 0 and not self.load_chunk():
                return

            buffer = self.buffer
            start = self.position
            end = start + self.size
            line, col = self.line, self.col

            index = start
            while index < end:
                byte = buffer[index]
                if byte == SPACE or byte == CR:
                    col += 1
                elif byte == TAB:
                    col += TAB_WIDTH
                elif byte == LF:
                    line += 1
                    col = 1
                else:
                    break
                index += 1

            self.position = index
            self.size -= index - start
            self.line, self.col = line, col

            # a significant byte is waiting, otherwise the next chunk may
            # start with more whitespace
            if self.size != 0:
                return

    def peek(self) -> Optional[int]:
        """Return the first unconsumed byte, or None at end of stream."""
        if self.size == 0:
            return None

        return self.buffer[self.position]

    def startswith(self, token: bytes) -> bool:
        """Test whether the unconsumed bytes start with ``token``."""
        length = len(token)
        if self.size < length and not self.ensure(length):
            return False

        return self.buffer[self.position : self.position + length] == token

    def advance(self, length: int) -> None:
        """Consume ``length`` bytes of the current line, then skip whitespace."""
        self.position += length
        self.size -= length
        self.col += length
        self.skip_whitespace()

    def close(self) -> None:
        self.source.close()

    def snapshot(self) -> str:
        """Describe the window around the cursor, with a caret under it.

        Example::

            JsonReader: pos=7 (1:8) avail=3 buffer=|{"a":1 x}|
                                                          ^
        """
        left = bytes(self.buffer[: self.position])
        right = bytes(self.buffer[self.position : self.position + self.size])

        if len(left) > SNAPSHOT_WIDTH:
            left = b"..." + left[-SNAPSHOT_WIDTH:]
        if len(right) > SNAPSHOT_WIDTH:
            right = right[:SNAPSHOT_WIDTH] + b"..."

        prefix = "JsonReader: pos=%d (%d:%d) avail=%d buffer=|%s" % (
            self.position,
            self.line,
            self.col,
            self.size,
            _printable(left),
        )

        return prefix + _printable(right) + "|\n" + " " * len(prefix) + "^"


def _printable(data: bytes) -> str:
    text = data.decode("utf-8", errors="replace")
    return text.replace("\t", "\\t").replace("\r", "\\r").replace("\n", "\\n")
