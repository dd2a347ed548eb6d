"""Chunk source module.

Wraps the byte stream read by the JSON reader. The source owns its handle:
it is closed once, either when the end of the stream is reached, when a read
fails, or when the owner closes it explicitly.
"""

import os
from typing import BinaryIO, Union

from config import logger

# 64 KiB, the usual OS I/O block size.
CHUNK_SIZE = 64 * 1024

SourceType = Union[str, os.PathLike, BinaryIO]


class ChunkSource:
    """Produces successive fixed-size blocks of bytes from a file or stream.

    Args:
        source: Path of a file to open in binary mode, or an already open
            binary stream (anything with a ``read(n)`` method returning bytes).
            In both cases the source takes ownership of the handle.

    Attributes:
        name (str): Human readable description of the source, used in error
            messages (``file "data.json"`` or ``stream data``).
    """

    def __init__(self, source: SourceType) -> None:
        if isinstance(source, (str, os.PathLike)):
            path = os.fspath(source)
            self._stream = open(path, "rb")
            self.name = f'file "{os.path.basename(path)}"'
        elif hasattr(source, "read"):
            self._stream = source
            stream_name = getattr(source, "name", None)
            if isinstance(stream_name, str) and stream_name:
                self.name = f'file "{os.path.basename(stream_name)}"'
            else:
                self.name = "stream data"
        else:
            raise TypeError(
                f"expected a path or a binary stream, got {type(source).__name__}"
            )

        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def read_chunk(self, size: int = CHUNK_SIZE) -> bytes:
        """Read the next block of at most ``size`` bytes.

        Returns:
            bytes: The block read, or ``b""`` once the stream is exhausted,
                closed, or failed to read. An empty read closes the source.

        Raises:
            TypeError: If the stream produces ``str`` instead of ``bytes``.
        """
        if self._closed:
            return b""

        try:
            chunk = self._stream.read(size)
        except OSError as e:
            logger.error({"event": "read failed", "source": self.name, "error": str(e)})
            self.close()
            return b""

        if isinstance(chunk, str):
            self.close()
            raise TypeError(f"{self.name} is opened in text mode, expected bytes")

        if not chunk:
            logger.debug({"event": "end of stream", "source": self.name})
            self.close()
            return b""

        return chunk

    def close(self) -> None:
        """Close the underlying handle. Calling it again does nothing."""
        if self._closed:
            return

        self._closed = True
        self._stream.close()
        logger.debug({"event": "closed", "source": self.name})
