import pytest

from config import logger


class TrickleStream:
    """Binary stream returning at most ``step`` bytes per read.

    Forces the reader to cross a chunk boundary every ``step`` bytes.
    """

    def __init__(self, data: bytes, step: int = 1) -> None:
        self.data = data
        self.step = step
        self.offset = 0
        self.close_calls = 0

    @property
    def closed(self) -> bool:
        return self.close_calls > 0

    def read(self, size: int = -1) -> bytes:
        if self.closed:
            raise ValueError("read of closed stream")

        length = self.step if size < 0 else min(size, self.step)
        chunk = self.data[self.offset : self.offset + length]
        self.offset += len(chunk)
        return chunk

    def close(self) -> None:
        self.close_calls += 1


@pytest.fixture(autouse=True)
def disable_logging():
    logger.disabled = True
    yield
    logger.disabled = False


@pytest.fixture
def trickle():
    """Factory building a TrickleStream over a str or bytes document."""

    def make(data, step: int = 1) -> TrickleStream:
        if isinstance(data, str):
            data = data.encode("utf-8")
        return TrickleStream(data, step)

    return make
