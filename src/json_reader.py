"""Chunked JSON reader module.

This module reads JSON files of any size in 64 KiB chunks, without ever loading
the whole document in memory. The document is seen as a sequence of tokens
(strings, numbers, literals, punctuation); insignificant whitespace is skipped.

At each step the ``is_*`` methods tell what the current token is, and the
``get_*`` methods check the current token, return its value and move on to the
next one, raising JsonParseError if the token is not the one requested.

Two deviations from RFC 4627 are accepted on purpose: a comma right before a
closing ``}`` or ``]``, and numbers with leading zeros (``01`` reads as ``1``).
Literals are matched without checking what follows them (``trueX`` reads
``true`` and leaves ``X``).

Example:
    >>> with JsonReader("records.json") as reader:
    ...     for record in reader.iter_array():
    ...         handle(record)
    ...     reader.get_eof()
"""

import io
from enum import Enum, IntEnum
from typing import Any, Callable, Iterator, NoReturn, Optional, Union

from chunk_source import ChunkSource, SourceType
from config import logger, settings
from cursor import Cursor

# Strings longer than this are rejected instead of being buffered.
STRING_MAX_LEN = 1024 * 1024

# Bytes buffered before matching a number, and the longest accepted literal.
NUMBER_MAX_LEN = 100

QUOTE = ord('"')
BACKSLASH = ord("\\")
COMMA = ord(",")
COLON = ord(":")
LBRACE = ord("{")
RBRACE = ord("}")
LBRACKET = ord("[")
RBRACKET = ord("]")
MINUS = ord("-")
PLUS = ord("+")
DOT = ord(".")
DIGITS = frozenset(b"0123456789")
EXPONENT = frozenset(b"eE")
HEX_DIGITS = frozenset(b"0123456789abcdefABCDEF")
SIMPLE_ESCAPES = frozenset(b'"\\/bfnrt')

UNESCAPE = {
    '"': '"',
    "\\": "\\",
    "/": "/",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
}

ObjectPairsHook = Optional[Callable[[list[tuple[str, Any]]], Any]]


class JsonReaderError(ValueError):
    """Base class for errors raised by the chunked JSON reader."""

    pass


class ParseErrorKind(Enum):
    """Category of a parse failure."""

    UNEXPECTED_CHAR = "unexpected character"
    EXPECTED_TOKEN = "expected token"
    MALFORMED_NUMBER = "malformed number"
    MALFORMED_STRING = "malformed string"
    STRING_TOO_LONG = "string too long"
    UNEXPECTED_EOF = "unexpected end of file"
    TRAILING_GARBAGE = "trailing garbage"
    TOO_DEEP = "nesting too deep"


class JsonParseError(JsonReaderError):
    """Error raised when the document does not match what was asked for.

    Args:
        message: Description of the failure.
        line: 1-based line of the offending byte.
        column: 1-based column of the offending byte.
        kind: Category of the failure.
        source: Description of the input (``file "x.json"``, ``stream data``).
        context: Dump of the reader buffer around the offending byte.

    Note:
        ``str(error)`` reads ``JSON error in <source> line L, column C: <message>.``
    """

    def __init__(
        self,
        message: str,
        line: int = 0,
        column: int = 0,
        kind: ParseErrorKind = ParseErrorKind.UNEXPECTED_CHAR,
        source: str = "stream data",
        context: str = "",
    ) -> None:
        self.message = message
        self.line = line
        self.column = column
        self.kind = kind
        self.source = source
        self.context = context
        super().__init__(
            f"JSON error in {source} line {line}, column {column}: {message}."
        )


class TokenType(Enum):
    """Classification of the token starting at the cursor."""

    STRING = "string"
    NUMBER = "number"
    OBJECT = "object"
    ARRAY = "array"
    BOOL = "bool"
    NULL = "null"
    INVALID = "invalid"
    EOF = "eof"


class ScanStatus(IntEnum):
    """Outcome of scanning a quoted string in the buffer.

    Attributes:
        COMPLETE: The closing quote was found.
        INCOMPLETE: The buffer ends before the closing quote.
        BAD_ESCAPE: A backslash is followed by an invalid escape.
        CONTROL_CHAR: An unescaped control character was found.
    """

    COMPLETE = 1
    INCOMPLETE = 2
    BAD_ESCAPE = 3
    CONTROL_CHAR = 4


def _token_type(byte: Optional[int]) -> TokenType:
    """Classify a value from its first byte."""
    if byte is None:
        return TokenType.EOF

    match chr(byte):
        case '"':
            return TokenType.STRING
        case "-" | "0" | "1" | "2" | "3" | "4" | "5" | "6" | "7" | "8" | "9":
            return TokenType.NUMBER
        case "{":
            return TokenType.OBJECT
        case "[":
            return TokenType.ARRAY
        case "t" | "f":
            return TokenType.BOOL
        case "n":
            return TokenType.NULL
        case _:
            return TokenType.INVALID


def _skip_digits(buffer: bytearray, index: int, end: int) -> int:
    while index < end and buffer[index] in DIGITS:
        index += 1

    return index


def _scan_number(buffer: bytearray, start: int, end: int) -> int:
    """Return the length of the number starting at ``start`` (0 if none).

    Matches ``-?[0-9]+(\\.[0-9]+)?([eE][+-]?[0-9]+)?``. A fraction or an
    exponent without digits is not part of the number.
    """
    index = start
    if index < end and buffer[index] == MINUS:
        index += 1

    digits_end = _skip_digits(buffer, index, end)
    if digits_end == index:
        return 0
    index = digits_end

    if index < end and buffer[index] == DOT:
        digits_end = _skip_digits(buffer, index + 1, end)
        if digits_end > index + 1:
            index = digits_end

    if index < end and buffer[index] in EXPONENT:
        exponent = index + 1
        if exponent < end and buffer[exponent] in (PLUS, MINUS):
            exponent += 1
        digits_end = _skip_digits(buffer, exponent, end)
        if digits_end > exponent:
            index = digits_end

    return index - start


def _scan_string(buffer: bytearray, index: int, end: int) -> tuple[ScanStatus, int]:
    """Scan the body of a quoted string, from ``index`` up to ``end``.

    Returns:
        tuple[ScanStatus, int]: The status and an offset in the buffer: just
            after the closing quote when complete, where to resume scanning
            when incomplete, or the offending byte otherwise.
    """
    while index < end:
        byte = buffer[index]
        if byte == QUOTE:
            return ScanStatus.COMPLETE, index + 1

        if byte == BACKSLASH:
            if index + 1 >= end:
                return ScanStatus.INCOMPLETE, index

            escape = buffer[index + 1]
            if escape in SIMPLE_ESCAPES:
                index += 2
                continue

            if escape == ord("u"):
                hex_end = min(index + 6, end)
                if not all(b in HEX_DIGITS for b in buffer[index + 2 : hex_end]):
                    return ScanStatus.BAD_ESCAPE, index
                if hex_end < index + 6:
                    return ScanStatus.INCOMPLETE, index
                index += 6
                continue

            return ScanStatus.BAD_ESCAPE, index

        if byte < 0x20:
            return ScanStatus.CONTROL_CHAR, index

        index += 1

    return ScanStatus.INCOMPLETE, index


def _unescape(raw: bytes) -> str:
    """Decode the UTF-8 body of a scanned string and resolve its escapes.

    Raises:
        ValueError: On invalid UTF-8 or on a surrogate that is not part of a
            high/low pair.
    """
    text = raw.decode("utf-8")
    if "\\" not in text:
        return text

    parts = []
    index = 0
    while True:
        slash = text.find("\\", index)
        if slash < 0:
            parts.append(text[index:])
            break

        parts.append(text[index:slash])
        escape = text[slash + 1]
        if escape != "u":
            parts.append(UNESCAPE[escape])
            index = slash + 2
            continue

        code = int(text[slash + 2 : slash + 6], 16)
        index = slash + 6
        if 0xD800 <= code <= 0xDBFF:
            if not text.startswith("\\u", index):
                raise ValueError("unpaired high surrogate")
            low = int(text[index + 2 : index + 6], 16)
            if not 0xDC00 <= low <= 0xDFFF:
                raise ValueError("unpaired high surrogate")
            code = 0x10000 + ((code - 0xD800) << 10) + (low - 0xDC00)
            index += 6
        elif 0xDC00 <= code <= 0xDFFF:
            raise ValueError("unpaired low surrogate")

        parts.append(chr(code))

    return "".join(parts)


class JsonReader:
    """Pull parser reading a JSON document chunk by chunk.

    Args:
        source: Path of the file to read, or an open binary stream. The reader
            owns the stream and closes it once: at end of stream, on the first
            parse error, or when the reader is closed, whichever comes first.
        object_pairs_hook: Called with the list of ``(key, value)`` pairs of
            each object, in document order. Its result is used instead of a
            ``dict``.
        max_depth: Maximum number of nested objects/arrays. Defaults to the
            ``max_depth`` setting.

    Attributes:
        cursor (Cursor): Buffer, position and line/column of the reader.

    Raises:
        FileNotFoundError: If ``source`` is a path that does not exist.
    """

    def __init__(
        self,
        source: SourceType,
        object_pairs_hook: ObjectPairsHook = None,
        max_depth: Optional[int] = None,
    ) -> None:
        self.object_pairs_hook = object_pairs_hook
        self.max_depth = settings.max_depth if max_depth is None else max_depth
        self.cursor = Cursor(ChunkSource(source))
        try:
            self.cursor.skip_whitespace()
        except Exception:
            self.cursor.close()
            raise

    @classmethod
    def from_string(cls, data: Union[str, bytes], **kwargs: Any) -> "JsonReader":
        """Create a reader over an in-memory document."""
        if isinstance(data, str):
            data = data.encode("utf-8")

        return cls(io.BytesIO(data), **kwargs)

    def __enter__(self) -> "JsonReader":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    def __del__(self) -> None:
        cursor = getattr(self, "cursor", None)
        if cursor is not None:
            cursor.close()

    def close(self) -> None:
        """Close the underlying stream. Safe to call more than once."""
        self.cursor.close()

    @property
    def line(self) -> int:
        return self.cursor.line

    @property
    def column(self) -> int:
        return self.cursor.col

    def debug(self) -> str:
        """Return a dump of the buffer around the current position."""
        return self.cursor.snapshot()

    def peek_token(self) -> TokenType:
        """Classify the current token without consuming it."""
        return _token_type(self.cursor.peek())

    def is_token(self, token: str) -> bool:
        """Test whether the current token is ``token``.

        Args:
            token: The token to test: ``{``, ``}``, ``[``, ``]``, ``:``, ``,``,
                ``"``, ``false``, ``true`` or ``null``.
        """
        return self.cursor.startswith(token.encode("utf-8"))

    def is_not_token(self, token: str) -> bool:
        return not self.is_token(token)

    def get_token(self, token: str) -> str:
        """Check that the current token is ``token`` and move past it.

        Returns:
            str: The token itself.

        Raises:
            JsonParseError: If the document does not continue with ``token``.
        """
        data = token.encode("utf-8")
        if self.cursor.startswith(data):
            self.cursor.advance(len(data))
            return token

        self._expected(f'expected "{token}"')

    def is_null(self) -> bool:
        return self.is_token("null")

    def get_null(self) -> None:
        self.get_token("null")
        return None

    def is_bool(self) -> bool:
        return self.is_token("true") or self.is_token("false")

    def get_bool(self) -> bool:
        """Read ``true`` or ``false``."""
        if self.cursor.startswith(b"true"):
            self.cursor.advance(4)
            return True

        if self.cursor.startswith(b"false"):
            self.cursor.advance(5)
            return False

        self._expected('expected "true" or "false"')

    def is_number(self) -> bool:
        return self._match_number() != 0

    def get_number(self) -> Union[int, float]:
        """Read a number.

        Returns:
            Union[int, float]: An ``int`` when the literal has neither fraction
                nor exponent, a ``float`` otherwise.

        Raises:
            JsonParseError: If the current token is not a number, or if the
                literal is longer than NUMBER_MAX_LEN bytes.
        """
        length = self._match_number()
        if length == 0:
            if self.cursor.size == 0:
                self._error(
                    "expected number, unexpected end of file",
                    ParseErrorKind.UNEXPECTED_EOF,
                )
            self._error("expected number", ParseErrorKind.MALFORMED_NUMBER)
        if length > NUMBER_MAX_LEN:
            self._error(
                f"number exceeds {NUMBER_MAX_LEN} bytes",
                ParseErrorKind.MALFORMED_NUMBER,
            )

        start = self.cursor.position
        literal = self.cursor.buffer[start : start + length].decode("ascii")
        self.cursor.advance(length)

        if "." in literal or "e" in literal or "E" in literal:
            return float(literal)

        return int(literal)

    def is_string(self) -> bool:
        return self.cursor.peek() == QUOTE

    def get_string(self) -> str:
        """Read a string, loading more chunks until its closing quote is found.

        Raises:
            JsonParseError: If the current token is not a string, if the string
                is not closed before the end of the stream, contains a bad
                escape sequence or a raw control character, or is longer than
                STRING_MAX_LEN bytes.
        """
        cursor = self.cursor
        if cursor.peek() != QUOTE:
            self._expected("expected string")

        # offset from the opening quote where scanning resumes
        scanned = 1
        while True:
            start = cursor.position
            status, index = _scan_string(cursor.buffer, start + scanned, start + cursor.size)
            if status == ScanStatus.COMPLETE:
                break
            # strings hold no raw line feed, so the offending byte is on this line
            if status == ScanStatus.BAD_ESCAPE:
                self._error(
                    "bad escape sequence in string",
                    ParseErrorKind.MALFORMED_STRING,
                    offset=index - start,
                )
            if status == ScanStatus.CONTROL_CHAR:
                self._error(
                    "invalid control character in string",
                    ParseErrorKind.MALFORMED_STRING,
                    offset=index - start,
                )

            scanned = index - start
            if cursor.size >= STRING_MAX_LEN:
                self._error(
                    f"string exceeds {STRING_MAX_LEN} bytes",
                    ParseErrorKind.STRING_TOO_LONG,
                )
            if not cursor.load_chunk():
                self._error(
                    "invalid string, missing closing quote",
                    ParseErrorKind.MALFORMED_STRING,
                )

        start = cursor.position
        try:
            value = _unescape(bytes(cursor.buffer[start + 1 : index - 1]))
        except ValueError as e:
            self._error(f"invalid JSON string ({e})", ParseErrorKind.MALFORMED_STRING)

        cursor.advance(index - start)

        return value

    def is_value(self) -> bool:
        """Test whether the current byte can start a value.

        Only the first byte is checked: ``nul`` is a value start but
        ``get_value()`` will fail on it.
        """
        return self.peek_token() not in (TokenType.INVALID, TokenType.EOF)

    def get_value(self) -> Any:
        """Read whatever value starts at the current position.

        Raises:
            JsonParseError: At end of stream, or if the current byte does not
                start a value.
        """
        match self.peek_token():
            case TokenType.STRING:
                return self.get_string()
            case TokenType.NUMBER:
                return self.get_number()
            case TokenType.OBJECT:
                return self.get_object()
            case TokenType.ARRAY:
                return self.get_array()
            case TokenType.BOOL:
                return self.get_bool()
            case TokenType.NULL:
                return self.get_null()
            case TokenType.EOF:
                self._error("unexpected end of file", ParseErrorKind.UNEXPECTED_EOF)
            case _:
                self._error(
                    f'unexpected char "{self._current_char()}"',
                    ParseErrorKind.UNEXPECTED_CHAR,
                )

    def is_object(self) -> bool:
        return self.cursor.peek() == LBRACE

    def get_object(self) -> Any:
        """Read an object.

        Returns:
            Any: A ``dict`` in document order (the last value wins for
                duplicate keys), or the result of ``object_pairs_hook``.
        """
        cursor = self.cursor
        self._enter(LBRACE)

        pairs = []
        while cursor.size != 0 and cursor.peek() != RBRACE:
            key = self.get_string()
            self._get_char(COLON)
            pairs.append((key, self.get_value()))
            if not self._next_item(RBRACE):
                self._expected('expected "," or "}" (malformed object?)')

        self._leave(RBRACE)

        if self.object_pairs_hook is not None:
            return self.object_pairs_hook(pairs)

        return dict(pairs)

    def iter_object(self) -> Iterator[tuple[str, Any]]:
        """Yield the ``(key, value)`` pairs of an object one at a time.

        The opening brace is checked when the first pair is requested.
        """
        cursor = self.cursor
        self._enter(LBRACE)

        while cursor.size != 0 and cursor.peek() != RBRACE:
            key = self.get_string()
            self._get_char(COLON)
            yield key, self.get_value()
            if not self._next_item(RBRACE):
                self._expected('expected "," or "}" (malformed object?)')

        self._leave(RBRACE)

    def is_array(self) -> bool:
        return self.cursor.peek() == LBRACKET

    def get_array(self) -> list[Any]:
        cursor = self.cursor
        self._enter(LBRACKET)

        result = []
        while cursor.size != 0 and cursor.peek() != RBRACKET:
            result.append(self.get_value())
            if not self._next_item(RBRACKET):
                self._expected('expected "," or "]" (malformed array?)')

        self._leave(RBRACKET)

        return result

    def iter_array(self) -> Iterator[Any]:
        """Yield the elements of an array one at a time.

        Only one element is held in memory at a time, which is how large
        files made of one top-level array are meant to be read. The opening
        bracket is checked when the first element is requested.
        """
        cursor = self.cursor
        self._enter(LBRACKET)

        while cursor.size != 0 and cursor.peek() != RBRACKET:
            yield self.get_value()
            if not self._next_item(RBRACKET):
                self._expected('expected "," or "]" (malformed array?)')

        self._leave(RBRACKET)

    def is_eof(self) -> bool:
        """Test whether only whitespace remains."""
        if self.cursor.size == 0:
            self.cursor.skip_whitespace()

        return self.cursor.size == 0

    def get_eof(self) -> None:
        """Check that only whitespace remains.

        Raises:
            JsonParseError: If unconsumed tokens remain.
        """
        if not self.is_eof():
            self._error("expected EOF (garbage at end of file?)", ParseErrorKind.TRAILING_GARBAGE)

    def _match_number(self) -> int:
        cursor = self.cursor
        if cursor.size <= NUMBER_MAX_LEN:
            cursor.ensure(NUMBER_MAX_LEN + 1)

        # one byte past the limit is enough to detect an oversized literal
        end = cursor.position + min(cursor.size, NUMBER_MAX_LEN + 1)

        return _scan_number(cursor.buffer, cursor.position, end)

    def _get_char(self, char: int) -> None:
        if self.cursor.peek() == char:
            self.cursor.advance(1)
            return

        self._expected(f'expected "{chr(char)}"')

    def _next_item(self, closing: int) -> bool:
        """Consume the comma after an item; tell whether the container goes on."""
        byte = self.cursor.peek()
        if byte == COMMA:
            self.cursor.advance(1)
            return True

        return byte == closing

    def _enter(self, opening: int) -> None:
        if self.cursor.depth >= self.max_depth:
            self._error(
                f"maximum nesting depth of {self.max_depth} exceeded",
                ParseErrorKind.TOO_DEEP,
            )

        self._get_char(opening)
        self.cursor.depth += 1

    def _leave(self, closing: int) -> None:
        self._get_char(closing)
        self.cursor.depth -= 1

    def _current_char(self) -> str:
        cursor = self.cursor
        cursor.ensure(4)
        data = bytes(cursor.buffer[cursor.position : cursor.position + 4])

        return data.decode("utf-8", errors="replace")[:1]

    def _expected(self, message: str) -> NoReturn:
        if self.cursor.size == 0:
            self._error(f"{message}, unexpected end of file", ParseErrorKind.UNEXPECTED_EOF)

        self._error(message, ParseErrorKind.EXPECTED_TOKEN)

    def _error(self, message: str, kind: ParseErrorKind, offset: int = 0) -> NoReturn:
        """Close the stream and raise a JsonParseError.

        The error is reported ``offset`` bytes after the current position,
        which must lie on the current line.
        """
        cursor = self.cursor
        column = cursor.col + offset
        error = JsonParseError(
            message,
            line=cursor.line,
            column=column,
            kind=kind,
            source=cursor.source.name,
            context=cursor.snapshot(),
        )
        logger.error(
            {"event": "parse error", "kind": kind.name, "error": str(error)},
            extra={"json_line": cursor.line, "json_column": column},
        )
        cursor.close()

        raise error
