"""Record source stage.

Produces one decoded JSON value per input line, either from an interactive
stream (stdin) or from a chain of files. Files are consumed in stack order:
the last path supplied is read first. Failures are yielded as items rather
than raised, so the caller decides whether to continue.
"""

import json
import logging
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import IO, Any, Callable, Iterator, Optional, Union

from jsonmatch.config import SourceSettings, get_settings

logger = logging.getLogger(__name__)

STDIN_NAME = "<stdin>"


class RecordSourceError(Exception):
    """Base class for errors produced while reading records."""

    def __init__(self, message: str, path: str, line_number: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.path = path
        self.line_number = line_number

    def __str__(self) -> str:
        location = self.path if self.line_number is None else f"{self.path}:{self.line_number}"
        return f"{location}: {self.message}"


class RecordDecodeError(RecordSourceError):
    """A line could not be decoded as a JSON value."""


class SourceOpenError(RecordSourceError):
    """An input file could not be opened."""


class SourceReadError(RecordSourceError):
    """A line could not be read from the input stream."""


class SourceKind(Enum):
    """Physical kinds of record input."""

    INTERACTIVE = "interactive"
    FILE_CHAIN = "file_chain"


@dataclass
class SourceItem:
    """One item yielded by a RecordSource: a record or an error, never both."""

    record: Any = None
    error: Optional[RecordSourceError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-standard JSON constant {name}")


def decode_line(line: str, path: str, line_number: int) -> SourceItem:
    """Decode one input line into a SourceItem.

    Only the trailing line terminator is stripped. Blank lines are reported
    as decode errors.
    """
    text = line.rstrip("\r\n")
    if not text.strip():
        return SourceItem(error=RecordDecodeError("blank line", path, line_number))
    try:
        return SourceItem(record=json.loads(text, parse_constant=_reject_constant))
    except ValueError as e:
        return SourceItem(error=RecordDecodeError(f"invalid JSON: {e}", path, line_number))
    except RecursionError:
        return SourceItem(error=RecordDecodeError("invalid JSON: nesting too deep", path, line_number))


def _open_input(path: Path) -> IO[bytes]:
    """Open an input file in binary mode; lines are decoded one at a time."""
    try:
        return open(path, "rb")
    except OSError as e:
        raise SourceOpenError(f"unable to open input file: {e.strerror or e}", str(path)) from e


class RecordSource:
    """Lazily yields SourceItems from stdin or a stack of input files.

    At most one file is open at a time. When the current file is exhausted
    (or fails to read) the next pending path is popped from the end of the
    list and opened.
    """

    def __init__(
        self,
        kind: SourceKind,
        *,
        stream: Optional[IO[Any]] = None,
        pending: Optional[list[Path]] = None,
        current: Optional[IO[bytes]] = None,
        current_path: Optional[Path] = None,
        settings: Optional[SourceSettings] = None,
    ):
        self.kind = kind
        self.settings = settings or get_settings().source
        self._stream = stream
        self._pending: list[Path] = list(pending or [])
        self._current = current
        self._current_path = current_path
        self._line_number = 0
        self._done = False
        self._handlers: dict[SourceKind, Callable[[], Optional[SourceItem]]] = {
            SourceKind.INTERACTIVE: self._next_interactive,
            SourceKind.FILE_CHAIN: self._next_from_files,
        }

    @classmethod
    def interactive(
        cls, stream: Optional[IO[Any]] = None, settings: Optional[SourceSettings] = None
    ) -> "RecordSource":
        """Create a source reading from a live stream (binary stdin by default)."""
        return cls(SourceKind.INTERACTIVE, stream=stream or sys.stdin.buffer, settings=settings)

    @classmethod
    def from_paths(
        cls, paths: list[Path], settings: Optional[SourceSettings] = None
    ) -> "RecordSource":
        """Create a file chain source, opening the last path immediately.

        Raises:
            ValueError: If no paths are given
            SourceOpenError: If the first file to read cannot be opened
        """
        if not paths:
            raise ValueError("at least one input path is required")
        settings = settings or get_settings().source
        pending = list(paths)
        first = pending.pop()
        current = _open_input(first)
        logger.debug("Opened input file %s (%d pending)", first, len(pending))
        return cls(
            SourceKind.FILE_CHAIN,
            pending=pending,
            current=current,
            current_path=first,
            settings=settings,
        )

    @property
    def pending(self) -> list[Path]:
        """Paths not yet opened, in the order they were supplied."""
        return list(self._pending)

    @property
    def current_path(self) -> Optional[Path]:
        return self._current_path

    def __iter__(self) -> Iterator[SourceItem]:
        return self

    def __next__(self) -> SourceItem:
        if self._done:
            raise StopIteration
        item = self._handlers[self.kind]()
        if item is None:
            self._done = True
            self.close()
            raise StopIteration
        return item

    def _decode(self, raw: Union[bytes, str], path: str) -> Optional[SourceItem]:
        if isinstance(raw, bytes):
            try:
                line = raw.decode(self.settings.encoding)
            except UnicodeDecodeError as e:
                return SourceItem(
                    error=SourceReadError(
                        f"line is not valid {self.settings.encoding}: {e.reason}",
                        path,
                        self._line_number,
                    )
                )
        else:
            line = raw
        if self.settings.skip_blank_lines and not line.strip():
            return None
        return decode_line(line, path, self._line_number)

    def _next_interactive(self) -> Optional[SourceItem]:
        assert self._stream is not None
        while True:
            self._line_number += 1
            try:
                line = self._stream.readline()
            except (OSError, UnicodeDecodeError) as e:
                return SourceItem(
                    error=SourceReadError(f"read failed: {e}", STDIN_NAME, self._line_number)
                )
            if not line:
                return None
            item = self._decode(line, STDIN_NAME)
            if item is not None:
                return item

    def _read_current_line(self) -> bytes:
        """Read a raw line from the current file; b'' means exhausted or unreadable."""
        if self._current is None:
            return b""
        self._line_number += 1
        try:
            return self._current.readline()
        except OSError as e:
            logger.warning(
                "Read failed in %s at line %d, moving to next input: %s",
                self._current_path,
                self._line_number,
                e,
            )
            return b""

    def _advance_file(self) -> Optional[SourceItem]:
        """Close the current file and open the next pending one.

        Returns an error item if the next file cannot be opened.
        """
        self._close_current()
        path = self._pending.pop()
        try:
            self._current = _open_input(path)
        except SourceOpenError as e:
            return SourceItem(error=e)
        self._current_path = path
        self._line_number = 0
        logger.debug("Opened input file %s (%d pending)", path, len(self._pending))
        return None

    def _next_from_files(self) -> Optional[SourceItem]:
        while True:
            line = self._read_current_line()
            if line:
                item = self._decode(line, str(self._current_path))
                if item is not None:
                    return item
                continue
            if not self._pending:
                return None
            error = self._advance_file()
            if error is not None:
                return error

    def _close_current(self) -> None:
        if self._current is not None:
            self._current.close()
            self._current = None
            self._current_path = None

    def close(self) -> None:
        """Close the open input file, if any. Never closes the interactive stream."""
        self._close_current()

    def __enter__(self) -> "RecordSource":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
