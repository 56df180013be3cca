"""Match sink stage.

Routes a matched record, tagged with the name of the rule it matched, to
stdout, to a single shared file, or to one file per rule inside an output
directory. Output files are created up front, before any record is read.
"""

import logging
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional, TextIO

from jsonmatch.config import SinkSettings, get_settings
from jsonmatch.formatters import format_record

logger = logging.getLogger(__name__)

# Rule name of the single entry in single-file mode; it receives every match.
WILDCARD_RULE = ""


class SinkError(Exception):
    """Base class for match sink errors."""

    def __init__(self, message: str, path: Optional[Path] = None):
        super().__init__(message)
        self.message = message
        self.path = path


class SinkOpenError(SinkError):
    """An output file could not be created."""


class OutputExistsError(SinkOpenError):
    """The output file already exists and overwrite was not requested."""


class OutputParentMissingError(SinkOpenError):
    """The directory that should contain the output file does not exist."""


class OutputOpenError(SinkOpenError):
    """Any other OS-level failure while creating an output file."""


class SinkWriteError(SinkError):
    """Writing a matched record failed."""


class SinkKind(Enum):
    """Physical kinds of match output."""

    INTERACTIVE = "interactive"
    FILE_SET = "file_set"


@dataclass
class OutputTarget:
    """An open output file and the rule name routed to it."""

    rule_name: str
    path: Path
    handle: TextIO


def open_output_file(path: Path, overwrite: bool, encoding: str = "utf-8") -> TextIO:
    """
    Create an output file.

    With overwrite the file is truncated or created; otherwise it must not
    already exist.

    Raises:
        OutputExistsError: If the file exists and overwrite is False
        OutputParentMissingError: If the parent directory does not exist
        OutputOpenError: For any other OS error
    """
    mode = "w" if overwrite else "x"
    try:
        return open(path, mode, encoding=encoding)
    except FileExistsError as e:
        raise OutputExistsError(
            f"output file {path} already exists (use --overwrite to replace it)", path
        ) from e
    except FileNotFoundError as e:
        raise OutputParentMissingError(
            f"cannot create {path}: directory {path.parent} does not exist", path
        ) from e
    except OSError as e:
        raise OutputOpenError(f"cannot create {path}: {e.strerror or e}", path) from e


def _unique(names: list[str]) -> list[str]:
    """Drop duplicate names, keeping first-seen order."""
    seen: set[str] = set()
    unique = []
    for name in names:
        if name not in seen:
            seen.add(name)
            unique.append(name)
    return unique


class MatchSink:
    """Writes matched records, one JSON value per line."""

    def __init__(
        self,
        kind: SinkKind,
        *,
        stream: Optional[TextIO] = None,
        targets: Optional[list[OutputTarget]] = None,
        settings: Optional[SinkSettings] = None,
    ):
        self.kind = kind
        self.settings = settings or get_settings().sink
        self._stream = stream
        self.targets: list[OutputTarget] = list(targets or [])
        self._closed = False
        self._writers: dict[SinkKind, Callable[[str, str], None]] = {
            SinkKind.INTERACTIVE: self._write_interactive,
            SinkKind.FILE_SET: self._write_file_set,
        }

    @classmethod
    def interactive(
        cls, stream: Optional[TextIO] = None, settings: Optional[SinkSettings] = None
    ) -> "MatchSink":
        """Create a sink writing every match to a live stream (stdout by default)."""
        return cls(SinkKind.INTERACTIVE, stream=stream or sys.stdout, settings=settings)

    @classmethod
    def single_file(cls, path: Path, settings: Optional[SinkSettings] = None) -> "MatchSink":
        """Create a sink writing every match to one file."""
        settings = settings or get_settings().sink
        handle = open_output_file(path, settings.overwrite, settings.encoding)
        logger.debug("Opened output file %s", path)
        target = OutputTarget(rule_name=WILDCARD_RULE, path=path, handle=handle)
        return cls(SinkKind.FILE_SET, targets=[target], settings=settings)

    @classmethod
    def per_rule(
        cls, directory: Path, rule_names: list[str], settings: Optional[SinkSettings] = None
    ) -> "MatchSink":
        """Create a sink with one file per rule name inside a directory.

        Every file is created immediately, so rules that never match still
        leave an empty file behind. Rules sharing a name share a file.
        """
        settings = settings or get_settings().sink
        targets: list[OutputTarget] = []
        try:
            for name in _unique(rule_names):
                path = directory / name
                handle = open_output_file(path, settings.overwrite, settings.encoding)
                targets.append(OutputTarget(rule_name=name, path=path, handle=handle))
        except SinkOpenError:
            for target in targets:
                target.handle.close()
            raise
        logger.debug("Opened %d output file(s) in %s", len(targets), directory)
        return cls(SinkKind.FILE_SET, targets=targets, settings=settings)

    @classmethod
    def for_output(
        cls,
        output: Optional[Path],
        rule_names: list[str],
        settings: Optional[SinkSettings] = None,
    ) -> "MatchSink":
        """Pick the sink for an output target.

        No target means stdout, an existing directory means one file per
        rule, anything else is a single file.
        """
        if output is None:
            return cls.interactive(settings=settings)
        if output.is_dir():
            return cls.per_rule(output, rule_names, settings=settings)
        return cls.single_file(output, settings=settings)

    def write(self, record: Any, rule_name: str) -> None:
        """
        Append a matched record to its destination.

        Raises:
            SinkWriteError: If the write fails
        """
        line = format_record(record, self.settings)
        self._writers[self.kind](line, rule_name)

    def _write_interactive(self, line: str, rule_name: str) -> None:
        assert self._stream is not None
        self._emit(self._stream, line, None)

    def _write_file_set(self, line: str, rule_name: str) -> None:
        if len(self.targets) == 1:
            target = self.targets[0]
            self._emit(target.handle, line, target.path)
            return
        for target in self.targets:
            if target.rule_name == rule_name:
                self._emit(target.handle, line, target.path)
                return
        logger.warning("No output file for rule %s, dropping match", rule_name)

    def _emit(self, handle: TextIO, line: str, path: Optional[Path]) -> None:
        try:
            handle.write(line + "\n")
            if self.settings.flush_each_record:
                handle.flush()
        except (OSError, ValueError) as e:
            where = path if path is not None else "output stream"
            raise SinkWriteError(f"failed to write match to {where}: {e}", path) from e

    def close(self) -> None:
        """Flush the stream or close every output file. Safe to call twice.

        Every file is closed even if an earlier one fails.

        Raises:
            SinkWriteError: For the first flush or close that failed
        """
        if self._closed:
            return
        self._closed = True
        failure: Optional[SinkWriteError] = None
        if self._stream is not None:
            try:
                self._stream.flush()
            except (OSError, ValueError) as e:
                failure = SinkWriteError(f"failed to flush output stream: {e}")
        for target in self.targets:
            try:
                target.handle.close()
            except OSError as e:
                if failure is None:
                    failure = SinkWriteError(f"failed to close {target.path}: {e}", target.path)
        if failure is not None:
            raise failure

    def __enter__(self) -> "MatchSink":
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        if exc_type is None:
            self.close()
            return
        try:
            self.close()
        except SinkWriteError as e:
            logger.error("%s", e.message)
