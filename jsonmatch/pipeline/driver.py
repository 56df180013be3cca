"""Driver loop orchestration.

Loads rules, builds the record source and match sink, then evaluates every
record against every valid rule:

Load Rules → Open Input → Create Outputs → Match Records
"""

import logging
from pathlib import Path
from typing import Optional

from jsonmatch.config import PipelineSettings, get_settings
from jsonmatch.models import RuleEntry, RunStats, ValidationResult
from jsonmatch.pipeline.rules import RuleParseError, load_rule_file
from jsonmatch.pipeline.sink import MatchSink, SinkOpenError
from jsonmatch.pipeline.source import RecordSource, SourceOpenError

logger = logging.getLogger(__name__)


class StartupError(Exception):
    """Raised when the run cannot start; nothing has been processed."""


class RuleNameError(StartupError):
    """A rule path has no usable filename."""


class NoValidRulesError(StartupError):
    """Rules were requested but none of them loaded and validated."""

    def __init__(self, paths: list[Path]):
        self.paths = paths
        attempted = ", ".join(str(p) for p in paths)
        super().__init__(f"no rule could be validated (attempted: {attempted})")


class InputOpenError(StartupError):
    """The first input file could not be opened."""


class OutputSetupError(StartupError):
    """An output file could not be created."""

    def __init__(self, error: SinkOpenError):
        self.error = error
        super().__init__(error.message)


def rule_name_for(path: Path) -> str:
    """Derive a rule's name from its source filename.

    Raises:
        RuleNameError: If the path has no filename or it is not displayable
    """
    name = path.name
    if not name or name in (".", ".."):
        raise RuleNameError(f"rule path {path} has no filename")
    try:
        name.encode("utf-8")
    except UnicodeEncodeError as e:
        raise RuleNameError(f"rule path {path!r} has an undisplayable filename") from e
    return name


def load_rule_entry(path: Path) -> RuleEntry:
    """Load one rule file; failures produce an entry without a rule."""
    name = rule_name_for(path)
    try:
        rule = load_rule_file(path)
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Unable to read rule from %s: %s", path, e)
        return RuleEntry(name=name, path=path)
    except RuleParseError as e:
        logger.warning("Unable to load rule from %s: %s", path, e)
        return RuleEntry(name=name, path=path)

    if not rule.validate():
        logger.warning("Rule from %s failed validation against its examples", path)
        return RuleEntry(name=name, path=path)

    logger.debug("Loaded rule %s", name)
    return RuleEntry(name=name, path=path, rule=rule)


def load_rules(paths: list[Path]) -> list[RuleEntry]:
    """Load every rule path in order, tracking validity per rule."""
    entries = [load_rule_entry(path) for path in paths]
    logger.info(
        "Loaded %d valid rule(s) out of %d",
        sum(1 for e in entries if e.is_valid),
        len(entries),
    )
    return entries


def validated_entries(entries: list[RuleEntry]) -> list[RuleEntry]:
    return [entry for entry in entries if entry.is_valid]


def validation_report(entries: list[RuleEntry]) -> list[ValidationResult]:
    """Build one validate-only row per attempted rule, in load order."""
    return [
        ValidationResult(name=entry.name, path=entry.path, is_valid=entry.is_valid)
        for entry in entries
    ]


def check_rules(entries: list[RuleEntry]) -> list[RuleEntry]:
    """Return the valid entries, failing if rules were requested but none are valid.

    Raises:
        NoValidRulesError: If entries is non-empty but none are valid
    """
    valid = validated_entries(entries)
    if entries and not valid:
        raise NoValidRulesError([entry.path for entry in entries])
    if not entries:
        logger.warning("No rules supplied, no record will match")
    return valid


def build_source(
    input_paths: Optional[list[Path]], settings: Optional[PipelineSettings] = None
) -> RecordSource:
    """Open the input files (stack order) or fall back to stdin.

    Raises:
        InputOpenError: If the first input file cannot be opened
    """
    settings = settings or get_settings()
    if not input_paths:
        return RecordSource.interactive(settings=settings.source)
    try:
        return RecordSource.from_paths(input_paths, settings=settings.source)
    except SourceOpenError as e:
        raise InputOpenError(str(e)) from e


def build_sink(
    output: Optional[Path],
    entries: list[RuleEntry],
    settings: Optional[PipelineSettings] = None,
) -> MatchSink:
    """Create the match sink, pre-creating one file per valid rule in directory mode.

    Raises:
        OutputSetupError: If an output file cannot be created
    """
    settings = settings or get_settings()
    names = [entry.name for entry in validated_entries(entries)]
    try:
        return MatchSink.for_output(output, names, settings=settings.sink)
    except SinkOpenError as e:
        raise OutputSetupError(e) from e


def run_matching(entries: list[RuleEntry], source: RecordSource, sink: MatchSink) -> RunStats:
    """Drive every record through every valid rule and dispatch matches.

    Per-record read and decode errors are logged and skipped. A record too
    deeply nested to evaluate is counted as an error and skipped as well.

    Raises:
        SinkWriteError: If a match cannot be written
    """
    active = validated_entries(entries)
    stats = RunStats()

    for item in source:
        if not item.ok:
            stats.record_errors += 1
            logger.error("%s", item.error)
            continue

        stats.records_read += 1
        for entry in active:
            assert entry.rule is not None
            try:
                if entry.rule.matches(item.record):
                    sink.write(item.record, entry.name)
                    stats.record_match(entry.name)
            except RecursionError:
                stats.record_errors += 1
                logger.error(
                    "Record %d is nested too deeply to process for rule %s, skipping it",
                    stats.records_read,
                    entry.name,
                )
                break

    logger.info(
        "Completed: %d record(s) read, %d error(s), %d match(es)",
        stats.records_read,
        stats.record_errors,
        stats.total_matches,
    )
    return stats


def run_pipeline(
    rule_paths: list[Path],
    input_paths: Optional[list[Path]] = None,
    output: Optional[Path] = None,
    settings: Optional[PipelineSettings] = None,
) -> RunStats:
    """Run the full pipeline.

    Args:
        rule_paths: Rule files to load
        input_paths: Input files (stack order); stdin when empty or None
        output: Output file or directory; stdout when None
        settings: Pipeline settings (defaults to the global settings)

    Returns:
        Counters for the run

    Raises:
        StartupError: If rules, inputs or outputs cannot be set up
        SinkWriteError: If a match cannot be written
    """
    settings = settings or get_settings()

    logger.info("Stage 1/3: Loading rules...")
    entries = load_rules(rule_paths)
    check_rules(entries)

    logger.info("Stage 2/3: Opening input and output...")
    with build_source(input_paths, settings) as source:
        with build_sink(output, entries, settings) as sink:
            logger.info("Stage 3/3: Matching records...")
            return run_matching(entries, source, sink)
