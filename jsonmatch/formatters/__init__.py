"""Output formatters for jsonmatch."""

from .json import format_record, format_validation_report

__all__ = ["format_record", "format_validation_report"]
