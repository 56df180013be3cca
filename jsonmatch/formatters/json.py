"""JSON formatters for matched records and validation reports."""

import json
from typing import Any

from jsonmatch.config import SinkSettings
from jsonmatch.models import ValidationResult


def format_record(record: Any, settings: SinkSettings | None = None) -> str:
    """Serialize a record as a single compact JSON line (without the newline).

    Args:
        record: The decoded record
        settings: Sink settings controlling key order and escaping

    Returns:
        JSON-formatted string
    """
    settings = settings or SinkSettings()
    return json.dumps(
        record,
        separators=(",", ":"),
        sort_keys=settings.sort_keys,
        ensure_ascii=settings.ensure_ascii,
    )


def format_validation_report(results: list[ValidationResult], *, pretty: bool = True) -> str:
    """Format a validate-only report as JSON.

    Args:
        results: One result per attempted rule, in load order
        pretty: If True, format with indentation for readability

    Returns:
        JSON-formatted string
    """
    data = {
        "total_rules": len(results),
        "valid_rules": sum(1 for r in results if r.is_valid),
        "rules": [result.model_dump(mode="json") for result in results],
    }

    if pretty:
        return json.dumps(data, indent=2)
    return json.dumps(data)
