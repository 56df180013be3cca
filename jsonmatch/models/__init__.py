"""Models shared across the pipeline."""

from .rule_entry import RuleEntry, RunStats, ValidationResult

__all__ = ["RuleEntry", "RunStats", "ValidationResult"]
