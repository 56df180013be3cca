"""Rules system for matching structured records."""

from .models import FieldMatcher, Identifier, Pattern, PatternKind, Rule
from .parser import RuleParseError, load_rule, load_rule_file, parse_condition, parse_string_pattern

__all__ = [
    "FieldMatcher",
    "Identifier",
    "Pattern",
    "PatternKind",
    "Rule",
    "RuleParseError",
    "load_rule",
    "load_rule_file",
    "parse_condition",
    "parse_string_pattern",
]
