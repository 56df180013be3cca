"""Parser for YAML detection rules."""

import re
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

from .models import (
    And,
    Condition,
    FieldMatcher,
    Identifier,
    IdentifierRef,
    Not,
    Or,
    Pattern,
    PatternKind,
    Rule,
)


class RuleParseError(Exception):
    """Raised when a rule cannot be parsed."""

    pass


_COMPARISON_PREFIXES = [
    (">=", PatternKind.GREATER_EQUAL),
    ("<=", PatternKind.LESS_EQUAL),
    (">", PatternKind.GREATER),
    ("<", PatternKind.LESS),
]

_TOKEN_RE = re.compile(r"\s*(?:(\()|(\))|([A-Za-z_][A-Za-z0-9_\-]*))")

_KEYWORDS = {"and", "or", "not"}


def _parse_comparison(text: str) -> Pattern | None:
    """Parse '>5', '<=2.5' style numeric comparisons."""
    for prefix, kind in _COMPARISON_PREFIXES:
        if text.startswith(prefix):
            try:
                number = float(text[len(prefix) :])
            except ValueError:
                return None
            return Pattern(kind=kind, value=number)
    return None


def _compile_regex(expression: str, insensitive: bool) -> re.Pattern:
    try:
        return re.compile(expression, re.IGNORECASE if insensitive else 0)
    except re.error as e:
        raise RuleParseError(f"Invalid regex '{expression}': {e}")


def _parse_wildcard(text: str, insensitive: bool) -> Pattern:
    """Parse '*x*', 'x*' and '*x' wildcard patterns."""
    leading = text.startswith("*")
    trailing = text.endswith("*") and len(text) > 1
    core = text[1 if leading else 0 : -1 if trailing else None]
    if leading and trailing:
        kind = PatternKind.CONTAINS
    elif leading:
        kind = PatternKind.ENDS_WITH
    elif trailing:
        kind = PatternKind.STARTS_WITH
    else:
        kind = PatternKind.EXACT
    return Pattern(kind=kind, value=core, insensitive=insensitive)


def parse_string_pattern(text: str) -> Pattern:
    """
    Parse a string value from a detection block into a Pattern.

    Format:
        =literal     exact match, no wildcard interpretation
        *x*, x*, *x  contains, starts with, ends with
        ?expr        regex search
        >N >=N <N <=N numeric comparison
        i<pattern>   case-insensitive when followed by '=', '*' or '?'

    Args:
        text: The raw string from the rule

    Returns:
        The compiled Pattern

    Raises:
        RuleParseError: If a regex does not compile
    """
    insensitive = False
    if len(text) > 1 and text[0] == "i" and text[1] in "=*?":
        insensitive = True
        text = text[1:]

    if text.startswith("="):
        return Pattern(kind=PatternKind.EXACT, value=text[1:], insensitive=insensitive)
    if text.startswith("?"):
        expression = text[1:]
        return Pattern(
            kind=PatternKind.REGEX,
            value=expression,
            insensitive=insensitive,
            regex=_compile_regex(expression, insensitive),
        )
    if not insensitive:
        comparison = _parse_comparison(text)
        if comparison is not None:
            return comparison
    return _parse_wildcard(text, insensitive)


def _parse_value(value: Any) -> Pattern:
    if isinstance(value, str):
        return parse_string_pattern(value)
    if isinstance(value, (bool, int, float)) or value is None:
        return Pattern(kind=PatternKind.EXACT, value=value)
    raise RuleParseError(f"Unsupported value {value!r}: expected a scalar")


def _flatten_fields(
    mapping: dict[Any, Any], prefix: tuple[str, ...] = ()
) -> list[tuple[tuple[str, ...], Any]]:
    """Flatten nested mappings and dotted keys into field paths."""
    fields: list[tuple[tuple[str, ...], Any]] = []
    for key, value in mapping.items():
        path = prefix + tuple(str(key).split("."))
        if isinstance(value, dict):
            fields.extend(_flatten_fields(value, path))
        else:
            fields.append((path, value))
    return fields


def _parse_field_block(name: str, block: dict[Any, Any]) -> list[FieldMatcher]:
    if not block:
        raise RuleParseError(f"Identifier '{name}' has no fields")
    matchers = []
    for path, value in _flatten_fields(block):
        values = value if isinstance(value, list) else [value]
        if not values:
            raise RuleParseError(f"Field '{'.'.join(path)}' in '{name}' has no values")
        matchers.append(FieldMatcher(path=path, patterns=[_parse_value(v) for v in values]))
    return matchers


def _parse_identifier(name: str, block: Any) -> Identifier:
    """Parse a mapping (all fields) or list of mappings (any mapping)."""
    if isinstance(block, dict):
        return Identifier(name=name, alternatives=[_parse_field_block(name, block)])
    if isinstance(block, list) and block and all(isinstance(b, dict) for b in block):
        return Identifier(name=name, alternatives=[_parse_field_block(name, b) for b in block])
    raise RuleParseError(
        f"Identifier '{name}' must be a mapping or a non-empty list of mappings"
    )


def _tokenize(expression: str) -> list[str]:
    tokens: list[str] = []
    position = 0
    expression = expression.rstrip()
    while position < len(expression):
        match = _TOKEN_RE.match(expression, position)
        if match is None:
            raise RuleParseError(
                f"Unexpected character '{expression[position:].strip()[:1]}' in condition"
            )
        tokens.append(match.group(match.lastindex or 0))
        position = match.end()
    return tokens


class _ConditionParser:
    """Recursive descent parser: 'not' binds tightest, then 'and', then 'or'."""

    def __init__(self, tokens: list[str], identifiers: set[str]):
        self.tokens = tokens
        self.identifiers = identifiers
        self.position = 0

    def _peek(self) -> str | None:
        return self.tokens[self.position] if self.position < len(self.tokens) else None

    def _advance(self) -> str:
        token = self._peek()
        if token is None:
            raise RuleParseError("Unexpected end of condition")
        self.position += 1
        return token

    def parse(self) -> Condition:
        if not self.tokens:
            raise RuleParseError("Empty condition")
        condition = self._parse_or()
        if self._peek() is not None:
            raise RuleParseError(f"Unexpected token '{self._peek()}' in condition")
        return condition

    def _parse_or(self) -> Condition:
        left = self._parse_and()
        while self._peek() == "or":
            self._advance()
            left = Or(left, self._parse_and())
        return left

    def _parse_and(self) -> Condition:
        left = self._parse_not()
        while self._peek() == "and":
            self._advance()
            left = And(left, self._parse_not())
        return left

    def _parse_not(self) -> Condition:
        if self._peek() == "not":
            self._advance()
            return Not(self._parse_not())
        return self._parse_primary()

    def _parse_primary(self) -> Condition:
        token = self._advance()
        if token == "(":
            inner = self._parse_or()
            if self._advance() != ")":
                raise RuleParseError("Expected ')' in condition")
            return inner
        if token == ")" or token in _KEYWORDS:
            raise RuleParseError(f"Unexpected token '{token}' in condition")
        if token not in self.identifiers:
            raise RuleParseError(f"Condition references undefined identifier '{token}'")
        return IdentifierRef(token)


def parse_condition(expression: str, identifiers: set[str]) -> Condition:
    """Parse a boolean condition over detection identifiers."""
    return _ConditionParser(_tokenize(expression), identifiers).parse()


def _parse_examples(data: dict[str, Any], key: str) -> list[Any]:
    examples = data.get(key) or []
    if not isinstance(examples, list):
        raise RuleParseError(f"'{key}' must be a list of records")
    return examples


def _parse_detection(data: Any) -> tuple[dict[str, Identifier], str]:
    if not isinstance(data, dict):
        raise RuleParseError("Rule must be a YAML mapping")
    detection = data.get("detection")
    if not isinstance(detection, dict):
        raise RuleParseError("Rule missing 'detection' mapping")
    condition = detection.get("condition")
    if not isinstance(condition, str):
        raise RuleParseError("Detection missing 'condition' string")

    identifiers = {
        str(name): _parse_identifier(str(name), block)
        for name, block in detection.items()
        if name != "condition"
    }
    for name in identifiers:
        if name in _KEYWORDS:
            raise RuleParseError(f"Identifier name '{name}' is a reserved word")
    return identifiers, condition


def load_rule(text: str) -> Rule:
    """
    Parse a rule from YAML text.

    Args:
        text: The YAML rule source

    Returns:
        A compiled Rule

    Raises:
        RuleParseError: If the YAML is invalid or the rule is malformed
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise RuleParseError(f"Invalid YAML: {e}")

    identifiers, condition_text = _parse_detection(data)
    condition = parse_condition(condition_text, set(identifiers))

    return Rule(
        identifiers=identifiers,
        condition=condition,
        condition_text=condition_text,
        true_positives=_parse_examples(data, "true_positives"),
        true_negatives=_parse_examples(data, "true_negatives"),
    )


def load_rule_file(file_path: Path) -> Rule:
    """
    Parse a rule from a YAML file.

    Raises:
        RuleParseError: If the rule is malformed
        OSError: If the file cannot be read
    """
    with open(file_path, "r", encoding="utf-8") as f:
        return load_rule(f.read())
