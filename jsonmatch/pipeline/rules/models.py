"""Data models for the rules system."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, Union


class PatternKind(Enum):
    """Supported ways of comparing an expected value to a record field."""

    EXACT = "exact"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    REGEX = "regex"
    GREATER = "gt"
    GREATER_EQUAL = "gte"
    LESS = "lt"
    LESS_EQUAL = "lte"


_MISSING = object()


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass
class Pattern:
    """A single expected value for a field."""

    kind: PatternKind
    value: Any
    insensitive: bool = False
    regex: Optional[re.Pattern] = None

    def matches(self, actual: Any) -> bool:
        """Check a record value against this pattern.

        Lists in the record match if any element matches, at any depth.
        """
        if not isinstance(actual, list):
            return self._matches_value(actual)
        stack = [iter(actual)]
        while stack:
            item = next(stack[-1], _MISSING)
            if item is _MISSING:
                stack.pop()
            elif isinstance(item, list):
                stack.append(iter(item))
            elif self._matches_value(item):
                return True
        return False

    def _matches_value(self, actual: Any) -> bool:
        if self.kind == PatternKind.EXACT:
            return self._matches_exact(actual)
        if self.kind in _COMPARISONS:
            return _is_number(actual) and _COMPARISONS[self.kind](actual, self.value)
        if not isinstance(actual, str):
            return False
        if self.kind == PatternKind.REGEX:
            assert self.regex is not None
            return self.regex.search(actual) is not None
        expected = self.value
        if self.insensitive:
            actual, expected = actual.casefold(), expected.casefold()
        if self.kind == PatternKind.CONTAINS:
            return expected in actual
        if self.kind == PatternKind.STARTS_WITH:
            return actual.startswith(expected)
        return actual.endswith(expected)

    def _matches_exact(self, actual: Any) -> bool:
        expected = self.value
        if isinstance(expected, str):
            if not isinstance(actual, str):
                return False
            if self.insensitive:
                return actual.casefold() == expected.casefold()
            return actual == expected
        if isinstance(expected, bool) or expected is None:
            return actual is expected
        if _is_number(expected):
            return _is_number(actual) and actual == expected
        return bool(actual == expected)


_COMPARISONS: dict[PatternKind, Callable[[Any, Any], bool]] = {
    PatternKind.GREATER: lambda a, b: a > b,
    PatternKind.GREATER_EQUAL: lambda a, b: a >= b,
    PatternKind.LESS: lambda a, b: a < b,
    PatternKind.LESS_EQUAL: lambda a, b: a <= b,
}


@dataclass
class FieldMatcher:
    """Matches one (possibly nested) field of a record against any of its patterns."""

    path: tuple[str, ...]
    patterns: list[Pattern]

    @property
    def name(self) -> str:
        return ".".join(self.path)

    def resolve(self, record: Any) -> Any:
        """Walk the field path through nested objects."""
        current = record
        for key in self.path:
            if not isinstance(current, dict) or key not in current:
                return _MISSING
            current = current[key]
        return current

    def matches(self, record: Any) -> bool:
        actual = self.resolve(record)
        if actual is _MISSING:
            return False
        return any(pattern.matches(actual) for pattern in self.patterns)


@dataclass
class Identifier:
    """A named detection block.

    Each alternative is a list of field matchers that must all match; the
    identifier matches when any alternative does.
    """

    name: str
    alternatives: list[list[FieldMatcher]]

    def matches(self, record: Any) -> bool:
        return any(
            all(matcher.matches(record) for matcher in alternative)
            for alternative in self.alternatives
        )


@dataclass
class IdentifierRef:
    name: str

    def evaluate(self, lookup: Callable[[str], bool]) -> bool:
        return lookup(self.name)


@dataclass
class Not:
    operand: "Condition"

    def evaluate(self, lookup: Callable[[str], bool]) -> bool:
        return not self.operand.evaluate(lookup)


@dataclass
class And:
    left: "Condition"
    right: "Condition"

    def evaluate(self, lookup: Callable[[str], bool]) -> bool:
        return self.left.evaluate(lookup) and self.right.evaluate(lookup)


@dataclass
class Or:
    left: "Condition"
    right: "Condition"

    def evaluate(self, lookup: Callable[[str], bool]) -> bool:
        return self.left.evaluate(lookup) or self.right.evaluate(lookup)


Condition = Union[IdentifierRef, Not, And, Or]


@dataclass
class Rule:
    """A compiled detection rule.

    Matching evaluates the condition expression, resolving each identifier
    against the record on demand.
    """

    identifiers: dict[str, Identifier]
    condition: Condition
    condition_text: str
    true_positives: list[Any] = field(default_factory=list)
    true_negatives: list[Any] = field(default_factory=list)

    def matches(self, record: Any) -> bool:
        """Check whether a record satisfies this rule."""
        return self.condition.evaluate(lambda name: self.identifiers[name].matches(record))

    def validate(self) -> bool:
        """Check the rule against its own true positive and true negative examples."""
        return all(self.matches(record) for record in self.true_positives) and not any(
            self.matches(record) for record in self.true_negatives
        )
