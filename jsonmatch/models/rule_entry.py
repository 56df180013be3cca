"""Models for loaded rules and run results."""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from jsonmatch.pipeline.rules import Rule


@dataclass(frozen=True)
class RuleEntry:
    """A rule source file and its compiled rule.

    ``rule`` is None when the source could not be read, parsed or validated.
    """

    name: str
    path: Path
    rule: Optional[Rule] = None

    @property
    def is_valid(self) -> bool:
        return self.rule is not None

    def __str__(self) -> str:
        status = "valid" if self.is_valid else "invalid"
        return f"{self.name} ({status}) from {self.path}"


class ValidationResult(BaseModel):
    """One row of a validate-only report."""

    name: str = Field(description="Rule name")
    path: Path = Field(description="Path the rule was loaded from")
    is_valid: bool = Field(description="True if the rule parsed and passed validation")


class RunStats(BaseModel):
    """Counters collected while driving records through the rules."""

    records_read: int = Field(default=0, ge=0, description="Records decoded successfully")
    record_errors: int = Field(default=0, ge=0, description="Lines that failed to read or decode")
    matches_by_rule: dict[str, int] = Field(
        default_factory=dict, description="Number of matches per rule name"
    )

    @property
    def total_matches(self) -> int:
        return sum(self.matches_by_rule.values())

    def record_match(self, rule_name: str) -> None:
        self.matches_by_rule[rule_name] = self.matches_by_rule.get(rule_name, 0) + 1
