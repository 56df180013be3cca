import json
from pathlib import Path

import pytest

from jsonmatch.config import PipelineSettings, get_settings, set_settings


VALID_RULE = """\
detection:
  selection:
    a: 1
  condition: selection
true_positives:
  - {"a": 1}
true_negatives:
  - {"a": 2}
"""

OTHER_RULE = """\
detection:
  selection:
    b: '*x*'
  condition: selection
"""

# Parses, but its own examples contradict it.
FAILING_RULE = """\
detection:
  selection:
    a: 1
  condition: selection
true_positives:
  - {"a": 2}
"""

BROKEN_RULE = """\
detection:
  selection: [a, b
"""


@pytest.fixture(autouse=True)
def default_settings():
    """Run every test against fresh default settings."""
    original_settings = get_settings()
    set_settings(PipelineSettings())
    yield
    set_settings(original_settings)


@pytest.fixture
def write_rule(tmp_path):
    """Write a rule file into a rules/ directory and return its path."""
    rules_dir = tmp_path / "rules"
    rules_dir.mkdir(exist_ok=True)

    def _write(name: str, body: str) -> Path:
        path = rules_dir / name
        path.write_text(body)
        return path

    return _write


@pytest.fixture
def write_jsonl(tmp_path):
    """Write records (or raw lines) as a newline-delimited JSON file."""
    data_dir = tmp_path / "data"
    data_dir.mkdir(exist_ok=True)

    def _write(name: str, lines: list) -> Path:
        path = data_dir / name
        text = "".join(
            (line if isinstance(line, str) else json.dumps(line)) + "\n" for line in lines
        )
        path.write_text(text)
        return path

    return _write


def read_lines(path: Path) -> list:
    """Read a JSON lines file back into a list of values."""
    return [json.loads(line) for line in path.read_text().splitlines()]


@pytest.fixture
def read_jsonl():
    return read_lines


@pytest.fixture
def rule_text():
    """Rule sources keyed by what they exercise."""
    return {
        "valid": VALID_RULE,
        "other": OTHER_RULE,
        "failing": FAILING_RULE,
        "broken": BROKEN_RULE,
    }
