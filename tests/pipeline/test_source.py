"""Tests for the record source stage."""

import io

import pytest

from jsonmatch.config import SourceSettings
from jsonmatch.pipeline.source import (
    STDIN_NAME,
    RecordDecodeError,
    RecordSource,
    SourceKind,
    SourceOpenError,
    SourceReadError,
    decode_line,
)


def _collect(source: RecordSource) -> list:
    return list(source)


class TestDecodeLine:
    """Tests for decode_line function."""

    def test_decodes_object(self):
        item = decode_line('{"a": 1}\n', "f", 1)
        assert item.ok
        assert item.record == {"a": 1}

    def test_decodes_scalars(self):
        assert decode_line("null\n", "f", 1).record is None
        assert decode_line("null\n", "f", 1).ok
        assert decode_line("[1, 2]\r\n", "f", 1).record == [1, 2]

    def test_blank_line_is_decode_error(self):
        item = decode_line("\n", "f", 3)
        assert not item.ok
        assert isinstance(item.error, RecordDecodeError)
        assert item.error.line_number == 3
        assert "blank line" in str(item.error)

    def test_whitespace_line_is_decode_error(self):
        assert isinstance(decode_line("   \n", "f", 1).error, RecordDecodeError)

    def test_invalid_json(self):
        item = decode_line("{not json}\n", "data.jsonl", 7)
        assert isinstance(item.error, RecordDecodeError)
        assert str(item.error).startswith("data.jsonl:7: invalid JSON")

    def test_two_values_on_one_line(self):
        assert not decode_line('{"a": 1} {"b": 2}\n', "f", 1).ok

    def test_nan_rejected(self):
        assert not decode_line('{"a": NaN}\n', "f", 1).ok

    def test_deeply_nested_value_is_decode_error(self):
        item = decode_line("[" * 100000 + "]" * 100000 + "\n", "f", 1)
        assert isinstance(item.error, RecordDecodeError)
        assert "nesting too deep" in str(item.error)


class TestInteractiveSource:
    """Tests for RecordSource reading from a stream."""

    def test_reads_until_end_of_stream(self):
        source = RecordSource.interactive(io.StringIO('{"a": 1}\n{"a": 2}\n'))
        assert source.kind == SourceKind.INTERACTIVE
        assert [item.record for item in _collect(source)] == [{"a": 1}, {"a": 2}]

    def test_decode_errors_do_not_stop_the_stream(self):
        source = RecordSource.interactive(io.StringIO('{"a": 1}\nbad\n\n{"a": 2}\n'))
        items = _collect(source)
        assert [item.ok for item in items] == [True, False, False, True]
        assert items[1].error.path == STDIN_NAME
        assert items[1].error.line_number == 2

    def test_last_line_without_newline(self):
        source = RecordSource.interactive(io.StringIO('{"a": 1}'))
        assert [item.record for item in _collect(source)] == [{"a": 1}]

    def test_read_error_is_yielded_and_reading_continues(self):
        class FlakyStream:
            def __init__(self):
                self.calls = 0

            def readline(self):
                self.calls += 1
                if self.calls == 1:
                    raise OSError("device hiccup")
                if self.calls == 2:
                    return '{"a": 1}\n'
                return ""

        items = _collect(RecordSource.interactive(FlakyStream()))
        assert isinstance(items[0].error, SourceReadError)
        assert items[1].record == {"a": 1}
        assert len(items) == 2

    def test_binary_stream_decoded_per_line(self):
        source = RecordSource.interactive(io.BytesIO(b'{"a": 1}\n\xff\n{"a": 2}\n'))
        items = _collect(source)
        assert items[0].record == {"a": 1}
        assert isinstance(items[1].error, SourceReadError)
        assert items[1].error.path == STDIN_NAME
        assert items[1].error.line_number == 2
        assert items[2].record == {"a": 2}

    def test_deep_nesting_does_not_stop_the_stream(self):
        data = ("[" * 100000 + "]" * 100000 + "\n" + '{"x": 1}\n').encode()
        items = _collect(RecordSource.interactive(io.BytesIO(data)))
        assert isinstance(items[0].error, RecordDecodeError)
        assert items[1].record == {"x": 1}

    def test_skip_blank_lines_setting(self):
        settings = SourceSettings(skip_blank_lines=True)
        source = RecordSource.interactive(io.StringIO('\n{"a": 1}\n  \n'), settings=settings)
        items = _collect(source)
        assert [item.record for item in items] == [{"a": 1}]


class TestFileChainSource:
    """Tests for RecordSource reading a chain of files."""

    def test_requires_paths(self):
        with pytest.raises(ValueError):
            RecordSource.from_paths([])

    def test_missing_first_file_raises(self, tmp_path):
        with pytest.raises(SourceOpenError) as exc_info:
            RecordSource.from_paths([tmp_path / "missing.jsonl"])
        assert "missing.jsonl" in str(exc_info.value)

    def test_last_supplied_file_is_read_first(self, write_jsonl):
        a = write_jsonl("a.jsonl", [{"f": "a", "n": 1}, {"f": "a", "n": 2}])
        b = write_jsonl("b.jsonl", [{"f": "b", "n": 1}, {"f": "b", "n": 2}])

        source = RecordSource.from_paths([a, b])
        assert source.kind == SourceKind.FILE_CHAIN
        assert source.current_path == b
        assert source.pending == [a]

        records = [item.record for item in _collect(source)]
        assert records == [
            {"f": "b", "n": 1},
            {"f": "b", "n": 2},
            {"f": "a", "n": 1},
            {"f": "a", "n": 2},
        ]

    def test_item_count_equals_line_count(self, write_jsonl):
        paths = [
            write_jsonl("one.jsonl", [{"x": 1}, "oops", {"x": 2}]),
            write_jsonl("two.jsonl", [{"x": 3}]),
            write_jsonl("three.jsonl", ["", {"x": 4}]),
        ]
        items = _collect(RecordSource.from_paths(paths))
        assert len(items) == 6
        assert sum(1 for item in items if item.ok) == 4

    def test_empty_files_are_skipped(self, write_jsonl):
        empty = write_jsonl("empty.jsonl", [])
        full = write_jsonl("full.jsonl", [{"x": 1}])
        other_empty = write_jsonl("empty2.jsonl", [])
        items = _collect(RecordSource.from_paths([full, empty, other_empty]))
        assert [item.record for item in items] == [{"x": 1}]

    def test_unopenable_pending_file_yields_one_error(self, write_jsonl, tmp_path):
        first = write_jsonl("first.jsonl", [{"x": 1}])
        last = write_jsonl("last.jsonl", [{"x": 2}])
        missing = tmp_path / "missing.jsonl"

        items = _collect(RecordSource.from_paths([first, missing, last]))
        assert items[0].record == {"x": 2}
        assert isinstance(items[1].error, SourceOpenError)
        assert items[1].error.path == str(missing)
        assert items[2].record == {"x": 1}
        assert len(items) == 3

    def test_errors_carry_file_and_line(self, write_jsonl):
        path = write_jsonl("data.jsonl", [{"x": 1}, "nope"])
        items = _collect(RecordSource.from_paths([path]))
        assert items[1].error.path == str(path)
        assert items[1].error.line_number == 2

    def test_undecodable_line_keeps_earlier_records(self, write_jsonl, tmp_path):
        bad = tmp_path / "bad.jsonl"
        bad.write_bytes(b'{"x": 1}\n' + b"\xff\xfe" * 5000 + b"\n")
        good = write_jsonl("good.jsonl", [{"y": 1}])

        items = _collect(RecordSource.from_paths([good, bad]))
        assert items[0].record == {"x": 1}
        assert isinstance(items[1].error, SourceReadError)
        assert items[1].error.line_number == 2
        assert items[2].record == {"y": 1}
        assert len(items) == 3

    def test_reading_continues_after_undecodable_line(self, tmp_path):
        path = tmp_path / "mixed.jsonl"
        path.write_bytes(b'{"x": 1}\n{"x": 2}\n\xff\n{"x": 3}\n')

        items = _collect(RecordSource.from_paths([path]))
        assert [item.record for item in items if item.ok] == [{"x": 1}, {"x": 2}, {"x": 3}]
        assert isinstance(items[2].error, SourceReadError)
        assert items[2].error.path == str(path)
        assert items[2].error.line_number == 3

    def test_encoding_setting_applies_per_line(self, tmp_path):
        path = tmp_path / "latin.jsonl"
        path.write_bytes('{"name": "caf\u00e9"}\n'.encode("latin-1"))

        utf8_items = _collect(RecordSource.from_paths([path]))
        assert isinstance(utf8_items[0].error, SourceReadError)

        latin_items = _collect(RecordSource.from_paths([path], SourceSettings(encoding="latin-1")))
        assert latin_items[0].record == {"name": "caf\u00e9"}

    def test_only_one_file_open_at_a_time(self, write_jsonl):
        a = write_jsonl("a.jsonl", [{"x": 1}])
        b = write_jsonl("b.jsonl", [{"x": 2}])
        source = RecordSource.from_paths([a, b])

        first_handle = source._current
        next(source)
        next(source)
        assert first_handle.closed
        assert source.current_path == a

    def test_exhausted_source_stays_exhausted(self, write_jsonl):
        source = RecordSource.from_paths([write_jsonl("a.jsonl", [{"x": 1}])])
        assert len(_collect(source)) == 1
        assert _collect(source) == []
        assert source.current_path is None

    def test_context_manager_closes_file(self, write_jsonl):
        path = write_jsonl("a.jsonl", [{"x": 1}, {"x": 2}])
        with RecordSource.from_paths([path]) as source:
            handle = source._current
            next(source)
        assert handle.closed
