"""Tests for near-JSON repair and tool argument parsing."""

from __future__ import annotations

import json
import logging

import pytest

from modelcli.errors import ArgumentParseError
from modelcli.llm.repair import parse_tool_arguments, repair_json

SAMPLES = [
    '{"path": "a"b"}',
    '{"text": "line1\nline2"}',
    '{"text": "tab\there\x01"}',
    '{"a": "unterminated',
    '{"a": "x\\',
    '{"list": ["a"b", "c"]}',
    '{"ok": "already \\"escaped\\" and \\n fine"}',
    '"}}]]',
    '""""',
    "\\",
    "",
    "not json at all",
]


class TestRepairJson:
    def test_stray_quote_is_escaped(self):
        repaired = repair_json('{"path": "a"b"}')
        assert repaired == '{"path": "a\\"b"}'
        assert json.loads(repaired) == {"path": 'a"b'}

    def test_raw_newline_is_escaped(self):
        repaired = repair_json('{"text": "line1\nline2"}')
        assert json.loads(repaired) == {"text": "line1\nline2"}

    def test_control_characters_become_unicode_escapes(self):
        repaired = repair_json('{"t": "a\x01b"}')
        assert "\\u0001" in repaired
        assert json.loads(repaired) == {"t": "a\x01b"}

    def test_valid_json_unchanged(self):
        text = '{"a": [1, 2, {"b": "c"}], "d": "e\\nf"}'
        assert repair_json(text) == text

    def test_open_string_closed_at_end(self):
        assert json.loads(repair_json('{"a": "abc') + "}") == {"a": "abc"}

    def test_quote_inside_array_value(self):
        repaired = repair_json('{"list": ["a"b", "c"]}')
        assert json.loads(repaired) == {"list": ['a"b', "c"]}

    def test_unknown_escape_doubled(self):
        repaired = repair_json('{"p": "C:\\temp\\qux"}')
        assert json.loads(repaired)["p"].endswith("\\qux")

    @pytest.mark.parametrize("text", SAMPLES)
    def test_idempotent(self, text):
        once = repair_json(text)
        assert repair_json(once) == once

    @pytest.mark.parametrize("text", SAMPLES)
    def test_total(self, text):
        assert isinstance(repair_json(text), str)


class TestParseToolArguments:
    @pytest.mark.parametrize("raw", [None, "", "   \n"])
    def test_blank_means_no_arguments(self, raw):
        assert parse_tool_arguments("t", raw) == {}

    def test_valid_json(self):
        assert parse_tool_arguments("t", '{"a": 1}') == {"a": 1}

    def test_repaired_json(self, caplog):
        with caplog.at_level(logging.WARNING, logger="modelcli.llm.repair"):
            result = parse_tool_arguments("read_file", '{"path": "a"b"}')
        assert result == {"path": 'a"b'}
        assert "read_file" in caplog.text
        assert "Base64Preview" in caplog.text

    def test_unrepairable_raises_with_tool_and_raw(self):
        raw = '{"a": 1'
        with pytest.raises(ArgumentParseError) as info:
            parse_tool_arguments("calc", raw)
        assert info.value.tool_name == "calc"
        assert info.value.raw == raw
        assert "calc" in str(info.value)

    def test_repair_that_still_fails_raises(self):
        with pytest.raises(ArgumentParseError):
            parse_tool_arguments("calc", '{"a": "b" "c": 1}')

    def test_non_object_rejected(self):
        with pytest.raises(ArgumentParseError, match="expected a JSON object"):
            parse_tool_arguments("calc", "[1, 2]")

    def test_long_snippet_is_truncated_in_log(self, caplog):
        raw = '{"a": ' + "x" * 1000
        with caplog.at_level(logging.WARNING, logger="modelcli.llm.repair"):
            with pytest.raises(ArgumentParseError):
                parse_tool_arguments("t", raw)
        assert "x" * 500 not in caplog.records[0].getMessage().split("Base64Preview")[0]
