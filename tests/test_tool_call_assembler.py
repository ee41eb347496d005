"""Tests for modelcli.llm.tool_call_assembler.ToolCallAssembler."""

from __future__ import annotations

from modelcli.llm.tool_call_assembler import ToolCallAssembler
from modelcli.llm.types import RawToolDelta


class TestSingleToolCall:
    """Assemble a single tool call from incremental deltas."""

    def test_basic_assembly(self):
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=0, name="x"))
        asm.feed(RawToolDelta(call_index=0, arguments='{"a":'))
        asm.feed(RawToolDelta(call_index=0, arguments="1}"))

        result = asm.finish()
        assert len(result) == 1
        assert result[0].name == "x"
        assert result[0].arguments == '{"a":1}'

    def test_default_id_from_index(self):
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=3, name="ping"))
        assert asm.finish()[0].id == "call_3"

    def test_id_and_name_last_write_wins(self):
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=0, id="first", name="read"))
        asm.feed(RawToolDelta(call_index=0, id="second", name="read_file"))
        tc = asm.finish()[0]
        assert tc.id == "second"
        assert tc.name == "read_file"

    def test_empty_fragments_do_not_clobber(self):
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=0, id="c1", name="echo"))
        asm.feed(RawToolDelta(call_index=0, id="", name=None, arguments="{}"))
        tc = asm.finish()[0]
        assert (tc.id, tc.name, tc.arguments) == ("c1", "echo", "{}")

    def test_name_is_stripped(self):
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=0, name="  echo \n"))
        assert asm.finish()[0].name == "echo"

    def test_arguments_kept_raw(self):
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=0, name="x", arguments='{"broken": '))
        assert asm.finish()[0].arguments == '{"broken": '


class TestMultipleToolCalls:
    def test_interleaved_indices(self):
        asm = ToolCallAssembler()
        asm.feed_all([
            RawToolDelta(call_index=1, id="b", name="second"),
            RawToolDelta(call_index=0, id="a", name="first"),
            RawToolDelta(call_index=1, arguments='{"n": 2}'),
            RawToolDelta(call_index=0, arguments='{"n": 1}'),
        ])
        calls = asm.finish()
        assert [c.id for c in calls] == ["a", "b"]
        assert calls[0].arguments == '{"n": 1}'
        assert calls[1].arguments == '{"n": 2}'


class TestLifecycle:
    def test_finish_clears_buffer(self):
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=0, name="x"))
        assert asm.pending == 1
        asm.finish()
        assert asm.pending == 0
        assert asm.finish() == []

    def test_reset(self):
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=0, name="x"))
        asm.reset()
        assert asm.finish() == []
