"""LLM subsystem -- providers, streaming tool-call assembly and argument repair."""

from modelcli.llm.types import (
    Message,
    ProviderResult,
    RawToolDelta,
    StreamChunk,
    ToolCallRequest,
)
from modelcli.llm.repair import parse_tool_arguments, repair_json
from modelcli.llm.tool_call_assembler import ToolCallAssembler
from modelcli.llm.token_counter import TokenCounter

__all__ = [
    "Message",
    "ProviderResult",
    "RawToolDelta",
    "StreamChunk",
    "TokenCounter",
    "ToolCallAssembler",
    "ToolCallRequest",
    "parse_tool_arguments",
    "repair_json",
]
