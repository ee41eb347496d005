"""Core types for the LLM subsystem."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class ToolCallRequest:
    """A tool call requested by the model.

    ``arguments`` is the raw text the model produced.  It is nominally JSON
    but is only parsed (and repaired if needed) at dispatch time.
    """

    id: str
    name: str
    arguments: str = ""

    def to_wire(self) -> dict:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass
class Message:
    """A single message in a conversation."""

    role: str  # "user", "assistant", "system", "tool"
    content: str
    tool_calls: list[ToolCallRequest] | None = None
    tool_call_id: str | None = None
    reasoning_content: str | None = None
    name: str | None = None

    def to_wire(self) -> dict:
        m: dict = {"role": self.role, "content": self.content}
        if self.tool_calls:
            m["tool_calls"] = [tc.to_wire() for tc in self.tool_calls]
        if self.tool_call_id:
            m["tool_call_id"] = self.tool_call_id
        if self.reasoning_content:
            m["reasoning_content"] = self.reasoning_content
        if self.name:
            m["name"] = self.name
        return m


@dataclass
class RawToolDelta:
    """
    An incremental fragment of a streamed tool call.

    Fragments for the same call share ``call_index``.  ``arguments`` pieces
    are concatenated; ``id`` and ``name`` replace what was seen before.
    """

    call_index: int
    id: str | None = None
    name: str | None = None
    arguments: str = ""


@dataclass
class StreamChunk:
    """
    A single event yielded by a provider.

    *delta* carries new answer text, *reasoning* new reasoning text and
    *tool_deltas* incremental tool-call fragments.  *done* is ``True`` on
    the final chunk.
    """

    delta: str = ""
    reasoning: str = ""
    tool_deltas: list[RawToolDelta] | None = None
    done: bool = False


@dataclass
class ProviderResult:
    """The normalised outcome of one completion round."""

    content: str
    reasoning: str | None = None
    tool_calls: list[ToolCallRequest] = field(default_factory=list)
