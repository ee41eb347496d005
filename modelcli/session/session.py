"""
In-memory conversation session.

The session is the ordered message log sent to the provider on every
completion round.  It owns the optional system message at index 0 and
exposes an explicit checkpoint/restore pair so a failed tool-dispatch batch
can be discarded wholesale.
"""

from __future__ import annotations

from modelcli.llm.types import Message, ToolCallRequest

_UNCHANGED = object()


class Session:
    """
    Manages a single conversation transcript.

    Parameters
    ----------
    system_prompt:
        Text of the system message.  Empty or ``None`` means no system
        message.
    """

    def __init__(self, system_prompt: str | None = None) -> None:
        self.system_prompt: str | None = None
        self._messages: list[Message] = []
        self.reset(system_prompt)

    # ------------------------------------------------------------------
    # Appending
    # ------------------------------------------------------------------

    def add_user(self, content: str) -> None:
        self._messages.append(Message(role="user", content=str(content)))

    def add_assistant(
        self,
        content: str | None,
        tool_calls: list[ToolCallRequest] | None = None,
        reasoning_content: str | None = None,
    ) -> None:
        """
        Append an assistant message.

        ``tool_calls`` is only recorded when non-empty and
        ``reasoning_content`` only when it is a non-empty string.
        """
        message = Message(role="assistant", content="" if content is None else str(content))
        if tool_calls:
            message.tool_calls = list(tool_calls)
        if isinstance(reasoning_content, str) and reasoning_content:
            message.reasoning_content = reasoning_content
        self._messages.append(message)

    def add_tool_result(self, tool_call_id: str, content: str | None) -> None:
        self._messages.append(
            Message(
                role="tool",
                content="" if content is None else str(content),
                tool_call_id=tool_call_id,
            )
        )

    def add_system_note(self, content: str, name: str | None = None) -> None:
        """Append a system message after the conversation has started."""
        self._messages.append(Message(role="system", content=str(content), name=name))

    # ------------------------------------------------------------------
    # Removal and rollback
    # ------------------------------------------------------------------

    def pop_last(self) -> Message | None:
        """Remove and return the newest message, or ``None`` if empty."""
        if self._messages:
            return self._messages.pop()
        return None

    def checkpoint(self) -> int:
        """Return a marker that :meth:`restore` can roll back to."""
        return len(self._messages)

    def restore(self, index: int) -> None:
        """
        Truncate the transcript to *index* messages.

        Only ever removes messages: an index beyond the current length is a
        no-op and a negative index empties the session.
        """
        if isinstance(index, bool) or not isinstance(index, int):
            raise TypeError(f"checkpoint must be an int, got {type(index).__name__}")
        del self._messages[max(0, index):]

    def reset(self, system_prompt: str | None = _UNCHANGED) -> None:  # type: ignore[assignment]
        """
        Drop every message and re-seed the system message.

        Without an argument the current system prompt is kept.  ``None`` or
        an empty string clears it.
        """
        if system_prompt is not _UNCHANGED:
            text = "" if system_prompt is None else str(system_prompt)
            self.system_prompt = text or None
        self._messages = []
        if self.system_prompt:
            self._messages.append(Message(role="system", content=self.system_prompt))

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    @property
    def messages(self) -> list[Message]:
        """A shallow copy of the transcript."""
        return list(self._messages)

    def as_dicts(self) -> list[dict]:
        return [m.to_wire() for m in self._messages]

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self):
        return iter(list(self._messages))
