"""
Assembles streaming tool-call deltas into complete ToolCallRequest objects.

Design goals:
  - Accumulate ``RawToolDelta`` fragments keyed by ``call_index``.
  - ``arguments`` fragments are only ever appended.  ``id`` and ``name``
    fragments overwrite the previous value for that index: the wire protocol
    repeats them verbatim, it never splits them.
  - Arguments stay raw text.  Parsing (and repair) happens at dispatch time
    so a malformed payload can be reported against the tool it was meant for.
"""

from __future__ import annotations

from modelcli.llm.types import RawToolDelta, ToolCallRequest


class ToolCallAssembler:
    """Buffers raw tool-call deltas and emits finished requests."""

    def __init__(self) -> None:
        self._buf: dict[int, dict] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def feed(self, delta: RawToolDelta) -> None:
        """Merge a single ``RawToolDelta`` into the buffer for its index."""
        buf = self._buf.setdefault(
            delta.call_index, {"id": None, "name": "", "args": ""}
        )

        if delta.id:
            buf["id"] = delta.id

        if delta.name:
            buf["name"] = delta.name

        if delta.arguments:
            buf["args"] += delta.arguments

    def feed_all(self, deltas: list[RawToolDelta]) -> None:
        for delta in deltas:
            self.feed(delta)

    def finish(self) -> list[ToolCallRequest]:
        """
        Return every buffered call, ordered by stream index, and clear the
        buffer.
        """
        calls = [
            ToolCallRequest(
                id=buf["id"] or f"call_{idx}",
                name=buf["name"].strip(),
                arguments=buf["args"],
            )
            for idx, buf in sorted(self._buf.items())
        ]
        self._buf.clear()
        return calls

    def reset(self) -> None:
        """Discard all accumulated state."""
        self._buf.clear()

    @property
    def pending(self) -> int:
        return len(self._buf)
