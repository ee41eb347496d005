"""Recent tool outputs, kept so they can be shown in full with ``/tool``."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime

from modelcli.types import ToolResult


@dataclass
class ToolOutput:
    id: str
    tool: str
    result: ToolResult
    timestamp: datetime = field(default_factory=datetime.now)


class ToolHistory:
    """Bounded history of tool results with ``T<n>`` identifiers."""

    def __init__(self, limit: int = 20) -> None:
        self._entries: deque[ToolOutput] = deque(maxlen=limit)
        self._counter = 0

    def add(self, tool: str, result: ToolResult) -> str:
        self._counter += 1
        entry = ToolOutput(id=f"T{self._counter}", tool=tool, result=result)
        self._entries.append(entry)
        return entry.id

    def list(self) -> list[ToolOutput]:
        """Newest first."""
        return list(reversed(self._entries))

    def get(self, entry_id: str) -> ToolOutput | None:
        wanted = entry_id.strip().lower()
        for entry in self._entries:
            if entry.id.lower() == wanted:
                return entry
        return None

    def __len__(self) -> int:
        return len(self._entries)
