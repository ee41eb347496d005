"""
Rough token estimation for conversation transcripts.

Used to decide when a conversation has grown long enough to be summarised.
The estimate is deliberately provider-agnostic: about three characters per
token, which errs on the high side for English and is close for CJK text.
"""

from __future__ import annotations

import math
from typing import Any

CHARS_PER_TOKEN = 3


def extract_plain_text(content: Any) -> str:
    """Reduce message content (string, parts list or object) to text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return " ".join(
            item if isinstance(item, str) else str((item or {}).get("text", ""))
            for item in content
        )
    if isinstance(content, dict) and isinstance(content.get("text"), str):
        return content["text"]
    return "" if content is None else str(content)


class TokenCounter:
    """Estimate token counts for text and message lists."""

    def __init__(self, chars_per_token: int = CHARS_PER_TOKEN) -> None:
        self.chars_per_token = chars_per_token

    def count_text(self, text: str) -> int:
        """Return the estimated token count for a plain string."""
        if not text:
            return 0
        return math.ceil(len(text) / self.chars_per_token)

    def count_messages(self, messages: list) -> int:
        """
        Estimate the total token count for a conversation.

        Accepts ``Message`` objects or wire dicts.  Only message content is
        counted; tool-call payloads are small next to the text around them.
        """
        total = 0
        for msg in messages:
            if isinstance(msg, dict):
                content = msg.get("content")
            else:
                content = getattr(msg, "content", None)
            if not content:
                continue
            total += self.count_text(extract_plain_text(content))
        return total
