"""
Automatic conversation summaries.

When the messages added since the last summary grow past a token threshold,
the recent history is condensed by a separate, tool-less completion and the
result is appended to the session as a ``system`` note.  The original
messages stay in place; the note gives the model a compact recap to lean on.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import Any

from modelcli.llm.token_counter import TokenCounter, extract_plain_text
from modelcli.llm.types import Message
from modelcli.session.session import Session

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 60_000
THRESHOLD_ENV = "MODEL_CLI_SUMMARY_TOKENS"
SUMMARY_NOTE_NAME = "conversation_summary"

SUMMARY_SYSTEM_PROMPT = (
    "You are an assistant that compresses a conversation before it grows too "
    "long. Summarise it concisely while keeping key facts and open tasks. "
    "Output format:\n1. Key points\n2. Pending items"
)

_ROLE_LABELS = {"user": "User", "assistant": "Assistant", "system": "System"}


def _resolve_threshold(threshold: int | None) -> int:
    if threshold is not None:
        return int(threshold)
    env_value = os.environ.get(THRESHOLD_ENV, "")
    try:
        return int(env_value) if env_value else DEFAULT_THRESHOLD
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", THRESHOLD_ENV, env_value)
        return DEFAULT_THRESHOLD


def render_history(messages: list[Message], max_chars: int = 20_000) -> str:
    """Render messages for the summary prompt, newest first up to *max_chars*."""
    if not messages:
        return "(empty)"
    collected: list[str] = []
    used = 0
    for message in reversed(messages):
        if message.role == "tool":
            label = f"Tool({message.tool_call_id or message.name or 'tool'})"
        else:
            label = _ROLE_LABELS.get(message.role, "System")
        formatted = f"{label}: {extract_plain_text(message.content)}"
        collected.append(formatted)
        used += len(formatted)
        if used >= max_chars:
            break
    return "\n\n".join(reversed(collected))


class ConversationSummarizer:
    """
    Tracks how much of a session has been summarised.

    Parameters
    ----------
    threshold:
        Estimated token count of unsummarised messages that triggers a
        summary.  ``None`` reads ``MODEL_CLI_SUMMARY_TOKENS`` and falls back
        to 60 000.  Zero or less disables summaries.
    """

    def __init__(self, threshold: int | None = None, counter: TokenCounter | None = None) -> None:
        self.threshold = _resolve_threshold(threshold)
        self.counter = counter or TokenCounter()
        self.last_summary_index = 0
        self._pending = False

    @property
    def enabled(self) -> bool:
        return self.threshold > 0

    def needs_summary(self, session: Session) -> bool:
        if not self.enabled or self._pending:
            return False
        recent = session.messages[self.last_summary_index:]
        return self.counter.count_messages(recent) > self.threshold

    async def maybe_summarize(self, session: Session, client: Any, model_name: str | None) -> bool:
        """
        Summarise *session* if it has grown past the threshold.

        Returns ``True`` if a summary note was appended.  Failures are
        logged and reported as ``False``; they never interrupt the chat.
        """
        if not self.needs_summary(session):
            return False

        recent = session.messages[self.last_summary_index:]
        self._pending = True
        try:
            summary_session = Session(SUMMARY_SYSTEM_PROMPT)
            summary_session.add_user(
                f"{render_history(recent)}\n\n"
                "Summarise the conversation above in the requested format, "
                "in no more than 200 words."
            )
            text = await client.chat(
                model_name, summary_session, stream=False, use_tools=False
            )
        except Exception:
            logger.exception("Failed to summarize conversation")
            return False
        finally:
            self._pending = False

        text = (text or "").strip()
        if not text:
            return False
        stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        session.add_system_note(f"[Conversation summary {stamp}]\n{text}", name=SUMMARY_NOTE_NAME)
        self.last_summary_index = len(session)
        return True
