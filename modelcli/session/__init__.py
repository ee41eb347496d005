"""Session management: the in-memory transcript and automatic summaries."""

from modelcli.session.session import Session
from modelcli.session.summary import ConversationSummarizer

__all__ = [
    "ConversationSummarizer",
    "Session",
]
