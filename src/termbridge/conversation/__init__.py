"""Conversation reconstruction from terminal output.

Cleaned PTY output is classified line by line (``rules``) and fed through a
state machine (``extractor``) that emits de-duplicated user/agent turns.
"""

from termbridge.conversation.extractor import (
    CaptureState,
    ConversationExtractor,
    ConversationTurn,
    Speaker,
    render_turns,
)
from termbridge.conversation.recency import RecencyCache
from termbridge.conversation.rules import Line, LineClassifier, LineKind

__all__ = [
    "CaptureState",
    "ConversationExtractor",
    "ConversationTurn",
    "Line",
    "LineClassifier",
    "LineKind",
    "RecencyCache",
    "Speaker",
    "render_turns",
]
