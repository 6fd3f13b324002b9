"""Context window management: token estimates, trimming and compression.

Token counts use a fixed 4-characters-per-token heuristic rather than a real
tokenizer. Trim/compress thresholds are defined in terms of this estimate,
so CHARS_PER_TOKEN and the per-model limits (model_catalog definitions) are
the knobs to turn, not the algorithm.
"""

import logging
import math
import re
from typing import Optional, Sequence

from timeline_ai.llm.schemas import Message, MessageRole
from timeline_ai.model_catalog.registry import ModelCatalog

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4
DEFAULT_CONTEXT_LIMIT = 16_000
DEFAULT_RESERVED_REPLY_TOKENS = 2_000

TRUNCATION_MARKER = "..."
TRUNCATION_MARGIN_CHARS = 100

# compress() keeps this many messages from each end of a long history
COMPRESS_MIN_MESSAGES = 10
COMPRESS_KEEP_HEAD = 2
COMPRESS_KEEP_TAIL = 5
MAX_SUMMARY_TOPICS = 3

# Ordered: topics are reported in this order
TOPIC_PATTERNS: list[tuple[str, re.Pattern]] = [
    ("timeline", re.compile(r"\b(timeline|track|clip)s?\b", re.IGNORECASE)),
    ("video", re.compile(r"\b(video|footage|scene)s?\b", re.IGNORECASE)),
    ("effect", re.compile(r"\b(effect|filter|color|grading)s?\b", re.IGNORECASE)),
    ("export", re.compile(r"\b(export|render|encode)s?\b", re.IGNORECASE)),
    ("audio", re.compile(r"\b(audio|music|sound|voice)s?\b", re.IGNORECASE)),
    ("subtitle", re.compile(r"\b(subtitle|caption|transcript)s?\b", re.IGNORECASE)),
    ("transition", re.compile(r"\b(transition|cut|fade)s?\b", re.IGNORECASE)),
]


def estimate_tokens(text: Optional[str]) -> int:
    """Approximate token count: ceil(len(text) / 4)."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_history_tokens(history: Sequence[Message]) -> int:
    return sum(estimate_tokens(m.content) for m in history)


class ContextWindowManager:
    """Fits message histories into a model's context budget."""

    def __init__(self, catalog: Optional[ModelCatalog] = None):
        self._catalog = catalog

    def context_limit(self, model_id: str) -> int:
        if self._catalog is not None:
            descriptor = self._catalog.get(model_id)
            if descriptor is not None:
                return descriptor.max_context_tokens
        return DEFAULT_CONTEXT_LIMIT

    def available_tokens(
        self,
        model_id: str,
        system_prompt: Optional[str] = None,
        reserved_reply_tokens: int = DEFAULT_RESERVED_REPLY_TOKENS,
    ) -> int:
        return (
            self.context_limit(model_id)
            - estimate_tokens(system_prompt)
            - reserved_reply_tokens
        )

    def trim(
        self,
        history: Sequence[Message],
        model_id: str,
        system_prompt: Optional[str] = None,
        reserved_reply_tokens: int = DEFAULT_RESERVED_REPLY_TOKENS,
    ) -> list[Message]:
        """Keep the newest messages that fit the budget.

        The most recent message is always kept; when it alone does not fit
        it is truncated. Older messages are added newest-first until the next
        one would overflow.
        """
        if not history:
            return []

        available = self.available_tokens(model_id, system_prompt, reserved_reply_tokens)
        if estimate_history_tokens(history) <= available:
            return list(history)

        last = history[-1]
        last_cost = estimate_tokens(last.content)
        if last_cost >= available:
            logger.info(
                f"[{model_id}] Last message (~{last_cost} tokens) exceeds budget "
                f"of {available}, truncating"
            )
            return [_truncate(last, available)]

        kept = [last]
        running = last_cost
        for message in reversed(history[:-1]):
            cost = estimate_tokens(message.content)
            if running + cost > available:
                break
            kept.append(message)
            running += cost

        kept.reverse()
        logger.debug(
            f"[{model_id}] Trimmed history {len(history)} -> {len(kept)} messages "
            f"(~{running}/{available} tokens)"
        )
        return kept

    def compress(
        self,
        history: Sequence[Message],
        model_id: str,
        system_prompt: Optional[str] = None,
        reserved_reply_tokens: int = DEFAULT_RESERVED_REPLY_TOKENS,
    ) -> list[Message]:
        """Summarize the middle of a long history instead of dropping its head.

        Short histories go through trim(). Long ones keep the first 2 and
        last 5 messages and replace the rest with a single summary message.
        """
        available = self.available_tokens(model_id, system_prompt, reserved_reply_tokens)
        if estimate_history_tokens(history) <= available:
            return list(history)

        if len(history) <= COMPRESS_MIN_MESSAGES:
            return self.trim(history, model_id, system_prompt, reserved_reply_tokens)

        head = list(history[:COMPRESS_KEEP_HEAD])
        middle = history[COMPRESS_KEEP_HEAD:-COMPRESS_KEEP_TAIL]
        tail = list(history[-COMPRESS_KEEP_TAIL:])
        compressed = head + [summarize_messages(middle)] + tail

        if estimate_history_tokens(compressed) > available:
            logger.info(
                f"[{model_id}] Compressed history still over budget, falling back to trim"
            )
            return self.trim(compressed, model_id, system_prompt, reserved_reply_tokens)

        logger.debug(
            f"[{model_id}] Compressed {len(middle)} middle messages into a summary"
        )
        return compressed


def detect_topics(messages: Sequence[Message]) -> list[str]:
    """Topics from TOPIC_PATTERNS mentioned anywhere in messages, at most 3."""
    text = "\n".join(m.content for m in messages)
    topics = [name for name, pattern in TOPIC_PATTERNS if pattern.search(text)]
    return topics[:MAX_SUMMARY_TOPICS]


def summarize_messages(messages: Sequence[Message]) -> Message:
    summary = f"[Summary of {len(messages)} earlier messages"
    topics = detect_topics(messages)
    if topics:
        summary += f". Topics discussed: {', '.join(topics)}"
    summary += "]"
    return Message(role=MessageRole.SYSTEM, content=summary)


def _truncate(message: Message, available: int) -> Message:
    keep_chars = max(0, available * CHARS_PER_TOKEN - TRUNCATION_MARGIN_CHARS)
    return Message(
        role=message.role,
        content=message.content[:keep_chars] + TRUNCATION_MARKER,
    )
