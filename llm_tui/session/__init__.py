"""In-memory session records shared with the UI and persistence layers.

The storage format is owned by the caller; this module only defines the
message list the conversation engine reads from and appends to.
"""

import math
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from llm_tui.config import ProviderId


class Role(str, Enum):
    """Message author."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


def _utcnow() -> datetime:
    """Return current UTC timestamp."""
    return datetime.now(UTC)


def estimate_tokens(text: str) -> int:
    """Rough token estimate: one token per four characters, rounded up."""
    return math.ceil(len(text) / 4)


@dataclass
class Message:
    """A message in the session."""

    role: Role
    content: str
    timestamp: datetime = field(default_factory=_utcnow)
    model: str | None = None
    tools_executed: bool = False
    is_summary: bool = False
    compacted: bool = False
    token_count: int | None = None

    def __post_init__(self) -> None:
        self.role = Role(self.role)
        if self.token_count is None:
            self.token_count = estimate_tokens(self.content)


@dataclass
class Session:
    """A conversation session."""

    provider_id: ProviderId
    model: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str | None = None
    messages: list[Message] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def add_message(
        self,
        role: Role | str,
        content: str,
        *,
        model: str | None = None,
        tools_executed: bool = False,
        is_summary: bool = False,
        token_count: int | None = None,
    ) -> Message:
        """Append a message and return it."""
        message = Message(
            role=Role(role),
            content=content,
            model=model,
            tools_executed=tools_executed,
            is_summary=is_summary,
            token_count=token_count,
        )
        self.messages.append(message)
        self.updated_at = message.timestamp
        return message

    def total_tokens(self) -> int:
        """Sum of token counts over messages still in the prompt.

        Summaries and the messages they replaced are left out.
        """
        return sum(
            msg.token_count or 0
            for msg in self.messages
            if not msg.is_summary and not msg.compacted
        )


__all__ = ["Message", "Role", "Session", "estimate_tokens"]
