"""Token accounting and context compaction.

Older turns are replaced in future prompts by a single summary message.
History is never deleted: compacted messages are only flagged so prompt
assembly skips them.
"""

from dataclasses import dataclass
from typing import Any

from llm_tui.exceptions import CompactionError
from llm_tui.llm import DoneEvent, ErrorEvent, LLMProvider, TextEvent, UnifiedMessage
from llm_tui.logging import get_logger
from llm_tui.session import Message, Role, Session

log = get_logger(__name__)

SUMMARY_INSTRUCTION = (
    "Summarize the following conversation concisely. Preserve key facts, decisions, "
    "file paths, code identifiers and open tasks so the conversation can continue "
    "from the summary alone. Reply with the summary only.\n\n"
)


@dataclass
class CompactionRange:
    """Messages eligible for replacement by a summary."""

    first_index: int
    last_index: int
    indices: list[int]

    def __len__(self) -> int:
        return len(self.indices)


def needs_compaction(total_tokens: int, context_window: int, threshold: float) -> bool:
    """Whether a history of `total_tokens` exceeds the compaction budget."""
    return total_tokens > context_window * threshold


def is_compactable(message: Message) -> bool:
    return not message.is_summary and not message.tools_executed


def compute_compaction_range(messages: list[Message], keep_recent: int) -> CompactionRange | None:
    """Range of compactable messages, keeping the last `keep_recent` of them.

    Returns None when there are no more than `keep_recent` compactable messages.
    """
    eligible = [i for i, msg in enumerate(messages) if is_compactable(msg)]
    if len(eligible) <= keep_recent:
        return None
    in_range = eligible[: len(eligible) - max(keep_recent, 0)]
    return CompactionRange(first_index=in_range[0], last_index=in_range[-1], indices=in_range)


def format_compaction_messages(messages: list[Message]) -> str:
    """Format messages for the summarization prompt."""
    return "\n".join(f"[{msg.role.value}]: {msg.content}" for msg in messages)


def summarize(
    provider: LLMProvider,
    model: str,
    messages: list[Message],
    max_tokens: int = 500,
) -> str:
    """Ask `provider` for a summary, blocking until the call completes.

    Raises:
        CompactionError if the call ends with an error
    """
    prompt = SUMMARY_INSTRUCTION + format_compaction_messages(messages)
    stream = provider.chat(
        model,
        [UnifiedMessage(role=Role.USER, content=prompt)],
        tools=None,
        max_tokens=max_tokens,
    )

    parts: list[str] = []
    for event in stream.wait():
        if isinstance(event, TextEvent):
            parts.append(event.text)
        elif isinstance(event, ErrorEvent):
            raise CompactionError(f"Summarization failed: {event.message}")
        elif isinstance(event, DoneEvent):
            break

    summary = "".join(parts).strip()
    if not summary:
        raise CompactionError("Summarization returned no text")
    return summary


def compact_session(
    session: Session,
    provider: LLMProvider,
    model: str,
    *,
    keep_recent: int = 10,
    summary_max_tokens: int = 500,
) -> tuple[bool, dict[str, Any]]:
    """Summarize older messages and shadow them from future prompts.

    The summarization call is synchronous: the caller's loop is blocked for
    the whole round trip.

    Returns:
        (compacted, stats)

    Raises:
        CompactionError if summarization fails; no message is modified
    """
    span = compute_compaction_range(session.messages, keep_recent)
    if span is None:
        return False, {"reason": "nothing_to_compact", "message_count": len(session.messages)}

    before_tokens = session.total_tokens()
    old_messages = [session.messages[i] for i in span.indices]
    summary_text = summarize(provider, model, old_messages, max_tokens=summary_max_tokens)

    for msg in old_messages:
        msg.tools_executed = True
        msg.compacted = True
    session.add_message(
        Role.SYSTEM,
        f"[Summary of {len(old_messages)} messages]: {summary_text}",
        model=model,
        is_summary=True,
    )

    stats = {
        "before_tokens": before_tokens,
        "after_tokens": session.total_tokens(),
        "compacted_messages": len(old_messages),
        "first_index": span.first_index,
        "last_index": span.last_index,
    }
    log.info("Compaction completed", session=session.id, **stats)
    return True, stats
