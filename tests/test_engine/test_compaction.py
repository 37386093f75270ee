import threading
import time

import pytest

from llm_tui.compaction import compact_session, compute_compaction_range, needs_compaction
from llm_tui.config import Config, ContextConfig, OllamaConfig, ProviderId
from llm_tui.engine import Conversation
from llm_tui.exceptions import CompactionError
from llm_tui.llm import DoneEvent, ErrorEvent, EventSink, EventStream, LLMProvider, TextEvent
from llm_tui.llm.registry import ProviderRegistry
from llm_tui.session import Message, Role, Session, estimate_tokens


class SummaryProvider(LLMProvider):
    provider_id = ProviderId.OLLAMA

    def __init__(self, *scripts):
        self.scripts = list(scripts)
        self.calls: list[dict] = []

    def is_available(self) -> bool:
        return True

    def chat(self, model, messages, tools=None, max_tokens=4096) -> EventStream:
        self.calls.append({"messages": list(messages), "tools": tools, "max_tokens": max_tokens})
        script = self.scripts.pop(0)
        if callable(script):
            return EventStream.spawn("summary", script)
        return EventStream.from_events(script)

    def list_models(self):
        return []


def _session(count: int) -> Session:
    session = Session(provider_id=ProviderId.OLLAMA, model="llama2")
    for i in range(count):
        role = Role.USER if i % 2 == 0 else Role.ASSISTANT
        session.add_message(role, f"message number {i:02d} with some padding text")
    return session


def test_estimate_tokens_rounds_up() -> None:
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2


def test_total_tokens_skips_summaries_and_prefers_exact_counts() -> None:
    session = Session(provider_id=ProviderId.OLLAMA, model="llama2")
    session.add_message(Role.USER, "abcdefgh")
    session.add_message(Role.ASSISTANT, "whatever", token_count=50)
    session.add_message(Role.SYSTEM, "summary text here", is_summary=True)
    replaced = session.add_message(Role.USER, "replaced by the summary", token_count=900)
    replaced.compacted = True

    assert session.total_tokens() == 52


def test_threshold_triggers_above_three_quarters_of_window() -> None:
    assert needs_compaction(3200, 4096, 0.75) is True
    assert needs_compaction(3000, 4096, 0.75) is False
    assert needs_compaction(3072, 4096, 0.75) is False


def test_range_keeps_last_ten_of_fifteen() -> None:
    span = compute_compaction_range(_session(15).messages, keep_recent=10)

    assert (span.first_index, span.last_index) == (0, 4)
    assert len(span) == 5


def test_no_compaction_with_fewer_messages_than_keep_recent() -> None:
    assert compute_compaction_range(_session(8).messages, keep_recent=10) is None
    assert compute_compaction_range(_session(10).messages, keep_recent=10) is None


def test_range_skips_summaries_and_shadowed_messages() -> None:
    messages = [Message(role=Role.USER, content=f"m{i}") for i in range(14)]
    messages[1].tools_executed = True
    messages[3].is_summary = True

    span = compute_compaction_range(messages, keep_recent=10)

    assert span.indices == [0, 2]
    assert (span.first_index, span.last_index) == (0, 2)


def test_compaction_shadows_range_and_appends_summary() -> None:
    session = _session(15)
    provider = SummaryProvider([TextEvent("They discussed "), TextEvent("numbers."), DoneEvent()])

    compacted, stats = compact_session(session, provider, "llama2", keep_recent=10, summary_max_tokens=500)

    assert compacted is True
    assert stats["compacted_messages"] == 5
    assert provider.calls[0]["max_tokens"] == 500
    assert provider.calls[0]["tools"] is None
    prompt = provider.calls[0]["messages"][0].content
    assert "[user]: message number 00" in prompt
    assert "[assistant]: message number 01" in prompt
    assert "message number 05" not in prompt
    assert all(m.tools_executed and m.compacted for m in session.messages[:5])
    assert not any(m.tools_executed for m in session.messages[5:15])
    summary = session.messages[-1]
    assert summary.role == Role.SYSTEM
    assert summary.is_summary is True
    assert summary.content == "[Summary of 5 messages]: They discussed numbers."


def test_failed_summarization_leaves_history_untouched() -> None:
    session = _session(15)
    before = [(m.content, m.tools_executed, m.is_summary) for m in session.messages]
    provider = SummaryProvider([ErrorEvent("Request failed: connection refused")])

    with pytest.raises(CompactionError):
        compact_session(session, provider, "llama2", keep_recent=10)

    assert [(m.content, m.tools_executed, m.is_summary) for m in session.messages] == before


def test_compaction_blocks_until_summary_arrives() -> None:
    session = _session(12)
    started = threading.Event()

    def slow_summary(sink: EventSink) -> None:
        started.set()
        time.sleep(0.2)
        sink.text("late summary")
        sink.done()

    provider = SummaryProvider(slow_summary)
    begin = time.monotonic()

    compacted, _ = compact_session(session, provider, "llama2", keep_recent=10)

    assert started.is_set()
    assert time.monotonic() - begin >= 0.2
    assert compacted is True
    assert session.messages[-1].content == "[Summary of 2 messages]: late summary"


def _compacting_conversation(*scripts, context_window: int = 100) -> tuple[Conversation, SummaryProvider]:
    provider = SummaryProvider(*scripts)
    providers = ProviderRegistry()
    providers.register(provider)
    config = Config(
        system_prompt="",
        ollama=OllamaConfig(context_window=context_window),
        context=ContextConfig(compaction_threshold=0.75, keep_recent=10),
    )
    session = _session(15)
    return Conversation(session, providers, None, config=config), provider


def test_submit_compacts_over_budget_history_before_sending() -> None:
    conversation, provider = _compacting_conversation(
        [TextEvent("summary of old turns"), DoneEvent()],
        [TextEvent("answer"), DoneEvent()],
    )

    conversation.submit("new question")

    assert len(provider.calls) == 2
    assert provider.calls[0]["max_tokens"] == 500
    sent = [m.content for m in provider.calls[1]["messages"]]
    assert sent[0] == "message number 06 with some padding text"
    assert sent[-2] == "new question"
    assert sent[-1] == "[Summary of 6 messages]: summary of old turns"


def test_turn_proceeds_when_compaction_fails() -> None:
    conversation, provider = _compacting_conversation(
        [ErrorEvent("summarizer down")],
        [TextEvent("answer"), DoneEvent()],
    )

    conversation.submit("new question")
    conversation.pump()

    assert len(provider.calls) == 2
    assert not any(m.is_summary for m in conversation.session.messages)
    assert conversation.session.messages[-1].content == "answer"
    assert len(provider.calls[1]["messages"]) == 16


def test_compaction_does_not_refire_once_history_is_back_under_budget() -> None:
    conversation, provider = _compacting_conversation(
        [TextEvent("summary of old turns"), DoneEvent()],
        [TextEvent("answer"), DoneEvent()],
        [TextEvent("second answer"), DoneEvent()],
        context_window=200,
    )

    conversation.submit("new question")
    conversation.pump()
    after_first = conversation.session.total_tokens()
    conversation.submit("follow up")
    conversation.pump()

    assert after_first < 150
    assert len(provider.calls) == 3
    assert provider.calls[2]["max_tokens"] == conversation.config.max_tokens
    assert sum(1 for m in conversation.session.messages if m.is_summary) == 1
    assert conversation.session.messages[-1].content == "second answer"
