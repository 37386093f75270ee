import pytest

from llm_tui.config import ProviderId
from llm_tui.engine import build_outgoing_messages
from llm_tui.session import Message, Role


def _history() -> list[Message]:
    return [
        Message(role=Role.USER, content="list my notes"),
        Message(role=Role.SYSTEM, content="Tool results:\n[Tool result for c1]:\nnotes.txt", tools_executed=True),
        Message(role=Role.SYSTEM, content="Error: Request failed: connection refused"),
        Message(role=Role.ASSISTANT, content=""),
        Message(role=Role.ASSISTANT, content="You have one note."),
    ]


def _contents(provider_id: ProviderId) -> list[str]:
    return [message.content for message in build_outgoing_messages(provider_id, _history())]


def test_bedrock_keeps_tool_transcripts_and_drops_plain_system_messages() -> None:
    contents = _contents(ProviderId.BEDROCK)

    assert "Tool results:\n[Tool result for c1]:\nnotes.txt" in contents
    assert "Error: Request failed: connection refused" not in contents
    assert "" not in contents


def test_bedrock_sends_tool_transcripts_as_user_turns() -> None:
    messages = build_outgoing_messages(ProviderId.BEDROCK, _history())

    assert [message.role for message in messages] == [Role.USER, Role.USER, Role.ASSISTANT]


@pytest.mark.parametrize(
    "provider_id",
    [ProviderId.OLLAMA, ProviderId.CLAUDE, ProviderId.OPENAI, ProviderId.GEMINI],
)
def test_other_backends_drop_tool_transcripts_and_keep_system_messages(provider_id: ProviderId) -> None:
    contents = _contents(provider_id)

    assert "Tool results:\n[Tool result for c1]:\nnotes.txt" not in contents
    assert "Error: Request failed: connection refused" in contents
    assert contents == [
        "list my notes",
        "Error: Request failed: connection refused",
        "You have one note.",
    ]


def test_system_prompt_leads_for_non_bedrock_backends() -> None:
    messages = build_outgoing_messages(ProviderId.CLAUDE, _history(), system_prompt="Be brief.")

    assert messages[0].role == Role.SYSTEM
    assert messages[0].content == "Be brief."


def test_bedrock_folds_system_prompt_and_summaries_into_first_user_message() -> None:
    history = [
        Message(role=Role.USER, content="old question", tools_executed=True, compacted=True),
        Message(role=Role.ASSISTANT, content="old answer", tools_executed=True, compacted=True),
        Message(role=Role.SYSTEM, content="[Summary of 2 messages]: talked about notes", is_summary=True),
        Message(role=Role.USER, content="and now?"),
    ]

    messages = build_outgoing_messages(ProviderId.BEDROCK, history, system_prompt="Be brief.")

    assert len(messages) == 1
    assert messages[0].role == Role.USER
    assert messages[0].content == "Be brief.\n\n[Summary of 2 messages]: talked about notes\n\nand now?"


def test_bedrock_without_user_message_gets_preamble_turn() -> None:
    messages = build_outgoing_messages(
        ProviderId.BEDROCK,
        [Message(role=Role.ASSISTANT, content="hello")],
        system_prompt="Be brief.",
    )

    assert messages[0].role == Role.USER
    assert messages[0].content == "Be brief."
    assert messages[1].content == "hello"


def test_original_history_is_not_mutated() -> None:
    history = [Message(role=Role.USER, content="hi")]

    build_outgoing_messages(ProviderId.BEDROCK, history, system_prompt="Be brief.")

    assert history[0].content == "hi"
