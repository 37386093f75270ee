import json

import httpx

from llm_tui.llm import DoneEvent, ErrorEvent, TextEvent, ToolDefinition, ToolUseEvent, UnifiedMessage
from llm_tui.llm.gemini import GeminiProvider, GeminiSSEDecoder, convert_messages
from llm_tui.llm.gemini import convert_tools as gemini_tools
from llm_tui.llm.openai import OpenAIProvider, OpenAISSEDecoder
from llm_tui.session import Role

GLOB_TOOL = ToolDefinition(
    name="glob",
    description="Find files",
    input_schema={"type": "object", "properties": {"pattern": {"type": "string"}}, "required": ["pattern"]},
)


def _data(chunk: dict) -> str:
    return f"data: {json.dumps(chunk)}"


def test_openai_decoder_reassembles_tool_call_fragments() -> None:
    decoder = OpenAISSEDecoder()
    events = []
    events += decoder.feed_line(_data({"choices": [{"delta": {"content": "Searching"}}]}))
    events += decoder.feed_line(
        _data(
            {
                "choices": [
                    {
                        "delta": {
                            "tool_calls": [
                                {"index": 0, "id": "call_a", "function": {"name": "glob", "arguments": "{\"pat"}}
                            ]
                        }
                    }
                ]
            }
        )
    )
    events += decoder.feed_line(
        _data({"choices": [{"delta": {"tool_calls": [{"index": 0, "function": {"arguments": "tern\": \"*.rs\"}"}}]}}]})
    )
    events += decoder.feed_line(_data({"choices": [{"delta": {}, "finish_reason": "tool_calls"}]}))
    events += decoder.feed_line(_data({"choices": [], "usage": {"prompt_tokens": 20, "completion_tokens": 8}}))
    events += decoder.feed_line("data: [DONE]")

    assert events == [
        TextEvent("Searching"),
        ToolUseEvent(id="call_a", name="glob", input={"pattern": "*.rs"}),
        DoneEvent(input_tokens=20, output_tokens=8),
    ]


def test_openai_chat_posts_to_completions_with_bearer_token() -> None:
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["auth"] = request.headers["authorization"]
        captured["body"] = json.loads(request.read())
        content = "\n\n".join(
            [_data({"choices": [{"delta": {"content": "ok"}, "finish_reason": "stop"}]}), "data: [DONE]"]
        )
        return httpx.Response(200, content=content.encode())

    provider = OpenAIProvider("sk-openai", base_url="https://openai.test/v1", client=httpx.Client(transport=httpx.MockTransport(handler)))

    events = provider.chat("gpt-4o", [UnifiedMessage(role=Role.USER, content="hi")], [GLOB_TOOL]).wait(timeout=5)

    assert events == [TextEvent("ok"), DoneEvent()]
    assert captured["url"] == "https://openai.test/v1/chat/completions"
    assert captured["auth"] == "Bearer sk-openai"
    assert captured["body"]["stream_options"] == {"include_usage": True}
    assert captured["body"]["tools"][0]["function"]["name"] == "glob"


def test_openai_error_status_is_single_error() -> None:
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(401, text="bad key")))

    events = OpenAIProvider("sk", client=client).chat("gpt-4o", [UnifiedMessage(role=Role.USER, content="hi")]).wait(
        timeout=5
    )

    assert events == [ErrorEvent("API error 401: bad key")]


def test_gemini_decoder_synthesizes_tool_ids_and_tracks_usage() -> None:
    decoder = GeminiSSEDecoder()
    events = decoder.feed_line(
        _data(
            {
                "candidates": [
                    {
                        "content": {
                            "parts": [
                                {"text": "Let me look."},
                                {"functionCall": {"name": "glob", "args": {"pattern": "*.md"}}},
                                {"functionCall": {"name": "read", "args": {"file_path": "/home/u/README.md"}}},
                            ]
                        }
                    }
                ],
                "usageMetadata": {"promptTokenCount": 30, "candidatesTokenCount": 11},
            }
        )
    )

    assert events == [
        TextEvent("Let me look."),
        ToolUseEvent(id="gemini-tool-1", name="glob", input={"pattern": "*.md"}),
        ToolUseEvent(id="gemini-tool-2", name="read", input={"file_path": "/home/u/README.md"}),
    ]
    assert decoder.finish() == DoneEvent(input_tokens=30, output_tokens=11)


def test_gemini_message_and_tool_conversion() -> None:
    system, contents = convert_messages(
        [
            UnifiedMessage(role=Role.SYSTEM, content="Be brief."),
            UnifiedMessage(role=Role.USER, content="hi"),
            UnifiedMessage(role=Role.ASSISTANT, content="hello"),
        ]
    )

    assert system == "Be brief."
    assert contents == [
        {"role": "user", "parts": [{"text": "hi"}]},
        {"role": "model", "parts": [{"text": "hello"}]},
    ]
    assert gemini_tools([GLOB_TOOL]) == [
        {"functionDeclarations": [{"name": "glob", "description": "Find files", "parameters": GLOB_TOOL.input_schema}]}
    ]


def test_gemini_chat_uses_stream_endpoint_and_system_instruction() -> None:
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["path"] = request.url.path
        captured["params"] = dict(request.url.params)
        captured["body"] = json.loads(request.read())
        return httpx.Response(
            200,
            content=_data({"candidates": [{"content": {"parts": [{"text": "Hi!"}]}}]}).encode() + b"\n\n",
        )

    provider = GeminiProvider(
        "g-key",
        base_url="https://gemini.test/v1beta",
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )

    events = provider.chat(
        "gemini-1.5-flash",
        [UnifiedMessage(role=Role.SYSTEM, content="Be brief."), UnifiedMessage(role=Role.USER, content="hi")],
        max_tokens=64,
    ).wait(timeout=5)

    assert events == [TextEvent("Hi!"), DoneEvent()]
    assert captured["path"] == "/v1beta/models/gemini-1.5-flash:streamGenerateContent"
    assert captured["params"] == {"alt": "sse", "key": "g-key"}
    assert captured["body"]["systemInstruction"] == {"parts": [{"text": "Be brief."}]}
    assert captured["body"]["generationConfig"] == {"maxOutputTokens": 64}
