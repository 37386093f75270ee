"""Google Gemini provider - streamGenerateContent over server-sent events."""

import json
from typing import Any

import httpx

from llm_tui.config import ProviderId
from llm_tui.llm import (
    DoneEvent,
    ErrorEvent,
    EventSink,
    EventStream,
    LLMProvider,
    ModelInfo,
    StreamEvent,
    TextEvent,
    ToolDefinition,
    ToolUseEvent,
    UnifiedMessage,
)
from llm_tui.logging import get_logger
from llm_tui.session import Role

log = get_logger(__name__)


GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

GEMINI_MODELS = [
    ("gemini-2.0-flash-exp", "Gemini 2.0 Flash Experimental"),
    ("gemini-1.5-pro", "Gemini 1.5 Pro"),
    ("gemini-1.5-flash", "Gemini 1.5 Flash"),
]


def convert_tools(tools: list[ToolDefinition] | None) -> list[dict[str, Any]]:
    if not tools:
        return []
    return [
        {
            "functionDeclarations": [
                {"name": tool.name, "description": tool.description, "parameters": tool.input_schema}
                for tool in tools
            ]
        }
    ]


def convert_messages(messages: list[UnifiedMessage]) -> tuple[str, list[dict[str, Any]]]:
    """Split system text from contents; assistant turns use the `model` role."""
    system = "\n\n".join(msg.content for msg in messages if msg.role == Role.SYSTEM and msg.content)
    contents = [
        {
            "role": "model" if msg.role == Role.ASSISTANT else "user",
            "parts": [{"text": msg.content}],
        }
        for msg in messages
        if msg.role != Role.SYSTEM
    ]
    return system, contents


class GeminiSSEDecoder:
    """Decode streamed GenerateContentResponse chunks."""

    def __init__(self):
        self._tool_counter = 0
        self.input_tokens: int | None = None
        self.output_tokens: int | None = None

    def finish(self) -> DoneEvent:
        return DoneEvent(self.input_tokens, self.output_tokens)

    def feed_line(self, line: str) -> list[StreamEvent]:
        if not line.startswith("data:"):
            return []
        data = line[len("data:"):].strip()
        if not data:
            return []
        try:
            chunk = json.loads(data)
        except ValueError as e:
            return [ErrorEvent(f"Protocol error: {e}")]

        if chunk.get("error"):
            return [ErrorEvent(f"API error: {chunk['error'].get('message', chunk['error'])}")]

        usage = chunk.get("usageMetadata")
        if usage:
            self.input_tokens = usage.get("promptTokenCount", self.input_tokens)
            self.output_tokens = usage.get("candidatesTokenCount", self.output_tokens)

        events: list[StreamEvent] = []
        for candidate in chunk.get("candidates") or []:
            for part in (candidate.get("content") or {}).get("parts") or []:
                if part.get("text"):
                    events.append(TextEvent(part["text"]))
                elif part.get("functionCall"):
                    call = part["functionCall"]
                    self._tool_counter += 1
                    events.append(
                        ToolUseEvent(
                            id=f"gemini-tool-{self._tool_counter}",
                            name=str(call.get("name", "")),
                            input=call.get("args") or {},
                        )
                    )
        return events


class GeminiProvider(LLMProvider):
    """Google Gemini provider."""

    provider_id = ProviderId.GEMINI

    def __init__(
        self,
        api_key: str,
        base_url: str = GEMINI_BASE_URL,
        timeout: float = 300.0,
        client: httpx.Client | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.client = client or httpx.Client()

    def is_available(self) -> bool:
        return bool(self.api_key)

    def _stream_chat(self, model: str, body: dict[str, Any], sink: EventSink) -> None:
        url = f"{self.base_url}/models/{model}:streamGenerateContent"
        params = {"alt": "sse", "key": self.api_key}
        decoder = GeminiSSEDecoder()
        try:
            log.debug("Calling Gemini", model=model, msg_count=len(body["contents"]))
            with self.client.stream("POST", url, params=params, json=body, timeout=self.timeout) as response:
                if not response.is_success:
                    response.read()
                    sink.error(f"API error: {response.text}")
                    return
                for line in response.iter_lines():
                    for event in decoder.feed_line(line):
                        if not sink.emit(event):
                            return
            sink.emit(decoder.finish())
        except httpx.HTTPError as e:
            sink.error(f"Request error: {e}")

    def chat(
        self,
        model: str,
        messages: list[UnifiedMessage],
        tools: list[ToolDefinition] | None = None,
        max_tokens: int = 4096,
    ) -> EventStream:
        system, contents = convert_messages(messages)
        body: dict[str, Any] = {
            "contents": contents,
            "generationConfig": {"maxOutputTokens": max_tokens},
        }
        if system:
            body["systemInstruction"] = {"parts": [{"text": system}]}
        gemini_tools = convert_tools(tools)
        if gemini_tools:
            body["tools"] = gemini_tools
        return EventStream.spawn("gemini", lambda sink: self._stream_chat(model, body, sink))

    def list_models(self) -> list[ModelInfo]:
        return [ModelInfo(id=model_id, name=name, provider=self.provider_id) for model_id, name in GEMINI_MODELS]
