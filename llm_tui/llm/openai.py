"""OpenAI provider - chat completions streamed as server-sent events."""

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
from llm_tui.llm.ollama import convert_tools
from llm_tui.logging import get_logger

log = get_logger(__name__)


OPENAI_BASE_URL = "https://api.openai.com/v1"

OPENAI_MODELS = [
    ("gpt-4o", "GPT-4o"),
    ("gpt-4-turbo", "GPT-4 Turbo"),
    ("gpt-4", "GPT-4"),
    ("gpt-3.5-turbo", "GPT-3.5 Turbo"),
]


class OpenAISSEDecoder:
    """Reassemble chat-completion chunks into unified events.

    Tool calls stream as per-index fragments (id and name first, then
    argument text); they are emitted once the choice reports a finish reason.
    """

    def __init__(self):
        self._tool_calls: dict[int, dict[str, str]] = {}
        self.input_tokens: int | None = None
        self.output_tokens: int | None = None

    def _flush_tool_calls(self) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        for index in sorted(self._tool_calls):
            call = self._tool_calls[index]
            raw = call["arguments"].strip()
            try:
                arguments = json.loads(raw) if raw else {}
            except ValueError as e:
                self._tool_calls.clear()
                return [*events, ErrorEvent(f"Protocol error: invalid tool arguments for {call['name']}: {e}")]
            events.append(ToolUseEvent(id=call["id"], name=call["name"], input=arguments))
        self._tool_calls.clear()
        return events

    def feed_line(self, line: str) -> list[StreamEvent]:
        if not line.startswith("data:"):
            return []
        data = line[len("data:"):].strip()
        if not data:
            return []
        if data == "[DONE]":
            return [*self._flush_tool_calls(), DoneEvent(self.input_tokens, self.output_tokens)]
        try:
            chunk = json.loads(data)
        except ValueError as e:
            return [ErrorEvent(f"Protocol error: {e}")]

        if chunk.get("error"):
            return [ErrorEvent(f"API error: {chunk['error'].get('message', chunk['error'])}")]

        usage = chunk.get("usage")
        if usage:
            self.input_tokens = usage.get("prompt_tokens")
            self.output_tokens = usage.get("completion_tokens")

        events: list[StreamEvent] = []
        for choice in chunk.get("choices") or []:
            delta = choice.get("delta") or {}
            if delta.get("content"):
                events.append(TextEvent(delta["content"]))
            for fragment in delta.get("tool_calls") or []:
                call = self._tool_calls.setdefault(
                    int(fragment.get("index", 0)), {"id": "", "name": "", "arguments": ""}
                )
                if fragment.get("id"):
                    call["id"] = fragment["id"]
                function = fragment.get("function") or {}
                if function.get("name"):
                    call["name"] = function["name"]
                call["arguments"] += function.get("arguments") or ""
            if choice.get("finish_reason"):
                events.extend(self._flush_tool_calls())
        return events


class OpenAIProvider(LLMProvider):
    """OpenAI chat completions provider."""

    provider_id = ProviderId.OPENAI

    def __init__(
        self,
        api_key: str,
        base_url: str = OPENAI_BASE_URL,
        timeout: float = 300.0,
        client: httpx.Client | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.client = client or httpx.Client()

    def is_available(self) -> bool:
        return bool(self.api_key)

    def _stream_chat(self, body: dict[str, Any], sink: EventSink) -> None:
        url = f"{self.base_url}/chat/completions"
        headers = {"Authorization": f"Bearer {self.api_key}"}
        decoder = OpenAISSEDecoder()
        try:
            log.debug("Calling OpenAI", model=body["model"], msg_count=len(body["messages"]))
            with self.client.stream("POST", url, json=body, headers=headers, timeout=self.timeout) as response:
                if not response.is_success:
                    response.read()
                    sink.error(f"API error {response.status_code}: {response.text}")
                    return
                for line in response.iter_lines():
                    for event in decoder.feed_line(line):
                        if not sink.emit(event):
                            return
        except httpx.HTTPError as e:
            sink.error(f"Stream error: {e}")

    def chat(
        self,
        model: str,
        messages: list[UnifiedMessage],
        tools: list[ToolDefinition] | None = None,
        max_tokens: int = 4096,
    ) -> EventStream:
        body: dict[str, Any] = {
            "model": model,
            "messages": [{"role": msg.role.value, "content": msg.content} for msg in messages],
            "max_tokens": max_tokens,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        openai_tools = convert_tools(tools)
        if openai_tools:
            body["tools"] = openai_tools
        return EventStream.spawn("openai", lambda sink: self._stream_chat(body, sink))

    def list_models(self) -> list[ModelInfo]:
        return [ModelInfo(id=model_id, name=name, provider=self.provider_id) for model_id, name in OPENAI_MODELS]
