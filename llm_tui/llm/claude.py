"""Claude provider - Anthropic messages API over server-sent events."""

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


ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"

CLAUDE_MODELS = [
    ("claude-sonnet-4-20250514", "Claude Sonnet 4"),
    ("claude-3-5-sonnet-20241022", "Claude 3.5 Sonnet"),
    ("claude-3-opus-20240229", "Claude 3 Opus"),
    ("claude-3-haiku-20240307", "Claude 3 Haiku"),
]


def usage_count(usage: dict[str, Any], key: str) -> int | None:
    """Token count from a usage block, or None when the provider left it out."""
    value = usage.get(key)
    return int(value) if value is not None else None


def convert_tools(tools: list[ToolDefinition] | None) -> list[dict[str, Any]]:
    """Convert tools to Anthropic format (shared by the Bedrock adapter)."""
    return [
        {"name": tool.name, "description": tool.description, "input_schema": tool.input_schema}
        for tool in tools or []
    ]


def split_system(messages: list[UnifiedMessage]) -> tuple[str, list[dict[str, str]]]:
    """Separate system messages (top-level field) from the conversation turns."""
    system_parts = [msg.content for msg in messages if msg.role == Role.SYSTEM and msg.content]
    turns = [
        {"role": msg.role.value, "content": msg.content}
        for msg in messages
        if msg.role != Role.SYSTEM
    ]
    return "\n\n".join(system_parts), turns


class ClaudeSSEDecoder:
    """State machine over Anthropic streaming event types.

    Text deltas are forwarded as they arrive. Tool input arrives as JSON
    fragments that are buffered and parsed once the content block stops.
    """

    def __init__(self):
        self.input_tokens: int | None = None
        self.output_tokens: int | None = None
        self._tool_open = False
        self._tool_id = ""
        self._tool_name = ""
        self._tool_input = ""

    def _done(self) -> DoneEvent:
        return DoneEvent(input_tokens=self.input_tokens, output_tokens=self.output_tokens)

    def feed_line(self, line: str) -> list[StreamEvent]:
        """Decode one SSE line; lines other than `data:` payloads are ignored."""
        if not line.startswith("data:"):
            return []
        data = line[len("data:"):].strip()
        if not data:
            return []
        if data == "[DONE]":
            return [self._done()]
        try:
            event = json.loads(data)
        except ValueError as e:
            return [ErrorEvent(f"Protocol error: {e}")]
        if not isinstance(event, dict):
            return [ErrorEvent("Protocol error: expected a JSON object")]
        return self.feed_event(event)

    def feed_event(self, event: dict[str, Any]) -> list[StreamEvent]:
        event_type = event.get("type", "")

        if event_type == "message_start":
            usage = (event.get("message") or {}).get("usage") or {}
            self.input_tokens = usage_count(usage, "input_tokens")
            self.output_tokens = usage_count(usage, "output_tokens")
        elif event_type == "message_delta":
            usage = event.get("usage") or {}
            if usage.get("output_tokens") is not None:
                self.output_tokens = usage_count(usage, "output_tokens")
        elif event_type == "content_block_start":
            block = event.get("content_block") or {}
            if block.get("type") == "tool_use":
                self._tool_open = True
                self._tool_id = str(block.get("id", ""))
                self._tool_name = str(block.get("name", ""))
                self._tool_input = ""
            else:
                self._tool_open = False
                if block.get("type") == "text" and block.get("text"):
                    return [TextEvent(block["text"])]
        elif event_type == "content_block_delta":
            delta = event.get("delta") or {}
            delta_type = delta.get("type")
            if delta_type == "text_delta" and delta.get("text"):
                return [TextEvent(delta["text"])]
            if delta_type == "input_json_delta":
                self._tool_input += delta.get("partial_json") or ""
        elif event_type == "content_block_stop":
            if self._tool_open:
                self._tool_open = False
                raw = self._tool_input.strip()
                self._tool_input = ""
                try:
                    tool_input = json.loads(raw) if raw else {}
                except ValueError as e:
                    return [ErrorEvent(f"Protocol error: invalid tool input for {self._tool_name}: {e}")]
                return [ToolUseEvent(id=self._tool_id, name=self._tool_name, input=tool_input)]
        elif event_type == "message_stop":
            return [self._done()]
        elif event_type == "error":
            error = event.get("error") or {}
            return [ErrorEvent(f"API error: {error.get('message') or error}")]
        return []


class ClaudeProvider(LLMProvider):
    """Anthropic messages API provider."""

    provider_id = ProviderId.CLAUDE

    def __init__(
        self,
        api_key: str,
        api_url: str = ANTHROPIC_API_URL,
        timeout: float = 300.0,
        client: httpx.Client | None = None,
    ):
        self.api_key = api_key
        self.api_url = api_url
        self.timeout = timeout
        self.client = client or httpx.Client()

    def is_available(self) -> bool:
        return bool(self.api_key)

    def _request_body(
        self,
        model: str,
        messages: list[UnifiedMessage],
        tools: list[ToolDefinition] | None,
        max_tokens: int,
    ) -> dict[str, Any]:
        system, turns = split_system(messages)
        body: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": turns,
            "stream": True,
        }
        if system:
            body["system"] = system
        claude_tools = convert_tools(tools)
        if claude_tools:
            body["tools"] = claude_tools
        return body

    def _stream_chat(self, body: dict[str, Any], sink: EventSink) -> None:
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }
        decoder = ClaudeSSEDecoder()
        try:
            log.debug("Calling Claude", model=body["model"], msg_count=len(body["messages"]))
            with self.client.stream(
                "POST", self.api_url, json=body, headers=headers, timeout=self.timeout
            ) as response:
                if not response.is_success:
                    response.read()
                    sink.error(f"API request failed: {response.text}")
                    return
                for line in response.iter_lines():
                    for event in decoder.feed_line(line):
                        if not sink.emit(event):
                            return
        except httpx.HTTPError as e:
            sink.error(f"Request failed: {e}")

    def chat(
        self,
        model: str,
        messages: list[UnifiedMessage],
        tools: list[ToolDefinition] | None = None,
        max_tokens: int = 4096,
    ) -> EventStream:
        body = self._request_body(model, messages, tools, max_tokens)
        return EventStream.spawn("claude", lambda sink: self._stream_chat(body, sink))

    def list_models(self) -> list[ModelInfo]:
        return [ModelInfo(id=model_id, name=name, provider=self.provider_id) for model_id, name in CLAUDE_MODELS]
