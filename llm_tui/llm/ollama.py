"""Ollama provider - line-delimited JSON streaming over HTTP."""

import json
import subprocess
import time
from typing import Any

import httpx

from llm_tui.config import ProviderId
from llm_tui.exceptions import LLMAPIError, LLMError
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

log = get_logger(__name__)


OLLAMA_NATIVE_BASE_URL = "http://localhost:11434"


def convert_tools(tools: list[ToolDefinition] | None) -> list[dict[str, Any]] | None:
    """Convert tools to Ollama (function-calling) format."""
    if not tools:
        return None
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.input_schema,
            },
        }
        for tool in tools
    ]


def convert_messages(messages: list[UnifiedMessage]) -> list[dict[str, str]]:
    """Convert messages to Ollama format."""
    return [{"role": msg.role.value, "content": msg.content} for msg in messages]


class OllamaStreamDecoder:
    """Decode `/api/chat` stream lines into unified events.

    Tool calls carry no id on this protocol, so ids are synthesized from a
    per-stream counter. Tool calls in a line are emitted before its text.
    """

    def __init__(self):
        self._tool_counter = 0

    def _next_tool_id(self) -> str:
        self._tool_counter += 1
        return f"ollama-tool-{self._tool_counter}"

    @staticmethod
    def _parse_arguments(raw: Any) -> dict[str, Any]:
        if isinstance(raw, dict):
            return raw
        if isinstance(raw, str) and raw.strip():
            parsed = json.loads(raw)
            if isinstance(parsed, dict):
                return parsed
        return {}

    @staticmethod
    def _usage(chunk: dict[str, Any]) -> tuple[int | None, int | None]:
        usage = chunk.get("usage")
        if not isinstance(usage, dict):
            return None, None
        input_tokens = usage.get("input_tokens", usage.get("prompt_tokens"))
        output_tokens = usage.get("output_tokens", usage.get("completion_tokens"))
        return input_tokens, output_tokens

    def feed_line(self, line: str) -> list[StreamEvent]:
        """Decode one line; an undecodable line yields a single ErrorEvent."""
        if not line.strip():
            return []
        try:
            chunk = json.loads(line)
            if not isinstance(chunk, dict):
                raise ValueError("expected a JSON object")
            events: list[StreamEvent] = []
            message = chunk.get("message") or {}
            for tool_call in message.get("tool_calls") or []:
                function = tool_call.get("function") or {}
                events.append(
                    ToolUseEvent(
                        id=self._next_tool_id(),
                        name=str(function.get("name", "")),
                        input=self._parse_arguments(function.get("arguments")),
                    )
                )
            content = message.get("content") or ""
            if content:
                events.append(TextEvent(content))
            if chunk.get("done"):
                input_tokens, output_tokens = self._usage(chunk)
                events.append(DoneEvent(input_tokens=input_tokens, output_tokens=output_tokens))
            return events
        except (ValueError, AttributeError, TypeError) as e:
            return [ErrorEvent(f"Parse error: {e}")]


class OllamaProvider(LLMProvider):
    """Direct Ollama API provider."""

    provider_id = ProviderId.OLLAMA

    def __init__(
        self,
        base_url: str = OLLAMA_NATIVE_BASE_URL,
        timeout: float = 300.0,
        client: httpx.Client | None = None,
        auto_start: bool = False,
    ):
        """Initialize Ollama provider.

        Args:
            base_url: Ollama API base URL
            timeout: Timeout for chat requests in seconds
            client: Optional preconfigured HTTP client
            auto_start: Spawn `ollama serve` before a chat call if the server is down
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.auto_start = auto_start
        self.client = client or httpx.Client(follow_redirects=True)
        self.process: subprocess.Popen | None = None

    def is_running(self) -> bool:
        try:
            self.client.get(f"{self.base_url}/api/tags", timeout=2.0)
            return True
        except httpx.HTTPError:
            return False

    def is_available(self) -> bool:
        return self.is_running()

    def start_server(self) -> None:
        """Spawn `ollama serve` and wait up to three seconds for it to answer."""
        if self.is_running():
            return
        try:
            self.process = subprocess.Popen(
                ["ollama", "serve"],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as e:
            raise LLMError(f"Failed to start Ollama server: {e}")

        for _ in range(30):
            time.sleep(0.1)
            if self.is_running():
                log.info("Ollama server started", url=self.base_url)
                return
        raise LLMError("Ollama server failed to start")

    def stop_server(self) -> None:
        """Kill a server process started by `start_server`."""
        if self.process is not None:
            self.process.kill()
            self.process = None

    def _stream_chat(self, body: dict[str, Any], sink: EventSink) -> None:
        url = f"{self.base_url}/api/chat"
        decoder = OllamaStreamDecoder()
        if self.auto_start:
            self.start_server()
        try:
            log.debug("Calling Ollama", model=body["model"], url=url, msg_count=len(body["messages"]))
            with self.client.stream("POST", url, json=body, timeout=self.timeout) as response:
                if not response.is_success:
                    response.read()
                    sink.error(f"Ollama API error {response.status_code}: {response.text}")
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
        body: dict[str, Any] = {
            "model": model,
            "messages": convert_messages(messages),
            "stream": True,
            "options": {"num_predict": max_tokens},
        }
        ollama_tools = convert_tools(tools)
        if ollama_tools:
            body["tools"] = ollama_tools

        return EventStream.spawn("ollama", lambda sink: self._stream_chat(body, sink))

    def list_models(self) -> list[ModelInfo]:
        try:
            response = self.client.get(f"{self.base_url}/api/tags", timeout=10.0)
        except httpx.HTTPError as e:
            raise LLMAPIError(f"Ollama HTTP error: {e}")
        if not response.is_success:
            raise LLMAPIError(
                f"Ollama API error {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        return [
            ModelInfo(id=item["name"], name=item["name"], provider=self.provider_id)
            for item in response.json().get("models", [])
        ]

    def pull_model(self, name: str) -> EventStream:
        """Download a model; progress lines arrive as text events."""

        def _pull(sink: EventSink) -> None:
            url = f"{self.base_url}/api/pull"
            try:
                with self.client.stream("POST", url, json={"name": name, "stream": True}, timeout=None) as response:
                    if not response.is_success:
                        response.read()
                        sink.error(f"Error {response.status_code}: {response.text}")
                        return
                    for line in response.iter_lines():
                        if not line.strip():
                            continue
                        try:
                            progress = json.loads(line)
                        except ValueError:
                            continue
                        status = str(progress.get("status", ""))
                        completed, total = progress.get("completed"), progress.get("total")
                        if completed is not None and total:
                            status = f"{status}: {completed / total * 100:.1f}%"
                        if not sink.text(status):
                            return
                sink.done()
            except httpx.HTTPError as e:
                sink.error(f"Error: {e}")

        return EventStream.spawn("ollama-pull", _pull)

    def delete_model(self, name: str) -> None:
        try:
            response = self.client.request("DELETE", f"{self.base_url}/api/delete", json={"name": name})
        except httpx.HTTPError as e:
            raise LLMAPIError(f"Ollama HTTP error: {e}")
        if not response.is_success:
            raise LLMAPIError(
                f"Ollama API error {response.status_code}: {response.text}",
                status_code=response.status_code,
            )

    def unload_model(self, model: str) -> None:
        """Ask the server to evict a model from memory; failures are ignored."""
        try:
            self.client.post(f"{self.base_url}/api/generate", json={"model": model, "keep_alive": 0})
        except httpx.HTTPError as e:
            log.debug("Ollama unload failed", model=model, error=str(e))

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()
