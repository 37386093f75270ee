"""Unified provider abstraction.

Every backend adapter translates a list of `UnifiedMessage` plus the shared
`ToolDefinition` catalog into its own wire request, and translates the
response back into a sequence of `StreamEvent` values delivered through an
`EventStream`. The stream is filled by a worker thread and drained by the
foreground loop with non-blocking `poll()` calls.
"""

import queue
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable

from llm_tui.config import ProviderId
from llm_tui.exceptions import StreamClosedError
from llm_tui.logging import get_logger
from llm_tui.session import Role

log = get_logger(__name__)


@dataclass
class UnifiedMessage:
    """A message as sent to a provider."""

    role: Role
    content: str

    def __post_init__(self) -> None:
        self.role = Role(self.role)


@dataclass(frozen=True)
class ToolDefinition:
    """Definition of a tool for the LLM."""

    name: str
    description: str
    input_schema: dict[str, Any]


@dataclass
class ToolCallRequest:
    """A tool call requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any]


@dataclass
class ToolResult:
    """Text result of a tool call, sent back to the model."""

    tool_use_id: str
    content: str


@dataclass
class ModelInfo:
    """A model offered by a provider."""

    id: str
    name: str
    provider: ProviderId


# Stream events


@dataclass
class TextEvent:
    """Streamed text content."""

    text: str


@dataclass
class ToolUseEvent:
    """The model requests a tool call."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)

    def to_request(self) -> ToolCallRequest:
        return ToolCallRequest(id=self.id, name=self.name, arguments=dict(self.input))


@dataclass
class DoneEvent:
    """Response complete."""

    input_tokens: int | None = None
    output_tokens: int | None = None


@dataclass
class ErrorEvent:
    """Transport or protocol failure; ends the stream."""

    message: str


StreamEvent = TextEvent | ToolUseEvent | DoneEvent | ErrorEvent


def is_terminal(event: StreamEvent) -> bool:
    """Whether an event ends its stream."""
    return isinstance(event, (DoneEvent, ErrorEvent))


class EventSink:
    """Producer side of an event stream.

    Enforces the stream contract: at most one terminal event, nothing after
    it, and nothing once the consumer has dropped the stream.
    """

    def __init__(self, stream: "EventStream"):
        self._stream = stream
        self._terminated = False

    @property
    def terminated(self) -> bool:
        return self._terminated

    @property
    def cancelled(self) -> bool:
        """Whether the consumer dropped the stream."""
        return self._stream.closed

    def emit(self, event: StreamEvent) -> bool:
        """Push an event; returns False when the worker should stop."""
        if self._terminated:
            log.debug("Dropping event after terminal event", event_type=type(event).__name__)
            return False
        if is_terminal(event):
            self._terminated = True
        self._stream._queue.put(event)
        return not self._terminated and not self.cancelled

    def text(self, text: str) -> bool:
        return self.emit(TextEvent(text))

    def tool_use(self, id: str, name: str, input: dict[str, Any]) -> bool:
        return self.emit(ToolUseEvent(id=id, name=name, input=input))

    def done(self, input_tokens: int | None = None, output_tokens: int | None = None) -> bool:
        return self.emit(DoneEvent(input_tokens=input_tokens, output_tokens=output_tokens))

    def error(self, message: str) -> bool:
        return self.emit(ErrorEvent(message))


class EventStream:
    """Consumer handle for one in-flight provider call."""

    def __init__(self, label: str = "stream"):
        self.label = label
        self._queue: queue.SimpleQueue[StreamEvent] = queue.SimpleQueue()
        self._finished = False
        self._closed = False
        self._thread: threading.Thread | None = None

    @classmethod
    def spawn(cls, label: str, target: Callable[[EventSink], None]) -> "EventStream":
        """Run `target` on a worker thread that feeds a new stream.

        The worker is a daemon thread, so an abandoned call never keeps the
        process alive. Any exception escaping `target`, or a return without a
        terminal event, is turned into a single `ErrorEvent`.
        """
        stream = cls(label)
        sink = EventSink(stream)

        def _run() -> None:
            try:
                target(sink)
            except Exception as e:
                log.error("Provider worker failed", stream=label, error=str(e))
                sink.error(f"{label} error: {e}")
            finally:
                if not sink.terminated:
                    sink.error(f"{label} error: stream ended before completion")

        stream._thread = threading.Thread(target=_run, name=f"llm-{label}", daemon=True)
        stream._thread.start()
        return stream

    @classmethod
    def from_events(cls, events: list[StreamEvent], label: str = "static") -> "EventStream":
        """Build an already-filled stream (used for synchronous adapters and tests)."""
        stream = cls(label)
        sink = EventSink(stream)
        for event in events:
            sink.emit(event)
        if not sink.terminated:
            sink.error(f"{label} error: stream ended before completion")
        return stream

    @property
    def finished(self) -> bool:
        """Whether the terminal event has been consumed."""
        return self._finished

    @property
    def closed(self) -> bool:
        """Whether the consumer dropped this stream."""
        return self._closed

    def poll(self) -> StreamEvent | None:
        """Return the next event, or None if none is ready yet. Never blocks."""
        if self._finished or self._closed:
            raise StreamClosedError(f"Stream '{self.label}' is exhausted")
        try:
            event = self._queue.get_nowait()
        except queue.Empty:
            return None
        if is_terminal(event):
            self._finished = True
        return event

    def wait(self, timeout: float | None = None) -> list[StreamEvent]:
        """Block until the terminal event and return every event received.

        Used only where a call is deliberately synchronous (compaction).
        """
        if self._finished or self._closed:
            raise StreamClosedError(f"Stream '{self.label}' is exhausted")
        events: list[StreamEvent] = []
        while True:
            try:
                event = self._queue.get(timeout=timeout)
            except queue.Empty:
                self.close()
                events.append(ErrorEvent(f"{self.label} error: timed out waiting for response"))
                return events
            events.append(event)
            if is_terminal(event):
                self._finished = True
                return events

    def close(self) -> None:
        """Drop the stream. The worker may keep running; its events are discarded."""
        self._closed = True


def format_tool_results(tool_results: list[ToolResult]) -> str:
    """Render tool results as the text of a user turn."""
    return "\n\n".join(
        f"[Tool result for {result.tool_use_id}]:\n{result.content}"
        for result in tool_results
    )


class LLMProvider(ABC):
    """Capability set every backend adapter implements."""

    provider_id: ProviderId

    @property
    def name(self) -> str:
        return self.provider_id.value

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the backend is configured and reachable."""

    @abstractmethod
    def chat(
        self,
        model: str,
        messages: list[UnifiedMessage],
        tools: list[ToolDefinition] | None = None,
        max_tokens: int = 4096,
    ) -> EventStream:
        """Start a chat call; returns immediately with the event stream."""

    def continue_with_tools(
        self,
        model: str,
        messages: list[UnifiedMessage],
        tools: list[ToolDefinition] | None,
        tool_results: list[ToolResult],
        max_tokens: int = 4096,
    ) -> EventStream:
        """Resume after tool execution; results are sent as a new user turn."""
        resumed = list(messages)
        resumed.append(UnifiedMessage(role=Role.USER, content=format_tool_results(tool_results)))
        return self.chat(model, resumed, tools, max_tokens)

    @abstractmethod
    def list_models(self) -> list[ModelInfo]:
        """List models offered by this backend."""


__all__ = [
    "DoneEvent",
    "ErrorEvent",
    "EventSink",
    "EventStream",
    "LLMProvider",
    "ModelInfo",
    "StreamEvent",
    "TextEvent",
    "ToolCallRequest",
    "ToolDefinition",
    "ToolResult",
    "ToolUseEvent",
    "UnifiedMessage",
    "format_tool_results",
    "is_terminal",
]
