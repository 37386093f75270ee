"""Conversation engine and tool-confirmation state machine.

The engine is driven from a single foreground loop. `submit()` starts a
turn, `pump()` drains whatever events the active provider call has produced
so far (never blocking), and `approve()`/`reject()`/`abandon()` resolve a
tool call the model asked for. Nothing in here is touched by worker threads;
they only write into the event stream.
"""

from enum import Enum
from typing import Any, Callable

from llm_tui.compaction import compact_session, needs_compaction
from llm_tui.config import Config, ProviderId, get_config
from llm_tui.exceptions import (
    CompactionError,
    InvalidTransitionError,
    LlmTuiError,
    StreamClosedError,
    ToolNotFoundError,
    TurnInProgressError,
)
from llm_tui.llm import (
    DoneEvent,
    ErrorEvent,
    EventStream,
    LLMProvider,
    StreamEvent,
    TextEvent,
    ToolCallRequest,
    ToolDefinition,
    ToolResult,
    ToolUseEvent,
    UnifiedMessage,
    format_tool_results,
)
from llm_tui.llm.registry import ProviderRegistry
from llm_tui.logging import get_logger
from llm_tui.session import Message, Role, Session
from llm_tui.tools.registry import ToolRegistry

log = get_logger(__name__)

TOOL_REJECTED_MESSAGE = "Tool execution rejected by user"


class TurnPhase(str, Enum):
    """Where the current turn stands."""

    IDLE = "idle"
    STREAMING = "streaming"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    CONTINUING = "continuing"


def build_outgoing_messages(
    provider_id: ProviderId | str,
    history: list[Message],
    system_prompt: str = "",
) -> list[UnifiedMessage]:
    """Assemble the prompt for one request from session history.

    Tool-shadowed messages are skipped, except for Bedrock: its invoke API
    has no tool-result channel, so earlier tool transcripts are kept
    verbatim and only system-role and empty messages are dropped. The system
    prompt and compaction summaries are folded into the first user message
    there.
    """
    if ProviderId(provider_id) == ProviderId.BEDROCK:
        return _build_bedrock_messages(history, system_prompt)

    outgoing: list[UnifiedMessage] = []
    if system_prompt.strip():
        outgoing.append(UnifiedMessage(role=Role.SYSTEM, content=system_prompt))
    for msg in history:
        if msg.tools_executed or not msg.content.strip():
            continue
        outgoing.append(UnifiedMessage(role=msg.role, content=msg.content))
    return outgoing


def _build_bedrock_messages(history: list[Message], system_prompt: str) -> list[UnifiedMessage]:
    context = [system_prompt] if system_prompt.strip() else []
    outgoing: list[UnifiedMessage] = []
    for msg in history:
        if msg.compacted or not msg.content.strip():
            continue
        if msg.is_summary:
            context.append(msg.content)
            continue
        if msg.tools_executed:
            role = Role.USER if msg.role == Role.SYSTEM else msg.role
            outgoing.append(UnifiedMessage(role=role, content=msg.content))
            continue
        if msg.role == Role.SYSTEM:
            continue
        outgoing.append(UnifiedMessage(role=msg.role, content=msg.content))

    if context:
        preamble = "\n\n".join(context)
        for msg in outgoing:
            if msg.role == Role.USER:
                msg.content = f"{preamble}\n\n{msg.content}"
                break
        else:
            outgoing.insert(0, UnifiedMessage(role=Role.USER, content=preamble))
    return outgoing


class Conversation:
    """One open conversation bound to a session."""

    def __init__(
        self,
        session: Session,
        providers: ProviderRegistry,
        tools: ToolRegistry | None = None,
        config: Config | None = None,
        on_state_change: Callable[[TurnPhase], None] | None = None,
        logger: Any = None,
    ):
        """Initialize the conversation.

        Args:
            session: Session whose message history is read and appended to
            providers: Registry the session's provider id is resolved against
            tools: Tool registry; None disables tool calling
            config: Configuration; the global one when omitted
            on_state_change: Called with the new phase on every transition
            logger: Bound structlog logger to use instead of the module logger
        """
        self.session = session
        self.providers = providers
        self.tools = tools
        self.config = config or get_config()
        self.on_state_change = on_state_change
        self.log = logger or log

        self._phase = TurnPhase.IDLE
        self._stream: EventStream | None = None
        self._round_text = ""
        self._queued_calls: list[ToolCallRequest] = []
        self._pending_results: list[ToolResult] = []
        self.streaming_text = ""
        self.pending_tool_call: ToolCallRequest | None = None
        self.last_usage: DoneEvent | None = None

    @property
    def phase(self) -> TurnPhase:
        return self._phase

    @property
    def is_busy(self) -> bool:
        return self._phase != TurnPhase.IDLE

    def _set_phase(self, phase: TurnPhase) -> None:
        if phase == self._phase:
            return
        previous = self._phase
        self._phase = phase
        self.log.debug("Conversation phase changed", previous=previous.value, phase=phase.value)
        if self.on_state_change:
            try:
                self.on_state_change(phase)
            except Exception as e:
                self.log.warning("State change callback failed", error=str(e))

    def _provider(self) -> LLMProvider:
        return self.providers.get(self.session.provider_id)

    def tool_definitions(self) -> list[ToolDefinition] | None:
        if self.tools is None:
            return None
        return self.tools.get_definitions()

    def build_messages(self) -> list[UnifiedMessage]:
        """Outgoing prompt for the session's current provider."""
        return build_outgoing_messages(
            self.session.provider_id,
            self.session.messages,
            self.config.system_prompt,
        )

    # Turn lifecycle

    def submit(self, text: str) -> None:
        """Start a turn with a user message.

        Raises:
            TurnInProgressError if a turn is already active
            ProviderNotFoundError if the session's provider is not registered
        """
        if self.is_busy:
            raise TurnInProgressError(self._phase.value)

        provider = self._provider()
        self.session.add_message(Role.USER, text)
        self.maybe_compact(provider)

        self._reset_turn()
        self.log.info(
            "Submitting turn",
            provider=provider.name,
            model=self.session.model,
            messages=len(self.session.messages),
        )
        self._stream = provider.chat(
            self.session.model,
            self.build_messages(),
            self.tool_definitions(),
            self.config.max_tokens,
        )
        self._set_phase(TurnPhase.STREAMING)

    def maybe_compact(self, provider: LLMProvider | None = None) -> bool:
        """Compact history when it exceeds the provider's budget.

        Blocks for the duration of the summarization call. A failed
        compaction leaves history untouched and the turn proceeds.
        """
        window = self.config.context_window_for(ProviderId(self.session.provider_id))
        total = self.session.total_tokens()
        if not needs_compaction(total, window, self.config.context.compaction_threshold):
            return False

        self.log.info("Context over budget, compacting", total_tokens=total, context_window=window)
        try:
            compacted, _ = compact_session(
                self.session,
                provider or self._provider(),
                self.session.model,
                keep_recent=self.config.context.keep_recent,
                summary_max_tokens=self.config.context.summary_max_tokens,
            )
        except CompactionError as e:
            self.log.warning("Compaction failed, sending uncompacted history", error=str(e))
            return False
        return compacted

    def pump(self) -> int:
        """Process every event that is ready. Never blocks.

        Returns:
            Number of events processed
        """
        processed = 0
        while self._stream is not None:
            try:
                event = self._stream.poll()
            except StreamClosedError:
                self._stream = None
                break
            if event is None:
                break
            processed += 1
            self._handle_event(event)
        return processed

    def _handle_event(self, event: StreamEvent) -> None:
        if isinstance(event, TextEvent):
            self._round_text += event.text
            self.streaming_text += event.text
        elif isinstance(event, ToolUseEvent):
            self._on_tool_use(event.to_request())
        elif isinstance(event, DoneEvent):
            self._on_done(event)
        elif isinstance(event, ErrorEvent):
            self._fail(event.message)

    def _on_tool_use(self, call: ToolCallRequest) -> None:
        self.log.info("Tool call requested", tool=call.name, id=call.id)
        if self.pending_tool_call is None:
            self.pending_tool_call = call
            self._set_phase(TurnPhase.AWAITING_CONFIRMATION)
        else:
            self._queued_calls.append(call)

    def _on_done(self, event: DoneEvent) -> None:
        self.last_usage = event
        self._stream = None
        if self._phase == TurnPhase.AWAITING_CONFIRMATION:
            return
        if self._phase == TurnPhase.CONTINUING or self._pending_results:
            self._resume()
            return
        self._commit(event)

    def _commit(self, event: DoneEvent) -> None:
        content = self._round_text
        if content.strip():
            self.session.add_message(
                Role.ASSISTANT,
                content,
                model=self.session.model,
                token_count=event.output_tokens,
            )
        self.log.info(
            "Turn completed",
            input_tokens=event.input_tokens,
            output_tokens=event.output_tokens,
        )
        self._reset_turn()
        self._set_phase(TurnPhase.IDLE)

    def _fail(self, message: str) -> None:
        self.log.error("Turn failed", error=message)
        self._drop_stream()
        self._reset_turn()
        self.session.add_message(Role.SYSTEM, f"Error: {message}")
        self._set_phase(TurnPhase.IDLE)

    def _drop_stream(self) -> None:
        if self._stream is not None:
            self._stream.close()
            self._stream = None

    def _reset_turn(self) -> None:
        self._round_text = ""
        self.streaming_text = ""
        self.pending_tool_call = None
        self._queued_calls.clear()
        self._pending_results.clear()

    # Confirmation actions

    def approve(self) -> ToolResult:
        """Execute the pending tool call and queue its result."""
        call = self._require_pending("approve")
        content = self._execute(call)
        result = ToolResult(tool_use_id=call.id, content=content)
        self._pending_results.append(result)
        self.streaming_text += f"\n\n[{call.name}] {content}\n\n"
        self._advance()
        return result

    def reject(self) -> None:
        """Refuse the pending call, and any queued behind it, then resume."""
        call = self._require_pending("reject")
        self.log.info("Tool call rejected", tool=call.name, id=call.id)
        for rejected in [call, *self._queued_calls]:
            self._pending_results.append(ToolResult(tool_use_id=rejected.id, content=TOOL_REJECTED_MESSAGE))
        self.streaming_text += f"\n\n[{call.name}] {TOOL_REJECTED_MESSAGE}\n\n"
        self._queued_calls.clear()
        self.pending_tool_call = None
        self._drop_stream()
        self._set_phase(TurnPhase.CONTINUING)
        self._resume()

    def abandon(self) -> None:
        """Drop the active call and return to idle without resuming."""
        if self._phase == TurnPhase.IDLE:
            raise InvalidTransitionError("abandon", self._phase.value)
        self.log.info("Turn abandoned", phase=self._phase.value)
        self._drop_stream()
        self._reset_turn()
        self._set_phase(TurnPhase.IDLE)

    def _require_pending(self, action: str) -> ToolCallRequest:
        if self._phase != TurnPhase.AWAITING_CONFIRMATION or self.pending_tool_call is None:
            raise InvalidTransitionError(action, self._phase.value)
        return self.pending_tool_call

    def _execute(self, call: ToolCallRequest) -> str:
        try:
            if self.tools is None:
                raise ToolNotFoundError(call.name)
            output = self.tools.execute(call.name, call.arguments)
        except LlmTuiError as e:
            self.log.warning("Tool call failed", tool=call.name, error=str(e))
            return f"Error: {e}"
        return output.as_text()

    def _advance(self) -> None:
        self.pending_tool_call = None
        if self._queued_calls:
            self.pending_tool_call = self._queued_calls.pop(0)
            return
        self._set_phase(TurnPhase.CONTINUING)
        if self._stream is None:
            self._resume()

    def _resume(self) -> None:
        """Send queued tool results back to the model."""
        results = list(self._pending_results)
        self._pending_results.clear()
        self._queued_calls.clear()

        try:
            provider = self._provider()
        except LlmTuiError as e:
            self._fail(str(e))
            return

        outgoing = self.build_messages()
        partial = self._round_text
        if partial.strip():
            outgoing.append(UnifiedMessage(role=Role.ASSISTANT, content=partial))
            self.session.add_message(
                Role.ASSISTANT,
                partial,
                model=self.session.model,
                tools_executed=True,
            )
        self.session.add_message(
            Role.SYSTEM,
            "Tool results:\n" + format_tool_results(results),
            tools_executed=True,
        )
        self._round_text = ""

        self.log.info("Continuing with tool results", results=len(results))
        self._stream = provider.continue_with_tools(
            self.session.model,
            outgoing,
            self.tool_definitions(),
            results,
            self.config.max_tokens,
        )
        self._set_phase(TurnPhase.STREAMING)


__all__ = [
    "Conversation",
    "TOOL_REJECTED_MESSAGE",
    "TurnPhase",
    "build_outgoing_messages",
]
