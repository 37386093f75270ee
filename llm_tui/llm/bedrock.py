"""Bedrock provider - single-shot InvokeModel for Anthropic models on AWS."""

import json
import os
from typing import Any, Callable

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from llm_tui.config import ProviderId
from llm_tui.exceptions import LLMAPIError
from llm_tui.llm import (
    DoneEvent,
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
from llm_tui.llm.claude import convert_tools, usage_count
from llm_tui.logging import get_logger
from llm_tui.session import Role

log = get_logger(__name__)


BEDROCK_ANTHROPIC_VERSION = "bedrock-2023-05-31"


def convert_messages(messages: list[UnifiedMessage]) -> list[dict[str, str]]:
    """Drop system messages; InvokeModel rejects them in the messages array."""
    return [
        {"role": msg.role.value, "content": msg.content}
        for msg in messages
        if msg.role != Role.SYSTEM
    ]


def parse_invoke_response(payload: dict[str, Any]) -> list[StreamEvent]:
    """Turn a complete InvokeModel response into events, ending with Done."""
    events: list[StreamEvent] = []
    for block in payload.get("content") or []:
        block_type = block.get("type")
        if block_type == "text":
            if block.get("text"):
                events.append(TextEvent(block["text"]))
        elif block_type == "tool_use":
            events.append(
                ToolUseEvent(
                    id=str(block.get("id", "")),
                    name=str(block.get("name", "")),
                    input=block.get("input") or {},
                )
            )
    usage = payload.get("usage") or {}
    events.append(
        DoneEvent(
            input_tokens=usage_count(usage, "input_tokens"),
            output_tokens=usage_count(usage, "output_tokens"),
        )
    )
    return events


class BedrockProvider(LLMProvider):
    """AWS Bedrock provider (credentials from the standard AWS environment)."""

    provider_id = ProviderId.BEDROCK

    def __init__(
        self,
        region: str | None = None,
        client_factory: Callable[[str], Any] | None = None,
    ):
        """Initialize Bedrock provider.

        Args:
            region: Optional AWS region override
            client_factory: Builds a boto3-compatible client for a service
                name; defaults to `boto3.client`
        """
        self.region = region or None
        self._client_factory = client_factory or self._boto3_client

    def _boto3_client(self, service: str) -> Any:
        return boto3.client(service, region_name=self.region)

    def is_available(self) -> bool:
        return bool(os.environ.get("AWS_PROFILE") or os.environ.get("AWS_ACCESS_KEY_ID"))

    def _invoke(self, model: str, body: dict[str, Any], sink: EventSink) -> None:
        try:
            log.debug("Calling Bedrock", model=model, msg_count=len(body["messages"]))
            client = self._client_factory("bedrock-runtime")
            response = client.invoke_model(
                modelId=model,
                contentType="application/json",
                accept="application/json",
                body=json.dumps(body),
            )
            payload = json.loads(response["body"].read())
        except (BotoCoreError, ClientError) as e:
            sink.error(f"Bedrock error: {e}")
            return
        except ValueError as e:
            sink.error(f"Bedrock error: invalid response body: {e}")
            return

        for event in parse_invoke_response(payload):
            if not sink.emit(event):
                return

    def chat(
        self,
        model: str,
        messages: list[UnifiedMessage],
        tools: list[ToolDefinition] | None = None,
        max_tokens: int = 4096,
    ) -> EventStream:
        body: dict[str, Any] = {
            "anthropic_version": BEDROCK_ANTHROPIC_VERSION,
            "max_tokens": max_tokens,
            "messages": convert_messages(messages),
        }
        bedrock_tools = convert_tools(tools)
        if bedrock_tools:
            body["tools"] = bedrock_tools
        return EventStream.spawn("bedrock", lambda sink: self._invoke(model, body, sink))

    def list_models(self) -> list[ModelInfo]:
        try:
            response = self._client_factory("bedrock").list_inference_profiles()
        except (BotoCoreError, ClientError) as e:
            raise LLMAPIError(f"Bedrock error: {e}")
        models = []
        for profile in response.get("inferenceProfileSummaries", []):
            profile_id = profile.get("inferenceProfileId", "")
            if "anthropic.claude" in profile_id:
                models.append(ModelInfo(id=profile_id, name=profile_id, provider=self.provider_id))
        return models
