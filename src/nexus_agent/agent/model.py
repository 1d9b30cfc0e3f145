"""Model/tool loop producing stream chunks."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from typing import Any

from anthropic import AsyncAnthropic
from anthropic.types import MessageParam
from rich.pretty import pretty_repr

from nexus_agent.agent.accumulator import result_content
from nexus_agent.agent.chunks import (
    ContentDelta,
    MessageEnd,
    RunFinished,
    StreamChunk,
    ToolCallArgsDelta,
    ToolCallEnd,
    ToolCallStart,
)
from nexus_agent.agent.tools import ToolRegistry
from nexus_agent.config import Config
from nexus_agent.threads.schemas import MessageRole, ThreadMessage, generate_id

logger = logging.getLogger(__name__)


class AgentModel(ABC):
    """Abstract base for the model side of an exchange."""

    @abstractmethod
    async def run(
        self,
        *,
        system: str,
        messages: Sequence[ThreadMessage],
        tools: ToolRegistry,
    ) -> AsyncIterator[StreamChunk]:
        """Run the model/tool loop over a conversation.

        Args:
            system: System prompt.
            messages: Full thread history, ending with the new input.
            tools: Tools the model may call.

        Yields:
            Chunks in arrival order, ending with RunFinished.
        """
        yield RunFinished()  # Makes this an async generator

    @abstractmethod
    async def complete(self, *, prompt: str, max_tokens: int, system: str | None = None) -> str:
        """One-shot, non-streaming completion (used for titles)."""


def to_anthropic_messages(messages: Sequence[ThreadMessage]) -> list[MessageParam]:
    """Convert thread history to Anthropic message params.

    Tool messages become user ``tool_result`` blocks and consecutive messages
    of the same role are merged, since the API requires alternating roles.
    Tool calls without a recorded result (an exchange cut short) are dropped.
    """
    answered = {m.tool_call_id for m in messages if m.role == MessageRole.TOOL}
    converted: list[MessageParam] = []

    for message in messages:
        blocks: list[dict[str, Any]] = []
        if message.role == MessageRole.USER:
            role = "user"
            if message.content:
                blocks.append({"type": "text", "text": message.content})
        elif message.role == MessageRole.ASSISTANT:
            role = "assistant"
            if message.content:
                blocks.append({"type": "text", "text": message.content})
            for call in message.tool_calls or []:
                if call.id not in answered:
                    continue
                blocks.append(
                    {
                        "type": "tool_use",
                        "id": call.id,
                        "name": call.name,
                        "input": call.parsed_arguments(),
                    }
                )
        elif message.role == MessageRole.TOOL:
            role = "user"
            blocks.append(
                {
                    "type": "tool_result",
                    "tool_use_id": message.tool_call_id,
                    "content": message.content or "",
                }
            )
        else:
            continue

        if not blocks:
            continue
        if converted and converted[-1]["role"] == role:
            converted[-1]["content"].extend(blocks)  # type: ignore[union-attr]
        else:
            converted.append(MessageParam(role=role, content=blocks))  # type: ignore[typeddict-item]

    return converted


class AnthropicAgentModel(AgentModel):
    """Claude tool-calling loop over the streaming Messages API."""

    def __init__(
        self,
        client: AsyncAnthropic | None = None,
        *,
        model: str = Config.AI_MODEL.value,
        max_tokens: int = Config.AI_MAX_TOKENS.value,
        max_iterations: int = Config.AGENT_MAX_ITERATIONS.value,
    ) -> None:
        self.client = client or AsyncAnthropic(api_key=Config.ANTHROPIC_API_KEY.value or None)
        self.model = model
        self.max_tokens = max_tokens
        self.max_iterations = max_iterations

    async def run(
        self,
        *,
        system: str,
        messages: Sequence[ThreadMessage],
        tools: ToolRegistry,
    ) -> AsyncIterator[StreamChunk]:
        api_messages = to_anthropic_messages(messages)
        specs = tools.anthropic_specs()
        finish_reason = "max_iterations"

        for iteration in range(1, self.max_iterations + 1):
            message_id = generate_id()
            tool_ids: dict[int, str] = {}

            async with self.client.messages.stream(
                model=self.model,
                max_tokens=self.max_tokens,
                system=system,
                messages=api_messages,
                tools=specs,  # type: ignore[arg-type]
            ) as stream:
                async for event in stream:
                    if event.type == "content_block_start" and event.content_block.type == "tool_use":
                        tool_ids[event.index] = event.content_block.id
                        yield ToolCallStart(
                            tool_call_id=event.content_block.id,
                            tool_name=event.content_block.name,
                        )
                    elif event.type == "content_block_delta":
                        if event.delta.type == "text_delta":
                            yield ContentDelta(message_id=message_id, delta=event.delta.text)
                        elif event.delta.type == "input_json_delta" and event.index in tool_ids:
                            yield ToolCallArgsDelta(
                                tool_call_id=tool_ids[event.index],
                                delta=event.delta.partial_json,
                            )
                final = await stream.get_final_message()

            logger.debug("Turn %d final message:\n%s", iteration, pretty_repr(final))

            assistant_blocks: list[dict[str, Any]] = []
            tool_results: list[dict[str, Any]] = []
            for block in final.content:
                if block.type == "text":
                    assistant_blocks.append({"type": "text", "text": block.text})
                elif block.type == "tool_use":
                    assistant_blocks.append(
                        {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
                    )
                    result, is_error = await self._execute_tool(tools, block.name, block.input)
                    yield ToolCallEnd(tool_call_id=block.id, result=result, is_error=is_error)
                    tool_results.append(
                        {
                            "type": "tool_result",
                            "tool_use_id": block.id,
                            "content": result_content(result),
                            "is_error": is_error,
                        }
                    )

            yield MessageEnd(message_id=message_id)

            if final.stop_reason != "tool_use" or not tool_results:
                finish_reason = final.stop_reason or "stop"
                break

            api_messages.append(MessageParam(role="assistant", content=assistant_blocks))  # type: ignore[typeddict-item]
            api_messages.append(MessageParam(role="user", content=tool_results))  # type: ignore[typeddict-item]
        else:
            logger.warning("Agent loop hit max iterations (%d)", self.max_iterations)

        yield RunFinished(finish_reason=finish_reason)

    async def _execute_tool(
        self, tools: ToolRegistry, name: str, raw_input: Any
    ) -> tuple[Any, bool]:
        try:
            result = await tools.dispatch(name, raw_input if isinstance(raw_input, dict) else {})
        except Exception as exc:
            logger.warning("Tool %s failed: %s", name, exc, exc_info=True)
            return {"error": str(exc)}, True
        logger.info("Tool %s returned %s", name, pretty_repr(result, max_string=200))
        return result, False

    async def complete(self, *, prompt: str, max_tokens: int, system: str | None = None) -> str:
        kwargs: dict[str, Any] = {}
        if system:
            kwargs["system"] = system
        response = await self.client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            messages=[MessageParam(role="user", content=prompt)],
            **kwargs,
        )
        return "".join(block.text for block in response.content if block.type == "text")
