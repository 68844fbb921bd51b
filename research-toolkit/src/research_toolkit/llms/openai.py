"""
OpenAI chat-completions backend.

Text deltas are yielded as soon as they arrive. Tool calls are streamed by the
API as fragments (the id and name first, then pieces of the JSON arguments,
keyed by 'index'); they are accumulated and yielded as complete 'ToolCall's
once the stream ends, because a partial argument string cannot be validated or
executed.
"""

from collections.abc import AsyncGenerator
from typing import Any

from loguru import logger
from openai import AsyncOpenAI

from research_toolkit.llms.base import LLM, Function, LLMMessage, Roles, ToolCall
from research_toolkit.tools.base import ToolDescription


def _to_openai_message(message: LLMMessage) -> dict[str, Any]:
    payload: dict[str, Any] = {"role": str(message.role), "content": message.content}
    if message.tool_calls:
        payload["tool_calls"] = [tool_call.model_dump() for tool_call in message.tool_calls]
    if message.role == Roles.TOOL:
        payload["tool_call_id"] = message.tool_call_id
    return payload


class OpenAILLM(LLM):
    def __init__(
        self,
        model_name: str = "gpt-4o-mini",
        temperature: float = 0.3,
        seed: int | None = None,
        openai_api_key: str | None = None,
        base_url: str | None = None,
    ) -> None:
        self.model_name = model_name
        self.temperature = temperature
        self.seed = seed
        self.client = AsyncOpenAI(api_key=openai_api_key, base_url=base_url)

    async def generate_stream(
        self, conversation: list[LLMMessage], tools: list[ToolDescription] | None = None
    ) -> AsyncGenerator[LLMMessage, None]:
        kwargs: dict[str, Any] = {
            "model": self.model_name,
            "messages": [_to_openai_message(message) for message in conversation],
            "temperature": self.temperature,
            "stream": True,
        }
        if self.seed is not None:
            kwargs["seed"] = self.seed
        if tools:
            kwargs["tools"] = tools

        pending: dict[int, dict[str, str]] = {}
        stream = await self.client.chat.completions.create(**kwargs)
        async for chunk in stream:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta
            if delta.content:
                yield LLMMessage(role=Roles.ASSISTANT, content=delta.content)
            for fragment in delta.tool_calls or []:
                call = pending.setdefault(fragment.index, {"id": "", "name": "", "arguments": ""})
                if fragment.id:
                    call["id"] = fragment.id
                if fragment.function and fragment.function.name:
                    call["name"] = fragment.function.name
                if fragment.function and fragment.function.arguments:
                    call["arguments"] += fragment.function.arguments

        if pending:
            logger.debug(f"{self.model_name} requested {len(pending)} tool call(s)")
            yield LLMMessage(
                role=Roles.ASSISTANT,
                tool_calls=[
                    ToolCall(id=call["id"], function=Function(name=call["name"], arguments=call["arguments"]))
                    for _, call in sorted(pending.items())
                ],
            )
