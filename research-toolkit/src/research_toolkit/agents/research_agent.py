"""
Web research agent.

'ResearchAgent' drives the inference/tool loop for one chat turn. Every step
calls the LLM with the full working history and the executor's tool schemas;
text fragments are streamed as they arrive, and every tool call the model
requests is resolved before the next step so the model always sees the results
of its previous searches. The loop ends when a step requests no tools or when
'max_steps' inference steps have run; hitting the budget is not an error, the
turn simply ends with what has been produced.

All output of the turn is collected into a single assistant 'Message' whose
steps are separated by 'step-start' parts, mirroring how the chat UI appends a
response to the conversation.
"""

import json
from typing import Any

from loguru import logger

from research_toolkit.agents.base import Agent
from research_toolkit.agents.history import to_llm_messages
from research_toolkit.conversation_database.data_models.message import (
    Message,
    StepStartPart,
    TextPart,
    ToolCallPart,
)
from research_toolkit.errors import Cancelled, InferenceFailure, ToolInvocationError, ToolValidationError
from research_toolkit.llms.base import LLM, LLMMessage, Roles, ToolCall
from research_toolkit.settings import DEFAULT_MAX_STEPS
from research_toolkit.streaming.channel import EventChannel
from research_toolkit.streaming.events import (
    TextDeltaEvent,
    ToolCallFailedEvent,
    ToolCallInFlightEvent,
    ToolCallRequestedEvent,
    ToolCallResolvedEvent,
)
from research_toolkit.tools.executor import ToolExecutor
from research_toolkit.utils.cancellation import CancellationSignal

SYSTEM_PROMPT = """You are a research assistant with access to real-time web search.

- Use the searchWeb tool for any question that needs factual, current or specific information.
- Search more than once when a single search does not give a complete picture.
- Cite your sources inline as markdown links, e.g. [source title](URL), right after the facts they support.
- Synthesise information from several sources, and point out where sources disagree.
- Structure longer answers with headings and bullet points."""


class ResearchAgent(Agent):
    def __init__(
        self,
        llm: LLM,
        executor: ToolExecutor,
        system_prompt: str = SYSTEM_PROMPT,
        max_steps: int = DEFAULT_MAX_STEPS,
        description: str = "Answers questions by searching the web and citing sources.",
    ) -> None:
        if max_steps < 1:
            raise ValueError("max_steps must be at least 1")
        super().__init__(system_prompt, llm, description)
        self.executor = executor
        self.max_steps = max_steps

    async def run(
        self, history: list[Message], channel: EventChannel, cancellation: CancellationSignal
    ) -> list[Message]:
        """Run one turn and return 'history' plus the assistant message.

        Raises:
            Cancelled: the signal fired during inference or a tool call.
            InferenceFailure: the LLM failed.
        """
        assistant = Message(role=Roles.ASSISTANT)
        tools = self.executor.schemas()

        for step in range(1, self.max_steps + 1):
            assistant.parts.append(StepStartPart())
            requested = await cancellation.guard(self._inference_step(history, assistant, tools, channel))
            if not requested:
                logger.debug(f"Step {step}: no tool calls, turn complete")
                break
            logger.debug(f"Step {step}: resolving {len(requested)} tool call(s)")
            for part in requested:
                await self._resolve(part, channel, cancellation)
        else:
            logger.warning(f"Step budget of {self.max_steps} exhausted, ending turn with current output")

        return [*history, assistant]

    async def _inference_step(
        self,
        history: list[Message],
        assistant: Message,
        tools: list[Any],
        channel: EventChannel,
    ) -> list[ToolCallPart]:
        messages = [
            LLMMessage(role=Roles.SYSTEM, content=self.system_prompt),
            *to_llm_messages([*history, assistant]),
        ]
        requested: list[ToolCallPart] = []
        text_part: TextPart | None = None
        try:
            async for chunk in self.llm.generate_stream(messages, tools or None):
                if chunk.content:
                    if text_part is None:
                        text_part = TextPart(text="")
                        assistant.parts.append(text_part)
                    text_part.text += chunk.content
                    channel.send(TextDeltaEvent(text=chunk.content))
                for tool_call in chunk.tool_calls or []:
                    part = ToolCallPart(
                        tool_call_id=tool_call.id,
                        tool_name=tool_call.function.name,
                        args=_parse_arguments(tool_call),
                    )
                    text_part = None
                    assistant.parts.append(part)
                    requested.append(part)
                    channel.send(
                        ToolCallRequestedEvent(tool_call_id=part.tool_call_id, tool_name=part.tool_name, args=part.args)
                    )
        except Cancelled:
            raise
        except Exception as e:
            raise InferenceFailure(f"LLM stream failed: {e}") from e
        return requested

    async def _resolve(self, part: ToolCallPart, channel: EventChannel, cancellation: CancellationSignal) -> None:
        part.mark_in_flight()
        channel.send(ToolCallInFlightEvent(tool_call_id=part.tool_call_id, tool_name=part.tool_name, args=part.args))
        try:
            result = await self.executor.invoke(part.tool_name, part.args, cancellation)
        except (ToolValidationError, ToolInvocationError) as e:
            logger.warning(f"Tool call {part.tool_call_id} ({part.tool_name}) failed: {e}")
            part.fail(str(e))
            channel.send(
                ToolCallFailedEvent(
                    tool_call_id=part.tool_call_id, tool_name=part.tool_name, args=part.args, error=str(e)
                )
            )
            return
        part.resolve(result)
        channel.send(
            ToolCallResolvedEvent(tool_call_id=part.tool_call_id, tool_name=part.tool_name, args=part.args, result=result)
        )


def _parse_arguments(tool_call: ToolCall) -> dict[str, Any]:
    """Decode the JSON arguments of a tool call.

    Undecodable or non-object arguments become an empty dict, which the executor
    then validates against the tool's schema like any other arguments.
    """
    try:
        args = json.loads(tool_call.function.arguments or "{}")
    except json.JSONDecodeError:
        logger.warning(f"Tool call {tool_call.id} has malformed arguments: {tool_call.function.arguments!r}")
        return {}
    return args if isinstance(args, dict) else {}
