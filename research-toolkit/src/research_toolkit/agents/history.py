"""
Conversion from stored messages to the LLM wire format.

A stored assistant message holds a whole turn: several inference steps
separated by 'step-start' parts, each with its text and tool calls. The model
expects the OpenAI shape instead, one assistant message per step carrying the
tool calls, followed by one 'tool' message per call with its result.
"""

import json

from research_toolkit.conversation_database.data_models.message import (
    Message,
    Part,
    StepStartPart,
    TextPart,
    ToolCallPart,
    ToolCallState,
)
from research_toolkit.llms.base import Function, LLMMessage, Roles, ToolCall


def _split_steps(parts: list[Part]) -> list[list[Part]]:
    steps: list[list[Part]] = [[]]
    for part in parts:
        if isinstance(part, StepStartPart):
            steps.append([])
        else:
            steps[-1].append(part)
    return [step for step in steps if step]


def _tool_content(part: ToolCallPart) -> str:
    if part.state == ToolCallState.RESOLVED:
        return json.dumps(part.result)
    if part.state == ToolCallState.FAILED:
        return json.dumps({"error": part.error})
    return json.dumps({"error": "Tool call did not complete"})


def to_llm_messages(messages: list[Message]) -> list[LLMMessage]:
    llm_messages: list[LLMMessage] = []
    for message in messages:
        if message.role != Roles.ASSISTANT:
            llm_messages.append(LLMMessage(role=message.role, content=message.text))
            continue

        for step in _split_steps(message.parts):
            text = "".join(part.text for part in step if isinstance(part, TextPart))
            calls = [part for part in step if isinstance(part, ToolCallPart)]
            llm_messages.append(
                LLMMessage(
                    role=Roles.ASSISTANT,
                    content=text,
                    tool_calls=[
                        ToolCall(
                            id=call.tool_call_id,
                            function=Function(name=call.tool_name, arguments=json.dumps(call.args)),
                        )
                        for call in calls
                    ]
                    or None,
                )
            )
            llm_messages.extend(
                LLMMessage(role=Roles.TOOL, content=_tool_content(call), tool_call_id=call.tool_call_id, name=call.tool_name)
                for call in calls
            )
    return llm_messages
