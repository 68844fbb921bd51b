"""
Stream event models.

Two families share one channel:

    content events  - 'text-delta' and the tool-call lifecycle events
                      ('tool-call-requested', 'tool-call-in-flight',
                      'tool-call-resolved', 'tool-call-failed').
    control events  - 'control', a small structured payload describing a side
                      effect of the turn (e.g. a new conversation id), never
                      part of the conversation content.

Every stream ends with exactly one terminal event: 'finish' on a normal end or
'error' when the turn failed or was cancelled.
"""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field

NEW_CHAT_CREATED = "NEW_CHAT_CREATED"


class TextDeltaEvent(BaseModel):
    type: Literal["text-delta"] = "text-delta"
    text: str


class _ToolCallEvent(BaseModel):
    tool_call_id: str
    tool_name: str
    args: dict[str, Any] = Field(default_factory=dict)


class ToolCallRequestedEvent(_ToolCallEvent):
    type: Literal["tool-call-requested"] = "tool-call-requested"


class ToolCallInFlightEvent(_ToolCallEvent):
    type: Literal["tool-call-in-flight"] = "tool-call-in-flight"


class ToolCallResolvedEvent(_ToolCallEvent):
    type: Literal["tool-call-resolved"] = "tool-call-resolved"
    result: Any = None


class ToolCallFailedEvent(_ToolCallEvent):
    type: Literal["tool-call-failed"] = "tool-call-failed"
    error: str


class ControlEvent(BaseModel):
    type: Literal["control"] = "control"
    data: dict[str, Any]


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str


class FinishEvent(BaseModel):
    type: Literal["finish"] = "finish"


StreamEvent = Annotated[
    TextDeltaEvent
    | ToolCallRequestedEvent
    | ToolCallInFlightEvent
    | ToolCallResolvedEvent
    | ToolCallFailedEvent
    | ControlEvent
    | ErrorEvent
    | FinishEvent,
    Field(discriminator="type"),
]

TERMINAL_EVENT_TYPES = frozenset({"finish", "error"})


def new_chat_created(chat_id: str) -> ControlEvent:
    return ControlEvent(data={"type": NEW_CHAT_CREATED, "chatId": chat_id})
