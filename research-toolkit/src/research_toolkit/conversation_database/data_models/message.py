"""
Message and part data models.

A 'Message' is an ordered list of parts. Parts are a tagged union on 'type':

    'text'       - a text fragment produced by the user or the model.
    'tool-call'  - one tool invocation and its lifecycle state
                   (requested -> in-flight -> resolved | failed).
    'step-start' - the boundary between two inference steps inside a single
                   assistant message, so a stored answer can be replayed to
                   the model step by step on the next turn.

'position' is owned by the conversation store: it is assigned from list order
on every write and is 'None' on messages that have not been persisted yet.
"""

from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, model_validator

from research_toolkit.errors import InvalidPartTransition
from research_toolkit.llms.base import Roles
from research_toolkit.utils.database import generate_uid


class ToolCallState(StrEnum):
    REQUESTED = "requested"
    IN_FLIGHT = "in-flight"
    RESOLVED = "resolved"
    FAILED = "failed"


_TERMINAL_STATES = {ToolCallState.RESOLVED, ToolCallState.FAILED}


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class StepStartPart(BaseModel):
    type: Literal["step-start"] = "step-start"


class ToolCallPart(BaseModel):
    """
    A tool invocation tracked through its lifecycle.

    State only moves forward. The transition helpers raise
    'InvalidPartTransition' on regressions and on a second resolution, which
    keeps a resolved result immutable for the rest of the turn.
    """

    type: Literal["tool-call"] = "tool-call"
    tool_call_id: str
    tool_name: str
    args: dict[str, Any] = Field(default_factory=dict)
    state: ToolCallState = ToolCallState.REQUESTED
    result: Any = None
    error: str | None = None

    def mark_in_flight(self) -> None:
        if self.state != ToolCallState.REQUESTED:
            raise InvalidPartTransition(f"{self.tool_call_id}: {self.state} -> {ToolCallState.IN_FLIGHT}")
        self.state = ToolCallState.IN_FLIGHT

    def resolve(self, result: Any) -> None:
        if self.state in _TERMINAL_STATES:
            raise InvalidPartTransition(f"{self.tool_call_id}: {self.state} -> {ToolCallState.RESOLVED}")
        self.state = ToolCallState.RESOLVED
        self.result = result

    def fail(self, error: str) -> None:
        if self.state in _TERMINAL_STATES:
            raise InvalidPartTransition(f"{self.tool_call_id}: {self.state} -> {ToolCallState.FAILED}")
        self.state = ToolCallState.FAILED
        self.error = error


Part = Annotated[TextPart | ToolCallPart | StepStartPart, Field(discriminator="type")]


class Message(BaseModel):
    """
    A single message within a conversation.

    Requests may send plain 'content' instead of 'parts' (the shape older chat
    clients use); it is folded into a single text part on validation.
    """

    id: str = Field(default_factory=generate_uid)
    role: Roles
    parts: list[Part] = Field(default_factory=list)
    position: int | None = None

    @model_validator(mode="before")
    @classmethod
    def _content_to_parts(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("parts") and isinstance(data.get("content"), str):
            content = data["content"]
            data = {key: value for key, value in data.items() if key != "content"}
            data["parts"] = [{"type": "text", "text": content}] if content else []
        return data

    @property
    def text(self) -> str:
        """Concatenation of all text parts."""
        return "".join(part.text for part in self.parts if isinstance(part, TextPart))
