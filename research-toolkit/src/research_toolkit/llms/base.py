"""
Core LLM abstractions and message data models.

Concrete backends ('OpenAILLM') implement the 'LLM' ABC. The shared message
format ('LLMMessage') is backend-agnostic so the agent loop never needs to know
which model is in use.

'LLM.generate_stream' is the only inference entry point: it yields partial
'LLMMessage' chunks whose 'content' is a text fragment (not the accumulated
text) and whose 'tool_calls' carry fully assembled tool-call requests. Tool
schemas are passed per call instead of being stored on the LLM, so one model
instance can serve agents with different tool sets.
"""

from abc import ABC, abstractmethod
from enum import StrEnum
from collections.abc import AsyncGenerator

from pydantic import BaseModel

from research_toolkit.tools.base import ToolDescription


class Roles(StrEnum):
    """Conversation roles as used by the OpenAI chat completions API."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class Function(BaseModel):
    """The function name and JSON-encoded arguments inside a tool call."""

    name: str
    arguments: str


class ToolCall(BaseModel):
    """A single tool invocation requested by the LLM."""

    id: str
    function: Function
    type: str = "function"


class LLMMessage(BaseModel):
    """
    A single message in a conversation sent to or received from an LLM.

    'tool_calls' is populated when the assistant requests one or more tool
    invocations. 'tool_call_id' and 'name' are set on the follow-up TOOL role
    message that carries the tool result back to the model.
    """

    content: str = ""
    role: Roles = Roles.ASSISTANT
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None
    name: str | None = None


class LLM(ABC):
    """
    Abstract base class for language model backends.

    Implementations must raise instead of yielding a partial answer when the
    backend fails; the agent loop wraps any such error in 'InferenceFailure'.
    """

    @abstractmethod
    def generate_stream(
        self, conversation: list[LLMMessage], tools: list[ToolDescription] | None = None
    ) -> AsyncGenerator[LLMMessage, None]:
        """Yield text fragments and completed tool calls as they arrive from the model."""
        pass
