"""
Tool abstractions for LLM function calling.

Tools are the mechanism by which an LLM can request external actions during the
research loop. Each 'Tool' declares its arguments as a pydantic model
('args_model'); the JSON schema handed to the LLM is derived from that model and
the same model validates the arguments the LLM sends back, so the schema the
model sees and the check the executor applies can never drift apart.

Concrete implementations: 'SearchWebTool'.
"""

from abc import ABC, abstractmethod
from typing import Any, Generic, Literal, TypedDict, TypeVar

from pydantic import BaseModel

from research_toolkit.utils.cancellation import CancellationSignal

ArgsT = TypeVar("ArgsT", bound=BaseModel)


class FunctionDescription(TypedDict):
    """JSON schema fragment describing a callable function for the LLM API."""

    name: str
    description: str
    parameters: dict[str, Any]


class ToolDescription(TypedDict):
    """Full tool descriptor in the format expected by OpenAI-compatible APIs."""

    type: Literal["function"]
    function: FunctionDescription


class Tool(ABC, Generic[ArgsT]):
    """
    Abstract base class for LLM-callable tools.

    Subclasses declare 'name', 'description', and 'args_model' as class
    attributes. 'call()' receives arguments that have already been validated
    against 'args_model' and must honour the cancellation signal for any
    external I/O it performs.
    """

    name: str
    description: str
    args_model: type[ArgsT]

    @abstractmethod
    async def call(self, args: ArgsT, cancellation: CancellationSignal) -> Any:
        """Execute the tool and return a JSON-serialisable result."""
        pass

    def json_schema(self) -> ToolDescription:
        """Return the tool descriptor in OpenAI function-calling format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.args_model.model_json_schema(),
            },
        }
