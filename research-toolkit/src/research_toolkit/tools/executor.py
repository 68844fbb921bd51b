"""
Tool registry and invocation.

'ToolExecutor' maps tool names to 'Tool' instances. Names are checked once, at
registration time; at call time the executor only looks the tool up, validates
the arguments against the tool's 'args_model' and runs it under the turn's
cancellation signal. Provider failures are never retried here: they surface as
'ToolInvocationError' and the agent loop reports them as a failed tool call.
"""

import re
from typing import Any

from loguru import logger
from pydantic import ValidationError

from research_toolkit.errors import (
    Cancelled,
    ToolInvocationError,
    ToolRegistrationError,
    ToolValidationError,
)
from research_toolkit.tools.base import Tool, ToolDescription
from research_toolkit.utils.cancellation import CancellationSignal

# OpenAI function names: letters, digits, underscores and dashes, up to 64 chars.
_TOOL_NAME = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class ToolExecutor:
    def __init__(self, tools: list[Tool] | None = None) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        name = getattr(tool, "name", None)
        if not isinstance(name, str) or not _TOOL_NAME.match(name):
            raise ToolRegistrationError(f"Invalid tool name {name!r}")
        if name in self._tools:
            raise ToolRegistrationError(f"Tool {name!r} is already registered")
        if not hasattr(tool, "args_model"):
            raise ToolRegistrationError(f"Tool {name!r} does not declare an args_model")
        self._tools[name] = tool
        logger.debug(f"Registered tool {name!r}")

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def schemas(self) -> list[ToolDescription]:
        return [tool.json_schema() for tool in self._tools.values()]

    async def invoke(self, tool_name: str, args: dict[str, Any], cancellation: CancellationSignal) -> Any:
        """Validate 'args' and run the named tool.

        Raises:
            ToolValidationError: unknown tool or arguments that do not match the schema.
            Cancelled: the signal fired before or during the call.
            ToolInvocationError: the external capability failed.
        """
        tool = self._tools.get(tool_name)
        if tool is None:
            raise ToolValidationError(f"Unknown tool {tool_name!r}")

        try:
            validated = tool.args_model.model_validate(args)
        except ValidationError as e:
            raise ToolValidationError(f"Invalid arguments for {tool_name!r}: {e.errors(include_url=False)}") from e

        cancellation.raise_if_cancelled()
        try:
            return await cancellation.guard(tool.call(validated, cancellation))
        except Cancelled:
            logger.info(f"Tool {tool_name!r} cancelled")
            raise
        except Exception as e:
            logger.warning(f"Tool {tool_name!r} failed: {e!r}")
            raise ToolInvocationError(f"{tool_name} failed: {e}") from e
