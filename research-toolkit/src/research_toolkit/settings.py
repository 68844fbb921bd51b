"""
Agent and turn limits.

'AgentSettings' is passed explicitly to the agent and the controller at
construction; nothing in the toolkit reads configuration from the environment.
The defaults are the values the assistant shipped with.
"""

from pydantic import BaseModel, Field

DEFAULT_MAX_STEPS = 10
DEFAULT_SEARCH_RESULT_COUNT = 10
DEFAULT_MAX_DURATION_SECONDS = 60.0
DEFAULT_TITLE_LENGTH = 50


class AgentSettings(BaseModel):
    """
    Attributes:
        max_steps: Maximum number of inference steps (model call plus the tool
            calls it requests) within one turn. Reaching it ends the turn with
            what has been produced so far.
        search_result_count: Number of results the search tool returns.
        max_duration_seconds: Wall-clock ceiling for one turn. When it is hit
            the turn is cancelled like a client disconnect.
        title_length: Number of characters of the last user message used as
            the conversation title.
    """

    max_steps: int = Field(default=DEFAULT_MAX_STEPS, ge=1)
    search_result_count: int = Field(default=DEFAULT_SEARCH_RESULT_COUNT, ge=1)
    max_duration_seconds: float = Field(default=DEFAULT_MAX_DURATION_SECONDS, gt=0)
    title_length: int = Field(default=DEFAULT_TITLE_LENGTH, ge=1)
