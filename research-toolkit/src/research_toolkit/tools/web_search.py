"""
Web search tool.

'SearchWebTool' exposes a search provider to the LLM under the name
'searchWeb'. The provider is any async callable returning provider-shaped rows
(dicts with at least 'title' and 'link'); the tool maps those rows into uniform
'SearchResult' records and truncates them to the configured result count.
"""

from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field

from research_toolkit.tools.base import Tool
from research_toolkit.utils.cancellation import CancellationSignal

SearchProvider = Callable[[str, int], Awaitable[list[dict[str, Any]]]]

DEFAULT_RESULT_COUNT = 10


class SearchResult(BaseModel):
    title: str
    link: str
    snippet: str = ""


class SearchWebArgs(BaseModel):
    query: str = Field(min_length=1, description="The query to search the web for")


class SearchWebTool(Tool[SearchWebArgs]):
    name = "searchWeb"
    description = "Search the web for current information. Returns a ranked list of pages with title, link and snippet."
    args_model = SearchWebArgs

    def __init__(self, provider: SearchProvider, result_count: int = DEFAULT_RESULT_COUNT) -> None:
        if result_count < 1:
            raise ValueError("result_count must be at least 1")
        self.provider = provider
        self.result_count = result_count

    async def call(self, args: SearchWebArgs, cancellation: CancellationSignal) -> list[dict[str, str]]:
        logger.debug(f"searchWeb query={args.query!r} num={self.result_count}")
        rows = await cancellation.guard(self.provider(args.query, self.result_count))
        results = [
            SearchResult(
                title=row.get("title") or "",
                link=row["link"],
                snippet=row.get("snippet") or "",
            )
            for row in rows[: self.result_count]
            if row.get("link")
        ]
        return [result.model_dump() for result in results]
