"""Shared test fixtures: scripted LLMs, fake search providers and stores."""

import asyncio
import json
from collections.abc import AsyncGenerator
from typing import Any

import pytest

from research_toolkit.agents.research_agent import ResearchAgent
from research_toolkit.conversation_database.controller import ResearchToolkitController
from research_toolkit.conversation_database.in_memory import InMemoryConversationDatabase
from research_toolkit.conversation_database.sql_database import (
    SQLAlchemyConversationDatabase,
    create_conversation_engine,
    init_db,
)
from research_toolkit.llms.base import LLM, Function, LLMMessage, ToolCall
from research_toolkit.settings import AgentSettings
from research_toolkit.tools.base import ToolDescription
from research_toolkit.tools.executor import ToolExecutor
from research_toolkit.tools.web_search import SearchWebTool

SUPER_BOWL_RESULTS = [
    {
        "title": "Super Bowl LVIII - Wikipedia",
        "link": "https://en.wikipedia.org/wiki/Super_Bowl_LVIII",
        "snippet": "The Kansas City Chiefs defeated the San Francisco 49ers 25-22 in overtime.",
    },
    {
        "title": "Chiefs win Super Bowl LVIII",
        "link": "https://www.nfl.com/news/chiefs-win-super-bowl-lviii",
        "snippet": "Patrick Mahomes led the Chiefs to back-to-back titles.",
    },
]


def text(*fragments: str) -> list[LLMMessage]:
    return [LLMMessage(content=fragment) for fragment in fragments]


def tool_call(call_id: str, name: str, args: dict[str, Any] | str) -> LLMMessage:
    arguments = args if isinstance(args, str) else json.dumps(args)
    return LLMMessage(tool_calls=[ToolCall(id=call_id, function=Function(name=name, arguments=arguments))])


class ScriptedLLM(LLM):
    """Plays back one scripted list of chunks per call.

    A step may also be an exception instance, which is raised after the step's
    preceding chunks. With 'repeat_last' the final step is replayed forever.
    """

    def __init__(self, steps: list[list[LLMMessage] | Exception], repeat_last: bool = False) -> None:
        self.steps = steps
        self.repeat_last = repeat_last
        self.calls: list[tuple[list[LLMMessage], list[ToolDescription] | None]] = []

    async def generate_stream(
        self, conversation: list[LLMMessage], tools: list[ToolDescription] | None = None
    ) -> AsyncGenerator[LLMMessage, None]:
        index = len(self.calls)
        self.calls.append((list(conversation), tools))
        if index >= len(self.steps):
            if not self.repeat_last:
                raise AssertionError("LLM called more often than scripted")
            index = len(self.steps) - 1
        step = self.steps[index]
        if isinstance(step, Exception):
            raise step
        for chunk in step:
            await asyncio.sleep(0)
            yield chunk


class FakeSearch:
    def __init__(self, results: list[dict[str, Any]] | None = None, error: Exception | None = None) -> None:
        self.results = SUPER_BOWL_RESULTS if results is None else results
        self.error = error
        self.queries: list[tuple[str, int]] = []

    async def __call__(self, query: str, num: int) -> list[dict[str, Any]]:
        self.queries.append((query, num))
        if self.error is not None:
            raise self.error
        return self.results


class BlockingSearch:
    """Never returns; records whether it was cancelled."""

    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.cancelled = False

    async def __call__(self, query: str, num: int) -> list[dict[str, Any]]:
        self.started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return []


def super_bowl_script() -> list[list[LLMMessage] | Exception]:
    return [
        [tool_call("call_1", "searchWeb", {"query": "2024 Super Bowl winner"})],
        text(
            "The Kansas City Chiefs won the 2024 Super Bowl, ",
            "beating the 49ers 25-22 in overtime ",
            "([Super Bowl LVIII - Wikipedia](https://en.wikipedia.org/wiki/Super_Bowl_LVIII)).",
        ),
    ]


def build_agent(llm: LLM, search: Any = None, max_steps: int = 10) -> ResearchAgent:
    executor = ToolExecutor([SearchWebTool(search or FakeSearch(), result_count=10)])
    return ResearchAgent(llm=llm, executor=executor, max_steps=max_steps)


@pytest.fixture
def memory_db() -> InMemoryConversationDatabase:
    return InMemoryConversationDatabase()


@pytest.fixture
async def sql_db():
    engine = create_conversation_engine("sqlite+aiosqlite:///:memory:")
    await init_db(engine)
    yield SQLAlchemyConversationDatabase(engine)
    await engine.dispose()


@pytest.fixture(params=["memory", "sql"])
async def conversation_db(request, memory_db, sql_db):
    return memory_db if request.param == "memory" else sql_db


@pytest.fixture
def make_controller(conversation_db):
    def make(llm: LLM, search: Any = None, max_steps: int = 10, **settings: Any) -> ResearchToolkitController:
        return ResearchToolkitController(
            conversation_db=conversation_db,
            agent=build_agent(llm, search, max_steps),
            settings=AgentSettings(max_steps=max_steps, **settings),
        )

    return make
