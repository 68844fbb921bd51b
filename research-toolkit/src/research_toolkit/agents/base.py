"""
Agent abstraction.

An 'Agent' turns a conversation history into the history extended by the
assistant's response, streaming everything it produces through an
'EventChannel' while it works. The channel is owned by the caller: agents only
'send()' to it and never close it, so the caller can persist the result before
signalling the end of the stream.
"""

from abc import ABC, abstractmethod

from research_toolkit.conversation_database.data_models.message import Message
from research_toolkit.llms.base import LLM
from research_toolkit.streaming.channel import EventChannel
from research_toolkit.utils.cancellation import CancellationSignal


class Agent(ABC):
    def __init__(self, system_prompt: str, llm: LLM, description: str = "") -> None:
        self.system_prompt = system_prompt
        self.llm = llm
        self.description = description

    @abstractmethod
    async def run(
        self, history: list[Message], channel: EventChannel, cancellation: CancellationSignal
    ) -> list[Message]:
        """Return 'history' followed by the messages generated in this turn."""
        pass
