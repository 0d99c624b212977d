"""Shared fixtures: a scripted language model and an in-process tool client."""
import asyncio
from typing import Dict, List, Optional, Union

import pytest
import pytest_asyncio

from promptchain.domain.context.context_store import ContextStore
from promptchain.domain.llm.language_model import LanguageModel
from promptchain.domain.orchestration.core.chain_orchestrator import ChainOrchestrator
from promptchain.domain.tool.tool_registry import LocalToolClient
from promptchain.infrastructure.observability.logging import MetricsCollector


DEFAULT_REPLY = "Here is a clear and helpful answer to your question."


class ScriptedLanguageModel(LanguageModel):
    """Replies keyed by the prefix of the user prompt.

    A reply may be a string, an exception instance (raised) or a list consumed
    one entry per call.
    Tracks how many calls are in flight at once in ``peak_in_flight``.
    """

    def __init__(
        self,
        replies: Optional[Dict[str, Union[str, Exception, List]]] = None,
        default: str = DEFAULT_REPLY,
        delay: float = 0.0,
    ):
        self.replies = replies or {}
        self.default = default
        self.delay = delay
        self.prompts: List[str] = []
        self.in_flight = 0
        self.peak_in_flight = 0

    async def invoke(self, messages: List[Dict[str, str]]) -> str:
        prompt = messages[-1]["content"]
        self.prompts.append(prompt)

        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1

        for prefix, reply in self.replies.items():
            if prompt.startswith(prefix):
                if isinstance(reply, list):
                    reply = reply.pop(0) if len(reply) > 1 else reply[0]
                if isinstance(reply, Exception):
                    raise reply
                return reply
        return self.default

    def called_with(self, prefix: str) -> bool:
        return any(p.startswith(prefix) for p in self.prompts)


async def create_user(name: str = "guest", **_):
    return {"id": 42, "name": name, "status": "created"}


def get_posts(limit: str = "10", userId: str = None, **_):
    count = int(limit)
    return [{"id": i, "title": f"Post {i}", "userId": userId} for i in range(1, count + 1)]


def failing_tool(**_):
    raise RuntimeError("upstream API returned 500")


@pytest.fixture
def language_model():
    return ScriptedLanguageModel()


@pytest.fixture
def tool_client():
    client = LocalToolClient()
    client.register_tool(
        "create_user",
        create_user,
        description="Create a new user account",
        input_schema={"type": "object", "properties": {"name": {"type": "string"}}},
        category="users",
    )
    client.register_tool(
        "get_posts",
        get_posts,
        description="Get blog posts",
        input_schema={
            "type": "object",
            "properties": {"limit": {"type": "string"}, "userId": {"type": "string"}},
        },
        category="posts",
    )
    client.register_tool("broken_tool", failing_tool, description="Always fails")
    client.register_resource(
        "docs://readme",
        "readme",
        lambda: "API documentation",
        description="Service documentation",
    )
    return client


@pytest.fixture
def context_store():
    return ContextStore(context_window=10)


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest_asyncio.fixture
async def session_id(context_store):
    await context_store.create_session("session-1")
    return "session-1"


@pytest.fixture
def orchestrator(context_store, tool_client, language_model, metrics):
    return ChainOrchestrator(context_store, tool_client, language_model, metrics=metrics)
