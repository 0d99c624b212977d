"""Tests for the language model adapters."""
import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from promptchain.domain.llm.language_model import (
    CallableLanguageModel, ChatModelLanguageModel, message_text, to_langchain_messages
)


MESSAGES = [
    {"role": "system", "content": "be brief"},
    {"role": "assistant", "content": "earlier reply"},
    {"role": "user", "content": "question"},
]


class TestChatModelAdapter:
    """langchain-core chat models behind the LanguageModel interface."""

    @pytest.mark.asyncio
    async def test_invoke_returns_text(self):
        model = ChatModelLanguageModel(FakeListChatModel(responses=["  pong  "]))

        assert await model.invoke(MESSAGES) == "pong"

    def test_message_conversion(self):
        converted = to_langchain_messages(MESSAGES)

        assert [type(m) for m in converted] == [SystemMessage, AIMessage, HumanMessage]
        assert converted[2].content == "question"

    def test_content_blocks_are_flattened(self):
        reply = AIMessage(content=[{"type": "text", "text": "Hello "}, "world", {"type": "image_url"}])

        assert message_text(reply) == "Hello world"


class TestCallableAdapter:
    """Plain functions behind the LanguageModel interface."""

    @pytest.mark.asyncio
    async def test_sync_function(self):
        model = CallableLanguageModel(lambda messages: f"{len(messages)} messages")

        assert await model.invoke(MESSAGES) == "3 messages"

    @pytest.mark.asyncio
    async def test_async_function(self):
        async def reply(messages):
            return messages[-1]["content"].upper()

        assert await CallableLanguageModel(reply).invoke(MESSAGES) == "QUESTION"
