"""Tests for relevance scoring and tool ranking."""
from datetime import datetime, timedelta

import pytest

from promptchain.domain.context.context_ranker import ContextRanker
from promptchain.domain.models.context_models import Message, MessageRole


def message(content: str, role: MessageRole = MessageRole.USER, age_hours: float = 0.0) -> Message:
    return Message(role=role, content=content, timestamp=datetime.utcnow() - timedelta(hours=age_hours))


class TestScoreMessages:
    """Message relevance scoring."""

    def test_term_matches_raise_score(self):
        ranker = ContextRanker()
        scored = ranker.score_messages(
            [message("invoice totals are wrong"), message("the weather is nice")],
            "invoice",
        )

        assert scored[0].content == "invoice totals are wrong"

    def test_newer_messages_score_higher(self):
        ranker = ContextRanker()
        now = datetime.utcnow()
        messages = [
            Message(role=MessageRole.USER, content="first", timestamp=now),
            Message(role=MessageRole.USER, content="second", timestamp=now),
        ]

        scored = ranker.score_messages(messages, "unrelated", now=now)

        assert [m.content for m in scored] == ["second", "first"]

    def test_older_messages_decay(self):
        ranker = ContextRanker(decay_factor=0.5)
        now = datetime.utcnow()
        old = Message(role=MessageRole.USER, content="same text", timestamp=now - timedelta(days=2))
        recent = Message(role=MessageRole.USER, content="same text", timestamp=now)

        old_score = ranker.score_messages([old], "same", now=now)[0].relevance_score
        fresh_score = ranker.score_messages([recent], "same", now=now)[0].relevance_score

        assert old_score == pytest.approx(fresh_score * 0.25)

    def test_equal_scores_keep_conversation_order(self):
        ranker = ContextRanker()
        now = datetime.utcnow()
        # user: 0.2 recency + 0.2 role, system: 0.4 recency + 0.0 role
        messages = [
            Message(role=MessageRole.USER, content="a", timestamp=now),
            Message(role=MessageRole.SYSTEM, content="b", timestamp=now),
        ]

        scored = ranker.score_messages(messages, "zzz", now=now)

        assert scored[0].relevance_score == pytest.approx(scored[1].relevance_score)
        assert [m.content for m in scored] == ["a", "b"]

    def test_empty_history(self):
        assert ContextRanker().score_messages([], "anything") == []


class TestToolRanking:
    """Selecting the best tool for a query."""

    TOOLS = [
        {"name": "get_posts", "description": "Get blog posts"},
        {"name": "create_user", "description": "Create a new user account"},
    ]

    def test_best_tool_matches_query(self):
        best = ContextRanker().select_best_tool("please create a new user", self.TOOLS)

        assert best["name"] == "create_user"

    def test_no_tool_below_threshold(self):
        assert ContextRanker().select_best_tool("what is the weather", self.TOOLS) is None

    def test_scores_are_capped(self):
        scores = ContextRanker().rank_tools("get posts", self.TOOLS)

        assert scores["get_posts"] == 1.0
        assert scores["create_user"] == 0.0
