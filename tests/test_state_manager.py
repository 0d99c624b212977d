"""Tests for session state and profile tracking."""
import pytest

from promptchain.domain.context.state.state_manager import StateManager
from promptchain.domain.models.context_models import (
    Message, MessageMetadata, MessageRole, ResponseStyle, Session, SessionState, ToolInvocation, UserProfile
)


@pytest.fixture
def manager():
    return StateManager(max_active_tools=3)


class TestTopics:
    """Topic extraction from user messages."""

    def test_extract_topic_skips_short_and_stop_words(self, manager):
        assert manager.extract_topic("What about the quarterly revenue numbers for Europe") == "quarterly revenue numbers"

    def test_no_topic_from_short_words(self, manager):
        assert manager.extract_topic("hi there, how are you") == ""

    def test_user_message_sets_current_topic(self, manager):
        session = Session(id="s1")

        manager.apply_message(session, Message(role=MessageRole.USER, content="deploy kubernetes cluster"))
        manager.apply_message(session, Message(role=MessageRole.ASSISTANT, content="assistant replies elsewhere"))

        assert session.session_state.current_topic == "deploy kubernetes cluster"


class TestActiveTools:
    """Active tool tracking."""

    def test_recent_tools_move_to_the_end(self, manager):
        state = SessionState(active_tools=["a", "b", "c"])

        manager.track_active_tools(state, ["a"])

        assert state.active_tools == ["b", "c", "a"]

    def test_active_tools_are_capped(self, manager):
        state = SessionState()

        manager.track_active_tools(state, ["a", "b", "c", "d"])

        assert state.active_tools == ["b", "c", "d"]

    def test_tool_calls_in_metadata_are_tracked(self, manager):
        session = Session(id="s1")
        message = Message(
            role=MessageRole.ASSISTANT,
            content="done",
            metadata=MessageMetadata(tool_calls=[ToolInvocation(tool_name="get_posts")]),
        )

        manager.apply_message(session, message)

        assert session.session_state.active_tools == ["get_posts"]


class TestProfile:
    """Query patterns and preference merging."""

    def test_repeated_pattern_moves_to_the_end(self, manager):
        profile = UserProfile()
        for content in ["how to deploy", "why is it slow", "how to roll back"]:
            manager.update_user_profile(profile, Message(role=MessageRole.USER, content=content))

        assert profile.common_queries == ["explanation", "how_to"]

    def test_merge_preferences(self, manager):
        profile = UserProfile(expertise=["sql"])

        manager.merge_preferences(profile, {"response_style": "technical", "expertise": ["sql", "go"], "theme": "dark"})

        assert profile.response_style == ResponseStyle.TECHNICAL
        assert profile.expertise == ["sql", "go"]
        assert profile.preferences == {"theme": "dark"}

    def test_invalid_response_style_rejected(self, manager):
        with pytest.raises(ValueError):
            manager.merge_preferences(UserProfile(), {"response_style": "sarcastic"})
