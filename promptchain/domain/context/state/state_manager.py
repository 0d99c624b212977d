from typing import Dict, Any, List
import re

from promptchain.domain.models.context_models import (
    Message, MessageRole, ResponseStyle, Session, SessionState, UserProfile
)


TOPIC_STOP_WORDS = {"what", "how", "when", "where", "which", "could", "would", "should", "about", "there"}

QUERY_PATTERNS = [
    ("how to", "how_to"),
    ("what is", "definition"),
    ("why", "explanation"),
    ("compare", "comparison"),
    ("difference", "comparison"),
]


class StateManager:
    """Keeps session state and user profile in step with incoming messages"""
    
    def __init__(self, max_active_tools: int = 5, max_query_patterns: int = 10):
        self.max_active_tools = max_active_tools
        self.max_query_patterns = max_query_patterns
        
    def apply_message(self, session: Session, message: Message):
        """Update state and profile from a newly stored message"""
        
        state = session.session_state
        
        if message.role == MessageRole.USER:
            topic = self.extract_topic(message.content)
            if topic:
                state.current_topic = topic
            self.update_user_profile(session.user_profile, message)
            
        tools = list(message.metadata.tools_used)
        tools.extend(call.tool_name for call in message.metadata.tool_calls)
        if tools:
            self.track_active_tools(state, tools)
            
    def extract_topic(self, content: str) -> str:
        """Pick the first few meaningful words of a message"""
        
        words = re.findall(r"[\w'-]+", content.lower())
        topic_words = [
            word for word in words
            if len(word) > 4 and word not in TOPIC_STOP_WORDS
        ]
        return " ".join(topic_words[:3])
        
    def track_active_tools(self, state: SessionState, tools: List[str]):
        """Move tools to the end of the active list, keeping the newest few"""
        
        active = [t for t in state.active_tools if t not in tools]
        for tool in tools:
            if tool not in active:
                active.append(tool)
        state.active_tools = active[-self.max_active_tools:]
        
    def update_user_profile(self, profile: UserProfile, message: Message):
        """Record query patterns observed in a user message"""
        
        query = message.content.lower()
        observed = [tag for phrase, tag in QUERY_PATTERNS if phrase in query]
        if not observed:
            return
            
        # Most recent occurrence wins the position
        patterns = [p for p in profile.common_queries if p not in observed]
        for tag in observed:
            if tag not in patterns:
                patterns.append(tag)
        profile.common_queries = patterns[-self.max_query_patterns:]
        
    def merge_preferences(self, profile: UserProfile, preferences: Dict[str, Any]):
        """Merge preferences, applying known profile fields directly"""
        
        updates = dict(preferences)
        if "response_style" in updates:
            profile.response_style = ResponseStyle(updates.pop("response_style"))
        if "expertise" in updates:
            for tag in updates.pop("expertise") or []:
                if tag not in profile.expertise:
                    profile.expertise.append(tag)
        profile.preferences.update(updates)
