from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum
import uuid


def generate_id() -> str:
    """Generate a short unique identifier"""
    return uuid.uuid4().hex[:16]


class MessageRole(str, Enum):
    """Conversation message roles"""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ResponseStyle(str, Enum):
    """Preferred response style of a user"""
    CONCISE = "concise"
    DETAILED = "detailed"
    TECHNICAL = "technical"
    CONVERSATIONAL = "conversational"


class ToolInvocation(BaseModel):
    """Record of a single tool call made while producing a message"""
    tool_name: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    result: Any = None
    success: bool = True
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    processing_time: float = Field(default=0.0, description="Milliseconds")


class MessageMetadata(BaseModel):
    """Metadata attached to a stored message"""
    tool_calls: List[ToolInvocation] = Field(default_factory=list)
    tools_used: List[str] = Field(default_factory=list)
    resources: List[str] = Field(default_factory=list)
    context_references: List[str] = Field(default_factory=list)
    synthesized_from: List[str] = Field(default_factory=list, description="Ids this message replaced or merged")
    confidence: Optional[float] = None
    extra: Dict[str, Any] = Field(default_factory=dict)


class Message(BaseModel):
    """A single conversation message"""
    id: str = Field(default_factory=generate_id)
    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    metadata: MessageMetadata = Field(default_factory=MessageMetadata)
    relevance_score: Optional[float] = Field(None, description="Transient, recomputed per query")
    compressed: bool = False

    @property
    def has_tool_calls(self) -> bool:
        return len(self.metadata.tool_calls) > 0


class UserProfile(BaseModel):
    """Incrementally learned user profile"""
    preferences: Dict[str, Any] = Field(default_factory=dict)
    expertise: List[str] = Field(default_factory=list)
    common_queries: List[str] = Field(default_factory=list)
    response_style: ResponseStyle = Field(default=ResponseStyle.CONVERSATIONAL)


class SessionState(BaseModel):
    """Workflow state of a session"""
    current_topic: str = ""
    active_tools: List[str] = Field(default_factory=list)
    context_window: int = 10
    compression_level: int = 0
    chain_depth: int = 0


class Relationship(BaseModel):
    """Typed edge between two domain concepts"""
    source: str = Field(alias="from")
    target: str = Field(alias="to")
    type: str

    model_config = {"populate_by_name": True}


class DomainKnowledge(BaseModel):
    """Concepts and relationships for one domain"""
    domain: str
    concepts: Dict[str, Any] = Field(default_factory=dict)
    relationships: List[Relationship] = Field(default_factory=list)
    last_accessed: datetime = Field(default_factory=datetime.utcnow)

    def touch(self):
        self.last_accessed = datetime.utcnow()


class Session(BaseModel):
    """Conversation context owned by the context store"""
    id: str
    parent_id: Optional[str] = None
    messages: List[Message] = Field(default_factory=list)
    user_profile: UserProfile = Field(default_factory=UserProfile)
    session_state: SessionState = Field(default_factory=SessionState)
    domain_knowledge: List[DomainKnowledge] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    last_updated: datetime = Field(default_factory=datetime.utcnow)

    def find_domain(self, domain: str) -> Optional[DomainKnowledge]:
        for entry in self.domain_knowledge:
            if entry.domain == domain:
                return entry
        return None

    def get_stats(self) -> Dict[str, Any]:
        """Get a summary of the session"""
        return {
            "session_id": self.id,
            "parent_id": self.parent_id,
            "total_messages": len(self.messages),
            "compressed_messages": len([m for m in self.messages if m.compressed]),
            "current_topic": self.session_state.current_topic,
            "active_tools": list(self.session_state.active_tools),
            "compression_level": self.session_state.compression_level,
            "chain_depth": self.session_state.chain_depth,
            "domains": [d.domain for d in self.domain_knowledge],
            "response_style": self.user_profile.response_style.value,
            "last_updated": self.last_updated.isoformat()
        }


class ContextRetrievalResult(BaseModel):
    """Context slice relevant to a query"""
    relevant_messages: List[Message] = Field(default_factory=list)
    domain_context: List[DomainKnowledge] = Field(default_factory=list)
    user_profile: UserProfile = Field(default_factory=UserProfile)
    total_relevance_score: float = 0.0

    @property
    def has_messages(self) -> bool:
        return len(self.relevant_messages) > 0
