from typing import Dict, List, Any, Optional
import asyncio
import structlog
from datetime import datetime, timedelta

from promptchain.domain.errors import ParentNotFound, SessionNotFound
from promptchain.domain.models.context_models import (
    ContextRetrievalResult, DomainKnowledge, Message, MessageMetadata,
    MessageRole, Relationship, Session, SessionState, UserProfile
)
from .context_ranker import ContextRanker
from .memory.session_backend import SessionBackend
from .state.state_manager import StateManager

logger = structlog.get_logger(__name__)

DEFAULT_MAX_AGE_MS = 7 * 24 * 60 * 60 * 1000
KEY_QUERY_MIN_LENGTH = 100
MAX_KEY_QUERIES = 3


class ContextStore:
    """Per-session conversation history, profile, state and domain knowledge.

    Every session-level mutation runs under that session's lock, so message appends,
    state updates and compression never interleave for one session id.
    """

    def __init__(
        self,
        context_window: int = 10,
        decay_factor: float = 0.9,
        backend: Optional[SessionBackend] = None,
        ranker: Optional[ContextRanker] = None,
        state_manager: Optional[StateManager] = None,
        max_session_age_ms: int = DEFAULT_MAX_AGE_MS
    ):
        self.context_window = context_window
        self.max_session_age_ms = max_session_age_ms
        self.backend = backend
        self.ranker = ranker or ContextRanker(decay_factor=decay_factor)
        self.state_manager = state_manager or StateManager()
        self.sessions: Dict[str, Session] = {}
        self._session_locks: Dict[str, asyncio.Lock] = {}
        self._lock = asyncio.Lock()

    async def initialize(self):
        """Load persisted sessions from the backend, if any"""

        if not self.backend:
            return

        try:
            restored = await self.backend.load()
        except Exception as e:
            logger.warning("Failed to load context store", error=str(e))
            return

        async with self._lock:
            self.sessions.update(restored)

        logger.info("Restored sessions", count=len(restored))

    def _session_lock(self, session_id: str) -> asyncio.Lock:
        lock = self._session_locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._session_locks[session_id] = lock
        return lock

    def _require(self, session_id: str) -> Session:
        session = self.sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    async def create_session(
        self,
        session_id: str,
        initial_profile: Optional[Dict[str, Any]] = None
    ) -> Session:
        """Create a session, returning the existing one if the id is taken"""

        async with self._lock:
            existing = self.sessions.get(session_id)
            if existing is not None:
                return existing

            profile = UserProfile(**(initial_profile or {}))
            session = Session(
                id=session_id,
                user_profile=profile,
                session_state=SessionState(context_window=self.context_window)
            )
            self.sessions[session_id] = session

        logger.info("Created session", session_id=session_id)
        await self._persist()
        return session

    async def get_session(self, session_id: str) -> Session:
        return self._require(session_id)

    async def has_session(self, session_id: str) -> bool:
        return session_id in self.sessions

    async def list_sessions(self) -> List[str]:
        return list(self.sessions.keys())

    async def add_message(self, session_id: str, message: Message) -> Message:
        """Append a message, update session state and compress overflow"""

        session = self._require(session_id)

        async with self._session_lock(session_id):
            stored = self._append(session, message)
            self._compress_if_needed(session)

        await self._persist()
        return stored

    async def add_messages(self, session_id: str, messages: List[Message]) -> List[Message]:
        """Append a batch of messages, compressing at most once"""

        session = self._require(session_id)

        async with self._session_lock(session_id):
            stored = [self._append(session, message) for message in messages]
            self._compress_if_needed(session)

        await self._persist()
        return stored

    def _append(self, session: Session, message: Message) -> Message:
        stored = message.model_copy(update={"relevance_score": None})
        session.messages.append(stored)
        session.last_updated = datetime.utcnow()
        self.state_manager.apply_message(session, stored)
        return stored

    async def retrieve_relevant_context(
        self,
        session_id: str,
        query: str,
        max_messages: int = 5
    ) -> ContextRetrievalResult:
        """Score stored messages against a query and return the best slice"""

        session = self._require(session_id)

        async with self._session_lock(session_id):
            compressed = self._compress_if_needed(session)
            scored = self.ranker.score_messages(session.messages, query)

        if compressed:
            await self._persist()

        relevant_messages = scored[:max(max_messages, 0)]
        domain_context = self.ranker.select_domain_knowledge(session.domain_knowledge, query)
        total_score = sum(m.relevance_score or 0.0 for m in relevant_messages)

        logger.debug(
            "Retrieved context",
            session_id=session_id,
            messages=len(relevant_messages),
            domains=[d.domain for d in domain_context],
            total_score=round(total_score, 3)
        )

        return ContextRetrievalResult(
            relevant_messages=relevant_messages,
            domain_context=domain_context,
            user_profile=session.user_profile,
            total_relevance_score=total_score
        )

    async def update_domain_knowledge(
        self,
        session_id: str,
        domain: str,
        concepts: Dict[str, Any],
        relationships: Optional[List[Dict[str, str]]] = None
    ) -> DomainKnowledge:
        """Merge concepts (and relationships) into a domain entry"""

        session = self._require(session_id)

        async with self._session_lock(session_id):
            entry = session.find_domain(domain)
            if entry is None:
                entry = DomainKnowledge(domain=domain)
                session.domain_knowledge.append(entry)

            entry.concepts.update(concepts)
            for raw in relationships or []:
                relationship = Relationship.model_validate(raw)
                if relationship not in entry.relationships:
                    entry.relationships.append(relationship)
            entry.touch()
            session.last_updated = datetime.utcnow()

        await self._persist()
        return entry

    async def update_user_preferences(self, session_id: str, preferences: Dict[str, Any]) -> UserProfile:
        """Merge preferences into the session's user profile"""

        session = self._require(session_id)

        async with self._session_lock(session_id):
            self.state_manager.merge_preferences(session.user_profile, preferences)
            session.last_updated = datetime.utcnow()

        await self._persist()
        return session.user_profile

    async def create_chain_context(self, parent_session_id: str, chain_id: str) -> Session:
        """Child session inheriting a copy of the parent's profile and knowledge"""

        parent = self.sessions.get(parent_session_id)
        if parent is None:
            raise ParentNotFound(parent_session_id)

        async with self._session_lock(parent_session_id):
            state = parent.session_state.model_copy(deep=True)
            state.chain_depth += 1
            child = Session(
                id=chain_id,
                parent_id=parent_session_id,
                user_profile=parent.user_profile.model_copy(deep=True),
                session_state=state,
                domain_knowledge=[d.model_copy(deep=True) for d in parent.domain_knowledge]
            )

        async with self._lock:
            self.sessions[chain_id] = child

        logger.info(
            "Created chain context",
            parent_session_id=parent_session_id,
            chain_id=chain_id,
            chain_depth=state.chain_depth
        )
        await self._persist()
        return child

    async def delete_session(self, session_id: str) -> bool:
        """Remove a session explicitly"""

        async with self._lock:
            removed = self.sessions.pop(session_id, None) is not None
            self._session_locks.pop(session_id, None)

        if removed:
            logger.info("Deleted session", session_id=session_id)
            await self._persist()
        return removed

    async def cleanup(self, max_age_ms: Optional[int] = None) -> int:
        """Remove sessions not updated within max_age_ms, the store default when omitted"""

        max_age_ms = self.max_session_age_ms if max_age_ms is None else max_age_ms
        cutoff = datetime.utcnow() - timedelta(milliseconds=max_age_ms)

        async with self._lock:
            stale = [
                session_id for session_id, session in self.sessions.items()
                if session.last_updated < cutoff
            ]
            for session_id in stale:
                del self.sessions[session_id]
                self._session_locks.pop(session_id, None)

        if stale:
            logger.info("Cleaned up sessions", count=len(stale))
            await self._persist()
        return len(stale)

    async def get_session_stats(self, session_id: str) -> Dict[str, Any]:
        return self._require(session_id).get_stats()

    def _compress_if_needed(self, session: Session) -> bool:
        """Fold everything but the newest window into one summary message"""

        window = session.session_state.context_window
        # A leading summary does not count against the window
        has_summary = bool(session.messages) and session.messages[0].compressed
        if len(session.messages) <= window + (1 if has_summary else 0):
            return False

        old_messages = session.messages[:-window]
        recent_messages = session.messages[-window:]

        summary = self._create_summary_message(old_messages)
        session.messages = [summary] + recent_messages
        session.session_state.compression_level += 1

        logger.info(
            "Compressed context",
            session_id=session.id,
            compressed=len(old_messages),
            compression_level=session.session_state.compression_level
        )
        return True

    def _create_summary_message(self, messages: List[Message]) -> Message:
        topics: List[str] = []
        tools: List[str] = []
        key_queries: List[str] = []
        message_count = 0

        def add_unique(target: List[str], values):
            for value in values:
                if value and value not in target:
                    target.append(value)

        for message in messages:
            if message.compressed:
                # Earlier summary: carry its aggregates forward, never its source text
                extra = message.metadata.extra
                add_unique(topics, extra.get("topics", []))
                add_unique(key_queries, extra.get("key_queries", []))
                message_count += extra.get("message_count", 1)
            else:
                message_count += 1
                if message.role == MessageRole.USER:
                    add_unique(topics, [self.state_manager.extract_topic(message.content)])
                    if len(message.content) > KEY_QUERY_MIN_LENGTH:
                        add_unique(key_queries, [message.content[:KEY_QUERY_MIN_LENGTH] + "..."])

            add_unique(tools, message.metadata.tools_used)
            add_unique(tools, [call.tool_name for call in message.metadata.tool_calls])

        key_queries = key_queries[:MAX_KEY_QUERIES]
        content = (
            "Previous conversation summary:\n"
            f"Topics discussed: {', '.join(topics)}\n"
            f"Tools used: {', '.join(tools)}\n"
            f"Key user queries: {'; '.join(key_queries)}\n"
            f"Message count: {message_count}"
        )

        return Message(
            role=MessageRole.SYSTEM,
            content=content,
            compressed=True,
            metadata=MessageMetadata(
                tools_used=tools,
                synthesized_from=[m.id for m in messages],
                extra={
                    "topics": topics,
                    "key_queries": key_queries,
                    "message_count": message_count
                }
            )
        )

    async def _persist(self):
        if not self.backend:
            return

        try:
            await self.backend.save(dict(self.sessions))
        except Exception as e:
            logger.warning("Failed to persist context store", error=str(e))
