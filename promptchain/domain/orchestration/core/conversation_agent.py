from typing import TypedDict, Annotated, List, Dict, Any, Optional, Literal
from pydantic import BaseModel, Field
from langgraph.graph import StateGraph, END
from langgraph.graph.message import add_messages
from langchain_core.messages import BaseMessage, HumanMessage, AIMessage
import operator
import time
import structlog

from promptchain.config import Settings
from promptchain.domain.context.context_store import ContextStore
from promptchain.domain.context.memory.json_file_store import JsonFileStore
from promptchain.domain.errors import ChainConfigurationError, ContextStoreError
from promptchain.domain.llm.language_model import LanguageModel
from promptchain.domain.models.chain_models import Complexity
from promptchain.domain.models.context_models import Message, MessageRole
from promptchain.domain.models.synthesis_models import SynthesisConfig
from promptchain.domain.orchestration.intent import IntentClassifier, RegexIntentClassifier
from promptchain.domain.tool.tool_client import ToolClient
from promptchain.infrastructure.observability.logging import ChainLogger, MetricsCollector
from .chain_orchestrator import ChainOrchestrator, QueryOutcome
from .chain_planner import ChainPlanner

logger = structlog.get_logger(__name__)

FALLBACK_PREFIX = "I encountered an issue processing your request: "
DEFAULT_PROFILE: Dict[str, Any] = {
    "response_style": "conversational",
    "preferences": {"enhanced_processing": True},
}


class ConversationState(TypedDict):
    """State for the conversation workflow graph"""
    session_id: str
    query: str
    messages: Annotated[List[BaseMessage], add_messages]
    complexity: Optional[str]
    outcome: Optional[QueryOutcome]
    trace: Annotated[List[str], operator.add]
    error: Optional[str]
    response: Optional[str]


class ProcessingMetadata(BaseModel):
    tools_called: List[str] = Field(default_factory=list)
    reasoning_steps: List[str] = Field(default_factory=list)
    sources_used: List[str] = Field(default_factory=list)
    contradictions_resolved: int = 0
    user_personalization: bool = False
    trace: List[str] = Field(default_factory=list)


class ProcessingResult(BaseModel):
    """Answer to one user message plus how it was produced"""
    response: str
    confidence: float = 0.0
    processing_time: float = Field(default=0.0, description="Milliseconds")
    complexity: Complexity = Complexity.SIMPLE
    chain_used: bool = False
    context_used: bool = False
    metadata: ProcessingMetadata = Field(default_factory=ProcessingMetadata)


class ConversationAgent:
    """Conversation entry point built as a LangGraph workflow.

    input_validator -> context_recorder -> complexity_classifier -> chain_executor,
    with an error_handler branch producing the fallback response.
    """

    def __init__(
        self,
        context_store: ContextStore,
        orchestrator: ChainOrchestrator,
        intent: Optional[IntentClassifier] = None,
        enable_chaining: bool = True,
        initial_profile: Optional[Dict[str, Any]] = None,
        synthesis_config: Optional[SynthesisConfig] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        self.context_store = context_store
        self.orchestrator = orchestrator
        self.intent = intent or orchestrator.planner.intent
        self.enable_chaining = enable_chaining
        self.initial_profile = initial_profile if initial_profile is not None else DEFAULT_PROFILE
        self.synthesis_config = synthesis_config
        self.metrics = metrics or orchestrator.metrics
        self.workflow = self._create_workflow()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        tool_client: ToolClient,
        language_model: LanguageModel,
        **kwargs
    ) -> "ConversationAgent":
        """Wire a store, orchestrator and agent from settings"""

        backend = JsonFileStore(settings.persistence_path) if settings.persistence_path else None
        context_store = ContextStore(
            context_window=settings.context_window,
            decay_factor=settings.relevance_decay_factor,
            backend=backend,
            max_session_age_ms=settings.session_max_age_ms
        )

        chain_logger = ChainLogger(settings.service_name)
        metrics = MetricsCollector(chain_logger)
        intent = kwargs.pop("intent", None) or RegexIntentClassifier()

        orchestrator = ChainOrchestrator(
            context_store,
            tool_client,
            language_model,
            planner=ChainPlanner(
                intent=intent,
                complex_max_concurrency=settings.complex_max_concurrency,
                default_timeout_ms=settings.default_step_timeout_ms
            ),
            metrics=metrics,
            chain_logger=chain_logger,
            failure_ratio=settings.failure_ratio_threshold,
            default_step_timeout_ms=settings.default_step_timeout_ms,
            max_relevant_messages=settings.max_relevant_messages
        )
        return cls(context_store, orchestrator, intent=intent, metrics=metrics, **kwargs)

    def _create_workflow(self):
        workflow = StateGraph(ConversationState)

        workflow.add_node("input_validator", self.input_validation_node)
        workflow.add_node("context_recorder", self.context_recording_node)
        workflow.add_node("complexity_classifier", self.complexity_classification_node)
        workflow.add_node("chain_executor", self.chain_execution_node)
        workflow.add_node("error_handler", self.error_handler_node)

        workflow.set_entry_point("input_validator")

        workflow.add_conditional_edges(
            "input_validator",
            self.route_on_error,
            {"continue": "context_recorder", "error": "error_handler"}
        )
        workflow.add_conditional_edges(
            "context_recorder",
            self.route_on_error,
            {"continue": "complexity_classifier", "error": "error_handler"}
        )
        workflow.add_edge("complexity_classifier", "chain_executor")
        workflow.add_conditional_edges(
            "chain_executor",
            self.route_on_error,
            {"continue": END, "error": "error_handler"}
        )
        workflow.add_edge("error_handler", END)

        return workflow.compile()

    async def input_validation_node(self, state: ConversationState) -> Dict[str, Any]:
        """Validate the incoming user message"""

        query = state["query"]
        if not query or not query.strip():
            return {"trace": ["input_validator"], "error": "Empty message content"}

        return {"trace": ["input_validator"], "query": query.strip()}

    async def context_recording_node(self, state: ConversationState) -> Dict[str, Any]:
        """Append the user message to the session"""

        try:
            await self.context_store.add_message(
                state["session_id"],
                Message(role=MessageRole.USER, content=state["query"])
            )
        except ContextStoreError:
            raise
        except Exception as e:
            logger.warning("Failed to record user message", session_id=state["session_id"], error=str(e))
            return {"trace": ["context_recorder"], "error": str(e)}

        return {"trace": ["context_recorder"]}

    async def complexity_classification_node(self, state: ConversationState) -> Dict[str, Any]:
        if self.enable_chaining:
            complexity = self.intent.classify_complexity(state["query"])
        else:
            complexity = Complexity.SIMPLE

        logger.debug("Classified query", session_id=state["session_id"], complexity=complexity.value)
        return {"trace": ["complexity_classifier"], "complexity": complexity.value}

    async def chain_execution_node(self, state: ConversationState) -> Dict[str, Any]:
        """Run the query through the chain orchestrator"""

        try:
            outcome = await self.orchestrator.run_query(
                state["session_id"],
                state["query"],
                Complexity(state["complexity"]),
                self.synthesis_config
            )
        except (ContextStoreError, ChainConfigurationError):
            raise
        except Exception as e:
            logger.error("Chain execution failed", session_id=state["session_id"], error=str(e), exc_info=True)
            return {"trace": ["chain_executor"], "error": str(e)}

        return {
            "trace": ["chain_executor"],
            "outcome": outcome,
            "response": outcome.response,
            "messages": [AIMessage(content=outcome.response)]
        }

    async def error_handler_node(self, state: ConversationState) -> Dict[str, Any]:
        error = state.get("error") or "Unknown error"
        logger.error("Handling error", session_id=state["session_id"], error=error, trace=state["trace"])
        self.metrics.increment_counter("conversation.errors")

        response = FALLBACK_PREFIX + error
        return {
            "trace": ["error_handler"],
            "response": response,
            "messages": [AIMessage(content=response)]
        }

    def route_on_error(self, state: ConversationState) -> Literal["continue", "error"]:
        return "error" if state.get("error") else "continue"

    async def process_query(self, session_id: str, message: str) -> ProcessingResult:
        """Answer a user message in the given session"""

        started = time.perf_counter()

        with structlog.contextvars.bound_contextvars(session_id=session_id):
            if not await self.context_store.has_session(session_id):
                await self.context_store.create_session(session_id, self.initial_profile)

            initial_state: ConversationState = {
                "session_id": session_id,
                "query": message,
                "messages": [HumanMessage(content=message)],
                "complexity": None,
                "outcome": None,
                "trace": [],
                "error": None,
                "response": None
            }

            final_state = await self.workflow.ainvoke(initial_state)

        processing_time = (time.perf_counter() - started) * 1000
        self.metrics.record_latency("process_query", processing_time)

        result = self._build_result(final_state, processing_time)
        logger.info(
            "Processed query",
            session_id=session_id,
            complexity=result.complexity.value,
            confidence=round(result.confidence, 3),
            duration_ms=round(processing_time, 1),
            trace=final_state["trace"]
        )
        return result

    def _build_result(self, state: Dict[str, Any], processing_time: float) -> ProcessingResult:
        outcome: Optional[QueryOutcome] = state.get("outcome")
        complexity = Complexity(state["complexity"]) if state.get("complexity") else Complexity.SIMPLE

        if outcome is None or state.get("error"):
            return ProcessingResult(
                response=state.get("response") or FALLBACK_PREFIX + "Unknown error",
                processing_time=processing_time,
                complexity=complexity,
                metadata=ProcessingMetadata(trace=state["trace"])
            )

        chain = outcome.chain
        synthesis = outcome.synthesis

        tools_called: List[str] = []
        reasoning: List[str] = []
        for result in chain.results:
            for call in result.tool_calls:
                if call.tool_name not in tools_called:
                    tools_called.append(call.tool_name)
            reasoning.extend(result.metadata.reasoning)

        return ProcessingResult(
            response=outcome.response,
            confidence=synthesis.confidence if synthesis else 0.0,
            processing_time=processing_time,
            complexity=complexity,
            chain_used=len(chain.results) > 0,
            context_used=chain.context.retrieved_context.has_messages,
            metadata=ProcessingMetadata(
                tools_called=tools_called,
                reasoning_steps=reasoning,
                sources_used=[s.content for s in synthesis.sources] if synthesis else [],
                contradictions_resolved=len(synthesis.contradictions) if synthesis else 0,
                user_personalization=synthesis.metadata.user_personalization if synthesis else False,
                trace=state["trace"]
            )
        )

    async def get_session_stats(self, session_id: str) -> Dict[str, Any]:
        return await self.context_store.get_session_stats(session_id)

    async def update_user_preferences(self, session_id: str, preferences: Dict[str, Any]):
        return await self.context_store.update_user_preferences(session_id, preferences)

    async def clear_session(self, session_id: str) -> bool:
        return await self.context_store.delete_session(session_id)
