from promptchain.config import Settings
from promptchain.domain.context.context_store import ContextStore
from promptchain.domain.llm.language_model import (
    CallableLanguageModel, ChatModelLanguageModel, LanguageModel
)
from promptchain.domain.orchestration.core import (
    ChainOrchestrator, ChainPlanner, ConversationAgent, ProcessingResult, QueryOutcome
)
from promptchain.domain.synthesis import ResponseSynthesizer
from promptchain.domain.tool.tool_client import ToolClient
from promptchain.domain.tool.tool_registry import LocalToolClient
from promptchain.infrastructure.observability.logging import setup_logging

__version__ = "0.1.0"
