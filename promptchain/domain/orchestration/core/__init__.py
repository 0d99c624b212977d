from .chain_planner import ChainPlanner
from .chain_orchestrator import ChainOrchestrator, QueryOutcome
from .conversation_agent import ConversationAgent, ProcessingResult
