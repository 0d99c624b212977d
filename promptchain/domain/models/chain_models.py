from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum

from .context_models import ContextRetrievalResult, ToolInvocation, generate_id


class StepType(str, Enum):
    """Kinds of prompt chain steps"""
    ANALYSIS = "analysis"
    RETRIEVAL = "retrieval"
    SYNTHESIS = "synthesis"
    VALIDATION = "validation"
    MCP_CALL = "mcp_call"
    DECISION = "decision"


class ChainStatus(str, Enum):
    """Prompt chain lifecycle status"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Complexity(str, Enum):
    """Query complexity used to pick a chain layout"""
    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"


class ConditionType(str, Enum):
    HAS_RESULT = "has_result"
    ERROR_COUNT = "error_count"
    CONTEXT_AVAILABLE = "context_available"
    CUSTOM = "custom"


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"


class RetryTrigger(str, Enum):
    ERROR = "error"
    TIMEOUT = "timeout"
    INVALID_RESPONSE = "invalid_response"


# Reserved tool operation names resolved by the tool executor
LIST_TOOLS = "list_tools"
LIST_RESOURCES = "list_resources"
AUTO_DETECT_TOOL = "auto_detect_tool"

# Reasoning tag carried by results of steps whose conditions were not met
CONDITION_NOT_MET = "condition_not_met"


class ToolOperation(BaseModel):
    """A parameterized tool invocation with required/fallback semantics"""
    tool_name: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    required: bool = False
    fallback: Optional["ToolOperation"] = None


class ExecutionCondition(BaseModel):
    """Precondition evaluated before a step runs"""
    type: ConditionType
    target: str = ""
    operator: ConditionOperator = ConditionOperator.EQUALS
    value: Any = None


class RetryPolicy(BaseModel):
    """Per-step retry configuration"""
    max_attempts: int = 1
    backoff_ms: int = 0
    retry_on: List[RetryTrigger] = Field(default_factory=lambda: [RetryTrigger.ERROR, RetryTrigger.TIMEOUT])


class PromptStep(BaseModel):
    """One node of a prompt chain"""
    id: str
    type: StepType
    prompt: str
    dependencies: List[str] = Field(default_factory=list)
    tool_operations: Optional[List[ToolOperation]] = None
    conditions: Optional[List[ExecutionCondition]] = None
    retry_policy: Optional[RetryPolicy] = None
    timeout: Optional[int] = Field(None, description="Milliseconds")


class ChainError(BaseModel):
    """Error recorded against a chain step"""
    step_id: str
    error: str
    error_type: str = "StepExecutionError"
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    retry_count: int = 0
    context: Dict[str, Any] = Field(default_factory=dict)


class ChainContext(BaseModel):
    """Shared context of a chain run"""
    session_id: str
    user_query: str
    retrieved_context: ContextRetrievalResult = Field(default_factory=ContextRetrievalResult)
    intermediate_results: Dict[str, str] = Field(default_factory=dict)
    errors: List[ChainError] = Field(default_factory=list)


class ResultMetadata(BaseModel):
    confidence: float = 0.0
    source_chain: str = ""
    reasoning: List[str] = Field(default_factory=list)
    alternatives: List[str] = Field(default_factory=list)


class ChainResult(BaseModel):
    """Outcome of executing a single step"""
    step_id: str
    success: bool
    output: str = ""
    tool_results: Optional[List[Any]] = None
    tool_calls: List[ToolInvocation] = Field(default_factory=list)
    processing_time: float = Field(default=0.0, description="Milliseconds")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    metadata: ResultMetadata = Field(default_factory=ResultMetadata)

    @property
    def has_tool_results(self) -> bool:
        return bool(self.tool_results)


class ChainMetadata(BaseModel):
    priority: int = 3
    max_concurrency: int = 1
    total_steps: int = 0
    estimated_time: int = Field(default=0, description="Milliseconds")
    tags: List[str] = Field(default_factory=list)


class PromptChain(BaseModel):
    """Dependency-ordered plan of steps for one query"""
    id: str = Field(default_factory=generate_id)
    parent_id: Optional[str] = None
    steps: List[PromptStep] = Field(default_factory=list)
    context: ChainContext
    status: ChainStatus = Field(default=ChainStatus.PENDING)
    results: List[ChainResult] = Field(default_factory=list)
    metadata: ChainMetadata = Field(default_factory=ChainMetadata)

    def get_step(self, step_id: str) -> Optional[PromptStep]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of the chain run"""
        return {
            "chain_id": self.id,
            "status": self.status.value,
            "total_steps": len(self.steps),
            "executed_steps": len(self.results),
            "failed_steps": len([r for r in self.results if not r.success]),
            "errors": len(self.context.errors),
            "tags": self.metadata.tags
        }


ToolOperation.model_rebuild()
