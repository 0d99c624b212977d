from .context_models import (
    ContextRetrievalResult,
    DomainKnowledge,
    Message,
    MessageMetadata,
    MessageRole,
    Relationship,
    ResponseStyle,
    Session,
    SessionState,
    ToolInvocation,
    UserProfile,
)
from .chain_models import (
    ChainContext,
    ChainError,
    ChainMetadata,
    ChainResult,
    ChainStatus,
    Complexity,
    ExecutionCondition,
    PromptChain,
    PromptStep,
    ResultMetadata,
    RetryPolicy,
    StepType,
    ToolOperation,
)
from .synthesis_models import (
    ContentFragment,
    Contradiction,
    FragmentType,
    ResponseStyleConfig,
    SynthesisConfig,
    SynthesisResult,
)
