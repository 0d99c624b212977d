from typing import List, Optional
import json

from promptchain.domain.models.chain_models import (
    AUTO_DETECT_TOOL, LIST_RESOURCES, LIST_TOOLS,
    ChainMetadata, Complexity, ConditionType, ExecutionCondition,
    PromptStep, StepType, ToolOperation
)
from promptchain.domain.models.context_models import ContextRetrievalResult
from promptchain.domain.orchestration.intent import IntentClassifier, RegexIntentClassifier


DEFAULT_STEP_TIMEOUT_MS = 15000


class ChainPlanner:
    """Turns a query into the fixed step layout for its complexity.

    The layout is deterministic: step ids and dependency wiring depend only on the
    complexity and on whether the query asks for tool-backed actions.
    """

    def __init__(
        self,
        intent: Optional[IntentClassifier] = None,
        complex_max_concurrency: int = 2,
        default_timeout_ms: int = DEFAULT_STEP_TIMEOUT_MS
    ):
        self.intent = intent or RegexIntentClassifier()
        self.complex_max_concurrency = complex_max_concurrency
        self.default_timeout_ms = default_timeout_ms

    def plan_steps(
        self,
        query: str,
        complexity: Complexity,
        context: ContextRetrievalResult
    ) -> List[PromptStep]:
        complexity = Complexity(complexity)

        steps = [
            PromptStep(
                id="context_analysis",
                type=StepType.ANALYSIS,
                prompt=self.context_analysis_prompt(query, context),
                timeout=10000
            )
        ]

        if complexity == Complexity.SIMPLE:
            steps.append(PromptStep(
                id="direct_response",
                type=StepType.SYNTHESIS,
                prompt=self.direct_response_prompt(query),
                dependencies=["context_analysis"],
                timeout=15000
            ))

        elif complexity == Complexity.MEDIUM:
            if self.intent.requires_tools(query):
                steps.append(PromptStep(
                    id="tool_selection",
                    type=StepType.ANALYSIS,
                    prompt=self.tool_selection_prompt(query),
                    dependencies=["context_analysis"],
                    tool_operations=[ToolOperation(tool_name=LIST_TOOLS, required=True)],
                    timeout=10000
                ))
                steps.append(PromptStep(
                    id="mcp_execution",
                    type=StepType.MCP_CALL,
                    prompt="Execute the selected tools",
                    dependencies=["tool_selection"],
                    tool_operations=[ToolOperation(tool_name=AUTO_DETECT_TOOL, required=True)],
                    timeout=20000
                ))
                steps.append(PromptStep(
                    id="result_synthesis",
                    type=StepType.SYNTHESIS,
                    prompt=self.synthesis_prompt(query),
                    dependencies=["mcp_execution"],
                    timeout=15000
                ))
            else:
                steps.append(PromptStep(
                    id="enhanced_response",
                    type=StepType.SYNTHESIS,
                    prompt=self.enhanced_response_prompt(query),
                    dependencies=["context_analysis"],
                    timeout=20000
                ))

        else:
            steps.append(PromptStep(
                id="problem_decomposition",
                type=StepType.ANALYSIS,
                prompt=self.decomposition_prompt(query),
                dependencies=["context_analysis"],
                timeout=15000
            ))
            steps.append(PromptStep(
                id="information_gathering",
                type=StepType.MCP_CALL,
                prompt="Gather required information",
                dependencies=["problem_decomposition"],
                tool_operations=self.information_operations(query),
                timeout=30000
            ))
            steps.append(PromptStep(
                id="reasoning_validation",
                type=StepType.VALIDATION,
                prompt=self.validation_prompt(),
                dependencies=["information_gathering"],
                conditions=[ExecutionCondition(type=ConditionType.HAS_RESULT, target="information_gathering")],
                timeout=15000
            ))
            steps.append(PromptStep(
                id="comprehensive_synthesis",
                type=StepType.SYNTHESIS,
                prompt=self.comprehensive_synthesis_prompt(query),
                dependencies=["reasoning_validation"],
                timeout=25000
            ))

        return steps

    def information_operations(self, query: str) -> List[ToolOperation]:
        operations = [ToolOperation(tool_name=LIST_TOOLS, required=False)]
        if self.intent.requires_tools(query):
            operations.append(ToolOperation(
                tool_name=AUTO_DETECT_TOOL,
                required=False,
                fallback=ToolOperation(tool_name=LIST_RESOURCES, required=False)
            ))
        return operations

    def build_metadata(self, query: str, complexity: Complexity, steps: List[PromptStep]) -> ChainMetadata:
        return ChainMetadata(
            priority=self.intent.priority(query),
            max_concurrency=self.complex_max_concurrency if Complexity(complexity) == Complexity.COMPLEX else 1,
            total_steps=len(steps),
            estimated_time=self.estimate_execution_time(steps),
            tags=self.intent.extract_tags(query)
        )

    def estimate_execution_time(self, steps: List[PromptStep]) -> int:
        return sum(step.timeout or self.default_timeout_ms for step in steps)

    # Prompt templates

    def context_analysis_prompt(self, query: str, context: ContextRetrievalResult) -> str:
        history = "\n".join(f"{m.role.value}: {m.content}" for m in context.relevant_messages)
        profile = json.dumps(context.user_profile.model_dump(mode="json"))
        return (
            "Analyze the user query and available context to determine the best approach "
            "for a comprehensive response.\n\n"
            f"User Query: {query}\n\n"
            f"Available Context:\n{history or 'None'}\n\n"
            f"User Profile: {profile}\n\n"
            "Provide a brief analysis of what information is needed and how to approach this query."
        )

    def direct_response_prompt(self, query: str) -> str:
        return f"Provide a direct, helpful response to the user's query: {query}"

    def tool_selection_prompt(self, query: str) -> str:
        return (
            f'Based on the user query "{query}", determine which tools would be most helpful '
            "and create a plan for using them."
        )

    def synthesis_prompt(self, query: str) -> str:
        return f"Synthesize the tool results into a comprehensive response to: {query}"

    def enhanced_response_prompt(self, query: str) -> str:
        return (
            f"Provide an enhanced, context-aware response to: {query}\n\n"
            "Consider the conversation history and user profile to tailor your response."
        )

    def decomposition_prompt(self, query: str) -> str:
        return (
            f"Break down this complex query into smaller, manageable sub-problems: {query}\n\n"
            "Identify the key components and the logical sequence for addressing them."
        )

    def validation_prompt(self) -> str:
        return (
            "Review the gathered information and reasoning steps. Identify any inconsistencies, "
            "gaps, or areas that need clarification."
        )

    def comprehensive_synthesis_prompt(self, query: str) -> str:
        return (
            f"Create a comprehensive, well-structured response to the original query: {query}\n\n"
            "Integrate all gathered information, address sub-problems, and provide a complete "
            "answer that directly addresses the user's needs."
        )
