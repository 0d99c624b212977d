from typing import Dict, List, Any, Optional, Tuple, Callable, Awaitable
from dataclasses import dataclass
import asyncio
import re
import time
import structlog

from promptchain.domain.context.context_store import ContextStore
from promptchain.domain.errors import (
    ChainConfigurationError, CircularDependency, ContextStoreError,
    LanguageModelError, StepExecutionError
)
from promptchain.domain.llm.language_model import LanguageModel
from promptchain.domain.models.chain_models import (
    ChainContext, ChainError, ChainResult, ChainStatus, Complexity,
    ConditionOperator, ConditionType, ExecutionCondition, PromptChain,
    PromptStep, ResultMetadata, RetryPolicy, RetryTrigger, StepType, ChainMetadata,
    CONDITION_NOT_MET
)
from promptchain.domain.models.context_models import Message, MessageMetadata, MessageRole, generate_id
from promptchain.domain.models.synthesis_models import SynthesisConfig, SynthesisResult
from promptchain.domain.synthesis.response_synthesizer import FALLBACK_RESPONSE, ResponseSynthesizer
from promptchain.domain.tool.tool_client import ToolClient
from promptchain.domain.tool.tool_executor import ToolExecutionOutcome, ToolOperationExecutor
from promptchain.infrastructure.observability.logging import ChainLogger, MetricsCollector
from .chain_planner import ChainPlanner, DEFAULT_STEP_TIMEOUT_MS

logger = structlog.get_logger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant that answers questions using the conversation context "
    "and the results of tool calls. Be accurate, concise and clear."
)
SKIPPED_OUTPUT = "Step skipped due to conditions"
EXECUTION_ERROR = "execution_error"
REASONING_PATTERN = re.compile(r"\b(?:because|therefore|due to)\s+[^.]+", re.IGNORECASE)
MAX_REASONING = 3
RETRIEVAL_MESSAGES = 3

StepOutput = Tuple[str, Optional[ToolExecutionOutcome]]
StepHandler = Callable[[PromptChain, PromptStep], Awaitable[StepOutput]]


@dataclass
class QueryOutcome:
    """Everything produced while answering one query"""
    response: str
    chain: PromptChain
    synthesis: Optional[SynthesisResult] = None


class ChainOrchestrator:
    """Plans, executes and synthesizes prompt chains for user queries.

    Steps are grouped into dependency levels. Levels run in order and the steps of a
    level run in batches of at most ``max_concurrency``. A failing step never aborts
    its siblings: it becomes a failed ChainResult plus a ChainError, and the chain
    stops early only once more than ``failure_ratio`` of the planned steps failed.
    """

    def __init__(
        self,
        context_store: ContextStore,
        tool_client: ToolClient,
        language_model: LanguageModel,
        synthesizer: Optional[ResponseSynthesizer] = None,
        planner: Optional[ChainPlanner] = None,
        tool_executor: Optional[ToolOperationExecutor] = None,
        metrics: Optional[MetricsCollector] = None,
        chain_logger: Optional[ChainLogger] = None,
        failure_ratio: float = 0.5,
        default_step_timeout_ms: int = DEFAULT_STEP_TIMEOUT_MS,
        max_relevant_messages: int = 5,
        max_chain_depth: int = 3,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT
    ):
        self.context_store = context_store
        self.tool_client = tool_client
        self.language_model = language_model
        self.chain_logger = chain_logger or ChainLogger(__name__)
        self.metrics = metrics or MetricsCollector(self.chain_logger)
        self.synthesizer = synthesizer or ResponseSynthesizer(metrics=self.metrics)
        self.planner = planner or ChainPlanner(default_timeout_ms=default_step_timeout_ms)
        self.tool_executor = tool_executor or ToolOperationExecutor(
            tool_client,
            ranker=context_store.ranker,
            chain_logger=self.chain_logger
        )
        self.failure_ratio = failure_ratio
        self.default_step_timeout_ms = default_step_timeout_ms
        self.max_relevant_messages = max_relevant_messages
        self.max_chain_depth = max_chain_depth
        self.system_prompt = system_prompt
        self.active_chains: Dict[str, PromptChain] = {}

        self.step_handlers: Dict[StepType, StepHandler] = {
            StepType.ANALYSIS: self._execute_reasoning_step,
            StepType.SYNTHESIS: self._execute_reasoning_step,
            StepType.VALIDATION: self._execute_reasoning_step,
            StepType.MCP_CALL: self._execute_tool_step,
            StepType.RETRIEVAL: self._execute_retrieval_step,
            StepType.DECISION: self._execute_decision_step,
        }

    async def orchestrate_query(
        self,
        session_id: str,
        query: str,
        complexity: Complexity = Complexity.MEDIUM,
        style: Optional[SynthesisConfig] = None,
        record_response: bool = True
    ) -> str:
        """Answer a query through a planned chain and return the final text"""

        outcome = await self.run_query(session_id, query, complexity, style, record_response)
        return outcome.response

    async def run_query(
        self,
        session_id: str,
        query: str,
        complexity: Complexity = Complexity.MEDIUM,
        style: Optional[SynthesisConfig] = None,
        record_response: bool = True,
        parent_id: Optional[str] = None
    ) -> QueryOutcome:
        """Like orchestrate_query, but returns the chain and synthesis as well.

        SessionNotFound and chain configuration errors propagate. Any other failure
        is logged and answered with the fallback text.
        """

        started = time.perf_counter()
        chain: Optional[PromptChain] = None

        with structlog.contextvars.bound_contextvars(session_id=session_id):
            try:
                chain = await self.create_query_chain(session_id, query, complexity, parent_id=parent_id)
                await self.execute_chain(chain)
                synthesis = await self._synthesize(chain, style)

                if record_response:
                    await self._record_response(chain, synthesis)

            except (ContextStoreError, ChainConfigurationError):
                raise
            except Exception as e:
                logger.error("Query orchestration failed", error=str(e), exc_info=True)
                self.metrics.increment_counter("queries.failed")
                if chain is None:
                    chain = PromptChain(context=ChainContext(session_id=session_id, user_query=query))
                chain.status = ChainStatus.FAILED
                return QueryOutcome(response=FALLBACK_RESPONSE, chain=chain)

        duration = (time.perf_counter() - started) * 1000
        self.metrics.record_latency("orchestrate_query", duration, tags={"complexity": Complexity(complexity).value})

        return QueryOutcome(response=synthesis.final_response, chain=chain, synthesis=synthesis)

    async def orchestrate_sub_query(
        self,
        parent_session_id: str,
        query: str,
        complexity: Complexity = Complexity.SIMPLE,
        style: Optional[SynthesisConfig] = None
    ) -> QueryOutcome:
        """Run a query in a child session inheriting the parent's profile and knowledge"""

        parent = await self.context_store.get_session(parent_session_id)
        if parent.session_state.chain_depth >= self.max_chain_depth:
            raise ChainConfigurationError(
                f"Maximum chain depth {self.max_chain_depth} reached",
                details={"session_id": parent_session_id, "chain_depth": parent.session_state.chain_depth}
            )

        child_id = f"{parent_session_id}:{generate_id()}"
        await self.context_store.create_chain_context(parent_session_id, child_id)
        return await self.run_query(child_id, query, complexity, style, parent_id=parent_session_id)

    async def create_query_chain(
        self,
        session_id: str,
        query: str,
        complexity: Complexity = Complexity.MEDIUM,
        parent_id: Optional[str] = None
    ) -> PromptChain:
        """Retrieve context and plan the chain for a query"""

        context = await self.context_store.retrieve_relevant_context(
            session_id, query, self.max_relevant_messages
        )
        steps = self.planner.plan_steps(query, complexity, context)

        chain = PromptChain(
            parent_id=parent_id,
            steps=steps,
            context=ChainContext(session_id=session_id, user_query=query, retrieved_context=context),
            metadata=self.planner.build_metadata(query, complexity, steps)
        )

        self.chain_logger.log_chain_event(
            "chain_created",
            chain.id,
            session_id,
            data={"complexity": Complexity(complexity).value, "steps": [s.id for s in steps]}
        )
        return chain

    async def build_chain(
        self,
        session_id: str,
        query: str,
        steps: List[PromptStep],
        max_concurrency: int = 1,
        parent_id: Optional[str] = None,
        tags: Optional[List[str]] = None
    ) -> PromptChain:
        """Assemble a custom chain, validating its step graph up front"""

        self.build_execution_levels(steps)
        context = await self.context_store.retrieve_relevant_context(
            session_id, query, self.max_relevant_messages
        )

        return PromptChain(
            parent_id=parent_id,
            steps=steps,
            context=ChainContext(session_id=session_id, user_query=query, retrieved_context=context),
            metadata=ChainMetadata(
                priority=self.planner.intent.priority(query),
                max_concurrency=max_concurrency,
                total_steps=len(steps),
                estimated_time=self.planner.estimate_execution_time(steps),
                tags=tags if tags is not None else self.planner.intent.extract_tags(query)
            )
        )

    @staticmethod
    def build_execution_levels(steps: List[PromptStep]) -> List[List[PromptStep]]:
        """Group steps into levels whose dependencies are all in earlier levels"""

        seen = set()
        for step in steps:
            if step.id in seen:
                raise ChainConfigurationError(
                    f"Duplicate step id {step.id}",
                    details={"step_id": step.id}
                )
            seen.add(step.id)

        levels: List[List[PromptStep]] = []
        completed = set()
        remaining = list(steps)

        while remaining:
            level = [s for s in remaining if all(dep in completed for dep in s.dependencies)]
            if not level:
                raise CircularDependency([s.id for s in remaining])

            completed.update(s.id for s in level)
            remaining = [s for s in remaining if s.id not in completed]
            levels.append(level)

        return levels

    def get_active_chains(self) -> List[str]:
        return list(self.active_chains.keys())

    async def execute_chain(self, chain: PromptChain) -> List[ChainResult]:
        """Execute a chain level by level and return the step results"""

        # Raises before any step runs
        levels = self.build_execution_levels(chain.steps)

        chain.status = ChainStatus.RUNNING
        chain.results = []
        self.active_chains[chain.id] = chain
        started = time.perf_counter()

        self.chain_logger.log_chain_event(
            "chain_started",
            chain.id,
            chain.context.session_id,
            data={"levels": len(levels), "max_concurrency": chain.metadata.max_concurrency}
        )

        try:
            with structlog.contextvars.bound_contextvars(chain_id=chain.id):
                for level_index, level in enumerate(levels):
                    level_results = await self._execute_level(chain, level)
                    chain.results.extend(level_results)

                    if self._should_terminate(chain):
                        remaining = [s.id for lvl in levels[level_index + 1:] for s in lvl]
                        self.metrics.increment_counter("chains.terminated_early")
                        self.chain_logger.log_chain_event(
                            "chain_terminated",
                            chain.id,
                            chain.context.session_id,
                            data={"failed_steps": self._failure_count(chain), "skipped_steps": remaining}
                        )
                        break

            chain.status = (
                ChainStatus.COMPLETED if all(r.success for r in chain.results) else ChainStatus.FAILED
            )

        except BaseException:
            chain.status = ChainStatus.FAILED
            raise

        finally:
            self.active_chains.pop(chain.id, None)

        duration = (time.perf_counter() - started) * 1000
        self.metrics.record_latency("chain_execution", duration)
        self.metrics.increment_counter(f"chains.{chain.status.value}")
        self.chain_logger.log_chain_event(
            "chain_finished",
            chain.id,
            chain.context.session_id,
            data=chain.get_summary(),
            duration_ms=duration
        )

        return chain.results

    async def _execute_level(self, chain: PromptChain, level: List[PromptStep]) -> List[ChainResult]:
        concurrency = max(1, min(len(level), chain.metadata.max_concurrency))
        results: List[ChainResult] = []

        for start in range(0, len(level), concurrency):
            batch = level[start:start + concurrency]
            outcomes = await asyncio.gather(
                *(self._execute_step(chain, step) for step in batch),
                return_exceptions=True
            )

            batch_results = []
            for step, outcome in zip(batch, outcomes):
                if isinstance(outcome, Exception):
                    outcome = self._failure_result(chain, step, outcome, 0.0)
                elif isinstance(outcome, BaseException):
                    raise outcome
                batch_results.append(outcome)

            # Later batches and levels see only real outputs
            for result in batch_results:
                if result.success and CONDITION_NOT_MET not in result.metadata.reasoning:
                    chain.context.intermediate_results[result.step_id] = result.output

            results.extend(batch_results)

        return results

    def _should_terminate(self, chain: PromptChain) -> bool:
        return self._failure_count(chain) > len(chain.steps) * self.failure_ratio

    def _failure_count(self, chain: PromptChain) -> int:
        return len([r for r in chain.results if not r.success])

    async def _execute_step(self, chain: PromptChain, step: PromptStep) -> ChainResult:
        started = time.perf_counter()

        if step.conditions and not self.evaluate_conditions(step.conditions, chain):
            logger.debug("Step skipped", step_id=step.id)
            return ChainResult(
                step_id=step.id,
                success=True,
                output=SKIPPED_OUTPUT,
                processing_time=(time.perf_counter() - started) * 1000,
                metadata=ResultMetadata(
                    confidence=1.0,
                    source_chain=chain.id,
                    reasoning=[CONDITION_NOT_MET]
                )
            )

        policy = step.retry_policy or RetryPolicy()
        timeout_ms = step.timeout or self.default_step_timeout_ms
        attempt = 0

        while True:
            attempt += 1
            try:
                output, tool_outcome = await asyncio.wait_for(
                    self._dispatch(chain, step),
                    timeout=timeout_ms / 1000
                )
            except asyncio.TimeoutError:
                error: Exception = StepExecutionError(f"Step timed out after {timeout_ms}ms", step_id=step.id)
                trigger = RetryTrigger.TIMEOUT
            except Exception as e:
                error = e
                trigger = RetryTrigger.ERROR
            else:
                if output.strip() or not self._should_retry(policy, RetryTrigger.INVALID_RESPONSE, attempt):
                    break
                error = StepExecutionError("Step returned an empty response", step_id=step.id)
                trigger = RetryTrigger.INVALID_RESPONSE

            if not self._should_retry(policy, trigger, attempt):
                return self._failure_result(
                    chain, step, error, (time.perf_counter() - started) * 1000, retry_count=attempt - 1
                )

            logger.info("Retrying step", step_id=step.id, attempt=attempt, trigger=trigger.value)
            await asyncio.sleep(policy.backoff_ms * attempt / 1000)

        duration = (time.perf_counter() - started) * 1000
        self.chain_logger.log_step_execution(step.id, step.type.value, chain.id, duration_ms=duration)
        self.metrics.record_latency("step_execution", duration, tags={"step_type": step.type.value})
        self.metrics.increment_counter("steps.succeeded")

        return ChainResult(
            step_id=step.id,
            success=True,
            output=output,
            tool_results=tool_outcome.results if tool_outcome else None,
            tool_calls=tool_outcome.invocations if tool_outcome else [],
            processing_time=duration,
            metadata=ResultMetadata(
                confidence=self.calculate_confidence(output, step),
                source_chain=chain.id,
                reasoning=self.extract_reasoning(output)
            )
        )

    def _should_retry(self, policy: RetryPolicy, trigger: RetryTrigger, attempt: int) -> bool:
        return attempt < policy.max_attempts and trigger in policy.retry_on

    async def _dispatch(self, chain: PromptChain, step: PromptStep) -> StepOutput:
        handler = self.step_handlers.get(step.type)
        if handler is None:
            raise StepExecutionError(f"Unknown step type: {step.type}", step_id=step.id)
        return await handler(chain, step)

    def _failure_result(
        self,
        chain: PromptChain,
        step: PromptStep,
        error: Exception,
        duration: float,
        retry_count: int = 0
    ) -> ChainResult:
        message = str(error) or error.__class__.__name__

        chain.context.errors.append(ChainError(
            step_id=step.id,
            error=message,
            error_type=error.__class__.__name__,
            retry_count=retry_count,
            context={"step_type": step.type.value}
        ))

        self.chain_logger.log_step_execution(
            step.id, step.type.value, chain.id,
            duration_ms=duration, success=False, error=message
        )
        self.metrics.increment_counter("steps.failed")

        return ChainResult(
            step_id=step.id,
            success=False,
            output=f"Step execution failed: {message}",
            processing_time=duration,
            metadata=ResultMetadata(
                confidence=0.0,
                source_chain=chain.id,
                reasoning=[EXECUTION_ERROR]
            )
        )

    # Step handlers

    async def _execute_reasoning_step(self, chain: PromptChain, step: PromptStep) -> StepOutput:
        tool_outcome = None
        if step.tool_operations:
            tool_outcome = await self.tool_executor.execute_operations(
                step.tool_operations, chain.context.user_query
            )

        prompt = self.build_contextual_prompt(chain, step, tool_outcome.output if tool_outcome else "")
        return await self._call_model(prompt), tool_outcome

    async def _execute_tool_step(self, chain: PromptChain, step: PromptStep) -> StepOutput:
        if not step.tool_operations:
            raise StepExecutionError("Tool step requires tool operations", step_id=step.id)

        tool_outcome = await self.tool_executor.execute_operations(
            step.tool_operations, chain.context.user_query
        )
        return tool_outcome.output, tool_outcome

    async def _execute_retrieval_step(self, chain: PromptChain, step: PromptStep) -> StepOutput:
        context = await self.context_store.retrieve_relevant_context(
            chain.context.session_id, step.prompt, RETRIEVAL_MESSAGES
        )

        lines = [f"{m.role.value}: {m.content}" for m in context.relevant_messages]
        for entry in context.domain_context:
            concepts = ", ".join(str(key) for key in entry.concepts)
            lines.append(f"domain {entry.domain}: {concepts}")

        return "Retrieved context:\n" + ("\n".join(lines) if lines else "No relevant context"), None

    async def _execute_decision_step(self, chain: PromptChain, step: PromptStep) -> StepOutput:
        decision_context = "\n".join(
            f"{step_id}: {output}" for step_id, output in chain.context.intermediate_results.items()
        )
        prompt = f"{step.prompt}\n\nContext:\n{decision_context}"
        return await self._call_model(prompt), None

    def build_contextual_prompt(self, chain: PromptChain, step: PromptStep, tool_output: str = "") -> str:
        """Step prompt plus relevant history, dependency outputs and tool output"""

        prompt = step.prompt

        messages = chain.context.retrieved_context.relevant_messages
        if messages:
            prompt += "\n\nRelevant Context:\n"
            prompt += "\n".join(f"{m.role.value}: {m.content}" for m in messages)

        dependency_results = [
            f"{dep}: {chain.context.intermediate_results[dep]}"
            for dep in step.dependencies
            if chain.context.intermediate_results.get(dep)
        ]
        if dependency_results:
            prompt += "\n\nPrevious Results:\n" + "\n".join(dependency_results)

        if tool_output:
            prompt += "\n\nTool Results:\n" + tool_output

        return prompt

    async def _call_model(self, prompt: str) -> str:
        messages = [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": prompt}
        ]
        try:
            reply = await self.language_model.invoke(messages)
        except LanguageModelError:
            raise
        except Exception as e:
            raise LanguageModelError(f"Language model call failed: {e}", cause=e) from e

        return (reply or "").strip()

    # Conditions

    def evaluate_conditions(self, conditions: List[ExecutionCondition], chain: PromptChain) -> bool:
        return all(self._evaluate_condition(condition, chain) for condition in conditions)

    def _evaluate_condition(self, condition: ExecutionCondition, chain: PromptChain) -> bool:
        context = chain.context

        if condition.type == ConditionType.HAS_RESULT:
            return condition.target in context.intermediate_results

        if condition.type == ConditionType.CONTEXT_AVAILABLE:
            return context.retrieved_context.has_messages

        if condition.type == ConditionType.ERROR_COUNT:
            expected = condition.value if condition.value is not None else 0
            return compare(len(context.errors), condition.operator, expected)

        if condition.type == ConditionType.CUSTOM:
            if condition.target not in context.intermediate_results:
                return False
            return compare(context.intermediate_results[condition.target], condition.operator, condition.value)

        return True

    # Result heuristics

    def calculate_confidence(self, output: str, step: PromptStep) -> float:
        confidence = 0.8
        lower_output = output.lower()

        if "uncertain" in lower_output or "maybe" in lower_output:
            confidence *= 0.7
        if "definitely" in lower_output or "certainly" in lower_output:
            confidence *= 1.1
        if step.type == StepType.VALIDATION:
            confidence *= 1.2

        return min(confidence, 1.0)

    def extract_reasoning(self, output: str) -> List[str]:
        return [match.strip() for match in REASONING_PATTERN.findall(output)][:MAX_REASONING]

    # Synthesis and recording

    async def _synthesize(self, chain: PromptChain, style: Optional[SynthesisConfig]) -> SynthesisResult:
        try:
            return await self.synthesizer.synthesize(chain.results, chain.context, style)
        except Exception as e:
            logger.error("Response synthesis failed", chain_id=chain.id, error=str(e), exc_info=True)
            self.metrics.increment_counter("synthesis.failed")
            return SynthesisResult(final_response=FALLBACK_RESPONSE, confidence=0.0)

    async def _record_response(self, chain: PromptChain, synthesis: SynthesisResult) -> Message:
        tool_calls = [call for result in chain.results for call in result.tool_calls]
        tools_used: List[str] = []
        for call in tool_calls:
            if call.success and call.tool_name not in tools_used:
                tools_used.append(call.tool_name)

        message = Message(
            role=MessageRole.ASSISTANT,
            content=synthesis.final_response,
            metadata=MessageMetadata(
                tool_calls=tool_calls,
                tools_used=tools_used,
                synthesized_from=[r.step_id for r in chain.results if r.success],
                confidence=synthesis.confidence
            )
        )

        stored = await self.context_store.add_message(chain.context.session_id, message)
        self.chain_logger.log_context_update(
            chain.context.session_id,
            "message",
            "assistant_response_recorded",
            details={"chain_id": chain.id, "tools_used": tools_used}
        )
        return stored


def compare(actual: Any, operator: ConditionOperator, expected: Any) -> bool:
    """Apply a condition operator; numeric comparisons on non-numbers are false"""

    if operator == ConditionOperator.EQUALS:
        return actual == expected
    if operator == ConditionOperator.CONTAINS:
        return str(expected) in str(actual)

    try:
        actual_number = float(actual)
        expected_number = float(expected)
    except (TypeError, ValueError):
        return False

    if operator == ConditionOperator.GREATER_THAN:
        return actual_number > expected_number
    if operator == ConditionOperator.LESS_THAN:
        return actual_number < expected_number
    return False
