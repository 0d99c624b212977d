from typing import Dict, List, Any, Optional
from dataclasses import dataclass, field
import asyncio
import re
import time

from promptchain.domain.context.context_ranker import ContextRanker
from promptchain.domain.errors import ToolOperationError
from promptchain.domain.models.chain_models import (
    AUTO_DETECT_TOOL, LIST_RESOURCES, LIST_TOOLS, ToolOperation
)
from promptchain.domain.models.context_models import ToolInvocation
from promptchain.infrastructure.observability.logging import ChainLogger
from .tool_client import ToolClient, extract_text


@dataclass
class ToolExecutionOutcome:
    """Combined result of running a step's tool operations"""
    output: str = ""
    results: List[Any] = field(default_factory=list)
    invocations: List[ToolInvocation] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def tools_used(self) -> List[str]:
        return [i.tool_name for i in self.invocations if i.success]


class ToolOperationExecutor:
    """Runs tool operations with required/fallback semantics and timeouts.

    A failing required operation raises ToolOperationError. A failing optional
    operation runs its fallback when one is configured, otherwise it is skipped.
    """

    def __init__(
        self,
        client: ToolClient,
        ranker: Optional[ContextRanker] = None,
        timeout: Optional[float] = 30.0,
        chain_logger: Optional[ChainLogger] = None
    ):
        self.client = client
        self.ranker = ranker or ContextRanker()
        self.timeout = timeout
        self.chain_logger = chain_logger or ChainLogger(__name__)

    async def execute_operations(
        self,
        operations: List[ToolOperation],
        query: str = ""
    ) -> ToolExecutionOutcome:
        outcome = ToolExecutionOutcome()
        texts: List[str] = []

        for operation in operations:
            result = await self._execute_with_fallback(operation, query, outcome)
            if result is None:
                continue
            outcome.results.append(result)
            text = extract_text(result)
            if text:
                texts.append(text)

        outcome.output = "\n".join(texts).strip()
        return outcome

    async def _execute_with_fallback(
        self,
        operation: ToolOperation,
        query: str,
        outcome: ToolExecutionOutcome,
        is_fallback: bool = False
    ) -> Optional[Any]:
        try:
            return await self._execute_operation(operation, query, outcome, is_fallback)
        except Exception as e:
            if operation.required:
                if isinstance(e, ToolOperationError):
                    e.required = True
                    raise
                raise ToolOperationError(
                    f"Required tool operation {operation.tool_name} failed: {self._describe(e)}",
                    tool_name=operation.tool_name,
                    required=True,
                    cause=e
                ) from e

            if operation.fallback is not None:
                return await self._execute_with_fallback(operation.fallback, query, outcome, is_fallback=True)

            outcome.skipped.append(operation.tool_name)
            return None

    async def _execute_operation(
        self,
        operation: ToolOperation,
        query: str,
        outcome: ToolExecutionOutcome,
        is_fallback: bool
    ) -> Any:
        tool_name = operation.tool_name
        parameters = dict(operation.parameters)
        started = time.perf_counter()

        try:
            if tool_name == LIST_TOOLS:
                result = await self._with_timeout(self._discover_tools())
            elif tool_name == LIST_RESOURCES:
                result = await self._with_timeout(self._discover_resources())
            elif tool_name == AUTO_DETECT_TOOL:
                tool_name, parameters = await self._with_timeout(self._auto_detect(query, parameters))
                result = await self._with_timeout(self.client.call_tool(tool_name, parameters))
            else:
                result = await self._with_timeout(self.client.call_tool(tool_name, parameters))

            if isinstance(result, dict) and result.get("isError"):
                raise ToolOperationError(extract_text(result) or "Tool reported an error", tool_name=tool_name)

        except Exception as e:
            duration = (time.perf_counter() - started) * 1000
            outcome.invocations.append(ToolInvocation(
                tool_name=tool_name,
                parameters=parameters,
                success=False,
                result=self._describe(e),
                processing_time=duration
            ))
            self.chain_logger.log_tool_operation(
                tool_name, parameters, duration_ms=duration,
                success=False, error=self._describe(e), fallback=is_fallback
            )
            raise

        duration = (time.perf_counter() - started) * 1000
        outcome.invocations.append(ToolInvocation(
            tool_name=tool_name,
            parameters=parameters,
            success=True,
            result=result,
            processing_time=duration
        ))
        self.chain_logger.log_tool_operation(
            tool_name, parameters, duration_ms=duration, fallback=is_fallback
        )
        return result

    async def _with_timeout(self, awaitable):
        if self.timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout=self.timeout)

    async def _discover_tools(self) -> Dict[str, Any]:
        tools = await self.client.list_tools()
        lines = [f"- {t.name}: {t.description}" for t in tools]
        return {
            "content": [{"type": "text", "text": "Available tools:\n" + "\n".join(lines) if lines else "No tools available"}],
            "tools": [t.model_dump(by_alias=True) for t in tools]
        }

    async def _discover_resources(self) -> Dict[str, Any]:
        resources = await self.client.list_resources()
        lines = [f"- {r.name} ({r.uri}): {r.description}" for r in resources]
        return {
            "content": [{"type": "text", "text": "Available resources:\n" + "\n".join(lines) if lines else "No resources available"}],
            "resources": [r.model_dump(by_alias=True) for r in resources]
        }

    async def _auto_detect(self, query: str, overrides: Dict[str, Any]):
        """Choose the best tool for the query and derive its arguments"""

        tools = await self.client.list_tools()
        catalogue = [t.model_dump(by_alias=True) for t in tools]
        best = self.ranker.select_best_tool(query, catalogue)
        if best is None:
            raise ToolOperationError("No available tool matches the query", tool_name=AUTO_DETECT_TOOL)

        arguments = derive_arguments(query, best.get("inputSchema") or {})
        arguments.update(overrides)
        return best["name"], arguments

    def _describe(self, error: Exception) -> str:
        if isinstance(error, asyncio.TimeoutError):
            return "Tool call timed out"
        return str(error) or error.__class__.__name__


COUNT_CUES = ("how many", "count", "check")


def derive_arguments(query: str, input_schema: Dict[str, Any]) -> Dict[str, Any]:
    """Pull simple parameters (ids, limits) out of a natural language query.

    When the schema declares properties only those are filled in.
    """

    arguments: Dict[str, Any] = {}
    lower_query = query.lower()

    user_id = re.search(r"user\s*id\s*:?\s*(\d+)", query, re.IGNORECASE)
    if user_id:
        arguments["userId"] = user_id.group(1)

    item_id = re.search(r"(?<![a-z])id\s*:?\s*(\d+)", query, re.IGNORECASE)
    if item_id and not (user_id and item_id.start() >= user_id.start()):
        arguments["id"] = item_id.group(1)

    if not any(cue in lower_query for cue in COUNT_CUES):
        limit = re.search(r"\b(\d+)\b", query)
        if limit and ("show" in lower_query or "get" in lower_query) and limit.group(1) not in arguments.values():
            arguments["limit"] = limit.group(1)
        elif "few" in lower_query or "some" in lower_query:
            arguments["limit"] = "5"

    properties = input_schema.get("properties") or {}
    if properties:
        arguments = {key: value for key, value in arguments.items() if key in properties}
    return arguments
