from .tool_client import ResourceDefinition, ToolClient, ToolDefinition, extract_text
from .tool_registry import LocalToolClient
from .tool_executor import ToolExecutionOutcome, ToolOperationExecutor
