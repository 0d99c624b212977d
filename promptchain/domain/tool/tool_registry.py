from typing import Dict, List, Any, Optional, Callable
import inspect
import json
import structlog

from promptchain.domain.errors import ToolOperationError
from .tool_client import ResourceDefinition, ToolClient, ToolDefinition

logger = structlog.get_logger(__name__)


class LocalToolClient(ToolClient):
    """In-process tool client serving registered handlers.

    Handlers may be sync or async callables; they receive the call arguments as
    keyword arguments and their return value is wrapped as MCP text content.
    """
    
    def __init__(self):
        self.tools: Dict[str, Dict[str, Any]] = {}
        self.tool_categories: Dict[str, List[str]] = {}
        self.resources: Dict[str, Dict[str, Any]] = {}
        self.initialized = False
        
    def register_tool(
        self,
        name: str,
        handler: Callable[..., Any],
        description: str = "",
        input_schema: Optional[Dict[str, Any]] = None,
        category: str = "general"
    ):
        """Register a new tool"""
        
        self.tools[name] = {
            "definition": ToolDefinition(
                name=name,
                description=description,
                input_schema=input_schema or {"type": "object", "properties": {}}
            ),
            "handler": handler,
            "category": category
        }
        
        if category not in self.tool_categories:
            self.tool_categories[category] = []
        if name not in self.tool_categories[category]:
            self.tool_categories[category].append(name)
            
    def register_resource(
        self,
        uri: str,
        name: str,
        reader: Callable[[], Any],
        description: str = "",
        mime_type: Optional[str] = None
    ):
        """Register a readable resource"""
        
        self.resources[uri] = {
            "definition": ResourceDefinition(
                uri=uri,
                name=name,
                description=description,
                mime_type=mime_type
            ),
            "reader": reader
        }
        
    async def initialize(self) -> None:
        self.initialized = True
        logger.info("Local tool client initialized", tools=len(self.tools), resources=len(self.resources))
        
    async def list_tools(self) -> List[ToolDefinition]:
        """Get all available tools"""
        
        return [entry["definition"] for entry in self.tools.values()]
        
    async def list_resources(self) -> List[ResourceDefinition]:
        return [entry["definition"] for entry in self.resources.values()]
        
    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Any:
        """Invoke a registered tool"""
        
        entry = self.tools.get(name)
        if entry is None:
            raise ToolOperationError(f"Tool {name} not found", tool_name=name)
            
        result = await self._invoke(entry["handler"], **(arguments or {}))
        return {
            "content": [{"type": "text", "text": self._as_text(result)}],
            "isError": False
        }
        
    async def read_resource(self, uri: str) -> Any:
        entry = self.resources.get(uri)
        if entry is None:
            raise ToolOperationError(f"Resource {uri} not found", tool_name=uri)
            
        result = await self._invoke(entry["reader"])
        definition = entry["definition"]
        return {
            "contents": [{
                "uri": uri,
                "mimeType": definition.mime_type or "text/plain",
                "text": self._as_text(result)
            }]
        }
        
    async def close(self) -> None:
        self.initialized = False
        
    async def get_tools_by_category(self, category: str) -> List[ToolDefinition]:
        """Get tools by category"""
        
        names = self.tool_categories.get(category, [])
        return [self.tools[name]["definition"] for name in names if name in self.tools]
        
    async def search_tools(self, query: str) -> List[ToolDefinition]:
        """Search tools by name or description"""
        
        query_lower = query.lower()
        matching_tools = []
        
        for entry in self.tools.values():
            definition = entry["definition"]
            if query_lower in definition.name.lower() or query_lower in definition.description.lower():
                matching_tools.append(definition)
                
        return matching_tools
        
    async def _invoke(self, handler: Callable[..., Any], **kwargs) -> Any:
        result = handler(**kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result
        
    def _as_text(self, value: Any) -> str:
        if isinstance(value, str):
            return value
        return json.dumps(value, indent=2, default=str)
