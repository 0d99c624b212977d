from abc import ABC, abstractmethod
from typing import Dict, List, Any, Optional
from pydantic import BaseModel, Field
import json


class ToolDefinition(BaseModel):
    """Tool advertised by a tool server"""
    name: str
    description: str = ""
    input_schema: Dict[str, Any] = Field(default_factory=dict, alias="inputSchema")

    model_config = {"populate_by_name": True}


class ResourceDefinition(BaseModel):
    """Readable resource advertised by a tool server"""
    uri: str
    name: str
    description: str = ""
    mime_type: Optional[str] = Field(None, alias="mimeType")

    model_config = {"populate_by_name": True}


class ToolClient(ABC):
    """Capability provider speaking the Model Context Protocol tool abstraction.

    Every call may fail; callers treat failures as step failures.
    """

    @abstractmethod
    async def initialize(self) -> None:
        pass

    @abstractmethod
    async def list_tools(self) -> List[ToolDefinition]:
        pass

    @abstractmethod
    async def list_resources(self) -> List[ResourceDefinition]:
        pass

    @abstractmethod
    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Any:
        pass

    @abstractmethod
    async def read_resource(self, uri: str) -> Any:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


def extract_text(result: Any) -> str:
    """Render a tool result as text, preferring MCP text content"""

    if result is None:
        return ""
    if isinstance(result, str):
        return result
    if isinstance(result, dict):
        content = result.get("content")
        if isinstance(content, list) and content:
            first = content[0]
            if isinstance(first, dict) and first.get("text"):
                return str(first["text"])
        contents = result.get("contents")
        if isinstance(contents, list) and contents:
            first = contents[0]
            if isinstance(first, dict) and first.get("text"):
                return str(first["text"])
    if isinstance(result, BaseModel):
        result = result.model_dump(mode="json", by_alias=True)
    return json.dumps(result, indent=2, default=str)
