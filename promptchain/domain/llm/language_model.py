from abc import ABC, abstractmethod
from typing import Dict, List, Any, Callable
import inspect

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage


class LanguageModel(ABC):
    """Black-box model invocation: chat messages in, text out"""
    
    @abstractmethod
    async def invoke(self, messages: List[Dict[str, str]]) -> str:
        pass


def to_langchain_messages(messages: List[Dict[str, str]]) -> List[BaseMessage]:
    """Convert role/content dicts to langchain-core messages"""
    
    converted: List[BaseMessage] = []
    for message in messages:
        role = message.get("role", "user")
        content = message.get("content", "")
        if role == "system":
            converted.append(SystemMessage(content=content))
        elif role == "assistant":
            converted.append(AIMessage(content=content))
        else:
            converted.append(HumanMessage(content=content))
    return converted


def message_text(message: Any) -> str:
    """Text of a chat model reply, flattening content blocks"""
    
    content = getattr(message, "content", message)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return str(content)


class ChatModelLanguageModel(LanguageModel):
    """Adapts any langchain-core chat model"""
    
    def __init__(self, model: BaseChatModel):
        self.model = model
        
    async def invoke(self, messages: List[Dict[str, str]]) -> str:
        reply = await self.model.ainvoke(to_langchain_messages(messages))
        return message_text(reply).strip()


class CallableLanguageModel(LanguageModel):
    """Adapts a plain (sync or async) function of the message list"""
    
    def __init__(self, func: Callable[[List[Dict[str, str]]], Any]):
        self.func = func
        
    async def invoke(self, messages: List[Dict[str, str]]) -> str:
        result = self.func(messages)
        if inspect.isawaitable(result):
            result = await result
        return str(result)
