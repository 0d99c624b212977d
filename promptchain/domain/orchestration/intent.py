from abc import ABC, abstractmethod
from typing import List, Tuple
import re

from promptchain.domain.models.chain_models import Complexity


class IntentClassifier(ABC):
    """Lexical judgements about a query used when planning a chain"""
    
    @abstractmethod
    def requires_tools(self, query: str) -> bool:
        """Whether the query reads like a request for a tool-backed action"""
        pass
        
    @abstractmethod
    def classify_complexity(self, query: str) -> Complexity:
        pass
        
    @abstractmethod
    def extract_tags(self, query: str) -> List[str]:
        pass
        
    @abstractmethod
    def priority(self, query: str) -> int:
        """1 is most urgent"""
        pass


TOOL_VERB_PATTERN = re.compile(r"get|fetch|create|update|delete|call|api|data", re.IGNORECASE)

COMPLEX_INDICATORS = [
    "analyze", "analyse", "compare", "explain how", "what are the differences",
    "step by step", "multiple", "various", "comprehensive",
    "detailed analysis", "in depth", "in-depth",
]

MEDIUM_INDICATORS = [
    "how to", "what is", "can you", "show me", "get me",
    "create", "generate", "find", "search", "fetch", "list",
]

TAG_PATTERNS: List[Tuple[str, re.Pattern]] = [
    ("data", re.compile(r"\b(?:data|api)", re.IGNORECASE)),
    ("help", re.compile(r"\b(?:help|how)\b", re.IGNORECASE)),
    ("creation", re.compile(r"\b(?:create|generate)", re.IGNORECASE)),
]

PRIORITY_PATTERNS: List[Tuple[int, re.Pattern]] = [
    (1, re.compile(r"\b(?:urgent|emergency)\b", re.IGNORECASE)),
    (2, re.compile(r"\b(?:quick|quickly|fast)\b", re.IGNORECASE)),
]


class RegexIntentClassifier(IntentClassifier):
    """Default pattern-table implementation"""
    
    def requires_tools(self, query: str) -> bool:
        return TOOL_VERB_PATTERN.search(query) is not None
        
    def classify_complexity(self, query: str) -> Complexity:
        lower_query = query.lower()
        if any(indicator in lower_query for indicator in COMPLEX_INDICATORS):
            return Complexity.COMPLEX
        if any(indicator in lower_query for indicator in MEDIUM_INDICATORS):
            return Complexity.MEDIUM
        return Complexity.SIMPLE
        
    def extract_tags(self, query: str) -> List[str]:
        return [tag for tag, pattern in TAG_PATTERNS if pattern.search(query)]
        
    def priority(self, query: str) -> int:
        for level, pattern in PRIORITY_PATTERNS:
            if pattern.search(query):
                return level
        return 3
