from typing import Dict, List, Any, Optional
from datetime import datetime
import re

from promptchain.domain.models.context_models import DomainKnowledge, Message, MessageRole


TERM_MATCH_SCORE = 0.3
RECENCY_WEIGHT = 0.4
TOOL_USAGE_SCORE = 0.3
ROLE_SCORES = {
    MessageRole.USER: 0.2,
    MessageRole.ASSISTANT: 0.1,
    MessageRole.SYSTEM: 0.0,
}


class ContextRanker:
    """Ranks context elements by relevance to query"""
    
    def __init__(self, decay_factor: float = 0.9):
        self.decay_factor = decay_factor
        
    def score_messages(
        self,
        messages: List[Message],
        query: str,
        now: Optional[datetime] = None
    ) -> List[Message]:
        """Score messages against a query, most relevant first.
        
        Returns scored copies; the stored messages are left untouched. The sort is
        stable so equal scores keep their conversation order.
        """
        
        now = now or datetime.utcnow()
        query_terms = [term for term in query.lower().split() if term]
        total = len(messages)
        
        scored = []
        for index, message in enumerate(messages):
            content = message.content.lower()
            score = 0.0
            
            # Term matching
            for term in query_terms:
                if term in content:
                    score += TERM_MATCH_SCORE
                    
            # Recency boost, highest for the latest message
            score += ((index + 1) / total) * RECENCY_WEIGHT
            
            # Role importance
            score += ROLE_SCORES.get(message.role, 0.0)
            
            # Tool usage boost
            if message.has_tool_calls:
                score += TOOL_USAGE_SCORE
                
            # Decay older messages
            age_hours = max((now - message.timestamp).total_seconds(), 0) / 3600
            score *= self.decay_factor ** (age_hours / 24)
            
            scored.append(message.model_copy(update={"relevance_score": score}))
            
        return sorted(scored, key=lambda m: m.relevance_score, reverse=True)
        
    def select_domain_knowledge(self, knowledge: List[DomainKnowledge], query: str) -> List[DomainKnowledge]:
        """Domains whose label or any concept key appears in the query"""
        
        query_lower = query.lower()
        selected = []
        for entry in knowledge:
            domain_match = entry.domain.lower() in query_lower
            concept_match = any(concept.lower() in query_lower for concept in entry.concepts)
            if domain_match or concept_match:
                selected.append(entry)
        return selected
        
    def rank_tools(self, query: str, tools: List[Dict[str, Any]]) -> Dict[str, float]:
        """Rank tools by relevance to query"""
        
        scores = {}
        query_lower = query.lower()
        query_words = set(re.findall(r'\w+', query_lower))
        
        for tool in tools:
            name = tool.get("name", "")
            description = (tool.get("description") or "").lower()
            name_lower = name.lower()
            
            desc_words = set(re.findall(r'\w+', description))
            name_words = set(re.findall(r'[a-z0-9]+', name_lower))
            
            desc_overlap = len(query_words.intersection(desc_words))
            name_overlap = len(query_words.intersection(name_words))
            
            # Weight name matches higher
            score = (name_overlap * 2 + desc_overlap) / len(query_words) if query_words else 0
            
            # Whole tool name mentioned in the query
            if name_lower.replace("_", " ") in query_lower:
                score += 1.0
                
            scores[name] = min(score, 1.0)
            
        return scores
        
    def select_best_tool(
        self,
        query: str,
        tools: List[Dict[str, Any]],
        threshold: float = 0.1
    ) -> Optional[Dict[str, Any]]:
        """Highest ranked tool above threshold, first listed wins ties"""
        
        if not tools:
            return None
            
        scores = self.rank_tools(query, tools)
        best = max(tools, key=lambda tool: scores.get(tool.get("name", ""), 0.0))
        if scores.get(best.get("name", ""), 0.0) < threshold:
            return None
        return best
