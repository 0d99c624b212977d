from abc import ABC, abstractmethod
from typing import Dict

from promptchain.domain.models.context_models import Session


class SessionBackend(ABC):
    """Key-value surface the context store persists its session map to"""
    
    @abstractmethod
    async def load(self) -> Dict[str, Session]:
        """Load all persisted sessions"""
        pass
        
    @abstractmethod
    async def save(self, sessions: Dict[str, Session]) -> None:
        """Persist the full session map"""
        pass
