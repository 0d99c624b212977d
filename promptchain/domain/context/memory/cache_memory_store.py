from typing import Dict, Any, Optional
import asyncio
from datetime import datetime, timedelta

from promptchain.domain.models.context_models import Session
from .session_backend import SessionBackend


class CacheMemoryStore(SessionBackend):
    """In-memory session snapshots with optional TTL"""
    
    def __init__(self, ttl: Optional[int] = None):
        self.ttl = ttl
        self.cache: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()
        
    def _expiry(self) -> Optional[datetime]:
        if self.ttl is None:
            return None
        return datetime.utcnow() + timedelta(seconds=self.ttl)
        
    def _expired(self, entry: Dict[str, Any], now: datetime) -> bool:
        return entry["expires_at"] is not None and now > entry["expires_at"]
        
    async def save(self, sessions: Dict[str, Session]) -> None:
        """Replace stored snapshots with the given sessions"""
        
        async with self._lock:
            expires_at = self._expiry()
            self.cache = {
                session_id: {
                    "value": session.model_dump(mode="json"),
                    "expires_at": expires_at
                }
                for session_id, session in sessions.items()
            }
            
    async def load(self) -> Dict[str, Session]:
        """Restore sessions whose snapshot has not expired"""
        
        async with self._lock:
            now = datetime.utcnow()
            return {
                session_id: Session.model_validate(entry["value"])
                for session_id, entry in self.cache.items()
                if not self._expired(entry, now)
            }
            
    async def clear_expired(self) -> int:
        """Clear expired entries and return count"""
        
        async with self._lock:
            now = datetime.utcnow()
            expired_keys = [
                key for key, entry in self.cache.items()
                if self._expired(entry, now)
            ]
            
            for key in expired_keys:
                del self.cache[key]
                
            return len(expired_keys)
            
    async def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics"""
        
        async with self._lock:
            now = datetime.utcnow()
            active_count = sum(
                1 for entry in self.cache.values()
                if not self._expired(entry, now)
            )
            
            return {
                "total_keys": len(self.cache),
                "active_keys": active_count,
                "expired_keys": len(self.cache) - active_count
            }
