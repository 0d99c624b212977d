from typing import Dict
from pathlib import Path
import asyncio
import json

from promptchain.domain.models.context_models import Session
from .session_backend import SessionBackend


class JsonFileStore(SessionBackend):
    """Persists the session map as a JSON document on disk"""
    
    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = asyncio.Lock()
        
    async def load(self) -> Dict[str, Session]:
        async with self._lock:
            if not self.path.exists():
                return {}
            raw = await asyncio.to_thread(self.path.read_text, encoding="utf-8")
            
        data = json.loads(raw) if raw.strip() else []
        sessions = [Session.model_validate(item) for item in data]
        return {session.id: session for session in sessions}
        
    async def save(self, sessions: Dict[str, Session]) -> None:
        payload = json.dumps(
            [session.model_dump(mode="json") for session in sessions.values()],
            indent=2
        )
        async with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            await asyncio.to_thread(tmp_path.write_text, payload, encoding="utf-8")
            await asyncio.to_thread(tmp_path.replace, self.path)
