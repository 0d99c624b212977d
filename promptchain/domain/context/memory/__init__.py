from .session_backend import SessionBackend
from .cache_memory_store import CacheMemoryStore
from .json_file_store import JsonFileStore
