from typing import Optional
from pydantic import BaseModel, Field
import os


ENV_PREFIX = "PROMPTCHAIN_"


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(f"{ENV_PREFIX}{name}", default)


class Settings(BaseModel):
    """Runtime settings for the prompt chain core"""

    # Context store
    context_window: int = Field(default=10, ge=1)
    max_relevant_messages: int = Field(default=5, ge=1)
    relevance_decay_factor: float = Field(default=0.9, gt=0, le=1)
    session_max_age_ms: int = 7 * 24 * 60 * 60 * 1000
    persistence_path: Optional[str] = None

    # Chain execution
    default_step_timeout_ms: int = 15000
    complex_max_concurrency: int = 2
    failure_ratio_threshold: float = 0.5

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"
    service_name: str = "promptchain"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from PROMPTCHAIN_* environment variables"""

        defaults = cls()
        return cls(
            context_window=int(_env("CONTEXT_WINDOW", str(defaults.context_window))),
            max_relevant_messages=int(_env("MAX_RELEVANT_MESSAGES", str(defaults.max_relevant_messages))),
            relevance_decay_factor=float(_env("RELEVANCE_DECAY", str(defaults.relevance_decay_factor))),
            session_max_age_ms=int(_env("SESSION_MAX_AGE_MS", str(defaults.session_max_age_ms))),
            persistence_path=_env("PERSISTENCE_PATH"),
            default_step_timeout_ms=int(_env("STEP_TIMEOUT_MS", str(defaults.default_step_timeout_ms))),
            complex_max_concurrency=int(_env("MAX_CONCURRENCY", str(defaults.complex_max_concurrency))),
            failure_ratio_threshold=float(_env("FAILURE_RATIO", str(defaults.failure_ratio_threshold))),
            log_level=_env("LOG_LEVEL", defaults.log_level),
            log_format=_env("LOG_FORMAT", defaults.log_format),
            service_name=_env("SERVICE_NAME", defaults.service_name),
        )
