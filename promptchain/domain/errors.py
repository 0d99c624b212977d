"""Exception hierarchy for the prompt chain core.

    PromptChainError (base)
    ├── ContextStoreError
    │   ├── SessionNotFound
    │   └── ParentNotFound
    ├── ChainConfigurationError (unrecoverable - fix the step graph)
    │   └── CircularDependency
    └── StepExecutionError (recovered locally as a failed step)
        ├── ToolOperationError
        └── LanguageModelError

Only the context store errors and chain configuration errors reach the caller of
``orchestrate_query``; everything under StepExecutionError is downgraded to a failed
ChainResult.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional


class PromptChainError(Exception):
    """Base exception for all prompt chain errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code
        details: Additional context as a dictionary
        timestamp: When the error occurred
        cause: The original exception that caused this error
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__.upper()
        self.details = details or {}
        self.timestamp = datetime.utcnow()
        self.cause = cause

        if cause:
            self.__cause__ = cause

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class ContextStoreError(PromptChainError):
    """Errors raised by the context store"""


class SessionNotFound(ContextStoreError):
    """Referenced session id is unknown to the context store"""

    def __init__(self, session_id: str):
        super().__init__(
            f"Session {session_id} not found",
            code="SESSION_NOT_FOUND",
            details={"session_id": session_id},
        )
        self.session_id = session_id


class ParentNotFound(ContextStoreError):
    """Parent session of a chain context is unknown"""

    def __init__(self, parent_session_id: str):
        super().__init__(
            f"Parent session {parent_session_id} not found",
            code="PARENT_NOT_FOUND",
            details={"parent_session_id": parent_session_id},
        )
        self.parent_session_id = parent_session_id


class ChainConfigurationError(PromptChainError):
    """Malformed chain definition"""


class CircularDependency(ChainConfigurationError):
    """Step graph cannot be ordered"""

    def __init__(self, unresolved_steps: List[str]):
        super().__init__(
            "Circular dependency detected in prompt chain",
            code="CIRCULAR_DEPENDENCY",
            details={"unresolved_steps": unresolved_steps},
        )
        self.unresolved_steps = unresolved_steps


class StepExecutionError(PromptChainError):
    """A step failed; recovered as a failed chain result"""

    def __init__(self, message: str, step_id: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", None) or {}
        if step_id:
            details["step_id"] = step_id
        super().__init__(message, details=details, **kwargs)
        self.step_id = step_id


class ToolOperationError(StepExecutionError):
    """A tool operation failed"""

    def __init__(
        self,
        message: str,
        tool_name: str,
        required: bool = False,
        cause: Optional[Exception] = None,
    ):
        super().__init__(
            message,
            code="TOOL_OPERATION_FAILED",
            details={"tool_name": tool_name, "required": required},
            cause=cause,
        )
        self.tool_name = tool_name
        self.required = required


class LanguageModelError(StepExecutionError):
    """The language model collaborator failed"""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message, code="LANGUAGE_MODEL_FAILED", cause=cause)
