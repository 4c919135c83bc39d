"""
Form Builder Error Hierarchy — Structured exceptions for every engine failure.

All errors carry execution_id (from the active ExecutionContext when the
caller does not pass one) so a failing operation can be traced through the
structured operation logs.

Hierarchy:
    FormBuilderError
    ├── FormBuilderNotFoundError        — Family / revision / submission missing
    ├── FormBuilderRevisionLockedError  — Mutation attempted on a locked revision
    ├── FormBuilderConflictError        — Optimistic-concurrency mismatch
    ├── FormBuilderValidationError      — Input or field validator rejection
    ├── FormBuilderCaptchaError         — Captcha verification failed
    ├── FormBuilderInvariantError       — Internal consistency bug (fatal)
    ├── FormBuilderTransitionError      — Illegal revision state transition
    ├── FormBuilderHookError            — After-subscriber failed post-commit
    ├── FormBuilderReentrantDispatchError — Topic published from its own subscriber
    ├── FormBuilderSecurityError        — Permission gate denial / no context
    └── FormBuilderConfigError          — Invalid formbuilder.yaml
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class FormBuilderError(Exception):
    """
    Base error for all form builder failures.
    All context is serializable to JSON for the operation log.
    """

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.execution_id: Optional[str] = context.get("execution_id") or _current_execution_id()
        self.entity_id: Optional[str] = context.get("entity_id")
        self.entity_type: Optional[str] = context.get("entity_type")
        self.operation: Optional[str] = context.get("operation")
        self.error_type: str = self.__class__.__name__
        self.context: Dict[str, Any] = context
        self.timestamp: str = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize error to JSON-compatible dict for logging."""
        return {
            "error_type": self.error_type,
            "message": self.message,
            "execution_id": self.execution_id,
            "entity_id": self.entity_id,
            "entity_type": self.entity_type,
            "operation": self.operation,
            "timestamp": self.timestamp,
            "context": {
                k: str(v) for k, v in self.context.items()
                if k not in ("execution_id", "entity_id", "entity_type", "operation")
            },
        }

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), default=str)

    def __repr__(self) -> str:
        parts = [f"{self.error_type}: {self.message}"]
        if self.entity_id:
            parts.append(f"entity_id={self.entity_id}")
        if self.execution_id:
            parts.append(f"execution_id={self.execution_id}")
        return " | ".join(parts)


def _current_execution_id() -> Optional[str]:
    from formbuilder.engine.context import get_execution_context

    ctx = get_execution_context()
    return ctx.execution_id if ctx else None


class FormBuilderNotFoundError(FormBuilderError):
    """Form family, revision, settings or submission does not exist."""
    pass


class FormBuilderRevisionLockedError(FormBuilderError):
    """Mutation attempted on a locked (published at least once) revision."""
    pass


class FormBuilderConflictError(FormBuilderError):
    """
    Persisted state diverged from the caller's last-known original.
    Raised by storage backends; never retried internally.
    """
    pass


class FormBuilderValidationError(FormBuilderError):
    """
    Input validation failed (Pydantic input models, field validators, cursors).
    Includes field-level error details.
    """

    def __init__(self, message: str, **context: Any):
        self.validation_errors: Optional[list] = context.get("validation_errors")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["validation_errors"] = self.validation_errors
        return d


class FormBuilderCaptchaError(FormBuilderError):
    """Captcha verification failed or could not be performed."""
    pass


class FormBuilderInvariantError(FormBuilderError):
    """
    A family was observed with more than one published revision or with
    duplicate version numbers. This is a storage consistency bug, not a
    user error.
    """
    pass


class FormBuilderTransitionError(FormBuilderError):
    """Requested state transition is not allowed from the current status."""

    def __init__(self, message: str, **context: Any):
        self.from_status: Optional[str] = context.get("from_status")
        self.to_status: Optional[str] = context.get("to_status")
        super().__init__(message, **context)


class FormBuilderHookError(FormBuilderError):
    """
    One or more after-subscribers failed. Persistence already committed,
    so `committed` is always True and the resulting entity is attached.
    """

    def __init__(self, message: str, **context: Any):
        self.topic: Optional[str] = context.get("topic")
        self.errors: List[BaseException] = list(context.get("errors", []))
        self.result: Any = context.get("result")
        self.committed: bool = True
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["topic"] = self.topic
        d["committed"] = self.committed
        d["errors"] = [repr(e) for e in self.errors]
        return d


class FormBuilderReentrantDispatchError(FormBuilderError):
    """A subscriber published the topic it is being dispatched for."""
    pass


class FormBuilderSecurityError(FormBuilderError):
    """
    Access denied by the permission gate, or no execution context set.
    Includes user_id and the permission that was required.
    """

    def __init__(self, message: str, **context: Any):
        self.user_id: Optional[str] = context.get("user_id")
        self.required_permission: Optional[str] = context.get("required_permission")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["user_id"] = self.user_id
        d["required_permission"] = self.required_permission
        return d


class FormBuilderConfigError(FormBuilderError):
    """Configuration error — invalid formbuilder.yaml."""
    pass
