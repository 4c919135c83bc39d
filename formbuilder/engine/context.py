"""
Form Builder Execution Context — Thread-safe per-call tenant/locale/identity.

Every manager operation reads the tenant, locale and acting identity from the
ExecutionContext bound to the current thread or task (contextvars). The
identity is stamped into created_by / owned_by of new revisions and
submissions.

Usage:
    from formbuilder.engine.context import (
        ExecutionContext,
        set_execution_context,
        require_execution_context,
    )
"""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Dict, Generator, Optional

from formbuilder.engine.errors import FormBuilderSecurityError

current_execution_context: ContextVar[Optional["ExecutionContext"]] = ContextVar(
    "formbuilder_execution_context", default=None
)


@dataclass
class ExecutionContext:
    """
    Per-call execution context. Set by the host application before calling
    into the form builder, cleared at request end.
    """

    tenant: str
    locale: str
    user_id: str
    display_name: Optional[str] = None
    user_type: str = "admin"
    execution_id: str = field(default_factory=lambda: f"exec_{uuid.uuid4().hex[:12]}")

    def identity(self) -> Dict[str, Any]:
        """created_by / owned_by payload for new entities."""
        return {
            "id": self.user_id,
            "display_name": self.display_name,
            "type": self.user_type,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for logging."""
        return {
            "tenant": self.tenant,
            "locale": self.locale,
            "user_id": self.user_id,
            "display_name": self.display_name,
            "user_type": self.user_type,
            "execution_id": self.execution_id,
        }


def set_execution_context(ctx: ExecutionContext) -> None:
    """Set the execution context for the current thread/task."""
    current_execution_context.set(ctx)


def get_execution_context() -> Optional[ExecutionContext]:
    """Get the current execution context. Returns None if not set."""
    return current_execution_context.get()


def require_execution_context() -> ExecutionContext:
    """Get execution context or raise error if not set."""
    ctx = get_execution_context()
    if ctx is None:
        raise FormBuilderSecurityError(
            "No execution context — tenant and identity unknown",
            reason="missing_context",
        )
    return ctx


def clear_execution_context() -> None:
    """Clear the execution context (e.g., on request end)."""
    current_execution_context.set(None)


@contextmanager
def execution_context(ctx: ExecutionContext) -> Generator[ExecutionContext, None, None]:
    """
    Bind a context for the duration of a block, restoring the previous one.

    Usage:
        with execution_context(ExecutionContext("root", "en-US", "u1")):
            builder.forms.create_form({"name": "Contact"})
    """
    token = current_execution_context.set(ctx)
    try:
        yield ctx
    finally:
        current_execution_context.reset(token)
