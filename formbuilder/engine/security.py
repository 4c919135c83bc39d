"""
Form Builder Permission Gate — the narrow interface through which every
manager operation asks the host application for authorization.

Permissions and actions:
    fb.form         r (read), w (write), d (delete), p (publish/unpublish)
    fb.submissions  r, w, d
    fb.settings     r, w, d

Authorization policy itself lives outside this package. PermissionGate
subclasses answer is_allowed(); check() turns a denial into
FormBuilderSecurityError and a security log entry.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from formbuilder.engine.context import ExecutionContext, require_execution_context
from formbuilder.engine.errors import FormBuilderSecurityError
from formbuilder.engine.logging import log, log_security_event

logger = logging.getLogger("formbuilder.engine.security")

FORM_PERMISSION = "fb.form"
SUBMISSIONS_PERMISSION = "fb.submissions"
SETTINGS_PERMISSION = "fb.settings"

_LOG_OBJECT_TYPES = {
    FORM_PERMISSION: "forms",
    SUBMISSIONS_PERMISSION: "submissions",
    SETTINGS_PERMISSION: "settings",
}


class PermissionGate:
    """Base gate. Subclasses implement is_allowed()."""

    def is_allowed(
        self,
        ctx: ExecutionContext,
        permission: str,
        action: str,
        form: Optional[Any] = None,
    ) -> bool:
        raise NotImplementedError

    def check(self, permission: str, action: str, *, form: Optional[Any] = None) -> ExecutionContext:
        """
        Require an execution context and an allowed permission.

        Returns:
            The current ExecutionContext.

        Raises:
            FormBuilderSecurityError on a missing context or denial.
        """
        ctx = require_execution_context()
        if self.is_allowed(ctx, permission, action, form):
            return ctx

        entity_id = getattr(form, "id", None)
        logger.warning(f"Permission denied: {permission}:{action} for user {ctx.user_id}")
        log(log_security_event(
            event="permission_denied",
            object_type=_LOG_OBJECT_TYPES.get(permission, "system"),
            permission=permission,
            action=action,
            user_id=ctx.user_id,
            entity_id=entity_id,
            execution_id=ctx.execution_id,
            tenant=ctx.tenant,
        ))
        raise FormBuilderSecurityError(
            f"Not authorized: {permission}:{action}",
            user_id=ctx.user_id,
            required_permission=f"{permission}:{action}",
            entity_id=entity_id,
        )


class AllowAllGate(PermissionGate):
    """Default gate — authorization is enforced by the host application."""

    def is_allowed(self, ctx, permission, action, form=None) -> bool:
        return True


class PermissionSetGate(PermissionGate):
    """
    Static per-permission action sets, e.g. {"fb.form": "rw", "fb.submissions": "r"}.
    Useful for service accounts and tests.
    """

    def __init__(self, permissions: Dict[str, str]):
        self._permissions = {name: set(actions) for name, actions in permissions.items()}

    def is_allowed(self, ctx, permission, action, form=None) -> bool:
        return action in self._permissions.get(permission, set())
