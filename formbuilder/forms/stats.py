"""
Form Builder Stats Counter — per-revision view/submission counters.

Increments are atomic add-by-one operations in the storage backend, so
concurrent increments are never lost. Reads aggregate every revision of
the family and derive the conversion rate.
"""

from __future__ import annotations

import logging
from typing import Optional

from formbuilder.engine.context import require_execution_context
from formbuilder.engine.errors import FormBuilderNotFoundError
from formbuilder.engine.security import (
    FORM_PERMISSION,
    SUBMISSIONS_PERMISSION,
    AllowAllGate,
    PermissionGate,
)
from formbuilder.forms.manager import resolve_revision
from formbuilder.forms.models import FormStats, parse_identifier
from formbuilder.storage.base import StorageOperations

logger = logging.getLogger("formbuilder.forms.stats")


class StatsCounter:
    def __init__(self, storage: StorageOperations, gate: Optional[PermissionGate] = None):
        self._storage = storage
        self._gate = gate or AllowAllGate()

    def _increment(self, id: str, stat: str, permission: str) -> bool:
        ctx = require_execution_context()
        form = resolve_revision(self._storage, ctx, id)
        self._gate.check(permission, "r" if stat == "views" else "w", form=form)
        self._storage.increment_form_stat(form=form, stat=stat)
        logger.debug(f"Incremented {stat} on {form.id}")
        return True

    def increment_form_views(self, id: str) -> bool:
        return self._increment(id, "views", FORM_PERMISSION)

    def increment_form_submissions(self, id: str) -> bool:
        return self._increment(id, "submissions", SUBMISSIONS_PERMISSION)

    def get_form_stats(self, id: str) -> FormStats:
        """Counters summed over every revision of the family."""
        ctx = self._gate.check(FORM_PERMISSION, "r")
        form_id, _ = parse_identifier(id)
        revisions = self._storage.list_form_revisions(
            tenant=ctx.tenant, locale=ctx.locale, form_id=form_id,
        )
        if not revisions:
            raise FormBuilderNotFoundError(
                f"Form '{id}' not found", entity_type="form", entity_id=id,
            )
        return FormStats.from_counters(
            submissions=sum(r.stats.submissions for r in revisions),
            views=sum(r.stats.views for r in revisions),
        )
