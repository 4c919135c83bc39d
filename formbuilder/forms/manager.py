"""
Form Builder Revision Manager — lifecycle of form families and revisions.

Every operation follows the same pipeline:

    permission gate → compute new state → before-topic → storage port
        → after-topic → operation log entry → return

The manager computes all business-level values (version numbers, the
latest/previous revisions, the revision to demote on publish) and hands
them to the storage port, which only persists them under optimistic
concurrency.

State machine per revision:
    draft ──publish──▶ published ──unpublish / supplanted──▶ unpublished
                           ▲                                      │
                           └───────────────publish────────────────┘
A revision is locked from its first publication onwards.
"""

from __future__ import annotations

import copy
import logging
from collections import Counter
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from formbuilder.engine.config import FormBuilderConfig, get_config
from formbuilder.engine.context import ExecutionContext, require_execution_context
from formbuilder.engine.errors import (
    FormBuilderInvariantError,
    FormBuilderNotFoundError,
    FormBuilderRevisionLockedError,
    FormBuilderTransitionError,
)
from formbuilder.engine.events import FormEvent, LifecycleEventBus
from formbuilder.engine.logging import log, log_form_operation, log_system_event
from formbuilder.engine.security import FORM_PERMISSION, AllowAllGate, PermissionGate
from formbuilder.forms.models import (
    DEFAULT_FORM_SETTINGS,
    CreatedBy,
    Form,
    FormCreateInput,
    FormStatsCounters,
    FormStatus,
    FormUpdateInput,
    create_revision_id,
    generate_form_id,
    parse_identifier,
)
from formbuilder.storage.base import StorageOperations
from formbuilder.storage.cursor import ListMeta, SortInput, parse_sort
from formbuilder.utilities.utils import parse_input, slugify, utc_now

logger = logging.getLogger("formbuilder.forms.manager")

FORM_SORT_FIELDS = ("created_on", "saved_on", "name", "version")
DEFAULT_FORM_SORT = "-created_on"


# ---------------------------------------------------------------------------
# Shared lookups
# ---------------------------------------------------------------------------

def resolve_revision(
    storage: StorageOperations,
    ctx: ExecutionContext,
    identifier: str,
    published: Optional[bool] = None,
) -> Form:
    """
    Load a revision by revision id. A bare family id resolves to the latest
    revision, or to the published one when published=True.

    Raises:
        FormBuilderNotFoundError if nothing matches.
    """
    form_id, version = parse_identifier(identifier)
    if version is None:
        form = storage.get_form(
            tenant=ctx.tenant,
            locale=ctx.locale,
            form_id=form_id,
            latest=None if published else True,
            published=published,
        )
    else:
        form = storage.get_form(
            tenant=ctx.tenant,
            locale=ctx.locale,
            id=create_revision_id(form_id, version),
            published=published,
        )
    if form is None:
        raise FormBuilderNotFoundError(
            f"Form '{identifier}' not found" if published is None
            else f"Published form '{identifier}' not found",
            entity_type="form",
            entity_id=identifier,
        )
    return form


def assert_family_invariants(revisions: Sequence[Form]) -> None:
    """
    At most one published revision and unique versions per family.

    Raises:
        FormBuilderInvariantError (storage consistency bug).
    """
    if not revisions:
        return
    published = [r.id for r in revisions if r.published]
    duplicates = [v for v, n in Counter(r.version for r in revisions).items() if n > 1]
    if len(published) <= 1 and not duplicates:
        return

    form_id = revisions[0].form_id
    details = {"form_id": form_id, "published": published, "duplicate_versions": duplicates}
    logger.critical(f"Family invariant violated for {form_id}: {details}")
    log(log_system_event("family_invariant_violation", level="CRITICAL", details=details))
    raise FormBuilderInvariantError(
        f"Form family {form_id} is inconsistent",
        entity_type="form",
        entity_id=form_id,
        **details,
    )


def clamp_limit(limit: Optional[int], default: int, maximum: int) -> int:
    if limit is None:
        return default
    return max(1, min(int(limit), maximum))


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------

class FormRevisionManager:
    """
    Create, revise, publish, unpublish and delete form revisions.

    Usage:
        manager = FormRevisionManager(storage, events)
        form = manager.create_form({"name": "Contact"})
        manager.publish_form(form.id)
        draft = manager.create_form_revision(form.id)
    """

    def __init__(
        self,
        storage: StorageOperations,
        events: Optional[LifecycleEventBus] = None,
        gate: Optional[PermissionGate] = None,
        config: Optional[FormBuilderConfig] = None,
    ):
        self._storage = storage
        self._events = events or LifecycleEventBus()
        self._gate = gate or AllowAllGate()
        self._config = config

    @property
    def config(self) -> FormBuilderConfig:
        return self._config or get_config()

    def _load(self, identifier: str, action: str) -> Tuple[ExecutionContext, Form]:
        ctx = require_execution_context()
        form = resolve_revision(self._storage, ctx, identifier)
        self._gate.check(FORM_PERMISSION, action, form=form)
        return ctx, form

    def _family(self, ctx: ExecutionContext, form_id: str, descending: bool = False) -> List[Form]:
        revisions = self._storage.list_form_revisions(
            tenant=ctx.tenant, locale=ctx.locale, form_id=form_id, descending=descending,
        )
        assert_family_invariants(revisions)
        return revisions

    @staticmethod
    def _log(
        operation: str,
        ctx: ExecutionContext,
        form: Form,
        fields_changed: Optional[List[str]] = None,
    ) -> None:
        log(log_form_operation(
            operation=operation,
            revision_id=form.id,
            form_id=form.form_id,
            version=form.version,
            execution_id=ctx.execution_id,
            user_id=ctx.user_id,
            tenant=ctx.tenant,
            locale=ctx.locale,
            status=FormStatus(form.status).value,
            fields_changed=fields_changed,
        ))

    # ── Reads ──

    def get_form(self, id: str) -> Form:
        """Revision by revision id, or the family's latest for a bare form id."""
        _, form = self._load(id, "r")
        return form

    def list_forms(
        self,
        limit: Optional[int] = None,
        after: Optional[str] = None,
        sort: SortInput = None,
    ) -> Tuple[List[Form], ListMeta]:
        """Latest revision of every family in the current tenant/locale."""
        ctx = self._gate.check(FORM_PERMISSION, "r")
        limits = self.config.submissions
        return self._storage.list_forms(
            tenant=ctx.tenant,
            locale=ctx.locale,
            latest=True,
            sort=parse_sort(sort, FORM_SORT_FIELDS, DEFAULT_FORM_SORT),
            limit=clamp_limit(limit, limits.default_limit, limits.max_limit),
            after=after,
        )

    def get_form_revisions(self, id: str) -> List[Form]:
        """All revisions of the family, version ascending."""
        ctx = self._gate.check(FORM_PERMISSION, "r")
        form_id, _ = parse_identifier(id)
        revisions = self._family(ctx, form_id)
        if not revisions:
            raise FormBuilderNotFoundError(
                f"Form '{id}' not found", entity_type="form", entity_id=id,
            )
        return revisions

    def get_published_form_revision_by_id(self, revision_id: str) -> Form:
        ctx = self._gate.check(FORM_PERMISSION, "r")
        return resolve_revision(self._storage, ctx, revision_id, published=True)

    def get_latest_published_form_revision(self, form_id: str) -> Form:
        """The family's currently published revision."""
        ctx = self._gate.check(FORM_PERMISSION, "r")
        family_id, _ = parse_identifier(form_id)
        form = self._storage.get_form(
            tenant=ctx.tenant, locale=ctx.locale, form_id=family_id, published=True,
        )
        if form is None:
            raise FormBuilderNotFoundError(
                f"Form '{family_id}' has no published revision",
                entity_type="form",
                entity_id=family_id,
            )
        return form

    # ── Revision lifecycle ──

    def create_form(self, data: Union[FormCreateInput, Mapping[str, Any]]) -> Form:
        """Create a new family with its first, draft revision."""
        ctx = self._gate.check(FORM_PERMISSION, "w")
        payload = parse_input(FormCreateInput, data)

        form_id = generate_form_id()
        identity = CreatedBy(**ctx.identity())
        now = utc_now()
        form = Form(
            id=create_revision_id(form_id, 1),
            form_id=form_id,
            tenant=ctx.tenant,
            locale=ctx.locale,
            created_by=identity,
            owned_by=identity,
            created_on=now,
            saved_on=now,
            name=payload.name,
            slug=f"{slugify(payload.name)}-{form_id}",
            version=1,
            settings=copy.deepcopy(DEFAULT_FORM_SETTINGS),
        )

        self._events.publish_before(FormEvent.BEFORE_FORM_CREATE, form=form)
        created = self._storage.create_form(form=form)
        self._log("create", ctx, created)
        self._events.publish_after(FormEvent.AFTER_FORM_CREATE, result=created, form=created)
        logger.info(f"Form created: {created.id} ({created.name})")
        return created

    def create_form_revision(self, from_revision_id: str) -> Form:
        """New draft revision cloned from any revision, numbered latest + 1."""
        ctx, original = self._load(from_revision_id, "w")
        revisions = self._family(ctx, original.form_id, descending=True)
        latest = revisions[0]

        version = latest.version + 1
        now = utc_now()
        form = Form(
            id=create_revision_id(original.form_id, version),
            form_id=original.form_id,
            tenant=original.tenant,
            locale=original.locale,
            created_by=CreatedBy(**ctx.identity()),
            owned_by=original.owned_by,
            created_on=now,
            saved_on=now,
            name=original.name,
            slug=original.slug,
            version=version,
            fields=[f.model_copy(deep=True) for f in original.fields],
            layout=[list(row) for row in original.layout],
            settings=copy.deepcopy(original.settings),
            triggers=copy.deepcopy(original.triggers),
            stats=FormStatsCounters(),
        )

        self._events.publish_before(
            FormEvent.BEFORE_FORM_REVISION_CREATE, form=form, original=original, latest=latest,
        )
        created = self._storage.create_form_from(original=original, latest=latest, form=form)
        self._log("create_revision", ctx, created)
        self._events.publish_after(
            FormEvent.AFTER_FORM_REVISION_CREATE,
            result=created, form=created, original=original, latest=latest,
        )
        logger.info(f"Form revision created: {created.id} from {original.id}")
        return created

    def update_form(self, id: str, data: Union[FormUpdateInput, Mapping[str, Any]]) -> Form:
        """Merge changes into an unlocked revision."""
        ctx, original = self._load(id, "w")
        payload = parse_input(FormUpdateInput, data)
        if original.locked:
            raise FormBuilderRevisionLockedError(
                f"Form revision {original.id} is locked; create a new revision to edit it",
                entity_type="form",
                entity_id=original.id,
                operation="update",
            )

        changes: Dict[str, Any] = payload.model_dump(exclude_unset=True)
        merged = original.model_dump()
        merged.update(changes)
        merged["saved_on"] = utc_now()
        if "name" in changes and changes["name"] != original.name:
            merged["slug"] = f"{slugify(changes['name'])}-{original.form_id}"
        form = parse_input(Form, merged)

        self._events.publish_before(FormEvent.BEFORE_FORM_UPDATE, form=form, original=original)
        updated = self._storage.update_form(original=original, form=form)
        self._log("update", ctx, updated, fields_changed=sorted(changes))
        self._events.publish_after(
            FormEvent.AFTER_FORM_UPDATE, result=updated, form=updated, original=original,
        )
        return updated

    # ── Publication ──

    def publish_form(self, id: str) -> Form:
        """
        Publish a revision. The family's currently published revision, if
        another one, is demoted to unpublished in the same storage call.
        """
        ctx, original = self._load(id, "p")
        revisions = self._family(ctx, original.form_id)
        current = next((r for r in revisions if r.published and r.id != original.id), None)

        now = utc_now()
        form = original.model_copy(deep=True, update={
            "published": True,
            "locked": True,
            "status": FormStatus.PUBLISHED,
            "published_on": now,
            "saved_on": now,
        })
        demote = None
        if current is not None:
            demote = current.model_copy(deep=True, update={
                "published": False,
                "status": FormStatus.UNPUBLISHED,
                "published_on": None,
                "saved_on": now,
            })

        self._events.publish_before(FormEvent.BEFORE_FORM_PUBLISH, form=form, original=original)
        published = self._storage.publish_form(
            original=original, form=form, demote_original=current, demote=demote,
        )
        self._log("publish", ctx, published)
        if demote is not None:
            self._log("unpublish", ctx, demote)
        self._events.publish_after(
            FormEvent.AFTER_FORM_PUBLISH, result=published, form=published, original=original,
        )
        logger.info(
            f"Form published: {published.id}"
            + (f" (supersedes {current.id})" if current is not None else "")
        )
        return published

    def unpublish_form(self, id: str) -> Form:
        ctx, original = self._load(id, "p")
        if not original.published:
            raise FormBuilderTransitionError(
                f"Form revision {original.id} is not published",
                entity_type="form",
                entity_id=original.id,
                from_status=FormStatus(original.status).value,
                to_status=FormStatus.UNPUBLISHED.value,
            )

        form = original.model_copy(deep=True, update={
            "published": False,
            "status": FormStatus.UNPUBLISHED,
            "published_on": None,
            "saved_on": utc_now(),
        })

        self._events.publish_before(FormEvent.BEFORE_FORM_UNPUBLISH, form=form, original=original)
        unpublished = self._storage.unpublish_form(original=original, form=form)
        self._log("unpublish", ctx, unpublished)
        self._events.publish_after(
            FormEvent.AFTER_FORM_UNPUBLISH, result=unpublished, form=unpublished, original=original,
        )
        logger.info(f"Form unpublished: {unpublished.id}")
        return unpublished

    # ── Deletion ──

    def delete_form(self, id: str) -> bool:
        """Delete the whole family. Submissions are kept."""
        ctx, form = self._load(id, "d")

        self._events.publish_before(FormEvent.BEFORE_FORM_DELETE, form=form)
        self._storage.delete_form(form=form)
        self._log("delete", ctx, form)
        self._events.publish_after(FormEvent.AFTER_FORM_DELETE, result=True, form=form)
        logger.info(f"Form deleted: {form.form_id}")
        return True

    def delete_form_revision(self, id: str) -> bool:
        """
        Delete one revision; the last remaining revision deletes the family.
        Deleting the published revision leaves the family unpublished.
        """
        ctx, form = self._load(id, "d")
        revisions = self._family(ctx, form.form_id, descending=True)
        if len(revisions) <= 1:
            return self.delete_form(form.id)

        previous = next((r for r in revisions if r.version < form.version), None)

        self._events.publish_before(
            FormEvent.BEFORE_FORM_REVISION_DELETE, form=form, previous=previous, revisions=revisions,
        )
        self._storage.delete_form_revision(form=form, previous=previous, revisions=revisions)
        self._log("delete_revision", ctx, form)
        self._events.publish_after(
            FormEvent.AFTER_FORM_REVISION_DELETE,
            result=True, form=form, previous=previous, revisions=revisions,
        )
        logger.info(f"Form revision deleted: {form.id}")
        return True
