"""
Form Builder In-Memory Storage — process-local StorageOperations backend.

All state lives in plain dicts guarded by one re-entrant lock. Records are
deep-copied on the way in and on the way out, so callers never hold a
reference into the store. Every compare-and-set check and the write that
follows it happen under the same lock acquisition.

Suitable for tests, single-process tools and development servers.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional, Sequence, Tuple, TypeVar

from pydantic import BaseModel

from formbuilder.engine.errors import FormBuilderConflictError, FormBuilderNotFoundError
from formbuilder.forms.models import Form
from formbuilder.settings.models import Settings, System
from formbuilder.storage.base import FORM_STATS, StorageOperations
from formbuilder.storage.cursor import ListMeta, SortSpec, paginate
from formbuilder.submissions.models import Submission

logger = logging.getLogger("formbuilder.storage.memory")

M = TypeVar("M", bound=BaseModel)

FamilyKey = Tuple[str, str, str]
RecordKey = Tuple[str, str, str]


def _copy(model: M) -> M:
    return model.model_copy(deep=True)


def _diverged(stored: Optional[BaseModel], original: BaseModel) -> bool:
    return stored is None or stored.content_dump() != original.content_dump()


class InMemoryStorageOperations(StorageOperations):
    """Dict-backed storage with optimistic-concurrency checks."""

    name = "memory"

    def __init__(self):
        self._lock = threading.RLock()
        self._systems: Dict[str, System] = {}
        self._settings: Dict[Tuple[str, str], Settings] = {}
        self._forms: Dict[RecordKey, Form] = {}
        self._latest: Dict[FamilyKey, str] = {}
        # _latest[(tenant, locale, form_id)] = revision id with the highest version
        self._submissions: Dict[RecordKey, Submission] = {}

    # ── System ──

    def get_system(self, *, tenant: str) -> Optional[System]:
        with self._lock:
            system = self._systems.get(tenant)
            return _copy(system) if system else None

    def create_system(self, *, system: System) -> System:
        with self._lock:
            if system.tenant in self._systems:
                raise FormBuilderConflictError(
                    f"System record already exists for tenant '{system.tenant}'",
                    entity_type="system",
                    entity_id=system.tenant,
                )
            self._systems[system.tenant] = _copy(system)
            return _copy(system)

    def update_system(self, *, original: System, system: System) -> System:
        with self._lock:
            stored = self._systems.get(system.tenant)
            if stored is None or stored.model_dump() != original.model_dump():
                raise FormBuilderConflictError(
                    f"System record for tenant '{system.tenant}' changed concurrently",
                    entity_type="system",
                    entity_id=system.tenant,
                )
            self._systems[system.tenant] = _copy(system)
            return _copy(system)

    # ── Settings ──

    def get_settings(self, *, tenant: str, locale: str) -> Optional[Settings]:
        with self._lock:
            settings = self._settings.get((tenant, locale))
            return _copy(settings) if settings else None

    def create_settings(self, *, settings: Settings) -> Settings:
        key = (settings.tenant, settings.locale)
        with self._lock:
            if key in self._settings:
                raise FormBuilderConflictError(
                    f"Settings already exist for {settings.tenant}/{settings.locale}",
                    entity_type="settings",
                )
            self._settings[key] = _copy(settings)
            return _copy(settings)

    def update_settings(self, *, original: Settings, settings: Settings) -> Settings:
        key = (settings.tenant, settings.locale)
        with self._lock:
            if _diverged(self._settings.get(key), original):
                raise FormBuilderConflictError(
                    f"Settings for {settings.tenant}/{settings.locale} changed concurrently",
                    entity_type="settings",
                )
            self._settings[key] = _copy(settings)
            return _copy(settings)

    def delete_settings(self, *, settings: Settings) -> None:
        key = (settings.tenant, settings.locale)
        with self._lock:
            if _diverged(self._settings.get(key), settings):
                raise FormBuilderConflictError(
                    f"Settings for {settings.tenant}/{settings.locale} changed concurrently",
                    entity_type="settings",
                )
            del self._settings[key]

    # ── Forms ──

    def _family(self, tenant: str, locale: str, form_id: str) -> List[Form]:
        return [
            form for (t, l, _), form in self._forms.items()
            if t == tenant and l == locale and form.form_id == form_id
        ]

    def _is_latest(self, form: Form) -> bool:
        return self._latest.get(form.family_key) == form.id

    def _matches(
        self,
        form: Form,
        id: Optional[str],
        form_id: Optional[str],
        version: Optional[int],
        published: Optional[bool],
        latest: Optional[bool],
    ) -> bool:
        if id is not None and form.id != id:
            return False
        if form_id is not None and form.form_id != form_id:
            return False
        if version is not None and form.version != version:
            return False
        if published is not None and form.published != published:
            return False
        if latest is not None and self._is_latest(form) != latest:
            return False
        return True

    def _check_form(self, original: Form, operation: str) -> Form:
        stored = self._forms.get((original.tenant, original.locale, original.id))
        if _diverged(stored, original):
            raise FormBuilderConflictError(
                f"Form revision {original.id} changed concurrently",
                entity_type="form",
                entity_id=original.id,
                operation=operation,
            )
        return stored

    def _put_form(self, form: Form, stored: Optional[Form] = None) -> Form:
        record = _copy(form)
        if stored is not None:
            # counters are only ever changed by increment_form_stat
            record.stats = stored.stats.model_copy()
        self._forms[(form.tenant, form.locale, form.id)] = record
        return _copy(record)

    def get_form(self, *, tenant: str, locale: str, id: Optional[str] = None,
                 form_id: Optional[str] = None, version: Optional[int] = None,
                 published: Optional[bool] = None, latest: Optional[bool] = None) -> Optional[Form]:
        with self._lock:
            if id is not None:
                form = self._forms.get((tenant, locale, id))
                candidates = [form] if form else []
            else:
                candidates = [
                    form for (t, l, _), form in self._forms.items()
                    if t == tenant and l == locale
                ]
            for form in candidates:
                if self._matches(form, id, form_id, version, published, latest):
                    return _copy(form)
            return None

    def list_forms(self, *, tenant: str, locale: str, sort: SortSpec, limit: int,
                   after: Optional[str] = None, latest: Optional[bool] = None,
                   published: Optional[bool] = None) -> Tuple[List[Form], ListMeta]:
        with self._lock:
            candidates = [
                _copy(form) for (t, l, _), form in self._forms.items()
                if t == tenant and l == locale
                and self._matches(form, None, None, None, published, latest)
            ]
        return paginate(candidates, sort, limit, after)

    def list_form_revisions(self, *, tenant: str, locale: str, form_id: str,
                            version_not: Optional[int] = None,
                            descending: bool = False) -> List[Form]:
        with self._lock:
            revisions = [
                _copy(form) for form in self._family(tenant, locale, form_id)
                if version_not is None or form.version != version_not
            ]
        return sorted(revisions, key=lambda f: f.version, reverse=descending)

    def create_form(self, *, form: Form) -> Form:
        with self._lock:
            if self._family(form.tenant, form.locale, form.form_id):
                raise FormBuilderConflictError(
                    f"Form {form.form_id} already exists",
                    entity_type="form",
                    entity_id=form.id,
                    operation="create",
                )
            created = self._put_form(form)
            self._latest[form.family_key] = form.id
            logger.debug(f"Created form {form.id}")
            return created

    def create_form_from(self, *, original: Form, latest: Form, form: Form) -> Form:
        with self._lock:
            if (original.tenant, original.locale, original.id) not in self._forms:
                raise FormBuilderConflictError(
                    f"Source revision {original.id} no longer exists",
                    entity_type="form",
                    entity_id=original.id,
                    operation="create_revision",
                )
            if self._latest.get(form.family_key) != latest.id:
                raise FormBuilderConflictError(
                    f"Revision {latest.id} is no longer the latest of {form.form_id}",
                    entity_type="form",
                    entity_id=form.id,
                    operation="create_revision",
                )
            if any(f.version == form.version for f in self._family(*form.family_key)):
                raise FormBuilderConflictError(
                    f"Version {form.version} of {form.form_id} already exists",
                    entity_type="form",
                    entity_id=form.id,
                    operation="create_revision",
                )
            created = self._put_form(form)
            self._latest[form.family_key] = form.id
            logger.debug(f"Created revision {form.id} from {original.id}")
            return created

    def update_form(self, *, original: Form, form: Form) -> Form:
        with self._lock:
            stored = self._check_form(original, "update")
            return self._put_form(form, stored)

    def delete_form(self, *, form: Form) -> Form:
        with self._lock:
            self._check_form(form, "delete")
            for revision in self._family(*form.family_key):
                del self._forms[(revision.tenant, revision.locale, revision.id)]
            self._latest.pop(form.family_key, None)
            logger.debug(f"Deleted form family {form.form_id}")
            return _copy(form)

    def delete_form_revision(self, *, form: Form, previous: Optional[Form],
                             revisions: Sequence[Form]) -> Form:
        with self._lock:
            self._check_form(form, "delete_revision")
            if (
                self._is_latest(form)
                and previous is not None
                and (previous.tenant, previous.locale, previous.id) not in self._forms
            ):
                raise FormBuilderConflictError(
                    f"Previous revision {previous.id} no longer exists",
                    entity_type="form",
                    entity_id=previous.id,
                    operation="delete_revision",
                )
            del self._forms[(form.tenant, form.locale, form.id)]
            if self._is_latest(form):
                if previous is not None:
                    self._latest[form.family_key] = previous.id
                else:
                    self._latest.pop(form.family_key, None)
            logger.debug(f"Deleted revision {form.id}")
            return _copy(form)

    def publish_form(self, *, original: Form, form: Form, demote_original: Optional[Form] = None,
                     demote: Optional[Form] = None) -> Form:
        with self._lock:
            stored = self._check_form(original, "publish")
            demote_stored = None
            if demote is not None:
                demote_stored = self._check_form(demote_original or demote, "publish")
            elif any(
                f.published and f.id != form.id for f in self._family(*form.family_key)
            ):
                raise FormBuilderConflictError(
                    f"Another revision of {form.form_id} was published concurrently",
                    entity_type="form",
                    entity_id=form.id,
                    operation="publish",
                )
            if demote is not None:
                self._put_form(demote, demote_stored)
            return self._put_form(form, stored)

    def unpublish_form(self, *, original: Form, form: Form) -> Form:
        with self._lock:
            stored = self._check_form(original, "unpublish")
            return self._put_form(form, stored)

    def increment_form_stat(self, *, form: Form, stat: str) -> Form:
        if stat not in FORM_STATS:
            raise ValueError(f"Unknown form stat: {stat}")
        with self._lock:
            stored = self._forms.get((form.tenant, form.locale, form.id))
            if stored is None:
                raise FormBuilderNotFoundError(
                    f"Form revision {form.id} not found",
                    entity_type="form",
                    entity_id=form.id,
                )
            setattr(stored.stats, stat, getattr(stored.stats, stat) + 1)
            return _copy(stored)

    # ── Submissions ──

    def get_submission(self, *, tenant: str, locale: str, form_id: str, id: str) -> Optional[Submission]:
        with self._lock:
            submission = self._submissions.get((tenant, locale, id))
            if submission is None or submission.form.parent != form_id:
                return None
            return _copy(submission)

    def list_submissions(self, *, tenant: str, locale: str, form_id: str, sort: SortSpec, limit: int,
                         after: Optional[str] = None,
                         id_in: Optional[Sequence[str]] = None) -> Tuple[List[Submission], ListMeta]:
        wanted = set(id_in) if id_in is not None else None
        with self._lock:
            candidates = [
                _copy(s) for (t, l, _), s in self._submissions.items()
                if t == tenant and l == locale and s.form.parent == form_id
                and (wanted is None or s.id in wanted)
            ]
        return paginate(candidates, sort, limit, after)

    def create_submission(self, *, form: Form, submission: Submission) -> Submission:
        key = (submission.tenant, submission.locale, submission.id)
        with self._lock:
            if key in self._submissions:
                raise FormBuilderConflictError(
                    f"Submission {submission.id} already exists",
                    entity_type="submission",
                    entity_id=submission.id,
                )
            self._submissions[key] = _copy(submission)
            return _copy(submission)

    def update_submission(self, *, form: Form, original: Submission,
                          submission: Submission) -> Submission:
        key = (submission.tenant, submission.locale, submission.id)
        with self._lock:
            if _diverged(self._submissions.get(key), original):
                raise FormBuilderConflictError(
                    f"Submission {submission.id} changed concurrently",
                    entity_type="submission",
                    entity_id=submission.id,
                )
            self._submissions[key] = _copy(submission)
            return _copy(submission)

    def delete_submission(self, *, form: Form, submission: Submission) -> Submission:
        key = (submission.tenant, submission.locale, submission.id)
        with self._lock:
            if _diverged(self._submissions.get(key), submission):
                raise FormBuilderConflictError(
                    f"Submission {submission.id} changed concurrently",
                    entity_type="submission",
                    entity_id=submission.id,
                )
            del self._submissions[key]
            return _copy(submission)
