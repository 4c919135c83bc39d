"""
Form Builder SQL Storage — SQLAlchemy StorageOperations backend.

Every port call runs in one transaction (session_scope). Optimistic
concurrency works in two steps inside that transaction:

    1. load the row (FOR UPDATE where the database supports it) and
       compare its content, counters excluded, with the caller's original
    2. write with UPDATE/DELETE ... WHERE saved_on = <value just read> and
       require exactly one affected row

Counters are incremented in SQL (views = views + 1). Family invariants are
backed by the unique constraints in formbuilder.db.models; an
IntegrityError from any write surfaces as FormBuilderConflictError.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Generator, List, Optional, Sequence, Tuple

from sqlalchemy import DateTime, and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from formbuilder.db.models import FormRecord, SettingsRecord, SubmissionRecord, SystemRecord
from formbuilder.db.session import dispose, session_scope
from formbuilder.engine.errors import (
    FormBuilderConflictError,
    FormBuilderNotFoundError,
    FormBuilderValidationError,
)
from formbuilder.forms.models import Form, FormStatsCounters, FormStatus
from formbuilder.settings.models import ReCaptchaSettings, Settings, System
from formbuilder.storage.base import FORM_STATS, StorageOperations
from formbuilder.storage.cursor import ListMeta, SortSpec, decode_cursor, encode_cursor
from formbuilder.submissions.models import Submission
from formbuilder.utilities.utils import ensure_utc

logger = logging.getLogger("formbuilder.storage.sql")

_STAT_COLUMNS = {
    "views": FormRecord.stat_views,
    "submissions": FormRecord.stat_submissions,
}


# ---------------------------------------------------------------------------
# Row <-> model conversion
# ---------------------------------------------------------------------------

def _form_from_row(row: FormRecord) -> Form:
    return Form(
        id=row.id,
        form_id=row.form_id,
        tenant=row.tenant,
        locale=row.locale,
        created_by=row.created_by,
        owned_by=row.owned_by,
        created_on=ensure_utc(row.created_on),
        saved_on=ensure_utc(row.saved_on),
        name=row.name,
        slug=row.slug,
        version=row.version,
        locked=row.locked,
        published=row.published,
        published_on=ensure_utc(row.published_on),
        status=row.status,
        fields=row.fields or [],
        layout=row.layout or [],
        settings=row.settings or {},
        triggers=row.triggers,
        stats=FormStatsCounters(submissions=row.stat_submissions, views=row.stat_views),
    )


def _form_values(form: Form) -> Dict[str, Any]:
    """Column values for a revision, excluding keys and counters."""
    return {
        "form_id": form.form_id,
        "version": form.version,
        "name": form.name,
        "slug": form.slug,
        "locked": form.locked,
        "published": form.published,
        "published_on": form.published_on,
        "status": FormStatus(form.status).value,
        "created_by": form.created_by.model_dump(mode="json"),
        "owned_by": form.owned_by.model_dump(mode="json"),
        "fields": [f.model_dump(mode="json") for f in form.fields],
        "layout": [list(row) for row in form.layout],
        "settings": form.settings,
        "triggers": form.triggers,
        "created_on": form.created_on,
        "saved_on": form.saved_on,
    }


def _submission_from_row(row: SubmissionRecord) -> Submission:
    return Submission(
        id=row.id,
        tenant=row.tenant,
        locale=row.locale,
        owned_by=row.owned_by,
        data=row.data or {},
        meta=row.meta or {},
        form=row.form,
        logs=row.logs or [],
        created_on=ensure_utc(row.created_on),
        saved_on=ensure_utc(row.saved_on),
    )


def _submission_values(submission: Submission) -> Dict[str, Any]:
    return {
        "form_id": submission.form.parent,
        "revision_id": submission.form.id,
        "owned_by": submission.owned_by.model_dump(mode="json") if submission.owned_by else None,
        "data": submission.data,
        "meta": submission.meta,
        "form": submission.form.model_dump(mode="json"),
        "logs": submission.logs,
        "created_on": submission.created_on,
        "saved_on": submission.saved_on,
    }


def _settings_from_row(row: SettingsRecord) -> Settings:
    return Settings(
        tenant=row.tenant,
        locale=row.locale,
        domain=row.domain,
        recaptcha=ReCaptchaSettings(**(row.recaptcha or {})),
    )


# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------

class SqlStorageOperations(StorageOperations):
    """
    SQLAlchemy-backed storage.

    Usage:
        factory = init_db("sqlite:///formbuilder.db", create_tables=True)
        storage = SqlStorageOperations(factory)
    """

    name = "sql"

    def __init__(self, session_factory: sessionmaker):
        self._factory = session_factory

    def close(self) -> None:
        dispose(self._factory)

    @contextmanager
    def _transaction(self, operation: str, entity_id: Optional[str] = None) -> Generator[Session, None, None]:
        try:
            with session_scope(self._factory) as session:
                yield session
        except IntegrityError as e:
            logger.warning(f"Integrity violation during {operation} on {entity_id}: {e.orig}")
            raise FormBuilderConflictError(
                f"Concurrent modification detected during {operation}",
                operation=operation,
                entity_id=entity_id,
            ) from e

    # ── Keyset paging ──

    @staticmethod
    def _page(
        session: Session,
        model: Any,
        conditions: List[Any],
        sort: SortSpec,
        limit: int,
        after: Optional[str],
        convert: Callable[[Any], Any],
    ) -> Tuple[List[Any], ListMeta]:
        column = getattr(model, sort.field)
        total = session.scalar(select(func.count()).select_from(model).where(*conditions))

        query = select(model).where(*conditions)
        if after:
            value, item_id = decode_cursor(after)
            is_datetime = isinstance(model.__table__.c[sort.field].type, DateTime)
            if is_datetime != isinstance(value, datetime):
                raise FormBuilderValidationError(
                    f"Cursor does not match sort '{sort}'",
                    validation_errors=[{"field": "after", "error": "cursor value type mismatch"}],
                )
            if sort.descending:
                boundary = or_(column < value, and_(column == value, model.id < item_id))
            else:
                boundary = or_(column > value, and_(column == value, model.id > item_id))
            query = query.where(boundary)

        if sort.descending:
            query = query.order_by(column.desc(), model.id.desc())
        else:
            query = query.order_by(column.asc(), model.id.asc())

        rows = session.scalars(query.limit(limit + 1)).all()
        items = [convert(row) for row in rows[:limit]]
        has_more = len(rows) > limit
        cursor = encode_cursor(sort.key(items[-1])) if has_more and items else None
        return items, ListMeta(cursor=cursor, has_more_items=has_more, total_count=total or 0)

    # ── System ──

    def get_system(self, *, tenant: str) -> Optional[System]:
        with session_scope(self._factory) as session:
            row = session.get(SystemRecord, tenant)
            return System(tenant=row.tenant, version=row.version) if row else None

    def create_system(self, *, system: System) -> System:
        with self._transaction("create_system", system.tenant) as session:
            session.add(SystemRecord(tenant=system.tenant, version=system.version))
        return system.model_copy(deep=True)

    def update_system(self, *, original: System, system: System) -> System:
        with self._transaction("update_system", system.tenant) as session:
            result = session.execute(
                update(SystemRecord)
                .where(SystemRecord.tenant == system.tenant, SystemRecord.version == original.version)
                .values(version=system.version)
            )
            if result.rowcount != 1:
                raise FormBuilderConflictError(
                    f"System record for tenant '{system.tenant}' changed concurrently",
                    entity_type="system",
                    entity_id=system.tenant,
                )
        return system.model_copy(deep=True)

    # ── Settings ──

    def get_settings(self, *, tenant: str, locale: str) -> Optional[Settings]:
        with session_scope(self._factory) as session:
            row = session.get(SettingsRecord, (tenant, locale))
            return _settings_from_row(row) if row else None

    def create_settings(self, *, settings: Settings) -> Settings:
        with self._transaction("create_settings", f"{settings.tenant}/{settings.locale}") as session:
            session.add(SettingsRecord(
                tenant=settings.tenant,
                locale=settings.locale,
                domain=settings.domain,
                recaptcha=settings.recaptcha.model_dump(mode="json"),
            ))
        return settings.model_copy(deep=True)

    def _locked_settings(self, session: Session, original: Settings) -> SettingsRecord:
        row = session.get(SettingsRecord, (original.tenant, original.locale), with_for_update=True)
        if row is None or _settings_from_row(row).content_dump() != original.content_dump():
            raise FormBuilderConflictError(
                f"Settings for {original.tenant}/{original.locale} changed concurrently",
                entity_type="settings",
            )
        return row

    def update_settings(self, *, original: Settings, settings: Settings) -> Settings:
        with self._transaction("update_settings", f"{settings.tenant}/{settings.locale}") as session:
            row = self._locked_settings(session, original)
            row.domain = settings.domain
            row.recaptcha = settings.recaptcha.model_dump(mode="json")
        return settings.model_copy(deep=True)

    def delete_settings(self, *, settings: Settings) -> None:
        with self._transaction("delete_settings", f"{settings.tenant}/{settings.locale}") as session:
            session.delete(self._locked_settings(session, settings))

    # ── Forms ──

    @staticmethod
    def _family_conditions(tenant: str, locale: str, form_id: str) -> List[Any]:
        return [
            FormRecord.tenant == tenant,
            FormRecord.locale == locale,
            FormRecord.form_id == form_id,
        ]

    @staticmethod
    def _locked_form(session: Session, original: Form, operation: str) -> FormRecord:
        row = session.get(
            FormRecord, (original.tenant, original.locale, original.id), with_for_update=True
        )
        if row is None or _form_from_row(row).content_dump() != original.content_dump():
            raise FormBuilderConflictError(
                f"Form revision {original.id} changed concurrently",
                entity_type="form",
                entity_id=original.id,
                operation=operation,
            )
        return row

    @staticmethod
    def _write_form(session: Session, row: FormRecord, form: Form, operation: str) -> Form:
        """Compare-and-set write of `form` over `row`; counters are kept."""
        result = session.execute(
            update(FormRecord)
            .where(
                FormRecord.tenant == row.tenant,
                FormRecord.locale == row.locale,
                FormRecord.id == row.id,
                FormRecord.saved_on == row.saved_on,
            )
            .values(**_form_values(form))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise FormBuilderConflictError(
                f"Form revision {form.id} changed concurrently",
                entity_type="form",
                entity_id=form.id,
                operation=operation,
            )
        written = form.model_copy(deep=True)
        written.stats = FormStatsCounters(submissions=row.stat_submissions, views=row.stat_views)
        return written

    def get_form(self, *, tenant: str, locale: str, id: Optional[str] = None,
                 form_id: Optional[str] = None, version: Optional[int] = None,
                 published: Optional[bool] = None, latest: Optional[bool] = None) -> Optional[Form]:
        conditions = [FormRecord.tenant == tenant, FormRecord.locale == locale]
        if id is not None:
            conditions.append(FormRecord.id == id)
        if form_id is not None:
            conditions.append(FormRecord.form_id == form_id)
        if version is not None:
            conditions.append(FormRecord.version == version)
        if published is not None:
            conditions.append(FormRecord.published == published)
        if latest is not None:
            conditions.append(FormRecord.latest == latest)

        with session_scope(self._factory) as session:
            row = session.scalars(
                select(FormRecord).where(*conditions).order_by(FormRecord.version.desc()).limit(1)
            ).first()
            return _form_from_row(row) if row else None

    def list_forms(self, *, tenant: str, locale: str, sort: SortSpec, limit: int,
                   after: Optional[str] = None, latest: Optional[bool] = None,
                   published: Optional[bool] = None) -> Tuple[List[Form], ListMeta]:
        conditions = [FormRecord.tenant == tenant, FormRecord.locale == locale]
        if latest is not None:
            conditions.append(FormRecord.latest == latest)
        if published is not None:
            conditions.append(FormRecord.published == published)

        with session_scope(self._factory) as session:
            return self._page(session, FormRecord, conditions, sort, limit, after, _form_from_row)

    def list_form_revisions(self, *, tenant: str, locale: str, form_id: str,
                            version_not: Optional[int] = None,
                            descending: bool = False) -> List[Form]:
        conditions = self._family_conditions(tenant, locale, form_id)
        if version_not is not None:
            conditions.append(FormRecord.version != version_not)
        order = FormRecord.version.desc() if descending else FormRecord.version.asc()

        with session_scope(self._factory) as session:
            rows = session.scalars(select(FormRecord).where(*conditions).order_by(order)).all()
            return [_form_from_row(row) for row in rows]

    def create_form(self, *, form: Form) -> Form:
        with self._transaction("create", form.id) as session:
            exists = session.scalar(
                select(func.count())
                .select_from(FormRecord)
                .where(*self._family_conditions(*form.family_key))
            )
            if exists:
                raise FormBuilderConflictError(
                    f"Form {form.form_id} already exists",
                    entity_type="form",
                    entity_id=form.id,
                    operation="create",
                )
            session.add(FormRecord(
                tenant=form.tenant,
                locale=form.locale,
                id=form.id,
                latest=True,
                stat_submissions=form.stats.submissions,
                stat_views=form.stats.views,
                **_form_values(form),
            ))
        logger.debug(f"Created form {form.id}")
        return form.model_copy(deep=True)

    def create_form_from(self, *, original: Form, latest: Form, form: Form) -> Form:
        with self._transaction("create_revision", form.id) as session:
            if session.get(FormRecord, (original.tenant, original.locale, original.id)) is None:
                raise FormBuilderConflictError(
                    f"Source revision {original.id} no longer exists",
                    entity_type="form",
                    entity_id=original.id,
                    operation="create_revision",
                )

            # Move the latest flag first so the partial unique index holds.
            result = session.execute(
                update(FormRecord)
                .where(
                    *self._family_conditions(*form.family_key),
                    FormRecord.id == latest.id,
                    FormRecord.latest.is_(True),
                )
                .values(latest=False)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise FormBuilderConflictError(
                    f"Revision {latest.id} is no longer the latest of {form.form_id}",
                    entity_type="form",
                    entity_id=form.id,
                    operation="create_revision",
                )
            session.add(FormRecord(
                tenant=form.tenant,
                locale=form.locale,
                id=form.id,
                latest=True,
                stat_submissions=form.stats.submissions,
                stat_views=form.stats.views,
                **_form_values(form),
            ))
        logger.debug(f"Created revision {form.id} from {original.id}")
        return form.model_copy(deep=True)

    def update_form(self, *, original: Form, form: Form) -> Form:
        with self._transaction("update", form.id) as session:
            row = self._locked_form(session, original, "update")
            return self._write_form(session, row, form, "update")

    def delete_form(self, *, form: Form) -> Form:
        with self._transaction("delete", form.id) as session:
            self._locked_form(session, form, "delete")
            session.execute(
                delete(FormRecord)
                .where(*self._family_conditions(*form.family_key))
                .execution_options(synchronize_session=False)
            )
        logger.debug(f"Deleted form family {form.form_id}")
        return form.model_copy(deep=True)

    def delete_form_revision(self, *, form: Form, previous: Optional[Form],
                             revisions: Sequence[Form]) -> Form:
        with self._transaction("delete_revision", form.id) as session:
            row = self._locked_form(session, form, "delete_revision")
            was_latest = row.latest
            result = session.execute(
                delete(FormRecord)
                .where(
                    FormRecord.tenant == row.tenant,
                    FormRecord.locale == row.locale,
                    FormRecord.id == row.id,
                    FormRecord.saved_on == row.saved_on,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise FormBuilderConflictError(
                    f"Form revision {form.id} changed concurrently",
                    entity_type="form",
                    entity_id=form.id,
                    operation="delete_revision",
                )
            if was_latest and previous is not None:
                result = session.execute(
                    update(FormRecord)
                    .where(
                        FormRecord.tenant == previous.tenant,
                        FormRecord.locale == previous.locale,
                        FormRecord.id == previous.id,
                    )
                    .values(latest=True)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise FormBuilderConflictError(
                        f"Previous revision {previous.id} no longer exists",
                        entity_type="form",
                        entity_id=previous.id,
                        operation="delete_revision",
                    )
        logger.debug(f"Deleted revision {form.id}")
        return form.model_copy(deep=True)

    def publish_form(self, *, original: Form, form: Form, demote_original: Optional[Form] = None,
                     demote: Optional[Form] = None) -> Form:
        with self._transaction("publish", form.id) as session:
            row = self._locked_form(session, original, "publish")
            if demote is not None:
                demote_row = self._locked_form(session, demote_original or demote, "publish")
                # Demote first so the published partial unique index holds.
                self._write_form(session, demote_row, demote, "publish")
            else:
                others = session.scalar(
                    select(func.count())
                    .select_from(FormRecord)
                    .where(
                        *self._family_conditions(*form.family_key),
                        FormRecord.published.is_(True),
                        FormRecord.id != form.id,
                    )
                )
                if others:
                    raise FormBuilderConflictError(
                        f"Another revision of {form.form_id} was published concurrently",
                        entity_type="form",
                        entity_id=form.id,
                        operation="publish",
                    )
            return self._write_form(session, row, form, "publish")

    def unpublish_form(self, *, original: Form, form: Form) -> Form:
        with self._transaction("unpublish", form.id) as session:
            row = self._locked_form(session, original, "unpublish")
            return self._write_form(session, row, form, "unpublish")

    def increment_form_stat(self, *, form: Form, stat: str) -> Form:
        if stat not in FORM_STATS:
            raise ValueError(f"Unknown form stat: {stat}")
        column = _STAT_COLUMNS[stat]
        key = (form.tenant, form.locale, form.id)

        with self._transaction(f"increment_{stat}", form.id) as session:
            result = session.execute(
                update(FormRecord)
                .where(
                    FormRecord.tenant == form.tenant,
                    FormRecord.locale == form.locale,
                    FormRecord.id == form.id,
                )
                .values({column: column + 1})
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise FormBuilderNotFoundError(
                    f"Form revision {form.id} not found",
                    entity_type="form",
                    entity_id=form.id,
                )
            return _form_from_row(session.get(FormRecord, key, populate_existing=True))

    # ── Submissions ──

    @staticmethod
    def _locked_submission(session: Session, original: Submission) -> SubmissionRecord:
        row = session.get(
            SubmissionRecord,
            (original.tenant, original.locale, original.id),
            with_for_update=True,
        )
        if row is None or _submission_from_row(row).content_dump() != original.content_dump():
            raise FormBuilderConflictError(
                f"Submission {original.id} changed concurrently",
                entity_type="submission",
                entity_id=original.id,
            )
        return row

    def get_submission(self, *, tenant: str, locale: str, form_id: str, id: str) -> Optional[Submission]:
        with session_scope(self._factory) as session:
            row = session.get(SubmissionRecord, (tenant, locale, id))
            if row is None or row.form_id != form_id:
                return None
            return _submission_from_row(row)

    def list_submissions(self, *, tenant: str, locale: str, form_id: str, sort: SortSpec, limit: int,
                         after: Optional[str] = None,
                         id_in: Optional[Sequence[str]] = None) -> Tuple[List[Submission], ListMeta]:
        conditions = [
            SubmissionRecord.tenant == tenant,
            SubmissionRecord.locale == locale,
            SubmissionRecord.form_id == form_id,
        ]
        if id_in is not None:
            conditions.append(SubmissionRecord.id.in_(list(id_in)))

        with session_scope(self._factory) as session:
            return self._page(
                session, SubmissionRecord, conditions, sort, limit, after, _submission_from_row
            )

    def create_submission(self, *, form: Form, submission: Submission) -> Submission:
        with self._transaction("create_submission", submission.id) as session:
            session.add(SubmissionRecord(
                tenant=submission.tenant,
                locale=submission.locale,
                id=submission.id,
                **_submission_values(submission),
            ))
        return submission.model_copy(deep=True)

    def update_submission(self, *, form: Form, original: Submission,
                          submission: Submission) -> Submission:
        with self._transaction("update_submission", submission.id) as session:
            row = self._locked_submission(session, original)
            result = session.execute(
                update(SubmissionRecord)
                .where(
                    SubmissionRecord.tenant == row.tenant,
                    SubmissionRecord.locale == row.locale,
                    SubmissionRecord.id == row.id,
                    SubmissionRecord.saved_on == row.saved_on,
                )
                .values(**_submission_values(submission))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise FormBuilderConflictError(
                    f"Submission {submission.id} changed concurrently",
                    entity_type="submission",
                    entity_id=submission.id,
                )
        return submission.model_copy(deep=True)

    def delete_submission(self, *, form: Form, submission: Submission) -> Submission:
        with self._transaction("delete_submission", submission.id) as session:
            session.delete(self._locked_submission(session, submission))
        return submission.model_copy(deep=True)
