"""
Form Builder Submission Store — accepts, lists and edits form submissions.

create_form_submission pipeline:
    1. resolve the revision; it must be published
    2. captcha verification (nothing is persisted on failure)
    3. field validators resolved by name from the PluginRegistry
    4. data filtered to the revision's field ids, revision snapshot taken
    5. before-topic → storage create → after-topic
    6. atomic submissions counter increment on the revision
    7. trigger handlers; their logs are appended to the stored submission

Submissions belong to a form family: listing through any revision id
returns the submissions made against every revision of that family.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from formbuilder.engine.config import FormBuilderConfig, get_config
from formbuilder.engine.context import ExecutionContext, require_execution_context
from formbuilder.engine.errors import (
    FormBuilderCaptchaError,
    FormBuilderHookError,
    FormBuilderNotFoundError,
    FormBuilderValidationError,
)
from formbuilder.engine.events import FormEvent, LifecycleEventBus
from formbuilder.engine.logging import log, log_security_event, log_submission_operation
from formbuilder.engine.registry import PluginRegistry
from formbuilder.engine.security import SUBMISSIONS_PERMISSION, AllowAllGate, PermissionGate
from formbuilder.forms.manager import clamp_limit, resolve_revision
from formbuilder.forms.models import CreatedBy, Form, parse_identifier
from formbuilder.storage.base import StorageOperations
from formbuilder.storage.cursor import ListMeta, SortInput, parse_sort
from formbuilder.submissions.captcha import CaptchaVerifier, NoCaptchaVerifier
from formbuilder.submissions.models import (
    Submission,
    SubmissionFormSnapshot,
    SubmissionUpdateInput,
)
from formbuilder.utilities.utils import parse_input, utc_now

logger = logging.getLogger("formbuilder.submissions.store")

SUBMISSION_SORT_FIELDS = ("created_on", "saved_on")


@dataclass
class TriggerHandlerParams:
    """Arguments handed to a trigger handler after a submission is stored."""
    add_log: Callable[[Dict[str, Any]], None]
    trigger: Any
    data: Dict[str, Any]
    form: Form


class SubmissionStore:
    def __init__(
        self,
        storage: StorageOperations,
        events: Optional[LifecycleEventBus] = None,
        registry: Optional[PluginRegistry] = None,
        captcha: Optional[CaptchaVerifier] = None,
        gate: Optional[PermissionGate] = None,
        config: Optional[FormBuilderConfig] = None,
    ):
        self._storage = storage
        self._events = events or LifecycleEventBus()
        self._registry = registry or PluginRegistry()
        self._captcha = captcha or NoCaptchaVerifier()
        self._gate = gate or AllowAllGate()
        self._config = config

    @property
    def config(self) -> FormBuilderConfig:
        return self._config or get_config()

    def _load_form(self, form_id: str, action: str, published: Optional[bool] = None) -> Tuple[ExecutionContext, Form]:
        ctx = require_execution_context()
        form = resolve_revision(self._storage, ctx, form_id, published=published)
        self._gate.check(SUBMISSIONS_PERMISSION, action, form=form)
        return ctx, form

    def _load_submission(self, ctx: ExecutionContext, form: Form, submission_id: str) -> Submission:
        submission = self._storage.get_submission(
            tenant=ctx.tenant, locale=ctx.locale, form_id=form.form_id, id=submission_id,
        )
        if submission is None:
            raise FormBuilderNotFoundError(
                f"Submission '{submission_id}' not found",
                entity_type="submission",
                entity_id=submission_id,
            )
        return submission

    @staticmethod
    def _log(operation: str, ctx: ExecutionContext, submission: Submission) -> None:
        log(log_submission_operation(
            operation=operation,
            submission_id=submission.id,
            revision_id=submission.form.id,
            execution_id=ctx.execution_id,
            user_id=ctx.user_id,
            tenant=ctx.tenant,
            locale=ctx.locale,
        ))

    # ── Create ──

    def _validate(self, form: Form, data: Mapping[str, Any]) -> None:
        errors: List[Dict[str, Any]] = []
        for field in form.fields:
            value = data.get(field.field_id)
            for validator in field.validation:
                fn = self._registry.get_validator(validator.name)
                if fn is None:
                    logger.warning(
                        f"No validator '{validator.name}' registered; skipping on {field.field_id}"
                    )
                    continue
                try:
                    valid = fn(value, validator.model_dump())
                except Exception as e:
                    logger.info(f"Validator '{validator.name}' raised on {field.field_id}: {e}")
                    valid = False
                if not valid:
                    errors.append({
                        "field_id": field.field_id,
                        "validator": validator.name,
                        "message": validator.message or f"Invalid value for {field.label or field.field_id}",
                    })
        if errors:
            raise FormBuilderValidationError(
                f"Submission failed validation on {len(errors)} rule(s)",
                entity_type="form",
                entity_id=form.id,
                validation_errors=errors,
            )

    def _run_triggers(self, form: Form, submission: Submission) -> List[Dict[str, Any]]:
        logs: List[Dict[str, Any]] = []
        for name, trigger in (form.triggers or {}).items():
            handler = self._registry.get_trigger_handler(name)
            if handler is None:
                continue
            params = TriggerHandlerParams(
                add_log=logs.append, trigger=trigger, data=dict(submission.data), form=form,
            )
            try:
                handler(params)
            except Exception as e:
                logger.error(f"Trigger '{name}' failed for submission {submission.id}: {e}")
                logs.append({"type": "error", "trigger": name, "message": str(e)})
        return logs

    def create_form_submission(
        self,
        form_id: str,
        captcha_token: Optional[str] = None,
        data: Optional[Mapping[str, Any]] = None,
        meta: Optional[Mapping[str, Any]] = None,
    ) -> Submission:
        """
        Store a submission against a published revision.

        Raises:
            FormBuilderNotFoundError if the revision is not published,
            FormBuilderCaptchaError, FormBuilderValidationError.
        """
        ctx, form = self._load_form(form_id, "w", published=True)
        data = dict(data or {})

        if not self._captcha.verify(captcha_token):
            log(log_security_event(
                event="captcha_failed",
                object_type="submissions",
                permission=SUBMISSIONS_PERMISSION,
                action="w",
                user_id=ctx.user_id,
                entity_id=form.id,
                execution_id=ctx.execution_id,
                tenant=ctx.tenant,
            ))
            raise FormBuilderCaptchaError(
                "Captcha verification failed", entity_type="form", entity_id=form.id,
            )

        self._validate(form, data)

        field_ids = {field.field_id for field in form.fields}
        now = utc_now()
        submission = Submission(
            id=uuid.uuid4().hex,
            tenant=ctx.tenant,
            locale=ctx.locale,
            owned_by=CreatedBy(**ctx.identity()),
            data={key: value for key, value in data.items() if key in field_ids},
            meta=dict(meta or {}),
            form=SubmissionFormSnapshot.from_form(form),
            logs=[],
            created_on=now,
            saved_on=now,
        )

        self._events.publish_before(FormEvent.BEFORE_SUBMISSION_CREATE, form=form, submission=submission)
        created = self._storage.create_submission(form=form, submission=submission)
        hook_error: Optional[FormBuilderHookError] = None
        try:
            self._events.publish_after(
                FormEvent.AFTER_SUBMISSION_CREATE, result=created, form=form, submission=created,
            )
        except FormBuilderHookError as e:
            hook_error = e

        self._storage.increment_form_stat(form=form, stat="submissions")

        logs = self._run_triggers(form, created)
        if logs:
            with_logs = created.model_copy(deep=True, update={
                "logs": created.logs + logs,
                "saved_on": utc_now(),
            })
            created = self._storage.update_submission(form=form, original=created, submission=with_logs)

        self._log("create", ctx, created)
        logger.info(f"Submission {created.id} stored for {form.id}")
        if hook_error is not None:
            hook_error.result = created
            raise hook_error
        return created

    # ── Reads ──

    def get_submission(self, form_id: str, submission_id: str) -> Submission:
        ctx = self._gate.check(SUBMISSIONS_PERMISSION, "r")
        family_id, _ = parse_identifier(form_id)
        submission = self._storage.get_submission(
            tenant=ctx.tenant, locale=ctx.locale, form_id=family_id, id=submission_id,
        )
        if submission is None:
            raise FormBuilderNotFoundError(
                f"Submission '{submission_id}' not found",
                entity_type="submission",
                entity_id=submission_id,
            )
        return submission

    def get_submissions_by_ids(self, form: Union[str, Form], ids: Sequence[str]) -> List[Submission]:
        """Submissions in request order. Unknown ids are omitted."""
        ctx = self._gate.check(SUBMISSIONS_PERMISSION, "r")
        family_id = form.form_id if isinstance(form, Form) else parse_identifier(form)[0]
        wanted = list(dict.fromkeys(ids))
        if not wanted:
            return []

        found, _ = self._storage.list_submissions(
            tenant=ctx.tenant,
            locale=ctx.locale,
            form_id=family_id,
            id_in=wanted,
            sort=parse_sort(None, SUBMISSION_SORT_FIELDS, self.config.submissions.default_sort),
            limit=len(wanted),
        )
        by_id = {submission.id: submission for submission in found}
        return [by_id[submission_id] for submission_id in wanted if submission_id in by_id]

    def list_form_submissions(
        self,
        form_id: str,
        limit: Optional[int] = None,
        after: Optional[str] = None,
        sort: SortInput = None,
    ) -> Tuple[List[Submission], ListMeta]:
        """
        Keyset-paginated submissions of the family.

        Sort keys: created_on, saved_on ("-" prefix for descending).
        """
        ctx = self._gate.check(SUBMISSIONS_PERMISSION, "r")
        settings = self.config.submissions
        family_id, _ = parse_identifier(form_id)
        return self._storage.list_submissions(
            tenant=ctx.tenant,
            locale=ctx.locale,
            form_id=family_id,
            sort=parse_sort(sort, SUBMISSION_SORT_FIELDS, settings.default_sort),
            limit=clamp_limit(limit, settings.default_limit, settings.max_limit),
            after=after,
        )

    # ── Update / delete ──

    def update_submission(
        self,
        form_id: str,
        submission_id: str,
        data: Union[SubmissionUpdateInput, Mapping[str, Any]],
    ) -> Submission:
        """data and meta replace the stored values; logs are appended."""
        ctx, form = self._load_form(form_id, "w")
        payload = parse_input(SubmissionUpdateInput, data)
        original = self._load_submission(ctx, form, submission_id)

        changes: Dict[str, Any] = {"saved_on": utc_now()}
        if payload.data is not None:
            changes["data"] = dict(payload.data)
        if payload.meta is not None:
            changes["meta"] = dict(payload.meta)
        if payload.logs:
            changes["logs"] = original.logs + list(payload.logs)
        submission = original.model_copy(deep=True, update=changes)

        self._events.publish_before(
            FormEvent.BEFORE_SUBMISSION_UPDATE, form=form, submission=submission, original=original,
        )
        updated = self._storage.update_submission(form=form, original=original, submission=submission)
        self._log("update", ctx, updated)
        self._events.publish_after(
            FormEvent.AFTER_SUBMISSION_UPDATE,
            result=updated, form=form, submission=updated, original=original,
        )
        return updated

    def delete_submission(self, form_id: str, submission_id: str) -> bool:
        ctx, form = self._load_form(form_id, "d")
        submission = self._load_submission(ctx, form, submission_id)

        self._events.publish_before(FormEvent.BEFORE_SUBMISSION_DELETE, form=form, submission=submission)
        self._storage.delete_submission(form=form, submission=submission)
        self._log("delete", ctx, submission)
        self._events.publish_after(
            FormEvent.AFTER_SUBMISSION_DELETE, result=True, form=form, submission=submission,
        )
        return True
