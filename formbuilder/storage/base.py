"""
Form Builder Storage Operations — the persistence port.

One capability group per entity family (system, settings, form,
submission). Managers compute every business-level value (new state,
"original" snapshot, version numbers, previous/latest pointers) before
calling in; a backend only persists and enforces optimistic concurrency:

    - update / delete / publish / unpublish receive the caller's last-known
      `original` and raise FormBuilderConflictError if the stored record
      has diverged from it (counters excluded).
    - create_form_from receives the `latest` revision the new version was
      computed from and raises FormBuilderConflictError if it is no longer
      the latest or the version is already taken.
    - increment_form_stat is an atomic add-by-one, never read-modify-write.
    - stored records are never aliased to caller-owned objects.

Backends also maintain a queryable `latest` flag per family (highest
version) so get_form(latest=True) never needs a scan.
"""

from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

from formbuilder.forms.models import Form
from formbuilder.settings.models import Settings, System
from formbuilder.storage.cursor import ListMeta, SortSpec
from formbuilder.submissions.models import Submission

FORM_STATS = frozenset({"views", "submissions"})


class SystemStorageOperations:
    def get_system(self, *, tenant: str) -> Optional[System]:
        raise NotImplementedError

    def create_system(self, *, system: System) -> System:
        raise NotImplementedError

    def update_system(self, *, original: System, system: System) -> System:
        raise NotImplementedError


class SettingsStorageOperations:
    def get_settings(self, *, tenant: str, locale: str) -> Optional[Settings]:
        raise NotImplementedError

    def create_settings(self, *, settings: Settings) -> Settings:
        raise NotImplementedError

    def update_settings(self, *, original: Settings, settings: Settings) -> Settings:
        raise NotImplementedError

    def delete_settings(self, *, settings: Settings) -> None:
        raise NotImplementedError


class FormStorageOperations:
    def get_form(
        self,
        *,
        tenant: str,
        locale: str,
        id: Optional[str] = None,
        form_id: Optional[str] = None,
        version: Optional[int] = None,
        published: Optional[bool] = None,
        latest: Optional[bool] = None,
    ) -> Optional[Form]:
        """Single revision matching every given filter, or None."""
        raise NotImplementedError

    def list_forms(
        self,
        *,
        tenant: str,
        locale: str,
        sort: SortSpec,
        limit: int,
        after: Optional[str] = None,
        latest: Optional[bool] = None,
        published: Optional[bool] = None,
    ) -> Tuple[List[Form], ListMeta]:
        raise NotImplementedError

    def list_form_revisions(
        self,
        *,
        tenant: str,
        locale: str,
        form_id: str,
        version_not: Optional[int] = None,
        descending: bool = False,
    ) -> List[Form]:
        """Every revision of a family ordered by version."""
        raise NotImplementedError

    def create_form(self, *, form: Form) -> Form:
        """Insert version 1 of a new family and flag it latest."""
        raise NotImplementedError

    def create_form_from(self, *, original: Form, latest: Form, form: Form) -> Form:
        """Insert a new revision and move the latest flag onto it."""
        raise NotImplementedError

    def update_form(self, *, original: Form, form: Form) -> Form:
        raise NotImplementedError

    def delete_form(self, *, form: Form) -> Form:
        """Delete every revision of the family, with its latest/published flags."""
        raise NotImplementedError

    def delete_form_revision(
        self,
        *,
        form: Form,
        previous: Optional[Form],
        revisions: Sequence[Form],
    ) -> Form:
        """
        Delete one revision. `revisions` is the full family ordered by
        version descending; `previous` is the highest version below `form`.
        When `form` was latest, the latest flag moves to `previous`.
        """
        raise NotImplementedError

    def publish_form(
        self,
        *,
        original: Form,
        form: Form,
        demote_original: Optional[Form] = None,
        demote: Optional[Form] = None,
    ) -> Form:
        """
        Persist `form` as published. When another revision was published,
        `demote` (checked against `demote_original`) is written in the same
        atomic step so two published revisions are never observable.
        """
        raise NotImplementedError

    def unpublish_form(self, *, original: Form, form: Form) -> Form:
        raise NotImplementedError

    def increment_form_stat(self, *, form: Form, stat: str) -> Form:
        """Atomic +1 on one revision's `views` or `submissions` counter."""
        raise NotImplementedError


class SubmissionStorageOperations:
    def get_submission(
        self,
        *,
        tenant: str,
        locale: str,
        form_id: str,
        id: str,
    ) -> Optional[Submission]:
        raise NotImplementedError

    def list_submissions(
        self,
        *,
        tenant: str,
        locale: str,
        form_id: str,
        sort: SortSpec,
        limit: int,
        after: Optional[str] = None,
        id_in: Optional[Sequence[str]] = None,
    ) -> Tuple[List[Submission], ListMeta]:
        """Keyset page of a family's submissions (form_id = family id)."""
        raise NotImplementedError

    def create_submission(self, *, form: Form, submission: Submission) -> Submission:
        raise NotImplementedError

    def update_submission(
        self,
        *,
        form: Form,
        original: Submission,
        submission: Submission,
    ) -> Submission:
        raise NotImplementedError

    def delete_submission(self, *, form: Form, submission: Submission) -> Submission:
        raise NotImplementedError


class StorageOperations(
    SystemStorageOperations,
    SettingsStorageOperations,
    FormStorageOperations,
    SubmissionStorageOperations,
):
    """Complete port. Backends subclass this and implement every group."""

    name = "abstract"

    def close(self) -> None:
        """Release backend resources. Optional."""
