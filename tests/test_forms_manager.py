"""Tests for formbuilder.forms.manager — revision lifecycle on both storage backends."""

import pytest

from formbuilder.builder import FormBuilder
from formbuilder.engine.errors import (
    FormBuilderConflictError,
    FormBuilderHookError,
    FormBuilderInvariantError,
    FormBuilderNotFoundError,
    FormBuilderRevisionLockedError,
    FormBuilderSecurityError,
    FormBuilderTransitionError,
    FormBuilderValidationError,
)
from formbuilder.engine.events import FormEvent
from formbuilder.forms.manager import assert_family_invariants
from formbuilder.forms.models import FormStatus


def _published(revisions):
    return [r.id for r in revisions if r.published]


class TestCreateForm:
    def test_new_form_defaults(self, builder):
        form = builder.forms.create_form({"name": "Contact"})
        assert form.version == 1
        assert form.locked is False
        assert form.published is False
        assert form.published_on is None
        assert form.status == FormStatus.DRAFT
        assert form.id == f"{form.form_id}#0001"
        assert form.slug == f"contact-{form.form_id}"
        assert form.settings == {"layout": {"renderer": "default"}}
        assert form.stats.views == 0 and form.stats.submissions == 0
        assert form.created_by.id == "admin-1"
        assert form.owned_by.display_name == "Admin"

    def test_stamps_context_tenant_and_locale(self, builder):
        form = builder.forms.create_form({"name": "Contact"})
        assert (form.tenant, form.locale) == ("root", "en-US")

    def test_empty_name_rejected(self, builder):
        with pytest.raises(FormBuilderValidationError) as exc_info:
            builder.forms.create_form({"name": ""})
        assert exc_info.value.validation_errors[0]["field"] == "name"

    def test_unknown_key_rejected(self, builder):
        with pytest.raises(FormBuilderValidationError):
            builder.forms.create_form({"name": "Contact", "published": True})

    def test_requires_execution_context(self, memory_storage):
        builder = FormBuilder(memory_storage)
        with pytest.raises(FormBuilderSecurityError):
            builder.forms.create_form({"name": "Contact"})

    def test_bare_form_id_resolves_latest(self, builder):
        form = builder.forms.create_form({"name": "Contact"})
        builder.forms.create_form_revision(form.id)
        assert builder.forms.get_form(form.form_id).version == 2

    def test_get_missing_form(self, builder):
        with pytest.raises(FormBuilderNotFoundError):
            builder.forms.get_form("missing#0001")


class TestRevisions:
    def test_revision_clones_content(self, builder, contact_fields):
        v1 = builder.forms.create_form({"name": "Contact"})
        builder.forms.update_form(v1.id, {"fields": contact_fields, "triggers": {"webhook": {"url": "x"}}})

        v2 = builder.forms.create_form_revision(v1.id)
        assert v2.version == 2
        assert v2.id == f"{v1.form_id}#0002"
        assert v2.published is False
        assert v2.locked is False
        assert v2.status == FormStatus.DRAFT
        assert [f.field_id for f in v2.fields] == ["email", "message"]
        assert v2.triggers == {"webhook": {"url": "x"}}
        assert v2.slug == v1.slug

    def test_revision_from_older_numbers_after_latest(self, builder):
        v1 = builder.forms.create_form({"name": "Contact"})
        builder.forms.create_form_revision(v1.id)
        v3 = builder.forms.create_form_revision(v1.id)
        assert v3.version == 3

    def test_versions_strictly_increasing(self, builder):
        v1 = builder.forms.create_form({"name": "Contact"})
        for _ in range(3):
            builder.forms.create_form_revision(v1.id)
        versions = [r.version for r in builder.forms.get_form_revisions(v1.form_id)]
        assert versions == [1, 2, 3, 4]

    def test_revision_resets_stats(self, builder):
        v1 = builder.forms.create_form({"name": "Contact"})
        builder.stats.increment_form_views(v1.id)
        v2 = builder.forms.create_form_revision(v1.id)
        assert v2.stats.views == 0

    def test_revision_of_missing_source(self, builder):
        with pytest.raises(FormBuilderNotFoundError):
            builder.forms.create_form_revision("missing#0001")

    def test_get_form_revisions_of_missing_family(self, builder):
        with pytest.raises(FormBuilderNotFoundError):
            builder.forms.get_form_revisions("missing")


class TestUpdateForm:
    def test_merges_changes(self, builder, contact_fields):
        form = builder.forms.create_form({"name": "Contact"})
        updated = builder.forms.update_form(form.id, {
            "fields": contact_fields,
            "layout": [["f1", "f2"]],
        })
        assert len(updated.fields) == 2
        assert updated.layout == [["f1", "f2"]]
        assert updated.name == "Contact"
        assert updated.saved_on >= form.saved_on
        assert updated.created_on == form.created_on

    def test_rename_recomputes_slug(self, builder):
        form = builder.forms.create_form({"name": "Contact"})
        updated = builder.forms.update_form(form.id, {"name": "Newsletter Signup"})
        assert updated.slug == f"newsletter-signup-{form.form_id}"

    def test_unknown_key_rejected(self, builder):
        form = builder.forms.create_form({"name": "Contact"})
        with pytest.raises(FormBuilderValidationError):
            builder.forms.update_form(form.id, {"version": 7})

    @pytest.mark.parametrize("key", ["name", "fields", "layout", "settings"])
    def test_null_value_rejected(self, builder, key):
        form = builder.forms.create_form({"name": "Contact"})
        with pytest.raises(FormBuilderValidationError) as exc_info:
            builder.forms.update_form(form.id, {key: None})
        assert exc_info.value.validation_errors[0]["field"] == key
        assert builder.forms.get_form(form.id).name == "Contact"

    def test_null_triggers_clears_them(self, builder):
        form = builder.forms.create_form({"name": "Contact"})
        builder.forms.update_form(form.id, {"triggers": {"webhook": {"url": "x"}}})
        assert builder.forms.update_form(form.id, {"triggers": None}).triggers is None

    def test_extra_field_keys_preserved(self, builder):
        form = builder.forms.create_form({"name": "Contact"})
        updated = builder.forms.update_form(form.id, {"fields": [{
            "id": "f1", "field_id": "age", "type": "number", "name": "age",
            "renderer": {"name": "slider"},
        }]})
        assert updated.fields[0].model_dump()["renderer"] == {"name": "slider"}
        assert builder.forms.get_form(form.id).fields[0].model_dump()["renderer"] == {"name": "slider"}

    def test_published_revision_is_locked(self, builder):
        form = builder.forms.create_form({"name": "Contact"})
        builder.forms.publish_form(form.id)
        with pytest.raises(FormBuilderRevisionLockedError):
            builder.forms.update_form(form.id, {"name": "Other"})

    def test_unpublished_revision_stays_locked(self, builder):
        form = builder.forms.create_form({"name": "Contact"})
        builder.forms.publish_form(form.id)
        builder.forms.unpublish_form(form.id)
        with pytest.raises(FormBuilderRevisionLockedError):
            builder.forms.update_form(form.id, {"name": "Other"})


class TestPublication:
    def test_publish_unpublish_scenario(self, builder):
        v1 = builder.forms.create_form({"name": "Contact"})
        v2 = builder.forms.create_form_revision(v1.id)
        assert v2.version == 2 and v2.published is False

        published = builder.forms.publish_form(v2.id)
        assert published.published is True
        assert published.locked is True
        assert published.status == FormStatus.PUBLISHED
        assert published.published_on is not None
        assert builder.forms.get_form(v1.id).published is False

        unpublished = builder.forms.unpublish_form(v2.id)
        assert unpublished.published is False
        assert unpublished.published_on is None
        assert unpublished.locked is True
        assert unpublished.status == FormStatus.UNPUBLISHED

    def test_publishing_sibling_demotes_current(self, builder):
        v1 = builder.forms.create_form({"name": "Contact"})
        v2 = builder.forms.create_form_revision(v1.id)
        builder.forms.publish_form(v1.id)
        builder.forms.publish_form(v2.id)

        revisions = builder.forms.get_form_revisions(v1.form_id)
        assert _published(revisions) == [v2.id]
        demoted = revisions[0]
        assert demoted.status == FormStatus.UNPUBLISHED
        assert demoted.published_on is None
        assert demoted.locked is True

    def test_at_most_one_published_through_sequence(self, builder):
        v1 = builder.forms.create_form({"name": "Contact"})
        v2 = builder.forms.create_form_revision(v1.id)
        v3 = builder.forms.create_form_revision(v1.id)
        for target in (v1, v3, v2, v1, v1):
            builder.forms.publish_form(target.id)
            assert len(_published(builder.forms.get_form_revisions(v1.form_id))) == 1

    def test_republish_refreshes_published_on(self, builder):
        form = builder.forms.create_form({"name": "Contact"})
        first = builder.forms.publish_form(form.id)
        second = builder.forms.publish_form(form.id)
        assert second.published is True
        assert second.published_on >= first.published_on

    def test_republish_after_unpublish(self, builder):
        form = builder.forms.create_form({"name": "Contact"})
        builder.forms.publish_form(form.id)
        builder.forms.unpublish_form(form.id)
        again = builder.forms.publish_form(form.id)
        assert again.status == FormStatus.PUBLISHED

    def test_unpublish_draft_is_invalid(self, builder):
        form = builder.forms.create_form({"name": "Contact"})
        with pytest.raises(FormBuilderTransitionError) as exc_info:
            builder.forms.unpublish_form(form.id)
        assert exc_info.value.from_status == "draft"

    def test_published_lookups(self, builder):
        v1 = builder.forms.create_form({"name": "Contact"})
        v2 = builder.forms.create_form_revision(v1.id)
        builder.forms.publish_form(v1.id)

        assert builder.forms.get_latest_published_form_revision(v1.form_id).id == v1.id
        assert builder.forms.get_published_form_revision_by_id(v1.id).id == v1.id
        with pytest.raises(FormBuilderNotFoundError):
            builder.forms.get_published_form_revision_by_id(v2.id)

    def test_no_published_revision(self, builder):
        form = builder.forms.create_form({"name": "Contact"})
        with pytest.raises(FormBuilderNotFoundError):
            builder.forms.get_latest_published_form_revision(form.form_id)


class TestDeletion:
    def test_delete_form_removes_every_revision(self, builder):
        v1 = builder.forms.create_form({"name": "Contact"})
        v2 = builder.forms.create_form_revision(v1.id)
        assert builder.forms.delete_form(v1.id) is True

        for revision_id in (v1.id, v2.id, v1.form_id):
            with pytest.raises(FormBuilderNotFoundError):
                builder.forms.get_form(revision_id)

    def test_delete_latest_recomputes_latest(self, builder):
        v1 = builder.forms.create_form({"name": "Contact"})
        v2 = builder.forms.create_form_revision(v1.id)
        v3 = builder.forms.create_form_revision(v1.id)

        builder.forms.delete_form_revision(v3.id)
        assert builder.forms.get_form(v1.form_id).id == v2.id
        items, _ = builder.forms.list_forms()
        assert [f.id for f in items] == [v2.id]

    def test_delete_middle_revision_keeps_latest(self, builder):
        v1 = builder.forms.create_form({"name": "Contact"})
        v2 = builder.forms.create_form_revision(v1.id)
        v3 = builder.forms.create_form_revision(v1.id)

        builder.forms.delete_form_revision(v2.id)
        assert builder.forms.get_form(v1.form_id).id == v3.id
        assert [r.version for r in builder.forms.get_form_revisions(v1.form_id)] == [1, 3]

    def test_next_revision_after_deleting_latest(self, builder):
        v1 = builder.forms.create_form({"name": "Contact"})
        v2 = builder.forms.create_form_revision(v1.id)
        builder.forms.delete_form_revision(v2.id)
        assert builder.forms.create_form_revision(v1.id).version == 2

    def test_delete_only_revision_deletes_family(self, builder):
        form = builder.forms.create_form({"name": "Contact"})
        builder.forms.delete_form_revision(form.id)
        with pytest.raises(FormBuilderNotFoundError):
            builder.forms.get_form(form.form_id)

    def test_delete_published_leaves_family_unpublished(self, builder):
        v1 = builder.forms.create_form({"name": "Contact"})
        v2 = builder.forms.create_form_revision(v1.id)
        builder.forms.publish_form(v2.id)

        builder.forms.delete_form_revision(v2.id)
        assert _published(builder.forms.get_form_revisions(v1.form_id)) == []
        with pytest.raises(FormBuilderNotFoundError):
            builder.forms.get_latest_published_form_revision(v1.form_id)


class TestListForms:
    def test_lists_latest_revision_per_family(self, builder):
        contact = builder.forms.create_form({"name": "Contact"})
        newsletter = builder.forms.create_form({"name": "Newsletter"})
        contact_v2 = builder.forms.create_form_revision(contact.id)

        items, meta = builder.forms.list_forms(sort="name")
        assert [f.id for f in items] == [contact_v2.id, newsletter.id]
        assert meta.total_count == 2
        assert meta.has_more_items is False

    def test_cursor_pages(self, builder):
        names = ["Alpha", "Bravo", "Charlie"]
        for name in names:
            builder.forms.create_form({"name": name})

        first, meta = builder.forms.list_forms(limit=2, sort="name")
        assert [f.name for f in first] == ["Alpha", "Bravo"]
        assert meta.has_more_items is True

        second, meta = builder.forms.list_forms(limit=2, sort="name", after=meta.cursor)
        assert [f.name for f in second] == ["Charlie"]
        assert meta.has_more_items is False
        assert meta.cursor is None

    def test_unknown_sort_rejected(self, builder):
        with pytest.raises(FormBuilderValidationError):
            builder.forms.list_forms(sort="-stats")


class TestLifecycleTopics:
    def test_before_subscriber_aborts_create(self, builder):
        def veto(event):
            raise PermissionError("frozen")

        builder.events.subscribe(FormEvent.BEFORE_FORM_CREATE, veto)
        with pytest.raises(PermissionError):
            builder.forms.create_form({"name": "Contact"})

        items, meta = builder.forms.list_forms()
        assert items == [] and meta.total_count == 0

    def test_before_subscriber_aborts_publish(self, builder):
        form = builder.forms.create_form({"name": "Contact"})
        builder.events.subscribe(FormEvent.BEFORE_FORM_PUBLISH, lambda e: 1 / 0)
        with pytest.raises(ZeroDivisionError):
            builder.forms.publish_form(form.id)
        assert builder.forms.get_form(form.id).published is False

    def test_before_subscriber_may_modify_form(self, builder):
        @builder.events.on(FormEvent.BEFORE_FORM_CREATE)
        def tag(event):
            event.form.settings["source"] = "import"

        form = builder.forms.create_form({"name": "Contact"})
        assert builder.forms.get_form(form.id).settings["source"] == "import"

    def test_after_subscriber_failure_is_reported_after_commit(self, builder):
        builder.events.subscribe(FormEvent.AFTER_FORM_CREATE, lambda e: 1 / 0)
        with pytest.raises(FormBuilderHookError) as exc_info:
            builder.forms.create_form({"name": "Contact"})

        err = exc_info.value
        assert err.committed is True
        assert builder.forms.get_form(err.result.id).name == "Contact"

    def test_topic_payloads(self, builder):
        seen = {}

        builder.events.subscribe(
            FormEvent.BEFORE_FORM_REVISION_CREATE,
            lambda e: seen.update(create=(e.original.version, e.latest.version, e.form.version)),
        )
        builder.events.subscribe(
            FormEvent.AFTER_FORM_REVISION_DELETE,
            lambda e: seen.update(delete=(e.form.version, e.previous.version, [r.version for r in e.revisions])),
        )

        v1 = builder.forms.create_form({"name": "Contact"})
        builder.forms.create_form_revision(v1.id)
        v3 = builder.forms.create_form_revision(v1.id)
        builder.forms.delete_form_revision(v3.id)

        assert seen["create"] == (1, 2, 3)
        assert seen["delete"] == (3, 2, [3, 2, 1])


class TestConcurrency:
    def test_stale_original_conflicts(self, builder, storage):
        form = builder.forms.create_form({"name": "Contact"})
        stale = builder.forms.get_form(form.id)
        builder.forms.update_form(form.id, {"name": "Renamed"})

        with pytest.raises(FormBuilderConflictError):
            storage.update_form(original=stale, form=stale.model_copy(update={"name": "Lost"}))
        assert builder.forms.get_form(form.id).name == "Renamed"

    def test_counter_changes_do_not_conflict(self, builder):
        form = builder.forms.create_form({"name": "Contact"})
        builder.stats.increment_form_views(form.id)
        updated = builder.forms.update_form(form.id, {"name": "Renamed"})
        assert updated.name == "Renamed"
        assert builder.forms.get_form(form.id).stats.views == 1

    def test_stale_latest_conflicts(self, builder, storage):
        v1 = builder.forms.create_form({"name": "Contact"})
        builder.forms.create_form_revision(v1.id)

        duplicate = v1.model_copy(update={"id": f"{v1.form_id}#0002", "version": 2})
        with pytest.raises(FormBuilderConflictError):
            storage.create_form_from(original=v1, latest=v1, form=duplicate)
        assert [r.version for r in builder.forms.get_form_revisions(v1.form_id)] == [1, 2]


class TestFamilyInvariants:
    def test_two_published_revisions(self, builder):
        v1 = builder.forms.create_form({"name": "Contact"})
        v2 = builder.forms.create_form_revision(v1.id)
        broken = [
            v1.model_copy(update={"published": True}),
            v2.model_copy(update={"published": True}),
        ]
        with pytest.raises(FormBuilderInvariantError):
            assert_family_invariants(broken)

    def test_duplicate_versions(self, builder):
        v1 = builder.forms.create_form({"name": "Contact"})
        with pytest.raises(FormBuilderInvariantError):
            assert_family_invariants([v1, v1.model_copy()])

    def test_consistent_family_passes(self, builder):
        v1 = builder.forms.create_form({"name": "Contact"})
        v2 = builder.forms.create_form_revision(v1.id)
        assert_family_invariants([v1, v2])
