"""
Form Builder Test Suite — Shared fixtures and configuration.

Run:  pytest tests/ -v
"""

from __future__ import annotations

import copy

import pytest

from formbuilder.engine.config import FormBuilderConfig
from formbuilder.engine.context import ExecutionContext, execution_context


# ---------------------------------------------------------------------------
# Global state isolation
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolate_globals():
    """Default config (no disk discovery) and no log queue between tests."""
    import formbuilder.engine.config as cfg_mod
    import formbuilder.engine.logging as log_mod

    cfg_mod._config = FormBuilderConfig()
    yield
    cfg_mod._config = None
    log_mod.shutdown_logging()


# ---------------------------------------------------------------------------
# Execution context
# ---------------------------------------------------------------------------

@pytest.fixture
def admin_context():
    return ExecutionContext(tenant="root", locale="en-US", user_id="admin-1", display_name="Admin")


@pytest.fixture
def ctx(admin_context):
    """Bind the admin context for the duration of the test."""
    with execution_context(admin_context) as bound:
        yield bound


# ---------------------------------------------------------------------------
# Storage backends
# ---------------------------------------------------------------------------

@pytest.fixture
def memory_storage():
    from formbuilder.storage.memory import InMemoryStorageOperations

    return InMemoryStorageOperations()


@pytest.fixture
def sql_storage(tmp_path):
    from formbuilder.db.session import init_db
    from formbuilder.storage.sql import SqlStorageOperations

    factory = init_db(f"sqlite:///{tmp_path / 'formbuilder.db'}", create_tables=True)
    storage = SqlStorageOperations(factory)
    yield storage
    storage.close()


@pytest.fixture(params=["memory", "sql"])
def storage(request):
    """Every storage-relevant test runs against both backends."""
    return request.getfixturevalue(f"{request.param}_storage")


@pytest.fixture
def builder(storage, ctx):
    from formbuilder.builder import FormBuilder

    return FormBuilder(storage)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

CONTACT_FIELDS = [
    {
        "id": "f1",
        "field_id": "email",
        "type": "text",
        "name": "email",
        "label": "Email",
        "validation": [{"name": "required", "message": "Email is required"}],
    },
    {
        "id": "f2",
        "field_id": "message",
        "type": "text",
        "name": "message",
        "label": "Message",
    },
]


@pytest.fixture
def contact_fields():
    return copy.deepcopy(CONTACT_FIELDS)


@pytest.fixture
def published_form(builder, contact_fields):
    """A published contact form with an email + message field."""
    form = builder.forms.create_form({"name": "Contact"})
    builder.forms.update_form(form.id, {
        "fields": contact_fields,
        "layout": [["f1"], ["f2"]],
    })
    return builder.forms.publish_form(form.id)
