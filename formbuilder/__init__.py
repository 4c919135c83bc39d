"""
Form Builder — revisioned forms, publication and submissions engine.

Form families hold numbered revisions; at most one revision per family is
published at a time, and published revisions are locked against edits.
Submissions are accepted against the published revision, verified by
captcha, validated by pluggable field validators and paginated with
keyset cursors. Persistence goes through a pluggable StorageOperations
port with in-memory and SQLAlchemy backends.
"""

__version__ = "1.0.0"

from formbuilder.builder import FormBuilder, create_form_builder  # noqa: E402
from formbuilder.engine.context import ExecutionContext, execution_context  # noqa: E402

__all__ = [
    "FormBuilder",
    "create_form_builder",
    "ExecutionContext",
    "execution_context",
]
