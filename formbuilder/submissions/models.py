"""
Form Builder Submission Models — Pydantic definitions for submissions.

A submission embeds an immutable snapshot of the revision it was made
against (id, family, name, version, fields, layout) so later edits to the
form never change what a stored submission meant.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from formbuilder.forms.models import CreatedBy, Form


class SubmissionFormSnapshot(BaseModel):
    """Revision state captured at submission time."""
    id: str = Field(description="Revision id")
    parent: str = Field(description="Family id (form_id)")
    name: str
    version: int
    fields: List[Dict[str, Any]] = Field(default_factory=list)
    layout: List[List[str]] = Field(default_factory=list)

    @classmethod
    def from_form(cls, form: Form) -> "SubmissionFormSnapshot":
        return cls(
            id=form.id,
            parent=form.form_id,
            name=form.name,
            version=form.version,
            fields=[f.model_dump(mode="json") for f in form.fields],
            layout=[list(row) for row in form.layout],
        )


class Submission(BaseModel):
    """A stored form submission."""

    id: str
    tenant: str
    locale: str
    owned_by: Optional[CreatedBy] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    meta: Dict[str, Any] = Field(default_factory=dict)
    form: SubmissionFormSnapshot
    logs: List[Dict[str, Any]] = Field(default_factory=list, description="Append-only trigger traces")
    created_on: datetime
    saved_on: datetime

    def content_dump(self) -> Dict[str, Any]:
        """State compared by optimistic-concurrency checks."""
        return self.model_dump(mode="json")


class SubmissionUpdateInput(BaseModel):
    """data/meta replace the stored values; logs are appended."""

    model_config = ConfigDict(extra="forbid")

    data: Optional[Dict[str, Any]] = None
    meta: Optional[Dict[str, Any]] = None
    logs: Optional[List[Dict[str, Any]]] = None
