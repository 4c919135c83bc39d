"""
Form Builder Form Models — Pydantic definitions for form revisions and stats.

Form: one revision of a form family (tenant + locale + form_id).
FormStats: counters plus the derived conversion rate.
FormCreateInput / FormUpdateInput: accepted caller payloads.

Revision ids are "{form_id}#{version:04d}", so the family and version can
always be recovered from a revision id alone.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FormStatus(str, Enum):
    """Revision publication status."""
    DRAFT = "draft"
    PUBLISHED = "published"
    UNPUBLISHED = "unpublished"


class CreatedBy(BaseModel):
    """Identity stamped on new revisions and submissions."""
    id: str
    display_name: Optional[str] = None
    type: str = "admin"


OwnedBy = CreatedBy


# ---------------------------------------------------------------------------
# Field definitions
# ---------------------------------------------------------------------------

class FormFieldOption(BaseModel):
    label: Optional[str] = None
    value: Optional[str] = None


class FormFieldValidator(BaseModel):
    """Validator reference resolved by name in the PluginRegistry."""
    name: str
    message: Any = None
    settings: Dict[str, Any] = Field(default_factory=dict)


class FormField(BaseModel):
    """A single form field. Extra keys are kept for renderer plugins."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(description="Stable internal field id")
    field_id: str = Field(description="Key under which submission data is stored")
    type: str = Field(description="Field type, e.g. text, number, select")
    name: str
    label: str = ""
    placeholder_text: Optional[str] = None
    help_text: Optional[str] = None
    options: List[FormFieldOption] = Field(default_factory=list)
    validation: List[FormFieldValidator] = Field(default_factory=list)
    settings: Dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------

class FormStatsCounters(BaseModel):
    """Persisted per-revision counters."""
    submissions: int = Field(default=0, ge=0)
    views: int = Field(default=0, ge=0)


class FormStats(BaseModel):
    """Counters plus the derived conversion rate (never persisted)."""
    submissions: int = 0
    views: int = 0
    conversion_rate: float = 0.0

    @classmethod
    def from_counters(cls, submissions: int, views: int) -> "FormStats":
        rate = submissions / views if views > 0 else 0.0
        return cls(submissions=submissions, views=views, conversion_rate=rate)


# ---------------------------------------------------------------------------
# Form revision
# ---------------------------------------------------------------------------

DEFAULT_FORM_SETTINGS: Dict[str, Any] = {
    "layout": {"renderer": "default"},
}


class Form(BaseModel):
    """
    One revision of a form.

    Only one revision per family may have published=True. A revision becomes
    locked the first time it is published and stays locked afterwards.
    """

    id: str = Field(description="Revision id: {form_id}#{version:04d}")
    form_id: str = Field(description="Family id shared by all revisions")
    tenant: str
    locale: str
    created_by: CreatedBy
    owned_by: CreatedBy
    created_on: datetime
    saved_on: datetime
    name: str = Field(max_length=100)
    slug: str
    version: int = Field(ge=1, description="Strictly increasing within the family")
    locked: bool = False
    published: bool = False
    published_on: Optional[datetime] = None
    status: FormStatus = FormStatus.DRAFT
    fields: List[FormField] = Field(default_factory=list)
    layout: List[List[str]] = Field(default_factory=list)
    settings: Dict[str, Any] = Field(default_factory=dict)
    triggers: Optional[Dict[str, Any]] = None
    stats: FormStatsCounters = Field(default_factory=FormStatsCounters)

    @property
    def family_key(self) -> Tuple[str, str, str]:
        return (self.tenant, self.locale, self.form_id)

    def content_dump(self) -> Dict[str, Any]:
        """State compared by optimistic-concurrency checks (counters excluded)."""
        return self.model_dump(mode="json", exclude={"stats"})


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

class FormCreateInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=100)


class FormUpdateInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    fields: Optional[List[FormField]] = None
    layout: Optional[List[List[str]]] = None
    settings: Optional[Dict[str, Any]] = None
    triggers: Optional[Dict[str, Any]] = None

    @field_validator("name", "fields", "layout", "settings")
    @classmethod
    def reject_null(cls, v: Any) -> Any:
        if v is None:
            raise ValueError("may be omitted but not null")
        return v


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------

def generate_form_id() -> str:
    return uuid.uuid4().hex


def create_revision_id(form_id: str, version: int) -> str:
    return f"{form_id}#{version:04d}"


def parse_identifier(identifier: str) -> Tuple[str, Optional[int]]:
    """
    Split a revision id into (form_id, version).
    A bare family id returns (form_id, None).
    """
    if "#" not in identifier:
        return identifier, None
    form_id, _, version = identifier.partition("#")
    try:
        return form_id, int(version)
    except ValueError:
        return form_id, None
