"""
Form Builder Database Models — SQLAlchemy tables for the SQL storage backend.

Tables:
1. fb_forms        — Form revisions (one row per revision)
2. fb_submissions  — Submissions with their embedded revision snapshot
3. fb_settings     — Per tenant + locale settings
4. fb_system       — Per tenant installed version

Family invariants enforced by the database:
- (tenant, locale, form_id, version) is unique
- at most one row per family has published = true (partial unique index)
- at most one row per family has latest = true (partial unique index)
"""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    JSON,
    String,
    UniqueConstraint,
    text,
)

from formbuilder.db.base import Base, TimestampMixin


# ---------------------------------------------------------------------------
# 1. Form revisions
# ---------------------------------------------------------------------------

class FormRecord(Base, TimestampMixin):
    __tablename__ = "fb_forms"

    tenant = Column(String(100), primary_key=True)
    locale = Column(String(20), primary_key=True)
    id = Column(String(100), primary_key=True)
    form_id = Column(String(64), nullable=False, index=True)
    version = Column(Integer, nullable=False)
    name = Column(String(100), nullable=False)
    slug = Column(String(255), nullable=False)
    locked = Column(Boolean, default=False, nullable=False)
    published = Column(Boolean, default=False, nullable=False)
    published_on = Column(DateTime(timezone=True), nullable=True)
    status = Column(String(20), default="draft", nullable=False)
    latest = Column(Boolean, default=False, nullable=False)
    created_by = Column(JSON, nullable=False)
    owned_by = Column(JSON, nullable=False)
    fields = Column(JSON, nullable=False, default=list)
    layout = Column(JSON, nullable=False, default=list)
    settings = Column(JSON, nullable=False, default=dict)
    triggers = Column(JSON, nullable=True)
    stat_submissions = Column(Integer, default=0, nullable=False)
    stat_views = Column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant", "locale", "form_id", "version", name="uq_fb_forms_version"),
        Index(
            "uq_fb_forms_published",
            "tenant", "locale", "form_id",
            unique=True,
            sqlite_where=text("published = 1"),
            postgresql_where=text("published"),
        ),
        Index(
            "uq_fb_forms_latest",
            "tenant", "locale", "form_id",
            unique=True,
            sqlite_where=text("latest = 1"),
            postgresql_where=text("latest"),
        ),
        CheckConstraint(
            "status IN ('draft', 'published', 'unpublished')",
            name="ck_fb_forms_status",
        ),
        CheckConstraint("version >= 1", name="ck_fb_forms_version"),
    )

    def __repr__(self) -> str:
        return f"<FormRecord(id='{self.id}', version={self.version}, status='{self.status}')>"


# ---------------------------------------------------------------------------
# 2. Submissions
# ---------------------------------------------------------------------------

class SubmissionRecord(Base, TimestampMixin):
    __tablename__ = "fb_submissions"

    tenant = Column(String(100), primary_key=True)
    locale = Column(String(20), primary_key=True)
    id = Column(String(64), primary_key=True)
    form_id = Column(String(64), nullable=False, index=True)
    revision_id = Column(String(100), nullable=False, index=True)
    owned_by = Column(JSON, nullable=True)
    data = Column(JSON, nullable=False, default=dict)
    meta = Column(JSON, nullable=False, default=dict)
    form = Column(JSON, nullable=False)
    logs = Column(JSON, nullable=False, default=list)

    __table_args__ = (
        Index("ix_fb_submissions_family_created", "tenant", "locale", "form_id", "created_on"),
    )

    def __repr__(self) -> str:
        return f"<SubmissionRecord(id='{self.id}', revision_id='{self.revision_id}')>"


# ---------------------------------------------------------------------------
# 3. Settings
# ---------------------------------------------------------------------------

class SettingsRecord(Base):
    __tablename__ = "fb_settings"

    tenant = Column(String(100), primary_key=True)
    locale = Column(String(20), primary_key=True)
    domain = Column(String(255), nullable=True)
    recaptcha = Column(JSON, nullable=False, default=dict)


# ---------------------------------------------------------------------------
# 4. System
# ---------------------------------------------------------------------------

class SystemRecord(Base):
    __tablename__ = "fb_system"

    tenant = Column(String(100), primary_key=True)
    version = Column(String(50), nullable=True)
