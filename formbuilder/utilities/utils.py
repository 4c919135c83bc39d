"""
Form Builder Shared Utilities — common helpers used across the package.
"""

from __future__ import annotations

import re
import unicodedata
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from formbuilder.engine.errors import FormBuilderValidationError

M = TypeVar("M", bound=BaseModel)


def slugify(name: str) -> str:
    """
    Convert a display name to a lowercase, dash-separated slug.

    Examples:
        slugify("Contact Us")        → "contact-us"
        slugify("  Café & Bar! ")    → "cafe-bar"
        slugify("NewsletterSignup")  → "newsletter-signup"
    """
    s = unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode("ascii")
    s = re.sub(r"([a-z0-9])([A-Z])", r"\1-\2", s)
    s = re.sub(r"[^A-Za-z0-9]+", "-", s)
    return s.strip("-").lower()


def utc_now() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (e.g. read back from SQLite)."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_input(model: Type[M], data: Union[M, Mapping[str, Any], None]) -> M:
    """
    Validate a caller payload against a pydantic input model.

    Raises:
        FormBuilderValidationError carrying pydantic's error list.
    """
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(dict(data or {}))
    except ValidationError as e:
        raise FormBuilderValidationError(
            f"Invalid {model.__name__}",
            validation_errors=[
                {"field": ".".join(str(p) for p in err["loc"]), "error": err["msg"]}
                for err in e.errors()
            ],
        ) from e
