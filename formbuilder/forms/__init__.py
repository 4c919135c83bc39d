"""Form Builder Forms — revision models, revision manager, stats counter."""

from formbuilder.forms.models import Form, FormStats, FormStatus

__all__ = ["Form", "FormStats", "FormStatus"]
