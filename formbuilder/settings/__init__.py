"""Form Builder Settings — per tenant/locale settings and system records."""

from formbuilder.settings.models import ReCaptchaSettings, Settings, System

__all__ = ["ReCaptchaSettings", "Settings", "System"]
