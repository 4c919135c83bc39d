"""
Form Builder Settings & System Models.

Settings: per tenant + locale (site domain, reCAPTCHA keys).
System: per tenant (installed version).
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class ReCaptchaSettings(BaseModel):
    enabled: bool = False
    site_key: Optional[str] = None
    secret_key: Optional[str] = None


class Settings(BaseModel):
    tenant: str
    locale: str
    domain: Optional[str] = None
    recaptcha: ReCaptchaSettings = Field(default_factory=ReCaptchaSettings)

    def content_dump(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class SettingsInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    domain: Optional[str] = None
    recaptcha: Optional[ReCaptchaSettings] = None


class System(BaseModel):
    tenant: str
    version: Optional[str] = None
