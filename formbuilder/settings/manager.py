"""
Form Builder Settings Manager — per tenant + locale settings CRUD.

Settings hold the site domain and the reCAPTCHA keys read by
ReCaptchaVerifier. update_settings() creates the record when it does not
exist yet.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Union

from formbuilder.engine.context import get_execution_context
from formbuilder.engine.errors import FormBuilderConflictError, FormBuilderNotFoundError
from formbuilder.engine.events import FormEvent, LifecycleEventBus
from formbuilder.engine.security import SETTINGS_PERMISSION, AllowAllGate, PermissionGate
from formbuilder.settings.models import ReCaptchaSettings, Settings, SettingsInput
from formbuilder.storage.base import StorageOperations
from formbuilder.utilities.utils import parse_input

logger = logging.getLogger("formbuilder.settings.manager")


class SettingsManager:
    def __init__(
        self,
        storage: StorageOperations,
        events: Optional[LifecycleEventBus] = None,
        gate: Optional[PermissionGate] = None,
    ):
        self._storage = storage
        self._events = events or LifecycleEventBus()
        self._gate = gate or AllowAllGate()

    def get_settings(self, throw_on_not_found: bool = False) -> Optional[Settings]:
        ctx = self._gate.check(SETTINGS_PERMISSION, "r")
        settings = self._storage.get_settings(tenant=ctx.tenant, locale=ctx.locale)
        if settings is None and throw_on_not_found:
            raise FormBuilderNotFoundError(
                f"Settings for {ctx.tenant}/{ctx.locale} not found",
                entity_type="settings",
            )
        return settings

    def current_settings(self) -> Optional[Settings]:
        """
        Settings for the active context without a permission check.
        Used as the captcha settings provider for anonymous submitters.
        """
        ctx = get_execution_context()
        if ctx is None:
            return None
        return self._storage.get_settings(tenant=ctx.tenant, locale=ctx.locale)

    def create_settings(self, data: Union[SettingsInput, Mapping[str, Any], None] = None) -> Settings:
        ctx = self._gate.check(SETTINGS_PERMISSION, "w")
        payload = parse_input(SettingsInput, data)
        if self._storage.get_settings(tenant=ctx.tenant, locale=ctx.locale) is not None:
            raise FormBuilderConflictError(
                f"Settings for {ctx.tenant}/{ctx.locale} already exist",
                entity_type="settings",
                operation="create",
            )

        settings = Settings(
            tenant=ctx.tenant,
            locale=ctx.locale,
            domain=payload.domain,
            recaptcha=payload.recaptcha or ReCaptchaSettings(),
        )
        self._events.publish_before(FormEvent.BEFORE_SETTINGS_CREATE, settings=settings)
        created = self._storage.create_settings(settings=settings)
        self._events.publish_after(FormEvent.AFTER_SETTINGS_CREATE, result=created, settings=created)
        logger.info(f"Settings created for {ctx.tenant}/{ctx.locale}")
        return created

    def update_settings(self, data: Union[SettingsInput, Mapping[str, Any]]) -> Settings:
        ctx = self._gate.check(SETTINGS_PERMISSION, "w")
        payload = parse_input(SettingsInput, data)
        original = self._storage.get_settings(tenant=ctx.tenant, locale=ctx.locale)
        if original is None:
            return self.create_settings(payload)

        changes = {}
        if "domain" in payload.model_fields_set:
            changes["domain"] = payload.domain
        if payload.recaptcha is not None:
            changes["recaptcha"] = payload.recaptcha.model_copy()
        settings = original.model_copy(deep=True, update=changes)

        self._events.publish_before(
            FormEvent.BEFORE_SETTINGS_UPDATE, settings=settings, original=original,
        )
        updated = self._storage.update_settings(original=original, settings=settings)
        self._events.publish_after(
            FormEvent.AFTER_SETTINGS_UPDATE, result=updated, settings=updated, original=original,
        )
        return updated

    def delete_settings(self) -> bool:
        ctx = self._gate.check(SETTINGS_PERMISSION, "d")
        settings = self._storage.get_settings(tenant=ctx.tenant, locale=ctx.locale)
        if settings is None:
            raise FormBuilderNotFoundError(
                f"Settings for {ctx.tenant}/{ctx.locale} not found",
                entity_type="settings",
            )

        self._events.publish_before(FormEvent.BEFORE_SETTINGS_DELETE, settings=settings)
        self._storage.delete_settings(settings=settings)
        self._events.publish_after(FormEvent.AFTER_SETTINGS_DELETE, result=True, settings=settings)
        logger.info(f"Settings deleted for {ctx.tenant}/{ctx.locale}")
        return True
