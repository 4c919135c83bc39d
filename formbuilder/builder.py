"""
Form Builder Facade — wires storage, lifecycle events, plugins, captcha
and the permission gate into the four managers.

Usage:
    from formbuilder import create_form_builder, ExecutionContext, execution_context

    builder = create_form_builder()
    with execution_context(ExecutionContext("root", "en-US", "admin-1")):
        form = builder.forms.create_form({"name": "Contact"})
        builder.forms.publish_form(form.id)
        builder.submissions.create_form_submission(form.id, data={"email": "a@b.c"})
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Dict, Optional

from formbuilder.engine.config import FormBuilderConfig, get_config
from formbuilder.engine.context import ExecutionContext
from formbuilder.engine.events import LifecycleEventBus
from formbuilder.engine.logging import LogRetentionManager, init_logging, log, log_system_event
from formbuilder.engine.registry import PluginRegistry
from formbuilder.engine.security import AllowAllGate, PermissionGate
from formbuilder.forms.manager import FormRevisionManager
from formbuilder.forms.stats import StatsCounter
from formbuilder.settings.manager import SettingsManager
from formbuilder.storage.base import StorageOperations
from formbuilder.storage.memory import InMemoryStorageOperations
from formbuilder.submissions.captcha import CaptchaVerifier, ReCaptchaVerifier
from formbuilder.submissions.store import SubmissionStore

logger = logging.getLogger("formbuilder.builder")


class FormBuilder:
    """
    One storage backend, one event bus, one plugin registry, shared by
    forms, stats, submissions and settings.
    """

    def __init__(
        self,
        storage: StorageOperations,
        events: Optional[LifecycleEventBus] = None,
        registry: Optional[PluginRegistry] = None,
        captcha: Optional[CaptchaVerifier] = None,
        gate: Optional[PermissionGate] = None,
        config: Optional[FormBuilderConfig] = None,
    ):
        self.config = config or get_config()
        self.storage = storage
        self.events = events or LifecycleEventBus()
        self.registry = registry or PluginRegistry()
        self.gate = gate or AllowAllGate()

        self.settings = SettingsManager(storage, self.events, self.gate)
        self.captcha = captcha or ReCaptchaVerifier(
            self.settings.current_settings,
            verify_url=self.config.captcha.verify_url,
            timeout=self.config.captcha.timeout_seconds,
        )
        self.forms = FormRevisionManager(storage, self.events, self.gate, self.config)
        self.stats = StatsCounter(storage, self.gate)
        self.submissions = SubmissionStore(
            storage,
            events=self.events,
            registry=self.registry,
            captcha=self.captcha,
            gate=self.gate,
            config=self.config,
        )

        log_config = self.config.logging
        self.retention_manager = LogRetentionManager(
            log_dir=log_config.directory,
            retention_days={
                "execution": log_config.retention.execution_days,
                "security": log_config.retention.security_days,
            },
            compress_after_days=log_config.compress_after_days,
        )

    def default_context(
        self,
        user_id: str,
        display_name: Optional[str] = None,
        user_type: str = "admin",
    ) -> ExecutionContext:
        """ExecutionContext for the configured default tenant and locale."""
        return ExecutionContext(
            tenant=self.config.tenant,
            locale=self.config.locale,
            user_id=user_id,
            display_name=display_name,
            user_type=user_type,
        )

    def cleanup_logs(self, today: Optional[date] = None) -> Dict[str, int]:
        """Apply logging.retention and logging.compress_after_days to the log directory."""
        return self.retention_manager.cleanup(today=today)

    def close(self) -> None:
        close_captcha = getattr(self.captcha, "close", None)
        if close_captcha is not None:
            close_captcha()
        self.storage.close()


def create_storage(config: FormBuilderConfig) -> StorageOperations:
    """Build the backend named by storage.backend."""
    if config.storage.backend == "sql":
        from formbuilder.db.session import init_db_from_config
        from formbuilder.storage.sql import SqlStorageOperations

        return SqlStorageOperations(init_db_from_config(config.storage))
    return InMemoryStorageOperations()


def create_form_builder(config: Optional[FormBuilderConfig] = None, **kwargs) -> FormBuilder:
    """
    Build a FormBuilder from configuration.

    Starts the structured operation log queue when logging.enabled is set.
    Extra keyword arguments (events, registry, captcha, gate) are passed to
    FormBuilder.
    """
    config = config or get_config()
    logging.getLogger("formbuilder").setLevel(config.logging.level.upper())

    if config.logging.enabled:
        queue_config = config.logging.async_queue
        init_logging(
            log_dir=config.logging.directory,
            flush_interval_ms=queue_config.flush_interval_ms,
            flush_batch_size=queue_config.flush_batch_size,
            max_queue_size=queue_config.max_queue_size,
        )

    storage = create_storage(config)
    builder = FormBuilder(storage, config=config, **kwargs)
    log(log_system_event("form_builder_started", details={
        "environment": config.environment,
        "storage": storage.name,
    }))
    logger.info(f"Form builder ready ({config.environment}, storage={storage.name})")
    return builder
