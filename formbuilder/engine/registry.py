"""
Form Builder Plugin Registry — Register and resolve field validators and
trigger handlers by name.

Lookup happens at call time, so plugins registered after a form was created
still apply to its next submission.

Plugin types:
    field_validator  — fn(value, validator: dict) -> bool
    trigger_handler  — fn(params: TriggerHandlerParams) -> None
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger("formbuilder.engine.registry")

FIELD_VALIDATOR = "field_validator"
TRIGGER_HANDLER = "trigger_handler"

PLUGIN_TYPES = frozenset({FIELD_VALIDATOR, TRIGGER_HANDLER})


@dataclass
class RegisteredPlugin:
    """A named validator or trigger handler."""

    name: str                # e.g., "required", "webhook"
    plugin_type: str         # "field_validator" | "trigger_handler"
    handler: Callable
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def ref(self) -> str:
        return f"{self.plugin_type}:{self.name}"


class PluginRegistry:
    """
    In-memory name → function registry, one namespace per plugin type.

    Usage:
        registry = PluginRegistry()

        @registry.validator("required")
        def required(value, validator):
            return value not in (None, "", [])

        registry.get_validator("required")
    """

    def __init__(self):
        self._plugins: Dict[str, Dict[str, RegisteredPlugin]] = {t: {} for t in PLUGIN_TYPES}

    def register(self, plugin: RegisteredPlugin) -> None:
        """Register a plugin, replacing any previous one with the same name."""
        if plugin.plugin_type not in PLUGIN_TYPES:
            raise ValueError(f"Invalid plugin type: {plugin.plugin_type}. Valid: {sorted(PLUGIN_TYPES)}")
        if not callable(plugin.handler):
            raise TypeError(f"Plugin {plugin.ref} handler is not callable")

        namespace = self._plugins[plugin.plugin_type]
        if plugin.name in namespace:
            logger.info(f"Replacing plugin {plugin.ref}")
        namespace[plugin.name] = plugin
        logger.debug(f"Registered: {plugin.ref}")

    def register_validator(self, name: str, fn: Callable, **metadata: Any) -> None:
        self.register(RegisteredPlugin(name, FIELD_VALIDATOR, fn, metadata))

    def register_trigger_handler(self, name: str, fn: Callable, **metadata: Any) -> None:
        self.register(RegisteredPlugin(name, TRIGGER_HANDLER, fn, metadata))

    def validator(self, name: str) -> Callable[[Callable], Callable]:
        """Decorator form of register_validator()."""
        def decorator(fn: Callable) -> Callable:
            self.register_validator(name, fn)
            return fn
        return decorator

    def trigger_handler(self, name: str) -> Callable[[Callable], Callable]:
        """Decorator form of register_trigger_handler()."""
        def decorator(fn: Callable) -> Callable:
            self.register_trigger_handler(name, fn)
            return fn
        return decorator

    def unregister(self, plugin_type: str, name: str) -> None:
        """Remove a plugin. Missing names are ignored."""
        self._plugins.get(plugin_type, {}).pop(name, None)

    def resolve(self, plugin_type: str, name: str) -> Optional[RegisteredPlugin]:
        return self._plugins.get(plugin_type, {}).get(name)

    def resolve_or_raise(self, plugin_type: str, name: str) -> RegisteredPlugin:
        """Resolve or raise FormBuilderNotFoundError."""
        from formbuilder.engine.errors import FormBuilderNotFoundError

        plugin = self.resolve(plugin_type, name)
        if plugin is None:
            raise FormBuilderNotFoundError(
                f"Plugin not registered: {plugin_type}:{name}",
                entity_type=plugin_type,
                entity_id=name,
            )
        return plugin

    def get_validator(self, name: str) -> Optional[Callable]:
        plugin = self.resolve(FIELD_VALIDATOR, name)
        return plugin.handler if plugin else None

    def get_trigger_handler(self, name: str) -> Optional[Callable]:
        plugin = self.resolve(TRIGGER_HANDLER, name)
        return plugin.handler if plugin else None

    def get_by_type(self, plugin_type: str) -> List[RegisteredPlugin]:
        """All plugins of a type, in registration order."""
        return list(self._plugins.get(plugin_type, {}).values())

    @property
    def count(self) -> int:
        return sum(len(ns) for ns in self._plugins.values())

    def clear(self) -> None:
        for namespace in self._plugins.values():
            namespace.clear()
