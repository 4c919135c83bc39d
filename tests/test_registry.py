"""Unit tests for formbuilder.engine.registry — PluginRegistry."""

import pytest

from formbuilder.engine.errors import FormBuilderNotFoundError
from formbuilder.engine.registry import (
    FIELD_VALIDATOR,
    TRIGGER_HANDLER,
    PluginRegistry,
    RegisteredPlugin,
)


def _required(value, validator):
    return value not in (None, "", [])


class TestRegisteredPlugin:
    def test_ref(self):
        plugin = RegisteredPlugin("required", FIELD_VALIDATOR, _required)
        assert plugin.ref == "field_validator:required"
        assert plugin.metadata == {}


class TestPluginRegistry:
    def setup_method(self):
        self.reg = PluginRegistry()

    def test_register_and_resolve_validator(self):
        self.reg.register_validator("required", _required, description="non-empty")
        assert self.reg.get_validator("required") is _required
        assert self.reg.resolve(FIELD_VALIDATOR, "required").metadata == {"description": "non-empty"}
        assert self.reg.count == 1

    def test_namespaces_are_separate(self):
        self.reg.register_validator("email", _required)
        assert self.reg.get_trigger_handler("email") is None

    def test_decorators(self):
        @self.reg.validator("min_length")
        def min_length(value, validator):
            return len(value or "") >= validator["settings"].get("value", 0)

        @self.reg.trigger_handler("webhook")
        def webhook(params):
            params.add_log({"type": "info"})

        assert self.reg.get_validator("min_length") is min_length
        assert self.reg.get_trigger_handler("webhook") is webhook

    def test_replace_keeps_single_entry(self):
        def other(value, validator):
            return True

        self.reg.register_validator("required", _required)
        self.reg.register_validator("required", other)
        assert self.reg.get_validator("required") is other
        assert len(self.reg.get_by_type(FIELD_VALIDATOR)) == 1

    def test_invalid_plugin_type(self):
        with pytest.raises(ValueError):
            self.reg.register(RegisteredPlugin("x", "renderer", _required))

    def test_handler_must_be_callable(self):
        with pytest.raises(TypeError):
            self.reg.register_trigger_handler("webhook", "not-a-function")

    def test_resolve_or_raise(self):
        with pytest.raises(FormBuilderNotFoundError):
            self.reg.resolve_or_raise(TRIGGER_HANDLER, "missing")

    def test_unregister_and_clear(self):
        self.reg.register_validator("required", _required)
        self.reg.register_trigger_handler("webhook", lambda params: None)
        self.reg.unregister(FIELD_VALIDATOR, "required")
        self.reg.unregister(FIELD_VALIDATOR, "never-registered")
        assert self.reg.get_validator("required") is None
        self.reg.clear()
        assert self.reg.count == 0
