"""Unit tests for formbuilder.engine.config — FormBuilderConfig and loading."""

import pytest

import formbuilder.engine.config as cfg_mod
from formbuilder.engine.config import (
    FormBuilderConfig,
    StorageConfig,
    SubmissionsConfig,
    get_config,
    get_environment,
    load_config,
)
from formbuilder.engine.errors import FormBuilderConfigError


class TestFormBuilderConfig:
    """Test FormBuilderConfig Pydantic model."""

    def test_defaults(self):
        cfg = FormBuilderConfig()
        assert cfg.environment == "dev"
        assert cfg.storage.backend == "memory"
        assert cfg.storage.pool_size == 10
        assert cfg.submissions.default_limit == 50
        assert cfg.submissions.max_limit == 1000
        assert cfg.captcha.verify_url.endswith("/siteverify")
        assert cfg.logging.enabled is False
        assert cfg.logging.level == "INFO"

    def test_valid_environments(self):
        for env in ("dev", "staging", "prod"):
            assert FormBuilderConfig(environment=env).environment == env

    def test_invalid_environment(self):
        with pytest.raises(ValueError, match="dev/staging/prod"):
            FormBuilderConfig(environment="test")

    def test_invalid_backend(self):
        with pytest.raises(ValueError, match="memory/sql"):
            StorageConfig(backend="mongo")

    def test_limits_must_be_positive(self):
        with pytest.raises(ValueError):
            SubmissionsConfig(default_limit=0)


class TestLoadConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        cfg = load_config(str(tmp_path / "formbuilder.yaml"))
        assert cfg == FormBuilderConfig()
        assert get_config() is cfg

    def test_load_flat_file(self, tmp_path):
        path = tmp_path / "formbuilder.yaml"
        path.write_text(
            "environment: staging\n"
            "storage:\n"
            "  backend: sql\n"
            "  url: sqlite:///forms.db\n"
            "submissions:\n"
            "  default_limit: 25\n"
        )
        cfg = load_config(str(path))
        assert cfg.environment == "staging"
        assert cfg.storage.backend == "sql"
        assert cfg.storage.url == "sqlite:///forms.db"
        assert cfg.submissions.default_limit == 25
        assert get_environment() == "staging"

    def test_load_nested_under_formbuilder_key(self, tmp_path):
        path = tmp_path / "formbuilder.yaml"
        path.write_text("formbuilder:\n  tenant: acme\n  locale: de-DE\n")
        cfg = load_config(str(path))
        assert (cfg.tenant, cfg.locale) == ("acme", "de-DE")

    def test_empty_file(self, tmp_path):
        path = tmp_path / "formbuilder.yaml"
        path.write_text("")
        assert load_config(str(path)).environment == "dev"

    def test_invalid_file(self, tmp_path):
        path = tmp_path / "formbuilder.yaml"
        path.write_text("environment: nowhere\n")
        with pytest.raises(FormBuilderConfigError) as exc_info:
            load_config(str(path))
        assert exc_info.value.context["config_path"] == str(path)

    def test_auto_discovery(self, tmp_path, monkeypatch):
        (tmp_path / "formbuilder.yaml").write_text("environment: prod\n")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        monkeypatch.chdir(nested)
        cfg_mod._config = None
        assert get_config().environment == "prod"
