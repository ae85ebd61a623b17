"""Tests for Config module."""

import pytest

from pgstruct.config import Config, load_profile, parse_bool, parse_schema_list
from pgstruct.exceptions import ConfigError

ENV_VARS = (
    "PGSTRUCT_SOURCE",
    "PGSTRUCT_TARGET",
    "PGSTRUCT_TARGET_DSN",
    "DATABASE_URL",
    "PGSTRUCT_SCHEMAS",
    "PGSTRUCT_ALLOW_DESTRUCTIVE",
    "PGSTRUCT_LOG_LEVEL",
    "PGSTRUCT_PROFILE",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate tests from the real environment and ~/.pgstruct.cfg."""
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))
    return tmp_path


class TestConfigDefaults:
    """Test Config default values."""

    def test_config_defaults(self):
        """Config should have sensible defaults."""
        config = Config()
        assert config.source == "schema"
        assert config.target is None
        assert config.target_dsn is None
        assert config.schemas == []
        assert config.allow_destructive is False
        assert config.log_level == "INFO"

    def test_from_env_defaults(self):
        assert Config.from_env() == Config()


class TestConfigFromEnv:
    """Test Config.from_env() loading from environment variables."""

    def test_config_loads_from_env(self, monkeypatch):
        monkeypatch.setenv("PGSTRUCT_SOURCE", "db/schema.yaml")
        monkeypatch.setenv("PGSTRUCT_TARGET", "db/snapshot")
        monkeypatch.setenv("PGSTRUCT_TARGET_DSN", "postgresql://db/app")
        monkeypatch.setenv("PGSTRUCT_SCHEMAS", "app, audit")
        monkeypatch.setenv("PGSTRUCT_ALLOW_DESTRUCTIVE", "yes")
        monkeypatch.setenv("PGSTRUCT_LOG_LEVEL", "debug")

        config = Config.from_env()

        assert config.source == "db/schema.yaml"
        assert config.target == "db/snapshot"
        assert config.target_dsn == "postgresql://db/app"
        assert config.schemas == ["app", "audit"]
        assert config.allow_destructive is True
        assert config.log_level == "DEBUG"

    def test_database_url_fallback(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://fallback/db")
        assert Config.from_env().target_dsn == "postgresql://fallback/db"

        monkeypatch.setenv("PGSTRUCT_TARGET_DSN", "postgresql://primary/db")
        assert Config.from_env().target_dsn == "postgresql://primary/db"

    def test_explicit_args_override_env(self, monkeypatch):
        monkeypatch.setenv("PGSTRUCT_TARGET_DSN", "postgresql://env/db")
        monkeypatch.setenv("PGSTRUCT_SCHEMAS", "env_schema")
        monkeypatch.setenv("PGSTRUCT_ALLOW_DESTRUCTIVE", "true")

        config = Config.from_env(
            target_dsn="postgresql://cli/db", schemas=["cli"], allow_destructive=False
        )

        assert config.target_dsn == "postgresql://cli/db"
        assert config.schemas == ["cli"]
        assert config.allow_destructive is False

    def test_invalid_boolean(self, monkeypatch):
        monkeypatch.setenv("PGSTRUCT_ALLOW_DESTRUCTIVE", "maybe")
        with pytest.raises(ConfigError, match="Invalid boolean"):
            Config.from_env()


class TestConfigProfiles:
    """Test ~/.pgstruct.cfg profiles."""

    def write_cfg(self, home, text: str):
        path = home / ".pgstruct.cfg"
        path.write_text(text)
        return path

    def test_default_profile(self, clean_env):
        self.write_cfg(
            clean_env,
            "[DEFAULT]\ntarget_dsn = postgresql://cfg/db\nschemas = app\n",
        )

        config = Config.from_env()

        assert config.target_dsn == "postgresql://cfg/db"
        assert config.schemas == ["app"]

    def test_named_profile(self, clean_env):
        self.write_cfg(
            clean_env,
            "[DEFAULT]\ntarget_dsn = postgresql://cfg/db\n"
            "[staging]\ntarget_dsn = postgresql://staging/db\nallow_destructive = on\n",
        )

        config = Config.from_env(profile="staging")

        assert config.target_dsn == "postgresql://staging/db"
        assert config.allow_destructive is True

    def test_profile_from_env(self, clean_env, monkeypatch):
        self.write_cfg(clean_env, "[prod]\nlog_level = warning\n")
        monkeypatch.setenv("PGSTRUCT_PROFILE", "prod")

        assert Config.from_env().log_level == "WARNING"

    def test_env_overrides_profile(self, clean_env, monkeypatch):
        self.write_cfg(clean_env, "[DEFAULT]\ntarget_dsn = postgresql://cfg/db\n")
        monkeypatch.setenv("PGSTRUCT_TARGET_DSN", "postgresql://env/db")

        assert Config.from_env().target_dsn == "postgresql://env/db"

    def test_missing_explicit_profile_raises(self, clean_env):
        self.write_cfg(clean_env, "[DEFAULT]\n[dev]\n")

        with pytest.raises(ConfigError, match="Profile 'prod' not found"):
            Config.from_env(profile="prod")

    def test_missing_env_profile_is_ignored(self, clean_env, monkeypatch):
        self.write_cfg(clean_env, "[dev]\n")
        monkeypatch.setenv("PGSTRUCT_PROFILE", "prod")

        assert Config.from_env() == Config()

    def test_load_profile_without_file(self, tmp_path):
        assert load_profile("anything", path=tmp_path / "missing.cfg") == {}

    def test_load_profile_ignores_unknown_keys(self, tmp_path):
        path = tmp_path / "custom.cfg"
        path.write_text("[DEFAULT]\nsource = s.yaml\ncolour = blue\n")

        assert load_profile(path=path) == {"source": "s.yaml"}


class TestConfigValidation:
    """Test validate_for_db_ops."""

    def test_missing_dsn(self):
        with pytest.raises(ConfigError) as exc_info:
            Config().validate_for_db_ops()
        assert "target_dsn" in str(exc_info.value)
        assert "DATABASE_URL" in str(exc_info.value)

    def test_valid(self):
        Config(target_dsn="postgresql://db/app").validate_for_db_ops()


class TestParsers:
    """Test value parsers."""

    @pytest.mark.parametrize("value", ["1", "true", "YES", " on "])
    def test_parse_bool_true(self, value):
        assert parse_bool(value, "X") is True

    @pytest.mark.parametrize("value", ["0", "false", "No", "off", ""])
    def test_parse_bool_false(self, value):
        assert parse_bool(value, "X") is False

    def test_parse_schema_list(self):
        assert parse_schema_list(" a, b ,,c ") == ["a", "b", "c"]
