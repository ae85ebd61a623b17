"""Configuration management for pgstruct."""

import configparser
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from pgstruct.exceptions import ConfigError

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def load_profile(profile: str = "DEFAULT", path: Optional[Path] = None) -> dict[str, str]:
    """Load settings from ~/.pgstruct.cfg.

    Args:
        profile: Profile (section) name to load (default: "DEFAULT")
        path: Alternative file location

    Returns:
        Dict with any of source, target, target_dsn, schemas, log_level

    Raises:
        ConfigError: If the profile doesn't exist in the file
    """
    cfg_path = path or Path.home() / ".pgstruct.cfg"
    if not cfg_path.exists():
        return {}

    config = configparser.ConfigParser()
    config.read(cfg_path)

    if profile != "DEFAULT" and profile not in config:
        available = config.sections() or ["DEFAULT"]
        raise ConfigError(
            f"Profile '{profile}' not found in {cfg_path}. "
            f"Available profiles: {', '.join(available)}"
        )

    section = config[profile]
    keys = ("source", "target", "target_dsn", "schemas", "allow_destructive", "log_level")
    return {key: section[key].strip() for key in keys if key in section}


def parse_bool(value: str, name: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigError(f"Invalid boolean for {name}: {value!r}")


def parse_schema_list(value: str) -> list[str]:
    return [s.strip() for s in value.split(",") if s.strip()]


@dataclass
class Config:
    """Configuration for pgstruct."""

    source: str = "schema"
    target: Optional[str] = None
    target_dsn: Optional[str] = None
    schemas: list[str] = field(default_factory=list)
    allow_destructive: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(
        cls,
        *,
        source: Optional[str] = None,
        target: Optional[str] = None,
        target_dsn: Optional[str] = None,
        schemas: Optional[list[str]] = None,
        allow_destructive: Optional[bool] = None,
        log_level: Optional[str] = None,
        profile: Optional[str] = None,
    ) -> "Config":
        """Load configuration from ~/.pgstruct.cfg, env vars, with CLI overrides.

        Priority (highest to lowest):
        1. Explicit parameters (CLI args)
        2. Environment variables
        3. ~/.pgstruct.cfg profile
        4. Defaults
        """
        profile_cfg = {}
        profile_name = profile or os.environ.get("PGSTRUCT_PROFILE", "DEFAULT")
        try:
            profile_cfg = load_profile(profile_name)
        except ConfigError:
            if profile is not None:
                raise

        def resolve(explicit, env_keys, cfg_key=None):
            if explicit is not None:
                return explicit
            for env_key in env_keys:
                env_val = os.environ.get(env_key)
                if env_val is not None:
                    return env_val
            if cfg_key and cfg_key in profile_cfg:
                return profile_cfg[cfg_key]
            return None

        schemas_value = resolve(schemas, ["PGSTRUCT_SCHEMAS"], "schemas")
        if isinstance(schemas_value, str):
            schemas_value = parse_schema_list(schemas_value)

        destructive_value = resolve(
            allow_destructive, ["PGSTRUCT_ALLOW_DESTRUCTIVE"], "allow_destructive"
        )
        if isinstance(destructive_value, str):
            destructive_value = parse_bool(destructive_value, "PGSTRUCT_ALLOW_DESTRUCTIVE")

        return cls(
            source=resolve(source, ["PGSTRUCT_SOURCE"], "source") or "schema",
            target=resolve(target, ["PGSTRUCT_TARGET"], "target"),
            target_dsn=resolve(
                target_dsn, ["PGSTRUCT_TARGET_DSN", "DATABASE_URL"], "target_dsn"
            ),
            schemas=list(schemas_value or []),
            allow_destructive=bool(destructive_value),
            log_level=(
                resolve(log_level, ["PGSTRUCT_LOG_LEVEL"], "log_level") or "INFO"
            ).upper(),
        )

    def validate_for_db_ops(self) -> None:
        """Validate that all required fields for database operations are present.

        Raises:
            ConfigError: If the target connection string is missing.
        """
        missing = []
        if not self.target_dsn:
            missing.append(
                "target_dsn (use --dsn, PGSTRUCT_TARGET_DSN or DATABASE_URL)"
            )

        if missing:
            raise ConfigError(
                "Missing required configuration:\n  - " + "\n  - ".join(missing)
            )
