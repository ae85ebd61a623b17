"""Utility functions for PostgreSQL operations.

Extracts common DB logic from CLI for reuse and testability.
"""

from typing import Optional

from pgstruct.config import Config
from pgstruct.schema.models import SchemaModel


def build_config_and_validate(
    *,
    target_dsn: Optional[str] = None,
    schemas: Optional[list[str]] = None,
    profile: Optional[str] = None,
) -> Config:
    """Load config from ~/.pgstruct.cfg/env and validate for DB operations.

    Args:
        target_dsn: Connection string (overrides env/config)
        schemas: Schemas to introspect (overrides env/config)
        profile: ~/.pgstruct.cfg profile name

    Returns:
        Config: Validated configuration.

    Raises:
        ConfigError: If required configuration is missing.
    """
    config = Config.from_env(target_dsn=target_dsn, schemas=schemas, profile=profile)
    config.validate_for_db_ops()
    return config


def get_online_model(config: Config) -> SchemaModel:
    """Get the current snapshot from the database via introspection.

    Args:
        config: Validated configuration with DB connection info.

    Returns:
        SchemaModel: Current database structure.

    Raises:
        ConfigError: If DB config is invalid.
        IntrospectionError: If a catalog query fails.
    """
    from pgstruct.postgres.client import PostgresClient
    from pgstruct.schema.introspect import SchemaIntrospector

    config.validate_for_db_ops()

    with PostgresClient(config.target_dsn) as client:
        return SchemaIntrospector(client, config.schemas).introspect()
