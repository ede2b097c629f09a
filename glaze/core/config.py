from collections.abc import Mapping
from functools import lru_cache
from types import ModuleType
from typing import Any, Literal

from fastapi import APIRouter
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import MetaData, Table

from glaze.core.errors import ConfigurationError
from glaze.core.schemas import LoggerOptions

Strategy = Literal["migrate", "push"]

STRATEGIES: tuple[str, ...] = ("migrate", "push")
POSTGRES_URL_PREFIXES: tuple[str, ...] = ("postgres://", "postgresql://")
PRODUCTION = "production"


class Settings(BaseSettings):
    app_name: str = "Glaze"
    environment: str = Field(
        default="development",
        validation_alias=AliasChoices("environment", "ENVIRONMENT", "NODE_ENV"),
    )
    log_level: str = "INFO"

    database_url: str = Field(default="", alias="DATABASE_URL")
    schema_path: str = Field(default="", alias="GLAZE_SCHEMA")
    host: str = "0.0.0.0"
    port: int = 4000

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def is_production(self) -> bool:
        return self.environment == PRODUCTION

    @property
    def resolved_database_url(self) -> str:
        return self.database_url.strip()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def _tables_from(source: Any) -> dict[str, Any]:
    if isinstance(source, MetaData):
        return dict(source.tables)
    if isinstance(source, ModuleType):
        tables: dict[str, Any] = {}
        for value in vars(source).values():
            table = getattr(value, "__table__", value)
            if isinstance(table, Table):
                tables[table.name] = table
        return tables
    if isinstance(source, Mapping):
        return {
            name: getattr(value, "__table__", value)
            for name, value in source.items()
        }
    raise ValueError("schema must be a mapping of table names to tables, a MetaData or a module")


class GlazeConfig(BaseModel):
    """Fully resolved server configuration.

    Produced by :func:`resolve_config` and read once at bootstrap. Input keys
    may use either snake_case or the camelCase names of the config file
    format (``skipMigrationChecks``, ``contentAPIExclude`` ...).
    """

    database: str
    db_schema: dict[str, Table] = Field(validation_alias=AliasChoices("schema", "db_schema"))
    port: int = Field(default=4000, ge=0, le=65535)
    prefix: str = "/api"
    strategy: Strategy = "migrate"
    skip_migration_checks: bool = Field(
        default=False,
        validation_alias=AliasChoices("skip_migration_checks", "skipMigrationChecks"),
    )
    migrations_folder: str = Field(
        default="./migrations",
        validation_alias=AliasChoices("migrations_folder", "migrationsFolder"),
    )
    migrations_table: str = Field(
        default="__drizzle_migrations",
        validation_alias=AliasChoices("migrations_table", "migrationsTable"),
    )
    migrations_schema: str = Field(
        default="drizzle",
        validation_alias=AliasChoices("migrations_schema", "migrationsSchema"),
    )
    content_api_enabled: bool = Field(
        default=True,
        validation_alias=AliasChoices("content_api_enabled", "contentAPIEnabled"),
    )
    content_api_exclude: frozenset[str] = Field(
        default=frozenset(),
        validation_alias=AliasChoices("content_api_exclude", "contentAPIExclude"),
    )
    custom_routes: APIRouter | None = Field(
        default=None,
        validation_alias=AliasChoices("custom_routes", "customRoutes", "routes"),
    )
    logger: LoggerOptions = Field(default_factory=LoggerOptions)

    model_config = ConfigDict(extra="forbid", frozen=True, arbitrary_types_allowed=True)

    @field_validator("db_schema", mode="before")
    @classmethod
    def _collect_tables(cls, value: Any) -> Any:
        return _tables_from(value)

    @field_validator("prefix")
    @classmethod
    def _check_prefix(cls, value: str) -> str:
        if value and not value.startswith("/"):
            raise ValueError('prefix must be empty or start with "/"')
        return value

    @property
    def is_push(self) -> bool:
        return self.strategy == "push"


def _lookup(values: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in values:
            return values[key]
    return None


def _check_required(values: Mapping[str, Any], environment: str) -> None:
    database = values.get("database")
    if not database:
        raise ConfigurationError(
            "Missing required field: database. "
            "Provide a PostgreSQL connection URL (postgres:// or postgresql://).",
            field="database",
        )

    if _lookup(values, "schema", "db_schema") is None:
        raise ConfigurationError(
            "Missing required field: schema. "
            "Provide a mapping of table names to SQLAlchemy tables, a MetaData or a module.",
            field="schema",
        )

    if not isinstance(database, str) or not database.startswith(POSTGRES_URL_PREFIXES):
        raise ConfigurationError(
            f"Invalid database URL: {database!r}. "
            "Glaze requires PostgreSQL; expected a postgres:// or postgresql:// prefix.",
            field="database",
        )

    strategy = values.get("strategy")
    if strategy is not None and strategy not in STRATEGIES:
        raise ConfigurationError(
            f'Invalid strategy: {strategy!r}. Must be "migrate" or "push".',
            field="strategy",
        )

    if strategy == "push" and environment == PRODUCTION:
        raise ConfigurationError(
            "Push strategy is not allowed in production. "
            'Use migrations for production deployments and set strategy to "migrate".',
            field="strategy",
        )


def _field_of(exc: ValidationError) -> str | None:
    errors = exc.errors()
    if not errors or not errors[0].get("loc"):
        return None
    return ".".join(str(part) for part in errors[0]["loc"])


def resolve_config(
    partial: Mapping[str, Any] | GlazeConfig,
    environment: str | None = None,
) -> GlazeConfig:
    """Validate a partial configuration and fill in every default.

    ``environment`` defaults to the process environment from
    :func:`get_settings`. Raises :class:`ConfigurationError` on the first
    problem found; nothing is resolved partially.
    """
    if isinstance(partial, GlazeConfig):
        values: dict[str, Any] = {name: getattr(partial, name) for name in GlazeConfig.model_fields}
    else:
        values = dict(partial)

    if environment is None:
        environment = get_settings().environment
    _check_required(values, environment)

    try:
        return GlazeConfig.model_validate(values)
    except ValidationError as exc:
        field = _field_of(exc)
        detail = exc.errors()[0]["msg"] if exc.errors() else str(exc)
        raise ConfigurationError(f"Invalid {field or 'configuration'}: {detail}", field=field) from exc
