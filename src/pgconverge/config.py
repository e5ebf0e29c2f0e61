"""
Configuration system for pgconverge using Pydantic.
"""

import os
import re
from pathlib import Path
from typing import Any, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .database.connection import ConnectionConfig
from .definitions import TableSpec
from .exceptions import ConfigurationError


class SearchConfig(BaseModel):
    """Full-text search configuration."""

    language: str = Field("english", description="Text search configuration name")
    index_method: Literal["GIN", "GIST"] = Field(
        "GIN", description="Default fulltext index method"
    )

    @field_validator("language")
    @classmethod
    def validate_language(cls, v: str) -> str:
        # Interpolated into trigger DDL as pg_catalog.<language>
        if not re.match(r"^[a-z_][a-z0-9_]*$", v):
            raise ValueError(f"Invalid text search configuration name: {v}")
        return v

    @field_validator("index_method", mode="before")
    @classmethod
    def upper_method(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


class SchemaManagementConfig(BaseModel):
    """Schema management configuration."""

    dialect: str = Field("postgresql", description="Codec/synthesizer implementation")
    mode: Literal["execute", "dry_run"] = Field(
        "execute", description="Run statements or only report them"
    )
    default_schema: str = Field("public", description="Schema reconciled into")
    schema_as_database: bool = Field(
        False, description="Emulate logical databases as schemas of one database"
    )
    identifier_max_length: int = Field(
        63, ge=16, le=63, description="Maximum identifier length in bytes"
    )
    transactional: bool = Field(
        False, description="Wrap a whole reconciliation run in one transaction"
    )
    stop_on_error: bool = Field(
        False, description="Stop a batch at the first table that fails"
    )
    repair_table_suffixes: List[str] = Field(
        default_factory=lambda: ["_Live", "_versions"],
        description="Companion tables repaired alongside enum changes",
    )
    obsolete_prefix: str = Field("_obsolete_", description="Prefix for retired tables")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        "INFO", description="Log level"
    )
    format: str = Field(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )
    file: Optional[str] = Field(None, description="Log file path")


class PgConvergeConfig(BaseSettings):
    """Main pgconverge configuration."""

    debug: bool = Field(False, description="Enable debug mode")

    connection: Optional[ConnectionConfig] = Field(None, description="Database connection")
    search: SearchConfig = Field(
        default_factory=SearchConfig, description="Full-text search configuration"
    )
    schema_management: SchemaManagementConfig = Field(
        default_factory=SchemaManagementConfig,
        description="Schema management configuration",
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )
    tables: List[TableSpec] = Field(default_factory=list, description="Declared tables")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PGCONVERGE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "PgConvergeConfig":
        """Load configuration from a YAML file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}

            data = cls._expand_env_vars(data)

            return cls(**data)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}")
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

    @classmethod
    def _expand_env_vars(cls, data: Any) -> Any:
        """Recursively expand environment variables in configuration data."""
        if isinstance(data, dict):
            return {k: cls._expand_env_vars(v) for k, v in data.items()}
        elif isinstance(data, list):
            return [cls._expand_env_vars(item) for item in data]
        elif isinstance(data, str):
            return os.path.expandvars(data)
        else:
            return data

    @property
    def dry_run(self) -> bool:
        return self.schema_management.mode == "dry_run"

    def get_table(self, name: str) -> TableSpec:
        """Get a declared table by name."""
        for table in self.tables:
            if table.name == name:
                return table
        raise ConfigurationError(f"Table '{name}' is not declared")

    def require_connection(self) -> ConnectionConfig:
        if self.connection is None:
            raise ConfigurationError("No database connection configured")
        return self.connection

    def validate_config(self) -> None:
        """Validate the entire configuration for consistency."""
        seen = set()
        for table in self.tables:
            if table.name in seen:
                raise ConfigurationError(f"Table '{table.name}' is declared more than once")
            seen.add(table.name)

            for child in table.options.partitions:
                if any(t.name == child for t in self.tables):
                    raise ConfigurationError(
                        f"Partition '{child}' of {table.name} collides with a declared table"
                    )

    def to_yaml(self, path: Union[str, Path]) -> None:
        """Save configuration to a YAML file."""
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(
                self.model_dump(mode="json", exclude_none=True),
                f,
                default_flow_style=False,
                indent=2,
                sort_keys=False,
            )
