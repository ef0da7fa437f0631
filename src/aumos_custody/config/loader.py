"""Custody configuration loader with Pydantic v2 validation.

Loads and validates a ``custody.yaml`` file into a typed
:class:`CustodyConfig` object.  Unknown keys are allowed to support future
schema additions without breakage.

Example
-------
>>> loader = ConfigLoader()
>>> config = loader.load_string("storage: {backend: sql, url: 'sqlite:///custody.db'}")
>>> config.storage.backend
'sql'
"""
from __future__ import annotations

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from aumos_custody.pagination import DEFAULT_LIMIT, MAX_LIMIT

DEFAULT_CONFIG_FILE = Path("custody.yaml")


class StorageConfig(BaseModel):
    """Configuration for the custody store."""

    model_config = {"extra": "allow"}

    backend: Literal["memory", "sql"] = Field(default="memory")
    url: str = Field(default="sqlite:///custody.db")
    echo: bool = Field(default=False)


class AuditConfig(BaseModel):
    """Configuration for the audit trail."""

    model_config = {"extra": "allow"}

    enabled: bool = Field(default=True)
    log_path: Path | None = Field(default=Path("./custody_audit.jsonl"))


class ApiConfig(BaseModel):
    """Configuration for the REST server."""

    model_config = {"extra": "allow"}

    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8080, ge=1024, le=65535)
    default_page_size: int = Field(default=DEFAULT_LIMIT, ge=1)
    max_page_size: int = Field(default=MAX_LIMIT, ge=1, le=MAX_LIMIT)

    @model_validator(mode="after")
    def check_page_sizes(self) -> ApiConfig:
        if self.default_page_size > self.max_page_size:
            raise ValueError("default_page_size cannot exceed max_page_size")
        return self


class LoggingConfig(BaseModel):
    """Configuration for standard-library logging."""

    model_config = {"extra": "allow"}

    level: str = Field(default="INFO")

    @field_validator("level")
    @classmethod
    def validate_level(cls, value: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = value.upper()
        if upper not in valid:
            raise ValueError(f"Unknown log level '{value}'. Valid: {sorted(valid)}")
        return upper


class CustodyConfig(BaseModel):
    """Top-level custody configuration schema.

    Loaded from ``custody.yaml``.  All sections are optional and fall back
    to sensible defaults.
    """

    model_config = {"extra": "allow"}

    version: str = Field(default="1")
    storage: StorageConfig = Field(default_factory=StorageConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


class ConfigLoader:
    """Loads and validates custody YAML configuration."""

    def load(self, config_path: Path) -> CustodyConfig:
        """Load and validate a custody YAML file.

        Parameters
        ----------
        config_path:
            Path to the ``custody.yaml`` file.

        Returns
        -------
        CustodyConfig
            Validated configuration object.

        Raises
        ------
        FileNotFoundError:
            When the config file does not exist.
        ValueError:
            When the YAML content fails Pydantic validation.
        """
        if not config_path.exists():
            raise FileNotFoundError(f"Custody config not found: {config_path}")

        with config_path.open("r", encoding="utf-8") as fh:
            raw: dict[str, object] = yaml.safe_load(fh) or {}

        return CustodyConfig.model_validate(raw)

    def load_string(self, yaml_content: str) -> CustodyConfig:
        """Load and validate a YAML string directly."""
        raw: dict[str, object] = yaml.safe_load(yaml_content) or {}
        return CustodyConfig.model_validate(raw)

    def defaults(self) -> CustodyConfig:
        """Return a default configuration with all defaults applied."""
        return CustodyConfig()
