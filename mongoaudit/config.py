"""Configuration loading helpers."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Mapping

import tomllib

from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigurationError

CONFIG_FILE = Path.home() / ".config" / "mongoaudit" / "config.toml"
DEFAULT_CONNECTION_ENV = "MONGO_URI"

LOG = logging.getLogger(__name__)


class SamplingPolicy(BaseModel):
    """How many documents a probe pulls from each collection."""

    small_threshold: int = Field(default=5, ge=1)
    window: int = Field(default=1, ge=1, le=3)


class RedactionPolicy(BaseModel):
    """Which fields are shown verbatim and how long previews may grow."""

    identity_fields: tuple[str, ...] = ("username", "email", "name")
    masked_fields: tuple[str, ...] = ("password", "passwordHash", "credentials", "secret", "token", "apiKey")
    sample_budget: int = Field(default=100, ge=1)
    full_budget: int = Field(default=80, ge=1)

    def budget_for(self, context: str) -> int:
        """Character budget for the given preview context."""

        if context == "full":
            return self.full_budget
        return self.sample_budget


class AuditConfig(BaseModel):
    """Shape of the configuration file."""

    connection_env: str = DEFAULT_CONNECTION_ENV
    connect_timeout: float = Field(default=10.0, gt=0)
    operation_timeout: float = Field(default=30.0, gt=0)
    max_concurrency: int = Field(default=1, ge=1)
    skip_system_databases: bool = False
    sampling: SamplingPolicy = Field(default_factory=SamplingPolicy)
    redaction: RedactionPolicy = Field(default_factory=RedactionPolicy)

    def with_overrides(self, **updates: object) -> AuditConfig:
        """Return a copy with the non-``None`` top-level values applied."""

        changes = {key: value for key, value in updates.items() if value is not None}
        if not changes:
            return self
        return _validated(self.model_dump() | changes)

    def with_sampling(self, **updates: object) -> AuditConfig:
        """Return a copy with sampling policy changes applied."""

        changes = {key: value for key, value in updates.items() if value is not None}
        if not changes:
            return self
        data = self.model_dump()
        data["sampling"] = data["sampling"] | changes
        return _validated(data)


def load_config(path: Path | None = None) -> AuditConfig:
    """Load configuration from disk; fall back to defaults if missing."""

    config_path = path or CONFIG_FILE
    try:
        with config_path.open("rb") as handle:
            raw = tomllib.load(handle)
    except FileNotFoundError:
        return AuditConfig()
    except (tomllib.TOMLDecodeError, OSError) as exc:
        LOG.warning("Ignoring unreadable config file", extra={"path": str(config_path), "error": str(exc)})
        return AuditConfig()
    return _validated(raw)


def resolve_connection_string(config: AuditConfig, environ: Mapping[str, str] | None = None) -> str:
    """Read the connection string from the environment or fail before any I/O."""

    source = os.environ if environ is None else environ
    value = (source.get(config.connection_env) or "").strip()
    if not value:
        raise ConfigurationError(f"{config.connection_env} is not set; export a MongoDB connection string.")
    return value


def _validated(data: Mapping[str, object]) -> AuditConfig:
    try:
        return AuditConfig.model_validate(data)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
        )
        raise ConfigurationError(f"Invalid configuration: {problems}") from exc


__all__ = [
    "AuditConfig",
    "CONFIG_FILE",
    "DEFAULT_CONNECTION_ENV",
    "RedactionPolicy",
    "SamplingPolicy",
    "load_config",
    "resolve_connection_string",
]
