"""
Configuration

Two config surfaces:
1) `config/default.yaml`
2) Environment variables, prefix ATTENDCHAIN_, nested with "__"
   (e.g. ATTENDCHAIN_LEDGER__DIFFICULTY=3)
"""

from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

from .errors import ConfigError


class LedgerConfig(BaseModel):
    """Proof-of-work settings shared by every chain."""

    difficulty: int = 4

    @field_validator('difficulty')
    @classmethod
    def difficulty_in_range(cls, v: int) -> int:
        if not 1 <= v <= 64:
            raise ValueError("difficulty must be between 1 and 64 hex characters")
        return v


class StorageConfig(BaseModel):
    data_dir: Path = Path("data")


class LoggingConfig(BaseModel):
    level: str = "INFO"


class Config(BaseSettings):
    """Root configuration."""

    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"env_prefix": "ATTENDCHAIN_", "env_nested_delimiter": "__"}

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Environment overrides YAML values passed in as init kwargs.
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    @classmethod
    def from_yaml(cls, path: Path) -> 'Config':
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        try:
            raw = yaml.safe_load(path.read_text()) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Config file is not valid YAML: {path}") from exc
        if not isinstance(raw, dict):
            raise ConfigError(f"Config file must contain a mapping: {path}")
        return cls(**raw)

    @classmethod
    def from_repo_defaults(cls, repo_root: Optional[Path] = None) -> 'Config':
        root = repo_root or Path.cwd()
        return cls.from_yaml(root / "config" / "default.yaml")
