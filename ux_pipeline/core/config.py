"""Application configuration (Pydantic v2). Load from pipeline_config.yml with optional env override."""

import os
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, field_validator

from ux_pipeline.pipeline.budget import DEFAULT_TOKEN_BUDGETS, TokenBudget
from ux_pipeline.pipeline.policy import FallbackPolicy

DEFAULT_DATABASE_URL = "postgresql+psycopg2://localhost/ux_analysis"
DEFAULT_CONFIG_ENV_VAR = "UX_PIPELINE_CONFIG"
ENDPOINT_ENV_VAR = "UX_ANALYSIS_ENDPOINT"
API_KEY_ENV_VAR = "UX_ANALYSIS_API_KEY"
DEFAULT_CONFIG_FILENAME = "pipeline_config.yml"


class Settings(BaseModel):
    """
    Pipeline config loaded from YAML.

    By default, the database_url may be overridden by the DATABASE_URL environment variable
    when loading the default config (but not when an explicit config_path is provided).
    """

    model_config = {"extra": "ignore"}

    database_url: str = DEFAULT_DATABASE_URL
    log_level: str = "INFO"
    forensics_dir: str = "logs/forensics"
    fallback_policy: FallbackPolicy = FallbackPolicy.hard_fail
    vision_backend: str = "mock"
    model_backend: str = "mock"
    analysis_endpoint: str | None = None
    api_key: str | None = None
    ux_analysis_model: str = "gpt-4o"
    synthesis_model: str = "claude-opus-4-20250514"
    token_budgets: dict[str, TokenBudget] = dict(DEFAULT_TOKEN_BUDGETS)
    max_concurrent_runs: int = 4
    stage_max_retries: int = 2
    retry_backoff_seconds: float = 1.0
    retry_backoff_cap_seconds: float = 5.0

    @field_validator("analysis_endpoint", "api_key", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> str | None:
        if v is not None and str(v).strip() != "":
            return str(v).strip()
        return None

    @field_validator("stage_max_retries", "retry_backoff_seconds", "retry_backoff_cap_seconds")
    @classmethod
    def not_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("retry settings cannot be negative")
        return v

    @field_validator("max_concurrent_runs")
    @classmethod
    def at_least_one_run(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_concurrent_runs must be at least 1")
        return v


_config: Settings | None = None


# Environment variable -> Settings field, applied on top of the YAML when loading the default config.
ENV_OVERRIDES = {
    "DATABASE_URL": "database_url",
    ENDPOINT_ENV_VAR: "analysis_endpoint",
    API_KEY_ENV_VAR: "api_key",
}


class ConfigLoader:
    """
    Builds Settings from a YAML file and the process environment.

    YAML token_budgets entries are merged over the built-in budget table, so a config
    only has to list the models it adds or retunes.
    """

    def __init__(self, env: Mapping[str, str] | None = None) -> None:
        self._env: Mapping[str, str] = os.environ if env is None else env

    def _read_yaml(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping at the top level")
        return data

    def _env_overrides(self) -> dict[str, str]:
        return {field: self._env[var] for var, field in ENV_OVERRIDES.items() if self._env.get(var)}

    def load_from_yaml(self, path: Path, apply_env_override: bool) -> Settings:
        data = self._read_yaml(Path(path))
        if data.get("token_budgets"):
            data["token_budgets"] = {**DEFAULT_TOKEN_BUDGETS, **data["token_budgets"]}
        if apply_env_override:
            data.update(self._env_overrides())
        return Settings.model_validate(data)

    def load_default(self) -> Settings:
        """Load UX_PIPELINE_CONFIG (or ./pipeline_config.yml) if present, else defaults; env overrides apply."""
        path = Path(self._env.get(DEFAULT_CONFIG_ENV_VAR) or DEFAULT_CONFIG_FILENAME)
        if path.exists():
            return self.load_from_yaml(path, apply_env_override=True)
        return Settings.model_validate(self._env_overrides())


_loader = ConfigLoader()


def get_config(config_path: str | Path | None = None) -> Settings:
    """
    Return the process-wide Settings.

    An explicit config_path always reloads (without env overrides) and replaces the cached
    value; otherwise the cached Settings is returned, loading the default config on first use.
    """
    global _config
    if config_path is not None:
        _config = _loader.load_from_yaml(Path(config_path), apply_env_override=False)
    elif _config is None:
        _config = _loader.load_default()
    return _config


def reset_config() -> None:
    """Drop the cached Settings so the next get_config() reloads."""
    global _config
    _config = None
