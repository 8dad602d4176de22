"""
Vigil Configuration.

Centralizes default values and resolves layered settings once:
explicit overrides > environment (VIGIL_*) > YAML file > defaults.
"""

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError

from vigil.browser.profile import BrowserProfile
from vigil.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Default LLM Models
DEFAULT_OPENAI_MODEL = "gpt-4o"
DEFAULT_ANTHROPIC_MODEL = "claude-3-5-sonnet-20241022"

# Agent Defaults
DEFAULT_MAX_STEPS = 50
DEFAULT_MAX_RETRIES = 3
DEFAULT_MAX_CONSECUTIVE_FAILURES = 5

DEFAULT_CONFIG_FILENAME = "vigil.yaml"

LLMProvider = Literal["openai", "anthropic"]

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


class LLMSettings(BaseModel):
    """Which provider and model the CLI should build."""

    provider: LLMProvider = "openai"
    model: str | None = None
    temperature: float = 0.0

    def resolved_model(self) -> str:
        if self.model:
            return self.model
        return DEFAULT_ANTHROPIC_MODEL if self.provider == "anthropic" else DEFAULT_OPENAI_MODEL


class VigilSettings(BaseModel):
    """Fully resolved settings."""

    browser: BrowserProfile = Field(default_factory=BrowserProfile)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    # Keyword arguments for AgentConfig
    agent: dict[str, Any] = Field(default_factory=dict)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_file: str | None = None


def load_config(
    overrides: Mapping[str, Any] | None = None,
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> VigilSettings:
    """
    Resolve settings from all layers.

    Args:
        overrides: Explicit values (nested dicts, e.g. {"browser": {"headless": False}})
        config_path: YAML file to read (default: $VIGIL_CONFIG_PATH or ./vigil.yaml)
        env: Environment mapping (default: os.environ)

    Returns:
        VigilSettings

    Raises:
        ConfigurationError: If a file is unreadable or a value is invalid
    """
    env = os.environ if env is None else env

    merged: dict[str, Any] = {}
    path = _resolve_config_path(config_path, env)
    if path is not None:
        _deep_merge(merged, _load_yaml(path))
    _deep_merge(merged, _env_overrides(env))
    if overrides:
        _deep_merge(merged, dict(overrides))

    try:
        return VigilSettings.model_validate(merged)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def _resolve_config_path(config_path: str | Path | None, env: Mapping[str, str]) -> Path | None:
    explicit = config_path or env.get("VIGIL_CONFIG_PATH")
    if explicit:
        path = Path(explicit)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")
        return path

    default = Path(DEFAULT_CONFIG_FILENAME)
    return default if default.exists() else None


def _load_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Could not read config file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    logger.debug(f"Loaded config from {path}")
    return data


def _env_overrides(env: Mapping[str, str]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    browser: dict[str, Any] = {}
    llm: dict[str, Any] = {}
    agent: dict[str, Any] = {}

    if "VIGIL_HEADLESS" in env:
        browser["headless"] = _parse_bool("VIGIL_HEADLESS", env["VIGIL_HEADLESS"])
    if env.get("VIGIL_CDP_URL"):
        browser["cdp_url"] = env["VIGIL_CDP_URL"]
    if "VIGIL_ALLOWED_DOMAINS" in env:
        browser["allowed_domains"] = _parse_list(env["VIGIL_ALLOWED_DOMAINS"]) or None
    if "VIGIL_PERMISSIONS" in env:
        browser["permissions"] = _parse_list(env["VIGIL_PERMISSIONS"])

    if env.get("VIGIL_LLM_PROVIDER"):
        llm["provider"] = env["VIGIL_LLM_PROVIDER"].lower()
    if env.get("VIGIL_LLM_MODEL"):
        llm["model"] = env["VIGIL_LLM_MODEL"]

    if env.get("VIGIL_MAX_STEPS"):
        try:
            agent["max_steps"] = int(env["VIGIL_MAX_STEPS"])
        except ValueError as e:
            raise ConfigurationError(f"VIGIL_MAX_STEPS must be an integer, got {env['VIGIL_MAX_STEPS']!r}") from e

    if env.get("VIGIL_LOG_LEVEL"):
        result["log_level"] = env["VIGIL_LOG_LEVEL"].upper()

    if browser:
        result["browser"] = browser
    if llm:
        result["llm"] = llm
    if agent:
        result["agent"] = agent
    return result


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {raw!r}")


def _parse_list(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


def _deep_merge(base: dict[str, Any], incoming: Mapping[str, Any]) -> dict[str, Any]:
    for key, value in incoming.items():
        if isinstance(value, Mapping) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = dict(value) if isinstance(value, Mapping) else value
    return base
