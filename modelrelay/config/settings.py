"""
Runtime settings for modelrelay.

Settings come from an optional YAML file, overlaid by environment
variables (optionally read from a .env file), validated against a
Pydantic schema. Credentials are only ever read from here; nothing is
persisted.

Usage:
    from modelrelay.config.settings import load_settings

    settings = load_settings()                     # env only
    settings = load_settings("config/relay.yaml")  # file + env overlay
    settings = load_settings(env_file=".env")      # .env wins over os.environ

    key = settings.credential_for(ProviderFamily.OPENAI)
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from dotenv import dotenv_values
from pydantic import BaseModel, Field, ValidationError, field_validator

from modelrelay.exceptions import ConfigurationError
from modelrelay.llm.llm_config import DEFAULT_MODEL, ProviderFamily, family_for


# ---------------------------------------------------------------------------
# Environment variable names
# ---------------------------------------------------------------------------

# Checked in order; the first non-empty value wins.
CREDENTIAL_ENV_VARS: dict[ProviderFamily, tuple[str, ...]] = {
    ProviderFamily.OPENAI: ("OPENAI_API_KEY",),
    ProviderFamily.ANTHROPIC: ("ANTHROPIC_API_KEY", "CLAUDE_API_KEY"),
    ProviderFamily.GOOGLE: ("GOOGLE_API_KEY", "GEMINI_API_KEY"),
}

OLLAMA_URL_ENV = "OLLAMA_BASE_URL"
TIMEOUT_ENV = "RELAY_REQUEST_TIMEOUT"
DEFAULT_MODEL_ENV = "RELAY_DEFAULT_MODEL"

# Values shipped in sample .env files; a key equal to one of these is unset.
PLACEHOLDER_CREDENTIALS = frozenset({
    "your_openai_api_key_here",
    "your_anthropic_api_key_here",
    "your_claude_api_key_here",
    "your_google_api_key_here",
    "your_gemini_api_key_here",
})

_FIELD_FOR_FAMILY = {
    ProviderFamily.OPENAI: "openai_api_key",
    ProviderFamily.ANTHROPIC: "anthropic_api_key",
    ProviderFamily.GOOGLE: "google_api_key",
}


def is_placeholder(value: Optional[str]) -> bool:
    """True when a credential is empty or one of the sample placeholders."""
    if value is None:
        return True
    stripped = value.strip()
    return not stripped or stripped.lower() in PLACEHOLDER_CREDENTIALS


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

class RelaySettings(BaseModel):
    """Validated runtime settings for the orchestrator and its adapters."""

    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    google_api_key: Optional[str] = None
    ollama_base_url: str = Field(
        "http://127.0.0.1:11434",
        description="Base URL of the local Ollama server",
    )
    google_base_url: str = Field(
        "https://generativelanguage.googleapis.com/v1beta",
        description="Base URL of the Generative Language REST API",
    )
    request_timeout_seconds: float = Field(
        120.0, description="Global ceiling for one model call, tool round included"
    )
    discovery_timeout_seconds: float = Field(
        10.0, description="Per-provider ceiling for model discovery"
    )
    default_model: str = Field(
        DEFAULT_MODEL,
        description="Model for call_ai without a model id, and for unrecognized ids",
    )

    @field_validator("default_model")
    @classmethod
    def validate_default_model(cls, v: str) -> str:
        v = v.strip()
        if family_for(v) is None:
            raise ValueError(f"default_model {v!r} matches no provider family")
        return v

    @field_validator("request_timeout_seconds", "discovery_timeout_seconds")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"timeout must be positive, got {v}")
        return v

    @field_validator("ollama_base_url", "google_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    def credential_for(self, family: ProviderFamily) -> Optional[str]:
        """
        Return the usable API key for a provider family, or None.

        LOCAL never needs a credential and always returns None; callers
        check ``requires_credential`` on the adapter rather than this value.
        """
        field_name = _FIELD_FOR_FAMILY.get(family)
        if field_name is None:
            return None
        value = getattr(self, field_name)
        if is_placeholder(value):
            return None
        return value.strip()


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def _read_yaml(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        raise ConfigurationError(
            f"Settings file not found: {config_path}",
            config_path=str(config_path),
        )

    try:
        with open(config_path, "r") as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Settings file is not valid YAML: {config_path}",
            config_path=str(config_path),
            details={"error": str(e)},
        ) from e

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigurationError(
            f"Settings file must contain a mapping: {config_path}",
            config_path=str(config_path),
        )
    return raw


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}

    for family, names in CREDENTIAL_ENV_VARS.items():
        for name in names:
            value = environ.get(name)
            if value:
                overrides[_FIELD_FOR_FAMILY[family]] = value
                break

    if environ.get(OLLAMA_URL_ENV):
        overrides["ollama_base_url"] = environ[OLLAMA_URL_ENV]

    if environ.get(DEFAULT_MODEL_ENV):
        overrides["default_model"] = environ[DEFAULT_MODEL_ENV]

    if environ.get(TIMEOUT_ENV):
        raw_timeout = environ[TIMEOUT_ENV]
        try:
            overrides["request_timeout_seconds"] = float(raw_timeout)
        except ValueError as e:
            raise ConfigurationError(
                f"{TIMEOUT_ENV} must be a number of seconds, got {raw_timeout!r}",
                details={"env_var": TIMEOUT_ENV},
            ) from e

    return overrides


def _read_env_file(env_file: Path) -> dict[str, str]:
    if not env_file.exists():
        raise ConfigurationError(
            f"Env file not found: {env_file}",
            config_path=str(env_file),
        )
    return {k: v for k, v in dotenv_values(env_file).items() if v is not None}


def load_settings(
    config_path: Optional[str | Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    env_file: Optional[str | Path] = None,
) -> RelaySettings:
    """
    Load and validate settings.

    Args:
        config_path: Optional YAML file with RelaySettings fields.
        environ: Environment mapping (defaults to os.environ). Values
                 found here override the file.
        env_file: Optional .env file; its values override ``environ``
                  the way ``load_dotenv(override=True)`` would, without
                  touching the process environment.

    Returns:
        Validated RelaySettings instance.

    Raises:
        ConfigurationError: If a file is missing or malformed, or a
            value fails validation.
    """
    raw: dict[str, Any] = {}
    if config_path is not None:
        raw.update(_read_yaml(Path(config_path)))

    env: dict[str, str] = dict(os.environ if environ is None else environ)
    if env_file is not None:
        env.update(_read_env_file(Path(env_file)))

    raw.update(_env_overrides(env))

    try:
        return RelaySettings(**raw)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid relay settings:\n{e}",
            config_path=str(config_path) if config_path else None,
        ) from e
