"""
Typed model configuration with a YAML loader.

A config file maps model names to provider settings::

    default_model: deepseek
    models:
      deepseek:
        provider: openai
        model: deepseek-chat
        api_key_env: DEEPSEEK_API_KEY
        base_url: https://api.deepseek.com/v1
        tools: [get_current_time]

Lookup order for the file itself: ``$MODEL_CLI_CONFIG``, a ``models.yaml``
in the working directory or any parent, then ``~/.model_cli/models.yaml``.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

from modelcli.errors import ConfigError

CONFIG_ENV = "MODEL_CLI_CONFIG"
CONFIG_FILENAME = "models.yaml"


# ---------------------------------------------------------------------------
# Settings dataclasses
# ---------------------------------------------------------------------------

@dataclass
class ModelSettings:
    name: str
    provider: str
    model: str
    api_key_env: str | None = None
    base_url: str | None = None
    system_prompt: str | None = None
    temperature: float | None = None
    max_output_tokens: int | None = None
    extra_headers: dict[str, Any] = field(default_factory=dict)
    extra_body: dict[str, Any] = field(default_factory=dict)
    tools: list[str] = field(default_factory=list)
    # Provider-specific switches that have no first-class field.
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class AppConfig:
    models: dict[str, ModelSettings] = field(default_factory=dict)
    default_model: str | None = None
    path: Path | None = None

    def get_model(self, name: str | None = None) -> ModelSettings:
        """
        Return the settings for *name*, the default model, or the first
        configured model, in that order.
        """
        if not self.models:
            raise ConfigError("No models configured")
        target = name or self.default_model or next(iter(self.models))
        settings = self.models.get(target)
        if settings is None:
            raise ConfigError(f"Unknown model {target}")
        return settings

    @property
    def model_names(self) -> list[str]:
        return list(self.models)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

# Keys accepted in camelCase as well as snake_case.
_ALIASES: dict[str, str] = {
    "apiKeyEnv": "api_key_env",
    "baseUrl": "base_url",
    "systemPrompt": "system_prompt",
    "maxOutputTokens": "max_output_tokens",
    "extraHeaders": "extra_headers",
    "extraBody": "extra_body",
}

_KNOWN_KEYS = {
    "provider", "model", "api_key_env", "base_url", "system_prompt",
    "temperature", "max_output_tokens", "extra_headers", "extra_body", "tools",
}


def _canonical_keys(raw: dict) -> dict:
    out = {str(k): v for k, v in raw.items() if str(k) not in _ALIASES}
    for alias, key in _ALIASES.items():
        if alias in raw and out.get(key) is None:
            out[key] = raw[alias]
    return out


def _normalize_mapping(value: Any, label: str) -> dict:
    if not value:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{label} must be a mapping")
    return {str(k): v for k, v in value.items()}


def _normalize_string_list(value: Any, label: str) -> list[str]:
    if not value:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"{label} must be a list of strings")
    for entry in value:
        if not isinstance(entry, str):
            raise ConfigError(f"{label} must contain only strings")
    return list(value)


def _optional_number(value: Any, cast: type, label: str) -> Any:
    if value is None:
        return None
    try:
        return cast(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{label} must be a number") from exc


def create_model_settings(name: str, raw: dict) -> ModelSettings:
    """Build a :class:`ModelSettings` from one entry of the ``models`` map."""
    if not isinstance(raw, dict):
        raise ConfigError(f"Configuration for {name} must be a mapping")
    data = _canonical_keys(raw)
    if not data.get("provider"):
        raise ConfigError(f"Missing provider for model {name}")
    if not data.get("model"):
        raise ConfigError(f"Missing model for model {name}")

    return ModelSettings(
        name=name,
        provider=str(data["provider"]),
        model=str(data["model"]),
        api_key_env=data.get("api_key_env") or None,
        base_url=data.get("base_url") or None,
        system_prompt=data.get("system_prompt") or None,
        temperature=_optional_number(
            data.get("temperature"), float, f"temperature for {name}"
        ),
        max_output_tokens=_optional_number(
            data.get("max_output_tokens"), int, f"max_output_tokens for {name}"
        ),
        extra_headers=_normalize_mapping(
            data.get("extra_headers"), f"extra_headers for {name}"
        ),
        extra_body=_normalize_mapping(
            data.get("extra_body"), f"extra_body for {name}"
        ),
        tools=_normalize_string_list(data.get("tools"), f"tools for {name}"),
        extra={k: v for k, v in data.items() if k not in _KNOWN_KEYS},
    )


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load_config(config_path: str | Path) -> AppConfig:
    """
    Read and validate a YAML model configuration.

    Raises
    ------
    ConfigError
        If the file is missing or malformed.
    """
    if not config_path:
        raise ConfigError("Config path was not provided")
    path = Path(config_path).expanduser()
    if not path.is_file():
        raise ConfigError(f"Config file {path} does not exist")

    try:
        with path.open("r", encoding="utf-8") as f:
            parsed = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse YAML: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ConfigError("Config file must contain a mapping")

    raw_models = parsed.get("models") or {}
    if not isinstance(raw_models, dict):
        raise ConfigError("models section must be a mapping")

    models = {
        str(name): create_model_settings(str(name), raw)
        for name, raw in raw_models.items()
    }

    default_model = parsed.get("default_model") or parsed.get("defaultModel")
    if default_model and default_model not in models:
        raise ConfigError(
            f"Configured default_model {default_model} was not found in models list"
        )
    return AppConfig(models=models, default_model=default_model, path=path)


def _find_upwards(start: Path) -> Path | None:
    current = start.resolve()
    for directory in (current, *current.parents):
        candidate = directory / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None


def resolve_default_config_path() -> Path:
    """Find the model configuration file in the standard locations."""
    env_path = os.environ.get(CONFIG_ENV)
    if env_path:
        return Path(env_path).expanduser().resolve()
    found = _find_upwards(Path.cwd())
    if found is not None:
        return found
    return Path.home() / ".model_cli" / CONFIG_FILENAME
