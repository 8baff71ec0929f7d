"""Configuration management with Pydantic Settings + optional YAML."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


def _user_dir(override: str, xdg_var: str, xdg_default: str, windows_var: str, windows_default: str) -> Path:
    """Per-user scopeai directory: ``override`` if set, else the platform convention."""
    env = os.environ.get(override)
    if env:
        return Path(env)
    if sys.platform == "win32":
        return Path(os.environ.get(windows_var) or Path.home() / "AppData" / windows_default) / "scopeai"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "scopeai"
    return Path(os.environ.get(xdg_var) or Path.home() / xdg_default) / "scopeai"


def default_config_dir() -> Path:
    return _user_dir("SCOPEAI_CONFIG_DIR", "XDG_CONFIG_HOME", ".config", "APPDATA", "Roaming")


def default_data_dir() -> Path:
    """Where the SQLite store lives unless ``data_dir`` is configured."""
    return _user_dir("SCOPEAI_DATA_DIR", "XDG_DATA_HOME", ".local/share", "LOCALAPPDATA", "Local")


class LLMConfig(BaseModel):
    default_model: str = "gpt-4o"
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    anthropic_api_key: str = ""
    google_api_key: str = ""
    google_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    max_tokens: int = 2000
    temperature: float = 0.7
    timeout: float = 30.0
    stream_timeout: float = 120.0
    # Exact model id -> provider ("openai", "anthropic", "google"), checked before prefixes
    models: dict[str, str] = Field(default_factory=dict)


class AgentConfig(BaseModel):
    max_tool_rounds: int = 5
    parallel_tools: bool = True
    max_consultation_depth: int = 3
    max_history_messages: int = 20
    max_history_tokens: int = 8_000
    # Domain id -> model id overrides
    domain_models: dict[str, str] = Field(default_factory=dict)


class ClassifierConfig(BaseModel):
    use_llm: bool = False
    model: str = "gpt-4o-mini"
    llm_threshold: float = 0.6
    timeout: float = 5.0


class OrchestratorConfig(BaseModel):
    clarify_threshold: float = 0.5
    max_parallel_steps: int = 3


class ConfirmationConfig(BaseModel):
    ttl_seconds: int = 300


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SCOPEAI_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    llm: LLMConfig = Field(default_factory=LLMConfig)
    agents: AgentConfig = Field(default_factory=AgentConfig)
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    confirmations: ConfirmationConfig = Field(default_factory=ConfirmationConfig)
    data_dir: str = ""
    log_level: str = "INFO"
    log_json: bool = False

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Environment first so SCOPEAI_* wins over values loaded from YAML
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    def get_data_dir(self) -> Path:
        if self.data_dir:
            return Path(self.data_dir)
        return default_data_dir()


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings from env vars, optionally overlaying a YAML config."""
    yaml_data: dict[str, Any] = {}

    # Determine config file path
    if config_path is None:
        config_path = os.environ.get("SCOPEAI_CONFIG")
    if config_path is None:
        default = default_config_dir() / "config.yaml"
        if default.exists():
            config_path = default

    # Load YAML if found
    if config_path is not None:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                yaml_data = yaml.safe_load(f) or {}

    # YAML values arrive as init kwargs; env vars still win (see settings_customise_sources)
    return Settings(**yaml_data)
