"""
Configuration loader for MINIFACTORY.
Merges built-in defaults with an optional YAML file and the
environment variables the deployment host sets.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from loguru import logger
from pydantic import BaseModel, Field, ValidationError


class ConfigError(Exception):
    pass


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

class PathsConfig(BaseModel):
    data_dir: Path = Path("/var/lib/miniapp-factory")
    projects_dir: Path | None = None
    lock_dir: Path | None = None
    assignment_file: Path = Path("assignment.json")
    model_settings_file: Path = Path(".aider.model.settings.yml")
    audit_log: Path | None = None


class ModelConfig(BaseModel):
    name: str = "gpt-oss:20b"
    provider: str = "ollama_chat"
    api_base: str = "http://127.0.0.1:11434"

    @property
    def identifier(self) -> str:
        """Model name as aider expects it, e.g. ``ollama_chat/gpt-oss:20b``."""
        return f"{self.provider}/{self.name}"


class ToolsConfig(BaseModel):
    git_prefix: str = ""
    aider_prefix: str = ""
    npm: str = "npm"

    @property
    def git(self) -> str:
        return f"{self.git_prefix}git"

    @property
    def aider(self) -> str:
        return f"{self.aider_prefix}aider"


class RemoteConfig(BaseModel):
    prefix: str = "github:miniapp-factory/"

    def url_for(self, project: str) -> str:
        return f"{self.prefix}{project}"


class EditConfig(BaseModel):
    timeout_seconds: float = Field(default=20 * 60, gt=0)
    app_subdir: str = "mini-app"
    read_file: str = "documentation/index.md"
    edit_file: str = "lib/metadata.ts"
    edit_format: str = "diff"
    capture_output: bool = False


class DeployConfig(BaseModel):
    commit_message: str = "aider chat history"
    git_timeout_seconds: float | None = None


class MinifactoryConfig(BaseModel):
    paths: PathsConfig = Field(default_factory=PathsConfig)
    model: ModelConfig = Field(default_factory=ModelConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    edit: EditConfig = Field(default_factory=EditConfig)
    deploy: DeployConfig = Field(default_factory=DeployConfig)

    # Resolved locations. Relative file names live under data_dir.

    @property
    def data_dir(self) -> Path:
        return self.paths.data_dir

    @property
    def projects_dir(self) -> Path:
        return self.paths.projects_dir or self.data_dir / "projects"

    @property
    def lock_dir(self) -> Path:
        return self.paths.lock_dir or self.data_dir / "locks"

    @property
    def log_dir(self) -> Path:
        return self.data_dir / "logs"

    @property
    def assignment_path(self) -> Path:
        return self.data_dir / self.paths.assignment_file

    @property
    def model_settings_path(self) -> Path:
        return self.data_dir / self.paths.model_settings_file


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"

# Environment variable -> (section, key)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "DATADIR": ("paths", "data_dir"),
    "PROJECTSDIR": ("paths", "projects_dir"),
    "MODEL": ("model", "name"),
    "GIT": ("tools", "git_prefix"),
    "NPM": ("tools", "npm"),
    "AIDER": ("tools", "aider_prefix"),
}


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base."""
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Could not read config {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must be a mapping, got {type(data).__name__}")
    return data


def _env_overrides(environ: dict[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for var, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(var)
        if value is None:
            logger.debug(f"[CONFIG] {var} not set, keeping configured {section}.{key}")
            continue
        overrides.setdefault(section, {})[key] = value
    return overrides


def load_config(
    config_file: Path | None = None,
    environ: dict[str, str] | None = None,
) -> MinifactoryConfig:
    """
    Load config by merging:
      1. Built-in defaults (minifactory/config.yaml)
      2. An optional user config file
      3. Environment variable overrides (DATADIR, PROJECTSDIR, MODEL, GIT, NPM, AIDER)
    """
    base = _read_yaml(_DEFAULT_CONFIG_PATH)

    if config_file:
        if not config_file.exists():
            raise ConfigError(f"Config file not found: {config_file}")
        base = _deep_merge(base, _read_yaml(config_file))

    env = os.environ if environ is None else environ
    base = _deep_merge(base, _env_overrides(dict(env)))

    try:
        return MinifactoryConfig(**base)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
