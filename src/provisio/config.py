"""Configuration for repositories and orchestration servers.

Stored as YAML in ~/.provisio/config.yaml (override with PROVISIO_CONFIG).
Environment variables from a local .env file are loaded first.
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".provisio"
DEFAULT_OUTPUT_DIR = "xebialabs"

DEPLOY_API_VERSION = "xl-deploy/v1"
RELEASE_API_VERSION = "xl-release/v1"


@dataclass
class RepositoryConfig:
    """One blueprint repository entry."""

    name: str
    provider: str = "local"
    url: str | None = None
    path: str | None = None
    owner: str | None = None
    repo_name: str | None = None
    branch: str | None = None
    token: str | None = None
    username: str | None = None
    password: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RepositoryConfig":
        data = {k.replace("-", "_"): v for k, v in data.items()}
        return cls(**data)


@dataclass
class ServerConfig:
    """An orchestration server accepting documents of certain apiVersions."""

    name: str
    url: str
    username: str | None = None
    password: str | None = None
    api_versions: list[str] = field(default_factory=list)
    apply_path: str = "devops-as-code/apply"
    task_path: str = "devops-as-code/task/{task_id}"

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ServerConfig":
        data = {k.replace("-", "_"): v for k, v in data.items()}
        return cls(**data)


def default_servers() -> list[ServerConfig]:
    return [
        ServerConfig(
            name="deploy",
            url="http://localhost:4516/",
            username="admin",
            api_versions=[DEPLOY_API_VERSION],
            apply_path="deployit/devops-as-code/apply",
            task_path="deployit/devops-as-code/task/{task_id}",
        ),
        ServerConfig(
            name="release",
            url="http://localhost:5516/",
            username="admin",
            api_versions=[RELEASE_API_VERSION],
        ),
    ]


@dataclass
class ProvisioConfig:
    """Complete configuration."""

    repositories: list[RepositoryConfig] = field(
        default_factory=lambda: [RepositoryConfig(name="local", provider="local", path="./blueprints")]
    )
    current_repository: str = "local"
    servers: list[ServerConfig] = field(default_factory=default_servers)
    output_dir: str = DEFAULT_OUTPUT_DIR

    def repository(self, name: str | None = None) -> RepositoryConfig:
        """Look up a repository by name, defaulting to the current one."""
        wanted = name or self.current_repository
        for repo in self.repositories:
            if repo.name == wanted:
                return repo
        raise KeyError(f"repository [{wanted}] is not configured")

    def to_dict(self) -> dict[str, Any]:
        return {
            "repositories": [r.to_dict() for r in self.repositories],
            "current-repository": self.current_repository,
            "servers": [s.to_dict() for s in self.servers],
            "output-dir": self.output_dir,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProvisioConfig":
        config = cls()
        if data.get("repositories"):
            config.repositories = [RepositoryConfig.from_dict(r) for r in data["repositories"]]
            config.current_repository = config.repositories[0].name
        if data.get("current-repository"):
            config.current_repository = data["current-repository"]
        if data.get("servers"):
            config.servers = [ServerConfig.from_dict(s) for s in data["servers"]]
        if data.get("output-dir"):
            config.output_dir = data["output-dir"]
        return config


def config_path() -> Path:
    env_path = os.getenv("PROVISIO_CONFIG")
    return Path(env_path).expanduser() if env_path else DEFAULT_CONFIG_DIR / "config.yaml"


def _apply_env(config: ProvisioConfig) -> ProvisioConfig:
    repo_name = os.getenv("PROVISIO_REPOSITORY")
    if repo_name:
        config.current_repository = repo_name

    token = os.getenv("PROVISIO_GITHUB_TOKEN")
    if token:
        for repo in config.repositories:
            if repo.provider == "github" and not repo.token:
                repo.token = token
    return config


def load_config(path: Path | str | None = None, with_env: bool = True) -> ProvisioConfig:
    """Load configuration, falling back to defaults when no file exists.

    With ``with_env`` false the PROVISIO_* overrides are not applied, so the
    result can be saved back without leaking environment tokens into the file.
    """
    load_dotenv()
    file = Path(path) if path else config_path()

    if not file.exists():
        logger.debug("no config file at %s, using defaults", file)
        config = ProvisioConfig()
        return _apply_env(config) if with_env else config

    with open(file) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            detail = " ".join(str(e).split())
            raise ValueError(f"invalid config file {file}: {detail}") from e
    if not isinstance(data, dict):
        raise ValueError(f"config file {file} must contain a YAML mapping")
    try:
        config = ProvisioConfig.from_dict(data)
    except TypeError as e:
        raise ValueError(f"invalid config file {file}: {e}") from e
    return _apply_env(config) if with_env else config


def save_config(config: ProvisioConfig, path: Path | str | None = None) -> Path:
    """Write configuration as YAML with owner-only permissions."""
    file = Path(path) if path else config_path()
    file.parent.mkdir(parents=True, exist_ok=True)
    with open(file, "w") as f:
        yaml.dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)
    os.chmod(file, 0o600)
    return file
