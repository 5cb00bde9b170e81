"""Blueprint repositories - local directories, HTTP indexes and GitHub."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..blueprint.errors import RepositoryError
from .base import BlueprintRepository, RemoteBlueprint, is_definition_file
from .github import GitHubBlueprintRepository
from .http import HttpBlueprintRepository
from .local import LocalBlueprintRepository

if TYPE_CHECKING:
    from ..config import RepositoryConfig


def create_repository(config: RepositoryConfig) -> BlueprintRepository:
    """Build a repository from its configuration entry."""
    provider = (config.provider or "").lower()
    if provider == "local":
        return LocalBlueprintRepository(config.name, config.path or ".")
    if provider == "http":
        return HttpBlueprintRepository(
            config.name, config.url or "", username=config.username, password=config.password
        )
    if provider == "github":
        return GitHubBlueprintRepository(
            config.name,
            owner=config.owner or "",
            repo_name=config.repo_name or "",
            branch=config.branch or "master",
            token=config.token,
        )
    raise RepositoryError(f"unknown repository provider [{config.provider}] for {config.name}")


__all__ = [
    "BlueprintRepository",
    "GitHubBlueprintRepository",
    "HttpBlueprintRepository",
    "LocalBlueprintRepository",
    "RemoteBlueprint",
    "create_repository",
    "is_definition_file",
]
