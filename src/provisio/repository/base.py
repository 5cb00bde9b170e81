"""Blueprint repository interface."""

from __future__ import annotations

import posixpath
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from ..blueprint.errors import RepositoryError

DEFINITION_BASENAME = "blueprint"
DEFINITION_EXTENSIONS = (".yaml", ".yml")


def is_definition_file(filename: str) -> bool:
    """True for blueprint.yaml / blueprint.yml, ignoring case."""
    stem, ext = posixpath.splitext(posixpath.basename(filename))
    return stem.lower() == DEFINITION_BASENAME and ext.lower() in DEFINITION_EXTENSIONS


@dataclass
class RemoteBlueprint:
    """A blueprint found in a repository, identified by its relative path."""
    name: str
    path: str
    definition_file: str = "blueprint.yaml"
    files: list[str] = field(default_factory=list)

    @property
    def definition_path(self) -> str:
        return posixpath.join(self.path, self.definition_file) if self.path else self.definition_file


class BlueprintRepository(ABC):
    """Source of blueprint definitions and their files."""

    provider = "base"

    def __init__(self, name: str):
        self.name = name

    def initialize(self) -> None:
        """Prepare the repository for use; a no-op unless a backend needs setup."""

    @property
    def info(self) -> str:
        return f"{self.provider} repository [{self.name}]"

    @abstractmethod
    def list_blueprints(self) -> dict[str, RemoteBlueprint]:
        """Map of blueprint path to descriptor."""

    @abstractmethod
    def get_file_contents(self, path: str) -> bytes:
        """Raw bytes of a file, path relative to the repository root."""

    def get_blueprint_definition(self, name: str) -> bytes:
        remote = self.list_blueprints().get(name)
        if remote is None:
            raise RepositoryError(
                f"blueprint [{name}] not found in repository {self.name}",
                path=name, operation="read",
            )
        return self.get_file_contents(remote.definition_path)
