"""Local filesystem blueprint repository."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from ..blueprint.errors import RepositoryError
from .base import BlueprintRepository, RemoteBlueprint, is_definition_file

logger = logging.getLogger(__name__)

DEFAULT_IGNORED_DIRS = (".git", ".vscode", ".idea", "__pycache__")


class LocalBlueprintRepository(BlueprintRepository):
    provider = "local"

    def __init__(self, name: str, path: str | Path, ignored_dirs: tuple[str, ...] = DEFAULT_IGNORED_DIRS):
        super().__init__(name)
        self.root = Path(path).expanduser()
        self.ignored_dirs = set(ignored_dirs)

    @property
    def info(self) -> str:
        return f"local repository [{self.name}] at {self.root}"

    def initialize(self) -> None:
        if not self.root.is_dir():
            raise RepositoryError(
                f"local repository directory [{self.root}] does not exist",
                path=str(self.root), operation="initialize",
            )

    def list_blueprints(self) -> dict[str, RemoteBlueprint]:
        blueprints: dict[str, RemoteBlueprint] = {}
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(d for d in dirnames if d not in self.ignored_dirs)
            definition = next((f for f in sorted(filenames) if is_definition_file(f)), None)
            if definition is None:
                continue
            rel = Path(dirpath).relative_to(self.root).as_posix()
            rel = "" if rel == "." else rel
            blueprints[rel] = RemoteBlueprint(name=rel, path=rel, definition_file=definition)
        logger.debug("[repo] found %d blueprints in %s", len(blueprints), self.root)
        return blueprints

    def get_file_contents(self, path: str) -> bytes:
        root = self.root.resolve()
        file = (root / path).resolve()
        if root not in file.parents:
            raise RepositoryError(
                f"path [{path}] is outside of repository {self.name}", path=path, operation="read"
            )
        try:
            return file.read_bytes()
        except OSError as e:
            raise RepositoryError(
                f"unable to read file [{path}] from repository {self.name}: {e}",
                path=path, operation="read",
            ) from e
