"""GitHub-hosted blueprint repository."""

from __future__ import annotations

import logging
import posixpath

import httpx

from ..blueprint.errors import RepositoryError
from .base import BlueprintRepository, RemoteBlueprint, is_definition_file

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"


class GitHubBlueprintRepository(BlueprintRepository):
    provider = "github"

    def __init__(
        self,
        name: str,
        owner: str,
        repo_name: str,
        branch: str = "master",
        token: str | None = None,
        base_url: str = GITHUB_API_BASE,
        transport: httpx.BaseTransport | None = None,
    ):
        super().__init__(name)
        if not owner or not repo_name:
            raise RepositoryError(
                f"owner and repo-name are required for github repository {name}", operation="configure"
            )
        self.owner = owner
        self.repo_name = repo_name
        self.branch = branch or "master"
        self.token = token
        self.base_url = base_url
        self._transport = transport
        self._client: httpx.Client | None = None

    @property
    def info(self) -> str:
        return f"github repository [{self.name}] {self.owner}/{self.repo_name}@{self.branch}"

    def initialize(self) -> None:
        headers = {"Accept": "application/vnd.github+json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        self._client = httpx.Client(
            base_url=self.base_url, headers=headers, timeout=30.0, transport=self._transport
        )

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def _request(self, path: str, **kwargs) -> httpx.Response:
        if self._client is None:
            self.initialize()
        try:
            response = self._client.get(path, **kwargs)
        except httpx.HTTPError as e:
            raise RepositoryError(f"github request [{path}] failed: {e}", path=path, operation="read") from e

        if response.status_code == 401:
            raise RepositoryError(
                f"github token rejected for repository {self.name}", path=path, operation="read"
            )
        if response.status_code >= 400:
            raise RepositoryError(
                f"{response.status_code} unable to read github path [{path}]", path=path, operation="read"
            )
        return response

    def list_blueprints(self) -> dict[str, RemoteBlueprint]:
        response = self._request(
            f"/repos/{self.owner}/{self.repo_name}/git/trees/{self.branch}",
            params={"recursive": "1"},
        )
        listing = response.json()
        tree = listing.get("tree", [])
        if listing.get("truncated"):
            logger.warning("[repo] github tree listing for %s was truncated", self.name)

        blueprints: dict[str, RemoteBlueprint] = {}
        paths: list[str] = []
        for entry in tree:
            if entry.get("type") != "blob":
                continue
            path = entry["path"]
            directory, filename = posixpath.split(path)
            paths.append(path)
            if is_definition_file(filename) and directory not in blueprints:
                blueprints[directory] = RemoteBlueprint(
                    name=directory, path=directory, definition_file=filename
                )

        for directory, blueprint in blueprints.items():
            prefix = f"{directory}/" if directory else ""
            blueprint.files = sorted(
                p for p in paths if p.startswith(prefix) and p != blueprint.definition_path
            )
        return blueprints

    def get_file_contents(self, path: str) -> bytes:
        response = self._request(
            f"/repos/{self.owner}/{self.repo_name}/contents/{path}",
            params={"ref": self.branch},
            headers={"Accept": "application/vnd.github.raw"},
        )
        return response.content
