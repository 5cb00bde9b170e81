"""HTTP blueprint repository backed by an ``index.json`` listing."""

from __future__ import annotations

import json
import logging

import httpx

from ..blueprint.errors import RepositoryError
from .base import DEFINITION_BASENAME, DEFINITION_EXTENSIONS, BlueprintRepository, RemoteBlueprint

logger = logging.getLogger(__name__)

INDEX_FILE = "index.json"


class HttpBlueprintRepository(BlueprintRepository):
    provider = "http"

    def __init__(
        self,
        name: str,
        url: str,
        username: str | None = None,
        password: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        super().__init__(name)
        if not url:
            raise RepositoryError(f"url is required for http repository {name}", operation="configure")
        parsed = httpx.URL(url)
        if parsed.scheme not in ("http", "https") or not parsed.host:
            raise RepositoryError(f"invalid url [{url}] for http repository {name}", operation="configure")
        self.url = url if url.endswith("/") else url + "/"
        self.username = username
        self.password = password
        self._transport = transport
        self._client: httpx.Client | None = None

    @property
    def info(self) -> str:
        return f"http repository [{self.name}] at {self.url}"

    def initialize(self) -> None:
        auth = (self.username, self.password or "") if self.username else None
        self._client = httpx.Client(
            base_url=self.url, auth=auth, timeout=30.0, transport=self._transport
        )

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def _get(self, path: str) -> httpx.Response:
        if self._client is None:
            self.initialize()
        try:
            return self._client.get(path)
        except httpx.HTTPError as e:
            raise RepositoryError(
                f"unable to read remote http file [{path}]: {e}", path=path, operation="read"
            ) from e

    def get_file_contents(self, path: str) -> bytes:
        response = self._get(path)
        if response.status_code >= 400:
            raise RepositoryError(
                f"{response.status_code} unable to read remote http file [{path}]",
                path=path, operation="read",
            )
        return response.content

    def _definition_file(self, blueprint: str) -> str | None:
        for ext in DEFINITION_EXTENSIONS:
            filename = DEFINITION_BASENAME + ext
            if self._get(f"{blueprint}/{filename}").status_code == 200:
                return filename
        return None

    def list_blueprints(self) -> dict[str, RemoteBlueprint]:
        try:
            index = json.loads(self.get_file_contents(INDEX_FILE))
        except ValueError as e:
            raise RepositoryError(
                f"invalid {INDEX_FILE} in repository {self.name}: {e}", path=INDEX_FILE, operation="parse"
            ) from e
        if not isinstance(index, list):
            raise RepositoryError(f"{INDEX_FILE} must contain a list of blueprint paths", path=INDEX_FILE)

        blueprints: dict[str, RemoteBlueprint] = {}
        for entry in index:
            path = str(entry).strip("/")
            definition = self._definition_file(path)
            if definition is None:
                logger.debug("[repo] no blueprint definition found for [%s]", path)
                continue
            blueprints[path] = RemoteBlueprint(name=path, path=path, definition_file=definition)
        return blueprints
