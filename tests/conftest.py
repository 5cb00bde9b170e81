"""Shared test fixtures for Provisio test suite."""

import pytest

from provisio.blueprint.errors import RepositoryError
from provisio.repository.base import BlueprintRepository, RemoteBlueprint, is_definition_file

SAMPLE_REPO_NAME = "Test"
SAMPLE_TASK_ID = "task_abc123"


# ============================================================================
# Blueprint Documents
# ============================================================================

SIMPLE_BLUEPRINT = """
apiVersion: blueprints/v2
kind: Blueprint
metadata:
  name: Simple
  instructions: Run provisio apply next
spec:
  parameters:
  - name: Test
    type: Input
    default: lala
    saveInXlvals: true
  - name: Password
    type: SecretInput
    prompt: Password?
  files:
  - path: app.yml.tmpl
  - path: readme.md
"""

COMPOSED_ROOT = """
apiVersion: blueprints/v2
kind: Blueprint
metadata:
  name: Root
spec:
  parameters:
  - name: AppName
    type: Input
    default: shop
    saveInXlvals: true
  - name: UseCluster
    type: Confirm
    default: true
  files:
  - path: root.yml.tmpl
  includeAfter:
  - blueprint: child-after
    includeIf: UseCluster
    parameterOverrides:
    - name: Region
      value: eu-west-1
    fileOverrides:
    - path: x.yml.tmpl
      writeIf: false
  includeBefore:
  - blueprint: child-before
"""

CHILD_BEFORE = """
apiVersion: blueprints/v2
kind: Blueprint
metadata:
  name: Before
spec:
  parameters:
  - name: Owner
    type: Input
    default: team-a
  files:
  - path: before.txt
"""

CHILD_AFTER = """
apiVersion: blueprints/v2
kind: Blueprint
metadata:
  name: After
spec:
  parameters:
  - name: Region
    type: Input
    default: us-east-1
    saveInXlvals: true
  files:
  - path: x.yml.tmpl
  - path: cluster.yml.tmpl
"""


# ============================================================================
# In-memory repository
# ============================================================================


class InMemoryRepository(BlueprintRepository):
    """Repository serving files from a dict of path -> text."""

    provider = "mock"

    def __init__(self, files: dict[str, str], name: str = SAMPLE_REPO_NAME):
        super().__init__(name)
        self.files = files
        self.reads: list[str] = []

    def list_blueprints(self) -> dict[str, RemoteBlueprint]:
        blueprints = {}
        for path in self.files:
            directory, _, filename = path.rpartition("/")
            if is_definition_file(filename):
                blueprints[directory] = RemoteBlueprint(
                    name=directory, path=directory, definition_file=filename
                )
        return blueprints

    def get_file_contents(self, path: str) -> bytes:
        self.reads.append(path)
        if path not in self.files:
            raise RepositoryError(f"file [{path}] not found", path=path, operation="read")
        return self.files[path].encode()


@pytest.fixture
def make_repository():
    """Factory fixture building an in-memory repository."""
    def _create(files: dict[str, str], name: str = SAMPLE_REPO_NAME) -> InMemoryRepository:
        return InMemoryRepository(files, name)
    return _create


@pytest.fixture
def simple_repository(make_repository):
    return make_repository({
        "simple/blueprint.yaml": SIMPLE_BLUEPRINT,
        "simple/app.yml.tmpl": "name: {{ Test }}\npassword: {{ Password }}\n",
        "simple/readme.md": "# Readme\n",
    })


@pytest.fixture
def composed_repository(make_repository):
    return make_repository({
        "root/blueprint.yaml": COMPOSED_ROOT,
        "root/root.yml.tmpl": "app: {{ AppName }}\nowner: {{ Owner }}\n",
        "child-before/blueprint.yml": CHILD_BEFORE,
        "child-before/before.txt": "static content\n",
        "child-after/blueprint.yaml": CHILD_AFTER,
        "child-after/x.yml.tmpl": "never: written\n",
        "child-after/cluster.yml.tmpl": "region: {{ Region }}\n",
    })


@pytest.fixture
def no_ask():
    """Ask function that fails the test if a question is asked."""
    def _ask(var, default, options):
        raise AssertionError(f"unexpected question for {var.key}")
    return _ask


@pytest.fixture
def fake_resolver():
    """Function resolver returning canned results per reference."""
    def _create(results: dict[str, list[str]]):
        def _call(reference: str) -> list[str]:
            return results[reference]
        return _call
    return _create


# ============================================================================
# CLI Testing Fixtures
# ============================================================================

@pytest.fixture
def cli_runner():
    """Create a Typer CLI test runner."""
    from typer.testing import CliRunner
    return CliRunner()


@pytest.fixture
def isolated_config(tmp_path, monkeypatch):
    """Point configuration at an empty temp location."""
    config_file = tmp_path / "config.yaml"
    monkeypatch.setenv("PROVISIO_CONFIG", str(config_file))
    monkeypatch.delenv("PROVISIO_REPOSITORY", raising=False)
    monkeypatch.delenv("PROVISIO_GITHUB_TOKEN", raising=False)
    return config_file


def flat(text: str) -> str:
    """Collapse whitespace so wrapped console output can be matched."""
    return " ".join(text.split())
