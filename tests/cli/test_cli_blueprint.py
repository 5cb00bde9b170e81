"""Tests for 'provisio blueprint', 'blueprints', 'config' and 'version'."""

import json

import pytest

from provisio import __version__
from provisio.cli import app
from provisio.config import ProvisioConfig, RepositoryConfig, save_config

from tests.conftest import SIMPLE_BLUEPRINT, flat


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def blueprint_dir(tmp_path):
    """A local repository holding the 'simple' blueprint."""
    root = tmp_path / "blueprints"
    (root / "simple").mkdir(parents=True)
    (root / "simple" / "blueprint.yaml").write_text(SIMPLE_BLUEPRINT)
    (root / "simple" / "app.yml.tmpl").write_text("name: {{ Test }}\npassword: {{ Password }}\n")
    (root / "simple" / "readme.md").write_text("# Readme\n")
    return root


@pytest.fixture
def answers_file(tmp_path):
    path = tmp_path / "answers.yaml"
    path.write_text("Password: s3cret\n")
    return path


# ============================================================================
# Tests
# ============================================================================

class TestBlueprintCommand:
    """Tests for 'provisio blueprint'."""

    def test_generate_with_defaults(self, cli_runner, isolated_config, blueprint_dir, answers_file, tmp_path):
        out = tmp_path / "out"
        result = cli_runner.invoke(app, [
            "blueprint", "simple",
            "--local", str(blueprint_dir),
            "--use-defaults",
            "--answers", str(answers_file),
            "--output", str(out),
        ])

        assert result.exit_code == 0, result.output
        assert "Blueprint Complete" in result.output
        assert "Run provisio apply next" in flat(result.output)
        assert (out / "app.yml").read_text() == "name: lala\npassword: !value Password\n"
        assert "Test = lala" in (out / "xebialabs" / "values.xlvals").read_text()

    def test_interactive_prompts(self, cli_runner, isolated_config, blueprint_dir, tmp_path):
        out = tmp_path / "out"
        result = cli_runner.invoke(
            app,
            ["blueprint", "simple", "-l", str(blueprint_dir), "-o", str(out)],
            input="custom\nhunter2\n",
        )

        assert result.exit_code == 0, result.output
        assert "Password?" in result.output
        assert (out / "app.yml").read_text().startswith("name: custom\n")
        assert "Password = hunter2" in (out / "xebialabs" / "secrets.xlvals").read_text()

    def test_choose_blueprint_when_name_missing(self, cli_runner, isolated_config, blueprint_dir, answers_file, tmp_path):
        result = cli_runner.invoke(
            app,
            ["blueprint", "-l", str(blueprint_dir), "-d", "-a", str(answers_file), "-o", str(tmp_path / "out")],
            input="1\n",
        )
        assert result.exit_code == 0, result.output
        assert "1. simple" in result.output

    def test_unknown_blueprint(self, cli_runner, isolated_config, blueprint_dir, tmp_path):
        result = cli_runner.invoke(app, ["blueprint", "ghost", "-l", str(blueprint_dir), "-o", str(tmp_path)])
        assert result.exit_code == 1
        assert "blueprint [ghost] not found" in flat(result.output)

    def test_strict_answers(self, cli_runner, isolated_config, blueprint_dir, tmp_path):
        answers = tmp_path / "answers.yaml"
        answers.write_text("Password: x\nUnknown: y\n")
        result = cli_runner.invoke(app, [
            "blueprint", "simple", "-l", str(blueprint_dir), "-a", str(answers), "-s", "-d", "-o", str(tmp_path),
        ])
        assert result.exit_code == 1
        assert "unknown parameters: Unknown" in flat(result.output)

    def test_missing_local_directory(self, cli_runner, isolated_config, tmp_path):
        result = cli_runner.invoke(app, ["blueprint", "x", "-l", str(tmp_path / "missing")])
        assert result.exit_code == 1
        assert "does not exist" in flat(result.output)

    def test_configured_repository(self, cli_runner, isolated_config, blueprint_dir, answers_file, tmp_path):
        save_config(
            ProvisioConfig(
                repositories=[RepositoryConfig(name="team", provider="local", path=str(blueprint_dir))],
                current_repository="team",
            ),
            isolated_config,
        )
        result = cli_runner.invoke(app, [
            "blueprint", "simple", "-d", "-a", str(answers_file), "-o", str(tmp_path / "out"),
        ])
        assert result.exit_code == 0, result.output
        assert (tmp_path / "out" / "readme.md").exists()


class TestBlueprintsCommand:
    """Tests for 'provisio blueprints'."""

    def test_list_json(self, cli_runner, isolated_config, blueprint_dir):
        result = cli_runner.invoke(app, ["blueprints", "-l", str(blueprint_dir), "--json"])
        assert result.exit_code == 0, result.output
        assert json.loads(result.output) == ["simple"]

    def test_list_table(self, cli_runner, isolated_config, blueprint_dir):
        result = cli_runner.invoke(app, ["blueprints", "-l", str(blueprint_dir)])
        assert result.exit_code == 0
        assert "simple" in result.output
        assert "blueprint.yaml" in result.output


class TestConfigCommand:
    """Tests for 'provisio config'."""

    def test_secrets_masked(self, cli_runner, isolated_config):
        save_config(
            ProvisioConfig(repositories=[
                RepositoryConfig(name="gh", provider="github", owner="acme", repo_name="bp", token="ghp_secret"),
            ], current_repository="gh"),
            isolated_config,
        )
        result = cli_runner.invoke(app, ["config", "--json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["repositories"][0]["token"] == "***"
        assert data["current-repository"] == "gh"
        assert "ghp_secret" not in result.output

    def test_table_output(self, cli_runner, isolated_config):
        result = cli_runner.invoke(app, ["config"])
        assert result.exit_code == 0
        assert "Repositories" in result.output
        assert "deploy" in result.output

    def test_malformed_config_file(self, cli_runner, isolated_config):
        isolated_config.write_text("repositories: [\n")
        result = cli_runner.invoke(app, ["config"])

        assert result.exit_code == 1
        assert "could not load configuration: invalid config file" in flat(result.output)

    def test_use_switches_current_repository(self, cli_runner, isolated_config, monkeypatch):
        save_config(
            ProvisioConfig(repositories=[
                RepositoryConfig(name="local", path="."),
                RepositoryConfig(name="gh", provider="github", owner="acme", repo_name="bp"),
            ]),
            isolated_config,
        )
        monkeypatch.setenv("PROVISIO_GITHUB_TOKEN", "ghp_env")
        result = cli_runner.invoke(app, ["config", "--use", "gh"])

        assert result.exit_code == 0, result.output
        assert "Current repository is now gh" in flat(result.output)
        saved = isolated_config.read_text()
        assert "current-repository: gh" in saved
        assert "ghp_env" not in saved

    def test_use_unknown_repository(self, cli_runner, isolated_config):
        result = cli_runner.invoke(app, ["config", "--use", "ghost"])

        assert result.exit_code == 1
        assert "repository [ghost] is not configured" in flat(result.output)
        assert not isolated_config.exists()


def test_version(cli_runner):
    result = cli_runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert f"Provisio v{__version__}" in result.output
