"""Tests for include resolution and document merging."""

import pytest

from provisio.blueprint.composition import (
    apply_file_overrides,
    apply_parameter_overrides,
    merge_composed,
    resolve,
)
from provisio.blueprint.errors import CompositionError
from provisio.blueprint.models import TemplateConfig, VarField, Variable, VariableType

from tests.conftest import CHILD_AFTER, CHILD_BEFORE, COMPOSED_ROOT


def _blueprint(name: str, includes: str = "") -> str:
    return (
        "apiVersion: blueprints/v2\n"
        "kind: Blueprint\n"
        "metadata:\n"
        f"  name: {name}\n"
        "spec:\n"
        "  parameters:\n"
        f"  - name: {name}Param\n"
        "    type: Input\n"
        f"{includes}"
    )


class TestResolve:
    """Tests for resolve()."""

    def test_emission_order(self, composed_repository):
        nodes, root = resolve(composed_repository, "root")

        assert [n.name for n in nodes] == ["child-before", "root", "child-after"]
        assert root.metadata.name == "Root"
        assert nodes[0].parent == "root"
        assert nodes[1].parent == ""

    def test_before_include_order(self, make_repository):
        repo = make_repository({
            "a/blueprint.yaml": _blueprint("A", "  includeBefore:\n  - blueprint: b\n  includeAfter:\n  - blueprint: c\n"),
            "b/blueprint.yaml": _blueprint("B"),
            "c/blueprint.yaml": _blueprint("C"),
        })
        nodes, _ = resolve(repo, "a")
        assert [n.name for n in nodes] == ["b", "a", "c"]

    def test_overrides_applied_to_child(self, composed_repository):
        nodes, _ = resolve(composed_repository, "root")
        child = nodes[2]

        region = child.config.variables[0]
        assert region.value == VarField(value="eu-west-1")
        assert region.default == VarField(value="us-east-1")

        x_file = child.config.template_configs[0]
        assert x_file.path == "x.yml.tmpl"
        assert x_file.depends_on == VarField(value="false", bool_val=False)
        assert x_file.full_path == "child-after/x.yml.tmpl"

    def test_include_gate_is_recorded(self, composed_repository):
        nodes, _ = resolve(composed_repository, "root")
        assert nodes[2].gates == [VarField(value="UseCluster")]
        assert nodes[0].gates == []

    def test_nested_gates_propagate(self, make_repository):
        repo = make_repository({
            "a/blueprint.yaml": _blueprint("A", "  includeAfter:\n  - blueprint: b\n    includeIf: Outer\n"),
            "b/blueprint.yaml": _blueprint("B", "  includeAfter:\n  - blueprint: c\n    includeIf: Inner\n"),
            "c/blueprint.yaml": _blueprint("C"),
        })
        nodes, _ = resolve(repo, "a")
        assert nodes[2].name == "c"
        assert [g.value for g in nodes[2].gates] == ["Outer", "Inner"]

    def test_missing_included_blueprint(self, make_repository):
        repo = make_repository({
            "a/blueprint.yaml": _blueprint("A", "  includeAfter:\n  - blueprint: ghost\n"),
        })
        with pytest.raises(CompositionError, match=r"blueprint \[ghost\] not found.*included by blueprint \[a\]"):
            resolve(repo, "a")

    def test_cycle_detection(self, make_repository):
        repo = make_repository({
            "a/blueprint.yaml": _blueprint("A", "  includeAfter:\n  - blueprint: b\n"),
            "b/blueprint.yaml": _blueprint("B", "  includeBefore:\n  - blueprint: a\n"),
        })
        with pytest.raises(CompositionError, match="cyclic blueprint inclusion: a -> b -> a"):
            resolve(repo, "a")

    def test_lists_repository_once(self, composed_repository, monkeypatch):
        calls = []
        original = composed_repository.list_blueprints

        def counting():
            calls.append(1)
            return original()

        monkeypatch.setattr(composed_repository, "list_blueprints", counting)
        resolve(composed_repository, "root")
        assert len(calls) == 1


class TestOverrides:
    """Tests for apply_parameter_overrides() and apply_file_overrides()."""

    def test_parameter_override_replaces_value_and_condition(self):
        original = [Variable(
            name=VarField(value="Test"),
            type=VarField(value="Input"),
            value=VarField(value="a"),
            depends_on=VarField(value="X"),
        )]
        override = Variable(
            name=VarField(value="Test"),
            value=VarField(value="b"),
            depends_on=VarField(value="Y"),
        )

        result = apply_parameter_overrides(original, [override])

        assert result[0].value == VarField(value="b")
        assert result[0].depends_on == VarField(value="Y")
        assert result[0].type == VarField(value="Input")
        # input list is untouched
        assert original[0].value == VarField(value="a")

    def test_unmatched_parameter_override_is_appended(self):
        result = apply_parameter_overrides([], [Variable(name=VarField(value="New"), value=VarField(value="v"))])
        assert result[0].key == "New"
        assert result[0].variable_type == VariableType.INPUT
        assert result[0].label == VarField(value="New")

    def test_file_override(self):
        files = [TemplateConfig(path="a.txt", full_path="bp/a.txt")]
        overrides = [TemplateConfig(path="a.txt", depends_on=VarField.from_bool(False), rename_to=VarField(value="b.txt"))]

        result = apply_file_overrides(files, overrides)

        assert result[0].depends_on == VarField(value="false", bool_val=False)
        assert result[0].rename_to == VarField(value="b.txt")
        assert result[0].full_path == "bp/a.txt"

    def test_unmatched_file_override_warns(self, caplog):
        files = [TemplateConfig(path="a.txt")]
        with caplog.at_level("WARNING"):
            result = apply_file_overrides(files, [TemplateConfig(path="zzz.txt")], "bp")
        assert result == files
        assert "matches no file" in caplog.text


class TestMergeComposed:
    """Tests for merge_composed()."""

    def test_merge(self, composed_repository):
        nodes, _ = resolve(composed_repository, "root")
        merged = merge_composed(nodes)

        assert [v.key for v in merged.variables] == ["Owner", "AppName", "UseCluster", "Region"]
        assert [f.path for f in merged.template_configs] == [
            "before.txt", "root.yml.tmpl", "x.yml.tmpl", "cluster.yml.tmpl",
        ]
        assert merged.metadata.name == "Root"
        assert merged.include == []

    def test_later_variable_wins_in_place(self, make_repository):
        repo = make_repository({
            "a/blueprint.yaml": COMPOSED_ROOT,
            "child-before/blueprint.yaml": CHILD_BEFORE,
            "child-after/blueprint.yaml": CHILD_AFTER.replace(
                "  - name: Region", "  - name: Owner\n    type: Input\n    default: team-b\n  - name: Region"
            ),
        })
        nodes, _ = resolve(repo, "a")
        merged = merge_composed(nodes)

        owners = [v for v in merged.variables if v.key == "Owner"]
        assert len(owners) == 1
        assert owners[0].default == VarField(value="team-b")
        assert merged.variables[0].key == "Owner"

    def test_empty(self):
        with pytest.raises(CompositionError):
            merge_composed([])
