"""Tests for blueprint definition parsing."""

import pytest

from provisio.blueprint.errors import BlueprintError, BlueprintSchemaError
from provisio.blueprint.models import TAG_EXPRESSION, TAG_FN, IncludeStage, VarField, VariableType
from provisio.blueprint.serialization import load_answers, parse_blueprint_metadata

from tests.conftest import COMPOSED_ROOT, SIMPLE_BLUEPRINT


def _doc(parameters: str = "", files: str = "", api: str = "blueprints/v2") -> str:
    return (
        f"apiVersion: {api}\n"
        "kind: Blueprint\n"
        "metadata:\n"
        "  name: Test\n"
        "spec:\n"
        f"  parameters:\n{parameters}"
        f"  files:\n{files}"
    )


class TestParseBlueprint:
    """Tests for parse_blueprint_metadata()."""

    def test_simple_blueprint(self):
        config = parse_blueprint_metadata(SIMPLE_BLUEPRINT, "simple")

        assert config.api_version == "blueprints/v2"
        assert config.metadata.name == "Simple"
        assert config.metadata.instructions == "Run provisio apply next"
        assert [v.key for v in config.variables] == ["Test", "Password"]

        test = config.variables[0]
        assert test.variable_type == VariableType.INPUT
        assert test.default == VarField(value="lala")
        assert test.label.value == "Test"
        assert test.save_in_xlvals.bool_val is True

        assert config.variables[1].is_secret
        assert [f.full_path for f in config.template_configs] == [
            "simple/app.yml.tmpl", "simple/readme.md",
        ]

    def test_includes(self):
        config = parse_blueprint_metadata(COMPOSED_ROOT, "root")

        before = config.includes_for(IncludeStage.BEFORE)
        after = config.includes_for(IncludeStage.AFTER)
        assert [i.blueprint for i in before] == ["child-before"]
        assert [i.blueprint for i in after] == ["child-after"]

        include = after[0]
        assert include.depends_on == VarField(value="UseCluster")
        assert include.parameter_overrides[0].key == "Region"
        assert include.parameter_overrides[0].value.value == "eu-west-1"
        assert include.file_overrides[0].path == "x.yml.tmpl"
        assert include.file_overrides[0].depends_on == VarField(value="false", bool_val=False)

    def test_tagged_fields(self):
        raw = _doc(
            "  - name: Region\n"
            "    type: Select\n"
            "    options:\n"
            "    - !fn aws.regions(ecs)\n"
            "    default: !fn aws.regions(ecs)[0]\n"
            "    promptIf: !expression \"UseAWS && true\"\n"
        )
        var = parse_blueprint_metadata(raw).variables[0]
        assert var.options == [VarField(value="aws.regions(ecs)", tag=TAG_FN)]
        assert var.default.tag == TAG_FN
        assert var.depends_on == VarField(value="UseAWS && true", tag=TAG_EXPRESSION)

    def test_option_labels(self):
        raw = _doc(
            "  - name: Size\n"
            "    type: Select\n"
            "    options:\n"
            "    - label: Small\n"
            "      value: s\n"
            "    - 2\n"
        )
        options = parse_blueprint_metadata(raw).variables[0].options
        assert options[0] == VarField(value="s", label="Small")
        assert options[1] == VarField(value="2")

    def test_float_default_formatting(self):
        raw = _doc("  - name: Ratio\n    type: Input\n    default: 1.5\n")
        assert parse_blueprint_metadata(raw).variables[0].default.value == "1.500000"

    @pytest.mark.parametrize("literal,expected", [
        ("1.5", "1.500000"),
        ("-0.25", "-0.250000"),
        ("8080", "8080"),
    ])
    def test_numeric_canonical_form_is_stable(self, literal, expected):
        def default_of(text):
            raw = _doc(f"  - name: Number\n    type: Input\n    default: {text}\n")
            return parse_blueprint_metadata(raw).variables[0].default.value

        first = default_of(literal)
        assert first == expected
        assert default_of(first) == expected
        assert default_of(f"'{first}'") == expected

    def test_metadata_version_stays_text(self):
        raw = _doc().replace("  name: Test\n", "  name: Test\n  version: 1.0\n")
        assert parse_blueprint_metadata(raw).metadata.version == "1.0"


class TestSchemaErrors:
    """Validation failures raised while parsing."""

    def test_invalid_api_version(self):
        with pytest.raises(BlueprintSchemaError, match="api version needs to be blueprints/v2"):
            parse_blueprint_metadata(_doc(api="xl/v9"))

    def test_invalid_kind(self):
        raw = _doc().replace("kind: Blueprint", "kind: Other")
        with pytest.raises(BlueprintSchemaError, match="kind needs to be Blueprint"):
            parse_blueprint_metadata(raw)

    def test_api_version_checked_before_kind(self):
        raw = _doc(api="nope").replace("kind: Blueprint", "kind: Other")
        with pytest.raises(BlueprintSchemaError, match="api version"):
            parse_blueprint_metadata(raw)

    def test_duplicate_parameter_names(self):
        raw = _doc(
            "  - name: Test\n    type: Input\n"
            "  - name: Test\n    type: Confirm\n"
        )
        with pytest.raises(BlueprintSchemaError, match="must be unique"):
            parse_blueprint_metadata(raw)

    def test_select_without_options(self):
        raw = _doc("  - name: Test\n    type: Select\n")
        with pytest.raises(BlueprintSchemaError, match="at least one option field is need to be set"):
            parse_blueprint_metadata(raw)

    def test_missing_type(self):
        raw = _doc("  - name: Test\n")
        with pytest.raises(BlueprintSchemaError, match=r"parameter \[Test\] is missing required fields: \[type\]"):
            parse_blueprint_metadata(raw)

    def test_invalid_type(self):
        raw = _doc("  - name: Test\n    type: Invalid\n")
        with pytest.raises(BlueprintSchemaError, match=r"type \[Invalid\] is not valid for parameter \[Test\]"):
            parse_blueprint_metadata(raw)

    def test_secret_with_literal_default(self):
        raw = _doc("  - name: Pass\n    type: SecretInput\n    default: hunter2\n")
        with pytest.raises(BlueprintSchemaError, match="not allowed to have default value"):
            parse_blueprint_metadata(raw)

    def test_secret_with_function_default_is_allowed(self):
        raw = _doc("  - name: Pass\n    type: SecretInput\n    default: !fn aws.credentials().SecretAccessKey\n")
        assert parse_blueprint_metadata(raw).variables[0].default.tag == TAG_FN

    @pytest.mark.parametrize("path", ["/etc/passwd", "../up.txt", "./here.txt"])
    def test_invalid_file_path(self, path):
        raw = _doc(files=f"  - path: {path}\n")
        with pytest.raises(BlueprintSchemaError, match="cannot start with"):
            parse_blueprint_metadata(raw)

    def test_missing_file_path(self):
        raw = _doc(files="  - writeIf: true\n")
        with pytest.raises(BlueprintSchemaError, match="path is missing"):
            parse_blueprint_metadata(raw)

    def test_unknown_field(self):
        raw = _doc("  - name: Test\n    type: Input\n    colour: red\n")
        with pytest.raises(BlueprintSchemaError, match="unknown field"):
            parse_blueprint_metadata(raw)

    def test_error_carries_blueprint_path(self):
        with pytest.raises(BlueprintSchemaError) as exc_info:
            parse_blueprint_metadata(_doc(api="bad"), "aws/basic")
        assert exc_info.value.blueprint == "aws/basic"

    def test_invalid_yaml(self):
        with pytest.raises(BlueprintSchemaError, match="invalid blueprint YAML"):
            parse_blueprint_metadata("apiVersion: [unclosed")


class TestLegacySchema:
    """Tests for blueprints/v1 definitions."""

    def test_secret_flag_and_inverted_dependency(self):
        raw = _doc(
            "  - name: UseDefaults\n    type: Confirm\n"
            "  - name: Password\n    type: Input\n    secret: true\n"
            "    dependsOnFalse: UseDefaults\n",
            "  - path: only-custom.txt\n    dependsOnFalse: UseDefaults\n",
            api="blueprints/v1",
        )
        config = parse_blueprint_metadata(raw, "legacy")

        password = config.variables[1]
        assert password.variable_type == VariableType.SECRET_INPUT
        assert password.depends_on == VarField(value="UseDefaults", invert_bool=True)
        assert config.template_configs[0].depends_on.invert_bool is True
        assert config.include == []

    def test_depends_on_true(self):
        raw = _doc(
            "  - name: Flag\n    type: Confirm\n"
            "  - name: Name\n    type: Input\n    dependsOnTrue: Flag\n",
            api="blueprints/v1",
        )
        assert parse_blueprint_metadata(raw).variables[1].depends_on == VarField(value="Flag")


class TestLoadAnswers:
    """Tests for load_answers()."""

    def test_flat_mapping(self):
        assert load_answers("Test: lala\nPort: 8080\n") == {"Test": "lala", "Port": 8080}

    def test_empty_file(self):
        assert load_answers("") == {}

    def test_not_a_mapping(self):
        with pytest.raises(BlueprintError, match="must contain a YAML mapping"):
            load_answers("- a\n- b\n")
