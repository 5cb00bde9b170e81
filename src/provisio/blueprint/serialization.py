"""Blueprint serialization - YAML loading and blueprint metadata parsing."""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from typing import Any

import yaml

from .errors import BlueprintError, BlueprintSchemaError
from .models import (
    VALID_TAGS,
    BlueprintConfig,
    BlueprintMetadata,
    IncludedBlueprint,
    IncludeStage,
    TemplateConfig,
    VarField,
    Variable,
    VariableType,
    format_scalar,
)

API_VERSION_V2 = "blueprints/v2"
API_VERSION_V1 = "blueprints/v1"
KIND_BLUEPRINT = "Blueprint"

TOP_LEVEL_KEYS = {"apiVersion", "kind", "metadata", "spec"}
METADATA_KEYS = {"name", "description", "author", "version", "instructions"}
SPEC_KEYS = {"parameters", "files", "includeBefore", "includeAfter"}
PARAMETER_KEYS = {
    "name", "label", "type", "prompt", "description", "default", "value",
    "promptIf", "options", "pattern", "saveInXlvals", "replaceAsIs",
}
FILE_KEYS = {"path", "writeIf", "renameTo"}
INCLUDE_KEYS = {"blueprint", "includeIf", "parameterOverrides", "fileOverrides"}
OPTION_KEYS = {"label", "value"}

V1_SPEC_KEYS = {"parameters", "files"}
V1_PARAMETER_KEYS = {
    "name", "type", "secret", "value", "description", "default", "dependsOn",
    "dependsOnTrue", "dependsOnFalse", "options", "pattern", "saveInXlvals", "replaceAsIs",
}
V1_FILE_KEYS = {"path", "dependsOn", "dependsOnTrue", "dependsOnFalse"}
V1_SECRET_TYPES = {
    VariableType.INPUT.value: VariableType.SECRET_INPUT.value,
    VariableType.EDITOR.value: VariableType.SECRET_EDITOR.value,
    VariableType.FILE.value: VariableType.SECRET_FILE.value,
}

VALID_TYPES = {t.value for t in VariableType}


@dataclass(frozen=True)
class CustomTag:
    """A scalar carrying one of the blueprint YAML tags."""
    tag: str
    value: str


class BlueprintLoader(yaml.SafeLoader):
    """SafeLoader that understands ``!fn`` and ``!expression`` scalars."""


def _construct_custom_tag(loader: yaml.SafeLoader, node: yaml.Node) -> CustomTag:
    return CustomTag(tag=node.tag, value=str(loader.construct_scalar(node)))


for _tag in VALID_TAGS:
    BlueprintLoader.add_constructor(_tag, _construct_custom_tag)


def load_yaml(text: str | bytes) -> Any:
    """Load a YAML document that may use blueprint tags."""
    try:
        return yaml.load(text, Loader=BlueprintLoader)
    except yaml.YAMLError as e:
        raise BlueprintSchemaError(f"invalid blueprint YAML: {e}") from e


# ============================================================================
# Field helpers
# ============================================================================


def _check_keys(data: dict[str, Any], allowed: set[str], where: str) -> None:
    unknown = sorted(str(k) for k in data if k not in allowed)
    if unknown:
        raise BlueprintSchemaError(f"unknown field(s) {unknown} in {where}")


def _mapping(raw: Any, where: str) -> dict[str, Any]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise BlueprintSchemaError(f"{where} must be a mapping")
    return raw


def _sequence(raw: Any, where: str) -> list[Any]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise BlueprintSchemaError(f"{where} must be a list")
    return raw


def to_var_field(raw: Any, where: str) -> VarField:
    """Normalize a loosely-typed YAML scalar into a VarField."""
    if raw is None:
        return VarField()
    if isinstance(raw, CustomTag):
        return VarField(value=raw.value, tag=raw.tag)
    if isinstance(raw, bool):
        return VarField.from_bool(raw)
    if isinstance(raw, (dict, list)):
        raise BlueprintSchemaError(f"{where} must be a scalar value")
    return VarField.from_scalar(raw)


def to_depends_on(raw: Any, where: str, invert: bool = False) -> VarField:
    """Parse promptIf/writeIf/includeIf: variable name, boolean, !fn or !expression."""
    field = to_var_field(raw, where)
    if invert and not field.is_empty:
        return VarField(
            value=field.value, bool_val=field.bool_val, tag=field.tag, invert_bool=True
        )
    return field


def _option(raw: Any, param: str) -> VarField:
    where = f"option of parameter [{param}]"
    if isinstance(raw, bool):
        raise BlueprintSchemaError(f"boolean is not a valid {where}")
    if isinstance(raw, CustomTag):
        return VarField(value=raw.value, tag=raw.tag)
    if isinstance(raw, dict):
        _check_keys(raw, OPTION_KEYS, where)
        if raw.get("value") is None:
            raise BlueprintSchemaError(f"value is missing for {where}")
        value = raw["value"]
        if isinstance(value, bool):
            raise BlueprintSchemaError(f"boolean is not a valid {where}")
        label = format_scalar(raw.get("label", ""))
        if isinstance(value, CustomTag):
            return VarField(value=value.value, tag=value.tag, label=label)
        return VarField.from_scalar(value, label=label)
    if raw is None or isinstance(raw, list):
        raise BlueprintSchemaError(f"invalid {where}: {raw!r}")
    return VarField.from_scalar(raw)


def _full_path(blueprint_path: str, path: str) -> str:
    return posixpath.join(blueprint_path, path) if blueprint_path else path


def _validate_path(path: str) -> None:
    if not path:
        raise BlueprintSchemaError("path is missing for file specification in files")
    if path.startswith("/") or path.startswith("..") or path.startswith("./"):
        raise BlueprintSchemaError("path for file specification cannot start with /, .. or ./")


# ============================================================================
# v2 schema
# ============================================================================


def parse_parameter(raw: Any, override: bool = False) -> Variable:
    """Parse one parameter definition (or a parameter override from an include)."""
    data = _mapping(raw, "parameter")
    _check_keys(data, PARAMETER_KEYS, f"parameter [{data.get('name', '')}]")

    name = format_scalar(data.get("name"))
    if not name:
        raise BlueprintSchemaError("parameter is missing required fields: [name]")
    where = f"parameter [{name}]"

    var = Variable(
        name=VarField(value=name),
        type=to_var_field(data.get("type"), f"type of {where}"),
        label=to_var_field(data.get("label"), f"label of {where}"),
        prompt=to_var_field(data.get("prompt"), f"prompt of {where}"),
        description=to_var_field(data.get("description"), f"description of {where}"),
        default=to_var_field(data.get("default"), f"default of {where}"),
        value=to_var_field(data.get("value"), f"value of {where}"),
        depends_on=to_depends_on(data.get("promptIf"), f"promptIf of {where}"),
        options=[_option(o, name) for o in _sequence(data.get("options"), f"options of {where}")],
        pattern=to_var_field(data.get("pattern"), f"pattern of {where}"),
        save_in_xlvals=to_var_field(data.get("saveInXlvals"), f"saveInXlvals of {where}"),
        replace_as_is=to_var_field(data.get("replaceAsIs"), f"replaceAsIs of {where}"),
    )
    _validate_variable(var, override)
    return var


def _validate_variable(var: Variable, override: bool) -> None:
    name = var.key
    if not var.type.value:
        if override:
            return
        raise BlueprintSchemaError(f"parameter [{name}] is missing required fields: [type]")
    if var.type.value not in VALID_TYPES:
        raise BlueprintSchemaError(f"type [{var.type.value}] is not valid for parameter [{name}]")
    if override:
        return

    if not var.label.value:
        var.label = VarField(value=name)
    vtype = VariableType(var.type.value)
    if vtype == VariableType.SELECT and not var.options:
        raise BlueprintSchemaError(
            f"at least one option field is need to be set for parameter [{name}]"
        )
    if vtype.is_secret and var.default.value and not var.default.tag:
        raise BlueprintSchemaError(
            f"secret field [{name}] is not allowed to have default value"
        )


def parse_file(raw: Any, blueprint_path: str, override: bool = False) -> TemplateConfig:
    data = _mapping(raw, "file specification")
    _check_keys(data, FILE_KEYS, "file specification")
    path = format_scalar(data.get("path"))
    _validate_path(path)
    return TemplateConfig(
        path=path,
        full_path="" if override else _full_path(blueprint_path, path),
        depends_on=to_depends_on(data.get("writeIf"), f"writeIf of file [{path}]"),
        rename_to=to_var_field(data.get("renameTo"), f"renameTo of file [{path}]"),
    )


def parse_include(raw: Any, stage: IncludeStage) -> IncludedBlueprint:
    data = _mapping(raw, "include")
    _check_keys(data, INCLUDE_KEYS, "include")
    blueprint = format_scalar(data.get("blueprint"))
    if not blueprint:
        raise BlueprintSchemaError("blueprint name is missing for include definition")
    where = f"include [{blueprint}]"
    return IncludedBlueprint(
        blueprint=blueprint,
        stage=stage,
        parameter_overrides=[
            parse_parameter(p, override=True)
            for p in _sequence(data.get("parameterOverrides"), f"parameterOverrides of {where}")
        ],
        file_overrides=[
            parse_file(f, "", override=True)
            for f in _sequence(data.get("fileOverrides"), f"fileOverrides of {where}")
        ],
        depends_on=to_depends_on(data.get("includeIf"), f"includeIf of {where}"),
    )


def _check_unique(variables: list[Variable]) -> None:
    seen: set[str] = set()
    for var in variables:
        if var.key in seen:
            raise BlueprintSchemaError(
                "variable names must be unique within blueprint 'parameters' definition"
            )
        seen.add(var.key)


def _parse_metadata(raw: Any) -> BlueprintMetadata:
    data = _mapping(raw, "metadata")
    _check_keys(data, METADATA_KEYS, "metadata")
    # version is free text, 1.0 stays "1.0"
    return BlueprintMetadata(
        name=str(data.get("name") or ""),
        description=str(data.get("description") or ""),
        author=str(data.get("author") or ""),
        version=str(data.get("version") or ""),
        instructions=str(data.get("instructions") or ""),
    )


def _parse_spec_v2(spec: dict[str, Any], blueprint_path: str) -> tuple[list, list, list]:
    _check_keys(spec, SPEC_KEYS, "spec")
    variables = [parse_parameter(p) for p in _sequence(spec.get("parameters"), "parameters")]
    _check_unique(variables)
    files = [parse_file(f, blueprint_path) for f in _sequence(spec.get("files"), "files")]
    include = [
        parse_include(i, IncludeStage.BEFORE)
        for i in _sequence(spec.get("includeBefore"), "includeBefore")
    ] + [
        parse_include(i, IncludeStage.AFTER)
        for i in _sequence(spec.get("includeAfter"), "includeAfter")
    ]
    return variables, files, include


# ============================================================================
# v1 schema (legacy)
# ============================================================================


def _v1_depends_on(data: dict[str, Any], where: str) -> VarField:
    if data.get("dependsOnFalse") is not None:
        return to_depends_on(data["dependsOnFalse"], f"dependsOnFalse of {where}", invert=True)
    if data.get("dependsOnTrue") is not None:
        return to_depends_on(data["dependsOnTrue"], f"dependsOnTrue of {where}")
    return to_depends_on(data.get("dependsOn"), f"dependsOn of {where}")


def _parse_parameter_v1(raw: Any) -> Variable:
    data = _mapping(raw, "parameter")
    _check_keys(data, V1_PARAMETER_KEYS, f"parameter [{data.get('name', '')}]")
    name = format_scalar(data.get("name"))
    if not name:
        raise BlueprintSchemaError("parameter is missing required fields: [name]")
    where = f"parameter [{name}]"

    vtype = format_scalar(data.get("type"))
    if data.get("secret") is True:
        vtype = V1_SECRET_TYPES.get(vtype, vtype)

    var = Variable(
        name=VarField(value=name),
        type=VarField(value=vtype),
        description=to_var_field(data.get("description"), f"description of {where}"),
        default=to_var_field(data.get("default"), f"default of {where}"),
        value=to_var_field(data.get("value"), f"value of {where}"),
        depends_on=_v1_depends_on(data, where),
        options=[_option(o, name) for o in _sequence(data.get("options"), f"options of {where}")],
        pattern=to_var_field(data.get("pattern"), f"pattern of {where}"),
        save_in_xlvals=to_var_field(data.get("saveInXlvals"), f"saveInXlvals of {where}"),
        replace_as_is=to_var_field(data.get("replaceAsIs"), f"replaceAsIs of {where}"),
    )
    _validate_variable(var, override=False)
    return var


def _parse_file_v1(raw: Any, blueprint_path: str) -> TemplateConfig:
    data = _mapping(raw, "file specification")
    _check_keys(data, V1_FILE_KEYS, "file specification")
    path = format_scalar(data.get("path"))
    _validate_path(path)
    return TemplateConfig(
        path=path,
        full_path=_full_path(blueprint_path, path),
        depends_on=_v1_depends_on(data, f"file [{path}]"),
    )


def _parse_spec_v1(spec: dict[str, Any], blueprint_path: str) -> tuple[list, list, list]:
    _check_keys(spec, V1_SPEC_KEYS, "spec")
    variables = [_parse_parameter_v1(p) for p in _sequence(spec.get("parameters"), "parameters")]
    _check_unique(variables)
    files = [_parse_file_v1(f, blueprint_path) for f in _sequence(spec.get("files"), "files")]
    return variables, files, []


# ============================================================================
# Entry points
# ============================================================================


def parse_blueprint_metadata(raw: str | bytes, blueprint_path: str = "") -> BlueprintConfig:
    """Parse a blueprint definition document into a BlueprintConfig.

    Args:
        raw: Contents of ``blueprint.yaml``.
        blueprint_path: Repository path of the blueprint; prefixes every
            file's ``full_path``.

    Raises:
        BlueprintSchemaError: On any structural problem. The api version is
            checked before anything else.
    """
    try:
        doc = _mapping(load_yaml(raw), "blueprint document")
        api_version = doc.get("apiVersion")
        if api_version not in (API_VERSION_V2, API_VERSION_V1):
            raise BlueprintSchemaError(
                f"api version needs to be {API_VERSION_V2} or {API_VERSION_V1}"
            )
        _check_keys(doc, TOP_LEVEL_KEYS, "blueprint document")
        if doc.get("kind") != KIND_BLUEPRINT:
            raise BlueprintSchemaError("yaml document kind needs to be Blueprint")

        spec = _mapping(doc.get("spec"), "spec")
        if api_version == API_VERSION_V2:
            variables, files, include = _parse_spec_v2(spec, blueprint_path)
        else:
            variables, files, include = _parse_spec_v1(spec, blueprint_path)

        return BlueprintConfig(
            api_version=api_version,
            kind=KIND_BLUEPRINT,
            metadata=_parse_metadata(doc.get("metadata")),
            variables=variables,
            template_configs=files,
            include=include,
        )
    except BlueprintSchemaError as e:
        if e.blueprint is None and blueprint_path:
            e.blueprint = blueprint_path
        raise


def load_answers(raw: str | bytes) -> dict[str, Any]:
    """Parse an answers file: a flat YAML mapping of parameter name to value."""
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise BlueprintError(f"invalid answers file: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise BlueprintError("answers file must contain a YAML mapping")
    return {str(k): v for k, v in data.items()}

