"""Blueprint data models - parameters, files and includes of a blueprint bundle."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

TAG_FN = "!fn"
TAG_EXPRESSION = "!expression"
VALID_TAGS = (TAG_FN, TAG_EXPRESSION)

TEMPLATE_SUFFIX = ".tmpl"
IGNORED_PATHS = frozenset({"__test__"})


class VariableType(str, Enum):
    """Recognized parameter types."""
    INPUT = "Input"
    SELECT = "Select"
    CONFIRM = "Confirm"
    SECRET_INPUT = "SecretInput"
    EDITOR = "Editor"
    SECRET_EDITOR = "SecretEditor"
    FILE = "File"
    SECRET_FILE = "SecretFile"

    @property
    def is_secret(self) -> bool:
        return self in SECRET_TYPES


SECRET_TYPES = frozenset({
    VariableType.SECRET_INPUT,
    VariableType.SECRET_EDITOR,
    VariableType.SECRET_FILE,
})


class IncludeStage(str, Enum):
    """Where an included blueprint lands relative to its parent."""
    BEFORE = "before"
    AFTER = "after"


def format_scalar(value: Any) -> str:
    """Canonical string form of a YAML scalar.

    Integers keep their digits, floats get six decimals and booleans
    become ``true``/``false``.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return f"{value:f}"
    if value is None:
        return ""
    return str(value)


@dataclass(frozen=True)
class VarField:
    """A metadata scalar that may be literal, boolean, a function call or an expression."""
    value: str = ""
    bool_val: bool = False
    label: str = ""
    tag: str = ""
    invert_bool: bool = False

    @classmethod
    def from_scalar(cls, raw: Any, label: str = "") -> VarField:
        if isinstance(raw, bool):
            return cls(value=format_scalar(raw), bool_val=raw, label=label)
        return cls(value=format_scalar(raw), label=label)

    @classmethod
    def from_bool(cls, flag: bool) -> VarField:
        return cls(value="true" if flag else "false", bool_val=flag)

    @property
    def is_empty(self) -> bool:
        return not self.value and not self.tag and not self.bool_val

    @property
    def is_tagged(self) -> bool:
        return self.tag in VALID_TAGS

    def display(self) -> str:
        """Text shown to the user for this field, label first."""
        return self.label or self.value


@dataclass
class Variable:
    name: VarField
    type: VarField = field(default_factory=VarField)
    label: VarField = field(default_factory=VarField)
    prompt: VarField = field(default_factory=VarField)
    description: VarField = field(default_factory=VarField)
    default: VarField = field(default_factory=VarField)
    value: VarField = field(default_factory=VarField)
    depends_on: VarField = field(default_factory=VarField)
    options: list[VarField] = field(default_factory=list)
    pattern: VarField = field(default_factory=VarField)
    save_in_xlvals: VarField = field(default_factory=VarField)
    replace_as_is: VarField = field(default_factory=VarField)

    @property
    def key(self) -> str:
        return self.name.value

    @property
    def variable_type(self) -> VariableType:
        return VariableType(self.type.value) if self.type.value else VariableType.INPUT

    @property
    def is_secret(self) -> bool:
        return self.variable_type.is_secret

    def question(self) -> str:
        """Prompt text: explicit prompt, then description, then a generic fallback."""
        if self.prompt.value:
            return self.prompt.value
        if self.description.value:
            return self.description.value
        return f"What is the value of {self.key}?"


@dataclass
class TemplateConfig:
    path: str
    full_path: str = ""
    depends_on: VarField = field(default_factory=VarField)
    rename_to: VarField = field(default_factory=VarField)


@dataclass
class IncludedBlueprint:
    blueprint: str
    stage: IncludeStage = IncludeStage.AFTER
    parameter_overrides: list[Variable] = field(default_factory=list)
    file_overrides: list[TemplateConfig] = field(default_factory=list)
    depends_on: VarField = field(default_factory=VarField)


@dataclass
class BlueprintMetadata:
    name: str = ""
    description: str = ""
    author: str = ""
    version: str = ""
    instructions: str = ""


@dataclass
class BlueprintConfig:
    api_version: str
    kind: str = "Blueprint"
    metadata: BlueprintMetadata = field(default_factory=BlueprintMetadata)
    variables: list[Variable] = field(default_factory=list)
    template_configs: list[TemplateConfig] = field(default_factory=list)
    include: list[IncludedBlueprint] = field(default_factory=list)

    def without_includes(self) -> BlueprintConfig:
        return replace(self, include=[])

    def includes_for(self, stage: IncludeStage) -> list[IncludedBlueprint]:
        return [inc for inc in self.include if inc.stage == stage]


@dataclass
class ComposedBlueprint:
    """One node of a resolved composition tree."""
    name: str
    config: BlueprintConfig
    parent: str = ""
    depends_on: VarField = field(default_factory=VarField)
    # gates of the including blueprints, outermost first
    inherited_gates: list[VarField] = field(default_factory=list)

    @property
    def gates(self) -> list[VarField]:
        own = [self.depends_on] if not self.depends_on.is_empty else []
        return self.inherited_gates + own


@dataclass
class PreparedData:
    """Output of the data preparation pipeline."""
    template_data: dict[str, Any] = field(default_factory=dict)
    summary_data: dict[str, Any] = field(default_factory=dict)
    values: dict[str, Any] = field(default_factory=dict)
    secrets: dict[str, Any] = field(default_factory=dict)
