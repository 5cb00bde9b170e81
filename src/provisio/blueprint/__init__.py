"""Blueprint module - parameterized template bundles.

Parse blueprint definitions, compose includes, resolve parameters and render
the resulting files.
"""

from .models import (
    BlueprintConfig,
    BlueprintMetadata,
    ComposedBlueprint,
    IncludedBlueprint,
    PreparedData,
    TemplateConfig,
    VarField,
    Variable,
    VariableType,
)
from .errors import (
    BlueprintError,
    BlueprintSchemaError,
    CompositionError,
    RenderError,
    RepositoryError,
    ResolutionError,
)
from .serialization import parse_blueprint_metadata, load_answers
from .composition import resolve, merge_composed
from .preparation import prepare, evaluate_depends_on
from .renderer import render
from .engine import instantiate_blueprint

__all__ = [
    "BlueprintConfig",
    "BlueprintMetadata",
    "ComposedBlueprint",
    "IncludedBlueprint",
    "PreparedData",
    "TemplateConfig",
    "VarField",
    "Variable",
    "VariableType",
    "BlueprintError",
    "BlueprintSchemaError",
    "CompositionError",
    "RenderError",
    "RepositoryError",
    "ResolutionError",
    "parse_blueprint_metadata",
    "load_answers",
    "resolve",
    "merge_composed",
    "prepare",
    "evaluate_depends_on",
    "render",
    "instantiate_blueprint",
]
