"""Blueprint composition - resolve includeBefore/includeAfter into an ordered node list."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING

from .errors import CompositionError
from .models import (
    BlueprintConfig,
    ComposedBlueprint,
    IncludeStage,
    TemplateConfig,
    VarField,
    Variable,
    VariableType,
)
from .serialization import parse_blueprint_metadata

if TYPE_CHECKING:
    from ..repository.base import BlueprintRepository

logger = logging.getLogger(__name__)


# ============================================================================
# Overrides
# ============================================================================


def apply_parameter_overrides(
    variables: list[Variable], overrides: list[Variable]
) -> list[Variable]:
    """Return a new variable list with include overrides applied.

    An override matching an existing name replaces that variable's value,
    promptIf and default where the override sets them. Unmatched overrides
    are appended as new variables.
    """
    result = [replace(v) for v in variables]
    index = {v.key: i for i, v in enumerate(result)}

    for override in overrides:
        pos = index.get(override.key)
        if pos is None:
            added = replace(
                override,
                type=override.type if override.type.value else VarField(value=VariableType.INPUT.value),
                label=override.label if override.label.value else VarField(value=override.key),
            )
            index[override.key] = len(result)
            result.append(added)
            continue

        current = result[pos]
        result[pos] = replace(
            current,
            value=override.value if not override.value.is_empty else current.value,
            depends_on=override.depends_on if not override.depends_on.is_empty else current.depends_on,
            default=override.default if not override.default.is_empty else current.default,
        )
    return result


def apply_file_overrides(
    files: list[TemplateConfig], overrides: list[TemplateConfig], blueprint: str = ""
) -> list[TemplateConfig]:
    """Return a new file list with writeIf/renameTo overrides applied by path."""
    result = [replace(f) for f in files]
    index = {f.path: i for i, f in enumerate(result)}

    for override in overrides:
        pos = index.get(override.path)
        if pos is None:
            logger.warning(
                "[compose] file override [%s] matches no file in blueprint [%s]",
                override.path, blueprint,
            )
            continue
        current = result[pos]
        result[pos] = replace(
            current,
            depends_on=override.depends_on if not override.depends_on.is_empty else current.depends_on,
            rename_to=override.rename_to if not override.rename_to.is_empty else current.rename_to,
        )
    return result


# ============================================================================
# Resolution
# ============================================================================


class _Resolver:
    def __init__(self, repository: BlueprintRepository):
        self.repository = repository
        self._blueprints = None

    def fetch(self, name: str, parent: str) -> BlueprintConfig:
        if self._blueprints is None:
            self._blueprints = self.repository.list_blueprints()

        remote = self._blueprints.get(name)
        if remote is None:
            message = f"blueprint [{name}] not found in repository {self.repository.name}"
            if parent:
                message += f", included by blueprint [{parent}]"
            raise CompositionError(message, blueprint=parent or name)

        logger.debug("[compose] fetching blueprint [%s] from %s", name, remote.definition_path)
        raw = self.repository.get_file_contents(remote.definition_path)
        return parse_blueprint_metadata(raw, remote.path)

    def resolve(
        self,
        name: str,
        depends_on: VarField,
        parent: str,
        parameter_overrides: list[Variable],
        file_overrides: list[TemplateConfig],
        gates: list[VarField],
        stack: list[str],
    ) -> tuple[list[ComposedBlueprint], BlueprintConfig]:
        if name in stack:
            chain = " -> ".join(stack + [name])
            raise CompositionError(f"cyclic blueprint inclusion: {chain}", blueprint=parent)

        config = self.fetch(name, parent)
        config = replace(
            config,
            variables=apply_parameter_overrides(config.variables, parameter_overrides),
            template_configs=apply_file_overrides(config.template_configs, file_overrides, name),
        )

        # every descendant is also gated by this node's own condition
        child_gates = gates + ([depends_on] if not depends_on.is_empty else [])
        path = stack + [name]

        nodes: list[ComposedBlueprint] = []
        for inc in config.includes_for(IncludeStage.BEFORE):
            children, _ = self.resolve(
                inc.blueprint, inc.depends_on, name,
                inc.parameter_overrides, inc.file_overrides, child_gates, path,
            )
            nodes.extend(children)

        nodes.append(ComposedBlueprint(
            name=name,
            config=config.without_includes(),
            parent=parent,
            depends_on=depends_on,
            inherited_gates=list(gates),
        ))

        for inc in config.includes_for(IncludeStage.AFTER):
            children, _ = self.resolve(
                inc.blueprint, inc.depends_on, name,
                inc.parameter_overrides, inc.file_overrides, child_gates, path,
            )
            nodes.extend(children)

        return nodes, config


def resolve(
    repository: BlueprintRepository,
    blueprint_name: str,
    depends_on: VarField | None = None,
    parent: str = "",
) -> tuple[list[ComposedBlueprint], BlueprintConfig]:
    """Resolve a blueprint and its includes into emission order.

    Returns the flattened node list (before-includes, the blueprint itself,
    after-includes, recursively) and the root blueprint's own document.
    """
    nodes, root = _Resolver(repository).resolve(
        blueprint_name, depends_on or VarField(), parent, [], [], [], []
    )
    logger.debug("[compose] resolved order: %s", [n.name for n in nodes])
    return nodes, root


def merge_composed(nodes: list[ComposedBlueprint]) -> BlueprintConfig:
    """Merge nodes into one effective document.

    Variables are keyed by name and a later node replaces an earlier entry in
    place. Files are concatenated in emission order.
    """
    if not nodes:
        raise CompositionError("no blueprint to merge")

    root = next((n for n in nodes if not n.parent), nodes[-1])
    variables: list[Variable] = []
    index: dict[str, int] = {}
    files: list[TemplateConfig] = []

    for node in nodes:
        for var in node.config.variables:
            if var.key in index:
                variables[index[var.key]] = var
            else:
                index[var.key] = len(variables)
                variables.append(var)
        files.extend(node.config.template_configs)

    return replace(root.config, variables=variables, template_configs=files, include=[])
