"""Blueprint engine - compose, prepare, write values and render in one call."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .composition import resolve
from .functions import call
from .models import BlueprintMetadata, ComposedBlueprint, PreparedData
from .preparation import AskFn, Resolver, prepare
from .renderer import OutputWriter, render, write_properties
from .serialization import load_answers

if TYPE_CHECKING:
    from ..repository.base import BlueprintRepository

logger = logging.getLogger(__name__)

VALUES_FILE = "values.xlvals"
SECRETS_FILE = "secrets.xlvals"
GITIGNORE_FILE = ".gitignore"

VALUES_HEADER = (
    "This file includes all non-secret values, you can add variables here "
    "and then refer them with '!value' tag in YAML files"
)
SECRETS_HEADER = (
    "This file includes all secret values, and will be excluded from GIT. "
    "You can add new values and/or edit them and then refer to them using '!value' YAML tag"
)


@dataclass
class InstantiateResult:
    """Result of a blueprint instantiation."""
    blueprint: str
    metadata: BlueprintMetadata
    nodes: list[ComposedBlueprint]
    data: PreparedData
    written: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    output_root: str = ""


def read_answers(answers_file: str | Path | None) -> dict[str, Any]:
    if not answers_file:
        return {}
    return load_answers(Path(answers_file).read_text())


def instantiate_blueprint(
    repository: BlueprintRepository,
    blueprint_name: str,
    output_root: str | Path = ".",
    answers_file: str | Path | None = None,
    answers: dict[str, Any] | None = None,
    strict_answers: bool = False,
    use_defaults: bool = False,
    ask: AskFn | None = None,
    output_dir: str = "xebialabs",
    resolver: Resolver = call,
) -> InstantiateResult:
    """Generate a blueprint into ``output_root``.

    Resolves the include tree, prepares all parameter values, writes the
    values/secrets property files plus a .gitignore under ``output_dir`` and
    then renders every file whose writeIf holds.
    """
    merged_answers = {**read_answers(answers_file), **(answers or {})}

    nodes, root = resolve(repository, blueprint_name)
    data, merged = prepare(
        nodes,
        answers=merged_answers,
        strict_answers=strict_answers,
        use_defaults=use_defaults,
        ask=ask,
        resolver=resolver,
    )
    logger.debug("[dataPrep] prepared %d parameters", len(data.summary_data))

    writer = OutputWriter(output_root)
    write_properties(writer, f"{output_dir}/{VALUES_FILE}", VALUES_HEADER, data.values)
    write_properties(writer, f"{output_dir}/{SECRETS_FILE}", SECRETS_HEADER, data.secrets)
    writer.write(f"{output_dir}/{GITIGNORE_FILE}", SECRETS_FILE + "\n")

    rendered = render(merged.template_configs, data, repository, writer, resolver)

    return InstantiateResult(
        blueprint=blueprint_name,
        metadata=root.metadata,
        nodes=nodes,
        data=data,
        written=rendered.written,
        skipped=rendered.skipped,
        output_root=str(writer.root),
    )
