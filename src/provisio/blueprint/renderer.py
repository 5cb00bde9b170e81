"""Template renderer - materialize blueprint files from prepared data."""

from __future__ import annotations

import base64
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any

from jinja2 import BaseLoader, Environment, StrictUndefined, TemplateError

from .errors import RenderError
from .expression import evaluate
from .functions import call
from .models import (
    IGNORED_PATHS,
    TAG_EXPRESSION,
    TAG_FN,
    TEMPLATE_SUFFIX,
    PreparedData,
    TemplateConfig,
    format_scalar,
)
from .preparation import Resolver, evaluate_depends_on

if TYPE_CHECKING:
    from ..repository.base import BlueprintRepository

logger = logging.getLogger(__name__)


# ============================================================================
# Jinja environment
# ============================================================================


def kebabcase(value: Any) -> str:
    """``MyAppName`` / ``my_app name`` -> ``my-app-name``."""
    text = re.sub(r"([a-z0-9])([A-Z])", r"\1-\2", str(value))
    text = re.sub(r"[\s_]+", "-", text)
    return re.sub(r"-{2,}", "-", text).strip("-").lower()


def b64enc(value: Any) -> str:
    return base64.b64encode(str(value).encode()).decode()


def b64dec(value: Any) -> str:
    return base64.b64decode(str(value).encode()).decode()


def _finalize(value: Any) -> Any:
    # booleans render as true/false like every other blueprint output
    if isinstance(value, bool):
        return format_scalar(value)
    return value


def create_environment() -> Environment:
    env = Environment(
        loader=BaseLoader(),
        undefined=StrictUndefined,
        keep_trailing_newline=False,
        finalize=_finalize,
    )
    env.filters["kebabcase"] = kebabcase
    env.filters["b64enc"] = b64enc
    env.filters["b64dec"] = b64dec
    return env


def render_template(source: str, data: dict[str, Any], name: str = "<template>") -> str:
    """Render template text; the result is whitespace-trimmed."""
    try:
        template = create_environment().from_string(source)
        return template.render(**data).strip()
    except TemplateError as e:
        raise RenderError(f"error processing template [{name}]: {e}", path=name) from e


# ============================================================================
# Output
# ============================================================================


class OutputWriter:
    """Writes generated files below a root directory."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def target(self, relative: str) -> Path:
        root = self.root.resolve()
        path = (root / relative).resolve()
        if path != root and root not in path.parents:
            raise RenderError(f"output path [{relative}] escapes the output directory", path=relative)
        return path

    def write(self, relative: str, content: str | bytes) -> Path:
        path = self.target(relative)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                path.write_bytes(content)
            else:
                path.write_text(content)
        except OSError as e:
            raise RenderError(f"could not write file [{path}]: {e}", path=relative) from e
        logger.debug("[file] wrote %s", path)
        return path


def _escape_property(value: Any) -> str:
    text = format_scalar(value)
    return (
        text.replace("\\", "\\\\")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )


def format_properties(header: str, data: dict[str, Any]) -> str:
    """Sorted ``key = value`` lines below a comment header."""
    lines = [f"# {line}" if line else "#" for line in header.splitlines()]
    lines.extend(f"{key} = {_escape_property(data[key])}" for key in sorted(data))
    return "\n".join(lines) + "\n"


def write_properties(writer: OutputWriter, relative: str, header: str, data: dict[str, Any]) -> Path:
    return writer.write(relative, format_properties(header, data))


# ============================================================================
# Rendering
# ============================================================================


@dataclass
class RenderResult:
    written: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


def _is_ignored(config: TemplateConfig) -> bool:
    parent = PurePosixPath(config.full_path or config.path).parent.name
    return parent in IGNORED_PATHS


def output_path(config: TemplateConfig, data: PreparedData, resolver: Resolver = call) -> str:
    """Final relative path for a file, honouring renameTo."""
    rename = config.rename_to
    if rename.is_empty:
        target = config.path
    elif rename.tag == TAG_EXPRESSION:
        target = format_scalar(evaluate(rename.value, data.template_data))
    elif rename.tag == TAG_FN:
        results = resolver(rename.value)
        target = results[0] if results else ""
    else:
        target = rename.value

    if not target:
        raise RenderError(f"renameTo of file [{config.path}] resolved to an empty path", path=config.path)
    if target.endswith(TEMPLATE_SUFFIX):
        target = target[: -len(TEMPLATE_SUFFIX)]
    return target


def render(
    files: list[TemplateConfig],
    data: PreparedData,
    repository: BlueprintRepository,
    writer: OutputWriter,
    resolver: Resolver = call,
) -> RenderResult:
    """Render or copy each file whose writeIf condition holds."""
    result = RenderResult()

    for config in files:
        if not evaluate_depends_on(config.depends_on, data.summary_data, resolver):
            logger.debug("[file] skipping file [%s], writeIf is false", config.path)
            result.skipped.append(config.path)
            continue

        is_template = config.path.endswith(TEMPLATE_SUFFIX)
        if not is_template and _is_ignored(config):
            logger.debug("[file] skipping file [%s], path is ignored", config.full_path)
            result.skipped.append(config.path)
            continue

        target = output_path(config, data, resolver)
        logger.debug("[file] fetching %s from %s", config.path, config.full_path)
        content = repository.get_file_contents(config.full_path or config.path)

        if is_template:
            try:
                source = content.decode()
            except UnicodeDecodeError as e:
                raise RenderError(f"template [{config.path}] is not valid UTF-8", path=config.path) from e
            rendered = render_template(source, data.template_data, config.path)
            writer.write(target, rendered + "\n" if rendered else "")
        else:
            writer.write(target, content)

        result.written.append(target)

    return result
