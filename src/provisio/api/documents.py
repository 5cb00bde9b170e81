"""Apply documents - multi-document YAML with ``!value`` references."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .client import ApplyError

logger = logging.getLogger(__name__)

VALUES_SUFFIX = ".xlvals"
VALUE_ENV_PREFIX = "PROVISIO_VALUE_"


@dataclass(frozen=True)
class ValueRef:
    name: str


class DocumentLoader(yaml.SafeLoader):
    """SafeLoader that keeps ``!value NAME`` as a reference."""


def _construct_value(loader: yaml.SafeLoader, node: yaml.Node) -> ValueRef:
    return ValueRef(str(loader.construct_scalar(node)).strip())


DocumentLoader.add_constructor("!value", _construct_value)


@dataclass
class Document:
    api_version: str
    kind: str = ""
    content: dict[str, Any] = field(default_factory=dict)
    source: str = ""
    index: int = 0

    def render(self) -> str:
        return yaml.safe_dump(self.content, default_flow_style=False, sort_keys=False)


# ============================================================================
# Values
# ============================================================================


def _unescape(text: str) -> str:
    out: list[str] = []
    chars = iter(text)
    for c in chars:
        if c != "\\":
            out.append(c)
            continue
        nxt = next(chars, "")
        out.append({"n": "\n", "r": "\r", "t": "\t"}.get(nxt, nxt))
    return "".join(out)


def parse_properties(text: str) -> dict[str, str]:
    """Parse ``key = value`` lines written by the blueprint renderer."""
    values: dict[str, str] = {}
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith(("#", "!")):
            continue
        for sep in ("=", ":"):
            if sep in stripped:
                key, _, value = stripped.partition(sep)
                values[key.strip()] = _unescape(value.strip())
                break
    return values


def collect_values(
    directories: list[Path],
    overrides: dict[str, str] | None = None,
) -> dict[str, str]:
    """Merge values: xlvals files in each directory, then environment, then overrides."""
    values: dict[str, str] = {}
    for directory in directories:
        if not directory.is_dir():
            continue
        for file in sorted(directory.glob(f"*{VALUES_SUFFIX}")):
            logger.debug("[apply] reading values from %s", file)
            values.update(parse_properties(file.read_text()))

    for key, value in os.environ.items():
        if key.startswith(VALUE_ENV_PREFIX):
            values[key[len(VALUE_ENV_PREFIX):]] = value

    values.update(overrides or {})
    return values


def parse_value_overrides(pairs: list[str]) -> dict[str, str]:
    """``["a=1", "b=2"]`` -> ``{"a": "1", "b": "2"}``."""
    result: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ApplyError(f"invalid value [{pair}], expected key=value")
        result[key.strip()] = value
    return result


# ============================================================================
# Documents
# ============================================================================


def _resolve(node: Any, values: dict[str, str], source: str) -> Any:
    if isinstance(node, ValueRef):
        if node.name not in values:
            raise ApplyError(f"no value found for !value {node.name} in {source}")
        return values[node.name]
    if isinstance(node, dict):
        return {k: _resolve(v, values, source) for k, v in node.items()}
    if isinstance(node, list):
        return [_resolve(v, values, source) for v in node]
    return node


def parse_documents(text: str, values: dict[str, str], source: str = "<string>") -> list[Document]:
    try:
        raw_docs = [d for d in yaml.load_all(text, Loader=DocumentLoader) if d is not None]
    except yaml.YAMLError as e:
        raise ApplyError(f"invalid YAML in {source}: {e}") from e

    documents = []
    for i, raw in enumerate(raw_docs):
        if not isinstance(raw, dict):
            raise ApplyError(f"document {i} in {source} must be a mapping")
        content = _resolve(raw, values, source)
        documents.append(Document(
            api_version=str(content.get("apiVersion", "")),
            kind=str(content.get("kind", "")),
            content=content,
            source=source,
            index=i,
        ))
    return documents


def load_documents(
    path: str | Path,
    overrides: dict[str, str] | None = None,
    output_dir: str = "xebialabs",
) -> list[Document]:
    """Load a YAML file, resolving ``!value`` tags from nearby xlvals files."""
    file = Path(path)
    try:
        text = file.read_text()
    except OSError as e:
        raise ApplyError(f"could not read {file}: {e}") from e

    directories = [file.parent, file.parent / output_dir]
    values = collect_values(directories, overrides)
    return parse_documents(text, values, str(file))
