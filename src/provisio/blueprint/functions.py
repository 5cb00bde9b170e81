"""Function resolver for ``!fn`` references.

A reference has the form ``domain.module(param, ...)`` followed by either an
attribute path (``.cluster.server``) or an index (``[0]``). The domain picks
a registered provider, the provider builds a :class:`FunctionResult`, and the
suffix selects the strings handed back to the caller.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from .errors import ResolutionError

logger = logging.getLogger(__name__)


@dataclass
class FunctionReference:
    domain: str
    module: str
    params: list[str] = field(default_factory=list)
    attr: str = ""
    index: int | None = None


@dataclass
class FunctionResult:
    """Provider output: a sequence for index selection, a record for attributes."""
    values: list[str] = field(default_factory=list)
    record: dict[str, Any] = field(default_factory=dict)


Provider = Callable[[str, list[str], str], FunctionResult]

_providers: dict[str, Provider] = {}


def register_provider(domain: str, provider: Provider) -> None:
    """Register (or replace) the provider for a function domain."""
    _providers[domain.lower()] = provider


def _load_builtin_providers() -> None:
    from ..cloud import aws, k8s

    _providers.setdefault("aws", aws.call)
    _providers.setdefault("k8s", k8s.call)


def get_provider(domain: str) -> Provider | None:
    if "aws" not in _providers or "k8s" not in _providers:
        _load_builtin_providers()
    return _providers.get(domain.lower())


# ============================================================================
# Reference parsing
# ============================================================================


def _is_name_char(c: str) -> bool:
    return c.isalnum() or c in "_-"


class _ReferenceParser:
    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def _error(self, detail: str) -> ResolutionError:
        return ResolutionError(f"invalid function reference [{self.text}]: {detail}")

    def _peek(self) -> str:
        return self.text[self.pos] if self.pos < len(self.text) else ""

    def _expect(self, char: str) -> None:
        if self._peek() != char:
            found = self._peek() or "end of input"
            raise self._error(f"expected '{char}' at position {self.pos}, found '{found}'")
        self.pos += 1

    def _name(self) -> str:
        start = self.pos
        while self.pos < len(self.text) and _is_name_char(self.text[self.pos]):
            self.pos += 1
        if start == self.pos:
            raise self._error(f"expected a name at position {start}")
        return self.text[start:self.pos]

    def _params(self) -> list[str]:
        self._expect("(")
        end = self.text.find(")", self.pos)
        if end < 0:
            raise self._error("missing closing ')'")
        raw = self.text[self.pos:end]
        self.pos = end + 1
        if not raw.strip():
            return []
        return [p.strip() for p in raw.split(",")]

    def _attr(self) -> str:
        parts = [self._name()]
        while self._peek() == ".":
            self.pos += 1
            parts.append(self._name())
        return ".".join(parts)

    def _index(self) -> int:
        self._expect("[")
        start = self.pos
        while self._peek().isdigit():
            self.pos += 1
        if start == self.pos:
            raise self._error(f"expected an index at position {start}")
        value = int(self.text[start:self.pos])
        self._expect("]")
        return value

    def parse(self) -> FunctionReference:
        domain = self._name()
        self._expect(".")
        module = self._name()
        ref = FunctionReference(domain=domain, module=module, params=self._params())

        if self._peek() == ".":
            self.pos += 1
            ref.attr = self._attr()
        elif self._peek() == "[":
            ref.index = self._index()

        if self.pos != len(self.text):
            raise self._error(f"unexpected '{self.text[self.pos:]}'")
        return ref


def parse_reference(text: str) -> FunctionReference:
    """Parse ``domain.module(params).attr`` or ``domain.module(params)[n]``."""
    return _ReferenceParser(text.strip()).parse()


# ============================================================================
# Result selection
# ============================================================================


def flatten_record(record: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    """Flatten nested mappings into dotted keys."""
    flat: dict[str, Any] = {}
    for key, value in record.items():
        path = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, dict):
            flat.update(flatten_record(value, path))
        else:
            flat[path] = value
    return flat


def lookup_attribute(record: dict[str, Any], attr: str) -> str:
    """Case-insensitive dotted lookup; empty string when missing."""
    wanted = attr.lower()
    for key, value in flatten_record(record).items():
        if key.lower() == wanted:
            if isinstance(value, bool):
                return "true" if value else "false"
            return "" if value is None else str(value)
    return ""


def select(ref: FunctionReference, result: FunctionResult) -> list[str]:
    if ref.index is not None:
        if ref.index >= len(result.values):
            raise ResolutionError(
                f"index {ref.index} out of range for {ref.domain}.{ref.module} "
                f"({len(result.values)} results)"
            )
        return [result.values[ref.index]]
    if ref.attr:
        return [lookup_attribute(result.record, ref.attr)]
    return list(result.values)


def call(reference: str) -> list[str]:
    """Resolve a function reference into its string results."""
    ref = parse_reference(reference)
    provider = get_provider(ref.domain)
    if provider is None:
        raise ResolutionError(f"unknown function type [{ref.domain}] in [{reference}]")

    logger.debug("[fn] calling %s.%s with params %s", ref.domain, ref.module, ref.params)
    result = provider(ref.module, ref.params, ref.attr)
    return select(ref, result)
