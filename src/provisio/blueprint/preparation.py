"""Data preparation - resolve every composed parameter into template data, values and secrets."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from typing import Any

from .composition import merge_composed
from .errors import BlueprintError, ResolutionError
from .expression import coerce_bool, evaluate, evaluate_bool
from .functions import call
from .models import (
    TAG_EXPRESSION,
    TAG_FN,
    BlueprintConfig,
    ComposedBlueprint,
    PreparedData,
    VarField,
    Variable,
    VariableType,
    format_scalar,
)

logger = logging.getLogger(__name__)

Resolver = Callable[[str], list[str]]
AskFn = Callable[[Variable, str, list[VarField]], Any]


# ============================================================================
# Field resolution
# ============================================================================


def evaluate_depends_on(
    field: VarField, scope: dict[str, Any], resolver: Resolver = call
) -> bool:
    """Evaluate a promptIf/writeIf/includeIf gate.

    An empty gate is true. A bare name must refer to a resolved variable with
    a boolean value. ``invert_bool`` negates the outcome.
    """
    if field.is_empty:
        return True

    if field.tag == TAG_EXPRESSION:
        result = evaluate_bool(field.value, scope)
    elif field.tag == TAG_FN:
        values = resolver(field.value)
        flag = coerce_bool(values[0]) if values else None
        if flag is None:
            raise ResolutionError(f"function [{field.value}] did not return a boolean: {values}")
        result = flag
    elif field.value in ("true", "false"):
        result = field.value == "true"
    else:
        if field.value not in scope:
            raise ResolutionError(f"dependency [{field.value}] refers to an unknown parameter")
        flag = coerce_bool(scope[field.value])
        if flag is None:
            raise ResolutionError(
                f"dependency [{field.value}] is not a boolean: {scope[field.value]!r}"
            )
        result = flag

    return not result if field.invert_bool else result


def resolve_field(field: VarField, scope: dict[str, Any], resolver: Resolver = call) -> Any:
    """Resolve a value/default field; function calls yield their first result."""
    if field.tag == TAG_FN:
        values = resolver(field.value)
        return values[0] if values else ""
    if field.tag == TAG_EXPRESSION:
        return evaluate(field.value, scope)
    if field.value in ("true", "false"):
        return field.value == "true"
    return field.value


def resolve_options(var: Variable, scope: dict[str, Any], resolver: Resolver = call) -> list[VarField]:
    """Expand Select options; a function option contributes every result."""
    options: list[VarField] = []
    for option in var.options:
        if option.tag == TAG_FN:
            options.extend(VarField(value=v, label=option.label) for v in resolver(option.value))
        elif option.tag == TAG_EXPRESSION:
            resolved = evaluate(option.value, scope)
            items = resolved if isinstance(resolved, list) else [resolved]
            options.extend(VarField(value=format_scalar(v), label=option.label) for v in items)
        else:
            options.append(option)
    return options


def normalize(var: Variable, raw: Any) -> Any:
    """Coerce a resolved value: Confirm and "true"/"false" become bool."""
    if var.variable_type == VariableType.CONFIRM:
        if raw in ("", None):
            return False
        flag = coerce_bool(raw)
        if flag is None:
            raise ResolutionError(f"value [{raw}] for parameter [{var.key}] is not a boolean")
        return flag
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        flag = coerce_bool(raw) if raw.strip() in ("true", "false") else None
        return raw if flag is None else flag
    if isinstance(raw, (int, float)):
        return format_scalar(raw)
    return raw


def validate_answer(var: Variable, value: Any, options: list[VarField]) -> None:
    """Check pattern and Select membership for a supplied answer."""
    text = format_scalar(value)
    if var.pattern.value and text and not re.fullmatch(var.pattern.value, text):
        raise ResolutionError(
            f"value [{text}] for parameter [{var.key}] does not match pattern [{var.pattern.value}]"
        )
    if var.variable_type == VariableType.SELECT:
        allowed = {o.value for o in options}
        if text not in allowed:
            raise ResolutionError(
                f"answer [{text}] is not one of the options for parameter [{var.key}]: {sorted(allowed)}"
            )


# ============================================================================
# Pipeline
# ============================================================================


def _store(data: PreparedData, var: Variable, value: Any) -> None:
    key = var.key
    data.values.pop(key, None)
    data.secrets.pop(key, None)

    data.summary_data[key] = value
    if var.is_secret:
        data.secrets[key] = value
        data.template_data[key] = value if var.replace_as_is.bool_val else f"!value {key}"
    else:
        data.template_data[key] = value
        if var.save_in_xlvals.bool_val:
            data.values[key] = value


def _resolve_default(var: Variable, scope: dict[str, Any], resolver: Resolver) -> Any:
    if var.default.is_empty:
        return ""
    try:
        return resolve_field(var.default, scope, resolver)
    except BlueprintError as e:
        logger.warning("[dataPrep] could not resolve default of parameter [%s]: %s", var.key, e)
        return ""


def _check_strict_answers(nodes: list[ComposedBlueprint], answers: dict[str, Any]) -> None:
    known = {var.key for node in nodes for var in node.config.variables}
    unknown = sorted(k for k in answers if k not in known)
    if unknown:
        raise ResolutionError(f"answers file contains unknown parameters: {', '.join(unknown)}")


def prepare(
    nodes: list[ComposedBlueprint],
    answers: dict[str, Any] | None = None,
    strict_answers: bool = False,
    use_defaults: bool = False,
    ask: AskFn | None = None,
    resolver: Resolver = call,
) -> tuple[PreparedData, BlueprintConfig]:
    """Walk composed nodes in emission order and resolve every parameter.

    Returns the prepared data and the merged document of the nodes whose
    include condition held.
    """
    answers = answers or {}
    if strict_answers:
        _check_strict_answers(nodes, answers)
    if ask is None:
        from .prompts import ask_question
        ask = ask_question

    data = PreparedData()
    included: list[ComposedBlueprint] = []

    for node in nodes:
        if not all(evaluate_depends_on(g, data.summary_data, resolver) for g in node.gates):
            logger.debug("[dataPrep] skipping blueprint [%s], include condition is false", node.name)
            continue
        included.append(node)

        for var in node.config.variables:
            scope = data.summary_data
            default = _resolve_default(var, scope, resolver)

            if not evaluate_depends_on(var.depends_on, scope, resolver):
                logger.debug("[dataPrep] skipping parameter [%s], promptIf is false", var.key)
                _store(data, var, normalize(var, default))
                continue

            if not var.value.is_empty:
                value = resolve_field(var.value, scope, resolver)
                logger.debug("[dataPrep] parameter [%s] set from value field", var.key)
                _store(data, var, normalize(var, value))
                continue

            if use_defaults and default not in ("", None):
                logger.debug("[dataPrep] parameter [%s] set from default", var.key)
                _store(data, var, normalize(var, default))
                continue

            options = resolve_options(var, scope, resolver)
            if var.variable_type == VariableType.SELECT and not options:
                raise ResolutionError(f"no options resolved for parameter [{var.key}]")
            if var.key in answers:
                value = normalize(var, answers[var.key])
                validate_answer(var, value, options)
                logger.debug("[dataPrep] parameter [%s] set from answers", var.key)
                _store(data, var, value)
                continue

            answer = ask(var, format_scalar(default), options)
            _store(data, var, normalize(var, answer))

    return data, merge_composed(included)
