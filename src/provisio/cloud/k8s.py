"""Kubernetes function provider - reads the local kubeconfig."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from ..blueprint.errors import ResolutionError
from ..blueprint.functions import FunctionResult

logger = logging.getLogger(__name__)

CONFIG = "config"


def kubeconfig_path() -> Path:
    env_path = os.getenv("KUBECONFIG")
    if env_path:
        # KUBECONFIG may hold a list of files; the first one wins
        return Path(env_path.split(os.pathsep)[0]).expanduser()
    return Path.home() / ".kube" / "config"


def _find(items: list[dict[str, Any]], name: str, key: str) -> dict[str, Any]:
    for item in items or []:
        if item.get("name") == name:
            return item.get(key) or {}
    raise ValueError(f"{key} [{name}] not found in Kubernetes configuration")


def parse_kubeconfig(text: str, context: str = "") -> dict[str, Any]:
    """Resolve the cluster, context and user records for one context."""
    config = yaml.safe_load(text) or {}
    if not isinstance(config, dict):
        raise ValueError("Kubernetes configuration must be a mapping")

    contexts = config.get("contexts") or []
    clusters = config.get("clusters") or []
    if not contexts or not clusters:
        raise ValueError("Kubernetes configuration file does not have any context/cluster defined")

    name = context or config.get("current-context") or contexts[0].get("name", "")
    ctx = _find(contexts, name, "context")
    return {
        "cluster": _find(clusters, ctx.get("cluster", ""), "cluster"),
        "context": dict(ctx),
        "user": _find(config.get("users") or [], ctx.get("user", ""), "user"),
    }


def get_config(context: str = "") -> dict[str, Any]:
    """Load the kubeconfig record, or an empty one if it cannot be read."""
    try:
        text = kubeconfig_path().read_text()
        record = parse_kubeconfig(text, context)
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.debug("[k8s] kubeconfig not usable: %s", e)
        record = {"cluster": {}, "context": {}, "user": {}}

    user = record["user"]
    record["IsAvailable"] = bool(
        record["cluster"].get("server")
        and (user.get("client-certificate-data") or user.get("token"))
    )
    return record


def call(module: str, params: list[str], attr: str) -> FunctionResult:
    """Dispatch a ``k8s.<module>(...)`` function call."""
    if module.lower() != CONFIG:
        raise ResolutionError(f"{module} is not a valid Kubernetes module")
    if not attr:
        raise ResolutionError("required attribute is not set for k8s.config")
    if attr != "IsAvailable" and "." not in attr:
        raise ResolutionError(
            "field name pattern is invalid. It must follow 'cluster.server' notation, for example"
        )
    context = params[0] if params else ""
    return FunctionResult(record=get_config(context))
