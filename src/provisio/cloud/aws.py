"""AWS function provider - credential and region lookups through boto3."""

from __future__ import annotations

import logging

import boto3
from botocore.exceptions import BotoCoreError

from ..blueprint.errors import ResolutionError
from ..blueprint.functions import FunctionResult

logger = logging.getLogger(__name__)

CREDENTIALS = "credentials"
REGIONS = "regions"


def get_credentials(profile: str | None = None) -> dict[str, object]:
    """Read credentials from the boto3 provider chain.

    Missing credentials are a legitimate state, so this returns a record with
    ``IsAvailable`` false instead of raising.
    """
    empty = {"AccessKeyID": "", "SecretAccessKey": "", "SessionToken": "", "IsAvailable": False}
    try:
        creds = boto3.Session(profile_name=profile or None).get_credentials()
    except BotoCoreError as e:
        logger.debug("[aws] could not read credentials: %s", e)
        return empty
    if creds is None:
        logger.debug("[aws] no credentials configured")
        return empty

    frozen = creds.get_frozen_credentials()
    return {
        "AccessKeyID": frozen.access_key or "",
        "SecretAccessKey": frozen.secret_key or "",
        "SessionToken": frozen.token or "",
        "IsAvailable": bool(frozen.access_key and frozen.secret_key),
    }


def get_available_regions(service: str) -> list[str]:
    """Sorted list of regions where ``service`` is offered."""
    regions = boto3.Session().get_available_regions(service)
    if not regions:
        raise ResolutionError(f"no valid AWS region found for AWS {service} service")
    return sorted(regions)


def call(module: str, params: list[str], attr: str) -> FunctionResult:
    """Dispatch an ``aws.<module>(...)`` function call."""
    name = module.lower()
    if name == CREDENTIALS:
        if not attr:
            raise ResolutionError("requested credentials attribute is not set")
        profile = params[0] if params else None
        return FunctionResult(record=get_credentials(profile))

    if name == REGIONS:
        if not params or not params[0]:
            raise ResolutionError("service name parameter is required for AWS regions function")
        return FunctionResult(values=get_available_regions(params[0]))

    raise ResolutionError(f"{module} is not a valid AWS module")
