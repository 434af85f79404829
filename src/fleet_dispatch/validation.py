"""Precondition checks run before any remote action is attempted."""
from __future__ import annotations

from typing import Dict, Mapping, Optional, Sequence

from .errors import InvalidParameter, MissingParameter
from .schemas import REQUEST_FIELDS, object_store_location, region_name


REQUIRED_PARAMETERS: Sequence[str] = REQUEST_FIELDS


def validate_parameters(
    params: Mapping[str, Optional[str]],
    required: Sequence[str] = REQUIRED_PARAMETERS,
) -> Dict[str, str]:
    """
    Check that every key in *required* is present and non-empty in *params*.

    Keys are checked in *required* order and the first missing or blank one
    raises :class:`MissingParameter`. A present ``payload_uri`` must also be an
    object store location and a present ``region`` a lowercase region name;
    either failing raises :class:`InvalidParameter`. Returns the required values with surrounding
    whitespace removed; *params* itself is never modified.
    """
    validated: Dict[str, str] = {}
    for key in required:
        value = params.get(key)
        if value is None or not str(value).strip():
            raise MissingParameter(key)
        validated[key] = str(value).strip()

    payload_uri = validated.get("payload_uri")
    if payload_uri is not None:
        problem = object_store_location(payload_uri)
        if problem:
            raise InvalidParameter("payload_uri", problem)

    region = validated.get("region")
    if region is not None:
        problem = region_name(region)
        if problem:
            raise InvalidParameter("region", problem)
    return validated


__all__ = ["REQUIRED_PARAMETERS", "validate_parameters"]
