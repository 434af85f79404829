"""Assemble dispatch requests from validated parameters."""
from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Mapping

from .errors import TemplateError
from .schemas import REQUEST_FIELDS, DispatchRequest


@dataclass(frozen=True)
class CommandTemplate:
    """Maps each :class:`DispatchRequest` field to the parameter key feeding it."""

    fields: Mapping[str, str] = field(default_factory=lambda: {name: name for name in REQUEST_FIELDS})

    def __post_init__(self) -> None:
        unknown = sorted(set(self.fields) - set(REQUEST_FIELDS))
        missing = sorted(set(REQUEST_FIELDS) - set(self.fields))
        if unknown or missing:
            raise TemplateError(f"template fields must be exactly {REQUEST_FIELDS}; unknown={unknown} missing={missing}")
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, str]) -> "CommandTemplate":
        return cls(fields=dict(mapping))


DEFAULT_TEMPLATE = CommandTemplate()


def build_request(params: Mapping[str, str], template: CommandTemplate = DEFAULT_TEMPLATE) -> DispatchRequest:
    """
    Produce a :class:`DispatchRequest` from an already validated parameter set.

    Only the keys named by *template* are read, so ordering and extra keys in
    *params* have no effect on the result.
    """
    values: Dict[str, str] = {}
    for request_field, param_key in template.fields.items():
        if param_key not in params:
            raise TemplateError(f"template field {request_field} references absent parameter {param_key}")
        values[request_field] = params[param_key]
    return DispatchRequest(**values)


__all__ = ["CommandTemplate", "DEFAULT_TEMPLATE", "build_request"]
