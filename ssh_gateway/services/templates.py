"""Command template expansion.

``{{name}}`` is required, ``{{name:default}}`` falls back to *default*.
Anything starting with a dot (``{{.Names}}``) is left alone so Docker and Go
``--format`` strings pass through unchanged.
"""

from __future__ import annotations

import re
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from ssh_gateway.exceptions import TemplateError

_VARIABLE = re.compile(r"\{\{([^}:.]+)(?::(.*?))?\}\}")


class TemplateVariable(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str
    required: bool
    default_value: Optional[str] = None


def substitute_variables(template: str, variables: Optional[Mapping[str, object]] = None) -> str:
    """Expand every variable in *template*.

    Raises :class:`TemplateError` listing all required variables without a
    value.

    >>> substitute_variables("kubectl logs {{pod}} --tail={{lines:100}}", {"pod": "api-1"})
    'kubectl logs api-1 --tail=100'
    """
    values = variables or {}
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        name, default = match.group(1), match.group(2)
        value = values.get(name)
        if value is not None:
            return str(value)
        if default is not None:
            return default
        missing.append(name)
        return match.group(0)

    result = _VARIABLE.sub(_replace, template)
    if missing:
        plural = "s" if len(missing) > 1 else ""
        raise TemplateError(
            f"Missing required template variable{plural}: {', '.join(missing)}",
            missing=missing,
        )
    return result


def extract_variables(template: str) -> list[TemplateVariable]:
    """Variables used by *template*, first occurrence wins."""
    seen: set[str] = set()
    found: list[TemplateVariable] = []
    for match in _VARIABLE.finditer(template):
        name, default = match.group(1), match.group(2)
        if name in seen:
            continue
        seen.add(name)
        found.append(TemplateVariable(name=name, required=default is None, default_value=default))
    return found
