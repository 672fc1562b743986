"""Utility helpers shared across control-plane clients."""
from __future__ import annotations

import re
import string
from typing import Any, Dict, Mapping, Optional, Set, Tuple

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")


def to_camel(name: str) -> str:
    """``external_address`` -> ``externalAddress``."""
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def to_snake(name: str) -> str:
    """``externalAddress`` -> ``external_address``."""
    return _CAMEL_BOUNDARY.sub(r"_\1", name).lower()


def expand_path(template: str, fields: Mapping[str, Any]) -> Tuple[str, Set[str]]:
    """Fill ``{name}`` placeholders from ``fields``.

    Returns the path and the names consumed by it. Raises ``KeyError`` naming
    the first placeholder with no value.
    """
    names = {name for _, name, _, _ in string.Formatter().parse(template) if name}
    values: Dict[str, str] = {}
    for name in names:
        value = fields.get(name)
        if value is None or value == "":
            raise KeyError(name)
        values[name] = str(value)
    return template.format(**values), names


def unwrap(payload: Any, envelope: Optional[str]) -> Any:
    """Return the object nested under a dotted ``envelope`` key, if present."""
    if not envelope:
        return payload
    current = payload
    for part in envelope.split("."):
        if not isinstance(current, dict) or part not in current:
            return payload
        current = current[part]
    return current


def lookup(data: Any, dotted: Optional[str]) -> Any:
    """Walk a dotted path, accepting snake or camel keys at each level."""
    if not dotted:
        return None
    current = data
    for part in dotted.split("."):
        if not isinstance(current, dict):
            return None
        if part in current:
            current = current[part]
        else:
            current = current.get(to_camel(part))
    return current
