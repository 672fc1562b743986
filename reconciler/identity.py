"""Composite resource identities."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from .constants import ID_ESCAPES, ID_FIELD, ID_SEPARATOR
from .errors import InvalidRequest
from .models import IdentityKey


@dataclass(frozen=True)
class ResourceIdentity:
    """Ordered scoping keys of one remote object, e.g. project, region, name.

    ``key`` joins the present values into the opaque durable id used to
    correlate every later call on the object.
    """

    kind: str
    keys: Tuple[Tuple[str, Optional[str]], ...]

    @property
    def key(self) -> str:
        return ID_SEPARATOR.join(_escape(value) for _, value in self.keys if value is not None)

    @property
    def fields(self) -> Dict[str, str]:
        return {name: value for name, value in self.keys if value is not None}

    def state_fields(self) -> Dict[str, str]:
        """Identity as it is written into durable state."""
        fields = self.fields
        fields[ID_FIELD] = self.key
        return fields

    def __str__(self) -> str:
        return f"{self.kind}[{self.key}]"

    @classmethod
    def from_fields(
        cls,
        kind: str,
        identity_keys: Sequence[IdentityKey],
        fields: Mapping[str, Any],
    ) -> "ResourceIdentity":
        keys = []
        missing = []
        for entry in identity_keys:
            value = _clean(fields.get(entry.name))
            if value is None and not entry.optional and not entry.default_region:
                missing.append(entry.name)
            keys.append((entry.name, value))
        if missing:
            raise InvalidRequest(f"Missing identity fields for {kind}: {', '.join(missing)}")
        return cls(kind=kind, keys=tuple(keys))

    @classmethod
    def parse(cls, kind: str, identity_keys: Sequence[IdentityKey], composite: str) -> "ResourceIdentity":
        """Parse a composite id made of either every key or only the required ones."""
        parts = composite.split(ID_SEPARATOR)
        required = [entry for entry in identity_keys if not (entry.optional or entry.default_region)]
        if len(parts) == len(identity_keys):
            names = [entry.name for entry in identity_keys]
        elif len(parts) == len(required):
            names = [entry.name for entry in required]
        else:
            expected = ID_SEPARATOR.join(f"[{entry.name}]" for entry in identity_keys)
            raise InvalidRequest(
                f"Expected identifier with format {expected}, got {composite!r}"
            )
        if any(not part.strip() for part in parts):
            raise InvalidRequest(f"Identifier contains an empty part: {composite!r}")
        values = (_unescape(part.strip()) for part in parts)
        return cls.from_fields(kind, identity_keys, dict(zip(names, values)))


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _escape(value: str) -> str:
    for raw, escaped in ID_ESCAPES:
        value = value.replace(raw, escaped)
    return value


def _unescape(value: str) -> str:
    for raw, escaped in reversed(ID_ESCAPES):
        value = value.replace(escaped, raw)
    return value
