from __future__ import annotations

import re
from typing import Any, Iterable, Mapping

_BRACKET_KEY_RE = re.compile(r"^([^\[\]]+)((?:\[[^\[\]]*\])+)$")
_TRUTHY = {"1", "true", "yes", "y", "on"}


def _split_bracket_key(key: str) -> list[str]:
    match = _BRACKET_KEY_RE.match(key)
    if not match:
        return [key]
    return [match.group(1), *re.findall(r"\[([^\[\]]*)\]", match.group(2))]


def _assign(target: dict[str, Any], path: list[str], value: Any) -> None:
    head, rest = path[0], path[1:]
    if not rest:
        if head in target:
            current = target[head]
            target[head] = [*current, value] if isinstance(current, list) else [current, value]
        else:
            target[head] = value
        return
    if rest == [""]:
        current = target.get(head)
        if isinstance(current, list):
            current.append(value)
        else:
            target[head] = [value]
        return
    nested = target.get(head)
    if not isinstance(nested, dict):
        nested = {}
        target[head] = nested
    _assign(nested, rest, value)


class RequestParams:
    """Read-only view of request query parameters.

    ``filter[status]=active&filter[ids][]=1&filter[ids][]=2`` becomes
    ``{"filter": {"status": "active", "ids": ["1", "2"]}}``. Repeated plain
    keys keep every value; :meth:`get` returns the last one.
    """

    def __init__(self, data: Mapping[str, Any] | None = None):
        self._data: dict[str, Any] = dict(data or {})

    @classmethod
    def from_query_params(cls, items: Any) -> "RequestParams":
        pairs: Iterable[tuple[str, Any]]
        if hasattr(items, "multi_items"):
            pairs = items.multi_items()
        elif isinstance(items, Mapping):
            pairs = items.items()
        else:
            pairs = items
        data: dict[str, Any] = {}
        for key, value in pairs:
            _assign(data, _split_bracket_key(str(key)), value)
        return cls(data)

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def raw(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def get(self, key: str, default: Any = None) -> Any:
        value = self._data.get(key, default)
        if isinstance(value, list):
            return value[-1] if value else default
        return value

    def get_str(self, key: str, default: str | None = None) -> str | None:
        value = self.get(key)
        if value is None or isinstance(value, dict):
            return default
        text = str(value).strip()
        return text or default

    def get_list(self, key: str) -> list[Any]:
        """List value as-is, a comma separated string split, anything else empty."""
        value = self._data.get(key)
        if value is None or isinstance(value, dict):
            return []
        if isinstance(value, (list, tuple)):
            return list(value)
        return str(value).split(",")

    def get_map(self, key: str) -> dict[str, Any]:
        value = self._data.get(key)
        return dict(value) if isinstance(value, dict) else {}

    def get_bool(self, key: str) -> bool:
        value = self.get(key)
        if isinstance(value, bool):
            return value
        return str(value or "").strip().lower() in _TRUTHY

    def get_int(self, key: str, default: int) -> int:
        value = self.get(key)
        if value is None or isinstance(value, bool):
            return default
        try:
            return int(str(value).strip())
        except ValueError:
            return default
