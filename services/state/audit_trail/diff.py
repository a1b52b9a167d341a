"""Field-level structural diff between two record snapshots.

Values are compared by their canonical JSON rendering (sorted keys), so
nested mappings compare deeply and independently of key order, while arrays
compare element by element in order. There is no type coercion: ``5``,
``5.0``, ``"5"`` and ``True`` are four different values.
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Mapping


class _Absent:
    """Marker for a field missing on one side of a diff."""

    _instance: "_Absent | None" = None

    def __new__(cls) -> "_Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False

    def __copy__(self) -> "_Absent":
        return self

    def __deepcopy__(self, memo: dict[int, Any]) -> "_Absent":
        return self


ABSENT: Any = _Absent()


@dataclass(frozen=True)
class FieldChange:
    """Old and new value of one field; either side may be ``ABSENT``."""

    old: Any = ABSENT
    new: Any = ABSENT

    @property
    def added(self) -> bool:
        return self.old is ABSENT and self.new is not ABSENT

    @property
    def removed(self) -> bool:
        return self.new is ABSENT and self.old is not ABSENT

    def to_json(self) -> dict[str, Any]:
        """Render the change, omitting whichever side is absent."""
        rendered: dict[str, Any] = {}
        if self.old is not ABSENT:
            rendered["old"] = self.old
        if self.new is not ABSENT:
            rendered["new"] = self.new
        return rendered

    @classmethod
    def from_json(cls, value: Mapping[str, Any]) -> "FieldChange":
        return cls(old=value.get("old", ABSENT), new=value.get("new", ABSENT))


class FieldDiff(Mapping[str, FieldChange]):
    """Immutable mapping from field name to its ``FieldChange``."""

    __slots__ = ("_changes",)

    def __init__(self, changes: Mapping[str, FieldChange] | None = None) -> None:
        self._changes: dict[str, FieldChange] = dict(sorted((changes or {}).items()))

    def __getitem__(self, key: str) -> FieldChange:
        return self._changes[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._changes)

    def __len__(self) -> int:
        return len(self._changes)

    def __repr__(self) -> str:
        return f"FieldDiff({self._changes!r})"

    @property
    def is_empty(self) -> bool:
        return not self._changes

    def redacted(self, fields: Iterable[str], marker: str) -> "FieldDiff":
        """Return a copy whose prior values for ``fields`` read as ``marker``."""
        hidden = set(fields)
        changes: dict[str, FieldChange] = {}
        for name, change in self._changes.items():
            if name in hidden and change.old is not ABSENT:
                change = FieldChange(old=marker, new=change.new)
            changes[name] = change
        return FieldDiff(changes)

    def to_json(self) -> dict[str, dict[str, Any]]:
        return {name: change.to_json() for name, change in self._changes.items()}

    @classmethod
    def from_json(cls, value: Mapping[str, Mapping[str, Any]]) -> "FieldDiff":
        return cls({name: FieldChange.from_json(item) for name, item in value.items()})


def canonical(value: Any) -> str:
    """Return the canonical JSON text used for value equality.

    Mapping keys are compared as strings, as they would be once persisted.
    """
    return json.dumps(
        _string_keys(value),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=_fallback,
    )


def values_equal(left: Any, right: Any) -> bool:
    """Return ``True`` when two values serialize identically."""
    if left is ABSENT or right is ABSENT:
        return left is right
    return canonical(left) == canonical(right)


def compute_diff(
    old: Mapping[str, Any] | None,
    new: Mapping[str, Any] | None,
) -> FieldDiff:
    """Compute the top-level field diff from ``old`` to ``new``.

    ``None`` on either side is treated as an empty snapshot.
    """
    before = old or {}
    after = new or {}
    changes: dict[str, FieldChange] = {}
    for name in set(before) | set(after):
        old_value = before.get(name, ABSENT)
        new_value = after.get(name, ABSENT)
        if values_equal(old_value, new_value):
            continue
        changes[name] = FieldChange(
            old=copy.deepcopy(old_value),
            new=copy.deepcopy(new_value),
        )
    return FieldDiff(changes)


def apply_diff(base: Mapping[str, Any] | None, diff: Mapping[str, FieldChange]) -> dict[str, Any]:
    """Apply ``diff`` to ``base`` and return the resulting snapshot."""
    result = copy.deepcopy(dict(base or {}))
    for name, change in diff.items():
        if change.new is ABSENT:
            result.pop(name, None)
        else:
            result[name] = copy.deepcopy(change.new)
    return result


def _string_keys(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(key): _string_keys(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_string_keys(item) for item in value]
    return value


def _fallback(value: Any) -> str:
    return f"<{type(value).__module__}.{type(value).__qualname__}:{value!r}>"
