"""
Semantic physical column types.

A ColumnType is what a dialect's type mapper produces for a field and what
the inspector reconstructs from the live catalog. Two column types are
equal when they accept the same set of values, whatever their SQL
spelling: `varchar(10)` guarded by a length check on SQLite is the same
type as `varchar(10)` on MySQL.

Invariants:
    - Equality and hashing ignore `sql` and `emulation`
    - `size` is None for unbounded strings and bytes
    - Integer ranges are inclusive

How to change safely:
    - Every new family needs a rule in compare_types()
    - Keep compare_types() conservative: anything unknown is a conflict
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple


class TypeFamily(Enum):
    INT = "int"
    STRING = "string"
    BYTES = "bytes"
    ENUM = "enum"
    TIME = "time"
    BOOL = "bool"
    FLOAT = "float"
    UNKNOWN = "unknown"


class Emulation(Enum):
    """How a logical constraint is enforced when the SQL type cannot."""

    NONE = "none"
    RANGE_CHECK = "range_check"
    LENGTH_CHECK = "length_check"
    ENUM_CHECK = "enum_check"


class TypeChange(Enum):
    """Outcome of comparing a live column type with a desired one."""

    SAME = "same"
    WIDEN = "widen"
    CONFLICT = "conflict"


@dataclass(frozen=True, eq=False)
class ColumnType:
    """Physical column type with its logical bounds.

    Attributes:
        family: Value family
        sql: SQL type as rendered in DDL
        low: Inclusive lower bound (INT only)
        high: Inclusive upper bound (INT only)
        size: Max characters (STRING) or bytes (BYTES), None if unbounded
        values: Allowed values (ENUM only), in declaration order
        emulation: Check constraint that enforces the bounds, if any
    """

    family: TypeFamily
    sql: str
    low: Optional[int] = None
    high: Optional[int] = None
    size: Optional[int] = None
    values: Optional[Tuple[str, ...]] = None
    emulation: Emulation = Emulation.NONE

    def key(self) -> tuple:
        """Semantic identity used for equality."""
        if self.family == TypeFamily.UNKNOWN:
            return (self.family, self.sql.lower())
        return (
            self.family,
            self.low,
            self.high,
            self.size,
            frozenset(self.values) if self.values is not None else None,
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ColumnType):
            return NotImplemented
        return self.key() == other.key()

    def __hash__(self) -> int:
        return hash(self.key())

    def describe(self) -> str:
        """Short human-readable form for reports and errors."""
        if self.family == TypeFamily.INT:
            return f"{self.sql} [{self.low}, {self.high}]"
        if self.family in (TypeFamily.STRING, TypeFamily.BYTES):
            bound = self.size if self.size is not None else "unbounded"
            return f"{self.sql} ({bound})"
        if self.family == TypeFamily.ENUM:
            return f"{self.sql} {{{', '.join(self.values or ())}}}"
        return self.sql


def _max_rendered_length(ctype: ColumnType) -> Optional[int]:
    """Longest text rendering of any value of an INT or ENUM type."""
    if ctype.family == TypeFamily.INT:
        if ctype.low is None or ctype.high is None:
            return None
        return max(len(str(ctype.low)), len(str(ctype.high)))
    if ctype.family == TypeFamily.ENUM:
        return max((len(v) for v in ctype.values or ()), default=0)
    return None


def compare_types(live: ColumnType, desired: ColumnType) -> TypeChange:
    """Classify the change from a live column type to a desired one.

    Widening is allowed when every value the live column can hold is also
    accepted by the desired type. Everything else is a conflict.
    """
    if live == desired:
        return TypeChange.SAME

    if live.family == desired.family:
        family = live.family
        if family == TypeFamily.INT:
            if (
                live.low is not None
                and live.high is not None
                and desired.low is not None
                and desired.high is not None
                and desired.low <= live.low
                and desired.high >= live.high
            ):
                return TypeChange.WIDEN
            return TypeChange.CONFLICT
        if family in (TypeFamily.STRING, TypeFamily.BYTES):
            if desired.size is None:
                return TypeChange.WIDEN
            if live.size is not None and desired.size >= live.size:
                return TypeChange.WIDEN
            return TypeChange.CONFLICT
        if family == TypeFamily.ENUM:
            if set(desired.values or ()) >= set(live.values or ()):
                return TypeChange.WIDEN
            return TypeChange.CONFLICT
        # TIME, BOOL and FLOAT carry no bounds; a different spelling of the
        # same family is the same type.
        if family in (TypeFamily.TIME, TypeFamily.BOOL, TypeFamily.FLOAT):
            return TypeChange.SAME
        return TypeChange.CONFLICT

    if desired.family == TypeFamily.STRING and live.family in (TypeFamily.INT, TypeFamily.ENUM):
        needed = _max_rendered_length(live)
        if desired.size is None:
            return TypeChange.WIDEN
        if needed is not None and desired.size >= needed:
            return TypeChange.WIDEN

    return TypeChange.CONFLICT


def can_widen(live: ColumnType, desired: ColumnType) -> bool:
    """True if desired strictly widens live."""
    return compare_types(live, desired) == TypeChange.WIDEN


def same_type(live: ColumnType, desired: ColumnType) -> bool:
    return compare_types(live, desired) == TypeChange.SAME
