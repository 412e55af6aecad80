"""
Migration operations and plans.

An operation is one structural change to one table. Operations are plain
frozen data: dialects render them to SQL and simulate() applies them to an
in-memory table model so the planner's output can be checked without a
database.

Invariants:
    - Operations never carry SQL text
    - simulate() never mutates its input mapping or tables
    - Destructive operations are only planned behind an explicit toggle

How to change safely:
    - A new operation needs a `_apply` branch here and a render branch in
      every dialect
    - Keep describe() stable; operators grep logs for it
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum, auto
from typing import ClassVar, Dict, Iterator, List, Optional

from .table import Column, ForeignKey, Index, Table

logger = logging.getLogger(__name__)


class OperationKind(Enum):
    """Kinds of structural changes."""

    CREATE_TABLE = auto()
    RENAME_TABLE = auto()
    RENAME_COLUMN = auto()
    ADD_COLUMN = auto()
    WIDEN_COLUMN = auto()
    MODIFY_COLUMN = auto()
    DROP_COLUMN = auto()
    ADD_INDEX = auto()
    DROP_INDEX = auto()
    ADD_FOREIGN_KEY = auto()
    DROP_FOREIGN_KEY = auto()
    SET_IDENTITY_START = auto()

    @property
    def is_destructive(self) -> bool:
        return self in (
            OperationKind.DROP_COLUMN,
            OperationKind.DROP_INDEX,
            OperationKind.DROP_FOREIGN_KEY,
        )


@dataclass(frozen=True)
class Operation:
    """Base class of all operations.

    Attributes:
        table: Name of the table the operation applies to (its new name
            for RenameTable)
    """

    table: str
    kind: ClassVar[OperationKind]

    @property
    def destructive(self) -> bool:
        return self.kind.is_destructive

    def describe(self) -> str:
        """One-line description without the status prefix."""
        return f"{self.kind.name}: {self.table}"

    def __str__(self) -> str:
        status = "DESTRUCTIVE" if self.destructive else "OK"
        return f"[{status}] {self.describe()}"


@dataclass(frozen=True)
class CreateTable(Operation):
    definition: Table
    identity_start: Optional[int] = None
    kind: ClassVar[OperationKind] = OperationKind.CREATE_TABLE

    def describe(self) -> str:
        cols = ", ".join(self.definition.column_names())
        start = f" identity starts at {self.identity_start}" if self.identity_start else ""
        return f"{self.kind.name}: {self.table} ({cols}){start}"


@dataclass(frozen=True)
class RenameTable(Operation):
    old_name: str
    kind: ClassVar[OperationKind] = OperationKind.RENAME_TABLE

    def describe(self) -> str:
        return f"{self.kind.name}: {self.old_name} -> {self.table}"


@dataclass(frozen=True)
class RenameColumn(Operation):
    old_name: str
    new_name: str
    kind: ClassVar[OperationKind] = OperationKind.RENAME_COLUMN

    def describe(self) -> str:
        return f"{self.kind.name}: {self.table}.{self.old_name} -> {self.new_name}"


@dataclass(frozen=True)
class AddColumn(Operation):
    """Add a column. `foreign_key` is set when the reference is created inline."""

    column: Column
    foreign_key: Optional[ForeignKey] = None
    kind: ClassVar[OperationKind] = OperationKind.ADD_COLUMN

    def describe(self) -> str:
        return f"{self.kind.name}: {self.table}.{self.column.name} {self.column.type.describe()}"


@dataclass(frozen=True)
class WidenColumn(Operation):
    column: Column
    previous: Column
    kind: ClassVar[OperationKind] = OperationKind.WIDEN_COLUMN

    def describe(self) -> str:
        return (
            f"{self.kind.name}: {self.table}.{self.column.name} "
            f"{self.previous.type.describe()} -> {self.column.type.describe()}"
        )


@dataclass(frozen=True)
class ModifyColumn(Operation):
    """Change a column's default or relax its nullability."""

    column: Column
    previous: Column
    kind: ClassVar[OperationKind] = OperationKind.MODIFY_COLUMN

    def describe(self) -> str:
        changes = []
        if self.column.nullable != self.previous.nullable:
            changes.append("nullable")
        if self.column.default != self.previous.default:
            changes.append(f"default {self.previous.default} -> {self.column.default}")
        return f"{self.kind.name}: {self.table}.{self.column.name} {', '.join(changes)}"


@dataclass(frozen=True)
class DropColumn(Operation):
    column: Column
    kind: ClassVar[OperationKind] = OperationKind.DROP_COLUMN

    def describe(self) -> str:
        return f"{self.kind.name}: {self.table}.{self.column.name}"


@dataclass(frozen=True)
class AddIndex(Operation):
    index: Index
    kind: ClassVar[OperationKind] = OperationKind.ADD_INDEX

    def describe(self) -> str:
        unique = "unique " if self.index.unique else ""
        return f"{self.kind.name}: {unique}{self.index.name} on {self.table} ({', '.join(self.index.columns)})"


@dataclass(frozen=True)
class DropIndex(Operation):
    index: Index
    kind: ClassVar[OperationKind] = OperationKind.DROP_INDEX

    def describe(self) -> str:
        return f"{self.kind.name}: {self.index.name} on {self.table}"


@dataclass(frozen=True)
class AddForeignKey(Operation):
    foreign_key: ForeignKey
    kind: ClassVar[OperationKind] = OperationKind.ADD_FOREIGN_KEY

    def describe(self) -> str:
        fk = self.foreign_key
        return f"{self.kind.name}: {self.table}.{fk.column} -> {fk.ref_table}.{fk.ref_column}"


@dataclass(frozen=True)
class DropForeignKey(Operation):
    foreign_key: ForeignKey
    kind: ClassVar[OperationKind] = OperationKind.DROP_FOREIGN_KEY

    def describe(self) -> str:
        fk = self.foreign_key
        return f"{self.kind.name}: {self.table}.{fk.column} -> {fk.ref_table}.{fk.ref_column}"


@dataclass(frozen=True)
class SetIdentityStart(Operation):
    """Move a table's identity sequence to a new id block."""

    start: int
    previous_base: Optional[int] = None
    kind: ClassVar[OperationKind] = OperationKind.SET_IDENTITY_START

    def describe(self) -> str:
        return f"{self.kind.name}: {self.table} base {self.previous_base} -> {self.start}"


@dataclass
class MigrationPlan:
    """Ordered list of operations produced by the planner.

    Attributes:
        operations: Operations in execution order
        withheld: Drops that were found but not planned because the
            corresponding toggle is off
    """

    operations: List[Operation] = field(default_factory=list)
    withheld: List[Operation] = field(default_factory=list)

    def __iter__(self) -> Iterator[Operation]:
        return iter(self.operations)

    def __len__(self) -> int:
        return len(self.operations)

    @property
    def is_empty(self) -> bool:
        return not self.operations

    @property
    def destructive(self) -> List[Operation]:
        return [op for op in self.operations if op.destructive]

    def by_table(self) -> Dict[str, List[Operation]]:
        grouped: Dict[str, List[Operation]] = {}
        for op in self.operations:
            grouped.setdefault(op.table, []).append(op)
        return grouped

    def report(self) -> str:
        """Human-readable plan, one operation per line."""
        if self.is_empty:
            lines = ["No changes: live schema matches the desired schema."]
        else:
            lines = [f"{len(self.operations)} operation(s):"]
            lines.extend(f"  {op}" for op in self.operations)
        if self.withheld:
            lines.append(f"{len(self.withheld)} drop(s) withheld (toggle off):")
            lines.extend(f"  [WITHHELD] {op.describe()}" for op in self.withheld)
        return "\n".join(lines)


def _rename_in_columns(columns, old: str, new: str):
    return tuple(new if c == old else c for c in columns)


def _apply(table: Optional[Table], op: Operation) -> Optional[Table]:
    """Apply one operation to the table it targets."""
    if isinstance(op, CreateTable):
        if op.identity_start is not None:
            return replace(op.definition, sequence_base=op.identity_start, previous_name=None)
        return replace(op.definition, previous_name=None)

    if table is None:
        raise KeyError(f"Operation {op.describe()} targets missing table '{op.table}'")

    if isinstance(op, RenameColumn):
        columns = [replace(c, name=op.new_name) if c.name == op.old_name else c for c in table.columns]
        indexes = [
            replace(i, columns=_rename_in_columns(i.columns, op.old_name, op.new_name))
            for i in table.indexes
        ]
        fks = [replace(f, column=op.new_name) if f.column == op.old_name else f for f in table.foreign_keys]
        return replace(table, columns=tuple(columns), indexes=tuple(indexes), foreign_keys=tuple(fks))

    if isinstance(op, AddColumn):
        column = replace(op.column, previous_name=None)
        table = table.with_columns(list(table.columns) + [column])
        if op.foreign_key is not None:
            table = table.with_foreign_keys(list(table.foreign_keys) + [op.foreign_key])
        return table

    if isinstance(op, (WidenColumn, ModifyColumn)):
        column = replace(op.column, previous_name=None)
        return table.with_columns([column if c.name == column.name else c for c in table.columns])

    if isinstance(op, DropColumn):
        name = op.column.name
        return replace(
            table,
            columns=tuple(c for c in table.columns if c.name != name),
            indexes=tuple(i for i in table.indexes if name not in i.columns),
            foreign_keys=tuple(f for f in table.foreign_keys if f.column != name),
        )

    if isinstance(op, AddIndex):
        return table.with_indexes(list(table.indexes) + [op.index])

    if isinstance(op, DropIndex):
        return table.with_indexes([i for i in table.indexes if i.name != op.index.name])

    if isinstance(op, AddForeignKey):
        return table.with_foreign_keys(list(table.foreign_keys) + [op.foreign_key])

    if isinstance(op, DropForeignKey):
        return table.with_foreign_keys(
            [f for f in table.foreign_keys if f.column != op.foreign_key.column]
        )

    if isinstance(op, SetIdentityStart):
        return replace(table, sequence_base=op.start)

    raise TypeError(f"Unknown operation {type(op).__name__}")


def simulate(tables: Dict[str, Table], op: Operation) -> Dict[str, Table]:
    """Apply an operation to an in-memory schema.

    Args:
        tables: Tables by name
        op: Operation to apply

    Returns:
        A new mapping; the input is left untouched
    """
    result = dict(tables)

    if isinstance(op, RenameTable):
        table = result.pop(op.old_name)
        result[op.table] = replace(table, name=op.table, previous_name=None)
        # The database rewrites references to a renamed table.
        for name, other in list(result.items()):
            if any(f.ref_table == op.old_name for f in other.foreign_keys):
                result[name] = other.with_foreign_keys(
                    [
                        replace(f, ref_table=op.table) if f.ref_table == op.old_name else f
                        for f in other.foreign_keys
                    ]
                )
        return result

    result[op.table] = _apply(result.get(op.table), op)
    return result


def simulate_plan(tables: Dict[str, Table], plan: MigrationPlan) -> Dict[str, Table]:
    """Apply every operation of a plan in order."""
    for op in plan:
        tables = simulate(tables, op)
    return tables
