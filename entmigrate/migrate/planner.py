"""
Diff planner.

Compares desired tables with live tables and produces an ordered
MigrationPlan. Planning is pure: it reads models and returns operations,
so every conflict is reported before a single statement runs.

Evolution rules:
- New tables and columns are created
- Columns are renamed only through an explicit previous_name
- Types may widen (see dialect.types.compare_types); never shrink
- Nullability may relax; never tighten
- Columns and indexes are dropped only when the matching toggle is on
- Foreign keys are dropped only together with their column

Invariants:
    - Re-planning after executing a plan yields an empty plan
    - Within a table: renames, required drops, column changes, column
      drops, index drops, index adds, identity start; all foreign keys
      that cannot be declared inline are added in a final pass
    - Tables are visited in reference order, ties broken by declaration
      order; reference cycles are broken at the first declared table

How to change safely:
    - Any new rule must keep the plan empty on a second run
    - Raise SchemaConflictError rather than guess at destructive changes
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, List, Optional, Set

from ..config import MigrateConfig
from ..dialect.base import DialectCapabilities
from ..dialect.types import TypeChange, compare_types
from ..errors import SchemaConflictError
from .allocator import IDBlock
from .operations import (
    AddColumn,
    AddForeignKey,
    AddIndex,
    CreateTable,
    DropColumn,
    DropForeignKey,
    DropIndex,
    MigrationPlan,
    ModifyColumn,
    Operation,
    RenameColumn,
    RenameTable,
    SetIdentityStart,
    WidenColumn,
    simulate,
)
from .table import Table

logger = logging.getLogger(__name__)

DEFAULT_CAPABILITIES = DialectCapabilities(
    transactional_ddl=True,
    native_enum=False,
    native_unsigned=False,
    alter_column=True,
    forward_references=False,
)


def reference_order(desired: List[Table]) -> List[Table]:
    """Order tables so referenced tables come first.

    Ties are broken by declaration order. When the remaining tables form a
    cycle, the first declared one is taken as is.
    """
    remaining = list(desired)
    names = {t.name for t in desired}
    emitted: Set[str] = set()
    ordered = []
    while remaining:
        for table in remaining:
            deps = {
                fk.ref_table
                for fk in table.foreign_keys
                if fk.ref_table in names and fk.ref_table != table.name
            }
            if deps <= emitted:
                break
        else:
            table = remaining[0]
            logger.debug(f"Reference cycle through '{table.name}'; creating it first")
        remaining.remove(table)
        emitted.add(table.name)
        ordered.append(table)
    return ordered


class _TablePlan:
    """Operations for one existing table, grouped by phase."""

    def __init__(self) -> None:
        self.renames: List[Operation] = []
        self.required_drops: List[Operation] = []
        self.column_changes: List[Operation] = []
        self.column_drops: List[Operation] = []
        self.index_drops: List[Operation] = []
        self.index_adds: List[Operation] = []
        self.identity: List[Operation] = []

    def operations(self) -> List[Operation]:
        return (
            self.renames
            + self.required_drops
            + self.column_changes
            + self.column_drops
            + self.index_drops
            + self.index_adds
            + self.identity
        )


class DiffPlanner:
    """Plans the operations that turn live tables into desired tables.

    Args:
        config: Migration toggles
        capabilities: Capabilities of the target dialect
        tags: Id blocks per desired table (global-unique-id mode only)
    """

    def __init__(
        self,
        config: Optional[MigrateConfig] = None,
        capabilities: Optional[DialectCapabilities] = None,
        tags: Optional[Dict[str, IDBlock]] = None,
    ) -> None:
        self._config = config or MigrateConfig()
        self._caps = capabilities or DEFAULT_CAPABILITIES
        self._tags = tags

    def plan(self, desired: List[Table], live: Dict[str, Table]) -> MigrationPlan:
        """Compute the migration plan.

        Args:
            desired: Desired tables in declaration order
            live: Live tables by name

        Returns:
            Ordered MigrationPlan

        Raises:
            SchemaConflictError: If the live schema cannot evolve safely
        """
        result = MigrationPlan()
        working = dict(live)
        deferred_fks: List[Operation] = []
        desired_names = {t.name for t in desired}

        for table in desired:
            old = table.previous_name
            if table.name not in working and old and old in working and old not in desired_names:
                op = RenameTable(table.name, old_name=old)
                result.operations.append(op)
                working = simulate(working, op)

        for table in reference_order(desired):
            if table.name in working:
                ops = self._diff_table(table, working[table.name], result, deferred_fks)
            else:
                ops = self._create_table(table, deferred_fks)
            for op in ops:
                working = simulate(working, op)
            result.operations.extend(ops)

        for op in deferred_fks:
            working = simulate(working, op)
        result.operations.extend(deferred_fks)

        if result.is_empty:
            logger.info("Plan is empty: live schema matches the desired schema")
        else:
            logger.info(
                f"Planned {len(result)} operation(s) across {len(result.by_table())} table(s), "
                f"{len(result.destructive)} destructive"
            )
        for op in result.withheld:
            logger.warning(f"Withheld {op.describe()} (toggle off)")
        return result

    def _create_table(self, table: Table, deferred_fks: List[Operation]) -> List[Operation]:
        definition = replace(
            table,
            columns=tuple(replace(c, previous_name=None) for c in table.columns),
            indexes=(),
            previous_name=None,
        )
        if not self._caps.forward_references:
            deferred_fks.extend(AddForeignKey(table.name, fk) for fk in table.foreign_keys)
            definition = replace(definition, foreign_keys=())
        start = self._tags[table.name].start if self._tags and table.name in self._tags else None
        ops: List[Operation] = [CreateTable(table.name, definition, identity_start=start)]
        ops.extend(AddIndex(table.name, idx) for idx in table.planned_indexes())
        return ops

    def _conflict(self, table: str, column: Optional[str], reason: str, message: str) -> SchemaConflictError:
        logger.error(f"Schema conflict on {table}{'.' + column if column else ''}: {message}")
        return SchemaConflictError(message, table=table, column=column, reason=reason)

    def _diff_table(
        self,
        table: Table,
        live: Table,
        result: MigrationPlan,
        deferred_fks: List[Operation],
    ) -> List[Operation]:
        phases = _TablePlan()
        current = live

        # Renames first so the rest of the diff sees the new names.
        for column in table.columns:
            if column.primary_key or not column.previous_name:
                continue
            if current.column(column.name) is None and current.column(column.previous_name) is not None:
                op = RenameColumn(table.name, column.previous_name, column.name)
                phases.renames.append(op)
                current = simulate({current.name: current}, op)[current.name]

        desired_columns = set(table.column_names())
        dropped_indexes: Set[str] = set()

        for live_column in current.columns:
            if live_column.primary_key or live_column.name in desired_columns:
                continue
            drop = DropColumn(table.name, live_column)
            if not self._config.drop_column:
                result.withheld.append(drop)
                continue
            fk = current.foreign_key(live_column.name)
            if fk is not None:
                phases.required_drops.append(DropForeignKey(table.name, fk))
            for idx in current.planned_indexes():
                if live_column.name in idx.columns and idx.name not in dropped_indexes:
                    phases.required_drops.append(DropIndex(table.name, idx))
                    dropped_indexes.add(idx.name)
            phases.column_drops.append(drop)

        for column in table.columns:
            if column.primary_key:
                continue
            live_column = current.column(column.name)
            fk = table.foreign_key(column.name)

            if live_column is None:
                if not column.nullable and column.default is None:
                    raise self._conflict(
                        table.name,
                        column.name,
                        "not_null_without_default",
                        f"Cannot add NOT NULL column '{column.name}' without a default "
                        f"to existing table '{table.name}'",
                    )
                inline = fk if fk is not None and self._caps.forward_references else None
                phases.column_changes.append(AddColumn(table.name, column, foreign_key=inline))
                if fk is not None and inline is None:
                    deferred_fks.append(AddForeignKey(table.name, fk))
                continue

            change = compare_types(live_column.type, column.type)
            if change == TypeChange.CONFLICT:
                raise self._conflict(
                    table.name,
                    column.name,
                    "incompatible_type",
                    f"Column '{table.name}.{column.name}' cannot change from "
                    f"{live_column.type.describe()} to {column.type.describe()}",
                )
            if live_column.nullable and not column.nullable:
                raise self._conflict(
                    table.name,
                    column.name,
                    "nullability_tightened",
                    f"Column '{table.name}.{column.name}' cannot become NOT NULL",
                )
            if change == TypeChange.WIDEN:
                phases.column_changes.append(WidenColumn(table.name, column, live_column))
            elif live_column.nullable != column.nullable or live_column.default != column.default:
                modified = replace(column, check_name=live_column.check_name)
                phases.column_changes.append(ModifyColumn(table.name, modified, live_column))

            if fk is not None:
                live_fk = current.foreign_key(column.name)
                if live_fk is None:
                    deferred_fks.append(AddForeignKey(table.name, fk))
                elif live_fk.ref_table != fk.ref_table:
                    raise self._conflict(
                        table.name,
                        column.name,
                        "reference_changed",
                        f"Column '{table.name}.{column.name}' references '{live_fk.ref_table}', "
                        f"not '{fk.ref_table}'",
                    )

        self._diff_indexes(table, current, dropped_indexes, phases, result)

        if self._tags and table.name in self._tags:
            block = self._tags[table.name]
            if current.sequence_base is None:
                logger.warning(
                    f"Table '{table.name}' has no identity sequence; cannot persist tag {block.tag}"
                )
            elif current.tag != block.tag:
                logger.warning(
                    f"Retagging table '{table.name}' from {current.tag} to {block.tag}"
                )
                phases.identity.append(
                    SetIdentityStart(table.name, block.start, previous_base=current.sequence_base)
                )

        return phases.operations()

    def _diff_indexes(
        self,
        table: Table,
        current: Table,
        dropped: Set[str],
        phases: _TablePlan,
        result: MigrationPlan,
    ) -> None:
        available = [idx for idx in current.planned_indexes() if idx.name not in dropped]
        matched: Set[str] = set()

        for idx in table.planned_indexes():
            same_name = current.index(idx.name)
            if same_name is not None and same_name.name not in dropped:
                if same_name.same_definition(idx):
                    matched.add(same_name.name)
                    continue
                if same_name.implicit or not self._config.drop_index:
                    raise self._conflict(
                        table.name,
                        None,
                        "index_redefined",
                        f"Index '{idx.name}' on '{table.name}' is redefined; "
                        f"enable drop_index to replace it",
                    )
                matched.add(same_name.name)
                phases.index_drops.append(DropIndex(table.name, same_name))
                phases.index_adds.append(AddIndex(table.name, idx))
                continue

            equivalent = next(
                (
                    live_idx
                    for live_idx in available
                    if live_idx.name not in matched and live_idx.same_definition(idx)
                ),
                None,
            )
            if equivalent is not None:
                matched.add(equivalent.name)
                continue
            phases.index_adds.append(AddIndex(table.name, idx))

        for live_idx in available:
            if live_idx.name in matched:
                continue
            drop = DropIndex(table.name, live_idx)
            if self._config.drop_index:
                phases.index_drops.append(drop)
            else:
                result.withheld.append(drop)


def plan(
    desired: List[Table],
    live: Dict[str, Table],
    config: Optional[MigrateConfig] = None,
    *,
    tags: Optional[Dict[str, IDBlock]] = None,
    capabilities: Optional[DialectCapabilities] = None,
) -> MigrationPlan:
    """Plan the migration from live to desired tables.

    Example:
        >>> result = plan(desired, live, MigrateConfig(drop_column=True))
        >>> print(result.report())
    """
    return DiffPlanner(config, capabilities, tags).plan(desired, live)
