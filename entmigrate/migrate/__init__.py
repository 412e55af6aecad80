"""
Migration engine: live-table model, inspector, planner, allocator, migrator.
"""

from .allocator import MAX_TAG, IDBlock, IdentifierAllocator
from .inspector import SchemaInspector
from .migrator import MigrationResult, Migrator
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
    OperationKind,
    RenameColumn,
    RenameTable,
    SetIdentityStart,
    WidenColumn,
    simulate,
    simulate_plan,
)
from .planner import DiffPlanner, plan, reference_order
from .table import TAG_SHIFT, Column, ForeignKey, Index, Table, desired_tables

__all__ = [
    "Migrator",
    "MigrationResult",
    "SchemaInspector",
    "DiffPlanner",
    "plan",
    "reference_order",
    "IdentifierAllocator",
    "IDBlock",
    "MAX_TAG",
    "TAG_SHIFT",
    "Table",
    "Column",
    "Index",
    "ForeignKey",
    "desired_tables",
    "MigrationPlan",
    "Operation",
    "OperationKind",
    "CreateTable",
    "RenameTable",
    "RenameColumn",
    "AddColumn",
    "WidenColumn",
    "ModifyColumn",
    "DropColumn",
    "AddIndex",
    "DropIndex",
    "AddForeignKey",
    "DropForeignKey",
    "SetIdentityStart",
    "simulate",
    "simulate_plan",
]
