"""
Error types for entmigrate.

This module defines all exception types raised by the migration engine:
- EntMigrateError: Base exception
- ConnectionError: Database connection issues (retry the whole run)
- SchemaValidationError: The desired schema is inconsistent
- SchemaConflictError: Live schema conflicts with the desired schema
- UnsupportedTypeError: A logical type has no representation in a dialect
- ExecutionError: A DDL statement failed
- PartialApplyError: A DDL statement failed after others committed
- MigrationCancelledError: The run was cancelled between operations
- ConstraintViolation: A query-time constraint violation

Invariants:
    - All errors inherit from EntMigrateError
    - Errors carry table/column/operation context in `details`
    - Planning errors are raised before any DDL is issued
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from .migrate.operations import Operation


class EntMigrateError(Exception):
    """Base exception for all entmigrate errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "ENTMIGRATE_ERROR"
        self.details = details or {}


class ConnectionError(EntMigrateError):
    """Failed to talk to the database.

    Raised when:
    - The database is unreachable
    - The connection drops while inspecting or executing

    The engine never retries internally; callers may retry the whole run.
    """

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        applied: int = 0,
    ) -> None:
        super().__init__(
            message,
            code="CONNECTION_ERROR",
            details={"url": url, "applied": applied},
        )
        self.url = url
        self.applied = applied


class SchemaValidationError(EntMigrateError):
    """The desired schema is not internally consistent."""

    def __init__(self, message: str, errors: Optional[list[str]] = None) -> None:
        super().__init__(
            message,
            code="SCHEMA_VALIDATION_ERROR",
            details={"errors": errors or []},
        )
        self.errors = errors or []


class SchemaConflictError(EntMigrateError):
    """Live schema conflicts with the desired schema.

    Raised when:
    - A column type changes in a non-widening way
    - A nullable column becomes NOT NULL
    - A NOT NULL column without a default is added to an existing table
    - An index name is redefined while index drops are disabled
    - Verification after a run still finds differences

    Requires human resolution; the engine never guesses a destructive change.
    """

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        column: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="SCHEMA_CONFLICT",
            details={"table": table, "column": column, "reason": reason},
        )
        self.table = table
        self.column = column
        self.reason = reason


class UnsupportedTypeError(EntMigrateError):
    """A logical field type cannot be represented in the target dialect."""

    def __init__(
        self,
        message: str,
        dialect: Optional[str] = None,
        table: Optional[str] = None,
        field_name: Optional[str] = None,
        kind: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="UNSUPPORTED_TYPE",
            details={
                "dialect": dialect,
                "table": table,
                "field": field_name,
                "kind": kind,
            },
        )
        self.dialect = dialect
        self.table = table
        self.field_name = field_name
        self.kind = kind


class ExecutionError(EntMigrateError):
    """A DDL statement failed while executing a plan.

    Attributes:
        operation: The operation whose statement failed
        applied: Number of operations that remain applied
        total: Number of operations in the plan
        statement: The failing SQL statement
    """

    code_name = "EXECUTION_ERROR"

    def __init__(
        self,
        message: str,
        operation: Optional[Operation] = None,
        applied: int = 0,
        total: int = 0,
        statement: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code=self.code_name,
            details={
                "operation": operation.describe() if operation is not None else None,
                "table": operation.table if operation is not None else None,
                "applied": applied,
                "total": total,
                "statement": statement,
            },
        )
        self.operation = operation
        self.applied = applied
        self.total = total
        self.statement = statement


class PartialApplyError(ExecutionError):
    """A DDL statement failed after earlier operations already committed.

    Only raised on dialects without transactional DDL. `applied` is the
    number of operations that committed and `last_applied` is the last one.
    """

    code_name = "PARTIAL_APPLY"

    def __init__(
        self,
        message: str,
        operation: Optional[Operation] = None,
        applied: int = 0,
        total: int = 0,
        statement: Optional[str] = None,
        last_applied: Optional[Operation] = None,
    ) -> None:
        super().__init__(message, operation, applied, total, statement)
        self.last_applied = last_applied
        self.details["last_applied"] = (
            last_applied.describe() if last_applied is not None else None
        )


class MigrationCancelledError(ExecutionError):
    """The run was cancelled or timed out between two operations."""

    code_name = "MIGRATION_CANCELLED"

    def __init__(
        self,
        message: str,
        applied: int = 0,
        total: int = 0,
        rolled_back: bool = False,
    ) -> None:
        super().__init__(message, applied=applied, total=total)
        self.rolled_back = rolled_back
        self.details["rolled_back"] = rolled_back


class ConstraintViolation(EntMigrateError):
    """A write was rejected by a unique, check, foreign-key or not-null rule.

    Raised at application level by EntityTypeDef.check_payload and produced
    from driver errors by as_constraint_violation().
    """

    def __init__(
        self,
        message: str,
        kind: Optional[str] = None,
        table: Optional[str] = None,
        column: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="CONSTRAINT_VIOLATION",
            details={"kind": kind, "table": table, "column": column},
        )
        self.kind = kind
        self.table = table
        self.column = column
