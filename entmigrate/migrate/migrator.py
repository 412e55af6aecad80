"""
Migrator: inspect, allocate, plan, execute and verify.

The Migrator is the entry point of the engine. One call to migrate()
makes the live database match a SchemaRegistry:

    1. Inspect every live table
    2. Allocate id blocks (global-unique-id mode)
    3. Plan (pure; conflicts abort here with nothing executed)
    4. Render each operation against the table state it applies to
    5. Execute: one transaction on SQLite and PostgreSQL, statement by
       statement on MySQL
    6. Verify: re-inspect and re-plan; anything left over is a conflict

Invariants:
    - One connection per run; operations run sequentially
    - Cancellation and the timeout are honored only between operations
    - On transactional dialects a failure leaves the database untouched
    - On MySQL a failure reports how many operations committed

How to change safely:
    - Never retry inside the engine; callers re-run the whole migration
    - Keep the SQLite foreign_keys pragma outside the transaction; SQLite
      ignores it inside one
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from ..config import MigrateConfig
from ..dialect import BaseDialect, SQLiteDialect, get_dialect
from ..errors import (
    ConnectionError,
    EntMigrateError,
    ExecutionError,
    MigrationCancelledError,
    PartialApplyError,
    SchemaConflictError,
)
from ..schema.registry import SchemaRegistry
from .allocator import IDBlock, IdentifierAllocator
from .inspector import SchemaInspector
from .operations import MigrationPlan, Operation, RenameTable, simulate
from .planner import DiffPlanner
from .table import Table, desired_tables

logger = logging.getLogger(__name__)

RenderedOperation = Tuple[Operation, List[str]]


@dataclass
class MigrationResult:
    """Outcome of a migrate() call.

    Attributes:
        plan: The executed plan
        applied: Number of operations applied
        statements: SQL statements executed, in order
        blocks: Id blocks per table (global-unique-id mode only)
        verified: Whether the post-run verification passed
        duration_seconds: Wall-clock duration of the run
    """

    plan: MigrationPlan
    applied: int = 0
    statements: List[str] = field(default_factory=list)
    blocks: Dict[str, IDBlock] = field(default_factory=dict)
    verified: bool = False
    duration_seconds: float = 0.0


@dataclass
class _Prepared:
    desired: List[Table]
    live: Dict[str, Table]
    blocks: Optional[Dict[str, IDBlock]]
    plan: MigrationPlan


class Migrator:
    """Reconciles a database with a desired schema.

    Args:
        engine: SQLAlchemy engine of the target database
        config: Migration toggles (defaults: additive only, no tagging)
        dialect: Dialect override; resolved from the engine if None

    Example:
        >>> migrator = Migrator(create_engine("sqlite:///app.db"),
        ...                     MigrateConfig(global_unique_id=True))
        >>> result = migrator.migrate(registry)
        >>> print(result.plan.report())
    """

    def __init__(
        self,
        engine: Engine,
        config: Optional[MigrateConfig] = None,
        dialect: Optional[Union[str, BaseDialect]] = None,
    ) -> None:
        self._engine = engine
        self._config = config or MigrateConfig()
        self._dialect = get_dialect(dialect or engine.dialect.name)

    @property
    def config(self) -> MigrateConfig:
        return self._config

    @property
    def dialect(self) -> BaseDialect:
        return self._dialect

    # Public API

    def inspect(self) -> Dict[str, Table]:
        """Inspect every live table."""
        with self._connect() as conn:
            return SchemaInspector(conn, self._dialect).inspect_all()

    def plan(self, registry: SchemaRegistry) -> MigrationPlan:
        """Compute the plan without executing it.

        Raises:
            SchemaValidationError: If the registry is inconsistent
            SchemaConflictError: If the live schema cannot evolve safely
            UnsupportedTypeError: If a field cannot be represented
        """
        with self._connect() as conn:
            return self._prepare(conn, registry).plan

    def sql(self, registry: SchemaRegistry) -> List[str]:
        """Dry run: the statements migrate() would execute."""
        with self._connect() as conn:
            prepared = self._prepare(conn, registry)
            rendered = self._render(prepared.plan, prepared.live)
        return [statement for _, statements in rendered for statement in statements]

    def migrate(
        self,
        registry: SchemaRegistry,
        cancel: Optional[threading.Event] = None,
    ) -> MigrationResult:
        """Make the live database match the registry.

        Args:
            registry: Desired schema
            cancel: Event checked between operations; setting it stops the run

        Returns:
            MigrationResult

        Raises:
            SchemaValidationError: Invalid registry (nothing executed)
            SchemaConflictError: Unsafe change or failed verification
            UnsupportedTypeError: Field not representable (nothing executed)
            ExecutionError: A statement failed (transactional dialects)
            PartialApplyError: A statement failed on MySQL
            MigrationCancelledError: Cancelled or timed out
            ConnectionError: The database is unreachable
        """
        started = time.monotonic()
        deadline = started + self._config.timeout_seconds if self._config.timeout_seconds else None

        with self._connect() as conn:
            prepared = self._prepare(conn, registry)
            plan = prepared.plan
            result = MigrationResult(plan=plan, blocks=prepared.blocks or {})
            logger.info(plan.report())

            if not plan.is_empty:
                rendered = self._render(plan, prepared.live)
                if self._dialect.capabilities.transactional_ddl:
                    self._execute_transactional(conn, rendered, result, cancel, deadline)
                else:
                    self._execute_per_statement(conn, rendered, result, cancel, deadline)

            if self._config.verify:
                self._verify(conn, registry)
                result.verified = True

        result.duration_seconds = time.monotonic() - started
        logger.info(
            f"Migration finished: {result.applied} operation(s), "
            f"{len(result.statements)} statement(s) in {result.duration_seconds:.2f}s"
        )
        return result

    # Steps

    def _connect(self) -> Connection:
        try:
            conn = self._engine.connect()
        except (DBAPIError, SQLAlchemyError) as e:
            url = self._engine.url.render_as_string(hide_password=True)
            logger.error(f"Cannot connect to {url}: {e}")
            raise ConnectionError(f"Cannot connect to database: {e}", url=url) from e
        # Transactions are opened with explicit BEGIN and COMMIT statements.
        return conn.execution_options(isolation_level="AUTOCOMMIT")

    def _prepare(self, conn: Connection, registry: SchemaRegistry) -> _Prepared:
        registry.validate()
        desired = desired_tables(registry, self._dialect)
        inspector = SchemaInspector(conn, self._dialect)
        live = inspector.inspect_all()

        blocks = None
        if self._config.global_unique_id:
            renames = {t.name: t.previous_name for t in desired if t.previous_name}
            blocks = IdentifierAllocator().allocate(
                [t.name for t in desired], inspector.sequence_bases(), renames
            )

        planner = DiffPlanner(self._config, self._dialect.capabilities, blocks)
        return _Prepared(desired, live, blocks, planner.plan(desired, live))

    def _render(self, plan: MigrationPlan, live: Dict[str, Table]) -> List[RenderedOperation]:
        working = dict(live)
        rendered = []
        for op in plan:
            before = working.get(op.old_name if isinstance(op, RenameTable) else op.table)
            working = simulate(working, op)
            statements = self._dialect.render(op, before, working.get(op.table))
            rendered.append((op, statements))
        return rendered

    def _cancel_reason(self, cancel: Optional[threading.Event], deadline: Optional[float]) -> Optional[str]:
        if cancel is not None and cancel.is_set():
            return "cancelled"
        if deadline is not None and time.monotonic() >= deadline:
            return f"timed out after {self._config.timeout_seconds}s"
        return None

    def _execute(self, conn: Connection, statement: str) -> None:
        logger.debug(f"SQL: {statement}")
        conn.exec_driver_sql(statement, execution_options={"no_parameters": True})

    def _execute_transactional(
        self,
        conn: Connection,
        rendered: List[RenderedOperation],
        result: MigrationResult,
        cancel: Optional[threading.Event],
        deadline: Optional[float],
    ) -> None:
        total = len(rendered)
        sqlite = isinstance(self._dialect, SQLiteDialect)
        restore_foreign_keys = False
        if sqlite:
            restore_foreign_keys = bool(conn.exec_driver_sql("PRAGMA foreign_keys").scalar())
            if restore_foreign_keys:
                conn.exec_driver_sql("PRAGMA foreign_keys = OFF")

        executed: List[str] = []
        conn.exec_driver_sql("BEGIN")
        try:
            for position, (op, statements) in enumerate(rendered):
                reason = self._cancel_reason(cancel, deadline)
                if reason:
                    raise MigrationCancelledError(
                        f"Migration {reason} before operation {position + 1}/{total}; rolled back",
                        applied=0,
                        total=total,
                        rolled_back=True,
                    )
                for statement in statements:
                    try:
                        self._execute(conn, statement)
                    except DBAPIError as e:
                        if e.connection_invalidated:
                            raise ConnectionError(f"Connection lost during migration: {e}") from e
                        raise ExecutionError(
                            f"Failed to apply {op.describe()}: {e.orig}",
                            operation=op,
                            applied=0,
                            total=total,
                            statement=statement,
                        ) from e
                    executed.append(statement)
                logger.info(f"Applied {op.describe()} ({position + 1}/{total})")

            if sqlite:
                violations = conn.exec_driver_sql("PRAGMA foreign_key_check").fetchall()
                if violations:
                    table = violations[0][0]
                    raise ExecutionError(
                        f"Migration leaves {len(violations)} foreign key violation(s), first in '{table}'",
                        applied=0,
                        total=total,
                    )
            conn.exec_driver_sql("COMMIT")
        except BaseException:
            logger.warning("Rolling back migration")
            conn.exec_driver_sql("ROLLBACK")
            raise
        finally:
            if restore_foreign_keys:
                conn.exec_driver_sql("PRAGMA foreign_keys = ON")

        result.applied = total
        result.statements.extend(executed)

    def _execute_per_statement(
        self,
        conn: Connection,
        rendered: List[RenderedOperation],
        result: MigrationResult,
        cancel: Optional[threading.Event],
        deadline: Optional[float],
    ) -> None:
        total = len(rendered)
        last_applied: Optional[Operation] = None
        for position, (op, statements) in enumerate(rendered):
            reason = self._cancel_reason(cancel, deadline)
            if reason:
                raise MigrationCancelledError(
                    f"Migration {reason} after {result.applied}/{total} operation(s); "
                    f"applied operations remain",
                    applied=result.applied,
                    total=total,
                    rolled_back=False,
                )
            for statement in statements:
                try:
                    self._execute(conn, statement)
                except DBAPIError as e:
                    if e.connection_invalidated:
                        raise ConnectionError(
                            f"Connection lost during migration: {e}", applied=result.applied
                        ) from e
                    logger.error(
                        f"Failed to apply {op.describe()} after {result.applied} committed operation(s)"
                    )
                    raise PartialApplyError(
                        f"Failed to apply {op.describe()}: {e.orig}",
                        operation=op,
                        applied=result.applied,
                        total=total,
                        statement=statement,
                        last_applied=last_applied,
                    ) from e
                result.statements.append(statement)
            result.applied += 1
            last_applied = op
            logger.info(f"Applied {op.describe()} ({position + 1}/{total})")

    def _verify(self, conn: Connection, registry: SchemaRegistry) -> None:
        try:
            remaining = self._prepare(conn, registry).plan
        except SchemaConflictError:
            raise
        except EntMigrateError as e:
            raise SchemaConflictError(
                f"Verification failed: {e.message}", reason="verification_failed"
            ) from e
        if not remaining.is_empty:
            first = remaining.operations[0]
            raise SchemaConflictError(
                f"Live schema still differs after migration ({len(remaining)} operation(s), "
                f"first: {first.describe()})",
                table=first.table,
                reason="verification_failed",
            )
        logger.info("Verified: live schema matches the desired schema")
