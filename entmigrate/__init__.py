"""
entmigrate - Declarative schema migration for SQLite, MySQL and PostgreSQL.

Entity types are declared once; the migrator inspects the live database,
plans the smallest safe set of changes and applies them:
- Type mapping per dialect, with check constraints where a type is emulated
- Additive by default; column and index drops behind explicit toggles
- Optional global unique ids: each table owns a block of 2^32 identifiers

Example:
    >>> from sqlalchemy import create_engine
    >>> from entmigrate import EntityTypeDef, MigrateConfig, Migrator, SchemaRegistry, field
    >>>
    >>> User = EntityTypeDef(
    ...     name="User",
    ...     fields=(
    ...         field("name", "str", size=10),
    ...         field("age", "int32", nullable=True),
    ...     ),
    ... )
    >>> registry = SchemaRegistry([User])
    >>> migrator = Migrator(create_engine("sqlite:///app.db"), MigrateConfig(global_unique_id=True))
    >>> result = migrator.migrate(registry)

Invariants:
    - Planning never touches the database; conflicts abort before any DDL
    - A second migration with the same schema is a no-op
    - Live tags are never reassigned

Version: 1.0.0
"""

__version__ = "1.0.0"

from .config import DatabaseConfig, MigrateConfig, ObservabilityConfig, ToolConfig
from .constraints import as_constraint_violation, constraint_kind, is_constraint_error
from .dialect import Dialect, get_dialect
from .errors import (
    ConnectionError,
    ConstraintViolation,
    EntMigrateError,
    ExecutionError,
    MigrationCancelledError,
    PartialApplyError,
    SchemaConflictError,
    SchemaValidationError,
    UnsupportedTypeError,
)
from .migrate import (
    DiffPlanner,
    IDBlock,
    IdentifierAllocator,
    MigrationPlan,
    MigrationResult,
    Migrator,
    SchemaInspector,
)
from .predicates import contains_fold, equal_fold
from .schema import (
    EntityTypeDef,
    FieldDef,
    FieldKind,
    IndexDef,
    ReferenceDef,
    SchemaRegistry,
    field,
    index,
    load_schema,
    ref,
)

__all__ = [
    "__version__",
    # Migration
    "Migrator",
    "MigrationResult",
    "MigrationPlan",
    "DiffPlanner",
    "SchemaInspector",
    "IdentifierAllocator",
    "IDBlock",
    # Schema
    "SchemaRegistry",
    "EntityTypeDef",
    "FieldDef",
    "FieldKind",
    "IndexDef",
    "ReferenceDef",
    "field",
    "index",
    "ref",
    "load_schema",
    # Dialects and helpers
    "Dialect",
    "get_dialect",
    "equal_fold",
    "contains_fold",
    "is_constraint_error",
    "constraint_kind",
    "as_constraint_violation",
    # Configuration
    "MigrateConfig",
    "DatabaseConfig",
    "ObservabilityConfig",
    "ToolConfig",
    # Errors
    "EntMigrateError",
    "ConnectionError",
    "SchemaValidationError",
    "SchemaConflictError",
    "UnsupportedTypeError",
    "ExecutionError",
    "PartialApplyError",
    "MigrationCancelledError",
    "ConstraintViolation",
]
