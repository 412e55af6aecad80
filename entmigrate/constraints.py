"""
Constraint-error classification.

Helps callers recognise a rejected write (unique, check, foreign key,
not null) without knowing which driver produced it.

Example:
    >>> try:
    ...     conn.execute(insert_stmt)
    ... except Exception as e:
    ...     if is_constraint_error(e):
    ...         return 409
    ...     raise
"""

from __future__ import annotations

import re
from typing import Optional, Tuple, Union

from sqlalchemy.exc import IntegrityError, StatementError

from .dialect import BaseDialect, Dialect, get_dialect
from .errors import ConstraintViolation

_SQLITE_COLUMN_RE = re.compile(r"constraint failed: (\w+)\.(\w+)")
# CHECK failures quote the expression, which names the column.
_SQLITE_QUOTED_RE = re.compile(r'constraint failed: .*?"(\w+)"')


def _unwrap(err: BaseException) -> BaseException:
    if isinstance(err, StatementError) and err.orig is not None:
        return err.orig
    return err


def constraint_kind(
    err: BaseException,
    dialect: Optional[Union[str, BaseDialect]] = None,
) -> Optional[str]:
    """Kind of constraint an error reports.

    Args:
        err: A SQLAlchemy or driver exception
        dialect: Restrict classification to one dialect; all are tried if None

    Returns:
        "unique", "check", "foreign_key", "not_null", "integrity", or None
        when the error is not a constraint violation
    """
    if err is None:
        return None
    orig = _unwrap(err)
    if dialect is not None:
        kind = get_dialect(dialect).classify_error(orig)
    else:
        kind = None
        for member in Dialect:
            found = member.implementation.classify_error(orig)
            if found is not None and found != "integrity":
                kind = found
                break
            kind = kind or found
    if kind is None and isinstance(err, IntegrityError):
        return "integrity"
    return kind


def is_constraint_error(
    err: BaseException,
    dialect: Optional[Union[str, BaseDialect]] = None,
) -> bool:
    """True when the error is a constraint violation on any supported dialect."""
    return constraint_kind(err, dialect) is not None


def _subject(orig: BaseException) -> Tuple[Optional[str], Optional[str]]:
    diag = getattr(orig, "diag", None)
    if diag is not None:
        return getattr(diag, "table_name", None), getattr(diag, "column_name", None)
    message = str(orig)
    match = _SQLITE_COLUMN_RE.search(message)
    if match:
        return match.group(1), match.group(2)
    match = _SQLITE_QUOTED_RE.search(message)
    if match:
        return None, match.group(1)
    return None, None


def as_constraint_violation(
    err: BaseException,
    dialect: Optional[Union[str, BaseDialect]] = None,
) -> Optional[ConstraintViolation]:
    """Convert a driver error into a ConstraintViolation.

    Returns:
        ConstraintViolation, or None when the error is not a constraint violation
    """
    kind = constraint_kind(err, dialect)
    if kind is None:
        return None
    orig = _unwrap(err)
    table, column = _subject(orig)
    violation = ConstraintViolation(str(orig), kind=kind, table=table, column=column)
    violation.__cause__ = err
    return violation
