"""
Case-insensitive comparison predicates.

Thin wrappers over the dialect implementations so query code can stay
dialect-agnostic. Each call returns a Predicate whose SQL uses a named
bind parameter; pass `param` to keep names unique when combining several.

Example:
    >>> p = equal_fold("postgres", "name", "Alex")
    >>> conn.execute(text(f"SELECT id FROM users WHERE {p.sql}"), p.params)
"""

from __future__ import annotations

from typing import Union

from .dialect import BaseDialect, Predicate, get_dialect


def equal_fold(
    dialect: Union[str, BaseDialect],
    column: str,
    value: str,
    param: str = "v",
) -> Predicate:
    """Column equals value, ignoring case."""
    return get_dialect(dialect).equal_fold(column, value, param)


def contains_fold(
    dialect: Union[str, BaseDialect],
    column: str,
    substr: str,
    param: str = "p",
) -> Predicate:
    """Column contains substr, ignoring case.

    LIKE wildcards in substr are escaped and match literally.
    """
    return get_dialect(dialect).contains_fold(column, substr, param)
