"""
Identifier allocator for global-unique-id mode.

Every table owns a block of 2^32 identifiers. The block is identified by
a tag, and the first id of the block is `(tag << 32) + 1`. The tag is not
stored anywhere else: it is recovered from the table's identity sequence
as `base >> 32`, which keeps allocation stateless and lets any process
re-derive it from the database.

Invariants:
    - Tags are never reused and blocks never overlap
    - A live table keeps its tag across runs and schema reorderings
    - New tags are handed out above every tag in use, in declaration order
    - Tags stay below 2^31 so every id fits a signed 64-bit integer

How to change safely:
    - Never change the shift; existing ids encode it
    - Keep allocate() a pure function of its inputs
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..errors import SchemaConflictError
from .table import TAG_SHIFT

logger = logging.getLogger(__name__)

MAX_TAG = 2**31 - 1


@dataclass(frozen=True)
class IDBlock:
    """Range of identifiers owned by one table.

    Attributes:
        table: Table name
        tag: Block tag
    """

    table: str
    tag: int

    @property
    def start(self) -> int:
        """Sequence base; the first id handed out is start + 1."""
        return self.tag << TAG_SHIFT

    @property
    def end(self) -> int:
        """Exclusive upper bound of the block."""
        return (self.tag + 1) << TAG_SHIFT

    def __contains__(self, identifier: int) -> bool:
        return self.start < identifier < self.end


class IdentifierAllocator:
    """Resolves one tag per desired table.

    Example:
        >>> allocator = IdentifierAllocator()
        >>> blocks = allocator.allocate(["cars", "users"], {"users": 3 << 32})
        >>> blocks["users"].tag, blocks["cars"].tag
        (3, 4)
    """

    def allocate(
        self,
        order: List[str],
        bases: Dict[str, Optional[int]],
        renames: Optional[Dict[str, str]] = None,
    ) -> Dict[str, IDBlock]:
        """Allocate id blocks.

        Args:
            order: Desired table names in declaration order
            bases: Sequence base of every live table (None when it has none)
            renames: Desired table name -> live table it is renamed from

        Returns:
            Mapping of desired table name to its IDBlock

        Raises:
            SchemaConflictError: If the tag space is exhausted
        """
        renames = renames or {}
        claimed: Dict[int, str] = {}
        tags: Dict[str, int] = {}
        pending: List[str] = []

        def live_name(table: str) -> str:
            if table not in bases and renames.get(table) in bases:
                return renames[table]
            return table

        for table in order:
            base = bases.get(live_name(table))
            if base is None:
                pending.append(table)
                continue
            tag = base >> TAG_SHIFT
            if tag in claimed:
                logger.warning(
                    f"Table '{table}' shares tag {tag} with '{claimed[tag]}'; assigning a new tag"
                )
                pending.append(table)
                continue
            claimed[tag] = table
            tags[table] = tag

        used_live = {live_name(t) for t in order}
        for table, base in bases.items():
            if table in used_live or base is None:
                continue
            claimed.setdefault(base >> TAG_SHIFT, table)

        next_tag = max(claimed) + 1 if claimed else 0
        for table in pending:
            if next_tag > MAX_TAG:
                raise SchemaConflictError(
                    f"No identifier tag left for table '{table}'",
                    table=table,
                    reason="tag_space_exhausted",
                )
            tags[table] = next_tag
            claimed[next_tag] = table
            logger.info(f"Allocated tag {next_tag} to table '{table}'")
            next_tag += 1

        for table, tag in tags.items():
            if tag > MAX_TAG:
                raise SchemaConflictError(
                    f"Table '{table}' carries tag {tag}, above the maximum {MAX_TAG}",
                    table=table,
                    reason="tag_out_of_range",
                )

        return {table: IDBlock(table, tags[table]) for table in order}
