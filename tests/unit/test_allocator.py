"""
Unit tests for the identifier allocator.

Tests cover:
- Fresh allocation in declaration order
- Tag stability for live tables
- Collision handling
- Renamed tables keeping their tag
- Tag exhaustion
"""

import pytest

from entmigrate.errors import SchemaConflictError
from entmigrate.migrate.allocator import MAX_TAG, IDBlock, IdentifierAllocator


def _base(tag):
    return tag << 32


class TestIDBlock:
    """Tests for IDBlock."""

    def test_bounds(self):
        block = IDBlock("users", 3)
        assert block.start == 3 * 2**32
        assert block.end == 4 * 2**32

    def test_contains(self):
        block = IDBlock("users", 1)
        assert 2**32 + 1 in block
        assert 2**33 - 1 in block
        assert 2**32 not in block
        assert 2**33 not in block


class TestAllocate:
    """Tests for IdentifierAllocator.allocate."""

    @pytest.fixture
    def allocator(self):
        return IdentifierAllocator()

    def test_empty_database(self, allocator):
        """Tags follow declaration order from zero."""
        order = ["cars", "conversions", "custom_types", "groups", "medias", "pets", "users"]
        blocks = allocator.allocate(order, {})
        assert [blocks[t].tag for t in order] == list(range(7))

    def test_live_tables_keep_tags(self, allocator):
        """Tags are read back from sequence bases, not from position."""
        bases = {"cars": _base(0), "conversions": _base(1), "custom_types": _base(2), "users": _base(3)}
        order = ["cars", "conversions", "custom_types", "groups", "medias", "pets", "users"]

        blocks = allocator.allocate(order, bases)

        assert blocks["users"].tag == 3
        assert blocks["groups"].tag == 4
        assert blocks["medias"].tag == 5
        assert blocks["pets"].tag == 6

    def test_sequence_progress_does_not_change_tag(self, allocator):
        """Rows inserted into a block keep the same tag."""
        blocks = allocator.allocate(["users"], {"users": _base(5) + 1000})
        assert blocks["users"].tag == 5

    def test_new_tags_above_max(self, allocator):
        blocks = allocator.allocate(["pets", "users"], {"users": _base(9)})
        assert blocks["pets"].tag == 10

    def test_tags_of_undeclared_tables_are_not_reused(self, allocator):
        """A live table missing from the schema still holds its tag."""
        bases = {"users": _base(0), "legacy": _base(4)}
        blocks = allocator.allocate(["users", "pets"], bases)
        assert blocks["pets"].tag == 5

    def test_tables_without_sequence_are_new(self, allocator):
        """A live table with no identity sequence gets a fresh tag."""
        blocks = allocator.allocate(["users", "pets"], {"users": _base(2), "pets": None})
        assert blocks["pets"].tag == 3

    def test_collision_first_claimant_wins(self, allocator):
        """Two tables on tag 0: the first declared keeps it."""
        bases = {"users": 0, "pets": 0, "cars": _base(1)}
        blocks = allocator.allocate(["users", "pets", "cars"], bases)
        assert blocks["users"].tag == 0
        assert blocks["cars"].tag == 1
        assert blocks["pets"].tag == 2

    def test_rename_keeps_tag(self, allocator):
        bases = {"users": _base(0), "people_old": _base(1)}
        blocks = allocator.allocate(["users", "people"], bases, renames={"people": "people_old"})
        assert blocks["people"].tag == 1

    def test_rename_target_already_live(self, allocator):
        """When the new name already exists its own base is used."""
        bases = {"people": _base(2), "people_old": _base(1)}
        blocks = allocator.allocate(["people"], bases, renames={"people": "people_old"})
        assert blocks["people"].tag == 2

    def test_blocks_never_overlap(self, allocator):
        order = [f"t{i}" for i in range(20)]
        blocks = allocator.allocate(order, {"t3": _base(7), "t9": _base(1)})
        tags = [b.tag for b in blocks.values()]
        assert len(set(tags)) == len(tags)

    def test_exhausted_tag_space(self, allocator):
        with pytest.raises(SchemaConflictError) as exc_info:
            allocator.allocate(["users", "pets"], {"users": _base(MAX_TAG)})
        assert exc_info.value.reason == "tag_space_exhausted"
        assert exc_info.value.table == "pets"

    def test_pure(self, allocator):
        """Same inputs give the same blocks."""
        bases = {"users": _base(3)}
        assert allocator.allocate(["pets", "users"], bases) == allocator.allocate(["pets", "users"], bases)
