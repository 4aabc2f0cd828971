"""
Immutable VectorClock for gossip versioning.

Each entry maps a node hash (the vector-clock identity of one node
incarnation) to a logical counter. Clocks are values: every operation
returns a new clock and entries with a zero counter are never stored, so two
clocks describing the same causal history always compare equal.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum

from hypothesis import strategies as st

from ..core.errors import InvalidOwner
from .type_aliases import JsonDict, VectorClockNodeId, VectorClockTimestamp


class Ordering(Enum):
    """Causal relation of one clock to another."""

    BEFORE = "before"
    AFTER = "after"
    CONCURRENT = "concurrent"
    SAME = "same"


@dataclass(frozen=True, slots=True)
class ClockEntry:
    """Single entry in a vector clock."""

    node_id: VectorClockNodeId
    timestamp: VectorClockTimestamp

    def __post_init__(self) -> None:
        if self.timestamp < 0:
            raise ValueError(f"Timestamp must be non-negative, got {self.timestamp}")
        if not self.node_id:
            raise ValueError("Node ID cannot be empty")


@dataclass(frozen=True, slots=True)
class VectorClock:
    """
    Immutable vector clock tracking causal order between gossip versions.

    The clock is the version of a ``Gossip`` snapshot. A node only ever
    increments its own entry; ``increment`` enforces that when the caller
    passes the local node as ``owner``.
    """

    _entries: frozenset[ClockEntry] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        node_ids = [entry.node_id for entry in self._entries]
        if len(node_ids) != len(set(node_ids)):
            raise ValueError("Duplicate node IDs in vector clock")
        if any(entry.timestamp == 0 for entry in self._entries):
            object.__setattr__(
                self,
                "_entries",
                frozenset(entry for entry in self._entries if entry.timestamp > 0),
            )

    @classmethod
    def empty(cls) -> VectorClock:
        """Create an empty vector clock."""
        return cls()

    @classmethod
    def from_dict(
        cls, clock_dict: Mapping[VectorClockNodeId, VectorClockTimestamp]
    ) -> VectorClock:
        """Create vector clock from a node -> counter mapping."""
        return cls(
            _entries=frozenset(
                ClockEntry(node_id=node_id, timestamp=timestamp)
                for node_id, timestamp in clock_dict.items()
                if timestamp > 0
            )
        )

    def to_dict(self) -> JsonDict:
        return {entry.node_id: entry.timestamp for entry in self._entries}

    def get_timestamp(self, node_id: VectorClockNodeId) -> VectorClockTimestamp:
        """Get timestamp for a specific node, returns 0 if not present."""
        for entry in self._entries:
            if entry.node_id == node_id:
                return entry.timestamp
        return 0

    def increment(
        self, node_id: VectorClockNodeId, owner: VectorClockNodeId | None = None
    ) -> VectorClock:
        """
        Return a copy with ``node_id``'s counter incremented by one.

        When ``owner`` is given the increment is only allowed for the owner's
        own entry; anything else raises ``InvalidOwner``.
        """
        if not node_id:
            raise ValueError("Node ID cannot be empty")
        if owner is not None and owner != node_id:
            raise InvalidOwner(node=node_id, owner=owner)

        counters = self.to_dict()
        counters[node_id] = counters.get(node_id, 0) + 1
        return VectorClock.from_dict(counters)

    def merge(self, other: VectorClock) -> VectorClock:
        """Least upper bound of both clocks: per-node maximum."""
        if not isinstance(other, VectorClock):
            raise TypeError(f"Can only merge with VectorClock, got {type(other)}")

        all_node_ids = self.node_ids() | other.node_ids()
        return VectorClock.from_dict(
            {
                node_id: max(self.get_timestamp(node_id), other.get_timestamp(node_id))
                for node_id in all_node_ids
            }
        )

    def compare(self, other: VectorClock) -> Ordering:
        """
        Compare with another vector clock.

        ``BEFORE`` iff every entry of self is <= the other's and at least one
        is strictly less, ``AFTER`` symmetrically, ``SAME`` iff all entries are
        equal, ``CONCURRENT`` otherwise.
        """
        if not isinstance(other, VectorClock):
            raise TypeError(f"Can only compare with VectorClock, got {type(other)}")

        some_less = False
        some_greater = False
        for node_id in self.node_ids() | other.node_ids():
            mine = self.get_timestamp(node_id)
            theirs = other.get_timestamp(node_id)
            if mine < theirs:
                some_less = True
            elif mine > theirs:
                some_greater = True
            if some_less and some_greater:
                return Ordering.CONCURRENT

        if some_less:
            return Ordering.BEFORE
        if some_greater:
            return Ordering.AFTER
        return Ordering.SAME

    def happens_before(self, other: VectorClock) -> bool:
        return self.compare(other) is Ordering.BEFORE

    def happens_after(self, other: VectorClock) -> bool:
        return self.compare(other) is Ordering.AFTER

    def concurrent_with(self, other: VectorClock) -> bool:
        return self.compare(other) is Ordering.CONCURRENT

    def prune(self, node_id: VectorClockNodeId) -> VectorClock:
        """Drop the entry of a node that has left the cluster for good."""
        return self.prune_many((node_id,))

    def prune_many(self, node_ids: Iterable[VectorClockNodeId]) -> VectorClock:
        dropped = frozenset(node_ids)
        if not dropped & self.node_ids():
            return self
        return VectorClock(
            _entries=frozenset(
                entry for entry in self._entries if entry.node_id not in dropped
            )
        )

    def is_empty(self) -> bool:
        return len(self._entries) == 0

    def node_ids(self) -> frozenset[VectorClockNodeId]:
        """Get all node IDs in this vector clock."""
        return frozenset(entry.node_id for entry in self._entries)

    def __iter__(self) -> Iterator[ClockEntry]:
        return iter(sorted(self._entries, key=lambda entry: entry.node_id))

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, node_id: object) -> bool:
        return any(entry.node_id == node_id for entry in self._entries)

    def __repr__(self) -> str:
        if not self._entries:
            return "VectorClock()"

        entries_str = ", ".join(
            f"{entry.node_id}:{entry.timestamp}" for entry in self
        )
        return f"VectorClock({{{entries_str}}})"


def merge(a: VectorClock, b: VectorClock) -> VectorClock:
    return a.merge(b)


def compare(a: VectorClock, b: VectorClock) -> Ordering:
    return a.compare(b)


# Hypothesis strategies for property-based testing
def vector_clock_strategy(
    max_entries: int = 6, node_ids: list[str] | None = None
) -> st.SearchStrategy[VectorClock]:
    """Generate valid VectorClock instances for testing."""
    keys = (
        st.sampled_from(node_ids)
        if node_ids is not None
        else st.text(
            min_size=1,
            max_size=12,
            alphabet=st.characters(
                whitelist_categories=["Ll", "Nd"], whitelist_characters="-_"
            ),
        )
    )
    return st.dictionaries(
        keys,
        st.integers(min_value=1, max_value=1000),
        max_size=max_entries,
    ).map(VectorClock.from_dict)


def ordered_vector_clocks_strategy() -> st.SearchStrategy[
    tuple[VectorClock, VectorClock]
]:
    """Generate pairs of vector clocks where the first happens before the second."""
    node_ids = ["node1", "node2", "node3"]

    @st.composite
    def generate_ordered_pair(draw):
        first = draw(vector_clock_strategy(max_entries=3, node_ids=node_ids))
        bumps = draw(
            st.dictionaries(
                st.sampled_from(node_ids),
                st.integers(min_value=0, max_value=50),
                min_size=1,
            )
        )
        second = first.to_dict()
        for node_id, bump in bumps.items():
            second[node_id] = second.get(node_id, 0) + bump
        # at least one strictly greater entry
        forced = draw(st.sampled_from(sorted(bumps)))
        second[forced] = second.get(forced, 0) + 1
        return first, VectorClock.from_dict(second)

    return generate_ordered_pair()
