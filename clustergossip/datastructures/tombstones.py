"""
Tombstones for permanently removed members.

A tombstone is recorded for a member's ``UniqueAddress`` when it is removed,
before the member entry leaves the membership table, so a lagging peer whose
gossip still carries the old entry cannot re-insert it. Merge and re-join
checks look tombstones up by plain ``Address``: it is the recurrence of the
old address, under any uid, that is suppressed while the window is open.
Expired tombstones are pruned so a new incarnation is never blocked forever.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from .cluster_types import Address, UniqueAddress
from .type_aliases import DurationMillis, TimestampMillis


@dataclass(frozen=True, slots=True)
class TombstoneStore:
    """Immutable map of removed incarnations to their removal timestamp (ms)."""

    _entries: Mapping[UniqueAddress, TimestampMillis] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def __post_init__(self) -> None:
        if not isinstance(self._entries, MappingProxyType):
            object.__setattr__(self, "_entries", MappingProxyType(dict(self._entries)))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TombstoneStore):
            return NotImplemented
        return dict(self._entries) == dict(other._entries)

    def __hash__(self) -> int:
        return hash(frozenset(self._entries.items()))

    def record(self, node: UniqueAddress, timestamp: TimestampMillis) -> TombstoneStore:
        """Record a removal; an older timestamp never replaces a newer one."""
        current = self._entries.get(node)
        if current is not None and current >= timestamp:
            return self
        entries = dict(self._entries)
        entries[node] = timestamp
        return TombstoneStore(_entries=entries)

    def removed_at(self, address: Address) -> TimestampMillis | None:
        """Newest removal timestamp recorded for any incarnation of ``address``."""
        stamps = [ts for node, ts in self._entries.items() if node.address == address]
        return max(stamps) if stamps else None

    def is_tombstoned(
        self,
        address: Address,
        as_of: TimestampMillis,
        retention: DurationMillis | None = None,
    ) -> bool:
        """
        True if ``address`` was removed at or before ``as_of``.

        With ``retention`` given, tombstones older than the window count as
        expired even if they have not been pruned yet.
        """
        for node, removed_at in self._entries.items():
            if node.address != address or removed_at > as_of:
                continue
            if retention is None or as_of - removed_at < retention:
                return True
        return False

    def contains(self, node: UniqueAddress) -> bool:
        return node in self._entries

    def has_address(self, address: Address) -> bool:
        """True if any incarnation of ``address`` is tombstoned."""
        return any(node.address == address for node in self._entries)

    def prune(
        self, retention: DurationMillis, now: TimestampMillis
    ) -> TombstoneStore:
        """Drop tombstones whose retention window has elapsed."""
        kept = {
            node: ts for node, ts in self._entries.items() if now - ts < retention
        }
        if len(kept) == len(self._entries):
            return self
        return TombstoneStore(_entries=kept)

    def expired(
        self, retention: DurationMillis, now: TimestampMillis
    ) -> frozenset[UniqueAddress]:
        return frozenset(
            node for node, ts in self._entries.items() if now - ts >= retention
        )

    def merge(self, other: TombstoneStore) -> TombstoneStore:
        """Union keeping the newest timestamp per incarnation."""
        entries = dict(self._entries)
        for node, ts in other._entries.items():
            if ts > entries.get(node, -1):
                entries[node] = ts
        return TombstoneStore(_entries=entries)

    def items(self) -> Iterator[tuple[UniqueAddress, TimestampMillis]]:
        return iter(sorted(self._entries.items()))

    def nodes(self) -> frozenset[UniqueAddress]:
        return frozenset(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, node: object) -> bool:
        return node in self._entries
