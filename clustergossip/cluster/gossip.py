"""
Gossip: the mergeable snapshot of cluster membership.

A ``Gossip`` holds the member table, the overview (which nodes have seen this
version, plus per-observer reachability), the version vector clock and the
tombstones of removed members. Cross references are integer handles into
three tables (``all_addresses``, ``all_roles``, ``all_hashes``) so an address
string is stored once per snapshot, not once per reference.

Snapshots are values. Every operation returns a new snapshot built through
``Gossip.build``, which lays the tables out canonically (sorted, containing
exactly the referenced entries), so two snapshots describing the same state
are equal. That is what makes ``merge`` idempotent, commutative and
associative, the properties anti-entropy relies on.

Merge rules:
- version: vector clock least upper bound
- members: per ``UniqueAddress``, the entry furthest along the lifecycle;
  equal rank keeps the higher ``up_number``, then the larger role set;
  members whose address has a tombstone are dropped (tombstone wins)
- tombstones: union, newest removal timestamp per node
- seen: union, restricted to surviving members
- reachability: per observer, the records with the higher version
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace

from loguru import logger

from ..core.errors import UnknownAddressIndex
from ..datastructures.cluster_types import (
    Member,
    MemberStatus,
    ReachabilityStatus,
    UniqueAddress,
)
from ..datastructures.reachability import Reachability, ReachabilityRecord
from ..datastructures.tombstones import TombstoneStore
from ..datastructures.type_aliases import (
    AddressIndex,
    DurationMillis,
    NodeHash,
    ReachabilityVersion,
    RoleName,
    TimestampMillis,
    UpNumber,
)
from ..datastructures.vector_clock import VectorClock


@dataclass(frozen=True, slots=True)
class SubjectReachability:
    subject_index: AddressIndex
    status: ReachabilityStatus
    version: ReachabilityVersion


@dataclass(frozen=True, slots=True)
class ObserverReachability:
    observer_index: AddressIndex
    version: ReachabilityVersion
    subjects: tuple[SubjectReachability, ...] = ()


@dataclass(frozen=True, slots=True)
class GossipOverview:
    seen: frozenset[AddressIndex] = field(default_factory=frozenset)
    observer_reachability: tuple[ObserverReachability, ...] = ()


@dataclass(frozen=True, slots=True)
class Tombstone:
    address_index: AddressIndex
    timestamp: TimestampMillis


@dataclass(frozen=True, slots=True)
class MemberInfo:
    """A member with its table handles resolved."""

    node: UniqueAddress
    status: MemberStatus
    up_number: UpNumber = 0
    roles: frozenset[RoleName] = field(default_factory=frozenset)

    def with_status(self, status: MemberStatus) -> MemberInfo:
        return replace(self, status=status)


@dataclass(frozen=True, slots=True)
class Gossip:
    """Immutable membership snapshot exchanged between nodes."""

    all_addresses: tuple[UniqueAddress, ...] = ()
    all_roles: tuple[RoleName, ...] = ()
    all_hashes: tuple[NodeHash, ...] = ()
    members: tuple[Member, ...] = ()
    overview: GossipOverview = field(default_factory=GossipOverview)
    version: VectorClock = field(default_factory=VectorClock.empty)
    tombstones: tuple[Tombstone, ...] = ()

    @classmethod
    def empty(cls) -> Gossip:
        return cls()

    @classmethod
    def build(
        cls,
        members: Iterable[MemberInfo] = (),
        *,
        seen: Iterable[UniqueAddress] = (),
        reachability: Reachability | None = None,
        version: VectorClock | None = None,
        tombstones: TombstoneStore | None = None,
    ) -> Gossip:
        """Lay out a snapshot canonically from resolved values."""
        member_list = sorted(members, key=lambda m: m.node)
        if len({m.node for m in member_list}) != len(member_list):
            raise ValueError("Duplicate member in gossip")
        stones = tombstones or TombstoneStore()
        # a tombstoned address suppresses every incarnation at it
        member_list = [
            m for m in member_list if not stones.has_address(m.node.address)
        ]
        member_nodes = frozenset(m.node for m in member_list)
        seen_nodes = frozenset(seen) & member_nodes
        reach = reachability or Reachability()
        strangers = (
            reach.observers() | {r.subject for r in reach.records}
        ) - member_nodes
        reach = reach.remove(strangers)
        clock = version or VectorClock.empty()

        addresses = sorted(
            member_nodes
            | reach.observers()
            | {r.subject for r in reach.records}
            | stones.nodes()
        )
        address_index = {node: i for i, node in enumerate(addresses)}
        roles = sorted({role for m in member_list for role in m.roles})
        role_index = {role: i for i, role in enumerate(roles)}

        by_observer: dict[UniqueAddress, list[SubjectReachability]] = {}
        for r in reach.records:
            by_observer.setdefault(r.observer, []).append(
                SubjectReachability(address_index[r.subject], r.status, r.version)
            )
        observer_reachability = tuple(
            ObserverReachability(
                observer_index=address_index[observer],
                version=obs_version,
                subjects=tuple(
                    sorted(by_observer.get(observer, ()), key=lambda s: s.subject_index)
                ),
            )
            for observer, obs_version in reach.versions
        )

        return cls(
            all_addresses=tuple(addresses),
            all_roles=tuple(roles),
            all_hashes=tuple(sorted(clock.node_ids())),
            members=tuple(
                Member(
                    address_index=address_index[m.node],
                    up_number=m.up_number,
                    status=m.status,
                    role_indexes=tuple(sorted(role_index[r] for r in m.roles)),
                )
                for m in member_list
            ),
            overview=GossipOverview(
                seen=frozenset(address_index[n] for n in seen_nodes),
                observer_reachability=tuple(
                    sorted(observer_reachability, key=lambda o: o.observer_index)
                ),
            ),
            version=clock,
            tombstones=tuple(
                Tombstone(address_index[node], ts) for node, ts in stones.items()
            ),
        )

    # -- table handles ---------------------------------------------------

    def unique_address(self, index: AddressIndex) -> UniqueAddress:
        if not 0 <= index < len(self.all_addresses):
            raise UnknownAddressIndex("address", index, len(self.all_addresses))
        return self.all_addresses[index]

    def role(self, index: int) -> RoleName:
        if not 0 <= index < len(self.all_roles):
            raise UnknownAddressIndex("role", index, len(self.all_roles))
        return self.all_roles[index]

    def validate(self) -> Gossip:
        """
        Check every handle against its table.

        Raises ``UnknownAddressIndex`` for the first out-of-bounds reference.
        Run on every snapshot that arrives from another node.
        """
        for m in self.members:
            self.unique_address(m.address_index)
            for role_index in m.role_indexes:
                self.role(role_index)
        for index in self.overview.seen:
            self.unique_address(index)
        for obs in self.overview.observer_reachability:
            self.unique_address(obs.observer_index)
            for subject in obs.subjects:
                self.unique_address(subject.subject_index)
        for stone in self.tombstones:
            self.unique_address(stone.address_index)
        return self

    # -- resolved views --------------------------------------------------

    def member_infos(self) -> tuple[MemberInfo, ...]:
        return tuple(self._resolve(m) for m in self.members)

    def _resolve(self, member: Member) -> MemberInfo:
        return MemberInfo(
            node=self.unique_address(member.address_index),
            status=member.status,
            up_number=member.up_number,
            roles=frozenset(self.role(i) for i in member.role_indexes),
        )

    def member_for(self, node: UniqueAddress) -> MemberInfo | None:
        for m in self.members:
            if self.all_addresses[m.address_index] == node:
                return self._resolve(m)
        return None

    def has_member(self, node: UniqueAddress) -> bool:
        return self.member_for(node) is not None

    def member_nodes(self) -> frozenset[UniqueAddress]:
        return frozenset(self.all_addresses[m.address_index] for m in self.members)

    def members_at_address(self, node: UniqueAddress) -> tuple[MemberInfo, ...]:
        """Members sharing ``node``'s plain address, any incarnation."""
        return tuple(
            m for m in self.member_infos() if m.node.address == node.address
        )

    def seen_nodes(self) -> frozenset[UniqueAddress]:
        return frozenset(self.all_addresses[i] for i in self.overview.seen)

    def seen_by_node(self, node: UniqueAddress) -> bool:
        return node in self.seen_nodes()

    def reachability(self) -> Reachability:
        records: list[ReachabilityRecord] = []
        versions: dict[UniqueAddress, ReachabilityVersion] = {}
        for obs in self.overview.observer_reachability:
            observer = self.unique_address(obs.observer_index)
            versions[observer] = obs.version
            for subject in obs.subjects:
                records.append(
                    ReachabilityRecord(
                        observer=observer,
                        subject=self.unique_address(subject.subject_index),
                        status=subject.status,
                        version=subject.version,
                    )
                )
        return Reachability.create(records, versions)

    def tombstone_store(self) -> TombstoneStore:
        return TombstoneStore(
            _entries={
                self.unique_address(t.address_index): t.timestamp
                for t in self.tombstones
            }
        )

    # -- transformations -------------------------------------------------

    def _rebuild(
        self,
        *,
        members: Iterable[MemberInfo] | None = None,
        seen: Iterable[UniqueAddress] | None = None,
        reachability: Reachability | None = None,
        version: VectorClock | None = None,
        tombstones: TombstoneStore | None = None,
    ) -> Gossip:
        return Gossip.build(
            self.member_infos() if members is None else members,
            seen=self.seen_nodes() if seen is None else seen,
            reachability=self.reachability() if reachability is None else reachability,
            version=self.version if version is None else version,
            tombstones=self.tombstone_store() if tombstones is None else tombstones,
        )

    def merge(self, other: Gossip) -> Gossip:
        """Merge with a peer's snapshot; neither input is modified."""
        version = self.version.merge(other.version)
        tombstones = self.tombstone_store().merge(other.tombstone_store())

        mine = {m.node: m for m in self.member_infos()}
        theirs = {m.node: m for m in other.member_infos()}
        merged: list[MemberInfo] = []
        for node in mine.keys() | theirs.keys():
            if tombstones.has_address(node.address):
                logger.debug(f"Dropping {node} at tombstoned address from merged gossip")
                continue
            left = mine.get(node)
            right = theirs.get(node)
            if left is None or right is None:
                merged.append(left or right)  # type: ignore[arg-type]
            else:
                merged.append(pick_member(left, right))

        member_nodes = frozenset(m.node for m in merged)
        return Gossip.build(
            merged,
            seen=self.seen_nodes() | other.seen_nodes(),
            reachability=self.reachability().merge(member_nodes, other.reachability()),
            version=version,
            tombstones=tombstones,
        )

    def seen_by(self, node: UniqueAddress) -> Gossip:
        """Record that ``node`` has observed this version."""
        if self.seen_by_node(node) or not self.has_member(node):
            return self
        return self._rebuild(seen=self.seen_nodes() | {node})

    def only_seen_by(self, node: UniqueAddress) -> Gossip:
        return self._rebuild(seen=(node,))

    def clear_seen(self) -> Gossip:
        return self._rebuild(seen=())

    def increment_version(
        self, node: UniqueAddress, owner: UniqueAddress | None = None
    ) -> Gossip:
        """Bump ``node``'s clock entry; ``owner`` enforces local ownership."""
        return self._rebuild(
            version=self.version.increment(
                node.node_hash, owner=owner.node_hash if owner else None
            )
        )

    def add_member(
        self,
        node: UniqueAddress,
        roles: Iterable[RoleName] = (),
        status: MemberStatus = MemberStatus.JOINING,
    ) -> Gossip:
        if self.has_member(node):
            return self
        info = MemberInfo(node=node, status=status, roles=frozenset(roles))
        return self._rebuild(members=self.member_infos() + (info,))

    def update_member(
        self,
        node: UniqueAddress,
        *,
        status: MemberStatus | None = None,
        up_number: UpNumber | None = None,
    ) -> Gossip:
        current = self.member_for(node)
        if current is None:
            raise KeyError(f"{node} is not a member")
        updated = replace(
            current,
            status=current.status if status is None else status,
            up_number=current.up_number if up_number is None else up_number,
        )
        return self._rebuild(
            members=tuple(
                updated if m.node == node else m for m in self.member_infos()
            )
        )

    def remove_member(
        self, node: UniqueAddress, timestamp: TimestampMillis
    ) -> Gossip:
        """Drop a member, tombstoning it first so stale gossip cannot revive it."""
        tombstones = self.tombstone_store().record(node, timestamp)
        return self._rebuild(
            members=tuple(m for m in self.member_infos() if m.node != node),
            seen=self.seen_nodes() - {node},
            reachability=self.reachability().remove((node,)),
            tombstones=tombstones,
        )

    def with_reachability(self, reachability: Reachability) -> Gossip:
        return self._rebuild(reachability=reachability)

    def prune_tombstones(
        self, retention: DurationMillis, now: TimestampMillis
    ) -> Gossip:
        """
        Expire tombstones past ``retention`` and drop their clock entries.

        The removed node's clock entry is only safe to drop once its removal
        has been seen everywhere, which the retention window stands in for.
        """
        store = self.tombstone_store()
        expired = store.expired(retention, now)
        if not expired:
            return self
        logger.info(f"Pruning {len(expired)} expired tombstone(s)")
        return self._rebuild(
            version=self.version.prune_many(node.node_hash for node in expired),
            tombstones=store.prune(retention, now),
        )


def pick_member(left: MemberInfo, right: MemberInfo) -> MemberInfo:
    """
    Choose between two entries for the same node.

    Furthest lifecycle status wins; equal status keeps the higher up number,
    then the larger (sorted) role set. Fully equal entries are identical.
    """

    def key(m: MemberInfo) -> tuple[int, int, tuple[int, tuple[RoleName, ...]]]:
        return (m.status.rank, m.up_number, (len(m.roles), tuple(sorted(m.roles))))

    return left if key(left) >= key(right) else right


def merge_all(snapshots: Sequence[Gossip]) -> Gossip:
    result = Gossip.empty()
    for snapshot in snapshots:
        result = result.merge(snapshot)
    return result
