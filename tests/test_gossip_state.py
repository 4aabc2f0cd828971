"""
Tests for the Gossip snapshot: canonical layout, handles and merge rules.
"""

import pytest

from clustergossip.cluster.gossip import (
    Gossip,
    GossipOverview,
    MemberInfo,
    merge_all,
    pick_member,
)
from clustergossip.core.errors import InvalidOwner, UnknownAddressIndex
from clustergossip.datastructures.cluster_types import Member, MemberStatus
from clustergossip.datastructures.reachability import Reachability
from tests.conftest import node_address, snapshot

A = node_address(2551)
B = node_address(2552)
C = node_address(2553)
M = node_address(2560)

NOW = 1_000_000


class TestGossipBuild:
    def test_empty_equals_built_empty(self):
        assert Gossip.empty() == Gossip.build()
        assert Gossip.empty().member_infos() == ()

    def test_tables_are_sorted_and_deduplicated(self):
        gossip = Gossip.build(
            [
                MemberInfo(C, MemberStatus.UP, 1, frozenset({"worker"})),
                MemberInfo(A, MemberStatus.UP, 2, frozenset({"frontend", "worker"})),
            ]
        )
        assert gossip.all_addresses == (A, C)
        assert gossip.all_roles == ("frontend", "worker")
        assert [m.address_index for m in gossip.members] == [0, 1]
        assert gossip.members[0].role_indexes == (0, 1)
        assert gossip.member_for(C).roles == frozenset({"worker"})

    def test_build_order_does_not_matter(self):
        infos = [MemberInfo(B, MemberStatus.UP, 1), MemberInfo(A, MemberStatus.JOINING)]
        assert Gossip.build(infos, seen=[B, A]) == Gossip.build(
            reversed(infos), seen=[A, B]
        )

    def test_duplicate_member_rejected(self):
        with pytest.raises(ValueError, match="Duplicate member"):
            Gossip.build([MemberInfo(A, MemberStatus.UP), MemberInfo(A, MemberStatus.DOWN)])

    def test_seen_restricted_to_members(self):
        gossip = Gossip.build([MemberInfo(A, MemberStatus.UP)], seen=[A, B])
        assert gossip.seen_nodes() == frozenset({A})

    def test_reachability_of_strangers_is_dropped(self):
        reach = Reachability().unreachable(A, B).unreachable(C, A)
        gossip = Gossip.build(
            [MemberInfo(A, MemberStatus.UP), MemberInfo(B, MemberStatus.UP)],
            reachability=reach,
        )
        assert gossip.reachability().all_unreachable() == frozenset({B})
        assert C not in gossip.all_addresses

    def test_hashes_follow_version(self):
        gossip = snapshot([(A, MemberStatus.UP)]).increment_version(A, owner=A)
        assert gossip.all_hashes == (A.node_hash,)
        assert gossip.version.get_timestamp(A.node_hash) == 1


class TestHandles:
    def test_validate_accepts_built_gossip(self):
        gossip = snapshot([(A, MemberStatus.UP), (B, MemberStatus.JOINING)], seen=[A])
        assert gossip.validate() is gossip

    def test_member_index_out_of_bounds(self):
        broken = Gossip(
            all_addresses=(A,),
            members=(Member(address_index=3, up_number=1, status=MemberStatus.UP),),
        )
        with pytest.raises(UnknownAddressIndex) as exc_info:
            broken.validate()
        assert exc_info.value.table == "address"
        assert exc_info.value.index == 3
        assert exc_info.value.size == 1

    def test_seen_index_out_of_bounds(self):
        broken = Gossip(
            all_addresses=(A,),
            members=(Member(address_index=0, up_number=1, status=MemberStatus.UP),),
            overview=GossipOverview(seen=frozenset({0, 1})),
        )
        with pytest.raises(UnknownAddressIndex):
            broken.validate()

    def test_role_index_out_of_bounds(self):
        broken = Gossip(
            all_addresses=(A,),
            members=(
                Member(
                    address_index=0,
                    up_number=1,
                    status=MemberStatus.UP,
                    role_indexes=(0,),
                ),
            ),
        )
        with pytest.raises(UnknownAddressIndex) as exc_info:
            broken.validate()
        assert exc_info.value.table == "role"


class TestGossipOperations:
    def test_seen_by(self):
        gossip = snapshot([(A, MemberStatus.UP), (B, MemberStatus.UP)])
        seen = gossip.seen_by(A)
        assert seen.seen_nodes() == frozenset({A})
        assert seen.seen_by(A) is seen
        assert gossip.seen_nodes() == frozenset()

    def test_seen_by_non_member_is_noop(self):
        gossip = snapshot([(A, MemberStatus.UP)])
        assert gossip.seen_by(C) is gossip

    def test_only_seen_by_and_clear_seen(self):
        gossip = snapshot([(A, MemberStatus.UP), (B, MemberStatus.UP)], seen=[A, B])
        assert gossip.only_seen_by(B).seen_nodes() == frozenset({B})
        assert gossip.clear_seen().seen_nodes() == frozenset()

    def test_increment_version_enforces_owner(self):
        gossip = snapshot([(A, MemberStatus.UP)])
        with pytest.raises(InvalidOwner):
            gossip.increment_version(B, owner=A)

    def test_add_member(self):
        gossip = Gossip.empty().add_member(M, roles=["worker"])
        member = gossip.member_for(M)
        assert member.status is MemberStatus.JOINING
        assert member.roles == frozenset({"worker"})
        assert gossip.add_member(M) is gossip

    def test_update_member(self):
        gossip = snapshot([(A, MemberStatus.JOINING)])
        updated = gossip.update_member(A, status=MemberStatus.UP, up_number=7)
        assert updated.member_for(A).status is MemberStatus.UP
        assert updated.member_for(A).up_number == 7
        with pytest.raises(KeyError):
            gossip.update_member(B, status=MemberStatus.UP)

    def test_remove_member_tombstones_first(self):
        gossip = snapshot([(A, MemberStatus.UP), (B, MemberStatus.DOWN)], seen=[A, B])
        gossip = gossip.with_reachability(Reachability().unreachable(A, B))
        removed = gossip.remove_member(B, NOW)

        assert not removed.has_member(B)
        assert removed.seen_nodes() == frozenset({A})
        assert removed.reachability().all_unreachable() == frozenset()
        assert removed.tombstone_store().removed_at(B.address) == NOW
        assert B in removed.all_addresses

    def test_members_at_address(self):
        b2 = node_address(2552, uid=2)
        gossip = snapshot([(A, MemberStatus.UP), (B, MemberStatus.UP), (b2, MemberStatus.JOINING)])
        assert {m.node for m in gossip.members_at_address(b2)} == {B, b2}

    def test_prune_tombstones_drops_clock_entry(self):
        gossip = (
            snapshot([(A, MemberStatus.UP), (B, MemberStatus.DOWN)])
            .increment_version(B, owner=B)
            .increment_version(A, owner=A)
            .remove_member(B, NOW)
        )
        assert B.node_hash in gossip.version

        assert gossip.prune_tombstones(retention=1_000, now=NOW + 999) is gossip
        pruned = gossip.prune_tombstones(retention=1_000, now=NOW + 1_000)
        assert pruned.tombstones == ()
        assert B.node_hash not in pruned.version
        assert A.node_hash in pruned.version
        assert B not in pruned.all_addresses


class TestGossipMerge:
    def test_joining_member_spreads_to_empty_peer(self):
        """A adds M as Joining; merging into B's empty state keeps M once."""
        a_state = (
            Gossip.empty()
            .add_member(A, status=MemberStatus.UP)
            .add_member(M)
            .increment_version(A, owner=A)
            .seen_by(A)
        )
        b_state = Gossip.empty()

        merged = b_state.merge(a_state)
        members = [m for m in merged.member_infos() if m.node == M]
        assert len(members) == 1
        assert members[0].status is MemberStatus.JOINING
        assert merged.seen_nodes() == frozenset({A})
        assert merged == a_state.merge(b_state)

    def test_furthest_status_wins(self):
        left = snapshot([(A, MemberStatus.UP), (B, MemberStatus.UP)])
        right = snapshot([(A, MemberStatus.UP), (B, MemberStatus.LEAVING)])
        assert left.merge(right).member_for(B).status is MemberStatus.LEAVING
        assert right.merge(left).member_for(B).status is MemberStatus.LEAVING

    def test_down_beats_up(self):
        left = snapshot([(A, MemberStatus.UP), (B, MemberStatus.DOWN)])
        right = snapshot([(A, MemberStatus.UP), (B, MemberStatus.UP)])
        assert left.merge(right).member_for(B).status is MemberStatus.DOWN

    def test_pick_member_tie_breaks(self):
        low = MemberInfo(A, MemberStatus.UP, up_number=1)
        high = MemberInfo(A, MemberStatus.UP, up_number=2)
        assert pick_member(low, high) == high
        assert pick_member(high, low) == high

        plain = MemberInfo(A, MemberStatus.UP, 1, frozenset({"a"}))
        richer = MemberInfo(A, MemberStatus.UP, 1, frozenset({"a", "b"}))
        assert pick_member(plain, richer) == richer
        assert pick_member(richer, plain) == richer

    def test_version_is_least_upper_bound(self):
        base = snapshot([(A, MemberStatus.UP), (B, MemberStatus.UP)])
        left = base.increment_version(A, owner=A)
        right = base.increment_version(B, owner=B).increment_version(B, owner=B)
        merged = left.merge(right)
        assert merged.version.to_dict() == {A.node_hash: 1, B.node_hash: 2}
        assert set(merged.all_hashes) == {A.node_hash, B.node_hash}

    def test_seen_is_union(self):
        base = snapshot([(A, MemberStatus.UP), (B, MemberStatus.UP), (C, MemberStatus.UP)])
        merged = base.seen_by(A).merge(base.seen_by(C))
        assert merged.seen_nodes() == frozenset({A, C})

    def test_tombstone_wins_over_stale_member(self):
        live = snapshot([(A, MemberStatus.UP), (B, MemberStatus.UP)], seen=[A, B])
        removed = live.remove_member(B, NOW)

        for merged in (live.merge(removed), removed.merge(live)):
            assert not merged.has_member(B)
            assert merged.seen_nodes() == frozenset({A})
            assert merged.tombstone_store().removed_at(B.address) == NOW

    def test_tombstoned_address_suppresses_new_incarnation(self):
        b2 = node_address(2552, uid=2)
        removed = snapshot([(A, MemberStatus.UP), (B, MemberStatus.UP)]).remove_member(B, NOW)
        rejoined = snapshot([(A, MemberStatus.UP), (b2, MemberStatus.JOINING)])

        for merged in (removed.merge(rejoined), rejoined.merge(removed)):
            assert not merged.has_member(b2)
            assert not merged.has_member(B)
            assert merged.member_nodes() == frozenset({A})

    def test_new_incarnation_survives_expired_tombstone(self):
        b2 = node_address(2552, uid=2)
        removed = snapshot([(A, MemberStatus.UP), (B, MemberStatus.UP)]).remove_member(B, NOW)
        rejoined = snapshot([(A, MemberStatus.UP), (b2, MemberStatus.JOINING)])

        pruned = removed.prune_tombstones(retention=1_000, now=NOW + 1_000)
        merged = pruned.merge(rejoined)
        assert merged.has_member(b2)
        assert not merged.has_member(B)

    def test_removal_drops_every_incarnation_at_address(self):
        b2 = node_address(2552, uid=2)
        gossip = snapshot(
            [(A, MemberStatus.UP), (B, MemberStatus.DOWN), (b2, MemberStatus.JOINING)]
        )
        removed = gossip.remove_member(B, NOW)
        assert removed.member_nodes() == frozenset({A})
        assert removed.merge(removed) == removed

    def test_merge_all(self):
        base = snapshot([(A, MemberStatus.UP), (B, MemberStatus.UP)])
        parts = [base.seen_by(A), base.seen_by(B), base]
        assert merge_all(parts).seen_nodes() == frozenset({A, B})
        assert merge_all([]) == Gossip.empty()

    def test_merge_does_not_modify_inputs(self):
        left = snapshot([(A, MemberStatus.UP)])
        right = snapshot([(A, MemberStatus.UP), (B, MemberStatus.JOINING)])
        before = (left, right)
        left.merge(right)
        assert (left, right) == before
        assert not left.has_member(B)
