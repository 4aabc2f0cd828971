"""
Convergence check gating leader-only membership transitions.

A snapshot has converged when every member that counts has recorded itself in
``overview.seen``. Members excluded by status (Down by default, Removed
always) never count, and neither do members some observer reports as
unreachable: one unreachable node must not block convergence forever.
"""

from __future__ import annotations

from collections.abc import Collection

from ..datastructures.cluster_types import MemberStatus, UniqueAddress
from .gossip import Gossip

DEFAULT_EXCLUDED_STATUSES: frozenset[MemberStatus] = frozenset({MemberStatus.DOWN})


def required_seen(
    gossip: Gossip,
    excluded_statuses: Collection[MemberStatus] = DEFAULT_EXCLUDED_STATUSES,
) -> frozenset[UniqueAddress]:
    """Members whose sighting is required for convergence."""
    excluded = frozenset(excluded_statuses) | {MemberStatus.REMOVED}
    unreachable = gossip.reachability().all_unreachable()
    return frozenset(
        m.node
        for m in gossip.member_infos()
        if m.status not in excluded and m.node not in unreachable
    )


def missing_seen(
    gossip: Gossip,
    excluded_statuses: Collection[MemberStatus] = DEFAULT_EXCLUDED_STATUSES,
) -> tuple[UniqueAddress, ...]:
    """Members still blocking convergence, in address order."""
    return tuple(sorted(required_seen(gossip, excluded_statuses) - gossip.seen_nodes()))


def is_converged(
    gossip: Gossip,
    excluded_statuses: Collection[MemberStatus] = DEFAULT_EXCLUDED_STATUSES,
) -> bool:
    return not missing_seen(gossip, excluded_statuses)
