"""
Member lifecycle state machine and leader actions.

    Joining -> WeaklyUp -> Up -> Leaving -> Exiting -> Removed
    {Joining, WeaklyUp, Up, Leaving} -> Down -> Removed

Moving a member into Up, Leaving, Exiting or Removed is only safe once the
current snapshot has converged. Down is the escape hatch used precisely when
convergence cannot be reached, so it is never gated.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from loguru import logger

from ..core.errors import InvalidTransition, NotConverged
from ..datastructures.cluster_types import MemberStatus, UniqueAddress
from ..datastructures.type_aliases import TimestampMillis
from .convergence import is_converged
from .gossip import Gossip, MemberInfo

ALLOWED_TRANSITIONS: dict[MemberStatus, frozenset[MemberStatus]] = {
    MemberStatus.JOINING: frozenset(
        {MemberStatus.WEAKLY_UP, MemberStatus.UP, MemberStatus.DOWN}
    ),
    MemberStatus.WEAKLY_UP: frozenset({MemberStatus.UP, MemberStatus.DOWN}),
    MemberStatus.UP: frozenset({MemberStatus.LEAVING, MemberStatus.DOWN}),
    MemberStatus.LEAVING: frozenset({MemberStatus.EXITING, MemberStatus.DOWN}),
    MemberStatus.EXITING: frozenset({MemberStatus.REMOVED}),
    MemberStatus.DOWN: frozenset({MemberStatus.REMOVED}),
    MemberStatus.REMOVED: frozenset(),
}

CONVERGENCE_GATED: frozenset[MemberStatus] = frozenset(
    {
        MemberStatus.UP,
        MemberStatus.LEAVING,
        MemberStatus.EXITING,
        MemberStatus.REMOVED,
    }
)

LEADER_STATUSES = frozenset({MemberStatus.UP, MemberStatus.LEAVING})
FALLBACK_LEADER_STATUSES = frozenset({MemberStatus.JOINING, MemberStatus.WEAKLY_UP})


@dataclass(frozen=True, slots=True)
class StatusChange:
    node: UniqueAddress
    from_status: MemberStatus
    to_status: MemberStatus


@dataclass(frozen=True, slots=True)
class LeaderActionResult:
    gossip: Gossip
    changes: tuple[StatusChange, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.changes)


def can_transition(from_status: MemberStatus, to_status: MemberStatus) -> bool:
    return to_status in ALLOWED_TRANSITIONS[from_status]


def transition(
    gossip: Gossip,
    node: UniqueAddress,
    to_status: MemberStatus,
    *,
    actor: UniqueAddress,
    now: TimestampMillis,
) -> Gossip:
    """
    Move one member to ``to_status`` on behalf of ``actor``.

    The result carries a version bumped by ``actor`` and is seen only by it.
    Raises ``InvalidTransition`` for moves the state machine forbids and
    ``NotConverged`` for gated moves on an unconverged snapshot.
    """
    member = gossip.member_for(node)
    if member is None:
        raise KeyError(f"{node} is not a member")
    if member.status is to_status:
        return gossip
    if not can_transition(member.status, to_status):
        raise InvalidTransition(node, member.status, to_status)
    if to_status in CONVERGENCE_GATED and not is_converged(gossip):
        raise NotConverged(node, to_status)

    updated = _apply(gossip, [StatusChange(node, member.status, to_status)], now)
    logger.info(f"Member {node} moved {member.status.name} -> {to_status.name}")
    return _stamp(updated, actor)


def down(
    gossip: Gossip,
    node: UniqueAddress,
    *,
    actor: UniqueAddress,
    now: TimestampMillis,
) -> Gossip:
    """Force a member Down; accepted regardless of convergence."""
    return transition(gossip, node, MemberStatus.DOWN, actor=actor, now=now)


def leader(gossip: Gossip) -> UniqueAddress | None:
    """
    Lowest reachable address among Up/Leaving members.

    Falls back to Joining/WeaklyUp members while nobody is Up yet, which is
    how the first node of a fresh cluster promotes itself.
    """
    unreachable = gossip.reachability().all_unreachable()
    members = [m for m in gossip.member_infos() if m.node not in unreachable]
    for statuses in (LEADER_STATUSES, FALLBACK_LEADER_STATUSES):
        candidates = sorted(m.node for m in members if m.status in statuses)
        if candidates:
            return candidates[0]
    return None


def is_leader(gossip: Gossip, node: UniqueAddress) -> bool:
    return leader(gossip) == node


def leader_actions(
    gossip: Gossip,
    self_node: UniqueAddress,
    *,
    now: TimestampMillis,
    allow_weakly_up: bool = True,
) -> LeaderActionResult:
    """
    One pass of the leader's periodic duties.

    On a converged snapshot: Joining/WeaklyUp -> Up, Leaving -> Exiting,
    Exiting/Down -> Removed. On an unconverged snapshot that has unreachable
    members, reachable joiners may be moved to WeaklyUp. Non-leaders get the
    snapshot back unchanged.
    """
    if not is_leader(gossip, self_node):
        return LeaderActionResult(gossip)

    members = gossip.member_infos()
    if is_converged(gossip):
        changes = list(_converged_changes(members))
    elif allow_weakly_up:
        unreachable = gossip.reachability().all_unreachable()
        changes = (
            [
                StatusChange(m.node, m.status, MemberStatus.WEAKLY_UP)
                for m in members
                if m.status is MemberStatus.JOINING and m.node not in unreachable
            ]
            if unreachable
            else []
        )
    else:
        changes = []

    if not changes:
        return LeaderActionResult(gossip)

    for change in changes:
        logger.info(
            f"Leader {self_node} moving {change.node} "
            f"{change.from_status.name} -> {change.to_status.name}"
        )
    updated = _apply(gossip, changes, now)
    return LeaderActionResult(_stamp(updated, self_node), tuple(changes))


def _converged_changes(members: Iterable[MemberInfo]) -> Iterable[StatusChange]:
    promote = {
        MemberStatus.JOINING: MemberStatus.UP,
        MemberStatus.WEAKLY_UP: MemberStatus.UP,
        MemberStatus.LEAVING: MemberStatus.EXITING,
        MemberStatus.EXITING: MemberStatus.REMOVED,
        MemberStatus.DOWN: MemberStatus.REMOVED,
    }
    for m in members:
        target = promote.get(m.status)
        if target is not None:
            yield StatusChange(m.node, m.status, target)


def _apply(
    gossip: Gossip, changes: Iterable[StatusChange], now: TimestampMillis
) -> Gossip:
    next_up = max((m.up_number for m in gossip.member_infos()), default=0)
    for change in sorted(changes, key=lambda c: c.node):
        if change.to_status is MemberStatus.REMOVED:
            gossip = gossip.remove_member(change.node, now)
        elif change.to_status is MemberStatus.UP:
            next_up += 1
            gossip = gossip.update_member(
                change.node, status=MemberStatus.UP, up_number=next_up
            )
        else:
            gossip = gossip.update_member(change.node, status=change.to_status)
    return gossip


def _stamp(gossip: Gossip, actor: UniqueAddress) -> Gossip:
    return gossip.increment_version(actor, owner=actor).only_seen_by(actor)
