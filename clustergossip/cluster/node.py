"""
Per-node protocol core.

``ClusterNode`` owns the node's current ``Gossip`` snapshot. All computation
on snapshots is pure; the node only swaps the reference to the new snapshot,
under a lock so concurrent readers see either the old or the new value and
never a partial one. Malformed or foreign gossip is logged and discarded,
leaving the previous snapshot in place.

``handle`` dispatches one inbound message and returns the replies to send;
``gossip_tick`` picks a peer and the message to gossip to it. Neither does any
I/O, which keeps the transport (see ``daemon``) swappable.
"""

from __future__ import annotations

import random
import time
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from threading import RLock

from loguru import logger

from ..core.config import ClusterSettings
from ..core.errors import (
    ClusterGossipError,
    ConfigIncompatible,
    GossipCodecError,
    NotConverged,
    StaleTombstonedRejoin,
    UnknownAddressIndex,
)
from ..datastructures.cluster_types import (
    Address,
    MemberStatus,
    ReachabilityStatus,
    UniqueAddress,
)
from ..datastructures.type_aliases import TimestampMillis
from ..datastructures.vector_clock import Ordering
from . import join as join_protocol
from . import lifecycle
from .codec import decode_gossip, encode_gossip
from .convergence import is_converged, missing_seen
from .gossip import Gossip, MemberInfo
from .messages import (
    ClusterMessage,
    Down,
    GossipEnvelope,
    GossipRequest,
    GossipStatus,
    Heartbeat,
    HeartbeatRsp,
    InitJoin,
    InitJoinAck,
    InitJoinNack,
    Join,
    Leave,
    Welcome,
)


def now_millis() -> TimestampMillis:
    return int(time.time() * 1000)


class ReceiveOutcome(Enum):
    """How an inbound snapshot related to the local one."""

    IGNORED = "ignored"
    OLDER = "older"
    NEWER = "newer"
    SAME = "same"
    MERGED = "merged"


class StatusReply(Enum):
    NONE = "none"
    REQUEST_FULL = "request_full"


@dataclass(frozen=True, slots=True)
class Outgoing:
    to: UniqueAddress
    message: ClusterMessage


@dataclass(slots=True)
class ClusterNode:
    """
    Membership protocol state machine for one node incarnation.

    One protocol loop calls into it. The lock only
    guards the snapshot swap for readers on other threads.
    """

    self_node: UniqueAddress
    settings: ClusterSettings = field(default_factory=ClusterSettings)
    clock: Callable[[], TimestampMillis] = now_millis
    rng: random.Random = field(default_factory=random.Random)
    adopted_config: str | None = None
    join_error: ClusterGossipError | None = None
    pending_leaves: set[UniqueAddress] = field(default_factory=set)
    last_heartbeat: dict[UniqueAddress, TimestampMillis] = field(default_factory=dict)
    stats: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    _gossip: Gossip = field(default_factory=Gossip.empty)
    _lock: RLock = field(default_factory=RLock)

    def __post_init__(self) -> None:
        if self.adopted_config is None:
            self.adopted_config = self.settings.cluster_config
        logger.info(f"Initialized ClusterNode {self.self_node}")

    # -- snapshot access -------------------------------------------------

    @property
    def gossip(self) -> Gossip:
        with self._lock:
            return self._gossip

    def _swap(self, new: Gossip) -> Gossip:
        with self._lock:
            previous = self._gossip
            self._gossip = new
        return previous

    @property
    def is_member(self) -> bool:
        return self.gossip.has_member(self.self_node)

    @property
    def status(self) -> MemberStatus | None:
        member = self.gossip.member_for(self.self_node)
        return member.status if member else None

    @property
    def members(self) -> tuple[MemberInfo, ...]:
        return self.gossip.member_infos()

    @property
    def is_converged(self) -> bool:
        return is_converged(self.gossip)

    @property
    def leader(self) -> UniqueAddress | None:
        return lifecycle.leader(self.gossip)

    @property
    def is_leader(self) -> bool:
        return self.leader == self.self_node

    # -- joining ---------------------------------------------------------

    def join_self(self) -> None:
        """Bootstrap a new cluster with this node as its first member."""
        outcome = join_protocol.handle_join(
            self.gossip,
            self.self_node,
            Join(node=self.self_node, roles=self.settings.roles),
            now=self.clock(),
            tombstone_retention=self.settings.tombstone_retention_ms,
        )
        self._swap(outcome.gossip)

    def init_join(self) -> InitJoin:
        return InitJoin(current_config=self.adopted_config)

    def _on_init_join_ack(self, message: InitJoinAck) -> Join | None:
        try:
            attempt = join_protocol.handle_init_join_ack(
                message,
                self.self_node,
                roles=self.settings.roles,
                current_config=self.adopted_config,
            )
        except ConfigIncompatible as exc:
            logger.error(f"Join via {message.address} failed: {exc}")
            self.join_error = exc
            return None
        self.adopted_config = attempt.config
        self.join_error = None
        return attempt.join

    def _on_join(self, message: Join) -> Welcome | None:
        try:
            outcome = join_protocol.handle_join(
                self.gossip,
                self.self_node,
                message,
                now=self.clock(),
                tombstone_retention=self.settings.tombstone_retention_ms,
            )
        except StaleTombstonedRejoin as exc:
            logger.warning(str(exc))
            self.stats["rejected_joins"] += 1
            return None
        self._swap(outcome.gossip)
        return outcome.welcome

    def _on_welcome(self, message: Welcome) -> None:
        if self.is_member:
            return
        try:
            self._swap(join_protocol.handle_welcome(message, self.self_node))
        except (UnknownAddressIndex, ValueError) as exc:
            logger.warning(f"Discarding welcome from {message.from_node}: {exc}")
            return
        logger.info(f"{self.self_node} welcomed by {message.from_node}")

    # -- gossip exchange -------------------------------------------------

    def receive_gossip(self, remote: Gossip, sender: UniqueAddress) -> ReceiveOutcome:
        """Merge a peer's snapshot into ours and mark it seen by us."""
        try:
            remote.validate()
        except UnknownAddressIndex as exc:
            logger.warning(f"Discarding gossip from suspect {sender}: {exc}")
            self.stats["discarded_gossip"] += 1
            return ReceiveOutcome.IGNORED

        if not remote.has_member(self.self_node):
            logger.debug(f"Ignoring gossip from {sender} that does not include us")
            return ReceiveOutcome.IGNORED

        # expired tombstones must not re-enter and suppress a re-joined address
        retention = self.settings.tombstone_retention_ms
        now = self.clock()
        local = self.gossip.prune_tombstones(retention, now)
        remote = remote.prune_tombstones(retention, now)
        ordering = local.version.compare(remote.version)
        if ordering is Ordering.SAME:
            result, outcome = local.merge(remote), ReceiveOutcome.SAME
        elif ordering is Ordering.BEFORE:
            result, outcome = remote, ReceiveOutcome.NEWER
        elif ordering is Ordering.AFTER:
            result, outcome = local, ReceiveOutcome.OLDER
        else:
            # nobody has seen the merged version yet
            result = local.merge(remote).only_seen_by(self.self_node)
            outcome = ReceiveOutcome.MERGED

        self._swap(result.seen_by(self.self_node))
        self.stats[f"gossip_{outcome.value}"] += 1
        logger.debug(f"Gossip from {sender}: {outcome.value}")
        return outcome

    def _open_envelope(self, envelope: GossipEnvelope) -> Gossip | None:
        if envelope.to_node != self.self_node:
            logger.debug(
                f"Ignoring envelope for {envelope.to_node} at {self.self_node}"
            )
            return None
        try:
            return decode_gossip(envelope.serialized_gossip)
        except (GossipCodecError, UnknownAddressIndex) as exc:
            logger.warning(f"Discarding gossip from suspect {envelope.from_node}: {exc}")
            self.stats["discarded_gossip"] += 1
            return None

    def receive_envelope(self, envelope: GossipEnvelope) -> ReceiveOutcome:
        remote = self._open_envelope(envelope)
        if remote is None:
            return ReceiveOutcome.IGNORED
        return self.receive_gossip(remote, envelope.from_node)

    def receive_status(self, status: GossipStatus) -> StatusReply:
        """Digest handling: only a newer or concurrent version is worth fetching."""
        ordering = status.version.compare(self.gossip.version)
        if ordering in (Ordering.BEFORE, Ordering.SAME):
            return StatusReply.NONE
        return StatusReply.REQUEST_FULL

    def envelope_for(self, peer: UniqueAddress) -> GossipEnvelope:
        return GossipEnvelope(
            from_node=self.self_node,
            to_node=peer,
            serialized_gossip=encode_gossip(self.gossip),
        )

    def gossip_targets(self) -> tuple[UniqueAddress, ...]:
        gossip = self.gossip
        unreachable = gossip.reachability().all_unreachable()
        return tuple(
            m.node
            for m in gossip.member_infos()
            if m.node != self.self_node
            and m.node not in unreachable
            and m.status is not MemberStatus.REMOVED
        )

    def unreachable_targets(self) -> tuple[UniqueAddress, ...]:
        gossip = self.gossip
        unreachable = gossip.reachability().all_unreachable()
        return tuple(
            m.node
            for m in gossip.member_infos()
            if m.node in unreachable
            and m.node != self.self_node
            and m.status is not MemberStatus.REMOVED
        )

    def select_gossip_target(self) -> UniqueAddress | None:
        """
        Random peer, preferring those that have not seen our version.

        Now and then an unreachable member is picked instead, so a peer that
        has recovered catches up and can be confirmed reachable again.
        """
        unreachable = self.unreachable_targets()
        if (
            unreachable
            and self.rng.random() < self.settings.unreachable_gossip_probability
        ):
            return self.rng.choice(unreachable)
        targets = self.gossip_targets()
        if not targets:
            return None
        seen = self.gossip.seen_nodes()
        unseen = [node for node in targets if node not in seen]
        return self.rng.choice(unseen or list(targets))

    def gossip_tick(self) -> Outgoing | None:
        if not self.is_member:
            return None
        peer = self.select_gossip_target()
        if peer is None:
            return None
        if self.gossip.seen_by_node(peer):
            return Outgoing(peer, GossipStatus.of(self.self_node, self.gossip))
        return Outgoing(peer, self.envelope_for(peer))

    # -- membership commands ---------------------------------------------

    def _members_at(self, address: Address) -> list[MemberInfo]:
        return [m for m in self.gossip.member_infos() if m.node.address == address]

    def leave(self, address: Address) -> None:
        """
        Start a graceful leave. Deferred until the snapshot converges; the
        request is retried on every leader tick.
        """
        for member in self._members_at(address):
            if member.status is not MemberStatus.UP:
                self.pending_leaves.discard(member.node)
                continue
            try:
                self._swap(
                    lifecycle.transition(
                        self.gossip,
                        member.node,
                        MemberStatus.LEAVING,
                        actor=self.self_node,
                        now=self.clock(),
                    )
                )
                self.pending_leaves.discard(member.node)
            except NotConverged:
                logger.info(f"Leave of {member.node} deferred until convergence")
                self.pending_leaves.add(member.node)

    def down(self, address: Address) -> None:
        for member in self._members_at(address):
            if member.status in (MemberStatus.DOWN, MemberStatus.EXITING):
                continue
            logger.warning(f"Downing {member.node}")
            self._swap(
                lifecycle.down(
                    self.gossip, member.node, actor=self.self_node, now=self.clock()
                )
            )

    def report_reachability(
        self, subject: UniqueAddress, status: ReachabilityStatus
    ) -> bool:
        """Feed one failure detector verdict into our observer records."""
        gossip = self.gossip
        if subject == self.self_node or not gossip.has_member(subject):
            return False
        current = gossip.reachability()
        updated = current.change(self.self_node, subject, status)
        if updated == current:
            return False
        logger.info(f"{self.self_node} marks {subject} {status.name}")
        self._swap(
            gossip.with_reachability(updated)
            .increment_version(self.self_node, owner=self.self_node)
            .only_seen_by(self.self_node)
        )
        return True

    def leader_tick(self) -> lifecycle.LeaderActionResult:
        """Retry deferred leaves, prune tombstones, then run leader actions."""
        for node in list(self.pending_leaves):
            if self.gossip.has_member(node):
                self.leave(node.address)
            else:
                self.pending_leaves.discard(node)

        now = self.clock()
        self._swap(
            self.gossip.prune_tombstones(self.settings.tombstone_retention_ms, now)
        )
        result = lifecycle.leader_actions(
            self.gossip,
            self.self_node,
            now=now,
            allow_weakly_up=self.settings.allow_weakly_up_members,
        )
        if result.changed:
            self._swap(result.gossip)
        elif not self.is_converged:
            logger.debug(
                f"Not converged, waiting on {len(missing_seen(self.gossip))} member(s)"
            )
        return result

    # -- dispatch --------------------------------------------------------

    def handle(
        self, message: ClusterMessage, sender: UniqueAddress
    ) -> list[Outgoing]:
        """Process one inbound message, returning the replies to send."""
        match message:
            case GossipEnvelope():
                remote = self._open_envelope(message)
                if remote is None:
                    return []
                outcome = self.receive_gossip(remote, message.from_node)
                if outcome is ReceiveOutcome.IGNORED:
                    return []
                # reply when the sender is behind or does not know we saw its version
                if outcome in (
                    ReceiveOutcome.OLDER,
                    ReceiveOutcome.MERGED,
                ) or not remote.seen_by_node(self.self_node):
                    peer = message.from_node
                    return [Outgoing(peer, self.envelope_for(peer))]
                return []
            case GossipStatus():
                if self.receive_status(message) is StatusReply.REQUEST_FULL:
                    return [Outgoing(message.from_node, GossipRequest(self.self_node))]
                return []
            case GossipRequest():
                if self.gossip.has_member(message.from_node):
                    return [Outgoing(message.from_node, self.envelope_for(message.from_node))]
                return []
            case InitJoin():
                reply = join_protocol.handle_init_join(
                    self.gossip, self.self_node, message, self.settings.cluster_config
                )
                return [Outgoing(sender, reply)]
            case InitJoinAck():
                join = self._on_init_join_ack(message)
                return [Outgoing(sender, join)] if join else []
            case InitJoinNack():
                logger.info(f"{message.address} cannot admit joiners yet")
                return []
            case Join():
                welcome = self._on_join(message)
                return [Outgoing(message.node, welcome)] if welcome else []
            case Welcome():
                self._on_welcome(message)
                return []
            case Leave():
                self.leave(message.address)
                return []
            case Down():
                self.down(message.address)
                return []
            case Heartbeat():
                return [Outgoing(sender, HeartbeatRsp(self.self_node))]
            case HeartbeatRsp():
                self.last_heartbeat[message.from_node] = self.clock()
                return []
        raise TypeError(f"Unsupported cluster message: {type(message).__name__}")
