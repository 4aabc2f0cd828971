"""Pytest configuration and fixtures for clustergossip testing.

Nodes in these tests exchange messages through a synchronous pump instead of
a real transport, so every scenario is deterministic: a message is handled,
its replies are queued, and the pump runs until nothing is left in flight.
"""

import random
from collections import deque
from collections.abc import Callable, Iterable, Sequence

import pytest

from clustergossip.cluster.gossip import Gossip, MemberInfo
from clustergossip.cluster.node import ClusterNode, Outgoing
from clustergossip.core.config import ClusterSettings
from clustergossip.datastructures.cluster_types import (
    Address,
    MemberStatus,
    UniqueAddress,
)
from clustergossip.datastructures.vector_clock import VectorClock


def node_address(port: int, uid: int = 1, host: str = "10.0.0.1") -> UniqueAddress:
    return UniqueAddress(
        address=Address(system="cluster", hostname=host, port=port), uid=uid
    )


def snapshot(
    members: Iterable[tuple[UniqueAddress, MemberStatus]],
    *,
    seen: Iterable[UniqueAddress] = (),
    version: dict[UniqueAddress, int] | None = None,
) -> Gossip:
    """Build a gossip snapshot from (node, status) pairs."""
    infos = [
        MemberInfo(node=node, status=status, up_number=i + 1)
        for i, (node, status) in enumerate(members)
    ]
    clock = VectorClock.from_dict(
        {node.node_hash: ts for node, ts in (version or {}).items()}
    )
    return Gossip.build(infos, seen=seen, version=clock)


class ManualClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, millis: int) -> None:
        self.now += millis


def pump(
    nodes: Sequence[ClusterNode],
    outgoing: Iterable[tuple[UniqueAddress, Outgoing]],
    max_messages: int = 10_000,
) -> int:
    """Deliver messages and all their replies; returns messages delivered."""
    by_address = {node.self_node: node for node in nodes}
    queue = deque(outgoing)
    delivered = 0
    while queue:
        sender, out = queue.popleft()
        target = by_address.get(out.to)
        if target is None:
            continue
        delivered += 1
        assert delivered <= max_messages, "message storm"
        for reply in target.handle(out.message, sender):
            queue.append((target.self_node, reply))
    return delivered


def gossip_round(nodes: Sequence[ClusterNode]) -> None:
    """Every node gossips once to one peer, replies included."""
    for node in nodes:
        out = node.gossip_tick()
        if out is not None:
            pump(nodes, [(node.self_node, out)])


def run_rounds(
    nodes: Sequence[ClusterNode],
    until: Callable[[], bool],
    max_rounds: int = 50,
) -> bool:
    """Alternate gossip rounds and leader ticks until ``until()`` holds."""
    for _ in range(max_rounds):
        if until():
            return True
        gossip_round(nodes)
        for node in nodes:
            if node.is_member:
                node.leader_tick()
    return until()


def join(nodes: Sequence[ClusterNode], joiner: ClusterNode, contact: ClusterNode) -> None:
    pump(nodes, [(joiner.self_node, Outgoing(contact.self_node, joiner.init_join()))])


def all_up(nodes: Sequence[ClusterNode]) -> bool:
    size = len(nodes)
    return all(
        len(node.members) == size
        and all(m.status is MemberStatus.UP for m in node.members)
        and node.is_converged
        for node in nodes
    )


def form_cluster(nodes: Sequence[ClusterNode]) -> None:
    """Bootstrap ``nodes[0]`` and join the rest through it until all are Up."""
    seed = nodes[0]
    seed.join_self()
    seed.leader_tick()
    for joiner in nodes[1:]:
        join(nodes, joiner, seed)
    assert run_rounds(nodes, lambda: all_up(nodes))


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def make_node(clock: ManualClock) -> Callable[..., ClusterNode]:
    def _make(port: int, uid: int = 1, **overrides) -> ClusterNode:
        settings = ClusterSettings(hostname="10.0.0.1", port=port, **overrides)
        return ClusterNode(
            self_node=settings.unique_address(uid),
            settings=settings,
            clock=clock,
            rng=random.Random(port * 31 + uid),
        )

    return _make


@pytest.fixture
def three_nodes(make_node) -> list[ClusterNode]:
    nodes = [make_node(2551), make_node(2552), make_node(2553)]
    form_cluster(nodes)
    return nodes
