"""Cluster protocol messages exchanged between nodes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TypeAlias

from ..datastructures.cluster_types import Address, ConfigCheck, UniqueAddress
from ..datastructures.type_aliases import (
    ConfigString,
    NodeHash,
    RoleName,
    SerializedGossip,
)
from ..datastructures.vector_clock import VectorClock
from .gossip import Gossip


@dataclass(frozen=True, slots=True)
class InitJoin:
    """First contact from a joiner, optionally carrying its config."""

    current_config: ConfigString | None = None


@dataclass(frozen=True, slots=True)
class InitJoinAck:
    address: Address
    config_check: ConfigCheck | None = None


@dataclass(frozen=True, slots=True)
class InitJoinNack:
    """Contact is not an operational member and cannot admit joiners."""

    address: Address


@dataclass(frozen=True, slots=True)
class Join:
    node: UniqueAddress
    roles: tuple[RoleName, ...] = ()


@dataclass(frozen=True, slots=True)
class Welcome:
    """Reply to ``Join`` carrying the full snapshot the joiner starts from."""

    from_node: UniqueAddress
    gossip: Gossip


@dataclass(frozen=True, slots=True)
class Leave:
    address: Address


@dataclass(frozen=True, slots=True)
class Down:
    address: Address


@dataclass(frozen=True, slots=True)
class Heartbeat:
    from_address: Address


@dataclass(frozen=True, slots=True)
class HeartbeatRsp:
    from_node: UniqueAddress


@dataclass(frozen=True, slots=True)
class GossipEnvelope:
    """Full gossip in serialized form, addressed to one incarnation."""

    from_node: UniqueAddress
    to_node: UniqueAddress
    serialized_gossip: SerializedGossip


@dataclass(frozen=True, slots=True)
class GossipStatus:
    """Digest of a snapshot: only its version, used to skip redundant sends."""

    from_node: UniqueAddress
    all_hashes: tuple[NodeHash, ...]
    version: VectorClock

    @classmethod
    def of(cls, from_node: UniqueAddress, gossip: Gossip) -> GossipStatus:
        return cls(
            from_node=from_node,
            all_hashes=gossip.all_hashes,
            version=gossip.version,
        )


@dataclass(frozen=True, slots=True)
class GossipRequest:
    """Ask a peer whose digest was newer or concurrent for its full gossip."""

    from_node: UniqueAddress


ClusterMessage: TypeAlias = (
    InitJoin
    | InitJoinAck
    | InitJoinNack
    | Join
    | Welcome
    | Leave
    | Down
    | Heartbeat
    | HeartbeatRsp
    | GossipEnvelope
    | GossipStatus
    | GossipRequest
)
