"""
Type-safe dataclasses for cluster membership.

Node identity (``Address``, ``UniqueAddress``), member lifecycle status,
reachability status and the join-time ``ConfigCheck`` variant.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import Enum

from hypothesis import strategies as st

from .type_aliases import (
    AddressIndex,
    ConfigString,
    HostName,
    NodeHash,
    NodeUid,
    PortNumber,
    ProtocolName,
    RoleIndex,
    SystemName,
    UpNumber,
)

DEFAULT_PROTOCOL: ProtocolName = "tcp"


@dataclass(frozen=True, slots=True, order=True)
class Address:
    """Network identity of a node; ordered field by field."""

    system: SystemName
    hostname: HostName
    port: PortNumber
    protocol: ProtocolName = DEFAULT_PROTOCOL

    def __post_init__(self) -> None:
        if not self.system:
            raise ValueError("System name cannot be empty")
        if not self.hostname:
            raise ValueError("Hostname cannot be empty")
        if not 0 <= self.port <= 65535:
            raise ValueError(f"Port out of range: {self.port}")

    def __str__(self) -> str:
        return f"{self.protocol}://{self.system}@{self.hostname}:{self.port}"


@dataclass(frozen=True, slots=True, order=True)
class UniqueAddress:
    """
    An ``Address`` plus the uid of one process incarnation.

    A restarted process reuses its ``Address`` with a fresh uid, which makes
    it a distinct member.
    """

    address: Address
    uid: NodeUid

    @property
    def node_hash(self) -> NodeHash:
        """Stable vector-clock identity of this incarnation."""
        digest = hashlib.sha256(f"{self.address}#{self.uid}".encode()).hexdigest()
        return digest[:16]

    def __str__(self) -> str:
        return f"{self.address}#{self.uid}"


class MemberStatus(Enum):
    """Member lifecycle status; values are the wire values of the schema."""

    JOINING = 0
    UP = 1
    LEAVING = 2
    EXITING = 3
    DOWN = 4
    REMOVED = 5
    WEAKLY_UP = 6

    @property
    def rank(self) -> int:
        """Position in the lifecycle order used to resolve merges."""
        return _STATUS_RANK[self]

    def is_operational(self) -> bool:
        return self in (MemberStatus.UP, MemberStatus.WEAKLY_UP)


_STATUS_RANK: dict[MemberStatus, int] = {
    MemberStatus.JOINING: 0,
    MemberStatus.WEAKLY_UP: 1,
    MemberStatus.UP: 2,
    MemberStatus.LEAVING: 3,
    MemberStatus.EXITING: 4,
    MemberStatus.DOWN: 5,
    MemberStatus.REMOVED: 6,
}


class ReachabilityStatus(Enum):
    """Observer's verdict about a subject; values are the wire values."""

    REACHABLE = 0
    UNREACHABLE = 1
    TERMINATED = 2


@dataclass(frozen=True, slots=True)
class Member:
    """
    A membership entry inside a ``Gossip`` snapshot.

    ``address_index`` and ``role_indexes`` point into the snapshot's
    ``all_addresses`` and ``all_roles`` tables.
    """

    address_index: AddressIndex
    up_number: UpNumber
    status: MemberStatus
    role_indexes: tuple[RoleIndex, ...] = ()


class ConfigCheckType(Enum):
    UNCHECKED = 1
    INCOMPATIBLE = 2
    COMPATIBLE = 3


@dataclass(frozen=True, slots=True)
class ConfigCheck:
    """Outcome of comparing a joiner's configuration with the cluster's.

    Only the ``COMPATIBLE`` case carries the authoritative cluster config.
    """

    kind: ConfigCheckType
    cluster_config: ConfigString | None = None

    def __post_init__(self) -> None:
        if self.kind is ConfigCheckType.COMPATIBLE and self.cluster_config is None:
            raise ValueError("Compatible config check must carry the cluster config")
        if self.kind is not ConfigCheckType.COMPATIBLE and self.cluster_config:
            raise ValueError(f"{self.kind.name} config check carries no config")

    @classmethod
    def unchecked(cls) -> ConfigCheck:
        return cls(kind=ConfigCheckType.UNCHECKED)

    @classmethod
    def incompatible(cls) -> ConfigCheck:
        return cls(kind=ConfigCheckType.INCOMPATIBLE)

    @classmethod
    def compatible(cls, cluster_config: ConfigString) -> ConfigCheck:
        return cls(kind=ConfigCheckType.COMPATIBLE, cluster_config=cluster_config)


# Hypothesis strategies for property-based testing
def address_strategy(hosts: list[str] | None = None) -> st.SearchStrategy[Address]:
    return st.builds(
        Address,
        system=st.just("cluster"),
        hostname=st.sampled_from(hosts or ["10.0.0.1", "10.0.0.2", "10.0.0.3"]),
        port=st.integers(min_value=2550, max_value=2553),
    )


def unique_address_strategy(
    hosts: list[str] | None = None,
) -> st.SearchStrategy[UniqueAddress]:
    return st.builds(
        UniqueAddress,
        address=address_strategy(hosts),
        uid=st.integers(min_value=1, max_value=3),
    )
