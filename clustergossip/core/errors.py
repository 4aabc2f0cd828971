"""Exception taxonomy for the membership protocol."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from clustergossip.datastructures.cluster_types import (
        Address,
        MemberStatus,
        UniqueAddress,
    )


class ClusterGossipError(Exception):
    """Base exception for membership protocol errors."""

    pass


class InvalidOwner(ClusterGossipError):
    """Raised when a node tries to increment another node's clock entry."""

    def __init__(self, node: str, owner: str) -> None:
        self.node = node
        self.owner = owner
        super().__init__(
            f"Node {owner} may only increment its own clock entry, not {node}"
        )


class ConfigIncompatible(ClusterGossipError):
    """Raised on the joiner when the contact reports an incompatible config."""

    def __init__(self, contact: Address, mismatched_keys: tuple[str, ...] = ()) -> None:
        self.contact = contact
        self.mismatched_keys = mismatched_keys
        detail = f" (keys: {', '.join(mismatched_keys)})" if mismatched_keys else ""
        super().__init__(
            f"Cluster at {contact} rejected join: incompatible configuration{detail}"
        )


class UnknownAddressIndex(ClusterGossipError):
    """Raised when gossip references an index outside one of its tables."""

    def __init__(self, table: str, index: int, size: int) -> None:
        self.table = table
        self.index = index
        self.size = size
        super().__init__(
            f"Index {index} out of bounds for {table} table of size {size}"
        )


class StaleTombstonedRejoin(ClusterGossipError):
    """Raised when a join targets an address that is still tombstoned.

    Retryable once the tombstone retention window has elapsed.
    """

    def __init__(self, node: UniqueAddress, removed_at: int) -> None:
        self.node = node
        self.removed_at = removed_at
        super().__init__(
            f"Join from {node} rejected: address was removed at {removed_at} "
            "and is still tombstoned"
        )


class InvalidTransition(ClusterGossipError):
    """Raised for a member status change the lifecycle does not allow."""

    def __init__(
        self, node: UniqueAddress, from_status: MemberStatus, to_status: MemberStatus
    ) -> None:
        self.node = node
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid transition for {node}: {from_status.name} -> {to_status.name}"
        )


class NotConverged(ClusterGossipError):
    """Raised when a convergence-gated transition is attempted too early."""

    def __init__(self, node: UniqueAddress, to_status: MemberStatus) -> None:
        self.node = node
        self.to_status = to_status
        super().__init__(
            f"Cannot move {node} to {to_status.name}: gossip has not converged"
        )


class GossipCodecError(ClusterGossipError):
    """Raised when a serialized payload cannot be decoded."""

    pass
