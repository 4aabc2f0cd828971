"""
Core membership datastructures.

- VectorClock: causal ordering of gossip versions
- Address / UniqueAddress / Member: node identity and membership records
- Reachability: per-observer unreachability records
- TombstoneStore: removed incarnations with removal timestamps
"""

from __future__ import annotations

from .cluster_types import (
    Address,
    ConfigCheck,
    ConfigCheckType,
    Member,
    MemberStatus,
    ReachabilityStatus,
    UniqueAddress,
)
from .reachability import Reachability, ReachabilityRecord
from .tombstones import TombstoneStore
from .vector_clock import Ordering, VectorClock

__all__ = [
    "Address",
    "ConfigCheck",
    "ConfigCheckType",
    "Member",
    "MemberStatus",
    "Ordering",
    "Reachability",
    "ReachabilityRecord",
    "ReachabilityStatus",
    "TombstoneStore",
    "UniqueAddress",
    "VectorClock",
]
