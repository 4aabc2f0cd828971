"""
clustergossip - gossip-based cluster membership.

Nodes exchange immutable membership snapshots (``Gossip``) versioned by a
vector clock. Snapshots merge deterministically, a leader drives member
status transitions once every member has seen the current state, and
removed incarnations are tombstoned so they cannot be resurrected.

```python
from clustergossip import ClusterNode, ClusterSettings

settings = ClusterSettings(port=2552)
node = ClusterNode(self_node=settings.unique_address(uid=1), settings=settings)
node.join_self()
node.leader_tick()
```
"""

from .cluster.gossip import Gossip, MemberInfo
from .cluster.node import ClusterNode
from .core.config import ClusterSettings
from .core.errors import (
    ClusterGossipError,
    ConfigIncompatible,
    GossipCodecError,
    InvalidOwner,
    InvalidTransition,
    NotConverged,
    StaleTombstonedRejoin,
    UnknownAddressIndex,
)
from .datastructures.cluster_types import Address, MemberStatus, UniqueAddress
from .datastructures.vector_clock import Ordering, VectorClock

__version__ = "0.1.0"

__all__ = [
    "Address",
    "ClusterGossipError",
    "ClusterNode",
    "ClusterSettings",
    "ConfigIncompatible",
    "Gossip",
    "GossipCodecError",
    "InvalidOwner",
    "InvalidTransition",
    "MemberInfo",
    "MemberStatus",
    "NotConverged",
    "Ordering",
    "StaleTombstonedRejoin",
    "UniqueAddress",
    "UnknownAddressIndex",
    "VectorClock",
]
