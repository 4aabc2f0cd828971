"""
Semantic type aliases for clustergossip datastructures.

These aliases keep signatures self-documenting: an ``AddressIndex`` is a
position into a gossip address table, not just any ``int``.
"""

from typing import Any, TypeAlias

# Time and timestamp types
Timestamp: TypeAlias = float
TimestampMillis: TypeAlias = int
DurationSeconds: TypeAlias = float
DurationMillis: TypeAlias = int

# Node identity types
SystemName: TypeAlias = str
HostName: TypeAlias = str
PortNumber: TypeAlias = int
ProtocolName: TypeAlias = str
NodeUid: TypeAlias = int
NodeHash: TypeAlias = str
RoleName: TypeAlias = str

# Index handles into the gossip tables
AddressIndex: TypeAlias = int
RoleIndex: TypeAlias = int
HashIndex: TypeAlias = int

# Vector clock types
VectorClockTimestamp: TypeAlias = int
VectorClockNodeId: TypeAlias = NodeHash

# Membership types
UpNumber: TypeAlias = int
ReachabilityVersion: TypeAlias = int

# Configuration types
ConfigString: TypeAlias = str
ConfigKey: TypeAlias = str
ConfigValue: TypeAlias = str

# Serialization types
JsonDict: TypeAlias = dict[str, Any]
SerializedGossip: TypeAlias = bytes
