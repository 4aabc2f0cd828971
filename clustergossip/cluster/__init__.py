"""Gossip snapshot, membership protocol and node runtime."""

from __future__ import annotations

from .convergence import is_converged
from .gossip import Gossip, MemberInfo, merge_all
from .lifecycle import leader, leader_actions, transition
from .node import ClusterNode, ReceiveOutcome

__all__ = [
    "ClusterNode",
    "Gossip",
    "MemberInfo",
    "ReceiveOutcome",
    "is_converged",
    "leader",
    "leader_actions",
    "merge_all",
    "transition",
]
