"""
Transport boundary for cluster messages.

The production transport is an external collaborator: anything that can
deliver a ``ClusterMessage`` to a ``UniqueAddress`` best-effort satisfies
``GossipTransport``. ``InMemoryTransport`` delivers through asyncio queues
inside one process, with optional random loss and network partitions, and
backs the simulator and the tests.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from typing import Protocol

from loguru import logger

from ..datastructures.cluster_types import UniqueAddress
from .messages import ClusterMessage


class TransportError(Exception):
    """Base exception for transport-related errors."""

    pass


class GossipTransport(Protocol):
    async def send(
        self, sender: UniqueAddress, to: UniqueAddress, message: ClusterMessage
    ) -> None: ...

    async def receive(
        self, node: UniqueAddress
    ) -> tuple[UniqueAddress, ClusterMessage]: ...


@dataclass(slots=True)
class InMemoryTransport:
    """Lossy in-process transport; delivery is best-effort and unordered."""

    drop_rate: float = 0.0
    rng: random.Random = field(default_factory=random.Random)
    _queues: dict[UniqueAddress, asyncio.Queue[tuple[UniqueAddress, ClusterMessage]]] = (
        field(default_factory=dict)
    )
    _partitions: set[frozenset[UniqueAddress]] = field(default_factory=set)
    sent: int = 0
    dropped: int = 0

    def register(self, node: UniqueAddress) -> None:
        self._queues.setdefault(node, asyncio.Queue())

    def unregister(self, node: UniqueAddress) -> None:
        self._queues.pop(node, None)

    def partition(self, a: UniqueAddress, b: UniqueAddress) -> None:
        self._partitions.add(frozenset((a, b)))

    def heal(self, a: UniqueAddress, b: UniqueAddress) -> None:
        self._partitions.discard(frozenset((a, b)))

    def heal_all(self) -> None:
        self._partitions.clear()

    def is_partitioned(self, a: UniqueAddress, b: UniqueAddress) -> bool:
        return frozenset((a, b)) in self._partitions

    async def send(
        self, sender: UniqueAddress, to: UniqueAddress, message: ClusterMessage
    ) -> None:
        queue = self._queues.get(to)
        self.sent += 1
        if queue is None or self.is_partitioned(sender, to):
            self.dropped += 1
            return
        if self.drop_rate and self.rng.random() < self.drop_rate:
            self.dropped += 1
            logger.debug(f"Dropped {type(message).__name__} {sender} -> {to}")
            return
        queue.put_nowait((sender, message))

    async def receive(
        self, node: UniqueAddress
    ) -> tuple[UniqueAddress, ClusterMessage]:
        queue = self._queues.get(node)
        if queue is None:
            raise TransportError(f"{node} is not registered with the transport")
        return await queue.get()
