"""
Asyncio driver for a ``ClusterNode``.

Runs the periodic gossip and leader loops plus an inbound message loop over a
``GossipTransport``. All protocol decisions stay in ``ClusterNode``; the
daemon only moves messages and keeps time.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from ..datastructures.cluster_types import UniqueAddress
from .node import ClusterNode, Outgoing
from .transport import GossipTransport


@dataclass(slots=True)
class GossipDaemon:
    """Background tasks for one node: gossip, leader actions, inbound dispatch."""

    node: ClusterNode
    transport: GossipTransport
    seeds: Sequence[UniqueAddress] = ()
    join_retry_interval: float = 0.5
    daemon_stats: dict[str, int] = field(default_factory=dict)
    _background_tasks: set[asyncio.Task[Any]] = field(default_factory=set)
    _shutdown_event: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def self_node(self) -> UniqueAddress:
        return self.node.self_node

    async def start(self) -> None:
        """Start the protocol loops and begin joining through the seeds."""
        logger.info(f"Starting GossipDaemon for node {self.self_node}")
        self._shutdown_event.clear()
        self._start_background_tasks()
        self.daemon_stats["started"] = int(time.time())

    async def stop(self) -> None:
        """Stop the protocol loops."""
        logger.info(f"Stopping GossipDaemon for node {self.self_node}")
        self._shutdown_event.set()

        for task in self._background_tasks:
            task.cancel()

        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)

        self._background_tasks.clear()
        self.daemon_stats["stopped"] = int(time.time())

    def _start_background_tasks(self) -> None:
        for loop in (
            self._receive_loop,
            self._join_loop,
            self._gossip_loop,
            self._leader_loop,
        ):
            task = asyncio.create_task(loop())
            self._background_tasks.add(task)

    async def send_all(self, outgoing: Sequence[Outgoing]) -> None:
        for out in outgoing:
            await self.transport.send(self.self_node, out.to, out.message)

    async def _receive_loop(self) -> None:
        while not self._shutdown_event.is_set():
            try:
                sender, message = await self.transport.receive(self.self_node)
                await self.send_all(self.node.handle(message, sender))
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error handling message at {self.self_node}: {e}")

    async def _join_loop(self) -> None:
        """Contact seeds round-robin until we appear in a snapshot as a member."""
        contacts = [seed for seed in self.seeds if seed != self.self_node]
        if not contacts:
            self.node.join_self()
            return
        attempt = 0
        while not self._shutdown_event.is_set() and not self.node.is_member:
            contact = contacts[attempt % len(contacts)]
            attempt += 1
            try:
                logger.debug(f"{self.self_node} sending InitJoin to {contact}")
                await self.transport.send(
                    self.self_node, contact, self.node.init_join()
                )
                await asyncio.sleep(self.join_retry_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error joining via {contact}: {e}")
                await asyncio.sleep(self.join_retry_interval)

    async def _gossip_loop(self) -> None:
        interval = self.node.settings.gossip_interval
        while not self._shutdown_event.is_set():
            try:
                out = self.node.gossip_tick()
                if out is not None:
                    await self.send_all([out])
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in gossip loop: {e}")
                await asyncio.sleep(interval)

    async def _leader_loop(self) -> None:
        interval = self.node.settings.leader_actions_interval
        while not self._shutdown_event.is_set():
            try:
                if self.node.is_member:
                    self.node.leader_tick()
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in leader loop: {e}")
                await asyncio.sleep(interval)

    async def wait_until(
        self, predicate: Any, timeout: float = 5.0, poll: float = 0.01
    ) -> bool:
        """Poll ``predicate()`` until it holds or ``timeout`` seconds pass."""
        deadline = asyncio.get_running_loop().time() + timeout
        while asyncio.get_running_loop().time() < deadline:
            if predicate():
                return True
            await asyncio.sleep(poll)
        return bool(predicate())
