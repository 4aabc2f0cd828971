#!/usr/bin/env python3
"""
Command line entry point for clustergossip.

- ``simulate`` runs an in-memory N-node cluster until every node is Up and
  the gossip has converged, then prints the membership table
- ``show-config`` prints the effective node settings
"""

import asyncio
import random
import sys

import click
import orjson
from loguru import logger
from rich.console import Console
from rich.table import Table

from .cluster.convergence import is_converged
from .cluster.daemon import GossipDaemon
from .cluster.node import ClusterNode
from .cluster.transport import InMemoryTransport
from .core.config import ClusterSettings
from .core.logging import configure_logging
from .datastructures.cluster_types import MemberStatus

console = Console()


def _all_up(nodes: list[ClusterNode], size: int) -> bool:
    for node in nodes:
        members = node.members
        if len(members) != size:
            return False
        if any(m.status is not MemberStatus.UP for m in members):
            return False
        if not is_converged(node.gossip):
            return False
    return True


async def simulate_cluster(
    size: int,
    *,
    drop_rate: float = 0.0,
    seed: int | None = None,
    gossip_interval: float = 0.02,
    timeout: float = 10.0,
) -> tuple[list[ClusterNode], bool]:
    """Start ``size`` daemons over one lossy transport and wait for all-Up."""
    rng = random.Random(seed)
    transport = InMemoryTransport(drop_rate=drop_rate, rng=random.Random(rng.random()))
    nodes: list[ClusterNode] = []
    for index in range(size):
        settings = ClusterSettings(
            port=2552 + index,
            gossip_interval=gossip_interval,
            leader_actions_interval=gossip_interval,
        )
        node = ClusterNode(
            self_node=settings.unique_address(uid=index + 1),
            settings=settings,
            rng=random.Random(rng.random()),
        )
        transport.register(node.self_node)
        nodes.append(node)

    seed_node = nodes[0].self_node
    daemons = [
        GossipDaemon(
            node=node,
            transport=transport,
            seeds=(seed_node,),
            join_retry_interval=gossip_interval * 5,
        )
        for node in nodes
    ]
    for daemon in daemons:
        await daemon.start()
    try:
        converged = await daemons[0].wait_until(
            lambda: _all_up(nodes, size), timeout=timeout
        )
    finally:
        for daemon in daemons:
            await daemon.stop()

    logger.info(
        f"Simulation finished: converged={converged} "
        f"sent={transport.sent} dropped={transport.dropped}"
    )
    return nodes, converged


def display_members(node: ClusterNode) -> None:
    gossip = node.gossip
    unreachable = gossip.reachability().all_unreachable()
    seen = gossip.seen_nodes()
    leader = node.leader

    table = Table(title=f"Members as seen by {node.self_node.address}")
    table.add_column("Address", style="cyan", no_wrap=True)
    table.add_column("UID", justify="right")
    table.add_column("Status", justify="center")
    table.add_column("Up #", justify="right")
    table.add_column("Seen", justify="center")
    table.add_column("Reachable", justify="center")
    table.add_column("Leader", justify="center")

    for member in gossip.member_infos():
        status_style = "green" if member.status is MemberStatus.UP else "yellow"
        table.add_row(
            str(member.node.address),
            str(member.node.uid),
            f"[{status_style}]{member.status.name}[/{status_style}]",
            str(member.up_number),
            "yes" if member.node in seen else "no",
            "no" if member.node in unreachable else "yes",
            "*" if member.node == leader else "",
        )

    console.print(table)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option(
    "--debug-scope",
    "debug_scopes",
    multiple=True,
    help="Module prefix to log at DEBUG, e.g. cluster.node (repeatable)",
)
@click.pass_context
def cli(ctx, verbose: bool, debug_scopes: tuple[str, ...]):
    """
    Cluster membership gossip tools.

    Simulate gossip-driven membership convergence in memory and inspect
    node configuration.
    """
    configure_logging("DEBUG" if verbose else "WARNING", debug_scopes=debug_scopes)
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


@cli.command()
@click.option("--nodes", "-n", default=3, show_default=True, type=click.IntRange(1, 64))
@click.option(
    "--drop-rate",
    default=0.0,
    show_default=True,
    type=click.FloatRange(0.0, 0.9),
    help="Probability that any single message is lost",
)
@click.option("--seed", type=int, default=None, help="Random seed for repeatable runs")
@click.option(
    "--timeout", default=10.0, show_default=True, help="Seconds to wait for all-Up"
)
@click.option(
    "--gossip-interval",
    default=0.02,
    show_default=True,
    help="Seconds between gossip rounds",
)
def simulate(
    nodes: int, drop_rate: float, seed: int | None, timeout: float, gossip_interval: float
):
    """Run an in-memory cluster until every member is Up and converged."""
    cluster, converged = asyncio.run(
        simulate_cluster(
            nodes,
            drop_rate=drop_rate,
            seed=seed,
            gossip_interval=gossip_interval,
            timeout=timeout,
        )
    )
    display_members(cluster[0])
    if converged:
        console.print(f"[green]✅ {nodes} node(s) converged[/green]")
    else:
        console.print(f"[red]❌ Cluster did not converge within {timeout}s[/red]")
        sys.exit(1)


@cli.command("show-config")
@click.option(
    "--config", "-c", type=click.Path(exists=True), help="TOML configuration file"
)
@click.option(
    "--output",
    "-o",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format",
)
def show_config(config: str | None, output: str):
    """Show the effective node settings."""
    settings = ClusterSettings.from_toml(config) if config else ClusterSettings()
    data = settings.model_dump()

    if output == "json":
        click.echo(orjson.dumps(data, option=orjson.OPT_INDENT_2).decode())
        return

    table = Table(title="Node Settings")
    table.add_column("Setting", style="cyan", no_wrap=True)
    table.add_column("Value", style="magenta")
    for key, value in data.items():
        table.add_row(key, str(value))
    table.add_row("address", str(settings.address))
    console.print(table)


def main():
    """Main CLI entry point."""
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n[yellow]⚠️ Operation cancelled by user[/yellow]")
        sys.exit(1)


if __name__ == "__main__":
    main()
