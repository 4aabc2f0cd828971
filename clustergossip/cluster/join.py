"""
Join handshake.

    joiner                      contact (operational member)
      | -- InitJoin(config) ------> |
      | <-- InitJoinAck(check) ---- |   or InitJoinNack if not operational
      | -- Join(node, roles) -----> |
      | <-- Welcome(gossip) ------- |   joiner starts from the full snapshot

Config comparison works on ``key = value`` lines: two configs are
incompatible when some key present in both has different values.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from loguru import logger

from ..core.errors import ConfigIncompatible, StaleTombstonedRejoin
from ..datastructures.cluster_types import (
    ConfigCheck,
    ConfigCheckType,
    MemberStatus,
    UniqueAddress,
)
from ..datastructures.type_aliases import (
    ConfigKey,
    ConfigString,
    ConfigValue,
    DurationMillis,
    RoleName,
    TimestampMillis,
)
from . import lifecycle
from .gossip import Gossip
from .messages import InitJoin, InitJoinAck, InitJoinNack, Join, Welcome


@dataclass(frozen=True, slots=True)
class JoinAttempt:
    """What the joiner does after a positive ``InitJoinAck``."""

    join: Join
    config: ConfigString | None


@dataclass(frozen=True, slots=True)
class JoinOutcome:
    """Contact-side result of a ``Join``; ``welcome`` is None when deferred."""

    gossip: Gossip
    welcome: Welcome | None


def parse_config(config: ConfigString) -> dict[ConfigKey, ConfigValue]:
    entries: dict[ConfigKey, ConfigValue] = {}
    for raw_line in config.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        entries[key.strip()] = value.strip().strip('"')
    return entries


def mismatched_keys(
    cluster_config: ConfigString, joiner_config: ConfigString
) -> tuple[ConfigKey, ...]:
    ours = parse_config(cluster_config)
    theirs = parse_config(joiner_config)
    return tuple(sorted(k for k in ours.keys() & theirs.keys() if ours[k] != theirs[k]))


def check_config(
    cluster_config: ConfigString | None, joiner_config: ConfigString | None
) -> ConfigCheck:
    if joiner_config is None or cluster_config is None:
        return ConfigCheck.unchecked()
    mismatched = mismatched_keys(cluster_config, joiner_config)
    if mismatched:
        logger.warning(f"Joiner config differs on keys: {', '.join(mismatched)}")
        return ConfigCheck.incompatible()
    return ConfigCheck.compatible(cluster_config)


def handle_init_join(
    gossip: Gossip,
    self_node: UniqueAddress,
    message: InitJoin,
    cluster_config: ConfigString | None = None,
) -> InitJoinAck | InitJoinNack:
    member = gossip.member_for(self_node)
    if member is None or not member.status.is_operational():
        return InitJoinNack(address=self_node.address)
    return InitJoinAck(
        address=self_node.address,
        config_check=check_config(cluster_config, message.current_config),
    )


def handle_init_join_ack(
    ack: InitJoinAck,
    self_node: UniqueAddress,
    roles: Sequence[RoleName] = (),
    current_config: ConfigString | None = None,
) -> JoinAttempt:
    """
    Turn the contact's answer into a ``Join``.

    Raises ``ConfigIncompatible`` when the contact rejected our config; the
    attempt fails but the joiner may try another contact.
    """
    check = ack.config_check or ConfigCheck.unchecked()
    if check.kind is ConfigCheckType.INCOMPATIBLE:
        raise ConfigIncompatible(ack.address)
    config = (
        check.cluster_config
        if check.kind is ConfigCheckType.COMPATIBLE
        else current_config
    )
    return JoinAttempt(join=Join(node=self_node, roles=tuple(roles)), config=config)


def handle_join(
    gossip: Gossip,
    self_node: UniqueAddress,
    message: Join,
    *,
    now: TimestampMillis,
    tombstone_retention: DurationMillis,
) -> JoinOutcome:
    """
    Admit a joiner as Joining and answer with a ``Welcome``.

    Expired tombstones are pruned first, so an admitted joiner never sits at a
    tombstoned address. A still-tombstoned address raises
    ``StaleTombstonedRejoin``. A new incarnation of a live member's address
    first downs the old incarnation; the joiner gets no Welcome yet and
    retries once the old one is removed.
    """
    gossip = gossip.prune_tombstones(tombstone_retention, now)
    joiner = message.node
    store = gossip.tombstone_store()
    if store.is_tombstoned(joiner.address, now, tombstone_retention):
        raise StaleTombstonedRejoin(joiner, store.removed_at(joiner.address) or 0)

    if gossip.has_member(joiner):
        return JoinOutcome(gossip, Welcome(from_node=self_node, gossip=gossip))

    bootstrapping = joiner == self_node and not gossip.members
    if not bootstrapping and not gossip.has_member(self_node):
        logger.warning(f"Ignoring join from {joiner}: {self_node} is not a member")
        return JoinOutcome(gossip, None)

    previous = [
        m for m in gossip.members_at_address(joiner) if m.node != joiner
    ]
    if previous:
        for old in previous:
            if old.status not in (MemberStatus.DOWN, MemberStatus.REMOVED):
                logger.info(f"New incarnation {joiner} replaces {old.node}, downing it")
                gossip = lifecycle.down(gossip, old.node, actor=self_node, now=now)
        return JoinOutcome(gossip, None)

    logger.info(f"Node {joiner} is joining with roles {sorted(message.roles)}")
    admitted = (
        gossip.add_member(joiner, message.roles)
        .increment_version(self_node, owner=self_node)
        .only_seen_by(self_node)
    )
    return JoinOutcome(admitted, Welcome(from_node=self_node, gossip=admitted))


def handle_welcome(welcome: Welcome, self_node: UniqueAddress) -> Gossip:
    """Adopt the contact's snapshot as our first state."""
    gossip = welcome.gossip.validate()
    if not gossip.has_member(self_node):
        raise ValueError(f"Welcome from {welcome.from_node} does not include {self_node}")
    return gossip.seen_by(self_node)
