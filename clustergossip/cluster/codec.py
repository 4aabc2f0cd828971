"""Serialization helpers for Gossip snapshots.

The wire form mirrors the index-table layout of ``Gossip``: addresses, roles
and node hashes are listed once and referenced by position. Every decoded
snapshot has its handles re-validated before it is returned.
"""

from __future__ import annotations

from typing import Any

import orjson

from ..core.errors import GossipCodecError, UnknownAddressIndex
from ..datastructures.cluster_types import (
    Address,
    Member,
    MemberStatus,
    ReachabilityStatus,
    UniqueAddress,
)
from ..datastructures.type_aliases import JsonDict, SerializedGossip
from ..datastructures.vector_clock import VectorClock
from .gossip import (
    Gossip,
    GossipOverview,
    ObserverReachability,
    SubjectReachability,
    Tombstone,
)


def unique_address_to_dict(node: UniqueAddress) -> JsonDict:
    return {
        "system": node.address.system,
        "hostname": node.address.hostname,
        "port": node.address.port,
        "protocol": node.address.protocol,
        "uid": node.uid,
    }


def unique_address_from_dict(payload: dict[str, Any]) -> UniqueAddress:
    return UniqueAddress(
        address=Address(
            system=str(payload["system"]),
            hostname=str(payload["hostname"]),
            port=int(payload["port"]),
            protocol=str(payload.get("protocol", "tcp")),
        ),
        uid=int(payload["uid"]),
    )


def version_to_dict(version: VectorClock, all_hashes: tuple[str, ...]) -> JsonDict:
    hash_index = {node_hash: i for i, node_hash in enumerate(all_hashes)}
    return {
        "versions": [
            {"hash_index": hash_index[entry.node_id], "timestamp": entry.timestamp}
            for entry in version
        ]
    }


def version_from_dict(payload: dict[str, Any], all_hashes: list[str]) -> VectorClock:
    counters: dict[str, int] = {}
    for item in payload.get("versions", ()):
        index = int(item["hash_index"])
        if not 0 <= index < len(all_hashes):
            raise UnknownAddressIndex("hash", index, len(all_hashes))
        timestamp = int(item["timestamp"])
        if timestamp < 0:
            raise ValueError(f"negative clock timestamp {timestamp}")
        counters[all_hashes[index]] = timestamp
    return VectorClock.from_dict(counters)


def gossip_to_dict(gossip: Gossip) -> JsonDict:
    return {
        "all_addresses": [unique_address_to_dict(n) for n in gossip.all_addresses],
        "all_roles": list(gossip.all_roles),
        "all_hashes": list(gossip.all_hashes),
        "members": [
            {
                "address_index": m.address_index,
                "up_number": m.up_number,
                "status": m.status.value,
                "role_indexes": list(m.role_indexes),
            }
            for m in gossip.members
        ],
        "overview": {
            "seen": sorted(gossip.overview.seen),
            "observer_reachability": [
                {
                    "address_index": obs.observer_index,
                    "version": obs.version,
                    "subject_reachability": [
                        {
                            "address_index": s.subject_index,
                            "status": s.status.value,
                            "version": s.version,
                        }
                        for s in obs.subjects
                    ],
                }
                for obs in gossip.overview.observer_reachability
            ],
        },
        "version": version_to_dict(gossip.version, gossip.all_hashes),
        "tombstones": [
            {"address_index": t.address_index, "timestamp": t.timestamp}
            for t in gossip.tombstones
        ],
    }


def gossip_from_dict(payload: dict[str, Any]) -> Gossip:
    """
    Decode and validate a snapshot.

    Raises ``UnknownAddressIndex`` for out-of-bounds handles and
    ``GossipCodecError`` for structurally broken payloads.
    """
    try:
        all_hashes = [str(h) for h in payload.get("all_hashes", ())]
        overview = payload.get("overview", {})
        raw = Gossip(
            all_addresses=tuple(
                unique_address_from_dict(a) for a in payload.get("all_addresses", ())
            ),
            all_roles=tuple(str(r) for r in payload.get("all_roles", ())),
            all_hashes=tuple(all_hashes),
            members=tuple(
                Member(
                    address_index=int(m["address_index"]),
                    up_number=int(m.get("up_number", 0)),
                    status=MemberStatus(int(m["status"])),
                    role_indexes=tuple(int(i) for i in m.get("role_indexes", ())),
                )
                for m in payload.get("members", ())
            ),
            overview=GossipOverview(
                seen=frozenset(int(i) for i in overview.get("seen", ())),
                observer_reachability=tuple(
                    ObserverReachability(
                        observer_index=int(obs["address_index"]),
                        version=int(obs["version"]),
                        subjects=tuple(
                            SubjectReachability(
                                subject_index=int(s["address_index"]),
                                status=ReachabilityStatus(int(s["status"])),
                                version=int(s["version"]),
                            )
                            for s in obs.get("subject_reachability", ())
                        ),
                    )
                    for obs in overview.get("observer_reachability", ())
                ),
            ),
            version=version_from_dict(payload.get("version", {}), all_hashes),
            tombstones=tuple(
                Tombstone(
                    address_index=int(t["address_index"]),
                    timestamp=int(t["timestamp"]),
                )
                for t in payload.get("tombstones", ())
            ),
        )
    except UnknownAddressIndex:
        raise
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise GossipCodecError(f"Malformed gossip payload: {exc}") from exc

    raw.validate()
    try:
        return Gossip.build(
            raw.member_infos(),
            seen=raw.seen_nodes(),
            reachability=raw.reachability(),
            version=raw.version,
            tombstones=raw.tombstone_store(),
        )
    except ValueError as exc:
        raise GossipCodecError(f"Inconsistent gossip payload: {exc}") from exc


def encode_gossip(gossip: Gossip) -> SerializedGossip:
    return orjson.dumps(gossip_to_dict(gossip))


def decode_gossip(data: SerializedGossip) -> Gossip:
    try:
        payload = orjson.loads(data)
    except orjson.JSONDecodeError as exc:
        raise GossipCodecError(f"Undecodable gossip payload: {exc}") from exc
    if not isinstance(payload, dict):
        raise GossipCodecError("Gossip payload must be a JSON object")
    return gossip_from_dict(payload)
