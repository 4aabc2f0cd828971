"""Tests for gossip wire encoding and malformed-input handling."""

import pytest

from clustergossip.cluster.codec import (
    decode_gossip,
    encode_gossip,
    gossip_from_dict,
    gossip_to_dict,
    unique_address_from_dict,
    unique_address_to_dict,
)
from clustergossip.cluster.gossip import Gossip, MemberInfo
from clustergossip.core.errors import GossipCodecError, UnknownAddressIndex
from clustergossip.datastructures.cluster_types import MemberStatus
from clustergossip.datastructures.reachability import Reachability
from tests.conftest import node_address

A = node_address(2551)
B = node_address(2552)
C = node_address(2553)


def sample_gossip() -> Gossip:
    gossip = Gossip.build(
        [
            MemberInfo(A, MemberStatus.UP, 1, frozenset({"frontend"})),
            MemberInfo(B, MemberStatus.UP, 2, frozenset({"backend", "frontend"})),
            MemberInfo(C, MemberStatus.DOWN, 3),
        ],
        seen=[A, B],
        reachability=Reachability().unreachable(A, C).unreachable(B, C),
    )
    return (
        gossip.increment_version(A, owner=A)
        .increment_version(B, owner=B)
        .remove_member(C, 42_000)
    )


class TestEncoding:
    def test_unique_address_dict(self):
        payload = unique_address_to_dict(A)
        assert payload == {
            "system": "cluster",
            "hostname": "10.0.0.1",
            "port": 2551,
            "protocol": "tcp",
            "uid": 1,
        }
        assert unique_address_from_dict(payload) == A

    def test_wire_layout_uses_table_indexes(self):
        gossip = sample_gossip()
        payload = gossip_to_dict(gossip)

        assert [a["port"] for a in payload["all_addresses"]] == [2551, 2552, 2553]
        assert payload["all_roles"] == ["backend", "frontend"]
        assert payload["members"][1] == {
            "address_index": 1,
            "up_number": 2,
            "status": MemberStatus.UP.value,
            "role_indexes": [0, 1],
        }
        assert payload["overview"]["seen"] == [0, 1]
        assert payload["tombstones"] == [{"address_index": 2, "timestamp": 42_000}]
        hash_indexes = {v["hash_index"] for v in payload["version"]["versions"]}
        assert hash_indexes == {0, 1}

    def test_encode_decode(self):
        gossip = sample_gossip()
        decoded = decode_gossip(encode_gossip(gossip))
        assert decoded == gossip
        assert decoded.tombstone_store().removed_at(C.address) == 42_000

    def test_reachability_survives_encoding(self):
        gossip = Gossip.build(
            [MemberInfo(A, MemberStatus.UP), MemberInfo(B, MemberStatus.UP)],
            reachability=Reachability().unreachable(A, B),
        )
        decoded = decode_gossip(encode_gossip(gossip))
        assert decoded.reachability() == gossip.reachability()
        assert decoded.reachability().all_unreachable() == frozenset({B})


class TestMalformedInput:
    def test_undecodable_bytes(self):
        with pytest.raises(GossipCodecError):
            decode_gossip(b"\x00not json")

    def test_non_object_payload(self):
        with pytest.raises(GossipCodecError, match="JSON object"):
            decode_gossip(b"[1, 2, 3]")

    def test_missing_fields(self):
        payload = gossip_to_dict(sample_gossip())
        del payload["members"][0]["status"]
        with pytest.raises(GossipCodecError):
            gossip_from_dict(payload)

    def test_unknown_status_value(self):
        payload = gossip_to_dict(sample_gossip())
        payload["members"][0]["status"] = 99
        with pytest.raises(GossipCodecError):
            gossip_from_dict(payload)

    def test_member_index_out_of_bounds(self):
        payload = gossip_to_dict(sample_gossip())
        payload["members"][0]["address_index"] = 17
        with pytest.raises(UnknownAddressIndex) as exc_info:
            gossip_from_dict(payload)
        assert exc_info.value.index == 17

    def test_seen_index_out_of_bounds(self):
        payload = gossip_to_dict(sample_gossip())
        payload["overview"]["seen"] = [0, 5]
        with pytest.raises(UnknownAddressIndex):
            gossip_from_dict(payload)

    def test_hash_index_out_of_bounds(self):
        payload = gossip_to_dict(sample_gossip())
        payload["version"]["versions"][0]["hash_index"] = 9
        with pytest.raises(UnknownAddressIndex) as exc_info:
            gossip_from_dict(payload)
        assert exc_info.value.table == "hash"

    def test_duplicate_member_entries(self):
        payload = gossip_to_dict(sample_gossip())
        payload["members"].append(dict(payload["members"][0]))
        with pytest.raises(GossipCodecError, match="Inconsistent"):
            gossip_from_dict(payload)

    def test_negative_clock_timestamp(self):
        payload = gossip_to_dict(sample_gossip())
        payload["version"]["versions"][0]["timestamp"] = -3
        with pytest.raises(GossipCodecError, match="negative clock timestamp"):
            gossip_from_dict(payload)
