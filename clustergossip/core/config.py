import tomllib
from pathlib import Path
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from clustergossip.datastructures.cluster_types import Address, UniqueAddress


class ClusterSettings(BaseSettings):
    """Cluster node configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="CLUSTERGOSSIP_", env_file=".env", extra="ignore"
    )

    system_name: str = Field(
        "cluster", description="Name of the actor system this node belongs to."
    )
    hostname: str = Field("127.0.0.1", description="Host the node is reachable at.")
    port: int = Field(2552, description="Port the node is reachable at.")
    protocol: str = Field("tcp", description="Transport protocol name.")
    roles: tuple[str, ...] = Field(
        (), description="Roles this node advertises to the cluster."
    )
    seed_nodes: tuple[str, ...] = Field(
        (), description="host:port contacts tried in order when joining."
    )
    gossip_interval: float = Field(
        1.0, description="Interval in seconds between gossip rounds."
    )
    leader_actions_interval: float = Field(
        1.0, description="Interval in seconds between leader action passes."
    )
    unreachable_gossip_probability: float = Field(
        0.1,
        ge=0.0,
        le=1.0,
        description="Chance a gossip round targets an unreachable member instead.",
    )
    tombstone_retention: float = Field(
        86400.0,
        description="Seconds a removed member's address stays tombstoned.",
    )
    allow_weakly_up_members: bool = Field(
        True,
        description="Let the leader move joiners to WeaklyUp while not converged.",
    )
    cluster_config: str | None = Field(
        None,
        description="key = value lines compared against joiners' configuration.",
    )
    log_level: str = Field("INFO", description="Log level for loguru output.")
    log_debug_scopes: tuple[str, ...] = Field(
        (), description="Module scopes that log at DEBUG regardless of level."
    )

    @field_validator("roles", "seed_nodes", "log_debug_scopes", mode="before")
    @classmethod
    def _normalize_sequence(cls, value: Any) -> Any:
        if value is None:
            return ()
        if isinstance(value, str):
            return tuple(part.strip() for part in value.split(",") if part.strip())
        return tuple(value)

    @property
    def address(self) -> Address:
        return Address(
            system=self.system_name,
            hostname=self.hostname,
            port=self.port,
            protocol=self.protocol,
        )

    @property
    def tombstone_retention_ms(self) -> int:
        return int(self.tombstone_retention * 1000)

    def unique_address(self, uid: int) -> UniqueAddress:
        return UniqueAddress(address=self.address, uid=uid)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ClusterSettings":
        return cls(**payload)

    @classmethod
    def from_toml(cls, path: Path | str) -> "ClusterSettings":
        """Load settings from the ``[clustergossip]`` table of a TOML file."""
        with open(path, "rb") as f:
            raw = tomllib.load(f)
        return cls.from_dict(raw.get("clustergossip", raw))
