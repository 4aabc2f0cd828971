"""
Per-observer reachability records and their cluster-wide aggregation.

Every node runs a local failure detector against the members it monitors and
records its verdicts here under its own name as observer. Each observer's
records carry a version that only that observer increments, so merging two
views keeps, per observer, whichever side is newer.

Aggregation: a subject is unreachable cluster-wide as soon as any observer
reports it Unreachable or Terminated; it is reachable again only when every
observer reports it Reachable. Terminated is final for an observer.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from .cluster_types import ReachabilityStatus, UniqueAddress
from .type_aliases import ReachabilityVersion


@dataclass(frozen=True, slots=True)
class ReachabilityRecord:
    observer: UniqueAddress
    subject: UniqueAddress
    status: ReachabilityStatus
    version: ReachabilityVersion

    @property
    def key(self) -> tuple[UniqueAddress, UniqueAddress]:
        return (self.observer, self.subject)


@dataclass(frozen=True, slots=True)
class Reachability:
    """Immutable reachability table keyed by observer."""

    records: tuple[ReachabilityRecord, ...] = ()
    versions: tuple[tuple[UniqueAddress, ReachabilityVersion], ...] = ()

    @classmethod
    def create(
        cls,
        records: Iterable[ReachabilityRecord],
        versions: dict[UniqueAddress, ReachabilityVersion],
    ) -> Reachability:
        return cls(
            records=tuple(sorted(records, key=lambda r: r.key)),
            versions=tuple(sorted(versions.items())),
        )

    @property
    def is_empty(self) -> bool:
        return not self.records

    def version_of(self, observer: UniqueAddress) -> ReachabilityVersion:
        return dict(self.versions).get(observer, 0)

    def observers(self) -> frozenset[UniqueAddress]:
        return frozenset(observer for observer, _ in self.versions)

    def records_by(self, observer: UniqueAddress) -> tuple[ReachabilityRecord, ...]:
        return tuple(r for r in self.records if r.observer == observer)

    def record(
        self, observer: UniqueAddress, subject: UniqueAddress
    ) -> ReachabilityRecord | None:
        for r in self.records:
            if r.observer == observer and r.subject == subject:
                return r
        return None

    def unreachable(
        self, observer: UniqueAddress, subject: UniqueAddress
    ) -> Reachability:
        return self.change(observer, subject, ReachabilityStatus.UNREACHABLE)

    def reachable(self, observer: UniqueAddress, subject: UniqueAddress) -> Reachability:
        return self.change(observer, subject, ReachabilityStatus.REACHABLE)

    def terminated(
        self, observer: UniqueAddress, subject: UniqueAddress
    ) -> Reachability:
        return self.change(observer, subject, ReachabilityStatus.TERMINATED)

    def change(
        self,
        observer: UniqueAddress,
        subject: UniqueAddress,
        status: ReachabilityStatus,
    ) -> Reachability:
        """Record ``observer``'s verdict about ``subject``, bumping its version."""
        existing = self.record(observer, subject)
        if existing is None and status is ReachabilityStatus.REACHABLE:
            return self
        if existing is not None and (
            existing.status is status
            or existing.status is ReachabilityStatus.TERMINATED
        ):
            return self

        versions = dict(self.versions)
        version = versions.get(observer, 0) + 1
        versions[observer] = version

        others = [
            r
            for r in self.records
            if not (r.observer == observer and r.subject == subject)
        ]
        own = [r for r in others if r.observer == observer]
        rest = [r for r in others if r.observer != observer]
        own.append(ReachabilityRecord(observer, subject, status, version))

        if all(r.status is ReachabilityStatus.REACHABLE for r in own):
            # nothing left to report for this observer, keep only its version
            own = []
        return Reachability.create(rest + own, versions)

    def merge(
        self, allowed: Iterable[UniqueAddress], other: Reachability
    ) -> Reachability:
        """
        Merge two views, keeping per observer the records of the newer side.

        Only observers in ``allowed`` (the current members) survive. Equal
        versions from the same observer describe the same report; the union
        is taken record by record so the result is argument-order independent.
        """
        allowed_set = frozenset(allowed)
        mine = dict(self.versions)
        theirs = dict(other.versions)
        records: list[ReachabilityRecord] = []
        versions: dict[UniqueAddress, ReachabilityVersion] = {}

        for observer in (mine.keys() | theirs.keys()) & allowed_set:
            v1 = mine.get(observer, 0)
            v2 = theirs.get(observer, 0)
            versions[observer] = max(v1, v2)
            if v1 > v2:
                chosen = self.records_by(observer)
            elif v2 > v1:
                chosen = other.records_by(observer)
            else:
                chosen = _union_by_subject(
                    self.records_by(observer) + other.records_by(observer)
                )
            records.extend(r for r in chosen if r.subject in allowed_set)

        return Reachability.create(records, versions)

    def remove(self, nodes: Iterable[UniqueAddress]) -> Reachability:
        """Forget removed nodes, both as observers and as subjects."""
        dropped = frozenset(nodes)
        if not dropped:
            return self
        return Reachability.create(
            (
                r
                for r in self.records
                if r.observer not in dropped and r.subject not in dropped
            ),
            {o: v for o, v in self.versions if o not in dropped},
        )

    def status(self, subject: UniqueAddress) -> ReachabilityStatus:
        """Cluster-wide aggregated status of ``subject``."""
        statuses = {r.status for r in self.records if r.subject == subject}
        if ReachabilityStatus.TERMINATED in statuses:
            return ReachabilityStatus.TERMINATED
        if ReachabilityStatus.UNREACHABLE in statuses:
            return ReachabilityStatus.UNREACHABLE
        return ReachabilityStatus.REACHABLE

    def status_by(
        self, observer: UniqueAddress, subject: UniqueAddress
    ) -> ReachabilityStatus:
        found = self.record(observer, subject)
        return found.status if found else ReachabilityStatus.REACHABLE

    def is_reachable(self, subject: UniqueAddress) -> bool:
        return self.status(subject) is ReachabilityStatus.REACHABLE

    def is_reachable_by(
        self, observer: UniqueAddress, subject: UniqueAddress
    ) -> bool:
        return self.status_by(observer, subject) is ReachabilityStatus.REACHABLE

    def all_unreachable(self) -> frozenset[UniqueAddress]:
        """Subjects unreachable or terminated according to any observer."""
        return frozenset(
            r.subject
            for r in self.records
            if r.status is not ReachabilityStatus.REACHABLE
        )

    def all_unreachable_from(self, observer: UniqueAddress) -> frozenset[UniqueAddress]:
        return frozenset(
            r.subject
            for r in self.records_by(observer)
            if r.status is not ReachabilityStatus.REACHABLE
        )

    def observers_grouped_by_unreachable(
        self,
    ) -> dict[UniqueAddress, frozenset[UniqueAddress]]:
        grouped: dict[UniqueAddress, set[UniqueAddress]] = {}
        for r in self.records:
            if r.status is not ReachabilityStatus.REACHABLE:
                grouped.setdefault(r.subject, set()).add(r.observer)
        return {subject: frozenset(obs) for subject, obs in grouped.items()}


def _union_by_subject(
    records: tuple[ReachabilityRecord, ...],
) -> list[ReachabilityRecord]:
    best: dict[UniqueAddress, ReachabilityRecord] = {}
    for r in records:
        current = best.get(r.subject)
        if current is None or (r.version, r.status.value) > (
            current.version,
            current.status.value,
        ):
            best[r.subject] = r
    return list(best.values())
