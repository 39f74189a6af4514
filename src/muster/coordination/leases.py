"""Lease-based mutual exclusion for Muster.

A lease is a best-effort, time-bounded claim on a shareable action, keyed by
``(lease_type, lease_key)`` and stored in the team document. At most one
live lease exists per key, as far as any single writer can tell.

There is no compare-and-swap. Two agents that both read the document within
one cache window may both believe they hold the same lease; the race lasts
at most one lease duration and is accepted rather than reported.
"""

from typing import Any, NamedTuple

from ..types import Lease
from ..utils.logging import StructuredLogger
from .documents import (
    ensure_team_tables,
    parse_lease,
    prune_lease_table,
    prune_leases,
    prune_team_document,
)
from .store import Clock, SharedDocumentStore

DEFAULT_LEASE_SECONDS = 2.0
MIN_LEASE_SECONDS = 1.0


class ClaimResult(NamedTuple):
    """Outcome of a claim attempt.

    ``existing`` is the live lease found for the key before the attempt,
    which is the blocking peer lease when ``claimed`` is False.
    """

    claimed: bool
    existing: Lease | None


class LeaseCoordinator:
    """Claim, renew and release leases on behalf of one agent.

    Example:
        leases = LeaseCoordinator(team_store, agent_id="alice", clock=time.time)

        claimed, existing = leases.try_claim("heal", "CH:tank", duration=3.0)
        if not claimed:
            print(f"{existing.holder_id} is already on it")

        # Renew by claiming again; release early when done
        leases.try_claim("heal", "CH:tank", duration=3.0)
        leases.release("heal", "CH:tank")
    """

    def __init__(
        self,
        store: SharedDocumentStore,
        agent_id: str,
        clock: Clock,
        liveness_ttl: float = 10.0,
    ):
        """Initialize the coordinator.

        Args:
            store: Store for the team document.
            agent_id: Identity written as the lease holder.
            clock: Time source in seconds.
            liveness_ttl: Presence TTL applied by the prune pass on every write.
        """
        self._store = store
        self._agent_id = agent_id
        self._clock = clock
        self._liveness_ttl = liveness_ttl
        self._log = StructuredLogger("leases", agent=agent_id)

    @property
    def agent_id(self) -> str:
        return self._agent_id

    def _live_lease(self, document: dict[str, Any], lease_type: str, lease_key: str) -> Lease | None:
        leases = document["actions"].get(lease_type) or {}
        return parse_lease(lease_type, lease_key, leases.get(lease_key))

    def try_claim(
        self,
        lease_type: str,
        lease_key: str,
        duration: float | None = None,
        metadata: dict[str, Any] | None = None,
        allow_overlap: bool = False,
    ) -> ClaimResult:
        """Claim a lease unless a peer holds a live one.

        Re-claiming a lease the caller already holds renews it with a new
        expiry and metadata.

        Args:
            lease_type: Lease family, e.g. "heal" or "pull".
            lease_key: Key within the family, e.g. "CH:tank".
            duration: Seconds until expiry; at least one second is always granted.
            metadata: Free-form progress details published with the lease.
            allow_overlap: Install the lease even if a peer holds a live one.

        Returns:
            ClaimResult with whether the lease was written.
        """
        document = ensure_team_tables(self._store.read())
        now = self._clock()
        prune_lease_table(document, lease_type, now)
        existing = self._live_lease(ensure_team_tables(document), lease_type, lease_key)

        if existing is not None and existing.holder_id != self._agent_id and not allow_overlap:
            self._log.debug(
                "Lease held by peer",
                lease=f"{lease_type}/{lease_key}",
                holder=existing.holder_id,
                remaining=f"{existing.remaining(now):.1f}",
            )
            return ClaimResult(False, existing)

        if duration is None:
            duration = DEFAULT_LEASE_SECONDS
        lease = Lease(
            lease_type=lease_type,
            lease_key=lease_key,
            holder_id=self._agent_id,
            started_at=now,
            expires_at=now + max(duration, MIN_LEASE_SECONDS),
            metadata=dict(metadata or {}),
        )
        document["actions"].setdefault(lease_type, {})[lease_key] = lease.model_dump(mode="json")
        prune_team_document(document, now, self._liveness_ttl)
        self._store.write(document)
        self._log.debug("Lease claimed", lease=f"{lease_type}/{lease_key}", expires=lease.expires_at)
        return ClaimResult(True, existing)

    def release(self, lease_type: str, lease_key: str) -> bool:
        """Release a lease early.

        Only the holder's own lease is removed; a live lease held by a peer
        is left for its owner, and a dead one for the next prune pass.

        Returns:
            True if a lease held by this agent was removed.
        """
        document = ensure_team_tables(self._store.read())
        leases = document["actions"].get(lease_type)
        if not isinstance(leases, dict) or lease_key not in leases:
            return False
        raw = leases[lease_key]
        if isinstance(raw, dict) and raw.get("holder_id") not in (None, self._agent_id):
            return False

        del leases[lease_key]
        if not leases:
            del document["actions"][lease_type]
        prune_team_document(document, self._clock(), self._liveness_ttl)
        self._store.write(document)
        self._log.debug("Lease released", lease=f"{lease_type}/{lease_key}")
        return True

    def peek(self, lease_type: str, lease_key: str) -> Lease | None:
        """Return the live lease for a key without writing anything back."""
        document = ensure_team_tables(self._store.read())
        prune_lease_table(document, lease_type, self._clock())
        return self._live_lease(ensure_team_tables(document), lease_type, lease_key)

    def held_by_peer(self, lease_type: str, lease_key: str) -> Lease | None:
        """Return the live lease for a key if someone other than this agent holds it."""
        lease = self.peek(lease_type, lease_key)
        if lease is not None and lease.holder_id != self._agent_id:
            return lease
        return None

    def live_leases(self, lease_type: str | None = None) -> list[Lease]:
        """List live leases, optionally of one type, ordered by expiry."""
        document = prune_leases(ensure_team_tables(self._store.read()), self._clock())
        found: list[Lease] = []
        for current_type, leases in document["actions"].items():
            if lease_type is not None and current_type != lease_type:
                continue
            for lease_key, raw in leases.items():
                lease = parse_lease(current_type, lease_key, raw)
                if lease is not None:
                    found.append(lease)
        return sorted(found, key=lambda lease: lease.expires_at)
