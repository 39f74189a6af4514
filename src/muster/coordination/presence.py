"""Presence heartbeats for Muster.

Each agent refreshes its own entry in the team document at a bounded rate.
Entries older than the liveness TTL are dead and any writer prunes them.
On clean shutdown an agent retracts its entry and its leases so peers do not
have to wait out the TTL.
"""

from ..types import PresenceEntry
from ..utils.logging import StructuredLogger
from .documents import (
    drop_leases_held_by,
    ensure_team_tables,
    parse_entry,
    prune_presence,
    prune_team_document,
)
from .store import Clock, SharedDocumentStore


class PresenceRegistry:
    """Publishes this agent's presence and reads its peers'."""

    def __init__(
        self,
        store: SharedDocumentStore,
        agent_id: str,
        clock: Clock,
        liveness_ttl: float = 10.0,
        publish_interval: float = 1.0,
    ):
        """Initialize the registry.

        Args:
            store: Store for the team document.
            agent_id: This agent's identity.
            clock: Time source in seconds.
            liveness_ttl: Seconds after which an entry is dead.
            publish_interval: Minimum seconds between two publishes.
        """
        self._store = store
        self._agent_id = agent_id
        self._clock = clock
        self._liveness_ttl = liveness_ttl
        self._publish_interval = publish_interval
        self._last_publish: float | None = None
        self._log = StructuredLogger("presence", agent=agent_id)

    @property
    def agent_id(self) -> str:
        return self._agent_id

    @property
    def liveness_ttl(self) -> float:
        return self._liveness_ttl

    def publish(self, entry: PresenceEntry) -> bool:
        """Merge this agent's entry into the document and prune dead entries.

        Calls inside the publish interval are dropped.

        Returns:
            True if the document was written.
        """
        now = self._clock()
        if self._last_publish is not None and now - self._last_publish < self._publish_interval:
            return False
        self._last_publish = now

        stamped = entry.model_copy(update={"agent_id": self._agent_id, "last_seen_at": now})
        document = ensure_team_tables(self._store.read())
        document["members"][self._agent_id] = stamped.model_dump(mode="json")
        prune_team_document(document, now, self._liveness_ttl)
        return self._store.write(document)

    def snapshot(self) -> dict[str, PresenceEntry]:
        """Live presence entries by agent id, self included. Never writes."""
        document = prune_presence(self._store.read(), self._clock(), self._liveness_ttl)
        entries: dict[str, PresenceEntry] = {}
        for agent_id, raw in document["members"].items():
            entry = parse_entry(PresenceEntry, raw)
            if entry is not None:
                entries[agent_id] = entry
        return entries

    def peers(self) -> dict[str, PresenceEntry]:
        """Live presence entries of every other agent."""
        return {k: v for k, v in self.snapshot().items() if k != self._agent_id}

    def retract(self) -> bool:
        """Remove this agent's entry and every lease it holds.

        Reads the freshest document first so the removal is not applied to a
        stale copy.

        Returns:
            True if the document was written.
        """
        document = ensure_team_tables(self._store.read(force=True))
        document["members"].pop(self._agent_id, None)
        removed = drop_leases_held_by(document, self._agent_id)
        prune_team_document(document, self._clock(), self._liveness_ttl)
        written = self._store.write(document)
        self._last_publish = None
        self._log.info("Retracted presence", leases_released=removed)
        return written
