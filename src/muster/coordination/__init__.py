"""Muster Coordination Layer.

Lets several independent agents share work through plain shared documents.

Components:
- store: Cached, last-writer-wins access to one shared document
- documents: Document tables and the prune passes every writer applies
- presence: Liveness heartbeats and clean retraction
- leases: Time-bounded claims on shareable actions
"""

from .documents import (
    CLAIM_DOCUMENT,
    ROTATION_DOCUMENT,
    TEAM_DOCUMENT,
    drop_leases_held_by,
    ensure_claim_tables,
    ensure_roster_tables,
    ensure_team_tables,
    prune_claimants,
    prune_leases,
    prune_presence,
    prune_roster,
    prune_team_document,
)
from .leases import ClaimResult, LeaseCoordinator
from .presence import PresenceRegistry
from .store import DocumentBackend, FileBackend, InMemoryBackend, SharedDocumentStore

__all__ = [
    # Store
    "SharedDocumentStore",
    "DocumentBackend",
    "InMemoryBackend",
    "FileBackend",
    # Documents
    "TEAM_DOCUMENT",
    "ROTATION_DOCUMENT",
    "CLAIM_DOCUMENT",
    "ensure_team_tables",
    "ensure_roster_tables",
    "ensure_claim_tables",
    "prune_presence",
    "prune_leases",
    "prune_team_document",
    "prune_roster",
    "prune_claimants",
    "drop_leases_held_by",
    # Presence
    "PresenceRegistry",
    # Leases
    "LeaseCoordinator",
    "ClaimResult",
]
