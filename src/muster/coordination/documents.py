"""Shapes of the shared documents and their prune passes.

Three documents are shared between agents:

- team: ``{"members": {agent_id: PresenceEntry}, "actions": {lease_type: {lease_key: Lease}}}``
- rotation: ``{"members": {agent_id: RotationRosterEntry}}``
- pull_claims: ``{"claimants": {agent_id: ClaimantEntry}}``

Missing tables default to empty. Unknown top-level keys are left alone so
that peers running a newer build do not lose data they rely on.

Every prune pass mutates the document in place, returns it, and is
idempotent: pruning an already pruned document changes nothing.
"""

from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from ..types import ClaimantEntry, Lease, PresenceEntry, RotationRosterEntry
from .store import Document

TEAM_DOCUMENT = "team"
ROTATION_DOCUMENT = "rotation"
CLAIM_DOCUMENT = "pull_claims"

ModelT = TypeVar("ModelT", bound=BaseModel)


def _ensure_tables(document: Document, *tables: str) -> Document:
    for table in tables:
        if not isinstance(document.get(table), dict):
            document[table] = {}
    return document


def ensure_team_tables(document: Document) -> Document:
    """Fill in the members and actions tables of a team document."""
    return _ensure_tables(document, "members", "actions")


def ensure_roster_tables(document: Document) -> Document:
    """Fill in the members table of a rotation roster document."""
    return _ensure_tables(document, "members")


def ensure_claim_tables(document: Document) -> Document:
    """Fill in the claimants table of a task-claim roster document."""
    return _ensure_tables(document, "claimants")


def parse_entry(model: type[ModelT], raw: Any) -> ModelT | None:
    """Validate a raw document entry, returning None if it is malformed."""
    if not isinstance(raw, dict):
        return None
    try:
        return model.model_validate(raw)
    except ValidationError:
        return None


def parse_lease(lease_type: str, lease_key: str, raw: Any) -> Lease | None:
    """Validate a raw lease, trusting its position in the document for type and key."""
    if not isinstance(raw, dict):
        return None
    return parse_entry(Lease, {**raw, "lease_type": lease_type, "lease_key": lease_key})


def prune_presence(document: Document, now: float, ttl: float) -> Document:
    """Drop presence entries not refreshed within the liveness TTL."""
    members = ensure_team_tables(document)["members"]
    for agent_id in list(members):
        entry = parse_entry(PresenceEntry, members[agent_id])
        if entry is None or entry.is_stale(now, ttl):
            del members[agent_id]
    return document


def prune_lease_table(document: Document, lease_type: str, now: float) -> Document:
    """Drop dead leases of one type, and the type table itself once empty."""
    actions = ensure_team_tables(document)["actions"]
    leases = actions.get(lease_type)
    if not isinstance(leases, dict):
        actions.pop(lease_type, None)
        return document
    for lease_key in list(leases):
        lease = parse_lease(lease_type, lease_key, leases[lease_key])
        if lease is None or not lease.is_live(now):
            del leases[lease_key]
    if not leases:
        del actions[lease_type]
    return document


def prune_leases(document: Document, now: float) -> Document:
    """Drop every dead lease in a team document."""
    actions = ensure_team_tables(document)["actions"]
    for lease_type in list(actions):
        prune_lease_table(document, lease_type, now)
    return document


def prune_team_document(document: Document, now: float, liveness_ttl: float) -> Document:
    """Full prune pass run before every team document write."""
    prune_presence(document, now, liveness_ttl)
    prune_leases(document, now)
    return document


def prune_roster(document: Document, now: float, ttl: float) -> Document:
    """Drop stale rotation roster entries."""
    members = ensure_roster_tables(document)["members"]
    for agent_id in list(members):
        entry = parse_entry(RotationRosterEntry, members[agent_id])
        if entry is None or entry.is_stale(now, ttl):
            del members[agent_id]
    return document


def prune_claimants(document: Document, now: float, ttl: float) -> Document:
    """Drop stale task-claim roster entries."""
    claimants = ensure_claim_tables(document)["claimants"]
    for agent_id in list(claimants):
        entry = parse_entry(ClaimantEntry, claimants[agent_id])
        if entry is None or entry.is_stale(now, ttl):
            del claimants[agent_id]
    return document


def drop_leases_held_by(document: Document, holder_id: str) -> int:
    """Remove every lease held by one agent, live or not. Returns the count removed."""
    actions = ensure_team_tables(document)["actions"]
    removed = 0
    for lease_type in list(actions):
        leases = actions[lease_type]
        if not isinstance(leases, dict):
            del actions[lease_type]
            continue
        for lease_key in list(leases):
            raw = leases[lease_key]
            if isinstance(raw, dict) and raw.get("holder_id") == holder_id:
                del leases[lease_key]
                removed += 1
        if not leases:
            del actions[lease_type]
    return removed
