"""Zones, partner routing candidates and dashboard statistics.

Everything here is computed from current User/Complaint state at query time.
"""

import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import COMPLAINTS, USERS, ZONES, create_document, get_documents, now, populate, to_object_id
from errors import Conflict, ValidationFailed
from schemas import ACTIVE_STATUSES, Category, Role, Status, Zone

log = logging.getLogger(__name__)

BACKLOG_AGE = timedelta(days=7)


def list_zones(db: Database) -> List[Dict[str, Any]]:
    return get_documents(db, ZONES, {}, sort=[("name", ASCENDING)])


def create_zone(db: Database, name: str, description: Optional[str] = None) -> Dict[str, Any]:
    if not name or not name.strip():
        raise ValidationFailed("Zone name is required.")
    zone = Zone(name=name.strip(), description=(description or "").strip() or None)
    if db[ZONES].count_documents({"name": zone.name}, limit=1):
        raise Conflict(f"Zone '{zone.name}' already exists.")
    try:
        doc = create_document(db, ZONES, zone.model_dump())
    except DuplicateKeyError:
        raise Conflict(f"Zone '{zone.name}' already exists.")
    log.info("zone %s created as %s", zone.name, doc["_id"])
    return doc


def _zone_filter(zone: Optional[str]) -> Dict[str, Any]:
    """``None``/``All`` means every zone."""
    if not zone or zone.strip().lower() == "all":
        return {}
    oid = to_object_id(zone)
    if oid is None:
        raise ValidationFailed("Invalid zone id.")
    return {"zone": oid}


def workload(db: Database, partner_id) -> int:
    return db[COMPLAINTS].count_documents(
        {"assignedTo": partner_id, "status": {"$in": [s.value for s in ACTIVE_STATUSES]}}
    )


def list_partners(db: Database, category: str, zone: Optional[str] = None) -> List[Dict[str, Any]]:
    """Unblocked partners servicing ``category`` with their live workload, least loaded first."""
    try:
        parsed = Category.parse(category)
    except ValueError:
        raise ValidationFailed(f"Invalid category '{category}'.")
    query: Dict[str, Any] = {"role": Role.PARTNER.value, "category": parsed.value, "isBlocked": {"$ne": True}}
    query.update(_zone_filter(zone))
    partners = get_documents(db, USERS, query, projection={"password": 0})

    counts = Counter()
    active = db[COMPLAINTS].find(
        {"assignedTo": {"$in": [p["_id"] for p in partners]}, "status": {"$in": [s.value for s in ACTIVE_STATUSES]}},
        {"assignedTo": 1},
    )
    for doc in active:
        counts[doc["assignedTo"]] += 1
    for partner in partners:
        partner["workload"] = counts[partner["_id"]]
    partners.sort(key=lambda p: (p["workload"], p.get("name", "")))
    return partners


def complaints_for_zone(db: Database, zone: Optional[str] = None) -> List[Dict[str, Any]]:
    docs = get_documents(db, COMPLAINTS, _zone_filter(zone), sort=[("createdAt", DESCENDING), ("_id", DESCENDING)])
    docs = populate(db, docs, "zone", ["name"], collection=ZONES)
    return populate(db, docs, "assignedTo", ["name", "category"])


def _aware(value: Any) -> Optional[datetime]:
    if not isinstance(value, datetime):
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def complaint_stats(db: Database, zone: Optional[str] = None, days: Optional[int] = None) -> Dict[str, Any]:
    """Headline numbers for the superadmin dashboard."""
    current = now()
    docs = get_documents(db, COMPLAINTS, _zone_filter(zone))

    backlog_cutoff = current - BACKLOG_AGE
    critical_backlog = sum(
        1
        for d in docs
        if d.get("status") == Status.PENDING.value and (_aware(d.get("createdAt")) or current) < backlog_cutoff
    )

    if days:
        cutoff = current - timedelta(days=days)
        docs = [d for d in docs if (_aware(d.get("createdAt")) or current) >= cutoff]

    total = len(docs)
    by_status = Counter()
    for d in docs:
        try:
            by_status[Status.parse(d.get("status")).value] += 1
        except ValueError:
            by_status["Unknown"] += 1
    by_category = Counter(d.get("category") or Category.PENDING.value for d in docs)

    durations = []
    for d in docs:
        created, resolved = _aware(d.get("createdAt")), _aware(d.get("resolvedAt"))
        if d.get("status") == Status.RESOLVED.value and created and resolved:
            durations.append((resolved - created).total_seconds() / 86400)

    resolved_count = by_status.get(Status.RESOLVED.value, 0)
    return {
        "total": total,
        "resolved": resolved_count,
        "resolutionRate": round(resolved_count * 100 / total) if total else 0,
        "avgResolutionDays": round(sum(durations) / len(durations), 1) if durations else 0.0,
        "criticalBacklog": critical_backlog,
        "byStatus": {s.value: by_status.get(s.value, 0) for s in Status},
        "byCategory": dict(by_category),
    }
