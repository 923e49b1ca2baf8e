"""Complaint lifecycle engine.

Status graph::

    Pending -> Admin Accepted -> Assigned -> In Progress -> Resolved
        \\            \\              |            \\
         +-> Rejected  +-> Rejected  +-> Admin Accepted (partner reject / unassign)
                                                  +-> Rejected

Every mutation loads the complaint, checks ownership and the source state,
then applies a single ``find_one_and_update`` filtered on the state it
checked. If another writer got there first the filter misses and the caller
gets a 409 instead of a lost update.
"""

import logging
import re
from datetime import date, datetime, time, timezone
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from bson import ObjectId
from pydantic import ValidationError
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from classifier import CategoryClassifier
from database import COMMENTS, COMPLAINTS, USERS, ZONES, create_document, get_documents, now, populate, to_object_id
from errors import Conflict, Forbidden, IllegalTransition, NotFound, ValidationFailed
from schemas import ACTIVE_STATUSES, UNASSIGNED_STATUSES, Category, Complaint, Coordinates, Role, Status
from security import is_superadmin, role_of

log = logging.getLogger(__name__)

ADMIN_TRANSITIONS: Dict[Status, FrozenSet[Status]] = {
    Status.PENDING: frozenset({Status.ADMIN_ACCEPTED, Status.ASSIGNED, Status.REJECTED}),
    Status.ADMIN_ACCEPTED: frozenset({Status.PENDING, Status.ASSIGNED, Status.REJECTED}),
    Status.ASSIGNED: frozenset({Status.ADMIN_ACCEPTED, Status.ASSIGNED}),
    Status.IN_PROGRESS: frozenset({Status.RESOLVED, Status.REJECTED}),
    Status.RESOLVED: frozenset(),
    Status.REJECTED: frozenset(),
}

# Partner workflow fields that belong to a single assignment.
_ASSIGNMENT_FIELDS = {"tentativeDate": None, "assignedWorkers": None}

TOP_LIMIT = 5


def can_transition(current: Status, target: Status) -> bool:
    return target in ADMIN_TRANSITIONS.get(current, frozenset())


def status_of(doc: Dict[str, Any]) -> Status:
    return Status.parse(doc.get("status"))


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def load_complaint(db: Database, complaint_id: Any) -> Dict[str, Any]:
    oid = to_object_id(complaint_id)
    doc = db[COMPLAINTS].find_one({"_id": oid}) if oid else None
    if doc is None:
        raise NotFound("Complaint not found")
    return doc


def _apply(db: Database, doc: Dict[str, Any], changes: Dict[str, Any], extra_filter: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Write ``changes`` only if the complaint is still in the state ``doc`` was read in."""
    query = {"_id": doc["_id"], "status": doc.get("status")}
    if extra_filter:
        query.update(extra_filter)
    changes = dict(changes)
    changes["updatedAt"] = now()
    updated = db[COMPLAINTS].find_one_and_update(query, {"$set": changes}, return_document=ReturnDocument.AFTER)
    if updated is None:
        if db[COMPLAINTS].count_documents({"_id": doc["_id"]}, limit=1) == 0:
            raise NotFound("Complaint not found")
        raise Conflict("Complaint was modified concurrently; reload and retry.")
    return updated


def _require_zone(db: Database, zone_id: Any) -> ObjectId:
    oid = to_object_id(zone_id)
    if oid is None or db[ZONES].count_documents({"_id": oid}, limit=1) == 0:
        raise ValidationFailed("Zone not found.")
    return oid


def _coordinates(lat: Optional[float], lng: Optional[float]) -> Optional[Dict[str, float]]:
    if lat is None and lng is None:
        return None
    if lat is None or lng is None:
        raise ValidationFailed("Both lat and lng are required for coordinates.")
    try:
        return Coordinates(lat=lat, lng=lng).model_dump()
    except ValidationError:
        raise ValidationFailed("Coordinates are out of range.")


def _category_hint(value: Optional[str]) -> Optional[Category]:
    if _blank(value):
        return None
    try:
        category = Category.parse(value)
    except ValueError:
        raise ValidationFailed(f"Invalid category '{value}'.")
    return category if category in Category.routable() else None


def classify(classifier: CategoryClassifier, text: str, hint: Optional[Category] = None) -> Category:
    """Classifier result; a client hint only fills in when the classifier has nothing better than Other."""
    category = classifier.classify(text).category
    if category is Category.OTHER and hint is not None:
        return hint
    return category


# ---------- Author operations ----------

def create_complaint(
    db: Database,
    classifier: CategoryClassifier,
    author: Dict[str, Any],
    *,
    title: Optional[str],
    description: Optional[str],
    zone_id: Optional[str] = None,
    address: Optional[str] = None,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    category: Optional[str] = None,
    image=None,
    image_store=None,
    require_zone: bool = True,
) -> Dict[str, Any]:
    if _blank(title) or _blank(description):
        raise ValidationFailed("Please provide a title and description.")
    if _blank(zone_id):
        if require_zone:
            raise ValidationFailed("Please select a zone.")
        zone = None
    else:
        zone = _require_zone(db, zone_id)
    coordinates = _coordinates(lat, lng)
    hint = _category_hint(category)

    resolved_category = classify(classifier, description, hint)
    image_url = image_store.save(image, "image") if image_store is not None else None

    try:
        complaint = Complaint(
            title=title.strip(),
            description=description.strip(),
            image=image_url,
            author=author["_id"],
            zone=zone,
            address=address.strip() if not _blank(address) else None,
            coordinates=coordinates,
            category=resolved_category,
        )
        doc = create_document(db, COMPLAINTS, complaint.model_dump())
    except Exception:
        if image_url:
            image_store.discard(image_url)
        raise
    log.info("complaint %s created by %s as %s", doc["_id"], author["_id"], resolved_category.value)
    return doc


def update_complaint(
    db: Database,
    classifier: CategoryClassifier,
    actor: Dict[str, Any],
    complaint_id: Any,
    *,
    title: Optional[str] = None,
    description: Optional[str] = None,
) -> Dict[str, Any]:
    doc = load_complaint(db, complaint_id)
    if doc.get("author") != actor["_id"]:
        raise Forbidden("User not authorized")
    if status_of(doc) not in UNASSIGNED_STATUSES:
        raise Conflict("Complaint can no longer be edited once it has been assigned.")

    changes: Dict[str, Any] = {}
    if not _blank(title):
        changes["title"] = title.strip()
    if not _blank(description) and description.strip() != doc.get("description"):
        changes["description"] = description.strip()
        changes["category"] = classify(classifier, changes["description"]).value
    if not changes:
        return doc
    return _apply(db, doc, changes, {"author": actor["_id"]})


def delete_complaint(db: Database, actor: Dict[str, Any], complaint_id: Any) -> None:
    doc = load_complaint(db, complaint_id)
    if doc.get("author") != actor["_id"]:
        raise Forbidden("User not authorized")
    result = db[COMPLAINTS].delete_one({"_id": doc["_id"], "author": actor["_id"]})
    if result.deleted_count == 0:
        raise NotFound("Complaint not found")
    removed = db[COMMENTS].delete_many({"complaint": doc["_id"]}).deleted_count
    log.info("complaint %s deleted by author, %d comments removed", doc["_id"], removed)


# ---------- Admin operations ----------

def _check_transition(actor: Dict[str, Any], current: Status, target: Status, force: bool) -> None:
    if can_transition(current, target):
        return
    if force and is_superadmin(actor):
        log.warning("superadmin %s forced %s -> %s", actor["_id"], current.value, target.value)
        return
    raise IllegalTransition(current.value, target.value)


def set_status(
    db: Database,
    actor: Dict[str, Any],
    complaint_id: Any,
    target: Status,
    *,
    partner_id: Optional[str] = None,
    force: bool = False,
) -> Dict[str, Any]:
    if target is Status.ASSIGNED:
        if _blank(partner_id):
            raise ValidationFailed("partnerId is required to assign a complaint.")
        return assign_partner(db, actor, complaint_id, partner_id, force=force)

    doc = load_complaint(db, complaint_id)
    current = status_of(doc)
    _check_transition(actor, current, target, force)

    changes: Dict[str, Any] = {"status": target.value}
    if target in UNASSIGNED_STATUSES:
        changes["assignedTo"] = None
        changes.update(_ASSIGNMENT_FIELDS)
    if target is Status.RESOLVED:
        changes["resolvedAt"] = now()
    updated = _apply(db, doc, changes)
    log.info("complaint %s status %s -> %s by %s", doc["_id"], current.value, target.value, actor["_id"])
    return updated


def assign_partner(
    db: Database,
    actor: Dict[str, Any],
    complaint_id: Any,
    partner_id: Any,
    *,
    force: bool = False,
) -> Dict[str, Any]:
    doc = load_complaint(db, complaint_id)
    current = status_of(doc)
    _check_transition(actor, current, Status.ASSIGNED, force)

    oid = to_object_id(partner_id)
    partner = db[USERS].find_one({"_id": oid}, {"password": 0}) if oid else None
    if partner is None:
        raise NotFound("Partner not found")
    if role_of(partner) is not Role.PARTNER:
        raise ValidationFailed("Selected user is not a partner.")
    if partner.get("isBlocked"):
        raise ValidationFailed("Selected partner account is blocked.")
    if partner.get("category") != doc.get("category"):
        raise ValidationFailed(
            f"Partner category '{partner.get('category')}' does not match complaint category '{doc.get('category')}'."
        )

    changes = {
        "status": Status.ASSIGNED.value,
        "assignedTo": partner["_id"],
        "rejectionReason": None,
    }
    changes.update(_ASSIGNMENT_FIELDS)
    updated = _apply(db, doc, changes)
    log.info("complaint %s assigned to partner %s by %s", doc["_id"], partner["_id"], actor["_id"])
    return updated


def add_strike(db: Database, complaint_id: Any) -> Dict[str, Any]:
    oid = to_object_id(complaint_id)
    updated = None
    if oid is not None:
        updated = db[COMPLAINTS].find_one_and_update(
            {"_id": oid},
            {"$inc": {"strikes": 1}, "$set": {"updatedAt": now()}},
            return_document=ReturnDocument.AFTER,
        )
    if updated is None:
        raise NotFound("Complaint not found")
    return updated


def correct_complaint(
    db: Database,
    actor: Dict[str, Any],
    complaint_id: Any,
    *,
    zone_id: Optional[str] = None,
    category: Optional[str] = None,
) -> Dict[str, Any]:
    """Superadmin correction of routing fields while the complaint is still unassigned."""
    doc = load_complaint(db, complaint_id)
    if status_of(doc) not in UNASSIGNED_STATUSES:
        raise Conflict("Zone and category can only be corrected before assignment.")
    changes: Dict[str, Any] = {}
    if not _blank(zone_id):
        changes["zone"] = _require_zone(db, zone_id)
    if not _blank(category):
        corrected = _category_hint(category)
        if corrected is None:
            raise ValidationFailed(f"Invalid category '{category}'.")
        changes["category"] = corrected.value
    if not changes:
        raise ValidationFailed("Provide a zone or a category to correct.")
    updated = _apply(db, doc, changes)
    log.info("complaint %s corrected by %s: %s", doc["_id"], actor["_id"], sorted(changes))
    return updated


# ---------- Partner operations ----------

def _load_assigned(db: Database, partner: Dict[str, Any], complaint_id: Any, allowed: Iterable[Status], target: Status):
    doc = load_complaint(db, complaint_id)
    if doc.get("assignedTo") != partner["_id"]:
        raise Forbidden("This complaint is not assigned to you.")
    current = status_of(doc)
    if current not in allowed:
        raise IllegalTransition(current.value, target.value)
    return doc


def _as_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    raise ValidationFailed("A tentative completion date is required.")


def partner_accept(
    db: Database,
    partner: Dict[str, Any],
    complaint_id: Any,
    *,
    tentative_date: Any,
    assigned_workers: Optional[str],
) -> Dict[str, Any]:
    if tentative_date is None:
        raise ValidationFailed("A tentative completion date is required.")
    if _blank(assigned_workers):
        raise ValidationFailed("Assigned workers are required.")
    when = _as_datetime(tentative_date)

    doc = _load_assigned(db, partner, complaint_id, (Status.ASSIGNED,), Status.IN_PROGRESS)
    updated = _apply(
        db,
        doc,
        {"status": Status.IN_PROGRESS.value, "tentativeDate": when, "assignedWorkers": assigned_workers.strip()},
        {"assignedTo": partner["_id"]},
    )
    log.info("complaint %s accepted by partner %s", doc["_id"], partner["_id"])
    return updated


def partner_reject(db: Database, partner: Dict[str, Any], complaint_id: Any, *, reason: Optional[str]) -> Dict[str, Any]:
    """Hand the complaint back: status returns to Admin Accepted and the assignee is cleared."""
    if _blank(reason):
        raise ValidationFailed("A rejection reason is required.")
    doc = _load_assigned(db, partner, complaint_id, ACTIVE_STATUSES, Status.ADMIN_ACCEPTED)
    changes = {"status": Status.ADMIN_ACCEPTED.value, "assignedTo": None, "rejectionReason": reason.strip()}
    changes.update(_ASSIGNMENT_FIELDS)
    updated = _apply(db, doc, changes, {"assignedTo": partner["_id"]})
    log.info("complaint %s rejected by partner %s", doc["_id"], partner["_id"])
    return updated


def partner_resolve(
    db: Database,
    partner: Dict[str, Any],
    complaint_id: Any,
    *,
    feedback: Optional[str],
    image=None,
    image_store=None,
) -> Dict[str, Any]:
    if _blank(feedback):
        raise ValidationFailed("Resolution feedback is required.")
    if image is None or not getattr(image, "filename", None):
        raise ValidationFailed("A resolution image is required.")

    doc = _load_assigned(db, partner, complaint_id, (Status.IN_PROGRESS,), Status.RESOLVED)
    image_url = image_store.save(image, "resolution")
    try:
        updated = _apply(
            db,
            doc,
            {
                "status": Status.RESOLVED.value,
                "partnerFeedback": feedback.strip(),
                "resolutionImage": image_url,
                "resolvedAt": now(),
            },
            {"assignedTo": partner["_id"]},
        )
    except Exception:
        image_store.discard(image_url)
        raise
    log.info("complaint %s resolved by partner %s", doc["_id"], partner["_id"])
    return updated


# ---------- Queries ----------

def search_filter(search: Optional[str]) -> Dict[str, Any]:
    if _blank(search):
        return {}
    pattern = re.escape(search.strip())
    return {
        "$or": [
            {"title": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]
    }


def list_complaints(db: Database, search: Optional[str] = None) -> List[Dict[str, Any]]:
    docs = get_documents(db, COMPLAINTS, search_filter(search), sort=[("createdAt", DESCENDING), ("_id", DESCENDING)])
    return populate(db, docs, "author", ["anonymousName"])


def list_by_author(db: Database, author_id: ObjectId) -> List[Dict[str, Any]]:
    docs = get_documents(db, COMPLAINTS, {"author": author_id}, sort=[("createdAt", DESCENDING), ("_id", DESCENDING)])
    return populate(db, docs, "author", ["anonymousName"])


def top_complaints(db: Database, limit: int = TOP_LIMIT) -> List[Dict[str, Any]]:
    docs = get_documents(db, COMPLAINTS, {}, limit=limit, sort=[("upvoteCount", DESCENDING), ("createdAt", DESCENDING), ("_id", DESCENDING)])
    return populate(db, docs, "author", ["anonymousName"])


def get_complaint(db: Database, complaint_id: Any) -> Dict[str, Any]:
    doc = load_complaint(db, complaint_id)
    return populate(db, [doc], "author", ["anonymousName"])[0]


def list_all_for_admin(db: Database) -> List[Dict[str, Any]]:
    docs = get_documents(db, COMPLAINTS, {}, sort=[("upvoteCount", DESCENDING), ("createdAt", DESCENDING), ("_id", DESCENDING)])
    docs = populate(db, docs, "author", ["name", "email"])
    return populate(db, docs, "assignedTo", ["name", "email", "category"])


def partner_queue(db: Database, partner: Dict[str, Any]) -> List[Dict[str, Any]]:
    query = {"assignedTo": partner["_id"], "status": {"$in": [s.value for s in ACTIVE_STATUSES]}}
    docs = get_documents(db, COMPLAINTS, query, sort=[("createdAt", DESCENDING), ("_id", DESCENDING)])
    return populate(db, docs, "zone", ["name"], collection=ZONES)
