import logging
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from config import Settings
from database import USERS, ZONES, create_document, get_documents, now, to_object_id
from errors import Forbidden, NotAuthenticated, NotFound, ValidationFailed
from schemas import Category, Role, User
from security import hash_password, is_superadmin, random_anonymous_name, role_of, verify_password

log = logging.getLogger(__name__)

_PUBLIC_PROJECTION = {"password": 0}


def _normalise_email(email: str) -> str:
    return str(email).strip().lower()


def _partner_category(role: Role, category: Optional[str]) -> Optional[str]:
    if role is not Role.PARTNER:
        return None
    if not category:
        raise ValidationFailed("A category is required for partner accounts.")
    try:
        parsed = Category.parse(category)
    except ValueError:
        raise ValidationFailed(f"Invalid category '{category}'.")
    if parsed not in Category.routable():
        raise ValidationFailed(f"Invalid category '{category}'.")
    return parsed.value


def _zone_ref(db: Database, zone_id: Optional[str]):
    if not zone_id:
        return None
    oid = to_object_id(zone_id)
    if oid is None or db[ZONES].count_documents({"_id": oid}, limit=1) == 0:
        raise ValidationFailed("Zone not found.")
    return oid


def create_user(
    db: Database,
    *,
    name: str,
    email: str,
    password: str,
    role: Role = Role.USER,
    category: Optional[str] = None,
    zone_id: Optional[str] = None,
) -> Dict[str, Any]:
    if not name or not name.strip():
        raise ValidationFailed("Name is required.")
    if not password:
        raise ValidationFailed("Password is required.")
    email = _normalise_email(email)
    if db[USERS].count_documents({"email": email}, limit=1):
        raise ValidationFailed("User with that email already exists.")

    user = User(
        name=name.strip(),
        email=email,
        password=hash_password(password),
        anonymousName=random_anonymous_name(),
        role=role,
        category=_partner_category(role, category),
        zone=_zone_ref(db, zone_id),
    )
    try:
        doc = create_document(db, USERS, user.model_dump())
    except DuplicateKeyError:
        raise ValidationFailed("User with that email already exists.")
    log.info("created %s account %s", doc["role"], doc["_id"])
    return doc


def authenticate(db: Database, email: str, password: str) -> Dict[str, Any]:
    """Check credentials. Blocked accounts may still log in; the session guard rejects them afterwards."""
    user = db[USERS].find_one({"email": _normalise_email(email)})
    if not user or not verify_password(password, user.get("password", "")):
        raise NotAuthenticated("Invalid email or password")
    return user


def list_users(db: Database, role: Optional[str] = None) -> List[Dict[str, Any]]:
    query: Dict[str, Any] = {}
    if role:
        try:
            query["role"] = Role.parse(role).value
        except ValueError:
            raise ValidationFailed(f"Invalid role '{role}'.")
    return get_documents(db, USERS, query, sort=[("createdAt", ASCENDING)], projection=_PUBLIC_PROJECTION)


def _load_user(db: Database, user_id: Any) -> Dict[str, Any]:
    oid = to_object_id(user_id)
    user = db[USERS].find_one({"_id": oid}, _PUBLIC_PROJECTION) if oid else None
    if user is None:
        raise NotFound("User not found")
    return user


def set_blocked(db: Database, actor: Dict[str, Any], user_id: Any, blocked: Optional[bool] = None) -> Dict[str, Any]:
    """Block or unblock an account; ``blocked=None`` toggles the current flag."""
    target = _load_user(db, user_id)
    if target["_id"] == actor["_id"]:
        raise Forbidden("You cannot block your own account.")
    if not is_superadmin(actor) and role_of(target) not in (Role.USER, Role.PARTNER):
        raise Forbidden("Only a Super Admin can block staff accounts.")
    value = (not target.get("isBlocked", False)) if blocked is None else bool(blocked)
    updated = db[USERS].find_one_and_update(
        {"_id": target["_id"]},
        {"$set": {"isBlocked": value, "updatedAt": now()}},
        projection=_PUBLIC_PROJECTION,
        return_document=ReturnDocument.AFTER,
    )
    log.info("user %s %s by %s", target["_id"], "blocked" if value else "unblocked", actor["_id"])
    return updated


def change_role(db: Database, actor: Dict[str, Any], user_id: Any, role: Role, category: Optional[str] = None) -> Dict[str, Any]:
    target = _load_user(db, user_id)
    if target["_id"] == actor["_id"]:
        raise Forbidden("You cannot change your own role.")
    changes = {"role": role.value, "category": _partner_category(role, category), "updatedAt": now()}
    updated = db[USERS].find_one_and_update(
        {"_id": target["_id"]},
        {"$set": changes},
        projection=_PUBLIC_PROJECTION,
        return_document=ReturnDocument.AFTER,
    )
    log.info("user %s role %s -> %s by %s", target["_id"], target.get("role"), role.value, actor["_id"])
    return updated


def bootstrap_superadmin(db: Database, settings: Settings) -> Optional[Dict[str, Any]]:
    """Create the configured superadmin account if it does not exist yet."""
    if not settings.superadmin_email or not settings.superadmin_password:
        return None
    existing = db[USERS].find_one({"email": _normalise_email(settings.superadmin_email)}, _PUBLIC_PROJECTION)
    if existing is not None:
        if role_of(existing) is not Role.SUPERADMIN:
            log.warning("bootstrap superadmin email %s belongs to a %s account", existing["email"], existing.get("role"))
        return existing
    try:
        return create_user(
            db,
            name=settings.superadmin_name,
            email=settings.superadmin_email,
            password=settings.superadmin_password,
            role=Role.SUPERADMIN,
        )
    except ValidationFailed:
        # another worker created it first
        return db[USERS].find_one({"email": _normalise_email(settings.superadmin_email)}, _PUBLIC_PROJECTION)
