from datetime import date, datetime
from typing import Optional, Union

from fastapi import APIRouter, Depends, File, Form, UploadFile
from pydantic import BaseModel, EmailStr, Field, field_validator
from pymongo.database import Database

import accounts
import directory
import engagement
import lifecycle
from complaints_api import get_image_store
from database import serialize
from errors import ValidationFailed
from schemas import Role, Status
from security import get_db, require_admin, require_partner, require_superadmin

admin_router = APIRouter(prefix="/api/admin")
superadmin_router = APIRouter(prefix="/api/superadmin")
partner_router = APIRouter(prefix="/api/partner")


# ---------- Models for requests ----------
class StatusUpdate(BaseModel):
    status: Status
    partnerId: Optional[str] = None
    force: bool = False

    @field_validator("status", mode="before")
    @classmethod
    def _canonical_status(cls, value):
        return Status.parse(value)


class AssignRequest(BaseModel):
    partnerId: str
    force: bool = False


class BlockRequest(BaseModel):
    blocked: Optional[bool] = None


class StaffRequest(BaseModel):
    name: str
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: Role = Role.ADMIN
    category: Optional[str] = None
    zone: Optional[str] = None

    @field_validator("role", mode="before")
    @classmethod
    def _canonical_role(cls, value):
        return Role.parse(value)


class AdminRequest(BaseModel):
    name: str
    email: EmailStr
    password: str = Field(..., min_length=6)
    zone: Optional[str] = None


class RoleUpdate(BaseModel):
    role: Role
    category: Optional[str] = None

    @field_validator("role", mode="before")
    @classmethod
    def _canonical_role(cls, value):
        return Role.parse(value)


class ZoneRequest(BaseModel):
    name: str
    description: Optional[str] = None


class ComplaintCorrection(BaseModel):
    zone: Optional[str] = None
    category: Optional[str] = None


class AcceptRequest(BaseModel):
    tentativeDate: Optional[Union[datetime, date]] = None
    assignedWorkers: Optional[str] = None


class RejectRequest(BaseModel):
    reason: Optional[str] = None


# ---------- Admin endpoints ----------
@admin_router.get("/complaints/all")
def all_complaints(user=Depends(require_admin), db: Database = Depends(get_db)):
    return serialize(lifecycle.list_all_for_admin(db))


@admin_router.patch("/complaints/{complaint_id}/status")
def update_status(complaint_id: str, body: StatusUpdate, user=Depends(require_admin), db: Database = Depends(get_db)):
    doc = lifecycle.set_status(db, user, complaint_id, body.status, partner_id=body.partnerId, force=body.force)
    return serialize(doc)


@admin_router.patch("/complaints/{complaint_id}/strike")
def strike(complaint_id: str, user=Depends(require_admin), db: Database = Depends(get_db)):
    return serialize(lifecycle.add_strike(db, complaint_id))


@admin_router.get("/partners")
def partners(category: str, zone: Optional[str] = None, user=Depends(require_admin), db: Database = Depends(get_db)):
    return serialize(directory.list_partners(db, category, zone))


@admin_router.patch("/complaints/{complaint_id}/assign")
def assign(complaint_id: str, body: AssignRequest, user=Depends(require_admin), db: Database = Depends(get_db)):
    return serialize(lifecycle.assign_partner(db, user, complaint_id, body.partnerId, force=body.force))


@admin_router.get("/users")
def admin_users(user=Depends(require_admin), db: Database = Depends(get_db)):
    return serialize(accounts.list_users(db))


@admin_router.patch("/users/{user_id}/block")
def block_user(user_id: str, body: Optional[BlockRequest] = None, user=Depends(require_admin), db: Database = Depends(get_db)):
    blocked = body.blocked if body is not None else None
    return serialize(accounts.set_blocked(db, user, user_id, blocked))


# ---------- Superadmin endpoints ----------
@superadmin_router.post("/create-admin", status_code=201)
def create_admin(body: AdminRequest, user=Depends(require_superadmin), db: Database = Depends(get_db)):
    doc = accounts.create_user(
        db, name=body.name, email=body.email, password=body.password, role=Role.ADMIN, zone_id=body.zone
    )
    return serialize(doc)


@superadmin_router.post("/create-staff", status_code=201)
def create_staff(body: StaffRequest, user=Depends(require_superadmin), db: Database = Depends(get_db)):
    if body.role not in (Role.ADMIN, Role.PARTNER):
        raise ValidationFailed(f"Staff accounts must be 'admin' or 'partner', not '{body.role.value}'.")
    doc = accounts.create_user(
        db,
        name=body.name,
        email=body.email,
        password=body.password,
        role=body.role,
        category=body.category,
        zone_id=body.zone,
    )
    return serialize(doc)


@superadmin_router.post("/zones", status_code=201)
@superadmin_router.post("/locations", status_code=201)
def create_zone(body: ZoneRequest, user=Depends(require_superadmin), db: Database = Depends(get_db)):
    return serialize(directory.create_zone(db, body.name, body.description))


@superadmin_router.get("/users")
def superadmin_users(role: Optional[str] = None, user=Depends(require_superadmin), db: Database = Depends(get_db)):
    return serialize(accounts.list_users(db, role))


@superadmin_router.patch("/users/{user_id}/role")
def change_role(user_id: str, body: RoleUpdate, user=Depends(require_superadmin), db: Database = Depends(get_db)):
    return serialize(accounts.change_role(db, user, user_id, body.role, body.category))


@superadmin_router.get("/complaints")
def zone_complaints(zone: Optional[str] = None, user=Depends(require_superadmin), db: Database = Depends(get_db)):
    return serialize(directory.complaints_for_zone(db, zone))


@superadmin_router.patch("/complaints/{complaint_id}")
def correct_complaint(complaint_id: str, body: ComplaintCorrection, user=Depends(require_superadmin), db: Database = Depends(get_db)):
    doc = lifecycle.correct_complaint(db, user, complaint_id, zone_id=body.zone, category=body.category)
    return serialize(doc)


@superadmin_router.get("/stats")
def stats(zone: Optional[str] = None, days: Optional[int] = None, user=Depends(require_superadmin), db: Database = Depends(get_db)):
    return directory.complaint_stats(db, zone, days)


@superadmin_router.post("/maintenance/reconcile-comments")
def reconcile_comments(user=Depends(require_superadmin), db: Database = Depends(get_db)):
    return engagement.reconcile_comment_refs(db)


# ---------- Partner endpoints ----------
@partner_router.get("/complaints")
def partner_complaints(user=Depends(require_partner), db: Database = Depends(get_db)):
    return serialize(lifecycle.partner_queue(db, user))


@partner_router.patch("/complaints/{complaint_id}/accept")
def accept(complaint_id: str, body: AcceptRequest, user=Depends(require_partner), db: Database = Depends(get_db)):
    doc = lifecycle.partner_accept(
        db, user, complaint_id, tentative_date=body.tentativeDate, assigned_workers=body.assignedWorkers
    )
    return serialize(doc)


@partner_router.patch("/complaints/{complaint_id}/reject")
def reject(complaint_id: str, body: RejectRequest, user=Depends(require_partner), db: Database = Depends(get_db)):
    return serialize(lifecycle.partner_reject(db, user, complaint_id, reason=body.reason))


@partner_router.patch("/complaints/{complaint_id}/resolve")
def resolve(
    complaint_id: str,
    feedback: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    user=Depends(require_partner),
    db: Database = Depends(get_db),
    image_store=Depends(get_image_store),
):
    doc = lifecycle.partner_resolve(db, user, complaint_id, feedback=feedback, image=image, image_store=image_store)
    return serialize(doc)
