from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from pydantic import BaseModel
from pymongo.database import Database

import directory
import engagement
import lifecycle
from database import serialize
from errors import ValidationFailed
from security import get_current_user, get_db, get_settings, require_user

router = APIRouter(prefix="/api")


# ---------- Models for requests ----------
class ComplaintUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None


class CommentRequest(BaseModel):
    text: Optional[str] = None


def get_classifier(request: Request):
    return request.app.state.classifier


def get_image_store(request: Request):
    return request.app.state.image_store


def _optional_float(name: str, value: Optional[str]) -> Optional[float]:
    if value is None or not str(value).strip():
        return None
    try:
        return float(value)
    except ValueError:
        raise ValidationFailed(f"'{name}' must be a number.")


# ---------- Profile & zones ----------
@router.get("/users/profile")
def profile(user=Depends(get_current_user)):
    return serialize(user)


@router.get("/zones")
def zones(db: Database = Depends(get_db)):
    return serialize(directory.list_zones(db))


# ---------- Complaint endpoints ----------
@router.post("/complaints", status_code=201)
def create_complaint(
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    zone: Optional[str] = Form(None),
    address: Optional[str] = Form(None),
    lat: Optional[str] = Form(None),
    lng: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    user=Depends(require_user),
    db: Database = Depends(get_db),
    classifier=Depends(get_classifier),
    image_store=Depends(get_image_store),
    settings=Depends(get_settings),
):
    doc = lifecycle.create_complaint(
        db,
        classifier,
        user,
        title=title,
        description=description,
        zone_id=zone,
        address=address,
        lat=_optional_float("lat", lat),
        lng=_optional_float("lng", lng),
        category=category,
        image=image,
        image_store=image_store,
        require_zone=settings.require_zone,
    )
    return serialize(doc)


@router.get("/complaints")
def list_complaints(search: Optional[str] = None, db: Database = Depends(get_db)):
    return serialize(lifecycle.list_complaints(db, search))


@router.get("/complaints/mycomplaints")
def my_complaints(user=Depends(require_user), db: Database = Depends(get_db)):
    return serialize(lifecycle.list_by_author(db, user["_id"]))


@router.get("/complaints/top")
def top_complaints(db: Database = Depends(get_db)):
    return serialize(lifecycle.top_complaints(db))


@router.get("/complaints/{complaint_id}")
def get_complaint(complaint_id: str, user=Depends(require_user), db: Database = Depends(get_db)):
    return serialize(lifecycle.get_complaint(db, complaint_id))


@router.put("/complaints/{complaint_id}")
def update_complaint(
    complaint_id: str,
    body: ComplaintUpdate,
    user=Depends(require_user),
    db: Database = Depends(get_db),
    classifier=Depends(get_classifier),
):
    doc = lifecycle.update_complaint(db, classifier, user, complaint_id, title=body.title, description=body.description)
    return serialize(doc)


@router.delete("/complaints/{complaint_id}")
def delete_complaint(complaint_id: str, user=Depends(require_user), db: Database = Depends(get_db)) -> Dict[str, Any]:
    lifecycle.delete_complaint(db, user, complaint_id)
    return {"message": "Complaint removed"}


# ---------- Votes ----------
@router.post("/complaints/{complaint_id}/upvote")
def upvote(complaint_id: str, user=Depends(require_user), db: Database = Depends(get_db)):
    return serialize(engagement.add_upvote(db, user, complaint_id))


@router.delete("/complaints/{complaint_id}/upvote")
def remove_upvote(complaint_id: str, user=Depends(require_user), db: Database = Depends(get_db)):
    return serialize(engagement.remove_upvote(db, user, complaint_id))


# ---------- Comments ----------
@router.post("/complaints/{complaint_id}/comments", status_code=201)
def add_comment(complaint_id: str, body: CommentRequest, user=Depends(require_user), db: Database = Depends(get_db)):
    return serialize(engagement.add_comment(db, user, complaint_id, body.text))


@router.get("/complaints/{complaint_id}/comments")
def list_comments(complaint_id: str, user=Depends(require_user), db: Database = Depends(get_db)):
    return serialize(engagement.list_comments(db, complaint_id))


@router.delete("/comments/{comment_id}")
def delete_comment(comment_id: str, user=Depends(require_user), db: Database = Depends(get_db)) -> Dict[str, Any]:
    engagement.delete_comment(db, user, comment_id)
    return {"message": "Comment deleted successfully"}
