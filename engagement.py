"""Upvotes and comments on complaints.

Votes are toggled with conditional single-document updates, so the stored
``upvoteCount`` always equals ``len(upvotes)`` even under concurrent calls.
Comments live in their own collection with a back-reference list on the
complaint; the comment document is authoritative and
``reconcile_comment_refs`` repairs any drift between the two.
"""

import logging
from typing import Any, Dict, List

from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import COMMENTS, COMPLAINTS, create_document, get_documents, now, populate, to_object_id
from errors import Conflict, Forbidden, NotFound, ValidationFailed
from lifecycle import load_complaint
from schemas import Comment
from security import is_admin

log = logging.getLogger(__name__)


def _vote(db: Database, complaint_id: Any, query: Dict[str, Any], update: Dict[str, Any], conflict: str) -> Dict[str, Any]:
    oid = to_object_id(complaint_id)
    if oid is None:
        raise NotFound("Complaint not found")
    query = dict(query, _id=oid)
    updated = db[COMPLAINTS].find_one_and_update(query, update, return_document=ReturnDocument.AFTER)
    if updated is None:
        if db[COMPLAINTS].count_documents({"_id": oid}, limit=1) == 0:
            raise NotFound("Complaint not found")
        raise Conflict(conflict)
    return updated


def add_upvote(db: Database, user: Dict[str, Any], complaint_id: Any) -> Dict[str, Any]:
    uid = user["_id"]
    return _vote(
        db,
        complaint_id,
        {"upvotes": {"$ne": uid}},
        {"$push": {"upvotes": uid}, "$inc": {"upvoteCount": 1}},
        "You have already upvoted this complaint.",
    )


def remove_upvote(db: Database, user: Dict[str, Any], complaint_id: Any) -> Dict[str, Any]:
    uid = user["_id"]
    return _vote(
        db,
        complaint_id,
        {"upvotes": uid},
        {"$pull": {"upvotes": uid}, "$inc": {"upvoteCount": -1}},
        "You have not upvoted this complaint.",
    )


def add_comment(db: Database, user: Dict[str, Any], complaint_id: Any, text: str) -> Dict[str, Any]:
    if text is None or not text.strip():
        raise ValidationFailed("Comment text is required.")
    complaint = load_complaint(db, complaint_id)
    comment = Comment(text=text.strip(), author=user["_id"], complaint=complaint["_id"])
    doc = create_document(db, COMMENTS, comment.model_dump())
    pushed = db[COMPLAINTS].update_one({"_id": complaint["_id"]}, {"$push": {"comments": doc["_id"]}})
    if pushed.matched_count == 0:
        # complaint deleted between the read and the push
        db[COMMENTS].delete_one({"_id": doc["_id"]})
        raise NotFound("Complaint not found")
    return populate(db, [doc], "author", ["anonymousName"])[0]


def list_comments(db: Database, complaint_id: Any) -> List[Dict[str, Any]]:
    oid = to_object_id(complaint_id)
    if oid is None:
        raise NotFound("Complaint not found")
    docs = get_documents(db, COMMENTS, {"complaint": oid}, sort=[("createdAt", DESCENDING), ("_id", DESCENDING)])
    return populate(db, docs, "author", ["anonymousName"])


def delete_comment(db: Database, user: Dict[str, Any], comment_id: Any) -> None:
    oid = to_object_id(comment_id)
    comment = db[COMMENTS].find_one({"_id": oid}) if oid else None
    if comment is None:
        raise NotFound("Comment not found.")
    if comment.get("author") != user["_id"] and not is_admin(user):
        raise Forbidden("User not authorized")

    db[COMMENTS].delete_one({"_id": comment["_id"]})
    try:
        db[COMPLAINTS].update_one(
            {"_id": comment.get("complaint")},
            {"$pull": {"comments": comment["_id"]}, "$set": {"updatedAt": now()}},
        )
    except PyMongoError:
        log.warning("comment %s deleted but not pulled from complaint %s", comment["_id"], comment.get("complaint"), exc_info=True)


def reconcile_comment_refs(db: Database) -> Dict[str, int]:
    """Drop dangling comment ids from complaints and delete comments whose complaint is gone."""
    pulled = 0
    for complaint in db[COMPLAINTS].find({"comments": {"$ne": []}}, {"comments": 1}):
        refs = complaint.get("comments") or []
        live = {c["_id"] for c in db[COMMENTS].find({"_id": {"$in": refs}}, {"_id": 1})}
        dangling = [ref for ref in refs if ref not in live]
        if dangling:
            db[COMPLAINTS].update_one({"_id": complaint["_id"]}, {"$pullAll": {"comments": dangling}})
            pulled += len(dangling)

    complaint_ids = set(db[COMPLAINTS].distinct("_id"))
    orphans = [c["_id"] for c in db[COMMENTS].find({}, {"complaint": 1}) if c.get("complaint") not in complaint_ids]
    removed = db[COMMENTS].delete_many({"_id": {"$in": orphans}}).deleted_count if orphans else 0

    if pulled or removed:
        log.info("reconciled comments: %d dangling refs pulled, %d orphan comments removed", pulled, removed)
    return {"danglingRefsPulled": pulled, "orphanCommentsRemoved": removed}
