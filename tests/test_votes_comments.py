import random
import threading
from concurrent.futures import ThreadPoolExecutor

from bson import ObjectId

import engagement
from errors import Conflict


def _assert_count_matches(doc):
    assert doc["upvoteCount"] == len(doc["upvotes"]) == len(set(doc["upvotes"]))


def test_upvote_toggle(client, citizen, neighbour, file_complaint):
    c = file_complaint(citizen)
    url = f"/api/complaints/{c['id']}/upvote"

    r = client.post(url, headers=neighbour["headers"])
    assert r.status_code == 200
    assert r.json()["upvoteCount"] == 1
    assert r.json()["upvotes"] == [neighbour["id"]]

    again = client.post(url, headers=neighbour["headers"])
    assert again.status_code == 409
    assert client.get(f"/api/complaints/{c['id']}", headers=citizen["headers"]).json()["upvoteCount"] == 1

    r = client.delete(url, headers=neighbour["headers"])
    assert r.status_code == 200
    assert r.json()["upvoteCount"] == 0 and r.json()["upvotes"] == []

    assert client.delete(url, headers=neighbour["headers"]).status_code == 409
    assert client.delete(url, headers=citizen["headers"]).status_code == 409


def test_upvote_missing_complaint(client, citizen):
    assert client.post("/api/complaints/64b000000000000000000000/upvote", headers=citizen["headers"]).status_code == 404
    assert client.delete("/api/complaints/bogus/upvote", headers=citizen["headers"]).status_code == 404


def test_upvote_requires_session(client, citizen, file_complaint):
    c = file_complaint(citizen)
    assert client.post(f"/api/complaints/{c['id']}/upvote").status_code == 401


def test_count_tracks_set_over_random_toggles(client, citizen, file_complaint, mock_db):
    c = file_complaint(citizen)
    voters = [{"_id": ObjectId()} for _ in range(5)]
    rng = random.Random(7)
    for _ in range(60):
        voter = rng.choice(voters)
        op = rng.choice([engagement.add_upvote, engagement.remove_upvote])
        try:
            op(mock_db, voter, c["id"])
        except Conflict:
            pass
        _assert_count_matches(mock_db["complaints"].find_one({"_id": ObjectId(c["id"])}))


def _race(op, db, voter, complaint_id, workers=16):
    start = threading.Barrier(workers)

    def attempt(_):
        start.wait()
        try:
            op(db, voter, complaint_id)
            return True
        except Conflict:
            return False

    with ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(attempt, range(workers)))


def test_concurrent_duplicate_upvotes_count_once(client, citizen, file_complaint, mock_db):
    c = file_complaint(citizen)
    voter = {"_id": ObjectId()}

    outcomes = _race(engagement.add_upvote, mock_db, voter, c["id"])
    assert outcomes.count(True) == 1
    assert outcomes.count(False) == len(outcomes) - 1
    doc = mock_db["complaints"].find_one({"_id": ObjectId(c["id"])})
    assert doc["upvotes"] == [voter["_id"]]
    _assert_count_matches(doc)

    outcomes = _race(engagement.remove_upvote, mock_db, voter, c["id"])
    assert outcomes.count(True) == 1
    assert outcomes.count(False) == len(outcomes) - 1
    doc = mock_db["complaints"].find_one({"_id": ObjectId(c["id"])})
    assert doc["upvotes"] == [] and doc["upvoteCount"] == 0


def test_comment_add_and_list(client, citizen, neighbour, file_complaint):
    c = file_complaint(citizen)
    url = f"/api/complaints/{c['id']}/comments"

    r = client.post(url, json={"text": "first"}, headers=neighbour["headers"])
    assert r.status_code == 201
    first = r.json()
    assert first["complaint"] == c["id"]
    assert first["author"]["anonymousName"]
    client.post(url, json={"text": "second"}, headers=citizen["headers"])

    listed = client.get(url, headers=citizen["headers"]).json()
    assert [x["text"] for x in listed] == ["second", "first"]

    complaint = client.get(f"/api/complaints/{c['id']}", headers=citizen["headers"]).json()
    assert first["id"] in complaint["comments"]
    assert len(complaint["comments"]) == 2


def test_comment_validation(client, citizen, file_complaint):
    c = file_complaint(citizen)
    assert client.post(f"/api/complaints/{c['id']}/comments", json={"text": "  "}, headers=citizen["headers"]).status_code == 400
    r = client.post("/api/complaints/64b000000000000000000000/comments", json={"text": "hi"}, headers=citizen["headers"])
    assert r.status_code == 404


def test_comment_delete_keeps_both_sides_consistent(client, citizen, neighbour, file_complaint, mock_db):
    c = file_complaint(citizen)
    comment = client.post(f"/api/complaints/{c['id']}/comments", json={"text": "me too"}, headers=neighbour["headers"]).json()

    assert client.delete(f"/api/comments/{comment['id']}", headers=citizen["headers"]).status_code == 403

    r = client.delete(f"/api/comments/{comment['id']}", headers=neighbour["headers"])
    assert r.status_code == 200
    assert mock_db["comments"].find_one({"_id": ObjectId(comment["id"])}) is None
    complaint = client.get(f"/api/complaints/{c['id']}", headers=citizen["headers"]).json()
    assert comment["id"] not in complaint["comments"]
    listed = client.get(f"/api/complaints/{c['id']}/comments", headers=citizen["headers"]).json()
    assert comment["id"] not in [x["id"] for x in listed]

    assert client.delete(f"/api/comments/{comment['id']}", headers=neighbour["headers"]).status_code == 404


def test_admin_can_delete_any_comment(client, citizen, admin, file_complaint):
    c = file_complaint(citizen)
    comment = client.post(f"/api/complaints/{c['id']}/comments", json={"text": "spam"}, headers=citizen["headers"]).json()
    assert client.delete(f"/api/comments/{comment['id']}", headers=admin["headers"]).status_code == 200


def test_reconcile_comment_refs(client, citizen, superadmin, file_complaint, mock_db):
    c = file_complaint(citizen)
    kept = client.post(f"/api/complaints/{c['id']}/comments", json={"text": "keep"}, headers=citizen["headers"]).json()

    dangling = ObjectId()
    mock_db["complaints"].update_one({"_id": ObjectId(c["id"])}, {"$push": {"comments": dangling}})
    mock_db["comments"].insert_one({"text": "orphan", "author": ObjectId(citizen["id"]), "complaint": ObjectId()})

    r = client.post("/api/superadmin/maintenance/reconcile-comments", headers=superadmin["headers"])
    assert r.status_code == 200
    assert r.json() == {"danglingRefsPulled": 1, "orphanCommentsRemoved": 1}

    complaint = mock_db["complaints"].find_one({"_id": ObjectId(c["id"])})
    assert complaint["comments"] == [ObjectId(kept["id"])]
    assert mock_db["comments"].count_documents({}) == 1
