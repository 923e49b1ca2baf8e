import os

import pytest
from pymongo.errors import PyMongoError

import lifecycle


def test_create_assigns_category_and_defaults(client, citizen, file_complaint, zone):
    c = file_complaint(citizen, description="pothole on the road")
    assert c["category"] == "Roads"
    assert c["status"] == "Pending"
    assert c["author"] == citizen["id"]
    assert c["zone"] == zone
    assert c["upvotes"] == [] and c["upvoteCount"] == 0
    assert c["comments"] == [] and c["strikes"] == 0
    assert c["assignedTo"] is None


def test_create_water_and_other(citizen, file_complaint):
    assert file_complaint(citizen, title="Dry taps", description="no water supply")["category"] == "Water"
    assert file_complaint(citizen, title="Hmm", description="zxqv blorf")["category"] == "Other"


def test_category_hint_only_fills_unclassified(citizen, file_complaint):
    assert file_complaint(citizen, description="zxqv blorf", category="Electricity")["category"] == "Electricity"
    assert file_complaint(citizen, description="pothole on the road", category="Water")["category"] == "Roads"


def test_create_requires_title_and_description(client, citizen, zone):
    r = client.post("/api/complaints", data={"title": "", "description": "x", "zone": zone}, headers=citizen["headers"])
    assert r.status_code == 400
    r = client.post("/api/complaints", data={"title": "x", "zone": zone}, headers=citizen["headers"])
    assert r.status_code == 400


def test_create_requires_existing_zone(client, citizen):
    r = client.post("/api/complaints", data={"title": "t", "description": "pothole"}, headers=citizen["headers"])
    assert r.status_code == 400
    r = client.post(
        "/api/complaints",
        data={"title": "t", "description": "pothole", "zone": "64b000000000000000000000"},
        headers=citizen["headers"],
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "Zone not found."


def test_create_requires_session(client, zone):
    r = client.post("/api/complaints", data={"title": "t", "description": "pothole", "zone": zone})
    assert r.status_code == 401


def test_location_fields(client, citizen, file_complaint, zone):
    c = file_complaint(citizen, lat="12.97", lng="77.59", address=" MG Road ")
    assert c["coordinates"] == {"lat": 12.97, "lng": 77.59}
    assert c["address"] == "MG Road"

    r = client.post(
        "/api/complaints",
        data={"title": "t", "description": "pothole", "zone": zone, "lat": "12.9"},
        headers=citizen["headers"],
    )
    assert r.status_code == 400
    r = client.post(
        "/api/complaints",
        data={"title": "t", "description": "pothole", "zone": zone, "lat": "100", "lng": "1"},
        headers=citizen["headers"],
    )
    assert r.status_code == 400


def test_image_upload_is_stored_and_served(client, citizen, file_complaint, settings):
    c = file_complaint(citizen, files={"image": ("hole.jpg", b"\xff\xd8fake-jpeg", "image/jpeg")})
    assert c["image"].startswith("/uploads/image-")
    stored = os.path.join(settings.upload_dir, c["image"].rsplit("/", 1)[1])
    assert os.path.exists(stored)
    assert client.get(c["image"]).content == b"\xff\xd8fake-jpeg"


def test_failed_insert_removes_stored_image(client, citizen, zone, settings, monkeypatch):
    def refuse(*args, **kwargs):
        raise PyMongoError("insert failed")

    monkeypatch.setattr(lifecycle, "create_document", refuse)
    with pytest.raises(PyMongoError):
        client.post(
            "/api/complaints",
            data={"title": "t", "description": "pothole on the road", "zone": zone},
            files={"image": ("hole.jpg", b"\xff\xd8fake-jpeg", "image/jpeg")},
            headers=citizen["headers"],
        )
    assert os.listdir(settings.upload_dir) == []


def test_image_type_is_checked(client, citizen, zone):
    r = client.post(
        "/api/complaints",
        data={"title": "t", "description": "pothole", "zone": zone},
        files={"image": ("script.exe", b"MZ", "application/octet-stream")},
        headers=citizen["headers"],
    )
    assert r.status_code == 400


def test_listing_and_search(client, citizen, file_complaint):
    file_complaint(citizen, title="Deep pothole", description="pothole on the road")
    file_complaint(citizen, title="Dry taps", description="no water supply")

    everything = client.get("/api/complaints").json()
    assert [c["title"] for c in everything] == ["Dry taps", "Deep pothole"]
    assert everything[0]["author"]["anonymousName"]
    assert "email" not in everything[0]["author"]

    found = client.get("/api/complaints", params={"search": "WATER"}).json()
    assert [c["title"] for c in found] == ["Dry taps"]
    assert client.get("/api/complaints", params={"search": "pot(hole"}).json() == []


def test_my_complaints(client, citizen, neighbour, file_complaint):
    file_complaint(citizen, title="Mine")
    file_complaint(neighbour, title="Theirs")
    mine = client.get("/api/complaints/mycomplaints", headers=citizen["headers"]).json()
    assert [c["title"] for c in mine] == ["Mine"]


def test_top_is_five_by_upvotes(client, citizen, neighbour, file_complaint):
    ids = [file_complaint(citizen, title=f"c{i}")["id"] for i in range(6)]
    client.post(f"/api/complaints/{ids[5]}/upvote", headers=citizen["headers"])
    client.post(f"/api/complaints/{ids[5]}/upvote", headers=neighbour["headers"])
    client.post(f"/api/complaints/{ids[2]}/upvote", headers=neighbour["headers"])

    top = client.get("/api/complaints/top").json()
    assert len(top) == 5
    assert [c["id"] for c in top[:2]] == [ids[5], ids[2]]
    assert top[0]["upvoteCount"] == 2


def test_get_single(client, citizen, file_complaint):
    c = file_complaint(citizen)
    r = client.get(f"/api/complaints/{c['id']}", headers=citizen["headers"])
    assert r.status_code == 200
    assert r.json()["author"]["id"] == citizen["id"]

    assert client.get("/api/complaints/64b000000000000000000000", headers=citizen["headers"]).status_code == 404
    assert client.get("/api/complaints/not-an-id", headers=citizen["headers"]).status_code == 404


def test_update_by_owner_reclassifies(client, citizen, file_complaint):
    c = file_complaint(citizen, description="pothole on the road")
    r = client.put(
        f"/api/complaints/{c['id']}",
        json={"title": "Water problem", "description": "no water supply"},
        headers=citizen["headers"],
    )
    assert r.status_code == 200
    assert r.json()["title"] == "Water problem"
    assert r.json()["category"] == "Water"


def test_update_by_other_user_forbidden(client, citizen, neighbour, file_complaint):
    c = file_complaint(citizen)
    r = client.put(f"/api/complaints/{c['id']}", json={"title": "hijack"}, headers=neighbour["headers"])
    assert r.status_code == 403
    assert client.get(f"/api/complaints/{c['id']}", headers=citizen["headers"]).json()["title"] == "Pothole"


def test_update_blocked_after_assignment(client, citizen, admin, roads_partner, file_complaint):
    c = file_complaint(citizen)
    client.patch(f"/api/admin/complaints/{c['id']}/assign", json={"partnerId": roads_partner["id"]}, headers=admin["headers"])
    r = client.put(f"/api/complaints/{c['id']}", json={"title": "late edit"}, headers=citizen["headers"])
    assert r.status_code == 409


def test_delete_only_by_author(client, citizen, neighbour, admin, file_complaint, mock_db):
    c = file_complaint(citizen)
    client.post(f"/api/complaints/{c['id']}/comments", json={"text": "same here"}, headers=neighbour["headers"])

    assert client.delete(f"/api/complaints/{c['id']}", headers=neighbour["headers"]).status_code == 403
    assert client.delete(f"/api/complaints/{c['id']}", headers=admin["headers"]).status_code == 403
    assert client.get(f"/api/complaints/{c['id']}", headers=citizen["headers"]).status_code == 200

    r = client.delete(f"/api/complaints/{c['id']}", headers=citizen["headers"])
    assert r.status_code == 200
    assert r.json() == {"message": "Complaint removed"}
    assert client.get(f"/api/complaints/{c['id']}", headers=citizen["headers"]).status_code == 404
    assert mock_db["comments"].count_documents({}) == 0

    assert client.delete(f"/api/complaints/{c['id']}", headers=citizen["headers"]).status_code == 404
