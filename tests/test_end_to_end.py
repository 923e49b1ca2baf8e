def test_complaint_from_filing_to_resolution(client, make_user, login, admin, roads_partner, file_complaint):
    make_user("Alice", "alice@example.com", password="alice-pass")
    alice = login("alice@example.com", "alice-pass")
    bob = make_user("Bob", "bob@example.com")

    complaint = file_complaint(alice, title="Crater on 5th", description="pothole on the road")
    assert complaint["status"] == "Pending"
    assert complaint["category"] == "Roads"

    assert client.post(f"/api/complaints/{complaint['id']}/upvote", headers=bob["headers"]).status_code == 200
    top = client.get("/api/complaints/top", headers=alice["headers"]).json()
    assert top[0]["id"] == complaint["id"]
    assert top[0]["upvoteCount"] == 1

    r = client.patch(
        f"/api/admin/complaints/{complaint['id']}/status",
        json={"status": "Assigned", "partnerId": roads_partner["id"]},
        headers=admin["headers"],
    )
    assert r.status_code == 200, r.text

    r = client.patch(
        f"/api/partner/complaints/{complaint['id']}/accept",
        json={"tentativeDate": "2026-11-01", "assignedWorkers": "Crew 4"},
        headers=roads_partner["headers"],
    )
    assert r.json()["status"] == "In Progress"

    r = client.patch(
        f"/api/partner/complaints/{complaint['id']}/resolve",
        data={"feedback": "Filled and sealed"},
        files={"image": ("after.png", b"\x89PNG after", "image/png")},
        headers=roads_partner["headers"],
    )
    assert r.status_code == 200, r.text

    final = client.get(f"/api/complaints/{complaint['id']}", headers=alice["headers"]).json()
    assert final["status"] == "Resolved"
    assert final["partnerFeedback"] == "Filled and sealed"
    assert final["resolutionImage"].endswith(".png")
    assert final["upvoteCount"] == 1
    assert final["author"]["anonymousName"]
    assert "name" not in final["author"]
