import mongomock
import pytest
from fastapi.testclient import TestClient
from passlib.context import CryptContext

import security
from classifier import build_classifier
from config import Settings
from main import create_app

SUPERADMIN_EMAIL = "root@city.example"
SUPERADMIN_PASSWORD = "root-password"


@pytest.fixture(scope="session")
def classifier():
    return build_classifier()


@pytest.fixture(autouse=True)
def _fast_hashing(monkeypatch):
    monkeypatch.setattr(security, "pwd_context", CryptContext(schemes=["bcrypt"], bcrypt__rounds=4))
    yield


@pytest.fixture
def settings(tmp_path):
    return Settings(
        jwt_secret="test-secret",
        upload_dir=str(tmp_path / "uploads"),
        superadmin_email=SUPERADMIN_EMAIL,
        superadmin_password=SUPERADMIN_PASSWORD,
        require_zone=True,
    )


@pytest.fixture
def mock_db():
    return mongomock.MongoClient()["civic_test"]


@pytest.fixture
def client(settings, mock_db, classifier):
    app = create_app(settings=settings, db=mock_db, classifier=classifier)
    with TestClient(app) as c:
        yield c


def _session(client, path, payload, expected):
    r = client.post(path, json=payload)
    assert r.status_code == expected, r.text
    # requests carry explicit bearer headers; keep the jar empty so cookies never win
    client.cookies.clear()
    body = r.json()
    return {"id": body["id"], "token": body["token"], "headers": {"Authorization": f"Bearer {body['token']}"}, **body}


@pytest.fixture
def login(client):
    def _login(email, password):
        return _session(client, "/api/auth/login", {"email": email, "password": password}, 200)

    return _login


@pytest.fixture
def make_user(client):
    def _make(name, email, password="secret123"):
        return _session(client, "/api/auth/register", {"name": name, "email": email, "password": password}, 201)

    return _make


@pytest.fixture
def superadmin(login):
    return login(SUPERADMIN_EMAIL, SUPERADMIN_PASSWORD)


@pytest.fixture
def make_staff(client, superadmin, login):
    def _make(role, email, category=None, name=None, zone=None):
        payload = {"name": name or email.split("@")[0], "email": email, "password": "staff-pass", "role": role}
        if category:
            payload["category"] = category
        if zone:
            payload["zone"] = zone
        r = client.post("/api/superadmin/create-staff", json=payload, headers=superadmin["headers"])
        assert r.status_code == 201, r.text
        return login(email, "staff-pass")

    return _make


@pytest.fixture
def zone(client, superadmin):
    r = client.post("/api/superadmin/zones", json={"name": "Ward 12", "description": "Old town"}, headers=superadmin["headers"])
    assert r.status_code == 201, r.text
    return r.json()["id"]


@pytest.fixture
def citizen(make_user):
    return make_user("Alice", "alice@example.com")


@pytest.fixture
def neighbour(make_user):
    return make_user("Bob", "bob@example.com")


@pytest.fixture
def admin(make_staff):
    return make_staff("admin", "admin@city.example")


@pytest.fixture
def roads_partner(make_staff):
    return make_staff("partner", "roads@contractor.example", category="Roads", name="Road Crew")


@pytest.fixture
def water_partner(make_staff):
    return make_staff("partner", "water@contractor.example", category="Water", name="Water Works")


@pytest.fixture
def file_complaint(client, zone):
    def _file(author, title="Pothole", description="pothole on the road", files=None, **fields):
        data = {"title": title, "description": description, "zone": zone}
        data.update(fields)
        r = client.post("/api/complaints", data=data, files=files, headers=author["headers"])
        assert r.status_code == 201, r.text
        return r.json()

    return _file
