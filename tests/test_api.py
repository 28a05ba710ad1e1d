"""HTTP-level behaviour: auth, error bodies and the main flows end to end."""
from fastapi.testclient import TestClient
from pymongo.errors import PyMongoError

from auth import create_access_token
from conftest import auth_headers, befriend, make_calendar, make_user, reload
from database import get_db
from main import app


def _register(client, username, password="secret123", **extra):
    resp = client.post("/api/auth/register", json={"username": username, "password": password, **extra})
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "OK"}


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


def test_register_and_login(client):
    data = _register(client, "alice", email="Alice@Mail.com")
    assert data["user"]["username"] == "alice"
    assert data["user"]["email"] == "alice@mail.com"
    assert "password" not in data["user"]

    resp = client.post("/api/auth/login", json={"username": "alice", "password": "secret123"})
    assert resp.status_code == 200
    token = resp.json()["token"]

    profile = client.get("/api/user/profile", headers={"Authorization": f"Bearer {token}"})
    assert profile.status_code == 200
    assert profile.json()["id"] == data["user"]["id"]


def test_register_rejects_taken_username_and_bad_input(client):
    _register(client, "alice")
    taken = client.post("/api/auth/register", json={"username": "alice", "password": "secret123"})
    assert taken.status_code == 400
    assert taken.json() == {"message": "Username taken"}

    short = client.post("/api/auth/register", json={"username": "al", "password": "secret123"})
    assert short.status_code == 400
    assert short.json()["errors"][0]["field"] == "username"

    weak = client.post("/api/auth/register", json={"username": "bobby", "password": "123"})
    assert weak.status_code == 400


def test_login_with_wrong_password(client):
    _register(client, "alice")
    resp = client.post("/api/auth/login", json={"username": "alice", "password": "nope-nope"})
    assert resp.status_code == 400
    assert resp.json() == {"message": "Invalid credentials"}


def test_protected_routes_fail_closed(client, db):
    assert client.get("/api/events").status_code == 401
    assert client.get("/api/events", headers={"Authorization": "Bearer garbage"}).status_code == 401

    malformed = create_access_token({"sub": "not-an-object-id"})
    resp = client.get("/api/events", headers={"Authorization": f"Bearer {malformed}"})
    assert resp.status_code == 401
    assert "message" in resp.json()


def test_profile_update(client, db):
    user = make_user(db, "alice")
    resp = client.put(
        "/api/user/profile", json={"display_name": "Alice A.", "bio": "hi"}, headers=auth_headers(user)
    )
    assert resp.status_code == 200
    assert resp.json()["display_name"] == "Alice A."

    bad = client.put("/api/user/profile", json={"profile_image": "http://x"}, headers=auth_headers(user))
    assert bad.status_code == 400


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


def test_event_time_validation(client, db):
    user = make_user(db, "alice")
    bad = client.post(
        "/api/events", json={"title": "Late", "date": "2026-10-21", "time": "25:00"}, headers=auth_headers(user)
    )
    assert bad.status_code == 400
    assert bad.json()["errors"][0]["field"] == "time"

    good = client.post(
        "/api/events", json={"title": "Late", "date": "2026-10-21", "time": "23:59"}, headers=auth_headers(user)
    )
    assert good.status_code == 201
    assert good.json()["time"] == "23:59"


def test_event_lifecycle(client, db):
    user = make_user(db, "alice")
    headers = auth_headers(user)
    created = client.post("/api/events", json={"title": "Dentist", "date": "2026-10-30"}, headers=headers).json()

    updated = client.put(f"/api/events/{created['id']}", json={"location": "Main St"}, headers=headers)
    assert updated.status_code == 200
    assert updated.json()["title"] == "Dentist"
    assert updated.json()["location"] == "Main St"

    listed = client.get("/api/events", headers=headers).json()
    assert [e["id"] for e in listed] == [created["id"]]

    assert client.delete(f"/api/events/{created['id']}", headers=headers).status_code == 200
    assert client.delete(f"/api/events/{created['id']}", headers=headers).status_code == 404
    assert client.put("/api/events/not-an-id", json={"title": "x"}, headers=headers).status_code == 404


def test_occurrences_endpoint(client, db):
    user = make_user(db, "alice")
    headers = auth_headers(user)
    created = client.post(
        "/api/events",
        json={"title": "Daily", "date": "2026-01-01", "recurrence": {"frequency": "daily", "interval": 2}},
        headers=headers,
    ).json()

    resp = client.get(
        f"/api/events/{created['id']}/occurrences", params={"start": "2026-01-01", "end": "2026-01-07"}, headers=headers
    )
    assert resp.status_code == 200
    assert resp.json()["occurrences"] == ["2026-01-01", "2026-01-03", "2026-01-05", "2026-01-07"]


# ---------------------------------------------------------------------------
# Friends, calendars and sharing
# ---------------------------------------------------------------------------


def test_friend_request_flow(client, db):
    alice = make_user(db, "alice")
    bob = make_user(db, "bob")

    sent = client.post("/api/friends/requests", json={"to": str(bob["_id"])}, headers=auth_headers(alice))
    assert sent.status_code == 201

    dup = client.post("/api/friends/requests", json={"to": str(alice["_id"])}, headers=auth_headers(bob))
    assert dup.status_code == 400

    incoming = client.get("/api/friends/requests/incoming", headers=auth_headers(bob)).json()
    assert len(incoming) == 1

    forbidden = client.put(
        f"/api/friends/requests/{incoming[0]['id']}", json={"accept": True}, headers=auth_headers(alice)
    )
    assert forbidden.status_code == 403

    accepted = client.put(
        f"/api/friends/requests/{incoming[0]['id']}", json={"accept": True}, headers=auth_headers(bob)
    )
    assert accepted.status_code == 200

    friends = client.get("/api/friends", headers=auth_headers(alice)).json()
    assert [f["username"] for f in friends] == ["bob"]

    assert client.delete(f"/api/friends/{bob['_id']}", headers=auth_headers(alice)).status_code == 200
    assert reload(db, bob)["friends"] == []


def test_share_calendar_flow(client, db):
    owner = make_user(db, "owner")
    friend = make_user(db, "friend")
    stranger = make_user(db, "stranger")
    befriend(db, owner, friend)
    headers = auth_headers(owner)

    cal = client.post("/api/calendars", json={"name": "Family"}, headers=headers).json()
    resp = client.post(
        f"/api/calendars/{cal['id']}/share",
        json={"friend_ids": [str(friend["_id"]), str(stranger["_id"])], "permission": "edit"},
        headers=headers,
    )
    assert resp.status_code == 200
    results = resp.json()["results"]
    assert results["shared"] == [str(friend["_id"])]
    assert results["not_friends"] == [str(stranger["_id"])]

    shared = client.get("/api/calendars", headers=auth_headers(friend)).json()["shared"]
    assert [c["name"] for c in shared] == ["Family"]

    empty = client.post(f"/api/calendars/{cal['id']}/share", json={"friend_ids": []}, headers=headers)
    assert empty.status_code == 400
    not_owner = client.post(
        f"/api/calendars/{cal['id']}/share", json={"friend_ids": [str(owner["_id"])]}, headers=auth_headers(friend)
    )
    assert not_owner.status_code == 403

    unshared = client.post(
        f"/api/calendars/{cal['id']}/unshare", json={"user_id": str(friend["_id"])}, headers=headers
    )
    assert unshared.status_code == 200
    sharing = client.get(f"/api/calendars/{cal['id']}/sharing", headers=headers).json()
    assert sharing == {"calendar_name": "Family", "shared_with": []}


def test_delete_calendar_removes_its_events(client, db):
    owner = make_user(db, "owner")
    headers = auth_headers(owner)
    cal = make_calendar(db, owner)
    for day in ["2026-10-21", "2026-10-22", "2026-10-23"]:
        client.post("/api/events", json={"title": day, "date": day, "calendar_id": str(cal["_id"])}, headers=headers)
    assert db["event"].count_documents({}) == 3

    resp = client.delete(f"/api/calendars/{cal['_id']}", headers=headers)

    assert resp.status_code == 200
    assert resp.json()["events_deleted"] == 3
    assert db["event"].count_documents({}) == 0


# ---------------------------------------------------------------------------
# Gamification
# ---------------------------------------------------------------------------


def test_gamification_endpoints(client, db):
    owner = make_user(db, "owner")
    headers = auth_headers(owner)
    cal = make_calendar(db, owner)
    event = client.post(
        "/api/events", json={"title": "Task", "date": "2020-01-01", "calendar_id": str(cal["_id"])}, headers=headers
    ).json()

    done = client.post(f"/api/gamification/complete/{event['id']}", headers=headers)
    assert done.status_code == 200
    again = client.post(f"/api/gamification/complete/{event['id']}", headers=headers)
    assert again.json()["points_awarded"] == 0

    undone = client.post(f"/api/gamification/uncomplete/{event['id']}", headers=headers)
    assert undone.status_code == 200
    not_complete = client.post(f"/api/gamification/uncomplete/{event['id']}", headers=headers)
    assert not_complete.status_code == 400

    stats = client.get("/api/gamification/stats", headers=headers).json()
    assert stats["lifetime_points"] == 0
    assert client.get("/api/gamification/leaderboard", headers=headers).json() == []


# ---------------------------------------------------------------------------
# Unexpected failures
# ---------------------------------------------------------------------------


def test_store_failures_are_not_leaked(db):
    user = make_user(db, "alice")

    class BrokenDb:
        def __getitem__(self, name):
            if name == "user":
                return db["user"]
            raise PyMongoError("connection refused at 10.0.0.5")

    app.dependency_overrides[get_db] = lambda: BrokenDb()
    try:
        client = TestClient(app, raise_server_exceptions=False)
        resp = client.get("/api/events", headers=auth_headers(user))
    finally:
        app.dependency_overrides.clear()

    assert resp.status_code == 500
    assert resp.json() == {"message": "Server error"}
