"""
REST and WebSocket surface, driven through FastAPI's TestClient.
"""

import pytest
from fastapi.testclient import TestClient

from icudispatch.api.main import app
from icudispatch.core.config import Config
from icudispatch.tests.conftest import HOSPITAL_LOCATION, PICKUP, seed_world


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setattr(Config, "DATABASE_URL", f"sqlite:///{tmp_path / 'api.db'}")
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def world(client):
    return seed_world(app.state.session_factory)


def as_user(user_id):
    return {"X-User-Id": user_id}


def _reserve_with_pickup(client, world):
    response = client.post(
        "/api/icus/reserve",
        json={
            "icu_id": world.bed_x,
            "needs_pickup": True,
            "pickup_location": "12 Nile St",
            "pickup_coordinates": PICKUP,
            "urgency": "urgent"
        },
        headers=as_user(world.patient_a)
    )
    assert response.status_code == 200, response.text
    return response.json()


# ========================
# Health
# ========================

def test_health_endpoints(client):
    assert client.get("/").json()["status"] == "healthy"

    health = client.get("/api/health").json()
    assert health["components"]["database"] == "initialized"
    assert health["components"]["event_bus"] == "running"


# ========================
# Beds
# ========================

def test_available_icus_nearest_first(client, world):
    lng, lat = HOSPITAL_LOCATION
    body = client.get(
        "/api/icus/available",
        params={"lng": lng, "lat": lat, "specialization": "Cardiac ICU"}
    ).json()

    assert body["count"] == 2
    assert [icu["id"] for icu in body["icus"]] == [world.bed_x, world.bed_far]
    assert body["icus"][0]["distance_km"] == 0
    assert body["icus"][0]["hospital"]["name"] == "Cairo General"


def test_reserve_and_cancel(client, world):
    body = _reserve_with_pickup(client, world)

    assert body["success"] is True
    assert body["icu"]["reserved_by"] == world.patient_a
    assert body["icu"]["status"] == "Occupied"
    assert body["request"]["status"] == "pending"
    assert body["request"]["urgency"] == "urgent"

    mine = client.get("/api/ambulance/my-request", headers=as_user(world.patient_a)).json()
    assert mine["request"]["id"] == body["request"]["id"]

    response = client.post(
        "/api/icus/reserve", json={"icu_id": world.bed_x}, headers=as_user(world.patient_b)
    )
    assert response.status_code == 409
    assert response.json()["code"] == "BedUnavailable"

    response = client.post("/api/icus/cancel", json={"icu_id": world.bed_x}, headers=as_user(world.patient_a))
    assert response.status_code == 200
    assert response.json()["icu"]["is_reserved"] is False
    assert client.get("/api/ambulance/my-request", headers=as_user(world.patient_a)).json()["request"] is None


def test_error_bodies(client, world):
    response = client.post(
        "/api/icus/reserve",
        json={"icu_id": world.bed_x, "needs_pickup": True, "pickup_coordinates": [500, 0]},
        headers=as_user(world.patient_a)
    )
    assert response.status_code == 422
    body = response.json()
    assert body == {
        "success": False,
        "error": "ValidationError",
        "code": "InvalidCoordinates",
        "message": body["message"],
        "context": body["context"]
    }

    response = client.post("/api/icus/reserve", json={"icu_id": "icu_missing"}, headers=as_user(world.patient_a))
    assert response.status_code == 404
    assert response.json()["error"] == "NotFound"


def test_identity_and_roles(client, world):
    response = client.post("/api/icus/reserve", json={"icu_id": world.bed_x}, headers=as_user(world.ambulance_c))
    assert response.status_code == 403
    assert response.json()["error"] == "AuthorizationError"

    response = client.post("/api/icus/reserve", json={"icu_id": world.bed_x}, headers=as_user("usr_ghost"))
    assert response.status_code == 404
    assert response.json()["code"] == "ActorNotFound"

    assert client.post("/api/icus/reserve", json={"icu_id": world.bed_x}).status_code == 422


# ========================
# Dispatch
# ========================

def test_pickup_race_and_transport(client, world):
    request_id = _reserve_with_pickup(client, world)["request"]["id"]

    listed = client.get("/api/ambulance/requests", headers=as_user(world.ambulance_c)).json()
    assert [r["id"] for r in listed["requests"]] == [request_id]
    assert listed["requests"][0]["distance_km"] is not None

    won = client.post(f"/api/ambulance/requests/{request_id}/accept", headers=as_user(world.ambulance_c))
    assert won.status_code == 200
    assert won.json()["ambulance"]["status"] == "EN_ROUTE"

    lost = client.post(f"/api/ambulance/requests/{request_id}/accept", headers=as_user(world.ambulance_d))
    assert lost.status_code == 409
    assert lost.json()["error"] == "Conflict"
    assert lost.json()["code"] == "RequestAlreadyTaken"

    accepted = client.get("/api/ambulance/my-accepted-request", headers=as_user(world.ambulance_c)).json()
    assert accepted["request"]["id"] == request_id

    assert client.post(
        f"/api/ambulance/{world.ambulance_c}/accept-pickup", headers=as_user(world.ambulance_c)
    ).json()["request"]["status"] == "in_transit"
    arrived = client.post(
        f"/api/ambulance/{world.ambulance_c}/mark-arrived",
        json={"patient_id": world.patient_a},
        headers=as_user(world.ambulance_c)
    ).json()
    assert arrived["patient"]["patient_status"] == "ARRIVED"

    pending = client.get("/api/reception/requests", headers=as_user(world.receptionist)).json()
    assert [entry["patient"]["id"] for entry in pending["requests"]] == [world.patient_a]

    checked_in = client.post(
        "/api/reception/check-in",
        json={"icu_id": world.bed_x, "patient_id": world.patient_a},
        headers=as_user(world.receptionist)
    ).json()
    assert checked_in["ambulance"]["status"] == "AVAILABLE"
    assert checked_in["request"]["status"] == "completed"

    checked_out = client.post(
        "/api/reception/check-out", json={"patient_id": world.patient_a}, headers=as_user(world.receptionist)
    ).json()
    assert checked_out["patient"]["patient_status"] == "CHECKED_OUT"
    assert checked_out["icu"]["status"] == "Available"


def test_reception_reserves_for_patient_and_lists_admitted(client, world):
    response = client.post(
        "/api/reception/reserve",
        json={"icu_id": world.bed_y, "patient_id": world.patient_b},
        headers=as_user(world.receptionist)
    )
    assert response.status_code == 200, response.text
    assert response.json()["icu"]["reserved_by"] == world.patient_b
    assert response.json()["patient"]["patient_status"] == "RESERVED"

    response = client.post(
        "/api/reception/reserve",
        json={"icu_id": world.bed_x, "patient_id": world.patient_b},
        headers=as_user(world.receptionist)
    )
    assert response.status_code == 409
    assert response.json()["code"] == "PatientAlreadyReserved"

    response = client.post(
        "/api/reception/reserve",
        json={"icu_id": world.bed_x, "patient_id": world.patient_a},
        headers=as_user(world.patient_a)
    )
    assert response.status_code == 403

    checked_in = client.get("/api/reception/checked-in", headers=as_user(world.receptionist)).json()
    assert checked_in["count"] == 0

    client.post(
        "/api/reception/check-in",
        json={"icu_id": world.bed_y, "patient_id": world.patient_b},
        headers=as_user(world.receptionist)
    )
    checked_in = client.get("/api/reception/checked-in", headers=as_user(world.receptionist)).json()
    assert [entry["patient"]["id"] for entry in checked_in["patients"]] == [world.patient_b]
    assert checked_in["patients"][0]["icu"]["id"] == world.bed_y

    assert client.get("/api/reception/checked-in", headers=as_user(world.ambulance_c)).status_code == 403


def test_reject_and_cancel_request(client, world):
    request_id = _reserve_with_pickup(client, world)["request"]["id"]

    response = client.post(
        f"/api/ambulance/requests/{request_id}/reject",
        json={"reason": "Off shift"},
        headers=as_user(world.ambulance_c)
    )
    assert response.status_code == 200
    assert client.get("/api/ambulance/requests", headers=as_user(world.ambulance_c)).json()["count"] == 0

    response = client.delete(f"/api/ambulance/requests/{request_id}/cancel", headers=as_user(world.patient_b))
    assert response.status_code == 403
    assert response.json()["code"] == "NotRequestOwner"

    response = client.delete(f"/api/ambulance/requests/{request_id}/cancel", headers=as_user(world.patient_a))
    assert response.json()["request"]["status"] == "cancelled"


def test_ambulance_status_and_assignment(client, world):
    response = client.put(
        f"/api/ambulance/{world.ambulance_d}/status",
        json={"status": "EN_ROUTE"},
        headers=as_user(world.ambulance_c)
    )
    assert response.status_code == 403

    response = client.put(
        f"/api/ambulance/{world.ambulance_c}/status",
        json={"location": [31.22, 30.02], "eta": 4},
        headers=as_user(world.ambulance_c)
    )
    assert response.json()["ambulance"]["current_location"] == [31.22, 30.02]

    _reserve_with_pickup(client, world)
    response = client.post(
        f"/api/ambulance/{world.ambulance_d}/assign",
        json={"patient_id": world.patient_a},
        headers=as_user(world.admin)
    )
    assert response.status_code == 200
    assert response.json()["ambulance"]["assigned_patient"] == world.patient_a

    busy = client.get("/api/ambulance?status=EN_ROUTE", headers=as_user(world.admin)).json()
    assert [a["id"] for a in busy["ambulances"]] == [world.ambulance_d]


# ========================
# Inventory and admin
# ========================

def test_manager_inventory(client, world):
    created = client.post(
        "/api/icus",
        json={"specialization": "Trauma ICU", "room": "T-7"},
        headers=as_user(world.manager)
    )
    assert created.status_code == 200
    icu = created.json()["icu"]
    assert icu["hospital_id"] == world.hospital

    response = client.put(f"/api/icus/{icu['id']}", json={"status": "Occupied"}, headers=as_user(world.manager))
    assert response.status_code == 422
    assert response.json()["code"] == "InvalidStatus"

    response = client.put(f"/api/icus/{icu['id']}", json={"status": "Maintenance"}, headers=as_user(world.manager))
    assert response.json()["icu"]["status"] == "Maintenance"

    assert client.delete(f"/api/icus/{icu['id']}", headers=as_user(world.patient_a)).status_code == 403
    assert client.delete(f"/api/icus/{icu['id']}", headers=as_user(world.manager)).status_code == 200
    assert client.get(f"/api/icus/{icu['id']}").status_code == 404


def test_admin_reconcile_and_events(client, world):
    _reserve_with_pickup(client, world)

    report = client.post("/api/admin/reconcile", headers=as_user(world.admin)).json()["report"]
    assert report["repair_count"] == 0

    events = client.get("/api/admin/events?event_type=icuReserved", headers=as_user(world.admin)).json()
    assert events["count"] >= 1
    assert events["events"][0]["data"]["patient"]["id"] == world.patient_a

    response = client.get("/api/admin/events?event_type=nonsense", headers=as_user(world.admin))
    assert response.status_code == 422
    assert client.post("/api/admin/reconcile", headers=as_user(world.manager)).status_code == 403


# ========================
# WebSocket
# ========================

def test_websocket_snapshot_and_ping(client, world):
    with client.websocket_connect("/ws") as websocket:
        snapshot = websocket.receive_json()
        assert snapshot["type"] == "initial_state"
        assert len(snapshot["data"]["icus"]) == 4
        assert snapshot["data"]["pending_requests"] == []

        websocket.send_json({"type": "ping"})
        assert websocket.receive_json()["type"] == "pong"

        websocket.send_text("not json")
        assert websocket.receive_json()["type"] == "error"

    assert client.get("/ws/status").json()["subscribed_to_events"] is True
