"""
Backend API smoke run.

Walks one patient through the whole flow against a running server seeded
with ``python scripts/setup_db.py --seed``: reserve with pickup, ambulance
accepts, arrives, reception checks in and out.
"""
import requests
import json
import time

BASE_URL = "http://localhost:8000"

PATIENT = "pat_demo_1"
AMBULANCE = "amb_demo_1"
RIVAL_AMBULANCE = "amb_demo_2"
RECEPTION = "staff_reception"


def print_test(name: str):
    """Print test header."""
    print(f"\n{'='*70}")
    print(f"{name}")
    print(f"{'='*70}")


def call(method: str, path: str, user: str = None, **kwargs) -> requests.Response:
    headers = {"X-User-Id": user} if user else {}
    response = requests.request(method, f"{BASE_URL}{path}", headers=headers, timeout=10, **kwargs)
    print(f"{method} {path} -> {response.status_code}")
    return response


def test_health_check():
    print_test("TEST 1: Health Check")

    response = call("GET", "/api/health")
    print(f"Response: {json.dumps(response.json(), indent=2)}")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    print("✅ Health check passed!")


def test_available_icus():
    print_test("TEST 2: Available ICUs near the patient")

    response = call("GET", "/api/icus/available", params={"lng": 31.24, "lat": 30.05})
    data = response.json()
    print(f"Found {data['count']} available beds")
    for icu in data["icus"][:3]:
        print(f"  {icu['id']} {icu['specialization']} @ {icu['hospital']['name']} ({icu['distance_km']:.1f} km)")

    assert response.status_code == 200
    assert data["count"] > 0
    print("✅ Available ICUs passed!")
    return data["icus"][0]["id"]


def test_reserve_with_pickup(icu_id: str):
    print_test(f"TEST 3: Reserve {icu_id} with pickup")

    response = call("POST", "/api/icus/reserve", PATIENT, json={
        "icu_id": icu_id,
        "needs_pickup": True,
        "pickup_location": "Downtown",
        "pickup_coordinates": [31.24, 30.05]
    })
    data = response.json()
    print(json.dumps(data.get("request"), indent=2))

    assert response.status_code == 200, data
    print("✅ Reservation passed!")
    return data["request"]["id"]


def test_accept_race(request_id: str):
    print_test("TEST 4: Two ambulances accept the same request")

    won = call("POST", f"/api/ambulance/requests/{request_id}/accept", AMBULANCE)
    lost = call("POST", f"/api/ambulance/requests/{request_id}/accept", RIVAL_AMBULANCE)
    print(f"Winner ETA: {won.json()['ambulance']['eta']} min")
    print(f"Loser: {lost.json()['code']}")

    assert won.status_code == 200
    assert lost.status_code == 409
    print("✅ First-come-first-served passed!")


def test_transport_and_admission(icu_id: str):
    print_test("TEST 5: Pickup, arrival, check-in, check-out")

    assert call("POST", f"/api/ambulance/{AMBULANCE}/accept-pickup", AMBULANCE).status_code == 200
    assert call(
        "POST", f"/api/ambulance/{AMBULANCE}/mark-arrived", AMBULANCE, json={"patient_id": PATIENT}
    ).status_code == 200

    checked_in = call("POST", "/api/reception/check-in", RECEPTION, json={"icu_id": icu_id, "patient_id": PATIENT})
    assert checked_in.status_code == 200
    assert checked_in.json()["ambulance"]["status"] == "AVAILABLE"

    checked_out = call("POST", "/api/reception/check-out", RECEPTION, json={"icu_id": icu_id})
    assert checked_out.status_code == 200
    print("✅ Full journey passed!")


def run_all_tests():
    """Run the smoke flow."""
    print("\n" + "="*70)
    print("🧪 ICU DISPATCH SMOKE RUN")
    print("="*70)

    try:
        test_health_check()
        icu_id = test_available_icus()
        request_id = test_reserve_with_pickup(icu_id)
        test_accept_race(request_id)
        test_transport_and_admission(icu_id)

        print("\n" + "="*70)
        print("✅ ALL SMOKE CHECKS PASSED!")
        print("="*70)
        return True

    except requests.exceptions.ConnectionError:
        print("\n❌ ERROR: Cannot connect to backend server")
        print(f"   Make sure server is running on {BASE_URL}")
        print(f"   Run: python -m icudispatch.run")
        return False
    except AssertionError as e:
        print(f"\n❌ Smoke check failed: {e}")
        return False


if __name__ == "__main__":
    print("\n🚀 Starting smoke run...")
    print(f"   Target: {BASE_URL}")
    time.sleep(1)

    success = run_all_tests()

    import sys
    sys.exit(0 if success else 1)
