import pytest
from fastapi.testclient import TestClient

from database import get_db
from main import app
from services.shift_locks import ShiftLockRegistry
from services.shift_monitor import ShiftMonitor, ThresholdScanner

SHIFT_BODY = {
    "train_number": "12841",
    "train_name": "Coromandel Express",
    "locomotive_no": "WAP7-30245",
    "loco_pilot": {"employee_id": "LP001", "name": "R. Kumar", "phone": "9800000001"},
    "train_manager": {"employee_id": "TM001", "name": "S. Das"},
    "sign_on_time": "2025-03-01T00:00:00Z",
    "sign_on_station": "HWH",
    "section": "HWH-KGP",
    "duty_type": "SP",
}


@pytest.fixture
def client(session_factory, sink, clock):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    locks = ShiftLockRegistry()
    app.dependency_overrides[get_db] = override_get_db
    app.state.shift_locks = locks
    app.state.clock = clock
    app.state.monitor = ShiftMonitor(ThresholdScanner(session_factory, sink, locks, clock=clock))
    yield TestClient(app)
    app.dependency_overrides.clear()


def create_shift(client, **overrides):
    response = client.post("/api/shifts", json={**SHIFT_BODY, **overrides})
    assert response.status_code == 201, response.text
    return response.json()


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"


def test_create_and_get_shift(client):
    shift = create_shift(client)

    assert shift["status"] == "IN_PROGRESS"
    assert shift["duty_hours"] == 0.0
    assert shift["alert_level"] == "normal"
    assert shift["sign_on_time"] == "2025-03-01T00:00:00Z"
    assert shift["loco_pilot"]["name"] == "R. Kumar"
    assert [a["alert_type"] for a in shift["alerts"]] == ["7HR", "8HR", "9HR", "10HR", "11HR", "14HR"]

    detail = client.get(f"/api/shifts/{shift['id']}").json()
    assert [log["log_type"] for log in detail["duty_logs"]] == ["SIGN_ON", "SIGN_ON"]


def test_unknown_shift_is_404(client):
    response = client.get("/api/shifts/999")
    assert response.status_code == 404
    assert response.json() == {"detail": "Shift 999 not found"}


def test_busy_crew_is_409(client):
    create_shift(client)

    response = client.post("/api/shifts", json={
        **SHIFT_BODY,
        "train_manager": {"employee_id": "TM002", "name": "A. Roy"},
    })

    assert response.status_code == 409
    assert response.json()["detail"] == "Staff already on duty: Loco Pilot R. Kumar"
    assert client.get("/api/shifts").json()["total"] == 1


def test_live_duty_hours_follow_clock(client, clock):
    shift = create_shift(client)
    clock.advance(hours=9, minutes=30)

    detail = client.get(f"/api/shifts/{shift['id']}").json()

    assert detail["duty_hours"] == 9.5
    assert detail["alert_level"] == "high"


def test_active_summary(client, clock):
    first = create_shift(client)
    second = create_shift(client, train_number="22801", sign_on_time="2025-03-01T02:00:00Z",
                          loco_pilot={"employee_id": "LP002", "name": "B. Sen"},
                          train_manager={"employee_id": "TM002", "name": "K. Pal"})
    third = create_shift(client, train_number="12277", sign_on_time="2025-03-01T03:00:00Z",
                         loco_pilot={"employee_id": "LP003", "name": "D. Bose"},
                         train_manager={"employee_id": "TM003", "name": "P. Jana"})
    client.put(f"/api/shifts/{second['id']}", json={"relief_planned": True})
    client.post(f"/api/shifts/{third['id']}/cancel")
    clock.advance(hours=9, minutes=30)

    summary = client.get("/api/shifts/active/summary")

    assert summary.status_code == 200
    body = summary.json()
    assert body["total_active"] == 2
    assert [(s["id"], s["status"], s["duty_hours"], s["alert_level"]) for s in body["shifts"]] == [
        (first["id"], "IN_PROGRESS", 9.5, "high"),
        (second["id"], "RELIEF_PLANNED", 7.5, "info"),
    ]


def test_monitor_run_and_alert_response_flow(client, clock, sink):
    shift = create_shift(client)
    clock.advance(hours=9, minutes=10)

    report = client.post("/api/monitor/run").json()
    assert [a["threshold"] for a in report["alerts_sent"]] == [7, 8, 9]
    assert [t for _, t in sink.sent] == [7, 8, 9]

    status = client.get("/api/monitor/status").json()
    assert status["running"] is False
    assert status["last_report"]["shifts_scanned"] == 1

    response = client.post(f"/api/shifts/{shift['id']}/alert-response", json={
        "alert_type": "9HR", "response": "CREW_RELIEVED", "remarks": "Relieved at KGP",
    })
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["shift"]["status"] == "COMPLETED"
    assert body["shift"]["duty_hours"] == 9.17
    assert body["shift"]["loco_pilot"]["status"] == "AVAILABLE"

    history = client.get(f"/api/shifts/{shift['id']}/alert-history").json()
    assert [(h["alert_type"], h["response"]) for h in history] == [
        ("7HR", None), ("8HR", None), ("9HR", "CREW_RELIEVED"),
    ]


def test_alert_response_errors(client, clock):
    shift = create_shift(client)
    clock.advance(hours=7, minutes=30)
    client.post("/api/monitor/run")
    url = f"/api/shifts/{shift['id']}/alert-response"

    unsent = client.post(url, json={"alert_type": "8HR", "response": "RELIEF_NOT_REQUIRED"})
    assert unsent.status_code == 409

    invalid = client.post(url, json={"alert_type": 8, "response": "CREW_RELIEVED"})
    assert invalid.status_code == 400
    assert "Valid: PLAN_RELIEF, RELIEF_NOT_REQUIRED" in invalid.json()["detail"]

    unknown = client.post(url, json={"alert_type": "13HR", "response": "PLAN_RELIEF"})
    assert unknown.status_code == 400

    missing = client.post("/api/shifts/999/alert-response", json={"alert_type": "8HR", "response": "PLAN_RELIEF"})
    assert missing.status_code == 404

    detail = client.get(f"/api/shifts/{shift['id']}").json()
    assert detail["status"] == "IN_PROGRESS"
    assert [log["log_type"] for log in detail["duty_logs"]].count("RELIEF_NOT_REQUIRED") == 0


def test_update_complete_and_delete(client, clock):
    shift = create_shift(client)
    shift_id = shift["id"]

    assert client.delete(f"/api/shifts/{shift_id}").status_code == 409

    updated = client.put(f"/api/shifts/{shift_id}", json={
        "take_over_time": "2025-03-01T00:30:00Z",
        "relief_planned": True,
        "relief_reason": "Crew change at KGP",
    }).json()
    assert updated["status"] == "RELIEF_PLANNED"
    assert updated["take_over_time"] == "2025-03-01T00:30:00Z"

    bad = client.put(f"/api/shifts/{shift_id}", json={"sign_off_time": "2025-02-28T23:00:00Z"})
    assert bad.status_code == 400

    clock.advance(hours=8, minutes=15)
    completed = client.post(f"/api/shifts/{shift_id}/complete", json={"sign_off_station": "KGP"}).json()
    assert completed["status"] == "COMPLETED"
    assert completed["duty_hours"] == 8.25
    assert completed["sign_off_time"] == "2025-03-01T08:15:00Z"

    assert client.post(f"/api/shifts/{shift_id}/complete").status_code == 409
    assert client.put(f"/api/shifts/{shift_id}", json={"relief_planned": True}).status_code == 409

    deleted = client.delete(f"/api/shifts/{shift_id}").json()
    assert deleted["deleted_logs"] == 7
    assert client.get(f"/api/shifts/{shift_id}").status_code == 404


def test_cancel_shift(client):
    shift = create_shift(client)

    cancelled = client.post(f"/api/shifts/{shift['id']}/cancel", json={"reason": "Train cancelled"}).json()

    assert cancelled["status"] == "CANCELLED"
    assert cancelled["loco_pilot"]["status"] == "AVAILABLE"
    assert client.delete(f"/api/shifts/{shift['id']}").status_code == 200


def test_relief_planned_shift_can_be_deleted(client):
    shift = create_shift(client)
    client.put(f"/api/shifts/{shift['id']}", json={"relief_planned": True})

    response = client.delete(f"/api/shifts/{shift['id']}")

    assert response.status_code == 200
    assert response.json()["deleted_logs"] == 4
    assert client.get(f"/api/staff/{shift['loco_pilot']['id']}").json()["status"] == "AVAILABLE"


def test_list_shifts_with_filters(client):
    create_shift(client)
    create_shift(client, train_number="22801",
                 loco_pilot={"employee_id": "LP002", "name": "B. Sen"},
                 train_manager={"employee_id": "TM002", "name": "K. Pal"})

    everything = client.get("/api/shifts").json()
    assert everything["total"] == 2
    assert everything["pages"] == 1

    filtered = client.get("/api/shifts", params={"train_number": "228"}).json()
    assert [s["train_number"] for s in filtered["shifts"]] == ["22801"]

    assert client.get("/api/shifts", params={"status": "DONE"}).status_code == 400


def test_staff_registry(client):
    created = client.post("/api/staff", json={
        "employee_id": "LP050", "name": "M. Ghosh", "staff_type": "LOCO_PILOT", "home_station": "HWH",
    })
    assert created.status_code == 201
    staff_id = created.json()["id"]
    assert created.json()["auto_created"] is False

    duplicate = client.post("/api/staff", json={"employee_id": "LP050", "name": "X", "staff_type": "LOCO_PILOT"})
    assert duplicate.status_code == 409

    bad_type = client.post("/api/staff", json={"employee_id": "LP051", "name": "X", "staff_type": "GUARD"})
    assert bad_type.status_code == 400

    updated = client.put(f"/api/staff/{staff_id}", json={"phone": "9811111111", "status": "ON_LEAVE"}).json()
    assert updated["phone"] == "9811111111"
    assert updated["status"] == "ON_LEAVE"

    on_leave = client.get("/api/staff", params={"status": "ON_LEAVE"}).json()
    assert [s["employee_id"] for s in on_leave] == ["LP050"]

    assert client.get("/api/staff/999").status_code == 404


def test_staff_duty_logs(client):
    shift = create_shift(client)
    pilot_id = shift["loco_pilot"]["id"]

    trail = client.get(f"/api/staff/{pilot_id}/duty-logs").json()

    assert trail["staff"]["employee_id"] == "LP001"
    assert [log["log_type"] for log in trail["duty_logs"]] == ["SIGN_ON"]
    assert trail["duty_logs"][0]["staff_name"] == "R. Kumar"


def test_websocket_rooms_and_ping(client):
    with client.websocket_connect("/ws/alerts") as ws:
        assert ws.receive_json()["type"] == "connected"

        ws.send_json({"type": "join:shift", "shift_id": 7})
        assert ws.receive_json() == {"type": "joined:shift", "shift_id": 7}

        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}

        ws.send_json({"type": "leave:shift", "shift_id": "7"})
        assert ws.receive_json() == {"type": "left:shift", "shift_id": 7}
