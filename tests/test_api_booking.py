from datetime import date, timedelta

from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from salonbook.api import get_db, router
from salonbook.core.middleware import RequestTracingMiddleware
from salonbook.db import Base

HEADERS = {"X-Tenant-Slug": "studio"}


def make_client(tmp_path):
    db_path = tmp_path / "test_salonbook.db"
    database_url = f"sqlite:///{db_path}"
    engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False},
    )
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    Base.metadata.create_all(bind=engine)

    app = FastAPI()
    app.add_middleware(RequestTracingMiddleware)
    app.include_router(router)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


def target_day() -> date:
    return date.today() + timedelta(days=3)


def setup_salon(client, durations=(60,)):
    created = client.post(
        "/api/tenants",
        json={"slug": "studio", "name": "Studio Ana", "timezone": "America/Sao_Paulo"},
    )
    assert created.status_code == 201
    assert created.json()["timezone"] == "America/Sao_Paulo"

    staff = client.post("/api/staff", json={"name": "Ana"}, headers=HEADERS)
    assert staff.status_code == 201
    staff_id = staff.json()["id"]

    service_ids = []
    for index, duration in enumerate(durations):
        service = client.post(
            "/api/services",
            json={"name": f"Service {index}", "duration_min": duration, "price": 150},
            headers=HEADERS,
        )
        assert service.status_code == 201
        service_ids.append(service.json()["id"])
        assigned = client.post(f"/api/staff/{staff_id}/services/{service_ids[-1]}", headers=HEADERS)
        assert assigned.status_code == 200

    schedule = client.put(
        f"/api/staff/{staff_id}/schedule/legacy",
        json={
            "work_days": "0,1,2,3,4,5,6",
            "work_start": "09:00",
            "work_end": "18:00",
            "lunch_start": "12:00",
            "lunch_end": "13:00",
        },
        headers=HEADERS,
    )
    assert schedule.status_code == 200
    assert schedule.json()["work_days"] == "0,1,2,3,4,5,6"
    return staff_id, service_ids


def test_tenant_header_is_required(tmp_path):
    client = make_client(tmp_path)

    missing = client.get("/api/staff/1")
    assert missing.status_code == 400

    unknown = client.get("/api/staff/1", headers={"X-Tenant-Slug": "nobody"})
    assert unknown.status_code == 404


def test_request_id_is_echoed(tmp_path):
    client = make_client(tmp_path)

    res = client.get("/api/tenant", headers={"X-Tenant-Slug": "nobody", "X-Request-ID": "req-123"})
    assert res.status_code == 404
    assert res.headers["X-Request-ID"] == "req-123"

    generated = client.get("/api/tenant", headers=HEADERS)
    assert generated.headers["X-Request-ID"]


def test_tenant_with_unknown_timezone_is_rejected(tmp_path):
    client = make_client(tmp_path)

    res = client.post("/api/tenants", json={"slug": "studio", "name": "Studio", "timezone": "Mars/Base"})
    assert res.status_code == 400


def test_slots_then_booking_then_conflict(tmp_path):
    client = make_client(tmp_path)
    staff_id, (service_id,) = setup_salon(client)
    day = target_day()

    slots = client.get(
        f"/api/staff/{staff_id}/slots",
        params={"date": day.isoformat(), "service_id": service_id},
        headers=HEADERS,
    )
    assert slots.status_code == 200
    body = slots.json()
    assert body["timezone"] == "America/Sao_Paulo"
    assert body["granularity_min"] == 60
    assert body["slots"] == ["09:00", "10:00", "11:00", "13:00", "14:00", "15:00", "16:00", "17:00"]

    payload = {
        "staff_id": staff_id,
        "service_id": service_id,
        "client_id": "client-1",
        "start": f"{day.isoformat()}T09:00:00",
    }
    created = client.post("/api/bookings", json=payload, headers=HEADERS)
    assert created.status_code == 201
    booking = created.json()
    assert booking["status"] == "PENDING"
    assert booking["start"] == f"{day.isoformat()}T09:00:00-03:00"
    assert booking["end"] == f"{day.isoformat()}T10:00:00-03:00"

    conflict = client.post("/api/bookings", json={**payload, "client_id": "client-2"}, headers=HEADERS)
    assert conflict.status_code == 409
    assert conflict.json()["detail"]["code"] == "overlap"
    assert conflict.json()["detail"]["retryable"] is True

    after = client.get(
        f"/api/staff/{staff_id}/slots",
        params={"date": day.isoformat(), "service_id": service_id},
        headers=HEADERS,
    )
    assert "09:00" not in after.json()["slots"]

    listed = client.get("/api/bookings", params={"date": day.isoformat()}, headers=HEADERS)
    assert listed.status_code == 200
    assert [row["id"] for row in listed.json()] == [booking["id"]]


def test_booking_outside_working_hours(tmp_path):
    client = make_client(tmp_path)
    staff_id, (service_id,) = setup_salon(client)
    day = target_day()

    res = client.post(
        "/api/bookings",
        json={
            "staff_id": staff_id,
            "service_id": service_id,
            "client_id": "client-1",
            "start": f"{day.isoformat()}T11:30:00",
        },
        headers=HEADERS,
    )
    assert res.status_code == 409
    assert res.json()["detail"]["code"] == "outside_working_hours"


def test_booking_status_flow(tmp_path):
    client = make_client(tmp_path)
    staff_id, (service_id,) = setup_salon(client)
    day = target_day()

    created = client.post(
        "/api/bookings",
        json={
            "staff_id": staff_id,
            "service_id": service_id,
            "client_id": "client-1",
            "start": f"{day.isoformat()}T14:00:00",
        },
        headers=HEADERS,
    )
    booking_id = created.json()["id"]

    confirmed = client.patch(
        f"/api/bookings/{booking_id}/status",
        json={"status": "CONFIRMED", "note": "paid"},
        headers={**HEADERS, "X-Actor": "payments"},
    )
    assert confirmed.status_code == 200
    assert confirmed.json()["status"] == "CONFIRMED"

    invalid = client.patch(f"/api/bookings/{booking_id}/status", json={"status": "PENDING"}, headers=HEADERS)
    assert invalid.status_code == 400

    cancelled = client.post(f"/api/bookings/{booking_id}/cancel", headers=HEADERS)
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "CANCELLED"

    events = client.get(f"/api/bookings/{booking_id}/events", headers=HEADERS)
    assert events.status_code == 200
    rows = events.json()
    assert [row["to_status"] for row in rows] == ["PENDING", "CONFIRMED", "CANCELLED"]
    assert rows[1]["actor"] == "payments"

    missing = client.get("/api/bookings/999", headers=HEADERS)
    assert missing.status_code == 404


def test_blocks_hide_slots_until_deleted(tmp_path):
    client = make_client(tmp_path)
    staff_id, (service_id,) = setup_salon(client)
    day = target_day()

    created = client.post(
        f"/api/staff/{staff_id}/blocks",
        json={"kind": "dated", "block_date": day.isoformat(), "start": "14:00", "end": "15:00", "reason": "doctor"},
        headers=HEADERS,
    )
    assert created.status_code == 201
    block_id = created.json()["id"]

    slots = client.get(
        f"/api/staff/{staff_id}/slots",
        params={"date": day.isoformat(), "service_id": service_id},
        headers=HEADERS,
    ).json()["slots"]
    assert "14:00" not in slots

    listed = client.get(f"/api/staff/{staff_id}/blocks", headers=HEADERS)
    assert [row["id"] for row in listed.json()] == [block_id]

    deleted = client.delete(f"/api/staff/{staff_id}/blocks/{block_id}", headers=HEADERS)
    assert deleted.status_code == 204

    slots = client.get(
        f"/api/staff/{staff_id}/slots",
        params={"date": day.isoformat(), "service_id": service_id},
        headers=HEADERS,
    ).json()["slots"]
    assert "14:00" in slots

    bad = client.post(
        f"/api/staff/{staff_id}/blocks",
        json={"kind": "recurring", "start": "14:00", "end": "15:00"},
        headers=HEADERS,
    )
    assert bad.status_code == 400


def test_inactive_staff_has_no_slots(tmp_path):
    client = make_client(tmp_path)
    staff_id, (service_id,) = setup_salon(client)
    day = target_day()

    updated = client.patch(f"/api/staff/{staff_id}", json={"is_active": False}, headers=HEADERS)
    assert updated.status_code == 200
    assert updated.json()["is_active"] is False

    slots = client.get(
        f"/api/staff/{staff_id}/slots",
        params={"date": day.isoformat(), "service_id": service_id},
        headers=HEADERS,
    )
    assert slots.status_code == 200
    assert slots.json()["slots"] == []
    assert slots.json()["reason"] == "staff_inactive"

    booking = client.post(
        "/api/bookings",
        json={
            "staff_id": staff_id,
            "service_id": service_id,
            "client_id": "client-1",
            "start": f"{day.isoformat()}T09:00:00",
        },
        headers=HEADERS,
    )
    assert booking.status_code == 409
    assert booking.json()["detail"]["code"] == "staff_inactive"


def test_granularity_falls_back_with_several_services(tmp_path):
    client = make_client(tmp_path)
    staff_id, service_ids = setup_salon(client, durations=(30, 60))
    day = target_day()

    slots = client.get(
        f"/api/staff/{staff_id}/slots",
        params={"date": day.isoformat(), "service_id": service_ids[1]},
        headers=HEADERS,
    ).json()
    assert slots["granularity_min"] == 15
    assert slots["slots"][:3] == ["09:00", "09:15", "09:30"]
    assert "11:15" not in slots["slots"]

    free_form = client.get(
        f"/api/staff/{staff_id}/slots",
        params={"date": day.isoformat(), "duration_min": 45},
        headers=HEADERS,
    )
    assert free_form.status_code == 200
    assert free_form.json()["duration_min"] == 45

    neither = client.get(f"/api/staff/{staff_id}/slots", params={"date": day.isoformat()}, headers=HEADERS)
    assert neither.status_code == 400


def test_schedule_roundtrip_and_validation(tmp_path):
    client = make_client(tmp_path)
    staff_id, _ = setup_salon(client)

    updated = client.put(
        f"/api/staff/{staff_id}/schedule",
        json={
            "ranges": [
                {"weekday": 1, "start": "09:00", "end": "12:00"},
                {"weekday": 1, "start": "14:00", "end": "18:00"},
            ]
        },
        headers=HEADERS,
    )
    assert updated.status_code == 200

    current = client.get(f"/api/staff/{staff_id}/schedule", headers=HEADERS)
    assert current.status_code == 200
    body = current.json()
    assert body["work_days"] == "1"
    assert len(body["ranges"]) == 2
    assert body["lunch_start"] is None

    bad = client.put(
        f"/api/staff/{staff_id}/schedule",
        json={"ranges": [{"weekday": 2, "start": "18:00", "end": "09:00"}]},
        headers=HEADERS,
    )
    assert bad.status_code == 400


def test_calendar_and_horizon(tmp_path):
    client = make_client(tmp_path)
    staff_id, (service_id,) = setup_salon(client)
    day = target_day()

    calendar = client.get(
        f"/api/staff/{staff_id}/calendar",
        params={
            "service_id": service_id,
            "start": day.isoformat(),
            "end": (day + timedelta(days=2)).isoformat(),
        },
        headers=HEADERS,
    )
    assert calendar.status_code == 200
    rows = calendar.json()
    assert len(rows) == 3
    assert all(row["has_slots"] for row in rows)
    assert rows[0]["open_slots_count"] == 8

    too_far = client.get(
        f"/api/staff/{staff_id}/slots",
        params={"date": (date.today() + timedelta(days=200)).isoformat(), "service_id": service_id},
        headers=HEADERS,
    )
    assert too_far.status_code == 400


def test_staff_needs_permission_to_manage_own_blocks(tmp_path):
    client = make_client(tmp_path)
    staff_id, _ = setup_salon(client)
    other = client.post("/api/staff", json={"name": "Bia"}, headers=HEADERS).json()["id"]
    day = target_day()
    block = {"kind": "dated", "block_date": day.isoformat(), "start": "14:00", "end": "15:00", "reason": "dentist"}
    as_staff = {**HEADERS, "X-Acting-Staff-Id": str(staff_id)}

    denied = client.post(f"/api/staff/{staff_id}/blocks", json=block, headers=as_staff)
    assert denied.status_code == 403

    allowed = client.patch(f"/api/staff/{staff_id}", json={"can_manage_blocks": True}, headers=HEADERS)
    assert allowed.json()["can_manage_blocks"] is True

    created = client.post(f"/api/staff/{staff_id}/blocks", json=block, headers=as_staff)
    assert created.status_code == 201
    block_id = created.json()["id"]

    foreign = client.delete(
        f"/api/staff/{staff_id}/blocks/{block_id}",
        headers={**HEADERS, "X-Acting-Staff-Id": str(other)},
    )
    assert foreign.status_code == 403

    deleted = client.delete(f"/api/staff/{staff_id}/blocks/{block_id}", headers=as_staff)
    assert deleted.status_code == 204

    admin = client.post(f"/api/staff/{other}/blocks", json=block, headers=HEADERS)
    assert admin.status_code == 201
