from __future__ import annotations

import datetime as dt
from typing import Any, Dict

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from billtrack import models, services


def _create_entry(client: TestClient, task_id: int, **overrides: Any) -> Dict[str, Any]:
    payload = {"task_id": task_id, "start_time": "2024-03-04T08:00:00Z", "total_duration_in_hour": 0}
    payload.update(overrides)
    response = client.post("/time-entries", json=payload)
    assert response.status_code == 201
    return response.json()


def test_start_stop_flow(client: TestClient, billing_setup: Dict[str, Any]):
    task_id = billing_setup["tasks"][0]["id"]
    entry = _create_entry(client, task_id)
    assert entry["progress_start_time"] is None
    assert entry["start_time"].endswith("+00:00")

    assert client.get("/time-entries/in-progress").json() is None

    start_resp = client.put(f"/time-entries/{entry['id']}/start")
    assert start_resp.status_code == 200
    assert start_resp.json()["progress_start_time"] is not None

    in_progress = client.get("/time-entries/in-progress").json()
    assert in_progress["id"] == entry["id"]

    stop_resp = client.put(f"/time-entries/{entry['id']}/stop")
    assert stop_resp.status_code == 200
    stopped = stop_resp.json()
    assert stopped["progress_start_time"] is None
    assert stopped["total_duration_in_hour"] >= 0

    assert client.get("/time-entries/in-progress").json() is None


def test_second_in_progress_entry_is_rejected(client: TestClient, billing_setup: Dict[str, Any]):
    first = _create_entry(client, billing_setup["tasks"][0]["id"])
    second = _create_entry(client, billing_setup["tasks"][1]["id"])

    assert client.put(f"/time-entries/{first['id']}/start").status_code == 200
    conflict = client.put(f"/time-entries/{second['id']}/start")
    assert conflict.status_code == 409
    assert conflict.json()["detail"]["existing_entry_id"] == first["id"]

    entries = client.get("/time-entries", params={"in_progress_only": True}).json()
    assert [item["id"] for item in entries] == [first["id"]]


def test_starting_the_running_entry_again_is_idempotent(client: TestClient, billing_setup: Dict[str, Any]):
    entry = _create_entry(client, billing_setup["tasks"][0]["id"])
    first = client.put(f"/time-entries/{entry['id']}/start").json()
    again = client.put(f"/time-entries/{entry['id']}/start")
    assert again.status_code == 200
    assert again.json()["progress_start_time"] == first["progress_start_time"]


def test_stop_rejects_closed_entry(client: TestClient, billing_setup: Dict[str, Any]):
    entry = _create_entry(client, billing_setup["tasks"][0]["id"])
    response = client.put(f"/time-entries/{entry['id']}/stop")
    assert response.status_code == 409


def test_stop_accumulates_onto_existing_duration(session: Session, billing_setup: Dict[str, Any]):
    task_id = billing_setup["tasks"][0]["id"]
    user_id = "local"
    entry = services.create_time_entry(
        session, user_id, task_id, dt.datetime(2024, 3, 4, 8, tzinfo=dt.timezone.utc), 2.5
    )
    services.start_time_entry(session, user_id, entry.id)
    progress_start = session.get(models.TimeEntry, entry.id).progress_start_time
    closed_at = progress_start.replace(tzinfo=dt.timezone.utc) + dt.timedelta(minutes=90)

    stopped = services.stop_time_entry(session, user_id, entry.id, closed_at)
    assert stopped.progress_start_time is None
    assert abs(stopped.total_duration_in_hour - 4.0) < 1e-6


def test_stop_before_progress_start_does_not_go_negative():
    entry = models.TimeEntry(total_duration_in_hour=1.0)
    now = dt.datetime(2024, 5, 1, 12, tzinfo=dt.timezone.utc)
    entry.mark_started(now)
    entry.mark_stopped(now - dt.timedelta(minutes=5))
    assert entry.total_duration_in_hour == 1.0
    assert entry.progress_start_time is None


def test_update_refuses_progress_changes(client: TestClient, billing_setup: Dict[str, Any]):
    entry = _create_entry(client, billing_setup["tasks"][0]["id"])
    response = client.put(
        f"/time-entries/{entry['id']}",
        json={"progress_start_time": "2024-03-04T09:00:00Z"},
    )
    assert response.status_code == 400

    update = client.put(f"/time-entries/{entry['id']}", json={"total_duration_in_hour": 1.25})
    assert update.status_code == 200
    assert update.json()["total_duration_in_hour"] == 1.25


def test_create_entry_requires_known_task(client: TestClient):
    response = client.post(
        "/time-entries",
        json={"task_id": 999999, "start_time": "2024-03-04T08:00:00Z", "total_duration_in_hour": 1},
    )
    assert response.status_code == 404


def test_negative_duration_is_rejected(client: TestClient, billing_setup: Dict[str, Any]):
    response = client.post(
        "/time-entries",
        json={
            "task_id": billing_setup["tasks"][0]["id"],
            "start_time": "2024-03-04T08:00:00Z",
            "total_duration_in_hour": -1,
        },
    )
    assert response.status_code == 422


def test_date_range_query_and_delete(client: TestClient, billing_setup: Dict[str, Any]):
    task_id = billing_setup["tasks"][0]["id"]
    march = _create_entry(client, task_id, start_time="2024-03-10T09:00:00Z", total_duration_in_hour=1)
    april = _create_entry(client, task_id, start_time="2024-04-02T09:00:00Z", total_duration_in_hour=2)

    in_march = client.get("/time-entries", params={"start_date": "2024-03-01", "end_date": "2024-03-31"}).json()
    assert [item["id"] for item in in_march] == [march["id"]]

    assert client.delete(f"/time-entries/{april['id']}").status_code == 204
    remaining = client.get("/time-entries", params={"task_id": task_id}).json()
    assert [item["id"] for item in remaining] == [march["id"]]


def test_entries_are_scoped_per_user(client: TestClient, billing_setup: Dict[str, Any]):
    entry = _create_entry(client, billing_setup["tasks"][0]["id"])
    other = client.put(f"/time-entries/{entry['id']}/start", headers={"X-User-Id": "someone-else"})
    assert other.status_code == 404


def test_single_entry_lookup(client: TestClient, billing_setup: Dict[str, Any]):
    entry = _create_entry(client, billing_setup["tasks"][0]["id"], total_duration_in_hour=1.5)

    response = client.get(f"/time-entries/{entry['id']}")
    assert response.status_code == 200
    assert response.json()["id"] == entry["id"]
    assert response.json()["total_duration_in_hour"] == 1.5

    assert client.get(f"/time-entries/{entry['id']}", headers={"X-User-Id": "someone-else"}).status_code == 404
    assert client.get("/time-entries/99999").status_code == 404
    # The static route still wins over the id lookup.
    assert client.get("/time-entries/in-progress").status_code == 200
