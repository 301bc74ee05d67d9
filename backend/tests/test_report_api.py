from __future__ import annotations

import io
from pathlib import Path
from typing import Any, Dict

import pytest
from fastapi.testclient import TestClient
from openpyxl import load_workbook
from sqlalchemy.orm import Session

from billtrack import models
from billtrack.exports import _checksum_file


def _log(client: TestClient, task_id: int, start_time: str, hours: float) -> Dict[str, Any]:
    response = client.post(
        "/time-entries",
        json={"task_id": task_id, "start_time": start_time, "total_duration_in_hour": hours},
    )
    assert response.status_code == 201
    return response.json()


@pytest.fixture()
def march_entries(client: TestClient, billing_setup: Dict[str, Any]) -> Dict[str, Any]:
    login, search, hotline = (task["id"] for task in billing_setup["tasks"])
    _log(client, login, "2024-03-04T08:00:00Z", 2)
    _log(client, login, "2024-03-05T08:00:00Z", 1)
    _log(client, search, "2024-03-06T08:00:00Z", 3)
    _log(client, hotline, "2024-03-07T08:00:00Z", 4)
    _log(client, login, "2024-04-02T08:00:00Z", 5)
    return billing_setup


def _generate(client: TestClient, customer_id: int, report_type: str, **extra: Any):
    payload = {"customer_id": customer_id, "year": 2024, "month": 3, "report_type": report_type}
    payload.update(extra)
    return client.post("/reports/generate", json=payload)


def test_invoice_report(client: TestClient, march_entries: Dict[str, Any]):
    response = _generate(client, march_entries["customer"]["id"], "invoice")
    assert response.status_code == 200
    report = response.json()

    assert report["customer_name"] == "Acme GmbH"
    assert report["start_date"] == "2024-03-01"
    assert report["end_date"] == "2024-03-31"
    assert report["total_days"] == 31
    assert report["entry_count"] == 4
    assert report["orphaned_count"] == 0
    assert report["total_hours"] == pytest.approx(10.0)
    assert report["total_cost"] == pytest.approx(920.0)

    contract, bucket = report["contracts"]
    assert contract["contract_name"] == "Framework 2024"
    assert contract["total_hours"] == pytest.approx(6.0)
    assert contract["total_cost"] == pytest.approx(600.0)
    tasks = contract["projects"][0]["tasks"]
    assert [(task["task_name"], task["total_hours"]) for task in tasks] == [("Login", 3.0), ("Search", 3.0)]
    assert tasks[0]["total_cost"] is None

    assert bucket["contract_id"] is None
    assert bucket["daily_rate"] == 640
    assert bucket["total_cost"] == pytest.approx(320.0)


def test_timesheet_report_has_no_costs(client: TestClient, march_entries: Dict[str, Any]):
    report = _generate(client, march_entries["customer"]["id"], "timesheet").json()
    assert report["total_cost"] is None
    assert report["total_hours"] == pytest.approx(10.0)
    assert all(contract["total_cost"] is None for contract in report["contracts"])


def test_itemized_invoice_report(client: TestClient, march_entries: Dict[str, Any]):
    report = _generate(client, march_entries["customer"]["id"], "invoice", itemized=True).json()
    login = report["contracts"][0]["projects"][0]["tasks"][0]
    assert login["total_cost"] == pytest.approx(300.0)
    assert [entry["total_cost"] for entry in login["entries"]] == [pytest.approx(200.0), pytest.approx(100.0)]


def test_empty_month_report(client: TestClient, billing_setup: Dict[str, Any]):
    report = _generate(client, billing_setup["customer"]["id"], "invoice", month=2).json()
    assert report["total_days"] == 29
    assert report["total_hours"] == 0
    assert report["total_cost"] == 0
    assert report["contracts"] == []


def test_report_for_unknown_customer(client: TestClient):
    assert _generate(client, 424242, "invoice").status_code == 404


def test_report_rejects_bad_month(client: TestClient, billing_setup: Dict[str, Any]):
    assert _generate(client, billing_setup["customer"]["id"], "invoice", month=13).status_code == 422


def test_available_months(client: TestClient, march_entries: Dict[str, Any]):
    response = client.get(f"/reports/available-months/{march_entries['customer']['id']}")
    assert response.status_code == 200
    assert response.json() == [{"year": 2024, "month": 4}, {"year": 2024, "month": 3}]


def _export(client: TestClient, customer_id: int, export_format: str, **extra: Any):
    payload = {
        "customer_id": customer_id,
        "start_date": "2024-03-01",
        "end_date": "2024-03-31",
        "report_type": "invoice",
        "export_format": export_format,
    }
    payload.update(extra)
    return client.post("/reports/export", json=payload)


def test_csv_export_download(client: TestClient, march_entries: Dict[str, Any]):
    response = _export(client, march_entries["customer"]["id"], "csv")
    assert response.status_code == 201
    export = response.json()
    assert export["format"] == "csv"
    assert export["type"] == "invoice"
    assert export["range_start"] == "2024-03-01"

    download = client.get(export["file_url"])
    assert download.status_code == 200
    assert download.headers["content-type"].startswith("text/csv")
    lines = download.text.splitlines()
    assert lines[0] == "Level,Name,Hours,Cost"
    assert "Contract,Framework 2024,6.00,600.00" in lines
    assert lines[-1] == "Total,,10.00,920.00"


def test_excel_export_download(client: TestClient, march_entries: Dict[str, Any]):
    export = _export(client, march_entries["customer"]["id"], "excel").json()
    download = client.get(export["file_url"])
    assert download.status_code == 200
    workbook = load_workbook(io.BytesIO(download.content))
    assert workbook.sheetnames == ["Report", "Contracts"]
    contracts = list(workbook["Contracts"].iter_rows(min_row=2, values_only=True))
    assert contracts[0][0] == "Framework 2024"
    assert contracts[0][4] == pytest.approx(600.0)


def test_pdf_export_download(client: TestClient, march_entries: Dict[str, Any]):
    export = _export(client, march_entries["customer"]["id"], "pdf", report_type="timesheet").json()
    download = client.get(export["file_url"])
    assert download.status_code == 200
    assert download.headers["content-type"] == "application/pdf"
    assert download.content.startswith(b"%PDF")

    listed = client.get("/exports").json()
    assert [item["id"] for item in listed] == [export["id"]]


def test_export_rejects_inverted_range(client: TestClient, billing_setup: Dict[str, Any]):
    response = _export(
        client,
        billing_setup["customer"]["id"],
        "csv",
        start_date="2024-03-31",
        end_date="2024-03-01",
    )
    assert response.status_code == 400
    assert "before" in response.json()["detail"]


def test_unknown_export_is_404(client: TestClient):
    assert client.get("/exports/99999").status_code == 404


@pytest.fixture()
def usd_entries(client: TestClient, march_entries: Dict[str, Any]) -> Dict[str, Any]:
    customer_id = march_entries["customer"]["id"]
    contract = client.post(
        f"/customers/{customer_id}/contracts",
        json={
            "name": "US rollout",
            "start_date": "2024-01-01",
            "end_date": "2024-12-31",
            "daily_rate": 800,
            "currency": "USD",
        },
    ).json()
    project = client.post(
        "/projects",
        json={"customer_id": customer_id, "contract_id": contract["id"], "name": "Overseas"},
    ).json()
    task = client.post("/tasks", json={"project_id": project["id"], "name": "Rollout"}).json()
    _log(client, task["id"], "2024-03-08T08:00:00Z", 8)
    return march_entries


def test_mixed_currency_invoice_keeps_totals_apart(client: TestClient, usd_entries: Dict[str, Any]):
    report = _generate(client, usd_entries["customer"]["id"], "invoice").json()
    assert report["total_hours"] == pytest.approx(18.0)
    assert report["total_cost"] is None
    assert report["currency"] is None
    assert report["cost_by_currency"] == {"EUR": pytest.approx(920.0), "USD": pytest.approx(800.0)}


def test_mixed_currency_csv_has_one_total_per_currency(client: TestClient, usd_entries: Dict[str, Any]):
    export = _export(client, usd_entries["customer"]["id"], "csv").json()
    lines = client.get(export["file_url"]).text.splitlines()
    assert lines[-3:] == ["Total,,18.00,", "Total,EUR,10.00,920.00", "Total,USD,8.00,800.00"]


def test_mixed_currency_pdf_export(client: TestClient, usd_entries: Dict[str, Any]):
    export = _export(client, usd_entries["customer"]["id"], "pdf").json()
    download = client.get(export["file_url"])
    assert download.status_code == 200
    assert download.content.startswith(b"%PDF")


def test_repeated_exports_get_their_own_files(
    client: TestClient, session: Session, march_entries: Dict[str, Any]
):
    customer_id = march_entries["customer"]["id"]
    first = _export(client, customer_id, "csv").json()
    second = _export(client, customer_id, "csv").json()
    assert first["id"] != second["id"]

    records = [session.get(models.ExportRecord, export["id"]) for export in (first, second)]
    paths = [Path(record.path) for record in records]
    assert paths[0] != paths[1]
    for record, path in zip(records, paths):
        assert path.exists()
        assert record.checksum == _checksum_file(path)
