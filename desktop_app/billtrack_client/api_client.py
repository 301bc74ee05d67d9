"""HTTP client for the BillTrack API."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional
from urllib.parse import urljoin

import requests

from .models import TimeEntry, parse_datetime


class ApiError(RuntimeError):
    """Error while talking to the API."""

    def __init__(self, message: str, *, response: Optional[requests.Response] = None) -> None:
        super().__init__(message)
        self.response = response

    @property
    def status_code(self) -> Optional[int]:
        return self.response.status_code if self.response is not None else None


class NetworkFailure(ApiError):
    """Transport error or server-side failure; the call may be retried."""


class ConcurrentSessionConflict(ApiError):
    """The store refused a transition because of another in-progress entry."""

    def __init__(
        self,
        message: str,
        *,
        response: Optional[requests.Response] = None,
        existing_entry_id: Optional[int] = None,
    ) -> None:
        super().__init__(message, response=response)
        self.existing_entry_id = existing_entry_id


class ApiClient:
    """Wraps the HTTP calls to the BillTrack API."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: int = 15,
        user_id: Optional[str] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/") + "/"
        self.token = token
        self.timeout = timeout
        self.user_id = user_id

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if self.user_id:
            headers["X-User-Id"] = self.user_id
        return headers

    def _request(self, method: str, path: str, **kwargs):
        url = urljoin(self.base_url, path.lstrip("/"))
        kwargs.setdefault("timeout", self.timeout)
        headers = kwargs.setdefault("headers", {})
        headers.update(self._headers())
        try:
            response = requests.request(method, url, **kwargs)
        except requests.RequestException as exc:
            raise NetworkFailure(str(exc)) from exc

        if response.status_code >= 400:
            raise self._error_for(response)
        if response.status_code == 204:
            return None
        if response.headers.get("Content-Type", "").startswith("application/json"):
            return response.json()
        return response.content

    @staticmethod
    def _error_for(response: requests.Response) -> ApiError:
        message = f"API error {response.status_code}: {response.text}"
        if response.status_code >= 500:
            return NetworkFailure(message, response=response)
        if response.status_code == 409:
            existing_entry_id = None
            try:
                payload = response.json()
            except ValueError:
                payload = None
            detail = payload.get("detail") if isinstance(payload, dict) else None
            if isinstance(detail, dict) and detail.get("existing_entry_id") is not None:
                existing_entry_id = int(detail["existing_entry_id"])
            return ConcurrentSessionConflict(message, response=response, existing_entry_id=existing_entry_id)
        return ApiError(message, response=response)

    @staticmethod
    def _parse_entry(item: dict[str, Any]) -> TimeEntry:
        progress = item.get("progress_start_time")
        return TimeEntry(
            entry_id=int(item["id"]),
            task_id=int(item["task_id"]),
            start_time=parse_datetime(item["start_time"]),
            total_duration_in_hour=float(item.get("total_duration_in_hour") or 0.0),
            progress_start_time=parse_datetime(progress) if progress else None,
        )

    # ------------------------------------------------------------------
    # Customers, contracts, projects, tasks
    # ------------------------------------------------------------------
    def list_customers(self) -> list[dict[str, Any]]:
        return self._request("GET", "/customers") or []

    def create_customer(self, name: str, *, daily_rate: float = 0.0, currency: str = "EUR",
                        address: Optional[str] = None, email: Optional[str] = None) -> dict[str, Any]:
        payload = {"name": name, "daily_rate": daily_rate, "currency": currency, "address": address, "email": email}
        return self._request("POST", "/customers", json=payload)

    def delete_customer(self, customer_id: int) -> None:
        self._request("DELETE", f"/customers/{customer_id}")

    def list_contracts(self, customer_id: int) -> list[dict[str, Any]]:
        return self._request("GET", f"/customers/{customer_id}/contracts") or []

    def create_contract(self, customer_id: int, name: str, start_date: date, end_date: date,
                        daily_rate: float, currency: str = "EUR", **extra: Any) -> dict[str, Any]:
        payload = {
            "name": name,
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
            "daily_rate": daily_rate,
            "currency": currency,
            **extra,
        }
        return self._request("POST", f"/customers/{customer_id}/contracts", json=payload)

    def delete_contract(self, contract_id: int) -> None:
        self._request("DELETE", f"/contracts/{contract_id}")

    def list_projects(self, customer_id: Optional[int] = None) -> list[dict[str, Any]]:
        params = {"customer_id": customer_id} if customer_id is not None else None
        return self._request("GET", "/projects", params=params) or []

    def create_project(self, customer_id: int, name: str, contract_id: Optional[int] = None,
                       description: Optional[str] = None) -> dict[str, Any]:
        payload = {"customer_id": customer_id, "contract_id": contract_id, "name": name, "description": description}
        return self._request("POST", "/projects", json=payload)

    def delete_project(self, project_id: int) -> None:
        self._request("DELETE", f"/projects/{project_id}")

    def list_tasks(self, project_id: Optional[int] = None) -> list[dict[str, Any]]:
        params = {"project_id": project_id} if project_id is not None else None
        return self._request("GET", "/tasks", params=params) or []

    def create_task(self, project_id: int, name: str, description: Optional[str] = None,
                    url: Optional[str] = None) -> dict[str, Any]:
        payload = {"project_id": project_id, "name": name, "description": description, "url": url}
        return self._request("POST", "/tasks", json=payload)

    def delete_task(self, task_id: int) -> None:
        self._request("DELETE", f"/tasks/{task_id}")

    # ------------------------------------------------------------------
    # Time entries
    # ------------------------------------------------------------------
    def list_time_entries(self, start_date: Optional[date] = None, end_date: Optional[date] = None, *,
                          task_id: Optional[int] = None, in_progress_only: bool = False) -> list[TimeEntry]:
        params: dict[str, Any] = {}
        if start_date is not None:
            params["start_date"] = start_date.isoformat()
        if end_date is not None:
            params["end_date"] = end_date.isoformat()
        if task_id is not None:
            params["task_id"] = task_id
        if in_progress_only:
            params["in_progress_only"] = "true"
        data = self._request("GET", "/time-entries", params=params) or []
        return [self._parse_entry(item) for item in data]

    def get_time_entry(self, entry_id: int) -> TimeEntry:
        return self._parse_entry(self._request("GET", f"/time-entries/{entry_id}"))

    def get_in_progress_entry(self) -> Optional[TimeEntry]:
        data = self._request("GET", "/time-entries/in-progress")
        return self._parse_entry(data) if data else None

    def create_time_entry(self, task_id: int, start_time: datetime,
                          total_duration_in_hour: float = 0.0) -> TimeEntry:
        payload = {
            "task_id": task_id,
            "start_time": start_time.isoformat(),
            "total_duration_in_hour": total_duration_in_hour,
        }
        return self._parse_entry(self._request("POST", "/time-entries", json=payload))

    def update_time_entry(self, entry_id: int, **changes: Any) -> TimeEntry:
        payload = {key: value.isoformat() if isinstance(value, datetime) else value for key, value in changes.items()}
        return self._parse_entry(self._request("PUT", f"/time-entries/{entry_id}", json=payload))

    def start_time_entry(self, entry_id: int) -> TimeEntry:
        return self._parse_entry(self._request("PUT", f"/time-entries/{entry_id}/start"))

    def stop_time_entry(self, entry_id: int, closed_at: Optional[datetime] = None) -> TimeEntry:
        payload = {"closed_at": closed_at.isoformat()} if closed_at else None
        return self._parse_entry(self._request("PUT", f"/time-entries/{entry_id}/stop", json=payload))

    def delete_time_entry(self, entry_id: int) -> None:
        self._request("DELETE", f"/time-entries/{entry_id}")

    # ------------------------------------------------------------------
    # Reports and exports
    # ------------------------------------------------------------------
    def available_months(self, customer_id: int) -> list[tuple[int, int]]:
        data = self._request("GET", f"/reports/available-months/{customer_id}") or []
        return [(int(item["year"]), int(item["month"])) for item in data]

    def generate_report(self, customer_id: int, year: int, month: int, report_type: str = "timesheet",
                        *, itemized: bool = False) -> dict[str, Any]:
        payload = {
            "customer_id": customer_id,
            "year": year,
            "month": month,
            "report_type": report_type,
            "itemized": itemized,
        }
        return self._request("POST", "/reports/generate", json=payload)

    def export_report(self, customer_id: int, start_date: date, end_date: date, export_format: str,
                      report_type: str = "timesheet", *, itemized: bool = False) -> dict[str, Any]:
        payload = {
            "customer_id": customer_id,
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
            "report_type": report_type,
            "export_format": export_format,
            "itemized": itemized,
        }
        return self._request("POST", "/reports/export", json=payload)

    def download_export(self, export_id: int) -> bytes:
        return self._request("GET", f"/exports/{export_id}")


__all__ = ["ApiClient", "ApiError", "ConcurrentSessionConflict", "NetworkFailure"]
