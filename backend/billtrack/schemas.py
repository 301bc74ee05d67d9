from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List, Optional

from typing_extensions import Literal

from pydantic import BaseModel, ConfigDict, Field, model_serializer, model_validator


def _serialize_datetime(value: dt.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    else:
        value = value.astimezone(dt.timezone.utc)
    return value.isoformat()


class CustomerCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    address: Optional[str] = None
    email: Optional[str] = None
    daily_rate: float = Field(default=0.0, ge=0)
    currency: str = "EUR"


class CustomerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    name: str
    address: Optional[str]
    email: Optional[str]
    daily_rate: float
    currency: str


class ContractCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    start_date: dt.date
    end_date: dt.date
    daily_rate: float = Field(ge=0)
    currency: str = "EUR"
    days_to_completion: float = Field(default=0.0, ge=0)
    description: Optional[str] = None

    @model_validator(mode="after")
    def _check_dates(self) -> "ContractCreateRequest":
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class ContractResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    customer_id: int
    name: str
    start_date: dt.date
    end_date: dt.date
    daily_rate: float
    currency: str
    days_to_completion: float
    description: Optional[str]


class ProjectCreateRequest(BaseModel):
    customer_id: int
    contract_id: Optional[int] = None
    name: str = Field(min_length=1)
    description: Optional[str] = None


class ProjectResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    customer_id: int
    contract_id: Optional[int]
    name: str
    description: Optional[str]


class TaskCreateRequest(BaseModel):
    project_id: int
    name: str = Field(min_length=1)
    description: Optional[str] = None
    url: Optional[str] = None


class TaskResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    project_id: int
    name: str
    description: Optional[str]
    url: Optional[str]


class TimeEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    user_id: str
    task_id: int
    start_time: dt.datetime
    total_duration_in_hour: float
    progress_start_time: Optional[dt.datetime]

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "task_id": self.task_id,
            "start_time": _serialize_datetime(self.start_time),
            "total_duration_in_hour": self.total_duration_in_hour,
            "progress_start_time": _serialize_datetime(self.progress_start_time)
            if self.progress_start_time
            else None,
        }


class TimeEntryCreateRequest(BaseModel):
    task_id: int
    start_time: dt.datetime
    total_duration_in_hour: float = Field(default=0.0, ge=0)


class TimeEntryUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="allow")
    task_id: Optional[int] = None
    start_time: Optional[dt.datetime] = None
    total_duration_in_hour: Optional[float] = Field(default=None, ge=0)


class TimeEntryStopRequest(BaseModel):
    closed_at: Optional[dt.datetime] = None


class AvailableMonthResponse(BaseModel):
    year: int
    month: int


class ReportGenerateRequest(BaseModel):
    customer_id: int
    year: int = Field(ge=2000, le=2100)
    month: int = Field(ge=1, le=12)
    report_type: Literal["timesheet", "invoice"] = "timesheet"
    itemized: bool = False


class ReportExportRequest(BaseModel):
    customer_id: int
    start_date: dt.date
    end_date: dt.date
    report_type: Literal["timesheet", "invoice"] = "timesheet"
    export_format: Literal["excel", "csv", "pdf"] = "excel"
    itemized: bool = False


class EntryTimeDataResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    entry_id: int
    start_time: dt.datetime
    total_hours: float
    total_cost: Optional[float] = None


class TaskTimeDataResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    task_id: int
    task_name: str
    total_hours: float
    total_cost: Optional[float] = None
    entries: List[EntryTimeDataResponse] = Field(default_factory=list)


class ProjectTimeDataResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    project_id: int
    project_name: str
    total_hours: float
    total_cost: Optional[float] = None
    tasks: List[TaskTimeDataResponse] = Field(default_factory=list)


class ContractTimeDataResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    contract_id: Optional[int]
    contract_name: str
    daily_rate: float
    currency: str
    total_hours: float
    total_cost: Optional[float] = None
    projects: List[ProjectTimeDataResponse] = Field(default_factory=list)


class ReportSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    report_type: str
    customer_id: int
    customer_name: str
    customer_address: Optional[str]
    start_date: dt.date
    end_date: dt.date
    generated_at: dt.datetime
    total_days: int
    total_hours: float
    total_cost: Optional[float] = None
    currency: Optional[str] = None
    cost_by_currency: Dict[str, float] = Field(default_factory=dict)
    entry_count: int
    orphaned_count: int
    contracts: List[ContractTimeDataResponse] = Field(default_factory=list)


class ExportResponse(BaseModel):
    id: int
    type: str
    format: str
    range_start: dt.date
    range_end: dt.date
    created_at: dt.datetime
    file_url: str

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "format": self.format,
            "range_start": self.range_start.isoformat(),
            "range_end": self.range_end.isoformat(),
            "created_at": _serialize_datetime(self.created_at),
            "file_url": self.file_url,
        }
