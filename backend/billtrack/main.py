from __future__ import annotations

import datetime as dt
import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from sqlalchemy.orm import Session

from . import models
from .config import settings
from .database import engine, get_db
from .exports import MEDIA_TYPES, export_report, list_exports, resolve_export
from .middleware import RequestLogMiddleware
from .reports import InvalidRange
from .schemas import (
    AvailableMonthResponse,
    ContractCreateRequest,
    ContractResponse,
    CustomerCreateRequest,
    CustomerResponse,
    ExportResponse,
    ProjectCreateRequest,
    ProjectResponse,
    ReportExportRequest,
    ReportGenerateRequest,
    ReportSummaryResponse,
    TaskCreateRequest,
    TaskResponse,
    TimeEntryCreateRequest,
    TimeEntryResponse,
    TimeEntryStopRequest,
    TimeEntryUpdateRequest,
)
from .services import (
    available_months,
    build_report,
    create_contract,
    create_customer,
    create_project,
    create_task,
    create_time_entry,
    delete_contract,
    delete_customer,
    delete_project,
    delete_task,
    delete_time_entry,
    find_in_progress,
    generate_monthly_report,
    get_customer,
    get_time_entry,
    list_contracts,
    list_customers,
    list_projects,
    list_tasks,
    list_time_entries,
    start_time_entry,
    stop_time_entry,
    update_time_entry,
)

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

models.Base.metadata.create_all(bind=engine)

app = FastAPI(title=settings.app_name)
app.add_middleware(RequestLogMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(InvalidRange)
def invalid_range_handler(request: Request, exc: InvalidRange) -> JSONResponse:
    return JSONResponse({"detail": str(exc)}, status_code=status.HTTP_400_BAD_REQUEST)


def current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Identity is established upstream; the header names the acting user."""
    return (x_user_id or "").strip() or settings.default_user_id


def _export_response(export: models.ExportRecord) -> ExportResponse:
    return ExportResponse(
        id=export.id,
        type=export.type,
        format=export.format,
        range_start=export.range_start,
        range_end=export.range_end,
        created_at=export.created_at,
        file_url=f"/exports/{export.id}",
    )


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


# ----------------------------------------------------------------------
# Customers / contracts / projects / tasks
# ----------------------------------------------------------------------
@app.get("/customers", response_model=list[CustomerResponse])
def get_customers(user_id: str = Depends(current_user_id), db: Session = Depends(get_db)) -> list[CustomerResponse]:
    return list_customers(db, user_id)


@app.post("/customers", response_model=CustomerResponse, status_code=status.HTTP_201_CREATED)
def post_customer(
    payload: CustomerCreateRequest,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
) -> CustomerResponse:
    return create_customer(db, user_id, payload.model_dump())


@app.get("/customers/{customer_id}", response_model=CustomerResponse)
def read_customer(
    customer_id: int, user_id: str = Depends(current_user_id), db: Session = Depends(get_db)
) -> CustomerResponse:
    return get_customer(db, user_id, customer_id)


@app.delete("/customers/{customer_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_customer(
    customer_id: int, user_id: str = Depends(current_user_id), db: Session = Depends(get_db)
) -> Response:
    delete_customer(db, user_id, customer_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/customers/{customer_id}/contracts", response_model=list[ContractResponse])
def get_contracts(
    customer_id: int, user_id: str = Depends(current_user_id), db: Session = Depends(get_db)
) -> list[ContractResponse]:
    return list_contracts(db, user_id, customer_id)


@app.post(
    "/customers/{customer_id}/contracts",
    response_model=ContractResponse,
    status_code=status.HTTP_201_CREATED,
)
def post_contract(
    customer_id: int,
    payload: ContractCreateRequest,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
) -> ContractResponse:
    return create_contract(db, user_id, customer_id, payload.model_dump())


@app.delete("/contracts/{contract_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_contract(
    contract_id: int, user_id: str = Depends(current_user_id), db: Session = Depends(get_db)
) -> Response:
    delete_contract(db, user_id, contract_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/projects", response_model=list[ProjectResponse])
def get_projects(
    customer_id: Optional[int] = None,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
) -> list[ProjectResponse]:
    return list_projects(db, user_id, customer_id)


@app.post("/projects", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
def post_project(
    payload: ProjectCreateRequest,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
) -> ProjectResponse:
    return create_project(db, user_id, payload.model_dump())


@app.delete("/projects/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_project(
    project_id: int, user_id: str = Depends(current_user_id), db: Session = Depends(get_db)
) -> Response:
    delete_project(db, user_id, project_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/tasks", response_model=list[TaskResponse])
def get_tasks(
    project_id: Optional[int] = None,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
) -> list[TaskResponse]:
    return list_tasks(db, user_id, project_id)


@app.post("/tasks", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
def post_task(
    payload: TaskCreateRequest,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
) -> TaskResponse:
    return create_task(db, user_id, payload.model_dump())


@app.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_task(task_id: int, user_id: str = Depends(current_user_id), db: Session = Depends(get_db)) -> Response:
    delete_task(db, user_id, task_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ----------------------------------------------------------------------
# Time entries
# ----------------------------------------------------------------------
@app.get("/time-entries", response_model=list[TimeEntryResponse])
def get_time_entries(
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None,
    task_id: Optional[int] = None,
    in_progress_only: bool = False,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
) -> list[TimeEntryResponse]:
    return list_time_entries(db, user_id, start_date, end_date, task_id, in_progress_only)


@app.get("/time-entries/in-progress", response_model=Optional[TimeEntryResponse])
def get_in_progress_entry(
    user_id: str = Depends(current_user_id), db: Session = Depends(get_db)
) -> Optional[TimeEntryResponse]:
    return find_in_progress(db, user_id)


@app.get("/time-entries/{entry_id}", response_model=TimeEntryResponse)
def get_single_time_entry(
    entry_id: int, user_id: str = Depends(current_user_id), db: Session = Depends(get_db)
) -> TimeEntryResponse:
    return get_time_entry(db, user_id, entry_id)


@app.post("/time-entries", response_model=TimeEntryResponse, status_code=status.HTTP_201_CREATED)
def post_time_entry(
    payload: TimeEntryCreateRequest,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
) -> TimeEntryResponse:
    return create_time_entry(db, user_id, payload.task_id, payload.start_time, payload.total_duration_in_hour)


@app.put("/time-entries/{entry_id}", response_model=TimeEntryResponse)
def put_time_entry(
    entry_id: int,
    payload: TimeEntryUpdateRequest,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
) -> TimeEntryResponse:
    changes = payload.model_dump(exclude_unset=True)
    changes.update(payload.model_extra or {})
    return update_time_entry(db, user_id, entry_id, changes)


@app.put("/time-entries/{entry_id}/start", response_model=TimeEntryResponse)
def put_time_entry_start(
    entry_id: int, user_id: str = Depends(current_user_id), db: Session = Depends(get_db)
) -> TimeEntryResponse:
    return start_time_entry(db, user_id, entry_id)


@app.put("/time-entries/{entry_id}/stop", response_model=TimeEntryResponse)
def put_time_entry_stop(
    entry_id: int,
    payload: Optional[TimeEntryStopRequest] = None,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
) -> TimeEntryResponse:
    closed_at = payload.closed_at if payload else None
    return stop_time_entry(db, user_id, entry_id, closed_at)


@app.delete("/time-entries/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_time_entry(
    entry_id: int, user_id: str = Depends(current_user_id), db: Session = Depends(get_db)
) -> Response:
    delete_time_entry(db, user_id, entry_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ----------------------------------------------------------------------
# Reports and exports
# ----------------------------------------------------------------------
@app.get("/reports/available-months/{customer_id}", response_model=list[AvailableMonthResponse])
def get_available_months(
    customer_id: int, user_id: str = Depends(current_user_id), db: Session = Depends(get_db)
) -> list[AvailableMonthResponse]:
    return available_months(db, user_id, customer_id)


@app.post("/reports/generate", response_model=ReportSummaryResponse)
def post_generate_report(
    payload: ReportGenerateRequest,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
) -> ReportSummaryResponse:
    summary = generate_monthly_report(
        db, user_id, payload.customer_id, payload.year, payload.month, payload.report_type, payload.itemized
    )
    return ReportSummaryResponse.model_validate(summary)


@app.post("/reports/export", response_model=ExportResponse, status_code=status.HTTP_201_CREATED)
def post_export_report(
    payload: ReportExportRequest,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
) -> ExportResponse:
    summary = build_report(
        db,
        user_id,
        payload.customer_id,
        payload.start_date,
        payload.end_date,
        payload.report_type,
        payload.itemized,
    )
    export = export_report(db, user_id, summary, payload.export_format)
    return _export_response(export)


@app.get("/exports", response_model=list[ExportResponse])
def get_exports(user_id: str = Depends(current_user_id), db: Session = Depends(get_db)) -> list[ExportResponse]:
    return [_export_response(export) for export in list_exports(db, user_id)]


@app.get("/exports/{export_id}")
def download_export(
    export_id: int, user_id: str = Depends(current_user_id), db: Session = Depends(get_db)
) -> Response:
    export, path = resolve_export(db, user_id, export_id)
    return FileResponse(path, media_type=MEDIA_TYPES[export.format], filename=path.name)
