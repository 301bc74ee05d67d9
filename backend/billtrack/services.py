from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, List, Optional, Tuple

from fastapi import HTTPException, status
from sqlalchemy import and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .config import settings
from .models import Contract, Customer, Project, Task, TimeEntry
from .reports import ReportIndices, ReportSummary, aggregate
from .utils import day_range_utc, ensure_utc, from_db_datetime, month_bounds

logger = logging.getLogger(__name__)

UTC = dt.timezone.utc


def _now() -> dt.datetime:
    return dt.datetime.now(UTC)


# ----------------------------------------------------------------------
# Customers, contracts, projects, tasks
# ----------------------------------------------------------------------
def get_customer(db: Session, user_id: str, customer_id: int) -> Customer:
    customer = (
        db.query(Customer)
        .filter(and_(Customer.id == customer_id, Customer.user_id == user_id))
        .one_or_none()
    )
    if not customer:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Customer not found")
    return customer


def list_customers(db: Session, user_id: str) -> List[Customer]:
    return db.query(Customer).filter(Customer.user_id == user_id).order_by(Customer.name.asc()).all()


def create_customer(db: Session, user_id: str, data: Dict[str, Any]) -> Customer:
    customer = Customer(user_id=user_id, **data)
    db.add(customer)
    db.commit()
    db.refresh(customer)
    return customer


def delete_customer(db: Session, user_id: str, customer_id: int) -> None:
    customer = get_customer(db, user_id, customer_id)
    has_projects = db.query(Project.id).filter(Project.customer_id == customer.id).first()
    if has_projects:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Customer still has projects")
    db.query(Contract).filter(Contract.customer_id == customer.id).delete()
    db.delete(customer)
    db.commit()


def get_contract(db: Session, user_id: str, contract_id: int) -> Contract:
    contract = (
        db.query(Contract)
        .filter(and_(Contract.id == contract_id, Contract.user_id == user_id))
        .one_or_none()
    )
    if not contract:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Contract not found")
    return contract


def list_contracts(db: Session, user_id: str, customer_id: int) -> List[Contract]:
    get_customer(db, user_id, customer_id)
    return (
        db.query(Contract)
        .filter(and_(Contract.customer_id == customer_id, Contract.user_id == user_id))
        .order_by(Contract.start_date.desc())
        .all()
    )


def create_contract(db: Session, user_id: str, customer_id: int, data: Dict[str, Any]) -> Contract:
    get_customer(db, user_id, customer_id)
    contract = Contract(user_id=user_id, customer_id=customer_id, **data)
    db.add(contract)
    db.commit()
    db.refresh(contract)
    return contract


def delete_contract(db: Session, user_id: str, contract_id: int) -> None:
    contract = get_contract(db, user_id, contract_id)
    # Projects fall back to the "no contract" bucket.
    db.query(Project).filter(Project.contract_id == contract.id).update({Project.contract_id: None})
    db.delete(contract)
    db.commit()


def get_project(db: Session, user_id: str, project_id: int) -> Project:
    project = (
        db.query(Project)
        .filter(and_(Project.id == project_id, Project.user_id == user_id))
        .one_or_none()
    )
    if not project:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    return project


def list_projects(db: Session, user_id: str, customer_id: Optional[int] = None) -> List[Project]:
    query = db.query(Project).filter(Project.user_id == user_id)
    if customer_id is not None:
        query = query.filter(Project.customer_id == customer_id)
    return query.order_by(Project.name.asc()).all()


def create_project(db: Session, user_id: str, data: Dict[str, Any]) -> Project:
    customer = get_customer(db, user_id, data["customer_id"])
    contract_id = data.get("contract_id")
    if contract_id is not None:
        contract = get_contract(db, user_id, contract_id)
        if contract.customer_id != customer.id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Contract belongs to another customer",
            )
    project = Project(user_id=user_id, **data)
    db.add(project)
    db.commit()
    db.refresh(project)
    return project


def delete_project(db: Session, user_id: str, project_id: int) -> None:
    project = get_project(db, user_id, project_id)
    db.delete(project)
    db.commit()


def get_task(db: Session, user_id: str, task_id: int) -> Task:
    task = db.query(Task).filter(and_(Task.id == task_id, Task.user_id == user_id)).one_or_none()
    if not task:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    return task


def list_tasks(db: Session, user_id: str, project_id: Optional[int] = None) -> List[Task]:
    query = db.query(Task).filter(Task.user_id == user_id)
    if project_id is not None:
        query = query.filter(Task.project_id == project_id)
    return query.order_by(Task.name.asc()).all()


def create_task(db: Session, user_id: str, data: Dict[str, Any]) -> Task:
    get_project(db, user_id, data["project_id"])
    task = Task(user_id=user_id, **data)
    db.add(task)
    db.commit()
    db.refresh(task)
    return task


def delete_task(db: Session, user_id: str, task_id: int) -> None:
    task = get_task(db, user_id, task_id)
    db.delete(task)
    db.commit()


# ----------------------------------------------------------------------
# Time entries
# ----------------------------------------------------------------------
def get_time_entry(db: Session, user_id: str, entry_id: int) -> TimeEntry:
    entry = (
        db.query(TimeEntry)
        .filter(and_(TimeEntry.id == entry_id, TimeEntry.user_id == user_id))
        .one_or_none()
    )
    if not entry:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Time entry not found")
    return entry


def find_in_progress(db: Session, user_id: str) -> Optional[TimeEntry]:
    return (
        db.query(TimeEntry)
        .filter(and_(TimeEntry.user_id == user_id, TimeEntry.progress_start_time.isnot(None)))
        .order_by(TimeEntry.progress_start_time.desc())
        .first()
    )


def list_time_entries(
    db: Session,
    user_id: str,
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None,
    task_id: Optional[int] = None,
    in_progress_only: bool = False,
) -> List[TimeEntry]:
    query = db.query(TimeEntry).filter(TimeEntry.user_id == user_id)
    if task_id is not None:
        query = query.filter(TimeEntry.task_id == task_id)
    if start_date is not None:
        range_start, _ = day_range_utc(start_date, start_date)
        query = query.filter(TimeEntry.start_time >= range_start)
    if end_date is not None:
        _, range_end = day_range_utc(end_date, end_date)
        query = query.filter(TimeEntry.start_time < range_end)
    if in_progress_only:
        query = query.filter(TimeEntry.progress_start_time.isnot(None))
    return query.order_by(TimeEntry.start_time.desc()).all()


def create_time_entry(
    db: Session,
    user_id: str,
    task_id: int,
    start_time: dt.datetime,
    total_duration_in_hour: float = 0.0,
) -> TimeEntry:
    get_task(db, user_id, task_id)
    entry = TimeEntry(
        user_id=user_id,
        task_id=task_id,
        start_time=ensure_utc(start_time),
        total_duration_in_hour=total_duration_in_hour,
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


def update_time_entry(db: Session, user_id: str, entry_id: int, changes: Dict[str, Any]) -> TimeEntry:
    if changes.get("progress_start_time") is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Use the start and stop endpoints to manage in-progress entries",
        )
    entry = get_time_entry(db, user_id, entry_id)
    if changes.get("task_id") is not None:
        get_task(db, user_id, changes["task_id"])
        entry.task_id = changes["task_id"]
    if changes.get("start_time") is not None:
        entry.start_time = ensure_utc(changes["start_time"])
    if changes.get("total_duration_in_hour") is not None:
        entry.total_duration_in_hour = changes["total_duration_in_hour"]
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


def delete_time_entry(db: Session, user_id: str, entry_id: int) -> None:
    entry = get_time_entry(db, user_id, entry_id)
    db.delete(entry)
    db.commit()


def _session_conflict(existing: TimeEntry) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={
            "message": "You already have a time entry in progress",
            "existing_entry_id": existing.id,
        },
    )


def start_time_entry(db: Session, user_id: str, entry_id: int) -> TimeEntry:
    entry = get_time_entry(db, user_id, entry_id)
    existing = find_in_progress(db, user_id)
    if existing is not None:
        if existing.id == entry.id:
            return entry
        logger.info("Refusing to start entry %s: entry %s is in progress", entry.id, existing.id)
        raise _session_conflict(existing)
    entry.mark_started(_now())
    db.add(entry)
    try:
        db.commit()
    except IntegrityError as exc:
        # Lost a race against a concurrent start for the same user.
        db.rollback()
        existing = find_in_progress(db, user_id)
        if existing is None:
            raise
        raise _session_conflict(existing) from exc
    db.refresh(entry)
    logger.info("Started progress on time entry %s for user %s", entry.id, user_id)
    return entry


def stop_time_entry(
    db: Session,
    user_id: str,
    entry_id: int,
    closed_at: Optional[dt.datetime] = None,
) -> TimeEntry:
    entry = get_time_entry(db, user_id, entry_id)
    if entry.progress_start_time is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Time entry is not in progress")
    entry.mark_stopped(ensure_utc(closed_at) if closed_at else _now())
    db.add(entry)
    db.commit()
    db.refresh(entry)
    logger.info(
        "Stopped time entry %s for user %s at %.4f h", entry.id, user_id, entry.total_duration_in_hour
    )
    return entry


# ----------------------------------------------------------------------
# Reports
# ----------------------------------------------------------------------
def _customer_task_ids(db: Session, user_id: str, customer_id: int) -> List[int]:
    rows = (
        db.query(Task.id)
        .join(Project, Project.id == Task.project_id)
        .filter(and_(Project.customer_id == customer_id, Task.user_id == user_id))
        .all()
    )
    return [row[0] for row in rows]


def available_months(db: Session, user_id: str, customer_id: int) -> List[Dict[str, int]]:
    get_customer(db, user_id, customer_id)
    task_ids = _customer_task_ids(db, user_id, customer_id)
    if not task_ids:
        return []
    start_times = (
        db.query(TimeEntry.start_time)
        .filter(and_(TimeEntry.user_id == user_id, TimeEntry.task_id.in_(task_ids)))
        .all()
    )
    months = set()
    for (start_time,) in start_times:
        value = from_db_datetime(start_time)
        months.add((value.year, value.month))
    return [{"year": year, "month": month} for year, month in sorted(months, reverse=True)]


def load_report_inputs(
    db: Session,
    user_id: str,
    customer_id: int,
    start_date: dt.date,
    end_date: dt.date,
) -> Tuple[List[TimeEntry], ReportIndices]:
    customer = get_customer(db, user_id, customer_id)
    range_start, range_end = day_range_utc(start_date, end_date)
    entries = (
        db.query(TimeEntry)
        .filter(
            and_(
                TimeEntry.user_id == user_id,
                TimeEntry.start_time >= range_start,
                TimeEntry.start_time < range_end,
            )
        )
        .order_by(TimeEntry.start_time.asc())
        .all()
    )
    indices = ReportIndices.from_records(
        tasks=db.query(Task).filter(Task.user_id == user_id).all(),
        projects=db.query(Project).filter(Project.user_id == user_id).all(),
        contracts=db.query(Contract).filter(Contract.customer_id == customer.id).all(),
        customers=[customer],
    )
    return entries, indices


def build_report(
    db: Session,
    user_id: str,
    customer_id: int,
    start_date: dt.date,
    end_date: dt.date,
    report_type: str,
    itemized: bool = False,
) -> ReportSummary:
    if end_date >= start_date:
        entries, indices = load_report_inputs(db, user_id, customer_id, start_date, end_date)
    else:
        # Let the aggregator reject the window before any query runs.
        entries, indices = [], ReportIndices()
    return aggregate(
        entries,
        indices,
        customer_id,
        start_date,
        end_date,
        report_type,
        hours_per_day=settings.hours_per_day,
        itemized=itemized,
    )


def generate_monthly_report(
    db: Session,
    user_id: str,
    customer_id: int,
    year: int,
    month: int,
    report_type: str,
    itemized: bool = False,
) -> ReportSummary:
    start_date, end_date = month_bounds(year, month)
    return build_report(db, user_id, customer_id, start_date, end_date, report_type, itemized)
