from __future__ import annotations

import datetime as dt

from sqlalchemy import Column, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


UTC = dt.timezone.utc

SECONDS_PER_HOUR = 3600


def _as_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(100), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    address = Column(Text, nullable=True)
    email = Column(String(200), nullable=True)
    daily_rate = Column(Float, nullable=False, default=0.0)
    currency = Column(String(10), nullable=False, default="EUR")
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class Contract(Base):
    __tablename__ = "contracts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(100), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    daily_rate = Column(Float, nullable=False)
    currency = Column(String(10), nullable=False, default="EUR")
    days_to_completion = Column(Float, nullable=False, default=0.0)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class Project(Base):
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(100), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    contract_id = Column(Integer, ForeignKey("contracts.id"), nullable=True, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(100), nullable=False, index=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    url = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class TimeEntry(Base):
    __tablename__ = "time_entries"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(100), nullable=False, index=True)
    # No FK constraint: entries outlive deleted tasks and are dropped from reports.
    task_id = Column(Integer, nullable=False, index=True)
    start_time = Column(DateTime(timezone=True), nullable=False, index=True)
    total_duration_in_hour = Column(Float, nullable=False, default=0.0)
    progress_start_time = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index(
            "uq_time_entries_user_in_progress",
            "user_id",
            unique=True,
            sqlite_where=progress_start_time.isnot(None),
        ),
    )

    @property
    def in_progress(self) -> bool:
        return self.progress_start_time is not None

    def mark_started(self, now: dt.datetime) -> None:
        if self.progress_start_time is not None:
            return
        self.progress_start_time = _as_utc(now)

    def mark_stopped(self, now: dt.datetime) -> None:
        if self.progress_start_time is None:
            return
        normalized_now = _as_utc(now)
        progress_start = _as_utc(self.progress_start_time)
        delta = (normalized_now - progress_start).total_seconds()
        self.total_duration_in_hour = (self.total_duration_in_hour or 0.0) + max(delta, 0.0) / SECONDS_PER_HOUR
        self.progress_start_time = None


class ExportRecord(Base):
    __tablename__ = "exports"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(100), nullable=False, index=True)
    customer_id = Column(Integer, nullable=False)
    type = Column(String(20), nullable=False)
    format = Column(String(10), nullable=False)
    range_start = Column(Date, nullable=False)
    range_end = Column(Date, nullable=False)
    path = Column(String(255), nullable=False)
    checksum = Column(String(128), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
