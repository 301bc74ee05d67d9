from __future__ import annotations

import csv
import datetime as dt
import hashlib
import logging
import uuid
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from fastapi import HTTPException, status
from openpyxl import Workbook
from openpyxl.styles import Font
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import cm
from reportlab.pdfgen import canvas
from sqlalchemy import and_
from sqlalchemy.orm import Session

from .config import settings
from .models import ExportRecord
from .reports import ReportSummary
from .utils import format_currency, round_hours

logger = logging.getLogger(__name__)

EXPORT_SUFFIXES: Dict[str, str] = {"excel": "xlsx", "csv": "csv", "pdf": "pdf"}

MEDIA_TYPES: Dict[str, str] = {
    "excel": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "csv": "text/csv",
    "pdf": "application/pdf",
}

ROW_HEADERS = ["Level", "Name", "Hours", "Cost"]

Row = Tuple[str, str, float, Optional[float]]


def _report_rows(summary: ReportSummary) -> Iterator[Row]:
    for contract in summary.contracts:
        yield ("Contract", contract.contract_name, contract.total_hours, contract.total_cost)
        for project in contract.projects:
            yield ("Project", project.project_name, project.total_hours, project.total_cost)
            for task in project.tasks:
                yield ("Task", task.task_name, task.total_hours, task.total_cost)
    yield ("Total", "", summary.total_hours, summary.total_cost)
    if summary.total_cost is None and summary.cost_by_currency:
        # Mixed currencies get one subtotal row per currency instead of a grand total.
        for currency, cost in summary.cost_by_currency.items():
            hours = sum(contract.total_hours for contract in summary.contracts if contract.currency == currency)
            yield ("Total", currency, hours, cost)


def _title(summary: ReportSummary) -> str:
    kind = "Invoice" if summary.report_type == "invoice" else "Timesheet"
    return f"{kind} {summary.customer_name} {summary.start_date.isoformat()} to {summary.end_date.isoformat()}"


def _cost_cell(value: Optional[float]) -> Optional[float]:
    return round(value, 2) if value is not None else None


def _write_xlsx(path: Path, summary: ReportSummary) -> None:
    wb = Workbook()
    ws = wb.active
    ws.title = "Report"
    ws.append([_title(summary)])
    ws["A1"].font = Font(bold=True, size=14)
    ws.append(["Days in period", summary.total_days])
    ws.append([])
    ws.append(ROW_HEADERS)
    for cell in ws[4]:
        cell.font = Font(bold=True)
    for level, name, hours, cost in _report_rows(summary):
        ws.append([level, name, round_hours(hours), _cost_cell(cost)])

    contracts = wb.create_sheet("Contracts")
    contracts.append(["Contract", "Daily rate", "Currency", "Hours", "Cost"])
    for contract in summary.contracts:
        contracts.append(
            [
                contract.contract_name,
                contract.daily_rate,
                contract.currency,
                round_hours(contract.total_hours),
                _cost_cell(contract.total_cost),
            ]
        )
    wb.save(path)


def _write_csv(path: Path, summary: ReportSummary) -> None:
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(ROW_HEADERS)
        for level, name, hours, cost in _report_rows(summary):
            writer.writerow([level, name, f"{hours:.2f}", "" if cost is None else f"{cost:.2f}"])


def _write_pdf(path: Path, summary: ReportSummary) -> None:
    pdf = canvas.Canvas(str(path), pagesize=A4)
    width, height = A4
    y = height - 2 * cm
    title = _title(summary)
    pdf.setTitle(title)
    pdf.setFont("Helvetica-Bold", 16)
    pdf.drawString(2 * cm, y, title)
    y -= 1.2 * cm
    pdf.setFont("Helvetica", 11)
    contract_currencies = iter([contract.currency for contract in summary.contracts])
    current_currency: Optional[str] = None
    indent = {"Contract": 0, "Project": 0.6 * cm, "Task": 1.2 * cm, "Total": 0}
    for level, name, hours, cost in _report_rows(summary):
        if level == "Contract":
            current_currency = next(contract_currencies)
            pdf.setFont("Helvetica-Bold", 11)
        elif level == "Total":
            pdf.setFont("Helvetica-Bold", 12)
            current_currency = name or summary.currency
            name = f"Total {name}" if name else "Total"
        else:
            pdf.setFont("Helvetica", 11)
        pdf.drawString(2 * cm + indent[level], y, name)
        pdf.drawRightString(width - 6 * cm, y, f"{hours:.2f} h")
        if cost is not None:
            pdf.drawRightString(width - 2 * cm, y, format_currency(cost, current_currency))
        y -= 0.7 * cm
        if y < 2 * cm:
            pdf.showPage()
            y = height - 2 * cm
            pdf.setFont("Helvetica", 11)
    pdf.save()


def _checksum_file(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            digest.update(chunk)
    return digest.hexdigest()


WRITERS = {"excel": _write_xlsx, "csv": _write_csv, "pdf": _write_pdf}


def export_report(
    db: Session,
    user_id: str,
    summary: ReportSummary,
    export_format: str,
) -> ExportRecord:
    if export_format not in WRITERS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unsupported export format")

    timestamp = int(dt.datetime.now(dt.timezone.utc).timestamp())
    filename = (
        f"{summary.report_type}_{summary.customer_id}_{summary.start_date}_{summary.end_date}"
        f"_{timestamp}_{uuid.uuid4().hex[:8]}.{EXPORT_SUFFIXES[export_format]}"
    )
    path = settings.export_dir / filename
    WRITERS[export_format](path, summary)

    export = ExportRecord(
        user_id=user_id,
        customer_id=summary.customer_id,
        type=summary.report_type,
        format=export_format,
        range_start=summary.start_date,
        range_end=summary.end_date,
        path=str(path),
        checksum=_checksum_file(path),
    )
    db.add(export)
    db.commit()
    db.refresh(export)
    logger.info("Wrote %s export %s to %s", export_format, export.id, path)
    return export


def resolve_export(db: Session, user_id: str, export_id: int) -> Tuple[ExportRecord, Path]:
    export = (
        db.query(ExportRecord)
        .filter(and_(ExportRecord.id == export_id, ExportRecord.user_id == user_id))
        .one_or_none()
    )
    if not export:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Export not found")
    path = Path(export.path)
    if not path.exists():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Export file missing")
    return export, path


def list_exports(db: Session, user_id: str) -> List[ExportRecord]:
    return (
        db.query(ExportRecord)
        .filter(ExportRecord.user_id == user_id)
        .order_by(ExportRecord.created_at.desc())
        .all()
    )
