"""Folding of flat time entries into per-customer report trees.

The aggregation is a pure function: it reads entry and domain snapshots, does
no I/O and never mutates its inputs. Records may be ORM instances, dataclasses
or plain mappings; only attribute/key access is used.

Tree shape::

    ReportSummary
      -> ContractTimeData   (one per contract, plus a "no contract" bucket)
        -> ProjectTimeData
          -> TaskTimeData
            -> EntryTimeData
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from typing_extensions import Literal

from .utils import ensure_utc, hourly_rate

logger = logging.getLogger(__name__)

ReportType = Literal["timesheet", "invoice"]
REPORT_TYPES: Tuple[str, ...] = ("timesheet", "invoice")

DEFAULT_HOURS_PER_DAY = 8.0
DEFAULT_CURRENCY = "EUR"
NO_CONTRACT_NAME = "No contract"


class InvalidRange(ValueError):
    """Report window whose end lies before its start."""

    def __init__(self, start_date: dt.date, end_date: dt.date) -> None:
        super().__init__(f"End date {end_date.isoformat()} lies before start date {start_date.isoformat()}")
        self.start_date = start_date
        self.end_date = end_date


@dataclass(frozen=True)
class OrphanedReference:
    """A reference that no longer resolves and was left out of a report."""

    kind: str
    reference_id: Any
    entry_id: Any = None


@dataclass(frozen=True)
class EntryTimeData:
    entry_id: Any
    start_time: dt.datetime
    total_hours: float
    total_cost: Optional[float] = None

    @property
    def children(self) -> Tuple[()]:
        return ()


@dataclass(frozen=True)
class TaskTimeData:
    task_id: Any
    task_name: str
    total_hours: float
    entries: Tuple[EntryTimeData, ...] = ()
    total_cost: Optional[float] = None

    @property
    def children(self) -> Tuple[EntryTimeData, ...]:
        return self.entries


@dataclass(frozen=True)
class ProjectTimeData:
    project_id: Any
    project_name: str
    total_hours: float
    tasks: Tuple[TaskTimeData, ...] = ()
    total_cost: Optional[float] = None

    @property
    def children(self) -> Tuple[TaskTimeData, ...]:
        return self.tasks


@dataclass(frozen=True)
class ContractTimeData:
    contract_id: Any
    contract_name: str
    daily_rate: float
    currency: str
    total_hours: float
    projects: Tuple[ProjectTimeData, ...] = ()
    total_cost: Optional[float] = None

    @property
    def children(self) -> Tuple[ProjectTimeData, ...]:
        return self.projects


@dataclass(frozen=True)
class ReportSummary:
    report_type: str
    customer_id: Any
    customer_name: str
    customer_address: Optional[str]
    start_date: dt.date
    end_date: dt.date
    generated_at: dt.datetime
    total_days: int
    total_hours: float
    total_cost: Optional[float] = None
    entry_count: int = 0
    contracts: Tuple[ContractTimeData, ...] = ()
    orphans: Tuple[OrphanedReference, ...] = ()

    @property
    def children(self) -> Tuple[ContractTimeData, ...]:
        return self.contracts

    @property
    def orphaned_count(self) -> int:
        return len(self.orphans)

    @property
    def currency(self) -> Optional[str]:
        """The one currency all contract buckets share, if any."""
        currencies = {contract.currency for contract in self.contracts}
        return currencies.pop() if len(currencies) == 1 else None

    @property
    def cost_by_currency(self) -> Dict[str, float]:
        totals: Dict[str, float] = {}
        for contract in self.contracts:
            if contract.total_cost is not None:
                totals[contract.currency] = totals.get(contract.currency, 0.0) + contract.total_cost
        return totals


@dataclass(frozen=True)
class ReportIndices:
    """Read-only id lookups for the domain records a report may touch."""

    tasks: Mapping[Any, Any] = field(default_factory=dict)
    projects: Mapping[Any, Any] = field(default_factory=dict)
    contracts: Mapping[Any, Any] = field(default_factory=dict)
    customers: Mapping[Any, Any] = field(default_factory=dict)

    @classmethod
    def from_records(
        cls,
        tasks: Iterable[Any] = (),
        projects: Iterable[Any] = (),
        contracts: Iterable[Any] = (),
        customers: Iterable[Any] = (),
    ) -> "ReportIndices":
        return cls(
            tasks={_get(task, "id"): task for task in tasks},
            projects={_get(project, "id"): project for project in projects},
            contracts={_get(contract, "id"): contract for contract in contracts},
            customers={_get(customer, "id"): customer for customer in customers},
        )


@dataclass(frozen=True)
class _Billing:
    key: Any
    contract_id: Any
    name: str
    daily_rate: float
    currency: str


def _get(record: Any, name: str, default: Any = None) -> Any:
    if isinstance(record, Mapping):
        return record.get(name, default)
    return getattr(record, name, default)


def _no_contract_billing(customer: Any) -> _Billing:
    # Unbilled projects fall back to the customer's own billing rate.
    daily_rate = _get(customer, "daily_rate") if customer is not None else None
    currency = _get(customer, "currency") if customer is not None else None
    return _Billing(
        key=None,
        contract_id=None,
        name=NO_CONTRACT_NAME,
        daily_rate=float(daily_rate or 0.0),
        currency=currency or DEFAULT_CURRENCY,
    )


def _contract_billing(
    project: Any,
    indices: ReportIndices,
    customer: Any,
    orphans: List[OrphanedReference],
) -> _Billing:
    inline = _get(project, "contract")
    if inline is not None and _get(inline, "daily_rate") is not None:
        inline_id = _get(inline, "id")
        name = _get(inline, "name") or ""
        daily_rate = float(_get(inline, "daily_rate"))
        currency = _get(inline, "currency") or DEFAULT_CURRENCY
        # Id-less summaries group by their billing terms, never with the no-contract bucket.
        key = inline_id if inline_id is not None else ("inline", name, daily_rate, currency)
        return _Billing(key=key, contract_id=inline_id, name=name, daily_rate=daily_rate, currency=currency)
    contract_id = _get(project, "contract_id")
    if contract_id is None:
        return _no_contract_billing(customer)
    contract = indices.contracts.get(contract_id)
    if contract is None:
        orphans.append(OrphanedReference(kind="contract", reference_id=contract_id))
        return _no_contract_billing(customer)
    return _Billing(
        key=contract_id,
        contract_id=contract_id,
        name=_get(contract, "name") or "",
        daily_rate=float(_get(contract, "daily_rate") or 0.0),
        currency=_get(contract, "currency") or DEFAULT_CURRENCY,
    )


def aggregate(
    entries: Iterable[Any],
    indices: ReportIndices,
    customer_id: Any,
    start_date: dt.date,
    end_date: dt.date,
    report_type: str = "timesheet",
    *,
    hours_per_day: float = DEFAULT_HOURS_PER_DAY,
    itemized: bool = False,
    generated_at: Optional[dt.datetime] = None,
) -> ReportSummary:
    """Build the report tree for one customer and an inclusive day window.

    Entries are attributed by the UTC calendar day of their ``start_time``.
    Grouping keeps the order in which tasks, projects and contracts are first
    encountered. Invoice reports price each contract bucket at
    ``total_hours * daily_rate / hours_per_day``; with ``itemized`` the same
    hourly rate is also applied to projects, tasks and entries. Timesheet
    reports leave every cost field as ``None``. When contract buckets bill in
    different currencies the invoice ``total_cost`` is ``None`` and the
    per-currency sums are available from ``ReportSummary.cost_by_currency``.

    Orphans are collected per user rather than per customer: an entry whose
    task no longer resolves cannot be tied to any customer, so it is counted
    for every report built from the same entry list.
    """
    if end_date < start_date:
        raise InvalidRange(start_date, end_date)
    if report_type not in REPORT_TYPES:
        raise ValueError(f"Unknown report type: {report_type}")

    invoice = report_type == "invoice"
    customer = indices.customers.get(customer_id)
    orphans: List[OrphanedReference] = []

    entries_by_task: Dict[Any, List[Tuple[Any, dt.datetime, float]]] = {}
    for entry in entries:
        start_time = ensure_utc(_get(entry, "start_time"))
        if not start_date <= start_time.date() <= end_date:
            continue
        entry_id = _get(entry, "id")
        task_id = _get(entry, "task_id")
        task = indices.tasks.get(task_id)
        if task is None:
            orphans.append(OrphanedReference(kind="task", reference_id=task_id, entry_id=entry_id))
            continue
        project_id = _get(task, "project_id")
        project = indices.projects.get(project_id)
        if project is None:
            orphans.append(OrphanedReference(kind="project", reference_id=project_id, entry_id=entry_id))
            continue
        if _get(project, "customer_id") != customer_id:
            continue
        hours = float(_get(entry, "total_duration_in_hour") or 0.0)
        entries_by_task.setdefault(task_id, []).append((entry_id, start_time, hours))

    tasks_by_project: Dict[Any, List[Any]] = {}
    for task_id in entries_by_task:
        tasks_by_project.setdefault(_get(indices.tasks[task_id], "project_id"), []).append(task_id)

    billing_by_key: Dict[Any, _Billing] = {}
    projects_by_contract: Dict[Any, List[Any]] = {}
    for project_id in tasks_by_project:
        billing = _contract_billing(indices.projects[project_id], indices, customer, orphans)
        billing_by_key.setdefault(billing.key, billing)
        projects_by_contract.setdefault(billing.key, []).append(project_id)

    contracts: List[ContractTimeData] = []
    for key, project_ids in projects_by_contract.items():
        billing = billing_by_key[key]
        rate = hourly_rate(billing.daily_rate, hours_per_day)

        def _item_cost(hours: float) -> Optional[float]:
            return hours * rate if invoice and itemized else None

        projects: List[ProjectTimeData] = []
        for project_id in project_ids:
            tasks: List[TaskTimeData] = []
            for task_id in tasks_by_project[project_id]:
                entry_rows = tuple(
                    EntryTimeData(
                        entry_id=entry_id,
                        start_time=start_time,
                        total_hours=hours,
                        total_cost=_item_cost(hours),
                    )
                    for entry_id, start_time, hours in entries_by_task[task_id]
                )
                task_hours = sum(row.total_hours for row in entry_rows)
                tasks.append(
                    TaskTimeData(
                        task_id=task_id,
                        task_name=_get(indices.tasks[task_id], "name") or "",
                        total_hours=task_hours,
                        entries=entry_rows,
                        total_cost=_item_cost(task_hours),
                    )
                )
            project_hours = sum(task.total_hours for task in tasks)
            projects.append(
                ProjectTimeData(
                    project_id=project_id,
                    project_name=_get(indices.projects[project_id], "name") or "",
                    total_hours=project_hours,
                    tasks=tuple(tasks),
                    total_cost=_item_cost(project_hours),
                )
            )
        contract_hours = sum(project.total_hours for project in projects)
        contracts.append(
            ContractTimeData(
                contract_id=billing.contract_id,
                contract_name=billing.name,
                daily_rate=billing.daily_rate,
                currency=billing.currency,
                total_hours=contract_hours,
                projects=tuple(projects),
                total_cost=contract_hours * rate if invoice else None,
            )
        )

    if orphans:
        logger.warning(
            "Report for customer %s left out %d unresolved reference(s)", customer_id, len(orphans)
        )

    total_hours = sum((contract.total_hours for contract in contracts), 0.0)
    total_cost: Optional[float] = None
    # Amounts in different currencies are never added up.
    if invoice and len({contract.currency for contract in contracts}) <= 1:
        total_cost = sum(((contract.total_cost or 0.0) for contract in contracts), 0.0)

    return ReportSummary(
        report_type=report_type,
        customer_id=customer_id,
        customer_name=(_get(customer, "name") or "") if customer is not None else "",
        customer_address=_get(customer, "address") if customer is not None else None,
        start_date=start_date,
        end_date=end_date,
        generated_at=generated_at or dt.datetime.now(dt.timezone.utc),
        total_days=end_date.day,
        total_hours=total_hours,
        total_cost=total_cost,
        entry_count=sum(len(rows) for rows in entries_by_task.values()),
        contracts=tuple(contracts),
        orphans=tuple(orphans),
    )
