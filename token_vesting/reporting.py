"""
Reporting Module

Read-side views for dashboards: per-schedule views with derived amounts,
aggregate dashboard totals and an admin overview. Schedule records may be
served from a short-lived cache; the clock is always sampled fresh.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple
import threading
import time

from .amounts import normalize_address
from .calculator import (
    get_vested_amount, get_releasable_amount, get_status,
    get_next_release_date, calculate_progress
)
from .events import EventPayload
from .ledger import ScheduleLedger
from .schedules import VestingSchedule, ScheduleStatus


@dataclass
class ScheduleView:
    """A schedule together with everything derived from it at one instant"""
    schedule: VestingSchedule
    as_of: int
    vested_amount: int
    releasable_amount: int
    progress: int
    status: ScheduleStatus
    next_release_date: Optional[int]

    @property
    def beneficiary(self) -> str:
        return self.schedule.beneficiary

    def to_dict(self) -> Dict[str, Any]:
        result = self.schedule.to_public_dict()
        result.update({
            "as_of": self.as_of,
            "vested_amount": str(self.vested_amount),
            "releasable_amount": str(self.releasable_amount),
            "progress": self.progress,
            "status": self.status.value,
            "next_release_date": self.next_release_date
        })
        return result


@dataclass
class DashboardSummary:
    """Totals across a set of schedule views"""
    total_vested: int
    total_released: int
    total_available: int
    active_schedules: int
    completed_schedules: int
    next_release_date: Optional[int]
    schedule_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_vested": str(self.total_vested),
            "total_released": str(self.total_released),
            "total_available": str(self.total_available),
            "active_schedules": self.active_schedules,
            "completed_schedules": self.completed_schedules,
            "next_release_date": self.next_release_date,
            "schedule_count": self.schedule_count
        }


@dataclass
class AdminSummary:
    owner: str
    fee_recipient: str
    setup_fee_percentage: int
    total_beneficiaries: int
    contract_balance: int
    total_committed: int
    total_released: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner": self.owner,
            "fee_recipient": self.fee_recipient,
            "setup_fee_percentage": self.setup_fee_percentage,
            "total_beneficiaries": self.total_beneficiaries,
            "contract_balance": str(self.contract_balance),
            "total_committed": str(self.total_committed),
            "total_released": str(self.total_released)
        }


def build_schedule_view(schedule: VestingSchedule, now: int) -> ScheduleView:
    return ScheduleView(
        schedule=schedule,
        as_of=now,
        vested_amount=get_vested_amount(schedule, now),
        releasable_amount=get_releasable_amount(schedule, now),
        progress=calculate_progress(schedule, now),
        status=get_status(schedule, now),
        next_release_date=get_next_release_date(schedule, now)
    )


def summarize(views: Iterable[ScheduleView]) -> DashboardSummary:
    """
    Aggregate schedule views into dashboard totals

    next_release_date is the earliest upcoming milestone across all views.
    """
    views = list(views)
    upcoming = [v.next_release_date for v in views if v.next_release_date is not None]
    return DashboardSummary(
        total_vested=sum(v.vested_amount for v in views),
        total_released=sum(v.schedule.released for v in views),
        total_available=sum(v.releasable_amount for v in views),
        active_schedules=sum(1 for v in views if v.status == ScheduleStatus.ACTIVE),
        completed_schedules=sum(1 for v in views if v.status == ScheduleStatus.COMPLETED),
        next_release_date=min(upcoming) if upcoming else None,
        schedule_count=len(views)
    )


class VestingReporter:
    """Dashboard queries over a ScheduleLedger"""

    def __init__(self, ledger: ScheduleLedger, cache_ttl_seconds: float = 0):
        self.ledger = ledger
        self.cache_ttl_seconds = cache_ttl_seconds
        self._cache: Dict[str, Tuple[float, VestingSchedule]] = {}
        self._lock = threading.Lock()

    def _get_schedule(self, beneficiary: str) -> Optional[VestingSchedule]:
        beneficiary = normalize_address(beneficiary)
        if self.cache_ttl_seconds > 0:
            with self._lock:
                cached = self._cache.get(beneficiary)
            if cached and time.monotonic() - cached[0] < self.cache_ttl_seconds:
                return cached[1]

        schedule = self.ledger.get_schedule(beneficiary)
        if schedule is not None and self.cache_ttl_seconds > 0:
            with self._lock:
                self._cache[beneficiary] = (time.monotonic(), schedule)
        return schedule

    def invalidate(self, beneficiary: Optional[str] = None) -> None:
        """Drop one cached schedule, or all of them"""
        with self._lock:
            if beneficiary is None:
                self._cache.clear()
            else:
                self._cache.pop(normalize_address(beneficiary), None)

    def handle_event(self, event: EventPayload) -> None:
        """Event handler keeping the cache in step with ledger mutations"""
        if event.entity_type == "schedule":
            self.invalidate(event.entity_id)

    def get_schedule_view(self, beneficiary: str, now: Optional[int] = None) -> Optional[ScheduleView]:
        schedule = self._get_schedule(beneficiary)
        if schedule is None:
            return None
        return build_schedule_view(schedule, self.ledger.now() if now is None else now)

    def get_all_schedule_views(self, now: Optional[int] = None) -> List[ScheduleView]:
        now = self.ledger.now() if now is None else now
        views = []
        for beneficiary in self.ledger.get_beneficiaries():
            schedule = self._get_schedule(beneficiary)
            if schedule is not None:
                views.append(build_schedule_view(schedule, now))
        return views

    def get_dashboard(self, address: Optional[str] = None, now: Optional[int] = None) -> DashboardSummary:
        """Totals for one beneficiary, or for the whole ledger when address is None"""
        if address is None:
            return summarize(self.get_all_schedule_views(now))
        view = self.get_schedule_view(address, now)
        return summarize([view] if view else [])

    def get_admin_summary(self) -> AdminSummary:
        schedules = self.ledger.get_all_schedules()
        return AdminSummary(
            owner=self.ledger.owner,
            fee_recipient=self.ledger.fee_recipient,
            setup_fee_percentage=self.ledger.setup_fee_percentage,
            total_beneficiaries=self.ledger.get_beneficiary_count(),
            contract_balance=self.ledger.escrow_balance(),
            total_committed=sum(s.total_amount for s in schedules),
            total_released=sum(s.released for s in schedules)
        )
