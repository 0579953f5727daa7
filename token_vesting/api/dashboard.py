"""
Dashboard endpoints
"""

from fastapi import APIRouter, Depends

from .auth import VestingSystem, get_vesting_system


router = APIRouter()


@router.get("")
async def get_ledger_dashboard(system: VestingSystem = Depends(get_vesting_system)):
    """Totals across every schedule in the ledger"""
    return system.reporter.get_dashboard().to_dict()


@router.get("/{address}")
async def get_address_dashboard(address: str, system: VestingSystem = Depends(get_vesting_system)):
    """Totals and schedule view for one beneficiary"""
    now = system.ledger.now()
    view = system.reporter.get_schedule_view(address, now)
    summary = system.reporter.get_dashboard(address, now)
    return {
        "address": address,
        "summary": summary.to_dict(),
        "schedules": [view.to_dict()] if view else []
    }
