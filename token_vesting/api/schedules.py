"""
Vesting schedule endpoints
"""

from fastapi import APIRouter, Depends, status

from ..exceptions import NoSchedule
from .auth import VestingSystem, get_vesting_system, get_caller
from .schemas import CreateScheduleRequest


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_schedule(
    request: CreateScheduleRequest,
    caller: str = Depends(get_caller),
    system: VestingSystem = Depends(get_vesting_system)
):
    """Create a vesting schedule (owner only)"""
    result = system.publish(system.ledger.create_schedule(
        caller=caller,
        beneficiary=request.beneficiary,
        gross_amount=request.gross_units(),
        start_time=request.start_time,
        duration=request.duration,
        cliff=request.cliff,
        revocable=request.revocable,
        sent_value=request.sent_units()
    ))
    schedule = result.updated_state
    return {
        "beneficiary": schedule.beneficiary,
        "total_amount": str(schedule.total_amount),
        "fee": result.event.data["fee"],
        "event": result.event.to_dict(),
        "message": "Vesting schedule created successfully"
    }


@router.post("/release")
async def release(
    caller: str = Depends(get_caller),
    system: VestingSystem = Depends(get_vesting_system)
):
    """Release everything vested so far to the calling beneficiary"""
    result = system.publish(system.ledger.release(caller))
    return {
        "beneficiary": caller,
        "amount": str(result.amount),
        "released": str(result.updated_state.released),
        "event": result.event.to_dict()
    }


@router.post("/{beneficiary}/revoke")
async def revoke(
    beneficiary: str,
    caller: str = Depends(get_caller),
    system: VestingSystem = Depends(get_vesting_system)
):
    """Revoke a revocable schedule (owner only)"""
    result = system.publish(system.ledger.revoke(caller, beneficiary))
    schedule = result.updated_state
    return {
        "beneficiary": schedule.beneficiary,
        "revoked_at": schedule.revoked_at,
        "forfeited": result.event.data["forfeited"],
        "event": result.event.to_dict()
    }


@router.get("/{beneficiary}")
async def get_schedule(
    beneficiary: str,
    system: VestingSystem = Depends(get_vesting_system)
):
    """Schedule record with vested/releasable amounts, status and progress"""
    view = system.reporter.get_schedule_view(beneficiary)
    if view is None:
        raise NoSchedule(beneficiary=beneficiary)
    return view.to_dict()
