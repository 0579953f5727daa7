"""
Owner-only administration and escrow endpoints
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from .auth import VestingSystem, get_vesting_system, get_caller
from .schemas import AmountRequest, SetupFeeRequest, AddressRequest


router = APIRouter()


@router.get("/summary")
async def get_admin_summary(system: VestingSystem = Depends(get_vesting_system)) -> Dict[str, Any]:
    return system.reporter.get_admin_summary().to_dict()


@router.put("/setup-fee")
async def update_setup_fee(
    request: SetupFeeRequest,
    caller: str = Depends(get_caller),
    system: VestingSystem = Depends(get_vesting_system)
):
    result = system.publish(system.ledger.update_setup_fee_percentage(caller, request.percentage))
    return {"setup_fee_percentage": result.updated_state.setup_fee_percentage}


@router.put("/fee-recipient")
async def update_fee_recipient(
    request: AddressRequest,
    caller: str = Depends(get_caller),
    system: VestingSystem = Depends(get_vesting_system)
):
    result = system.publish(system.ledger.update_fee_recipient(caller, request.address))
    return {"fee_recipient": result.updated_state.fee_recipient}


@router.post("/transfer-ownership")
async def transfer_ownership(
    request: AddressRequest,
    caller: str = Depends(get_caller),
    system: VestingSystem = Depends(get_vesting_system)
):
    result = system.publish(system.ledger.transfer_ownership(caller, request.address))
    return {"owner": result.updated_state.owner}


@router.post("/deposit")
async def deposit(
    request: AmountRequest,
    caller: str = Depends(get_caller),
    system: VestingSystem = Depends(get_vesting_system)
):
    """Top up escrow; open to any caller"""
    system.publish(system.ledger.deposit(caller, request.units()))
    return {"contract_balance": str(system.ledger.escrow_balance())}


@router.post("/recover")
async def emergency_recover(
    request: AmountRequest,
    caller: str = Depends(get_caller),
    system: VestingSystem = Depends(get_vesting_system)
):
    """Withdraw escrow funds to the owner"""
    result = system.publish(system.ledger.emergency_recover(caller, request.units()))
    return {
        "recovered": str(result.amount),
        "contract_balance": str(system.ledger.escrow_balance())
    }


@router.get("/audit/verify")
async def verify_audit_trail(system: VestingSystem = Depends(get_vesting_system)) -> Dict[str, Any]:
    return system.audit_trail.verify_integrity()
