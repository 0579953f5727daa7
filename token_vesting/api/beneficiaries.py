"""
Beneficiary enumeration endpoints
"""

from fastapi import APIRouter, Depends, Query

from .auth import VestingSystem, get_vesting_system


router = APIRouter()


@router.get("")
async def list_beneficiaries(
    offset: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    system: VestingSystem = Depends(get_vesting_system)
):
    """Beneficiaries in creation order"""
    beneficiaries = system.ledger.get_beneficiaries()
    return {
        "total": len(beneficiaries),
        "offset": offset,
        "beneficiaries": beneficiaries[offset:offset + limit]
    }


@router.get("/count")
async def get_beneficiary_count(system: VestingSystem = Depends(get_vesting_system)):
    return {"count": system.ledger.get_beneficiary_count()}


@router.get("/check/{address}")
async def check_beneficiary(address: str, system: VestingSystem = Depends(get_vesting_system)):
    return {
        "address": address,
        "is_beneficiary": system.ledger.is_beneficiary(address),
        "has_vesting_schedule": system.ledger.has_vesting_schedule(address)
    }


@router.get("/{index}")
async def get_beneficiary(index: int, system: VestingSystem = Depends(get_vesting_system)):
    return {"index": index, "beneficiary": system.ledger.get_beneficiary(index)}
