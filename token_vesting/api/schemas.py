"""
Pydantic schemas for API requests
"""

from typing import Optional
from pydantic import BaseModel, Field


def parse_units(value: str, name: str = "amount") -> int:
    """Parse an integer base-unit amount sent as a string"""
    text = str(value).strip()
    if not text.isdigit():
        raise ValueError(f"{name} must be a non-negative integer string of base units")
    return int(text)


class CreateScheduleRequest(BaseModel):
    beneficiary: str
    gross_amount: str = Field(..., description="Deposit including the setup fee, integer base units as string")
    start_time: int = Field(..., ge=0, description="Vesting start, seconds since epoch")
    duration: int = Field(..., description="Vesting length in seconds")
    cliff: int = Field(0, description="Seconds after start before anything vests")
    revocable: bool = True
    sent_value: Optional[str] = Field(None, description="Value sent with the call; defaults to gross_amount")

    def gross_units(self) -> int:
        return parse_units(self.gross_amount, "gross_amount")

    def sent_units(self) -> int:
        if self.sent_value is None:
            return self.gross_units()
        return parse_units(self.sent_value, "sent_value")


class AmountRequest(BaseModel):
    amount: str = Field(..., description="Integer base units as string")

    def units(self) -> int:
        return parse_units(self.amount)


class SetupFeeRequest(BaseModel):
    percentage: int = Field(..., description="Basis points, 0-1000")


class AddressRequest(BaseModel):
    address: str
