"""
Ledger Error Taxonomy

Every rejected ledger operation raises a VestingError subclass carrying an
ErrorKind. All of them are precondition failures: nothing has been committed
when one is raised.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    """Kinds of ledger failures"""
    INVALID_BENEFICIARY = "InvalidBeneficiary"
    INVALID_AMOUNT = "InvalidAmount"
    INVALID_DURATION = "InvalidDuration"
    INVALID_CLIFF = "InvalidCliff"
    DUPLICATE_SCHEDULE = "DuplicateSchedule"
    INSUFFICIENT_FUNDS = "InsufficientFunds"
    NO_SCHEDULE = "NoSchedule"
    NOTHING_RELEASABLE = "NothingReleasable"
    NOT_REVOCABLE = "NotRevocable"
    FEE_TOO_HIGH = "FeeTooHigh"
    INVALID_ADDRESS = "InvalidAddress"
    INDEX_OUT_OF_BOUNDS = "IndexOutOfBounds"
    UNAUTHORIZED = "Unauthorized"


class VestingError(ValueError):
    """Base class for rejected ledger operations"""

    kind: ErrorKind = None
    default_message = "Vesting operation rejected"

    def __init__(self, message: Optional[str] = None, **details: Any):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form used by the API layer"""
        return {
            "error": self.kind.value,
            "message": self.message,
            "details": self.details
        }


class InvalidBeneficiary(VestingError):
    kind = ErrorKind.INVALID_BENEFICIARY
    default_message = "Beneficiary cannot be the zero address"


class InvalidAmount(VestingError):
    kind = ErrorKind.INVALID_AMOUNT
    default_message = "Amount must be greater than 0"


class InvalidDuration(VestingError):
    kind = ErrorKind.INVALID_DURATION
    default_message = "Duration must be greater than 0"


class InvalidCliff(VestingError):
    kind = ErrorKind.INVALID_CLIFF
    default_message = "Cliff must be between 0 and the duration"


class DuplicateSchedule(VestingError):
    kind = ErrorKind.DUPLICATE_SCHEDULE
    default_message = "Vesting schedule already exists"


class InsufficientFunds(VestingError):
    kind = ErrorKind.INSUFFICIENT_FUNDS
    default_message = "Insufficient funds sent"


class NoSchedule(VestingError):
    kind = ErrorKind.NO_SCHEDULE
    default_message = "No vesting schedule found"


class NothingReleasable(VestingError):
    kind = ErrorKind.NOTHING_RELEASABLE
    default_message = "No tokens available for release"


class NotRevocable(VestingError):
    kind = ErrorKind.NOT_REVOCABLE
    default_message = "Vesting schedule is not revocable"


class FeeTooHigh(VestingError):
    kind = ErrorKind.FEE_TOO_HIGH
    default_message = "Fee percentage cannot exceed 10%"


class InvalidAddress(VestingError):
    kind = ErrorKind.INVALID_ADDRESS
    default_message = "Address cannot be the zero address"


class IndexOutOfBounds(VestingError):
    kind = ErrorKind.INDEX_OUT_OF_BOUNDS
    default_message = "Index out of bounds"


class Unauthorized(VestingError):
    kind = ErrorKind.UNAUTHORIZED
    default_message = "Caller is not the owner"


class TransferError(RuntimeError):
    """Raised by a funds backend when a transfer cannot be carried out"""

    def __init__(self, message: str, recipient: Optional[str] = None, amount: int = 0):
        super().__init__(message)
        self.recipient = recipient
        self.amount = amount
