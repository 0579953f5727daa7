"""
Vesting Schedule Records

One schedule per beneficiary, keyed by the beneficiary's address. A schedule
is created once, mutated only by release and revoke, and never deleted.
"""

from datetime import datetime
from dataclasses import dataclass
from typing import Any, Dict, Optional
from enum import Enum

from .storage import StorageRecord


class ScheduleStatus(Enum):
    """Lifecycle status derived from a schedule and the clock"""
    PENDING = "pending"        # Cliff not reached
    ACTIVE = "active"          # Vesting linearly
    COMPLETED = "completed"    # Fully vested
    REVOKED = "revoked"        # Frozen by the owner


@dataclass
class VestingSchedule(StorageRecord):
    """
    Linear vesting schedule with a cliff gate

    total_amount is the net principal after the setup fee. revoked_at is the
    clock value at revocation; vesting is evaluated at that instant forever
    after.
    """
    beneficiary: str
    total_amount: int
    start_time: int
    duration: int
    cliff: int
    revocable: bool
    released: int = 0
    revoked: bool = False
    revoked_at: Optional[int] = None
    initialized: bool = True

    @property
    def cliff_end(self) -> int:
        return self.start_time + self.cliff

    @property
    def end_time(self) -> int:
        return self.start_time + self.duration

    def effective_time(self, now: int) -> int:
        """The clock the vesting curve is evaluated at"""
        if self.revoked and self.revoked_at is not None:
            return min(now, self.revoked_at)
        return now

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VestingSchedule':
        """Create instance from a stored dictionary"""
        revoked_at = data.get('revoked_at')
        return cls(
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            beneficiary=data['beneficiary'],
            total_amount=int(data['total_amount']),
            start_time=int(data['start_time']),
            duration=int(data['duration']),
            cliff=int(data['cliff']),
            revocable=bool(data['revocable']),
            released=int(data.get('released', 0)),
            revoked=bool(data.get('revoked', False)),
            revoked_at=int(revoked_at) if revoked_at is not None else None,
            initialized=bool(data.get('initialized', True))
        )

    def to_public_dict(self) -> Dict[str, Any]:
        """The externally visible record shape"""
        return {
            "beneficiary": self.beneficiary,
            "initialized": self.initialized,
            "revocable": self.revocable,
            "total_amount": str(self.total_amount),
            "start_time": self.start_time,
            "duration": self.duration,
            "cliff": self.cliff,
            "released": str(self.released),
            "revoked": self.revoked,
            "revoked_at": self.revoked_at
        }
