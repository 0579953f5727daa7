"""
Caller identity and system wiring for the HTTP layer

The acting address is taken from the `sub` claim of a bearer JWT. With
auth disabled (local development and tests) the X-Caller-Address header is
trusted instead.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import jwt
from fastapi import Depends, Header, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..amounts import normalize_address, is_null_address
from ..audit import AuditTrail
from ..config import VestingConfig, get_config
from ..events import EventDispatcher
from ..funds import StorageFunds
from ..ledger import ScheduleLedger, OperationResult
from ..reporting import VestingReporter
from ..storage import StorageInterface, create_storage


security = HTTPBearer(auto_error=False)


class VestingSystem:
    """Ledger, reporting and event wiring shared by all routers"""

    def __init__(
        self,
        config: Optional[VestingConfig] = None,
        storage: Optional[StorageInterface] = None,
        clock: Optional[Callable[[], int]] = None
    ):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config.database_url)
        self.audit_trail = AuditTrail(self.storage, enabled=self.config.enable_audit_logging)
        self.funds = StorageFunds(self.storage)
        self.ledger = ScheduleLedger(
            self.storage, self.funds, self.audit_trail,
            owner=self.config.owner_address,
            fee_recipient=self.config.fee_recipient,
            setup_fee_percentage=self.config.setup_fee_percentage,
            clock=clock
        )
        self.dispatcher = EventDispatcher()
        self.reporter = VestingReporter(self.ledger, cache_ttl_seconds=self.config.cache_ttl_seconds)
        self.dispatcher.subscribe_all(self.reporter.handle_event)

    def publish(self, result: OperationResult) -> OperationResult:
        self.dispatcher.publish(result.event)
        return result


_system: Optional[VestingSystem] = None


def get_vesting_system() -> VestingSystem:
    """Dependency returning the process-wide system, built on first use"""
    global _system
    if _system is None:
        _system = VestingSystem()
    return _system


def set_vesting_system(system: Optional[VestingSystem]) -> None:
    """Replace the process-wide system (tests, embedding)"""
    global _system
    _system = system


def create_access_token(address: str, config: Optional[VestingConfig] = None) -> str:
    """Issue a bearer token for an address that was authenticated elsewhere"""
    config = config or get_config()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": normalize_address(address),
        "iat": now,
        "exp": now + timedelta(hours=config.jwt_expiry_hours)
    }
    return jwt.encode(payload, config.jwt_secret, algorithm=config.jwt_algorithm)


def get_caller(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    x_caller_address: Optional[str] = Header(None),
    system: VestingSystem = Depends(get_vesting_system)
) -> str:
    """Dependency resolving the acting address of a request"""
    config = system.config

    if not config.auth_enabled:
        if is_null_address(x_caller_address):
            raise HTTPException(status_code=401, detail="X-Caller-Address header required")
        return normalize_address(x_caller_address)

    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = jwt.decode(credentials.credentials, config.jwt_secret, algorithms=[config.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    address = payload.get("sub")
    if is_null_address(address):
        raise HTTPException(status_code=401, detail="Invalid token")
    return normalize_address(address)
