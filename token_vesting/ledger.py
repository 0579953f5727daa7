"""
Schedule Ledger

Owns the beneficiary -> schedule mapping, the append-only beneficiary index
and the fee policy. Every mutation is serialized by one writer lock and runs
inside a single storage + funds atomic block, so a rejected or failed
operation leaves no trace. Mutations return an OperationResult carrying the
updated record and the domain event; publishing it is up to the caller.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
import threading
import time

from .amounts import (
    DEFAULT_SETUP_FEE_BPS, MAX_SETUP_FEE_BPS,
    normalize_address, is_null_address, split_gross_amount, format_amount
)
from .audit import AuditTrail, AuditEventType
from .calculator import get_vested_amount, get_releasable_amount, get_forfeited_amount
from .events import DomainEvent, EventPayload, create_schedule_event, create_ledger_event
from .exceptions import (
    VestingError, TransferError, InvalidBeneficiary, InvalidAmount, InvalidDuration,
    InvalidCliff, DuplicateSchedule, InsufficientFunds, NoSchedule, NothingReleasable,
    NotRevocable, FeeTooHigh, InvalidAddress, IndexOutOfBounds, Unauthorized
)
from .funds import FundsTransfer
from .logging_config import get_logger, log_action
from .schedules import VestingSchedule
from .storage import StorageInterface


def _is_uint(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def system_clock() -> int:
    """Wall-clock seconds since the epoch"""
    return int(time.time())


@dataclass
class LedgerState:
    """Ledger-wide settings and the beneficiary index"""
    owner: str
    fee_recipient: str
    setup_fee_percentage: int
    beneficiaries: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'owner': self.owner,
            'fee_recipient': self.fee_recipient,
            'setup_fee_percentage': self.setup_fee_percentage,
            'beneficiaries': list(self.beneficiaries)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LedgerState':
        return cls(
            owner=data['owner'],
            fee_recipient=data['fee_recipient'],
            setup_fee_percentage=int(data['setup_fee_percentage']),
            beneficiaries=list(data.get('beneficiaries', []))
        )


@dataclass
class OperationResult:
    """Outcome of a committed mutation"""
    updated_state: Any  # VestingSchedule or LedgerState
    event: EventPayload
    amount: int = 0


class ScheduleLedger:
    """
    Vesting schedule ledger

    State written here is the single source of truth. Reads load a snapshot
    and never take the writer lock.
    """

    SCHEDULES_TABLE = "vesting_schedules"
    STATE_TABLE = "ledger_state"
    STATE_ID = "global"

    def __init__(
        self,
        storage: StorageInterface,
        funds: FundsTransfer,
        audit_trail: AuditTrail,
        owner: str,
        fee_recipient: str,
        setup_fee_percentage: int = DEFAULT_SETUP_FEE_BPS,
        clock: Optional[Callable[[], int]] = None
    ):
        self.storage = storage
        self.funds = funds
        self.audit_trail = audit_trail
        self.clock = clock or system_clock
        self.logger = get_logger("vesting.ledger")
        self._write_lock = threading.RLock()

        persisted = self.storage.load(self.STATE_TABLE, self.STATE_ID)
        if persisted:
            self._state = LedgerState.from_dict(persisted)
            self.logger.info(
                f"Loaded ledger state with {len(self._state.beneficiaries)} beneficiaries"
            )
        else:
            self._state = self._initialize_state(owner, fee_recipient, setup_fee_percentage)

        self._beneficiary_set = set(self._state.beneficiaries)

    def _initialize_state(self, owner: str, fee_recipient: str, setup_fee_percentage: int) -> LedgerState:
        if is_null_address(owner):
            raise InvalidAddress("Owner cannot be the zero address")
        if is_null_address(fee_recipient):
            raise InvalidAddress("Fee recipient cannot be the zero address")
        self._validate_fee_percentage(setup_fee_percentage)

        state = LedgerState(
            owner=normalize_address(owner),
            fee_recipient=normalize_address(fee_recipient),
            setup_fee_percentage=setup_fee_percentage
        )
        with self.storage.atomic():
            self._save_state(state)
            self.audit_trail.log_event(
                event_type=AuditEventType.LEDGER_INITIALIZED,
                entity_type="ledger",
                entity_id=self.STATE_ID,
                metadata=state.to_dict(),
                actor=state.owner
            )
        return state

    # Properties

    @property
    def owner(self) -> str:
        return self._state.owner

    @property
    def fee_recipient(self) -> str:
        return self._state.fee_recipient

    @property
    def setup_fee_percentage(self) -> int:
        return self._state.setup_fee_percentage

    def now(self) -> int:
        return self.clock()

    # Schedule operations

    def create_schedule(
        self,
        caller: str,
        beneficiary: str,
        gross_amount: int,
        start_time: int,
        duration: int,
        cliff: int,
        revocable: bool,
        sent_value: int
    ) -> OperationResult:
        """
        Create the one vesting schedule a beneficiary may have

        The setup fee is deducted from gross_amount and paid to the fee
        recipient; the remainder becomes the schedule's total_amount.

        Args:
            caller: Must be the ledger owner
            beneficiary: Address receiving the vested funds
            gross_amount: Amount deposited, fee included (base units)
            start_time: Vesting start, seconds since epoch
            duration: Vesting length in seconds
            cliff: Seconds after start_time before anything vests
            revocable: Whether the owner may revoke later
            sent_value: Value actually sent with the call

        Returns:
            OperationResult with the new schedule and a SCHEDULE_CREATED event

        Raises:
            Unauthorized, InvalidBeneficiary, InvalidAmount, InvalidDuration,
            InvalidCliff, DuplicateSchedule, InsufficientFunds, TransferError
        """
        caller = normalize_address(caller)
        beneficiary = normalize_address(beneficiary)
        action = "create_schedule"

        with self._write_lock:
            self._require_owner(caller, action)

            if is_null_address(beneficiary):
                raise self._reject(InvalidBeneficiary(), action, caller)
            if not _is_uint(gross_amount) or gross_amount == 0:
                raise self._reject(InvalidAmount(gross_amount=gross_amount), action, caller)
            if not _is_uint(duration) or duration == 0:
                raise self._reject(InvalidDuration(duration=duration), action, caller)
            if not _is_uint(cliff) or cliff > duration:
                raise self._reject(InvalidCliff(cliff=cliff, duration=duration), action, caller)
            if not _is_uint(start_time):
                raise self._reject(
                    InvalidAmount("Start time must be a non-negative timestamp", start_time=start_time),
                    action, caller
                )
            if self._has_schedule(beneficiary):
                raise self._reject(DuplicateSchedule(beneficiary=beneficiary), action, caller)
            if not _is_uint(sent_value) or sent_value < gross_amount:
                raise self._reject(
                    InsufficientFunds(sent_value=sent_value, required=gross_amount), action, caller
                )

            state = self._state
            fee, net_amount = split_gross_amount(gross_amount, state.setup_fee_percentage)
            now_dt = datetime.now(timezone.utc)
            schedule = VestingSchedule(
                created_at=now_dt,
                updated_at=now_dt,
                beneficiary=beneficiary,
                total_amount=net_amount,
                start_time=start_time,
                duration=duration,
                cliff=cliff,
                revocable=bool(revocable)
            )
            new_state = replace(state, beneficiaries=state.beneficiaries + [beneficiary])

            try:
                with self.funds.atomic(), self.storage.atomic():
                    self._save_schedule(schedule)
                    self._save_state(new_state)
                    self.funds.receive(caller, sent_value)
                    if fee > 0:
                        self.funds.transfer(state.fee_recipient, fee)
                    self.audit_trail.log_event(
                        event_type=AuditEventType.SCHEDULE_CREATED,
                        entity_type="schedule",
                        entity_id=beneficiary,
                        metadata={
                            "gross_amount": gross_amount,
                            "fee": fee,
                            "fee_recipient": state.fee_recipient,
                            "setup_fee_percentage": state.setup_fee_percentage,
                            "total_amount": net_amount,
                            "start_time": start_time,
                            "duration": duration,
                            "cliff": cliff,
                            "revocable": schedule.revocable
                        },
                        actor=caller
                    )
            except TransferError as e:
                self._log_transfer_failure(e, action, caller)
                raise

            self._state = new_state
            self._beneficiary_set.add(beneficiary)

        log_action(
            self.logger, "info", f"Vesting schedule created for {beneficiary}",
            caller=caller, action=action, resource=f"schedule:{beneficiary}",
            extra={
                "total_amount": format_amount(net_amount),
                "fee": format_amount(fee),
                "start_time": start_time,
                "duration": duration,
                "cliff": cliff
            }
        )

        event = create_schedule_event(
            DomainEvent.SCHEDULE_CREATED, beneficiary,
            amount=net_amount, start_time=start_time, duration=duration, cliff=cliff, fee=fee
        )
        return OperationResult(updated_state=schedule, event=event, amount=net_amount)

    def release(self, acting_beneficiary: str) -> OperationResult:
        """
        Pay out everything currently releasable to the beneficiary

        Raises:
            NoSchedule, NothingReleasable, TransferError
        """
        beneficiary = normalize_address(acting_beneficiary)
        action = "release"

        with self._write_lock:
            schedule = self._load_schedule(beneficiary)
            if schedule is None:
                raise self._reject(NoSchedule(beneficiary=beneficiary), action, beneficiary)

            now = self.now()
            amount = get_releasable_amount(schedule, now)
            if amount == 0:
                raise self._reject(NothingReleasable(beneficiary=beneficiary), action, beneficiary)

            schedule.released += amount
            schedule.touch()

            try:
                with self.funds.atomic(), self.storage.atomic():
                    self._save_schedule(schedule)
                    self.funds.transfer(beneficiary, amount)
                    self.audit_trail.log_event(
                        event_type=AuditEventType.TOKENS_RELEASED,
                        entity_type="schedule",
                        entity_id=beneficiary,
                        metadata={
                            "amount": amount,
                            "released": schedule.released,
                            "total_amount": schedule.total_amount,
                            "at": now
                        },
                        actor=beneficiary
                    )
            except TransferError as e:
                self._log_transfer_failure(e, action, beneficiary)
                raise

        log_action(
            self.logger, "info", f"Released {format_amount(amount)} to {beneficiary}",
            caller=beneficiary, action=action, resource=f"schedule:{beneficiary}",
            extra={"amount": str(amount), "released": str(schedule.released)}
        )

        event = create_schedule_event(DomainEvent.TOKENS_RELEASED, beneficiary, amount=amount)
        return OperationResult(updated_state=schedule, event=event, amount=amount)

    def revoke(self, caller: str, beneficiary: str) -> OperationResult:
        """
        Stop further vesting for a revocable schedule

        What had vested at revocation time stays releasable; the rest is
        forfeited and remains in escrow. Revoking twice keeps the first
        revocation time.

        Raises:
            Unauthorized, NoSchedule, NotRevocable
        """
        caller = normalize_address(caller)
        beneficiary = normalize_address(beneficiary)
        action = "revoke"

        with self._write_lock:
            self._require_owner(caller, action)

            schedule = self._load_schedule(beneficiary)
            if schedule is None:
                raise self._reject(NoSchedule(beneficiary=beneficiary), action, caller)
            if not schedule.revocable:
                raise self._reject(NotRevocable(beneficiary=beneficiary), action, caller)

            if schedule.revoked:
                event = create_schedule_event(
                    DomainEvent.SCHEDULE_REVOKED, beneficiary,
                    forfeited=get_forfeited_amount(schedule), already_revoked=True
                )
                return OperationResult(updated_state=schedule, event=event)

            now = self.now()
            schedule.revoked = True
            schedule.revoked_at = now
            schedule.touch()
            forfeited = get_forfeited_amount(schedule)

            with self.storage.atomic():
                self._save_schedule(schedule)
                self.audit_trail.log_event(
                    event_type=AuditEventType.SCHEDULE_REVOKED,
                    entity_type="schedule",
                    entity_id=beneficiary,
                    metadata={
                        "revoked_at": now,
                        "vested_at_revocation": get_vested_amount(schedule, now),
                        "forfeited": forfeited
                    },
                    actor=caller
                )

        log_action(
            self.logger, "info", f"Vesting schedule revoked for {beneficiary}",
            caller=caller, action=action, resource=f"schedule:{beneficiary}",
            extra={"revoked_at": now, "forfeited": str(forfeited)}
        )

        event = create_schedule_event(
            DomainEvent.SCHEDULE_REVOKED, beneficiary, forfeited=forfeited, already_revoked=False
        )
        return OperationResult(updated_state=schedule, event=event, amount=forfeited)

    # Admin operations

    def update_setup_fee_percentage(self, caller: str, new_percentage: int) -> OperationResult:
        """
        Change the fee applied to schedules created from now on

        Raises:
            Unauthorized, InvalidAmount, FeeTooHigh
        """
        caller = normalize_address(caller)
        action = "update_setup_fee_percentage"

        with self._write_lock:
            self._require_owner(caller, action)
            try:
                self._validate_fee_percentage(new_percentage)
            except VestingError as e:
                raise self._reject(e, action, caller)

            old_percentage = self._state.setup_fee_percentage
            new_state = replace(self._state, setup_fee_percentage=new_percentage)
            self._commit_state(
                new_state, AuditEventType.SETUP_FEE_UPDATED, caller,
                {"old": old_percentage, "new": new_percentage}
            )

        log_action(
            self.logger, "info", f"Setup fee changed from {old_percentage} to {new_percentage} bps",
            caller=caller, action=action, resource="ledger:setup_fee"
        )
        event = create_ledger_event(
            DomainEvent.SETUP_FEE_UPDATED, "ledger", self.STATE_ID,
            old=old_percentage, new=new_percentage
        )
        return OperationResult(updated_state=new_state, event=event)

    def update_fee_recipient(self, caller: str, new_recipient: str) -> OperationResult:
        """
        Raises:
            Unauthorized, InvalidAddress
        """
        caller = normalize_address(caller)
        action = "update_fee_recipient"

        with self._write_lock:
            self._require_owner(caller, action)
            if is_null_address(new_recipient):
                raise self._reject(InvalidAddress("Fee recipient cannot be the zero address"), action, caller)

            new_recipient = normalize_address(new_recipient)
            old_recipient = self._state.fee_recipient
            new_state = replace(self._state, fee_recipient=new_recipient)
            self._commit_state(
                new_state, AuditEventType.FEE_RECIPIENT_UPDATED, caller,
                {"old": old_recipient, "new": new_recipient}
            )

        log_action(
            self.logger, "info", f"Fee recipient changed to {new_recipient}",
            caller=caller, action=action, resource="ledger:fee_recipient"
        )
        event = create_ledger_event(
            DomainEvent.FEE_RECIPIENT_UPDATED, "ledger", self.STATE_ID,
            old=old_recipient, new=new_recipient
        )
        return OperationResult(updated_state=new_state, event=event)

    def transfer_ownership(self, caller: str, new_owner: str) -> OperationResult:
        """
        Hand the owner role to another address

        Raises:
            Unauthorized, InvalidAddress
        """
        caller = normalize_address(caller)
        action = "transfer_ownership"

        with self._write_lock:
            self._require_owner(caller, action)
            if is_null_address(new_owner):
                raise self._reject(InvalidAddress("New owner cannot be the zero address"), action, caller)

            new_owner = normalize_address(new_owner)
            new_state = replace(self._state, owner=new_owner)
            self._commit_state(
                new_state, AuditEventType.OWNERSHIP_TRANSFERRED, caller,
                {"old": caller, "new": new_owner}
            )

        log_action(
            self.logger, "info", f"Ownership transferred to {new_owner}",
            caller=caller, action=action, resource="ledger:owner"
        )
        event = create_ledger_event(
            DomainEvent.OWNERSHIP_TRANSFERRED, "ledger", self.STATE_ID,
            old=caller, new=new_owner
        )
        return OperationResult(updated_state=new_state, event=event)

    def deposit(self, sender: str, amount: int) -> OperationResult:
        """
        Accept funds into escrow outside of schedule creation

        Raises:
            InvalidAmount
        """
        sender = normalize_address(sender)
        action = "deposit"

        with self._write_lock:
            if not _is_uint(amount) or amount == 0:
                raise self._reject(InvalidAmount(amount=amount), action, sender)

            with self.funds.atomic(), self.storage.atomic():
                self.funds.receive(sender, amount)
                self.audit_trail.log_event(
                    event_type=AuditEventType.FUNDS_DEPOSITED,
                    entity_type="escrow",
                    entity_id="escrow",
                    metadata={"amount": amount},
                    actor=sender
                )

        log_action(
            self.logger, "info", f"Received {format_amount(amount)} from {sender}",
            caller=sender, action=action, resource="escrow"
        )
        event = create_ledger_event(DomainEvent.FUNDS_DEPOSITED, "escrow", "escrow",
                                    sender=sender, amount=amount)
        return OperationResult(updated_state=self._state, event=event, amount=amount)

    def emergency_recover(self, caller: str, amount: int) -> OperationResult:
        """
        Withdraw escrow funds to the owner

        Raises:
            Unauthorized, InvalidAmount, InsufficientFunds, TransferError
        """
        caller = normalize_address(caller)
        action = "emergency_recover"

        with self._write_lock:
            self._require_owner(caller, action)
            if not _is_uint(amount) or amount == 0:
                raise self._reject(InvalidAmount(amount=amount), action, caller)

            escrow = self.funds.escrow_balance()
            if amount > escrow:
                raise self._reject(
                    InsufficientFunds("Insufficient escrow balance", requested=amount, available=escrow),
                    action, caller
                )

            try:
                with self.funds.atomic(), self.storage.atomic():
                    self.funds.transfer(caller, amount)
                    self.audit_trail.log_event(
                        event_type=AuditEventType.EMERGENCY_RECOVERY,
                        entity_type="escrow",
                        entity_id="escrow",
                        metadata={"amount": amount, "escrow_before": escrow},
                        actor=caller
                    )
            except TransferError as e:
                self._log_transfer_failure(e, action, caller)
                raise

        log_action(
            self.logger, "warning", f"Emergency recovery of {format_amount(amount)}",
            caller=caller, action=action, resource="escrow"
        )
        event = create_ledger_event(DomainEvent.EMERGENCY_RECOVERY, "escrow", "escrow",
                                    recipient=caller, amount=amount)
        return OperationResult(updated_state=self._state, event=event, amount=amount)

    # Enumeration and queries

    def get_beneficiary_count(self) -> int:
        return len(self._state.beneficiaries)

    def get_beneficiary(self, index: int) -> str:
        beneficiaries = self._state.beneficiaries
        if not isinstance(index, int) or isinstance(index, bool) or index < 0 or index >= len(beneficiaries):
            raise IndexOutOfBounds(index=index, count=len(beneficiaries))
        return beneficiaries[index]

    def get_beneficiaries(self) -> List[str]:
        """Snapshot of the beneficiary index in creation order"""
        return list(self._state.beneficiaries)

    def is_beneficiary(self, address: str) -> bool:
        return normalize_address(address) in self._beneficiary_set

    def has_vesting_schedule(self, address: str) -> bool:
        return self._load_schedule(normalize_address(address)) is not None

    def get_schedule(self, address: str) -> Optional[VestingSchedule]:
        """Snapshot of a beneficiary's schedule, or None"""
        return self._load_schedule(normalize_address(address))

    def get_all_schedules(self) -> List[VestingSchedule]:
        """All schedules in beneficiary index order"""
        schedules = []
        for beneficiary in self._state.beneficiaries:
            schedule = self._load_schedule(beneficiary)
            if schedule is not None:
                schedules.append(schedule)
        return schedules

    def get_vested_amount(self, address: str, now: Optional[int] = None) -> int:
        """Vested amount for an address; 0 when it has no schedule"""
        schedule = self.get_schedule(address)
        if schedule is None:
            return 0
        return get_vested_amount(schedule, self.now() if now is None else now)

    def get_releasable_amount(self, address: str, now: Optional[int] = None) -> int:
        """Releasable amount for an address; 0 when it has no schedule"""
        schedule = self.get_schedule(address)
        if schedule is None:
            return 0
        return get_releasable_amount(schedule, self.now() if now is None else now)

    def get_total_committed(self) -> int:
        """Sum of net principal across all schedules"""
        return sum(s.total_amount for s in self.get_all_schedules())

    def get_total_released(self) -> int:
        return sum(s.released for s in self.get_all_schedules())

    def escrow_balance(self) -> int:
        return self.funds.escrow_balance()

    # Internals

    def _require_owner(self, caller: str, action: str) -> None:
        if caller != self._state.owner:
            raise self._reject(Unauthorized(caller=caller), action, caller)

    @staticmethod
    def _validate_fee_percentage(percentage: int) -> None:
        if not isinstance(percentage, int) or isinstance(percentage, bool) or percentage < 0:
            raise InvalidAmount("Fee percentage must be a non-negative integer", percentage=percentage)
        if percentage > MAX_SETUP_FEE_BPS:
            raise FeeTooHigh(percentage=percentage, maximum=MAX_SETUP_FEE_BPS)

    def _reject(self, error: VestingError, action: str, caller: Optional[str]) -> VestingError:
        log_action(
            self.logger, "warning", f"{action} rejected: {error.kind.value}",
            caller=caller, action=action, extra={"reason": error.message, **error.details}
        )
        return error

    def _log_transfer_failure(self, error: TransferError, action: str, caller: str) -> None:
        log_action(
            self.logger, "error", f"{action} rolled back: {error}",
            caller=caller, action=action,
            extra={"recipient": error.recipient, "amount": str(error.amount)}
        )

    def _has_schedule(self, beneficiary: str) -> bool:
        return (beneficiary in self._beneficiary_set
                or self.storage.exists(self.SCHEDULES_TABLE, beneficiary))

    def _commit_state(self, new_state: LedgerState, event_type: AuditEventType,
                      caller: str, metadata: Dict[str, Any]) -> None:
        with self.storage.atomic():
            self._save_state(new_state)
            self.audit_trail.log_event(
                event_type=event_type,
                entity_type="ledger",
                entity_id=self.STATE_ID,
                metadata=metadata,
                actor=caller
            )
        self._state = new_state

    def _save_state(self, state: LedgerState) -> None:
        self.storage.save(self.STATE_TABLE, self.STATE_ID, state.to_dict())

    def _save_schedule(self, schedule: VestingSchedule) -> None:
        self.storage.save(self.SCHEDULES_TABLE, schedule.beneficiary, schedule.to_dict())

    def _load_schedule(self, beneficiary: str) -> Optional[VestingSchedule]:
        data = self.storage.load(self.SCHEDULES_TABLE, beneficiary)
        if data:
            return VestingSchedule.from_dict(data)
        return None
