"""
Test suite for the schedule ledger

Covers schedule creation with the setup fee, validation order, release,
revocation, admin operations, enumeration, rollback on failed transfers,
concurrent writers and reloading persisted state.
"""

import threading
import time

import pytest

from token_vesting.audit import AuditTrail, AuditEventType
from token_vesting.events import DomainEvent
from token_vesting.exceptions import (
    ErrorKind, TransferError, InvalidBeneficiary, InvalidAmount, InvalidDuration,
    InvalidCliff, DuplicateSchedule, InsufficientFunds, NoSchedule, NothingReleasable,
    NotRevocable, FeeTooHigh, InvalidAddress, IndexOutOfBounds, Unauthorized
)
from token_vesting.funds import StorageFunds
from token_vesting.ledger import ScheduleLedger, LedgerState
from token_vesting.storage import InMemoryStorage, SQLiteStorage


T = 1_700_000_000
OWNER = "0x" + "1" * 40
FEE_RECIPIENT = "0x" + "f" * 40
ALICE = "0x" + "a" * 40
BOB = "0x" + "b" * 40
ZERO = "0x" + "0" * 40


class FakeClock:
    """Settable clock for deterministic vesting math"""

    def __init__(self, now=T):
        self.now = now

    def __call__(self):
        return self.now


def build_ledger(storage=None, fee_bps=100, clock=None, owner=OWNER, fee_recipient=FEE_RECIPIENT):
    storage = storage or InMemoryStorage()
    funds = StorageFunds(storage)
    audit_trail = AuditTrail(storage)
    ledger = ScheduleLedger(
        storage, funds, audit_trail,
        owner=owner,
        fee_recipient=fee_recipient,
        setup_fee_percentage=fee_bps,
        clock=clock or FakeClock()
    )
    return ledger, funds, audit_trail


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger(clock):
    ledger, _, _ = build_ledger(clock=clock)
    return ledger


@pytest.fixture
def feeless(clock):
    """Ledger with a 0% setup fee so totals equal gross amounts"""
    ledger, _, _ = build_ledger(fee_bps=0, clock=clock)
    return ledger


def create(ledger, beneficiary=ALICE, gross=1000, start=T, duration=100, cliff=0,
           revocable=True, sent=None, caller=OWNER):
    return ledger.create_schedule(
        caller=caller,
        beneficiary=beneficiary,
        gross_amount=gross,
        start_time=start,
        duration=duration,
        cliff=cliff,
        revocable=revocable,
        sent_value=gross if sent is None else sent
    )


class TestLedgerInitialization:

    def test_initial_state(self, ledger):
        """Test initial state"""
        assert ledger.owner == OWNER
        assert ledger.fee_recipient == FEE_RECIPIENT
        assert ledger.setup_fee_percentage == 100
        assert ledger.get_beneficiary_count() == 0
        assert ledger.escrow_balance() == 0

    def test_initialization_is_audited(self):
        """Test initialization is audited"""
        ledger, _, audit_trail = build_ledger()
        events = audit_trail.get_events_by_type(AuditEventType.LEDGER_INITIALIZED)
        assert len(events) == 1
        assert events[0].actor == OWNER

    def test_null_owner_rejected(self):
        """Test null owner rejected"""
        with pytest.raises(InvalidAddress):
            build_ledger(owner=ZERO)

    def test_null_fee_recipient_rejected(self):
        """Test null fee recipient rejected"""
        with pytest.raises(InvalidAddress):
            build_ledger(fee_recipient="")

    def test_initial_fee_too_high_rejected(self):
        """Test initial fee too high rejected"""
        with pytest.raises(FeeTooHigh):
            build_ledger(fee_bps=1001)

    def test_addresses_are_normalized(self):
        """Test addresses are normalized"""
        ledger, _, _ = build_ledger(owner="0x" + "A" * 40)
        assert ledger.owner == ALICE


class TestCreateSchedule:
    """Test schedule creation and the setup fee"""

    def test_create_deducts_fee(self, ledger):
        """Test create deducts fee"""
        result = create(ledger, gross=10000)
        schedule = result.updated_state

        assert schedule.total_amount == 9900
        assert schedule.released == 0
        assert schedule.revoked is False
        assert schedule.initialized is True
        assert result.amount == 9900
        assert ledger.funds.balance_of(FEE_RECIPIENT) == 100
        assert ledger.escrow_balance() == 9900

    def test_fee_plus_net_equals_gross(self, ledger):
        """Test fee plus net equals gross"""
        gross = 123_456_789_012_345_678_901
        result = create(ledger, gross=gross)
        fee = ledger.funds.balance_of(FEE_RECIPIENT)

        assert fee == gross * 100 // 10000
        assert fee + result.updated_state.total_amount == gross

    def test_zero_fee_skips_fee_transfer(self, feeless):
        """Test zero fee skips fee transfer"""
        result = create(feeless, gross=1000)

        assert result.updated_state.total_amount == 1000
        assert feeless.funds.balance_of(FEE_RECIPIENT) == 0
        assert feeless.escrow_balance() == 1000

    def test_tiny_amount_rounds_fee_to_zero(self, ledger):
        """Test tiny amount rounds fee to zero"""
        result = create(ledger, gross=99)

        assert result.updated_state.total_amount == 99
        assert ledger.funds.balance_of(FEE_RECIPIENT) == 0

    def test_overpayment_stays_in_escrow(self, ledger):
        """Test overpayment stays in escrow"""
        create(ledger, gross=10000, sent=15000)

        assert ledger.escrow_balance() == 9900 + 5000
        assert ledger.get_total_committed() == 9900

    def test_created_event(self, ledger):
        """Test created event"""
        result = create(ledger, gross=10000, cliff=10)
        event = result.event

        assert event.event_type == DomainEvent.SCHEDULE_CREATED
        assert event.entity_id == ALICE
        assert event.data["beneficiary"] == ALICE
        assert event.data["amount"] == "9900"
        assert event.data["fee"] == "100"
        assert event.data["cliff"] == "10"

    def test_create_registers_beneficiary(self, ledger):
        """Test create registers beneficiary"""
        create(ledger)

        assert ledger.get_beneficiary_count() == 1
        assert ledger.get_beneficiary(0) == ALICE
        assert ledger.is_beneficiary(ALICE)
        assert ledger.has_vesting_schedule(ALICE)

    def test_create_is_audited(self, ledger):
        """Test create is audited"""
        create(ledger, gross=10000)
        events = ledger.audit_trail.get_events_for_entity("schedule", ALICE)

        assert len(events) == 1
        assert events[0].event_type == AuditEventType.SCHEDULE_CREATED
        assert events[0].metadata["fee"] == "100"
        assert events[0].metadata["total_amount"] == "9900"

    def test_fee_change_applies_only_to_new_schedules(self, ledger):
        """Test fee change applies only to new schedules"""
        create(ledger, ALICE, gross=10000)
        ledger.update_setup_fee_percentage(OWNER, 1000)
        create(ledger, BOB, gross=10000)

        assert ledger.get_schedule(ALICE).total_amount == 9900
        assert ledger.get_schedule(BOB).total_amount == 9000


class TestCreateScheduleValidation:
    """Test rejection of bad inputs and that nothing is committed"""

    def test_non_owner_rejected(self, ledger):
        """Test non owner rejected"""
        with pytest.raises(Unauthorized):
            create(ledger, caller=BOB)
        assert ledger.get_beneficiary_count() == 0

    @pytest.mark.parametrize("beneficiary", [ZERO, "", None])
    def test_null_beneficiary(self, ledger, beneficiary):
        """Test null beneficiary"""
        with pytest.raises(InvalidBeneficiary):
            create(ledger, beneficiary=beneficiary)

    @pytest.mark.parametrize("gross", [0, -5])
    def test_invalid_amount(self, ledger, gross):
        """Test rejection of zero and negative gross amounts"""
        with pytest.raises(InvalidAmount):
            create(ledger, gross=gross)

    def test_zero_duration(self, ledger):
        """Test zero duration"""
        with pytest.raises(InvalidDuration):
            create(ledger, duration=0)

    def test_negative_start_time(self, ledger):
        """Test negative start time"""
        with pytest.raises(InvalidAmount) as exc_info:
            create(ledger, start=-1)
        assert exc_info.value.details == {"start_time": -1}

    def test_cliff_longer_than_duration(self, ledger):
        """Test cliff longer than duration"""
        with pytest.raises(InvalidCliff):
            create(ledger, duration=100, cliff=101)

    def test_cliff_equal_to_duration_allowed(self, ledger):
        """Test cliff equal to duration allowed"""
        result = create(ledger, duration=100, cliff=100)
        assert result.updated_state.cliff == 100

    def test_insufficient_funds(self, ledger):
        """Test insufficient funds"""
        with pytest.raises(InsufficientFunds):
            create(ledger, gross=1000, sent=999)
        assert ledger.escrow_balance() == 0

    def test_duplicate_schedule(self, feeless):
        """Test duplicate schedule"""
        create(feeless, ALICE)

        with pytest.raises(DuplicateSchedule):
            create(feeless, ALICE, gross=5000)

        assert feeless.get_beneficiary_count() == 1
        assert feeless.get_schedule(ALICE).total_amount == 1000

    def test_duplicate_detected_case_insensitively(self, feeless):
        """Test duplicate detected case insensitively"""
        create(feeless, ALICE)
        with pytest.raises(DuplicateSchedule):
            create(feeless, ALICE.replace("a", "A"))

    def test_validation_order(self, ledger):
        """Several bad inputs at once report the first failing check"""
        with pytest.raises(InvalidBeneficiary):
            create(ledger, beneficiary=ZERO, gross=0, duration=0)
        with pytest.raises(InvalidAmount):
            create(ledger, gross=0, duration=0)
        with pytest.raises(InvalidDuration):
            create(ledger, duration=0, cliff=5, sent=0)
        with pytest.raises(InvalidCliff):
            create(ledger, duration=10, cliff=20, sent=0)
        with pytest.raises(InvalidCliff):
            create(ledger, start=-1, duration=10, cliff=20)

    def test_rejections_carry_error_kind(self, ledger):
        """Test rejections carry error kind"""
        with pytest.raises(InvalidCliff) as exc_info:
            create(ledger, duration=10, cliff=20)
        assert exc_info.value.kind == ErrorKind.INVALID_CLIFF
        assert exc_info.value.to_dict()["error"] == "InvalidCliff"


class TestRelease:

    def test_release_pays_vested_amount(self, feeless, clock):
        """Test release pays vested amount"""
        create(feeless)
        clock.now = T + 50

        result = feeless.release(ALICE)

        assert result.amount == 500
        assert result.updated_state.released == 500
        assert result.event.event_type == DomainEvent.TOKENS_RELEASED
        assert result.event.data["amount"] == "500"
        assert feeless.funds.balance_of(ALICE) == 500
        assert feeless.escrow_balance() == 500

    def test_second_release_at_same_time_fails(self, feeless, clock):
        """Test second release at same time fails"""
        create(feeless)
        clock.now = T + 50
        feeless.release(ALICE)

        with pytest.raises(NothingReleasable):
            feeless.release(ALICE)
        assert feeless.get_schedule(ALICE).released == 500

    def test_release_before_cliff(self, feeless, clock):
        """Test release before cliff"""
        create(feeless, cliff=30)
        clock.now = T + 29

        with pytest.raises(NothingReleasable):
            feeless.release(ALICE)

    def test_release_without_schedule(self, feeless):
        """Test release without schedule"""
        with pytest.raises(NoSchedule):
            feeless.release(BOB)

    def test_incremental_releases_sum_to_total(self, feeless, clock):
        """Test incremental releases sum to total"""
        create(feeless, gross=997, duration=7)
        total = 0
        for offset in range(1, 8):
            clock.now = T + offset
            total += feeless.release(ALICE).amount

        assert total == 997
        assert feeless.funds.balance_of(ALICE) == 997
        assert feeless.escrow_balance() == 0

    def test_release_is_audited(self, feeless, clock):
        """Test release is audited"""
        create(feeless)
        clock.now = T + 100
        feeless.release(ALICE)

        events = feeless.audit_trail.get_events_by_type(AuditEventType.TOKENS_RELEASED)
        assert len(events) == 1
        assert events[0].metadata["amount"] == "1000"


class TestRevoke:

    def test_revoke_freezes_vesting(self, feeless, clock):
        """Test revoke freezes vesting"""
        create(feeless)
        clock.now = T + 40

        result = feeless.revoke(OWNER, ALICE)

        assert result.updated_state.revoked is True
        assert result.updated_state.revoked_at == T + 40
        assert result.event.event_type == DomainEvent.SCHEDULE_REVOKED
        assert result.event.data["forfeited"] == "600"

        clock.now = T + 200
        assert feeless.get_vested_amount(ALICE) == 400
        assert feeless.get_releasable_amount(ALICE) == 400

    def test_release_after_revoke_pays_frozen_amount(self, feeless, clock):
        """Test release after revoke pays frozen amount"""
        create(feeless)
        clock.now = T + 40
        feeless.revoke(OWNER, ALICE)
        clock.now = T + 200

        assert feeless.release(ALICE).amount == 400
        with pytest.raises(NothingReleasable):
            feeless.release(ALICE)

    def test_forfeited_funds_stay_in_escrow(self, feeless, clock):
        """Test forfeited funds stay in escrow"""
        create(feeless)
        clock.now = T + 40
        feeless.revoke(OWNER, ALICE)
        clock.now = T + 200
        feeless.release(ALICE)

        assert feeless.escrow_balance() == 600

    def test_non_owner_cannot_revoke(self, feeless):
        """Test non owner cannot revoke"""
        create(feeless)
        with pytest.raises(Unauthorized):
            feeless.revoke(ALICE, ALICE)
        assert feeless.get_schedule(ALICE).revoked is False

    def test_revoke_without_schedule(self, feeless):
        """Test revoke without schedule"""
        with pytest.raises(NoSchedule):
            feeless.revoke(OWNER, BOB)

    def test_revoke_irrevocable(self, feeless):
        """Test revoke irrevocable"""
        create(feeless, revocable=False)
        with pytest.raises(NotRevocable):
            feeless.revoke(OWNER, ALICE)

    def test_second_revoke_keeps_first_time(self, feeless, clock):
        """Test second revoke keeps first time"""
        create(feeless)
        clock.now = T + 40
        feeless.revoke(OWNER, ALICE)
        clock.now = T + 80

        result = feeless.revoke(OWNER, ALICE)

        assert result.updated_state.revoked_at == T + 40
        assert result.event.data["already_revoked"] is True
        assert feeless.get_vested_amount(ALICE) == 400
        assert len(feeless.audit_trail.get_events_by_type(AuditEventType.SCHEDULE_REVOKED)) == 1


class TestAdminOperations:

    def test_fee_update_bounds(self, ledger):
        """Test fee update bounds"""
        with pytest.raises(FeeTooHigh):
            ledger.update_setup_fee_percentage(OWNER, 1001)
        assert ledger.setup_fee_percentage == 100

        result = ledger.update_setup_fee_percentage(OWNER, 1000)

        assert ledger.setup_fee_percentage == 1000
        assert result.updated_state.setup_fee_percentage == 1000
        assert result.event.event_type == DomainEvent.SETUP_FEE_UPDATED

    def test_fee_update_to_zero(self, ledger):
        """Test fee update to zero"""
        ledger.update_setup_fee_percentage(OWNER, 0)
        assert ledger.setup_fee_percentage == 0

    def test_negative_fee_rejected(self, ledger):
        """Test negative fee rejected"""
        with pytest.raises(InvalidAmount):
            ledger.update_setup_fee_percentage(OWNER, -1)

    def test_fee_update_requires_owner(self, ledger):
        """Test fee update requires owner"""
        with pytest.raises(Unauthorized):
            ledger.update_setup_fee_percentage(ALICE, 50)

    def test_update_fee_recipient(self, ledger):
        """Test update fee recipient"""
        result = ledger.update_fee_recipient(OWNER, BOB)

        assert ledger.fee_recipient == BOB
        assert result.event.data == {"old": FEE_RECIPIENT, "new": BOB}

        create(ledger, ALICE, gross=10000)
        assert ledger.funds.balance_of(BOB) == 100

    def test_fee_recipient_cannot_be_null(self, ledger):
        """Test fee recipient cannot be null"""
        with pytest.raises(InvalidAddress):
            ledger.update_fee_recipient(OWNER, ZERO)
        assert ledger.fee_recipient == FEE_RECIPIENT

    def test_transfer_ownership(self, ledger):
        """Test transfer ownership"""
        ledger.transfer_ownership(OWNER, BOB)

        assert ledger.owner == BOB
        with pytest.raises(Unauthorized):
            create(ledger, ALICE, caller=OWNER)
        create(ledger, ALICE, caller=BOB)

    def test_transfer_ownership_to_null(self, ledger):
        """Test transfer ownership to null"""
        with pytest.raises(InvalidAddress):
            ledger.transfer_ownership(OWNER, None)

    def test_admin_changes_are_audited(self, ledger):
        """Test admin changes are audited"""
        ledger.update_setup_fee_percentage(OWNER, 250)
        ledger.update_fee_recipient(OWNER, BOB)

        events = ledger.audit_trail.get_events_for_entity("ledger", "global")
        types = [e.event_type for e in events]
        assert types == [
            AuditEventType.LEDGER_INITIALIZED,
            AuditEventType.SETUP_FEE_UPDATED,
            AuditEventType.FEE_RECIPIENT_UPDATED,
        ]


class TestEscrowOperations:

    def test_deposit_from_anyone(self, ledger):
        """Test deposit from anyone"""
        result = ledger.deposit(ALICE, 500)

        assert result.amount == 500
        assert result.event.event_type == DomainEvent.FUNDS_DEPOSITED
        assert ledger.escrow_balance() == 500

    def test_deposit_zero_rejected(self, ledger):
        """Test deposit zero rejected"""
        with pytest.raises(InvalidAmount):
            ledger.deposit(ALICE, 0)

    def test_emergency_recover(self, feeless):
        """Test emergency recover"""
        create(feeless)
        feeless.deposit(BOB, 300)

        result = feeless.emergency_recover(OWNER, 1300)

        assert result.amount == 1300
        assert feeless.escrow_balance() == 0
        assert feeless.funds.balance_of(OWNER) == 1300

    def test_recover_more_than_escrow(self, feeless):
        """Test recover more than escrow"""
        feeless.deposit(BOB, 300)
        with pytest.raises(InsufficientFunds):
            feeless.emergency_recover(OWNER, 301)
        assert feeless.escrow_balance() == 300

    def test_recover_requires_owner(self, feeless):
        """Test recover requires owner"""
        feeless.deposit(BOB, 300)
        with pytest.raises(Unauthorized):
            feeless.emergency_recover(BOB, 300)


class TestEnumeration:

    def test_beneficiaries_in_creation_order(self, ledger):
        """Test beneficiaries in creation order"""
        create(ledger, BOB)
        create(ledger, ALICE)

        assert ledger.get_beneficiaries() == [BOB, ALICE]
        assert ledger.get_beneficiary(0) == BOB
        assert ledger.get_beneficiary(1) == ALICE

    def test_index_out_of_bounds(self, ledger):
        """Test index out of bounds"""
        create(ledger)
        with pytest.raises(IndexOutOfBounds):
            ledger.get_beneficiary(1)
        with pytest.raises(IndexOutOfBounds):
            ledger.get_beneficiary(-1)

    def test_unknown_address_queries(self, ledger):
        """Test unknown address queries"""
        assert not ledger.is_beneficiary(BOB)
        assert not ledger.has_vesting_schedule(BOB)
        assert ledger.get_schedule(BOB) is None
        assert ledger.get_vested_amount(BOB) == 0
        assert ledger.get_releasable_amount(BOB) == 0

    def test_revoked_beneficiary_stays_listed(self, feeless, clock):
        """Test revoked beneficiary stays listed"""
        create(feeless)
        clock.now = T + 100
        feeless.revoke(OWNER, ALICE)
        feeless.release(ALICE)

        assert feeless.is_beneficiary(ALICE)
        assert feeless.get_beneficiary_count() == 1

    def test_totals(self, feeless, clock):
        """Test committed and released totals"""
        create(feeless, ALICE, gross=1000)
        create(feeless, BOB, gross=2000)
        clock.now = T + 50
        feeless.release(ALICE)

        assert feeless.get_total_committed() == 3000
        assert feeless.get_total_released() == 500


class TestFailedTransfers:
    """A failed payout leaves no trace"""

    def test_create_rolls_back_when_fee_transfer_fails(self):
        """Test create rolls back when fee transfer fails"""
        ledger, funds, audit_trail = build_ledger()
        funds.reject_recipient(FEE_RECIPIENT)
        audit_count = audit_trail.count_events()

        with pytest.raises(TransferError):
            create(ledger, gross=10000)

        assert ledger.get_beneficiary_count() == 0
        assert not ledger.has_vesting_schedule(ALICE)
        assert ledger.escrow_balance() == 0
        assert audit_trail.count_events() == audit_count

        funds.accept_recipient(FEE_RECIPIENT)
        create(ledger, gross=10000)
        assert ledger.get_beneficiary_count() == 1

    def test_release_rolls_back_when_payout_fails(self, clock):
        """Test release rolls back when payout fails"""
        ledger, funds, _ = build_ledger(fee_bps=0, clock=clock)
        create(ledger)
        clock.now = T + 50
        funds.reject_recipient(ALICE)

        with pytest.raises(TransferError):
            ledger.release(ALICE)

        assert ledger.get_schedule(ALICE).released == 0
        assert ledger.escrow_balance() == 1000
        assert funds.balance_of(ALICE) == 0

        funds.accept_recipient(ALICE)
        assert ledger.release(ALICE).amount == 500


class TestConcurrency:

    def test_concurrent_creates_for_same_beneficiary(self):
        """Test concurrent creates for same beneficiary"""
        ledger, _, _ = build_ledger(fee_bps=0)
        outcomes = []
        lock = threading.Lock()

        def worker():
            try:
                create(ledger, ALICE)
                outcome = "ok"
            except DuplicateSchedule:
                outcome = "duplicate"
            with lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("ok") == 1
        assert outcomes.count("duplicate") == 9
        assert ledger.get_beneficiary_count() == 1
        assert ledger.escrow_balance() == 1000

    def test_concurrent_releases_never_overpay(self, clock):
        """Test concurrent releases never overpay"""
        ledger, funds, _ = build_ledger(fee_bps=0, clock=clock)
        create(ledger)
        clock.now = T + 60
        paid = []
        lock = threading.Lock()

        def worker():
            try:
                amount = ledger.release(ALICE).amount
            except NothingReleasable:
                amount = 0
            with lock:
                paid.append(amount)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(paid) == 600
        assert funds.balance_of(ALICE) == 600
        assert ledger.get_schedule(ALICE).released == 600

    def test_queries_do_not_wait_for_writer(self, tmp_path, clock):
        """Test that SQLite-backed queries answer while a write transaction is open"""
        storage = SQLiteStorage(tmp_path / "vesting.db")
        ledger, _, _ = build_ledger(storage=storage, fee_bps=0, clock=clock)
        create(ledger)
        clock.now = T + 50
        started = threading.Event()
        release = threading.Event()

        def writer():
            with storage.atomic():
                ledger.funds.receive(BOB, 1)
                started.set()
                release.wait(5)

        thread = threading.Thread(target=writer)
        thread.start()
        started.wait(5)

        began = time.monotonic()
        vested = ledger.get_vested_amount(ALICE)
        escrow = ledger.escrow_balance()
        elapsed = time.monotonic() - began

        release.set()
        thread.join()

        assert elapsed < 0.5
        assert vested == 500
        assert escrow == 1000
        assert ledger.escrow_balance() == 1001
        storage.close()


class TestPersistence:

    def test_state_survives_reload(self, tmp_path, clock):
        """Test state survives reload"""
        db_path = tmp_path / "vesting.db"

        storage = SQLiteStorage(db_path)
        ledger, _, _ = build_ledger(storage=storage, clock=clock)
        create(ledger, ALICE, gross=10000)
        create(ledger, BOB, gross=20000)
        ledger.update_setup_fee_percentage(OWNER, 500)
        storage.close()

        storage = SQLiteStorage(db_path)
        reloaded, funds, audit_trail = build_ledger(
            storage=storage, clock=clock, owner=BOB, fee_recipient=ALICE, fee_bps=0
        )

        assert reloaded.owner == OWNER
        assert reloaded.fee_recipient == FEE_RECIPIENT
        assert reloaded.setup_fee_percentage == 500
        assert reloaded.get_beneficiaries() == [ALICE, BOB]
        assert reloaded.get_schedule(BOB).total_amount == 19800
        assert funds.balance_of(FEE_RECIPIENT) == 300
        assert audit_trail.verify_integrity()["valid"]

        with pytest.raises(DuplicateSchedule):
            create(reloaded, ALICE)
        storage.close()

    def test_sqlite_rollback_on_failed_transfer(self, tmp_path):
        """Test sqlite rollback on failed transfer"""
        storage = SQLiteStorage(tmp_path / "vesting.db")
        ledger, funds, _ = build_ledger(storage=storage)
        funds.reject_recipient(FEE_RECIPIENT)

        with pytest.raises(TransferError):
            create(ledger, gross=10000)

        assert ledger.get_beneficiary_count() == 0
        assert not storage.exists(ScheduleLedger.SCHEDULES_TABLE, ALICE)
        assert funds.escrow_balance() == 0
        persisted = LedgerState.from_dict(storage.load(ScheduleLedger.STATE_TABLE, "global"))
        assert persisted.beneficiaries == []
        storage.close()
