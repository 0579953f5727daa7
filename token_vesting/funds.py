"""
Funds Transfer Module

The ledger moves native funds only through a FundsTransfer backend: deposits
are received into escrow and payouts are transferred out of it. A backend
must make transfer() all-or-nothing and must undo everything done inside
atomic() when the block fails.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Set
import threading

from .amounts import normalize_address
from .exceptions import TransferError
from .storage import StorageInterface


ESCROW_ACCOUNT = "__escrow__"


class FundsTransfer(ABC):
    """Interface for the native funds primitive consumed by the ledger"""

    @abstractmethod
    def receive(self, sender: str, amount: int) -> None:
        """Credit value sent along with a call to escrow"""
        pass

    @abstractmethod
    def transfer(self, recipient: str, amount: int) -> None:
        """Pay `amount` out of escrow; raise TransferError on failure"""
        pass

    @abstractmethod
    def balance_of(self, address: str) -> int:
        """Native balance paid out to an address"""
        pass

    @abstractmethod
    def escrow_balance(self) -> int:
        """Funds currently held by the ledger"""
        pass

    @contextmanager
    def atomic(self):
        """Group receive/transfer calls; default backends are single-step"""
        yield


class StorageFunds(FundsTransfer):
    """
    Balance book kept in the ledger's own storage

    Balances live in the "balances" table, so they commit and roll back
    together with the schedule records written in the same atomic block.
    """

    def __init__(self, storage: StorageInterface, table_name: str = "balances"):
        self.storage = storage
        self.table_name = table_name
        self._lock = threading.RLock()
        self._rejected: Set[str] = set()

    def _get(self, account: str) -> int:
        record = self.storage.load(self.table_name, account)
        return int(record['amount']) if record else 0

    def _set(self, account: str, amount: int) -> None:
        self.storage.save(self.table_name, account, {'account': account, 'amount': str(amount)})

    def reject_recipient(self, address: str) -> None:
        """Make every transfer to `address` fail, like a recipient that refuses payment"""
        self._rejected.add(normalize_address(address))

    def accept_recipient(self, address: str) -> None:
        self._rejected.discard(normalize_address(address))

    def receive(self, sender: str, amount: int) -> None:
        if amount < 0:
            raise TransferError("Cannot receive a negative amount", sender, amount)
        if amount == 0:
            return
        with self._lock:
            self._set(ESCROW_ACCOUNT, self._get(ESCROW_ACCOUNT) + amount)

    def transfer(self, recipient: str, amount: int) -> None:
        recipient = normalize_address(recipient)
        if amount <= 0:
            raise TransferError("Transfer amount must be positive", recipient, amount)
        if recipient in self._rejected:
            raise TransferError(f"Recipient {recipient} rejected the transfer", recipient, amount)

        with self._lock:
            escrow = self._get(ESCROW_ACCOUNT)
            if escrow < amount:
                raise TransferError(
                    f"Escrow holds {escrow}, cannot transfer {amount}", recipient, amount
                )
            self._set(ESCROW_ACCOUNT, escrow - amount)
            self._set(recipient, self._get(recipient) + amount)

    def balance_of(self, address: str) -> int:
        return self._get(normalize_address(address))

    def escrow_balance(self) -> int:
        return self._get(ESCROW_ACCOUNT)

    @contextmanager
    def atomic(self):
        with self._lock, self.storage.atomic():
            yield
