"""
Ledger Transaction Log Module

Append-only record of every balance-affecting event. One entry is written per
affected account per operation, always inside the same unit of work as the
balance change it describes. There is no update or delete path.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional
import itertools
import threading

from .currency import Money
from .storage import StorageInterface


class EntryKind(Enum):
    """Kinds of ledger entries"""
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    TRANSFER = "transfer"
    LOAN_DISBURSEMENT = "loan_disbursement"
    INSURANCE_PREMIUM = "insurance_premium"


@dataclass(frozen=True)
class LedgerEntry:
    """
    Immutable single-account effect of a money movement.
    Amounts are always positive; direction follows from ``kind`` and which of
    ``from_account`` / ``to_account`` names the attributed account.
    """
    entry_id: int
    account_id: str
    kind: EntryKind
    amount: Money
    from_account: Optional[str]
    to_account: Optional[str]
    description: str
    balance_after: Money
    created_at: datetime
    idempotency_key: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "entry_id": self.entry_id,
            "account_id": self.account_id,
            "kind": self.kind.value,
            "amount": self.amount.format(),
            "from_account": self.from_account,
            "to_account": self.to_account,
            "description": self.description,
            "balance_after": self.balance_after.format(),
            "created_at": self.created_at.isoformat(),
            "idempotency_key": self.idempotency_key,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'LedgerEntry':
        return cls(
            entry_id=int(data["entry_id"]),
            account_id=data["account_id"],
            kind=EntryKind(data["kind"]),
            amount=Money.from_decimal(data["amount"]),
            from_account=data.get("from_account"),
            to_account=data.get("to_account"),
            description=data.get("description", ""),
            balance_after=Money.from_decimal(data["balance_after"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            idempotency_key=data.get("idempotency_key"),
        )


@dataclass(frozen=True)
class NewEntry:
    """Entry contents before the log assigns an id and timestamp"""
    account_id: str
    kind: EntryKind
    amount: Money
    balance_after: Money
    from_account: Optional[str] = None
    to_account: Optional[str] = None
    description: str = ""
    idempotency_key: Optional[str] = None


class TransactionLog:
    """Append-only ledger entry store"""

    def __init__(self, storage: StorageInterface, table_name: str = "ledger_entries"):
        self.storage = storage
        self.table_name = table_name
        self._id_lock = threading.Lock()
        existing = [int(row["entry_id"]) for row in storage.load_all(table_name)]
        self._ids = itertools.count(max(existing, default=0) + 1)

    def append(self, entries: Iterable[NewEntry]) -> List[LedgerEntry]:
        """
        Write entries as part of the caller's current unit of work.

        Ids are monotonic; ids taken by a unit of work that later rolls back
        are not reused.

        Raises:
            RuntimeError: if called outside a unit of work
        """
        if not self.storage.in_transaction():
            raise RuntimeError("Ledger entries can only be appended inside a unit of work")

        now = datetime.now(timezone.utc)
        written = []
        for new in entries:
            if not new.amount.is_positive():
                raise ValueError("Ledger entry amount must be positive")
            with self._id_lock:
                entry_id = next(self._ids)
            entry = LedgerEntry(
                entry_id=entry_id,
                account_id=new.account_id,
                kind=new.kind,
                amount=new.amount,
                from_account=new.from_account,
                to_account=new.to_account,
                description=new.description,
                balance_after=new.balance_after,
                created_at=now,
                idempotency_key=new.idempotency_key,
            )
            self.storage.save(self.table_name, _row_id(entry_id), entry.to_dict())
            written.append(entry)
        return written

    def get_entry(self, entry_id: int) -> Optional[LedgerEntry]:
        data = self.storage.load(self.table_name, _row_id(entry_id))
        return LedgerEntry.from_dict(data) if data else None

    def entries_for_account(
        self,
        account_id: str,
        kinds: Optional[Iterable[EntryKind]] = None,
        limit: Optional[int] = None
    ) -> List[LedgerEntry]:
        """Entries attributed to an account, newest first"""
        entries = [
            LedgerEntry.from_dict(data)
            for data in self.storage.find(self.table_name, {"account_id": account_id})
        ]
        if kinds is not None:
            wanted = set(kinds)
            entries = [e for e in entries if e.kind in wanted]
        entries.sort(key=lambda e: e.entry_id, reverse=True)
        if limit is not None:
            entries = entries[:limit]
        return entries

    def find_by_idempotency_key(self, account_id: str, key: str) -> List[LedgerEntry]:
        """Entries on an account written under a client idempotency key"""
        found = self.storage.find(self.table_name, {"account_id": account_id, "idempotency_key": key})
        return sorted((LedgerEntry.from_dict(d) for d in found), key=lambda e: e.entry_id)

    def count(self) -> int:
        return self.storage.count(self.table_name)


def _row_id(entry_id: int) -> str:
    return f"{entry_id:012d}"
