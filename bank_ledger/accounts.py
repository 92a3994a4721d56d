"""
Account Store Module

Holds account balances keyed by account id and exposes the locked-read and
balance-write primitives the ledger engine builds on. Balances change only
through ``set_balance`` inside a unit of work that holds the account's lock.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional
import uuid

from .currency import Money
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .errors import AccountNotFound
from .logging_config import get_logger, log_action


ACCOUNT_NUMBER_PREFIX = "AC"


@dataclass
class Account(StorageRecord):
    """
    Customer account. ``balance`` is never negative in a committed state.
    """
    owner_id: str
    account_number: str
    balance: Money

    @classmethod
    def from_dict(cls, data: Dict) -> 'Account':
        data = dict(data)
        data['balance'] = Money.from_decimal(data['balance'])
        return super().from_dict(data)


class AccountStore:
    """
    Account persistence with row-level locking.

    Lock order is global: whenever several accounts are locked together they
    are locked in ascending ``account_id`` order, so two units of work that
    touch the same pair can never wait on each other in a cycle.
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail
        self.accounts_table = "accounts"
        self.logger = get_logger("bank_ledger.accounts")

    def create_account(self, owner_id: str, actor_id: Optional[str] = None) -> Account:
        """
        Create a new zero-balance account for an owner

        Args:
            owner_id: ID of the owning user
            actor_id: ID of the user who requested creation (defaults to owner)

        Returns:
            Created Account object
        """
        now = datetime.now(timezone.utc)
        account = Account(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            owner_id=owner_id,
            account_number=self._generate_account_number(),
            balance=Money.zero()
        )
        self.storage.save(self.accounts_table, account.id, account.to_dict())

        log_action(
            self.logger, "info", "Account created",
            user_id=actor_id or owner_id, action="create_account",
            resource=f"account:{account.id}",
            extra={"account_number": account.account_number, "owner_id": owner_id}
        )
        self.audit_trail.log_event(
            event_type=AuditEventType.ACCOUNT_CREATED,
            entity_type="account",
            entity_id=account.id,
            metadata={"account_number": account.account_number, "owner_id": owner_id},
            user_id=actor_id or owner_id
        )
        return account

    def get_account(self, account_id: str) -> Optional[Account]:
        """Get account by ID"""
        data = self.storage.load(self.accounts_table, account_id)
        return Account.from_dict(data) if data else None

    def get_account_by_number(self, account_number: str) -> Optional[Account]:
        """Get account by account number"""
        found = self.storage.find(self.accounts_table, {"account_number": account_number})
        return Account.from_dict(found[0]) if found else None

    def get_owner_accounts(self, owner_id: str) -> List[Account]:
        """Get all accounts for an owner, oldest first"""
        accounts = [
            Account.from_dict(data)
            for data in self.storage.find(self.accounts_table, {"owner_id": owner_id})
        ]
        accounts.sort(key=lambda a: a.created_at)
        return accounts

    def lock_and_get(self, account_id: str) -> Account:
        """
        Lock an account row for the rest of the current unit of work

        Raises:
            AccountNotFound: if the account does not exist
        """
        data = self.storage.lock_record(self.accounts_table, account_id)
        if data is None:
            raise AccountNotFound(f"Account {account_id} not found")
        return Account.from_dict(data)

    def lock_and_get_many(self, account_ids: Iterable[str]) -> List[Account]:
        """
        Lock several accounts in canonical (ascending id) order

        Returns:
            Accounts in ascending id order, regardless of the order given

        Raises:
            AccountNotFound: if any account does not exist
        """
        return [self.lock_and_get(account_id) for account_id in sorted(set(account_ids))]

    def set_balance(self, account_id: str, new_balance: Money) -> Account:
        """
        Persist a new balance. The caller must hold the account's lock in the
        current unit of work, which must also write the matching ledger entries.
        """
        if not self.storage.in_transaction():
            raise RuntimeError("set_balance must run inside a unit of work")
        if not self.storage.holds_lock(self.accounts_table, account_id):
            raise RuntimeError(f"set_balance requires the lock on account {account_id}")
        if new_balance.is_negative():
            raise ValueError("Account balance cannot be negative")

        data = self.storage.load(self.accounts_table, account_id)
        if data is None:
            raise AccountNotFound(f"Account {account_id} not found")
        account = Account.from_dict(data)
        account.balance = new_balance
        account.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.accounts_table, account.id, account.to_dict())
        return account

    def _generate_account_number(self) -> str:
        """Generate a unique account number, retrying on the rare collision"""
        while True:
            number = ACCOUNT_NUMBER_PREFIX + uuid.uuid4().hex[:8].upper()
            if not self.storage.find(self.accounts_table, {"account_number": number}):
                return number
