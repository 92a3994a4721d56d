"""
Query Layer Module

Read-only views over accounts, ledger entries and applications, with the
same owner-or-elevated visibility rules the engine enforces for writes.
"""

from typing import Dict, List, Optional, Tuple, Union

from .accounts import Account, AccountStore
from .applications import Application, ApplicationKind, ApplicationStatus
from .currency import Money
from .errors import AccountNotFound, Forbidden
from .ledger import LedgerEntry, TransactionLog
from .rbac import Actor, ActorFlagPrivileges
from .storage import StorageInterface


class LedgerQueries:
    """Balances, history and application listings"""

    def __init__(
        self,
        storage: StorageInterface,
        accounts: AccountStore,
        transaction_log: TransactionLog,
        privileges=None
    ):
        self.storage = storage
        self.accounts = accounts
        self.transaction_log = transaction_log
        self.privileges = privileges or ActorFlagPrivileges()
        self.applications_table = "applications"

    def get_balance(self, account_id: str, actor: Actor) -> Money:
        return self._visible_account(account_id, actor).balance

    def get_history(self, account_id: str, actor: Actor, limit: Optional[int] = None) -> List[LedgerEntry]:
        """Ledger entries for an account, newest first"""
        account = self._visible_account(account_id, actor)
        return self.transaction_log.entries_for_account(account.id, limit=limit)

    def get_statement(self, account_id: str, actor: Actor,
                      limit: Optional[int] = None) -> Tuple[Money, List[LedgerEntry]]:
        """
        Balance and entries from the same read, newest first.

        The balance is the newest entry's balance_after, so it always agrees
        with the entries shown.
        """
        account = self._visible_account(account_id, actor)
        entries = self.transaction_log.entries_for_account(account.id, limit=limit)
        balance = entries[0].balance_after if entries else account.balance
        return balance, entries

    def list_accounts(self, actor: Actor, owner_id: Optional[str] = None) -> List[Account]:
        owner_id = owner_id or actor.user_id
        if owner_id != actor.user_id and not self.privileges.is_elevated(actor):
            raise Forbidden("Cannot list another owner's accounts")
        return self.accounts.get_owner_accounts(owner_id)

    def list_applications(self, actor: Actor,
                          kind: Optional[Union[ApplicationKind, str]] = None) -> List[Application]:
        """The actor's own applications, newest first"""
        filters = {"owner_id": actor.user_id}
        if kind is not None:
            filters["kind"] = ApplicationKind(kind).value
        return _newest_first(self.storage.find(self.applications_table, filters))

    def list_all_applications(self, actor: Actor,
                              kind: Optional[Union[ApplicationKind, str]] = None) -> List[Application]:
        """Every application, newest first (elevated only)"""
        self._require_elevated(actor)
        if kind is None:
            rows = self.storage.load_all(self.applications_table)
        else:
            rows = self.storage.find(self.applications_table, {"kind": ApplicationKind(kind).value})
        return _newest_first(rows)

    def application_stats(self, actor: Actor, kind: Union[ApplicationKind, str]) -> Dict[str, int]:
        """Application count per status for one kind (elevated only)"""
        self._require_elevated(actor)
        stats = {status.value: 0 for status in ApplicationStatus}
        for row in self.storage.find(self.applications_table, {"kind": ApplicationKind(kind).value}):
            stats[row["status"]] += 1
        return stats

    def _visible_account(self, account_id: str, actor: Actor) -> Account:
        account = self.accounts.get_account(account_id)
        if account is None:
            raise AccountNotFound(f"Account {account_id} not found")
        if account.owner_id != actor.user_id and not self.privileges.is_elevated(actor):
            raise Forbidden(f"Actor {actor.user_id} cannot view account {account_id}")
        return account

    def _require_elevated(self, actor: Actor) -> None:
        if not self.privileges.is_elevated(actor):
            raise Forbidden("Access denied, Admins only")


def _newest_first(rows) -> List[Application]:
    # Storage returns rows oldest first; reversing keeps ties newest first
    applications = [Application.from_dict(row) for row in reversed(list(rows))]
    applications.sort(key=lambda a: a.created_at, reverse=True)
    return applications
