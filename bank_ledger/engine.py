"""
Ledger Engine Module

Deposits, withdrawals and transfers. Each operation is exactly one unit of
work: amount validation happens before any lock is taken, authorization and
funds checks happen after locking but before the first write, and the
balance updates commit together with their ledger entries or not at all.
"""

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, List, Optional

from .accounts import Account, AccountStore
from .currency import Money
from .errors import (
    Forbidden, InsufficientFunds, LedgerError, SameAccount, TransientError, ValidationError
)
from .ledger import EntryKind, LedgerEntry, NewEntry, TransactionLog
from .logging_config import get_logger, log_action
from .rbac import Actor, ActorFlagPrivileges
from .storage import StorageInterface


@dataclass(frozen=True)
class TransferResult:
    """Balances of both accounts after a transfer"""
    from_account_id: str
    from_balance: Money
    to_account_id: str
    to_balance: Money


class LedgerEngine:
    """
    Orchestrates locking order, balance arithmetic, authorization and atomic
    commit of balances plus ledger entries.
    """

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
        self.logger = get_logger("bank_ledger.engine")

    def deposit(self, account_id: str, amount: Any, actor: Actor,
                idempotency_key: Optional[str] = None) -> Money:
        """
        Credit an account

        Returns:
            New balance

        Raises:
            InvalidAmount, AccountNotFound, Forbidden, TransientError
        """
        money = Money.parse(amount)
        resource = f"account:{account_id}"

        with self._operation("deposit", actor, resource):
            with self.storage.atomic():
                account = self.accounts.lock_and_get(account_id)
                self.authorize(account, actor)

                replayed = self._replay(account.id, idempotency_key, EntryKind.DEPOSIT, money)
                if replayed:
                    return replayed[0].balance_after

                entry = self.post_credit(
                    account, money, EntryKind.DEPOSIT, description="Deposit",
                    idempotency_key=idempotency_key
                )

        self._log_committed("deposit", actor, resource, money, [entry])
        return entry.balance_after

    def withdraw(self, account_id: str, amount: Any, actor: Actor,
                 idempotency_key: Optional[str] = None) -> Money:
        """
        Debit an account

        Returns:
            New balance

        Raises:
            InvalidAmount, AccountNotFound, Forbidden, InsufficientFunds, TransientError
        """
        money = Money.parse(amount)
        resource = f"account:{account_id}"

        with self._operation("withdraw", actor, resource):
            with self.storage.atomic():
                account = self.accounts.lock_and_get(account_id)
                self.authorize(account, actor)

                replayed = self._replay(account.id, idempotency_key, EntryKind.WITHDRAW, money)
                if replayed:
                    return replayed[0].balance_after

                entry = self.post_debit(
                    account, money, EntryKind.WITHDRAW, description="Withdraw",
                    idempotency_key=idempotency_key
                )

        self._log_committed("withdraw", actor, resource, money, [entry])
        return entry.balance_after

    def transfer(self, from_account_id: str, to_account_id: str, amount: Any, actor: Actor,
                 idempotency_key: Optional[str] = None) -> TransferResult:
        """
        Move money between two accounts

        Both accounts are locked in canonical order, so a concurrent transfer
        in the opposite direction cannot deadlock with this one.

        Raises:
            SameAccount, InvalidAmount, AccountNotFound, Forbidden,
            InsufficientFunds, TransientError
        """
        if from_account_id == to_account_id:
            raise SameAccount("Cannot transfer to same account")
        money = Money.parse(amount)
        resource = f"account:{from_account_id}"

        with self._operation("transfer", actor, resource):
            with self.storage.atomic():
                locked = {
                    a.id: a for a in self.accounts.lock_and_get_many([from_account_id, to_account_id])
                }
                source = locked[from_account_id]
                target = locked[to_account_id]
                self.authorize(source, actor)

                replayed = self._replay(source.id, idempotency_key, EntryKind.TRANSFER, money)
                if replayed:
                    return self._replayed_transfer(source, target, idempotency_key, replayed)

                if source.balance < money:
                    raise InsufficientFunds("Insufficient funds")

                new_from = source.balance.subtract(money)
                new_to = target.balance + money
                self.accounts.set_balance(source.id, new_from)
                self.accounts.set_balance(target.id, new_to)

                entries = self.transaction_log.append([
                    NewEntry(
                        account_id=source.id, kind=EntryKind.TRANSFER, amount=money,
                        balance_after=new_from, from_account=source.account_number,
                        to_account=target.account_number, description="Transfer out",
                        idempotency_key=idempotency_key
                    ),
                    NewEntry(
                        account_id=target.id, kind=EntryKind.TRANSFER, amount=money,
                        balance_after=new_to, from_account=source.account_number,
                        to_account=target.account_number, description="Transfer in",
                        idempotency_key=idempotency_key
                    ),
                ])

        self._log_committed("transfer", actor, resource, money, entries)
        return TransferResult(
            from_account_id=source.id,
            from_balance=new_from,
            to_account_id=target.id,
            to_balance=new_to
        )

    def authorize(self, account: Account, actor: Actor) -> None:
        """Owner or elevated actor only"""
        if account.owner_id == actor.user_id:
            return
        if self.privileges.is_elevated(actor):
            return
        raise Forbidden(f"Actor {actor.user_id} cannot operate on account {account.id}")

    def post_credit(self, account: Account, amount: Money, kind: EntryKind,
                    counterparty: Optional[str] = None, description: str = "",
                    idempotency_key: Optional[str] = None) -> LedgerEntry:
        """
        Credit a locked account and append its entry. Caller holds the lock
        inside an open unit of work.
        """
        new_balance = account.balance + amount
        self.accounts.set_balance(account.id, new_balance)
        account.balance = new_balance
        [entry] = self.transaction_log.append([NewEntry(
            account_id=account.id, kind=kind, amount=amount, balance_after=new_balance,
            from_account=counterparty, to_account=account.account_number,
            description=description, idempotency_key=idempotency_key
        )])
        return entry

    def post_debit(self, account: Account, amount: Money, kind: EntryKind,
                   counterparty: Optional[str] = None, description: str = "",
                   idempotency_key: Optional[str] = None) -> LedgerEntry:
        """
        Debit a locked account and append its entry. Caller holds the lock
        inside an open unit of work.

        Raises:
            InsufficientFunds: before any write, if the balance is too low
        """
        if account.balance < amount:
            raise InsufficientFunds("Insufficient funds")
        new_balance = account.balance.subtract(amount)
        self.accounts.set_balance(account.id, new_balance)
        account.balance = new_balance
        [entry] = self.transaction_log.append([NewEntry(
            account_id=account.id, kind=kind, amount=amount, balance_after=new_balance,
            from_account=account.account_number, to_account=counterparty,
            description=description, idempotency_key=idempotency_key
        )])
        return entry

    def _replay(self, account_id: str, idempotency_key: Optional[str],
                kind: EntryKind, amount: Money) -> List[LedgerEntry]:
        """Entries already written under this key (account must be locked)"""
        if not idempotency_key:
            return []
        previous = self.transaction_log.find_by_idempotency_key(account_id, idempotency_key)
        for entry in previous:
            if entry.kind != kind or entry.amount != amount:
                raise ValidationError("Idempotency key was already used for a different operation")
        return previous

    def _replayed_transfer(self, source: Account, target: Account, idempotency_key: str,
                           replayed: List[LedgerEntry]) -> TransferResult:
        """Result of an earlier transfer under this key, which must have the same direction and target"""
        outgoing = [
            e for e in replayed
            if e.from_account == source.account_number and e.to_account == target.account_number
        ]
        incoming = [
            e for e in self.transaction_log.find_by_idempotency_key(target.id, idempotency_key)
            if e.from_account == source.account_number and e.to_account == target.account_number
        ]
        if len(outgoing) != len(replayed) or not incoming:
            raise ValidationError("Idempotency key was already used for a different operation")
        return TransferResult(
            from_account_id=source.id,
            from_balance=outgoing[0].balance_after,
            to_account_id=target.id,
            to_balance=incoming[0].balance_after
        )

    def _operation(self, action: str, actor: Actor, resource: str):
        return logged_operation(self.logger, action, actor, resource)

    def _log_committed(self, action: str, actor: Actor, resource: str,
                       amount: Money, entries: List[LedgerEntry]) -> None:
        log_action(
            self.logger, "info", f"{action} committed",
            user_id=actor.user_id, action=action, resource=resource,
            extra={
                "amount": amount.format(),
                "entries": [e.entry_id for e in entries],
                "balances": {e.account_id: e.balance_after.format() for e in entries},
            }
        )


@contextmanager
def logged_operation(logger, action: str, actor: Actor, resource: str):
    """Log rejected and transient failures of one operation, then re-raise"""
    try:
        yield
    except TransientError as e:
        log_action(
            logger, "error", f"{action} failed, safe to retry",
            user_id=actor.user_id, action=action, resource=resource,
            extra={"error": e.message}, exc_info=e.cause or e
        )
        raise
    except LedgerError as e:
        log_action(
            logger, "warning", f"{action} rejected: {e.code}",
            user_id=actor.user_id, action=action, resource=resource,
            extra={"error": e.message}
        )
        raise
