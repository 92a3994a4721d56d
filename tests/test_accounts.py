"""
Test suite for the account store

Account creation, lookups, canonical lock ordering and guarded balance writes.
"""

import re
import threading

import pytest

from bank_ledger.accounts import Account, AccountStore
from bank_ledger.audit import AuditTrail, AuditEventType
from bank_ledger.currency import Money
from bank_ledger.errors import AccountNotFound
from bank_ledger.storage import InMemoryStorage


class TestAccountStore:
    """Test AccountStore functionality"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)
        self.accounts = AccountStore(self.storage, self.audit)

    def test_create_account(self):
        account = self.accounts.create_account("user-1")

        assert account.owner_id == "user-1"
        assert account.balance == Money.zero()
        assert re.fullmatch(r"AC[0-9A-F]{8}", account.account_number)
        assert self.accounts.get_account(account.id) == account

    def test_create_account_logs_audit_event(self):
        account = self.accounts.create_account("user-1", actor_id="admin-1")

        events = self.audit.get_events_for_entity("account", account.id)
        assert len(events) == 1
        assert events[0].event_type == AuditEventType.ACCOUNT_CREATED
        assert events[0].user_id == "admin-1"
        assert events[0].metadata["account_number"] == account.account_number

    def test_account_numbers_unique(self):
        numbers = {self.accounts.create_account("user-1").account_number for _ in range(50)}
        assert len(numbers) == 50

    def test_get_account_by_number(self):
        account = self.accounts.create_account("user-1")
        assert self.accounts.get_account_by_number(account.account_number).id == account.id
        assert self.accounts.get_account_by_number("AC00000000") is None

    def test_get_owner_accounts_oldest_first(self):
        first = self.accounts.create_account("user-1")
        second = self.accounts.create_account("user-1")
        self.accounts.create_account("user-2")

        owned = self.accounts.get_owner_accounts("user-1")
        assert [a.id for a in owned] == [first.id, second.id]

    def test_account_round_trips_through_storage(self):
        account = self.accounts.create_account("user-1")
        restored = Account.from_dict(self.storage.load("accounts", account.id))
        assert restored == account
        assert isinstance(restored.balance, Money)


class TestLocking:
    """Test lock primitives and balance writes"""

    def setup_method(self):
        self.storage = InMemoryStorage(lock_timeout=2.0)
        self.accounts = AccountStore(self.storage, AuditTrail(self.storage))
        self.a = self.accounts.create_account("user-1")
        self.b = self.accounts.create_account("user-2")

    def test_lock_and_get(self):
        with self.storage.atomic():
            account = self.accounts.lock_and_get(self.a.id)
            assert account.id == self.a.id
            assert self.storage.holds_lock("accounts", self.a.id)

    def test_lock_and_get_missing(self):
        with pytest.raises(AccountNotFound):
            with self.storage.atomic():
                self.accounts.lock_and_get("missing")

    def test_lock_and_get_many_canonical_order(self):
        expected = sorted([self.a.id, self.b.id])
        with self.storage.atomic():
            locked = self.accounts.lock_and_get_many([self.b.id, self.a.id])
            assert [a.id for a in locked] == expected
            assert self.storage.holds_lock("accounts", self.a.id)
            assert self.storage.holds_lock("accounts", self.b.id)

    def test_lock_and_get_many_acquires_in_ascending_order(self):
        acquired = []
        original = self.storage.lock_record

        def recording_lock(table, record_id):
            acquired.append(record_id)
            return original(table, record_id)

        self.storage.lock_record = recording_lock
        with self.storage.atomic():
            self.accounts.lock_and_get_many([self.b.id, self.a.id])
        assert acquired == sorted([self.a.id, self.b.id])

    def test_lock_and_get_many_missing(self):
        with pytest.raises(AccountNotFound):
            with self.storage.atomic():
                self.accounts.lock_and_get_many([self.a.id, "missing"])

    def test_set_balance(self):
        with self.storage.atomic():
            self.accounts.lock_and_get(self.a.id)
            self.accounts.set_balance(self.a.id, Money.from_cents(500))
        assert self.accounts.get_account(self.a.id).balance == Money.from_cents(500)

    def test_set_balance_requires_unit_of_work(self):
        with pytest.raises(RuntimeError):
            self.accounts.set_balance(self.a.id, Money.from_cents(500))

    def test_set_balance_requires_lock(self):
        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.accounts.set_balance(self.a.id, Money.from_cents(500))
        assert self.accounts.get_account(self.a.id).balance == Money.zero()

    def test_set_balance_rejects_negative(self):
        with pytest.raises(ValueError):
            with self.storage.atomic():
                self.accounts.lock_and_get(self.a.id)
                self.accounts.set_balance(self.a.id, Money.from_cents(-1))

    def test_rolled_back_balance_not_visible(self):
        with pytest.raises(ValueError):
            with self.storage.atomic():
                self.accounts.lock_and_get(self.a.id)
                self.accounts.set_balance(self.a.id, Money.from_cents(700))
                raise ValueError("boom")
        assert self.accounts.get_account(self.a.id).balance == Money.zero()

    def test_opposite_order_locking_does_not_deadlock(self):
        errors = []

        def worker(ids):
            try:
                for _ in range(50):
                    with self.storage.atomic():
                        self.accounts.lock_and_get_many(ids)
            except Exception as e:
                errors.append(e)

        t1 = threading.Thread(target=worker, args=([self.a.id, self.b.id],))
        t2 = threading.Thread(target=worker, args=([self.b.id, self.a.id],))
        t1.start()
        t2.start()
        t1.join(10)
        t2.join(10)

        assert not t1.is_alive() and not t2.is_alive()
        assert errors == []
