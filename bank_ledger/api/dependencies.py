"""
Ledger system container and request dependencies
"""

from typing import Optional

from fastapi import Header, HTTPException, status

from ..accounts import AccountStore
from ..applications import ApplicationWorkflow
from ..audit import AuditTrail
from ..config import LedgerConfig, get_config
from ..currency import Money
from ..engine import LedgerEngine
from ..ledger import TransactionLog
from ..queries import LedgerQueries
from ..rbac import Actor, RBACManager
from ..storage import StorageInterface, create_storage


class LedgerSystem:
    """Ledger engine with all components wired to one storage backend"""

    def __init__(self, config: Optional[LedgerConfig] = None,
                 storage: Optional[StorageInterface] = None):
        self.config = config or get_config()
        self.storage = storage or create_storage(
            self.config.storage_backend,
            self.config.database_url,
            lock_timeout=self.config.lock_timeout_seconds
        )

        self.audit_trail = AuditTrail(self.storage, enabled=self.config.enable_audit_logging)
        self.rbac_manager = RBACManager(self.storage, self.audit_trail)
        self.accounts = AccountStore(self.storage, self.audit_trail)
        self.transaction_log = TransactionLog(self.storage)
        self.engine = LedgerEngine(
            self.storage, self.accounts, self.transaction_log,
            privileges=self.rbac_manager
        )

        reserve_limit = None
        if self.config.loan_reserve_limit.strip():
            reserve_limit = Money.from_decimal(self.config.loan_reserve_limit.strip())
        self.applications = ApplicationWorkflow(
            self.storage, self.accounts, self.engine, self.audit_trail,
            house_account_number=self.config.house_account_number,
            loan_reserve_limit=reserve_limit
        )
        self.queries = LedgerQueries(
            self.storage, self.accounts, self.transaction_log,
            privileges=self.rbac_manager
        )

    def close(self) -> None:
        self.storage.close()


# Global ledger system instance, created on first use
ledger_system: Optional[LedgerSystem] = None


def get_ledger_system() -> LedgerSystem:
    global ledger_system
    if ledger_system is None:
        ledger_system = LedgerSystem()
    return ledger_system


def get_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_role: Optional[str] = Header(None)
) -> Actor:
    """
    Actor for the current request. The session layer in front of the API
    authenticates the caller and sets these headers.
    """
    if not x_actor_id or not x_actor_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required"
        )
    is_elevated = (x_actor_role or "").strip().lower() == "admin"
    return Actor(user_id=x_actor_id.strip(), is_elevated=is_elevated)
