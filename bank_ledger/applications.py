"""
Application Workflow Module

Loan and insurance applications share one strict state machine:
``pending`` is the only initial state and every other state is terminal.
Approval moves money through the ledger engine in the same unit of work that
records the new status, and the lock-then-check on the application row
guarantees an application leaves ``pending`` at most once.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Union
import uuid

from .accounts import Account, AccountStore
from .audit import AuditTrail, AuditEventType
from .currency import Money
from .engine import LedgerEngine, logged_operation
from .errors import (
    AccountNotFound, AlreadyProcessed, ApplicationNotFound, Forbidden,
    InsufficientFunds, ValidationError
)
from .ledger import EntryKind, LedgerEntry
from .logging_config import get_logger, log_action
from .rbac import Actor
from .storage import StorageInterface, StorageRecord


class ApplicationKind(Enum):
    LOAN = "loan"
    INSURANCE = "insurance"


class ApplicationStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"    # Loan disbursed
    ACTIVE = "active"        # Insurance policy in force
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self != ApplicationStatus.PENDING


class Decision(Enum):
    APPROVE = "approve"
    REJECT = "reject"

    @classmethod
    def parse(cls, value: Union['Decision', str]) -> 'Decision':
        """Accept enum members and the action words used by admin forms"""
        if isinstance(value, Decision):
            return value
        aliases = {
            "approve": cls.APPROVE, "approved": cls.APPROVE,
            "reject": cls.REJECT, "rejected": cls.REJECT,
        }
        decision = aliases.get(str(value).strip().lower())
        if decision is None:
            raise ValidationError(f"Invalid decision: {value!r}")
        return decision


@dataclass
class Application(StorageRecord):
    """Loan or insurance application"""
    owner_id: str
    kind: ApplicationKind
    account_id: str
    status: ApplicationStatus = ApplicationStatus.PENDING

    # Loan fields
    amount: Optional[Money] = None
    tenure_months: Optional[int] = None

    # Insurance fields
    policy_type: Optional[str] = None
    premium: Optional[Money] = None
    coverage: Optional[Money] = None
    duration_months: Optional[int] = None

    # Decision
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None
    ledger_entry_id: Optional[int] = None

    @property
    def is_pending(self) -> bool:
        return self.status == ApplicationStatus.PENDING

    @property
    def approved_status(self) -> ApplicationStatus:
        if self.kind == ApplicationKind.INSURANCE:
            return ApplicationStatus.ACTIVE
        return ApplicationStatus.APPROVED

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Application':
        data = dict(data)
        data['kind'] = ApplicationKind(data['kind'])
        data['status'] = ApplicationStatus(data['status'])
        for key in ('amount', 'premium', 'coverage'):
            if data.get(key) is not None:
                data[key] = Money.from_decimal(data[key])
        if data.get('decided_at'):
            data['decided_at'] = datetime.fromisoformat(data['decided_at'])
        return super().from_dict(data)


class ApplicationWorkflow:
    """
    Submission and the single pending -> terminal transition for loan and
    insurance applications.

    Lock order inside a transition: application row, house reserve row (only
    when a loan reserve limit is configured), then the owner's account.
    """

    def __init__(
        self,
        storage: StorageInterface,
        accounts: AccountStore,
        engine: LedgerEngine,
        audit_trail: AuditTrail,
        house_account_number: str = "HOUSE",
        loan_reserve_limit: Optional[Money] = None
    ):
        self.storage = storage
        self.accounts = accounts
        self.engine = engine
        self.privileges = engine.privileges
        self.audit_trail = audit_trail
        self.house_account_number = house_account_number
        self.loan_reserve_limit = loan_reserve_limit
        self.applications_table = "applications"
        self.reserve_table = "house_reserve"
        self.logger = get_logger("bank_ledger.applications")

    def submit_loan(self, actor: Actor, amount: Any, tenure_months: Any,
                    account_id: Optional[str] = None) -> Application:
        """
        Apply for a loan to be disbursed into one of the applicant's accounts

        Args:
            actor: Applicant
            amount: Requested principal
            tenure_months: Loan tenure in months
            account_id: Destination account (defaults to the applicant's oldest)
        """
        money = Money.parse(amount)
        tenure = _positive_int(tenure_months, "Tenure")
        account = self._resolve_account(actor, account_id)

        application = self._new_application(
            actor, ApplicationKind.LOAN, account,
            amount=money, tenure_months=tenure
        )
        return self._submit(application, actor, {"amount": money.format(), "tenure_months": tenure})

    def submit_insurance(self, actor: Actor, policy_type: str, premium: Any, coverage: Any,
                         duration_months: Any = 12, account_id: Optional[str] = None) -> Application:
        """
        Apply for an insurance policy whose premium is collected on approval
        """
        if not policy_type or not str(policy_type).strip():
            raise ValidationError("Type, premium, and coverage are required")
        premium_money = Money.parse(premium)
        coverage_money = Money.parse(coverage)
        duration = _positive_int(duration_months, "Duration")
        account = self._resolve_account(actor, account_id)

        application = self._new_application(
            actor, ApplicationKind.INSURANCE, account,
            policy_type=str(policy_type).strip(), premium=premium_money,
            coverage=coverage_money, duration_months=duration
        )
        return self._submit(application, actor, {
            "policy_type": application.policy_type,
            "premium": premium_money.format(),
            "coverage": coverage_money.format(),
        })

    def get_application(self, application_id: str) -> Optional[Application]:
        data = self.storage.load(self.applications_table, application_id)
        return Application.from_dict(data) if data else None

    def transition(self, application_id: str, decision: Union[Decision, str], actor: Actor,
                   kind: Optional[ApplicationKind] = None) -> Application:
        """
        Move a pending application to its terminal state

        Approval credits the loan amount (loans) or debits the premium
        (insurance) against the owner's account; rejection moves no money.
        A failed insurance funds check leaves the application pending. When
        ``kind`` is given, an application of another kind is not found.

        Raises:
            Forbidden, ApplicationNotFound, AlreadyProcessed,
            InsufficientFunds, AccountNotFound, TransientError
        """
        resource = f"application:{application_id}"
        entry: Optional[LedgerEntry] = None

        with logged_operation(self.logger, "application_decision", actor, resource):
            if not self.privileges.is_elevated(actor):
                raise Forbidden("Access denied, Admins only")
            decision = Decision.parse(decision)

            with self.storage.atomic():
                data = self.storage.lock_record(self.applications_table, application_id)
                if data is None or (kind is not None and data["kind"] != kind.value):
                    raise ApplicationNotFound(f"Application {application_id} not found")
                application = Application.from_dict(data)

                if not application.is_pending:
                    raise AlreadyProcessed(
                        f"Application {application_id} is already {application.status.value}"
                    )

                if decision == Decision.REJECT:
                    application.status = ApplicationStatus.REJECTED
                else:
                    entry = self._move_funds(application)
                    application.status = application.approved_status
                    application.ledger_entry_id = entry.entry_id

                now = datetime.now(timezone.utc)
                application.decided_by = actor.user_id
                application.decided_at = now
                application.updated_at = now
                self.storage.save(self.applications_table, application.id, application.to_dict())

        extra = {"kind": application.kind.value, "status": application.status.value}
        if entry is not None:
            extra.update({"entry_id": entry.entry_id, "amount": entry.amount.format()})
        log_action(
            self.logger, "info", f"Application {application.status.value}",
            user_id=actor.user_id, action=f"application_{decision.value}",
            resource=resource, extra=extra
        )
        self.audit_trail.log_event(
            event_type=(AuditEventType.APPLICATION_REJECTED if decision == Decision.REJECT
                        else AuditEventType.APPLICATION_APPROVED),
            entity_type="application",
            entity_id=application.id,
            metadata=extra,
            user_id=actor.user_id
        )
        return application

    def approve(self, application_id: str, actor: Actor) -> Application:
        return self.transition(application_id, Decision.APPROVE, actor)

    def reject(self, application_id: str, actor: Actor) -> Application:
        return self.transition(application_id, Decision.REJECT, actor)

    def _move_funds(self, application: Application) -> LedgerEntry:
        if application.kind == ApplicationKind.LOAN:
            if self.loan_reserve_limit is not None:
                self._reserve_loan_funds(application.amount)
            account = self.accounts.lock_and_get(application.account_id)
            return self.engine.post_credit(
                account, application.amount, EntryKind.LOAN_DISBURSEMENT,
                counterparty=self.house_account_number,
                description=f"Loan disbursement ({application.tenure_months} months)"
            )

        account = self.accounts.lock_and_get(application.account_id)
        return self.engine.post_debit(
            account, application.premium, EntryKind.INSURANCE_PREMIUM,
            counterparty=self.house_account_number,
            description=f"Insurance premium: {application.policy_type}"
        )

    def _reserve_loan_funds(self, amount: Money) -> None:
        """Count a disbursement against the configured house reserve"""
        data = self.storage.lock_record(self.reserve_table, "loans")
        disbursed = Money.from_decimal(data["disbursed"]) if data else Money.zero()
        if disbursed + amount > self.loan_reserve_limit:
            raise InsufficientFunds("Loan reserve exhausted")
        self.storage.save(self.reserve_table, "loans", {
            "id": "loans",
            "disbursed": (disbursed + amount).format(),
        })

    def _resolve_account(self, actor: Actor, account_id: Optional[str]) -> Account:
        if account_id:
            account = self.accounts.get_account(account_id)
            if account is None:
                raise AccountNotFound(f"Account {account_id} not found")
            if account.owner_id != actor.user_id:
                raise Forbidden("Applications must target the applicant's own account")
            return account

        owned = self.accounts.get_owner_accounts(actor.user_id)
        if not owned:
            raise AccountNotFound("Applicant has no account")
        return owned[0]

    def _new_application(self, actor: Actor, kind: ApplicationKind, account: Account,
                         **fields) -> Application:
        now = datetime.now(timezone.utc)
        return Application(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            owner_id=actor.user_id,
            kind=kind,
            account_id=account.id,
            **fields
        )

    def _submit(self, application: Application, actor: Actor, details: Dict[str, Any]) -> Application:
        self.storage.save(self.applications_table, application.id, application.to_dict())
        log_action(
            self.logger, "info", f"{application.kind.value} application submitted",
            user_id=actor.user_id, action="submit_application",
            resource=f"application:{application.id}", extra=details
        )
        self.audit_trail.log_event(
            event_type=AuditEventType.APPLICATION_SUBMITTED,
            entity_type="application",
            entity_id=application.id,
            metadata={"kind": application.kind.value, **details},
            user_id=actor.user_id
        )
        return application


def _positive_int(value: Any, label: str) -> int:
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{label} is required")
    try:
        number = Decimal(str(value).strip())
    except ArithmeticError:
        raise ValidationError(f"{label} must be a whole number of months")
    if not number.is_finite() or number != number.to_integral_value() or number <= 0:
        raise ValidationError(f"{label} must be a positive whole number of months")
    return int(number)
