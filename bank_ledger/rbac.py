"""
Actors & Role-Based Access Control Module

Every engine call receives an explicit ``Actor`` capability instead of
reading ambient session state. Elevated privilege is resolved through a
privilege source on each call; ``RBACManager`` re-reads the user's role from
the directory every time so a demotion takes effect immediately.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from .audit import AuditEventType, AuditTrail
from .errors import Forbidden, ValidationError
from .storage import StorageInterface, StorageRecord


class Role(Enum):
    """Directory roles"""
    CUSTOMER = "customer"
    ADMIN = "admin"

    @property
    def is_elevated(self) -> bool:
        return self == Role.ADMIN


@dataclass(frozen=True)
class Actor:
    """Authenticated caller identity plus the session's elevated flag"""
    user_id: str
    is_elevated: bool = False

    @classmethod
    def admin(cls, user_id: str) -> 'Actor':
        return cls(user_id=user_id, is_elevated=True)


@dataclass
class User(StorageRecord):
    """Directory user (credentials live outside the ledger)"""
    name: str
    email: str
    role: Role = Role.CUSTOMER

    @classmethod
    def from_dict(cls, data) -> 'User':
        data = dict(data)
        data['role'] = Role(data['role'])
        return super().from_dict(data)


class ActorFlagPrivileges:
    """Privilege source that trusts the flag carried by the actor"""

    def is_elevated(self, actor: Actor) -> bool:
        return bool(actor.is_elevated)


class RBACManager:
    """User directory and per-call privilege lookup"""

    def __init__(self, storage: StorageInterface, audit_trail: Optional[AuditTrail] = None):
        self.storage = storage
        self.audit_trail = audit_trail or AuditTrail(storage)
        self.users_table = "users"

    def create_user(self, name: str, email: str, role: Role = Role.CUSTOMER,
                    user_id: Optional[str] = None) -> User:
        """Register a user in the directory"""
        if not name or not name.strip():
            raise ValidationError("Name is required")
        if not email or "@" not in email:
            raise ValidationError("Valid email required")
        email = email.strip().lower()
        if self.storage.find(self.users_table, {"email": email}):
            raise ValidationError(f"Email {email} is already registered")

        now = datetime.now(timezone.utc)
        user = User(
            id=user_id or str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=name.strip(),
            email=email,
            role=role
        )
        self.storage.save(self.users_table, user.id, user.to_dict())

        self.audit_trail.log_event(
            event_type=AuditEventType.USER_CREATED,
            entity_type="user",
            entity_id=user.id,
            metadata={"email": email, "role": role.value}
        )
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        data = self.storage.load(self.users_table, user_id)
        return User.from_dict(data) if data else None

    def list_users(self) -> List[User]:
        return [User.from_dict(d) for d in self.storage.load_all(self.users_table)]

    def set_role(self, user_id: str, role: Role, actor: Actor) -> User:
        """Change a user's role; only elevated actors may do this"""
        if not self.is_elevated(actor):
            raise Forbidden("Only administrators can change roles")
        user = self.get_user(user_id)
        if not user:
            raise ValidationError(f"User {user_id} not found")

        old_role = user.role
        user.role = role
        user.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.users_table, user.id, user.to_dict())

        self.audit_trail.log_event(
            event_type=AuditEventType.ROLE_CHANGED,
            entity_type="user",
            entity_id=user.id,
            metadata={"old_role": old_role.value, "new_role": role.value},
            user_id=actor.user_id
        )
        return user

    def is_elevated(self, actor: Actor) -> bool:
        """
        Resolve elevated privilege for this call.

        A registered user's stored role wins over the actor's flag; actors
        unknown to the directory fall back to the flag they carry.
        """
        user = self.get_user(actor.user_id)
        if user is not None:
            return user.role.is_elevated
        return bool(actor.is_elevated)
