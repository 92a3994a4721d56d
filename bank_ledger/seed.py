"""
Demo data: one administrator and one customer, each with a funded account.
Seeding is skipped when the user directory already has users.
"""

from typing import Dict, Optional

from .logging_config import get_logger, log_action
from .rbac import Actor, Role


logger = get_logger("bank_ledger.seed")

ADMIN_EMAIL = "admin@bank.com"
CUSTOMER_EMAIL = "john@example.com"


def seed_demo_data(system) -> Optional[Dict[str, str]]:
    """
    Create the demo users and accounts

    Returns:
        IDs of the created users and accounts, or None if already seeded
    """
    if system.rbac_manager.list_users():
        return None

    admin = system.rbac_manager.create_user("Admin", ADMIN_EMAIL, role=Role.ADMIN)
    customer = system.rbac_manager.create_user("John Doe", CUSTOMER_EMAIL)
    admin_actor = Actor.admin(admin.id)

    admin_account = system.accounts.create_account(admin.id)
    customer_account = system.accounts.create_account(customer.id, actor_id=admin.id)

    system.engine.deposit(admin_account.id, "1000.00", admin_actor, idempotency_key="seed")
    system.engine.deposit(customer_account.id, "500.00", admin_actor, idempotency_key="seed")

    log_action(
        logger, "info", "Demo data seeded",
        action="seed", extra={"admin_id": admin.id, "customer_id": customer.id}
    )
    return {
        "admin_id": admin.id,
        "admin_account_id": admin_account.id,
        "customer_id": customer.id,
        "customer_account_id": customer_account.id,
    }
