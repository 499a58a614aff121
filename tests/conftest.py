"""
Shared fixtures: an in-memory payment system with a funded customer,
an admin, a verified business and one API key.
"""

import pytest
from datetime import datetime, timezone

from payment_core import cards
from payment_core.accounts import Role
from payment_core.api.dependencies import PaymentSystem
from payment_core.config import PaymentCoreConfig
from payment_core.storage import InMemoryStorage


@pytest.fixture(autouse=True)
def fast_hashing(monkeypatch):
    """Cheap scrypt parameters; stored hashes carry their own cost"""
    monkeypatch.setattr(cards, "SCRYPT_N", 2 ** 4)


@pytest.fixture
def now():
    return datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings():
    return PaymentCoreConfig(
        storage_backend="memory",
        jwt_secret="test-jwt-secret-with-enough-length-for-hs256",
        encryption_master_key="test-master-key",
        encryption_provider="fernet",
        fingerprint_key="test-key",
        reserve_initial_balance="1000000.00",
        log_format="text"
    )


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def system(settings, storage):
    return PaymentSystem(settings=settings, storage=storage)


@pytest.fixture
def customer(system, now):
    """Personal account holding 500.00; the Registration keeps the card secrets"""
    registration = system.account_manager.register_personal(
        "ana@example.com", "correct-horse-1", "Ana", "Reyes", now=now
    ).unwrap()
    system.ledger.deposit(registration.account.id, "500.00", now=now).unwrap()
    return registration


@pytest.fixture
def admin(system, now):
    account = system.account_manager.register_personal(
        "admin@example.com", "admin-password-1", "Ada", "Admin", now=now
    ).unwrap().account
    return system.account_manager.set_role(account.id, Role.ADMIN, now=now).unwrap()


@pytest.fixture
def business(system, admin, now):
    account = system.account_manager.register_business(
        "shop@example.com", "shop-password-1", "Sam", "Santos",
        business_name="Sari Store", business_type="retail", now=now
    ).unwrap().account
    return system.account_manager.verify_business(account.id, admin, now=now).unwrap()


@pytest.fixture
def api_key(system, business, now):
    """CreatedKey with every permission"""
    return system.key_registry.create_key(
        business.id, "Checkout",
        permissions=["charge", "refund", "balance", "transactions"],
        now=now
    ).unwrap()
