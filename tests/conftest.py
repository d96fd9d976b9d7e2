# tests/conftest.py
"""
Pytest configuration and shared fixtures for the MLM commission core.

Every test gets its own file-backed SQLite database, so tests that use
several sessions or threads see each other's commits.

Run:
    pytest tests -v
"""
from decimal import Decimal

import pytest

from core.db import configure_database, get_session_factory, setup_database
from core.exceptions import StoreUnavailable
from models import User
from mlm_system.config.commission import CommissionSettings
from mlm_system.services.ledger_service import LedgerService, LedgerField
from mlm_system.services.upline_service import UplineService


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture
def engine(tmp_path):
    """Fresh database per test."""
    engine = configure_database(f"sqlite:///{tmp_path / 'mlm_test.db'}")
    setup_database()
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    """Session factory bound to the test database."""
    return get_session_factory()


@pytest.fixture
def session(session_factory):
    """Create database session for each test."""
    session = session_factory()
    yield session
    session.close()


# =============================================================================
# CONFIG FIXTURES
# =============================================================================

@pytest.fixture
def settings():
    """Default commission settings: 3 levels, 5/3/2 %, join bonus 100."""
    return CommissionSettings()


# =============================================================================
# USER FIXTURES
# =============================================================================

@pytest.fixture
def upline_service(session, settings):
    return UplineService(session, settings)


@pytest.fixture
def register(upline_service):
    """
    Register a user through UplineService.

    Usage:
        alice = register("alice")
        bob = register("bob", referrer=alice)
    """

    def _register(name, referrer=None):
        return upline_service.registerUser(
            email=f"{name}@example.com",
            firstname=name.capitalize(),
            surname="Test",
            referralCode=referrer.referralCode if referrer else None,
        )

    return _register


@pytest.fixture
def abc_chain(register):
    """A <- B <- C: B registered with A's code, C with B's code."""
    a = register("alice")
    b = register("bob", referrer=a)
    c = register("carol", referrer=b)
    return a, b, c


@pytest.fixture
def fund(session):
    """Credit a user's wallet and commit."""

    def _fund(user, amount):
        LedgerService(session).credit(user.userID, LedgerField.WALLET_BALANCE, Decimal(str(amount)))
        session.commit()

    return _fund


@pytest.fixture
def reload(session):
    """Fresh copy of a user, ignoring anything cached in the test session."""

    def _reload(user):
        return session.get(User, user.userID, populate_existing=True)

    return _reload


# =============================================================================
# FAULT INJECTION
# =============================================================================

@pytest.fixture
def fail_level(monkeypatch):
    """
    Make LedgerService.creditCommission fail for the given levels.

    Usage:
        fail_level(2)
    """
    original = LedgerService.creditCommission

    def _fail_level(*levels):
        def flaky(self, userId, level, category, amount):
            if level in levels:
                raise StoreUnavailable(f"simulated store fault at level {level}")
            return original(self, userId, level, category, amount)

        monkeypatch.setattr(LedgerService, "creditCommission", flaky)

    return _fail_level
