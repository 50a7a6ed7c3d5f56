"""
Pytest fixtures for car rental backend tests.

Provides test database setup, account/catalog fixtures, and test client.
"""

from datetime import datetime

import pytest

from carrental import create_app
from carrental.actors import actor_for_provider, actor_for_user
from carrental.extensions import db
from carrental.models import Car, Provider, User
from carrental.models.auth import ROLE_ADMIN, ROLE_USER, tier_for_spend
from carrental.services.auth_service import hash_password
from carrental.services.session_service import issue_session


TEST_PASSWORD = "secret123"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'BCRYPT_ROUNDS': 4,
        'STORAGE_RETRY_BACKOFF_SECONDS': 0.01,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def _make_user(session, name, email, role=ROLE_USER, total_spend=0):
    user = User(
        name=name,
        telephone_number="012-3456789",
        email=email,
        password_hash=hash_password(TEST_PASSWORD),
        role=role,
        total_spend=total_spend,
        tier=tier_for_spend(total_spend),
    )
    session.add(user)
    session.commit()
    return user


@pytest.fixture(scope='function')
def make_user(db_session):
    """Factory: make_user(name, email, role=..., total_spend=...)."""
    def factory(name, email, **kwargs):
        return _make_user(db_session, name, email, **kwargs)
    return factory


@pytest.fixture(scope='function')
def user(db_session):
    """Tier 0 renter."""
    return _make_user(db_session, "Alice Renter", "alice@example.com")


@pytest.fixture(scope='function')
def other_user(db_session):
    return _make_user(db_session, "Bob Renter", "bob@example.com")


@pytest.fixture(scope='function')
def rich_user(db_session):
    """Tier 2 renter (lifetime spend 25000)."""
    return _make_user(db_session, "Carol Spender", "carol@example.com", total_spend=25_000)


@pytest.fixture(scope='function')
def admin(db_session):
    return _make_user(db_session, "Dana Admin", "admin@example.com", role=ROLE_ADMIN)


@pytest.fixture(scope='function')
def provider(db_session):
    provider = Provider(
        name="Fast Wheels",
        address="1 Garage Road",
        telephone_number="021-1234567",
        email="fleet@fastwheels.example.com",
        password_hash=hash_password(TEST_PASSWORD),
    )
    db_session.add(provider)
    db_session.commit()
    return provider


@pytest.fixture(scope='function')
def other_provider(db_session):
    provider = Provider(
        name="Slow Wheels",
        address="2 Garage Road",
        telephone_number="021-7654321",
        email="fleet@slowwheels.example.com",
        password_hash=hash_password(TEST_PASSWORD),
    )
    db_session.add(provider)
    db_session.commit()
    return provider


@pytest.fixture(scope='function')
def make_car(db_session, provider):
    """Factory: make_car(plate, tier=0, daily_rate=1000, owner=None)."""
    def factory(plate, tier=0, daily_rate=1000, owner=None):
        car = Car(
            license_plate=plate,
            brand="Toyota",
            model="Corolla",
            type="sedan",
            color="white",
            manufacture_date=datetime(2020, 1, 1),
            provider_id=(owner or provider).id,
            tier=tier,
            daily_rate=daily_rate,
            available=True,
        )
        db_session.add(car)
        db_session.commit()
        return car
    return factory


@pytest.fixture(scope='function')
def car(make_car):
    """Tier 0 car at 1000 per day."""
    return make_car("AB-1001")


@pytest.fixture(scope='function')
def premium_car(make_car):
    """Tier 1 car."""
    return make_car("AB-2002", tier=1, daily_rate=2500)


@pytest.fixture(scope='function')
def user_actor(user):
    return actor_for_user(user)


@pytest.fixture(scope='function')
def admin_actor(admin):
    return actor_for_user(admin)


@pytest.fixture(scope='function')
def provider_actor(provider):
    return actor_for_provider(provider)


def _headers_for(principal) -> dict:
    _, token = issue_session(principal)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope='function')
def auth_headers(db_session):
    """Factory: auth_headers(user_or_provider) -> Authorization header dict."""
    return _headers_for


@pytest.fixture(scope='function')
def user_headers(user):
    return _headers_for(user)


@pytest.fixture(scope='function')
def admin_headers(admin):
    return _headers_for(admin)


@pytest.fixture(scope='function')
def provider_headers(provider):
    return _headers_for(provider)
