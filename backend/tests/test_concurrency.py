"""
Concurrency tests for the rental engine.

Threads race against a temporary file database (an in-memory SQLite
database shares one connection and cannot model concurrent sessions).

Verifies:
- Concurrent bookings of one car for overlapping windows: exactly one wins
- Concurrent bookings by one user across cars: the open-rent cap holds
- Concurrent completions by one user: every price reaches total_spend
- A booking racing a user deletion waits for it and finds no user
- Keyed lock acquisition is bounded and surfaces TransientError
- Storage retries give up with TransientError
- Rent and fleet lookups taken before locking go through the retry path
"""

import re
import threading
from datetime import datetime

import pytest
from sqlalchemy import event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from carrental import create_app
from carrental.actors import AdminActor, UserActor
from carrental.errors import ConflictError, NotFoundError, TransientError
from carrental.extensions import db
from carrental.models import Car, Provider, Rent, User
from carrental.services import auth_service, provider_service, rent_service
from carrental.services.concurrency import KeyedLocks, run_with_retry


THREADS = 8


@pytest.fixture
def race_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'race.sqlite3'}",
        'BCRYPT_ROUNDS': 4,
        'STORAGE_RETRY_BACKOFF_SECONDS': 0.01,
    })
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def locked_once(app):
    """Make matching statements fail with "database is locked" (once by default)."""
    hooks = []

    def install(matches, times=1):
        failures = []

        def hook(conn, cursor, statement, parameters, context, executemany):
            if matches(statement) and len(failures) < times:
                failures.append(statement)
                raise OperationalError(statement, parameters, Exception("database is locked"))

        event.listen(db.engine, "before_cursor_execute", hook)
        hooks.append(hook)
        return failures

    yield install

    for hook in hooks:
        event.remove(db.engine, "before_cursor_execute", hook)


def _seed(app, users=1, cars=1):
    """Create `users` renters and `cars` tier-0 cars. Returns (user_ids, car_ids)."""
    with app.app_context():
        provider = Provider(
            name="Race Fleet",
            address="1 Track Lane",
            telephone_number="021-0000000",
            email="race@example.com",
            password_hash="x",
        )
        db.session.add(provider)
        db.session.flush()

        user_rows = [
            User(
                name=f"Racer {i}",
                telephone_number="012-0000000",
                email=f"racer{i}@example.com",
                password_hash="x",
                role="user",
                total_spend=0,
                tier=0,
            )
            for i in range(users)
        ]
        car_rows = [
            Car(
                license_plate=f"RACE-{i}",
                brand="Mazda",
                model="MX-5",
                type="convertible",
                color="red",
                manufacture_date=datetime(2022, 1, 1),
                provider_id=provider.id,
                tier=0,
                daily_rate=1000,
                available=True,
            )
            for i in range(cars)
        ]
        db.session.add_all(user_rows + car_rows)
        db.session.commit()
        ids = [u.id for u in user_rows], [c.id for c in car_rows]
        db.session.remove()
        return ids


def _race(app, jobs):
    """Run each (actor, car_id, start, end) job in its own thread, released together."""
    barrier = threading.Barrier(len(jobs))
    results = []
    guard = threading.Lock()

    def worker(actor, car_id, start, end):
        with app.app_context():
            barrier.wait()
            try:
                rent, _ = rent_service.create_rent(actor, car_id, start, end)
                outcome = ("ok", rent.id)
            except ConflictError as e:
                outcome = ("conflict", e.details.get("rule"))
            except TransientError as e:
                outcome = ("transient", e.details.get("rule"))
            finally:
                db.session.remove()
            with guard:
                results.append(outcome)

    threads = [threading.Thread(target=worker, args=job) for job in jobs]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return results


class TestBookingRace:
    def test_one_car_overlapping_windows_single_winner(self, race_app):
        user_ids, (car_id,) = _seed(race_app, users=THREADS, cars=1)
        jobs = [
            (UserActor(id=uid), car_id, datetime(2024, 5, 1 + (i % 3)), datetime(2024, 5, 6))
            for i, uid in enumerate(user_ids)
        ]

        results = _race(race_app, jobs)

        assert len(results) == THREADS
        winners = [r for r in results if r[0] == "ok"]
        assert len(winners) == 1
        assert all(r == ("conflict", "car_unavailable") for r in results if r[0] != "ok")

        with race_app.app_context():
            assert db.session.query(Rent).filter_by(car_id=car_id).count() == 1
            assert db.session.get(Car, car_id).available is False
            db.session.remove()

    def test_one_user_many_cars_respects_cap(self, race_app):
        (user_id,), car_ids = _seed(race_app, users=1, cars=6)
        actor = UserActor(id=user_id)
        jobs = [(actor, car_id, datetime(2024, 6, 1), datetime(2024, 6, 3)) for car_id in car_ids]

        results = _race(race_app, jobs)

        outcomes = sorted(r[0] for r in results)
        assert outcomes == ["conflict"] * 3 + ["ok"] * 3
        assert all(r[1] == "open_rent_cap" for r in results if r[0] == "conflict")

        with race_app.app_context():
            assert rent_service.count_open_rents(user_id) == 3
            db.session.remove()


class TestCompletionRace:
    def test_concurrent_completions_credit_every_price(self, race_app):
        (user_id,), car_ids = _seed(race_app, users=1, cars=3)
        actor = UserActor(id=user_id)
        with race_app.app_context():
            rent_ids = [
                rent_service.create_rent(actor, car_id, datetime(2030, 3, 1), datetime(2030, 3, 5))[0].id
                for car_id in car_ids
            ]
            db.session.remove()

        barrier = threading.Barrier(len(rent_ids))
        results = []
        guard = threading.Lock()

        def worker(rent_id):
            with race_app.app_context():
                barrier.wait()
                try:
                    outcome = rent_service.complete_rent(actor, rent_id).total_price
                except TransientError as e:
                    outcome = e.details.get("rule")
                finally:
                    db.session.remove()
                with guard:
                    results.append(outcome)

        threads = [threading.Thread(target=worker, args=(rent_id,)) for rent_id in rent_ids]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert results == [4000, 4000, 4000]
        with race_app.app_context():
            user = db.session.get(User, user_id)
            assert user.total_spend == 12_000
            assert user.tier == 1
            assert db.session.query(Rent).filter_by(status="completed").count() == 3
            db.session.remove()


class TestUserDeletionRace:
    def test_booking_waits_for_user_deletion(self, race_app, monkeypatch):
        (user_id,), (car_id,) = _seed(race_app, users=1, cars=1)
        outcomes = []

        def book():
            with race_app.app_context():
                try:
                    rent_service.create_rent(UserActor(id=user_id), car_id, datetime(2030, 1, 1), datetime(2030, 1, 3))
                    outcomes.append("booked")
                except NotFoundError as e:
                    outcomes.append(e.details.get("rule"))
                finally:
                    db.session.remove()

        booking = threading.Thread(target=book)
        real_count = auth_service.count_open_rents

        def count_then_book(uid):
            # Start a booking after the open-rent check and give it time to land
            open_rents = real_count(uid)
            if not booking.is_alive() and not outcomes:
                booking.start()
                booking.join(timeout=0.3)
            return open_rents

        monkeypatch.setattr(auth_service, "count_open_rents", count_then_book)

        with race_app.app_context():
            auth_service.delete_user(AdminActor(id=0), user_id, expected_role="user")
            db.session.remove()
        booking.join(timeout=30)

        assert outcomes == ["user_exists"]
        with race_app.app_context():
            assert db.session.get(User, user_id) is None
            assert db.session.query(Rent).count() == 0
            assert db.session.get(Car, car_id).available is True
            db.session.remove()


class TestKeyedLocks:
    def test_timeout_raises_transient(self):
        locks = KeyedLocks()
        errors = []

        def contender():
            try:
                with locks.hold(("car", 1), timeout=0.05):
                    pass
            except TransientError as e:
                errors.append(e)

        with locks.hold(("car", 1), ("user", 1), timeout=1):
            t = threading.Thread(target=contender)
            t.start()
            t.join()

        assert len(errors) == 1
        assert errors[0].details["rule"] == "lock_timeout"
        assert len(locks) == 0

    def test_unrelated_keys_do_not_contend(self):
        locks = KeyedLocks()
        entered = []

        def other_car():
            with locks.hold(("car", 2), timeout=0.05):
                entered.append(True)

        with locks.hold(("car", 1), timeout=1):
            t = threading.Thread(target=other_car)
            t.start()
            t.join()

        assert entered == [True]


class TestRunWithRetry:
    def test_gives_up_as_transient(self, app, db_session):
        calls = []

        def always_locked():
            calls.append(1)
            raise OperationalError("UPDATE cars", {}, Exception("database is locked"))

        with pytest.raises(TransientError) as exc:
            run_with_retry(always_locked, attempts=3, backoff_base=0)
        assert len(calls) == 3
        assert exc.value.to_dict()["retryable"] is True

    def test_recovers_from_stale_data(self, app, db_session):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise StaleDataError("version mismatch")
            return "done"

        assert run_with_retry(flaky, attempts=3, backoff_base=0) == "done"
        assert len(calls) == 2

    def test_domain_errors_are_not_retried(self, app, db_session):
        calls = []

        def conflicting():
            calls.append(1)
            raise ConflictError("nope", rule="car_unavailable")

        with pytest.raises(ConflictError):
            run_with_retry(conflicting, attempts=3, backoff_base=0)
        assert len(calls) == 1

    def test_rent_lookup_before_locking_is_retried(self, user_actor, car, locked_once):
        rent, _ = rent_service.create_rent(user_actor, car.id, "2024-01-01", "2024-01-02")
        failures = locked_once(lambda sql: sql.startswith("SELECT rents.car_id"))

        result = rent_service.complete_rent(user_actor, rent.id)

        assert len(failures) == 1
        assert result.rent.status == "completed"

    def test_fleet_lookup_before_locking_is_retried(self, admin_actor, provider, make_car, locked_once):
        make_car("F-1")
        failures = locked_once(lambda sql: re.match(r"SELECT cars\.id AS cars_id\s+FROM", sql) is not None)

        assert provider_service.delete_provider(admin_actor, provider.id) == 1
        assert len(failures) == 1

    def test_lookup_that_stays_locked_is_transient(self, app, monkeypatch, user_actor, car, locked_once):
        rent, _ = rent_service.create_rent(user_actor, car.id, "2024-01-01", "2024-01-02")
        monkeypatch.setitem(app.config, "STORAGE_RETRY_ATTEMPTS", 2)
        locked_once(lambda sql: sql.startswith("SELECT rents.car_id"), times=2)

        with pytest.raises(TransientError) as exc:
            rent_service.confirm_rent(AdminActor(id=0), rent.id)
        assert exc.value.to_dict()["retryable"] is True
