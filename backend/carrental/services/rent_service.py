# Overview: Service-layer operations for rents; the rental lifecycle and availability engine.

"""
Rental Engine

STATE MACHINE:
    pending -> active -> completed
    pending -> completed   (car handed back before admin confirmation)
    pending -> cancelled   (delete by holder or admin)

    completed and cancelled are terminal; nothing transitions out of them.

RULES:
1. A user (not an admin acting for them) holds at most MAX_OPEN_RENTS_PER_USER
   pending/active rents.
2. A user may only book cars whose tier is <= their own tier (admins bypass).
3. No two pending/active rents of one car may have overlapping
   [start_date, return_date) windows.
4. price = ceil(days) * daily_rate, fixed at creation.
5. Completion adds the base price (not the late fee) to the user's lifetime
   spend and recomputes their tier.
6. Car.available is a cache: it is recomputed from the rents table whenever
   a rent leaves the pending/active set, and is never used for conflict
   detection.

CONCURRENCY:
Every operation that reads "no conflicting rent exists" or "user is under the
cap" and then writes runs as one transaction, under the keyed locks for the
car and user it touches and with row locks on those rows.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone

from ..actors import Actor, AdminActor, ProviderActor, UserActor, is_admin, unknown_actor
from ..errors import ConflictError, ForbiddenError, InvalidInputError, NotFoundError
from ..extensions import db
from ..models import Car, Rent, User
from ..models.rentals import (
    NON_TERMINAL_STATUSES,
    RENT_STATUS_ACTIVE,
    RENT_STATUS_CANCELLED,
    RENT_STATUS_COMPLETED,
    RENT_STATUS_PENDING,
)
from ..validation import ModelValidationPolicy, validate_payload, enforce_rules_rent_update
from .concurrency import lock_for_update, run_with_retry, serialized
from .pricing import late_fee, rental_duration_days, windows_overlap
from carrental.time_utils import parse_iso_datetime, utcnow


MAX_OPEN_RENTS_PER_USER = 3

# Only these fields may change outside of confirm/complete/delete
RENT_MUTABLE_POLICY = ModelValidationPolicy(writable_fields={"notes", "additional_charges"})


@dataclass(frozen=True)
class CompletionResult:
    rent: Rent
    days_late: int
    late_fee: int
    car_tier: int
    total_price: int


# =============================================================================
# HELPERS
# =============================================================================

def _coerce_id(value, field: str) -> int:
    if isinstance(value, bool):
        raise InvalidInputError(f"{field} must be an integer id", field=field)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidInputError(f"{field} must be an integer id", field=field)


def _coerce_datetime(value, field: str) -> datetime:
    """Accept datetime, date or ISO-8601 string; return a naive UTC datetime."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        try:
            parsed = parse_iso_datetime(value)
        except ValueError:
            parsed = None
        if parsed is not None:
            return parsed
    raise InvalidInputError(f"{field} must be an ISO-8601 date or datetime", field=field)


def _can_manage(actor: Actor, rent: Rent) -> bool:
    """Holder or admin: may update, complete and delete."""
    if isinstance(actor, AdminActor):
        return True
    if isinstance(actor, UserActor):
        return rent.user_id == actor.id
    if isinstance(actor, ProviderActor):
        return False
    unknown_actor(actor)


def _can_view(actor: Actor, rent: Rent) -> bool:
    if isinstance(actor, ProviderActor):
        return rent.car is not None and rent.car.provider_id == actor.id
    return _can_manage(actor, rent)


def _lock_keys_for(rent_id: int) -> tuple[int, int]:
    """Return (car_id, user_id) of a rent so its keyed locks can be taken first."""
    def _op():
        row = db.session.query(Rent.car_id, Rent.user_id).filter_by(id=rent_id).first()
        if row is None:
            raise NotFoundError(f"No rent with the id of {rent_id}", rule="rent_exists")
        # End the read transaction before waiting on locks
        db.session.rollback()
        return row.car_id, row.user_id

    return run_with_retry(_op)


def _locked_rent(rent_id: int) -> Rent:
    rent = lock_for_update(db.session.query(Rent).filter_by(id=rent_id)).first()
    if not rent:
        raise NotFoundError(f"No rent with the id of {rent_id}", rule="rent_exists")
    return rent


def count_open_rents(user_id: int) -> int:
    return db.session.query(Rent).filter(
        Rent.user_id == user_id,
        Rent.status.in_(NON_TERMINAL_STATUSES),
    ).count()


def find_conflicting_rent(car_id: int, start: datetime, end: datetime, exclude_rent_id: int | None = None) -> Rent | None:
    """First pending/active rent of the car whose window intersects [start, end)."""
    query = db.session.query(Rent).filter(
        Rent.car_id == car_id,
        Rent.status.in_(NON_TERMINAL_STATUSES),
        Rent.return_date > start,
        Rent.start_date < end,
    )
    if exclude_rent_id is not None:
        query = query.filter(Rent.id != exclude_rent_id)
    for rent in query.order_by(Rent.start_date.asc()).all():
        if windows_overlap(rent.start_date, rent.return_date, start, end):
            return rent
    return None


def refresh_car_availability(car: Car) -> bool:
    """Recompute the cached availability flag from the rents table."""
    db.session.flush()
    busy = db.session.query(Rent.id).filter(
        Rent.car_id == car.id,
        Rent.status.in_(NON_TERMINAL_STATUSES),
    ).first() is not None
    car.available = not busy
    return car.available


def refresh_all_car_availability() -> int:
    """Repair the availability cache for every car. Returns how many changed."""
    def _op():
        changed = 0
        for car in db.session.query(Car).order_by(Car.id.asc()).all():
            before = car.available
            if refresh_car_availability(car) != before:
                changed += 1
        db.session.commit()
        return changed

    return run_with_retry(_op)


# =============================================================================
# CREATE
# =============================================================================

def create_rent(
    actor: Actor,
    car_id,
    start_date,
    return_date,
    user_id=None,
    notes: str | None = None,
) -> tuple[Rent, int]:
    """
    Book a car (status: pending).

    Admins may book on behalf of `user_id` and bypass the open-rent cap and
    tier gate; everyone else always books for themself.

    Returns:
        (rent, total_price)

    Raises:
        InvalidInputError: missing or malformed car/dates, non-positive duration
        NotFoundError: user or car does not exist
        ConflictError: open-rent cap reached, or the car is booked in that window
        ForbiddenError: provider actor, or user tier below car tier
    """
    if isinstance(actor, ProviderActor):
        raise ForbiddenError("Providers cannot book cars", rule="provider_cannot_book")
    elif isinstance(actor, AdminActor):
        target_user_id = actor.id if user_id is None else _coerce_id(user_id, "user")
    elif isinstance(actor, UserActor):
        target_user_id = actor.id
    else:
        unknown_actor(actor)

    if car_id is None or start_date is None or return_date is None:
        raise InvalidInputError("Please provide a car ID, start date, and return date", rule="required_fields")

    car_id = _coerce_id(car_id, "car")
    start = _coerce_datetime(start_date, "start_date")
    end = _coerce_datetime(return_date, "return_date")

    duration = rental_duration_days(start, end)
    if duration <= 0:
        raise InvalidInputError("Return date must be after start date", rule="positive_duration")

    admin = is_admin(actor)

    def _op():
        user = lock_for_update(db.session.query(User).filter_by(id=target_user_id)).first()
        if not user:
            raise NotFoundError("User not found", rule="user_exists", user_id=target_user_id)

        if not admin:
            open_rents = count_open_rents(user.id)
            if open_rents >= MAX_OPEN_RENTS_PER_USER:
                raise ConflictError(
                    f"User with ID {user.id} already has {MAX_OPEN_RENTS_PER_USER} active rentals",
                    rule="open_rent_cap",
                    open_rents=open_rents,
                )

        car = lock_for_update(db.session.query(Car).filter_by(id=car_id)).first()
        if not car:
            raise NotFoundError(f"No car with the ID {car_id}", rule="car_exists")

        if not admin and user.tier < car.tier:
            raise ForbiddenError(
                f"User's tier ({user.tier}) is too low to rent this car (Tier {car.tier})",
                rule="tier_too_low",
                user_tier=user.tier,
                car_tier=car.tier,
            )

        clash = find_conflicting_rent(car.id, start, end)
        if clash is not None:
            raise ConflictError(
                "Car is currently unavailable for rent",
                rule="car_unavailable",
                conflicting_rent_id=clash.id,
            )

        rent = Rent(
            car_id=car.id,
            user_id=user.id,
            start_date=start,
            return_date=end,
            status=RENT_STATUS_PENDING,
            price=duration * car.daily_rate,
            additional_charges=0,
            notes=notes,
        )
        db.session.add(rent)
        car.available = False
        db.session.commit()
        return rent

    with serialized(("car", car_id), ("user", target_user_id)):
        rent = run_with_retry(_op)
    return rent, rent.price


# =============================================================================
# READ
# =============================================================================

def list_rents(actor: Actor, car_id=None) -> list[Rent]:
    """
    Rents visible to the actor.

    - user: their own rents (optionally of one car)
    - admin: all rents, or all rents of one car
    - provider: rents of cars they own
    """
    car = None
    if car_id is not None:
        car_id = _coerce_id(car_id, "car")
        car = db.session.query(Car).filter_by(id=car_id).first()
        if not car:
            raise NotFoundError(f"No car with the ID {car_id}", rule="car_exists")

    query = db.session.query(Rent)
    if isinstance(actor, AdminActor):
        pass
    elif isinstance(actor, UserActor):
        query = query.filter(Rent.user_id == actor.id)
    elif isinstance(actor, ProviderActor):
        if car is not None and car.provider_id != actor.id:
            raise ForbiddenError("Provider does not own this car", rule="provider_owns_car")
        query = query.join(Car, Rent.car_id == Car.id).filter(Car.provider_id == actor.id)
    else:
        unknown_actor(actor)

    if car is not None:
        query = query.filter(Rent.car_id == car.id)

    return query.order_by(Rent.start_date.asc(), Rent.id.asc()).all()


def get_rent(actor: Actor, rent_id: int) -> Rent:
    """Rents the actor cannot see are reported as missing."""
    rent = db.session.query(Rent).filter_by(id=rent_id).first()
    if not rent or not _can_view(actor, rent):
        raise NotFoundError(f"No rent with the id of {rent_id}", rule="rent_exists")
    return rent


# =============================================================================
# UPDATE / DELETE
# =============================================================================

def update_rent(actor: Actor, rent_id: int, fields: dict) -> Rent:
    """
    Change notes / additional_charges. Status and price are not writable here:
    status moves only through confirm/complete/delete and price is fixed.
    """
    patch = validate_payload(model=Rent, payload=fields, policy=RENT_MUTABLE_POLICY, partial=True)
    enforce_rules_rent_update(patch)

    def _op():
        rent = _locked_rent(rent_id)
        if not _can_manage(actor, rent):
            raise ForbiddenError(
                f"User {actor.id} is not authorized to update this rent",
                rule="holder_or_admin",
            )
        if rent.status == RENT_STATUS_CANCELLED:
            raise ConflictError("Cancelled rents cannot be modified", rule="cancelled_is_final", status=rent.status)

        for key, value in patch.items():
            setattr(rent, key, value)
        db.session.commit()
        return rent

    return run_with_retry(_op)


def delete_rent(actor: Actor, rent_id: int) -> Rent:
    """
    Cancel a pending rent (the row is kept with status cancelled) and
    recompute the car's availability from its remaining open rents.
    """
    car_id, _ = _lock_keys_for(rent_id)

    def _op():
        rent = _locked_rent(rent_id)
        if not _can_manage(actor, rent):
            raise ForbiddenError(
                f"User {actor.id} is not authorized to delete this rent",
                rule="holder_or_admin",
            )
        if rent.status == RENT_STATUS_ACTIVE:
            raise ConflictError(
                "Active rents must be completed, not deleted",
                rule="delete_requires_pending",
                status=rent.status,
            )
        if rent.status != RENT_STATUS_PENDING:
            raise ConflictError(
                f"Rent is already {rent.status}",
                rule="delete_requires_pending",
                status=rent.status,
            )

        rent.status = RENT_STATUS_CANCELLED
        car = lock_for_update(db.session.query(Car).filter_by(id=rent.car_id)).first()
        refresh_car_availability(car)
        db.session.commit()
        return rent

    with serialized(("car", car_id)):
        return run_with_retry(_op)


# =============================================================================
# CONFIRM / COMPLETE
# =============================================================================

def confirm_rent(actor: Actor, rent_id: int) -> Rent:
    """Admin confirmation: pending -> active. The car becomes unavailable."""
    if not is_admin(actor):
        raise ForbiddenError(
            "User is not authorized to confirm rentals. Admin access required.",
            rule="admin_only",
        )

    car_id, _ = _lock_keys_for(rent_id)

    def _op():
        rent = _locked_rent(rent_id)
        if rent.status != RENT_STATUS_PENDING:
            raise ConflictError(
                f"Only pending rentals can be confirmed. Current status: {rent.status}",
                rule="confirm_requires_pending",
                status=rent.status,
            )

        car = lock_for_update(db.session.query(Car).filter_by(id=rent.car_id)).first()
        car.available = False
        rent.status = RENT_STATUS_ACTIVE
        db.session.commit()
        return rent

    with serialized(("car", car_id)):
        return run_with_retry(_op)


def complete_rent(actor: Actor, rent_id: int, overrides: dict | None = None) -> CompletionResult:
    """
    Return the car: computes the late fee, credits the user's spend with the
    base price, marks the rent completed and refreshes the car's availability,
    all in one transaction.

    `overrides` may only carry notes / additional_charges.

    Raises:
        NotFoundError: rent does not exist
        ForbiddenError: actor is neither the holder nor an admin
        ConflictError: rent already completed or cancelled
    """
    patch = validate_payload(
        model=Rent, payload=overrides or {}, policy=RENT_MUTABLE_POLICY, partial=True
    )
    enforce_rules_rent_update(patch)

    car_id, user_id = _lock_keys_for(rent_id)

    def _op():
        rent = _locked_rent(rent_id)
        if not _can_manage(actor, rent):
            raise ForbiddenError(
                f"User {actor.id} is not authorized to complete this rent",
                rule="holder_or_admin",
            )
        if rent.status == RENT_STATUS_COMPLETED:
            raise ConflictError("Rent has already been completed", rule="complete_once", status=rent.status)
        if rent.status == RENT_STATUS_CANCELLED:
            raise ConflictError("Cancelled rents cannot be completed", rule="cancelled_is_final", status=rent.status)

        car = lock_for_update(db.session.query(Car).filter_by(id=rent.car_id)).first()
        user = lock_for_update(db.session.query(User).filter_by(id=rent.user_id)).first()

        now = utcnow()
        fee = late_fee(car.tier, rent.return_date, now)

        user.add_spend(rent.price)

        rent.status = RENT_STATUS_COMPLETED
        rent.actual_return_date = now
        for key, value in patch.items():
            setattr(rent, key, value)

        refresh_car_availability(car)

        result = CompletionResult(
            rent=rent,
            days_late=max(fee.days_late, 0),
            late_fee=max(fee.fee, 0),
            car_tier=car.tier,
            total_price=rent.price + fee.fee,
        )
        db.session.commit()
        return result

    with serialized(("car", car_id), ("user", user_id)):
        return run_with_retry(_op)
