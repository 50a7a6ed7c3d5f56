# Overview: Service-layer operations for cars; the public catalog and its admin maintenance.

"""
Car Catalog Service

WHY: Cars are what the rental engine books. The catalog owns their
descriptive fields, tier and daily rate; it never writes `available`
directly except through the rental engine's refresh.
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..actors import Actor, is_admin
from ..errors import ConflictError, ForbiddenError, NotFoundError
from ..extensions import db
from ..models import Car, Provider, Rent
from ..models.rentals import NON_TERMINAL_STATUSES
from ..validation import ModelValidationPolicy, validate_payload, enforce_rules_car
from .concurrency import lock_for_update, run_with_retry, serialized


CAR_POLICY = ModelValidationPolicy(
    writable_fields={
        "license_plate", "brand", "model", "type", "color",
        "manufacture_date", "provider_id", "tier", "daily_rate",
    },
    required_on_create={
        "license_plate", "brand", "model", "type", "color",
        "manufacture_date", "provider_id", "daily_rate",
    },
)


def _require_admin(actor: Actor, action: str) -> None:
    if not is_admin(actor):
        raise ForbiddenError(f"Admin access required to {action} cars", rule="admin_only")


def _check_provider(provider_id: int) -> None:
    if db.session.query(Provider.id).filter_by(id=provider_id).first() is None:
        raise NotFoundError(f"No provider with the ID {provider_id}", rule="provider_exists")


def list_cars(provider_id: int | None = None) -> list[Car]:
    query = db.session.query(Car)
    if provider_id is not None:
        query = query.filter(Car.provider_id == provider_id)
    return query.order_by(Car.id.asc()).all()


def get_car(car_id: int) -> Car:
    car = db.session.query(Car).filter_by(id=car_id).first()
    if not car:
        raise NotFoundError(f"No car with the ID {car_id}", rule="car_exists")
    return car


def create_car(actor: Actor, payload: dict) -> Car:
    _require_admin(actor, "create")

    patch = validate_payload(model=Car, payload=payload, policy=CAR_POLICY, partial=False)
    enforce_rules_car(patch)
    _check_provider(patch["provider_id"])

    car = Car(available=True, **patch)
    db.session.add(car)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("License plate already registered", rule="unique_license_plate")
    return car


def update_car(actor: Actor, car_id: int, payload: dict) -> Car:
    _require_admin(actor, "update")

    patch = validate_payload(model=Car, payload=payload, policy=CAR_POLICY, partial=True)
    enforce_rules_car(patch)
    if "provider_id" in patch:
        _check_provider(patch["provider_id"])

    def _op():
        car = lock_for_update(db.session.query(Car).filter_by(id=car_id)).first()
        if not car:
            raise NotFoundError(f"No car with the ID {car_id}", rule="car_exists")
        for key, value in patch.items():
            setattr(car, key, value)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError("License plate already registered", rule="unique_license_plate")
        return car

    with serialized(("car", car_id)):
        return run_with_retry(_op)


def delete_car_rows(car: Car) -> None:
    """Delete a car and its rent history. Caller holds the car's lock."""
    open_rents = db.session.query(Rent).filter(
        Rent.car_id == car.id,
        Rent.status.in_(NON_TERMINAL_STATUSES),
    ).count()
    if open_rents:
        raise ConflictError(
            f"Car {car.id} still has pending or active rents",
            rule="no_open_rents",
            car_id=car.id,
            open_rents=open_rents,
        )
    for rent in db.session.query(Rent).filter(Rent.car_id == car.id).all():
        db.session.delete(rent)
    db.session.flush()
    db.session.delete(car)


def delete_car(actor: Actor, car_id: int) -> None:
    _require_admin(actor, "delete")

    def _op():
        car = lock_for_update(db.session.query(Car).filter_by(id=car_id)).first()
        if not car:
            raise NotFoundError(f"No car with the ID {car_id}", rule="car_exists")
        delete_car_rows(car)
        db.session.commit()

    with serialized(("car", car_id)):
        run_with_retry(_op)
