# Overview: Service-layer operations for providers; provider accounts and their fleets.

"""
Car Provider Service

Providers register themselves (or are created by an admin), log in with
their own sessions and own cars. Removing a provider removes its fleet, so
the same open-rent guard as car deletion applies to every car it owns.
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..actors import Actor, is_admin
from ..errors import ConflictError, ForbiddenError, NotFoundError
from ..extensions import db
from ..models import Car, Provider, User
from ..validation import ModelValidationPolicy, validate_payload, enforce_rules_contact
from .auth_service import hash_password
from .car_service import delete_car_rows
from .concurrency import run_with_retry, serialized


PROVIDER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "address", "telephone_number", "email"},
    required_on_create={"name", "address", "telephone_number", "email"},
)


def _email_taken(email: str, exclude_provider_id: int | None = None) -> bool:
    query = db.session.query(Provider.id).filter(Provider.email == email)
    if exclude_provider_id is not None:
        query = query.filter(Provider.id != exclude_provider_id)
    if query.first() is not None:
        return True
    return db.session.query(User.id).filter_by(email=email).first() is not None


def list_providers() -> list[Provider]:
    return db.session.query(Provider).order_by(Provider.id.asc()).all()


def get_provider(provider_id: int) -> Provider:
    provider = db.session.query(Provider).filter_by(id=provider_id).first()
    if not provider:
        raise NotFoundError(f"No provider with the ID {provider_id}", rule="provider_exists")
    return provider


def create_provider(payload: dict, password: str) -> Provider:
    """Self-registration and admin creation share this path."""
    patch = validate_payload(model=Provider, payload=payload, policy=PROVIDER_POLICY, partial=False)
    enforce_rules_contact(patch)
    password_hash = hash_password(password)

    if _email_taken(patch["email"]):
        raise ConflictError("Email already registered", rule="unique_email")

    provider = Provider(password_hash=password_hash, **patch)
    db.session.add(provider)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Email already registered", rule="unique_email")
    return provider


def update_provider(actor: Actor, provider_id: int, payload: dict) -> Provider:
    if not is_admin(actor):
        raise ForbiddenError("Admin access required to update providers", rule="admin_only")

    patch = validate_payload(model=Provider, payload=payload, policy=PROVIDER_POLICY, partial=True)
    enforce_rules_contact(patch)

    def _op():
        provider = get_provider(provider_id)
        if "email" in patch and _email_taken(patch["email"], exclude_provider_id=provider.id):
            raise ConflictError("Email already registered", rule="unique_email")

        for key, value in patch.items():
            setattr(provider, key, value)
        db.session.commit()
        return provider

    return run_with_retry(_op)


def delete_provider(actor: Actor, provider_id: int) -> int:
    """
    Delete a provider with all of its cars. Returns the number of cars removed.

    Refused as a whole if any of the cars still has a pending/active rent.
    """
    if not is_admin(actor):
        raise ForbiddenError("Admin access required to delete providers", rule="admin_only")

    def _fleet_ids():
        ids = [row.id for row in db.session.query(Car.id).filter_by(provider_id=provider_id).all()]
        # End the read transaction before waiting on locks
        db.session.rollback()
        return ids

    car_ids = run_with_retry(_fleet_ids)

    def _op():
        provider = get_provider(provider_id)
        cars = db.session.query(Car).filter_by(provider_id=provider.id).all()
        for car in cars:
            delete_car_rows(car)
        db.session.flush()
        db.session.delete(provider)
        db.session.commit()
        return len(cars)

    with serialized(*[("car", car_id) for car_id in car_ids]):
        return run_with_retry(_op)
