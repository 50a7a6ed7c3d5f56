# Overview: Service-layer operations for auth; accounts, credentials and the user directory.

"""
Authentication Service

WHY: Every booking must be attributable to an account. Uses bcrypt for
password hashing.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor from BCRYPT_ROUNDS, default 12)
- Minimum 6 characters required
- Self-registration always creates role=user; admins come from the CLI or
  from another admin
- Session tokens managed separately (see session_service.py)
"""

from __future__ import annotations

import bcrypt
from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..actors import Actor, AdminActor, ProviderActor, UserActor, unknown_actor
from ..errors import ConflictError, ForbiddenError, InvalidInputError, NotFoundError
from ..extensions import db
from ..models import Car, Provider, Rent, User
from ..models.auth import ROLE_ADMIN, ROLE_USER, VALID_ROLES
from ..validation import ModelValidationPolicy, validate_payload, enforce_rules_contact
from .concurrency import lock_for_update, run_with_retry, serialized
from .rent_service import count_open_rents, refresh_car_availability

MIN_PASSWORD_LENGTH = 6

USER_REGISTRATION_POLICY = ModelValidationPolicy(
    writable_fields={"name", "telephone_number", "email"},
    required_on_create={"name", "telephone_number", "email"},
)


class PasswordValidationError(InvalidInputError):
    """Raised when password doesn't meet strength requirements."""


def validate_password_strength(password) -> None:
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")


def hash_password(password: str) -> str:
    """Hash password using bcrypt. Password is validated for strength before hashing."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_ROUNDS", 12))
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    bcrypt.checkpw() is timing-safe. A malformed stored hash is treated as a
    mismatch.
    """
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def _email_taken(email: str) -> bool:
    return (
        db.session.query(User.id).filter_by(email=email).first() is not None
        or db.session.query(Provider.id).filter_by(email=email).first() is not None
    )


def create_user(payload: dict, password: str, role: str = ROLE_USER) -> User:
    """
    Create a user account.

    Raises:
        InvalidInputError: bad contact fields, weak password or unknown role
        ConflictError: email already registered
    """
    if role not in VALID_ROLES:
        raise InvalidInputError(f"Role must be one of: {', '.join(sorted(VALID_ROLES))}")

    patch = validate_payload(model=User, payload=payload, policy=USER_REGISTRATION_POLICY, partial=False)
    enforce_rules_contact(patch)
    password_hash = hash_password(password)

    if _email_taken(patch["email"]):
        raise ConflictError("Email already registered", rule="unique_email")

    user = User(password_hash=password_hash, role=role, total_spend=0, tier=0, **patch)
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Email already registered", rule="unique_email")
    return user


def authenticate_user(email: str, password: str) -> User | None:
    """Returns User if credentials valid, None otherwise."""
    user = db.session.query(User).filter_by(email=email).first()
    if user and verify_password(password, user.password_hash):
        return user
    return None


def authenticate_provider(email: str, password: str) -> Provider | None:
    provider = db.session.query(Provider).filter_by(email=email).first()
    if provider and verify_password(password, provider.password_hash):
        return provider
    return None


def list_users(role: str) -> list[User]:
    return db.session.query(User).filter_by(role=role).order_by(User.id.asc()).all()


def get_user(actor: Actor, user_id: int) -> User:
    """Users may read themselves; admins may read anyone."""
    if isinstance(actor, AdminActor):
        pass
    elif isinstance(actor, UserActor):
        if actor.id != user_id:
            raise ForbiddenError("Users can only view their own account", rule="self_only")
    elif isinstance(actor, ProviderActor):
        raise ForbiddenError("Providers cannot view user accounts", rule="users_only")
    else:
        unknown_actor(actor)

    user = db.session.query(User).filter_by(id=user_id).first()
    if not user:
        raise NotFoundError(f"User not found with id {user_id}", rule="user_exists")
    return user


def delete_user(actor: Actor, user_id: int, expected_role: str) -> None:
    """
    Admin-only account deletion.

    The user's sessions and rent history go with them. Users still holding
    pending/active rents cannot be deleted; an admin cannot delete themself.
    """
    if not isinstance(actor, AdminActor):
        raise ForbiddenError("Admin access required", rule="admin_only")

    def _op():
        user = lock_for_update(db.session.query(User).filter_by(id=user_id)).first()
        if not user:
            raise NotFoundError(f"User not found with id {user_id}", rule="user_exists")
        if user.role != expected_role:
            raise InvalidInputError(f"User is not an {expected_role}", rule="role_matches", role=user.role)
        if expected_role == ROLE_ADMIN and user.id == actor.id:
            raise InvalidInputError("Admin cannot delete their own account", rule="not_self")

        open_rents = count_open_rents(user.id)
        if open_rents:
            raise ConflictError(
                "User still has pending or active rents",
                rule="no_open_rents",
                open_rents=open_rents,
            )

        history = db.session.query(Rent).filter(Rent.user_id == user.id).all()
        car_ids = {rent.car_id for rent in history}
        for rent in history:
            db.session.delete(rent)
        db.session.flush()

        for car in lock_for_update(db.session.query(Car).filter(Car.id.in_(sorted(car_ids)))).all():
            refresh_car_availability(car)

        db.session.delete(user)
        db.session.commit()

    # create_rent holds the same user key
    with serialized(("user", user_id)):
        run_with_retry(_op)
