# Overview: Authenticated principals resolved from a session token.

"""
Actor = UserActor | AdminActor | ProviderActor

Authorization checks dispatch over every variant explicitly and finish with
unknown_actor(), so adding a variant fails loudly instead of silently
granting or denying access.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NoReturn, Union

from .models import User, Provider


@dataclass(frozen=True)
class UserActor:
    id: int
    role: str = "user"


@dataclass(frozen=True)
class AdminActor:
    id: int
    role: str = "admin"


@dataclass(frozen=True)
class ProviderActor:
    id: int
    role: str = "provider"


Actor = Union[UserActor, AdminActor, ProviderActor]


def unknown_actor(actor: object) -> NoReturn:
    raise TypeError(f"Unhandled actor type: {actor!r}")


def actor_for_user(user: User) -> Actor:
    if user.is_admin:
        return AdminActor(id=user.id)
    return UserActor(id=user.id)


def actor_for_provider(provider: Provider) -> Actor:
    return ProviderActor(id=provider.id)


def is_admin(actor: Actor) -> bool:
    if isinstance(actor, AdminActor):
        return True
    if isinstance(actor, (UserActor, ProviderActor)):
        return False
    unknown_actor(actor)
