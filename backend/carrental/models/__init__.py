from .auth import User, Provider, SessionToken
from .catalog import Car
from .rentals import Rent

__all__ = [
    'User', 'Provider', 'SessionToken',
    'Car',
    'Rent',
]
