"""Authentication and authorization strategies evaluated per request."""

from .base import Allow, Deny, Outcome, Pending, Shield
from .basic_auth import BasicAuthShield
from .cookie import CookieShield
from .oauth2 import OAuth2Shield
from .policy import PolicyShield

__all__ = [
    "Allow",
    "Deny",
    "Pending",
    "Outcome",
    "Shield",
    "BasicAuthShield",
    "CookieShield",
    "OAuth2Shield",
    "PolicyShield",
]
