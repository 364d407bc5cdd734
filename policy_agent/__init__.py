"""Policy agent for protecting FastAPI applications with an OpenAM / ForgeRock AM server."""

__version__ = "0.1.0"

from .agent import PolicyAgent
from .am_client import AmClient
from .am_types import AgentSession, PolicyDecision, PolicyDecisionRequest, ServerInfo, SessionData, SessionEvent
from .cache import Cache, CacheMiss, InMemoryCache, RedisCache
from .config import AgentConfig
from .error_page import ErrorPageContext
from .errors import (
    AgentError,
    AmClientError,
    CdssoValidationError,
    InvalidSessionError,
    RequestCancelled,
    ShieldEvaluationError,
)
from .shield import BasicAuthShield, CookieShield, OAuth2Shield, PolicyShield, Shield

__all__ = [
    "__version__",
    "AgentConfig",
    "AgentError",
    "AgentSession",
    "AmClient",
    "AmClientError",
    "BasicAuthShield",
    "Cache",
    "CacheMiss",
    "CdssoValidationError",
    "CookieShield",
    "ErrorPageContext",
    "InMemoryCache",
    "InvalidSessionError",
    "OAuth2Shield",
    "PolicyAgent",
    "PolicyDecision",
    "PolicyDecisionRequest",
    "PolicyShield",
    "RedisCache",
    "RequestCancelled",
    "ServerInfo",
    "SessionData",
    "SessionEvent",
    "Shield",
    "ShieldEvaluationError",
]
