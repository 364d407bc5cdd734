"""Shield that checks HTTP Basic credentials against AM without creating a session."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from starlette.requests import Request
from starlette.responses import Response

from policy_agent.am_types import SessionData
from policy_agent.shield.base import Allow, Deny, Outcome, Pending, as_evaluation_error
from policy_agent.http_utils import get_basic_credentials
from utils.logging_utils import get_tagged_logger

if TYPE_CHECKING:
    from policy_agent.agent import PolicyAgent

logger = get_tagged_logger(__name__, tag="shield/basic_auth")

CHALLENGE = 'Basic realm="Authorization Required"'


class BasicAuthShield:
    """Authenticates Basic credentials with ``noSession=true``.

    A request without credentials gets a ``WWW-Authenticate`` challenge, which
    is neither an allow nor a deny.
    """

    def __init__(self, realm: str = "/", service: Optional[str] = None,
                 module: Optional[str] = None) -> None:
        self.realm = realm
        self.service = service
        self.module = module

    def evaluate(self, request: Request, agent: "PolicyAgent") -> Outcome:
        credentials = get_basic_credentials(request)
        if credentials is None:
            logger.info("%s => unauthenticated", request.url.path)
            return Pending(Response(status_code=401, headers={"WWW-Authenticate": CHALLENGE}))

        username, password = credentials
        try:
            agent.am_client.authenticate(
                username,
                password,
                self.realm,
                service=self.service,
                module=self.module,
                no_session=True,
            )
        except Exception as exc:
            logger.info("%s => deny (%s)", request.url.path, username)
            return Deny(as_evaluation_error(exc))

        logger.info("%s => allow (%s)", request.url.path, username)
        return Allow(SessionData(key=username, data={"username": username}))
