"""Shield that enforces OAuth2 bearer tokens issued by AM."""

from __future__ import annotations

from typing import TYPE_CHECKING

from starlette.requests import Request

from policy_agent.am_types import SessionData
from policy_agent.errors import AmClientError, ShieldEvaluationError
from policy_agent.http_utils import get_bearer_token
from policy_agent.shield.base import Allow, Deny, Outcome, as_evaluation_error
from utils.logging_utils import get_tagged_logger

if TYPE_CHECKING:
    from policy_agent.agent import PolicyAgent

logger = get_tagged_logger(__name__, tag="shield/oauth2")


class OAuth2Shield:
    """Validates the ``Authorization: Bearer`` token with AM's /oauth2/tokeninfo."""

    def __init__(self, realm: str = "/") -> None:
        self.realm = realm

    def evaluate(self, request: Request, agent: "PolicyAgent") -> Outcome:
        access_token = get_bearer_token(request)
        if not access_token:
            logger.info("%s => deny (no bearer token)", request.url.path)
            return Deny(ShieldEvaluationError(401, "Unauthorized", "Missing OAuth2 Bearer token"))

        try:
            token_info = agent.am_client.validate_access_token(access_token, self.realm)
        except AmClientError as exc:
            logger.info("%s => deny (token rejected with %s)", request.url.path, exc.status_code)
            message = exc.json().get("error_description") or "Internal server error"
            return Deny(ShieldEvaluationError(exc.status_code or 500, message, exc.body))
        except Exception as exc:
            return Deny(as_evaluation_error(exc))

        logger.info("%s => allow", request.url.path)
        logger.debug("Token info: %s", token_info)
        return Allow(SessionData(key=access_token, data=token_info))
