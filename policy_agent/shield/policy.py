"""Shield that asks AM for a policy decision on the requested resource."""

from __future__ import annotations

from typing import TYPE_CHECKING

from starlette.requests import Request

from policy_agent.am_types import PolicyDecisionRequest, SessionData
from policy_agent.errors import ShieldEvaluationError
from policy_agent.http_utils import path_with_query
from policy_agent.shield.base import Allow, Deny, Outcome, as_evaluation_error
from utils.logging_utils import get_tagged_logger

if TYPE_CHECKING:
    from policy_agent.agent import PolicyAgent

logger = get_tagged_logger(__name__, tag="shield/policy")

DEFAULT_APPLICATION = "iPlanetAMWebAgentService"


class PolicyShield:
    """Allows the request only if AM grants the HTTP method on the resource.

    Chain it after a CookieShield: the subject of the decision is the user's
    session, and the decisions are merged into the carried session data under
    ``policies``.
    """

    def __init__(self, application_name: str = DEFAULT_APPLICATION, path_only: bool = False) -> None:
        self.application_name = application_name
        self.path_only = path_only

    def to_decision_request(self, request: Request, sso_token: str) -> PolicyDecisionRequest:
        resource = request.url.path if self.path_only else path_with_query(request)
        return PolicyDecisionRequest(
            resources=[resource],
            application=self.application_name,
            subject={"ssoToken": sso_token},
        )

    def evaluate(self, request: Request, agent: "PolicyAgent") -> Outcome:
        try:
            session_id = agent.get_session_id_from_request(request)
            if not session_id:
                return Deny(ShieldEvaluationError(401, "Unauthorized", "Missing session"))
            params = self.to_decision_request(request, session_id)
            logger.debug("Requesting policy decision for %s", params.to_payload())
            decisions = agent.get_policy_decision(params)
        except Exception as exc:
            return Deny(as_evaluation_error(exc))

        logger.debug("Got policy decision %s", [d.to_dict() for d in decisions])

        if not decisions or not decisions[0].allows(request.method):
            logger.info("%s => deny", request.url.path)
            return Deny(ShieldEvaluationError(
                403, "Forbidden", "You are not authorized to access this resource."
            ))

        logger.info("%s => allow", request.url.path)
        current = getattr(request.state, "session", None) or SessionData(key=session_id)
        data = {**current.data, "policies": [d.to_dict() for d in decisions]}
        return Allow(SessionData(key=current.key or session_id, data=data))
