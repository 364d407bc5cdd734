"""Shield that enforces a valid AM session cookie."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

from starlette.requests import Request

from policy_agent.am_types import SessionData
from policy_agent.errors import ShieldEvaluationError
from policy_agent.http_utils import host_matches_domain, redirect, request_hostname
from policy_agent.shield.base import Allow, Deny, Outcome, Pending, as_evaluation_error
from utils.logging_utils import get_tagged_logger

if TYPE_CHECKING:
    from policy_agent.agent import PolicyAgent

logger = get_tagged_logger(__name__, tag="shield/cookie")


class CookieShield:
    """Validates the AM session cookie, redirecting to the AM login page if it is missing or invalid.

    Options
    -------
    no_redirect:
        Deny with 401 instead of redirecting to the login page.
    get_profiles:
        Fetch and cache the user's profile after validating the session.
    pass_through:
        Never deny; an invalid session proceeds with empty session data.
        Useful with ``get_profiles`` on public pages.
    cdsso:
        Redirect to the CDSSO endpoint instead of the login page (mount
        ``agent.cdsso()`` as well).
    """

    def __init__(self, no_redirect: bool = False, get_profiles: bool = False,
                 pass_through: bool = False, cdsso: bool = False) -> None:
        self.no_redirect = no_redirect
        self.get_profiles = get_profiles
        self.pass_through = pass_through
        self.cdsso = cdsso

    def evaluate(self, request: Request, agent: "PolicyAgent") -> Outcome:
        try:
            session_id = agent.get_session_id_from_request(request)
            data = self._session_data(request, agent, session_id)
            if data is not None:
                return Allow(SessionData(key=session_id, data=data))
            if not self.cdsso and not self._domain_matches(request, agent):
                logger.info("%s => domain mismatch", request.url.path)
                raise ShieldEvaluationError(400, "Bad Request", "Domain mismatch")
        except Exception as exc:
            logger.debug("Cookie evaluation failed: %r", exc)
            return Deny(as_evaluation_error(exc))

        location = agent.get_cdsso_url(request) if self.cdsso else agent.get_login_url(request)
        return Pending(redirect(location))

    def _session_data(self, request: Request, agent: "PolicyAgent",
                      session_id: Optional[str]) -> Optional[Dict[str, Any]]:
        """Return the data to allow with, None to redirect, or raise to deny."""
        record = agent.validate_session(session_id) if session_id else {"valid": False}

        if record.get("valid"):
            logger.info("%s => allow", request.url.path)
            data = dict(record)
            if self.get_profiles and "dn" not in data and data.get("uid"):
                profile = agent.get_user_profile(data["uid"], data.get("realm") or "/", session_id)
                data = {**data, **profile}
            return data

        if self.pass_through:
            logger.info("%s => pass-through", request.url.path)
            return {}

        logger.info("%s => deny", request.url.path)
        if self.no_redirect:
            raise ShieldEvaluationError(401, "Unauthorized", "Invalid session")
        return None

    @staticmethod
    def _domain_matches(request: Request, agent: "PolicyAgent") -> bool:
        """Guard against redirect loops when the cookie could never be sent to this host."""
        domains = agent.get_server_info().domains
        hostname = request_hostname(request)
        return any(host_matches_domain(hostname, d) for d in domains)
