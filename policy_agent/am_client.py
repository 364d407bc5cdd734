"""Thin client for the AM (OpenAM / ForgeRock Access Management) REST and XML endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlencode, urlparse, urlunparse

import requests

from .am_types import PolicyDecision, PolicyDecisionRequest, ServerInfo
from .errors import AmClientError
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="am_client")

DEFAULT_TIMEOUT_SECONDS = 5.0
SESSION_API_VERSION = "resource=1.1"


class AmClient:
    """Stateless wrapper translating agent operations into AM calls.

    When `private_ip` is given, requests are routed to that address while the
    logical host is still sent in the ``Host`` header, so AM can apply its
    virtual-host configuration. The client never retries; every failure is
    raised as :class:`AmClientError` with the HTTP status preserved.
    """

    def __init__(self, server_url: str, private_ip: Optional[str] = None,
                 timeout: float = DEFAULT_TIMEOUT_SECONDS,
                 session: Optional[requests.Session] = None) -> None:
        self.server_url = server_url.rstrip("/")
        self.timeout = timeout
        self.http = session or requests.Session()
        self.host_header: Optional[str] = None

        if private_ip:
            parsed = urlparse(self.server_url)
            self.host_header = parsed.netloc
            netloc = f"{private_ip}:{parsed.port}" if parsed.port else private_ip
            self.server_address = urlunparse(parsed._replace(netloc=netloc))
        else:
            self.server_address = self.server_url

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if self.host_header:
            headers["Host"] = self.host_header
        if extra:
            headers.update(extra)
        return headers

    def _request(self, method: str, path: str, *, params: Optional[Dict[str, Any]] = None,
                 headers: Optional[Dict[str, str]] = None, json_body: Any = None,
                 data: Optional[str] = None) -> requests.Response:
        """Send one request and raise AmClientError on any non-2xx or transport failure."""
        url = f"{self.server_address}{path}"
        if params:
            params = {k: v for k, v in params.items() if v is not None}
        try:
            r = self.http.request(
                method,
                url,
                params=params,
                headers=self._headers(headers),
                json=json_body,
                data=data,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as exc:
            logger.warning("AM %s %s failed: %s", method, path, exc)
            raise AmClientError(f"AM request failed: {exc}", url=url) from exc

        logger.debug("AM %s %s -> %s", method, path, r.status_code)
        if not 200 <= r.status_code < 300:
            raise AmClientError(
                f"AM {method} {path} failed with status {r.status_code}",
                status_code=r.status_code,
                body=(r.text or "")[:2000],
                url=url,
            )
        return r

    @staticmethod
    def _json(r: requests.Response) -> Any:
        try:
            return r.json()
        except ValueError as exc:
            raise AmClientError(
                f"AM returned non-JSON response: {(r.text or '')[:200]}",
                status_code=r.status_code,
                body=r.text or "",
            ) from exc

    def get_server_info(self) -> ServerInfo:
        """Fetch /json/serverinfo/* (cookie name and cookie domains)."""
        r = self._request("GET", "/json/serverinfo/*")
        return ServerInfo.from_payload(self._json(r))

    def authenticate(self, username: str, password: str, realm: str = "/",
                     service: Optional[str] = None, module: Optional[str] = None,
                     no_session: bool = False) -> Dict[str, Any]:
        """Authenticate with username/password; `module` overrides `service`.

        With `no_session` AM only validates the credentials and issues no token.
        """
        auth_index_type = auth_index_value = None
        if service:
            auth_index_type, auth_index_value = "service", service
        if module:
            auth_index_type, auth_index_value = "module", module

        r = self._request(
            "POST",
            "/json/authenticate",
            headers={
                "X-OpenAM-Username": username,
                "X-OpenAM-Password": password,
                "Content-Type": "application/json",
            },
            params={
                "realm": realm or "/",
                "authIndexType": auth_index_type,
                "authIndexValue": auth_index_value,
                "noSession": "true" if no_session else "false",
            },
        )
        return self._json(r)

    def logout(self, session_id: Optional[str], cookie_name: str, realm: str = "/") -> Optional[Dict[str, Any]]:
        """Destroy the session identified by `session_id`; no-op for an empty id."""
        if not session_id:
            return None
        r = self._request(
            "POST",
            "/json/sessions",
            headers={
                cookie_name: session_id,
                "Content-Type": "application/json",
                "Accept-API-Version": SESSION_API_VERSION,
            },
            params={"realm": realm or "/", "_action": "logout"},
        )
        return self._json(r)

    def validate_session(self, session_id: Optional[str]) -> Dict[str, Any]:
        """Validate an end-user session id; an empty id is invalid without a network call."""
        if not session_id:
            return {"valid": False}
        r = self._request(
            "POST",
            f"/json/sessions/{quote(session_id, safe='')}",
            headers={
                "Content-Type": "application/json",
                "Accept-API-Version": SESSION_API_VERSION,
            },
            params={"_action": "validate"},
        )
        return self._json(r)

    def get_login_url(self, goto: Optional[str] = None, realm: str = "/") -> str:
        """Return the AM login page URL that sends the user back to `goto`."""
        query = urlencode({k: v for k, v in (("goto", goto), ("realm", realm or "/")) if v is not None})
        return f"{self.server_url}/UI/Login?{query}"

    def get_cdsso_url(self, target: str, provider: str) -> str:
        """Return a CDSSO login URL with a fresh request id and issue instant."""
        query = urlencode({
            "TARGET": target,
            "RequestID": uuid.uuid4().hex,
            "MajorVersion": 1,
            "MinorVersion": 0,
            "ProviderID": provider,
            "IssueInstant": datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        })
        return f"{self.server_url}/cdcservlet?{query}"

    def get_policy_decision(self, request: PolicyDecisionRequest, session_id: str,
                            cookie_name: str, realm: str = "/") -> List[PolicyDecision]:
        """Evaluate policies; the privileged session id travels in a cookie-named header."""
        r = self._request(
            "POST",
            "/json/policies",
            headers={cookie_name: session_id, "Content-Type": "application/json"},
            params={"_action": "evaluate", "realm": realm or "/"},
            json_body=request.to_payload(),
        )
        return [PolicyDecision.from_payload(item) for item in self._json(r) or []]

    def session_service_request(self, request_set: str) -> str:
        """POST a raw XML RequestSet document to the session service."""
        r = self._request(
            "POST",
            "/sessionservice",
            headers={"Content-Type": "text/xml"},
            data=request_set,
        )
        return r.text

    def validate_access_token(self, access_token: str, realm: str = "/") -> Dict[str, Any]:
        """Introspect an OAuth2 access token via /oauth2/tokeninfo."""
        r = self._request(
            "GET",
            "/oauth2/tokeninfo",
            params={"access_token": access_token, "realm": realm or "/"},
        )
        return self._json(r)

    def get_profile(self, user_id: str, realm: str, session_id: str, cookie_name: str) -> Dict[str, Any]:
        """Fetch a user's profile attributes."""
        r = self._request(
            "GET",
            f"/json/users/{quote(user_id, safe='')}",
            headers={"Cookie": f"{cookie_name}={session_id}"},
            params={"realm": realm or "/"},
        )
        return self._json(r)

    def close(self) -> None:
        self.http.close()
