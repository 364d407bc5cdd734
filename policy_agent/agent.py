"""The policy agent: orchestrates shields, the AM client, the session cache and the agent's own session."""

from __future__ import annotations

import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union
from urllib.parse import quote
from xml.etree.ElementTree import ParseError

from fastapi import APIRouter, BackgroundTasks, FastAPI, Form, Request
from starlette.responses import HTMLResponse, Response

from .am_client import AmClient
from .am_types import AgentSession, PolicyDecision, PolicyDecisionRequest, ServerInfo, SessionData, SessionEvent
from .cache import Cache, CacheMiss, build_session_cache
from .config import AgentConfig
from .error_page import ErrorPageContext, ErrorPageRenderer, render_default_error_page
from .errors import (
    AgentError,
    AmClientError,
    CdssoValidationError,
    InvalidSessionError,
    RequestCancelled,
    ShieldInterrupt,
)
from .http_utils import base_url, original_url, path_with_query, redirect
from .shield.base import Allow, Deny, Pending, Shield, as_evaluation_error
from .xml_utils import build_session_listener_request, parse_lares, parse_notification_set, parse_session_notification
from utils.logging_utils import get_tagged_logger, setup_logging

T = TypeVar("T")

SessionHandler = Callable[[SessionEvent], None]


class _SingleFlight(Generic[T]):
    """Memoizes the result of `fn`; concurrent first callers share one call.

    A failure is delivered to every caller waiting on that call and is not
    memoized, so the next call tries again.
    """

    def __init__(self, fn: Callable[[], T]) -> None:
        self._fn = fn
        self._lock = threading.Lock()
        self._future: Optional[Future] = None

    def get(self) -> T:
        with self._lock:
            future = self._future
            owner = future is None
            if owner:
                future = self._future = Future()
        if owner:
            self._run(future)
        return future.result()

    def refresh(self) -> T:
        """Run `fn` again unconditionally and replace the memoized result."""
        future: Future = Future()
        with self._lock:
            self._future = future
        self._run(future)
        return future.result()

    def _run(self, future: Future) -> None:
        try:
            future.set_result(self._fn())
        except BaseException as exc:
            with self._lock:
                if self._future is future:
                    self._future = None
            future.set_exception(exc)

    def peek(self) -> Optional[T]:
        """Return the memoized value if one has resolved successfully."""
        with self._lock:
            future = self._future
        if future is None or not future.done() or future.exception() is not None:
            return None
        return future.result()

    def reset(self) -> None:
        with self._lock:
            self._future = None


class PolicyAgent:
    """Policy agent for FastAPI applications.

    Example
    -------
    .. code-block:: python

        from fastapi import Depends, FastAPI
        from policy_agent import AgentConfig, CookieShield, PolicyAgent

        agent = PolicyAgent(AgentConfig(
            server_url="http://openam.example.com:8080/openam",
            app_url="http://app.example.com:8080",
            username="my-agent",
            password="changeit",
            notifications_enabled=True,
        ))

        app = FastAPI()
        agent.init_app(app)
        app.include_router(agent.notifications())

        @app.get("/", dependencies=[Depends(agent.shield(CookieShield()))])
        def index(request: Request):
            return {"user": request.state.session.data.get("uid")}
    """

    def __init__(
        self,
        config: Optional[AgentConfig] = None,
        *,
        am_client: Optional[AmClient] = None,
        session_cache: Optional[Cache] = None,
        error_page: Optional[ErrorPageRenderer] = None,
        logger=None,
    ) -> None:
        self.config = config or AgentConfig()
        self.id = uuid.uuid4().hex[:8]

        if logger is None:
            setup_logging(level=self.config.log_level, job_name="policy_agent")
            logger = get_tagged_logger(__name__, tag=f"policy_agent/{self.id}")
        self.logger = logger

        self.am_client = am_client or AmClient(
            self.config.server_url,
            self.config.private_ip,
            timeout=self.config.request_timeout_seconds,
        )
        self.session_cache = session_cache or build_session_cache(self.config)
        self.error_page = error_page or render_default_error_page

        self.notifications_enabled = self.config.notifications_enabled
        self.notification_path = self.config.notification_path
        self.cdsso_path = self.config.cdsso_path

        self._server_info: _SingleFlight[ServerInfo] = _SingleFlight(self._fetch_server_info)
        self._agent_session: _SingleFlight[AgentSession] = _SingleFlight(self._authenticate)
        self._handlers: List[SessionHandler] = []
        self._handlers_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix=f"policy-agent-{self.id}")
        self._destroyed = False

        self.on_session_changed(self._remove_destroyed_session)
        self.logger.info("Agent initialized (server=%s)", self.config.server_url)

    # -- server info and agent session -------------------------------------

    def get_server_info(self) -> ServerInfo:
        """Return the AM server info, fetched once and shared by concurrent callers."""
        return self._server_info.get()

    def _fetch_server_info(self) -> ServerInfo:
        info = self.am_client.get_server_info()
        self.logger.info("Server info fetched (cookie=%s)", info.cookie_name)
        return info

    def reset_server_info(self) -> None:
        """Forget the memoized server info; the next call fetches it again."""
        self._server_info.reset()

    def get_agent_session(self) -> AgentSession:
        """Return the agent's own session, authenticating on first use."""
        return self._agent_session.get()

    def authenticate_agent(self) -> AgentSession:
        """Create a new agent session and replace the memoized one."""
        return self._agent_session.refresh()

    def _authenticate(self) -> AgentSession:
        username, password = self.config.username, self.config.password
        if not username or not password:
            raise AgentError("PolicyAgent: agent username and password must be set")
        res = self.am_client.authenticate(username, password, self.config.realm)
        session = AgentSession(token_id=res["tokenId"], realm=self.config.realm)
        self.logger.info("Agent session created for %s", username)
        return session

    @staticmethod
    def _is_invalid_session(exc: BaseException) -> bool:
        return isinstance(exc, InvalidSessionError) or getattr(exc, "status_code", None) == 401

    def re_request(self, operation: Callable[[], T], attempt_limit: int = 1, name: str = "re_request",
                   cancel_event: Optional[threading.Event] = None) -> T:
        """Run `operation`, renewing the agent session and retrying on an invalid-session failure.

        Other failures propagate immediately. After `attempt_limit` attempts
        the last error is raised. Setting `cancel_event` stops further attempts
        with RequestCancelled.
        """
        attempt_limit = max(1, attempt_limit)
        for attempt in range(1, attempt_limit + 1):
            if cancel_event is not None and cancel_event.is_set():
                raise RequestCancelled(f"{name} cancelled before attempt {attempt}")
            try:
                return operation()
            except Exception as exc:
                self.logger.debug("%s - caught error %r", name, exc)
                if not self._is_invalid_session(exc) or attempt == attempt_limit:
                    raise
                self.logger.info("%s - retrying request - attempt %d of %d", name, attempt + 1, attempt_limit)
                if cancel_event is not None and cancel_event.is_set():
                    raise RequestCancelled(f"{name} cancelled after attempt {attempt}") from exc
                self.authenticate_agent()
        raise AssertionError("unreachable")

    # -- end-user sessions ---------------------------------------------------

    def validate_session(self, session_id: str) -> Dict[str, Any]:
        """Validate an end-user session, cache-first; only valid sessions are cached."""
        try:
            return self.session_cache.get(session_id)
        except CacheMiss as exc:
            self.logger.debug("Session cache miss: %s", exc)
        except Exception as exc:
            self.logger.warning("Session cache read failed; validating remotely: %r", exc)

        res = self.am_client.validate_session(session_id)

        if res.get("valid"):
            self.logger.info("Session %s is valid; saving to cache", _short(session_id))
            self._cache_put(session_id, res)
            if self.notifications_enabled:
                self._submit_listener(session_id)
        else:
            self.logger.info("Session %s is invalid", _short(session_id))
        return res

    def get_session_id_from_request(self, request: Request) -> Optional[str]:
        """Return the AM session id from the request cookie, if present."""
        cookie_name = self.get_server_info().cookie_name
        session_id = request.cookies.get(cookie_name)
        if session_id:
            self.logger.debug("Found session id in cookie %s", cookie_name)
        else:
            self.logger.debug("Missing session id in cookie %s", cookie_name)
        return session_id

    def set_session_cookie(self, response: Response, session_id: str) -> None:
        """Set the AM session cookie (path /) on `response`."""
        response.set_cookie(self.get_server_info().cookie_name, session_id, path="/")

    def get_user_profile(self, user_id: str, realm: str, session_id: str) -> Dict[str, Any]:
        """Return the user's profile, cache-first; a fetched profile is merged into the cache entry."""
        cached: Dict[str, Any] = {}
        try:
            cached = self.session_cache.get(session_id) or {}
            if cached.get("dn"):
                return cached
        except CacheMiss as exc:
            self.logger.debug("Profile cache miss: %s", exc)
        except Exception as exc:
            self.logger.warning("Session cache read failed; fetching profile remotely: %r", exc)

        self.logger.info("Profile data is missing from cache; fetching from AM")
        cookie_name = self.get_server_info().cookie_name
        profile = self.am_client.get_profile(user_id, realm, session_id, cookie_name)
        self._cache_put(session_id, {**cached, **profile, "valid": True})
        return profile

    def get_policy_decision(self, request: PolicyDecisionRequest) -> List[PolicyDecision]:
        """Ask AM for policy decisions using the agent's session."""
        cookie_name = self.get_server_info().cookie_name
        return self.re_request(
            lambda: self.am_client.get_policy_decision(
                request, self.get_agent_session().token_id, cookie_name, self.config.realm
            ),
            self.config.reauth_attempts,
            "get_policy_decision",
        )

    def register_session_listener(self, session_id: str) -> None:
        """Subscribe the notification endpoint to state changes of `session_id`."""
        notification_url = f"{self.config.app_url or ''}{self.notification_path}"

        def subscribe() -> None:
            token_id = self.get_agent_session().token_id
            request_set = build_session_listener_request(token_id, notification_url, session_id)
            # The session service answers 200 even when the requester is invalid.
            if not self.am_client.validate_session(token_id).get("valid"):
                raise InvalidSessionError()
            self.am_client.session_service_request(request_set)
            self.logger.info("Registered session listener for %s", _short(session_id))

        self.re_request(subscribe, self.config.reauth_attempts, "register_session_listener")

    def _submit_listener(self, session_id: str) -> None:
        if self._destroyed:
            return
        future = self._executor.submit(self.register_session_listener, session_id)
        future.add_done_callback(self._log_listener_failure)

    def _log_listener_failure(self, future: Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            self.logger.error("Session listener registration failed: %r", exc)

    def _cache_put(self, key: str, value: Any) -> None:
        try:
            self.session_cache.put(key, value)
        except Exception as exc:
            self.logger.warning("Session cache write failed: %r", exc)

    # -- session events ------------------------------------------------------

    def on_session_changed(self, handler: SessionHandler) -> None:
        """Register a handler called for every session-changed event."""
        with self._handlers_lock:
            self._handlers.append(handler)

    def emit_session_changed(self, event: SessionEvent) -> None:
        with self._handlers_lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(event)
            except Exception as exc:
                self.logger.error("Session event handler %r failed: %r", handler, exc)

    def _remove_destroyed_session(self, event: SessionEvent) -> None:
        if event.state == "destroyed":
            self.logger.info("Removing destroyed session from cache: %s", _short(event.sid))
            self.session_cache.remove(event.sid)

    # -- login URLs ----------------------------------------------------------

    def get_login_url(self, request: Request) -> str:
        return self.am_client.get_login_url(original_url(request), self.config.realm)

    def get_cdsso_url(self, request: Request) -> str:
        target = f"{base_url(request)}{self.cdsso_path}?goto={quote(path_with_query(request), safe='')}"
        return self.am_client.get_cdsso_url(target, self.config.app_url or "")

    # -- middleware ----------------------------------------------------------

    def init_app(self, app: FastAPI) -> None:
        """Install the handler that writes shield redirects, challenges and error pages."""
        app.add_exception_handler(ShieldInterrupt, _write_interrupt_response)

    def shield(self, shield: Shield) -> Callable[[Request], SessionData]:
        """Return a FastAPI dependency that evaluates `shield` for each request.

        On allow, the session is merged into ``request.state.session`` and
        returned. On deny, the error is rendered as an HTML page, or raised as
        :class:`ShieldEvaluationError` for the application's own exception
        handlers when ``let_client_handle_errors`` is set.
        """

        def evaluate_shield(request: Request) -> SessionData:
            try:
                outcome = shield.evaluate(request, self)
            except Exception as exc:
                outcome = Deny(as_evaluation_error(exc))

            if isinstance(outcome, Allow):
                current: Optional[SessionData] = getattr(request.state, "session", None)
                session = current.merged(outcome.session) if current else outcome.session
                request.state.session = session
                return session

            if isinstance(outcome, Pending):
                raise ShieldInterrupt(outcome.response)

            error = outcome.error
            self.logger.info("Shield evaluation error (%s %s)", error.status_code, error.message)
            if self.config.let_client_handle_errors:
                raise error
            raise ShieldInterrupt(self.error_response(error.status_code, error.message, error.details))

        evaluate_shield.__name__ = f"{type(shield).__name__}_dependency"
        return evaluate_shield

    def render_error(self, status: int, message: str, details: Optional[str] = None) -> str:
        return self.error_page(ErrorPageContext(status=status, message=message, details=details))

    def error_response(self, status: int, message: str, details: Optional[str] = None,
                       status_code: Optional[int] = None) -> HTMLResponse:
        return HTMLResponse(self.render_error(status, message, details), status_code=status_code or status or 500)

    # -- inbound endpoints ---------------------------------------------------

    def cdsso(self, path: Optional[str] = None) -> APIRouter:
        """Return a router that accepts CDSSO assertions (LARES) and sets the session cookie.

        Requires a WebAgent profile in AM listing the application URL as an
        agent root URL for CDSSO, and a ``CookieShield(cdsso=True)``.
        """
        self.cdsso_path = path or self.cdsso_path
        router = APIRouter()

        @router.post(self.cdsso_path, include_in_schema=False)
        def receive_cdsso(LARES: Optional[str] = Form(default=None), goto: str = "/") -> Response:
            if not LARES:
                return self._cdsso_failure(CdssoValidationError("Missing LARES"))
            self.logger.info("Found LARES data; validating CDSSO assertion")
            try:
                session_id = self.get_session_id_from_lares(LARES)
                response = redirect(_local_path(goto))
                self.set_session_cookie(response, session_id)
            except (CdssoValidationError, AmClientError) as exc:
                return self._cdsso_failure(exc)
            self.logger.info("CDSSO assertion validated; session cookie set")
            return response

        return router

    def _cdsso_failure(self, exc: Exception) -> Response:
        self.logger.error("CDSSO failed: %s", exc)
        return self.error_response(401, "Unauthorized", str(exc), status_code=403)

    def get_session_id_from_lares(self, lares: str, now: Optional[datetime] = None) -> str:
        """Validate a CDSSO assertion (issuer and validity window) and return its session id."""
        assertion = parse_lares(lares)
        expected_issuer = f"{self.config.server_url}/cdcservlet"
        if assertion.issuer != expected_issuer:
            raise CdssoValidationError(f"Unknown issuer: {assertion.issuer}")
        now = now or datetime.now(timezone.utc)
        if not assertion.in_date(now):
            raise CdssoValidationError(
                f"The CDSSO assertion is not in date: {assertion.not_before} - {assertion.not_on_or_after}"
            )
        return assertion.name_id

    def notifications(self, path: Optional[str] = None) -> APIRouter:
        """Return a router receiving AM push notifications; mounting it enables session listeners."""
        self.notification_path = path or self.notification_path
        self.notifications_enabled = True
        router = APIRouter()

        @router.post(self.notification_path, include_in_schema=False)
        async def receive_notification(request: Request, background_tasks: BackgroundTasks) -> Response:
            body = await request.body()
            background_tasks.add_task(self.handle_notification, body)
            return Response(status_code=200)

        return router

    def handle_notification(self, document: Union[str, bytes]) -> None:
        """Dispatch a NotificationSet document by service id."""
        self.logger.debug("Notification received: %r", document)
        try:
            svcid, notifications = parse_notification_set(document)
        except (ParseError, ValueError) as exc:
            self.logger.error("Unreadable notification: %s", exc)
            return
        if svcid.lower() == "session":
            self.session_notification(notifications)
        else:
            self.logger.error("Unknown notification type %s", svcid)

    def session_notification(self, notifications: List[str]) -> None:
        """Emit a session-changed event for each SessionNotification."""
        for notification in notifications:
            try:
                event = parse_session_notification(notification)
            except (ParseError, ValueError) as exc:
                self.logger.error("Unreadable session notification: %s", exc)
                continue
            self.emit_session_changed(event)

    # -- shutdown ------------------------------------------------------------

    def destroy(self) -> None:
        """Log out the agent session and close the cache; never raises."""
        if self._destroyed:
            return
        self._destroyed = True
        self._executor.shutdown(wait=False, cancel_futures=True)

        agent_session = self._agent_session.peek()
        if agent_session is not None:
            self.logger.info("Destroying agent session")
            try:
                cookie_name = self.get_server_info().cookie_name
                self.am_client.logout(agent_session.token_id, cookie_name, self.config.realm)
            except Exception as exc:
                self.logger.warning("Agent logout failed during shutdown: %r", exc)

        try:
            self.session_cache.quit()
        except Exception as exc:
            self.logger.warning("Closing the session cache failed: %r", exc)

        try:
            self.am_client.close()
        except Exception as exc:
            self.logger.warning("Closing the AM client failed: %r", exc)


async def _write_interrupt_response(request: Request, exc: ShieldInterrupt) -> Response:
    return exc.response


def _local_path(goto: Optional[str]) -> str:
    """Only redirect back to paths on this host."""
    if not goto or not goto.startswith("/") or goto.startswith("//"):
        return "/"
    return goto


def _short(session_id: Optional[str]) -> str:
    """Session ids are bearer credentials; log only a prefix."""
    if not session_id:
        return "-"
    return session_id[:8] + "..." if len(session_id) > 8 else session_id
