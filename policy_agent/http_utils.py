"""Request/response helpers shared by the shields and the agent routes."""

from __future__ import annotations

import base64
import binascii
from typing import Optional, Tuple

from starlette.requests import Request
from starlette.responses import RedirectResponse, Response


def get_protocol(request: Request) -> str:
    """Return the request scheme, honouring X-Forwarded-Proto from a proxy."""
    forwarded = request.headers.get("x-forwarded-proto")
    if forwarded:
        return "https" if forwarded.split(",")[0].strip().lower() == "https" else "http"
    return "https" if request.url.scheme == "https" else "http"


def base_url(request: Request) -> str:
    """Return the origin of the request (<protocol>://<host>)."""
    host = request.headers.get("host") or request.url.netloc
    return f"{get_protocol(request)}://{host}"


def path_with_query(request: Request) -> str:
    """Return the path plus the query string as the client sent it."""
    query = request.url.query
    return f"{request.url.path}?{query}" if query else request.url.path


def original_url(request: Request) -> str:
    """Return the absolute URL the client requested."""
    return base_url(request) + path_with_query(request)


def request_hostname(request: Request) -> str:
    """Return the Host header without a port."""
    host = request.headers.get("host") or request.url.hostname or ""
    if host.startswith("["):
        return host.split("]")[0] + "]"
    return host.rsplit(":", 1)[0] if ":" in host else host


def host_matches_domain(hostname: str, domain: str) -> bool:
    """True if `hostname` is `domain` or a subdomain of it (".example.com" style)."""
    hostname = hostname.lower()
    domain = domain.lower().lstrip(".")
    if not domain:
        return False
    return hostname == domain or hostname.endswith("." + domain)


def get_bearer_token(request: Request) -> str:
    """Return the bearer token from the Authorization header, or ''."""
    header = request.headers.get("authorization") or ""
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()


def get_basic_credentials(request: Request) -> Optional[Tuple[str, str]]:
    """Decode HTTP Basic credentials, or None if absent or malformed."""
    header = request.headers.get("authorization") or ""
    scheme, _, encoded = header.strip().partition(" ")
    if scheme.lower() != "basic" or not encoded:
        return None
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    username, sep, password = decoded.partition(":")
    if not sep:
        return None
    return username, password


def redirect(location: str, permanent: bool = False) -> Response:
    """Build a redirect response (302, or 301 when permanent)."""
    return RedirectResponse(location, status_code=301 if permanent else 302)
