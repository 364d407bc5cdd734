"""Default HTML error page rendered when a shield denies a request."""

from __future__ import annotations

from dataclasses import dataclass
from html import escape
from typing import Callable, Optional

from . import __version__


@dataclass
class ErrorPageContext:
    """Values available to an error page renderer."""
    status: int
    message: str
    details: Optional[str] = None
    version: str = __version__


ErrorPageRenderer = Callable[[ErrorPageContext], str]


def render_default_error_page(context: ErrorPageContext) -> str:
    details = ""
    if context.details:
        details = f"<pre>{escape(context.details)}</pre>"
    return (
        "<!DOCTYPE html>"
        "<html><head><meta charset=\"utf-8\">"
        f"<title>{context.status} {escape(context.message)}</title>"
        "<style>body{font-family:sans-serif;margin:3em;color:#333}"
        "pre{background:#f5f5f5;padding:1em;white-space:pre-wrap}</style>"
        "</head><body>"
        f"<h1>{context.status} - {escape(context.message)}</h1>"
        f"{details}"
        f"<hr><small>am-policy-agent {escape(context.version)}</small>"
        "</body></html>"
    )
