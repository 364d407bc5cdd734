"""Exception types shared by the AM client, the agent and the shields."""

from __future__ import annotations

import json
from typing import Optional

from starlette.responses import Response


class AgentError(Exception):
    """Base class for policy agent errors."""


class AmClientError(AgentError):
    """Transport or HTTP failure talking to the AM server.

    `status_code` is None when no HTTP response was received (connection
    refused, timeout).
    """

    def __init__(self, message: str, *, status_code: Optional[int] = None,
                 body: str = "", url: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.url = url

    def json(self) -> dict:
        """Parse the response body as JSON, returning {} if it is not JSON."""
        try:
            data = json.loads(self.body or "")
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}


class InvalidSessionError(AgentError):
    """The agent's own AM session is no longer valid."""

    status_code = 401

    def __init__(self, message: str = "Invalid agent session") -> None:
        super().__init__(message)


class RequestCancelled(AgentError):
    """A retried operation was cancelled by its caller."""


class CdssoValidationError(AgentError):
    """A CDSSO assertion is malformed, out of date, or from an unknown issuer."""


class ShieldEvaluationError(AgentError):
    """Uniform error a shield denies a request with."""

    def __init__(self, status_code: int, message: str, details: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.details = details

    def __repr__(self) -> str:
        return f"ShieldEvaluationError({self.status_code}, {self.message!r})"


class ShieldInterrupt(Exception):
    """Carries a ready response (redirect, challenge, error page) out of a dependency."""

    def __init__(self, response: Response) -> None:
        super().__init__(response.status_code)
        self.response = response


def status_code_of(exc: BaseException, default: int = 500) -> int:
    """Best-effort HTTP status of an arbitrary failure."""
    status = getattr(exc, "status_code", None)
    return status if isinstance(status, int) else default
