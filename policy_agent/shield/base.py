"""Shield protocol and the three evaluation outcomes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, Union

from starlette.requests import Request
from starlette.responses import Response

from policy_agent.am_types import SessionData
from policy_agent.errors import ShieldEvaluationError, status_code_of

if TYPE_CHECKING:
    from policy_agent.agent import PolicyAgent


@dataclass
class Allow:
    """The request may proceed with this session."""
    session: SessionData


@dataclass
class Deny:
    """The request is rejected; the agent renders or forwards the error."""
    error: ShieldEvaluationError


@dataclass
class Pending:
    """The shield answered out of band (redirect, challenge); stop processing."""
    response: Response


Outcome = Union[Allow, Deny, Pending]


class Shield(Protocol):
    """A pluggable authentication or authorization strategy."""

    def evaluate(self, request: Request, agent: "PolicyAgent") -> Outcome:
        """Decide whether `request` may proceed."""
        ...


def as_evaluation_error(exc: Exception) -> ShieldEvaluationError:
    """Map any failure raised while evaluating into a ShieldEvaluationError."""
    if isinstance(exc, ShieldEvaluationError):
        return exc
    return ShieldEvaluationError(
        status_code_of(exc),
        type(exc).__name__,
        str(exc),
    )
