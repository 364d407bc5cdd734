"""Shared dataclasses for AM payloads and shield results."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class ServerInfo:
    """AM server metadata: session cookie name and valid cookie domains."""
    cookie_name: str
    domains: List[str] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ServerInfo":
        """Build from the /json/serverinfo/* response."""
        return cls(
            cookie_name=payload.get("cookieName") or "iPlanetDirectoryPro",
            domains=list(payload.get("domains") or []),
        )


@dataclass(frozen=True)
class AgentSession:
    """The agent's own authenticated session against AM."""
    token_id: str
    realm: str = "/"


@dataclass
class SessionData:
    """Outcome of a successful shield evaluation.

    `key` identifies the principal (session id, access token or username);
    `data` carries claims, profile attributes and policy decisions.
    """
    key: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def merged(self, other: "SessionData") -> "SessionData":
        """Return a copy with `other` layered on top (last write wins)."""
        return SessionData(key=other.key or self.key, data={**self.data, **other.data})


@dataclass
class PolicyDecision:
    """A single AM policy decision for one resource."""
    resource: str
    actions: Dict[str, bool] = field(default_factory=dict)
    attributes: Dict[str, List[str]] = field(default_factory=dict)
    advices: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "PolicyDecision":
        return cls(
            resource=payload.get("resource", ""),
            actions=dict(payload.get("actions") or {}),
            attributes=dict(payload.get("attributes") or {}),
            advices=dict(payload.get("advices") or {}),
        )

    def allows(self, method: str) -> bool:
        """True only if AM explicitly granted `method`."""
        return self.actions.get(method.upper()) is True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resource": self.resource,
            "actions": dict(self.actions),
            "attributes": dict(self.attributes),
            "advices": dict(self.advices),
        }


@dataclass
class PolicyDecisionRequest:
    """Body of a /json/policies?_action=evaluate request."""
    resources: List[str]
    application: str
    subject: Dict[str, Any]

    def to_payload(self) -> Dict[str, Any]:
        return {
            "resources": list(self.resources),
            "application": self.application,
            "subject": dict(self.subject),
        }


@dataclass(frozen=True)
class SessionEvent:
    """A session state change pushed by AM (e.g. state="destroyed")."""
    sid: str
    state: str
    attributes: Dict[str, str] = field(default_factory=dict)
