"""Building and parsing the XML documents exchanged with the AM session service."""

from __future__ import annotations

import base64
import binascii
import uuid
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Tuple
from xml.sax.saxutils import escape, quoteattr

from .am_types import SessionEvent
from .errors import CdssoValidationError


def _reqid() -> str:
    return uuid.uuid4().hex[:12]


def _local(tag: str) -> str:
    """Strip an ElementTree '{namespace}' prefix from a tag or attribute name."""
    return tag.rsplit("}", 1)[-1]


def _cdata(text: str) -> str:
    # "]]>" cannot appear inside a CDATA section; split it across two sections.
    return "<![CDATA[" + text.replace("]]>", "]]]]><![CDATA[>") + "]]>"


def build_session_listener_request(agent_token_id: str, notification_url: str, session_id: str) -> str:
    """Return a RequestSet that subscribes `notification_url` to changes of `session_id`.

    The inner SessionRequest is embedded as CDATA in the outer RequestSet and
    names the agent through a base64 ``token:<id>`` requester attribute.
    """
    requester = base64.b64encode(f"token:{agent_token_id}".encode("utf-8")).decode("ascii")
    session_request = (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f'<SessionRequest vers="1.0" reqid={quoteattr(_reqid())} requester={quoteattr(requester)}>'
        "<AddSessionListener>"
        f"<URL>{escape(notification_url)}</URL>"
        f"<SessionID>{escape(session_id)}</SessionID>"
        "</AddSessionListener>"
        "</SessionRequest>"
    )
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f'<RequestSet vers="1.0" svcid="Session" reqid={quoteattr(_reqid())}>'
        f"<Request>{_cdata(session_request)}</Request>"
        "</RequestSet>"
    )


def parse_notification_set(document: str | bytes) -> Tuple[str, List[str]]:
    """Return the service id and the raw embedded notifications of a NotificationSet."""
    root = ET.fromstring(document)
    if _local(root.tag) != "NotificationSet":
        raise ValueError(f"Expected NotificationSet, got {_local(root.tag)}")
    svcid = root.attrib.get("svcid", "")
    notifications = [
        (child.text or "").strip()
        for child in root
        if _local(child.tag) == "Notification"
    ]
    return svcid, notifications


def parse_session_notification(notification: str) -> SessionEvent:
    """Parse one SessionNotification document into a SessionEvent."""
    root = ET.fromstring(notification)
    session = next((el for el in root.iter() if _local(el.tag) == "Session"), None)
    if session is None:
        raise ValueError("SessionNotification without a Session element")
    attributes = {_local(k): v for k, v in session.attrib.items()}
    return SessionEvent(
        sid=attributes.get("sid", ""),
        state=attributes.get("state", ""),
        attributes=attributes,
    )


@dataclass(frozen=True)
class CdssoAssertion:
    """The parts of a CDSSO AuthnResponse assertion the agent checks."""
    issuer: str
    not_before: datetime
    not_on_or_after: datetime
    name_id: str

    def in_date(self, now: datetime) -> bool:
        return self.not_before <= now < self.not_on_or_after


def _parse_instant(value: Optional[str], name: str) -> datetime:
    if not value:
        raise CdssoValidationError(f"CDSSO assertion is missing {name}")
    try:
        instant = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise CdssoValidationError(f"CDSSO assertion has an invalid {name}: {value}") from exc
    return instant if instant.tzinfo else instant.replace(tzinfo=timezone.utc)


def parse_lares(lares: str) -> CdssoAssertion:
    """Decode a base64 LARES form value and extract its SAML assertion."""
    try:
        document = base64.b64decode(lares, validate=False).decode("utf-8")
        root = ET.fromstring(document)
    except (binascii.Error, UnicodeDecodeError, ET.ParseError) as exc:
        raise CdssoValidationError(f"CDSSO assertion is malformed: {exc}") from exc

    def first(parent: ET.Element, name: str) -> Optional[ET.Element]:
        return next((el for el in parent.iter() if _local(el.tag) == name), None)

    assertion = first(root, "Assertion")
    if assertion is None:
        raise CdssoValidationError("CDSSO response does not contain an Assertion")
    conditions = first(assertion, "Conditions")
    name_id = first(assertion, "NameIdentifier")
    if conditions is None or name_id is None or not (name_id.text or "").strip():
        raise CdssoValidationError("CDSSO assertion is missing Conditions or NameIdentifier")

    return CdssoAssertion(
        issuer=assertion.attrib.get("Issuer", ""),
        not_before=_parse_instant(conditions.attrib.get("NotBefore"), "NotBefore"),
        not_on_or_after=_parse_instant(conditions.attrib.get("NotOnOrAfter"), "NotOnOrAfter"),
        name_id=(name_id.text or "").strip(),
    )
