import base64
import unittest
import xml.etree.ElementTree as ET
from datetime import datetime, timezone

from policy_agent.errors import CdssoValidationError
from policy_agent.xml_utils import (
    build_session_listener_request,
    parse_lares,
    parse_notification_set,
    parse_session_notification,
)


def make_lares(issuer="http://openam.example.com:8080/openam/cdcservlet",
               not_before="2024-01-01T10:00:00Z",
               not_on_or_after="2024-01-01T10:05:00Z",
               name_id="AQIC5w-session"):
    doc = (
        '<lib:AuthnResponse xmlns:lib="http://www.projectliberty.org/schemas/core/2002/12" '
        'xmlns:saml="urn:oasis:names:tc:SAML:1.0:assertion">'
        f'<saml:Assertion Issuer="{issuer}">'
        f'<saml:Conditions NotBefore="{not_before}" NotOnOrAfter="{not_on_or_after}"/>'
        "<saml:AuthenticationStatement><saml:Subject>"
        f"<saml:NameIdentifier>{name_id}</saml:NameIdentifier>"
        "</saml:Subject></saml:AuthenticationStatement>"
        "</saml:Assertion>"
        "</lib:AuthnResponse>"
    )
    return base64.b64encode(doc.encode("utf-8")).decode("ascii")


NOTIFICATION_SET = (
    '<NotificationSet vers="1.0" svcid="session" notid="42">'
    "<Notification><![CDATA["
    '<SessionNotification vers="1.0" notid="42">'
    '<Session sid="AQIC5w-session" stype="user" cid="uid=demo" cdomain="dc=example" '
    'maxtime="120" maxidle="30" maxcaching="3" timeidle="0" timeleft="7200" state="destroyed"/>'
    "<Type>5</Type><Time>1700000000000</Time>"
    "</SessionNotification>"
    "]]></Notification>"
    "</NotificationSet>"
)


class TestSessionListenerRequest(unittest.TestCase):
    def test_outer_and_inner_documents(self):
        doc = build_session_listener_request("agent-token", "http://app.example.com/agent/notifications", "user-sid")
        outer = ET.fromstring(doc)
        self.assertEqual(outer.tag, "RequestSet")
        self.assertEqual(outer.attrib["svcid"], "Session")
        self.assertEqual(outer.attrib["vers"], "1.0")

        inner = ET.fromstring(outer.find("Request").text)
        self.assertEqual(inner.tag, "SessionRequest")
        requester = base64.b64decode(inner.attrib["requester"]).decode("utf-8")
        self.assertEqual(requester, "token:agent-token")
        self.assertEqual(inner.find("AddSessionListener/URL").text, "http://app.example.com/agent/notifications")
        self.assertEqual(inner.find("AddSessionListener/SessionID").text, "user-sid")

    def test_values_are_escaped(self):
        doc = build_session_listener_request("t", "http://app/n?a=1&b=2", "s<id>")
        inner = ET.fromstring(ET.fromstring(doc).find("Request").text)
        self.assertEqual(inner.find("AddSessionListener/URL").text, "http://app/n?a=1&b=2")
        self.assertEqual(inner.find("AddSessionListener/SessionID").text, "s<id>")


class TestNotifications(unittest.TestCase):
    def test_parse_notification_set(self):
        svcid, notifications = parse_notification_set(NOTIFICATION_SET)
        self.assertEqual(svcid, "session")
        self.assertEqual(len(notifications), 1)
        self.assertTrue(notifications[0].startswith("<SessionNotification"))

    def test_parse_session_notification(self):
        _, notifications = parse_notification_set(NOTIFICATION_SET.encode("utf-8"))
        event = parse_session_notification(notifications[0])
        self.assertEqual(event.sid, "AQIC5w-session")
        self.assertEqual(event.state, "destroyed")
        self.assertEqual(event.attributes["cid"], "uid=demo")

    def test_wrong_root_rejected(self):
        with self.assertRaises(ValueError):
            parse_notification_set("<Other/>")

    def test_notification_without_session_rejected(self):
        with self.assertRaises(ValueError):
            parse_session_notification("<SessionNotification/>")


class TestLares(unittest.TestCase):
    def test_parse_lares(self):
        assertion = parse_lares(make_lares())
        self.assertEqual(assertion.issuer, "http://openam.example.com:8080/openam/cdcservlet")
        self.assertEqual(assertion.name_id, "AQIC5w-session")
        self.assertEqual(assertion.not_before, datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc))

    def test_in_date_window_is_half_open(self):
        assertion = parse_lares(make_lares())
        self.assertTrue(assertion.in_date(datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)))
        self.assertTrue(assertion.in_date(datetime(2024, 1, 1, 10, 4, 59, tzinfo=timezone.utc)))
        self.assertFalse(assertion.in_date(datetime(2024, 1, 1, 10, 5, tzinfo=timezone.utc)))
        self.assertFalse(assertion.in_date(datetime(2024, 1, 1, 9, 59, tzinfo=timezone.utc)))

    def test_garbage_rejected(self):
        with self.assertRaises(CdssoValidationError):
            parse_lares(base64.b64encode(b"<not-closed").decode("ascii"))

    def test_missing_conditions_rejected(self):
        doc = '<AuthnResponse><Assertion Issuer="x"><NameIdentifier>s</NameIdentifier></Assertion></AuthnResponse>'
        with self.assertRaises(CdssoValidationError):
            parse_lares(base64.b64encode(doc.encode()).decode("ascii"))

    def test_bad_instant_rejected(self):
        with self.assertRaises(CdssoValidationError):
            parse_lares(make_lares(not_before="yesterday"))


if __name__ == "__main__":
    unittest.main()
