import unittest

from policy_agent import __version__
from policy_agent.error_page import ErrorPageContext, render_default_error_page
from policy_agent.errors import AmClientError, InvalidSessionError, ShieldEvaluationError, status_code_of
from policy_agent.shield.base import as_evaluation_error


class TestErrors(unittest.TestCase):
    def test_am_client_error_json(self):
        self.assertEqual(AmClientError("x", body='{"code": 401}').json(), {"code": 401})
        self.assertEqual(AmClientError("x", body="<html/>").json(), {})
        self.assertEqual(AmClientError("x", body="[1]").json(), {})

    def test_status_code_of(self):
        self.assertEqual(status_code_of(AmClientError("x", status_code=404)), 404)
        self.assertEqual(status_code_of(AmClientError("x")), 500)
        self.assertEqual(status_code_of(InvalidSessionError()), 401)
        self.assertEqual(status_code_of(ValueError("x"), default=502), 502)

    def test_as_evaluation_error(self):
        original = ShieldEvaluationError(400, "Bad Request")
        self.assertIs(as_evaluation_error(original), original)

        mapped = as_evaluation_error(AmClientError("upstream said no", status_code=403))
        self.assertEqual(mapped.status_code, 403)
        self.assertEqual(mapped.message, "AmClientError")
        self.assertEqual(mapped.details, "upstream said no")


class TestErrorPage(unittest.TestCase):
    def test_default_page_escapes_content(self):
        html = render_default_error_page(ErrorPageContext(401, "Unauthorized", "<script>x</script>"))
        self.assertIn("401 - Unauthorized", html)
        self.assertIn("&lt;script&gt;", html)
        self.assertNotIn("<script>", html)
        self.assertIn(__version__, html)

    def test_details_optional(self):
        html = render_default_error_page(ErrorPageContext(500, "Internal Server Error"))
        self.assertNotIn("<pre>", html)


if __name__ == "__main__":
    unittest.main()
