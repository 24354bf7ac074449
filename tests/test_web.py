import asyncio
import unittest

from modrelay.relay import NotificationRelay
from modrelay.web import RateLimiter, create_app

from tests.fakes import FakeClock, FakeGateway

APPLICANT = "123456789012345678"


class TestNotifyEndpoint(unittest.TestCase):
    def setUp(self):
        self.gateway = FakeGateway()
        self.ready = True
        self.enabled = True
        self.make_app()

    def make_app(self, rate_limiter=None):
        app = create_app(
            NotificationRelay(self.gateway),
            run_coroutine=asyncio.run,
            is_ready=lambda: self.ready,
            integration_enabled=self.enabled,
            rate_limiter=rate_limiter,
        )
        self.client = app.test_client()

    def post(self, body):
        return self.client.post("/notify", json=body)

    def test_home_and_health(self):
        self.assertIn(b"POST /notify", self.client.get("/").data)
        r = self.client.get("/health")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.get_json(), {"status": "ok", "discordConnected": True})

    def test_success(self):
        r = self.post({"discordId": APPLICANT, "status": "Approved", "payload": {"details": "Welcome"}})
        self.assertEqual(r.status_code, 200)
        body = r.get_json()
        self.assertTrue(body["success"])
        self.assertEqual(body["recipient"], f"user{APPLICANT}")
        self.assertIn("**Details:** Welcome", self.gateway.dms[0][1])

    def test_disabled(self):
        self.enabled = False
        self.make_app()
        self.assertEqual(self.post({"discordId": APPLICANT, "status": "approved"}).status_code, 503)

    def test_missing_fields(self):
        self.assertEqual(self.post({"status": "approved"}).status_code, 400)
        self.assertEqual(self.post({"discordId": APPLICANT}).status_code, 400)

    def test_body_that_is_not_an_object(self):
        for body in ([1, 2], "x", 5):
            r = self.post(body)
            self.assertEqual(r.status_code, 400, body)
            self.assertEqual(r.get_json()["error"], "Missing discordId or status in request body.")

    def test_bad_id(self):
        r = self.post({"discordId": "42", "status": "approved"})
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.get_json()["error"], "Invalid Discord ID format.")

    def test_bot_not_ready(self):
        self.ready = False
        self.assertEqual(self.post({"discordId": APPLICANT, "status": "approved"}).status_code, 503)

    def test_bad_status(self):
        r = self.post({"discordId": APPLICANT, "status": "pending"})
        self.assertEqual(r.status_code, 400)
        self.assertIn("submitted, approved, rejected", r.get_json()["error"])

    def test_unknown_user(self):
        self.gateway.unknown_users.add(int(APPLICANT))
        self.assertEqual(self.post({"discordId": APPLICANT, "status": "approved"}).status_code, 404)

    def test_send_failure(self):
        self.gateway.fail_dm = True
        r = self.post({"discordId": APPLICANT, "status": "approved"})
        self.assertEqual(r.status_code, 500)
        self.assertEqual(r.get_json()["error"], "Failed to send notification")

    def test_rate_limit(self):
        self.make_app(RateLimiter(2, 60))
        body = {"discordId": APPLICANT, "status": "submitted"}
        self.assertEqual(self.post(body).status_code, 200)
        self.assertEqual(self.post(body).status_code, 200)
        self.assertEqual(self.post(body).status_code, 429)
        self.assertEqual(self.client.get("/health").status_code, 200)


class TestRateLimiter(unittest.TestCase):
    def test_window_resets(self):
        clock = FakeClock()
        rl = RateLimiter(1, 60, clock=clock)
        self.assertTrue(rl.allow("a"))
        self.assertFalse(rl.allow("a"))
        self.assertTrue(rl.allow("b"))
        clock.advance(60)
        self.assertTrue(rl.allow("a"))


if __name__ == "__main__":
    unittest.main()
