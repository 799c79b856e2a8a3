import unittest
from unittest.mock import patch

from homeservice import create_app
from homeservice.config import Config
from homeservice.db import close_db
from homeservice.messages import error_message
from tests.helpers.factories import DEFAULT_PASSWORD
from tests.helpers.temp_db import TempDbSandbox


class ErrorHandlingApiTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="error_api")
        self.app = create_app(self._temp_db.make_config(Config, TESTING=True, PROPAGATE_EXCEPTIONS=False))
        self.client = self.app.test_client()

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()

    def _client_headers(self) -> dict:
        self.client.post("/api/auth/register", json={"email": "alice@example.com", "password": DEFAULT_PASSWORD})
        login = self.client.post("/api/auth/login", json={"email": "alice@example.com", "password": DEFAULT_PASSWORD})
        return {"Authorization": login.get_json()["token"]}

    def test_unauthenticated_api_call(self) -> None:
        response = self.client.get("/api/service-requests")
        self.assertEqual(response.status_code, 401)

        payload = response.get_json()
        self.assertEqual(payload.get("error"), "auth_required")
        self.assertEqual(payload.get("message"), error_message("auth_required"))
        self.assertTrue((payload.get("request_id") or "").strip())
        self.assertNotIn("Traceback", response.get_data(as_text=True))

    def test_invalid_token(self) -> None:
        response = self.client.get("/api/orders", headers={"Authorization": "Bearer not-a-token"})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.get_json()["error"], "auth_invalid_token")

    def test_raw_token_is_accepted(self) -> None:
        response = self.client.get("/api/orders", headers=self._client_headers())
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["items"], [])

    def test_request_id_is_echoed(self) -> None:
        response = self.client.get("/api/bills", headers={"X-Request-Id": "req-123"})
        self.assertEqual(response.headers.get("X-Request-Id"), "req-123")
        self.assertEqual(response.get_json()["request_id"], "req-123")
        self.assertIn("X-Response-Time-Ms", response.headers)

    def test_unknown_route_returns_json(self) -> None:
        response = self.client.get("/missing-page")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.get_json()["error"], "not_found")

    def test_missing_entity_returns_not_found_code(self) -> None:
        response = self.client.get("/api/service-requests/404", headers=self._client_headers())
        self.assertEqual(response.status_code, 404)
        payload = response.get_json()
        self.assertEqual(payload["error"], "service_request_not_found")
        self.assertEqual(payload["message"], error_message("service_request_not_found"))

    def test_validation_error_payload(self) -> None:
        response = self.client.post(
            "/api/service-requests",
            json={"service_address": "12 Elm Street"},
            headers=self._client_headers(),
        )
        self.assertEqual(response.status_code, 400)
        payload = response.get_json()
        self.assertEqual(payload["error"], "fields_required")
        self.assertIn("cleaning_type", payload["missing"])

    def test_non_object_json_bodies_are_validation_errors(self) -> None:
        cases = [
            ("/api/auth/register", ["x"], "fields_required"),
            ("/api/auth/register", "alice@example.com", "fields_required"),
            ("/api/auth/login", ["x"], "auth_missing_credentials"),
            ("/api/auth/login", 42, "auth_missing_credentials"),
        ]
        for path, body, code in cases:
            with self.subTest(path=path, body=body):
                response = self.client.post(path, json=body)
                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.get_json()["error"], code)

    def test_stack_trace_not_exposed_for_unhandled_error(self) -> None:
        headers = self._client_headers()
        with patch(
            "homeservice.application.negotiation_service.NegotiationService.list_orders",
            side_effect=RuntimeError("stack_secret_token"),
        ):
            response = self.client.get("/api/orders", headers=headers)

        self.assertEqual(response.status_code, 500)
        payload = response.get_json()
        self.assertEqual(payload.get("error"), "unexpected_error")
        self.assertEqual(payload.get("message"), error_message("unexpected_error"))
        body = response.get_data(as_text=True)
        self.assertNotIn("Traceback", body)
        self.assertNotIn("stack_secret_token", body)

    def test_health_reports_database(self) -> None:
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        payload = response.get_json()
        self.assertEqual(payload["status"], "ok")
        self.assertEqual(payload["db"], "sqlite")
        self.assertIn("requests_total", payload["metrics"]["http"])


if __name__ == "__main__":
    unittest.main()
