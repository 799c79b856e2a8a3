import unittest

from homeservice import create_app
from homeservice.config import Config
from homeservice.db import close_db, get_db
from homeservice.routes.negotiation_routes import NEGOTIATION_EXTENSION
from tests.helpers.factories import accept_quote, create_quote, create_request, create_user
from tests.helpers.temp_db import TempDbSandbox


class CliCommandsTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="cli_commands")
        self.app = create_app(self._temp_db.make_config(Config, TESTING=True))
        self.runner = self.app.test_cli_runner()

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()

    def test_users_create_reports_validation_errors(self) -> None:
        args = ["users", "create", "--email", "carla@example.com", "--password", "secret123", "--role", "contractor"]
        first = self.runner.invoke(args=args)
        self.assertEqual(first.exit_code, 0, msg=first.output)
        self.assertIn("contractor carla@example.com", first.output)

        duplicate = self.runner.invoke(args=args)
        self.assertNotEqual(duplicate.exit_code, 0)
        self.assertIn("email_already_registered", duplicate.output)

        short = self.runner.invoke(args=["users", "create", "--email", "x@example.com", "--password", "123"])
        self.assertNotEqual(short.exit_code, 0)
        self.assertIn("password_too_short", short.output)

    def test_verify_reports_drift(self) -> None:
        with self.app.app_context():
            db = get_db()
            service = self.app.extensions[NEGOTIATION_EXTENSION]
            client = create_user(db, "alice@example.com", "client")
            contractor = create_user(db, "carla@example.com", "contractor")
            request_id = create_request(service, db, client)
            order_id = accept_quote(service, db, client, create_quote(service, db, contractor, request_id))
            bill_id = service.complete_order(db, contractor, order_id).payload["bill_id"]

        clean = self.runner.invoke(args=["negotiation", "verify"])
        self.assertEqual(clean.exit_code, 0, msg=clean.output)

        with self.app.app_context():
            get_db().execute("UPDATE bills SET status = 'paid' WHERE id = ?", (bill_id,))

        drifted = self.runner.invoke(args=["negotiation", "verify"])
        self.assertNotEqual(drifted.exit_code, 0)
        self.assertIn('"entity": "bill"', drifted.output)
        self.assertIn("1 record(s) drifted", drifted.output)


if __name__ == "__main__":
    unittest.main()
