import os
import threading
import unittest
from unittest.mock import patch

from homeservice import create_app
from homeservice.config import Config
from homeservice.db import close_db, connect_database, get_db
from homeservice.errors import ForbiddenError, NotFoundError, SystemError, ValidationError
from homeservice.infrastructure.repositories import (
    BillRepository,
    OrderRepository,
    QuoteRepository,
    ServiceRequestRepository,
)
from homeservice.routes.negotiation_routes import NEGOTIATION_EXTENSION
from tests.helpers.factories import accept_quote, create_quote, create_request, create_user, fake_photo
from tests.helpers.temp_db import TempDbSandbox


class NegotiationServiceTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="negotiation_service")
        TempConfig = self._temp_db.make_config(Config, TESTING=True)
        self.app = create_app(TempConfig)
        self.service = self.app.extensions[NEGOTIATION_EXTENSION]
        self._ctx = self.app.app_context()
        self._ctx.push()
        self.db = get_db()
        self.client = create_user(self.db, "alice@example.com", "client")
        self.other_client = create_user(self.db, "bob@example.com", "client")
        self.contractor = create_user(self.db, "carla@example.com", "contractor")

    def tearDown(self) -> None:
        close_db()
        self._ctx.pop()
        self._temp_db.cleanup()

    def _count(self, sql: str, params=()) -> int:
        return int(self.db.execute(sql, params).fetchone()[0])

    def test_full_negotiation_scenario(self) -> None:
        request_id = create_request(self.service, self.db, self.client)
        quote_id = create_quote(self.service, self.db, self.contractor, request_id, adjusted_price=180)

        request_row = ServiceRequestRepository().get_by_id(self.db, request_id)
        self.assertEqual(request_row["status"], "quote_sent")

        result = self.service.respond_to_quote(self.db, self.client, quote_id, {"response_type": "accept"})
        self.assertEqual(result.status_code, 201)
        self.assertEqual(result.payload["status"], "accepted")
        order_id = result.payload["order_id"]

        self.assertEqual(ServiceRequestRepository().get_by_id(self.db, request_id)["status"], "accepted")
        order = OrderRepository().get_by_id(self.db, order_id)
        self.assertEqual(order["status"], "scheduled")
        self.assertEqual(order["client_id"], self.client.user_id)
        self.assertEqual(order["final_price"], 180.0)

        completed = self.service.complete_order(self.db, self.contractor, order_id)
        bill_id = completed.payload["bill_id"]
        bill = BillRepository().get_by_id(self.db, bill_id)
        self.assertEqual(bill["status"], "pending")
        self.assertEqual(bill["amount"], 180.0)
        self.assertEqual(bill["client_id"], self.client.user_id)

        disputed = self.service.respond_to_bill(
            self.db,
            self.client,
            bill_id,
            {"response_type": "dispute", "dispute_note": "Kitchen was skipped."},
        )
        self.assertEqual(disputed.payload["status"], "disputed")

        revised = self.service.respond_to_bill(
            self.db,
            self.contractor,
            bill_id,
            {"response_type": "revise", "revised_amount": 150, "revision_note": "Discount for the kitchen."},
        )
        self.assertEqual(revised.payload["status"], "pending")
        self.assertEqual(revised.payload["amount"], 150.0)

        paid = self.service.respond_to_bill(self.db, self.client, bill_id, {"response_type": "pay"})
        self.assertEqual(paid.payload["status"], "paid")
        bill = BillRepository().get_by_id(self.db, bill_id)
        self.assertEqual(bill["amount"], 150.0)
        self.assertIsNotNone(bill["paid_at"])

        history = self.service.get_bill(self.db, self.client, bill_id).payload["responses"]
        self.assertEqual([row["response_type"] for row in history], ["dispute", "revise", "pay"])
        self.assertEqual(self.service.find_status_drift(self.db), [])

    def test_rejection_closes_request_to_new_quotes(self) -> None:
        request_id = create_request(self.service, self.db, self.client)
        result = self.service.create_quote(
            self.db,
            self.contractor,
            {"request_id": request_id, "is_rejection": True, "rejection_reason": "Outside our service area."},
        )
        self.assertEqual(result.payload["status"], "rejected")
        self.assertEqual(result.payload["request_status"], "rejected")

        quote = QuoteRepository().get_by_id(self.db, result.payload["quote_id"])
        self.assertTrue(quote["is_rejection"])
        self.assertEqual(quote["adjusted_price"], 0.0)
        self.assertEqual(quote["scheduled_time_start"], "00:00")

        with self.assertRaises(ValidationError) as ctx:
            create_quote(self.service, self.db, self.contractor, request_id)
        self.assertEqual(ctx.exception.code, "request_not_open_for_quotes")

        with self.assertRaises(ValidationError) as ctx:
            self.service.respond_to_quote(self.db, self.client, result.payload["quote_id"], {"response_type": "accept"})
        self.assertEqual(ctx.exception.code, "quote_final_status")

    def test_quote_requires_existing_request(self) -> None:
        with self.assertRaises(NotFoundError):
            create_quote(self.service, self.db, self.contractor, 999)

    def test_quote_creation_requires_contractor(self) -> None:
        request_id = create_request(self.service, self.db, self.client)
        with self.assertRaises(ForbiddenError):
            create_quote(self.service, self.db, self.client, request_id)

    def test_final_quote_rejects_every_response(self) -> None:
        request_id = create_request(self.service, self.db, self.client)
        quote_id = create_quote(self.service, self.db, self.contractor, request_id)
        accept_quote(self.service, self.db, self.client, quote_id)

        for payload in (
            {"response_type": "accept"},
            {"response_type": "renegotiate", "counter_note": "Cheaper?"},
            {"response_type": "counter", "counter_note": "160 and it's a deal."},
        ):
            with self.assertRaises(ValidationError) as ctx:
                self.service.respond_to_quote(self.db, self.client, quote_id, payload)
            self.assertEqual(ctx.exception.code, "quote_final_status")

        self.assertEqual(self._count("SELECT COUNT(*) FROM service_orders WHERE quote_id = ?", (quote_id,)), 1)
        self.assertEqual(self._count("SELECT COUNT(*) FROM quote_responses WHERE quote_id = ?", (quote_id,)), 1)

    def test_renegotiation_then_new_quote_supersedes_old_one(self) -> None:
        request_id = create_request(self.service, self.db, self.client)
        first_quote = create_quote(self.service, self.db, self.contractor, request_id)
        result = self.service.respond_to_quote(
            self.db,
            self.client,
            first_quote,
            {"response_type": "renegotiate", "counter_note": "Could you do 160?"},
        )
        self.assertEqual(result.payload["status"], "renegotiating")
        self.assertNotIn("order_id", result.payload)

        second_quote = create_quote(self.service, self.db, self.contractor, request_id, adjusted_price=160)
        with self.assertRaises(ValidationError) as ctx:
            accept_quote(self.service, self.db, self.client, first_quote)
        self.assertEqual(ctx.exception.code, "quote_superseded")

        order_id = accept_quote(self.service, self.db, self.client, second_quote)
        self.assertEqual(OrderRepository().get_by_id(self.db, order_id)["final_price"], 160.0)

    def test_counter_requires_note(self) -> None:
        request_id = create_request(self.service, self.db, self.client)
        quote_id = create_quote(self.service, self.db, self.contractor, request_id)
        with self.assertRaises(ValidationError) as ctx:
            self.service.respond_to_quote(self.db, self.client, quote_id, {"response_type": "counter"})
        self.assertEqual(ctx.exception.code, "counter_note_required")

        with self.assertRaises(ValidationError) as ctx:
            self.service.respond_to_quote(self.db, self.client, quote_id, {"response_type": "decline"})
        self.assertEqual(ctx.exception.code, "response_type_invalid")

    def test_other_client_cannot_respond_to_quote(self) -> None:
        request_id = create_request(self.service, self.db, self.client)
        quote_id = create_quote(self.service, self.db, self.contractor, request_id)

        with self.assertRaises(ForbiddenError):
            accept_quote(self.service, self.db, self.other_client, quote_id)
        with self.assertRaises(NotFoundError):
            accept_quote(self.service, self.db, self.client, quote_id + 100)
        with self.assertRaises(NotFoundError):
            self.service.get_quote(self.db, self.other_client, quote_id)

        self.assertEqual(QuoteRepository().get_by_id(self.db, quote_id)["status"], "pending")

    def test_second_accept_does_not_create_second_order(self) -> None:
        request_id = create_request(self.service, self.db, self.client)
        quote_id = create_quote(self.service, self.db, self.contractor, request_id)
        accept_quote(self.service, self.db, self.client, quote_id)

        with self.assertRaises(ValidationError):
            accept_quote(self.service, self.db, self.client, quote_id)
        self.assertEqual(self._count("SELECT COUNT(*) FROM service_orders"), 1)

    def test_concurrent_accepts_create_exactly_one_order(self) -> None:
        request_id = create_request(self.service, self.db, self.client)
        quote_id = create_quote(self.service, self.db, self.contractor, request_id)
        db_path = self.app.config["DB_PATH"]
        barrier = threading.Barrier(2)
        outcomes = []
        lock = threading.Lock()

        def _accept() -> None:
            conn = connect_database(db_path)
            try:
                barrier.wait()
                try:
                    result = accept_quote(self.service, conn, self.client, quote_id)
                    outcome = ("ok", result)
                except ValidationError as exc:
                    outcome = ("error", exc.code)
                with lock:
                    outcomes.append(outcome)
            finally:
                conn.close()

        threads = [threading.Thread(target=_accept) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        self.assertEqual(sorted(kind for kind, _ in outcomes), ["error", "ok"])
        self.assertIn(("error", "quote_final_status"), outcomes)
        self.assertEqual(self._count("SELECT COUNT(*) FROM service_orders WHERE quote_id = ?", (quote_id,)), 1)

    def test_completing_twice_creates_one_bill(self) -> None:
        request_id = create_request(self.service, self.db, self.client)
        quote_id = create_quote(self.service, self.db, self.contractor, request_id)
        order_id = accept_quote(self.service, self.db, self.client, quote_id)
        self.service.complete_order(self.db, self.contractor, order_id)

        with self.assertRaises(ValidationError) as ctx:
            self.service.complete_order(self.db, self.contractor, order_id)
        self.assertEqual(ctx.exception.code, "order_already_completed")
        self.assertEqual(self._count("SELECT COUNT(*) FROM bills WHERE order_id = ?", (order_id,)), 1)

        with self.assertRaises(ForbiddenError):
            self.service.complete_order(self.db, self.client, order_id)
        with self.assertRaises(NotFoundError):
            self.service.complete_order(self.db, self.contractor, order_id + 50)

    def test_bill_responses_are_role_gated(self) -> None:
        request_id = create_request(self.service, self.db, self.client)
        quote_id = create_quote(self.service, self.db, self.contractor, request_id)
        order_id = accept_quote(self.service, self.db, self.client, quote_id)
        bill_id = self.service.complete_order(self.db, self.contractor, order_id).payload["bill_id"]

        with self.assertRaises(ForbiddenError) as ctx:
            self.service.respond_to_bill(self.db, self.client, bill_id, {"response_type": "revise", "revised_amount": 10})
        self.assertEqual(ctx.exception.message_key, "bill_revise_contractor_only")

        for response_type in ("pay", "dispute"):
            with self.assertRaises(ForbiddenError) as ctx:
                self.service.respond_to_bill(
                    self.db,
                    self.contractor,
                    bill_id,
                    {"response_type": response_type, "dispute_note": "n/a"},
                )
            self.assertEqual(ctx.exception.message_key, "bill_pay_client_only")

        with self.assertRaises(NotFoundError):
            self.service.respond_to_bill(self.db, self.other_client, bill_id, {"response_type": "pay"})
        with self.assertRaises(ValidationError) as ctx:
            self.service.respond_to_bill(self.db, self.contractor, bill_id, {"response_type": "revise"})
        self.assertEqual(ctx.exception.code, "revised_amount_required")
        with self.assertRaises(ValidationError) as ctx:
            self.service.respond_to_bill(self.db, self.client, bill_id, {"response_type": "dispute"})
        self.assertEqual(ctx.exception.code, "dispute_note_required")

        self.assertEqual(self._count("SELECT COUNT(*) FROM bill_responses WHERE bill_id = ?", (bill_id,)), 0)
        self.assertEqual(BillRepository().get_by_id(self.db, bill_id)["status"], "pending")

    def test_paid_bill_is_terminal(self) -> None:
        request_id = create_request(self.service, self.db, self.client)
        quote_id = create_quote(self.service, self.db, self.contractor, request_id)
        order_id = accept_quote(self.service, self.db, self.client, quote_id)
        bill_id = self.service.complete_order(self.db, self.contractor, order_id).payload["bill_id"]
        self.service.respond_to_bill(self.db, self.client, bill_id, {"response_type": "pay"})

        with self.assertRaises(ValidationError) as ctx:
            self.service.respond_to_bill(self.db, self.client, bill_id, {"response_type": "pay"})
        self.assertEqual(ctx.exception.code, "bill_already_paid")
        with self.assertRaises(ValidationError) as ctx:
            self.service.respond_to_bill(
                self.db,
                self.contractor,
                bill_id,
                {"response_type": "revise", "revised_amount": 99},
            )
        self.assertEqual(ctx.exception.code, "bill_already_paid")

    def test_price_and_schedule_round_trip_into_order(self) -> None:
        request_id = create_request(self.service, self.db, self.client)
        quote_id = create_quote(
            self.service,
            self.db,
            self.contractor,
            request_id,
            adjusted_price="180.50",
            scheduled_date="2026-12-24",
            scheduled_time_start="8:15",
            scheduled_time_end="11:45",
        )
        order_id = accept_quote(self.service, self.db, self.client, quote_id)
        order = self.service.get_order(self.db, self.client, order_id).payload

        self.assertEqual(order["final_price"], 180.5)
        self.assertEqual(order["scheduled_date"], "2026-12-24")
        self.assertEqual(order["scheduled_time_start"], "08:15")
        self.assertEqual(order["scheduled_time_end"], "11:45")

    def test_order_insert_failure_rolls_back_acceptance(self) -> None:
        request_id = create_request(self.service, self.db, self.client)
        quote_id = create_quote(self.service, self.db, self.contractor, request_id)

        with patch.object(OrderRepository, "create", side_effect=RuntimeError("disk full")):
            with self.assertRaises(SystemError) as ctx:
                accept_quote(self.service, self.db, self.client, quote_id)
        self.assertEqual(ctx.exception.code, "order_creation_failed")
        self.assertNotIn("disk full", ctx.exception.user_message())

        self.assertEqual(QuoteRepository().get_by_id(self.db, quote_id)["status"], "pending")
        self.assertEqual(ServiceRequestRepository().get_by_id(self.db, request_id)["status"], "quote_sent")
        self.assertEqual(self._count("SELECT COUNT(*) FROM quote_responses"), 0)
        self.assertEqual(self._count("SELECT COUNT(*) FROM service_orders"), 0)

        order_id = accept_quote(self.service, self.db, self.client, quote_id)
        self.assertIsNotNone(OrderRepository().get_by_id(self.db, order_id))

    def test_bill_insert_failure_rolls_back_completion(self) -> None:
        request_id = create_request(self.service, self.db, self.client)
        quote_id = create_quote(self.service, self.db, self.contractor, request_id)
        order_id = accept_quote(self.service, self.db, self.client, quote_id)

        with patch.object(BillRepository, "create", side_effect=RuntimeError("constraint")):
            with self.assertRaises(SystemError) as ctx:
                self.service.complete_order(self.db, self.contractor, order_id)
        self.assertEqual(ctx.exception.code, "bill_creation_failed")

        order = OrderRepository().get_by_id(self.db, order_id)
        self.assertEqual(order["status"], "scheduled")
        self.assertIsNone(order["completed_at"])
        self.assertEqual(self._count("SELECT COUNT(*) FROM bills"), 0)

    def test_history_records_each_transition(self) -> None:
        request_id = create_request(self.service, self.db, self.client)
        quote_id = create_quote(self.service, self.db, self.contractor, request_id)
        accept_quote(self.service, self.db, self.client, quote_id)

        events = self.service.history(self.db, self.client, "service_request", request_id).payload["items"]
        self.assertEqual(
            [(event["from_status"], event["to_status"]) for event in events],
            [(None, "pending"), ("pending", "quote_sent"), ("quote_sent", "accepted")],
        )
        with self.assertRaises(NotFoundError):
            self.service.history(self.db, self.other_client, "service_request", request_id)

    def test_photo_rows_failing_removes_stored_files(self) -> None:
        request_id = create_request(self.service, self.db, self.client)
        upload_dir = self.app.config["UPLOAD_DIR"]

        with patch.object(ServiceRequestRepository, "add_photo", side_effect=RuntimeError("disk full")):
            with self.assertRaises(SystemError) as ctx:
                self.service.upload_photos(self.db, self.client, request_id, [fake_photo(), fake_photo("b.png", "image/png")])
        self.assertEqual(ctx.exception.code, "photo_upload_failed")
        self.assertEqual(os.listdir(upload_dir) if os.path.isdir(upload_dir) else [], [])
        self.assertEqual(self._count("SELECT COUNT(*) FROM service_request_photos"), 0)

    def test_photos_only_for_owner(self) -> None:
        request_id = create_request(self.service, self.db, self.client)
        with self.assertRaises(NotFoundError):
            self.service.upload_photos(self.db, self.other_client, request_id, [fake_photo()])
        with self.assertRaises(ForbiddenError):
            self.service.upload_photos(self.db, self.contractor, request_id, [fake_photo()])

        result = self.service.upload_photos(self.db, self.client, request_id, [fake_photo()])
        self.assertEqual(result.payload["photo_count"], 1)
        detail = self.service.get_service_request(self.db, self.client, request_id).payload
        self.assertEqual(detail["photos"], result.payload["photos"])

    def test_status_drift_is_reported(self) -> None:
        request_id = create_request(self.service, self.db, self.client)
        quote_id = create_quote(self.service, self.db, self.contractor, request_id)
        self.db.execute("UPDATE quotes SET status = 'renegotiating' WHERE id = ?", (quote_id,))

        drift = self.service.find_status_drift(self.db)
        self.assertEqual(drift, [{"entity": "quote", "id": quote_id, "cached": "renegotiating", "derived": "pending"}])

    def test_missing_order_and_bill_are_reported(self) -> None:
        first_request = create_request(self.service, self.db, self.client)
        first_quote = create_quote(self.service, self.db, self.contractor, first_request)
        first_order = accept_quote(self.service, self.db, self.client, first_quote)
        self.db.execute("DELETE FROM service_orders WHERE id = ?", (first_order,))

        second_request = create_request(self.service, self.db, self.client, service_address="7 Pine Road")
        second_order = accept_quote(
            self.service,
            self.db,
            self.client,
            create_quote(self.service, self.db, self.contractor, second_request),
        )
        bill_id = self.service.complete_order(self.db, self.contractor, second_order).payload["bill_id"]
        self.db.execute("DELETE FROM bills WHERE id = ?", (bill_id,))

        drift = self.service.find_status_drift(self.db)
        self.assertEqual(
            drift,
            [
                {"entity": "quote", "id": first_quote, "cached": {"orders": 0}, "derived": {"orders": 1}},
                {"entity": "service_order", "id": second_order, "cached": {"bills": 0}, "derived": {"bills": 1}},
            ],
        )

    def test_photo_upload_locks_request_inside_transaction(self) -> None:
        request_id = create_request(self.service, self.db, self.client)
        seen = []
        original = ServiceRequestRepository.lock_for_update

        def _recording_lock(repo, db, locked_id):
            seen.append((locked_id, db.in_transaction))
            return original(repo, db, locked_id)

        with patch.object(ServiceRequestRepository, "lock_for_update", autospec=True, side_effect=_recording_lock):
            self.service.upload_photos(self.db, self.client, request_id, [fake_photo()])

        self.assertEqual(seen, [(request_id, True)])


if __name__ == "__main__":
    unittest.main()
