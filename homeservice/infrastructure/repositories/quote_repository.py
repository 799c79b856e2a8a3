from __future__ import annotations

from typing import Any, Dict

from homeservice.infrastructure.repositories.base import BaseRepository


class QuoteRepository(BaseRepository):
    def create(self, db, *, contractor_id: int, fields: Dict[str, Any]) -> int:
        return self.insert_returning_id(
            db,
            """
            INSERT INTO quotes (
                request_id, contractor_id, adjusted_price, scheduled_date,
                scheduled_time_start, scheduled_time_end, notes, is_rejection,
                rejection_reason, status
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                fields["request_id"],
                contractor_id,
                fields["adjusted_price"],
                fields["scheduled_date"],
                fields["scheduled_time_start"],
                fields["scheduled_time_end"],
                fields.get("notes"),
                bool(fields.get("is_rejection")),
                fields.get("rejection_reason"),
                fields["status"],
            ),
        )

    def get_by_id(self, db, quote_id: int) -> dict | None:
        owner_clause, owner_params = self.build_owner_clause(table_alias="sr")
        row = db.execute(
            f"""
            SELECT q.*, sr.client_id
            FROM quotes q
            JOIN service_requests sr ON sr.id = q.request_id
            WHERE q.id = ?{owner_clause}
            LIMIT 1
            """,
            (quote_id, *owner_params),
        ).fetchone()
        return self._normalize(self.row_to_dict(row))

    def find_owner_id(self, db, quote_id: int) -> int | None:
        row = db.execute(
            """
            SELECT sr.client_id
            FROM quotes q
            JOIN service_requests sr ON sr.id = q.request_id
            WHERE q.id = ?
            LIMIT 1
            """,
            (quote_id,),
        ).fetchone()
        return int(row["client_id"]) if row else None

    def latest_quote_id(self, db, request_id: int) -> int | None:
        row = db.execute(
            "SELECT id FROM quotes WHERE request_id = ? ORDER BY id DESC LIMIT 1",
            (request_id,),
        ).fetchone()
        return int(row["id"]) if row else None

    def list_for_request(self, db, request_id: int) -> list[dict]:
        owner_clause, owner_params = self.build_owner_clause(table_alias="sr")
        rows = db.execute(
            f"""
            SELECT q.*, sr.client_id
            FROM quotes q
            JOIN service_requests sr ON sr.id = q.request_id
            WHERE q.request_id = ?{owner_clause}
            ORDER BY q.id ASC
            """,
            (request_id, *owner_params),
        ).fetchall()
        return [self._normalize(row) for row in self.rows_to_dicts(rows)]

    def list_all(self, db) -> list[dict]:
        owner_clause, owner_params = self.build_owner_clause(table_alias="sr")
        rows = db.execute(
            f"""
            SELECT q.*, sr.client_id
            FROM quotes q
            JOIN service_requests sr ON sr.id = q.request_id
            WHERE 1 = 1{owner_clause}
            ORDER BY q.id ASC
            """,
            owner_params,
        ).fetchall()
        return [self._normalize(row) for row in self.rows_to_dicts(rows)]

    def update_status(self, db, quote_id: int, *, from_status: str, to_status: str) -> bool:
        """Compare-and-set; final quotes never match so a lost race returns False."""
        cursor = db.execute(
            """
            UPDATE quotes
            SET status = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND status = ? AND status NOT IN ('accepted', 'rejected')
            """,
            (to_status, quote_id, from_status),
        )
        return cursor.rowcount == 1

    def add_response(
        self,
        db,
        *,
        quote_id: int,
        responder_id: int,
        response_type: str,
        counter_note: str | None,
    ) -> int:
        return self.insert_returning_id(
            db,
            """
            INSERT INTO quote_responses (quote_id, responder_id, response_type, counter_note)
            VALUES (?, ?, ?, ?)
            RETURNING id
            """,
            (quote_id, responder_id, response_type, counter_note),
        )

    def list_responses(self, db, quote_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT qr.id, qr.quote_id, qr.responder_id, qr.response_type, qr.counter_note, qr.created_at,
                   u.first_name AS responder_first_name, u.last_name AS responder_last_name
            FROM quote_responses qr
            JOIN users u ON u.id = qr.responder_id
            WHERE qr.quote_id = ?
            ORDER BY qr.id ASC
            """,
            (quote_id,),
        ).fetchall()
        return self.rows_to_dicts(rows)

    @staticmethod
    def _normalize(row: dict | None) -> dict | None:
        if row is None:
            return None
        row["is_rejection"] = bool(row.get("is_rejection"))
        row["adjusted_price"] = float(row["adjusted_price"])
        return row
