from __future__ import annotations

from typing import Any, Dict

from homeservice.infrastructure.repositories.base import BaseRepository


class BillRepository(BaseRepository):
    def create(self, db, fields: Dict[str, Any]) -> int:
        return self.insert_returning_id(
            db,
            """
            INSERT INTO bills (order_id, client_id, amount, status)
            VALUES (?, ?, ?, ?)
            RETURNING id
            """,
            (fields["order_id"], fields["client_id"], fields["amount"], fields["status"]),
        )

    def get_by_id(self, db, bill_id: int) -> dict | None:
        owner_clause, owner_params = self.build_owner_clause(table_alias="b")
        row = db.execute(
            f"""
            SELECT b.*, o.final_price, o.scheduled_date, o.request_id
            FROM bills b
            JOIN service_orders o ON o.id = b.order_id
            WHERE b.id = ?{owner_clause}
            LIMIT 1
            """,
            (bill_id, *owner_params),
        ).fetchone()
        return self._normalize(self.row_to_dict(row))

    def list_summary(self, db, *, status: str | None = None, limit: int = 200) -> list[dict]:
        owner_clause, owner_params = self.build_owner_clause(table_alias="b")
        status_clause = " AND b.status = ?" if status else ""
        status_params = (status,) if status else ()
        rows = db.execute(
            f"""
            SELECT b.*, o.final_price, o.scheduled_date, o.request_id
            FROM bills b
            JOIN service_orders o ON o.id = b.order_id
            WHERE 1 = 1{owner_clause}{status_clause}
            ORDER BY b.id DESC
            LIMIT ?
            """,
            (*owner_params, *status_params, int(limit)),
        ).fetchall()
        return [self._normalize(row) for row in self.rows_to_dicts(rows)]

    def list_all(self, db) -> list[dict]:
        owner_clause, owner_params = self.build_owner_clause(table_alias="b")
        rows = db.execute(
            f"""
            SELECT b.*, o.final_price
            FROM bills b
            JOIN service_orders o ON o.id = b.order_id
            WHERE 1 = 1{owner_clause}
            ORDER BY b.id ASC
            """,
            owner_params,
        ).fetchall()
        return [self._normalize(row) for row in self.rows_to_dicts(rows)]

    def count_for_order(self, db, order_id: int) -> int:
        row = db.execute(
            "SELECT COUNT(*) AS total FROM bills WHERE order_id = ?",
            (order_id,),
        ).fetchone()
        return int(row["total"] if row else 0)

    def apply_response(
        self,
        db,
        bill_id: int,
        *,
        from_status: str,
        to_status: str,
        amount: float,
        mark_paid: bool,
    ) -> bool:
        paid_at_sql = "CURRENT_TIMESTAMP" if mark_paid else "paid_at"
        cursor = db.execute(
            f"""
            UPDATE bills
            SET status = ?, amount = ?, paid_at = {paid_at_sql}, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND status = ? AND status <> 'paid'
            """,
            (to_status, amount, bill_id, from_status),
        )
        return cursor.rowcount == 1

    def add_response(
        self,
        db,
        *,
        bill_id: int,
        responder_id: int,
        response_type: str,
        dispute_note: str | None = None,
        revised_amount: float | None = None,
        revision_note: str | None = None,
    ) -> int:
        return self.insert_returning_id(
            db,
            """
            INSERT INTO bill_responses (bill_id, responder_id, response_type, dispute_note, revised_amount, revision_note)
            VALUES (?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (bill_id, responder_id, response_type, dispute_note, revised_amount, revision_note),
        )

    def list_responses(self, db, bill_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT br.id, br.bill_id, br.responder_id, br.response_type, br.dispute_note,
                   br.revised_amount, br.revision_note, br.created_at,
                   u.first_name AS responder_first_name, u.last_name AS responder_last_name
            FROM bill_responses br
            JOIN users u ON u.id = br.responder_id
            WHERE br.bill_id = ?
            ORDER BY br.id ASC
            """,
            (bill_id,),
        ).fetchall()
        return self.rows_to_dicts(rows)

    @staticmethod
    def _normalize(row: dict | None) -> dict | None:
        if row is None:
            return None
        row["amount"] = float(row["amount"])
        if row.get("final_price") is not None:
            row["final_price"] = float(row["final_price"])
        return row
