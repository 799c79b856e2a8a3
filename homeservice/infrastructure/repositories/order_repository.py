from __future__ import annotations

from typing import Any, Dict

from homeservice.infrastructure.repositories.base import BaseRepository


class OrderRepository(BaseRepository):
    def create(self, db, fields: Dict[str, Any]) -> int:
        return self.insert_returning_id(
            db,
            """
            INSERT INTO service_orders (
                request_id, quote_id, client_id, scheduled_date,
                scheduled_time_start, scheduled_time_end, final_price, status
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                fields["request_id"],
                fields["quote_id"],
                fields["client_id"],
                fields["scheduled_date"],
                fields["scheduled_time_start"],
                fields["scheduled_time_end"],
                fields["final_price"],
                fields["status"],
            ),
        )

    def get_by_id(self, db, order_id: int) -> dict | None:
        owner_clause, owner_params = self.build_owner_clause(table_alias="o")
        row = db.execute(
            f"""
            SELECT o.*, sr.service_address, sr.cleaning_type, sr.num_rooms
            FROM service_orders o
            JOIN service_requests sr ON sr.id = o.request_id
            WHERE o.id = ?{owner_clause}
            LIMIT 1
            """,
            (order_id, *owner_params),
        ).fetchone()
        return self._normalize(self.row_to_dict(row))

    def list_summary(self, db, *, status: str | None = None, limit: int = 200) -> list[dict]:
        owner_clause, owner_params = self.build_owner_clause(table_alias="o")
        status_clause = " AND o.status = ?" if status else ""
        status_params = (status,) if status else ()
        rows = db.execute(
            f"""
            SELECT o.*, sr.service_address, sr.cleaning_type
            FROM service_orders o
            JOIN service_requests sr ON sr.id = o.request_id
            WHERE 1 = 1{owner_clause}{status_clause}
            ORDER BY o.scheduled_date DESC, o.id DESC
            LIMIT ?
            """,
            (*owner_params, *status_params, int(limit)),
        ).fetchall()
        return [self._normalize(row) for row in self.rows_to_dicts(rows)]

    def list_all(self, db) -> list[dict]:
        owner_clause, owner_params = self.build_owner_clause(table_alias="o")
        rows = db.execute(
            f"SELECT o.* FROM service_orders o WHERE 1 = 1{owner_clause} ORDER BY o.id ASC",
            owner_params,
        ).fetchall()
        return [self._normalize(row) for row in self.rows_to_dicts(rows)]

    def count_for_quote(self, db, quote_id: int) -> int:
        row = db.execute(
            "SELECT COUNT(*) AS total FROM service_orders WHERE quote_id = ?",
            (quote_id,),
        ).fetchone()
        return int(row["total"] if row else 0)

    def mark_completed(self, db, order_id: int, *, from_status: str) -> bool:
        cursor = db.execute(
            """
            UPDATE service_orders
            SET status = 'completed', completed_at = CURRENT_TIMESTAMP, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND status = ? AND status IN ('scheduled', 'in_progress')
            """,
            (order_id, from_status),
        )
        return cursor.rowcount == 1

    @staticmethod
    def _normalize(row: dict | None) -> dict | None:
        if row is None:
            return None
        row["final_price"] = float(row["final_price"])
        return row
