from __future__ import annotations

from homeservice.domain.contracts import ServiceRequestCreateInput
from homeservice.infrastructure.repositories.base import BaseRepository


class ServiceRequestRepository(BaseRepository):
    def create(self, db, *, client_id: int, create_input: ServiceRequestCreateInput, status: str) -> int:
        return self.insert_returning_id(
            db,
            """
            INSERT INTO service_requests (
                client_id, service_address, cleaning_type, num_rooms,
                preferred_date, preferred_time, proposed_budget, notes, status
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                client_id,
                create_input.service_address,
                create_input.cleaning_type,
                create_input.num_rooms,
                create_input.preferred_date,
                create_input.preferred_time,
                create_input.proposed_budget,
                create_input.notes,
                status,
            ),
        )

    def get_by_id(self, db, request_id: int) -> dict | None:
        owner_clause, owner_params = self.build_owner_clause(table_alias="sr")
        row = db.execute(
            f"""
            SELECT sr.*, u.first_name AS client_first_name, u.last_name AS client_last_name,
                   u.email AS client_email
            FROM service_requests sr
            JOIN users u ON u.id = sr.client_id
            WHERE sr.id = ?{owner_clause}
            LIMIT 1
            """,
            (request_id, *owner_params),
        ).fetchone()
        return self.row_to_dict(row)

    def lock_for_update(self, db, request_id: int) -> bool:
        """Hold the request row until the surrounding transaction ends.

        PostgreSQL takes a row lock; SQLite is already serialised by BEGIN IMMEDIATE.
        """
        owner_clause, owner_params = self.build_owner_clause()
        lock_clause = " FOR UPDATE" if db.backend == "postgres" else ""
        row = db.execute(
            f"SELECT id FROM service_requests WHERE id = ?{owner_clause}{lock_clause}",
            (request_id, *owner_params),
        ).fetchone()
        return row is not None

    def list_summary(self, db, *, status: str | None = None, limit: int = 200) -> list[dict]:
        owner_clause, owner_params = self.build_owner_clause(table_alias="sr")
        status_clause = " AND sr.status = ?" if status else ""
        status_params = (status,) if status else ()
        rows = db.execute(
            f"""
            SELECT sr.id, sr.client_id, sr.service_address, sr.cleaning_type, sr.num_rooms,
                   sr.preferred_date, sr.preferred_time, sr.proposed_budget, sr.status, sr.created_at,
                   (SELECT COUNT(*) FROM service_request_photos p WHERE p.request_id = sr.id) AS photo_count
            FROM service_requests sr
            WHERE 1 = 1{owner_clause}{status_clause}
            ORDER BY sr.id DESC
            LIMIT ?
            """,
            (*owner_params, *status_params, int(limit)),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def update_status(self, db, request_id: int, *, from_status: str, to_status: str) -> bool:
        """Compare-and-set the status; returns False when another writer got there first."""
        owner_clause, owner_params = self.build_owner_clause()
        cursor = db.execute(
            f"""
            UPDATE service_requests
            SET status = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND status = ?{owner_clause}
            """,
            (to_status, request_id, from_status, *owner_params),
        )
        return cursor.rowcount == 1

    def add_photo(self, db, request_id: int, photo_path: str) -> int:
        return self.insert_returning_id(
            db,
            """
            INSERT INTO service_request_photos (request_id, photo_path)
            VALUES (?, ?)
            RETURNING id
            """,
            (request_id, photo_path),
        )

    def list_photos(self, db, request_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT id, request_id, photo_path, created_at
            FROM service_request_photos
            WHERE request_id = ?
            ORDER BY id ASC
            """,
            (request_id,),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def count_photos(self, db, request_id: int) -> int:
        row = db.execute(
            "SELECT COUNT(*) AS total FROM service_request_photos WHERE request_id = ?",
            (request_id,),
        ).fetchone()
        return int(row["total"] if row else 0)
