from __future__ import annotations

from typing import Any, Dict

from werkzeug.security import generate_password_hash

from homeservice.infrastructure.repositories.base import BaseRepository


_PUBLIC_COLUMNS = "id, email, first_name, last_name, phone, address, role, created_at"


class UserRepository(BaseRepository):
    def create_user(
        self,
        db,
        *,
        email: str,
        password: str,
        role: str,
        first_name: str | None = None,
        last_name: str | None = None,
        phone: str | None = None,
        address: str | None = None,
        card: Dict[str, Any] | None = None,
    ) -> int:
        card = card or {}
        return self.insert_returning_id(
            db,
            """
            INSERT INTO users (
                email, password_hash, first_name, last_name, phone, address, role,
                card_number_encrypted, card_name, card_exp_month, card_exp_year
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                email,
                generate_password_hash(password),
                first_name,
                last_name,
                phone,
                address,
                role,
                card.get("number_encrypted"),
                card.get("name"),
                card.get("exp_month"),
                card.get("exp_year"),
            ),
        )

    def find_by_email(self, db, email: str) -> dict | None:
        row = db.execute(
            "SELECT * FROM users WHERE email = ? LIMIT 1",
            (email,),
        ).fetchone()
        return self.row_to_dict(row)

    def find_by_phone(self, db, phone: str) -> dict | None:
        row = db.execute(
            "SELECT * FROM users WHERE phone = ? LIMIT 1",
            (phone,),
        ).fetchone()
        return self.row_to_dict(row)

    def get_public(self, db, user_id: int) -> dict | None:
        row = db.execute(
            f"SELECT {_PUBLIC_COLUMNS} FROM users WHERE id = ? LIMIT 1",
            (user_id,),
        ).fetchone()
        return self.row_to_dict(row)

    def get_card(self, db, user_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT card_number_encrypted, card_name, card_exp_month, card_exp_year
            FROM users
            WHERE id = ? AND card_number_encrypted IS NOT NULL
            """,
            (user_id,),
        ).fetchone()
        return self.row_to_dict(row)

    def email_exists(self, db, email: str) -> bool:
        return bool(db.execute("SELECT 1 FROM users WHERE email = ?", (email,)).fetchone())

    def phone_exists(self, db, phone: str) -> bool:
        return bool(db.execute("SELECT 1 FROM users WHERE phone = ?", (phone,)).fetchone())
