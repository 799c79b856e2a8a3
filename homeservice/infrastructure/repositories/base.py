from __future__ import annotations

from typing import Any, Iterable, Tuple

from homeservice.policies import owner_scope


class BaseRepository:
    """Row access limited to what one caller may see.

    ``client_id`` set means every read and write is restricted to rows owned by
    that client; ``None`` means unrestricted (contractor or system use).
    """

    def __init__(self, *, client_id: int | None = None) -> None:
        self.client_id = int(client_id) if client_id is not None else None

    @classmethod
    def for_caller(cls, role: str | None, user_id: int | None):
        return cls(client_id=owner_scope(role, user_id))

    def build_owner_clause(
        self,
        *,
        table_alias: str | None = None,
        column_name: str = "client_id",
    ) -> Tuple[str, Tuple[Any, ...]]:
        if self.client_id is None:
            return "", ()
        prefix = f"{table_alias.strip()}." if table_alias and str(table_alias).strip() else ""
        return f" AND {prefix}{column_name} = ?", (self.client_id,)

    @staticmethod
    def insert_returning_id(db, sql: str, params: Iterable[Any]) -> int:
        # Drain the cursor so SQLite finalizes the statement before COMMIT.
        rows = db.execute(sql, tuple(params)).fetchall()
        row = rows[0]
        return int(row["id"] if isinstance(row, dict) else row[0])

    @staticmethod
    def row_to_dict(row: Any) -> dict | None:
        return dict(row) if row else None

    @staticmethod
    def rows_to_dicts(rows: Iterable[Any]) -> list[dict]:
        return [dict(row) for row in rows]
