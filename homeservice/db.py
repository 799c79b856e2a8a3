import contextlib
import sqlite3
from typing import Iterable, List

try:
    import psycopg2
    import psycopg2.extras
except ImportError:  # pragma: no cover - optional dependency for postgres
    psycopg2 = None

from flask import current_app, g


class Database:
    def __init__(self, backend: str, connection):
        self.backend = backend
        self._conn = connection
        self._transaction_depth = 0

    @property
    def in_transaction(self) -> bool:
        return self._transaction_depth > 0

    def execute(self, sql: str, params: Iterable | None = None):
        if self.backend == "postgres":
            cursor = self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            if params:
                sql = _convert_qmark_to_pg(sql)
                cursor.execute(sql, list(params))
            else:
                cursor.execute(sql)
            return cursor
        return self._conn.execute(sql, params or ())

    @contextlib.contextmanager
    def transaction(self):
        """Run the block atomically: commit on success, roll back on any exception.

        Nested calls join the outermost transaction.
        """
        if self._transaction_depth:
            self._transaction_depth += 1
            try:
                yield self
            finally:
                self._transaction_depth -= 1
            return

        self.execute("BEGIN IMMEDIATE" if self.backend == "sqlite" else "BEGIN")
        self._transaction_depth = 1
        try:
            yield self
        except BaseException:
            self._transaction_depth = 0
            self.execute("ROLLBACK")
            raise
        self._transaction_depth = 0
        self.execute("COMMIT")

    def commit(self):
        if self.in_transaction:
            return
        self._conn.commit()

    def close(self):
        self._conn.close()


def _convert_qmark_to_pg(sql: str) -> str:
    return sql.replace("?", "%s")


def connect_database(db_path: str) -> Database:
    if db_path.lower().startswith("postgres"):
        if psycopg2 is None:
            raise RuntimeError("psycopg2 is not installed.")
        conn = psycopg2.connect(db_path)
        conn.autocommit = True
        return Database("postgres", conn)

    # Autocommit mode: every multi-statement change goes through Database.transaction().
    conn = sqlite3.connect(db_path, timeout=30.0, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return Database("sqlite", conn)


def get_db():
    if "db" not in g:
        g.db = connect_database(current_app.config["DB_PATH"])
    return g.db


def close_db(_error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


_TABLES = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id {pk},
        email TEXT NOT NULL UNIQUE,
        password_hash TEXT NOT NULL,
        first_name TEXT,
        last_name TEXT,
        phone TEXT UNIQUE,
        address TEXT,
        role TEXT NOT NULL DEFAULT 'client' CHECK (role IN ('client','contractor')),
        card_number_encrypted TEXT,
        card_name TEXT,
        card_exp_month INTEGER,
        card_exp_year INTEGER,
        created_at {ts}
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS service_requests (
        id {pk},
        client_id INTEGER NOT NULL REFERENCES users (id),
        service_address TEXT NOT NULL,
        cleaning_type TEXT NOT NULL CHECK (cleaning_type IN ('basic','deep cleaning','move-out')),
        num_rooms INTEGER NOT NULL CHECK (num_rooms >= 1),
        preferred_date TEXT NOT NULL,
        preferred_time TEXT NOT NULL,
        proposed_budget {money} NOT NULL CHECK (proposed_budget >= 0),
        notes TEXT,
        status TEXT NOT NULL DEFAULT 'pending' CHECK (
            status IN ('pending','quote_sent','rejected','accepted')
        ),
        created_at {ts},
        updated_at {ts}
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS service_request_photos (
        id {pk},
        request_id INTEGER NOT NULL REFERENCES service_requests (id),
        photo_path TEXT NOT NULL,
        created_at {ts}
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS quotes (
        id {pk},
        request_id INTEGER NOT NULL REFERENCES service_requests (id),
        contractor_id INTEGER NOT NULL REFERENCES users (id),
        adjusted_price {money} NOT NULL CHECK (adjusted_price >= 0),
        scheduled_date TEXT NOT NULL,
        scheduled_time_start TEXT NOT NULL,
        scheduled_time_end TEXT NOT NULL,
        notes TEXT,
        is_rejection {bool} NOT NULL DEFAULT {false},
        rejection_reason TEXT,
        status TEXT NOT NULL DEFAULT 'pending' CHECK (
            status IN ('pending','renegotiating','accepted','rejected')
        ),
        created_at {ts},
        updated_at {ts}
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS quote_responses (
        id {pk},
        quote_id INTEGER NOT NULL REFERENCES quotes (id),
        responder_id INTEGER NOT NULL REFERENCES users (id),
        response_type TEXT NOT NULL CHECK (response_type IN ('accept','renegotiate','counter')),
        counter_note TEXT,
        created_at {ts}
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS service_orders (
        id {pk},
        request_id INTEGER NOT NULL REFERENCES service_requests (id),
        quote_id INTEGER NOT NULL UNIQUE REFERENCES quotes (id),
        client_id INTEGER NOT NULL REFERENCES users (id),
        scheduled_date TEXT NOT NULL,
        scheduled_time_start TEXT NOT NULL,
        scheduled_time_end TEXT NOT NULL,
        final_price {money} NOT NULL CHECK (final_price >= 0),
        status TEXT NOT NULL DEFAULT 'scheduled' CHECK (
            status IN ('scheduled','in_progress','completed','canceled')
        ),
        completed_at {ts_null},
        created_at {ts},
        updated_at {ts}
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS bills (
        id {pk},
        order_id INTEGER NOT NULL UNIQUE REFERENCES service_orders (id),
        client_id INTEGER NOT NULL REFERENCES users (id),
        amount {money} NOT NULL CHECK (amount >= 0),
        status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending','paid','disputed')),
        paid_at {ts_null},
        created_at {ts},
        updated_at {ts}
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS bill_responses (
        id {pk},
        bill_id INTEGER NOT NULL REFERENCES bills (id),
        responder_id INTEGER NOT NULL REFERENCES users (id),
        response_type TEXT NOT NULL CHECK (response_type IN ('pay','dispute','revise')),
        dispute_note TEXT,
        revised_amount {money},
        revision_note TEXT,
        created_at {ts}
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS status_events (
        id {pk},
        entity TEXT NOT NULL CHECK (entity IN ('service_request','quote','service_order','bill')),
        entity_id INTEGER NOT NULL,
        from_status TEXT,
        to_status TEXT NOT NULL,
        reason TEXT,
        actor_id INTEGER,
        occurred_at {ts}
    )
    """,
)

TABLE_NAMES = (
    "users",
    "service_requests",
    "service_request_photos",
    "quotes",
    "quote_responses",
    "service_orders",
    "bills",
    "bill_responses",
    "status_events",
)

_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_service_requests_client ON service_requests (client_id)",
    "CREATE INDEX IF NOT EXISTS idx_service_request_photos_request ON service_request_photos (request_id)",
    "CREATE INDEX IF NOT EXISTS idx_quotes_request ON quotes (request_id)",
    "CREATE INDEX IF NOT EXISTS idx_quote_responses_quote ON quote_responses (quote_id)",
    "CREATE INDEX IF NOT EXISTS idx_service_orders_client ON service_orders (client_id)",
    "CREATE INDEX IF NOT EXISTS idx_bills_client ON bills (client_id)",
    "CREATE INDEX IF NOT EXISTS idx_bill_responses_bill ON bill_responses (bill_id)",
    "CREATE INDEX IF NOT EXISTS idx_status_events_entity ON status_events (entity, entity_id)",
)

_COLUMN_TYPES = {
    "sqlite": {
        "pk": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "ts": "TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP",
        "ts_null": "TEXT",
        "money": "REAL",
        "bool": "INTEGER",
        "false": "0",
    },
    "postgres": {
        "pk": "SERIAL PRIMARY KEY",
        "ts": "TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP",
        "ts_null": "TIMESTAMP",
        "money": "DOUBLE PRECISION",
        "bool": "BOOLEAN",
        "false": "FALSE",
    },
}


def schema_statements(backend: str) -> List[str]:
    types = _COLUMN_TYPES["postgres" if backend == "postgres" else "sqlite"]
    statements = [ddl.format(**types).strip() for ddl in _TABLES]
    statements.extend(_INDEXES)
    return statements


def create_schema(db: Database) -> None:
    for statement in schema_statements(db.backend):
        db.execute(statement)
    db.commit()


def init_db():
    create_schema(get_db())
