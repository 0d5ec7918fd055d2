"""SQLite storage for banks and statements."""

import json
import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from uuid import UUID

from spendscope.config import settings
from spendscope.models import Bank, ParsedEntry, ParsedStatementGroup, StatementRecord

# SQL schema. statements.parsed is a JSON array; NULL means never parsed.
SCHEMA = """
CREATE TABLE IF NOT EXISTS banks (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    logo TEXT NOT NULL DEFAULT 'default',
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS statements (
    id TEXT PRIMARY KEY,
    bank_id TEXT NOT NULL REFERENCES banks(id),
    name TEXT NOT NULL,
    file_path TEXT NOT NULL,
    media_type TEXT NOT NULL DEFAULT '',
    upload_date TEXT DEFAULT CURRENT_TIMESTAMP,
    processed INTEGER NOT NULL DEFAULT 0,
    raw_text TEXT,
    parsed TEXT,
    last_error TEXT
);

CREATE INDEX IF NOT EXISTS idx_statements_bank ON statements(bank_id);
CREATE INDEX IF NOT EXISTS idx_statements_processed ON statements(processed);
"""

STATEMENT_COLUMNS = "id, bank_id, name, file_path, media_type, upload_date, processed, raw_text, parsed, last_error"


class Database:
    """SQLite database manager."""

    def __init__(self, db_path: Path | None = None):
        self.db_path = db_path or settings.db_path
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the database schema."""
        with self._get_connection() as conn:
            conn.executescript(SCHEMA)
            conn.commit()

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    # ==================== BANKS ====================

    def add_bank(self, bank: Bank) -> None:
        """Insert a bank."""
        with self._get_connection() as conn:
            conn.execute(
                "INSERT INTO banks (id, name, logo, created_at) VALUES (?, ?, ?, ?)",
                (str(bank.id), bank.name, bank.logo, bank.created_at),
            )
            conn.commit()

    def get_banks(self) -> list[Bank]:
        """Get all banks, newest first."""
        with self._get_connection() as conn:
            cursor = conn.execute("SELECT id, name, logo, created_at FROM banks ORDER BY created_at DESC")
            return [self._row_to_bank(row) for row in cursor.fetchall()]

    def get_bank(self, bank_id: UUID) -> Bank | None:
        """Get a single bank by ID."""
        with self._get_connection() as conn:
            cursor = conn.execute("SELECT id, name, logo, created_at FROM banks WHERE id = ?", (str(bank_id),))
            row = cursor.fetchone()
            return self._row_to_bank(row) if row else None

    def rename_bank(self, bank_id: UUID, name: str) -> bool:
        """Rename a bank. Returns False if it does not exist."""
        with self._get_connection() as conn:
            cursor = conn.execute("UPDATE banks SET name = ? WHERE id = ?", (name, str(bank_id)))
            conn.commit()
            return cursor.rowcount > 0

    def delete_bank(self, bank_id: UUID) -> list[StatementRecord]:
        """Delete a bank and its statements. Returns the removed statements."""
        statements = self.get_statements(bank_id=bank_id)
        with self._get_connection() as conn:
            conn.execute("DELETE FROM statements WHERE bank_id = ?", (str(bank_id),))
            conn.execute("DELETE FROM banks WHERE id = ?", (str(bank_id),))
            conn.commit()
        return statements

    # ==================== STATEMENTS ====================

    def add_statement(self, statement: StatementRecord) -> None:
        """Insert a statement record."""
        with self._get_connection() as conn:
            conn.execute(
                f"INSERT INTO statements ({STATEMENT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    str(statement.id),
                    str(statement.bank_id),
                    statement.name,
                    statement.file_path,
                    statement.media_type,
                    statement.upload_date,
                    int(statement.processed),
                    statement.raw_text,
                    self._dump_parsed(statement.parsed),
                    statement.last_error,
                ),
            )
            conn.commit()

    def get_statement(self, statement_id: UUID) -> StatementRecord | None:
        """Get a single statement by ID."""
        with self._get_connection() as conn:
            cursor = conn.execute(f"SELECT {STATEMENT_COLUMNS} FROM statements WHERE id = ?", (str(statement_id),))
            row = cursor.fetchone()
            return self._row_to_statement(row) if row else None

    def get_statements(self, bank_id: UUID | None = None, unprocessed_only: bool = False) -> list[StatementRecord]:
        """Get statements with optional filters, oldest upload first."""
        query = f"SELECT {STATEMENT_COLUMNS} FROM statements WHERE 1=1"
        params: list = []

        if bank_id:
            query += " AND bank_id = ?"
            params.append(str(bank_id))
        if unprocessed_only:
            query += " AND processed = 0"

        query += " ORDER BY upload_date ASC, rowid ASC"

        with self._get_connection() as conn:
            cursor = conn.execute(query, params)
            return [self._row_to_statement(row) for row in cursor.fetchall()]

    def delete_statement(self, statement_id: UUID) -> StatementRecord | None:
        """Delete a statement. Returns the removed record."""
        statement = self.get_statement(statement_id)
        if statement is None:
            return None
        with self._get_connection() as conn:
            conn.execute("DELETE FROM statements WHERE id = ?", (str(statement_id),))
            conn.commit()
        return statement

    def save_raw_text(self, statement_id: UUID, raw_text: str) -> None:
        """Store extracted text so later parses skip extraction."""
        with self._get_connection() as conn:
            conn.execute("UPDATE statements SET raw_text = ? WHERE id = ?", (raw_text, str(statement_id)))
            conn.commit()

    def save_parsed(self, statement_id: UUID, parsed: list[ParsedEntry] | None, error: str | None = None) -> None:
        """Store a parse outcome. ``parsed=None`` records a failed run."""
        with self._get_connection() as conn:
            conn.execute(
                "UPDATE statements SET parsed = ?, processed = ?, last_error = ? WHERE id = ?",
                (self._dump_parsed(parsed), int(parsed is not None), error, str(statement_id)),
            )
            conn.commit()

    def get_parsed_groups(self) -> list[ParsedStatementGroup]:
        """Every statement as dashboard input."""
        return [statement.to_group() for statement in self.get_statements()]

    def get_statement_count(self) -> int:
        """Get total number of statements."""
        with self._get_connection() as conn:
            cursor = conn.execute("SELECT COUNT(*) as count FROM statements")
            return cursor.fetchone()["count"]

    @staticmethod
    def _dump_parsed(parsed: list[ParsedEntry] | None) -> str | None:
        if parsed is None:
            return None
        return json.dumps([entry.model_dump() for entry in parsed])

    def _row_to_bank(self, row: sqlite3.Row) -> Bank:
        return Bank(id=UUID(row["id"]), name=row["name"], logo=row["logo"], created_at=row["created_at"])

    def _row_to_statement(self, row: sqlite3.Row) -> StatementRecord:
        """Convert a database row to a StatementRecord model."""
        parsed_json = row["parsed"]
        return StatementRecord(
            id=UUID(row["id"]),
            bank_id=UUID(row["bank_id"]),
            name=row["name"],
            file_path=row["file_path"],
            media_type=row["media_type"],
            upload_date=row["upload_date"],
            processed=bool(row["processed"]),
            raw_text=row["raw_text"],
            parsed=[ParsedEntry(**item) for item in json.loads(parsed_json)] if parsed_json is not None else None,
            last_error=row["last_error"],
        )


# Global database instance
db = Database()
