"""Repository: CRUD operations against SQLite using raw SQL.

All methods take/return dataclass instances from models.py.
Connection management uses a single connection with WAL mode and
foreign keys enabled.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

from .models import Import, Transaction

MIGRATIONS_DIR = Path(__file__).parent / "migrations"


class Repository:
    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.execute("PRAGMA journal_mode = WAL")
        return self._conn

    def close(self):
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # ── Migrations ──────────────────────────────────────────

    def apply_migrations(self, migrations_dir: Path = MIGRATIONS_DIR):
        """Apply all pending SQL migrations in order.

        Each migration runs in a transaction: if the SQL fails, the
        schema_version row is not inserted, allowing retry on next startup.
        """
        self.conn.execute(
            "CREATE TABLE IF NOT EXISTS schema_version ("
            "  version INTEGER PRIMARY KEY,"
            "  description TEXT,"
            "  applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP"
            ")"
        )
        self.conn.commit()

        row = self.conn.execute(
            "SELECT MAX(version) FROM schema_version"
        ).fetchone()
        current = row[0] or 0

        for sql_file in sorted(migrations_dir.glob("*.sql")):
            version = int(sql_file.name.split("_")[0])
            if version <= current:
                continue
            try:
                self.conn.execute("BEGIN")
                # executescript auto-commits, so statements are run one by one
                for statement in sql_file.read_text().split(";"):
                    statement = statement.strip()
                    if statement:
                        self.conn.execute(statement)
                self.conn.execute(
                    "INSERT INTO schema_version (version, description) VALUES (?, ?)",
                    (version, sql_file.stem),
                )
                self.conn.commit()
            except Exception:
                self.conn.rollback()
                raise

    def schema_version(self) -> int:
        row = self.conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
        return row[0] or 0

    # ── Imports ─────────────────────────────────────────────

    def insert_import(self, imp: Import) -> Import:
        self.conn.execute(
            "INSERT INTO imports (id, owner, file_name, file_hash, record_count,"
            " status, error_message, created_at, completed_at)"
            " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (imp.id, imp.owner, imp.file_name, imp.file_hash, imp.record_count,
             imp.status, imp.error_message, imp.created_at, imp.completed_at),
        )
        self.conn.commit()
        return imp

    def get_import(self, import_id: str) -> Import | None:
        row = self.conn.execute(
            "SELECT * FROM imports WHERE id = ?", (import_id,)
        ).fetchone()
        return self._row_to_import(row) if row else None

    def get_import_by_hash(self, owner: str, file_hash: str) -> Import | None:
        """Most recent completed import of this exact file for the owner."""
        row = self.conn.execute(
            "SELECT * FROM imports WHERE owner = ? AND file_hash = ?"
            " AND status = 'completed' ORDER BY created_at DESC LIMIT 1",
            (owner, file_hash),
        ).fetchone()
        return self._row_to_import(row) if row else None

    def get_imports_for_owner(self, owner: str, limit: int | None = None) -> list[Import]:
        sql = "SELECT * FROM imports WHERE owner = ? ORDER BY created_at DESC"
        params: list = [owner]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        rows = self.conn.execute(sql, params).fetchall()
        return [self._row_to_import(r) for r in rows]

    _IMPORT_UPDATE_COLS = frozenset({"record_count", "error_message", "completed_at"})

    def update_import_status(
        self, import_id: str, status: str, **kwargs
    ):
        # Reject unknown column names to prevent silent bugs
        unknown = set(kwargs.keys()) - self._IMPORT_UPDATE_COLS
        if unknown:
            raise ValueError(f"Unknown columns for update_import_status: {unknown}")

        sets = ["status = ?"]
        vals: list = [status]
        for col in ("record_count", "error_message", "completed_at"):
            if col in kwargs:
                sets.append(f"{col} = ?")
                vals.append(kwargs[col])
        vals.append(import_id)
        self.conn.execute(
            f"UPDATE imports SET {', '.join(sets)} WHERE id = ?", vals
        )
        self.conn.commit()

    # ── Transactions ────────────────────────────────────────

    def insert_transaction(self, txn: Transaction) -> Transaction:
        self.conn.execute(
            "INSERT INTO transactions"
            " (id, owner, date, amount, description, merchant, category,"
            "  is_income, account, source, import_id, created_at, updated_at)"
            " VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?)",
            (txn.id, txn.owner, txn.date, txn.amount, txn.description,
             txn.merchant, txn.category, int(txn.is_income), txn.account,
             txn.source, txn.import_id, txn.created_at, txn.updated_at),
        )
        self.conn.commit()
        return txn

    def get_transaction(self, txn_id: str) -> Transaction | None:
        row = self.conn.execute(
            "SELECT * FROM transactions WHERE id = ?", (txn_id,)
        ).fetchone()
        return self._row_to_transaction(row) if row else None

    def get_signature_fields(self, owner: str) -> list[dict]:
        """Date, amount and description of every stored transaction for owner."""
        rows = self.conn.execute(
            "SELECT date, amount, description FROM transactions WHERE owner = ?",
            (owner,),
        ).fetchall()
        return [dict(r) for r in rows]

    def get_transactions_for_owner(
        self,
        owner: str,
        since: str | None = None,
        limit: int | None = None,
    ) -> list[Transaction]:
        """Transactions for owner, newest first. ``since`` is an inclusive date."""
        sql = "SELECT * FROM transactions WHERE owner = ?"
        params: list = [owner]
        if since:
            sql += " AND date >= ?"
            params.append(since)
        sql += " ORDER BY date DESC, created_at DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        rows = self.conn.execute(sql, params).fetchall()
        return [self._row_to_transaction(r) for r in rows]

    def get_transactions_by_import_id(self, import_id: str) -> list[Transaction]:
        rows = self.conn.execute(
            "SELECT * FROM transactions WHERE import_id = ? ORDER BY date",
            (import_id,),
        ).fetchall()
        return [self._row_to_transaction(r) for r in rows]

    def count_transactions(self, owner: str) -> int:
        row = self.conn.execute(
            "SELECT COUNT(*) FROM transactions WHERE owner = ?", (owner,)
        ).fetchone()
        return row[0]

    # ── Row mappers ─────────────────────────────────────────

    @staticmethod
    def _row_to_import(row: sqlite3.Row) -> Import:
        return Import(
            id=row["id"], owner=row["owner"],
            file_name=row["file_name"], file_hash=row["file_hash"],
            record_count=row["record_count"], status=row["status"],
            error_message=row["error_message"],
            created_at=row["created_at"],
            completed_at=row["completed_at"],
        )

    @staticmethod
    def _row_to_transaction(row: sqlite3.Row) -> Transaction:
        return Transaction(
            id=row["id"], owner=row["owner"], date=row["date"],
            amount=row["amount"], description=row["description"],
            merchant=row["merchant"], category=row["category"],
            is_income=bool(row["is_income"]), account=row["account"],
            source=row["source"], import_id=row["import_id"],
            created_at=row["created_at"], updated_at=row["updated_at"],
        )
