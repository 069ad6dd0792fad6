"""Spreadsheet-like workbook persisted in SQLite.

A workbook holds named sheets; a sheet is an ordered list of rows, each
row a list of JSON values. Row numbers are 1-based the way a spreadsheet
counts them, so row 1 is the header row of a freshly created table.
"""

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, List, Optional, Union

logger = logging.getLogger(__name__)


class Sheet:
    """Handle to one sheet of a :class:`Workbook`."""

    def __init__(self, workbook: 'Workbook', name: str):
        self.workbook = workbook
        self.name = name

    def _row_ids(self) -> List[int]:
        rows = self.workbook.conn.execute(
            "SELECT id FROM sheet_rows WHERE sheet = ? ORDER BY id", (self.name,)
        ).fetchall()
        return [row['id'] for row in rows]

    def _row_id(self, row_number: int) -> int:
        ids = self._row_ids()
        if not 1 <= row_number <= len(ids):
            raise IndexError(f"Row {row_number} out of range for sheet {self.name}")
        return ids[row_number - 1]

    def get_values(self) -> List[List[Any]]:
        """All rows, header included, in sheet order."""
        with self.workbook.lock:
            rows = self.workbook.conn.execute(
                "SELECT data FROM sheet_rows WHERE sheet = ? ORDER BY id", (self.name,)
            ).fetchall()
        return [json.loads(row['data']) for row in rows]

    def append_row(self, values: List[Any]) -> None:
        with self.workbook.lock, self.workbook.conn:
            self.workbook.conn.execute(
                "INSERT INTO sheet_rows (sheet, data) VALUES (?, ?)",
                (self.name, json.dumps(list(values), ensure_ascii=False)),
            )

    def update_row(self, row_number: int, values: List[Any]) -> None:
        """Replace the contents of row ``row_number`` in place."""
        with self.workbook.lock, self.workbook.conn:
            self.workbook.conn.execute(
                "UPDATE sheet_rows SET data = ? WHERE id = ?",
                (json.dumps(list(values), ensure_ascii=False), self._row_id(row_number)),
            )

    def delete_row(self, row_number: int) -> None:
        """Remove row ``row_number``; later rows move up by one."""
        with self.workbook.lock, self.workbook.conn:
            self.workbook.conn.execute(
                "DELETE FROM sheet_rows WHERE id = ?", (self._row_id(row_number),)
            )

    def row_count(self) -> int:
        """Number of rows, header included."""
        with self.workbook.lock:
            row = self.workbook.conn.execute(
                "SELECT COUNT(*) FROM sheet_rows WHERE sheet = ?", (self.name,)
            ).fetchone()
        return row[0]


class Workbook:
    """Collection of named sheets stored in one SQLite database."""

    def __init__(self, db_path: Union[str, Path] = ':memory:'):
        """Initialize workbook.

        Args:
            db_path: Path to SQLite database file, or ':memory:'
        """
        self.db_path = db_path
        self.lock = threading.RLock()

        if str(db_path) != ':memory:':
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self.conn: Optional[sqlite3.Connection] = sqlite3.connect(
            str(db_path), check_same_thread=False
        )
        self.conn.row_factory = sqlite3.Row  # Dict-like row access
        if str(db_path) != ':memory:':
            self.conn.execute("PRAGMA journal_mode=WAL")
        self._init_schema()
        logger.info(f"Workbook opened: {db_path}")

    def _init_schema(self) -> None:
        with self.conn:
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS sheets (
                    name TEXT PRIMARY KEY
                )
            """)
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS sheet_rows (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    sheet TEXT NOT NULL REFERENCES sheets(name),
                    data TEXT NOT NULL
                )
            """)
            self.conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_sheet_rows_sheet
                ON sheet_rows(sheet, id)
            """)

    def get_sheet(self, name: str) -> Optional[Sheet]:
        with self.lock:
            row = self.conn.execute("SELECT name FROM sheets WHERE name = ?", (name,)).fetchone()
        return Sheet(self, name) if row else None

    def insert_sheet(self, name: str) -> Sheet:
        """Create an empty sheet.

        Raises:
            ValueError: If a sheet with that name exists
        """
        with self.lock, self.conn:
            try:
                self.conn.execute("INSERT INTO sheets (name) VALUES (?)", (name,))
            except sqlite3.IntegrityError:
                raise ValueError(f"Sheet already exists: {name}")
        logger.info(f"Created sheet: {name}")
        return Sheet(self, name)

    def delete_sheet(self, name: str) -> bool:
        """Delete a sheet and its rows.

        Returns:
            True if the sheet existed
        """
        with self.lock, self.conn:
            self.conn.execute("DELETE FROM sheet_rows WHERE sheet = ?", (name,))
            cursor = self.conn.execute("DELETE FROM sheets WHERE name = ?", (name,))
        if cursor.rowcount:
            logger.info(f"Deleted sheet: {name}")
        return cursor.rowcount > 0

    def copy_sheet(self, source: str, new_name: str) -> Sheet:
        """Copy every row of ``source`` into a new sheet ``new_name``.

        Raises:
            KeyError: If the source sheet does not exist
            ValueError: If ``new_name`` already exists
        """
        with self.lock:
            if self.get_sheet(source) is None:
                raise KeyError(f"Sheet not found: {source}")
            copy = self.insert_sheet(new_name)
            with self.conn:
                self.conn.execute("""
                    INSERT INTO sheet_rows (sheet, data)
                    SELECT ?, data FROM sheet_rows WHERE sheet = ? ORDER BY id
                """, (new_name, source))
        return copy

    def sheet_names(self) -> List[str]:
        with self.lock:
            rows = self.conn.execute("SELECT name FROM sheets ORDER BY rowid").fetchall()
        return [row['name'] for row in rows]

    def close(self) -> None:
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("Workbook closed")
