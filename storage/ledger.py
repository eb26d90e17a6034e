"""
Ledger implementations: the durable store of logged time entries.

Rows have 7 ordered fields: date, project, task, hours, description, commit notes, PR notes.
"""

import csv
import os
import sqlite3
import threading
import logging
from datetime import date, datetime
from typing import List, Optional
from normalize.models import LoggedEntry, TimeEntry, LEDGER_COLUMNS
from ingest.errors import TimeTrackerError

log = logging.getLogger(__name__)

# noinspection SqlResolve
SQL_CREATE = """
CREATE TABLE IF NOT EXISTS time_entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    date TEXT NOT NULL,
    project TEXT NOT NULL,
    task TEXT,
    hours REAL,
    description TEXT,
    commit_notes TEXT,
    pr_notes TEXT,
    created_at REAL
);
CREATE INDEX IF NOT EXISTS idx_time_entries_date ON time_entries(date);
"""


class LedgerError(TimeTrackerError):
    """Reading from or appending to the ledger failed."""


def _parse_day(value) -> Optional[date]:
    try:
        return datetime.strptime(str(value).strip(), '%Y-%m-%d').date()
    except ValueError:
        return None


class Ledger:
    """Interface: read entries in an inclusive date range, append one entry."""

    def read_range(self, start: date, end: date) -> List[LoggedEntry]:
        raise NotImplementedError

    def append(self, entry: TimeEntry):
        raise NotImplementedError

    def read_day(self, day: date) -> List[LoggedEntry]:
        return self.read_range(day, day)


class SqliteLedger(Ledger):
    def __init__(self, path: Optional[str] = None):
        self.path = path or ':memory:'
        if self.path != ':memory:':
            out_dir = os.path.dirname(self.path)
            if out_dir:
                os.makedirs(out_dir, exist_ok=True)
        self.conn = sqlite3.connect(self.path, check_same_thread=False)
        self._lock = threading.RLock()
        with self._lock:
            self.conn.executescript(SQL_CREATE)
            self.conn.commit()

    def close(self):
        with self._lock:
            if self.conn is not None:
                self.conn.close()
                self.conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # noinspection SqlResolve
    def read_range(self, start: date, end: date) -> List[LoggedEntry]:
        try:
            with self._lock:
                rows = self.conn.execute(
                    'SELECT date, project, task, hours, description, commit_notes, pr_notes FROM time_entries '
                    'WHERE date >= ? AND date <= ? ORDER BY date, id',
                    (start.isoformat(), end.isoformat()),
                ).fetchall()
        except sqlite3.Error as ex:
            raise LedgerError(f"unable to read entries from {self.path}: {ex}") from ex
        return [LoggedEntry(*row) for row in rows]

    # noinspection SqlResolve
    def append(self, entry: TimeEntry):
        if _parse_day(entry.date) is None:
            raise LedgerError(f"invalid entry date: {entry.date!r}")
        try:
            with self._lock:
                self.conn.execute(
                    'INSERT INTO time_entries(date, project, task, hours, description, commit_notes, pr_notes, created_at) '
                    'VALUES (?, ?, ?, ?, ?, ?, ?, ?)',
                    tuple(entry.to_row()) + (datetime.now().timestamp(),),
                )
                self.conn.commit()
        except sqlite3.Error as ex:
            raise LedgerError(f"unable to append entry to {self.path}: {ex}") from ex


class CsvLedger(Ledger):
    """Spreadsheet-shaped ledger: one header row, then one 7-column row per entry."""

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()

    def _row_to_entry(self, row: List[str]) -> Optional[LoggedEntry]:
        if not row or _parse_day(row[0]) is None:
            return None
        try:
            hours = float(row[3]) if len(row) > 3 and str(row[3]).strip() else 0.0
        except ValueError:
            log.debug("skipping ledger row with unreadable hours: %r", row)
            return None
        entry = LoggedEntry.from_row(row)
        entry.hours = hours
        return entry

    def read_range(self, start: date, end: date) -> List[LoggedEntry]:
        if not os.path.exists(self.path):
            return []
        entries: List[LoggedEntry] = []
        try:
            with self._lock, open(self.path, 'r', encoding='utf-8', newline='') as fh:
                for row in csv.reader(fh):
                    entry = self._row_to_entry(row)
                    if entry is None:
                        continue
                    day = _parse_day(entry.date)
                    if start <= day <= end:
                        entries.append(entry)
        except OSError as ex:
            raise LedgerError(f"unable to read {self.path}: {ex}") from ex
        return entries

    def append(self, entry: TimeEntry):
        if _parse_day(entry.date) is None:
            raise LedgerError(f"invalid entry date: {entry.date!r}")
        try:
            with self._lock:
                new_file = not os.path.exists(self.path) or os.path.getsize(self.path) == 0
                out_dir = os.path.dirname(self.path)
                if out_dir:
                    os.makedirs(out_dir, exist_ok=True)
                with open(self.path, 'a', encoding='utf-8', newline='') as fh:
                    writer = csv.writer(fh)
                    if new_file:
                        writer.writerow(LEDGER_COLUMNS)
                    writer.writerow(entry.to_row())
        except OSError as ex:
            raise LedgerError(f"unable to append to {self.path}: {ex}") from ex


def open_ledger(path: Optional[str]) -> Ledger:
    """CSV ledger for *.csv paths, SQLite otherwise."""
    if path and path.lower().endswith('.csv'):
        return CsvLedger(path)
    return SqliteLedger(path)
