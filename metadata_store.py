"""
Local condition metadata table (medline.db).

One row per condition: display name, aliases, ICD-10 codes and the
MedlinePlus page. Lookups are case-insensitive substring matches on the
name or the aliases and return at most one record.
"""

import json
import logging
import sqlite3
from typing import Optional

from errors import MetadataLookupError
from pydantic_models import MetadataRecord

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS conditions (
    id TEXT PRIMARY KEY,
    name TEXT,
    aliases TEXT,
    icd10 TEXT,
    medline_url TEXT
);
"""


def _escape_like(q: str) -> str:
    return q.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _json_list(value) -> list:
    try:
        parsed = json.loads(value or "[]")
    except ValueError:
        return []
    return [str(x) for x in parsed] if isinstance(parsed, list) else []


class MetadataStore:
    def __init__(self, db_path: str):
        self.db_path = db_path

    def _connect(self):
        return sqlite3.connect(self.db_path)

    def init_db(self):
        # idempotent create
        try:
            conn = self._connect()
            try:
                conn.execute(SCHEMA)
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise MetadataLookupError(f"Could not initialise {self.db_path}: {e}") from e

    def upsert(self, key: str, record: MetadataRecord):
        try:
            conn = self._connect()
            try:
                conn.execute(
                    "INSERT OR REPLACE INTO conditions (id, name, aliases, icd10, medline_url) VALUES (?, ?, ?, ?, ?)",
                    (key.lower(), record.name, json.dumps(record.aliases, ensure_ascii=False),
                     json.dumps(record.icd10, ensure_ascii=False), record.medline),
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise MetadataLookupError(f"Could not store {key!r}: {e}") from e

    def lookup(self, q: Optional[str]) -> Optional[MetadataRecord]:
        """
        First record whose name or aliases contain `q` (case-insensitive).

        None for an empty query or when nothing matches; MetadataLookupError
        when the table cannot be read.
        """
        q = (q or "").strip().lower()
        if not q:
            return None
        pattern = f"%{_escape_like(q)}%"
        try:
            conn = self._connect()
            try:
                cur = conn.cursor()
                cur.execute(
                    "SELECT name, aliases, icd10, medline_url FROM conditions "
                    "WHERE lower(name) LIKE ? ESCAPE '\\' OR lower(aliases) LIKE ? ESCAPE '\\' "
                    "ORDER BY rowid LIMIT 1",
                    (pattern, pattern),
                )
                row = cur.fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.error("Metadata lookup failed for %r: %s", q, e)
            raise MetadataLookupError(f"Metadata lookup failed: {e}") from e

        if row is None:
            return None
        name, aliases, icd10, medline_url = row
        return MetadataRecord(name=name or "", aliases=_json_list(aliases), icd10=_json_list(icd10),
                              medline=medline_url or None)
