from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from archiveharvest.pipeline.normalize import humanize_collection
from archiveharvest.pipeline.types import ItemRecord

logger = logging.getLogger(__name__)

_ITEM_COLUMNS = (
    "id",
    "title",
    "description",
    "date",
    "creators",
    "subjects",
    "collection",
    "series",
    "source_url",
    "local_path",
    "media_type",
    "duration_sec",
    "thumbnail",
    "captions_vtt_path",
    "captions_srt_path",
    "transcript_text",
    "ocr_text",
    "rights",
    "citation",
    "checksum_sha256",
    "added_at",
    "advisory",
    "media_url",
)

# Columns mirrored into the full-text index, in index order.
_FTS_COLUMNS = ("title", "description", "transcript_text", "ocr_text", "subjects", "creators")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS items (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT,
    date TEXT,
    creators TEXT,
    subjects TEXT,
    collection TEXT,
    series TEXT,
    source_url TEXT,
    local_path TEXT,
    media_type TEXT NOT NULL,
    duration_sec REAL,
    thumbnail TEXT,
    captions_vtt_path TEXT,
    captions_srt_path TEXT,
    transcript_text TEXT,
    ocr_text TEXT,
    rights TEXT,
    citation TEXT,
    checksum_sha256 TEXT NOT NULL,
    added_at TEXT NOT NULL,
    advisory INTEGER NOT NULL DEFAULT 0,
    media_url TEXT
);

CREATE INDEX IF NOT EXISTS idx_items_collection ON items(collection);
CREATE INDEX IF NOT EXISTS idx_items_media_type ON items(media_type);

CREATE TABLE IF NOT EXISTS collections (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT
);

CREATE VIRTUAL TABLE IF NOT EXISTS items_fts USING fts5(
    title, description, transcript_text, ocr_text, subjects, creators,
    content='items', content_rowid='rowid'
);
"""


def _connect(db_path: Path) -> sqlite3.Connection:
    """Open the store.

    Writes use explicit ``BEGIN IMMEDIATE`` ... ``COMMIT`` so one ingestion
    pass is a single all-or-nothing transaction, schema changes included.
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), timeout=30.0, isolation_level="IMMEDIATE")
    conn.row_factory = sqlite3.Row
    return conn


@contextlib.contextmanager
def _transaction(db_path: Path) -> Iterator[sqlite3.Connection]:
    conn = _connect(db_path)
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
            conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
    finally:
        conn.close()


def init_db(db_path: Path) -> None:
    with _transaction(db_path) as conn:
        _create_schema(conn)


def _create_schema(conn: sqlite3.Connection) -> None:
    for statement in _SCHEMA.split(";"):
        if statement.strip():
            conn.execute(statement)


def _json_list(values: tuple[str, ...]) -> str | None:
    return json.dumps(list(values), ensure_ascii=False) if values else None


def _row_params(item: ItemRecord) -> dict[str, Any]:
    return {
        "id": item.id,
        "title": item.title,
        "description": item.description,
        "date": item.date,
        "creators": _json_list(item.creators),
        "subjects": _json_list(item.subjects),
        "collection": item.collection,
        "series": item.series,
        "source_url": item.source_url,
        "local_path": item.local_path,
        "media_type": item.media_type,
        "duration_sec": item.duration_sec,
        "thumbnail": item.thumbnail,
        "captions_vtt_path": item.captions_vtt_path,
        "captions_srt_path": item.captions_srt_path,
        "transcript_text": item.transcript_text,
        "ocr_text": item.ocr_text,
        "rights": item.rights,
        "citation": item.citation,
        "checksum_sha256": item.checksum_sha256,
        "added_at": item.added_at,
        "advisory": 1 if item.advisory else 0,
        "media_url": item.media_url,
    }


_INSERT_ITEM = "INSERT INTO items ({cols}) VALUES ({vals})".format(
    cols=", ".join(_ITEM_COLUMNS),
    vals=", ".join(f":{c}" for c in _ITEM_COLUMNS),
)

_UPSERT_ITEM = _INSERT_ITEM + " ON CONFLICT(id) DO UPDATE SET " + ", ".join(
    f"{c} = excluded.{c}" for c in _ITEM_COLUMNS if c != "id"
)

_INSERT_FTS = "INSERT INTO items_fts(rowid, {cols}) SELECT rowid, {cols} FROM items WHERE id = ?".format(
    cols=", ".join(_FTS_COLUMNS)
)

_DELETE_FTS = "INSERT INTO items_fts(items_fts, rowid, {cols}) SELECT 'delete', rowid, {cols} FROM items WHERE id = ?".format(
    cols=", ".join(_FTS_COLUMNS)
)

_UPSERT_COLLECTION = """
INSERT INTO collections(id, title, description) VALUES (?, ?, ?)
ON CONFLICT(id) DO UPDATE SET title = excluded.title, description = excluded.description
"""


def _upsert_collections(conn: sqlite3.Connection, items: Iterable[ItemRecord]) -> int:
    seen: dict[str, str] = {}
    for item in items:
        if item.collection and item.collection not in seen:
            seen[item.collection] = humanize_collection(item.collection)
    for collection_id, title in seen.items():
        conn.execute(_UPSERT_COLLECTION, (collection_id, title, None))
    return len(seen)


def rebuild_store(db_path: Path, items: list[ItemRecord]) -> int:
    """Replace the whole store with ``items`` in one transaction.

    Tables are dropped and recreated inside the transaction, so a failure
    leaves the previous store untouched.
    """
    with _transaction(db_path) as conn:
        conn.execute("DROP TABLE IF EXISTS items_fts")
        conn.execute("DROP TABLE IF EXISTS collections")
        conn.execute("DROP TABLE IF EXISTS items")
        _create_schema(conn)
        for item in items:
            conn.execute(_INSERT_ITEM, _row_params(item))
            conn.execute(_INSERT_FTS, (item.id,))
        collections = _upsert_collections(conn, items)
    logger.info("Rebuilt store %s with %d items and %d collections", db_path, len(items), collections)
    return len(items)


def upsert_items(db_path: Path, items: list[ItemRecord]) -> int:
    """Insert or update ``items`` in place, keeping the full-text index in step.

    For each row the existing index entry is removed while the old column
    values are still in place, then the row is upserted and re-indexed.
    """
    with _transaction(db_path) as conn:
        _create_schema(conn)
        for item in items:
            conn.execute(_DELETE_FTS, (item.id,))
            conn.execute(_UPSERT_ITEM, _row_params(item))
            conn.execute(_INSERT_FTS, (item.id,))
        collections = _upsert_collections(conn, items)
    logger.info("Upserted %d items and %d collections into %s", len(items), collections, db_path)
    return len(items)


def _item_from_row(row: sqlite3.Row) -> ItemRecord:
    return ItemRecord(
        id=row["id"],
        title=row["title"],
        media_type=row["media_type"],
        checksum_sha256=row["checksum_sha256"],
        added_at=row["added_at"],
        description=row["description"],
        date=row["date"],
        creators=tuple(json.loads(row["creators"])) if row["creators"] else (),
        subjects=tuple(json.loads(row["subjects"])) if row["subjects"] else (),
        collection=row["collection"],
        series=row["series"],
        source_url=row["source_url"],
        local_path=row["local_path"],
        duration_sec=row["duration_sec"],
        thumbnail=row["thumbnail"],
        transcript_text=row["transcript_text"],
        ocr_text=row["ocr_text"],
        captions_vtt_path=row["captions_vtt_path"],
        captions_srt_path=row["captions_srt_path"],
        rights=row["rights"],
        citation=row["citation"],
        advisory=bool(row["advisory"]),
        media_url=row["media_url"],
    )


@dataclass(frozen=True)
class CollectionRow:
    id: str
    title: str
    description: str | None


@dataclass(frozen=True)
class SearchHit:
    item: ItemRecord
    rank: float
    snippet: str | None


def get_item(db_path: Path, item_id: str) -> ItemRecord | None:
    conn = _connect(db_path)
    try:
        row = conn.execute("SELECT * FROM items WHERE id = ?", (item_id,)).fetchone()
    finally:
        conn.close()
    return _item_from_row(row) if row else None


def list_items(db_path: Path) -> list[ItemRecord]:
    conn = _connect(db_path)
    try:
        rows = conn.execute("SELECT * FROM items ORDER BY rowid").fetchall()
    finally:
        conn.close()
    return [_item_from_row(r) for r in rows]


def count_items(db_path: Path) -> int:
    conn = _connect(db_path)
    try:
        return int(conn.execute("SELECT COUNT(*) FROM items").fetchone()[0])
    finally:
        conn.close()


def count_fts_rows(db_path: Path) -> int:
    """Number of documents held by the full-text index itself.

    ``SELECT COUNT(*) FROM items_fts`` would read through to ``items`` (the
    index uses external content), so the index's docsize table is counted.
    """
    conn = _connect(db_path)
    try:
        return int(conn.execute("SELECT COUNT(*) FROM items_fts_docsize").fetchone()[0])
    finally:
        conn.close()


def check_fts_integrity(db_path: Path) -> None:
    """Raise ``sqlite3.DatabaseError`` if the index disagrees with ``items``."""
    with _transaction(db_path) as conn:
        conn.execute("INSERT INTO items_fts(items_fts) VALUES('integrity-check')")


def list_collections(db_path: Path) -> list[CollectionRow]:
    conn = _connect(db_path)
    try:
        rows = conn.execute("SELECT id, title, description FROM collections ORDER BY title").fetchall()
    finally:
        conn.close()
    return [CollectionRow(id=r["id"], title=r["title"], description=r["description"]) for r in rows]


def _fts_query(query: str) -> str:
    # Quote each term so user input can never be parsed as FTS5 syntax.
    terms = [t.replace('"', '""') for t in query.split()]
    return " ".join(f'"{t}"*' for t in terms if t)


def search_items(
    db_path: Path,
    query: str,
    *,
    media_type: str | None = None,
    collection: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[SearchHit], int]:
    """Full-text search ranked by ``bm25``. Returns one page of hits and the total."""
    match = _fts_query(query)
    if not match:
        return [], 0
    where = ["items_fts MATCH ?"]
    params: list[Any] = [match]
    if media_type:
        where.append("items.media_type = ?")
        params.append(media_type)
    if collection:
        where.append("items.collection = ?")
        params.append(collection)
    where_sql = " AND ".join(where)

    conn = _connect(db_path)
    try:
        rows = conn.execute(
            f"""
            SELECT items.*, bm25(items_fts) AS rank,
                   snippet(items_fts, -1, '<mark>', '</mark>', '...', 16) AS snippet
            FROM items_fts JOIN items ON items.rowid = items_fts.rowid
            WHERE {where_sql}
            ORDER BY rank
            LIMIT ? OFFSET ?
            """,
            (*params, limit, offset),
        ).fetchall()
        total = conn.execute(
            f"""
            SELECT COUNT(*) FROM items_fts JOIN items ON items.rowid = items_fts.rowid
            WHERE {where_sql}
            """,
            params,
        ).fetchone()[0]
    finally:
        conn.close()
    hits = [SearchHit(item=_item_from_row(r), rank=float(r["rank"]), snippet=r["snippet"]) for r in rows]
    return hits, int(total)
