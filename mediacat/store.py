"""
SQLite catalog store.

Every write is an idempotent upsert keyed by item id or fingerprint value,
so re-running a scan over an unchanged share converges on the same rows.
"""
import json
import logging
import sqlite3
from pathlib import Path
from typing import List, Optional, Union

from mediacat.exceptions import StorageError
from mediacat.models import (
    CatalogItem, Episode, Fingerprint, MetadataUpdate, DuplicateGroup,
    merge_metadata, utc_now
)

logger = logging.getLogger(__name__)

CURRENT_SCHEMA_VERSION = 1

ITEM_COLUMNS = (
    'id', 'title', 'kind', 'primary_path', 'year', 'poster_ref', 'overview_ref',
    'backdrop_ref', 'genres', 'rating', 'fingerprint', 'external_id',
    'original_title', 'confidence', 'match_method', 'size', 'created_at', 'updated_at',
)


def init_schema(conn: sqlite3.Connection):
    """
    Applies the catalog schema.
    Idempotent: safe to run on every startup.
    """
    with conn:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            );
        """)
        cur = conn.cursor()
        cur.execute("SELECT version FROM schema_version")
        if not cur.fetchone():
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (CURRENT_SCHEMA_VERSION,))

        # One row per movie, unknown file, or series
        conn.execute("""
        CREATE TABLE IF NOT EXISTS items (
            id              TEXT PRIMARY KEY,
            title           TEXT NOT NULL,
            kind            TEXT NOT NULL,
            primary_path    TEXT NOT NULL,
            year            INTEGER,
            poster_ref      TEXT,
            overview_ref    TEXT,
            backdrop_ref    TEXT,
            genres          TEXT NOT NULL DEFAULT '[]',   -- JSON list
            rating          REAL,
            fingerprint     TEXT,
            external_id     TEXT,
            original_title  TEXT,
            confidence      REAL NOT NULL DEFAULT 0,
            match_method    TEXT,
            size            INTEGER NOT NULL DEFAULT 0,
            created_at      TEXT NOT NULL,
            updated_at      TEXT NOT NULL
        );
        """)

        conn.execute("""
        CREATE TABLE IF NOT EXISTS episodes (
            item_id     TEXT NOT NULL,
            season      INTEGER NOT NULL,
            episode     INTEGER NOT NULL,
            path        TEXT NOT NULL,
            name        TEXT,
            PRIMARY KEY (item_id, season, episode),
            FOREIGN KEY(item_id) REFERENCES items(id) ON DELETE CASCADE
        );
        """)

        conn.execute("""
        CREATE TABLE IF NOT EXISTS fingerprints (
            value       TEXT PRIMARY KEY,
            media_id    TEXT,
            title       TEXT,
            strategy    TEXT NOT NULL DEFAULT 'content',
            updated_at  TEXT NOT NULL
        );
        """)

        conn.execute("CREATE INDEX IF NOT EXISTS idx_items_kind ON items(kind);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_items_fingerprint ON items(fingerprint);")


class CatalogStore:
    """Persistent catalog of items, episodes and fingerprints"""

    def __init__(self, db_path: Union[Path, str] = ':memory:'):
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None

    def connect(self) -> sqlite3.Connection:
        if self._conn:
            return self._conn

        if str(self.db_path) != ':memory:':
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"Connecting to database: {self.db_path}")
        try:
            self._conn = sqlite3.connect(str(self.db_path))
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open catalog database {self.db_path}: {e}") from e
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys=ON;")
        if str(self.db_path) != ':memory:':
            self._conn.execute("PRAGMA journal_mode=WAL;")
            self._conn.execute("PRAGMA synchronous=NORMAL;")

        init_schema(self._conn)
        return self._conn

    @property
    def conn(self) -> sqlite3.Connection:
        return self.connect()

    def close(self):
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def _row_to_item(self, row: sqlite3.Row) -> CatalogItem:
        episodes = [
            Episode(path=e['path'], season=e['season'], episode=e['episode'], name=e['name'] or '')
            for e in self.conn.execute(
                "SELECT * FROM episodes WHERE item_id = ? ORDER BY season, episode", (row['id'],)
            )
        ]
        data = {key: row[key] for key in ITEM_COLUMNS}
        data['genres'] = json.loads(data['genres'] or '[]')
        return CatalogItem(episodes=episodes, **data)

    def _write_item(self, item: CatalogItem):
        values = [getattr(item, key) for key in ITEM_COLUMNS]
        values[ITEM_COLUMNS.index('genres')] = json.dumps(item.genres, ensure_ascii=False)
        placeholders = ', '.join('?' for _ in ITEM_COLUMNS)
        updates = ', '.join(f"{key} = excluded.{key}" for key in ITEM_COLUMNS if key != 'id')
        self.conn.execute(
            f"INSERT INTO items ({', '.join(ITEM_COLUMNS)}) VALUES ({placeholders}) "
            f"ON CONFLICT(id) DO UPDATE SET {updates}",
            values
        )
        self.conn.executemany(
            "INSERT OR IGNORE INTO episodes (item_id, season, episode, path, name) VALUES (?, ?, ?, ?, ?)",
            [(item.id, e.season, e.episode, e.path, e.name) for e in item.episodes]
        )

    def upsert_item(self, item: CatalogItem) -> CatalogItem:
        """
        Insert a freshly classified item or refresh an existing one.

        On rescan the path and size are refreshed and new episodes merged in
        (unique by season/episode). Title, year and kind are only replaced
        while the item is still unresolved; metadata from an accepted match
        is never overwritten here.
        """
        existing = self.get_item(item.id)
        if existing is None:
            stored = item
        else:
            stored = existing.snapshot()
            stored.primary_path = item.primary_path
            stored.size = item.size
            if not existing.is_enriched():
                stored.title = item.title
                stored.year = item.year or existing.year
                stored.kind = item.kind
            stored.episodes = item.episodes
            if item.fingerprint and not existing.fingerprint:
                stored.fingerprint = item.fingerprint
            stored.updated_at = utc_now()

        with self.conn:
            self._write_item(stored)
        return self.get_item(item.id)

    def get_item(self, item_id: str) -> Optional[CatalogItem]:
        row = self.conn.execute("SELECT * FROM items WHERE id = ?", (item_id,)).fetchone()
        return self._row_to_item(row) if row else None

    def items_by_kind(self, kind: str) -> List[CatalogItem]:
        rows = self.conn.execute("SELECT * FROM items WHERE kind = ? ORDER BY title, id", (kind,))
        return [self._row_to_item(row) for row in rows.fetchall()]

    def all_items(self) -> List[CatalogItem]:
        rows = self.conn.execute("SELECT * FROM items ORDER BY kind, title, id")
        return [self._row_to_item(row) for row in rows.fetchall()]

    def apply_metadata(self, item_id: str, update: MetadataUpdate, confidence: float,
                       method: str) -> Optional[CatalogItem]:
        """Merge accepted metadata into an item and record how it was matched"""
        existing = self.get_item(item_id)
        if existing is None:
            logger.warning(f"Cannot apply metadata, unknown item: {item_id}")
            return None
        merged = merge_metadata(existing, update)
        merged.confidence = confidence
        merged.match_method = method
        with self.conn:
            self._write_item(merged)
        return self.get_item(item_id)

    # ------------------------------------------------------------------
    # Fingerprints
    # ------------------------------------------------------------------

    def upsert_fingerprint(self, fingerprint: Fingerprint, item_id: Optional[str] = None):
        """Record a fingerprint and, when item_id is given, attach it to that item"""
        with self.conn:
            self.conn.execute("""
                INSERT INTO fingerprints (value, media_id, title, strategy, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(value) DO UPDATE SET
                    media_id = COALESCE(excluded.media_id, fingerprints.media_id),
                    title = COALESCE(excluded.title, fingerprints.title),
                    strategy = excluded.strategy,
                    updated_at = excluded.updated_at
            """, (fingerprint.value, fingerprint.media_id, fingerprint.title,
                  fingerprint.strategy, utc_now()))
            if item_id:
                self.conn.execute("UPDATE items SET fingerprint = ? WHERE id = ?",
                                  (fingerprint.value, item_id))

    def get_fingerprint(self, value: str) -> Optional[Fingerprint]:
        row = self.conn.execute("SELECT * FROM fingerprints WHERE value = ?", (value,)).fetchone()
        if not row:
            return None
        return Fingerprint(value=row['value'], media_id=row['media_id'],
                           title=row['title'], strategy=row['strategy'])

    def get_by_fingerprint(self, value: str) -> List[CatalogItem]:
        rows = self.conn.execute("SELECT * FROM items WHERE fingerprint = ? ORDER BY id", (value,))
        return [self._row_to_item(row) for row in rows.fetchall()]

    def duplicate_fingerprints(self) -> List[DuplicateGroup]:
        """Fingerprints attached to more than one item"""
        rows = self.conn.execute("""
            SELECT fingerprint FROM items
            WHERE fingerprint IS NOT NULL
            GROUP BY fingerprint
            HAVING COUNT(*) > 1
            ORDER BY fingerprint
        """).fetchall()
        return [DuplicateGroup(fingerprint=row['fingerprint'],
                               items=self.get_by_fingerprint(row['fingerprint']))
                for row in rows]

    def get_stats(self) -> dict:
        by_kind = {row['kind']: row['n'] for row in self.conn.execute(
            "SELECT kind, COUNT(*) AS n FROM items GROUP BY kind")}
        by_method = {row['match_method'] or 'unresolved': row['n'] for row in self.conn.execute(
            "SELECT match_method, COUNT(*) AS n FROM items GROUP BY match_method")}
        episodes = self.conn.execute("SELECT COUNT(*) FROM episodes").fetchone()[0]
        return {'by_kind': by_kind, 'by_method': by_method, 'episodes': episodes}
