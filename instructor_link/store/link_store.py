"""
Link storage for InstructorLink.

Keeps the published instructor links of each term in SQLite. A publish
replaces the whole link set of a term in one transaction, so readers see
either the previous run or the new one, never a mix.
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

import pandas as pd

from ..config import ScoringWeights
from ..errors import PublishFailure
from ..ingestion.records import Provider
from ..match.aggregator import InstructorLink, ScoreBreakdown

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = "data/instructor_links.db"

LinkIdentity = Tuple[str, str, str]


@dataclass(frozen=True)
class PublishResult:
    """Differences between the replaced link set and the new one."""

    term: str
    links_created: int
    links_dropped: int
    links_total: int


class LinkStore:
    """
    SQLite-backed store of published links and run history.

    File databases open one connection per operation. ``:memory:`` databases
    keep a single shared connection, since every new connection would see an
    empty database.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH, weights: Optional[ScoringWeights] = None):
        """
        Initialize link store.

        Args:
            db_path: Path to the SQLite database, or ``:memory:``
            weights: Weights attached to breakdowns read back from storage
        """
        self.db_path = db_path
        self.weights = weights or ScoringWeights()
        self._memory_conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

        if db_path == ":memory:":
            self._memory_conn = sqlite3.connect(":memory:", check_same_thread=False)
        else:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self._init_database()

        logger.info(f"Initialized LinkStore at {db_path}")

    @contextmanager
    def _connection(self):
        if self._memory_conn is not None:
            with self._lock:
                yield self._memory_conn
            return
        conn = sqlite3.connect(self.db_path)
        try:
            yield conn
        finally:
            conn.close()

    def _init_database(self):
        """Initialize link database with required tables."""
        with self._connection() as conn:
            cursor = conn.cursor()

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS instructor_links (
                    term TEXT NOT NULL,
                    instructor_id TEXT NOT NULL,
                    provider TEXT NOT NULL,
                    candidate_key TEXT NOT NULL,
                    legacy_id TEXT,
                    avg_rating REAL,
                    rating_count INTEGER NOT NULL DEFAULT 0,
                    aggregate REAL NOT NULL,
                    confident INTEGER NOT NULL DEFAULT 0,
                    breakdown TEXT NOT NULL,
                    published_at TEXT NOT NULL,
                    PRIMARY KEY (term, instructor_id, provider)
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS matching_runs (
                    run_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    term TEXT NOT NULL,
                    published_at TEXT NOT NULL,
                    links_total INTEGER NOT NULL,
                    links_created INTEGER NOT NULL,
                    links_dropped INTEGER NOT NULL,
                    run_duration_ms INTEGER,
                    instructors_processed INTEGER,
                    instructors_failed INTEGER
                )
            ''')

            cursor.execute('''
                CREATE INDEX IF NOT EXISTS idx_links_instructor
                ON instructor_links (instructor_id, term)
            ''')

            conn.commit()

    @staticmethod
    def _identities(cursor: sqlite3.Cursor, term: str) -> Set[LinkIdentity]:
        cursor.execute('''
            SELECT instructor_id, provider, candidate_key
            FROM instructor_links WHERE term = ?
        ''', [term])
        return {tuple(row) for row in cursor.fetchall()}

    def _write_links(self, cursor: sqlite3.Cursor, term: str, links: List[InstructorLink], published_at: str):
        cursor.execute("DELETE FROM instructor_links WHERE term = ?", [term])
        cursor.executemany('''
            INSERT INTO instructor_links
            (term, instructor_id, provider, candidate_key, legacy_id, avg_rating,
             rating_count, aggregate, confident, breakdown, published_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ''', [
            (
                term, link.instructor_id, link.provider.value, link.candidate_key,
                link.legacy_id, link.avg_rating, link.rating_count,
                link.breakdown.aggregate, int(link.confident),
                json.dumps(link.breakdown.to_dict(), sort_keys=True), published_at,
            )
            for link in links
        ])

    def publish(self, term: str, links: Iterable[InstructorLink],
                run_stats: Optional[Dict] = None) -> PublishResult:
        """
        Atomically replace the published links of a term.

        Args:
            term: Term whose link set is replaced
            links: The complete new link set
            run_stats: Optional run metrics recorded with the run row

        Returns:
            PublishResult with the identity diff against the previous set

        Raises:
            PublishFailure: if the batch could not be committed; the previous
                link set is left in place
        """
        links = list(links)
        for link in links:
            if link.term != term:
                raise ValueError(f"Link for instructor {link.instructor_id} belongs to term "
                                 f"{link.term}, not {term}")

        run_stats = run_stats or {}
        published_at = datetime.now(timezone.utc).isoformat()
        new_identities = {link.identity for link in links}

        try:
            with self._connection() as conn:
                cursor = conn.cursor()
                try:
                    old_identities = self._identities(cursor, term)
                    self._write_links(cursor, term, links, published_at)

                    created = len(new_identities - old_identities)
                    dropped = len(old_identities - new_identities)

                    cursor.execute('''
                        INSERT INTO matching_runs
                        (term, published_at, links_total, links_created, links_dropped,
                         run_duration_ms, instructors_processed, instructors_failed)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ''', [
                        term, published_at, len(links), created, dropped,
                        run_stats.get("run_duration_ms"),
                        run_stats.get("instructors_processed"),
                        run_stats.get("instructors_failed"),
                    ])

                    conn.commit()

                except sqlite3.Error:
                    conn.rollback()
                    raise

        except sqlite3.Error as e:
            logger.error(f"Failed to publish {len(links)} links for term {term}: {e}")
            raise PublishFailure(f"Publish for term {term} failed: {e}") from e

        logger.info(f"Published {len(links)} links for term {term} "
                    f"({created} created, {dropped} dropped)")
        return PublishResult(term=term, links_created=created, links_dropped=dropped,
                             links_total=len(links))

    def _row_to_link(self, row: sqlite3.Row) -> InstructorLink:
        return InstructorLink(
            term=row["term"],
            instructor_id=row["instructor_id"],
            provider=Provider(row["provider"]),
            candidate_key=row["candidate_key"],
            legacy_id=row["legacy_id"],
            avg_rating=row["avg_rating"],
            rating_count=row["rating_count"],
            breakdown=ScoreBreakdown.from_dict(json.loads(row["breakdown"]), self.weights),
        )

    def _query_links(self, where: str, params: List) -> List[InstructorLink]:
        with self._connection() as conn:
            previous_factory = conn.row_factory
            conn.row_factory = sqlite3.Row
            try:
                rows = conn.execute(
                    f"SELECT * FROM instructor_links WHERE {where} "
                    f"ORDER BY instructor_id, provider",
                    params,
                ).fetchall()
            finally:
                conn.row_factory = previous_factory
        return [self._row_to_link(row) for row in rows]

    def get_links(self, term: str) -> List[InstructorLink]:
        """All published links of a term."""
        return self._query_links("term = ?", [term])

    def get_links_for_instructor(self, instructor_id: str, term: Optional[str] = None) -> List[InstructorLink]:
        """
        Published links of one instructor.

        Args:
            instructor_id: Registrar instructor id
            term: Term to read; defaults to the latest published term

        Returns:
            Up to one link per provider
        """
        term = term or self.latest_term()
        if term is None:
            return []
        return self._query_links("instructor_id = ? AND term = ?", [instructor_id, term])

    def get_link(self, instructor_id: str, provider: Provider,
                 term: Optional[str] = None) -> Optional[InstructorLink]:
        for link in self.get_links_for_instructor(instructor_id, term):
            if link.provider == provider:
                return link
        return None

    def latest_term(self) -> Optional[str]:
        """Term of the most recent successful publish."""
        with self._connection() as conn:
            row = conn.execute('''
                SELECT term FROM matching_runs ORDER BY run_id DESC LIMIT 1
            ''').fetchone()
        return row[0] if row else None

    def get_run_history(self, term: Optional[str] = None, limit: int = 100) -> pd.DataFrame:
        """
        Get recorded matching runs.

        Args:
            term: Optional term filter
            limit: Maximum number of runs

        Returns:
            DataFrame with one row per published run, newest first
        """
        query = "SELECT * FROM matching_runs WHERE 1=1"
        params: List = []

        if term:
            query += " AND term = ?"
            params.append(term)

        query += " ORDER BY run_id DESC LIMIT ?"
        params.append(limit)

        with self._connection() as conn:
            return pd.read_sql_query(query, conn, params=params)

    def close(self):
        if self._memory_conn is not None:
            self._memory_conn.close()
            self._memory_conn = None
