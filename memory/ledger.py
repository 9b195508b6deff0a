"""
Paperscribe Processing Ledger
Per-document processing status, token metrics, and audit history.
All state stored in PostgreSQL — no filesystem state.

Uses psycopg2 (sync) with SimpleConnectionPool.
All writes use parameterized queries.
"""
import json
import logging
from typing import List, Optional

import psycopg2
import psycopg2.pool

from config.settings import PostgresConfig
from models.documents import STATUS_COMPLETE, STATUS_ORDER, STATUS_UNPROCESSED

logger = logging.getLogger("scribe.ledger")


class LedgerUnavailableError(Exception):
    """No PostgreSQL connection could be obtained."""


class ProcessingLedger:
    """Status ledger guaranteeing at-most-once analysis per document."""

    def __init__(self, settings: PostgresConfig):
        self._settings = settings
        self._pool = None
        self._init_pool()
        self._ensure_tables()

    # -------------------------------------------------------
    # Connection pool management
    # -------------------------------------------------------

    def _init_pool(self):
        try:
            self._pool = psycopg2.pool.SimpleConnectionPool(
                minconn=1,
                maxconn=5,
                **self._settings.dsn_params,
            )
            logger.info("PostgreSQL connection pool initialized")
        except Exception as e:
            logger.warning(f"PostgreSQL pool init failed (non-fatal): {e}")
            self._pool = None

    def _get_conn(self):
        """Get a connection from pool. Returns None if pool unavailable."""
        if self._pool is None:
            self._init_pool()
        if self._pool is None:
            return None
        try:
            return self._pool.getconn()
        except Exception as e:
            logger.warning(f"Failed to get PostgreSQL connection: {e}")
            return None

    def _put_conn(self, conn):
        if self._pool and conn:
            try:
                self._pool.putconn(conn)
            except Exception as e:
                logger.debug(f"Could not return connection to pool: {e}")

    def close(self):
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None

    def _ensure_tables(self):
        conn = self._get_conn()
        if not conn:
            logger.warning("No DB connection — cannot ensure ledger tables")
            return
        try:
            cur = conn.cursor()
            cur.execute("""
                CREATE TABLE IF NOT EXISTS processed_documents (
                    document_id  INTEGER PRIMARY KEY,
                    status       TEXT NOT NULL DEFAULT 'unprocessed',
                    created_at   TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                    updated_at   TIMESTAMPTZ NOT NULL DEFAULT NOW()
                )
            """)
            cur.execute("""
                CREATE TABLE IF NOT EXISTS openai_metrics (
                    id                 SERIAL PRIMARY KEY,
                    document_id        INTEGER NOT NULL,
                    prompt_tokens      INTEGER,
                    completion_tokens  INTEGER,
                    total_tokens       INTEGER,
                    created_at         TIMESTAMPTZ NOT NULL DEFAULT NOW()
                )
            """)
            cur.execute("""
                CREATE TABLE IF NOT EXISTS history_documents (
                    id             SERIAL PRIMARY KEY,
                    document_id    INTEGER NOT NULL,
                    tags           JSONB,
                    title          TEXT,
                    correspondent  INTEGER,
                    created_at     TIMESTAMPTZ NOT NULL DEFAULT NOW()
                )
            """)
            cur.execute("""
                CREATE TABLE IF NOT EXISTS original_documents (
                    document_id    INTEGER PRIMARY KEY,
                    tags           JSONB,
                    correspondent  INTEGER,
                    title          TEXT,
                    created_at     TIMESTAMPTZ NOT NULL DEFAULT NOW()
                )
            """)
            conn.commit()
            cur.close()
            logger.info("Ledger tables verified")
        except Exception as e:
            conn.rollback()
            logger.warning(f"Could not ensure ledger tables: {e}")
        finally:
            self._put_conn(conn)

    # -------------------------------------------------------
    # Status
    # -------------------------------------------------------

    def get_status(self, document_id: int) -> str:
        conn = self._get_conn()
        if not conn:
            raise LedgerUnavailableError(f"No DB connection — status of {document_id} unknown")
        try:
            cur = conn.cursor()
            cur.execute(
                "SELECT status FROM processed_documents WHERE document_id = %s",
                (document_id,),
            )
            row = cur.fetchone()
            cur.close()
            return row[0] if row else STATUS_UNPROCESSED
        finally:
            self._put_conn(conn)

    def is_processed(self, document_id: int) -> bool:
        """
        True once a document reached 'complete'.
        If the ledger cannot be read, answer True — skipping a document
        is cheaper than analyzing it twice.
        """
        try:
            return self.get_status(document_id) == STATUS_COMPLETE
        except Exception as e:
            logger.error(f"Could not check processed status for {document_id}: {e}")
            return True

    def set_status(self, document_id: int, status: str):
        """Advance a document's status. Never moves a record backwards."""
        if status not in STATUS_ORDER:
            raise ValueError(f"Unknown status: {status}")
        rank = STATUS_ORDER.index(status)
        conn = self._get_conn()
        if not conn:
            raise LedgerUnavailableError(f"No DB connection — could not set {document_id} to {status}")
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO processed_documents (document_id, status)
                VALUES (%s, %s)
                ON CONFLICT (document_id) DO UPDATE
                    SET status = EXCLUDED.status, updated_at = NOW()
                    WHERE array_position(%s::text[], processed_documents.status) < %s
                """,
                (document_id, status, list(STATUS_ORDER), rank + 1),
            )
            conn.commit()
            cur.close()
            logger.debug(f"Ledger: document {document_id} → {status}")
        except Exception as e:
            conn.rollback()
            logger.error(f"Failed to set status for {document_id}: {e}")
            raise
        finally:
            self._put_conn(conn)

    # -------------------------------------------------------
    # Metrics / history
    # -------------------------------------------------------

    def _execute(self, sql: str, params: tuple, what: str):
        conn = self._get_conn()
        if not conn:
            logger.warning(f"No DB connection — skipping {what}")
            return
        try:
            cur = conn.cursor()
            cur.execute(sql, params)
            conn.commit()
            cur.close()
        except Exception as e:
            conn.rollback()
            logger.error(f"Failed to {what}: {e}")
            raise
        finally:
            self._put_conn(conn)

    def record_metrics(self, document_id: int, prompt_tokens: int,
                       completion_tokens: int, total_tokens: int):
        """Store token usage. All-zero usage is stored as NULL (not measured)."""
        if not (prompt_tokens or completion_tokens or total_tokens):
            prompt_tokens = completion_tokens = total_tokens = None
        self._execute(
            """
            INSERT INTO openai_metrics (document_id, prompt_tokens, completion_tokens, total_tokens)
            VALUES (%s, %s, %s, %s)
            """,
            (document_id, prompt_tokens, completion_tokens, total_tokens),
            "record metrics",
        )

    def record_history(self, document_id: int, tags: List[int], title: str,
                       correspondent: Optional[int]):
        self._execute(
            """
            INSERT INTO history_documents (document_id, tags, title, correspondent)
            VALUES (%s, %s::jsonb, %s, %s)
            """,
            (document_id, json.dumps(tags or []), title, correspondent),
            "record history",
        )

    def record_original_snapshot(self, document_id: int, tags: List[int],
                                 correspondent: Optional[int], title: str):
        """First snapshot wins — re-runs never overwrite the original state."""
        self._execute(
            """
            INSERT INTO original_documents (document_id, tags, correspondent, title)
            VALUES (%s, %s::jsonb, %s, %s)
            ON CONFLICT (document_id) DO NOTHING
            """,
            (document_id, json.dumps(tags or []), correspondent, title),
            "record original snapshot",
        )

    def token_totals(self) -> dict:
        """Sum measured usage only; count unmeasured calls separately."""
        conn = self._get_conn()
        if not conn:
            return {"measured_calls": 0, "unmeasured_calls": 0,
                    "prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}
        try:
            cur = conn.cursor()
            cur.execute("""
                SELECT
                    COUNT(*) FILTER (WHERE total_tokens IS NOT NULL),
                    COUNT(*) FILTER (WHERE total_tokens IS NULL),
                    COALESCE(SUM(prompt_tokens), 0),
                    COALESCE(SUM(completion_tokens), 0),
                    COALESCE(SUM(total_tokens), 0)
                FROM openai_metrics
            """)
            row = cur.fetchone()
            cur.close()
            return {
                "measured_calls": row[0],
                "unmeasured_calls": row[1],
                "prompt_tokens": row[2],
                "completion_tokens": row[3],
                "total_tokens": row[4],
            }
        finally:
            self._put_conn(conn)

    def recent_history(self, limit: int = 20) -> list:
        conn = self._get_conn()
        if not conn:
            return []
        try:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT document_id, tags, title, correspondent, created_at
                FROM history_documents ORDER BY created_at DESC LIMIT %s
                """,
                (limit,),
            )
            rows = cur.fetchall()
            cur.close()
            return [
                {
                    "document_id": r[0],
                    "tags": r[1] or [],
                    "title": r[2],
                    "correspondent": r[3],
                    "created_at": r[4].isoformat() if r[4] else None,
                }
                for r in rows
            ]
        finally:
            self._put_conn(conn)
