"""
Repository pattern for data access.

Handles persistence of generation records and daily usage aggregates.
"""

from datetime import date, datetime
from typing import Dict, List, Optional, Tuple

from .db import DEFAULT_DB_PATH, get_connection
from .models import GenerationRecord, GenerationStatus, UsageAggregate

_RECORD_COLUMNS = """
    id, actor_id, rendered_prompt, model, temperature, max_tokens,
    created_at, status, output, tokens_used, processing_time_ms,
    error_message
"""

_USAGE_COLUMNS = """
    actor_id, day, requests_count, tokens_used, successful_requests,
    failed_requests, avg_processing_time_ms
"""


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the generation_record and usage_aggregate tables if missing.

    usage_aggregate carries a UNIQUE (actor_id, day) constraint so that
    the daily rollup can be maintained with a single atomic upsert.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS generation_record (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                actor_id TEXT NOT NULL,
                rendered_prompt TEXT NOT NULL,
                model TEXT NOT NULL,
                temperature REAL,
                max_tokens INTEGER,
                created_at TEXT NOT NULL,
                status TEXT NOT NULL,
                output TEXT,
                tokens_used INTEGER NOT NULL DEFAULT 0,
                processing_time_ms INTEGER,
                error_message TEXT
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_generation_record_actor
            ON generation_record (actor_id, created_at)
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS usage_aggregate (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                actor_id TEXT NOT NULL,
                day TEXT NOT NULL,
                requests_count INTEGER NOT NULL,
                tokens_used INTEGER NOT NULL,
                successful_requests INTEGER NOT NULL,
                failed_requests INTEGER NOT NULL,
                avg_processing_time_ms REAL NOT NULL,
                UNIQUE (actor_id, day)
            )
        """)
        conn.commit()
    finally:
        conn.close()


def insert_generation_record(record: GenerationRecord, db_path: str = DEFAULT_DB_PATH) -> int:
    """Persist a new generation record and assign its surrogate id.

    Args:
        record: Record to persist; its id is set on return
        db_path: Path to SQLite database file

    Returns:
        The new record id
    """
    conn = get_connection(db_path)
    try:
        cursor = conn.execute("""
            INSERT INTO generation_record
            (actor_id, rendered_prompt, model, temperature, max_tokens,
             created_at, status, output, tokens_used, processing_time_ms,
             error_message)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            record.actor_id,
            record.rendered_prompt,
            record.model,
            record.temperature,
            record.max_tokens,
            record.created_at.isoformat(),
            record.status.value,
            record.output,
            record.tokens_used,
            record.processing_time_ms,
            record.error_message
        ))
        conn.commit()
        record.id = cursor.lastrowid
        return record.id
    finally:
        conn.close()


def update_generation_record(record: GenerationRecord, db_path: str = DEFAULT_DB_PATH) -> None:
    """Write the completion state of a previously inserted record.

    Only rows still in PENDING are updated, so a completed record can never
    be overwritten.

    Raises:
        ValueError: If the record was never inserted
        LookupError: If no PENDING row with that id exists
    """
    if record.id is None:
        raise ValueError("record has no id; insert it before updating")

    conn = get_connection(db_path)
    try:
        cursor = conn.execute("""
            UPDATE generation_record
            SET status = ?, output = ?, tokens_used = ?,
                processing_time_ms = ?, error_message = ?
            WHERE id = ? AND status = ?
        """, (
            record.status.value,
            record.output,
            record.tokens_used,
            record.processing_time_ms,
            record.error_message,
            record.id,
            GenerationStatus.PENDING.value
        ))
        conn.commit()
        if cursor.rowcount != 1:
            raise LookupError(f"no pending generation record with id {record.id}")
    finally:
        conn.close()


def get_generation_record(record_id: int, db_path: str = DEFAULT_DB_PATH) -> Optional[GenerationRecord]:
    """Fetch a single record by id, or None if it does not exist."""
    conn = get_connection(db_path)
    try:
        cursor = conn.execute(
            f"SELECT {_RECORD_COLUMNS} FROM generation_record WHERE id = ?",
            (record_id,)
        )
        row = cursor.fetchone()
        return _row_to_record(row) if row else None
    finally:
        conn.close()


def fetch_generation_records(
    actor_id: Optional[str] = None,
    status: Optional[GenerationStatus] = None,
    limit: int = 100,
    db_path: str = DEFAULT_DB_PATH
) -> List[GenerationRecord]:
    """Fetch records, optionally filtered by actor and status.

    Returns records in reverse chronological order (newest first).

    Args:
        actor_id: Optional filter for a specific actor
        status: Optional filter for a specific status
        limit: Maximum number of records to return
        db_path: Path to SQLite database file

    Returns:
        List of generation records ordered by creation time (newest first)
    """
    conn = get_connection(db_path)
    try:
        query = f"SELECT {_RECORD_COLUMNS} FROM generation_record"
        params = []
        conditions = []

        if actor_id:
            conditions.append("actor_id = ?")
            params.append(actor_id)
        if status:
            conditions.append("status = ?")
            params.append(status.value)

        if conditions:
            query += " WHERE " + " AND ".join(conditions)

        query += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(limit)

        cursor = conn.execute(query, params)
        return [_row_to_record(row) for row in cursor.fetchall()]
    finally:
        conn.close()


def _row_to_record(row: Tuple) -> GenerationRecord:
    return GenerationRecord(
        id=row[0],
        actor_id=row[1],
        rendered_prompt=row[2],
        model=row[3],
        temperature=row[4],
        max_tokens=row[5],
        created_at=datetime.fromisoformat(row[6]),
        status=GenerationStatus(row[7]),
        output=row[8],
        tokens_used=row[9],
        processing_time_ms=row[10],
        error_message=row[11]
    )


class UsageRepository:
    """Repository for the per-actor, per-day usage rollup.

    Writes go through upsert_usage, a single INSERT ... ON CONFLICT
    statement. SQLite executes it under the database write lock, so
    concurrent requests for the same (actor, day) never lose an update.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def upsert_usage(
        self,
        actor_id: str,
        day: date,
        tokens: int,
        success: bool,
        elapsed_ms: float
    ) -> None:
        """Fold one request into the (actor, day) aggregate.

        The first request of the day creates the row. Later requests
        increment the counters and move the running mean:
        new_avg = (old_avg * (n - 1) + elapsed_ms) / n, where n is the
        post-increment request total. Right-hand column references in the
        UPDATE clause read the pre-update values.

        Args:
            actor_id: Actor the request belongs to
            day: Calendar day of the request
            tokens: Tokens consumed by the request
            success: Whether the request succeeded
            elapsed_ms: Processing time of the request
        """
        succeeded = 1 if success else 0
        failed = 0 if success else 1
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO usage_aggregate
                (actor_id, day, requests_count, tokens_used,
                 successful_requests, failed_requests, avg_processing_time_ms)
                VALUES (?, ?, 1, ?, ?, ?, ?)
                ON CONFLICT (actor_id, day) DO UPDATE SET
                    requests_count = requests_count + 1,
                    tokens_used = tokens_used + excluded.tokens_used,
                    successful_requests = successful_requests + excluded.successful_requests,
                    failed_requests = failed_requests + excluded.failed_requests,
                    avg_processing_time_ms =
                        (avg_processing_time_ms * (successful_requests + failed_requests)
                         + excluded.avg_processing_time_ms)
                        / (successful_requests + failed_requests + 1)
            """, (
                actor_id,
                day.isoformat(),
                tokens,
                succeeded,
                failed,
                float(elapsed_ms)
            ))
            conn.commit()
        finally:
            conn.close()

    def get_usage(self, actor_id: str, day: date) -> Optional[UsageAggregate]:
        """Fetch the aggregate for one (actor, day), or None."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                f"SELECT {_USAGE_COLUMNS} FROM usage_aggregate WHERE actor_id = ? AND day = ?",
                (actor_id, day.isoformat())
            )
            row = cursor.fetchone()
            return _row_to_usage(row) if row else None
        finally:
            conn.close()

    def get_actor_history(self, actor_id: str) -> List[UsageAggregate]:
        """Get every aggregate row for an actor, newest day first."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                f"SELECT {_USAGE_COLUMNS} FROM usage_aggregate WHERE actor_id = ? ORDER BY day DESC",
                (actor_id,)
            )
            return [_row_to_usage(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def get_usage_since(self, since: date) -> List[UsageAggregate]:
        """Get aggregate rows on or after a day, newest day first.

        Args:
            since: First calendar day to include

        Returns:
            List of aggregates ordered by day (newest first), then actor
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                f"SELECT {_USAGE_COLUMNS} FROM usage_aggregate WHERE day >= ? "
                "ORDER BY day DESC, actor_id ASC",
                (since.isoformat(),)
            )
            return [_row_to_usage(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def get_usage_totals(self, since: date) -> Dict[str, int]:
        """Sum requests and tokens over all actors on or after a day.

        Returns:
            Dictionary with total_requests and total_tokens
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT SUM(requests_count), SUM(tokens_used)
                FROM usage_aggregate
                WHERE day >= ?
            """, (since.isoformat(),))
            row = cursor.fetchone()
            return {
                "total_requests": row[0] or 0,
                "total_tokens": row[1] or 0
            }
        finally:
            conn.close()

    def get_top_actors(self, since: date, limit: Optional[int] = None) -> List[Tuple[str, int]]:
        """Rank actors by request count on or after a day.

        Args:
            since: First calendar day to include
            limit: Optional maximum number of actors to return

        Returns:
            (actor_id, requests) pairs, most requests first, ties broken by
            actor id ascending
        """
        conn = get_connection(self.db_path)
        try:
            query = """
                SELECT actor_id, SUM(requests_count) AS total
                FROM usage_aggregate
                WHERE day >= ?
                GROUP BY actor_id
                ORDER BY total DESC, actor_id ASC
            """
            params = [since.isoformat()]
            if limit is not None:
                query += " LIMIT ?"
                params.append(limit)
            cursor = conn.execute(query, params)
            return [(row[0], row[1]) for row in cursor.fetchall()]
        finally:
            conn.close()


def _row_to_usage(row: Tuple) -> UsageAggregate:
    return UsageAggregate(
        actor_id=row[0],
        day=date.fromisoformat(row[1]),
        requests_count=row[2],
        tokens_used=row[3],
        successful_requests=row[4],
        failed_requests=row[5],
        avg_processing_time_ms=row[6]
    )
