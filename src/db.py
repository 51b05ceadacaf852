"""
Database Manager - PostgreSQL schema and operations.

Stores object documents, reconciliation bookkeeping and reconciliation
history. Also serves as the ObjectStore used by the reconcilers.
"""

import asyncpg
import hashlib
import json
import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from errors import ObjectExistsError, ObjectNotFoundError
from store import ObjectStore

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS objects (
    id SERIAL PRIMARY KEY,
    kind VARCHAR(63) NOT NULL,
    namespace VARCHAR(253) NOT NULL DEFAULT '',
    name VARCHAR(253) NOT NULL,
    body JSONB NOT NULL,
    spec_hash VARCHAR(64) NOT NULL,
    phase VARCHAR(20) NOT NULL DEFAULT 'pending',
    status_message TEXT,
    generation INTEGER NOT NULL DEFAULT 1,
    observed_generation INTEGER NOT NULL DEFAULT 0,
    retry_count INTEGER NOT NULL DEFAULT 0,
    last_reconcile_time TIMESTAMPTZ,
    next_reconcile_time TIMESTAMPTZ DEFAULT NOW(),
    deleted_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (kind, namespace, name)
);

CREATE INDEX IF NOT EXISTS idx_objects_next_reconcile
    ON objects (next_reconcile_time);

CREATE TABLE IF NOT EXISTS reconciliation_history (
    id SERIAL PRIMARY KEY,
    object_id INTEGER NOT NULL REFERENCES objects(id) ON DELETE CASCADE,
    generation INTEGER NOT NULL,
    operation VARCHAR(20) NOT NULL,
    success BOOLEAN NOT NULL,
    error_message TEXT,
    duration_seconds DOUBLE PRECISION,
    trigger_reason VARCHAR(20),
    reconcile_time TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_history_object
    ON reconciliation_history (object_id, reconcile_time DESC);
"""

# A reconciliation claimed longer ago than this is considered abandoned
STALE_RECONCILE_INTERVAL = "10 minutes"


class ResourceStatus(Enum):
    """Reconciliation phase of an object."""

    PENDING = "pending"
    RECONCILING = "reconciling"
    READY = "ready"
    FAILED = "failed"
    DELETING = "deleting"


def object_key(obj: Dict[str, Any]) -> Tuple[str, str, str]:
    """Return (kind, namespace, name) of an object document."""
    metadata = obj.get("metadata") or {}
    return obj["kind"], metadata.get("namespace", "") or "", metadata["name"]


class DatabaseManager(ObjectStore):
    """Manages PostgreSQL database operations for the operator."""

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        min_pool_size: int = 5,
        max_pool_size: int = 20,
    ):
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.pool: Optional[asyncpg.Pool] = None

    async def connect(self):
        """Establish connection pool to PostgreSQL."""
        self.pool = await asyncpg.create_pool(
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.user,
            password=self.password,
            min_size=self.min_pool_size,
            max_size=self.max_pool_size,
            command_timeout=60,  # Query timeout
        )
        logger.info(
            f"Connected to PostgreSQL (pool: {self.min_pool_size}-{self.max_pool_size})"
        )

    async def close(self):
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            logger.info("Closed PostgreSQL connection")

    def _ensure_connected(self) -> None:
        """Ensure the database connection pool is established."""
        if self.pool is None:
            raise RuntimeError(
                "Database not connected. Call connect() before performing operations."
            )

    async def initialize_schema(self) -> None:
        """Create tables and indexes that do not exist yet."""
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            await conn.execute(SCHEMA)
        logger.info("Database schema initialized")

    # ==================== ObjectStore ====================

    async def get_object(
        self, kind: str, name: str, namespace: str = ""
    ) -> Dict[str, Any]:
        async with self.pool.acquire() as conn:
            body = await conn.fetchval(
                """
                SELECT body FROM objects
                WHERE kind = $1 AND namespace = $2 AND name = $3
                  AND deleted_at IS NULL
                """,
                kind,
                namespace,
                name,
            )
            if body is None:
                raise ObjectNotFoundError(kind, name, namespace)
            return self._load_json(body)

    async def create_object(self, obj: Dict[str, Any]) -> None:
        kind, namespace, name = object_key(obj)
        async with self.pool.acquire() as conn:
            object_id = await conn.fetchval(
                """
                INSERT INTO objects (kind, namespace, name, body, spec_hash)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (kind, namespace, name) DO NOTHING
                RETURNING id
                """,
                kind,
                namespace,
                name,
                json.dumps(obj),
                self._calculate_spec_hash(obj),
            )
            if object_id is None:
                raise ObjectExistsError(kind, name, namespace)

            logger.info(f"Created {kind} {self._display(namespace, name)}")

    async def update_object(self, obj: Dict[str, Any]) -> None:
        """
        Replace an object's document.

        A changed spec bumps the generation and schedules an immediate
        reconciliation.
        """
        kind, namespace, name = object_key(obj)
        spec_hash = self._calculate_spec_hash(obj)
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE objects
                SET body = $4,
                    generation = CASE WHEN spec_hash = $5
                                 THEN generation ELSE generation + 1 END,
                    next_reconcile_time = CASE WHEN spec_hash = $5
                                 THEN next_reconcile_time ELSE NOW() END,
                    spec_hash = $5,
                    updated_at = NOW()
                WHERE kind = $1 AND namespace = $2 AND name = $3
                  AND deleted_at IS NULL
                RETURNING generation
                """,
                kind,
                namespace,
                name,
                json.dumps(obj),
                spec_hash,
            )
            if row is None:
                raise ObjectNotFoundError(kind, name, namespace)

            logger.debug(
                f"Updated {kind} {self._display(namespace, name)} "
                f"(generation {row['generation']})"
            )

    # ==================== Object records ====================

    async def get_object_record(
        self, kind: str, name: str, namespace: str = ""
    ) -> Optional[Dict[str, Any]]:
        """Get an object row including bookkeeping, even while it is being deleted."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM objects WHERE kind = $1 AND namespace = $2 AND name = $3",
                kind,
                namespace,
                name,
            )
            if not row:
                return None
            return self._parse_object_row(row)

    async def list_objects(
        self,
        kind: Optional[str] = None,
        namespace: Optional[str] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        """List object rows with optional filters."""
        async with self.pool.acquire() as conn:
            query = "SELECT * FROM objects WHERE 1=1"
            params = []
            param_count = 0

            if kind:
                param_count += 1
                query += f" AND kind = ${param_count}"
                params.append(kind)

            if namespace is not None:
                param_count += 1
                query += f" AND namespace = ${param_count}"
                params.append(namespace)

            param_count += 1
            query += f" ORDER BY kind, namespace, name LIMIT ${param_count}"
            params.append(limit)

            rows = await conn.fetch(query, *params)
            return [self._parse_object_row(row) for row in rows]

    async def get_objects_needing_reconciliation(
        self, kinds: List[str], limit: int = 10
    ) -> List[Dict[str, Any]]:
        """
        Get objects of the given kinds that need reconciliation.

        Similar to Kubernetes informers - finds objects that were never
        reconciled, changed, are due for a resync or retry, or are being
        deleted. Objects already being reconciled are skipped unless the
        claim is stale.
        """
        if not kinds:
            return []

        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT *
                FROM objects
                WHERE kind = ANY($1::text[])
                  AND (
                    -- Never reconciled
                    last_reconcile_time IS NULL
                    -- Generation changed
                    OR generation > observed_generation
                    -- Scheduled for resync, retry or deletion
                    OR next_reconcile_time <= NOW()
                  )
                  AND (
                    phase != 'reconciling'
                    OR updated_at < NOW() - INTERVAL '{STALE_RECONCILE_INTERVAL}'
                  )
                ORDER BY
                    CASE
                        WHEN deleted_at IS NOT NULL THEN 0
                        WHEN phase = 'pending' THEN 1
                        WHEN phase = 'failed' THEN 2
                        ELSE 3
                    END,
                    next_reconcile_time ASC NULLS FIRST
                LIMIT $2
                """,
                kinds,
                limit,
            )

            return [self._parse_object_row(row) for row in rows]

    async def update_object_status(
        self, object_id: int, status: Dict[str, Any]
    ) -> None:
        """Replace the status section of an object's document."""
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE objects
                SET body = jsonb_set(body, '{status}', $1::jsonb),
                    updated_at = NOW()
                WHERE id = $2
                """,
                json.dumps(status),
                object_id,
            )

    async def update_object_phase(
        self,
        object_id: int,
        phase: ResourceStatus,
        message: Optional[str] = None,
        observed_generation: Optional[int] = None,
        requeue_after: Optional[int] = None,
    ) -> None:
        """
        Update the reconciliation phase of an object.

        A successful outcome passes requeue_after to schedule the next
        reconciliation and resets the retry count.
        """
        async with self.pool.acquire() as conn:
            updates = ["phase = $1", "status_message = $2", "updated_at = NOW()"]
            params: List[Any] = [phase.value, message]
            param_count = 2

            if observed_generation is not None:
                param_count += 1
                updates.append(f"observed_generation = ${param_count}")
                params.append(observed_generation)

            if requeue_after is not None:
                param_count += 1
                updates.append(
                    f"next_reconcile_time = NOW() + INTERVAL '1 second' * ${param_count}"
                )
                updates.append("last_reconcile_time = NOW()")
                updates.append("retry_count = 0")
                params.append(requeue_after)

            param_count += 1
            params.append(object_id)

            query = f"UPDATE objects SET {', '.join(updates)} WHERE id = ${param_count}"
            await conn.execute(query, *params)

    async def record_failure(
        self,
        object_id: int,
        message: str,
        base_delay: int = 30,
        max_delay: int = 3600,
        jitter_factor: float = 0.1,
    ) -> None:
        """
        Mark an object failed and schedule a retry with exponential backoff.

        Args:
            object_id: The object ID
            message: Error message to store
            base_delay: Base delay in seconds
            max_delay: Maximum delay in seconds
            jitter_factor: Jitter factor ±X (0.1 = ±10%)
        """
        async with self.pool.acquire() as conn:
            # Add jitter of ±jitter_factor to prevent thundering herd
            await conn.execute(
                """
                UPDATE objects
                SET phase = $1,
                    status_message = $2,
                    last_reconcile_time = NOW(),
                    next_reconcile_time = NOW() + (
                        INTERVAL '1 second' * LEAST(
                            $3 * POWER(2, LEAST(retry_count, 10)),
                            $4
                        ) * (1 + (random() * 2 - 1) * $5)
                    ),
                    retry_count = retry_count + 1,
                    updated_at = NOW()
                WHERE id = $6
                """,
                ResourceStatus.FAILED.value,
                message,
                base_delay,
                max_delay,
                jitter_factor,
                object_id,
            )

    async def mark_object_for_deletion(
        self, kind: str, name: str, namespace: str = ""
    ) -> bool:
        """Mark an object for deletion (soft delete). Returns False if not found."""
        async with self.pool.acquire() as conn:
            object_id = await conn.fetchval(
                """
                UPDATE objects
                SET phase = $1,
                    deleted_at = COALESCE(deleted_at, NOW()),
                    next_reconcile_time = NOW(),
                    updated_at = NOW()
                WHERE kind = $2 AND namespace = $3 AND name = $4
                RETURNING id
                """,
                ResourceStatus.DELETING.value,
                kind,
                namespace,
                name,
            )
            if object_id is None:
                return False

            logger.info(f"Marked {kind} {self._display(namespace, name)} for deletion")
            return True

    async def hard_delete_object(self, object_id: int) -> bool:
        """
        Permanently delete a soft-deleted object.

        Returns:
            True if the object was deleted, False if not found or not
            marked for deletion
        """
        async with self.pool.acquire() as conn:
            result = await conn.fetchval(
                """
                DELETE FROM objects
                WHERE id = $1 AND deleted_at IS NOT NULL
                RETURNING id
                """,
                object_id,
            )
            if result:
                logger.info(f"Hard-deleted object {object_id}")
                return True
            return False

    async def delete_object(self, kind: str, name: str, namespace: str = "") -> bool:
        """Remove an unmanaged object (Secret, ProviderConfig) immediately."""
        async with self.pool.acquire() as conn:
            result = await conn.fetchval(
                """
                DELETE FROM objects
                WHERE kind = $1 AND namespace = $2 AND name = $3
                RETURNING id
                """,
                kind,
                namespace,
                name,
            )
            if result:
                logger.info(f"Deleted {kind} {self._display(namespace, name)}")
                return True
            return False

    async def mark_object_for_reconciliation(
        self, kind: str, name: str, namespace: str = ""
    ) -> bool:
        """Manually trigger reconciliation for an object."""
        async with self.pool.acquire() as conn:
            result = await conn.fetchval(
                """
                UPDATE objects
                SET next_reconcile_time = NOW()
                WHERE kind = $1 AND namespace = $2 AND name = $3
                RETURNING id
                """,
                kind,
                namespace,
                name,
            )
            return result is not None

    # ==================== History ====================

    async def record_reconciliation(
        self,
        object_id: int,
        operation: str,
        success: bool,
        error_message: Optional[str] = None,
        duration_seconds: Optional[float] = None,
        trigger_reason: Optional[str] = None,
    ):
        """Record a reconciliation attempt in history."""
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO reconciliation_history (
                    object_id, generation, operation, success,
                    error_message, duration_seconds, trigger_reason
                )
                SELECT id, generation, $2, $3, $4, $5, $6
                FROM objects WHERE id = $1
                """,
                object_id,
                operation,
                success,
                error_message,
                duration_seconds,
                trigger_reason,
            )

    async def get_reconciliation_history(
        self, object_id: int, limit: int = 10
    ) -> List[Dict[str, Any]]:
        """Get reconciliation history for an object."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT *
                FROM reconciliation_history
                WHERE object_id = $1
                ORDER BY reconcile_time DESC
                LIMIT $2
                """,
                object_id,
                limit,
            )

            return [dict(row) for row in rows]

    # ==================== Helpers ====================

    def _parse_object_row(self, row: asyncpg.Record) -> Dict[str, Any]:
        """Convert an objects row into a dict with the JSON body parsed."""
        result = dict(row)
        result["body"] = self._load_json(result.get("body"))
        return result

    def _load_json(self, value: Any) -> Dict[str, Any]:
        if value is None:
            return {}
        return json.loads(value) if isinstance(value, str) else value

    def _calculate_spec_hash(self, obj: Dict[str, Any]) -> str:
        """Hash everything except status for change detection."""
        desired = {k: v for k, v in obj.items() if k != "status"}
        spec_string = json.dumps(desired, sort_keys=True)
        return hashlib.sha256(spec_string.encode()).hexdigest()

    @staticmethod
    def _display(namespace: str, name: str) -> str:
        return f"{namespace}/{name}" if namespace else name
