"""Deployment record storage.

The orchestrator is the only writer. Every ``update`` takes the version the
caller read; the store refuses the write when the record moved on in the
meantime, so a stale copy can never overwrite a newer transition.
"""

import asyncio
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator

from autocrea.config import Settings, get_settings
from autocrea.core.exceptions import ConcurrentModificationError, DeploymentNotFoundError
from autocrea.models.deployment import ACTIVE_STATUSES, Deployment, DeploymentStatus
from autocrea.utils.logging import get_logger

logger = get_logger("deployment_store")

PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Fields fixed at creation time
IMMUTABLE_FIELDS = frozenset({"id", "project_id", "user_id", "provider", "created_at"})


def _apply_changes(
    current: Deployment, changes: dict[str, Any], expected_version: int | None
) -> Deployment:
    """Validate a partial update against the current record and build the new one."""
    if expected_version is not None and expected_version != current.version:
        raise ConcurrentModificationError(current.id, expected_version, current.version)

    forbidden = IMMUTABLE_FIELDS.intersection(changes)
    if forbidden:
        raise ValueError(f"Immutable fields cannot be updated: {sorted(forbidden)}")

    data = current.model_dump()
    data.update(changes)
    data["version"] = current.version + 1
    data["updated_at"] = changes.get("updated_at") or datetime.utcnow()
    return Deployment.model_validate(data)


class DeploymentStore(ABC):
    """Persistence collaborator for deployment records."""

    async def open(self) -> None:
        """Acquire resources. Called once at startup."""

    async def close(self) -> None:
        """Release resources. Called once at shutdown."""

    @abstractmethod
    async def insert(self, deployment: Deployment) -> str:
        """Insert a new record and return its id."""

    @abstractmethod
    async def get(self, deployment_id: str) -> Deployment | None:
        """Get a record by id."""

    @abstractmethod
    async def update(
        self,
        deployment_id: str,
        changes: dict[str, Any],
        expected_version: int | None = None,
    ) -> Deployment:
        """Apply a partial update, bumping ``version`` and ``updated_at``.

        Raises:
            DeploymentNotFoundError: If the record does not exist
            ConcurrentModificationError: If ``expected_version`` is stale
        """

    @abstractmethod
    async def find(
        self,
        user_id: str | None = None,
        project_id: str | None = None,
        status: DeploymentStatus | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> tuple[list[Deployment], int]:
        """List records newest first with optional filters and pagination."""

    @abstractmethod
    async def delete(self, deployment_id: str) -> bool:
        """Delete a record. Returns True when something was deleted."""

    async def list_active(self) -> list[Deployment]:
        """All records whose status is not terminal."""
        active: list[Deployment] = []
        for status in ACTIVE_STATUSES:
            records, _ = await self.find(status=status)
            active.extend(records)
        active.sort(key=lambda d: d.created_at)
        return active


class InMemoryDeploymentStore(DeploymentStore):
    """Keeps records in a dict. Suitable for development and tests."""

    def __init__(self):
        self._deployments: dict[str, Deployment] = {}
        self._lock = asyncio.Lock()

    async def insert(self, deployment: Deployment) -> str:
        async with self._lock:
            if deployment.id in self._deployments:
                raise ValueError(f"Deployment already exists: {deployment.id}")
            self._deployments[deployment.id] = deployment.model_copy(deep=True)
        return deployment.id

    async def get(self, deployment_id: str) -> Deployment | None:
        deployment = self._deployments.get(deployment_id)
        return deployment.model_copy(deep=True) if deployment else None

    async def update(
        self,
        deployment_id: str,
        changes: dict[str, Any],
        expected_version: int | None = None,
    ) -> Deployment:
        async with self._lock:
            current = self._deployments.get(deployment_id)
            if current is None:
                raise DeploymentNotFoundError(deployment_id)

            updated = _apply_changes(current, changes, expected_version)
            self._deployments[deployment_id] = updated
        return updated.model_copy(deep=True)

    async def find(
        self,
        user_id: str | None = None,
        project_id: str | None = None,
        status: DeploymentStatus | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> tuple[list[Deployment], int]:
        deployments = list(self._deployments.values())

        if user_id:
            deployments = [d for d in deployments if d.user_id == user_id]
        if project_id:
            deployments = [d for d in deployments if d.project_id == project_id]
        if status:
            deployments = [d for d in deployments if d.status == status]

        deployments.sort(key=lambda d: d.created_at, reverse=True)

        total = len(deployments)
        end = None if limit is None else offset + limit
        return [d.model_copy(deep=True) for d in deployments[offset:end]], total

    async def delete(self, deployment_id: str) -> bool:
        async with self._lock:
            return self._deployments.pop(deployment_id, None) is not None


def _resolve_db_path(db_path: str | Path) -> Path:
    """Resolve database path relative to project root when not absolute."""
    path = Path(db_path)
    return path if path.is_absolute() else PROJECT_ROOT / path


class SqliteDeploymentStore(DeploymentStore):
    """Stores records in SQLite with a version column for compare-and-set."""

    def __init__(self, db_path: Path | str):
        self.db_path = _resolve_db_path(db_path)
        self._ensure_db_exists()

    def _ensure_db_exists(self) -> None:
        """Create database and tables if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS deployments (
                    id TEXT PRIMARY KEY,
                    project_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    created_at TEXT NOT NULL,
                    data TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_deployments_project_status
                ON deployments(project_id, status)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_deployments_user
                ON deployments(user_id, created_at DESC)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_deployments_status
                ON deployments(status)
            """)
            conn.commit()

        logger.debug("deployment_store.initialized", db_path=str(self.db_path))

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @staticmethod
    def _row_to_deployment(row: sqlite3.Row) -> Deployment:
        return Deployment.model_validate_json(row["data"])

    async def insert(self, deployment: Deployment) -> str:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO deployments
                (id, project_id, user_id, status, version, created_at, data)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    deployment.id,
                    deployment.project_id,
                    deployment.user_id,
                    deployment.status.value,
                    deployment.version,
                    deployment.created_at.isoformat(),
                    deployment.model_dump_json(),
                ),
            )
            conn.commit()

        logger.debug("deployment_store.inserted", deployment_id=deployment.id)
        return deployment.id

    async def get(self, deployment_id: str) -> Deployment | None:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT data FROM deployments WHERE id = ?",
                (deployment_id,),
            ).fetchone()

        return self._row_to_deployment(row) if row else None

    async def update(
        self,
        deployment_id: str,
        changes: dict[str, Any],
        expected_version: int | None = None,
    ) -> Deployment:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT data FROM deployments WHERE id = ?",
                (deployment_id,),
            ).fetchone()
            if row is None:
                raise DeploymentNotFoundError(deployment_id)

            current = self._row_to_deployment(row)
            updated = _apply_changes(current, changes, expected_version)

            cursor = conn.execute(
                """
                UPDATE deployments
                SET status = ?, version = ?, data = ?
                WHERE id = ? AND version = ?
                """,
                (
                    updated.status.value,
                    updated.version,
                    updated.model_dump_json(),
                    deployment_id,
                    current.version,
                ),
            )
            conn.commit()

            if cursor.rowcount == 0:
                # Another writer got in between our read and our write
                latest = conn.execute(
                    "SELECT version FROM deployments WHERE id = ?",
                    (deployment_id,),
                ).fetchone()
                actual = latest["version"] if latest else -1
                raise ConcurrentModificationError(deployment_id, current.version, actual)

        return updated

    async def find(
        self,
        user_id: str | None = None,
        project_id: str | None = None,
        status: DeploymentStatus | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> tuple[list[Deployment], int]:
        clauses: list[str] = []
        params: list[Any] = []
        if user_id:
            clauses.append("user_id = ?")
            params.append(user_id)
        if project_id:
            clauses.append("project_id = ?")
            params.append(project_id)
        if status:
            clauses.append("status = ?")
            params.append(DeploymentStatus(status).value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        with self._get_connection() as conn:
            total = conn.execute(
                f"SELECT COUNT(*) FROM deployments {where}", params
            ).fetchone()[0]
            rows = conn.execute(
                f"SELECT data FROM deployments {where} "
                "ORDER BY created_at DESC LIMIT ? OFFSET ?",
                [*params, -1 if limit is None else limit, offset],
            ).fetchall()

        return [self._row_to_deployment(row) for row in rows], total

    async def delete(self, deployment_id: str) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM deployments WHERE id = ?",
                (deployment_id,),
            )
            conn.commit()
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info("deployment_store.deleted", deployment_id=deployment_id)
        return deleted


def create_store(settings: Settings | None = None) -> DeploymentStore:
    """Build the store selected by configuration."""
    settings = settings or get_settings()
    if settings.store_backend == "sqlite":
        return SqliteDeploymentStore(settings.deployment_db_path)
    return InMemoryDeploymentStore()
