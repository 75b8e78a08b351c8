"""
Path-scoped document store.

Documents are keyed by (project, path, kind) or, for project-level records
such as the config, by (project, kind). Every save is a full replace inside a
single SQLite transaction; writes to one key are serialized, writes to
different keys are not.
"""

import json
import sqlite3
import time
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel

from .config import DEFAULT_PATH_NAME, STORE_TIMEOUT_SEC
from .db import get_db, health_check as db_health_check, init_db
from .errors import StoreError, StoreTimeoutError, WriteConflictError
from .paths import resolve_path_name
from .schema import CONFIG_KIND, HTA_KIND, utc_now_iso
from ..util.locks import KeyedLocks, LockTimeout
from ..util.logging import logger


@dataclass
class SaveAck:
    """Acknowledgement of a committed save."""
    project_id: str
    path_name: Optional[str]
    kind: str
    revision: int
    saved_at: str
    findings: List[Any] = field(default_factory=list)

    @property
    def key(self) -> Tuple:
        if self.path_name is None:
            return (self.project_id, self.kind)
        return (self.project_id, self.path_name, self.kind)


def _is_contention(error: sqlite3.OperationalError) -> bool:
    message = str(error).lower()
    return "locked" in message or "busy" in message


class PathScopedStore:
    """
    Durable store for HTA snapshots and project records.

    ``load`` returns ``None`` when nothing is stored under the key. ``None``
    itself cannot be saved, so absence is never confused with stored content.
    """

    def __init__(self, db_path: str = None, default_path: str = DEFAULT_PATH_NAME,
                 timeout: float = STORE_TIMEOUT_SEC):
        self.db_path = db_path
        self.default_path = default_path
        self.timeout = timeout
        self._locks = KeyedLocks()
        init_db(db_path)

    # Path resolution

    def load_project_config(self, project_id: str, timeout: float = None) -> Optional[dict]:
        """Raw project config document, or None."""
        config = self.load_project_data(project_id, CONFIG_KIND, timeout=timeout)
        return config if isinstance(config, dict) else None

    def resolve_path(self, project_id: str, path_name: Optional[str] = None, timeout: float = None) -> str:
        """Resolve ``path_name`` against the project's config. Used by every path-scoped entry point."""
        if isinstance(path_name, str) and path_name.strip():
            return path_name
        config = self.load_project_config(project_id, timeout=timeout)
        return resolve_path_name(path_name, config, default_path=self.default_path)

    # Project-scoped documents

    def load_project_data(self, project_id: str, kind: str, timeout: float = None) -> Optional[Any]:
        _check_key_part("project_id", project_id)
        _check_key_part("kind", kind)
        return self._read(
            "SELECT payload FROM project_documents WHERE project_id = ? AND kind = ?",
            (project_id, kind),
            key=(project_id, kind),
            timeout=timeout,
        )

    def save_project_data(self, project_id: str, kind: str, data: Any,
                          expected_revision: int = None, timeout: float = None) -> SaveAck:
        _check_key_part("project_id", project_id)
        _check_key_part("kind", kind)
        return self._write(
            table="project_documents",
            key_columns=("project_id", "kind"),
            key=(project_id, kind),
            data=data,
            expected_revision=expected_revision,
            timeout=timeout,
        )

    # Path-scoped documents

    def load_path_data(self, project_id: str, path_name: Optional[str], kind: str,
                       timeout: float = None) -> Optional[Any]:
        """Direct record read. ``path_name`` falls back to the active path, then the default."""
        _check_key_part("project_id", project_id)
        _check_key_part("kind", kind)
        resolved = self.resolve_path(project_id, path_name, timeout=timeout)
        data = self._read(
            "SELECT payload FROM path_documents WHERE project_id = ? AND path_name = ? AND kind = ?",
            (project_id, resolved, kind),
            key=(project_id, resolved, kind),
            timeout=timeout,
        )
        logger.log_store_operation("load", project_id, resolved, kind,
                                   status="hit" if data is not None else "absent")
        return data

    def save_path_data(self, project_id: str, path_name: Optional[str], kind: str, data: Any,
                       expected_revision: int = None, timeout: float = None) -> SaveAck:
        """Direct record write, full replace. ``path_name`` resolves like ``load_path_data``."""
        _check_key_part("project_id", project_id)
        _check_key_part("kind", kind)
        resolved = self.resolve_path(project_id, path_name, timeout=timeout)
        return self._write(
            table="path_documents",
            key_columns=("project_id", "path_name", "kind"),
            key=(project_id, resolved, kind),
            data=data,
            expected_revision=expected_revision,
            timeout=timeout,
        )

    def save(self, project_id: str, path_name: Optional[str], snapshot: Any, kind: str = HTA_KIND,
             expected_revision: int = None, timeout: float = None) -> SaveAck:
        return self.save_path_data(project_id, path_name, kind, snapshot,
                                   expected_revision=expected_revision, timeout=timeout)

    def load(self, project_id: str, path_name: Optional[str] = None, kind: str = HTA_KIND,
             timeout: float = None) -> Optional[Any]:
        return self.load_path_data(project_id, path_name, kind, timeout=timeout)

    # Introspection

    def get_revision(self, project_id: str, path_name: Optional[str], kind: str = HTA_KIND) -> Optional[int]:
        resolved = self.resolve_path(project_id, path_name)
        try:
            with get_db(self.db_path, timeout=self.timeout) as conn:
                row = conn.execute(
                    "SELECT revision FROM path_documents WHERE project_id = ? AND path_name = ? AND kind = ?",
                    (project_id, resolved, kind),
                ).fetchone()
        except sqlite3.Error as e:
            raise StoreError(str(e), key=(project_id, resolved, kind), operation="revision") from e
        return row[0] if row else None

    def list_paths(self, project_id: str, kind: str = HTA_KIND) -> List[str]:
        try:
            with get_db(self.db_path, timeout=self.timeout) as conn:
                rows = conn.execute(
                    "SELECT path_name FROM path_documents WHERE project_id = ? AND kind = ? ORDER BY path_name",
                    (project_id, kind),
                ).fetchall()
        except sqlite3.Error as e:
            raise StoreError(str(e), key=(project_id, kind), operation="list_paths") from e
        return [row[0] for row in rows]

    def list_projects(self) -> List[str]:
        try:
            with get_db(self.db_path, timeout=self.timeout) as conn:
                rows = conn.execute(
                    "SELECT project_id FROM project_documents "
                    "UNION SELECT project_id FROM path_documents ORDER BY project_id"
                ).fetchall()
        except sqlite3.Error as e:
            raise StoreError(str(e), operation="list_projects") from e
        return [row[0] for row in rows]

    def health_check(self) -> bool:
        return db_health_check(self.db_path)

    # Internals

    def _read(self, sql: str, params: Tuple, key: Tuple, timeout: float = None) -> Optional[Any]:
        timeout = self.timeout if timeout is None else timeout
        try:
            with get_db(self.db_path, timeout=timeout) as conn:
                row = conn.execute(sql, params).fetchone()
        except sqlite3.OperationalError as e:
            if _is_contention(e):
                raise StoreTimeoutError(str(e), key=key, operation="load") from e
            raise StoreError(str(e), key=key, operation="load") from e
        except sqlite3.Error as e:
            raise StoreError(str(e), key=key, operation="load") from e

        if row is None:
            return None
        try:
            return json.loads(row[0])
        except ValueError as e:
            raise StoreError(f"Stored document is not valid JSON: {e}", key=key, operation="load") from e

    def _write(self, table: str, key_columns: Tuple[str, ...], key: Tuple, data: Any,
               expected_revision: Optional[int], timeout: Optional[float]) -> SaveAck:
        timeout = self.timeout if timeout is None else timeout
        payload = _serialize(data, key)
        project_id, kind = key[0], key[-1]
        path_name = key[1] if len(key) == 3 else None
        deadline = time.monotonic() + timeout

        try:
            with self._locks.hold((table,) + key, timeout=timeout):
                remaining = max(deadline - time.monotonic(), 0.001)
                revision = self._commit(table, key_columns, key, payload, expected_revision, remaining)
        except LockTimeout as e:
            logger.log_store_operation("save", project_id, path_name, kind, status="timeout")
            raise StoreTimeoutError(f"Write did not start within {timeout}s", key=key, operation="save") from e
        except WriteConflictError:
            logger.log_store_operation("save", project_id, path_name, kind, status="conflict")
            raise

        logger.log_store_operation("save", project_id, path_name, kind,
                                   details={"revision": revision, "bytes": len(payload)})
        return SaveAck(project_id=project_id, path_name=path_name, kind=kind,
                       revision=revision, saved_at=utc_now_iso())

    def _commit(self, table: str, key_columns: Tuple[str, ...], key: Tuple, payload: str,
                expected_revision: Optional[int], timeout: float) -> int:
        where = " AND ".join(f"{column} = ?" for column in key_columns)
        columns = ", ".join(key_columns)
        placeholders = ", ".join("?" for _ in key_columns)

        with get_db(self.db_path, timeout=timeout) as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute(f"SELECT revision FROM {table} WHERE {where}", key).fetchone()
                current = row[0] if row else None

                if expected_revision is not None and current != expected_revision:
                    conn.rollback()
                    raise WriteConflictError(
                        f"Expected revision {expected_revision}, found {current}",
                        key=key, operation="save",
                    )

                revision = (current or 0) + 1
                conn.execute(
                    f"INSERT OR REPLACE INTO {table} ({columns}, payload, revision, updated_at) "
                    f"VALUES ({placeholders}, ?, ?, CURRENT_TIMESTAMP)",
                    key + (payload, revision),
                )
                conn.commit()
                return revision
            except sqlite3.OperationalError as e:
                conn.rollback()
                if _is_contention(e):
                    raise WriteConflictError(str(e), key=key, operation="save") from e
                raise StoreError(str(e), key=key, operation="save") from e
            except sqlite3.Error as e:
                conn.rollback()
                raise StoreError(str(e), key=key, operation="save") from e


def _check_key_part(name: str, value: Any):
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} must be a non-empty string")


def _serialize(data: Any, key: Tuple) -> str:
    if data is None:
        raise ValueError("Cannot save None; absence is reserved for missing documents")
    if isinstance(data, BaseModel):
        data = data.model_dump(by_alias=True, exclude_none=True)
    try:
        return json.dumps(data, default=str)
    except (TypeError, ValueError) as e:
        raise StoreError(f"Document is not serializable: {e}", key=key, operation="save") from e
