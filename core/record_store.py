"""
Record Store Module

This module handles persistence and retrieval of enrollment records for the
FaceID capture engine.

An enrollment record holds the reference descriptors of one identity. There
is exactly one active record per identity: put() replaces any existing record
instead of appending to it.

Records are stored as:
- .npz files: the descriptor matrix plus a JSON metadata blob
- SQLite database: record index and the verification attempt log

Stores also hand out a per-identity lock. Callers running enroll() and
verify() concurrently for the same identity must hold it, since enrollment
replaces the record that verification reads.

Usage:
    from core.record_store import SQLiteRecordStore, EnrollmentRecord

    store = SQLiteRecordStore(records_dir="storage/records", db_path="storage/faceid.sqlite")
    store.put("alice", record)
    loaded = store.get("alice")
"""

import hashlib
import json
import logging
import os
import re
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class EnrollmentRecord:
    """
    Reference descriptors for one identity.

    Attributes:
        identity: Key the record is stored and verified under.
        descriptors: Valid enrollment descriptors.
                     Shape: (K, L), dtype: float64.
        created_at: When the enrollment completed.
        last_used_at: Last successful verification (equals created_at initially).
        metadata: Free-form enrollment details (captures, rejected samples, ...).
    """

    identity: str
    descriptors: np.ndarray  # (K, L) float64
    created_at: datetime
    last_used_at: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Validate record data after initialization."""
        self.descriptors = np.asarray(self.descriptors, dtype=np.float64)

        assert self.descriptors.ndim == 2, \
            f"descriptors must be (K, L), got shape {self.descriptors.shape}"
        assert len(self.descriptors) > 0, "a record needs at least one descriptor"

    @property
    def n_descriptors(self) -> int:
        return len(self.descriptors)

    @property
    def descriptor_length(self) -> int:
        return int(self.descriptors.shape[1])

    def touched(self, when: datetime) -> "EnrollmentRecord":
        """Copy of this record with last_used_at set to `when`."""
        return replace(self, descriptors=self.descriptors.copy(), last_used_at=when)


class RecordStore(ABC):
    """
    Abstract persistence boundary for enrollment records.

    get/put/delete are the operations the controllers rely on. The attempt
    log is used for auditing verification decisions.
    """

    def __init__(self):
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @abstractmethod
    def get(self, identity: str) -> Optional[EnrollmentRecord]:
        """Return the active record for an identity, or None."""
        pass

    @abstractmethod
    def put(self, identity: str, record: EnrollmentRecord) -> None:
        """Store a record, replacing any existing one for the identity."""
        pass

    @abstractmethod
    def delete(self, identity: str) -> bool:
        """Remove the record for an identity. Returns False if none existed."""
        pass

    @abstractmethod
    def list_records(self) -> List[Dict[str, Any]]:
        """Summaries of all stored records."""
        pass

    @abstractmethod
    def log_attempt(
        self,
        identity: str,
        operation: str,
        success: bool,
        failure_kind: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Append an enrollment/verification attempt to the log."""
        pass

    @abstractmethod
    def get_attempt_logs(self, identity: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        pass

    def exists(self, identity: str) -> bool:
        return self.get(identity) is not None

    @contextmanager
    def lock(self, identity: str) -> Iterator[None]:
        """Hold the per-identity lock (at most one writer per identity)."""
        with self._locks_guard:
            identity_lock = self._locks.setdefault(identity, threading.RLock())
        with identity_lock:
            yield

    def get_stats(self) -> Dict[str, Any]:
        records = self.list_records()
        logs = self.get_attempt_logs(limit=1_000_000)
        verifications = [log for log in logs if log["operation"] == "verify"]
        return {
            "total_records": len(records),
            "total_descriptors": sum(r["n_descriptors"] for r in records),
            "total_verifications": len(verifications),
            "successful_verifications": sum(1 for log in verifications if log["success"]),
        }

    def close(self) -> None:
        pass


class InMemoryRecordStore(RecordStore):
    """Process-local store. Records are copied on the way in and out."""

    def __init__(self):
        super().__init__()
        self._records: Dict[str, EnrollmentRecord] = {}
        self._logs: List[Dict[str, Any]] = []

    def get(self, identity: str) -> Optional[EnrollmentRecord]:
        record = self._records.get(identity)
        if record is None:
            return None
        return replace(record, descriptors=record.descriptors.copy(), metadata=dict(record.metadata))

    def put(self, identity: str, record: EnrollmentRecord) -> None:
        with self.lock(identity):
            self._records[identity] = replace(
                record,
                identity=identity,
                descriptors=record.descriptors.copy(),
                metadata=dict(record.metadata),
            )
        logger.debug(f"Stored record for {identity} ({record.n_descriptors} descriptors)")

    def delete(self, identity: str) -> bool:
        with self.lock(identity):
            return self._records.pop(identity, None) is not None

    def list_records(self) -> List[Dict[str, Any]]:
        return [
            {
                "identity": r.identity,
                "created_at": r.created_at.isoformat(),
                "last_used_at": r.last_used_at.isoformat(),
                "n_descriptors": r.n_descriptors,
                "descriptor_length": r.descriptor_length,
            }
            for r in self._records.values()
        ]

    def log_attempt(
        self,
        identity: str,
        operation: str,
        success: bool,
        failure_kind: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> int:
        entry = {
            "id": len(self._logs) + 1,
            "identity": identity,
            "timestamp": datetime.now().isoformat(),
            "operation": operation,
            "success": success,
            "failure_kind": failure_kind,
            "details": dict(details or {}),
        }
        self._logs.append(entry)
        return entry["id"]

    def get_attempt_logs(self, identity: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        logs = [log for log in reversed(self._logs) if identity is None or log["identity"] == identity]
        return logs[:limit]


def _record_filename(identity: str) -> str:
    """Filesystem-safe, collision-free file name for an identity."""
    slug = re.sub(r"[^A-Za-z0-9_-]", "_", identity)[:32]
    digest = hashlib.sha256(identity.encode("utf-8")).hexdigest()[:12]
    return f"{slug}_{digest}.npz"


class SQLiteRecordStore(RecordStore):
    """
    Persists enrollment records on disk.

    Records are stored in two places:
    1. Filesystem (.npz files): descriptor matrix and metadata
    2. SQLite database: record index and attempt log

    Attributes:
        records_dir: Directory where .npz record files are stored.
        db_path: Path to the SQLite database file.
    """

    def __init__(self, records_dir: str, db_path: str):
        """
        Initialize the store, creating directories and schema if needed.

        Args:
            records_dir: Path to directory for storing .npz files.
            db_path: Path to SQLite database file.
        """
        super().__init__()
        self.records_dir = Path(records_dir)
        self.db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._db_lock = threading.RLock()

        self.records_dir.mkdir(parents=True, exist_ok=True)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_database()

        logger.info(f"SQLiteRecordStore initialized: records={self.records_dir}, db={self.db_path}")

    def _get_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _init_database(self) -> None:
        """
        Create tables if they don't exist:
        - records: one row per identity with the record file path
        - attempt_logs: enrollment and verification attempts
        """
        conn = self._get_connection()
        with self._db_lock, conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS records (
                    identity TEXT PRIMARY KEY,
                    record_path TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    last_used_at TEXT NOT NULL,
                    n_descriptors INTEGER,
                    descriptor_length INTEGER
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS attempt_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    identity TEXT,
                    timestamp TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    operation TEXT NOT NULL,
                    success BOOLEAN,
                    failure_kind TEXT,
                    details TEXT
                )
            """)
        logger.debug("Database schema initialized")

    def _get_record_path(self, identity: str) -> Path:
        return self.records_dir / _record_filename(identity)

    def put(self, identity: str, record: EnrollmentRecord) -> None:
        """
        Save a record, replacing any existing record for the identity.

        The .npz file is written to a temporary path and moved over the old
        one, then the index row is replaced inside a single transaction.
        """
        record_path = self._get_record_path(identity)

        metadata = dict(record.metadata)
        metadata.update({
            "identity": identity,
            "created_at": record.created_at.isoformat(),
            "last_used_at": record.last_used_at.isoformat(),
        })

        with self.lock(identity):
            tmp_path = record_path.with_name(record_path.name + ".tmp")
            try:
                with open(tmp_path, "wb") as f:
                    np.savez_compressed(
                        f,
                        descriptors=record.descriptors,
                        metadata=json.dumps(metadata),
                    )
                os.replace(tmp_path, record_path)
            finally:
                if tmp_path.exists():
                    tmp_path.unlink()

            conn = self._get_connection()
            with self._db_lock, conn:
                conn.execute("DELETE FROM records WHERE identity = ?", (identity,))
                conn.execute("""
                    INSERT INTO records
                    (identity, record_path, created_at, last_used_at, n_descriptors, descriptor_length)
                    VALUES (?, ?, ?, ?, ?, ?)
                """, (
                    identity,
                    str(record_path),
                    metadata["created_at"],
                    metadata["last_used_at"],
                    record.n_descriptors,
                    record.descriptor_length,
                ))

        logger.info(f"Saved record for {identity} ({record.n_descriptors} descriptors)")

    def get(self, identity: str) -> Optional[EnrollmentRecord]:
        """
        Load the active record for an identity.

        Returns:
            EnrollmentRecord, or None if the identity never enrolled or the
            record file is missing.
        """
        conn = self._get_connection()
        with self._db_lock:
            row = conn.execute(
                "SELECT record_path FROM records WHERE identity = ?", (identity,)
            ).fetchone()

        if row is None:
            return None

        record_path = Path(row["record_path"])
        if not record_path.exists():
            logger.warning(f"Record file missing for {identity}: {record_path}")
            return None

        with np.load(str(record_path), allow_pickle=False) as data:
            descriptors = data["descriptors"]
            metadata = json.loads(str(data["metadata"]))

        created_at = datetime.fromisoformat(metadata.pop("created_at"))
        last_used_at = datetime.fromisoformat(metadata.pop("last_used_at"))
        metadata.pop("identity", None)

        return EnrollmentRecord(
            identity=identity,
            descriptors=descriptors,
            created_at=created_at,
            last_used_at=last_used_at,
            metadata=metadata,
        )

    def delete(self, identity: str) -> bool:
        """
        Delete a record from both filesystem and database.

        Returns:
            True if a record was deleted, False if the identity was unknown.
        """
        with self.lock(identity):
            conn = self._get_connection()
            with self._db_lock, conn:
                row = conn.execute(
                    "SELECT record_path FROM records WHERE identity = ?", (identity,)
                ).fetchone()
                if row is None:
                    logger.warning(f"Cannot delete: no record for {identity}")
                    return False
                conn.execute("DELETE FROM records WHERE identity = ?", (identity,))

            record_path = Path(row["record_path"])
            if record_path.exists():
                record_path.unlink()

        logger.info(f"Deleted record for {identity}")
        return True

    def exists(self, identity: str) -> bool:
        conn = self._get_connection()
        with self._db_lock:
            row = conn.execute("SELECT 1 FROM records WHERE identity = ?", (identity,)).fetchone()
        return row is not None

    def list_records(self) -> List[Dict[str, Any]]:
        conn = self._get_connection()
        with self._db_lock:
            rows = conn.execute("""
                SELECT identity, created_at, last_used_at, n_descriptors, descriptor_length
                FROM records
                ORDER BY created_at DESC
            """).fetchall()

        return [
            {
                "identity": row["identity"],
                "created_at": row["created_at"],
                "last_used_at": row["last_used_at"],
                "n_descriptors": row["n_descriptors"],
                "descriptor_length": row["descriptor_length"],
            }
            for row in rows
        ]

    def log_attempt(
        self,
        identity: str,
        operation: str,
        success: bool,
        failure_kind: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> int:
        conn = self._get_connection()
        with self._db_lock, conn:
            cursor = conn.execute("""
                INSERT INTO attempt_logs (identity, operation, success, failure_kind, details)
                VALUES (?, ?, ?, ?, ?)
            """, (identity, operation, success, failure_kind, json.dumps(details or {})))
        log_id = cursor.lastrowid
        logger.debug(f"Logged {operation} attempt: id={log_id}, identity={identity}, success={success}")
        return log_id

    def get_attempt_logs(self, identity: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        conn = self._get_connection()
        with self._db_lock:
            if identity:
                rows = conn.execute("""
                    SELECT * FROM attempt_logs WHERE identity = ?
                    ORDER BY id DESC LIMIT ?
                """, (identity, limit)).fetchall()
            else:
                rows = conn.execute("""
                    SELECT * FROM attempt_logs ORDER BY id DESC LIMIT ?
                """, (limit,)).fetchall()

        return [
            {
                "id": row["id"],
                "identity": row["identity"],
                "timestamp": row["timestamp"],
                "operation": row["operation"],
                "success": bool(row["success"]),
                "failure_kind": row["failure_kind"],
                "details": json.loads(row["details"] or "{}"),
            }
            for row in rows
        ]

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.debug("Database connection closed")


# Singleton instance for the store
_store_instance: Optional[RecordStore] = None


def get_record_store(
    records_dir: Optional[str] = None,
    db_path: Optional[str] = None,
) -> RecordStore:
    """
    Get or create the singleton record store.

    Args:
        records_dir: Path to record storage directory. If None, uses config.
        db_path: Path to SQLite database. If None, uses config.
    """
    global _store_instance

    if _store_instance is None:
        if records_dir is None or db_path is None:
            from core.config import get_storage_config, get_project_root

            storage_config = get_storage_config()
            project_root = get_project_root()

            if records_dir is None:
                records_dir = str(project_root / storage_config["records_dir"])
            if db_path is None:
                db_path = str(project_root / storage_config["db_path"])

        _store_instance = SQLiteRecordStore(records_dir, db_path)

    return _store_instance
