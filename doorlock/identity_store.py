"""
Identity Store Module

This module handles persistence and retrieval of enrolled identities and the
access log for the face recognition door lock.

Identities are stored as:
- .npz files: Contain the ordered reference embeddings and metadata
- SQLite database: User metadata for efficient querying, plus the
  append-only access log

The IdentityStore class provides:
- create_identity: Save a newly enrolled identity
- list_identities / load_gallery: Load every enrolled identity for matching
- identity_exists: Check whether a display name is already taken
- append_access_event: Record a granted/denied access attempt
- list_access_events: Read the access history, newest first

Usage:
    from doorlock.identity_store import IdentityStore

    store = IdentityStore(identities_dir="storage/identities",
                          db_path="storage/doorlock.sqlite")

    identity = store.create_identity("Alice", embeddings)   # (K, 128)
    gallery = store.load_gallery()
    history = store.list_access_events(limit=50)
"""

import enum
import json
import sqlite3
import uuid
import logging
from pathlib import Path
from datetime import datetime
from dataclasses import dataclass, field
from typing import Iterator, List, Dict, Any, Optional, Sequence, Tuple

import numpy as np

from doorlock.errors import DuplicateIdentity, PersistenceFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class Identity:
    """
    An enrolled person and their reference embeddings.

    Attributes:
        identity_id: Unique identifier (e.g., "usr_a1b2c3d4").
        name: Display name, unique across all identities.
        embeddings: Reference embeddings captured at enrollment.
                    Shape: (K, D), dtype: float32, read-only.
        enrolled_at: ISO timestamp of enrollment.
    """

    identity_id: str
    name: str
    embeddings: np.ndarray  # (K, D) float32
    enrolled_at: Optional[str] = None

    def __post_init__(self):
        embeddings = np.array(self.embeddings, dtype=np.float32)
        if embeddings.ndim == 1:
            embeddings = embeddings.reshape(1, -1)
        assert embeddings.ndim == 2, \
            f"embeddings must be (K, D), got {embeddings.shape}"
        embeddings.setflags(write=False)
        object.__setattr__(self, "embeddings", embeddings)

    @property
    def n_samples(self) -> int:
        """Return the number of reference embeddings."""
        return len(self.embeddings)

    @property
    def embedding_dim(self) -> int:
        """Return the dimension of the embeddings."""
        return self.embeddings.shape[1] if self.n_samples > 0 else 0


class Gallery:
    """
    Read-only snapshot of all enrolled identities.

    A gallery is loaded once per scanning session and handed to the
    access controller; it is never refreshed while the session runs.
    Iteration order is the order identities were loaded in.
    """

    def __init__(self, identities: Sequence[Identity] = ()):
        self._identities: Tuple[Identity, ...] = tuple(identities)

    def __iter__(self) -> Iterator[Identity]:
        return iter(self._identities)

    def __len__(self) -> int:
        return len(self._identities)

    def __bool__(self) -> bool:
        return bool(self._identities)

    def get(self, identity_id: str) -> Optional[Identity]:
        for identity in self._identities:
            if identity.identity_id == identity_id:
                return identity
        return None

    @property
    def names(self) -> List[str]:
        return [identity.name for identity in self._identities]


class AccessOutcome(str, enum.Enum):
    """Outcome recorded for an access attempt."""

    GRANTED = "granted"
    DENIED = "denied"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class AccessEvent:
    """
    A single access attempt. Append-only: never mutated after creation.

    Attributes:
        outcome: granted, denied or unknown.
        confidence: Match confidence (0-100) at the time of the decision.
        identity_id: Matched identity for granted attempts, else None.
        name: Display name of the matched identity, else None.
        unlock_duration: Seconds the door was unlocked, for granted attempts.
        timestamp: ISO timestamp of the attempt.
        event_id: Row id assigned by the store, None until persisted.
    """

    outcome: AccessOutcome
    confidence: int
    identity_id: Optional[str] = None
    name: Optional[str] = None
    unlock_duration: Optional[int] = None
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())
    event_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "identity_id": self.identity_id,
            "name": self.name,
            "outcome": AccessOutcome(self.outcome).value,
            "confidence": self.confidence,
            "unlock_duration": self.unlock_duration,
            "timestamp": self.timestamp,
        }


def generate_identity_id() -> str:
    """
    Generate a unique identity ID.

    Format: "usr_" followed by 8 random hex characters.
    """
    return f"usr_{uuid.uuid4().hex[:8]}"


class IdentityStore:
    """
    Manages persistence of enrolled identities and the access log.

    Identities are stored in two places:
    1. Filesystem (.npz files): The reference embeddings
    2. SQLite database: User metadata, plus the access_logs table

    Attributes:
        identities_dir: Directory where .npz embedding files are stored.
        db_path: Path to the SQLite database file.
    """

    def __init__(self, identities_dir: str, db_path: str):
        """
        Initialize the IdentityStore.

        Creates the storage directory and database if they don't exist.

        Args:
            identities_dir: Path to directory for storing .npz files.
            db_path: Path to SQLite database file.
        """
        self.identities_dir = Path(identities_dir)
        self.db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None

        self.identities_dir.mkdir(parents=True, exist_ok=True)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_database()

        logger.info(f"IdentityStore initialized: identities={self.identities_dir}, db={self.db_path}")

    def _get_connection(self) -> sqlite3.Connection:
        """
        Get or create the SQLite connection.

        The connection is shared with the API's worker threads, so the
        same-thread check is disabled.
        """
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _init_database(self) -> None:
        """
        Initialize the SQLite database schema.

        Creates tables if they don't exist:
        - users: Enrolled identities and their embedding file paths
        - access_logs: Append-only history of access attempts
        """
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS users (
                user_id TEXT PRIMARY KEY,
                user_name TEXT NOT NULL UNIQUE,
                embeddings_path TEXT NOT NULL,
                enrolled_at TIMESTAMP NOT NULL,
                n_samples INTEGER,
                embedding_dim INTEGER
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS access_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT,
                user_name TEXT,
                access_type TEXT NOT NULL,
                confidence INTEGER,
                unlocked_duration INTEGER,
                timestamp TIMESTAMP NOT NULL
            )
        """)

        conn.commit()
        logger.debug("Database schema initialized")

    def _get_embeddings_path(self, identity_id: str) -> Path:
        return self.identities_dir / f"{identity_id}.npz"

    # ------------------------------------------------------------------
    # Identities
    # ------------------------------------------------------------------

    def create_identity(self, name: str, embeddings: Sequence[np.ndarray]) -> Identity:
        """
        Persist a newly enrolled identity.

        Args:
            name: Display name; must not already be enrolled.
            embeddings: Ordered reference embeddings, all of the same length.

        Returns:
            The stored Identity.

        Raises:
            DuplicateIdentity: If the name is already enrolled.
            PersistenceFailure: If the embeddings are invalid or the write fails.
        """
        if self.identity_exists(name):
            raise DuplicateIdentity(name)

        try:
            stacked = np.asarray(embeddings, dtype=np.float32)
        except ValueError as e:
            raise PersistenceFailure(f"Embeddings must all have the same length: {e}") from e

        if stacked.ndim != 2 or len(stacked) == 0:
            raise PersistenceFailure(
                f"Expected a non-empty (K, D) set of embeddings, got shape {stacked.shape}"
            )

        identity = Identity(
            identity_id=generate_identity_id(),
            name=name,
            embeddings=stacked,
            enrolled_at=datetime.now().isoformat(),
        )
        embeddings_path = self._get_embeddings_path(identity.identity_id)

        metadata = {
            "user_id": identity.identity_id,
            "user_name": identity.name,
            "enrolled_at": identity.enrolled_at,
        }

        try:
            np.savez_compressed(
                str(embeddings_path),
                embeddings=identity.embeddings,
                metadata=json.dumps(metadata),
            )
        except OSError as e:
            raise PersistenceFailure(f"Failed to write embeddings: {e}") from e

        conn = self._get_connection()
        try:
            conn.execute("""
                INSERT INTO users (user_id, user_name, embeddings_path, enrolled_at,
                                   n_samples, embedding_dim)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                identity.identity_id,
                identity.name,
                str(embeddings_path),
                identity.enrolled_at,
                identity.n_samples,
                identity.embedding_dim,
            ))
            conn.commit()
        except sqlite3.IntegrityError as e:
            conn.rollback()
            embeddings_path.unlink(missing_ok=True)
            raise DuplicateIdentity(name) from e
        except sqlite3.Error as e:
            conn.rollback()
            embeddings_path.unlink(missing_ok=True)
            raise PersistenceFailure(f"Failed to register user: {e}") from e

        logger.info(f"Saved identity {identity.name} (id={identity.identity_id}, "
                    f"samples={identity.n_samples})")
        return identity

    def get_identity(self, identity_id: str) -> Optional[Identity]:
        """
        Load a single identity with its embeddings.

        Returns:
            Identity, or None if not found or its embeddings file is unreadable.
        """
        conn = self._get_connection()
        row = conn.execute(
            "SELECT user_id, user_name, embeddings_path, enrolled_at FROM users WHERE user_id = ?",
            (identity_id,),
        ).fetchone()

        if row is None:
            return None

        return self._load_identity_row(row)

    def _load_identity_row(self, row: sqlite3.Row) -> Optional[Identity]:
        embeddings_path = Path(row["embeddings_path"])

        if not embeddings_path.exists():
            logger.warning(f"Embeddings file missing for user {row['user_id']}: {embeddings_path}")
            return None

        try:
            with np.load(str(embeddings_path)) as data:
                embeddings = data["embeddings"]
        except (OSError, KeyError, ValueError) as e:
            logger.error(f"Failed to load embeddings for {row['user_id']}: {e}")
            return None

        return Identity(
            identity_id=row["user_id"],
            name=row["user_name"],
            embeddings=embeddings,
            enrolled_at=row["enrolled_at"],
        )

    def list_identities(self) -> List[Identity]:
        """
        Load all enrolled identities, in enrollment order.

        Identities whose embedding files cannot be read are skipped.
        """
        conn = self._get_connection()
        rows = conn.execute("""
            SELECT user_id, user_name, embeddings_path, enrolled_at
            FROM users
            ORDER BY enrolled_at ASC, rowid ASC
        """).fetchall()

        identities = []
        for row in rows:
            identity = self._load_identity_row(row)
            if identity is not None:
                identities.append(identity)

        logger.info(f"Loaded {len(identities)} identities")
        return identities

    def load_gallery(self) -> Gallery:
        """Load a read-only gallery snapshot of every enrolled identity."""
        return Gallery(self.list_identities())

    def identity_exists(self, name: str) -> bool:
        """Check if an identity with the given display name exists."""
        conn = self._get_connection()
        row = conn.execute("SELECT 1 FROM users WHERE user_name = ?", (name,)).fetchone()
        return row is not None

    def list_users(self) -> List[Dict[str, Any]]:
        """
        List enrolled users without loading their embeddings.

        Returns:
            List of dictionaries with user_id, user_name, enrolled_at,
            n_samples and embedding_dim, newest first.
        """
        conn = self._get_connection()
        rows = conn.execute("""
            SELECT user_id, user_name, enrolled_at, n_samples, embedding_dim
            FROM users
            ORDER BY enrolled_at DESC
        """).fetchall()

        return [dict(row) for row in rows]

    def get_user(self, identity_id: str) -> Optional[Dict[str, Any]]:
        """Get metadata for a single user, or None if not found."""
        conn = self._get_connection()
        row = conn.execute("""
            SELECT user_id, user_name, enrolled_at, n_samples, embedding_dim
            FROM users
            WHERE user_id = ?
        """, (identity_id,)).fetchone()

        return dict(row) if row is not None else None

    # ------------------------------------------------------------------
    # Access log
    # ------------------------------------------------------------------

    def append_access_event(self, event: AccessEvent) -> int:
        """
        Append an access attempt to the log.

        Returns:
            The log entry ID.

        Raises:
            PersistenceFailure: If the write fails.
        """
        conn = self._get_connection()

        try:
            cursor = conn.execute("""
                INSERT INTO access_logs
                (user_id, user_name, access_type, confidence, unlocked_duration, timestamp)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                event.identity_id,
                event.name,
                AccessOutcome(event.outcome).value,
                event.confidence,
                event.unlock_duration,
                event.timestamp,
            ))
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceFailure(f"Failed to log access event: {e}") from e

        log_id = cursor.lastrowid
        logger.debug(f"Logged access event: id={log_id}, user={event.identity_id}, "
                     f"outcome={AccessOutcome(event.outcome).value}, confidence={event.confidence}")
        return log_id

    def list_access_events(self, limit: int = 50) -> List[AccessEvent]:
        """
        Get the most recent access events, newest first.

        Args:
            limit: Maximum number of entries to return.
        """
        conn = self._get_connection()
        rows = conn.execute("""
            SELECT * FROM access_logs
            ORDER BY timestamp DESC, id DESC
            LIMIT ?
        """, (limit,)).fetchall()

        return [
            AccessEvent(
                outcome=AccessOutcome(row["access_type"]),
                confidence=row["confidence"],
                identity_id=row["user_id"],
                name=row["user_name"],
                unlock_duration=row["unlocked_duration"],
                timestamp=row["timestamp"],
                event_id=row["id"],
            )
            for row in rows
        ]

    def get_stats(self) -> Dict[str, Any]:
        """
        Get statistics about the store.

        Returns:
            Dictionary with total_users, total_access_events,
            granted and denied counts.
        """
        conn = self._get_connection()

        user_count = conn.execute("SELECT COUNT(*) AS count FROM users").fetchone()["count"]
        outcome_rows = conn.execute(
            "SELECT access_type, COUNT(*) AS count FROM access_logs GROUP BY access_type"
        ).fetchall()
        outcomes = {row["access_type"]: row["count"] for row in outcome_rows}

        return {
            "total_users": user_count or 0,
            "total_access_events": sum(outcomes.values()),
            "granted": outcomes.get(AccessOutcome.GRANTED.value, 0),
            "denied": outcomes.get(AccessOutcome.DENIED.value, 0),
        }

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.debug("Database connection closed")

    def __del__(self):
        self.close()


# Singleton instance for the store
_store_instance: Optional[IdentityStore] = None


def get_identity_store(
    identities_dir: Optional[str] = None,
    db_path: Optional[str] = None
) -> IdentityStore:
    """
    Get or create the singleton IdentityStore instance.

    Args:
        identities_dir: Path to embedding storage directory.
                        If None, uses value from config.
        db_path: Path to SQLite database.
                 If None, uses value from config.
    """
    global _store_instance

    if _store_instance is None:
        if identities_dir is None or db_path is None:
            from doorlock.config import get_storage_config, get_project_root

            storage_config = get_storage_config()
            project_root = get_project_root()

            if identities_dir is None:
                identities_dir = str(project_root / storage_config["identities_dir"])
            if db_path is None:
                db_path = str(project_root / storage_config["db_path"])

        _store_instance = IdentityStore(identities_dir, db_path)

    return _store_instance
