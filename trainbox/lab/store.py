# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Persistent records of reattachable sessions.

Maintains a JSON-backed mapping from ``user:environment`` to the session
record.  Every SSH login runs its own process, so the file is re-read
before each write and replaced atomically; concurrent writers can still
lose an update, which only means a session will not be offered for
reattachment.

The launch path only ever inserts (``record_session``).  Lookup and
removal serve the reattach path and the expiry sweep.
"""

from __future__ import annotations

import json
import logging
import tempfile
import threading
from dataclasses import asdict, dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

from trainbox.lab.types import Session


logger = logging.getLogger(__name__)

STORE_FILE_NAME = "sessions.json"


@dataclass(frozen=True)
class SessionRecord:
    """A reattachable session.

    Attributes:
        user: User identity.
        environment: Environment base name.
        container: Container name.
        created_at: ISO 8601 timestamp of the first insert.
    """

    user: str
    environment: str
    container: str
    created_at: str

    @property
    def created(self) -> datetime:
        """Parsed ``created_at`` (naive timestamps are taken as UTC)."""
        created = datetime.fromisoformat(self.created_at)
        if created.tzinfo is None:
            created = created.replace(tzinfo=UTC)
        return created


class SessionStore:
    """File-backed session records.

    Thread-safe via an internal lock.

    Args:
        state_dir: Directory for persistent state (created on first write).
    """

    def __init__(self, state_dir: Path) -> None:
        self._path = state_dir / STORE_FILE_NAME
        self._lock = threading.Lock()
        self._data: dict[str, dict[str, str]] = {}
        self._load()

    @property
    def path(self) -> Path:
        """Backing file path."""
        return self._path

    def _load(self) -> None:
        """Load existing records from disk."""
        if not self._path.exists():
            return
        try:
            with open(self._path) as f:
                data = json.load(f)
            if isinstance(data, dict):
                self._data = data
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Failed to load session store %s: %s", self._path, e)

    def _save(self) -> bool:
        """Persist current records to disk atomically."""
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self._path.parent, suffix=".tmp")
            try:
                with open(fd, "w") as f:
                    json.dump(self._data, f, indent=2)
                Path(tmp).replace(self._path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as e:
            logger.warning("Failed to save session store %s: %s", self._path, e)
            return False
        return True

    @staticmethod
    def _key(user: str, environment: str) -> str:
        """Build composite key from user and environment."""
        return f"{user}:{environment}"

    def insert(self, user: str, environment: str, container: str) -> bool:
        """Record a reattachable session and persist.

        Inserting an existing key keeps the original ``created_at``.

        Args:
            user: User identity.
            environment: Environment base name.
            container: Container name.

        Returns:
            True if the record reached disk.  Write failures are logged,
            never raised.
        """
        key = self._key(user, environment)
        with self._lock:
            self._load()
            existing = self._data.get(key)
            created_at = (
                existing["created_at"]
                if existing and "created_at" in existing
                else datetime.now(UTC).isoformat()
            )
            self._data[key] = asdict(
                SessionRecord(
                    user=user,
                    environment=environment,
                    container=container,
                    created_at=created_at,
                )
            )
            return self._save()

    def get(self, user: str, environment: str) -> SessionRecord | None:
        """Look up the record for a user's environment.

        Returns:
            The record, or None if absent or malformed.
        """
        with self._lock:
            raw = self._data.get(self._key(user, environment))
        return _to_record(raw)

    def find_container(self, container: str) -> SessionRecord | None:
        """Look up a record by container name."""
        for record in self.records():
            if record.container == container:
                return record
        return None

    def remove(self, user: str, environment: str) -> bool:
        """Delete a record and persist.

        Returns:
            True if a record was removed.
        """
        key = self._key(user, environment)
        with self._lock:
            self._load()
            if key not in self._data:
                return False
            del self._data[key]
            self._save()
            return True

    def records(self) -> list[SessionRecord]:
        """All well-formed records."""
        with self._lock:
            raw_records = list(self._data.values())
        records = []
        for raw in raw_records:
            record = _to_record(raw)
            if record is not None:
                records.append(record)
        return records

    def expired(
        self, max_age: timedelta, now: datetime | None = None
    ) -> list[SessionRecord]:
        """Records created more than ``max_age`` ago.

        Args:
            max_age: Maximum record age.
            now: Reference time (defaults to current UTC time).
        """
        now = now or datetime.now(UTC)
        return [r for r in self.records() if now - r.created > max_age]


def _to_record(raw: object) -> SessionRecord | None:
    if not isinstance(raw, dict):
        return None
    try:
        datetime.fromisoformat(raw["created_at"])
        record = SessionRecord(
            user=raw["user"],
            environment=raw["environment"],
            container=raw["container"],
            created_at=raw["created_at"],
        )
    except (KeyError, TypeError, ValueError):
        logger.debug("Skipping malformed session record: %r", raw)
        return None
    return record


def record_session(store: SessionStore, session: Session) -> bool:
    """Record a session for reattachment if it is not ephemeral.

    Args:
        store: Session store.
        session: Launched session.

    Returns:
        True if a record was written.
    """
    if session.ephemeral:
        logger.debug(
            "Session %s is ephemeral, not recording", session.container_name
        )
        return False
    written = store.insert(
        session.user, session.environment, session.container_name
    )
    if written:
        logger.info("Recorded session %s", session.container_name)
    return written
