"""
Key-value persistence for members, session history and live session state.

Each key is stored as a JSON document. Absent keys are a cold start and
malformed values fall back to the seeded initial state.
"""
import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, List, Optional

from veriattend.attendance.errors import PersistenceWriteFailure
from veriattend.attendance.models import Member, MemberRole, Session
from veriattend.attendance.passwords import hash_password
from veriattend.utils.config import config
from veriattend.utils.logger import logger

MEMBERS_KEY = "members"
HISTORY_KEY = "sessionHistory"
LOGGED_IN_USER_KEY = "loggedInUser"
CURRENT_SESSION_KEY = "currentSession"

DEFAULT_ADMIN_ID = "admin_user"
DEFAULT_ADMIN_NAME = "Admin"
DEFAULT_ADMIN_PASSWORD = "password"


class KeyValueStore:
    """Minimal string key-value interface."""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str):
        raise NotImplementedError

    def delete(self, key: str):
        raise NotImplementedError


class MemoryStore(KeyValueStore):
    """In-process store used for headless runs and tests."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str):
        with self._lock:
            self._data[key] = value

    def delete(self, key: str):
        with self._lock:
            self._data.pop(key, None)


class JsonFileStore(KeyValueStore):
    """One JSON file per key under a data directory."""

    def __init__(self, data_dir: str = None, prefix: str = None):
        self.data_dir = Path(data_dir or config.storage.data_dir)
        self.prefix = config.storage.key_prefix if prefix is None else prefix
        self._lock = threading.Lock()

    def _path(self, key: str) -> Path:
        return self.data_dir / f"{self.prefix}{key}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        with self._lock:
            return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str):
        path = self._path(key)
        with self._lock:
            path.parent.mkdir(parents=True, exist_ok=True)
            # Write to a temp file then replace, so readers never see a partial file
            fd, temp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(value)
                os.replace(temp_path, path)
            except Exception:
                if os.path.exists(temp_path):
                    os.remove(temp_path)
                raise

    def delete(self, key: str):
        with self._lock:
            path = self._path(key)
            if path.exists():
                path.unlink()


def initial_members() -> List[Member]:
    """Seed registry content: a single default admin."""
    return [
        Member(
            id=DEFAULT_ADMIN_ID,
            name=DEFAULT_ADMIN_NAME,
            role=MemberRole.ADMIN,
            password_hash=hash_password(DEFAULT_ADMIN_PASSWORD),
        )
    ]


class AttendanceRepository:
    """Typed access to the persisted collections."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def _read_json(self, key: str):
        raw = self.store.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def _write_json(self, key: str, value):
        try:
            self.store.set(key, json.dumps(value))
        except Exception as e:
            raise PersistenceWriteFailure(f"Failed to save '{key}': {e}") from e

    def load_members(self) -> List[Member]:
        try:
            data = self._read_json(MEMBERS_KEY)
            if data is None:
                logger.info("No stored members found, seeding default admin")
                return initial_members()
            return [Member.from_dict(item) for item in data]
        except Exception as e:
            logger.error(f"Failed to load members from storage: {e}")
            return initial_members()

    def save_members(self, members: List[Member]):
        self._write_json(MEMBERS_KEY, [m.to_dict() for m in members])

    def load_history_records(self) -> List[dict]:
        """Raw history records. Projection to history-safe shape happens in the history store."""
        try:
            data = self._read_json(HISTORY_KEY)
            if data is None:
                return []
            if not isinstance(data, list):
                raise ValueError("session history must be a list")
            return data
        except Exception as e:
            logger.error(f"Failed to load session history from storage: {e}")
            return []

    def save_history_records(self, records: List[dict]):
        self._write_json(HISTORY_KEY, records)

    def load_current_session(self) -> Optional[Session]:
        try:
            data = self._read_json(CURRENT_SESSION_KEY)
            return Session.from_dict(data) if data else None
        except Exception as e:
            logger.error(f"Failed to load current session from storage: {e}")
            return None

    def save_current_session(self, session: Optional[Session]):
        if session is None:
            try:
                self.store.delete(CURRENT_SESSION_KEY)
            except Exception as e:
                raise PersistenceWriteFailure(f"Failed to clear current session: {e}") from e
            return
        self._write_json(CURRENT_SESSION_KEY, session.to_dict())

    def load_logged_in_user_id(self) -> Optional[str]:
        try:
            data = self._read_json(LOGGED_IN_USER_KEY)
            return data.get("id") if isinstance(data, dict) else None
        except Exception as e:
            logger.error(f"Failed to load logged in user from storage: {e}")
            return None

    def save_logged_in_user_id(self, member_id: Optional[str]):
        if member_id is None:
            try:
                self.store.delete(LOGGED_IN_USER_KEY)
            except Exception as e:
                raise PersistenceWriteFailure(f"Failed to clear logged in user: {e}") from e
            return
        self._write_json(LOGGED_IN_USER_KEY, {"id": member_id})
