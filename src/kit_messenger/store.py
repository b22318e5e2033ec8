"""Durable single-slot storage for the application state."""

from __future__ import annotations

import json
import logging
import os
import secrets
import sqlite3
import string
import threading
import time
from pathlib import Path
from typing import Optional

from .state import DEFAULT_LANG, AppState, default_state, state_from_dict, state_to_dict

logger = logging.getLogger(__name__)

STORAGE_KEY = "kit-messenger"
_BASE36 = string.digits + string.ascii_lowercase


def _now_ms() -> int:
    return int(time.time() * 1000)


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def new_id() -> str:
    """Return an opaque id made of random and wall-clock components."""

    random_part = "".join(secrets.choice(_BASE36) for _ in range(8))
    return random_part + _base36(_now_ms())


def encode_state(state: AppState) -> str:
    return json.dumps(state_to_dict(state), ensure_ascii=False, sort_keys=True)


def decode_state(payload: Optional[str], default_lang: str = DEFAULT_LANG) -> AppState:
    """Decode a stored payload; unreadable payloads yield the default state."""

    if not payload:
        return default_state(default_lang)
    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, ValueError):
        logger.warning("discarding unreadable persisted state")
        return default_state(default_lang)
    if not isinstance(data, dict):
        logger.warning("discarding persisted state that is not an object")
        return default_state(default_lang)
    return state_from_dict(data, default_lang)


class InMemoryStateStore:
    """Keeps the serialised slot in memory; every load decodes a fresh copy."""

    def __init__(self, default_lang: str = DEFAULT_LANG) -> None:
        self.default_lang = default_lang
        self._payload: Optional[str] = None
        self._lock = threading.Lock()

    def load(self) -> AppState:
        with self._lock:
            payload = self._payload
        return decode_state(payload, self.default_lang)

    def save(self, state: AppState) -> None:
        payload = encode_state(state)
        with self._lock:
            self._payload = payload

    def write_raw(self, payload: Optional[str]) -> None:
        with self._lock:
            self._payload = payload

    def close(self) -> None:
        return None


class JsonFileStateStore:
    """One JSON document on disk, replaced atomically on every save."""

    def __init__(self, path: Path | str, default_lang: str = DEFAULT_LANG) -> None:
        self.path = Path(path).expanduser()
        self.default_lang = default_lang

    def load(self) -> AppState:
        try:
            payload = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return default_state(self.default_lang)
        except (OSError, UnicodeDecodeError):
            logger.warning("could not read persisted state at %s", self.path)
            return default_state(self.default_lang)
        return decode_state(payload, self.default_lang)

    def save(self, state: AppState) -> None:
        self.write_raw(encode_state(state))

    def write_raw(self, payload: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, self.path)

    def close(self) -> None:
        return None


class SQLiteStateStore:
    """Single key/value slot in a SQLite database shared by several processes."""

    def __init__(self, db_path: Path | str, default_lang: str = DEFAULT_LANG, key: str = STORAGE_KEY) -> None:
        self.default_lang = default_lang
        self.key = key
        self._lock = threading.Lock()
        Path(db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(Path(db_path).expanduser()), check_same_thread=False, isolation_level=None)
        self._configure()
        self._apply_migrations()

    def _configure(self) -> None:
        cursor = self._conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()

    def _apply_migrations(self) -> None:
        user_version = self._conn.execute("PRAGMA user_version").fetchone()[0]
        if user_version == 0:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS slots (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at_ms INTEGER NOT NULL
                )
                """
            )
            self._conn.execute("PRAGMA user_version = 1")
        elif user_version != 1:
            raise ValueError(f"Unsupported schema version: {user_version}")

    def load(self) -> AppState:
        with self._lock:
            row = self._conn.execute("SELECT value FROM slots WHERE key=?", (self.key,)).fetchone()
        return decode_state(row[0] if row else None, self.default_lang)

    def save(self, state: AppState) -> None:
        self.write_raw(encode_state(state))

    def write_raw(self, payload: str) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO slots (key, value, updated_at_ms) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at_ms=excluded.updated_at_ms
                """,
                (self.key, payload, _now_ms()),
            )

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def open_store(path: Path | str | None, default_lang: str = DEFAULT_LANG):
    """Pick a store implementation from the configured state path."""

    if path is None:
        return InMemoryStateStore(default_lang)
    target = Path(path).expanduser()
    if target.suffix in (".db", ".sqlite", ".sqlite3"):
        return SQLiteStateStore(target, default_lang)
    return JsonFileStateStore(target, default_lang)
