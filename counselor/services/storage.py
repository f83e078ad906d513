# counselor/services/storage.py
from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from counselor.db import get_sessionmaker
from counselor.errors import StorageFailure
from counselor.models import StorageEntry

logger = logging.getLogger(__name__)

SETTINGS_STORAGE_KEY = "settingFormData"
CONVERSATION_STORAGE_KEY = "conversationRecords"


class LocalStorage:
    """
    Key/value store with the browser localStorage contract: string keys,
    string values, missing keys read as None.

    Every database problem is re-raised as StorageFailure so callers only
    have one exception type to degrade on.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or get_sessionmaker()

    @contextmanager
    def _session(self):
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise StorageFailure(str(exc)) from exc
        finally:
            db.close()

    def get_item(self, key: str) -> Optional[str]:
        with self._session() as db:
            entry = db.get(StorageEntry, key)
            return entry.value if entry is not None else None

    def set_item(self, key: str, value: str) -> None:
        with self._session() as db:
            entry = db.get(StorageEntry, key)
            if entry is None:
                db.add(StorageEntry(key=key, value=value))
            else:
                entry.value = value

    def remove_item(self, key: str) -> None:
        with self._session() as db:
            entry = db.get(StorageEntry, key)
            if entry is not None:
                db.delete(entry)

    # ------------------------------------------------------------------
    # JSON helpers
    # ------------------------------------------------------------------

    def read_json(self, key: str) -> Any:
        """
        Parse the stored value. Raises StorageFailure on unreadable or
        malformed data; returns None if the key is missing.
        """
        raw = self.get_item(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StorageFailure(f"{key} holds malformed JSON: {exc}") from exc

    def write_json(self, key: str, value: Any) -> None:
        self.set_item(key, json.dumps(value, ensure_ascii=False))


def read_settings(storage: LocalStorage) -> Optional[dict]:
    """
    Stored patient settings, or None if absent or unreadable.
    """
    try:
        parsed = storage.read_json(SETTINGS_STORAGE_KEY)
    except StorageFailure as exc:
        logger.error("Failed to load settings: %s", exc)
        return None
    return parsed if isinstance(parsed, dict) else None


def read_hospital_name(storage: LocalStorage) -> str:
    settings = read_settings(storage)
    if settings and isinstance(settings.get("hospitalName"), str):
        return settings["hospitalName"]
    return ""
