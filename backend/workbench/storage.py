# workbench/storage.py
"""
Durable storage for the workbench state domains.

Everything is kept as JSON strings in a capacity-limited key/value store
(one row per key in `storage_entries`). The store behaves like browser
localStorage: every write is checked against a fixed quota, measured as the
sum of len(key) + len(value) over all entries, and refused with
QuotaExceededError when it would not fit.

StorageManager layers the per-domain get/save operations on top, including
the history retention rules (age cleanup, response truncation, item cap)
and the fallback chain used when history does not fit.
"""

import json
import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import TypeAdapter, ValidationError
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from . import config
from . import db as dbmod
from .errors import QuotaExceededError, StorageError
from .models import StorageEntry
from .monitoring import logger
from .schemas import (
    AppSettings,
    Collection,
    Environment,
    ExportSnapshot,
    ImportSnapshot,
    RequestHistory,
    StorageUsage,
)

STORAGE_KEYS = {
    "collections": "collections",
    "history": "history",
    "environments": "environments",
    "active_environment": "active-environment",
    "theme": "theme",
    "settings": "settings",
}

PREVIEW_CHARS = 1000
TRUNCATED_MESSAGE = "Response too large for history storage"
REMOVED_MESSAGE = "Data removed to save space"
MINIMAL_HISTORY_ITEMS = 10
QUOTA_CLEANUP_HISTORY_ITEMS = 20

_COLLECTIONS = TypeAdapter(List[Collection])
_HISTORY = TypeAdapter(List[RequestHistory])
_ENVIRONMENTS = TypeAdapter(List[Environment])


def to_json(value: Any) -> str:
    """Compact JSON, byte-for-byte what JSON.stringify produces for plain data."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


class KeyValueStore:
    """Capacity-limited string store over the storage_entries table."""

    def __init__(self, quota: Optional[int] = None, prefix: Optional[str] = None,
                 session_factory: Optional[Callable] = None):
        self.quota = config.STORAGE_QUOTA_BYTES if quota is None else quota
        self.prefix = config.STORAGE_KEY_PREFIX if prefix is None else prefix
        self._session_factory = session_factory

    def _session(self):
        # resolved per call so db.reconfigure() takes effect
        factory = self._session_factory or dbmod.get_session
        return factory()

    def get_item(self, key: str) -> Optional[str]:
        session = self._session()
        try:
            entry = session.get(StorageEntry, key)
            return entry.value if entry is not None else None
        except SQLAlchemyError as e:
            raise StorageError(f"Could not read {key!r}: {e}") from e
        finally:
            session.close()

    def set_item(self, key: str, value: str):
        session = self._session()
        try:
            used = (
                session.query(
                    func.coalesce(func.sum(func.length(StorageEntry.key) + func.length(StorageEntry.value)), 0)
                )
                .filter(StorageEntry.key.startswith(self.prefix, autoescape=True))
                .filter(StorageEntry.key != key)
                .scalar()
            )
            needed = int(used) + len(key) + len(value)
            if needed > self.quota:
                raise QuotaExceededError(key, needed, self.quota)

            entry = session.get(StorageEntry, key)
            if entry is None:
                session.add(StorageEntry(key=key, value=value))
            else:
                entry.value = value
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StorageError(f"Could not write {key!r}: {e}") from e
        finally:
            session.close()

    def remove_item(self, key: str):
        session = self._session()
        try:
            session.query(StorageEntry).filter(StorageEntry.key == key).delete()
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StorageError(f"Could not remove {key!r}: {e}") from e
        finally:
            session.close()

    def items(self) -> List[tuple]:
        """All (key, value) pairs in this store's namespace."""
        session = self._session()
        try:
            rows = (
                session.query(StorageEntry.key, StorageEntry.value)
                .filter(StorageEntry.key.startswith(self.prefix, autoescape=True))
                .all()
            )
            return [(k, v) for k, v in rows]
        except SQLAlchemyError as e:
            raise StorageError(f"Could not list storage entries: {e}") from e
        finally:
            session.close()


# ---------------------------------------------------------------------------
# History retention helpers (pure, operate on the JSON form of items)
# ---------------------------------------------------------------------------
def limit_response_size(response: Dict[str, Any], max_size: int) -> Dict[str, Any]:
    """
    Replace response["data"] with a bounded preview when the serialized
    response is larger than max_size. Status, headers and timing are kept.
    Already truncated responses are returned as-is.
    """
    data = response.get("data")
    if isinstance(data, dict) and data.get("_truncated"):
        return response

    serialized = to_json(response)
    if len(serialized) <= max_size:
        return response

    preview_source = data if isinstance(data, str) else to_json(data)
    return {
        **response,
        "data": {
            "_truncated": True,
            "_originalSize": len(serialized),
            "_message": TRUNCATED_MESSAGE,
            "_preview": preview_source[:PREVIEW_CHARS] + "...",
        },
    }


def _parse_timestamp(value: Any) -> Optional[datetime.datetime]:
    if not isinstance(value, str):
        return None
    try:
        ts = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=datetime.timezone.utc)
    return ts


def cleanup_history(items: List[Dict[str, Any]], max_age_days: int,
                    now: datetime.datetime) -> List[Dict[str, Any]]:
    cutoff = now - datetime.timedelta(days=max_age_days)
    kept = []
    for item in items:
        ts = _parse_timestamp(item.get("timestamp"))
        if ts is not None and ts >= cutoff:
            kept.append(item)
    return kept


def _minimal_response(response: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "status": response.get("status"),
        "statusText": response.get("statusText"),
        "headers": {},
        "data": {"_truncated": True, "_message": REMOVED_MESSAGE},
        "responseTime": response.get("responseTime"),
        "size": response.get("size"),
    }


def _keep_all(items):
    return items


def _keep_half(items):
    return items[: len(items) // 2]


def _keep_minimal(items):
    return [dict(item, response=_minimal_response(item["response"])) for item in items[:MINIMAL_HISTORY_ITEMS]]


def _drop_all(items):
    return None


# Ordered from lossless to most lossy; None means "remove the key".
HISTORY_FALLBACKS = (
    ("full", _keep_all),
    ("halved", _keep_half),
    ("minimal", _keep_minimal),
    ("cleared", _drop_all),
)


class StorageManager:
    """
    Per-domain persistence for collections, history, environments and settings.

    `confirm` and `on_warning` are UI collaborators: on_warning receives the
    "storage is full" message, confirm is asked whether old history should be
    cleared to make room. Both are optional.
    """

    def __init__(self, kv: Optional[KeyValueStore] = None,
                 confirm: Optional[Callable[[str], bool]] = None,
                 on_warning: Optional[Callable[[str], None]] = None,
                 clock: Optional[Callable[[], datetime.datetime]] = None):
        self.kv = kv if kv is not None else KeyValueStore()
        self.confirm = confirm
        self.on_warning = on_warning
        self._clock = clock or (lambda: datetime.datetime.now(datetime.timezone.utc))
        prefix = getattr(self.kv, "prefix", config.STORAGE_KEY_PREFIX)
        self.keys = {name: prefix + suffix for name, suffix in STORAGE_KEYS.items()}

    # -- reading -------------------------------------------------------------
    def _load(self, name: str, adapter: TypeAdapter):
        try:
            raw = self.kv.get_item(self.keys[name])
            if raw is None:
                return []
            return adapter.validate_json(raw)
        except (StorageError, ValidationError, ValueError) as e:
            logger.error("Error loading %s: %s", name, e)
            return []

    def get_collections(self) -> List[Collection]:
        return self._load("collections", _COLLECTIONS)

    def get_history(self) -> List[RequestHistory]:
        return self._load("history", _HISTORY)

    def get_environments(self) -> List[Environment]:
        return self._load("environments", _ENVIRONMENTS)

    def get_settings(self) -> AppSettings:
        defaults = AppSettings()
        try:
            raw = self.kv.get_item(self.keys["settings"])
            if raw is None:
                return defaults
            stored = json.loads(raw)
            if not isinstance(stored, dict):
                raise ValueError("settings must be an object")
            return AppSettings.model_validate({**defaults.to_json_dict(), **stored})
        except (StorageError, ValidationError, ValueError) as e:
            logger.error("Error loading settings: %s", e)
            return defaults

    def get_active_environment(self) -> Optional[str]:
        try:
            raw = self.kv.get_item(self.keys["active_environment"])
            if raw is None:
                return None
            value = json.loads(raw)
            return value if isinstance(value, str) else None
        except (StorageError, ValueError) as e:
            logger.error("Error loading active environment: %s", e)
            return None

    # -- writing -------------------------------------------------------------
    def save_settings(self, settings: Union[AppSettings, Dict[str, Any]]) -> bool:
        """Merge `settings` (camelCase keys when given as a dict) over the current ones."""
        partial = settings.to_json_dict() if isinstance(settings, AppSettings) else dict(settings)
        merged = AppSettings.model_validate({**self.get_settings().to_json_dict(), **partial})
        try:
            self.kv.set_item(self.keys["settings"], to_json(merged.to_json_dict()))
            return True
        except StorageError as e:
            logger.error("Error saving settings: %s", e)
            return False

    def save_collections(self, collections: List[Collection]) -> bool:
        return self._save_domain("collections", [c.to_json_dict() for c in collections])

    def save_environments(self, environments: List[Environment]) -> bool:
        return self._save_domain("environments", [e.to_json_dict() for e in environments])

    def set_active_environment(self, environment_id: Optional[str]):
        key = self.keys["active_environment"]
        try:
            if environment_id is None:
                self.kv.remove_item(key)
            else:
                self.kv.set_item(key, to_json(environment_id))
        except StorageError as e:
            logger.error("Error saving active environment: %s", e)

    def _save_domain(self, name: str, payload: List[Dict[str, Any]]) -> bool:
        try:
            self.kv.set_item(self.keys[name], to_json(payload))
            return True
        except StorageError as e:
            logger.error("Error saving %s: %s", name, e)
            self._handle_quota_exceeded(name)
            return False

    def save_history(self, history: List[RequestHistory]) -> str:
        """
        Apply retention settings and persist history.

        Returns the name of the fallback tier that succeeded ("full" when the
        list was stored as processed). Raises StorageError only when every
        tier, including clearing the key, failed.
        """
        settings = self.get_settings()
        items = [h.to_json_dict() for h in history]

        if settings.auto_cleanup:
            items = cleanup_history(items, settings.max_history_age, self._clock())

        items = [dict(item, response=limit_response_size(item["response"], settings.max_response_size))
                 for item in items]

        items = items[: settings.max_history_items]
        return self._save_history_with_fallback(items)

    def _save_history_with_fallback(self, items: List[Dict[str, Any]]) -> str:
        key = self.keys["history"]
        last_error = None
        for tier, (name, strategy) in enumerate(HISTORY_FALLBACKS):
            payload = strategy(items)
            try:
                if payload is None:
                    self.kv.remove_item(key)
                else:
                    self.kv.set_item(key, to_json(payload))
            except StorageError as e:
                last_error = e
                continue
            if tier > 0:
                logger.warning("History saved with fallback method %d (%s)", tier, name)
            return name

        logger.error("All history fallback methods failed: %s", last_error)
        raise last_error

    def _handle_quota_exceeded(self, data_type: str):
        logger.warning("Storage quota exceeded for %s. Attempting cleanup...", data_type)

        # free space by keeping only the most recent history
        try:
            raw = self.kv.get_item(self.keys["history"])
            if raw is not None:
                history = json.loads(raw)
                self.kv.set_item(self.keys["history"], to_json(history[:QUOTA_CLEANUP_HISTORY_ITEMS]))
                logger.info("Cleaned up history to free space")
        except (StorageError, ValueError, TypeError) as e:
            logger.error("Failed to cleanup history: %s", e)

        message = "Storage is full! Data may not be saved properly. Consider clearing old data."
        if self.on_warning is not None:
            self.on_warning(message)
        if self.confirm is not None and self.confirm(
            f"{message}\n\nWould you like to clear old history to free up space?"
        ):
            self.clear_history()

    # -- housekeeping ----------------------------------------------------------
    def clear_history(self):
        try:
            self.kv.remove_item(self.keys["history"])
        except StorageError as e:
            logger.error("Error clearing history: %s", e)

    def clear_all_data(self):
        try:
            for key in self.keys.values():
                self.kv.remove_item(key)
        except StorageError as e:
            logger.error("Error clearing all data: %s", e)

    def get_storage_usage(self) -> StorageUsage:
        total = self.kv.quota
        try:
            used = sum(len(k) + len(v) for k, v in self.kv.items())
        except StorageError:
            return StorageUsage(used=0, total=total, percentage=0.0)
        return StorageUsage(used=used, total=total, percentage=used / total * 100 if total else 0.0)

    # -- export / import -------------------------------------------------------
    def export_data(self) -> ExportSnapshot:
        return ExportSnapshot(
            collections=self.get_collections(),
            environments=self.get_environments(),
            history=self.get_history(),
            settings=self.get_settings(),
        )

    def import_data(self, snapshot: ImportSnapshot) -> bool:
        """
        Save every field present in the snapshot. A failing field does not
        stop the others; returns False if any of them failed.
        """
        steps = (
            ("collections", self.save_collections),
            ("environments", self.save_environments),
            ("history", self.save_history),
            ("settings", self.save_settings),
        )
        ok = True
        for field, save in steps:
            value = getattr(snapshot, field)
            if value is None:
                continue
            try:
                if save(value) is False:
                    ok = False
            except (StorageError, ValidationError) as e:
                logger.error("Error importing %s: %s", field, e)
                ok = False
        return ok
