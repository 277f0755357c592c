import copy
import json
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from paytracker.config import SAVES_DIR
from paytracker.models import account_from_record, entry_from_record, template_from_record

logger = logging.getLogger(__name__)

ENTRIES = "entries"
ACCOUNTS = "accounts"
TEMPLATES = "templates"
PAYDAY_TEMPLATES = "paydayTemplates"
COLLECTIONS = (ENTRIES, ACCOUNTS, TEMPLATES, PAYDAY_TEMPLATES)

Subscriber = Callable[[List[dict]], None]


class StoreError(Exception):
    """A store operation failed; nothing is retried or rolled back."""


class RecordNotFound(StoreError):
    pass


class BackupFormatError(ValueError):
    pass


class Store(ABC):
    """Async key-value collections of JSON records, addressed by their ``id`` field."""

    @abstractmethod
    async def list(self, collection: str) -> List[dict]:
        ...

    @abstractmethod
    async def create(self, collection: str, record: dict) -> str:
        ...

    @abstractmethod
    async def update(self, collection: str, record_id: str, changes: dict) -> None:
        ...

    @abstractmethod
    async def delete(self, collection: str, record_id: str) -> None:
        ...

    def subscribe(self, collection: str, callback: Subscriber) -> Callable[[], None]:
        raise NotImplementedError(f"{type(self).__name__} does not support subscriptions")


class MemoryStore(Store):
    def __init__(self, data: Optional[Dict[str, Dict[str, dict]]] = None):
        self._data: Dict[str, Dict[str, dict]] = {name: {} for name in COLLECTIONS}
        self._subscribers: Dict[str, List[Subscriber]] = defaultdict(list)
        for name, records in (data or {}).items():
            self._collection(name).update(copy.deepcopy(records))

    def _collection(self, collection: str) -> Dict[str, dict]:
        if collection not in self._data:
            raise StoreError(f"Unknown collection '{collection}'")
        return self._data[collection]

    def _find(self, collection: str, record_id: str) -> str:
        for key, record in self._collection(collection).items():
            if record.get("id") == record_id:
                return key
        raise RecordNotFound(f"No record '{record_id}' in {collection}")

    def _snapshot(self, collection: str) -> List[dict]:
        return [copy.deepcopy(r) for r in self._collection(collection).values()]

    def _changed(self, collection: str) -> None:
        for callback in list(self._subscribers[collection]):
            callback(self._snapshot(collection))

    async def list(self, collection: str) -> List[dict]:
        return self._snapshot(collection)

    async def create(self, collection: str, record: dict) -> str:
        if "id" not in record:
            raise StoreError(f"Record for {collection} has no id")
        key = uuid4().hex
        self._collection(collection)[key] = copy.deepcopy(record)
        self._changed(collection)
        return key

    async def update(self, collection: str, record_id: str, changes: dict) -> None:
        key = self._find(collection, record_id)
        self._collection(collection)[key].update(copy.deepcopy(changes))
        self._changed(collection)

    async def delete(self, collection: str, record_id: str) -> None:
        key = self._find(collection, record_id)
        del self._collection(collection)[key]
        self._changed(collection)

    def subscribe(self, collection: str, callback: Subscriber) -> Callable[[], None]:
        """Call ``callback`` with the current records now and after every write."""
        self._collection(collection)
        self._subscribers[collection].append(callback)
        callback(self._snapshot(collection))

        def unsubscribe():
            if callback in self._subscribers[collection]:
                self._subscribers[collection].remove(callback)

        return unsubscribe


class JsonFileStore(MemoryStore):
    """MemoryStore written through to a JSON save file after every change."""

    def __init__(self, path: Path):
        self.path = Path(path)
        super().__init__(self._read())

    def _read(self) -> Dict[str, Dict[str, dict]]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            raise StoreError(f"Could not read save file {self.path}: {e}") from e
        collections = data.get("collections", {}) if isinstance(data, dict) else {}
        return {name: records for name, records in collections.items() if name in COLLECTIONS}

    def _changed(self, collection: str) -> None:
        self.save()
        super()._changed(collection)

    def save(self) -> None:
        payload = {
            "metadata": {
                "version": "2.0",
                "saved": date.today().isoformat(),
                "entry_count": len(self._data[ENTRIES]),
            },
            "collections": self._data,
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as e:
            raise StoreError(f"Could not write save file {self.path}: {e}") from e


def list_save_files(directory: Optional[Path] = None) -> List[str]:
    target = Path(directory or SAVES_DIR)
    if not target.exists():
        return []
    return sorted(f.stem for f in target.glob("*.json"))


# ===== BACKUP FILES =====

class BackupJSONEncoder(json.JSONEncoder):
    def default(self, obj):
        if isinstance(obj, date):
            return obj.isoformat()
        if hasattr(obj, "to_record"):
            return obj.to_record()
        return super().default(obj)


_NORMALIZERS = {
    ENTRIES: lambda r: entry_from_record(r).to_record(),
    ACCOUNTS: lambda r: account_from_record(r).to_record(),
    TEMPLATES: lambda r: template_from_record(r, "bill").to_record(),
    PAYDAY_TEMPLATES: lambda r: template_from_record(r, "payday").to_record(),
}


def normalize_records(collection: str, records: Any) -> List[dict]:
    """Canonical records for ``collection``; malformed ones are logged and skipped."""
    if not isinstance(records, list):
        return []
    normalizer = _NORMALIZERS[collection]
    result = []
    for record in records:
        try:
            result.append(normalizer(record))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            record_id = record.get("id") if isinstance(record, dict) else None
            logger.warning("Skipping invalid %s record %r: %s", collection, record_id, e)
    return result


def validate_backup(payload: Any) -> dict:
    if not isinstance(payload, dict):
        raise BackupFormatError("Invalid backup file format")
    if all(payload.get(key) is None for key in (ENTRIES, ACCOUNTS, TEMPLATES)):
        raise BackupFormatError("Invalid backup file format")
    return payload


async def export_backup(store: Store) -> dict:
    return {name: normalize_records(name, await store.list(name)) for name in COLLECTIONS}


async def import_backup(store: Store, payload: Any) -> Dict[str, int]:
    """Add every record of a backup to ``store``, one write at a time.

    Existing records are kept; importing the same backup twice duplicates it.
    """
    validate_backup(payload)
    counts = {}
    for name in COLLECTIONS:
        records = normalize_records(name, payload.get(name))
        for record in records:
            await store.create(name, record)
        counts[name] = len(records)
    logger.info("Imported backup: %s", counts)
    return counts


def write_backup(payload: dict, path: Path) -> Path:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(payload, cls=BackupJSONEncoder, indent=2), encoding="utf-8")
    return target


def read_backup(path: Path) -> dict:
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise BackupFormatError(f"Invalid backup file format: {e}") from e
    return validate_backup(payload)
