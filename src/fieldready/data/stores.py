"""
Document stores and the typed adapters built on them.

The backing database only needs per-key get/upsert, append and list
(``DocumentStore``). Two implementations are provided: an in-memory store
for tests and embedding, and a JSON-file store (one file per document)
used by the command line tools. Typed adapters translate documents into
the pydantic contracts and degrade malformed documents to defaults.
"""
import copy
import json
import logging
import os
import re
import tempfile
import threading
import uuid
from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np
from pydantic import ValidationError

from fieldready.core import constants as C
from fieldready.core.config import TuningConfig, get_config
from fieldready.core.exceptions import ErrorContext, PersistenceError
from fieldready.core.types import Document, DocumentStore, EpochMs, FieldID
from fieldready.data.contracts import (
    CalibrationAdjustment, CooldownState, GlobalTuning, StorageState, coerce_float
)

logger = logging.getLogger(__name__)

_DOC_ID_RE = re.compile(r"^[A-Za-z0-9_.\-]+$")


class InMemoryDocumentStore:
    """Thread-safe dict-of-dicts store; values are deep-copied in and out"""

    def __init__(self, initial: Optional[Dict[str, Dict[str, Document]]] = None):
        self._data: Dict[str, Dict[str, Document]] = copy.deepcopy(initial or {})
        self._lock = threading.Lock()

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        with self._lock:
            doc = self._data.get(collection, {}).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def set(self, collection: str, doc_id: str, data: Document, merge: bool = True) -> None:
        with self._lock:
            docs = self._data.setdefault(collection, {})
            if merge and doc_id in docs:
                docs[doc_id].update(copy.deepcopy(data))
            else:
                docs[doc_id] = copy.deepcopy(data)

    def add(self, collection: str, data: Document) -> str:
        doc_id = uuid.uuid4().hex
        self.set(collection, doc_id, data, merge=False)
        return doc_id

    def list(self, collection: str) -> Dict[str, Document]:
        with self._lock:
            return copy.deepcopy(self._data.get(collection, {}))


class JsonFileDocumentStore:
    """
    One JSON file per document under ``base_dir/<collection>/<doc_id>.json``.

    Writes go to a temporary file in the same directory and are moved into
    place with ``os.replace``, so a reader never sees a partial document.
    """

    def __init__(self, base_dir: Union[str, Path]):
        self.base_dir = Path(base_dir)
        self._lock = threading.Lock()
        self.logger = logging.getLogger(f"{__name__}.JsonFileDocumentStore")

    def _path(self, collection: str, doc_id: str) -> Path:
        for part in (collection, doc_id):
            if not _DOC_ID_RE.match(part) or part in (".", ".."):
                raise ValueError(f"Invalid collection or document id: {part!r}")
        return self.base_dir / collection / f"{doc_id}.json"

    def _read(self, path: Path) -> Optional[Document]:
        try:
            with open(path, encoding="utf-8") as f:
                doc = json.load(f)
        except FileNotFoundError:
            return None
        except json.JSONDecodeError as e:
            self.logger.warning(f"Unreadable document {path}: {e}")
            return None
        except OSError as e:
            raise PersistenceError(
                f"Failed to read {path}: {e}",
                ErrorContext(component="store", operation="get"),
            )
        if not isinstance(doc, dict):
            self.logger.warning(f"Document {path} is not an object; ignoring")
            return None
        return doc

    def _write(self, path: Path, doc: Document):
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(doc, f, indent=2, sort_keys=True, default=str)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise PersistenceError(
                f"Failed to write {path}: {e}",
                ErrorContext(component="store", operation="set"),
            )

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        return self._read(self._path(collection, doc_id))

    def set(self, collection: str, doc_id: str, data: Document, merge: bool = True) -> None:
        path = self._path(collection, doc_id)
        with self._lock:
            doc = dict(data)
            if merge:
                existing = self._read(path) or {}
                existing.update(data)
                doc = existing
            self._write(path, doc)

    def add(self, collection: str, data: Document) -> str:
        doc_id = uuid.uuid4().hex
        self.set(collection, doc_id, data, merge=False)
        return doc_id

    def list(self, collection: str) -> Dict[str, Document]:
        folder = self.base_dir / collection
        if not folder.is_dir():
            return {}
        docs = {}
        for path in sorted(folder.glob("*.json")):
            doc = self._read(path)
            if doc is not None:
                docs[path.stem] = doc
        return docs


class TruthStateStore:
    """Per-field last-known storage"""

    def __init__(self, store: DocumentStore, collection: str = C.COLLECTIONS["truth"]):
        self.store = store
        self.collection = collection
        self.logger = logging.getLogger(f"{__name__}.TruthStateStore")

    def get(self, field_id: FieldID) -> Optional[StorageState]:
        doc = self.store.get(self.collection, field_id)
        if doc is None:
            return None
        try:
            return StorageState.model_validate(doc)
        except ValidationError as e:
            self.logger.warning(f"Ignoring malformed truth for {field_id}: {e.error_count()} errors")
            return None

    def set(self, field_id: FieldID, state: StorageState) -> None:
        """Full-document write; repeating it is harmless"""
        self.store.set(self.collection, field_id, state.to_document(), merge=False)

    def get_many(self, field_ids: List[FieldID]) -> Dict[FieldID, Optional[StorageState]]:
        return {fid: self.get(fid) for fid in field_ids}


class ThresholdStore:
    """
    Per-operation readiness thresholds.

    Accepts either ``{"thresholds": {op: value}}`` or a flat ``{op: value}``
    document. Missing or malformed values fall back to the default.
    """

    def __init__(self, store: DocumentStore, collection: str = C.COLLECTIONS["thresholds"],
                 doc_id: str = C.DEFAULT_DOC_ID, default: int = C.DEFAULT_THRESHOLD):
        self.store = store
        self.collection = collection
        self.doc_id = doc_id
        self.default = default
        self.logger = logging.getLogger(f"{__name__}.ThresholdStore")

    def _table(self) -> Dict:
        doc = self.store.get(self.collection, self.doc_id) or {}
        table = doc.get("thresholds", doc)
        if not isinstance(table, dict):
            self.logger.warning("Threshold document is malformed; using defaults")
            return {}
        return table

    def _coerce(self, op_key: str, raw) -> int:
        value = coerce_float(raw)
        if value is None:
            if raw is not None:
                self.logger.warning(f"Threshold for {op_key} is not numeric: {raw!r}")
            return self.default
        return int(np.clip(round(value), C.READINESS_MIN, C.READINESS_MAX))

    def get(self, op_key: str) -> int:
        return self._coerce(op_key, self._table().get(op_key))

    def get_all(self) -> Dict[str, int]:
        return {k: self._coerce(k, v) for k, v in self._table().items()}

    def set(self, op_key: str, value: int) -> None:
        table = self.get_all()
        table[op_key] = int(np.clip(round(value), C.READINESS_MIN, C.READINESS_MAX))
        self.store.set(self.collection, self.doc_id, {"thresholds": table}, merge=True)


class GlobalTuningStore:
    """The single fleet-wide tuning document, read back within the tuning bounds"""

    def __init__(self, store: DocumentStore, collection: str = C.COLLECTIONS["tuning"],
                 doc_id: str = C.DEFAULT_DOC_ID, config: Optional[TuningConfig] = None):
        self.store = store
        self.collection = collection
        self.doc_id = doc_id
        self.config = config or get_config().tuning
        self.logger = logging.getLogger(f"{__name__}.GlobalTuningStore")

    def get(self) -> GlobalTuning:
        doc = self.store.get(self.collection, self.doc_id)
        if doc is None:
            return GlobalTuning()
        try:
            return GlobalTuning.model_validate(doc).clamped(self.config.mult_min, self.config.mult_max)
        except ValidationError as e:
            self.logger.warning(f"Tuning document is malformed; using neutral tuning: {e.error_count()} errors")
            return GlobalTuning()

    def set(self, tuning: GlobalTuning) -> None:
        self.store.set(self.collection, self.doc_id, tuning.to_document(), merge=False)


class CooldownLock:
    """Time-based lock preventing repeated global calibration"""

    def __init__(self, store: DocumentStore, cooldown_hours: float = C.DEFAULT_COOLDOWN_HOURS,
                 collection: str = C.COLLECTIONS["weights"], doc_id: str = C.DEFAULT_DOC_ID):
        self.store = store
        self.cooldown_hours = cooldown_hours
        self.collection = collection
        self.doc_id = doc_id
        self.logger = logging.getLogger(f"{__name__}.CooldownLock")

    def get(self) -> CooldownState:
        doc = self.store.get(self.collection, self.doc_id)
        if doc is None:
            return CooldownState(cooldown_hours=self.cooldown_hours)
        try:
            return CooldownState.model_validate(doc)
        except ValidationError:
            self.logger.warning("Cooldown document is malformed; treating as unlocked")
            return CooldownState(cooldown_hours=self.cooldown_hours)

    def set(self, now_ms: EpochMs, cooldown_hours: Optional[float] = None) -> CooldownState:
        """Start a new cooldown window at ``now_ms``, ``cooldown_hours`` long when given"""
        hours = self.cooldown_hours if cooldown_hours is None else cooldown_hours
        state = CooldownState(
            last_applied_ms=now_ms,
            next_allowed_ms=now_ms + int(round(hours * C.MS_PER_HOUR)),
            cooldown_hours=hours,
        )
        self.store.set(self.collection, self.doc_id, state.to_document(), merge=True)
        return state

    def is_locked(self, now_ms: EpochMs) -> bool:
        return self.get().is_locked(now_ms)


class AdjustmentLog:
    """Append-only audit trail of global calibrations"""

    def __init__(self, store: DocumentStore, collection: str = C.COLLECTIONS["adjustments"]):
        self.store = store
        self.collection = collection
        self.logger = logging.getLogger(f"{__name__}.AdjustmentLog")

    def add(self, adjustment: CalibrationAdjustment) -> str:
        self.store.set(self.collection, adjustment.id, adjustment.to_document(), merge=False)
        return adjustment.id

    def list(self) -> List[CalibrationAdjustment]:
        """All entries, oldest first"""
        entries = []
        for doc_id, doc in self.store.list(self.collection).items():
            try:
                entries.append(CalibrationAdjustment.model_validate({"id": doc_id, **doc}))
            except ValidationError:
                self.logger.warning(f"Skipping malformed adjustment {doc_id}")
        return sorted(entries, key=lambda a: (a.created_at_ms, a.id))


class StaticPermissionGate:
    """Permission gate with a fixed answer"""

    def __init__(self, allowed: bool = True):
        self.allowed = allowed

    def can_edit(self) -> bool:
        return self.allowed
