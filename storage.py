"""Snapshot stores backing the ledger's save/load/clear persistence port.

Every store speaks plain JSON-compatible dicts; the engine owns the conversion
to and from its models. Adapter failures are wrapped in ``StorageError`` so the
engine can report them without knowing which backend is configured.
"""

from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from typing import Any, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from config import Settings, get_settings
from database import session_scope
from models import LedgerSnapshot

logger = logging.getLogger(__name__)

Snapshot = dict[str, Any]


class StorageError(RuntimeError):
    pass


class SnapshotStore(Protocol):
    def save(self, snapshot: Snapshot) -> None: ...

    def load(self) -> Optional[Snapshot]: ...

    def clear(self) -> None: ...


class MemoryStore:
    def __init__(self, initial: Optional[Snapshot] = None) -> None:
        self._data: Optional[Snapshot] = copy.deepcopy(initial)
        self.saves = 0

    def save(self, snapshot: Snapshot) -> None:
        self._data = copy.deepcopy(snapshot)
        self.saves += 1

    def load(self) -> Optional[Snapshot]:
        return copy.deepcopy(self._data)

    def clear(self) -> None:
        self._data = None


class JsonFileStore:
    def __init__(self, path: Path) -> None:
        self.path = path

    def save(self, snapshot: Snapshot) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("w", encoding="utf-8") as handle:
                json.dump(snapshot, handle, indent=2, sort_keys=True)
            tmp.replace(self.path)
        except (OSError, TypeError, ValueError) as exc:
            raise StorageError(f"Could not write snapshot to {self.path}") from exc
        logger.info(f"snapshot_saved: path={self.path}")

    def load(self) -> Optional[Snapshot]:
        if not self.path.exists():
            logger.info(f"snapshot_missing: path={self.path}")
            return None
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError(f"Could not read snapshot from {self.path}") from exc
        if not isinstance(data, dict):
            raise StorageError(f"Snapshot in {self.path} is not an object")
        return data

    def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Could not remove snapshot {self.path}") from exc
        logger.info(f"snapshot_cleared: path={self.path}")


class SqlSnapshotStore:
    def __init__(self, key: str, factory: Optional[sessionmaker] = None) -> None:
        self.key = key
        self.factory = factory

    def save(self, snapshot: Snapshot) -> None:
        try:
            payload = json.dumps(snapshot, sort_keys=True)
        except (TypeError, ValueError) as exc:
            raise StorageError("Snapshot is not JSON serializable") from exc
        try:
            with session_scope(self.factory) as session:
                row = session.scalar(
                    select(LedgerSnapshot).where(LedgerSnapshot.key == self.key)
                )
                if row is None:
                    session.add(LedgerSnapshot(key=self.key, payload=payload))
                else:
                    row.payload = payload
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not save snapshot {self.key!r}") from exc
        logger.info(f"snapshot_saved: key={self.key} bytes={len(payload)}")

    def load(self) -> Optional[Snapshot]:
        try:
            with session_scope(self.factory) as session:
                payload = session.scalar(
                    select(LedgerSnapshot.payload).where(
                        LedgerSnapshot.key == self.key
                    )
                )
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not load snapshot {self.key!r}") from exc
        if payload is None:
            logger.info(f"snapshot_missing: key={self.key}")
            return None
        try:
            return json.loads(payload)
        except json.JSONDecodeError as exc:
            raise StorageError(f"Snapshot {self.key!r} is not valid JSON") from exc

    def clear(self) -> None:
        try:
            with session_scope(self.factory) as session:
                row = session.scalar(
                    select(LedgerSnapshot).where(LedgerSnapshot.key == self.key)
                )
                if row is not None:
                    session.delete(row)
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not clear snapshot {self.key!r}") from exc
        logger.info(f"snapshot_cleared: key={self.key}")


def build_store(settings: Optional[Settings] = None) -> SnapshotStore:
    settings = settings or get_settings()
    if settings.storage == "memory":
        return MemoryStore()
    if settings.storage == "json":
        return JsonFileStore(settings.data_dir / f"{settings.snapshot_key}.json")
    if settings.storage == "sql":
        return SqlSnapshotStore(settings.snapshot_key)
    raise ValueError(f"Unsupported storage backend: {settings.storage}")
