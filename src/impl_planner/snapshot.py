"""Data snapshot handling: change-log flattening and status resolution.

A snapshot may be stored as an ``_original`` document plus an append-only
``_changeLog`` of ``{"label", "delta"}`` entries. Readers always work on the
materialized view produced by :func:`merge_change_log`.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from collections.abc import Mapping
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from impl_planner.models import DEFAULT_STATUS

logger = logging.getLogger(__name__)

ORIGINAL_KEY = "_original"
CHANGE_LOG_KEY = "_changeLog"


def set_path(target: dict[str, Any], dotted: str, value: Any) -> None:
    """Assign ``value`` at a dotted path, creating nested dicts as needed."""
    parts = dotted.split(".")
    current = target
    for part in parts[:-1]:
        child = current.get(part)
        if not isinstance(child, dict):
            child = {}
            current[part] = child
        current = child
    current[parts[-1]] = value


def apply_delta(target: dict[str, Any], delta: Mapping[str, Any]) -> dict[str, Any]:
    """Apply one change-log delta in place; dotted keys merge into nested dicts."""
    for key, value in delta.items():
        if "." in key:
            set_path(target, key, copy.deepcopy(value))
        else:
            target[key] = copy.deepcopy(value)
    return target


def has_change_log(snapshot: Mapping[str, Any] | None) -> bool:
    return bool(snapshot) and ORIGINAL_KEY in snapshot and CHANGE_LOG_KEY in snapshot


def merge_change_log(snapshot: Mapping[str, Any] | None) -> dict[str, Any]:
    """Return the materialized view of a snapshot.

    Later deltas override earlier ones. The change log itself is kept on the
    view so ``previousStatus`` requirements can inspect visited statuses.
    The input is never mutated.
    """
    if not snapshot:
        return {}
    if not has_change_log(snapshot):
        return copy.deepcopy(dict(snapshot))

    merged = copy.deepcopy(dict(snapshot[ORIGINAL_KEY] or {}))
    change_log = list(snapshot[CHANGE_LOG_KEY] or [])
    for entry in change_log:
        apply_delta(merged, entry.get("delta") or {})
    merged[CHANGE_LOG_KEY] = copy.deepcopy(change_log)
    return merged


def get_global_status(
    snapshot: Mapping[str, Any] | None, default: str = DEFAULT_STATUS
) -> str:
    merged = merge_change_log(snapshot)
    return merged.get("status") or merged.get("_currentStatus") or default


def get_entity_status(
    snapshot: Mapping[str, Any] | None, entity: str, default: str = DEFAULT_STATUS
) -> str:
    merged = merge_change_log(snapshot)
    value = merged.get(entity)
    if isinstance(value, Mapping) and value.get("status"):
        return value["status"]
    return default


def get_current_status(
    snapshot: Mapping[str, Any] | None,
    entity: str | None = None,
    default: str = DEFAULT_STATUS,
) -> str:
    """Entity status when the entity has one, else the global status."""
    merged = merge_change_log(snapshot)
    if entity:
        value = merged.get(entity)
        if isinstance(value, Mapping) and value.get("status"):
            return value["status"]
    return merged.get("status") or merged.get("_currentStatus") or default


def entity_statuses(snapshot: Mapping[str, Any] | None) -> dict[str, str]:
    """All top-level nested objects carrying their own ``status``."""
    merged = merge_change_log(snapshot)
    return {
        key: value["status"]
        for key, value in merged.items()
        if not key.startswith("_") and isinstance(value, Mapping) and value.get("status")
    }


class SnapshotStore:
    """Single-writer JSON persistence for a snapshot and its change log.

    Every mutation goes through ``load -> apply -> save`` under one lock so
    step executions never race on the file.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {ORIGINAL_KEY: {}, CHANGE_LOG_KEY: []}
        data = json.loads(self.path.read_text())
        if not isinstance(data, dict):
            raise ValueError(f"Snapshot at {self.path} is not a JSON object")
        if not has_change_log(data):
            data = {ORIGINAL_KEY: data, CHANGE_LOG_KEY: []}
        return data

    def _write(self, data: Mapping[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2, default=str) + "\n")

    def load_raw(self) -> dict[str, Any]:
        with self._lock:
            return self._read()

    def load(self) -> dict[str, Any]:
        """Materialized view of the stored snapshot."""
        return merge_change_log(self.load_raw())

    def record_change(self, label: str, delta: Mapping[str, Any]) -> dict[str, Any]:
        """Append a delta to the change log, persist, and return the new view."""
        with self._lock:
            data = self._read()
            entry: dict[str, Any] = {
                "label": label,
                "delta": dict(delta),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
            if isinstance(delta.get("status"), str):
                entry["status"] = delta["status"]
            data[CHANGE_LOG_KEY].append(entry)
            self._write(data)
            logger.debug("Recorded change %r (%d keys)", label, len(delta))
        return merge_change_log(data)

    def reset(self, original: Mapping[str, Any] | None = None) -> None:
        with self._lock:
            self._write({ORIGINAL_KEY: dict(original or {}), CHANGE_LOG_KEY: []})


def merge_into(snapshot: dict[str, Any], delta: Mapping[str, Any], label: str) -> dict[str, Any]:
    """Fold an executed step's result into a caller-owned snapshot in place.

    Change-log snapshots get a new log entry; plain snapshots are updated.
    """
    if has_change_log(snapshot):
        entry: dict[str, Any] = {"label": label, "delta": copy.deepcopy(dict(delta))}
        if isinstance(delta.get("status"), str):
            entry["status"] = delta["status"]
        snapshot[CHANGE_LOG_KEY].append(entry)
    else:
        apply_delta(snapshot, delta)
    return snapshot
