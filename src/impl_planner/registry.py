"""State registry, descriptor loading and the discovery cache.

The registry maps status names to implication ids. Descriptors live in
``<id>.yaml``/``<id>.yml``/``<id>.json`` files below the configured
implications directories and are loaded through an explicit
:class:`DescriptorCache` that planners invalidate before every load.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable, Iterator, Mapping
from pathlib import Path
from typing import Any, Protocol

import yaml

from impl_planner.models import DescriptorError, ImplicationDescriptor, ImplicationId

logger = logging.getLogger(__name__)

DESCRIPTOR_SUFFIXES = (".yaml", ".yml", ".json")


class DescriptorNotFoundError(DescriptorError):
    """Raised when no descriptor file exists for an implication id."""


class StateRegistry:
    """Read-only mapping from status name to implication id."""

    def __init__(self, entries: Mapping[str, str] | None = None) -> None:
        self._entries: dict[str, ImplicationId] = {
            str(k): ImplicationId(str(v)) for k, v in (entries or {}).items()
        }

    @classmethod
    def from_file(cls, path: Path) -> StateRegistry:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"No state registry at {path}")
        try:
            data = json.loads(path.read_text())
        except json.JSONDecodeError as e:
            raise DescriptorError(f"Invalid registry JSON in {path}: {e}") from e
        if not isinstance(data, dict):
            raise DescriptorError(f"Registry {path} must be a JSON object")
        return cls(data)

    def lookup(self, status: str) -> ImplicationId | None:
        return self._entries.get(status)

    def statuses(self) -> list[str]:
        return list(self._entries)

    def items(self) -> Iterator[tuple[str, ImplicationId]]:
        return iter(self._entries.items())

    def __contains__(self, status: object) -> bool:
        return status in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class DescriptorCache:
    """Process-wide keyed store of loaded descriptors.

    Entries are never trusted across planning calls: callers invalidate a key
    immediately before loading it.
    """

    def __init__(self) -> None:
        self._items: dict[str, ImplicationDescriptor] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> ImplicationDescriptor | None:
        with self._lock:
            return self._items.get(key)

    def put(self, key: str, descriptor: ImplicationDescriptor) -> None:
        with self._lock:
            self._items[key] = descriptor

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._items.pop(key, None) is not None

    def invalidate_all(self, predicate: Callable[[str], bool] | None = None) -> int:
        """Drop every entry whose key matches ``predicate`` (all when None)."""
        with self._lock:
            keys = [k for k in self._items if predicate is None or predicate(k)]
            for key in keys:
                del self._items[key]
            return len(keys)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)


class DescriptorSource(Protocol):
    """What the planner needs from a descriptor loader."""

    def load(self, implication_id: str) -> ImplicationDescriptor: ...

    def invalidate(self, implication_id: str) -> None: ...


def parse_descriptor_file(path: Path) -> ImplicationDescriptor:
    """Read a YAML or JSON descriptor file."""
    text = path.read_text()
    try:
        if path.suffix == ".json":
            data: Any = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise DescriptorError(f"Cannot parse descriptor {path}: {e}") from e
    if not isinstance(data, Mapping):
        raise DescriptorError(f"Descriptor {path} must contain a mapping")
    try:
        return ImplicationDescriptor.from_dict(data, implication_id=data.get("id") or path.stem)
    except DescriptorError as e:
        raise DescriptorError(f"{path}: {e}") from e


class ImplicationLoader:
    """Loads descriptors from files under one or more directories."""

    def __init__(self, search_dirs: list[Path], cache: DescriptorCache | None = None) -> None:
        self.search_dirs = [Path(d) for d in search_dirs]
        self.cache = cache if cache is not None else DescriptorCache()
        self._index: dict[str, Path] | None = None

    def _build_index(self) -> dict[str, Path]:
        index: dict[str, Path] = {}
        for directory in self.search_dirs:
            if not directory.is_dir():
                continue
            for path in sorted(directory.rglob("*")):
                if path.is_file() and path.suffix in DESCRIPTOR_SUFFIXES:
                    index.setdefault(path.stem, path)
        return index

    def find_file(self, implication_id: str) -> Path | None:
        if self._index is None or implication_id not in self._index:
            self._index = self._build_index()
        return self._index.get(implication_id)

    def known_ids(self) -> list[str]:
        self._index = self._build_index()
        return sorted(self._index)

    def invalidate(self, implication_id: str) -> None:
        self.cache.invalidate(implication_id)

    def load(self, implication_id: str) -> ImplicationDescriptor:
        cached = self.cache.get(implication_id)
        if cached is not None:
            return cached
        path = self.find_file(implication_id)
        if path is None:
            raise DescriptorNotFoundError(f"No descriptor file for '{implication_id}'")
        descriptor = parse_descriptor_file(path)
        self.cache.put(implication_id, descriptor)
        logger.debug("Loaded %s from %s", implication_id, path)
        return descriptor


class InMemoryLoader:
    """Descriptor source backed by a dict, for embedding and tests."""

    def __init__(
        self,
        descriptors: Mapping[str, ImplicationDescriptor] | None = None,
        cache: DescriptorCache | None = None,
    ) -> None:
        self.descriptors: dict[str, ImplicationDescriptor] = dict(descriptors or {})
        self.cache = cache if cache is not None else DescriptorCache()

    def add(self, descriptor: ImplicationDescriptor) -> None:
        self.descriptors[descriptor.id] = descriptor
        self.cache.invalidate(descriptor.id)

    def invalidate(self, implication_id: str) -> None:
        self.cache.invalidate(implication_id)

    def load(self, implication_id: str) -> ImplicationDescriptor:
        cached = self.cache.get(implication_id)
        if cached is not None:
            return cached
        try:
            descriptor = self.descriptors[implication_id]
        except KeyError:
            raise DescriptorNotFoundError(f"No descriptor for '{implication_id}'") from None
        self.cache.put(implication_id, descriptor)
        return descriptor


def _normalize_state(name: str) -> str:
    return name.replace("_", " ").lower()


class DiscoveryCache:
    """Precomputed ``from -> to`` transition shortcuts."""

    def __init__(self, transitions: list[Mapping[str, Any]] | None = None) -> None:
        self.transitions = [dict(t) for t in transitions or []]

    @classmethod
    def from_file(cls, path: Path) -> DiscoveryCache:
        path = Path(path)
        if not path.exists():
            return cls()
        try:
            data = json.loads(path.read_text())
        except json.JSONDecodeError as e:
            logger.error("Ignoring unreadable discovery cache %s: %s", path, e)
            return cls()
        return cls(data.get("transitions") or [])

    def find_direct_transition(self, from_status: str, to_status: str) -> dict[str, Any] | None:
        src, dst = _normalize_state(from_status), _normalize_state(to_status)
        for transition in self.transitions:
            if (
                _normalize_state(str(transition.get("from", ""))) == src
                and _normalize_state(str(transition.get("to", ""))) == dst
            ):
                return {"event": transition.get("event"), "from": from_status, "to": to_status}
        return None
