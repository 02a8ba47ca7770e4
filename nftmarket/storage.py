from __future__ import annotations

import json
import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator

from .errors import StorageError, StorageOverflow


logger = logging.getLogger(__name__)

Key = tuple[Any, ...]

STATE_FORMAT_VERSION = 1

_REMOVED = object()


def checked_add(value: int, delta: int, bits: int, what: str = "counter") -> int:
    result = int(value) + int(delta)
    if result < 0 or result >= (1 << bits):
        raise StorageOverflow(f"{what} exceeds {bits}-bit range")
    return result


def _key_order(key: Key) -> tuple[tuple[int, Any], ...]:
    # Mixed int/str key parts must still sort deterministically.
    return tuple((0, part) if isinstance(part, int) else (1, str(part)) for part in key)


def _freeze(value: Any) -> Any:
    if isinstance(value, list):
        return tuple(_freeze(item) for item in value)
    return value


class KVStore:
    """Ordered key-value store with nested, all-or-nothing write layers.

    Outside a transaction writes go straight to the committed map. Inside
    ``transaction()`` they are staged in an overlay; reads see the overlay
    first. A clean exit folds the overlay into its parent, an exception
    drops it so the committed state is exactly what it was before.
    """

    def __init__(self, entries: dict[Key, Any] | None = None):
        self._committed: dict[Key, Any] = dict(entries or {})
        self._layers: list[dict[Key, Any]] = []

    @property
    def in_transaction(self) -> bool:
        return bool(self._layers)

    @property
    def depth(self) -> int:
        return len(self._layers)

    def get(self, key: Key, default: Any = None) -> Any:
        for layer in reversed(self._layers):
            if key in layer:
                value = layer[key]
                return default if value is _REMOVED else value
        return self._committed.get(key, default)

    def contains(self, key: Key) -> bool:
        return self.get(key, _REMOVED) is not _REMOVED

    def put(self, key: Key, value: Any) -> None:
        if self._layers:
            self._layers[-1][key] = value
        else:
            self._committed[key] = value

    def remove(self, key: Key) -> None:
        if self._layers:
            self._layers[-1][key] = _REMOVED
        else:
            self._committed.pop(key, None)

    def items(self, prefix: Key = ()) -> list[tuple[Key, Any]]:
        size = len(prefix)
        merged = {key: value for key, value in self._committed.items() if key[:size] == prefix}
        for layer in self._layers:
            for key, value in layer.items():
                if key[:size] != prefix:
                    continue
                if value is _REMOVED:
                    merged.pop(key, None)
                else:
                    merged[key] = value
        return sorted(merged.items(), key=lambda row: _key_order(row[0]))

    def __len__(self) -> int:
        return len(self.items())

    def begin(self) -> None:
        self._layers.append({})

    def commit(self) -> None:
        if not self._layers:
            raise StorageError("commit without an open transaction")
        staged = self._layers.pop()
        for key, value in staged.items():
            if value is _REMOVED:
                self.remove(key)
            else:
                self.put(key, value)

    def rollback(self) -> None:
        if not self._layers:
            raise StorageError("rollback without an open transaction")
        staged = self._layers.pop()
        logger.debug("Discarded %d staged writes", len(staged))

    @contextmanager
    def transaction(self) -> Iterator["KVStore"]:
        self.begin()
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        self.commit()

    def snapshot(self) -> dict[str, Any]:
        if self._layers:
            raise StorageError("Cannot snapshot store with an open transaction")
        return {
            "version": STATE_FORMAT_VERSION,
            "entries": [[list(key), value] for key, value in self.items()],
        }

    @classmethod
    def from_snapshot(cls, data: Any) -> "KVStore":
        if not isinstance(data, dict) or int(data.get("version", 0)) != STATE_FORMAT_VERSION:
            raise StorageError("Unsupported storage snapshot format")
        entries: dict[Key, Any] = {}
        for row in data.get("entries", []):
            if not isinstance(row, list) or len(row) != 2 or not isinstance(row[0], list):
                raise StorageError("Malformed storage entry")
            entries[tuple(row[0])] = _freeze(row[1])
        return cls(entries)

    def save(self, path: str | Path) -> None:
        target = Path(path)
        data = self.snapshot()
        target.parent.mkdir(parents=True, exist_ok=True)
        temp_path = target.with_suffix(target.suffix + ".tmp")
        with temp_path.open("w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, target)
        logger.debug("Saved %d storage entries to %s", len(data["entries"]), target)

    @classmethod
    def load(cls, path: str | Path) -> "KVStore":
        source = Path(path)
        try:
            with source.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (OSError, ValueError) as exc:
            raise StorageError(f"Failed to read storage file '{source}': {exc}") from exc
        return cls.from_snapshot(data)


@dataclass(frozen=True)
class StorageLayout:
    namespace: str = "nft"

    def next_token_id(self) -> Key:
        return (self.namespace, "next_token_id")

    def token_owner(self, token_id: int) -> Key:
        return (self.namespace, "token_owner", token_id)

    def owner_count(self, owner: str) -> Key:
        return (self.namespace, "owner_count", owner)

    def owner_tokens(self, owner: str, position: int) -> Key:
        return (self.namespace, "owner_tokens", owner, position)

    def order_count(self) -> Key:
        return (self.namespace, "order_count")

    def orders(self, order_id: int) -> Key:
        return (self.namespace, "orders", order_id)

    def sale_index(self, token_id: int) -> Key:
        return (self.namespace, "sale_index", token_id)

    def prefix(self, name: str) -> Key:
        return (self.namespace, name)
