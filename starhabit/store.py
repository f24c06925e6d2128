# File: store.py
"""Handles persistent data storage for StarHabit.

Keeps the whole database (children, tasks, rewards, logs, transactions and
the scheduler watermark) in an in-memory cache and writes it to a single
versioned JSON file, so state survives restarts without a server.

Every mutation goes through `mutate()`: the caller edits a deep copy, and the
copy is written to disk and swapped in as one step. There is no interleaving
point exposed to callers - the store is a single writer.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
import copy
import json
import os
from pathlib import Path
import tempfile
import threading
from typing import Any

from . import const
from .exceptions import StarHabitStorageError


class StarHabitStore:
    """Handles persistent storage operations for StarHabit data.

    Thin JSON-file store. The file holds an envelope
    {"version": 1, "key": "starhabit_data", "data": {...}}. With path=None
    the store lives in memory only (tests, embedding).
    """

    def __init__(
        self,
        path: str | os.PathLike[str] | None = None,
        storage_key: str = const.STORAGE_KEY,
    ) -> None:
        """Initialize the store.

        Args:
            path: JSON file location, or None for an in-memory store.
            storage_key: Key written into the envelope (default: const.STORAGE_KEY).
        """
        self._path: Path | None = Path(path) if path is not None else None
        self._storage_key = storage_key
        self._data: dict[str, Any] = StarHabitStore.get_default_structure()
        self._lock = threading.RLock()

    @staticmethod
    def get_default_structure() -> dict[str, Any]:
        """Return canonical empty data structure for fresh installations.

        This is the SINGLE SOURCE OF TRUTH for the storage schema.

        Returns:
            dict: Default structure with all buckets and meta initialized.
        """
        return {
            const.DATA_META: {
                const.DATA_META_SCHEMA_VERSION: const.SCHEMA_VERSION,
                const.DATA_META_LAST_MISSED_CHECK_DATE: None,
            },
            const.DATA_CHILDREN: {},
            const.DATA_TASKS: {},
            const.DATA_REWARDS: {},
            const.DATA_LOGS: {},
            const.DATA_TRANSACTIONS: {},
        }

    def load(self) -> None:
        """Load data from storage during startup.

        If no file exists, or it cannot be parsed, initializes with an empty
        structure. Missing buckets in an older file are filled with defaults.
        """
        const.LOGGER.debug("StarHabitStore: Loading data from %s", self._path)
        existing_data = self._read()

        if existing_data is None:
            const.LOGGER.info("No existing storage found. Initializing new data")
            self._data = StarHabitStore.get_default_structure()
            return

        defaults = StarHabitStore.get_default_structure()
        for key, value in defaults.items():
            if not isinstance(existing_data.get(key), dict):
                existing_data[key] = value
        for key, value in defaults[const.DATA_META].items():
            existing_data[const.DATA_META].setdefault(key, value)

        self._data = existing_data
        const.LOGGER.debug(
            "Loaded existing data from storage: %s",
            self._summary(self._data),
        )

    @property
    def data(self) -> dict[str, Any]:
        """Retrieve the in-memory data cache.

        Treat as read-only; use mutate() to change anything.
        """
        return self._data

    def get_storage_path(self) -> str | None:
        """Return the storage file path, or None for an in-memory store."""
        return str(self._path) if self._path is not None else None

    def set_data(self, new_data: dict[str, Any]) -> None:
        """Replace the entire data structure and persist it."""
        const.LOGGER.debug(
            "StarHabitStore: set_data called with: %s", self._summary(new_data)
        )
        with self._lock:
            self._write(new_data)
            self._data = new_data

    def save(self) -> None:
        """Write the current in-memory data to storage.

        Raises:
            StarHabitStorageError: The file system rejected the write or the
                data is not JSON-serialisable.
        """
        with self._lock:
            self._write(self._data)

    @contextmanager
    def locked(self) -> Iterator[None]:
        """Hold the store lock across several reads and mutate() calls.

        The lock is re-entrant, so mutate() may be called inside the block.
        """
        with self._lock:
            yield

    @contextmanager
    def mutate(self) -> Iterator[dict[str, Any]]:
        """Read-modify-write the whole store as one atomic step.

        Yields a deep copy of the data. When the block exits normally the copy
        is persisted and replaces the live data; if the block raises, the copy
        is discarded and nothing is written.

        Example:
            with store.mutate() as data:
                data[const.DATA_CHILDREN][child_id] = child
        """
        with self._lock:
            working = copy.deepcopy(self._data)
            yield working
            self._write(working)
            self._data = working

    def get_meta(self, key: str, default: Any = None) -> Any:
        """Return a value from the meta bucket."""
        return self._data.get(const.DATA_META, {}).get(key, default)

    def clear_data(self) -> None:
        """Clear all stored data and reset to default structure."""
        const.LOGGER.warning("Clearing all StarHabit data and resetting storage")
        self.set_data(StarHabitStore.get_default_structure())

    def delete_storage(self) -> None:
        """Delete the storage file completely from disk.

        Clears the in-memory data first, then removes the file.
        """
        with self._lock:
            self._data = StarHabitStore.get_default_structure()
            if self._path is None:
                return
            try:
                self._path.unlink(missing_ok=True)
                const.LOGGER.info(
                    "Storage file removed successfully: %s",
                    self._path,
                )
            except OSError as err:
                const.LOGGER.error(
                    "Failed to remove storage file %s: %s. Check file permissions",
                    self._path,
                    err,
                )

    def update_data(self, key: str, value: Any) -> None:
        """Replace one top-level bucket of the data structure.

        Args:
            key: The bucket to update (e.g., const.DATA_CHILDREN, const.DATA_TASKS).
            value: The new value for the bucket.

        Note:
            If the key doesn't exist, a warning is logged and no update occurs.
        """
        if key not in self._data:
            const.LOGGER.warning(
                "Attempted to update unknown data key '%s'. Valid keys: %s",
                key,
                ", ".join(self._data.keys()),
            )
            return
        const.LOGGER.debug("Updating data for key: %s", key)
        with self.mutate() as data:
            data[key] = value

    # =========================================================================
    # Private: file I/O
    # =========================================================================

    def _read(self) -> dict[str, Any] | None:
        """Read and unwrap the JSON envelope. Returns None if unavailable."""
        if self._path is None or not self._path.exists():
            return None

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as err:
            const.LOGGER.error(
                "Failed to read storage file %s: %s. Starting with empty data",
                self._path,
                err,
            )
            return None

        if not isinstance(raw, dict):
            const.LOGGER.error(
                "Storage file %s does not contain an object. Starting with empty data",
                self._path,
            )
            return None

        if raw.get(const.STORAGE_ENVELOPE_VERSION, const.STORAGE_VERSION) > (
            const.STORAGE_VERSION
        ):
            const.LOGGER.warning(
                "Storage file %s was written by a newer version (%s)",
                self._path,
                raw.get(const.STORAGE_ENVELOPE_VERSION),
            )

        data = raw.get(const.STORAGE_ENVELOPE_DATA)
        return data if isinstance(data, dict) else None

    def _write(self, data: dict[str, Any]) -> None:
        """Atomically write the JSON envelope (temp file + os.replace)."""
        if self._path is None:
            return

        envelope = {
            const.STORAGE_ENVELOPE_VERSION: const.STORAGE_VERSION,
            const.STORAGE_ENVELOPE_KEY: self._storage_key,
            const.STORAGE_ENVELOPE_DATA: data,
        }
        tmp_name: str | None = None
        try:
            content = json.dumps(envelope, indent=2)
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self._path.parent,
                prefix=f".{self._path.name}.",
                delete=False,
            ) as tmp_file:
                tmp_name = tmp_file.name
                tmp_file.write(content)
            os.replace(tmp_name, self._path)
            tmp_name = None
        except OSError as err:
            const.LOGGER.error(
                "Failed to save storage due to file system error: %s. "
                "Check disk space and file permissions for %s",
                err,
                self._path,
            )
            raise StarHabitStorageError(
                f"Could not write {self._path}: {err}"
            ) from err
        except (TypeError, ValueError) as err:
            const.LOGGER.error(
                "Failed to save storage due to non-serializable data: %s", err
            )
            raise StarHabitStorageError(f"Data is not serializable: {err}") from err
        finally:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)

        const.LOGGER.debug("Data saved successfully to storage")

    @staticmethod
    def _summary(data: dict[str, Any]) -> dict[str, int]:
        """Return bucket sizes for debug logging."""
        return {
            "children": len(data.get(const.DATA_CHILDREN, {})),
            "tasks": len(data.get(const.DATA_TASKS, {})),
            "rewards": len(data.get(const.DATA_REWARDS, {})),
            "logs": len(data.get(const.DATA_LOGS, {})),
            "transactions": len(data.get(const.DATA_TRANSACTIONS, {})),
        }
