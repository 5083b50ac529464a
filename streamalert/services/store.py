"""
Persistent key/value storage.

All state that must survive a restart lives in a single JSON file, split into
namespaces so that each component only ever touches its own keys:

    {
        "twitch_api": {"app_token": "...", "<broadcaster id>": {"stream.online": {...}}},
        "alerts": {"<message id>": "<broadcaster login>"}
    }

Every write replaces the whole file atomically. There are no transactions,
the last write for a key wins.

Usage:
    store = KeyValueStore("/path/to/data.json")
    alerts = store.namespace("alerts")
    await alerts.set("1234", "somestreamer")
"""

import os
import json
import asyncio
import logging
from typing import Any, Dict, Optional

logger = logging.getLogger("store")


class KeyValueStore:
    """
    JSON-file backed store shared by all namespaces.

    Attributes:
        path (str): Location of the backing file
        data (Dict[str, Dict[str, Any]]): In-memory copy of the file, per namespace
        write_lock (asyncio.Lock): Serializes writes to the backing file
    """

    def __init__(self, path: str):
        self.path = path
        self.data: Dict[str, Dict[str, Any]] = {}
        self.write_lock = asyncio.Lock()
        self._load()

    def _load(self) -> None:
        try:
            if os.path.exists(self.path):
                with open(self.path, "r") as f:
                    content = f.read().strip()
                    if content:
                        self.data = json.loads(content)
                        logger.debug(f"[Store] Loaded {self.path}")
                        return
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"[Store] Error loading {self.path}, starting empty: {e}")
        self.data = {}

    async def _save(self) -> None:
        async with self.write_lock:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            # Write to a temporary file first, then rename to avoid corruption
            temp_file = f"{self.path}.tmp"
            with open(temp_file, "w") as f:
                json.dump(self.data, f, indent=2)
            os.replace(temp_file, self.path)

    def namespace(self, name: str) -> "Namespace":
        """Return a view restricted to the keys of one namespace."""
        return Namespace(self, name)


class Namespace:
    """A set of keys owned by a single component."""

    def __init__(self, store: KeyValueStore, name: str):
        self.store = store
        self.name = name

    def _bucket(self) -> Dict[str, Any]:
        return self.store.data.setdefault(self.name, {})

    async def get(self, key: str, default: Optional[Any] = None) -> Any:
        return self._bucket().get(key, default)

    async def set(self, key: str, value: Any) -> None:
        self._bucket()[key] = value
        await self.store._save()

    async def delete(self, key: str) -> bool:
        bucket = self._bucket()
        if key not in bucket:
            return False
        del bucket[key]
        await self.store._save()
        return True

    async def items(self) -> Dict[str, Any]:
        """Return a snapshot copy of every key in the namespace."""
        return dict(self._bucket())

    async def clear(self) -> None:
        self.store.data[self.name] = {}
        await self.store._save()
