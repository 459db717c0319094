from __future__ import annotations

import json
import logging
from typing import Dict, List, Optional

from ..config import config
from .key_value import KeyValueStore

logger = logging.getLogger(__name__)


class ChannelDirectory:
    """Durable list of active broadcast channel names, one list per partition.

    An independent callback context reads this to discover which channels to
    post to. Partitions are coarse (the callback URI scheme by default).
    """

    def __init__(self, store: KeyValueStore, key_prefix: Optional[str] = None) -> None:
        self._store = store
        self._key_prefix = key_prefix or config.REDIRECT.BROADCAST.DIRECTORY_KEY_PREFIX

    @staticmethod
    def _normalize_partition(partition: Optional[str]) -> str:
        value = (partition or config.REDIRECT.BROADCAST.DEFAULT_PARTITION).strip().lower()
        if not value:
            raise ValueError("Channel directory partition is required")
        return value

    def _key(self, partition: Optional[str]) -> str:
        return f"{self._key_prefix}{self._normalize_partition(partition)}"

    @staticmethod
    def _decode(key: str, raw: Optional[str]) -> List[str]:
        if not raw:
            return []
        try:
            names = json.loads(raw)
        except ValueError:
            logger.warning("Channel directory entry %s is corrupted, treating as empty", key)
            return []
        if not isinstance(names, list):
            return []
        return [name for name in names if isinstance(name, str) and name]

    def channels(self, partition: Optional[str] = None) -> List[str]:
        key = self._key(partition)
        return self._decode(key, self._store.get_item(key))

    def register(self, channel_name: str, partition: Optional[str] = None) -> None:
        if not channel_name.strip():
            raise ValueError("Channel name is required")
        key = self._key(partition)
        with self._store.transaction() as data:
            names = self._decode(key, data.get(key))
            if channel_name not in names:
                names.append(channel_name)
            data[key] = json.dumps(names)

    def unregister(self, channel_name: str, partition: Optional[str] = None) -> None:
        key = self._key(partition)
        with self._store.transaction() as data:
            names = [name for name in self._decode(key, data.get(key)) if name != channel_name]
            self._store_names(data, key, names)

    @staticmethod
    def _store_names(data: Dict[str, str], key: str, names: List[str]) -> None:
        if names:
            data[key] = json.dumps(names)
        else:
            data.pop(key, None)
