""" A dictionary-like storage for records accepted by one DHT peer """
from __future__ import annotations

import threading
from typing import Dict, Optional

from xordht.dht.routing import DHTID, BinaryDHTValue


class DHTLocalStorage:
    """
    Records (key -> binary value) held by one peer. Records are never evicted.
    store_if_absent makes "check if present, then insert" a single atomic step.
    """

    def __init__(self):
        self.data: Dict[DHTID, BinaryDHTValue] = dict()
        self._lock = threading.Lock()

    def store_if_absent(self, key: DHTID, value: BinaryDHTValue) -> bool:
        """
        Store a (key, value) pair unless this key is already present.
        :returns: True if new value was stored, False if the storage already had this key (old value is kept)
        """
        with self._lock:
            if key in self.data:
                return False
            self.data[key] = value
            return True

    def get(self, key: DHTID) -> Optional[BinaryDHTValue]:
        """Get a value corresponding to a key if that (key, value) pair was previously stored under this key."""
        return self.data.get(key)

    def __contains__(self, key: DHTID) -> bool:
        return key in self.data

    def __len__(self) -> int:
        return len(self.data)

    def __bool__(self):
        return bool(self.data)

    def __repr__(self):
        return f"{self.__class__.__name__}({self.data})"
