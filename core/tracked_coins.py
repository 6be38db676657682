"""
Tracked Coins — The ordered set of CoinGecko ids to ingest.
Ids are lowercase and unique; the list is persisted as a JSON file.
"""

from __future__ import annotations
import json
import os
import threading
from typing import List, Optional, Sequence
from market.errors import ConfigurationError
import logging

logger = logging.getLogger(__name__)


class CoinListFile:
    """Whole-list JSON persistence for the tracked ids."""

    def __init__(self, path: str):
        self.path = path

    def exists(self) -> bool:
        return os.path.exists(self.path)

    def read(self) -> List[str]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"cannot read {self.path}: {e}") from e
        if not isinstance(data, list) or not all(isinstance(c, str) for c in data):
            raise ConfigurationError(f"{self.path} must contain a JSON list of strings")
        return data

    def write(self, coin_ids: Sequence[str]):
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(list(coin_ids), f)


def normalize_coin_id(coin_id: str) -> str:
    return coin_id.strip().lower()


class TrackedCoins:
    """Insertion-ordered, duplicate-free set of coin ids."""

    def __init__(self, store: CoinListFile, default_coins: Sequence[str]):
        self.store = store
        self.default_coins = [normalize_coin_id(c) for c in default_coins]
        self._coins: List[str] = []
        self._lock = threading.Lock()

    @property
    def coins(self) -> List[str]:
        """Snapshot copy, safe to iterate while others mutate."""
        with self._lock:
            return list(self._coins)

    def __len__(self) -> int:
        return len(self._coins)

    def __contains__(self, coin_id: str) -> bool:
        return normalize_coin_id(coin_id) in self._coins

    def load(self) -> List[str]:
        """Load from file; fall back to the defaults if missing, empty or unreadable."""
        loaded: Optional[List[str]] = None
        if self.store.exists():
            try:
                loaded = self.store.read()
            except ConfigurationError as e:
                logger.warning(f"[COINS] {e}. Using default coins.")

        coins = self._dedupe(loaded) if loaded else list(self.default_coins)
        with self._lock:
            self._coins = coins
        logger.info(f"[COINS] Tracking {len(coins)} coins: {coins}")
        return list(coins)

    def add(self, coin_id: str) -> bool:
        """Returns False (and changes nothing) if the id is already tracked."""
        cid = normalize_coin_id(coin_id)
        if not cid:
            logger.warning("[COINS] Ignoring empty coin id")
            return False
        with self._lock:
            if cid in self._coins:
                logger.info(f"[COINS] Already tracked: {cid}")
                return False
            self._coins.append(cid)
            self._persist()
        logger.info(f"[COINS] Added: {cid}")
        return True

    def remove(self, coin_id: str) -> bool:
        """Returns False (and changes nothing) if the id is not tracked."""
        cid = normalize_coin_id(coin_id)
        with self._lock:
            if cid not in self._coins:
                logger.warning(f"[COINS] {cid} is not tracked")
                return False
            self._coins.remove(cid)
            self._persist()
        logger.info(f"[COINS] Removed: {cid}")
        return True

    def _persist(self):
        # Caller holds the lock; a failed save keeps the in-memory change.
        try:
            self.store.write(self._coins)
        except OSError as e:
            logger.error(f"[COINS] Failed to save {self.store.path}: {e}")

    @staticmethod
    def _dedupe(coin_ids: Sequence[str]) -> List[str]:
        seen: List[str] = []
        for c in coin_ids:
            cid = normalize_coin_id(c)
            if cid and cid not in seen:
                seen.append(cid)
        return seen
