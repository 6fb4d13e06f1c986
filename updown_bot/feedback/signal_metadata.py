"""
Signal Metadata Store
Holds what the engine believed at entry until the trade settles.

Each trade id is written once at decision time and taken once at
settlement. Taking an entry leaves a tombstone, so a second settlement
pass for the same trade sees "already consumed" instead of racing on a
deleted key. Entries and tombstones expire after the TTL (two window
lengths by default) and the store never holds more than `max_entries`.
"""
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from updown_bot.models import SignalMetadata


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class _Slot:
    written_ms: int
    metadata: Optional[SignalMetadata]     # None once taken

    @property
    def is_tombstone(self) -> bool:
        return self.metadata is None


class SignalMetadataStore:
    def __init__(self, ttl_ms: int = 2 * 15 * 60 * 1000, max_entries: int = 1000):
        if ttl_ms <= 0:
            raise ValueError(f"ttl_ms must be positive, got {ttl_ms}")
        if max_entries <= 0:
            raise ValueError(f"max_entries must be positive, got {max_entries}")

        self.ttl_ms = ttl_ms
        self.max_entries = max_entries
        self._slots: "OrderedDict[str, _Slot]" = OrderedDict()

        logger.info(f"Initialized Signal Metadata Store (ttl={ttl_ms / 60000:.0f}m, max={max_entries})")

    def __len__(self) -> int:
        return sum(1 for slot in self._slots.values() if not slot.is_tombstone)

    def put(self, trade_id: str, metadata: SignalMetadata, now_ms: Optional[int] = None) -> bool:
        """Store metadata for a new trade; returns False if the id was already used."""
        now_ms = _now_ms() if now_ms is None else now_ms
        self.purge(now_ms)

        if trade_id in self._slots:
            logger.warning(f"Signal metadata for {trade_id} already written, keeping the original")
            return False

        while len(self._slots) >= self.max_entries:
            evicted_id, slot = self._slots.popitem(last=False)
            if not slot.is_tombstone:
                logger.warning(f"Signal metadata store full, evicted unsettled {evicted_id}")

        self._slots[trade_id] = _Slot(written_ms=now_ms, metadata=metadata)
        return True

    def take(self, trade_id: str, now_ms: Optional[int] = None) -> Optional[SignalMetadata]:
        """Return and clear the metadata; later calls return None."""
        now_ms = _now_ms() if now_ms is None else now_ms
        slot = self._slots.get(trade_id)
        if slot is None or slot.is_tombstone:
            return None
        if now_ms - slot.written_ms > self.ttl_ms:
            del self._slots[trade_id]
            logger.debug(f"Signal metadata for {trade_id} expired before settlement")
            return None

        metadata = slot.metadata
        slot.metadata = None
        return metadata

    def purge(self, now_ms: Optional[int] = None) -> int:
        now_ms = _now_ms() if now_ms is None else now_ms
        expired = [tid for tid, slot in self._slots.items() if now_ms - slot.written_ms > self.ttl_ms]
        for trade_id in expired:
            del self._slots[trade_id]
        return len(expired)
