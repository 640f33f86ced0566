import itertools
import logging
from typing import Any, Dict, NamedTuple, Optional, Tuple

from kaigo_client.identity import SlotKey

logger = logging.getLogger(__name__)

_MISSING = object()


class OverlayKey(NamedTuple):
    resident_id: str
    record_date: str
    sub_slot: str
    field: str

    @classmethod
    def for_slot(cls, slot: SlotKey, field: str) -> "OverlayKey":
        return cls(slot.resident_id, slot.record_date, slot.sub_slot, field)


class LocalEditOverlay:
    """In-progress cell values that take precedence over cached rows.

    Every ``put`` returns a sequence number; ``clear`` with that number only
    removes the entry if no newer edit replaced it.
    """

    def __init__(self):
        self._entries: Dict[OverlayKey, Tuple[Any, int]] = {}
        self._seq = itertools.count(1)

    def __len__(self):
        return len(self._entries)

    def __contains__(self, key: OverlayKey) -> bool:
        return key in self._entries

    def put(self, key: OverlayKey, value: Any) -> int:
        seq = next(self._seq)
        self._entries[key] = (value, seq)
        return seq

    def get(self, key: OverlayKey, default: Any = None) -> Any:
        entry = self._entries.get(key)
        return entry[0] if entry is not None else default

    def seq_of(self, key: OverlayKey) -> Optional[int]:
        entry = self._entries.get(key)
        return entry[1] if entry is not None else None

    def resolve(self, key: OverlayKey, persisted_value: Any) -> Any:
        value = self.get(key, _MISSING)
        return persisted_value if value is _MISSING else value

    def clear(self, key: OverlayKey, seq: Optional[int] = None) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return False
        if seq is not None and entry[1] != seq:
            logger.debug("overlay %s kept: newer edit %d supersedes %d", key, entry[1], seq)
            return False
        del self._entries[key]
        return True

    def retag(self, key: OverlayKey, seq: int, new_seq: int) -> bool:
        """Hand the entry written under ``seq`` over to ``new_seq``."""
        entry = self._entries.get(key)
        if entry is None or entry[1] != seq:
            return False
        self._entries[key] = (entry[0], new_seq)
        return True

    def clear_slot(self, slot: SlotKey):
        for key in [k for k in self._entries
                    if (k.resident_id, k.record_date, k.sub_slot) == (slot.resident_id, slot.record_date, slot.sub_slot)]:
            del self._entries[key]
