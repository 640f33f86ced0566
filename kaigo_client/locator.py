import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional, Sequence

from kaigo_client.identity import Pending, Persisted, RecordIdentity, SlotKey, identity_of

logger = logging.getLogger(__name__)


@dataclass
class LocatedRecord:
    identity: RecordIdentity
    row: Optional[dict]

    @property
    def is_persisted(self) -> bool:
        return isinstance(self.identity, Persisted)


def locate(rows: Iterable[dict], slot: SlotKey, slot_of: Callable[[dict], SlotKey]) -> LocatedRecord:
    """Find the record for ``slot``: persisted first, then pending, else a fresh pending identity."""
    pending_row = None
    for row in rows:
        try:
            if slot_of(row) != slot:
                continue
            ident = identity_of(row)
        except (KeyError, ValueError, TypeError):
            logger.debug("skipping malformed row %r", row)
            continue
        if isinstance(ident, Persisted):
            return LocatedRecord(ident, row)
        if pending_row is None:
            pending_row = row
    if pending_row is not None:
        return LocatedRecord(identity_of(pending_row), pending_row)
    return LocatedRecord(Pending(slot), None)


def build_payload(located: LocatedRecord, field: str, value: Any, fields: Sequence[str],
                  slot_fields: Dict[str, Any], defaults: Optional[Dict[str, Any]] = None,
                  displayed: Optional[Callable[[str, Any], Any]] = None) -> Dict[str, Any]:
    """Payload for saving ``field``.

    Persisted target: only the changed field. Otherwise every editable field
    as currently displayed, plus the slot keys, because the backend has no
    row to merge against.
    """
    if located.is_persisted:
        return {field: value}

    defaults = defaults or {}
    row = located.row or {}
    payload = dict(slot_fields)
    for name in fields:
        if name == field:
            continue
        current = row.get(name, defaults.get(name))
        if displayed is not None:
            current = displayed(name, current)
        payload[name] = current
    payload[field] = value
    return payload
