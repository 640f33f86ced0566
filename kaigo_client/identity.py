"""Record identities and slot keys.

A row is either persisted (the server gave it an id) or pending (a
placeholder or an optimistic creation that the server has not confirmed).
Both are values, so a pending identity can never be mistaken for a server id.
"""
import itertools
from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class SlotKey:
    """Where a record lives on a check-list grid."""
    resident_id: str
    record_date: str
    sub_slot: str = ""


@dataclass(frozen=True)
class Persisted:
    id: str


@dataclass(frozen=True)
class Pending:
    slot: SlotKey
    token: int = 0


RecordIdentity = Union[Persisted, Pending]

_tokens = itertools.count(1)


def new_pending(slot: SlotKey) -> Pending:
    return Pending(slot, next(_tokens))


def identity_of(row: dict) -> RecordIdentity:
    rid = row.get("id")
    if isinstance(rid, (Persisted, Pending)):
        return rid
    if isinstance(rid, str) and rid:
        return Persisted(rid)
    raise ValueError("row has no usable identity: %r" % (rid,))


def is_persisted(row: dict) -> bool:
    return isinstance(identity_of(row), Persisted)


class PlaceholderIdentityError(RuntimeError):
    """Raised when a pending identity reaches an operation that needs a server id."""
