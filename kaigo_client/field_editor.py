"""Headless model of the text/dropdown cell editor used on every check-list."""
import asyncio
import inspect
import logging
import re
from enum import Enum
from typing import Any, Callable, Iterable, List, NamedTuple, Optional

logger = logging.getLogger(__name__)

DROPDOWN_HEIGHT = 200

# partial decimal numbers while typing: "", "6", "62.", "62.5", ".5"; \d also admits full-width digits
_NUMERIC_INPUT = re.compile(r"^\d*(?:[.．]\d*)?$")

_MISSING = object()


class EditorState(str, Enum):
    IDLE = "idle"
    EDITING = "editing"
    COMMITTING = "committing"
    ROLLED_BACK = "rolled_back"


class Option(NamedTuple):
    value: str
    label: str


def normalize_options(options: Iterable[Any]) -> List[Option]:
    normalized = []
    for opt in options or ():
        if isinstance(opt, Option):
            normalized.append(opt)
        elif isinstance(opt, dict):
            normalized.append(Option(str(opt["value"]), str(opt.get("label", opt["value"]))))
        elif isinstance(opt, (tuple, list)):
            normalized.append(Option(str(opt[0]), str(opt[1])))
        else:
            normalized.append(Option(str(opt), str(opt)))
    return normalized


def _succeeded(outcome: Any) -> bool:
    ok = getattr(outcome, "ok", _MISSING)
    if ok is not _MISSING:
        return bool(ok)
    return outcome is not False


class FieldEditor:
    """Local value + optional option list, committing on blur or selection.

    ``on_save`` may return an awaitable (normally a mutation outcome with an
    ``ok`` attribute). While that save is in flight, external values other
    than the committed one are held back and applied once it settles, so a
    stale echo cannot overwrite the committed value but a rollback still
    reaches the cell.
    """

    def __init__(self, value: Optional[str] = "", on_save: Optional[Callable[[str], Any]] = None,
                 options: Iterable[Any] = (), numeric: bool = False,
                 dropdown_height: int = DROPDOWN_HEIGHT):
        self.value = "" if value is None else value
        self.local_value = self.value
        self.on_save = on_save
        self.options = normalize_options(options)
        self.numeric = numeric
        self.dropdown_height = dropdown_height

        self.state = EditorState.IDLE
        self.is_open = False
        self.dropdown_position = "bottom"
        self.pending: Optional[asyncio.Future] = None

        self._selecting = False
        self._last_committed: Any = _MISSING
        self._deferred: Any = _MISSING
        self._in_flight = 0

    @property
    def in_flight(self) -> bool:
        return self._in_flight > 0

    def sync(self, value: Optional[str]):
        """Receive the current external value (the cell's persisted/optimistic value)."""
        value = "" if value is None else value
        if self.in_flight:
            if value != self._last_committed:
                self._deferred = value
                return
            self._deferred = _MISSING
        if value == self.value:
            return
        self.value = value
        self.local_value = value
        if value != self._last_committed:
            self._last_committed = _MISSING

    def focus(self, space_above: Optional[float] = None, space_below: Optional[float] = None):
        self._selecting = False
        if self.state is not EditorState.COMMITTING:
            self.state = EditorState.EDITING
        if self.options:
            self.is_open = True
            if (space_above is not None and space_below is not None
                    and space_below < self.dropdown_height and space_above > self.dropdown_height):
                self.dropdown_position = "top"
            else:
                self.dropdown_position = "bottom"

    def input(self, text: str) -> bool:
        """A keystroke changed the input text; returns False when it was rejected."""
        text = "" if text is None else text
        if self.numeric and text != "" and not _NUMERIC_INPUT.match(text):
            return False
        self._selecting = False
        self.local_value = text
        if self.state is not EditorState.COMMITTING:
            self.state = EditorState.EDITING
        return True

    def blur(self):
        self.is_open = False
        if self._selecting:
            self._selecting = False
            return None
        if self.local_value != self.value:
            return self._commit(self.local_value)
        if self.state in (EditorState.EDITING, EditorState.ROLLED_BACK):
            self.state = EditorState.IDLE
        return None

    def select(self, option_value: str):
        """Pick an option: commits immediately and suppresses the blur that follows."""
        self._selecting = True
        self.is_open = False
        self.local_value = option_value
        if option_value == self.value or option_value == self._last_committed:
            if self.state is not EditorState.COMMITTING:
                self.state = EditorState.IDLE
            return None
        return self._commit(option_value)

    def _commit(self, value: str):
        self.state = EditorState.COMMITTING
        self._last_committed = value
        result = self.on_save(value) if self.on_save is not None else None
        if inspect.isawaitable(result):
            self._in_flight += 1
            self.pending = asyncio.ensure_future(self._await_commit(result))
            return self.pending
        self._settle(_succeeded(result))
        return None

    async def _await_commit(self, awaitable):
        try:
            outcome = await awaitable
        except Exception:
            self._settle(False)
            raise
        self._settle(_succeeded(outcome))
        return outcome

    def _settle(self, ok: bool):
        self._in_flight = max(0, self._in_flight - 1)
        if self._in_flight:
            return
        adopted = self._deferred is not _MISSING
        if adopted:
            self.value = self._deferred
            self._deferred = _MISSING
        if ok:
            if self.state is EditorState.COMMITTING:
                if adopted:
                    self.local_value = self.value
                self.state = EditorState.IDLE
            return
        logger.debug("editor reverted %r -> %r", self._last_committed, self.value)
        self.local_value = self.value
        self._last_committed = _MISSING
        self.state = EditorState.ROLLED_BACK
