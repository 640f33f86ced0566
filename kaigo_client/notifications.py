import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

SAVE_FAILED = "保存に失敗しました"
DELETE_FAILED = "削除に失敗しました"


@dataclass(frozen=True)
class Notification:
    title: str
    description: str = ""
    variant: str = "default"


class Notifier:
    """Collects toast notifications until the UI drains them."""

    def __init__(self, listener: Optional[Callable[[Notification], None]] = None):
        self._items: List[Notification] = []
        self._listener = listener

    @property
    def items(self) -> List[Notification]:
        return list(self._items)

    def notify(self, title: str, description: str = "", variant: str = "default") -> Notification:
        note = Notification(title, description, variant)
        self._items.append(note)
        if self._listener is not None:
            try:
                self._listener(note)
            except Exception:
                logger.exception("notification listener failed")
        return note

    def error(self, title: str, description: str = "") -> Notification:
        logger.info("toast error: %s %s", title, description)
        return self.notify(title, description, variant="destructive")

    def info(self, title: str, description: str = "") -> Notification:
        return self.notify(title, description)

    def drain(self) -> List[Notification]:
        items, self._items = self._items, []
        return items
