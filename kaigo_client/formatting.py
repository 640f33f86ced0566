"""Small text/date helpers shared by the check-list pages."""
import re
from datetime import date, timedelta
from typing import Any, List, Optional, Tuple

_ZENKAKU = "０１２３４５６７８９．"
_HANKAKU = "0123456789."
_TO_HANKAKU = str.maketrans(_ZENKAKU, _HANKAKU)

WEEKDAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
WEEKDAY_LABELS = ("月", "火", "水", "木", "金", "土", "日")


def to_hankaku(text: str) -> str:
    """Full-width digits and full stop to their ASCII forms."""
    return (text or "").translate(_TO_HANKAKU)


def validate_and_format_weight(text: Optional[str]) -> str:
    """Clean up a weight while it is being typed."""
    if not text or not text.strip():
        return ""
    formatted = re.sub(r"[^0-9.]", "", to_hankaku(text.strip()))
    parts = formatted.split(".")
    if len(parts) > 2:
        formatted = parts[0] + "." + "".join(parts[1:])
    # "0" and "0.x" keep their zero
    if len(formatted) > 1 and formatted[0] == "0" and formatted[1] != ".":
        formatted = formatted[1:]
    return formatted


def final_format_weight(text: Optional[str]) -> str:
    """Weight as it is saved: cleaned, no trailing point, within 0-999 or empty."""
    formatted = validate_and_format_weight(text)
    if formatted.endswith("."):
        formatted = formatted[:-1]
    if not formatted:
        return ""
    try:
        value = float(formatted)
    except ValueError:
        return ""
    if value < 0 or value > 999:
        return ""
    return formatted


def _digits(text: str) -> str:
    return re.sub(r"\D", "", text)


def match_floor(resident_floor: Any, selected_floor: Optional[str]) -> bool:
    """Whether a resident's floor matches the filter; "1", "1F" and "1階" are the same floor.

    An empty filter or "all" matches everyone.
    """
    if not selected_floor or selected_floor == "all":
        return True
    if resident_floor is None or resident_floor == "":
        return False
    floor = str(resident_floor)
    floor_num = _digits(floor)
    return (
        floor == selected_floor
        or floor_num == selected_floor
        or (floor_num != "" and floor_num == _digits(selected_floor))
        or floor == selected_floor + "F"
        or floor == selected_floor + "階"
    )


def room_sort_key(room_number: Any) -> Tuple[int, float, str]:
    """Numeric rooms first in numeric order, then everything else as text."""
    text = "" if room_number is None else str(room_number).strip()
    try:
        return (0, float(text), text)
    except ValueError:
        return (1, 0.0, text)


def parse_int_or_zero(value: Any) -> int:
    """Leading integer of the text ("200ml" -> 200), 0 when there is none."""
    match = re.match(r"-?\d+", to_hankaku("" if value is None else str(value)).strip())
    return int(match.group()) if match else 0


def parse_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def date_range(start: Any, end: Any) -> List[str]:
    """Inclusive list of ISO dates from ``start`` to ``end``."""
    first, last = parse_date(start), parse_date(end)
    days = []
    current = first
    while current <= last:
        days.append(current.isoformat())
        current += timedelta(days=1)
    return days


def month_bounds(month: str) -> Tuple[str, str]:
    """("2024-03") -> ("2024-03-01", "2024-03-31")."""
    first = parse_date(month[:7] + "-01")
    next_month = (first.replace(day=28) + timedelta(days=4)).replace(day=1)
    return first.isoformat(), (next_month - timedelta(days=1)).isoformat()


def month_start(value: Any) -> str:
    return str(value)[:7] + "-01"


def week_dates(any_day: Any) -> List[str]:
    """The Monday-first week containing ``any_day``."""
    day = parse_date(any_day)
    monday = day - timedelta(days=day.weekday())
    return [(monday + timedelta(days=i)).isoformat() for i in range(7)]


def weekday_label(value: Any) -> str:
    return WEEKDAY_LABELS[parse_date(value).weekday()]
