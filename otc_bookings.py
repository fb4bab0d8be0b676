"""
Booking entity and the boundary parser that turns raw Lodgify v2 booking
JSON into it. Downstream code only ever sees Booking instances; anything
structurally wrong is rejected here with a ShapeError.
"""
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Tuple, Union

from otc_dates import parse_calendar_date, to_ymd
from otc_errors import ShapeError

SUBTOTAL_CATEGORIES = ("stay", "fees", "taxes", "addons", "promotions", "vat")
GUEST_BANDS = ("adults", "children", "infants", "pets")

BookingId = Union[int, str, None]


@dataclass(frozen=True)
class Booking:
    id: BookingId
    arrival: Optional[date]
    departure: Optional[date]
    status: str = ""
    date_cancelled: str = ""
    property_id: Optional[int] = None
    source: str = ""
    source_text: str = ""
    channel_booking: str = ""
    room_type_names: Tuple[str, ...] = ()
    room_type_ids: Tuple[str, ...] = ()
    guest_name: str = ""
    guest_email: str = ""
    number_of_guests: int = 0
    adults: int = 0
    children: int = 0
    infants: int = 0
    pets: int = 0
    currency: str = ""
    subtotals: Dict[str, float] = field(default_factory=dict)
    total_amount: float = 0.0


def parse_amount(v: Any) -> float:
    if v is None or isinstance(v, bool):
        return 0.0
    try:
        if isinstance(v, (int, float)):
            n = float(v)
        else:
            n = float(str(v).replace(",", "").replace("$", "").strip())
    except (ValueError, OverflowError):
        return 0.0
    # "inf"/"nan" parse as floats but cannot be reported
    return n if math.isfinite(n) else 0.0


def parse_int(v: Any) -> Optional[int]:
    if v is None or isinstance(v, bool):
        return None
    try:
        return int(float(str(v).strip()))
    except (ValueError, OverflowError):
        return None


def _text(v: Any) -> str:
    if v is None:
        return ""
    return str(v).strip()


def _obj(item: Dict[str, Any], key: str) -> Dict[str, Any]:
    v = item.get(key)
    if v is None:
        return {}
    if not isinstance(v, dict):
        raise ShapeError(f"Booking {item.get('id')!r}: '{key}' should be an object, got {type(v).__name__}")
    return v


def _rooms(item: Dict[str, Any]) -> List[Dict[str, Any]]:
    v = item.get("rooms")
    if v is None:
        return []
    if not isinstance(v, list) or not all(isinstance(r, dict) for r in v):
        raise ShapeError(f"Booking {item.get('id')!r}: 'rooms' should be a list of objects")
    return v


def _booking_date(v: Any) -> Optional[date]:
    return parse_calendar_date(to_ymd(v))


def _guest_counts(item: Dict[str, Any], rooms: List[Dict[str, Any]]) -> Tuple[Dict[str, int], int]:
    counts = {band: 0 for band in GUEST_BANDS}
    people = 0
    breakdowns = []
    for room in rooms:
        b = room.get("guest_breakdown")
        if isinstance(b, dict):
            breakdowns.append(b)
        people += parse_int(room.get("people")) or 0
    if not breakdowns:
        top = _obj(item, "guest_breakdown")
        if top:
            breakdowns.append(top)
    for b in breakdowns:
        for band in GUEST_BANDS:
            counts[band] += parse_int(b.get(band)) or 0
    if not people:
        people = counts["adults"] + counts["children"] + counts["infants"]
    return counts, people


def _subtotals(item: Dict[str, Any]) -> Dict[str, float]:
    raw = _obj(item, "subtotals")
    return {cat: parse_amount(raw[cat]) for cat in SUBTOTAL_CATEGORIES if raw.get(cat) is not None}


def parse_booking(item: Any) -> Booking:
    if not isinstance(item, dict):
        raise ShapeError(f"Booking entry should be an object, got {type(item).__name__}")

    guest = _obj(item, "guest")
    rooms = _rooms(item)
    counts, people = _guest_counts(item, rooms)

    room_names = tuple(
        _text(r.get("room_type_name") or r.get("name")) for r in rooms if r.get("room_type_name") or r.get("name")
    )
    room_ids = tuple(_text(r.get("room_type_id")) for r in rooms if r.get("room_type_id") is not None)

    return Booking(
        id=item.get("id"),
        arrival=_booking_date(item.get("arrival")),
        departure=_booking_date(item.get("departure")),
        status=_text(item.get("status")),
        date_cancelled=_text(item.get("date_cancelled") or item.get("canceled_at")),
        property_id=parse_int(item.get("property_id")),
        source=_text(item.get("source")),
        source_text=_text(item.get("source_text")),
        channel_booking=_text(item.get("external_booking_id") or item.get("channel_booking_id")),
        room_type_names=room_names,
        room_type_ids=room_ids,
        guest_name=_text(guest.get("name")),
        guest_email=_text(guest.get("email")),
        number_of_guests=people,
        adults=counts["adults"],
        children=counts["children"],
        infants=counts["infants"],
        pets=counts["pets"],
        currency=_text(item.get("currency_code") or item.get("currency")),
        subtotals=_subtotals(item),
        total_amount=parse_amount(item.get("total_amount")),
    )


def parse_bookings(items: List[Any]) -> List[Booking]:
    return [parse_booking(it) for it in items]
