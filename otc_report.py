"""
OTC report: one billing row per booking line item, prorated to the nights
that fall inside the requested range.
"""
import csv
import io
import logging
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Tuple

from otc_bookings import SUBTOTAL_CATEGORIES, Booking
from otc_dates import (
    clamped_nights_in_range,
    format_display_date,
    night_count,
    overlaps,
    parse_calendar_date,
)
from otc_errors import ValidationError

logger = logging.getLogger(__name__)

ZERO_EPS = 1e-6
USAGE = "Use ?from=YYYY-MM-DD&to=YYYY-MM-DD"

CSV_HEADERS = [
    "Id",
    "Source",
    "SourceText",
    "ChannelBooking",
    "Status",
    "DateCancelled",
    "DateArrival",
    "DateDeparture",
    "Nights",
    "HouseName",
    "HouseId",
    "RoomTypeNames",
    "RoomTypeIds",
    "GuestName",
    "GuestEmail",
    "NumberOfGuests",
    "Adults",
    "Children",
    "Infants",
    "Pets",
    "Currency",
    "LineItem",
    "LineItemDescription",
    "GrossAmount",
    "NetAmount",
    "VatAmount",
]
AMOUNT_COLUMNS = ("GrossAmount", "NetAmount", "VatAmount")

# category -> (LineItem tag, description label), in row order
LINE_ITEMS = {
    "stay": ("STAY", "Accommodation"),
    "fees": ("FEES", "Fees"),
    "taxes": ("TAXES", "Taxes"),
    "addons": ("ADDONS", "Add-ons"),
    "promotions": ("PROMOTIONS", "Promotions"),
    "vat": ("VAT", "VAT"),
}
TOTAL_LINE_ITEM = ("TOTAL", "Total amount")


def parse_range(date_from: Optional[str], date_to: Optional[str]) -> Tuple[date, date]:
    d_from = parse_calendar_date(date_from)
    d_to = parse_calendar_date(date_to)
    if d_from is None or d_to is None:
        raise ValidationError(f"Invalid or missing from/to. {USAGE}")
    return d_from, d_to


def house_name(property_map: Dict[int, str], property_id: Optional[int]) -> str:
    if property_id is None:
        return ""
    return property_map.get(property_id) or str(property_id)


def line_items(booking: Booking, nights_in_range: int, total_nights: int) -> List[Tuple[str, str, float]]:
    """
    (tag, description, prorated amount) for each nonzero subtotal category,
    or a single prorated TOTAL item when no category yields anything.
    """
    ratio = nights_in_range / total_nights
    suffix = f"({nights_in_range} of {total_nights} nights)"
    items: List[Tuple[str, str, float]] = []
    for cat in SUBTOTAL_CATEGORIES:
        if cat not in booking.subtotals:
            continue
        amount = booking.subtotals[cat] * ratio
        if abs(amount) > ZERO_EPS:
            tag, label = LINE_ITEMS[cat]
            items.append((tag, f"{label} {suffix}", amount))
    if not items:
        amount = booking.total_amount * ratio
        if abs(amount) > ZERO_EPS:
            tag, label = TOTAL_LINE_ITEM
            items.append((tag, f"{label} {suffix}", amount))
    return items


def _booking_fields(booking: Booking, property_map: Dict[int, str], nights: int) -> Dict[str, Any]:
    return {
        "Id": booking.id,
        "Source": booking.source,
        "SourceText": booking.source_text,
        "ChannelBooking": booking.channel_booking,
        "Status": booking.status,
        "DateCancelled": format_display_date(booking.date_cancelled),
        "DateArrival": format_display_date(booking.arrival),
        "DateDeparture": format_display_date(booking.departure),
        "Nights": nights,
        "HouseName": house_name(property_map, booking.property_id),
        "HouseId": booking.property_id,
        "RoomTypeNames": "; ".join(booking.room_type_names),
        "RoomTypeIds": "; ".join(booking.room_type_ids),
        "GuestName": booking.guest_name,
        "GuestEmail": booking.guest_email,
        "NumberOfGuests": booking.number_of_guests,
        "Adults": booking.adults,
        "Children": booking.children,
        "Infants": booking.infants,
        "Pets": booking.pets,
        "Currency": booking.currency,
    }


def build_rows(
    bookings: Iterable[Booking],
    property_map: Dict[int, str],
    date_from: date,
    date_to: date,
) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    skipped_no_dates = 0
    for b in bookings:
        if b.arrival is None or b.departure is None:
            skipped_no_dates += 1
            logger.debug(f"booking {b.id!r} skipped: missing arrival/departure")
            continue
        if not overlaps(b.arrival, b.departure, date_from, date_to):
            continue
        total_nights = night_count(b.arrival, b.departure)
        nights_in_range = clamped_nights_in_range(b.arrival, b.departure, date_from, date_to)
        if nights_in_range == 0:
            continue

        base = _booking_fields(b, property_map, nights_in_range)
        for tag, description, amount in line_items(b, nights_in_range, total_nights):
            gross = round(amount, 2)
            rows.append({
                **base,
                "LineItem": tag,
                "LineItemDescription": description,
                "GrossAmount": gross,
                "NetAmount": gross,
                # VAT is never split out, even on the VAT line item itself
                "VatAmount": 0.0,
            })
    if skipped_no_dates:
        logger.info(f"{skipped_no_dates} bookings skipped for missing arrival/departure")
    return rows


# ---------- serialization ----------

def report_envelope(date_from: str, date_to: str, bookings_fetched: int, rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "ok": True,
        "from": date_from,
        "to": date_to,
        "bookingsFetched": bookings_fetched,
        "rowsCount": len(rows),
        "rows": rows,
    }


def _csv_value(col: str, v: Any) -> str:
    if col in AMOUNT_COLUMNS:
        return f"{float(v or 0):.2f}"
    if v is None:
        return ""
    return str(v)


def rows_to_csv_io(rows: List[Dict[str, Any]]) -> io.StringIO:
    """
    Convert report rows to a CSV in-memory buffer.
    Writes a UTF-8 BOM so Excel opens it cleanly.
    """
    sio = io.StringIO()
    sio.write("\ufeff")  # Excel-friendly BOM
    w = csv.writer(sio, lineterminator="\n")
    w.writerow(CSV_HEADERS)
    for r in rows:
        w.writerow([_csv_value(col, r.get(col)) for col in CSV_HEADERS])
    sio.seek(0)
    return sio


def csv_filename(date_from: str, date_to: str) -> str:
    return f"OTCReport_{date_from}_to_{date_to}.csv"
