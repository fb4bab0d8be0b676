import csv
import io
from datetime import date

import pytest

from otc_bookings import parse_booking
from otc_errors import ValidationError
from otc_report import (
    CSV_HEADERS,
    build_rows,
    csv_filename,
    parse_range,
    report_envelope,
    rows_to_csv_io,
)
from tests.fakes import make_booking

MARCH = (date(2024, 3, 8), date(2024, 3, 31))
PROPS = {101: "Casa Azul"}


def rows_for(*items, property_map=PROPS, rng=MARCH):
    return build_rows([parse_booking(i) for i in items], property_map, *rng)


def test_partial_stay_prorates_subtotals():
    rows = rows_for(make_booking(1, subtotals={"stay": 500}))

    assert len(rows) == 1
    row = rows[0]
    assert row["Nights"] == 2
    assert row["LineItem"] == "STAY"
    assert row["LineItemDescription"] == "Accommodation (2 of 5 nights)"
    assert row["GrossAmount"] == 200.0
    assert row["NetAmount"] == 200.0
    assert row["VatAmount"] == 0.0


def test_row_metadata():
    row = rows_for(make_booking(
        1, subtotals={"stay": 500}, external_booking_id="ABNB-9", date_cancelled="2024-03-01T10:00:00Z",
    ))[0]

    assert row["Id"] == 1
    assert row["Source"] == "Manual"
    assert row["SourceText"] == "Direct"
    assert row["ChannelBooking"] == "ABNB-9"
    assert row["Status"] == "Booked"
    assert row["DateCancelled"] == "03/01/2024"
    assert row["DateArrival"] == "03/05/2024"
    assert row["DateDeparture"] == "03/10/2024"
    assert row["HouseName"] == "Casa Azul"
    assert row["HouseId"] == 101
    assert row["RoomTypeNames"] == "Suite"
    assert row["RoomTypeIds"] == "555"
    assert row["GuestName"] == "Ana Torres"
    assert row["GuestEmail"] == "ana@example.com"
    assert (row["NumberOfGuests"], row["Adults"], row["Children"], row["Infants"], row["Pets"]) == (3, 2, 1, 0, 0)
    assert row["Currency"] == "USD"
    assert list(row) == CSV_HEADERS


def test_one_row_per_nonzero_category_in_fixed_order():
    subtotals = {"vat": 50, "promotions": -25, "addons": 0, "taxes": 30, "fees": 10, "stay": 500}
    rows = rows_for(make_booking(1, arrival="2024-03-10", departure="2024-03-15", subtotals=subtotals))

    assert [r["LineItem"] for r in rows] == ["STAY", "FEES", "TAXES", "PROMOTIONS", "VAT"]
    assert [r["GrossAmount"] for r in rows] == [500.0, 10.0, 30.0, -25.0, 50.0]
    assert all(r["Nights"] == 5 for r in rows)


def test_vat_line_item_still_reports_zero_vat():
    rows = rows_for(make_booking(1, arrival="2024-03-10", departure="2024-03-12", subtotals={"vat": 42}))

    assert rows[0]["LineItem"] == "VAT"
    assert rows[0]["GrossAmount"] == 42.0
    assert rows[0]["NetAmount"] == 42.0
    assert rows[0]["VatAmount"] == 0.0


def test_falls_back_to_prorated_total_when_no_category_has_value():
    rows = rows_for(make_booking(1, subtotals={"stay": 0, "fees": 0}, total_amount=1000))

    assert len(rows) == 1
    assert rows[0]["LineItem"] == "TOTAL"
    assert rows[0]["LineItemDescription"] == "Total amount (2 of 5 nights)"
    assert rows[0]["GrossAmount"] == 400.0


def test_no_subtotals_and_zero_total_yields_no_rows():
    assert rows_for(make_booking(1, total_amount=0)) == []


def test_booking_before_range_yields_no_rows():
    assert rows_for(make_booking(1, arrival="2024-03-01", departure="2024-03-08", subtotals={"stay": 100})) == []
    assert rows_for(make_booking(2, arrival="2024-02-01", departure="2024-02-05", subtotals={"stay": 100})) == []


def test_booking_after_range_yields_no_rows():
    assert rows_for(make_booking(1, arrival="2024-04-01", departure="2024-04-03", subtotals={"stay": 100})) == []


def test_missing_dates_are_skipped_without_failing_the_report():
    rows = rows_for(
        make_booking(1, arrival=None, subtotals={"stay": 100}),
        make_booking(2, departure="", subtotals={"stay": 100}),
        make_booking(3, arrival="2024-03-10", departure="2024-03-11", subtotals={"stay": 100}),
    )
    assert [r["Id"] for r in rows] == [3]


def test_zero_night_stay_is_skipped():
    assert rows_for(make_booking(1, arrival="2024-03-10", departure="2024-03-10", total_amount=100)) == []


def test_missing_property_name_falls_back_to_id():
    rows = rows_for(make_booking(1, property_id=999, subtotals={"stay": 100}), property_map={})

    assert rows[0]["HouseName"] == "999"
    assert rows[0]["HouseId"] == 999


def test_missing_property_id_gives_blank_house():
    rows = rows_for(make_booking(1, property_id=None, subtotals={"stay": 100}))
    assert rows[0]["HouseName"] == ""
    assert rows[0]["HouseId"] is None


def test_rows_follow_booking_input_order():
    rows = rows_for(
        make_booking(9, subtotals={"stay": 100, "fees": 5}),
        make_booking(4, subtotals={"stay": 100}),
    )
    assert [(r["Id"], r["LineItem"]) for r in rows] == [(9, "STAY"), (9, "FEES"), (4, "STAY")]


def test_amounts_round_to_cents():
    rows = rows_for(make_booking(1, arrival="2024-03-08", departure="2024-03-11", subtotals={"stay": 100}),
                    rng=(date(2024, 3, 8), date(2024, 3, 8)))
    assert rows[0]["GrossAmount"] == 33.33


def test_prorated_amounts_reconstruct_nights_in_range():
    subtotals = {"stay": 731.0, "fees": 45.5, "taxes": 88.2}
    booking = make_booking(1, arrival="2024-03-03", departure="2024-03-14", subtotals=subtotals)
    rows = rows_for(booking)

    total_nights = 11
    for row in rows:
        category = {"STAY": "stay", "FEES": "fees", "TAXES": "taxes"}[row["LineItem"]]
        nightly = subtotals[category] / total_nights
        assert row["GrossAmount"] / nightly == pytest.approx(row["Nights"], abs=0.01)
    assert rows[0]["Nights"] == 6


def test_parse_range():
    assert parse_range("2024-03-08", "2024-03-31") == MARCH
    for bad in [("bad", "2024-01-01"), ("2024-01-01", None), (None, None), ("2024-13-01", "2024-12-01")]:
        with pytest.raises(ValidationError) as exc:
            parse_range(*bad)
        assert "YYYY-MM-DD" in str(exc.value)
        assert exc.value.status_code == 400


def test_report_envelope():
    env = report_envelope("2024-03-08", "2024-03-31", 7, [{"Id": 1}])
    assert env == {
        "ok": True,
        "from": "2024-03-08",
        "to": "2024-03-31",
        "bookingsFetched": 7,
        "rowsCount": 1,
        "rows": [{"Id": 1}],
    }


def _parse_csv(text):
    assert text.startswith("\ufeff")
    return list(csv.reader(io.StringIO(text[1:])))


def test_csv_header_and_amount_format():
    rows = rows_for(make_booking(1, subtotals={"stay": 500}))
    parsed = _parse_csv(rows_to_csv_io(rows).getvalue())

    assert parsed[0] == CSV_HEADERS
    record = dict(zip(CSV_HEADERS, parsed[1]))
    assert record["GrossAmount"] == "200.00"
    assert record["VatAmount"] == "0.00"
    assert record["Nights"] == "2"


def test_csv_quotes_commas_quotes_and_newlines():
    guest = {"name": 'Smith, "Bob"', "email": "bob@example.com"}
    rows = rows_for(make_booking(1, subtotals={"stay": 500}, guest=guest, source_text="line1\nline2"))
    text = rows_to_csv_io(rows).getvalue()

    assert '"Smith, ""Bob"""' in text
    assert '"line1\nline2"' in text
    record = dict(zip(CSV_HEADERS, _parse_csv(text)[1]))
    assert record["GuestName"] == 'Smith, "Bob"'
    assert record["SourceText"] == "line1\nline2"


def test_csv_round_trip_matches_json_rows():
    rows = rows_for(
        make_booking(1, subtotals={"stay": 500, "fees": 12.345, "promotions": -20}),
        make_booking(2, arrival="2024-03-30", departure="2024-04-04", property_id=555, total_amount=999.99),
    )
    parsed = _parse_csv(rows_to_csv_io(rows).getvalue())
    records = [dict(zip(parsed[0], line)) for line in parsed[1:]]

    assert len(records) == len(rows)
    for rec, row in zip(records, rows):
        for col in CSV_HEADERS:
            if col in ("GrossAmount", "NetAmount", "VatAmount"):
                assert float(rec[col]) == pytest.approx(row[col])
            elif row[col] is None:
                assert rec[col] == ""
            else:
                assert rec[col] == str(row[col])


def test_csv_with_no_rows_is_just_the_header():
    assert _parse_csv(rows_to_csv_io([]).getvalue()) == [CSV_HEADERS]


def test_csv_filename():
    assert csv_filename("2024-03-08", "2024-03-31") == "OTCReport_2024-03-08_to_2024-03-31.csv"
