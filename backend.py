import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Tuple

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from booking_fetch import FETCH_MODES, FetchResult, fetch_all_bookings
from lodgify_client import BOOKINGS_PATH, LodgifyClient
from otc_bookings import parse_bookings
from otc_dates import overlaps
from otc_errors import OtcError, ValidationError
from otc_report import build_rows, csv_filename, parse_range, report_envelope, rows_to_csv_io
from property_lookup import PropertyLookup
from settings import Settings, load_settings

logger = logging.getLogger(__name__)

HERE = os.path.abspath(os.path.dirname(__file__))
UI_DIR = os.path.join(HERE, "ui")

MAX_PAGE_SIZE = 200
DEBUG_ID_SAMPLE = 50


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def clampInt(n, minv, maxv) -> Optional[int]:
    try:
        n = int(float(n))
        return max(minv, min(maxv, n))
    except (TypeError, ValueError, OverflowError):
        return None


def _format_server_timing(timings: Dict[str, float]) -> str:
    parts = []
    for k, v in timings.items():
        parts.append(f"{k};dur={v*1000:.1f}")
    return ", ".join(parts)


def _page_size(size: Optional[str], limit: Optional[str], default: int) -> int:
    raw = size if size not in (None, "") else limit
    if raw in (None, ""):
        return default
    n = clampInt(raw, 1, MAX_PAGE_SIZE)
    if n is None:
        raise ValidationError(f"size/limit must be a number between 1 and {MAX_PAGE_SIZE}")
    return n


def _fetch_mode(mode: Optional[str]) -> str:
    m = (mode or "all").strip().lower()
    if m not in FETCH_MODES:
        raise ValidationError(f"fetchMode must be one of: {', '.join(FETCH_MODES)}")
    return m


def submit_timed(executor: ThreadPoolExecutor, timings: Dict[str, float], label: str, fn: Callable[[], Any]):
    def wrapped():
        t0 = time.perf_counter()
        try:
            return fn()
        finally:
            timings[label] = time.perf_counter() - t0
    return executor.submit(wrapped)


def _load_property_map(settings: Settings) -> Dict[int, str]:
    with LodgifyClient(settings) as client:
        return PropertyLookup(client).fetch()


def _load_bookings(settings: Settings, page_size: int, mode: str, date_range: Tuple[date, date]) -> FetchResult:
    with LodgifyClient(settings) as client:
        return fetch_all_bookings(
            client,
            page_size=page_size,
            mode=mode,
            date_range=date_range,
            max_pages=settings.max_pages,
            stop_policy=settings.stop_policy,
        )


def build_report(
    settings: Settings,
    q_from: Optional[str],
    q_to: Optional[str],
    size: Optional[str],
    limit: Optional[str],
    fetch_mode: Optional[str],
    timings: Dict[str, float],
) -> Dict[str, Any]:
    """Validate the query, pull properties and bookings side by side, build rows."""
    d_from, d_to = parse_range(q_from, q_to)
    page_size = _page_size(size, limit, settings.page_size)
    mode = _fetch_mode(fetch_mode)

    with ThreadPoolExecutor(max_workers=2) as ex:
        fut_props = submit_timed(ex, timings, "fetch_properties", lambda: _load_property_map(settings))
        fut_bookings = submit_timed(
            ex, timings, "fetch_bookings", lambda: _load_bookings(settings, page_size, mode, (d_from, d_to))
        )
        fetched = fut_bookings.result()
        property_map = fut_props.result()

    t0 = time.perf_counter()
    bookings = parse_bookings(fetched.bookings)
    rows = build_rows(bookings, property_map, d_from, d_to)
    timings["build_rows"] = time.perf_counter() - t0

    logger.info(
        f"otc {d_from}..{d_to}: {len(bookings)} bookings ({fetched.pages} pages, {fetched.stop_reason}), "
        f"{len(rows)} rows; timings: {_format_server_timing(timings)}"
    )
    return report_envelope(d_from.isoformat(), d_to.isoformat(), len(bookings), rows)


def _run(label: str, fn: Callable[[], Any]) -> Any:
    try:
        return fn()
    except OtcError:
        raise
    except Exception as e:
        logger.exception(f"{label} failed")
        raise OtcError(f"{label} failed: {e}") from e


# ---------- routes ----------
api = APIRouter()


@api.get("/_ping")
def ping(settings: Settings = Depends(get_settings)):
    def go():
        with LodgifyClient(settings) as client:
            return {"ok": True, "sampleCount": client.ping()}
    return _run("ping", go)


@api.get("/bookings")
def bookings_page(
    page: Optional[str] = None,
    size: Optional[str] = None,
    settings: Settings = Depends(get_settings),
):
    """Single raw upstream page, for checking what Lodgify actually sends."""
    page_no = 1 if page in (None, "") else clampInt(page, 1, 100000)
    if page_no is None:
        raise ValidationError("page must be a number")
    page_size = _page_size(size, None, settings.page_size)

    def go():
        with LodgifyClient(settings) as client:
            data = client.call(BOOKINGS_PATH, params={"page": page_no, "size": page_size, "includeCount": "true"})
        return {"ok": True, "data": data}
    return _run("bookings", go)


@api.get("/otc")
def otc_json(
    response: Response,
    q_from: Optional[str] = Query(None, alias="from"),
    q_to: Optional[str] = Query(None, alias="to"),
    size: Optional[str] = None,
    limit: Optional[str] = None,
    fetchMode: Optional[str] = None,
    settings: Settings = Depends(get_settings),
):
    timings: Dict[str, float] = {}
    total_start = time.perf_counter()
    report = _run("otc", lambda: build_report(settings, q_from, q_to, size, limit, fetchMode, timings))
    timings["total"] = time.perf_counter() - total_start
    response.headers["Server-Timing"] = _format_server_timing(timings)
    return report


@api.get("/otc.csv")
def otc_csv(
    q_from: Optional[str] = Query(None, alias="from"),
    q_to: Optional[str] = Query(None, alias="to"),
    size: Optional[str] = None,
    limit: Optional[str] = None,
    fetchMode: Optional[str] = None,
    settings: Settings = Depends(get_settings),
):
    timings: Dict[str, float] = {}
    total_start = time.perf_counter()
    report = _run("otc.csv", lambda: build_report(settings, q_from, q_to, size, limit, fetchMode, timings))
    data = rows_to_csv_io(report["rows"]).getvalue().encode("utf-8")  # BOM already in text
    timings["total"] = time.perf_counter() - total_start
    headers = {
        "Content-Disposition": f'attachment; filename="{csv_filename(report["from"], report["to"])}"',
        "Server-Timing": _format_server_timing(timings),
    }
    return Response(content=data, media_type="text/csv; charset=utf-8", headers=headers)


def _mode_summary(fetched: FetchResult, d_from: date, d_to: date) -> Tuple[Dict[str, Any], List[str]]:
    parsed = parse_bookings(fetched.bookings)
    in_range = [
        str(b.id) for b in parsed
        if b.arrival and b.departure and overlaps(b.arrival, b.departure, d_from, d_to)
    ]
    summary = {
        "fetched": len(parsed),
        "reportedTotal": fetched.reported_total,
        "pages": fetched.pages,
        "scheme": fetched.scheme,
        "stopReason": fetched.stop_reason,
        "inRange": len(in_range),
    }
    return summary, in_range


@api.get("/debug/bookings")
def debug_bookings(
    q_from: Optional[str] = Query(None, alias="from"),
    q_to: Optional[str] = Query(None, alias="to"),
    size: Optional[str] = None,
    limit: Optional[str] = None,
    settings: Settings = Depends(get_settings),
):
    """Compare the unfiltered pull against Lodgify's own date filtering."""
    d_from, d_to = parse_range(q_from, q_to)
    page_size = _page_size(size, limit, settings.page_size)

    def go():
        timings: Dict[str, float] = {}
        with ThreadPoolExecutor(max_workers=2) as ex:
            fut_all = submit_timed(ex, timings, "all", lambda: _load_bookings(settings, page_size, "all", (d_from, d_to)))
            fut_filtered = submit_timed(
                ex, timings, "filtered", lambda: _load_bookings(settings, page_size, "filtered", (d_from, d_to))
            )
            all_summary, all_ids = _mode_summary(fut_all.result(), d_from, d_to)
            filtered_summary, filtered_ids = _mode_summary(fut_filtered.result(), d_from, d_to)

        filtered_set = set(filtered_ids)
        all_set = set(all_ids)
        return {
            "ok": True,
            "from": d_from.isoformat(),
            "to": d_to.isoformat(),
            "all": all_summary,
            "filtered": filtered_summary,
            "missingFromFiltered": [i for i in all_ids if i not in filtered_set][:DEBUG_ID_SAMPLE],
            "extraInFiltered": [i for i in filtered_ids if i not in all_set][:DEBUG_ID_SAMPLE],
            "timings": {k: round(v * 1000, 1) for k, v in timings.items()},
        }
    return _run("debug/bookings", go)


# ---------- app ----------

def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"ok": False, "error": message}, status_code=status_code)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    app = FastAPI(title="OTC Report API")
    app.state.settings = settings
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition", "Server-Timing"],
    )

    @app.exception_handler(OtcError)
    async def otc_error_handler(request: Request, exc: OtcError):
        logger.warning(f"{request.url.path} -> {exc.status_code}: {exc.message}")
        return _error_response(exc.status_code, exc.message)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(f"{request.url.path} failed", exc_info=exc)
        return _error_response(500, f"{request.url.path} failed: {exc}")

    @app.get("/health")
    def health():
        return {"ok": True}

    # Build app with router and static mount (static last)
    app.include_router(api, prefix="/api")
    app.mount("/", StaticFiles(directory=UI_DIR, html=True), name="ui")
    return app


app = create_app()
