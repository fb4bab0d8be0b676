"""
Paginated booking pull from Lodgify.

Upstream date filtering proved unreliable, so the default mode fetches the
full booking set and the report filters locally. `mode="filtered"` hands the
range to Lodgify and is kept for side-by-side diagnostics only.

Each page is requested with the preferred paging scheme; if that request
fails, the next scheme is tried for the same page. Items are deduplicated by
id (or by their full JSON when they have none), so overlapping pages are
harmless.
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from lodgify_client import BOOKINGS_PATH, LodgifyClient, extract_items, extract_total
from otc_errors import UpstreamError

logger = logging.getLogger(__name__)

FETCH_MODES = ("all", "filtered")


class PagingScheme:
    name = ""

    def params(self, page: int, size: int) -> Dict[str, Any]:
        raise NotImplementedError


class PageSizeScheme(PagingScheme):
    """Lodgify v2 native paging, 1-based page."""

    name = "page+size"

    def params(self, page: int, size: int) -> Dict[str, Any]:
        return {"page": page, "size": size}


class OffsetLimitScheme(PagingScheme):
    name = "offset+limit"

    def params(self, page: int, size: int) -> Dict[str, Any]:
        return {"offset": (page - 1) * size, "limit": size}


DEFAULT_SCHEMES: Tuple[PagingScheme, ...] = (PageSizeScheme(), OffsetLimitScheme())


@dataclass
class FetchResult:
    bookings: List[Dict[str, Any]] = field(default_factory=list)
    reported_total: Optional[int] = None
    pages: int = 0
    scheme: str = ""
    stop_reason: str = ""


def dedup_key(item: Any) -> str:
    if isinstance(item, dict) and item.get("id") is not None:
        return f"id:{item['id']}"
    return "json:" + json.dumps(item, sort_keys=True, default=str)


def base_query(mode: str, date_range: Optional[Tuple[date, date]]) -> Dict[str, Any]:
    q: Dict[str, Any] = {"includeCount": "true"}
    if mode == "filtered" and date_range:
        date_from, date_to = date_range
        q["stayFilter"] = "ArrivalDate"
        q["stayFilterDate"] = f"{date_from.isoformat()}T00:00:00"
        q["to"] = date_to.isoformat()
    else:
        q["stayFilter"] = "All"
    return q


def should_stop(
    policy: str,
    batch_len: int,
    page_size: int,
    distinct: int,
    total: Optional[int],
) -> Optional[str]:
    """Stop reason for the page just aggregated, or None to keep going."""
    short = batch_len < page_size
    reached = total is not None and distinct >= total
    if policy == "any":
        if short:
            return "short_page"
        if reached:
            return "total_reached"
        return None
    # conservative: a reported total must agree with the short page
    if total is None:
        return "short_page" if short else None
    if short and reached:
        return "short_page+total_reached"
    return None


def _fetch_page(
    client: LodgifyClient,
    schemes: List[PagingScheme],
    page: int,
    page_size: int,
    query: Dict[str, Any],
) -> Tuple[Any, PagingScheme]:
    first_err: Optional[UpstreamError] = None
    for i, scheme in enumerate(schemes):
        try:
            payload = client.call(BOOKINGS_PATH, params={**query, **scheme.params(page, page_size)})
            return payload, scheme
        except UpstreamError as e:
            if first_err is None:
                first_err = e
            if i + 1 < len(schemes):
                logger.warning(f"page {page} failed with {scheme.name} ({e}); trying {schemes[i + 1].name}")
    # Re-raise the first error so callers see the root cause, not the fallback's
    raise first_err


def fetch_all_bookings(
    client: LodgifyClient,
    page_size: int = 50,
    mode: str = "all",
    date_range: Optional[Tuple[date, date]] = None,
    max_pages: int = 200,
    stop_policy: str = "all",
    schemes: Tuple[PagingScheme, ...] = DEFAULT_SCHEMES,
) -> FetchResult:
    if mode not in FETCH_MODES:
        raise ValueError(f"unknown fetch mode {mode!r}")
    page_size = max(1, int(page_size))
    query = base_query(mode, date_range)
    ordered = list(schemes)

    result = FetchResult()
    seen: Dict[str, Dict[str, Any]] = {}

    for page in range(1, max_pages + 1):
        payload, used = _fetch_page(client, ordered, page, page_size, query)
        if used is not ordered[0]:
            # stick with whatever worked for the rest of the pull
            ordered.remove(used)
            ordered.insert(0, used)
        result.pages = page
        result.scheme = used.name

        batch = extract_items(payload)
        if result.reported_total is None:
            result.reported_total = extract_total(payload)

        before = len(seen)
        for item in batch:
            seen.setdefault(dedup_key(item), item)
        added = len(seen) - before
        logger.info(
            f"bookings page {page} ({used.name}): {len(batch)} items, {added} new, "
            f"{len(seen)} distinct, reported total {result.reported_total}"
        )

        if not batch:
            result.stop_reason = "empty_page"
            break
        if added == 0:
            logger.warning(f"page {page} added no new bookings; upstream seems to ignore paging")
            result.stop_reason = "no_progress"
            break
        reason = should_stop(stop_policy, len(batch), page_size, len(seen), result.reported_total)
        if reason:
            result.stop_reason = reason
            break
    else:
        logger.warning(f"booking pagination hit the {max_pages}-page ceiling")
        result.stop_reason = "max_pages"

    result.bookings = list(seen.values())
    return result
