"""
Lodgify API client.

Auth: API key in the `X-ApiKey` header. Base URL comes from Settings.
Also holds the payload helpers that locate the item list and the reported
total inside Lodgify list responses, which differ between v1 and v2
endpoints.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter

from otc_errors import ConfigurationError, ShapeError, UpstreamError
from settings import Settings

logger = logging.getLogger(__name__)

PING_PATH = "/v1/countries"
BOOKINGS_PATH = "/v2/reservations/bookings"


def _make_session(pool_size: int) -> requests.Session:
    s = requests.Session()
    adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size)
    s.mount("http://", adapter)
    s.mount("https://", adapter)
    return s


def _error_detail(resp: requests.Response) -> str:
    """Prefer the `message`/`error` field of a JSON error body, else the raw text."""
    text = resp.text or ""
    try:
        j = resp.json()
    except ValueError:
        return text.strip()
    if isinstance(j, dict):
        for key in ("message", "error"):
            v = j.get(key)
            if isinstance(v, str) and v.strip():
                return v.strip()
    return text.strip()


class LodgifyClient:
    """
    Thin synchronous client. One instance per concurrent operation: the
    underlying requests.Session is not shared between threads.
    """

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.settings = settings
        self.session = session or _make_session(settings.http_pool_maxsize)

    def call(
        self,
        path: str,
        method: str = "GET",
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        body: Any = None,
    ) -> Any:
        if not self.settings.lodgify_api_key:
            raise ConfigurationError("Missing LODGIFY_API_KEY env var")

        url = f"{self.settings.lodgify_base}/{path.lstrip('/')}"
        request_headers = {
            "Accept": "application/json",
            "X-ApiKey": self.settings.lodgify_api_key,
        }
        if headers:
            request_headers.update(headers)

        logger.info(f"Lodgify request: {method} {path} {params or {}}")
        try:
            resp = self.session.request(
                method,
                url,
                headers=request_headers,
                params=params,
                json=body,
                timeout=self.settings.timeout,
            )
        except requests.RequestException as e:
            logger.warning(f"Lodgify request error on {path}: {e!r}")
            raise UpstreamError(f"Lodgify request failed: {e}") from e

        if not resp.ok:
            detail = _error_detail(resp)
            logger.warning(f"Lodgify {resp.status_code} on {path}: {detail[:200]}")
            raise UpstreamError(f"Lodgify {resp.status_code}: {detail}".strip(), resp.status_code)

        # Some endpoints answer 204/empty or text; wrap instead of dropping it
        text = resp.text
        try:
            return resp.json()
        except ValueError:
            return {"raw": text}

    def ping(self) -> Optional[int]:
        data = self.call(PING_PATH)
        return len(data) if isinstance(data, list) else None

    def close(self):
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


# ---------- list payload helpers ----------

def _items_from_list(payload: Any) -> Optional[List[Any]]:
    return payload if isinstance(payload, list) else None


def _items_under(key: str) -> Callable[[Any], Optional[List[Any]]]:
    def strategy(payload: Any) -> Optional[List[Any]]:
        if isinstance(payload, dict) and isinstance(payload.get(key), list):
            return payload[key]
        return None
    strategy.__name__ = f"items_under_{key}"
    return strategy


ITEM_STRATEGIES = [
    _items_from_list,
    _items_under("items"),
    _items_under("data"),
    _items_under("results"),
    _items_under("bookings"),
]


def extract_items(payload: Any) -> List[Any]:
    for strategy in ITEM_STRATEGIES:
        items = strategy(payload)
        if items is not None:
            return items
    kind = type(payload).__name__
    keys = sorted(payload.keys())[:10] if isinstance(payload, dict) else []
    raise ShapeError(f"Unexpected list payload from Lodgify ({kind}, keys={keys})")


def _as_count(v: Any) -> Optional[int]:
    if isinstance(v, bool):
        return None
    if isinstance(v, int):
        return v if v >= 0 else None
    if isinstance(v, float) and v.is_integer() and v >= 0:
        return int(v)
    if isinstance(v, str) and v.strip().isdigit():
        return int(v.strip())
    return None


def _total_under(*path: str) -> Callable[[Any], Optional[int]]:
    def strategy(payload: Any) -> Optional[int]:
        node = payload
        for key in path:
            if not isinstance(node, dict) or key not in node:
                return None
            node = node[key]
        return _as_count(node)
    strategy.__name__ = "total_under_" + "_".join(path)
    return strategy


TOTAL_STRATEGIES = [
    _total_under("count"),
    _total_under("total"),
    _total_under("totalCount"),
    _total_under("total_count"),
    _total_under("meta", "total"),
]


def extract_total(payload: Any) -> Optional[int]:
    for strategy in TOTAL_STRATEGIES:
        total = strategy(payload)
        if total is not None:
            return total
    return None
