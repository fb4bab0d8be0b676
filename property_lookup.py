import logging
from typing import Any, Dict, List, Optional

from lodgify_client import LodgifyClient, extract_items
from otc_bookings import parse_int
from otc_errors import UpstreamError

logger = logging.getLogger(__name__)

# v2 listing first, then the legacy v1 one
PROPERTY_ENDPOINTS = ("/v2/properties", "/v1/properties")


def property_names(items: List[Any]) -> Dict[int, str]:
    names: Dict[int, str] = {}
    for it in items:
        if not isinstance(it, dict):
            continue
        pid = parse_int(it.get("id"))
        name = str(it.get("name") or it.get("title") or "").strip()
        if pid is not None and name and pid not in names:
            names[pid] = name
    return names


class PropertyLookup:
    """
    Property id -> display name, loaded at most once per instance.
    Create one per report request; it never fails the report, an empty map
    just makes rows show the numeric id.
    """

    def __init__(self, client: LodgifyClient):
        self.client = client
        self._names: Optional[Dict[int, str]] = None

    def fetch(self) -> Dict[int, str]:
        if self._names is None:
            self._names = self._load()
        return self._names

    def _load(self) -> Dict[int, str]:
        for path in PROPERTY_ENDPOINTS:
            try:
                names = property_names(extract_items(self.client.call(path)))
            except UpstreamError as e:
                logger.warning(f"property listing {path} failed: {e}")
                continue
            if names:
                logger.info(f"Loaded {len(names)} property names from {path}")
                return names
            logger.warning(f"property listing {path} returned no usable entries")
        logger.warning("No property names available; rows will show property ids")
        return {}
