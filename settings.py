import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

HERE = os.path.abspath(os.path.dirname(__file__))

DEFAULT_LODGIFY_BASE = "https://api.lodgify.com"
STOP_POLICIES = ("all", "any")


def _parse_csv_list(s: str) -> List[str]:
    return [x.strip() for x in (s or "").split(",") if x.strip()]


def _env_str(name: str, default: str = "") -> str:
    # Treat empty env vars as "unset" so `.env` lines like `LODGIFY_BASE=` don't clobber defaults.
    v = (os.getenv(name) or "").strip()
    return v or default


def _env_int(name: str, default: int) -> int:
    try:
        v = os.getenv(name, "").strip()
        return int(v) if v else default
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    lodgify_api_key: str = ""
    lodgify_base: str = DEFAULT_LODGIFY_BASE
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    host: str = "0.0.0.0"
    port: int = 8080
    page_size: int = 50
    max_pages: int = 200
    stop_policy: str = "all"
    timeout: int = 60
    http_pool_maxsize: int = 10
    log_level: str = "INFO"


def load_settings(env_file: Optional[str] = None) -> Settings:
    """
    Build the process-wide Settings once at startup.

    Real environment variables win over `.env` values. The API key is read
    case-insensitively (`LODGIFY_API_KEY` or `lodgify_api_key`) because some
    hosting consoles lower-case secret names.
    """
    load_dotenv(env_file or os.path.join(HERE, ".env"), override=False)
    load_dotenv(override=False)

    policy = _env_str("OTC_STOP_POLICY", "all").lower()
    return Settings(
        lodgify_api_key=_env_str("LODGIFY_API_KEY") or _env_str("lodgify_api_key"),
        lodgify_base=_env_str("LODGIFY_BASE", DEFAULT_LODGIFY_BASE).rstrip("/"),
        cors_origins=_parse_csv_list(_env_str("CORS_ORIGINS", "*")),
        host=_env_str("HOST", "0.0.0.0"),
        port=_env_int("PORT", 8080),
        page_size=max(1, _env_int("OTC_PAGE_SIZE", 50)),
        max_pages=max(1, _env_int("OTC_MAX_PAGES", 200)),
        stop_policy=policy if policy in STOP_POLICIES else "all",
        timeout=max(1, _env_int("LODGIFY_TIMEOUT", 60)),
        http_pool_maxsize=max(1, _env_int("HTTP_POOL_MAXSIZE", 10)),
        log_level=_env_str("LOG_LEVEL", "INFO").upper(),
    )
