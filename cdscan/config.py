import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


REGION_URLS = {
    "US": "https://api-us.cybedefend.com",
    "EU": "https://api-eu.cybedefend.com",
}
DEFAULT_REGION = "US"
DEBUG_BASE_URL = "http://localhost:3000"


def region_from_value(value: Optional[str]) -> str:
    """Parse a persisted/env region value. Unknown values fall back to US."""
    v = (value or "").strip().upper()
    return v if v in REGION_URLS else DEFAULT_REGION


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass
class Settings:
    api_key: Optional[str] = None
    project_id: Optional[str] = None
    region: str = DEFAULT_REGION
    debug: bool = False
    api_url: Optional[str] = None
    poll_interval: int = 5
    poll_attempts: int = 60
    page_size: int = 50
    connect_timeout: float = 60.0
    read_timeout: float = 120.0
    verbose: bool = False
    host: str = "127.0.0.1"
    port: int = 8008

    @property
    def base_url(self) -> str:
        if self.api_url:
            return self.api_url.rstrip("/")
        if self.debug:
            return DEBUG_BASE_URL
        return REGION_URLS[region_from_value(self.region)]


def load_settings(**overrides) -> Settings:
    """Build Settings from the environment (and .env), then apply non-None overrides."""
    load_dotenv()
    settings = Settings(
        api_key=os.getenv("CYBEDEFEND_API_KEY") or None,
        project_id=os.getenv("CYBEDEFEND_PROJECT_ID") or None,
        region=region_from_value(os.getenv("CYBEDEFEND_REGION")),
        debug=_env_flag("CYBEDEFEND_DEBUG"),
        api_url=os.getenv("CYBEDEFEND_API_URL") or None,
        poll_interval=max(0, _env_int("CYBEDEFEND_POLL_INTERVAL", 5)),
        poll_attempts=max(1, _env_int("CYBEDEFEND_POLL_ATTEMPTS", 60)),
        page_size=max(1, _env_int("CYBEDEFEND_PAGE_SIZE", 50)),
        verbose=_env_flag("CYBEDEFEND_VERBOSE"),
        host=os.getenv("HOST") or "127.0.0.1",
        port=_env_int("PORT", 8008),
    )
    for key, value in overrides.items():
        if value is None:
            continue
        if key == "region":
            value = region_from_value(value)
        setattr(settings, key, value)
    return settings
