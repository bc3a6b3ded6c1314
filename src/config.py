import os
from pathlib import Path
from dataclasses import dataclass

from dotenv import load_dotenv

# .env is read from the working directory (where the service is started)
env_path = Path.cwd() / ".env"
load_dotenv(env_path)


DEFAULT_SECRET_KEY = "dev-secret-key-change-in-production"
DEFAULT_BASE_DOMAIN = "blooreview.app"
DEFAULT_GOOGLE_REVIEW_BASE_URL = "https://search.google.com/local/writereview?placeid="


@dataclass
class Config:
    # HTTP server
    api_host: str
    api_port: int
    # Sessions
    secret_key: str
    session_ttl_days: int
    cookie_secure: bool
    # Tenant URLs
    base_domain: str  # Used when the request host carries no usable domain
    google_review_base_url: str
    # Google Places lookup for the admin flow
    google_maps_api_key: str
    # Best-effort mirror to the tenant feedback sink
    mirror_timeout_sec: int
    # Return-from-Google detection
    return_debounce_ms: int
    return_window_hours: int
    # Exported tenant configs served instead of the database (optional)
    tenant_config_file: str = ""


def clean_env_value(value: str | None, default: str = "") -> str:
    """Strip whitespace and wrapping quotes from an env value."""
    if value is None:
        return default
    return value.strip().strip('"').strip("'")


def parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean env value."""
    if value is None:
        return default
    value = value.strip().strip('"').strip("'").lower()
    if value in {"1", "true", "yes", "y", "on"}:
        return True
    if value in {"0", "false", "no", "n", "off"}:
        return False
    return default


def parse_int(value: str | None, default: int | None = None) -> int | None:
    """Parse an int env value, falling back to default on empty/garbage."""
    if value is None:
        return default
    value = value.strip().strip('"').strip("'")
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def load_config() -> Config:
    """Build Config from the current environment."""
    return Config(
        api_host=clean_env_value(os.getenv("API_HOST"), "0.0.0.0") or "0.0.0.0",
        api_port=parse_int(os.getenv("API_PORT"), 8080),
        secret_key=clean_env_value(os.getenv("SECRET_KEY")) or DEFAULT_SECRET_KEY,
        session_ttl_days=max(1, parse_int(os.getenv("SESSION_TTL_DAYS"), 7)),
        cookie_secure=parse_bool(os.getenv("COOKIE_SECURE"), True),
        base_domain=clean_env_value(os.getenv("BASE_DOMAIN")).lower() or DEFAULT_BASE_DOMAIN,
        google_review_base_url=(
            clean_env_value(os.getenv("GOOGLE_REVIEW_BASE_URL")) or DEFAULT_GOOGLE_REVIEW_BASE_URL
        ),
        google_maps_api_key=clean_env_value(os.getenv("GOOGLE_MAPS_API_KEY")),
        mirror_timeout_sec=max(1, parse_int(os.getenv("MIRROR_TIMEOUT_SEC"), 10)),
        return_debounce_ms=max(0, parse_int(os.getenv("RETURN_DEBOUNCE_MS"), 500)),
        return_window_hours=max(1, parse_int(os.getenv("RETURN_WINDOW_HOURS"), 24)),
        tenant_config_file=clean_env_value(os.getenv("TENANT_CONFIG_FILE")),
    )


CFG = load_config()

# DB path: from env or relative to the working directory
DB_PATH = os.getenv("DB_PATH", str(Path.cwd() / "reviewfunnel.db"))


def is_places_lookup_enabled(config: Config | None = None) -> bool:
    """Places lookup needs a Google Maps API key."""
    return bool((config or CFG).google_maps_api_key)


def is_default_secret_key(config: Config | None = None) -> bool:
    return (config or CFG).secret_key == DEFAULT_SECRET_KEY
