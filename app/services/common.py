from datetime import datetime, timezone
from urllib.parse import urlparse

from dateutil import parser as dt_parser


WEB_URL_SCHEMES = ("http", "https")


def parse_tags(raw: str | None) -> list[str] | None:
    if not raw:
        return None
    tokens = [t.strip() for t in raw.split(",")]
    tags = [t for t in tokens if t]
    return tags or None


def format_tags(tags: list[str] | None) -> str:
    return ", ".join(tags or [])


def optional_text(value: str | None) -> str | None:
    text = (value or "").strip()
    return text or None


def hostname(url: str) -> str:
    try:
        netloc = urlparse(url).hostname
    except ValueError:
        return url
    if not netloc:
        return url
    return netloc.removeprefix("www.")


def is_web_url(url: str | None) -> bool:
    try:
        parsed = urlparse((url or "").strip())
    except ValueError:
        return False
    return parsed.scheme.lower() in WEB_URL_SCHEMES and bool(parsed.netloc)


def parse_timestamp(value) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = dt_parser.isoparse(str(value))
        except (TypeError, ValueError):
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def safe_redirect_target(raw_next: str | None, fallback: str) -> str:
    candidate = (raw_next or "").strip()
    if candidate.startswith("/") and not candidate.startswith("//"):
        return candidate
    return fallback
