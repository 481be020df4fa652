"""Set-Cookie parsing and cookie jar diffing for rotating portal sessions.

The portal rotates its session cookies on arbitrary responses. requests joins
repeated Set-Cookie headers with ", ", and Expires= dates carry their own
commas ("Expires=Mon, 20 Oct 2025 08:00:00 GMT"), so the joined header is
split only where a comma is followed by something shaped like "name=".
"""

import re
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime

from src.schedule_sync.logging import get_logger
from src.schedule_sync.models import Cookie
from src.schedule_sync.utils import Clock, utc_now

log = get_logger(__name__)

# RFC 6265 token characters for a cookie name
_COOKIE_BOUNDARY = re.compile(r",(?=\s*[!#$%&'*+\-.^_`|~0-9A-Za-z]+=)")
_NAME_VALUE = re.compile(r"^\s*([^=;,\s]+)\s*=\s*([^;]*)")
_EXPIRES = re.compile(r";\s*expires\s*=\s*([^;]+)", re.IGNORECASE)
_MAX_AGE = re.compile(r";\s*max-age\s*=\s*(-?\d+)", re.IGNORECASE)


def split_set_cookie_header(header: str) -> list[str]:
    """Split a joined Set-Cookie header into one string per cookie."""
    return [part.strip() for part in _COOKIE_BOUNDARY.split(header) if part.strip()]


def parse_expiry(cookie_string: str, now: datetime) -> datetime | None:
    """Expiry of a single Set-Cookie string.

    Expires= wins over Max-Age=; an unparsable Expires= falls through to
    Max-Age=. Returns None for session cookies.
    """
    expires = _EXPIRES.search(cookie_string)
    if expires:
        try:
            parsed = parsedate_to_datetime(expires.group(1).strip())
        except (TypeError, ValueError):
            parsed = None
        if parsed is not None:
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed

    max_age = _MAX_AGE.search(cookie_string)
    if max_age:
        return now + timedelta(seconds=int(max_age.group(1)))

    return None


def parse_set_cookie_header(header: str, clock: Clock = utc_now) -> dict[str, Cookie]:
    """Parse a (possibly joined) Set-Cookie header into name -> Cookie.

    Cookies set to an empty value are deletions and are left out; jar values
    are never empty. A name repeated in the header keeps its last value.
    """
    now = clock()
    cookies: dict[str, Cookie] = {}
    for part in split_set_cookie_header(header):
        match = _NAME_VALUE.match(part)
        if not match:
            log.debug("set_cookie_unparsable", fragment=part[:40])
            continue
        name, value = match.group(1), match.group(2).strip()
        if not value:
            log.debug("set_cookie_empty_value", cookie=name)
            continue
        cookies[name] = Cookie(value=value, expires_at=parse_expiry(part, now))
    return cookies


def build_cookie_header(values: Mapping[str, str]) -> str:
    """Cookie request header from name -> value; empty values are not sent."""
    return "; ".join(f"{name}={value}" for name, value in values.items() if value)


def changed_cookies(received: Mapping[str, Cookie], sent: Mapping[str, str]) -> dict[str, Cookie]:
    """Cookies whose value differs from what was sent (or that weren't sent at all)."""
    return {
        name: cookie
        for name, cookie in received.items()
        if sent.get(name) != cookie.value
    }
