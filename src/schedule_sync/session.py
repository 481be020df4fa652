"""Cookie-authenticated portal fetches.

SessionFetcher sends a student's cookie jar, follows redirects by hand under a
hop cap, recognises the portal's robot/verification page (the only sign a
session was revoked) and reports which cookies the portal rotated.
"""

from collections.abc import Mapping
from urllib.parse import urljoin

import requests

from src.schedule_sync.config import SyncConfig, get_config
from src.schedule_sync.cookies import (
    build_cookie_header,
    changed_cookies,
    parse_set_cookie_header,
)
from src.schedule_sync.errors import HttpError, NetworkError, SessionInvalidError
from src.schedule_sync.logging import get_logger
from src.schedule_sync.models import Cookie, CookieJar, FetchResult
from src.schedule_sync.utils import Clock, utc_now

logger = get_logger(__name__)

REDIRECT_STATUSES: frozenset[int] = frozenset({301, 302, 303, 307, 308})

# Served instead of the requested page once cookies stop being accepted
# ("for security reasons", "that you are not a robot").
ROBOT_MARKERS: tuple[str, ...] = (
    "Af hensyn til sikkerheden",
    "ikke er en robot",
    "captcha",
)


def is_robot_page(html: str) -> bool:
    return any(marker in html for marker in ROBOT_MARKERS)


class SessionFetcher:
    """Fetches portal pages with a student's cookie jar.

    The HTTP session is injected so tests and callers control transport; only
    headers built here are sent, never requests' own cookie store.
    """

    def __init__(
        self,
        config: SyncConfig | None = None,
        http: requests.Session | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.config = config or get_config()
        self.http = http or requests.Session()
        self.clock = clock

    def build_url(self, school_id: str, path: str) -> str:
        return f"{self.config.portal_base_url.rstrip('/')}/{school_id}{path}"

    def fetch(
        self,
        school_id: str,
        path: str,
        cookie_jar: CookieJar | Mapping[str, str],
        params: Mapping[str, str] | None = None,
    ) -> FetchResult:
        """Fetch a page for a school with the given cookies.

        Args:
            school_id: Portal school id, used as a path segment.
            path: Page path, e.g. "/SkemaNy.aspx".
            cookie_jar: Jar (or plain name -> value mapping) to send.
            params: Optional query parameters for the first request.

        Returns:
            FetchResult with the body and only those cookies whose value
            differs from what was sent.

        Raises:
            SessionInvalidError: Robot/verification page served, whatever the status.
            HttpError: Non-2xx final response.
            NetworkError: Transport failure.
        """
        sent = cookie_jar.values() if isinstance(cookie_jar, CookieJar) else dict(cookie_jar)
        current = dict(sent)
        received: dict[str, Cookie] = {}

        url = self.build_url(school_id, path)
        logger.info(
            "portal_fetch_started",
            url=url,
            cookie_names=sorted(name for name, value in sent.items() if value),
        )

        response = self._get(url, current, params)
        received.update(self._cookies_from(response))

        redirects = 0
        while response.status_code in REDIRECT_STATUSES:
            location = response.headers.get("Location")
            if not location:
                break
            if redirects >= self.config.max_redirects:
                logger.warning(
                    "portal_max_redirects_reached",
                    max_redirects=self.config.max_redirects,
                    location=location,
                )
                break

            redirects += 1
            url = urljoin(url, location)
            # Cookies rotated mid-chain go out on the next hop, as a browser would
            current.update({name: cookie.value for name, cookie in received.items()})
            logger.debug("portal_redirect", hop=redirects, url=url)

            response = self._get(url, current, None)
            received.update(self._cookies_from(response))

        html = response.text
        if is_robot_page(html):
            logger.warning(
                "portal_session_invalid",
                url=url,
                status=response.status_code,
            )
            raise SessionInvalidError(
                "Robot detection triggered - session is logged out or cookies are invalid"
            )

        capped_redirect = (
            response.status_code in REDIRECT_STATUSES and redirects >= self.config.max_redirects
        )
        if not (200 <= response.status_code < 300) and not capped_redirect:
            logger.warning("portal_http_error", url=url, status=response.status_code)
            raise HttpError(
                f"Failed to fetch portal page: {response.status_code} {response.reason}",
                status_code=response.status_code,
            )

        updated = changed_cookies(received, sent)
        if updated:
            logger.info("portal_cookies_rotated", cookie_names=sorted(updated))

        logger.info(
            "portal_fetch_succeeded",
            url=url,
            status=response.status_code,
            redirects=redirects,
            html_length=len(html),
        )
        return FetchResult(
            html=html,
            updated_cookies=updated,
            status_code=response.status_code,
            url=url,
            redirects=redirects,
        )

    def _get(
        self,
        url: str,
        cookies: Mapping[str, str],
        params: Mapping[str, str] | None,
    ) -> requests.Response:
        headers = {
            "Cookie": build_cookie_header(cookies),
            "User-Agent": self.config.user_agent,
            "Referer": self.config.referer,
            "Accept-Encoding": "gzip, deflate",
        }
        try:
            return self.http.get(
                url,
                headers=headers,
                params=dict(params) if params else None,
                allow_redirects=False,
                timeout=self.config.request_timeout_seconds,
            )
        except requests.Timeout as e:
            logger.warning("portal_timeout", url=url, error=str(e))
            raise NetworkError(f"Portal request timed out: {e}") from e
        except requests.RequestException as e:
            logger.warning("portal_network_error", url=url, error=str(e), type=type(e).__name__)
            raise NetworkError(f"Portal request failed: {e}") from e
        finally:
            # The jar passed in is the only cookie state; requests' own copy
            # would otherwise collect every student's tokens on a shared session
            self.http.cookies.clear()

    def _cookies_from(self, response: requests.Response) -> dict[str, Cookie]:
        header = response.headers.get("Set-Cookie")
        if not header:
            return {}
        return parse_set_cookie_header(header, clock=self.clock)
