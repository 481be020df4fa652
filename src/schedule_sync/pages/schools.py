"""School index page parser (/lectio/login_list.aspx and similar).

Each school appears as <a href="/lectio/{id}/default.aspx">{name}</a>; the
school id is what SessionFetcher puts in every portal URL.
"""

import re

from bs4 import BeautifulSoup

from src.schedule_sync.logging import get_logger

log = get_logger(__name__)

_SCHOOL_HREF = re.compile(r"^/lectio/(\d+)/default\.aspx$")
_SHOW_ALL_LINK = "Vis alle skoler"


def parse_school_list(html: str) -> dict[str, str]:
    """School id -> school name, in page order. Duplicate ids keep the first name."""
    soup = BeautifulSoup(html, "html.parser")
    schools: dict[str, str] = {}
    for link in soup.select("a[href]"):
        match = _SCHOOL_HREF.match(link["href"].strip())
        if not match:
            continue
        name = link.get_text(strip=True)
        if not name or name == _SHOW_ALL_LINK:
            continue
        schools.setdefault(match.group(1), name)

    log.info("school_list_parsed", schools=len(schools))
    return schools
