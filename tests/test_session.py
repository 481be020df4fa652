import pytest
import requests

from src.schedule_sync.errors import HttpError, NetworkError, SessionInvalidError
from src.schedule_sync.models import Cookie, CookieJar
from src.schedule_sync.session import SessionFetcher, is_robot_page
from tests.fakes import FakeHttp, FakeResponse

JAR = CookieJar(
    cookies={
        "ASP.NET_SessionId": Cookie(value="sess-1"),
        "autologinkeyV2": Cookie(value="auto-1"),
    }
)


def _fetcher(config, clock, responses):
    http = FakeHttp(responses)
    return SessionFetcher(config, http=http, clock=clock), http


class TestFetch:
    def test_sends_jar_as_single_cookie_header(self, config, clock):
        fetcher, http = _fetcher(config, clock, [FakeResponse(text="<html>ok</html>")])

        result = fetcher.fetch("94", "/SkemaNy.aspx", JAR, params={"week": "442025"})

        url, kwargs = http.calls[0]
        assert url == "https://portal.example/lectio/94/SkemaNy.aspx"
        assert kwargs["headers"]["Cookie"] == "ASP.NET_SessionId=sess-1; autologinkeyV2=auto-1"
        assert kwargs["params"] == {"week": "442025"}
        assert kwargs["allow_redirects"] is False
        assert result.html == "<html>ok</html>"
        assert result.updated_cookies == {}

    def test_reports_only_rotated_cookies(self, config, clock):
        header = (
            "ASP.NET_SessionId=sess-1; path=/, "
            "autologinkeyV2=auto-2; expires=Mon, 20 Oct 2025 08:00:00 GMT; path=/"
        )
        fetcher, _ = _fetcher(config, clock, [FakeResponse(text="ok", headers={"Set-Cookie": header})])

        result = fetcher.fetch("94", "/SkemaNy.aspx", JAR)

        assert list(result.updated_cookies) == ["autologinkeyV2"]
        assert result.updated_cookies["autologinkeyV2"].value == "auto-2"
        assert result.updated_cookies["autologinkeyV2"].expires_at is not None

    def test_http_session_keeps_no_cookies_between_fetches(self, config, clock):
        responses = [
            FakeResponse(302, headers={"Location": "/lectio/94/SkemaNy.aspx", "Set-Cookie": "autologinkeyV2=auto-2; path=/"}),
            FakeResponse(text="schedule", headers={"Set-Cookie": "ASP.NET_SessionId=sess-2; path=/"}),
            requests.ConnectionError("refused"),
        ]
        fetcher, http = _fetcher(config, clock, responses)

        fetcher.fetch("94", "/SkemaNy.aspx", JAR)
        assert len(http.cookies) == 0

        with pytest.raises(NetworkError):
            fetcher.fetch("94", "/SkemaNy.aspx", JAR)
        assert len(http.cookies) == 0

    def test_follows_relative_redirects_with_rotated_cookies(self, config, clock):
        responses = [
            FakeResponse(302, headers={"Location": "/lectio/94/login.aspx", "Set-Cookie": "ASP.NET_SessionId=sess-9; path=/"}),
            FakeResponse(302, headers={"Location": "https://portal.example/lectio/94/SkemaNy.aspx?x=1"}),
            FakeResponse(text="schedule"),
        ]
        fetcher, http = _fetcher(config, clock, responses)

        result = fetcher.fetch("94", "/SkemaNy.aspx", JAR)

        assert result.redirects == 2
        assert result.html == "schedule"
        assert http.calls[1][0] == "https://portal.example/lectio/94/login.aspx"
        assert "ASP.NET_SessionId=sess-9" in http.calls[1][1]["headers"]["Cookie"]
        assert result.updated_cookies["ASP.NET_SessionId"].value == "sess-9"

    def test_redirect_cap_surfaces_last_response(self, config, clock):
        loop = [FakeResponse(302, text="moved", headers={"Location": "/loop"}) for _ in range(10)]
        fetcher, http = _fetcher(config, clock, loop)

        result = fetcher.fetch("94", "/SkemaNy.aspx", JAR)

        assert len(http.calls) == config.max_redirects + 1
        assert result.redirects == config.max_redirects
        assert result.status_code == 302
        assert result.html == "moved"

    def test_robot_marker_beats_status(self, config, clock):
        page = "<p>Af hensyn til sikkerheden skal du bekræfte at du ikke er en robot</p>"
        fetcher, _ = _fetcher(config, clock, [FakeResponse(500, text=page)])

        with pytest.raises(SessionInvalidError):
            fetcher.fetch("94", "/SkemaNy.aspx", JAR)

    def test_robot_marker_on_200(self, config, clock):
        fetcher, _ = _fetcher(config, clock, [FakeResponse(text="please solve the captcha")])

        with pytest.raises(SessionInvalidError):
            fetcher.fetch("94", "/SkemaNy.aspx", JAR)

    def test_non_2xx_is_http_error(self, config, clock):
        fetcher, _ = _fetcher(config, clock, [FakeResponse(503, text="down", reason="Service Unavailable")])

        with pytest.raises(HttpError) as exc_info:
            fetcher.fetch("94", "/SkemaNy.aspx", JAR)
        assert exc_info.value.status_code == 503

    def test_transport_failure_is_network_error(self, config, clock):
        fetcher, _ = _fetcher(config, clock, [requests.ConnectionError("refused")])

        with pytest.raises(NetworkError):
            fetcher.fetch("94", "/SkemaNy.aspx", JAR)

    def test_timeout_is_network_error(self, config, clock):
        fetcher, _ = _fetcher(config, clock, [requests.ReadTimeout("slow")])

        with pytest.raises(NetworkError):
            fetcher.fetch("94", "/SkemaNy.aspx", {"autologinkeyV2": "auto-1"})


def test_is_robot_page():
    assert is_robot_page("... ikke er en robot ...")
    assert not is_robot_page("<td data-date='2025-10-20'></td>")
