import pytest

from src.schedule_sync.config import SyncConfig
from src.schedule_sync.models import Cookie, CookieJar, StudentCredential
from src.schedule_sync.stores import FileCredentialStore, FileScheduleStore
from tests.fakes import FIXED_NOW


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def config(tmp_path):
    return SyncConfig(
        _env_file=None,
        portal_base_url="https://portal.example/lectio",
        state_dir=str(tmp_path / "state"),
        schedule_dir=str(tmp_path / "schedules"),
        scrape_job_url="https://api.example/scrape",
        queue_url="https://queue.example",
        queue_token="secret",
    )


@pytest.fixture
def credential_store(config, clock):
    return FileCredentialStore(config.state_dir, clock=clock)


@pytest.fixture
def schedule_store(config):
    return FileScheduleStore(config.schedule_dir)


@pytest.fixture
def stored_credential(credential_store):
    credential = StudentCredential(
        student_id="72721772841",
        school_id="94",
        cookies=CookieJar(
            cookies={
                "ASP.NET_SessionId": Cookie(value="sess-1"),
                "autologinkeyV2": Cookie(value="auto-1"),
            }
        ),
        created_at=FIXED_NOW,
        updated_at=FIXED_NOW,
    )
    return credential_store.create(credential)
