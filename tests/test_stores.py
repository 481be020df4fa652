import json
from datetime import datetime, timezone

import pytest

from src.schedule_sync.errors import NotFoundError
from src.schedule_sync.models import Cookie
from src.schedule_sync.stores import FileCredentialStore, StudentRef
from tests.fakes import FIXED_NOW

STUDENT = "72721772841"


class TestFileCredentialStore:
    def test_create_mirrors_primary_token(self, stored_credential):
        assert stored_credential.primary_token == "auto-1"
        assert stored_credential.cookies.version == 0
        assert stored_credential.active is True

    def test_load_missing_is_not_found(self, credential_store):
        with pytest.raises(NotFoundError):
            credential_store.load("404")

    def test_load_corrupt_document_is_not_found(self, credential_store):
        credential_store.path_for("555").write_text("{not json", encoding="utf-8")

        with pytest.raises(NotFoundError):
            credential_store.load("555")

    def test_unsafe_student_id_is_rejected(self, credential_store):
        with pytest.raises(ValueError):
            credential_store.path_for("../etc/passwd")

    def test_save_merges_by_name(self, credential_store, stored_credential):
        updated = credential_store.save(STUDENT, {"ASP.NET_SessionId": Cookie(value="sess-2")})

        assert updated.cookies.values() == {
            "ASP.NET_SessionId": "sess-2",
            "autologinkeyV2": "auto-1",
        }
        assert updated.cookies.version == 1
        # primary cookie untouched, mirror still points at it
        assert updated.primary_token == "auto-1"

    def test_save_keeps_cookies_rotated_by_another_invocation(self, credential_store, stored_credential, config):
        # Two invocations load the same jar
        other = FileCredentialStore(config.state_dir, clock=lambda: FIXED_NOW)
        other.save(STUDENT, {"autologinkeyV2": Cookie(value="auto-2")})

        credential_store.save(STUDENT, {"ASP.NET_SessionId": Cookie(value="sess-2")})

        stored = credential_store.load(STUDENT)
        assert stored.cookies.values() == {
            "ASP.NET_SessionId": "sess-2",
            "autologinkeyV2": "auto-2",
        }
        assert stored.cookies.version == 2
        assert stored.primary_token == "auto-2"

    def test_primary_token_mirror_follows_rotation(self, credential_store, stored_credential):
        expires = datetime(2026, 1, 1, tzinfo=timezone.utc)

        updated = credential_store.save(
            STUDENT, {"autologinkeyV2": Cookie(value="auto-9", expires_at=expires)}
        )

        assert updated.primary_token == "auto-9"
        assert updated.primary_token_expires_at == expires

    def test_unchanged_values_do_not_bump_version(self, credential_store, stored_credential):
        updated = credential_store.save(STUDENT, {"autologinkeyV2": Cookie(value="auto-1")})
        assert updated.cookies.version == 0

    def test_mark_inactive_keeps_jar(self, credential_store, stored_credential):
        credential_store.mark_inactive(STUDENT)

        stored = credential_store.load(STUDENT)
        assert stored.active is False
        assert stored.cookies.values() == stored_credential.cookies.values()

    def test_document_uses_camel_case(self, credential_store, stored_credential):
        doc = json.loads(credential_store.path_for(STUDENT).read_text(encoding="utf-8"))

        assert doc["studentId"] == STUDENT
        assert doc["schoolId"] == "94"
        assert doc["cookies"]["cookies"]["autologinkeyV2"]["value"] == "auto-1"

    def test_iter_student_refs_reports_incomplete_records(self, credential_store, stored_credential):
        state = credential_store.state_dir
        (state / "nosch.json").write_text(json.dumps({"studentId": "1"}), encoding="utf-8")
        (state / "broken.json").write_text("[[", encoding="utf-8")

        refs = sorted(credential_store.iter_student_refs(), key=lambda r: r.record_id)

        assert refs == [
            StudentRef(record_id=STUDENT, student_id=STUDENT, school_id="94"),
            StudentRef(record_id="broken", student_id=None, school_id=None),
            StudentRef(record_id="nosch", student_id="1", school_id=None),
        ]
