"""Credential and schedule stores.

CredentialStore and ScheduleStore are the collaborator contracts the scrape
pipeline is written against; any document database can sit behind them. The
file-backed implementations keep one JSON document per student, the same way
session state is kept on disk under data/, and are what the CLI uses.
"""

import json
import os
import re
import tempfile
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from pydantic import ValidationError

from src.schedule_sync.errors import NotFoundError
from src.schedule_sync.logging import get_logger
from src.schedule_sync.models import Cookie, ScheduleDay, StudentCredential
from src.schedule_sync.utils import Clock, utc_now

logger = get_logger(__name__)

DEFAULT_PRIMARY_COOKIE = "autologinkeyV2"

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass(frozen=True)
class StudentRef:
    """A stored credential as seen by fan-out; either id may be missing."""

    record_id: str
    student_id: str | None
    school_id: str | None


class CredentialStore(Protocol):
    def load(self, student_id: str) -> StudentCredential: ...

    def save(
        self,
        student_id: str,
        cookies: Mapping[str, Cookie],
        active: bool = True,
    ) -> StudentCredential: ...

    def mark_inactive(self, student_id: str) -> None: ...

    def iter_student_refs(self) -> Iterator[StudentRef]: ...


class ScheduleStore(Protocol):
    def get_hashes(self, school_id: str, student_id: str, dates: Iterable[str]) -> dict[str, str]: ...

    def commit(self, days: Sequence[ScheduleDay]) -> None:
        """Write every record or none of them."""
        ...


def apply_cookie_updates(
    credential: StudentCredential,
    cookies: Mapping[str, Cookie],
    *,
    active: bool,
    now: datetime,
    primary_cookie: str = DEFAULT_PRIMARY_COOKIE,
) -> tuple[StudentCredential, list[str]]:
    """Merge cookies into a credential by name and refresh its bookkeeping.

    The primary token mirror is refreshed only when some value changed.

    Returns:
        (updated credential, names of cookies whose value changed)
    """
    jar, changed = credential.cookies.merge(cookies)
    updates: dict[str, Any] = {"cookies": jar, "active": active, "updated_at": now}
    if changed:
        primary = jar.get(primary_cookie)
        if primary is not None:
            updates["primary_token"] = primary.value
            updates["primary_token_expires_at"] = primary.expires_at
    return credential.model_copy(update=updates), changed


def _safe_key(value: str) -> str:
    if not _SAFE_KEY.match(value):
        raise ValueError(f"Unsafe store key {value!r}")
    return value


def _write_json_atomic(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = _stage_json(path, data)
    os.replace(tmp, path)


def _stage_json(path: Path, data: Any) -> Path:
    """Write data next to path under a temp name; caller renames it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return Path(tmp_name)


class FileCredentialStore:
    """One JSON credential document per student under state_dir."""

    def __init__(
        self,
        state_dir: str = "data/state",
        primary_cookie: str = DEFAULT_PRIMARY_COOKIE,
        clock: Clock = utc_now,
    ) -> None:
        self.state_dir = Path(state_dir)
        self.primary_cookie = primary_cookie
        self.clock = clock
        self.state_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, student_id: str) -> Path:
        return self.state_dir / f"{_safe_key(student_id)}.json"

    def create(self, credential: StudentCredential) -> StudentCredential:
        """Store a freshly captured credential.

        Re-registering an existing student merges the new jar into the stored
        one and keeps the original created_at.
        """
        path = self.path_for(credential.student_id)
        if path.exists():
            existing = self.load(credential.student_id)
            merged, _ = apply_cookie_updates(
                existing,
                credential.cookies.cookies,
                active=True,
                now=self.clock(),
                primary_cookie=self.primary_cookie,
            )
            credential = merged.model_copy(update={"school_id": credential.school_id})
        primary = credential.cookies.get(self.primary_cookie)
        if primary is not None:
            credential = credential.model_copy(
                update={
                    "primary_token": primary.value,
                    "primary_token_expires_at": primary.expires_at,
                }
            )

        _write_json_atomic(path, credential.to_document())
        logger.info(
            "credential_created",
            student_id=credential.student_id,
            school_id=credential.school_id,
            cookie_names=sorted(credential.cookies.cookies),
        )
        return credential

    def load(self, student_id: str) -> StudentCredential:
        path = self.path_for(student_id)
        if not path.exists():
            raise NotFoundError(f"No credentials found for student {student_id}")
        try:
            with open(path, encoding="utf-8") as f:
                return StudentCredential.model_validate(json.load(f))
        except (json.JSONDecodeError, ValidationError) as e:
            raise NotFoundError(f"Invalid credentials for student {student_id}: {e}") from e

    def save(
        self,
        student_id: str,
        cookies: Mapping[str, Cookie],
        active: bool = True,
    ) -> StudentCredential:
        """Merge cookies into the stored jar by name.

        The stored document is re-read right before writing so cookies rotated
        by another invocation since our load are kept.
        """
        current = self.load(student_id)
        updated, changed = apply_cookie_updates(
            current,
            cookies,
            active=active,
            now=self.clock(),
            primary_cookie=self.primary_cookie,
        )
        _write_json_atomic(self.path_for(student_id), updated.to_document())
        logger.info(
            "credential_saved",
            student_id=student_id,
            changed=changed,
            jar_version=updated.cookies.version,
        )
        return updated

    def mark_inactive(self, student_id: str) -> None:
        """Flag the credential inactive; the jar is kept for diagnosis."""
        current = self.load(student_id)
        updated = current.model_copy(update={"active": False, "updated_at": self.clock()})
        _write_json_atomic(self.path_for(student_id), updated.to_document())
        logger.warning("credential_marked_inactive", student_id=student_id)

    def iter_student_refs(self) -> Iterator[StudentRef]:
        for path in sorted(self.state_dir.glob("*.json")):
            try:
                with open(path, encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("credential_unreadable", path=str(path), error=str(e))
                yield StudentRef(record_id=path.stem, student_id=None, school_id=None)
                continue
            if not isinstance(data, dict):
                data = {}
            yield StudentRef(
                record_id=path.stem,
                student_id=data.get("studentId") or None,
                school_id=data.get("schoolId") or None,
            )


class FileScheduleStore:
    """Schedule days as one JSON document per (school, student), keyed by date."""

    def __init__(self, schedule_dir: str = "data/schedules") -> None:
        self.schedule_dir = Path(schedule_dir)

    def path_for(self, school_id: str, student_id: str) -> Path:
        return self.schedule_dir / _safe_key(school_id) / f"{_safe_key(student_id)}.json"

    def _read_days(self, path: Path) -> dict[str, dict[str, Any]]:
        if not path.exists():
            return {}
        with open(path, encoding="utf-8") as f:
            return json.load(f).get("days", {})

    def get_hashes(self, school_id: str, student_id: str, dates: Iterable[str]) -> dict[str, str]:
        days = self._read_days(self.path_for(school_id, student_id))
        return {d: days[d]["hash"] for d in dates if d in days and "hash" in days[d]}

    def get_day(self, school_id: str, student_id: str, date_str: str) -> ScheduleDay | None:
        doc = self._read_days(self.path_for(school_id, student_id)).get(date_str)
        return ScheduleDay.model_validate(doc) if doc is not None else None

    def commit(self, days: Sequence[ScheduleDay]) -> None:
        """Stage every affected document, then rename them all into place.

        Nothing is renamed if any document fails to stage.
        """
        grouped: dict[Path, list[ScheduleDay]] = {}
        for day in days:
            grouped.setdefault(self.path_for(day.school_id, day.student_id), []).append(day)

        staged: list[tuple[Path, Path]] = []
        try:
            for path, records in grouped.items():
                stored = self._read_days(path)
                for record in records:
                    stored[record.date] = record.to_document()
                staged.append((_stage_json(path, {"days": dict(sorted(stored.items()))}), path))
        except BaseException:
            for tmp, _ in staged:
                tmp.unlink(missing_ok=True)
            raise

        for tmp, path in staged:
            os.replace(tmp, path)
        logger.debug("schedule_days_committed", days=len(days), documents=len(staged))
