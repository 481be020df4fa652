"""Task queue publishing for scrape jobs.

TaskQueue is the collaborator contract fan-out is written against.
HttpTaskQueue talks to a QStash-style HTTP ingress: one POST per batch, each
message carrying its destination URL, queue name and delivery retry policy.
"""

import json
from collections.abc import Sequence
from typing import Protocol

import requests

from src.schedule_sync.config import SyncConfig, get_config
from src.schedule_sync.errors import PublishError
from src.schedule_sync.logging import get_logger
from src.schedule_sync.models import FanoutJob

logger = get_logger(__name__)


class TaskQueue(Protocol):
    def publish_batch(self, jobs: Sequence[FanoutJob]) -> None:
        """Publish jobs in one call; raise PublishError if not accepted."""
        ...


class HttpTaskQueue:
    BATCH_PATH = "/v2/batch"

    def __init__(self, config: SyncConfig | None = None, http: requests.Session | None = None) -> None:
        self.config = config or get_config()
        self.http = http or requests.Session()

    def _message(self, job: FanoutJob) -> dict:
        return {
            "destination": self.config.scrape_job_url,
            "queue": self.config.queue_name,
            "headers": {
                "Content-Type": "application/json",
                "Upstash-Retries": str(self.config.job_retries),
                "Upstash-Retry-Delay": f"{self.config.job_retry_delay_ms}ms",
            },
            "body": json.dumps(job.to_document()),
        }

    def publish_batch(self, jobs: Sequence[FanoutJob]) -> None:
        if not jobs:
            return
        if not self.config.scrape_job_url:
            raise PublishError("scrape_job_url is not configured")

        url = f"{self.config.queue_url.rstrip('/')}{self.BATCH_PATH}"
        headers = {
            "Authorization": f"Bearer {self.config.queue_token}",
            "Content-Type": "application/json",
        }
        try:
            resp = self.http.post(
                url,
                headers=headers,
                json=[self._message(job) for job in jobs],
                timeout=self.config.request_timeout_seconds,
            )
        except requests.RequestException as e:
            raise PublishError(f"Queue publish failed: {e}") from e

        if not (200 <= resp.status_code < 300):
            raise PublishError(f"Queue rejected batch: {resp.status_code} {resp.text[:200]}")

        logger.debug("queue_batch_published", jobs=len(jobs), queue=self.config.queue_name)
