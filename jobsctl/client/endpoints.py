"""API Endpoint Wrappers - job status and dead letter administration"""

from typing import Any

import httpx

from ..utils.config_manager import config
from .base import APIClient


class JobsClient:
    """High-level client with typed endpoint methods"""

    def __init__(
        self,
        base_url: str | None = None,
        headers: dict[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        # Use config values if not provided
        api_config = config.load_config().get("api", {})
        self.api = APIClient(
            base_url=base_url or api_config.get("base_url", "http://localhost:8000"),
            timeout=api_config.get("timeout", 30),
            headers=headers or api_config.get("headers", {}),
            transport=transport,
        )

    def __enter__(self):
        self.api.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.api.__exit__(exc_type, exc_val, exc_tb)

    # Health Check
    def health_check(self) -> dict[str, Any]:
        return self.api.get("/healthz")

    # Job Endpoints
    def get_job(self, job_id: str, queue: str | None = None) -> dict[str, Any]:
        params = {"queue": queue} if queue else None
        return self.api.get(f"/jobs/{job_id}", params)

    def get_metrics(self) -> dict[str, Any]:
        return self.api.get("/metrics")

    # Dead Letter Queue Endpoints
    def dlq_stats(self) -> dict[str, Any]:
        return self.api.get("/admin/dlq/stats")

    def dlq_list(
        self,
        queue_name: str | None = None,
        status: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"limit": limit, "offset": offset}
        if queue_name:
            params["queue_name"] = queue_name
        if status:
            params["status"] = status
        return self.api.get("/admin/dlq", params)

    def dlq_get(self, entry_id: str) -> dict[str, Any]:
        return self.api.get(f"/admin/dlq/{entry_id}")

    def dlq_retry(self, entry_id: str) -> dict[str, Any]:
        return self.api.post(f"/admin/dlq/{entry_id}/retry")

    def dlq_discard(self, entry_id: str) -> dict[str, Any]:
        return self.api.post(f"/admin/dlq/{entry_id}/discard")

    def dlq_retry_batch(self, entry_ids: list[str]) -> dict[str, Any]:
        return self.api.post("/admin/dlq/retry-batch", {"ids": entry_ids})

    def dlq_discard_batch(self, entry_ids: list[str]) -> dict[str, Any]:
        return self.api.post("/admin/dlq/discard-batch", {"ids": entry_ids})

    def dlq_cleanup(self, older_than_days: int) -> dict[str, Any]:
        return self.api.post("/admin/dlq/cleanup", {"older_than_days": older_than_days})

    # Cleanup
    def trigger_cleanup(self, cleanup_type: str) -> dict[str, Any]:
        return self.api.post("/admin/cleanup", {"type": cleanup_type})
