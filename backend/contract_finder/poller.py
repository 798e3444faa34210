"""Client-side helper that polls a search until it reaches a final status.

A single failed status check does not stop polling. After ``max_failures``
consecutive failures the poller raises ``PollingSuspended`` and stays
suspended until ``retry()`` is called.
"""
import asyncio
import logging

import httpx

from contract_finder.config import Settings

logger = logging.getLogger("app.poller")

FINAL_STATUSES = {"COMPLETED", "FAILED"}


class PollingSuspended(Exception):
    def __init__(self, search_id: str, failures: int, last_error: str | None = None):
        self.search_id = search_id
        self.failures = failures
        self.last_error = last_error
        super().__init__(
            f"Polling for search {search_id} stopped after {failures} failed status checks"
            + (f": {last_error}" if last_error else "")
        )


class SearchPoller:
    def __init__(
        self,
        client: httpx.AsyncClient,
        token: str,
        api_prefix: str = "/api/v1",
        interval: float = 5.0,
        timeout: float = 10.0,
        max_failures: int = 5,
    ):
        self.client = client
        self.token = token
        self.api_prefix = api_prefix
        self.interval = interval
        self.timeout = timeout
        self.max_failures = max_failures
        self.failures = 0
        self.suspended = False
        self.last_error: str | None = None

    @classmethod
    def from_settings(cls, client: httpx.AsyncClient, token: str, settings: Settings) -> "SearchPoller":
        """Poll with the same failure bound the server uses for its warning."""
        return cls(
            client,
            token,
            api_prefix=settings.api_prefix,
            timeout=settings.poll_timeout_seconds,
            max_failures=settings.poll_max_failures,
        )

    def retry(self) -> None:
        """Resume polling after a suspension."""
        self.failures = 0
        self.suspended = False
        self.last_error = None

    async def check(self, search_id: str) -> dict | None:
        """One status check. Returns the status body, or None if the check failed."""
        if self.suspended:
            raise PollingSuspended(search_id, self.failures, self.last_error)
        try:
            response = await self.client.get(
                f"{self.api_prefix}/search/{search_id}",
                headers={"Authorization": f"Bearer {self.token}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.TimeoutException:
            return self._failed(search_id, "Status check timed out")
        except httpx.HTTPError as exc:
            return self._failed(search_id, str(exc))
        self.failures = 0
        self.last_error = None
        return response.json()

    def _failed(self, search_id: str, message: str) -> None:
        self.failures += 1
        self.last_error = message
        logger.warning("Status check %d/%d for search %s failed: %s",
                       self.failures, self.max_failures, search_id, message)
        if self.failures >= self.max_failures:
            self.suspended = True
            raise PollingSuspended(search_id, self.failures, message)
        return None

    async def wait(self, search_id: str) -> dict:
        """Poll until the search is COMPLETED or FAILED and return its status."""
        while True:
            status = await self.check(search_id)
            if status is not None and status.get("status") in FINAL_STATUSES:
                return status
            await asyncio.sleep(self.interval)
