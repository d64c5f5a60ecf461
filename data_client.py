"""HTTP client for the upstream researcher/paper data API."""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Callable

import requests

from models import PageEnvelope

DEFAULT_TIMEOUT_MS = 5000
MAX_ATTEMPTS = 6
RETRY_DELAY_SECONDS = 1.0
RETRYABLE_STATUSES = frozenset({429, 503})

LOGGER = logging.getLogger(__name__)


class UpstreamError(RuntimeError):
    """A page request that could not be completed."""

    def __init__(self, message: str, *, path: str, status: int | None = None) -> None:
        super().__init__(message)
        self.path = path
        self.status = status


class RetryableUpstreamError(UpstreamError):
    """429/503 that persisted through every attempt."""


class NonRetryableUpstreamError(UpstreamError):
    """Any other error status; never retried."""


class DataClient:
    """Fetches offset/limit pages, retrying rate limits and 503s at a fixed delay."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        base_url = base_url or os.getenv("API_BASE_URL")
        if not base_url:
            raise RuntimeError("API_BASE_URL environment variable is required")

        if timeout is None:
            timeout = int(os.getenv("API_TIMEOUT", str(DEFAULT_TIMEOUT_MS))) / 1000

        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        self._sleep = sleep

    def get_researchers(self, offset: int, limit: int) -> PageEnvelope:
        return self.fetch_page("/researchers", offset, limit)

    def get_papers(self, offset: int, limit: int) -> PageEnvelope:
        return self.fetch_page("/papers", offset, limit)

    def fetch_page(self, path: str, offset: int, limit: int) -> PageEnvelope:
        """GET one page, retrying 429/503 up to MAX_ATTEMPTS times.

        Raises:
            RetryableUpstreamError: the final attempt still got 429/503.
            NonRetryableUpstreamError: any other non-2xx status.
            UpstreamError: the request never produced a response.
        """
        LOGGER.info("GET %s offset=%s limit=%s", path, offset, limit)
        url = f"{self.base_url}{path}"

        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                response = self.session.get(
                    url,
                    params={"offset": offset, "limit": limit},
                    timeout=self.timeout,
                )
            except requests.RequestException as exc:
                LOGGER.error("Request to %s failed: %s", path, exc)
                raise UpstreamError(f"Request to {path} failed: {exc}", path=path) from exc

            status = response.status_code
            if status in RETRYABLE_STATUSES:
                LOGGER.warning(
                    "Retryable error on %s (status=%s, attempt=%s/%s)",
                    path,
                    status,
                    attempt,
                    MAX_ATTEMPTS,
                )
                if attempt == MAX_ATTEMPTS:
                    LOGGER.error("Max retry exceeded for %s", path)
                    raise RetryableUpstreamError(
                        f"GET {path} still failing with status={status} after {MAX_ATTEMPTS} attempts",
                        path=path,
                        status=status,
                    )
                self._sleep(RETRY_DELAY_SECONDS)
                continue

            if not 200 <= status < 300:
                LOGGER.error("Non-retryable error on %s (status=%s): %s", path, status, _body_excerpt(response))
                raise NonRetryableUpstreamError(
                    f"GET {path} failed with status={status}",
                    path=path,
                    status=status,
                )

            try:
                body = response.json()
            except ValueError as exc:
                LOGGER.error("Non-JSON body from %s (status=%s): %s", path, status, _body_excerpt(response))
                raise UpstreamError(f"GET {path} returned a non-JSON body", path=path, status=status) from exc
            return PageEnvelope.from_payload(body)

        raise RuntimeError(f"GET {path} made no attempts")


def _body_excerpt(response: requests.Response, max_len: int = 200) -> str:
    text: Any = response.text
    return text[:max_len] if isinstance(text, str) else ""
