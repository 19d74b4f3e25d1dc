"""Thin async client for the three GitHub endpoints the collector needs.

* repository metadata (default branch)
* recursive git tree listing
* raw file content

HTTP failures are mapped onto the acquisition error taxonomy here, so
callers never see httpx exceptions.  Server errors and transport
failures are retried with jittered exponential backoff; not-found and
rate-limit responses fail immediately.  Each host has a circuit breaker:
after repeated server or transport failures further requests fail fast
with :class:`NetworkUnavailableError` until the recovery timeout passes.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx
from circuitbreaker import CircuitBreaker
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from robodesc.config import Settings
from robodesc.constants import (
    CB_GITHUB_FAILURE_THRESHOLD,
    CB_GITHUB_RECOVERY_TIMEOUT,
    GITHUB_ACCEPT,
    EntryKind,
)
from robodesc.ingestion.schemas import TreeEntry, TreeListing
from robodesc.resilience.errors import (
    NetworkError,
    NetworkNotFoundError,
    NetworkRateLimitedError,
    NetworkUnavailableError,
    is_retryable,
)

logger = logging.getLogger(__name__)

REPOSITORY_NOT_FOUND = (
    "Repository not found. Make sure it's a public repository."
)
RATE_LIMITED = "GitHub API rate limit exceeded. Try again in a few minutes."
UNAVAILABLE = (
    "GitHub is not responding after repeated failures. "
    "Try again in a few minutes."
)


def _is_outage(thrown_type: type, thrown_value: BaseException) -> bool:
    """Server and transport failures count against the breaker.

    Not-found and rate-limited responses mean the host is up.
    """
    return issubclass(thrown_type, NetworkError) and not issubclass(
        thrown_type, (NetworkNotFoundError, NetworkRateLimitedError)
    )


# One breaker per host, shared by every client in the process
_breaker_registry: dict[str, CircuitBreaker] = {}


def _get_breaker(host: str) -> CircuitBreaker:
    if host not in _breaker_registry:
        _breaker_registry[host] = CircuitBreaker(
            failure_threshold=CB_GITHUB_FAILURE_THRESHOLD,
            recovery_timeout=CB_GITHUB_RECOVERY_TIMEOUT,
            expected_exception=_is_outage,
            name=f"github_{host}",
        )
    return _breaker_registry[host]


class GitHubClient:
    """Async GitHub REST + raw-content client.

    Use as an async context manager, or call :meth:`aclose` when done.
    An externally supplied ``client`` is left open.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or Settings()
        self._owns_client = client is None
        if client is None:
            headers = {"Accept": GITHUB_ACCEPT}
            if self._settings.github_token:
                headers["Authorization"] = (
                    f"Bearer {self._settings.github_token}"
                )
            client = httpx.AsyncClient(
                headers=headers,
                timeout=self._settings.http_timeout_seconds,
                follow_redirects=True,
                transport=transport,
            )
        self._client = client

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # -- Endpoints --

    async def get_default_branch(self, owner: str, repo: str) -> str:
        url = f"{self._settings.github_api_url}/repos/{owner}/{repo}"
        data = self._json(await self._get(url, REPOSITORY_NOT_FOUND))
        branch = data.get("default_branch") or "main"
        logger.info(
            "event=default_branch owner=%s repo=%s branch=%s",
            owner,
            repo,
            branch,
        )
        return str(branch)

    async def list_tree(
        self,
        owner: str,
        repo: str,
        branch: str,
        recursive: bool = True,
    ) -> TreeListing:
        url = (
            f"{self._settings.github_api_url}/repos/{owner}/{repo}"
            f"/git/trees/{quote(branch, safe='')}"
        )
        if recursive:
            url += "?recursive=1"
        data = self._json(await self._get(url, REPOSITORY_NOT_FOUND))

        entries: list[TreeEntry] = []
        for item in data.get("tree", []):
            item_type = item.get("type")
            if item_type == "blob":
                kind = EntryKind.FILE
            elif item_type == "tree":
                kind = EntryKind.DIRECTORY
            else:
                continue  # submodule commits
            entries.append(
                TreeEntry(
                    path=item["path"],
                    kind=kind,
                    size=item.get("size") or 0,
                )
            )
        return TreeListing(
            entries=entries, truncated=bool(data.get("truncated"))
        )

    def raw_url(self, owner: str, repo: str, branch: str, path: str) -> str:
        return (
            f"{self._settings.github_raw_url}/{owner}/{repo}/{branch}/"
            f"{quote(path)}"
        )

    async def get_raw_content(
        self, owner: str, repo: str, branch: str, path: str
    ) -> bytes:
        url = self.raw_url(owner, repo, branch, path)
        return await self.fetch(url, f"File not found: {path}")

    async def fetch(self, url: str, not_found: str | None = None) -> bytes:
        """GET an absolute URL and return the body."""
        response = await self._get(url, not_found or f"Not found: {url}")
        return response.content

    # -- Transport --

    async def _get(self, url: str, not_found: str) -> httpx.Response:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._settings.retry_max_attempts),
            wait=wait_exponential_jitter(
                initial=self._settings.retry_initial_wait,
                max=self._settings.retry_max_wait,
            ),
            retry=retry_if_exception(
                lambda exc: isinstance(exc, Exception) and is_retryable(exc)
            ),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return await retrying(self._request, url, not_found)

    async def _request(self, url: str, not_found: str) -> httpx.Response:
        host = httpx.URL(url).host
        breaker = _get_breaker(host)
        if breaker.opened:
            logger.warning("event=circuit_open host=%s action=skip", host)
            raise NetworkUnavailableError(UNAVAILABLE)
        with breaker:
            return await self._send(url, not_found)

    async def _send(self, url: str, not_found: str) -> httpx.Response:
        try:
            response = await self._client.get(url)
        except httpx.TimeoutException as exc:
            msg = f"Request to {url} timed out."
            raise NetworkError(msg) from exc
        except httpx.TransportError as exc:
            msg = f"Connection error while contacting GitHub: {exc}"
            raise NetworkError(msg) from exc

        status = response.status_code
        if status == 404:
            raise NetworkNotFoundError(not_found, status_code=status)
        if status in (403, 429):
            raise NetworkRateLimitedError(RATE_LIMITED, status_code=status)
        if response.is_error:
            logger.warning("event=github_error url=%s status=%d", url, status)
            raise NetworkError(
                f"GitHub API error: {status}", status_code=status
            )
        return response

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            msg = "GitHub API returned an invalid response."
            raise NetworkError(msg, status_code=response.status_code) from exc
        if not isinstance(data, dict):
            msg = "GitHub API returned an unexpected response."
            raise NetworkError(msg, status_code=response.status_code)
        return data
