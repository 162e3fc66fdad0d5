"""GitHub REST data source built on httpx."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Iterator, Sequence

import httpx

from ..monitor.models import ActivityKind, ActivityRecord, FailedJob, WorkflowRun, WorkItem
from .base import DataSourceAuthError, DataSourceError, DataSourceTransientError, ItemLookupError

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
DEFAULT_TIMEOUT_SECONDS = 30.0

COPILOT_EVENTS = {
    "copilot_work_started": ActivityKind.WORK_STARTED,
    "copilot_work_finished": ActivityKind.WORK_FINISHED,
    "copilot_work_finished_failure": ActivityKind.WORK_FAILED,
}
FAILED_JOB_CONCLUSIONS = frozenset({"failure", "timed_out"})


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    return response.reason_phrase


@contextmanager
def _decoding(url: str, item_key: str | None = None) -> Iterator[None]:
    """Turn a malformed payload into the matching data source error."""

    try:
        yield
    except (ValueError, KeyError, TypeError, AttributeError) as exc:
        message = f"Unexpected response from {url}: {exc}"
        if item_key is not None:
            raise ItemLookupError(item_key, message) from exc
        raise DataSourceTransientError(message) from exc

class GitHubDataSource:
    """Reads pull requests, Copilot timeline events and Actions runs from GitHub.

    Enumeration failures surface as :class:`DataSourceAuthError` or
    :class:`DataSourceTransientError`; anything but a 401 on a per-item call
    surfaces as :class:`ItemLookupError`.
    """

    def __init__(
        self,
        token: str,
        *,
        base_url: str = GITHUB_API_URL,
        username: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        page_size: int = 100,
        recent_run_limit: int = 5,
    ) -> None:
        self._username = username
        self._page_size = page_size
        self._recent_run_limit = recent_run_limit
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            timeout=timeout,
            follow_redirects=True,
        )

    @property
    def username(self) -> str | None:
        return self._username

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "GitHubDataSource":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        url: str,
        *,
        item_key: str | None = None,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(method, url, params=params, json=json)
        except httpx.HTTPError as exc:
            if item_key is not None:
                raise ItemLookupError(item_key, f"{method} {url} failed: {exc}") from exc
            raise DataSourceTransientError(f"{method} {url} failed: {exc}") from exc

        if response.is_success:
            return response

        status = response.status_code
        message = _error_message(response)
        if status == 401:
            raise DataSourceAuthError(f"GitHub rejected the token: {message}")
        if item_key is not None:
            raise ItemLookupError(item_key, f"{method} {url} returned {status}: {message}")
        rate_limited = status == 429 or response.headers.get("x-ratelimit-remaining") == "0"
        if rate_limited or status >= 500:
            raise DataSourceTransientError(f"{method} {url} returned {status}: {message}")
        if status == 403:
            raise DataSourceAuthError(f"GitHub refused access: {message}")
        raise DataSourceError(f"{method} {url} returned {status}: {message}")

    async def _paginate(
        self,
        url: str,
        *,
        item_key: str | None = None,
        params: dict[str, Any] | None = None,
    ) -> AsyncIterator[Any]:
        page = 1
        while True:
            query = {**(params or {}), "per_page": self._page_size, "page": page}
            response = await self._request("GET", url, item_key=item_key, params=query)
            entries = response.json()
            if not entries:
                return
            for entry in entries:
                yield entry
            if "next" not in response.links:
                return
            page += 1

    async def authenticated_login(self) -> str:
        response = await self._request("GET", "/user")
        with _decoding("/user"):
            return str(response.json()["login"])

    def search_queries(
        self,
        *,
        organizations: Sequence[str],
        repositories: Sequence[str],
        since: datetime,
    ) -> list[str]:
        date_filter = since.date().isoformat()
        scopes = [f"org:{org}" for org in organizations] + [f"repo:{repo}" for repo in repositories]
        queries = []
        for scope in scopes:
            query = f"is:pr is:open {scope} updated:>={date_filter}"
            if self._username:
                query += f" assignee:{self._username}"
            queries.append(query)
        return queries

    async def iter_work_items(
        self,
        *,
        organizations: Sequence[str],
        repositories: Sequence[str],
        since: datetime,
    ) -> AsyncIterator[WorkItem]:
        seen: set[str] = set()
        for query in self.search_queries(
            organizations=organizations, repositories=repositories, since=since
        ):
            page = 1
            while True:
                response = await self._request(
                    "GET",
                    "/search/issues",
                    params={"q": query, "per_page": self._page_size, "page": page},
                )
                with _decoding("/search/issues"):
                    entries = [_parse_search_item(entry) for entry in response.json().get("items") or []]
                for item in entries:
                    if item.key in seen:
                        continue
                    seen.add(item.key)
                    yield item
                if not entries or "next" not in response.links:
                    break
                page += 1

    async def fetch_work_item(self, item: WorkItem) -> WorkItem:
        url = f"/repos/{item.repository}/pulls/{item.number}"
        response = await self._request("GET", url, item_key=item.key)
        with _decoding(url, item.key):
            return _parse_pull(response.json(), item.repository)

    async def _resolve_head(self, item: WorkItem) -> None:
        if item.head_sha:
            return
        detail = await self.fetch_work_item(item)
        item.head_sha = detail.head_sha
        item.head_branch = detail.head_branch

    async def fetch_activity(self, item: WorkItem) -> list[ActivityRecord]:
        url = f"/repos/{item.repository}/issues/{item.number}/events"
        records: list[ActivityRecord] = []
        with _decoding(url, item.key):
            async for entry in self._paginate(url, item_key=item.key):
                kind = COPILOT_EVENTS.get(entry.get("event", ""))
                created_at = parse_timestamp(entry.get("created_at"))
                if kind is None or created_at is None:
                    continue
                payload = entry.get("raw_payload") or {}
                records.append(
                    ActivityRecord(
                        kind=kind,
                        created_at=created_at,
                        message=payload.get("message") or entry.get("message"),
                        actor=(entry.get("actor") or {}).get("login"),
                    )
                )
        records.sort(key=lambda record: record.created_at)
        return records

    async def fetch_workflow_runs(self, item: WorkItem) -> list[WorkflowRun]:
        await self._resolve_head(item)
        url = f"/repos/{item.repository}/actions/runs"
        runs: list[WorkflowRun] = []
        if item.head_sha:
            response = await self._request(
                "GET", url, item_key=item.key, params={"head_sha": item.head_sha, "per_page": self._page_size}
            )
            with _decoding(url, item.key):
                runs = [_parse_run(entry) for entry in response.json().get("workflow_runs") or []]
        if runs or not item.head_branch:
            return runs

        response = await self._request(
            "GET",
            url,
            item_key=item.key,
            params={"branch": item.head_branch, "per_page": self._recent_run_limit},
        )
        with _decoding(url, item.key):
            recent = [_parse_run(entry) for entry in response.json().get("workflow_runs") or []]
        return recent[: self._recent_run_limit]

    async def fetch_failed_jobs(self, item: WorkItem, run_id: int) -> list[FailedJob]:
        url = f"/repos/{item.repository}/actions/runs/{run_id}/jobs"
        response = await self._request(
            "GET",
            url,
            item_key=item.key,
            params={"filter": "latest", "per_page": self._page_size},
        )
        jobs: list[FailedJob] = []
        with _decoding(url, item.key):
            for entry in response.json().get("jobs") or []:
                if (entry.get("conclusion") or "").lower() not in FAILED_JOB_CONCLUSIONS:
                    continue
                jobs.append(
                    FailedJob(
                        id=int(entry["id"]),
                        name=entry.get("name") or "Unknown job",
                        run_id=run_id,
                        conclusion=entry.get("conclusion"),
                        html_url=entry.get("html_url"),
                    )
                )
        return jobs

    async def fetch_job_log(self, item: WorkItem, job_id: int) -> str:
        response = await self._request(
            "GET", f"/repos/{item.repository}/actions/jobs/{job_id}/logs", item_key=item.key
        )
        return response.text

    async def fetch_comment_bodies(
        self,
        item: WorkItem,
        *,
        since: datetime | None = None,
        author: str | None = None,
    ) -> list[str]:
        params = {"since": since.isoformat()} if since else None
        url = f"/repos/{item.repository}/issues/{item.number}/comments"
        bodies: list[str] = []
        with _decoding(url, item.key):
            async for entry in self._paginate(url, item_key=item.key, params=params):
                if author and (entry.get("user") or {}).get("login") != author:
                    continue
                bodies.append((entry.get("body") or "").strip())
        return bodies

    async def post_comment(self, item: WorkItem, body: str) -> None:
        await self._request(
            "POST",
            f"/repos/{item.repository}/issues/{item.number}/comments",
            item_key=item.key,
            json={"body": body},
        )

    async def rerun_workflow(self, item: WorkItem, run_id: int) -> None:
        base = f"/repos/{item.repository}/actions/runs/{run_id}"
        try:
            await self._request("POST", f"{base}/rerun-failed-jobs", item_key=item.key, json={})
        except ItemLookupError as exc:
            logger.info(
                "Rerun of failed jobs refused, rerunning whole workflow",
                extra={"item": item.key, "run_id": run_id, "error": str(exc)},
            )
            await self._request("POST", f"{base}/rerun", item_key=item.key, json={})


def _repository_from_url(url: str) -> str:
    return url.split("/repos/", 1)[-1].strip("/")


def _parse_search_item(entry: dict[str, Any]) -> WorkItem:
    return WorkItem(
        number=int(entry["number"]),
        title=entry.get("title") or "",
        url=entry["html_url"],
        repository=_repository_from_url(entry.get("repository_url", "")),
        state=entry.get("state") or "open",
        author=(entry.get("user") or {}).get("login"),
        created_at=parse_timestamp(entry.get("created_at")),
        updated_at=parse_timestamp(entry.get("updated_at")),
        draft=bool(entry.get("draft", False)),
    )


def _parse_pull(entry: dict[str, Any], repository: str) -> WorkItem:
    head = entry.get("head") or {}
    return WorkItem(
        number=int(entry["number"]),
        title=entry.get("title") or "",
        url=entry["html_url"],
        repository=repository,
        state="merged" if entry.get("merged_at") else entry.get("state") or "open",
        author=(entry.get("user") or {}).get("login"),
        head_sha=head.get("sha"),
        head_branch=head.get("ref"),
        created_at=parse_timestamp(entry.get("created_at")),
        updated_at=parse_timestamp(entry.get("updated_at")),
        draft=bool(entry.get("draft", False)),
    )


def _parse_run(entry: dict[str, Any]) -> WorkflowRun:
    return WorkflowRun(
        id=int(entry["id"]),
        name=entry.get("name") or entry.get("display_title") or "workflow",
        status=entry.get("status") or "",
        conclusion=entry.get("conclusion"),
        head_sha=entry.get("head_sha"),
        head_branch=entry.get("head_branch"),
        created_at=parse_timestamp(entry.get("created_at")),
        updated_at=parse_timestamp(entry.get("updated_at")),
        html_url=entry.get("html_url"),
    )


__all__ = ["COPILOT_EVENTS", "GITHUB_API_URL", "GitHubDataSource", "parse_timestamp"]
