"""Storage backends for registry snapshots.

Every store exposes the same coroutine API: ``list_names`` (newest first),
``fetch`` and, where writable, ``publish``.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import shutil
from pathlib import Path
from typing import Any

import httpx

from webhook_relay.core.errors import SnapshotNotFoundError, SnapshotTransportError
from webhook_relay.core.settings import settings
from webhook_relay.services.snapshot import (
    ADMINS_TABLE,
    BINDINGS_TABLE,
    METADATA_FILENAME,
    SERVERS_TABLE,
    TABLES,
    Snapshot,
    sort_snapshot_names,
    snapshot_time,
)

# Configure logger for this module
logger = logging.getLogger(__name__)

SNAPSHOT_FILENAMES = (*(spec.filename for spec in TABLES), METADATA_FILENAME)
GITHUB_PAGE_SIZE = 100
GITHUB_SNAPSHOT_ROOT = "data"


class LocalSnapshotStore:
    """Snapshots as directories under ``directory``, one file per table."""

    def __init__(self, directory: str | Path, retention: int = 24) -> None:
        self.directory = Path(directory)
        self.retention = retention

    def _path(self, name: str) -> Path:
        if snapshot_time(name) is None:
            raise SnapshotNotFoundError(f"Invalid snapshot name: {name}")
        return self.directory / name

    def _publish(self, snapshot: Snapshot) -> Path:
        target = self._path(snapshot.name)
        target.mkdir(parents=True, exist_ok=True)
        for filename, content in snapshot.files().items():
            (target / filename).write_text(content, encoding="utf-8")
        return target

    def _list_names(self) -> list[str]:
        if not self.directory.is_dir():
            return []
        return sort_snapshot_names(
            entry.name
            for entry in self.directory.iterdir()
            if entry.is_dir() and snapshot_time(entry.name) is not None
        )

    def _fetch(self, name: str) -> Snapshot:
        path = self._path(name)
        if not path.is_dir():
            raise SnapshotNotFoundError(f"Snapshot {name} does not exist in {self.directory}")
        files = {
            filename: (path / filename).read_text(encoding="utf-8")
            for filename in SNAPSHOT_FILENAMES
            if (path / filename).is_file()
        }
        return Snapshot.from_files(name, files)

    def _prune(self) -> list[str]:
        removed = self._list_names()[self.retention:]
        for name in removed:
            shutil.rmtree(self.directory / name)
            logger.info("Deleted old snapshot: %s", name)
        return removed

    async def publish(self, snapshot: Snapshot) -> Path:
        path = await asyncio.to_thread(self._publish, snapshot)
        logger.info("Snapshot %s written to %s", snapshot.name, path)
        return path

    async def list_names(self) -> list[str]:
        return await asyncio.to_thread(self._list_names)

    async def fetch(self, name: str) -> Snapshot:
        return await asyncio.to_thread(self._fetch, name)

    async def prune(self) -> list[str]:
        """Delete all but the newest ``retention`` snapshots."""
        return await asyncio.to_thread(self._prune)


class _HttpSnapshotSource:
    """Shared lazily-created ``httpx.AsyncClient`` handling."""

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float | None = None):
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout if timeout is not None else settings.github_timeout_seconds
        self._client_lock = asyncio.Lock()

    def _client_headers(self) -> dict[str, str]:
        return {}

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    timeout=httpx.Timeout(self._timeout),
                    headers=self._client_headers(),
                )
        return self._client

    async def close(self) -> None:
        async with self._client_lock:
            if self._client is not None and self._owns_client:
                await self._client.aclose()
            self._client = None


class GitHubSnapshotStore(_HttpSnapshotSource):
    """Snapshots under ``data/<name>/`` of a GitHub repository, via the contents API."""

    def __init__(
        self,
        repo: str,
        token: str,
        branch: str = "main",
        api_url: str = "https://api.github.com",
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        super().__init__(client=client, timeout=timeout)
        self.repo = repo
        self.token = token
        self.branch = branch
        self.api_url = api_url.rstrip("/")

    def _client_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"token {self.token}",
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": f"{settings.app_name}/{settings.app_version}",
        }

    def _contents_url(self, path: str) -> str:
        return f"{self.api_url}/repos/{self.repo}/contents/{path}"

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response | None:
        """Send one contents API request; ``None`` means 404."""
        client = await self._ensure_client()
        try:
            response = await client.request(
                method,
                self._contents_url(path),
                params=params,
                json=json,
                headers=self._client_headers(),
            )
        except httpx.HTTPError as exc:
            raise SnapshotTransportError(f"GitHub {method} {path} failed: {exc}") from exc

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise SnapshotTransportError(
                f"GitHub {method} {path} returned HTTP {response.status_code}: "
                f"{response.text[:200]}"
            )
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise SnapshotTransportError(f"Invalid JSON from GitHub: {exc}") from exc

    async def list_names(self) -> list[str]:
        names: list[str] = []
        page = 1
        while True:
            response = await self._request(
                "GET",
                GITHUB_SNAPSHOT_ROOT,
                params={"ref": self.branch, "per_page": GITHUB_PAGE_SIZE, "page": page},
            )
            if response is None:
                break
            items = self._json(response)
            if not isinstance(items, list):
                raise SnapshotTransportError(f"Unexpected listing for {GITHUB_SNAPSHOT_ROOT}/")
            names.extend(
                item["name"]
                for item in items
                if item.get("type") == "dir" and str(item.get("name", "")).startswith("backup-")
            )
            if len(items) < GITHUB_PAGE_SIZE:
                break
            page += 1
        return sort_snapshot_names(names)

    async def _download(self, path: str) -> tuple[str, str] | None:
        """Return the decoded text and blob sha of ``path``."""
        response = await self._request("GET", path, params={"ref": self.branch})
        if response is None:
            return None
        body = self._json(response)
        try:
            content = base64.b64decode(body["content"]).decode("utf-8")
        except (KeyError, TypeError, ValueError) as exc:
            raise SnapshotTransportError(f"Unreadable content for {path}: {exc}") from exc
        return content, body.get("sha", "")

    async def fetch(self, name: str) -> Snapshot:
        files: dict[str, str | None] = {}
        for filename in SNAPSHOT_FILENAMES:
            downloaded = await self._download(f"{GITHUB_SNAPSHOT_ROOT}/{name}/{filename}")
            files[filename] = downloaded[0] if downloaded else None
        if not any(files.values()):
            raise SnapshotNotFoundError(f"Snapshot {name} does not exist in {self.repo}")
        return Snapshot.from_files(name, files)

    async def publish(self, snapshot: Snapshot) -> None:
        """Commit each file of ``snapshot``, updating files that already exist."""
        for filename, content in snapshot.files().items():
            path = f"{GITHUB_SNAPSHOT_ROOT}/{snapshot.name}/{filename}"
            existing = await self._download(path)
            body: dict[str, Any] = {
                "message": f"Database backup: {snapshot.name}",
                "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
                "branch": self.branch,
            }
            if existing is not None:
                body["sha"] = existing[1]
            await self._request("PUT", path, json=body)
        logger.info("Snapshot %s published to %s@%s", snapshot.name, self.repo, self.branch)


class UrlSnapshotSource(_HttpSnapshotSource):
    """Read-only snapshot assembled from three raw table URLs."""

    def __init__(
        self,
        admins_url: str,
        servers_url: str,
        bindings_url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        super().__init__(client=client, timeout=timeout)
        self.urls = {
            ADMINS_TABLE.filename: admins_url,
            SERVERS_TABLE.filename: servers_url,
            BINDINGS_TABLE.filename: bindings_url,
        }

    async def fetch(self, name: str = "backup-from-url") -> Snapshot:
        client = await self._ensure_client()
        files: dict[str, str | None] = {}
        for filename, url in self.urls.items():
            logger.info("Downloading %s from %s", filename, url)
            try:
                response = await client.get(url)
                response.raise_for_status()
            except httpx.HTTPError as exc:
                raise SnapshotTransportError(f"Could not download {url}: {exc}") from exc
            files[filename] = response.text
        return Snapshot.from_files(name, files)


def build_remote_store(client: httpx.AsyncClient | None = None) -> GitHubSnapshotStore | None:
    """Return the GitHub store when credentials and repository are configured."""
    if not settings.remote_snapshots_enabled:
        return None
    return GitHubSnapshotStore(
        repo=settings.github_repo or "",
        token=settings.github_token or "",
        branch=settings.github_branch,
        api_url=settings.github_api_url,
        client=client,
    )
