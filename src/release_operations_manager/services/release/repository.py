"""Chart repository index store.

An explicitly constructed, caller-owned object: open it (or use it as a
context manager), share it between calls, close it when done. Writes to the
in-memory index cache and to the repositories file are serialized by an
internal lock; reads after a write are consistent within this process only.
"""

from __future__ import annotations

import hashlib
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar
from urllib.parse import urljoin, urlparse

import httpx
import structlog
import yaml
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from release_operations_manager.integrations.kubernetes.models.repository import (
    ChartVersion,
    RepositoryEntry,
    RepositoryIndex,
)
from release_operations_manager.services.release.context import OperationContext, ensure_context
from release_operations_manager.services.release.exceptions import (
    ChartNotFoundError,
    RepositoryConnectionError,
    RepositoryError,
)
from release_operations_manager.services.release.semver import InvalidVersionError, max_satisfying

logger = structlog.get_logger()

T = TypeVar("T")

INDEX_FILE = "index.yaml"
REPOSITORIES_API_VERSION = "v1"


def _index_cache_name(name: str) -> str:
    return f"{name}-index.yaml"


class RepositoryIndexStore:
    """Configured chart repositories, their downloaded indexes and chart downloads.

    Example:
        ```python
        with RepositoryIndexStore(config.repository_config, config.repository_cache) as repos:
            repos.update_repositories()
            version = repos.find_chart("bitnami", "nginx", "^15.0.0")
        ```
    """

    def __init__(
        self,
        repository_config: Path,
        cache_dir: Path,
        *,
        timeout: float = 30.0,
        retries: int = 3,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._repository_config = repository_config
        self._cache_dir = cache_dir
        self._timeout = timeout
        self._retries = retries
        self._transport = transport
        self._lock = threading.Lock()
        self._indexes: dict[str, RepositoryIndex] = {}
        self._client: httpx.Client | None = None
        self._log = logger.bind(component="repository")

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    def open(self) -> RepositoryIndexStore:
        if self._client is None:
            client_kwargs: dict[str, Any] = {
                "timeout": httpx.Timeout(self._timeout),
                "follow_redirects": True,
            }
            if self._transport is not None:
                client_kwargs["transport"] = self._transport
            self._client = httpx.Client(**client_kwargs)
            self._log.debug("repository_store_opened", config=str(self._repository_config))
        return self

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
        with self._lock:
            self._indexes.clear()
        self._log.debug("repository_store_closed")

    def __enter__(self) -> RepositoryIndexStore:
        return self.open()

    def __exit__(self, *args: Any) -> None:
        self.close()

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    # -----------------------------------------------------------------------
    # HTTP
    # -----------------------------------------------------------------------

    def _make_retry_decorator(self) -> Any:
        return retry(
            retry=retry_if_exception_type(RepositoryConnectionError),
            stop=stop_after_attempt(self._retries),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            reraise=True,
        )

    def _request(self, url: str, auth: tuple[str, str] | None) -> bytes:
        if self._client is None:
            raise RepositoryError("repository store is not open")
        log = self._log.bind(url=url)
        try:
            log.debug("repository_request")
            response = self._client.get(url, auth=auth)
        except (httpx.ConnectError, httpx.TimeoutException) as e:
            log.warning("repository_connection_error", error=str(e))
            raise RepositoryConnectionError(f"failed to reach {url}: {e}") from e
        except httpx.HTTPError as e:
            raise RepositoryError(f"request to {url} failed: {e}") from e

        if response.status_code >= 500:
            raise RepositoryConnectionError(
                f"{url} returned {response.status_code}", status_code=response.status_code
            )
        if not response.is_success:
            raise RepositoryError(
                f"{url} returned {response.status_code}", status_code=response.status_code
            )
        return response.content

    def fetch(
        self,
        url: str,
        *,
        auth: tuple[str, str] | None = None,
        ctx: OperationContext | None = None,
    ) -> bytes:
        """GET *url* with retries for transient failures."""
        ensure_context(ctx).check()
        fetch: Callable[[str, tuple[str, str] | None], bytes] = self._make_retry_decorator()(
            self._request
        )
        return fetch(url, auth)

    # -----------------------------------------------------------------------
    # Repositories file
    # -----------------------------------------------------------------------

    def list_repositories(self) -> list[RepositoryEntry]:
        """Entries of the repositories file (empty when it does not exist)."""
        if not self._repository_config.exists():
            return []
        try:
            data = yaml.safe_load(self._repository_config.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            raise RepositoryError(f"cannot read {self._repository_config}: {e}") from e
        return [RepositoryEntry.model_validate(r) for r in data.get("repositories") or []]

    def get_repository(self, name: str) -> RepositoryEntry:
        for entry in self.list_repositories():
            if entry.name == name:
                return entry
        raise RepositoryError(f"repository '{name}' is not configured", repository=name)

    def _write_repositories(self, entries: list[RepositoryEntry]) -> None:
        data = {
            "apiVersion": REPOSITORIES_API_VERSION,
            "repositories": [e.model_dump(exclude_none=True) for e in entries],
        }
        self._repository_config.parent.mkdir(parents=True, exist_ok=True)
        self._repository_config.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")

    def add_repository(
        self,
        entry: RepositoryEntry,
        *,
        ctx: OperationContext | None = None,
    ) -> None:
        """Add or update a repository and download its index.

        The index is downloaded first, so an unreachable repository is never
        written to the repositories file.
        """
        if entry.is_oci:
            raise RepositoryError(
                f"OCI registries are not chart repositories: {entry.url}", repository=entry.name
            )
        index = self._download_index(entry, ctx)
        with self._lock:
            entries = [e for e in self.list_repositories() if e.name != entry.name]
            entries.append(entry)
            self._write_repositories(entries)
            self._indexes[entry.name] = index
        self._log.info("repository_added", name=entry.name, url=entry.url)

    def remove_repository(self, name: str) -> None:
        with self._lock:
            entries = self.list_repositories()
            remaining = [e for e in entries if e.name != name]
            if len(remaining) == len(entries):
                raise RepositoryError(f"repository '{name}' is not configured", repository=name)
            self._write_repositories(remaining)
            self._indexes.pop(name, None)
            (self._cache_dir / _index_cache_name(name)).unlink(missing_ok=True)
        self._log.info("repository_removed", name=name)

    def update_repositories(
        self,
        names: list[str] | None = None,
        *,
        ctx: OperationContext | None = None,
    ) -> list[str]:
        """Re-download the indexes of all (or the named) repositories.

        Returns:
            Names of the updated repositories.
        """
        entries = self.list_repositories()
        if names:
            unknown = set(names) - {e.name for e in entries}
            if unknown:
                raise RepositoryError(f"repositories not configured: {', '.join(sorted(unknown))}")
            entries = [e for e in entries if e.name in names]

        updated: list[str] = []
        for entry in entries:
            index = self._download_index(entry, ctx)
            with self._lock:
                self._indexes[entry.name] = index
            updated.append(entry.name)
        self._log.info("repositories_updated", repositories=updated)
        return updated

    # -----------------------------------------------------------------------
    # Indexes
    # -----------------------------------------------------------------------

    def _download_index(self, entry: RepositoryEntry, ctx: OperationContext | None) -> RepositoryIndex:
        url = f"{entry.url}/{INDEX_FILE}"
        content = self.fetch(url, auth=self._auth_for(entry, url), ctx=ctx)
        try:
            data = yaml.safe_load(content) or {}
        except yaml.YAMLError as e:
            raise RepositoryError(f"invalid index from {url}: {e}", repository=entry.name) from e
        if not isinstance(data, dict) or "entries" not in data:
            raise RepositoryError(f"{url} is not a chart repository index", repository=entry.name)

        with self._lock:
            self._cache_dir.mkdir(parents=True, exist_ok=True)
            (self._cache_dir / _index_cache_name(entry.name)).write_bytes(content)
        return RepositoryIndex.from_dict(data, repository=entry.url)

    def index(self, name: str, *, ctx: OperationContext | None = None) -> RepositoryIndex:
        """Index of a configured repository: memory, then disk cache, then download."""
        with self._lock:
            cached = self._indexes.get(name)
        if cached is not None:
            return cached

        entry = self.get_repository(name)
        cache_file = self._cache_dir / _index_cache_name(name)
        if cache_file.exists():
            data = yaml.safe_load(cache_file.read_bytes()) or {}
            index = RepositoryIndex.from_dict(data, repository=entry.url)
        else:
            index = self._download_index(entry, ctx)

        with self._lock:
            self._indexes[name] = index
        return index

    def resolve_repository(self, repository: str) -> RepositoryEntry:
        """Resolve ``@alias``, ``alias:name``, a configured name or a plain URL."""
        if repository.startswith("@"):
            return self.get_repository(repository[1:])
        if repository.startswith("alias:"):
            return self.get_repository(repository[len("alias:") :])

        if "://" not in repository:
            return self.get_repository(repository)

        normalized = repository.rstrip("/")
        for entry in self.list_repositories():
            if entry.url == normalized:
                return entry
        # Unconfigured URL: use a stable synthetic name for caching.
        digest = hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:12]
        return RepositoryEntry(name=f"url-{digest}", url=normalized)

    def _index_for(self, entry: RepositoryEntry, ctx: OperationContext | None) -> RepositoryIndex:
        with self._lock:
            cached = self._indexes.get(entry.name)
        if cached is not None:
            return cached
        if any(e.name == entry.name for e in self.list_repositories()):
            return self.index(entry.name, ctx=ctx)
        index = self._download_index(entry, ctx)
        with self._lock:
            self._indexes[entry.name] = index
        return index

    def find_chart(
        self,
        repository: str,
        name: str,
        constraint: str,
        *,
        ctx: OperationContext | None = None,
    ) -> ChartVersion:
        """Highest version of *name* satisfying *constraint* in *repository*.

        Raises:
            ChartNotFoundError: If no listed version satisfies the constraint.
        """
        entry = self.resolve_repository(repository)
        versions = self._index_for(entry, ctx).versions_of(name)
        if not versions:
            raise ChartNotFoundError(name, reason=f"not listed in repository '{entry.name}'")

        try:
            best = max_satisfying([v.version for v in versions], constraint or "*")
        except InvalidVersionError as e:
            raise ChartNotFoundError(name, constraint, reason=str(e)) from e
        if best is None:
            raise ChartNotFoundError(name, constraint)

        chosen = next(v for v in versions if v.version == best)
        if chosen.deprecated:
            self._log.warning("chart_deprecated", chart=name, version=best)
        return chosen

    # -----------------------------------------------------------------------
    # Downloads
    # -----------------------------------------------------------------------

    def _auth_for(self, entry: RepositoryEntry, url: str) -> tuple[str, str] | None:
        if not entry.username or entry.password is None:
            return None
        same_host = urlparse(url).netloc == urlparse(entry.url).netloc
        if same_host or entry.pass_credentials_all:
            return (entry.username, entry.password)
        return None

    def _chart_url(self, chart_version: ChartVersion) -> str:
        if not chart_version.urls:
            raise RepositoryError(
                f"chart {chart_version.name}-{chart_version.version} lists no download URL"
            )
        url = chart_version.urls[0]
        if "://" in url:
            return url
        return urljoin(f"{chart_version.repository}/", url)

    def _entry_for_url(self, url: str) -> RepositoryEntry | None:
        for entry in self.list_repositories():
            if url.startswith(entry.url + "/"):
                return entry
        return None

    def download_url(
        self,
        url: str,
        destination: Path,
        *,
        ctx: OperationContext | None = None,
    ) -> Path:
        """Download *url* into the *destination* directory."""
        entry = self._entry_for_url(url)
        content = self.fetch(url, auth=self._auth_for(entry, url) if entry else None, ctx=ctx)
        destination.mkdir(parents=True, exist_ok=True)
        target = destination / Path(urlparse(url).path).name
        target.write_bytes(content)
        self._log.debug("downloaded", url=url, path=str(target))
        return target

    def download_chart(
        self,
        chart_version: ChartVersion,
        destination: Path,
        ctx: OperationContext | None = None,
    ) -> Path:
        """Download a chart archive and check the index digest when present.

        Raises:
            RepositoryError: If the archive does not match the index digest.
        """
        target = self.download_url(self._chart_url(chart_version), destination, ctx=ctx)
        if chart_version.digest:
            actual = hashlib.sha256(target.read_bytes()).hexdigest()
            if actual != chart_version.digest:
                target.unlink(missing_ok=True)
                raise RepositoryError(
                    f"digest mismatch for {chart_version.name}-{chart_version.version}: "
                    f"expected {chart_version.digest}, got {actual}"
                )
        return target

    def download_provenance(
        self,
        chart_version: ChartVersion,
        destination: Path,
        ctx: OperationContext | None = None,
    ) -> Path:
        return self.download_url(self._chart_url(chart_version) + ".prov", destination, ctx=ctx)
