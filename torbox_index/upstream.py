"""TorBox API client: paginated listing, lookups, caching and retries.

Every HTTP attempt resolves to a tagged outcome instead of raising:

* :class:`Success` carries the decoded envelope,
* :class:`RetryableFailure` covers 5xx responses (and 429 when enabled),
  timeouts and connection failures,
* :class:`TerminalFailure` covers every other HTTP status and undecodable
  bodies.

The tenacity driver retries on the ``RetryableFailure`` tag alone and hands
back the last outcome once the budget is spent, so callers only ever see a
single :class:`~torbox_index.errors.UpstreamError`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import NamedTuple, Optional, Sequence, Union

import httpx
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_result,
    stop_after_attempt,
    wait_random_exponential,
)

from torbox_index.errors import UpstreamError
from torbox_index.logging_config import mask_key
from torbox_index.models import ContainerEntry, FileEntry, Source, UpstreamEnvelope, UpstreamItem
from torbox_index.stores import MISSING, ExpiringStore, MemoryStore

logger = logging.getLogger(__name__)

DEFAULT_API = "https://api.torbox.app/v1/api"


class Endpoints(NamedTuple):
    list_path: str
    download_path: str
    id_param: str


ENDPOINTS = {
    Source.TORRENTS: Endpoints("torrents/mylist", "torrents/requestdl", "torrent_id"),
    Source.WEBDL: Endpoints("webdl/mylist", "webdl/requestdl", "web_id"),
    Source.USENET: Endpoints("usenet/mylist", "usenet/requestdl", "usenet_id"),
}


# ============================================================================
# Attempt outcomes
# ============================================================================


@dataclass(frozen=True)
class Success:
    envelope: UpstreamEnvelope


@dataclass(frozen=True)
class RetryableFailure:
    reason: str
    status_code: Optional[int] = None


@dataclass(frozen=True)
class TerminalFailure:
    reason: str
    status_code: Optional[int] = None


Outcome = Union[Success, RetryableFailure, TerminalFailure]


@dataclass
class FanOut:
    """Joined result of listing several sources concurrently."""

    containers: list[ContainerEntry] = field(default_factory=list)
    succeeded: list[Source] = field(default_factory=list)
    failures: list[tuple[Source, UpstreamError]] = field(default_factory=list)

    @property
    def all_failed(self) -> bool:
        return bool(self.failures) and not self.succeeded


# ============================================================================
# Normalization
# ============================================================================


def _basename(path: str) -> str:
    parts = [part for part in path.split("/") if part]
    return parts[-1] if parts else path


def normalize_container(source: Source, item: UpstreamItem) -> ContainerEntry:
    files = []
    for raw in item.files or []:
        full_name = raw.name or raw.short_name or ""
        files.append(
            FileEntry(
                source=source,
                container_id=item.id,
                file_id=raw.id,
                full_name=full_name,
                display_name=raw.short_name or _basename(full_name),
                size=max(raw.size or 0, 0),
            )
        )
    return ContainerEntry(
        source=source,
        container_id=item.id,
        container_name=item.name or f"{source.value}-{item.id}",
        files=tuple(files),
    )


def _last_outcome(retry_state: RetryCallState) -> Outcome:
    return retry_state.outcome.result()


# ============================================================================
# Client
# ============================================================================


class TorBoxClient:
    def __init__(
        self,
        *,
        base_url: str = DEFAULT_API,
        http_client: Optional[httpx.AsyncClient] = None,
        page_size: int = 1000,
        timeout_seconds: float = 12.0,
        retry_budget: int = 2,
        retry_base_delay: float = 0.15,
        retry_max_delay: float = 1.0,
        retry_on_rate_limit: bool = False,
        list_cache: Optional[ExpiringStore] = None,
        lookup_cache: Optional[ExpiringStore] = None,
        cache_ttl_seconds: float = 15.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.page_size = page_size
        self.timeout_seconds = timeout_seconds
        self.retry_budget = retry_budget
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self.retry_on_rate_limit = retry_on_rate_limit
        self.list_cache = list_cache
        self.lookup_cache = lookup_cache
        self.cache_ttl_seconds = cache_ttl_seconds
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))

    @classmethod
    def from_settings(cls, settings, http_client: Optional[httpx.AsyncClient] = None) -> "TorBoxClient":
        list_cache = lookup_cache = None
        if settings.cache_enabled:
            list_cache = MemoryStore(settings.cache_soft_max, name="cache.lists")
            lookup_cache = MemoryStore(settings.cache_soft_max, name="cache.lookups")
        return cls(
            base_url=settings.api_base_url,
            http_client=http_client,
            page_size=settings.list_page_size,
            timeout_seconds=settings.request_timeout_seconds,
            retry_budget=settings.retry_budget,
            retry_base_delay=settings.retry_base_delay_seconds,
            retry_max_delay=settings.retry_max_delay_seconds,
            retry_on_rate_limit=settings.retry_on_rate_limit,
            list_cache=list_cache,
            lookup_cache=lookup_cache,
            cache_ttl_seconds=settings.cache_ttl_seconds,
        )

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    def download_url(self, source: Source, access_key: str, container_id: int, file_id: int) -> str:
        endpoints = ENDPOINTS[source]
        params = {
            "token": access_key,
            endpoints.id_param: str(container_id),
            "file_id": str(file_id),
            "redirect": "true",
        }
        return str(httpx.URL(f"{self.base_url}/{endpoints.download_path}", params=params))

    # -- transport ----------------------------------------------------------

    def _retryable_status(self, status_code: int) -> bool:
        if status_code >= 500:
            return True
        return status_code == 429 and self.retry_on_rate_limit

    async def _attempt(self, url: str, params: dict, access_key: str) -> Outcome:
        try:
            response = await asyncio.wait_for(
                self._http.get(url, params=params, headers={"Authorization": f"Bearer {access_key}"}),
                timeout=self.timeout_seconds,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return RetryableFailure("request timed out")
        except httpx.TransportError as exc:
            return RetryableFailure(f"transport error: {type(exc).__name__}")
        except httpx.RequestError as exc:
            # Undecodable content encoding and other non-transport failures.
            return TerminalFailure(f"request error: {type(exc).__name__}")

        if not response.is_success:
            reason = f"HTTP {response.status_code}"
            if self._retryable_status(response.status_code):
                return RetryableFailure(reason, response.status_code)
            return TerminalFailure(reason, response.status_code)

        try:
            return Success(UpstreamEnvelope.model_validate_json(response.content))
        except ValidationError:
            return TerminalFailure("malformed response body", response.status_code)

    async def _fetch(self, source: Source, path: str, params: dict, access_key: str) -> UpstreamEnvelope:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retry_budget + 1),
            wait=wait_random_exponential(multiplier=self.retry_base_delay, max=self.retry_max_delay),
            retry=retry_if_result(lambda outcome: isinstance(outcome, RetryableFailure)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            retry_error_callback=_last_outcome,
        )
        outcome = await retrying(self._attempt, f"{self.base_url}/{path}", params, access_key)

        if isinstance(outcome, RetryableFailure):
            logger.warning(
                "Retry budget exhausted for %s %s (key %s): %s",
                source.value,
                path,
                mask_key(access_key),
                outcome.reason,
            )
            raise UpstreamError(outcome.reason, source=source.value, status_code=outcome.status_code)
        if isinstance(outcome, TerminalFailure):
            raise UpstreamError(outcome.reason, source=source.value, status_code=outcome.status_code)

        envelope = outcome.envelope
        if not envelope.success:
            raise UpstreamError(envelope.failure_detail(), source=source.value)
        return envelope

    # -- public operations --------------------------------------------------

    async def list_by_source(self, source: Source, access_key: str) -> list[ContainerEntry]:
        cache_key = f"{source.value}:{access_key}"
        if self.list_cache is not None:
            cached = self.list_cache.get(cache_key)
            if cached is not MISSING:
                logger.debug("List cache hit for %s", source.value)
                return list(cached)

        path = ENDPOINTS[source].list_path
        containers: list[ContainerEntry] = []
        offset = 0
        while True:
            params = {"offset": str(offset), "limit": str(self.page_size)}
            envelope = await self._fetch(source, path, params, access_key)
            items = envelope.items()
            containers.extend(normalize_container(source, item) for item in items if item.available)
            if len(items) < self.page_size:
                break
            offset += self.page_size

        if self.list_cache is not None:
            self.list_cache.set(cache_key, tuple(containers), self.cache_ttl_seconds)
        return containers

    async def get_by_id(self, source: Source, access_key: str, container_id: int) -> Optional[ContainerEntry]:
        cache_key = f"{source.value}:{container_id}:{access_key}"
        if self.lookup_cache is not None:
            cached = self.lookup_cache.get(cache_key)
            if cached is not MISSING:
                logger.debug("Lookup cache hit for %s/%s", source.value, container_id)
                return cached

        params = {"id": str(container_id), "limit": str(self.page_size)}
        envelope = await self._fetch(source, ENDPOINTS[source].list_path, params, access_key)
        item = next((x for x in envelope.items() if x.id == container_id and x.available), None)
        container = normalize_container(source, item) if item is not None else None

        if self.lookup_cache is not None:
            self.lookup_cache.set(cache_key, container, self.cache_ttl_seconds)
        return container

    async def list_all(self, access_key: str, sources: Sequence[Source] = tuple(Source)) -> FanOut:
        results = await asyncio.gather(
            *(self.list_by_source(source, access_key) for source in sources),
            return_exceptions=True,
        )
        fan_out = FanOut()
        for source, result in zip(sources, results):
            if isinstance(result, UpstreamError):
                logger.warning("Source %s unavailable: %s", source.value, result)
                fan_out.failures.append((source, result))
            elif isinstance(result, BaseException):
                raise result
            else:
                fan_out.succeeded.append(source)
                fan_out.containers.extend(result)
        return fan_out
