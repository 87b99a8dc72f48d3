"""
Upload Pipeline - submits asset bytes to external object storage with bounded retry.

Transient failures (transport errors, timeouts, HTTP 5xx and 429) are retried
with exponential backoff. Everything else fails immediately. The whole
operation is bounded by a caller-supplied time budget.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Protocol

import httpx
from structlog import get_logger

from marketplace.config import settings
from marketplace.exceptions import StorageUnavailableError, UploadFailedError, UploadRejectedError
from marketplace.models.domain import AssetFile, AssetMetadata, UploadedAsset
from marketplace.observability.metrics import metrics
from marketplace.observability.tracing import trace_operation

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class AssetStorage(Protocol):
    """Object storage collaborator."""

    async def store(
        self, asset: AssetFile, thumbnail: AssetFile, metadata: AssetMetadata
    ) -> tuple[str, str]:
        """
        Store one asset and its thumbnail; return (asset_url, thumbnail_url).

        Raises StorageUnavailableError for transient failures and
        UploadRejectedError for permanent ones.
        """
        ...


class HttpAssetStorage:
    """
    Storage collaborator reached over HTTP.

    Sends `image` and `thumbnail` in one multipart POST and expects a JSON
    body with `asset_url` (or `image_url`) and `thumbnail_url`.
    """

    def __init__(
        self,
        upload_url: str | None = None,
        api_key: str | None = None,
        request_timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.upload_url = upload_url or settings.storage_upload_url
        self.api_key = settings.storage_api_key if api_key is None else api_key
        self.request_timeout = request_timeout or settings.upload_request_timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.request_timeout),
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def store(
        self, asset: AssetFile, thumbnail: AssetFile, metadata: AssetMetadata
    ) -> tuple[str, str]:
        files = {
            "image": (asset.filename, asset.content, asset.content_type),
            "thumbnail": (thumbnail.filename, thumbnail.content, thumbnail.content_type),
        }
        data = {
            "owner_id": str(metadata.owner_id),
            "title": metadata.title,
            "category": metadata.category,
        }

        try:
            response = await self.client.post(self.upload_url, files=files, data=data)
        except httpx.TimeoutException as exc:
            raise StorageUnavailableError(f"storage request timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise StorageUnavailableError(f"storage unreachable: {exc}") from exc

        status = response.status_code
        if status == 429 or status >= 500:
            raise StorageUnavailableError(f"storage returned HTTP {status}")
        if status >= 400:
            raise UploadRejectedError(response.text[:200] or f"HTTP {status}", status_code=status)

        try:
            body = response.json()
        except ValueError as exc:
            raise UploadRejectedError("storage response is not JSON", status_code=status) from exc

        if not isinstance(body, dict):
            raise UploadRejectedError("storage response is not an object", status_code=status)

        asset_url = body.get("asset_url") or body.get("image_url")
        thumbnail_url = body.get("thumbnail_url")
        if not isinstance(asset_url, str) or not isinstance(thumbnail_url, str):
            raise UploadRejectedError(
                "storage response missing asset_url/thumbnail_url", status_code=status
            )
        return asset_url, thumbnail_url


class UploadPipeline:
    """
    Bounded retry loop around an AssetStorage.

    At most 1 + max_retries attempts, one request in flight per attempt.
    Delay before attempt n+1 is min(base * 2**(n-1), max_delay).
    """

    def __init__(
        self,
        storage: AssetStorage,
        max_retries: int | None = None,
        backoff_base_seconds: float | None = None,
        backoff_max_seconds: float | None = None,
        total_timeout_seconds: float | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.storage = storage
        self.max_retries = settings.upload_max_retries if max_retries is None else max_retries
        self.backoff_base_seconds = (
            settings.upload_backoff_base_seconds
            if backoff_base_seconds is None
            else backoff_base_seconds
        )
        self.backoff_max_seconds = (
            settings.upload_backoff_max_seconds if backoff_max_seconds is None else backoff_max_seconds
        )
        self.total_timeout_seconds = (
            settings.upload_total_timeout_seconds
            if total_timeout_seconds is None
            else total_timeout_seconds
        )
        self._sleep = sleep
        self._clock = clock

    @property
    def max_attempts(self) -> int:
        return 1 + self.max_retries

    def backoff_delay(self, attempt: int) -> float:
        """Delay after failed attempt number `attempt` (1-based)."""
        return min(self.backoff_base_seconds * 2 ** (attempt - 1), self.backoff_max_seconds)

    async def upload(
        self,
        asset: AssetFile,
        thumbnail: AssetFile,
        metadata: AssetMetadata,
        timeout: float | None = None,
    ) -> UploadedAsset:
        """
        Upload an asset and its thumbnail.

        Raises:
            UploadRejectedError: Storage rejected the upload (not retried)
            UploadFailedError: Attempts or time budget exhausted
        """
        budget = self.total_timeout_seconds if timeout is None else timeout
        start = self._clock()
        deadline = start + budget
        state = _AttemptState()

        with trace_operation("asset_upload", owner_id=metadata.owner_id, budget_seconds=budget):
            try:
                async with asyncio.timeout(budget):
                    result = await self._attempt_loop(asset, thumbnail, metadata, deadline, state)
            except TimeoutError as exc:
                logger.warning(
                    "upload_budget_exhausted",
                    attempts=state.attempts,
                    budget_seconds=budget,
                )
                metrics.record_upload("failed", self._clock() - start)
                raise UploadFailedError(state.attempts, state.last_error or exc) from exc
            except UploadRejectedError:
                metrics.record_upload("rejected", self._clock() - start)
                raise

        if result is None:
            metrics.record_upload("failed", self._clock() - start)
            logger.error(
                "upload_failed",
                attempts=state.attempts,
                error=str(state.last_error),
            )
            raise UploadFailedError(state.attempts, state.last_error)

        metrics.record_upload("succeeded", self._clock() - start)
        logger.info(
            "upload_succeeded",
            attempts=state.attempts,
            asset_url=result.asset_url,
        )
        return result

    async def _attempt_loop(
        self,
        asset: AssetFile,
        thumbnail: AssetFile,
        metadata: AssetMetadata,
        deadline: float,
        state: "_AttemptState",
    ) -> UploadedAsset | None:
        while state.attempts < self.max_attempts:
            state.attempts += 1
            try:
                asset_url, thumbnail_url = await self.storage.store(asset, thumbnail, metadata)
            except UploadRejectedError as exc:
                metrics.record_upload_attempt("rejected")
                logger.warning(
                    "upload_rejected",
                    attempt=state.attempts,
                    status_code=exc.status_code,
                    error=exc.message,
                )
                raise
            except StorageUnavailableError as exc:
                state.last_error = exc
                metrics.record_upload_attempt("transient")
                logger.warning(
                    "upload_attempt_failed",
                    attempt=state.attempts,
                    max_attempts=self.max_attempts,
                    error=exc.message,
                )
                if state.attempts >= self.max_attempts:
                    return None

                delay = self.backoff_delay(state.attempts)
                if self._clock() + delay >= deadline:
                    logger.warning(
                        "upload_retry_skipped",
                        attempt=state.attempts,
                        delay_seconds=delay,
                    )
                    return None
                await self._sleep(delay)
                continue

            metrics.record_upload_attempt("success")
            return UploadedAsset(
                asset_url=asset_url, thumbnail_url=thumbnail_url, attempts=state.attempts
            )
        return None


class _AttemptState:
    """Mutable attempt bookkeeping shared with the timeout handler."""

    def __init__(self) -> None:
        self.attempts = 0
        self.last_error: Exception | None = None
