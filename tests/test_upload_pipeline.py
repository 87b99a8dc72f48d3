"""
Tests for the upload pipeline and the HTTP storage collaborator.

Storage is faked with httpx.MockTransport; sleeping is recorded instead of
performed so backoff schedules are asserted exactly.
"""

import asyncio
from uuid import uuid4

import httpx
import pytest

from marketplace.exceptions import StorageUnavailableError, UploadFailedError, UploadRejectedError
from marketplace.models.domain import AssetFile, AssetMetadata
from marketplace.services.upload import HttpAssetStorage, UploadPipeline

UPLOAD_URL = "http://storage.test/upload"
STORED = {
    "asset_url": "https://storage.test/assets/a.jpg",
    "thumbnail_url": "https://storage.test/thumbs/a.jpg",
}


class RecordingSleep:
    """Sleep stand-in that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class ScriptedStorage:
    """Replays a list of responses (httpx.Response, exception or dict) in order."""

    def __init__(self, script: list) -> None:
        self.script = list(script)
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        step = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(step, Exception):
            raise step
        if isinstance(step, dict):
            return httpx.Response(200, json=step)
        return step

    def storage(self) -> HttpAssetStorage:
        return HttpAssetStorage(
            upload_url=UPLOAD_URL,
            api_key="storage-key",
            transport=httpx.MockTransport(self.handler),
        )


@pytest.fixture
def asset() -> AssetFile:
    return AssetFile(filename="sunset.jpg", content=b"\xff\xd8full-res", content_type="image/jpeg")


@pytest.fixture
def thumbnail() -> AssetFile:
    return AssetFile(filename="sunset_thumb.jpg", content=b"\xff\xd8thumb", content_type="image/jpeg")


@pytest.fixture
def metadata() -> AssetMetadata:
    return AssetMetadata(owner_id=uuid4(), title="Sunset", price_minor=1599, category="Nature")


def make_pipeline(storage, sleep=None, **kwargs) -> UploadPipeline:
    kwargs.setdefault("max_retries", 3)
    kwargs.setdefault("backoff_base_seconds", 0.5)
    kwargs.setdefault("backoff_max_seconds", 8.0)
    kwargs.setdefault("total_timeout_seconds", 60.0)
    return UploadPipeline(storage, sleep=sleep or RecordingSleep(), **kwargs)


class TestBackoffSchedule:
    """Delay computation."""

    def test_exponential_from_base(self):
        pipeline = make_pipeline(storage=None)
        assert [pipeline.backoff_delay(n) for n in (1, 2, 3)] == [0.5, 1.0, 2.0]

    def test_capped_at_max(self):
        pipeline = make_pipeline(storage=None, backoff_base_seconds=1.0, backoff_max_seconds=3.0)
        assert [pipeline.backoff_delay(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 3.0, 3.0]

    def test_max_attempts_includes_first(self):
        assert make_pipeline(storage=None, max_retries=0).max_attempts == 1
        assert make_pipeline(storage=None, max_retries=3).max_attempts == 4


class TestUploadRetries:
    """Retry behaviour against scripted storage responses."""

    @pytest.mark.asyncio
    async def test_success_first_try(self, asset, thumbnail, metadata):
        scripted = ScriptedStorage([STORED])
        sleep = RecordingSleep()

        result = await make_pipeline(scripted.storage(), sleep).upload(asset, thumbnail, metadata)

        assert result.asset_url == STORED["asset_url"]
        assert result.thumbnail_url == STORED["thumbnail_url"]
        assert result.attempts == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_two_transient_failures_then_success(self, asset, thumbnail, metadata):
        scripted = ScriptedStorage([httpx.Response(503), httpx.Response(502), STORED])
        sleep = RecordingSleep()

        result = await make_pipeline(scripted.storage(), sleep).upload(asset, thumbnail, metadata)

        assert result.attempts == 3
        assert len(scripted.requests) == 3
        assert sleep.delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_persistent_unavailability_exhausts_attempts(self, asset, thumbnail, metadata):
        scripted = ScriptedStorage([httpx.Response(503)])
        sleep = RecordingSleep()

        with pytest.raises(UploadFailedError) as exc_info:
            await make_pipeline(scripted.storage(), sleep).upload(asset, thumbnail, metadata)

        assert exc_info.value.attempts == 4
        assert isinstance(exc_info.value.last_error, StorageUnavailableError)
        assert len(scripted.requests) == 4
        assert sleep.delays == [0.5, 1.0, 2.0]

    @pytest.mark.asyncio
    async def test_rate_limit_is_retried(self, asset, thumbnail, metadata):
        scripted = ScriptedStorage([httpx.Response(429), STORED])

        result = await make_pipeline(scripted.storage()).upload(asset, thumbnail, metadata)

        assert result.attempts == 2

    @pytest.mark.asyncio
    async def test_transport_error_is_retried(self, asset, thumbnail, metadata):
        scripted = ScriptedStorage([httpx.ConnectError("connection refused"), STORED])

        result = await make_pipeline(scripted.storage()).upload(asset, thumbnail, metadata)

        assert result.attempts == 2

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, asset, thumbnail, metadata):
        scripted = ScriptedStorage([httpx.Response(400, text="unsupported format")])
        sleep = RecordingSleep()

        with pytest.raises(UploadRejectedError) as exc_info:
            await make_pipeline(scripted.storage(), sleep).upload(asset, thumbnail, metadata)

        assert exc_info.value.status_code == 400
        assert len(scripted.requests) == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_malformed_body_rejected(self, asset, thumbnail, metadata):
        scripted = ScriptedStorage([httpx.Response(200, text="<html>ok</html>")])

        with pytest.raises(UploadRejectedError):
            await make_pipeline(scripted.storage()).upload(asset, thumbnail, metadata)

        assert len(scripted.requests) == 1

    @pytest.mark.asyncio
    async def test_missing_urls_rejected(self, asset, thumbnail, metadata):
        scripted = ScriptedStorage([{"asset_url": "https://storage.test/a.jpg"}])

        with pytest.raises(UploadRejectedError):
            await make_pipeline(scripted.storage()).upload(asset, thumbnail, metadata)

    @pytest.mark.asyncio
    async def test_image_url_alias_accepted(self, asset, thumbnail, metadata):
        scripted = ScriptedStorage(
            [{"image_url": "https://storage.test/i.jpg", "thumbnail_url": "https://storage.test/t.jpg"}]
        )

        result = await make_pipeline(scripted.storage()).upload(asset, thumbnail, metadata)

        assert result.asset_url == "https://storage.test/i.jpg"

    @pytest.mark.asyncio
    async def test_zero_retries_means_single_attempt(self, asset, thumbnail, metadata):
        scripted = ScriptedStorage([httpx.Response(500)])

        with pytest.raises(UploadFailedError) as exc_info:
            await make_pipeline(scripted.storage(), max_retries=0).upload(asset, thumbnail, metadata)

        assert exc_info.value.attempts == 1


class TestUploadBudget:
    """The caller's time budget bounds the whole operation."""

    @pytest.mark.asyncio
    async def test_retry_skipped_when_backoff_exceeds_budget(self, asset, thumbnail, metadata):
        scripted = ScriptedStorage([httpx.Response(503), STORED])
        sleep = RecordingSleep()
        pipeline = make_pipeline(scripted.storage(), sleep, backoff_base_seconds=10.0)

        with pytest.raises(UploadFailedError) as exc_info:
            await pipeline.upload(asset, thumbnail, metadata, timeout=1.0)

        assert exc_info.value.attempts == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_hung_storage_cut_off_by_budget(self, asset, thumbnail, metadata):
        class HangingStorage:
            calls = 0

            async def store(self, asset, thumbnail, metadata):
                HangingStorage.calls += 1
                await asyncio.sleep(10)
                return "never", "never"

        with pytest.raises(UploadFailedError) as exc_info:
            await make_pipeline(HangingStorage()).upload(asset, thumbnail, metadata, timeout=0.05)

        assert exc_info.value.attempts == 1
        assert HangingStorage.calls == 1


class TestHttpAssetStorage:
    """Request shape sent to the storage service."""

    @pytest.mark.asyncio
    async def test_sends_multipart_with_both_files(self, asset, thumbnail, metadata):
        scripted = ScriptedStorage([STORED])
        storage = scripted.storage()

        await storage.store(asset, thumbnail, metadata)
        await storage.close()

        request = scripted.requests[0]
        body = request.read()
        assert request.method == "POST"
        assert str(request.url) == UPLOAD_URL
        assert request.headers["Authorization"] == "Bearer storage-key"
        assert request.headers["Content-Type"].startswith("multipart/form-data")
        assert b'name="image"; filename="sunset.jpg"' in body
        assert b'name="thumbnail"; filename="sunset_thumb.jpg"' in body
        assert str(metadata.owner_id).encode() in body

    @pytest.mark.asyncio
    async def test_no_auth_header_without_key(self, asset, thumbnail, metadata):
        scripted = ScriptedStorage([STORED])
        storage = HttpAssetStorage(
            upload_url=UPLOAD_URL, api_key="", transport=httpx.MockTransport(scripted.handler)
        )

        await storage.store(asset, thumbnail, metadata)
        await storage.close()

        assert "Authorization" not in scripted.requests[0].headers

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self, asset, thumbnail, metadata):
        scripted = ScriptedStorage([httpx.ReadTimeout("slow storage")])
        storage = scripted.storage()

        with pytest.raises(StorageUnavailableError):
            await storage.store(asset, thumbnail, metadata)
        await storage.close()
