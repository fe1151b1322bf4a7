"""
Unit tests for the storage API client, run against a local fake storage API.
"""

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from callscribe.errors import NotFound, StorageUnavailable
from callscribe.server.common.object_storage import StorageAPIClient


@pytest.fixture
async def fake_storage():
    state = {"objects": {"owner-1/call.mp3"}, "fail": False, "requests": []}

    async def bucket(request: web.Request) -> web.Response:
        return web.json_response({"name": request.match_info["bucket"]})

    async def sign(request: web.Request) -> web.Response:
        path = request.match_info["path"]
        state["requests"].append(
            {
                "path": path,
                "body": await request.json(),
                "authorization": request.headers.get("Authorization"),
            }
        )
        if state["fail"]:
            return web.Response(status=500, text="boom")
        if path not in state["objects"]:
            return web.json_response({"error": "Object not found"}, status=400)
        return web.json_response(
            {"signedURL": f"/object/sign/{request.match_info['bucket']}/{path}?token=abc"}
        )

    app = web.Application()
    app.router.add_get("/storage/v1/bucket/{bucket}", bucket)
    app.router.add_post("/storage/v1/object/sign/{bucket}/{path:.+}", sign)

    async with TestServer(app) as server:
        server.state = state
        yield server


@pytest.fixture
async def storage(fake_storage):
    client = StorageAPIClient(
        endpoint=f"http://{fake_storage.host}:{fake_storage.port}/", service_key="service-key"
    )
    await client.connect()
    yield client
    await client.disconnect()


@pytest.mark.unit
class TestStorageAPIClient:
    @pytest.mark.asyncio
    async def test_health_check(self, storage):
        assert await storage.health_check()

    @pytest.mark.asyncio
    async def test_signed_url(self, storage, fake_storage):
        url = await storage.create_signed_url("owner-1/call.mp3", 3600)

        assert url == (
            f"{storage.endpoint}/storage/v1/object/sign/audio-files/owner-1/call.mp3?token=abc"
        )
        request = fake_storage.state["requests"][0]
        assert request["body"] == {"expiresIn": 3600}
        assert request["authorization"] == "Bearer service-key"

    @pytest.mark.asyncio
    async def test_missing_object_is_not_found(self, storage):
        with pytest.raises(NotFound):
            await storage.create_signed_url("owner-1/other.mp3", 3600)

    @pytest.mark.asyncio
    async def test_server_error_is_retryable(self, storage, fake_storage):
        fake_storage.state["fail"] = True

        with pytest.raises(StorageUnavailable) as exc_info:
            await storage.create_signed_url("owner-1/call.mp3", 3600)

        assert exc_info.value.retryable
        assert exc_info.value.details["status"] == 500

    @pytest.mark.asyncio
    async def test_unreachable_storage_is_retryable(self):
        client = StorageAPIClient(endpoint="http://127.0.0.1:1", service_key="k")
        await client.connect()
        try:
            assert not await client.health_check()
            with pytest.raises(StorageUnavailable):
                await client.create_signed_url("owner-1/call.mp3", 60)
        finally:
            await client.disconnect()
