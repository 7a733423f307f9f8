from __future__ import annotations

import asyncio
import io
import json

import httpx
import pytest
from botocore.exceptions import ClientError

from adforge.errors import StorageTierError
from adforge.services.asset_service_client import AssetServiceClient
from adforge.services.media_storage import MediaStorage
from adforge.services.storage_tiers import LocalFileTier, ManagedAssetTier, ObjectStorageTier


class FakeS3Client:
    def __init__(self) -> None:
        self.objects: dict[str, dict] = {}

    def head_object(self, *, Bucket, Key):
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject")
        return {"ContentLength": len(self.objects[Key]["Body"])}

    def put_object(self, **kwargs):
        self.objects[kwargs["Key"]] = kwargs

    def get_object(self, *, Bucket, Key):
        obj = self.objects[Key]
        return {"Body": io.BytesIO(obj["Body"]), "ContentType": obj.get("ContentType")}


def test_local_tier_round_trip(media_root):
    tier = LocalFileTier(media_root, public_base_url="https://adforge.test/")

    async def run():
        url = await tier.put(b"video-bytes", "video/ab/abcdef.mp4", content_type="video/mp4")
        return url, await tier.get(url)

    url, data = asyncio.run(run())

    assert url == "https://adforge.test/media/video/ab/abcdef.mp4"
    assert data == b"video-bytes"
    assert (media_root / "video" / "ab" / "abcdef.mp4").read_bytes() == b"video-bytes"
    assert tier.owns(url)
    assert not tier.owns("https://replicate.delivery/x.mp4")


def test_local_tier_refuses_paths_outside_root(media_root):
    tier = LocalFileTier(media_root, public_base_url="https://adforge.test")

    with pytest.raises(StorageTierError):
        asyncio.run(tier.put(b"x", "../outside.bin"))


def test_object_storage_tier_uploads_once_per_content_key():
    client = FakeS3Client()
    storage = MediaStorage(
        bucket="media-bucket",
        prefix="campaigns",
        public_base_url="https://cdn.example",
        client=client,
    )
    tier = ObjectStorageTier(storage)

    async def run():
        first = await tier.put(b"img", "image/aa/aa11.png", content_type="image/png")
        client.objects["campaigns/image/aa/aa11.png"]["Marker"] = True
        second = await tier.put(b"img", "image/aa/aa11.png", content_type="image/png")
        return first, second, await tier.get(first)

    first, second, data = asyncio.run(run())

    assert first == second == "https://cdn.example/campaigns/image/aa/aa11.png"
    assert client.objects["campaigns/image/aa/aa11.png"]["Marker"] is True
    assert client.objects["campaigns/image/aa/aa11.png"]["ContentType"] == "image/png"
    assert data == b"img"


def test_object_storage_tier_wraps_client_errors():
    class BrokenClient(FakeS3Client):
        def put_object(self, **kwargs):
            raise ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject")

    storage = MediaStorage(bucket="media-bucket", public_base_url="https://cdn.example", client=BrokenClient())

    with pytest.raises(StorageTierError) as excinfo:
        asyncio.run(ObjectStorageTier(storage).put(b"img", "image/aa/aa11.png"))

    assert excinfo.value.tier == "tierA"


def test_managed_asset_tier_upload_and_reference():
    seen: list[tuple[str, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path))
        assert request.headers["Authorization"] == "Bearer svc_token"
        if request.url.path == "/assets/upload":
            return httpx.Response(200, json={"id": "asset_1", "primary_url": "https://assets.example/asset_1.png"})
        if request.url.path == "/assets/from_uri":
            body = json.loads(request.content)
            assert body["primary_uri"] == "https://replicate.delivery/out.mp4"
            assert body["kind"] == "video"
            assert "fetch_headers" not in body
            return httpx.Response(201, json={"id": "asset_2", "primary_url": "https://assets.example/asset_2.mp4"})
        return httpx.Response(404)

    client = AssetServiceClient(
        base_url="https://assets-api.example",
        bearer_token="svc_token",
        transport=httpx.MockTransport(handler),
    )
    tier = ManagedAssetTier(client)

    async def run():
        uploaded = await tier.put(b"img", "image/aa/aa11.png", content_type="image/png")
        referenced = await tier.put_from_url(
            "https://replicate.delivery/out.mp4",
            "video/ref/abc-out.mp4",
        )
        return uploaded, referenced

    uploaded, referenced = asyncio.run(run())

    assert uploaded == "https://assets.example/asset_1.png"
    assert referenced == "https://assets.example/asset_2.mp4"
    assert seen == [("POST", "/assets/upload"), ("POST", "/assets/from_uri")]


def test_managed_asset_tier_surfaces_error_envelope():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            507,
            json={"error": {"code": "quota_exceeded", "message": "Storage quota exceeded", "request_id": "req_1"}},
        )

    client = AssetServiceClient(
        base_url="https://assets-api.example",
        bearer_token="svc_token",
        transport=httpx.MockTransport(handler),
    )

    with pytest.raises(StorageTierError) as excinfo:
        asyncio.run(ManagedAssetTier(client).put(b"img", "image/aa/aa11.png"))

    assert "Storage quota exceeded" in str(excinfo.value)
    assert "quota_exceeded" in str(excinfo.value)


def test_managed_asset_tier_refuses_credentialed_references():
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(201, json={"id": "asset_3", "primary_url": "https://assets.example/asset_3.mp4"})

    client = AssetServiceClient(
        base_url="https://assets-api.example",
        bearer_token="svc_token",
        transport=httpx.MockTransport(handler),
    )

    with pytest.raises(StorageTierError) as excinfo:
        asyncio.run(
            ManagedAssetTier(client).put_from_url(
                "https://generativelanguage.googleapis.com/v1beta/files/abc:download",
                "video/ref/abc-out.mp4",
                headers={"x-goog-api-key": "gemini-secret"},
            )
        )

    assert excinfo.value.tier == "tierB"
    assert "credentials" in str(excinfo.value)
    assert requests == []
