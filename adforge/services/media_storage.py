from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import quote, unquote

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from adforge.config import settings

logger = logging.getLogger(__name__)

IMMUTABLE_CACHE_CONTROL = "public, max-age=31536000, immutable"


class MediaStorage:
    """
    Thin wrapper around an S3-compatible bucket holding generated media.

    Objects are content addressed and never deleted; URLs are built from a public base so they do not
    expire the way presigned links do.
    """

    def __init__(
        self,
        *,
        bucket: Optional[str] = None,
        prefix: Optional[str] = None,
        public_base_url: Optional[str] = None,
        client=None,
    ) -> None:
        self.bucket = bucket or settings.MEDIA_STORAGE_BUCKET
        if not self.bucket:
            raise RuntimeError("MEDIA_STORAGE_BUCKET is required")
        self.prefix = (prefix if prefix is not None else settings.MEDIA_STORAGE_PREFIX or "").strip("/")

        endpoint = settings.MEDIA_STORAGE_ENDPOINT_URL
        resolved_base = public_base_url or settings.MEDIA_STORAGE_PUBLIC_BASE_URL
        if not resolved_base:
            if endpoint:
                resolved_base = f"{endpoint.rstrip('/')}/{self.bucket}"
            else:
                resolved_base = f"https://{self.bucket}.s3.amazonaws.com"
        self.public_base_url = resolved_base.rstrip("/")

        if client is None:
            session = boto3.session.Session()
            client = session.client(
                "s3",
                endpoint_url=endpoint,
                aws_access_key_id=settings.MEDIA_STORAGE_ACCESS_KEY_ID,
                aws_secret_access_key=settings.MEDIA_STORAGE_SECRET_ACCESS_KEY,
                region_name=settings.MEDIA_STORAGE_REGION or "us-east-1",
                config=Config(signature_version="s3v4", retries={"max_attempts": 2}),
            )
        self.client = client

    def build_key(self, path: str) -> str:
        parts = [p for p in [self.prefix, path.strip("/")] if p]
        return "/".join(parts)

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{quote(key)}"

    def key_for_url(self, url: str) -> str:
        if not url.startswith(self.public_base_url + "/"):
            raise RuntimeError("url_not_in_bucket")
        return unquote(url[len(self.public_base_url) + 1 :].split("?", 1)[0])

    def object_exists(self, *, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            if code in ("404", "NoSuchKey", "NotFound"):
                return False
            raise

    def upload_bytes(
        self,
        *,
        key: str,
        data: bytes,
        content_type: Optional[str],
        cache_control: Optional[str] = IMMUTABLE_CACHE_CONTROL,
        extra_metadata: Optional[dict[str, str]] = None,
    ) -> None:
        kwargs = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": data,
        }
        if content_type:
            kwargs["ContentType"] = content_type
        if cache_control:
            kwargs["CacheControl"] = cache_control
        if extra_metadata:
            kwargs["Metadata"] = extra_metadata
        self.client.put_object(**kwargs)

    def download_bytes(self, *, key: str) -> tuple[bytes, Optional[str]]:
        obj = self.client.get_object(Bucket=self.bucket, Key=key)
        body = obj.get("Body")
        content_type = obj.get("ContentType")
        data = body.read() if body else b""
        return data, content_type
