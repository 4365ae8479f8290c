"""Object storage access and URL resolution for project assets."""

from __future__ import annotations

import ipaddress
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlparse

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from config import Settings
from services.errors import TransportError

logger = logging.getLogger(__name__)

# SigV4 presigned URLs cannot outlive seven days.
MAX_SIGNED_URL_TTL_SECONDS = 604800
DEFAULT_UPLOAD_URL_TTL_SECONDS = 3600
LIST_PAGE_SIZE = 1000


def clamp_signed_url_ttl(seconds: Any) -> int:
    """Bound a requested lifetime to [1, 604800] seconds."""
    try:
        value = int(seconds)
    except (TypeError, ValueError):
        value = MAX_SIGNED_URL_TTL_SECONDS
    return max(1, min(value, MAX_SIGNED_URL_TTL_SECONDS))


def is_loopback_endpoint(endpoint: Optional[str]) -> bool:
    if not endpoint:
        return False
    raw = endpoint if "://" in endpoint else f"http://{endpoint}"
    host = (urlparse(raw).hostname or "").lower()
    if host == "localhost":
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


def build_public_url(bucket: str, key: str, region: str, endpoint: Optional[str] = None) -> str:
    """Static URL: path-style under a custom endpoint, virtual-hosted on AWS."""
    quoted_key = quote(key.lstrip("/"))
    if endpoint:
        return f"{endpoint.rstrip('/')}/{bucket}/{quoted_key}"
    return f"https://{bucket}.s3.{region}.amazonaws.com/{quoted_key}"


def build_s3_client(current: Settings):
    """Create the boto3 S3 client for the configured region/endpoint."""
    s3_options: Dict[str, Any] = {}
    if is_loopback_endpoint(current.S3_ENDPOINT):
        s3_options["addressing_style"] = "path"

    client_kwargs: Dict[str, Any] = {
        "region_name": current.S3_REGION,
        "config": Config(signature_version="s3v4", s3=s3_options or None),
    }
    if current.S3_ENDPOINT:
        client_kwargs["endpoint_url"] = current.S3_ENDPOINT
    if current.S3_ACCESS_KEY_ID and current.S3_SECRET_ACCESS_KEY:
        client_kwargs["aws_access_key_id"] = current.S3_ACCESS_KEY_ID
        client_kwargs["aws_secret_access_key"] = current.S3_SECRET_ACCESS_KEY
    return boto3.client("s3", **client_kwargs)


class ObjectStore:
    """Thin bucket-scoped wrapper over the S3 client."""

    def __init__(self, client, bucket: str, region: str, endpoint: Optional[str] = None):
        self._client = client
        self.bucket = bucket
        self.region = region
        self.endpoint = endpoint

    @classmethod
    def from_settings(cls, current: Settings) -> "ObjectStore":
        return cls(
            build_s3_client(current),
            bucket=current.S3_BUCKET_NAME,
            region=current.S3_REGION,
            endpoint=current.S3_ENDPOINT,
        )

    def list_keys(self, prefix: str) -> List[str]:
        """Return every key under `prefix` in listing order; [] when nothing is there."""
        keys: List[str] = []
        continuation_token: Optional[str] = None
        while True:
            kwargs: Dict[str, Any] = {
                "Bucket": self.bucket,
                "Prefix": prefix,
                "MaxKeys": LIST_PAGE_SIZE,
            }
            if continuation_token:
                kwargs["ContinuationToken"] = continuation_token
            try:
                response = self._client.list_objects_v2(**kwargs)
            except (BotoCoreError, ClientError) as exc:
                raise TransportError(f"Failed to list s3://{self.bucket}/{prefix}: {exc}") from exc
            for obj in response.get("Contents", []) or []:
                key = obj.get("Key")
                if isinstance(key, str):
                    keys.append(key)
            if not response.get("IsTruncated"):
                break
            continuation_token = response.get("NextContinuationToken")
            if not continuation_token:
                break
        return keys

    def upload_bytes(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> None:
        params: Dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": data,
            "ContentType": content_type,
        }
        if metadata:
            params["Metadata"] = metadata
        try:
            self._client.put_object(**params)
        except (BotoCoreError, ClientError) as exc:
            raise TransportError(f"Failed to upload s3://{self.bucket}/{key}: {exc}") from exc

    def presign_get(self, key: str, expires_in: int = MAX_SIGNED_URL_TTL_SECONDS) -> str:
        """Signed GET URL for playback/display. Never reuses an upload signature."""
        return self._client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=clamp_signed_url_ttl(expires_in),
            HttpMethod="GET",
        )

    def presign_upload(
        self,
        key: str,
        *,
        content_type: str,
        expires_in: int = DEFAULT_UPLOAD_URL_TTL_SECONDS,
    ) -> str:
        """Signed PUT URL for uploads; only valid for the PUT verb."""
        return self._client.generate_presigned_url(
            "put_object",
            Params={"Bucket": self.bucket, "Key": key, "ContentType": content_type},
            ExpiresIn=clamp_signed_url_ttl(expires_in),
            HttpMethod="PUT",
        )

    def public_url(self, key: str) -> str:
        return build_public_url(self.bucket, key, self.region, self.endpoint)


class UrlResolver:
    """Turns keys into access URLs, signed or public depending on configuration."""

    def __init__(self, store: ObjectStore, *, signed: bool, ttl_seconds: int = MAX_SIGNED_URL_TTL_SECONDS):
        self.store = store
        self.signed = signed
        self.ttl_seconds = clamp_signed_url_ttl(ttl_seconds)

    def resolve(self, key: str) -> str:
        if self.signed:
            return self.store.presign_get(key, expires_in=self.ttl_seconds)
        return self.store.public_url(key)
