from __future__ import annotations

import logging
from typing import Dict, Optional
from urllib.parse import unquote, urlparse

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from skitgen.errors import ProviderError


class S3StorageClient:
    """Object storage keyed by ``<folder>/<filename>``.

    Falls back to an in-process dictionary when no bucket credentials are
    configured, which keeps local runs and tests free of network access.
    """

    def __init__(
        self,
        bucket: str,
        access_key: str | None,
        secret_key: str | None,
        endpoint_url: str | None = None,
        region_name: str | None = None,
        public_url: str | None = None,
        addressing_style: str | None = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.bucket = (bucket or "").strip()
        self.access_key = (access_key or "").strip()
        self.secret_key = (secret_key or "").strip()
        self.endpoint_url = (endpoint_url or "").rstrip("/") or None
        self.region_name = (region_name or "").strip() or None
        self.public_url_base = (public_url or "").rstrip("/")
        self.log = logger or logging.getLogger(__name__)
        self._memory: Dict[str, bytes] = {}
        self._client = None
        if self.is_configured():
            session = boto3.session.Session(
                aws_access_key_id=self.access_key,
                aws_secret_access_key=self.secret_key,
                region_name=self.region_name,
            )
            config = BotoConfig(
                s3={"addressing_style": (addressing_style or "virtual").lower()}
            )
            self._client = session.client("s3", endpoint_url=self.endpoint_url, config=config)

    def is_configured(self) -> bool:
        return bool(self.bucket and self.access_key and self.secret_key)

    def put(self, content: bytes, folder: str, filename: str, content_type: str) -> str:
        key = self._normalize_path(f"{folder}/{filename}")
        if self._client is None:
            self._memory[key] = content
        else:
            try:
                self._client.put_object(
                    Bucket=self.bucket,
                    Key=key,
                    Body=content,
                    ContentType=content_type,
                )
            except (BotoCoreError, ClientError) as exc:  # pragma: no cover - AWS error surface
                raise ProviderError(f"S3 upload failed: {exc}", provider="s3") from exc
        self.log.info("uploaded object", extra={"key": key, "size": len(content)})
        return self.public_url(key)

    def put_text(self, text: str, folder: str, filename: str, content_type: str = "text/plain; charset=utf-8") -> str:
        return self.put(text.encode("utf-8"), folder, filename, content_type)

    def get(self, url: str) -> bytes:
        key = self.key_from_url(url)
        if not key:
            raise ProviderError(f"S3 download failed: cannot resolve key from {url!r}", provider="s3")
        if self._client is None:
            if key not in self._memory:
                raise ProviderError(f"S3 download failed: object not found: {key}", provider="s3")
            return self._memory[key]
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
            body = response.get("Body")
            if body is None:
                return b""
            return body.read()
        except (BotoCoreError, ClientError) as exc:  # pragma: no cover
            raise ProviderError(f"S3 download failed: {exc}", provider="s3") from exc

    def delete(self, url: str) -> None:
        key = self.key_from_url(url)
        if not key:
            return
        if self._client is None:
            self._memory.pop(key, None)
        else:
            try:
                self._client.delete_object(Bucket=self.bucket, Key=key)
            except (BotoCoreError, ClientError) as exc:  # pragma: no cover
                raise ProviderError(f"S3 delete failed: {exc}", provider="s3") from exc
        self.log.info("deleted object", extra={"key": key})

    def owns(self, url: str) -> bool:
        return self.key_from_url(url) is not None

    def public_url(self, path: str) -> str:
        clean = self._normalize_path(path)
        if self.public_url_base:
            return f"{self.public_url_base}/{clean}"
        if self.endpoint_url:
            return f"{self.endpoint_url}/{self.bucket}/{clean}"
        return f"/{self.bucket}/{clean}"

    def key_from_url(self, url: str | None) -> str | None:
        if not url:
            return None
        candidate = url.strip()
        prefixes = []
        if self.public_url_base:
            prefixes.append(f"{self.public_url_base}/")
        if self.endpoint_url:
            prefixes.append(f"{self.endpoint_url}/{self.bucket}/")
        prefixes.append(f"/{self.bucket}/")
        for prefix in prefixes:
            if candidate.startswith(prefix):
                return self._normalize_path(unquote(candidate[len(prefix):])) or None
        parsed = urlparse(candidate)
        if parsed.netloc.startswith(f"{self.bucket}.") and parsed.netloc.endswith("amazonaws.com"):
            return self._normalize_path(unquote(parsed.path)) or None
        return None

    def _normalize_path(self, path: str | None) -> str:
        if not path:
            return ""
        return "/".join(part for part in path.strip().split("/") if part)
