# src/streamjob/backends/storage.py
"""Google Cloud Storage over the JSON API.

Only the four operations a run needs: upload a file, list by prefix,
delete one object, delete everything under a prefix.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, BinaryIO
from urllib.parse import quote

import httpx
import structlog

from streamjob.contracts.errors import StorageError

logger = structlog.get_logger(__name__)

API_BASE = "https://www.googleapis.com"


@dataclass(frozen=True, slots=True)
class StorageObject:
    """The fields of an object resource a run uses."""

    name: str
    bucket: str
    size: int = 0
    created: str | None = None
    updated: str | None = None
    md5_hash: str | None = None
    storage_class: str | None = None

    @classmethod
    def from_resource(cls, resource: dict[str, Any]) -> StorageObject:
        return cls(
            name=resource["name"],
            bucket=resource["bucket"],
            size=int(resource.get("size", 0)),
            created=resource.get("timeCreated"),
            updated=resource.get("updated"),
            md5_hash=resource.get("md5Hash"),
            storage_class=resource.get("storageClass"),
        )


@dataclass(frozen=True, slots=True)
class ObjectPage:
    items: list[StorageObject] = field(default_factory=list)
    next_page_token: str | None = None


class StorageClient:
    """Objects in one bucket.

    Args:
        client: Authenticated httpx client (see credentials.authorized_client)
        bucket: Bucket name, without ``gs://``
    """

    def __init__(self, client: httpx.Client, bucket: str, *, api_base: str = API_BASE) -> None:
        self._client = client
        self._bucket = bucket
        self._api_base = api_base.rstrip("/")

    @property
    def bucket(self) -> str:
        return self._bucket

    def uri(self, name: str) -> str:
        return f"gs://{self._bucket}/{name}"

    def _bucket_path(self) -> str:
        return quote(self._bucket, safe="")

    def _check(self, response: httpx.Response, operation: str, name: str) -> None:
        if not response.is_success:
            logger.error(
                "storage request failed",
                operation=operation,
                uri=self.uri(name),
                status_code=response.status_code,
                body=response.text[:1000],
            )
            raise StorageError(operation, self.uri(name), response.status_code)

    def insert(self, name: str, body: BinaryIO | bytes, content_type: str | None = None) -> None:
        """Upload body as ``name`` (simple media upload).

        Raises:
            StorageError: On a non-success response
        """
        url = f"{self._api_base}/upload/storage/v1/b/{self._bucket_path()}/o"
        headers = {"Content-Type": content_type or "application/octet-stream"}
        content = body if isinstance(body, bytes) else body.read()
        logger.info("uploading object", uri=self.uri(name), size=len(content))
        response = self._client.post(
            url,
            params={"uploadType": "media", "name": name},
            content=content,
            headers=headers,
        )
        self._check(response, "upload", name)

    def list(self, prefix: str, page_token: str | None = None) -> ObjectPage:
        """One page (up to 1000 objects) of objects whose name starts with prefix.

        Raises:
            StorageError: On a non-success response
        """
        params = {"prefix": prefix}
        if page_token:
            params["pageToken"] = page_token
        response = self._client.get(f"{self._api_base}/storage/v1/b/{self._bucket_path()}/o", params=params)
        self._check(response, "list", prefix)
        payload = response.json()
        return ObjectPage(
            items=[StorageObject.from_resource(item) for item in payload.get("items", [])],
            next_page_token=payload.get("nextPageToken") or None,
        )

    def delete(self, name: str) -> None:
        """Delete one object.

        Raises:
            StorageError: On a non-success response
        """
        logger.info("deleting object", uri=self.uri(name))
        url = f"{self._api_base}/storage/v1/b/{self._bucket_path()}/o/{quote(name, safe='')}"
        response = self._client.delete(url)
        self._check(response, "delete", name)

    def delete_prefix(self, prefix: str) -> int:
        """Delete every object under prefix, across all result pages.

        Returns:
            Number of objects deleted
        """
        deleted = 0
        page_token: str | None = None
        while True:
            page = self.list(prefix, page_token)
            for item in page.items:
                self.delete(item.name)
                deleted += 1
            page_token = page.next_page_token
            if page_token is None:
                return deleted
