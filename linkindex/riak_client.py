"""
HTTP storage gateway for a Riak-style REST API.

Objects are JSON documents at ``/riak/{bucket}/{key}``. Links travel in the
``Link`` header, one entry per link::

    Link: </riak/boxes_by_shape/3f1a...>; riaktag="boxes_by_shape_index"

Keys are listed with ``?keys=true`` (one JSON body) or ``?keys=stream``
(a sequence of concatenated ``{"keys": [...]}`` chunks).
"""

from __future__ import annotations

import json
import logging
import re
from typing import Iterator
from urllib.parse import quote, unquote

import httpx

from .errors import NotFoundError, TransportError
from .types import Link, StoredObject

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

_LINK_RE = re.compile(r'<([^>]+)>\s*;\s*riaktag="([^"]*)"')


def _object_path(bucket: str, key: str) -> str:
    return f"/riak/{quote(bucket, safe='')}/{quote(key, safe='')}"


def format_link_header(links: list[Link]) -> str:
    """Render links as a Link header value."""
    return ", ".join(
        f'<{_object_path(link.bucket, link.key)}>; riaktag="{link.tag}"'
        for link in links
    )


def parse_link_header(header: str) -> list[Link]:
    """Parse a Link header, keeping only tagged object links.

    Bucket links (``rel="up"``) and untagged entries are skipped; bucket and
    key are URL-decoded.
    """
    links = []
    for target, tag in _LINK_RE.findall(header or ""):
        parts = target.split("/")
        # "", "riak", bucket, key
        if len(parts) != 4 or parts[1] != "riak":
            continue
        links.append(Link(unquote(parts[2]), unquote(parts[3]), tag))
    return links


class RiakGateway:
    """StorageGateway over HTTP."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self._base_url,
            headers={"Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Send a request, mapping failures onto the gateway error types."""
        try:
            resp = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {path} failed: {e}") from e
        if resp.status_code >= 400:
            raise TransportError(
                f"{method} {path} failed: {resp.status_code} {resp.text}",
                status=resp.status_code,
            )
        return resp

    def get(self, bucket: str, key: str) -> StoredObject:
        path = _object_path(bucket, key)
        try:
            resp = self._request("GET", path)
        except TransportError as e:
            if e.status == 404:
                raise NotFoundError(bucket, key) from e
            raise
        if resp.status_code != 200:
            # 300 Multiple Choices: siblings are not resolved here
            raise TransportError(
                f"GET {path} returned {resp.status_code}", status=resp.status_code,
            )

        data = resp.json() if resp.content.strip() else {}
        return StoredObject(
            bucket=bucket,
            key=key,
            data=data if isinstance(data, dict) else {},
            links=parse_link_header(resp.headers.get("link", "")),
            exists=True,
        )

    def get_or_create(self, bucket: str, key: str) -> StoredObject:
        try:
            return self.get(bucket, key)
        except NotFoundError:
            return StoredObject(bucket=bucket, key=key)

    def store(self, obj: StoredObject) -> None:
        headers = {"Content-Type": "application/json"}
        if obj.links:
            headers["Link"] = format_link_header(obj.links)
        self._request(
            "PUT",
            _object_path(obj.bucket, obj.key),
            params={"returnbody": "false"},
            content=json.dumps(obj.data, ensure_ascii=False).encode("utf-8"),
            headers=headers,
        )
        obj.exists = True
        logger.debug("Stored %s/%s (%d links)", obj.bucket, obj.key, len(obj.links))

    def delete(self, bucket: str, key: str) -> bool:
        try:
            self._request("DELETE", _object_path(bucket, key))
        except TransportError as e:
            if e.status == 404:
                return False
            raise
        return True

    def list_keys(self, bucket: str) -> list[str]:
        resp = self._request(
            "GET", f"/riak/{quote(bucket, safe='')}",
            params={"keys": "true", "props": "false"},
        )
        return [unquote(k) for k in resp.json().get("keys", [])]

    def stream_keys(self, bucket: str) -> Iterator[list[str]]:
        """Yield each non-empty chunk of keys as it arrives."""
        path = f"/riak/{quote(bucket, safe='')}"
        decoder = json.JSONDecoder()
        try:
            with self._client.stream(
                "GET", path, params={"keys": "stream", "props": "false"},
            ) as resp:
                if resp.status_code >= 400:
                    resp.read()
                    raise TransportError(
                        f"GET {path} failed: {resp.status_code} {resp.text}",
                        status=resp.status_code,
                    )
                buffer = ""
                for text in resp.iter_text():
                    buffer += text
                    while True:
                        buffer = buffer.lstrip()
                        if not buffer:
                            break
                        try:
                            chunk, end = decoder.raw_decode(buffer)
                        except json.JSONDecodeError:
                            break  # incomplete chunk, wait for more
                        buffer = buffer[end:]
                        keys = chunk.get("keys") if isinstance(chunk, dict) else None
                        if not isinstance(keys, list):
                            raise TransportError(f"GET {path} returned a malformed key chunk: {chunk!r}")
                        if keys:
                            yield [unquote(k) for k in keys]
                if buffer.strip():
                    raise TransportError(f"GET {path} returned a truncated key stream")
        except httpx.HTTPError as e:
            raise TransportError(f"GET {path} failed: {e}") from e

    def walk_links(
        self,
        obj: StoredObject,
        bucket: str,
        keep: bool = True,
    ) -> list[list[StoredObject]]:
        """Follow links client-side, one GET per matching link."""
        found = []
        for link in obj.links:
            if link.bucket != bucket:
                continue
            try:
                found.append(self.get(link.bucket, link.key))
            except NotFoundError:
                logger.debug("Dangling link %s/%s -> %s/%s",
                             obj.bucket, obj.key, link.bucket, link.key)
        return [found]

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
