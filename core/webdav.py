# core/webdav.py
"""
WebDAV calendar source.

Lists a collection with ``PROPFIND`` (Depth 1) and downloads ``.ics`` files
with ``GET`` over the shared aiohttp session. Every failure surfaces as
SourceFetchError after transient errors have been retried.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional
from urllib.parse import unquote, urljoin
from xml.etree import ElementTree

import aiohttp

from core.errors import SourceFetchError
from core.http_client import http_client
from core.retry_handler import RetryHandler, retry_handler

log = logging.getLogger("calbot.webdav")

DAV = "{DAV:}"

PROPFIND_BODY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<d:propfind xmlns:d="DAV:"><d:prop>'
    '<d:resourcetype/><d:getcontentlength/><d:getlastmodified/>'
    '</d:prop></d:propfind>'
)


@dataclass(frozen=True)
class RemoteFile:
    href: str
    filename: str
    is_collection: bool = False
    size: Optional[int] = None


def parse_multistatus(body: str) -> List[RemoteFile]:
    """Parse a PROPFIND multistatus document into file descriptors"""
    try:
        root = ElementTree.fromstring(body)
    except ElementTree.ParseError as e:
        raise SourceFetchError(f"Invalid PROPFIND response: {e}") from e

    files = []
    for response in root.iter(f"{DAV}response"):
        href = (response.findtext(f"{DAV}href") or "").strip()
        if not href:
            continue

        size_text = response.findtext(f".//{DAV}getcontentlength")
        files.append(RemoteFile(
            href=href,
            filename=unquote(href.rstrip("/").rsplit("/", 1)[-1]),
            is_collection=response.find(f".//{DAV}resourcetype/{DAV}collection") is not None,
            size=int(size_text) if size_text and size_text.strip().isdigit() else None,
        ))
    return files


class WebDAVCalendarSource:
    """Calendar source adapter for a WebDAV collection of ``.ics`` files"""

    def __init__(self, base_url: str, username: Optional[str] = None,
                 password: Optional[str] = None, path: str = "/",
                 retry: Optional[RetryHandler] = None):
        self.base_url = base_url.rstrip("/") + "/"
        self.path = path
        self.auth = aiohttp.BasicAuth(username, password or "") if username else None
        self.retry = retry or retry_handler

    def collection_url(self, path: Optional[str] = None) -> str:
        path = (path if path is not None else self.path).strip("/")
        return urljoin(self.base_url, path + "/") if path else self.base_url

    async def _request(self, method: str, url: str, expected: tuple, **kwargs) -> str:
        session = await http_client.get_session()
        async with session.request(method, url, auth=self.auth, **kwargs) as response:
            if response.status not in expected:
                raise SourceFetchError(
                    f"{method} {url} returned HTTP {response.status}",
                    status=response.status,
                    url=url,
                )
            return await response.text(errors="replace")

    async def _call(self, method: str, url: str, expected: tuple, **kwargs) -> str:
        try:
            return await self.retry.execute_with_retry(
                f"webdav_{method.lower()}_{url}",
                self._request, method, url, expected, **kwargs
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SourceFetchError(f"{method} {url} failed: {type(e).__name__}: {e}", url=url) from e

    async def list_files(self, path: Optional[str] = None) -> List[RemoteFile]:
        """List the non-collection entries of a WebDAV collection"""
        url = self.collection_url(path)
        body = await self._call(
            "PROPFIND", url, (207,),
            data=PROPFIND_BODY,
            headers={"Depth": "1", "Content-Type": "application/xml; charset=utf-8"},
        )
        return [item for item in parse_multistatus(body) if not item.is_collection]

    async def fetch_contents(self, href: str, path: Optional[str] = None) -> str:
        """Download one file; ``href`` may be a server path or a name inside the collection"""
        url = urljoin(self.collection_url(path), href)
        return await self._call("GET", url, (200,))

    async def fetch_calendars(self, path: Optional[str] = None) -> Dict[str, str]:
        """Fetch every ``.ics`` file of the collection, keyed by file name"""
        files = [item for item in await self.list_files(path) if item.filename.lower().endswith(".ics")]
        calendars: Dict[str, str] = {}
        for item in files:
            calendars[item.filename] = await self.fetch_contents(item.href, path)

        log.info(f"Fetched {len(calendars)} calendar files from {self.collection_url(path)}")
        return calendars
