"""HTTP access to the TeamSpeak release mirror."""
from __future__ import annotations

import json
import logging
import tempfile
from html.parser import HTMLParser
from typing import IO, Any
from urllib.parse import urljoin

import requests

from . import __version__
from .errors import ArchiveNotFound, DownloadIOError, MirrorUnreachable, UnexpectedListingFormat
from .target import PlatformTarget
from .versions import RawListing, Version

LOGGER = logging.getLogger(__name__)

DEFAULT_MIRROR_URL = "https://files.teamspeak-services.com/releases/server/"
CHUNK_SIZE = 64 * 1024
_NOT_FOUND_STATUSES = {404, 410}


class _IndexParser(HTMLParser):
    """Collect anchor texts (or hrefs when the text is empty) from an index page."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.entries: list[str] = []
        self.saw_markup = False
        self._href: str | None = None
        self._text: list[str] = []

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        self.saw_markup = True
        if tag == "a":
            self._href = dict(attrs).get("href") or ""
            self._text = []

    def handle_data(self, data: str) -> None:
        if self._href is not None:
            self._text.append(data)

    def handle_endtag(self, tag: str) -> None:
        self.saw_markup = True
        if tag == "a" and self._href is not None:
            text = "".join(self._text).strip()
            if not text:
                text = self._href.rstrip("/").rsplit("/", 1)[-1]
            self.entries.append(text)
            self._href = None


def archive_url(mirror_url: str, version: Version, target: PlatformTarget) -> str:
    """Return ``<mirror>/<version>/<archive filename>``."""
    root = mirror_url if mirror_url.endswith("/") else f"{mirror_url}/"
    return urljoin(urljoin(root, f"{version}/"), target.archive_filename(version))


def parse_listing_body(body: str, *, content_type: str = "", source: str = "") -> RawListing:
    """Interpret a mirror response as an HTML index or a JSON manifest."""
    stripped = body.lstrip()
    if "json" in content_type or stripped[:1] in {"[", "{"}:
        return _parse_json_listing(stripped, source)

    parser = _IndexParser()
    parser.feed(body)
    parser.close()
    if not parser.saw_markup:
        raise UnexpectedListingFormat(f"Response from {source or 'mirror'} is not an index page.")
    return RawListing(entries=tuple(parser.entries), source=source, format="html")


def _parse_json_listing(body: str, source: str) -> RawListing:
    try:
        payload: Any = json.loads(body)
    except json.JSONDecodeError as exc:
        raise UnexpectedListingFormat(
            f"Response from {source or 'mirror'} is not valid JSON: {exc}"
        ) from exc
    if isinstance(payload, dict):
        payload = payload.get("versions")
    if not isinstance(payload, list) or not all(isinstance(item, str) for item in payload):
        raise UnexpectedListingFormat(
            f"JSON listing from {source or 'mirror'} must be a list of version strings."
        )
    return RawListing(entries=tuple(payload), source=source, format="json")


class MirrorClient:
    """Fetch version listings and archives from the release mirror."""

    def __init__(
        self,
        *,
        session: requests.Session | None = None,
        timeout: float | None = None,
    ) -> None:
        """Initialise the client with an optional shared session and timeout."""
        if session is None:
            session = requests.Session()
            session.headers["User-Agent"] = f"tsupdater/{__version__}"
        self.session = session
        self.timeout = timeout

    def fetch_listing(self, mirror_url: str) -> RawListing:
        """Read the mirror index at *mirror_url*."""
        LOGGER.debug("Fetching release listing from %s", mirror_url)
        try:
            response = self.session.get(mirror_url, timeout=self.timeout)
            response.raise_for_status()
            body = response.text
        except requests.HTTPError as exc:
            raise MirrorUnreachable(f"Mirror listing {mirror_url} returned an error: {exc}") from exc
        except requests.RequestException as exc:
            raise MirrorUnreachable(f"Mirror {mirror_url} is unreachable: {exc}") from exc

        content_type = response.headers.get("Content-Type", "")
        listing = parse_listing_body(body, content_type=content_type, source=mirror_url)
        LOGGER.debug(
            "Listing %s (%s) contained %d entries", mirror_url, listing.format, len(listing.entries)
        )
        return listing

    def fetch_archive(
        self,
        mirror_url: str,
        version: Version,
        platform_target: PlatformTarget,
    ) -> IO[bytes]:
        """Download the archive for *version* into a rewound anonymous temp file."""
        url = archive_url(mirror_url, version, platform_target)
        LOGGER.info("Downloading %s", url)
        try:
            response = self.session.get(url, stream=True, timeout=self.timeout)
        except requests.RequestException as exc:
            raise MirrorUnreachable(f"Failed to download {url}: {exc}") from exc

        with response:
            if response.status_code in _NOT_FOUND_STATUSES:
                raise ArchiveNotFound(url)
            try:
                response.raise_for_status()
            except requests.HTTPError as exc:
                raise MirrorUnreachable(f"Failed to download {url}: {exc}") from exc

            try:
                handle = tempfile.TemporaryFile(prefix="tsupdater-")
            except OSError as exc:
                raise DownloadIOError(f"Cannot buffer download of {url}: {exc}") from exc
            try:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        handle.write(chunk)
                handle.flush()
                handle.seek(0)
            except requests.RequestException as exc:
                handle.close()
                raise MirrorUnreachable(f"Download of {url} was interrupted: {exc}") from exc
            except OSError as exc:
                handle.close()
                raise DownloadIOError(f"Cannot buffer download of {url}: {exc}") from exc
            except BaseException:
                handle.close()
                raise

        return handle


__all__ = ["DEFAULT_MIRROR_URL", "MirrorClient", "archive_url", "parse_listing_body"]
