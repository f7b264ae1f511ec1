"""
HLS playlist resolver

Turns a remote stream URL into a local, self-contained media playlist:
master playlists are reduced to one rendition, every relative reference is
rewritten to an absolute URL and the list is always terminated.
"""

import os
import re
import time
import logging
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import urljoin

import requests

from .errors import SourceFetchError, NoRenditionsError, InvalidRenditionError
from .retry import RetryPolicy, NO_RETRY
from .task import ResolvedSource, SourceKind

logger = logging.getLogger(__name__)

HLS_SIGNATURE = "#EXTM3U"
STREAM_INF_TAG = "#EXT-X-STREAM-INF"
SEGMENT_TAG = "#EXTINF"
ENDLIST_TAG = "#EXT-X-ENDLIST"
URI_TAGS = ("#EXT-X-KEY", "#EXT-X-MAP")

PLAYLIST_CONTENT_TYPES = ("mpegurl", "m3u")
ACCEPT_HEADER = "application/vnd.apple.mpegurl, application/x-mpegurl, audio/mpegurl, */*;q=0.8"

LOCAL_PLAYLIST_NAME = "source.m3u8"

READ_CHUNK_SIZE = 16 * 1024
UTF8_BOM = b"\xef\xbb\xbf"
DEFAULT_MAX_PLAYLIST_BYTES = 2 * 1024 * 1024
DEFAULT_FETCH_DEADLINE = 120

_ATTRIBUTE_RE = re.compile(r'([A-Z0-9-]+)=("[^"]*"|[^,]*)')
_URI_ATTRIBUTE_RE = re.compile(r'URI="([^"]*)"')


@dataclass(frozen=True)
class RenditionCandidate:
    """One entry of a master playlist"""

    bandwidth: int
    absolute_url: str


@dataclass(frozen=True)
class FetchedPlaylist:
    """Playlist text with the post-redirect URL used as resolution base"""

    text: str
    base_url: str


def _strip_preamble(body: bytes) -> bytes:
    # BOM and leading whitespace before the signature
    head = bytes(body[:1024])
    if head.startswith(UTF8_BOM):
        head = head[len(UTF8_BOM):]
    return head.lstrip()


def is_master_playlist(text: str) -> bool:
    return STREAM_INF_TAG in text


def is_media_playlist(text: str) -> bool:
    """Media playlists carry segment durations and no stream-info entries"""
    return SEGMENT_TAG in text and not is_master_playlist(text)


def _parse_attributes(tag_line: str) -> dict:
    _, _, attributes = tag_line.partition(":")
    return {key: value.strip('"') for key, value in _ATTRIBUTE_RE.findall(attributes)}


def parse_renditions(text: str, base_url: str) -> List[RenditionCandidate]:
    """Parse every stream-info entry and its URI line

    Args:
        text: master playlist content
        base_url: URL the master playlist was fetched from

    Returns:
        rendition candidates in playlist order
    """
    candidates = []
    pending_bandwidth: Optional[int] = None
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        if line.startswith(STREAM_INF_TAG):
            attributes = _parse_attributes(line)
            try:
                pending_bandwidth = int(attributes.get("BANDWIDTH") or 0)
            except ValueError:
                pending_bandwidth = 0
            continue
        if line.startswith("#"):
            continue
        if pending_bandwidth is not None:
            candidates.append(RenditionCandidate(
                bandwidth=pending_bandwidth,
                absolute_url=urljoin(base_url, line),
            ))
            pending_bandwidth = None
    return candidates


def select_median_rendition(candidates: List[RenditionCandidate]) -> RenditionCandidate:
    """Pick the median rendition by bandwidth (lower middle on even counts)

    Args:
        candidates: parsed rendition candidates

    Returns:
        selected candidate
    """
    if not candidates:
        raise NoRenditionsError("master playlist has no renditions")
    ordered = sorted(candidates, key=lambda c: c.bandwidth)
    return ordered[(len(ordered) - 1) // 2]


def absolutize_media_playlist(text: str, base_url: str) -> str:
    """Rewrite a media playlist so every reference is an absolute URL

    Segment lines are resolved against base_url, as are the URI attributes
    of key and map tags. Blank lines are dropped and exactly one end-list
    tag terminates the output.

    Args:
        text: media playlist content
        base_url: URL the playlist was fetched from

    Returns:
        rewritten playlist content
    """
    lines = []
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line == ENDLIST_TAG:
            continue
        if line.startswith(URI_TAGS):
            line = _URI_ATTRIBUTE_RE.sub(
                lambda m: f'URI="{urljoin(base_url, m.group(1))}"', line
            )
        elif not line.startswith("#"):
            line = urljoin(base_url, line)
        lines.append(line)
    lines.append(ENDLIST_TAG)
    return "\n".join(lines) + "\n"


class PlaylistResolver:
    """HLS playlist resolver

    Performs one fetch for a media playlist and two for a master playlist.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: int = 20,
        user_agent: Optional[str] = None,
        retry_policy: RetryPolicy = NO_RETRY,
        max_bytes: int = DEFAULT_MAX_PLAYLIST_BYTES,
        deadline: int = DEFAULT_FETCH_DEADLINE,
    ):
        """Initialise the resolver

        Args:
            session: shared HTTP session
            timeout: per-read timeout (seconds)
            user_agent: fixed User-Agent header
            retry_policy: retry policy for connection errors and timeouts
            max_bytes: largest playlist body accepted
            deadline: overall bound on one fetch (seconds)
        """
        self.session = session or requests.Session()
        self.timeout = timeout
        self.retry_policy = retry_policy
        self.max_bytes = max_bytes
        self.deadline = deadline
        self.headers = {"Accept": ACCEPT_HEADER}
        if user_agent:
            self.headers["User-Agent"] = user_agent

    def fetch(self, url: str) -> FetchedPlaylist:
        """Fetch a playlist and check that it is HLS text

        The body is streamed: a response without a playlist content type is
        rejected as soon as its first bytes lack the HLS signature, and every
        body is bounded by max_bytes and the fetch deadline.

        Args:
            url: playlist URL

        Returns:
            FetchedPlaylist
        """
        def _get() -> requests.Response:
            return self.session.get(url, headers=self.headers, timeout=self.timeout, stream=True)

        try:
            response = self.retry_policy.call(
                _get,
                retry_on=(requests.ConnectionError, requests.Timeout),
                label=f"playlist fetch {url[:80]}",
            )
        except requests.RequestException as exc:
            raise SourceFetchError(f"failed to fetch playlist {url}: {exc}") from exc

        with response:
            try:
                response.raise_for_status()
                body = self._read_body(response, url)
            except requests.RequestException as exc:
                raise SourceFetchError(f"failed to fetch playlist {url}: {exc}") from exc
            base_url = response.url or url

        text = body.decode("utf-8", errors="replace").lstrip("\ufeff")
        return FetchedPlaylist(text=text, base_url=base_url)

    def _read_body(self, response: requests.Response, url: str) -> bytes:
        content_type = (response.headers.get("Content-Type") or "").lower()
        signature_checked = any(marker in content_type for marker in PLAYLIST_CONTENT_TYPES)
        started = time.monotonic()
        body = bytearray()

        for chunk in response.iter_content(chunk_size=READ_CHUNK_SIZE):
            if not chunk:
                continue
            body.extend(chunk)
            if not signature_checked and len(_strip_preamble(body)) >= len(HLS_SIGNATURE):
                self._check_signature(body, url, content_type)
                signature_checked = True
            if len(body) > self.max_bytes:
                raise SourceFetchError(f"playlist exceeds {self.max_bytes} bytes: {url}")
            if time.monotonic() - started > self.deadline:
                raise SourceFetchError(f"playlist fetch exceeded {self.deadline}s: {url}")

        if not signature_checked:
            self._check_signature(body, url, content_type)
        return bytes(body)

    def _check_signature(self, body: bytearray, url: str, content_type: str):
        if not _strip_preamble(body).startswith(HLS_SIGNATURE.encode("ascii")):
            raise SourceFetchError(f"not an HLS playlist: {url} (content-type {content_type or 'unknown'})")

    def resolve(self, stream_url: str, work_dir: str) -> ResolvedSource:
        """Resolve a stream URL into a local absolutized media playlist

        Args:
            stream_url: master or media playlist URL
            work_dir: variant working directory

        Returns:
            ResolvedSource pointing at the local playlist
        """
        playlist = self.fetch(stream_url)

        if is_master_playlist(playlist.text):
            candidates = parse_renditions(playlist.text, playlist.base_url)
            selected = select_median_rendition(candidates)
            logger.info(
                f"Master playlist with {len(candidates)} renditions, "
                f"selected {selected.bandwidth} bps: {selected.absolute_url[:100]}"
            )
            playlist = self.fetch(selected.absolute_url)
            if not is_media_playlist(playlist.text):
                raise InvalidRenditionError(f"rendition is not a media playlist: {selected.absolute_url}")
        elif not is_media_playlist(playlist.text):
            raise SourceFetchError(f"playlist has no segments: {stream_url}")

        local_path = os.path.join(work_dir, LOCAL_PLAYLIST_NAME)
        with open(local_path, "w", encoding="utf-8") as f:
            f.write(absolutize_media_playlist(playlist.text, playlist.base_url))

        return ResolvedSource(
            kind=SourceKind.PLAYLIST,
            path=local_path,
            work_dir=work_dir,
            origin_url=stream_url,
        )
