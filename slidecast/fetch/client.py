"""Concurrent download of slide images and narration audio.

WHY: ffmpeg reads local files, while requests reference remote images
and audio (or inline base64 audio). A request may carry dozens of images;
downloading them one by one dominates latency, and a single missing
image makes the whole video impossible.

HOW: MediaFetcher wraps httpx.AsyncClient as an async context manager.
fetch_all() starts one task per image plus one for the audio, bounded by
an asyncio.Semaphore, and waits for them together. On the first failure
every unfinished download is cancelled and awaited before the error is
raised, so nothing lands in dest_dir afterwards. Local file paths are
used in place, but only when the caller passes allow_local (the CLI
does, the HTTP API never does).

RULES:
- Images are written as image_<index><ext>, audio as audio<ext> in dest_dir
- The extension comes from the URL path; images default to .jpg, audio to .mp3
- Non-2xx responses, transport errors, missing local files, and invalid
  base64 all raise FetchError naming the failing reference
- Without allow_local a reference that is not http(s) raises
  InputValidationError
- No retries
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any, Awaitable, Iterable, List, Optional, Sequence
from urllib.parse import urlparse

import httpx

from slidecast.config import DEFAULT_MAX_FETCH_CONCURRENCY, FETCH_TIMEOUT_S
from slidecast.core.errors import FetchError, InputValidationError

logger = logging.getLogger(__name__)

_DEFAULT_IMAGE_EXT = ".jpg"
_DEFAULT_AUDIO_EXT = ".mp3"


def is_remote(ref: str) -> bool:
    return urlparse(ref).scheme in ("http", "https")


def require_remote(refs: Iterable[Optional[str]]) -> None:
    """Reject any reference that is not an http(s) URL.

    Raises:
        InputValidationError: naming the first offending reference.
    """
    for ref in refs:
        if ref and not is_remote(ref):
            raise InputValidationError(
                "Only http(s) URLs are accepted for media (got {!r}).".format(ref)
            )


def extension_for(ref: str, default: str) -> str:
    """File extension of a URL's path (or a local path), else default."""
    path = urlparse(ref).path if is_remote(ref) else ref
    suffix = PurePosixPath(path).suffix
    return suffix.lower() if suffix else default


def decode_audio_base64(data: str, dest: Path) -> Path:
    """Decode inline base64 audio to dest.

    Raises:
        FetchError: data is empty or not valid base64.
    """
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    try:
        payload = base64.b64decode(data, validate=False)
    except (binascii.Error, ValueError) as exc:
        raise FetchError("Audio is not valid base64", str(exc))
    if not payload:
        raise FetchError("Inline audio is empty")
    dest.write_bytes(payload)
    logger.info("Decoded inline audio to %s (%d bytes)", dest, len(payload))
    return dest


async def gather_or_cancel(awaitables: Sequence[Awaitable[Any]]) -> List[Any]:
    """Await every awaitable concurrently; results in input order.

    The first failure cancels the rest, and the call returns only after
    every task has finished, then re-raises that failure. Cancelling the
    caller cancels and drains all tasks the same way.
    """
    tasks = [asyncio.ensure_future(aw) for aw in awaitables]
    if not tasks:
        return []
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    if pending:
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    for task in tasks:
        if task in done and not task.cancelled() and task.exception() is not None:
            raise task.exception()
    return [task.result() for task in tasks]


@dataclass
class FetchedMedia:
    """Local files for one request, images in segment order."""

    images: List[Path]
    audio: Path


class MediaFetcher:
    """Async downloader for a request's images and audio.

    RULES:
    - Use as: async with MediaFetcher(dest_dir) as fetcher: ...
    - max_concurrency bounds simultaneous downloads
    - transport is passed to httpx (tests use httpx.MockTransport)
    - allow_local=True lets local file paths through unchanged
    """

    def __init__(
        self,
        dest_dir: Path,
        max_concurrency: int = DEFAULT_MAX_FETCH_CONCURRENCY,
        timeout: float = FETCH_TIMEOUT_S,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        allow_local: bool = False,
    ) -> None:
        if max_concurrency < 1:
            raise InputValidationError(
                "max_concurrency must be positive (got {}).".format(max_concurrency)
            )
        self.dest_dir = Path(dest_dir)
        self.allow_local = allow_local
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._timeout = timeout
        self._transport = transport
        self._client = None  # type: Optional[httpx.AsyncClient]

    async def __aenter__(self) -> MediaFetcher:
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout),
            follow_redirects=True,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._client:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError(
                "MediaFetcher must be used as an async context manager: "
                "async with MediaFetcher(dest_dir) as fetcher: ..."
            )
        return self._client

    # ------------------------------------------------------------------
    # Single reference
    # ------------------------------------------------------------------

    async def fetch(self, ref: str, dest: Path) -> Path:
        """Download ref to dest, or return ref itself for a local file."""
        if not is_remote(ref):
            if not self.allow_local:
                require_remote([ref])
            local = Path(ref)
            if not local.is_file():
                raise FetchError("Local file not found: {}".format(ref))
            return local

        client = self._ensure_client()
        async with self._semaphore:
            logger.debug("Downloading %s", ref)
            try:
                resp = await client.get(ref)
            except httpx.HTTPError as exc:
                raise FetchError("Failed to download {}".format(ref), str(exc))

        if resp.status_code != 200:
            raise FetchError(
                "Failed to download {} (HTTP {})".format(ref, resp.status_code),
                resp.text[:500] or None,
            )
        dest.write_bytes(resp.content)
        logger.debug("Saved %s to %s", ref, dest)
        return dest

    # ------------------------------------------------------------------
    # Fan-out / fan-in
    # ------------------------------------------------------------------

    def _image_downloads(self, image_refs: Sequence[str]) -> List[Awaitable[Path]]:
        return [
            self.fetch(ref, self.dest_dir / "image_{}{}".format(
                index, extension_for(ref, _DEFAULT_IMAGE_EXT)
            ))
            for index, ref in enumerate(image_refs)
        ]

    async def fetch_images(self, image_refs: Sequence[str]) -> List[Path]:
        return await gather_or_cancel(self._image_downloads(image_refs))

    async def fetch_audio(
        self,
        audio_url: Optional[str] = None,
        audio_base64: Optional[str] = None,
    ) -> Path:
        if audio_base64:
            return decode_audio_base64(audio_base64, self.dest_dir / ("audio" + _DEFAULT_AUDIO_EXT))
        if audio_url:
            dest = self.dest_dir / ("audio" + extension_for(audio_url, _DEFAULT_AUDIO_EXT))
            return await self.fetch(audio_url, dest)
        raise InputValidationError("Either audio_url or audio_base64 is required.")

    async def fetch_all(
        self,
        image_refs: Sequence[str],
        audio_url: Optional[str] = None,
        audio_base64: Optional[str] = None,
    ) -> FetchedMedia:
        """Fetch every image and the audio concurrently.

        Raises:
            FetchError: any single retrieval failed.
        """
        self.dest_dir.mkdir(parents=True, exist_ok=True)
        downloads = self._image_downloads(image_refs)
        downloads.append(self.fetch_audio(audio_url, audio_base64))
        results = await gather_or_cancel(downloads)
        images, audio = results[:-1], results[-1]
        logger.info("Fetched %d image(s) and audio", len(images))
        return FetchedMedia(images=images, audio=audio)


async def fetch_media(
    dest_dir: Path,
    image_refs: Sequence[str],
    audio_url: Optional[str] = None,
    audio_base64: Optional[str] = None,
    max_concurrency: int = DEFAULT_MAX_FETCH_CONCURRENCY,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    allow_local: bool = False,
) -> FetchedMedia:
    """One-shot helper: open a fetcher, fetch everything, close it."""
    async with MediaFetcher(
        dest_dir,
        max_concurrency=max_concurrency,
        transport=transport,
        allow_local=allow_local,
    ) as fetcher:
        return await fetcher.fetch_all(image_refs, audio_url, audio_base64)
