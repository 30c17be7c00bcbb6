"""
Media materialization for finished jobs

Downloads remote media into the output directory, writes inline base64
media, and falls back to a placeholder file so a job never finishes
without something on disk.
"""

import asyncio
import base64
import binascii
import colorsys
import logging
import time
import zlib
from pathlib import Path
from typing import Awaitable, Callable, Optional, Tuple, Union
from urllib.parse import urlparse

import httpx
from PIL import Image, ImageDraw

from ..core.config import (
    OUTPUT_DIR, SERVER_BASE_URL, GENERATION_CONFIGS, MEDIA_FETCH_HEADERS, MEDIA_ACCEPT,
    MEDIA_FETCH_RETRIES, MEDIA_FETCH_RETRY_DELAY, MEDIA_FETCH_TIMEOUT
)
from ..core.exceptions import ProtocolError

logger = logging.getLogger(__name__)

MIME_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
    "video/mp4": "mp4",
    "video/webm": "webm",
    "video/quicktime": "mov"
}
VIDEO_EXTENSIONS = {"mp4", "webm", "mov", "m4v"}

# ftyp + free boxes: smallest file players recognize as MP4
PLACEHOLDER_MP4 = (
    b"\x00\x00\x00\x18ftypisom\x00\x00\x02\x00isomiso2"
    b"\x00\x00\x00\x08free"
)
PLACEHOLDER_IMAGE_SIZE = 512
PLACEHOLDER_IMAGE_FORMATS = {"jpg": "JPEG", "jpeg": "JPEG", "webp": "WEBP", "gif": "GIF"}


# ==============================================================================
# OUTPUT NAMING
# ==============================================================================

def extension_for(kind: str, mime_hint: Optional[str] = None, url: Optional[str] = None) -> str:
    """File extension from a MIME hint or URL suffix, else the kind's default"""
    if mime_hint and mime_hint in MIME_EXTENSIONS:
        return MIME_EXTENSIONS[mime_hint]
    if url:
        suffix = Path(urlparse(url).path).suffix.lstrip(".").lower()
        if suffix in MIME_EXTENSIONS.values():
            return suffix
    return GENERATION_CONFIGS[kind]["default_extension"]


def new_output_path(extension: str, output_dir: Union[str, Path] = OUTPUT_DIR) -> Path:
    """Reserve generated_<unixMillis>.<ext> in the output directory"""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    millis = int(time.time() * 1000)
    path = output_dir / f"generated_{millis}.{extension}"
    # Concurrent jobs can land on the same millisecond
    while path.exists():
        millis += 1
        path = output_dir / f"generated_{millis}.{extension}"
    path.touch()
    return path


def public_url(path: Union[str, Path], base_url: str = SERVER_BASE_URL) -> str:
    return f"{base_url.rstrip('/')}/generated/{Path(path).name}"


# ==============================================================================
# PLACEHOLDERS
# ==============================================================================

def _hue_for(label: str) -> float:
    return (zlib.crc32(label.encode("utf-8")) % 360) / 360.0


def write_placeholder(destination: Union[str, Path], label: str = "") -> Path:
    """
    Write a minimal valid media file at destination

    Video extensions get a bare MP4 container; anything else an image in the
    format its extension names (PNG by default), tinted from the label so
    different prompts are distinguishable.
    """
    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)

    extension = destination.suffix.lstrip(".").lower()
    if extension in VIDEO_EXTENSIONS:
        destination.write_bytes(PLACEHOLDER_MP4)
    else:
        red, green, blue = colorsys.hls_to_rgb(_hue_for(label), 0.5, 0.7)
        color = (int(red * 255), int(green * 255), int(blue * 255))
        image = Image.new("RGB", (PLACEHOLDER_IMAGE_SIZE, PLACEHOLDER_IMAGE_SIZE), color)
        draw = ImageDraw.Draw(image)
        draw.text((24, 240), "Placeholder Image", fill="white")
        if label:
            draw.text((24, 270), label[:40], fill="white")
        image.save(destination, format=PLACEHOLDER_IMAGE_FORMATS.get(extension, "PNG"))

    logger.warning(f"[MediaFetcher] Placeholder written: {destination}")
    return destination


def write_inline_media(data_base64: str, destination: Union[str, Path]) -> int:
    """Decode base64 media straight to disk; returns bytes written"""
    try:
        payload = base64.b64decode("".join(data_base64.split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ProtocolError(f"Inline media is not valid base64: {e}") from e
    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_bytes(payload)
    logger.info(f"[MediaFetcher] Saved inline media to {destination} ({len(payload)} bytes)")
    return len(payload)


# ==============================================================================
# FETCHER
# ==============================================================================

def default_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=MEDIA_FETCH_TIMEOUT, follow_redirects=True)


class MediaFetcher:
    """Downloads remote media with bounded retries and a placeholder fallback"""

    def __init__(
        self,
        client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        retries: int = MEDIA_FETCH_RETRIES,
        retry_delay: float = MEDIA_FETCH_RETRY_DELAY
    ):
        self._client_factory = client_factory or default_http_client
        self._sleep = sleep
        self.retries = retries
        self.retry_delay = retry_delay

    def _headers(self, destination: Path) -> dict:
        kind = "video" if destination.suffix.lstrip(".").lower() in VIDEO_EXTENSIONS else "image"
        return {**MEDIA_FETCH_HEADERS, "Accept": MEDIA_ACCEPT[kind]}

    async def _attempt(self, url: str, destination: Path) -> Tuple[bool, str]:
        async with self._client_factory() as client:
            response = await client.get(url, headers=self._headers(destination))
        if response.is_success:
            destination.write_bytes(response.content)
            logger.info(f"[MediaFetcher] Saved {len(response.content)} bytes to {destination}")
            return True, ""
        return False, f"status {response.status_code}: {response.text[:500]}"

    async def fetch(self, url: str, destination: Union[str, Path], label: str = "") -> bool:
        """
        Download url to destination; never raises for network or HTTP failures

        Args:
            url: Remote media URL
            destination: Local file path (parent directory is created)
            label: Text used to tint an image placeholder

        Returns:
            True if the real media was saved, False if a placeholder was written
        """
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"[MediaFetcher] Downloading {url}")

        for attempt in range(1, self.retries + 1):
            try:
                saved, detail = await self._attempt(url, destination)
                if saved:
                    return True
                logger.error(f"[MediaFetcher] Attempt {attempt}/{self.retries} failed with {detail}")
            except (httpx.HTTPError, OSError) as e:
                logger.warning(f"[MediaFetcher] Attempt {attempt}/{self.retries} failed: {e}")

            if attempt < self.retries:
                await self._sleep(self.retry_delay * attempt)

        logger.warning(f"[MediaFetcher] Giving up on {url} after {self.retries} attempts")
        write_placeholder(destination, label)
        return False
