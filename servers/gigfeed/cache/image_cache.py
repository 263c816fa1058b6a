"""
Content-addressed cache of resized show images.

Each source image URL maps to a stable cache name, so repeat requests for
the same URL are answered from storage without touching the network.

Limits applied to new downloads:
- Size: 10MB body ceiling (checked against Content-Length and while streaming)
- Dimensions: 10000px on either side, probed from the header before decoding
"""

import asyncio
import hashlib
import io
import re
from typing import Optional
from urllib.parse import urlparse

import httpx
import structlog
from PIL import Image

from ..models import CachedImage
from ..resilience.retry import retry_with_backoff
from ..storage.base import BlobStore
from .url_validator import validate_image_url

logger = structlog.get_logger()

MAX_FILE_SIZE = 10 * 1024 * 1024
MAX_DIMENSION = 10000
DEFAULT_WIDTH = 300
SLUG_LENGTH = 24
DIGEST_LENGTH = 16

# Pillow format -> stored file extension
SAVE_FORMATS = {
    "JPEG": "jpg",
    "PNG": "png",
    "GIF": "gif",
    "WEBP": "webp",
}

REQUEST_HEADERS = {
    "Accept": "image/avif,image/webp,image/apng,image/*,*/*;q=0.8",
    "Accept-Language": "en-GB,en;q=0.9",
    "Cache-Control": "no-cache",
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/134.0.0.0 Safari/537.36"
    ),
}


class ImageRejectedError(Exception):
    """Raised when a downloaded file is not an acceptable image."""
    pass


def cache_name(url: str) -> str:
    """
    Derive the cache name stem for an image URL.

    The stem is "<host-slug>-<digest>", where the digest is the first 16 hex
    characters of the SHA-256 of the URL. It contains no dots, so a stored
    "<stem>.<ext>" can be found by prefix lookup.
    """
    normalized = url.strip()
    if normalized.startswith("//"):
        normalized = "https:" + normalized

    host = urlparse(normalized).hostname or ""
    slug = re.sub(r"[^a-z0-9]+", "-", host.lower()).strip("-")[:SLUG_LENGTH] or "img"
    digest = hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:DIGEST_LENGTH]
    return f"{slug}-{digest}"


class ImageCache:
    """Fetch, resize and store show images, once per URL."""

    def __init__(
        self,
        store: BlobStore,
        width: int = DEFAULT_WIDTH,
        max_bytes: int = MAX_FILE_SIZE,
        max_dimension: int = MAX_DIMENSION,
        timeout: float = 30.0,
        resolve_dns: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the image cache.

        Args:
            store: Blob store for the image namespace
            width: Target width of stored images in pixels
            max_bytes: Largest download accepted
            max_dimension: Largest width or height accepted
            timeout: HTTP timeout in seconds
            resolve_dns: Check resolved addresses against the SSRF policy
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.store = store
        self.width = width
        self.max_bytes = max_bytes
        self.max_dimension = max_dimension
        self.timeout = timeout
        self.resolve_dns = resolve_dns
        self.transport = transport

    async def get_or_fetch(self, url: str) -> CachedImage:
        """
        Return the cached copy of an image, fetching it on first request.

        Never raises: failures come back with an empty name and an error.
        """
        try:
            url = await asyncio.to_thread(validate_image_url, url, self.resolve_dns)
            stem = cache_name(url)

            existing = await self.store.has(stem)
            if existing:
                return CachedImage(name=existing.name, was_cached=True, url=url)

            data, _ = await self._download(url)
            resized, fmt = await asyncio.to_thread(self._resize, data)

            name = f"{stem}.{SAVE_FORMATS[fmt]}"
            content_type = Image.MIME.get(fmt, "application/octet-stream")
            await self.store.put(name, content_type, resized)

            logger.info("image_cached", url=url, name=name, bytes=len(resized))
            return CachedImage(name=name, was_cached=False, url=url, content_type=content_type)

        except Exception as e:
            logger.warning("image_cache_failed", url=url, error=str(e))
            return CachedImage(url=url, error=str(e) or type(e).__name__)

    async def purge(self) -> str:
        """Remove every cached image."""
        return await self.store.purge()

    @retry_with_backoff(max_attempts=2, retryable_exceptions=(httpx.TransportError,))
    async def _download(self, url: str) -> tuple[bytes, str]:
        """Download an image body, enforcing the type and size limits."""
        async with httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            headers=REQUEST_HEADERS,
            transport=self.transport,
            event_hooks={"request": [self._check_request]},
        ) as client:
            async with client.stream("GET", url) as response:
                response.raise_for_status()

                content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
                if not content_type.startswith("image/"):
                    raise ImageRejectedError(f"Not an image: {content_type or 'no content type'}")

                declared = response.headers.get("content-length", "")
                if declared.isdigit() and int(declared) > self.max_bytes:
                    raise ImageRejectedError(f"Image file too large (max {self.max_bytes} bytes)")

                chunks: list[bytes] = []
                total = 0
                async for chunk in response.aiter_bytes():
                    total += len(chunk)
                    if total > self.max_bytes:
                        raise ImageRejectedError(f"Image file too large (max {self.max_bytes} bytes)")
                    chunks.append(chunk)

        return b"".join(chunks), content_type

    async def _check_request(self, request: httpx.Request) -> None:
        """Apply the SSRF policy to every hop, redirects included."""
        await asyncio.to_thread(validate_image_url, str(request.url), self.resolve_dns)

    def _resize(self, data: bytes) -> tuple[bytes, str]:
        """Scale an image to the target width, keeping its aspect ratio."""
        with Image.open(io.BytesIO(data)) as img:
            # Only the header has been read at this point
            width, height = img.size
            if not width or not height:
                raise ImageRejectedError("Image has no dimensions")
            if width > self.max_dimension or height > self.max_dimension:
                raise ImageRejectedError(f"Image dimensions too large (max {self.max_dimension}px)")

            fmt = (img.format or "").upper()
            if fmt not in SAVE_FORMATS:
                fmt = "PNG"

            new_height = max(1, round(height * self.width / width))
            resized = img.resize((self.width, new_height), Image.Resampling.LANCZOS)

        if fmt == "JPEG" and resized.mode not in ("RGB", "L"):
            resized = resized.convert("RGB")

        out = io.BytesIO()
        resized.save(out, format=fmt)
        return out.getvalue(), fmt
