"""
Turn stored image references into URLs the map surface can render.

Reference formats:
    s3:<key>      remote object, resolved to a short-lived signed URL
    local:<key>   image cached on this machine, exposed as a revocable blob: URL
    anything else a direct URL, returned unchanged
"""

import logging
import threading
import time
import uuid
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

import httpx
from PIL import Image, UnidentifiedImageError

from plotmap.config import SIGNED_URL_TTL_SECONDS
from plotmap.errors import ResolutionError


LOGGER = logging.getLogger(__name__)

S3_PREFIX = "s3:"
LOCAL_PREFIX = "local:"
BLOB_PREFIX = "blob:"
# Formats the map surface can drape as a raster.
SUPPORTED_FORMATS = ("PNG", "JPEG")


@dataclass(frozen=True)
class ResolvedImage:
    url: str
    release: Optional[Callable[[], None]] = None

    def close(self) -> None:
        if self.release is not None:
            self.release()


class SignedUrlCache:
    """Process-wide signed URL cache with per-entry expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Tuple[str, float]]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() >= entry[1]:
                del self._entries[key]
                return None
            return entry

    def put(self, key: str, value: str, ttl: float) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl)


class ObjectUrlRegistry:
    """Maps ``blob:`` URLs to cached files until they are revoked."""

    def __init__(self):
        self._paths: Dict[str, Path] = {}
        self._lock = threading.Lock()

    def create(self, path: Path) -> str:
        url = f"{BLOB_PREFIX}{uuid.uuid4().hex}"
        with self._lock:
            self._paths[url] = Path(path)
        return url

    def lookup(self, url: str) -> Optional[Path]:
        with self._lock:
            return self._paths.get(url)

    def revoke(self, url: str) -> None:
        with self._lock:
            self._paths.pop(url, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._paths)


class ImageReferenceResolver:
    def __init__(
        self,
        signing_base_url: str = "",
        local_dir: Optional[Path] = None,
        cache: Optional[SignedUrlCache] = None,
        registry: Optional[ObjectUrlRegistry] = None,
        client: Optional[httpx.Client] = None,
        ttl: float = SIGNED_URL_TTL_SECONDS,
    ):
        self.signing_base_url = signing_base_url
        self.local_dir = Path(local_dir) if local_dir is not None else None
        self.cache = cache if cache is not None else SignedUrlCache()
        self.registry = registry if registry is not None else ObjectUrlRegistry()
        self.ttl = ttl
        self._client = client

    def resolve(self, ref: str) -> ResolvedImage:
        ref = (ref or "").strip()
        if not ref:
            raise ResolutionError("Empty image reference")
        if ref.startswith(S3_PREFIX):
            return ResolvedImage(self._signed_url(ref))
        if ref.startswith(LOCAL_PREFIX):
            return self._local_image(ref[len(LOCAL_PREFIX):])
        return ResolvedImage(ref)

    def _get_json(self, url: str, params: dict):
        if self._client is not None:
            resp = self._client.get(url, params=params)
            resp.raise_for_status()
            return resp.json()
        with httpx.Client(timeout=10.0) as client:
            resp = client.get(url, params=params)
            resp.raise_for_status()
            return resp.json()

    def _signed_url(self, ref: str) -> str:
        cached = self.cache.get(ref)
        if cached is not None:
            return cached[0]
        if not self.signing_base_url:
            raise ResolutionError("Storage not configured")

        url = self.signing_base_url.rstrip("/") + "/api/storage/signed-url"
        try:
            data = self._get_json(url, {"key": ref})
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            raise ResolutionError(f"Could not resolve image {ref!r}: {e}") from e

        signed = data.get("url") if isinstance(data, dict) else None
        if not signed:
            raise ResolutionError(f"Could not resolve image {ref!r}")
        self.cache.put(ref, signed, self.ttl)
        return signed

    def _local_image(self, key: str) -> ResolvedImage:
        if self.local_dir is None:
            raise ResolutionError("Local image cache not configured")
        root = self.local_dir.resolve()
        path = (root / key).resolve()
        if root not in path.parents or not path.is_file():
            raise ResolutionError(f"Image not found in local cache: {key!r}")
        _check_decodable(path)
        url = self.registry.create(path)
        return ResolvedImage(url, release=partial(self.registry.revoke, url))


class LatestImageResolution:
    """
    Runs resolutions in the background and keeps only the newest one.

    A result that arrives after a newer ``request`` is released and dropped.
    When a result replaces the current image, the old one is released. Failed
    resolutions apply ``placeholder_url`` so the overlay can still be aligned.
    """

    def __init__(
        self,
        resolver: ImageReferenceResolver,
        placeholder_url: str,
        executor: Optional[Executor] = None,
    ):
        self._resolver = resolver
        self._placeholder_url = placeholder_url
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="image-resolve"
        )
        self._lock = threading.Lock()
        self._generation = 0
        self._current: Optional[ResolvedImage] = None
        self._loading = False

    @property
    def current_url(self) -> Optional[str]:
        with self._lock:
            return self._current.url if self._current is not None else None

    @property
    def is_loading(self) -> bool:
        with self._lock:
            return self._loading

    def request(self, ref: str) -> Future:
        """Start resolving ``ref``; the future yields True if its result was applied."""
        with self._lock:
            self._generation += 1
            generation = self._generation
            self._loading = True
        return self._executor.submit(self._run, generation, ref)

    def _run(self, generation: int, ref: str) -> bool:
        try:
            resolved = self._resolver.resolve(ref)
        except ResolutionError as e:
            LOGGER.warning("Failed to resolve map image %r: %s", ref, e)
            resolved = ResolvedImage(self._placeholder_url)
        except Exception:
            LOGGER.warning("Unexpected error resolving map image %r", ref, exc_info=True)
            resolved = ResolvedImage(self._placeholder_url)

        with self._lock:
            applied = generation == self._generation
            if applied:
                previous, self._current = self._current, resolved
                self._loading = False

        if not applied:
            LOGGER.debug("Discarded superseded resolution of %r", ref)
            resolved.close()
        elif previous is not None and previous.url != resolved.url:
            previous.close()
        return applied

    def close(self) -> None:
        with self._lock:
            self._generation += 1
            current, self._current = self._current, None
            self._loading = False
        if current is not None:
            current.close()
        if self._owns_executor:
            self._executor.shutdown(wait=False)


def _check_decodable(path: Path) -> None:
    try:
        with Image.open(path) as img:
            fmt = img.format
            img.verify()
    except (OSError, UnidentifiedImageError, Image.DecompressionBombError) as e:
        raise ResolutionError(f"The source image could not be decoded: {path.name}") from e
    if fmt not in SUPPORTED_FORMATS:
        raise ResolutionError(f"Unsupported image format {fmt!r}; use PNG or JPEG")
