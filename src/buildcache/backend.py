#!/usr/bin/env python3
"""
Cache Backend

The backend stores and retrieves cache archives by key. The action only talks
to the CacheBackend protocol; LocalCacheBackend keeps archives in a directory
(shared volume, self-hosted runner cache, tests).

Error classes:
- CacheValidationError: contract violation, always fatal
- ReserveCacheError: key already taken by another job, informational
- CacheBackendError: anything else, downgraded to a warning by callers
"""

import logging
import os
import sys
import tarfile
import tempfile
from pathlib import Path
from typing import List, Optional, Protocol, Sequence
from urllib.parse import quote, unquote

logger = logging.getLogger(__name__)

MAX_KEY_LENGTH = 512
MAX_KEYS_PER_RESTORE = 10

_ARCHIVE_SUFFIX = ".tar.gz"


class CacheBackendError(Exception):
    """Generic backend failure."""


class CacheValidationError(CacheBackendError):
    """Invalid keys or paths were submitted."""


class ReserveCacheError(CacheBackendError):
    """The cache key could not be reserved for saving."""


class CacheBackend(Protocol):
    """Port for cache archive transfer."""

    def restore(
        self, paths: Sequence[str], primary_key: str,
        fallback_keys: Sequence[str], cross_os: bool = False,
    ) -> Optional[str]:
        """Restore the best matching archive into paths; return its key or None."""
        ...

    def save(
        self, paths: Sequence[str], key: str,
        cross_os: bool = False, chunk_size: Optional[int] = None,
    ) -> int:
        """Archive paths under key; return a cache id or -1."""
        ...


def validate_key(key: str) -> None:
    if not key:
        raise CacheValidationError("Key Validation Error: key cannot be empty.")
    if len(key) > MAX_KEY_LENGTH:
        raise CacheValidationError(
            f"Key Validation Error: {key} cannot be larger than {MAX_KEY_LENGTH} characters."
        )
    if "," in key:
        raise CacheValidationError(f"Key Validation Error: {key} cannot contain commas.")


def save_cache(
    backend: CacheBackend, paths: Sequence[str], key: str,
    cross_os: bool = False, chunk_size: Optional[int] = None,
) -> int:
    """Save, downgrading everything except validation errors. Returns id or -1."""
    try:
        cache_id = backend.save(paths, key, cross_os=cross_os, chunk_size=chunk_size)
    except CacheValidationError:
        raise
    except ReserveCacheError as e:
        logger.info(str(e))
        return -1
    except Exception as e:  # noqa: BLE001
        logger.warning(str(e))
        return -1

    if cache_id != -1:
        logger.info(f"Cache saved with key: {key}")
    return cache_id


class LocalCacheBackend:
    """
    Directory-backed cache store.

    Layout: <root>/<version>/<quoted key>.tar.gz where version is "any" for
    cross-platform archives and the platform name otherwise, so archives made
    without the cross-OS flag are only visible on the same platform.

    Matching follows the hosted cache service: the primary key must match
    exactly, fallback keys match by prefix and the newest archive wins.
    """

    def __init__(self, root: str):
        self.root = Path(os.path.expanduser(str(root)))
        logger.debug(f"LocalCacheBackend initialized at {self.root}")

    def _version_dir(self, cross_os: bool) -> Path:
        return self.root / ("any" if cross_os else sys.platform)

    def _archive_path(self, key: str, cross_os: bool) -> Path:
        return self._version_dir(cross_os) / (quote(key, safe="") + _ARCHIVE_SUFFIX)

    def list_keys(self, cross_os: bool = False) -> List[str]:
        directory = self._version_dir(cross_os)
        if not directory.is_dir():
            return []
        return sorted(
            unquote(p.name[:-len(_ARCHIVE_SUFFIX)])
            for p in directory.iterdir()
            if p.name.endswith(_ARCHIVE_SUFFIX)
        )

    def _find_prefix_match(self, prefix: str, cross_os: bool) -> Optional[str]:
        matches = [k for k in self.list_keys(cross_os) if k.startswith(prefix)]
        if not matches:
            return None
        return max(matches, key=lambda k: self._archive_path(k, cross_os).stat().st_mtime)

    def restore(
        self, paths: Sequence[str], primary_key: str,
        fallback_keys: Sequence[str], cross_os: bool = False,
    ) -> Optional[str]:
        keys = [primary_key, *fallback_keys]
        if len(keys) > MAX_KEYS_PER_RESTORE:
            raise CacheValidationError(
                f"Key Validation Error: Keys are limited to a maximum of {MAX_KEYS_PER_RESTORE}."
            )
        for key in keys:
            validate_key(key)
        if not paths:
            raise CacheValidationError("Path Validation Error: at least one path is required.")

        matched = None
        if self._archive_path(primary_key, cross_os).is_file():
            matched = primary_key
        else:
            for fallback in fallback_keys:
                matched = self._find_prefix_match(fallback, cross_os)
                if matched:
                    break

        if matched is None:
            return None

        archive = self._archive_path(matched, cross_os)
        logger.info(f"Restoring cache {matched} from {archive}")
        with tarfile.open(archive, "r:gz") as tar:
            tar.extractall(path=Path(os.sep).resolve(), filter="data")
        return matched

    def save(
        self, paths: Sequence[str], key: str,
        cross_os: bool = False, chunk_size: Optional[int] = None,
    ) -> int:
        validate_key(key)
        if not paths:
            raise CacheValidationError("Path Validation Error: at least one path is required.")

        archive = self._archive_path(key, cross_os)
        if archive.exists():
            raise ReserveCacheError(
                f"Unable to reserve cache with key {key}, another job may be creating this cache."
            )

        existing = [Path(os.path.expanduser(str(p))).resolve() for p in paths]
        existing = [p for p in existing if p.exists()]
        if not existing:
            raise CacheBackendError(
                "Path Validation Error: Path(s) specified for caching do not exist, "
                "hence no cache is being saved."
            )

        if chunk_size:
            logger.debug(f"Chunk size {chunk_size} ignored by local backend")

        archive.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=archive.parent, suffix=".tmp")
        os.close(fd)
        try:
            with tarfile.open(tmp_name, "w:gz") as tar:
                for path in existing:
                    tar.add(str(path), arcname=str(path.relative_to(path.anchor)))
            os.replace(tmp_name, archive)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

        cache_id = len(self.list_keys(cross_os))
        logger.debug(f"Saved {archive} (id={cache_id})")
        return cache_id
