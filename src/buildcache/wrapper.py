"""Maven wrapper cache: a plain content-hash keyed cache of ~/.m2/wrapper."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .backend import CacheBackend, save_cache
from .config import CacheConfig
from .keys import find_files, hash_files
from .state import RestoreKeyMarker

logger = logging.getLogger(__name__)


class WrapperCache:
    def __init__(self, backend: CacheBackend, config: CacheConfig) -> None:
        self.backend = backend
        self.config = config
        self.marker = RestoreKeyMarker(config.wrapper_key_path)

    def restore(self) -> Optional[str]:
        files = find_files(self.config.wrapper_paths, self.config.workspace)
        if not files:
            logger.info(
                f"Not restoring Maven wrapper, no files found for {', '.join(self.config.wrapper_paths)}."
            )
            return None

        key = f"{self.config.key_prefix}-wrapper-{hash_files(files)}"

        logger.info("Restoring Maven wrapper..")
        matched = self.backend.restore(
            [self.config.wrapper_cache_path], key, [], self.config.cross_os_archive
        )
        if matched:
            logger.info("Maven wrapper restored successfully")
            return matched

        logger.info("Unable to restore Maven wrapper, cache miss.")
        logger.info(f"If build is successful, save wrapper to key {key}")
        self.marker.write(key)
        return None

    def save(self) -> int:
        key = self.marker.read()
        if not key:
            logger.info("Not saving Maven wrapper")
            return -1

        self.marker.clear()
        if not Path(self.config.wrapper_cache_path).is_dir():
            logger.info(
                f"Not saving Maven wrapper, directory {self.config.wrapper_cache_path} does not exist."
            )
            return -1

        logger.info("Saving Maven wrapper..")
        return save_cache(
            self.backend,
            [self.config.wrapper_cache_path],
            key,
            cross_os=self.config.cross_os_archive,
            chunk_size=self.config.upload_chunk_size,
        )
