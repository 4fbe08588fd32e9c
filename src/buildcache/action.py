#!/usr/bin/env python3
"""
Build Cache Action: restore and save phases

Overall plan (restore):
 - find the build files; none means the cache cannot be restored
 - deepen the clone, mine history for build file changes and [cache clear]
 - derive success/failure keys (fall back to a file content hash)
 - restore in batches; classify full / partial / none
 - arm the save phase: success key marker file + phase state
 - on partial restores, install the usage recorder so stale artifacts can
   be reclaimed before saving

Save, after a successful build: reclaim unused artifacts, then save under the
success key if one was armed. After a failed build: save under the failure key
if one was armed.

Usage:
    buildcache restore
    buildcache save
    buildcache save --failed
"""

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from .backend import CacheBackend, LocalCacheBackend, save_cache
from .config import CacheConfig, load_config
from .git import GitRunner
from .history import HistoryMiner, resolve_candidates
from .keys import derive_keys, describe_files, find_files, hash_files, to_repository_paths
from .reclaim import UsageReclaimer, prepare_cleanup, remove_resolution_attempts
from .restore import RestoreClassifier, RestoreOutcome, RestoreResult
from .state import STEP_RESTORE, PhaseState, PhaseStateStore, RestoreKeyMarker
from .wrapper import WrapperCache

logger = logging.getLogger(__name__)

OUTPUT_CACHE_RESTORE = "cache-restore"


class CacheAction:
    """Runs one phase of the build cache for a single job."""

    def __init__(
        self,
        config: CacheConfig,
        git: Optional[GitRunner] = None,
        backend: Optional[CacheBackend] = None,
        state_store: Optional[PhaseStateStore] = None,
    ):
        self.config = config
        self.git = git or GitRunner(cwd=str(config.workspace))
        self.backend = backend or LocalCacheBackend(config.backend_dir)
        self.miner = HistoryMiner(self.git)
        self.marker = RestoreKeyMarker(config.restore_key_path)
        self.state_store = state_store or PhaseStateStore(config.state_path)
        self.wrapper = WrapperCache(self.backend, config)

    # ── Restore ──────────────────────────────────────────────────

    def derive_restore_keys(self, files: List[Path]) -> List[str]:
        self.miner.fetch(self.config.depth)

        repo_paths = to_repository_paths(files, self.config.workspace)
        logger.info(describe_files(repo_paths))

        mined = self.miner.mine(repo_paths)
        candidates, cleared = resolve_candidates(mined)
        return derive_keys(self.config.key_prefix, candidates, cleared, lambda: hash_files(files))

    def run_restore(self) -> RestoreResult:
        self.marker.clear()
        self.state_store.discard()

        if not self.config.ref:
            logger.warning(
                "Event Validation Error: the triggering event is not tied to a branch or tag ref."
            )
            return RestoreResult(outcome=RestoreOutcome.NOT_ATTEMPTED)

        files = find_files(self.config.key_paths, self.config.workspace)
        if not files:
            logger.warning(
                f"No key files found for expression {', '.join(self.config.key_paths)}, "
                "cache cannot be restored"
            )
            return RestoreResult(outcome=RestoreOutcome.NOT_ATTEMPTED)

        keys = self.derive_restore_keys(files)

        classifier = RestoreClassifier(
            self.backend, self.config.cache_paths, self.config.cross_os_archive
        )
        result = classifier.restore(keys)

        self._arm_save(result)
        self._set_output(result.outcome)

        if self.config.wrapper:
            try:
                self.wrapper.restore()
            except Exception as e:  # noqa: BLE001
                logger.info(f"Problem restoring wrapper cache: {e}")

        return result

    def _arm_save(self, result: RestoreResult) -> None:
        if result.success_key_to_save:
            for path in self.config.cache_paths:
                Path(os.path.expanduser(path)).mkdir(parents=True, exist_ok=True)
            self.marker.write(result.success_key_to_save)

        self.state_store.write(PhaseState(
            step=STEP_RESTORE,
            failure_key=result.failure_key_to_save,
            upload_chunk_size=self.config.upload_chunk_size if self.config.upload_chunk_size else -1,
            cross_os_archive=self.config.cross_os_archive,
        ))

        if result.cleanup_required:
            prepare_cleanup(self.config.m2_path, agent_url=self.config.agent_url)

    def _set_output(self, outcome: RestoreOutcome) -> None:
        if not self.config.output_path:
            return
        with open(self.config.output_path, "a", encoding="utf-8") as handle:
            handle.write(f"{OUTPUT_CACHE_RESTORE}={outcome.value}\n")

    # ── Save ─────────────────────────────────────────────────────

    def run_save(self, build_succeeded: bool = True) -> int:
        state = self.state_store.consume()

        if build_succeeded:
            cache_id = self._save_success(state)
            if self.config.wrapper:
                try:
                    self.wrapper.save()
                except Exception as e:  # noqa: BLE001
                    logger.info(f"Problem saving wrapper cache: {e}")
        else:
            cache_id = self._save_failure(state)

        self.marker.clear()
        return cache_id

    def _save_success(self, state: Optional[PhaseState]) -> int:
        key = self.marker.read()
        if not key:
            logger.info("Skip saving cache for successful build; cache is already up to date.")
            return -1

        logger.info("Save cache for successful build..")
        UsageReclaimer(self.config.m2_path).reclaim(self.config.cache_paths)

        cross_os = state.cross_os_archive if state else self.config.cross_os_archive
        chunk_size = state.chunk_size if state else self.config.upload_chunk_size
        return save_cache(self.backend, self.config.cache_paths, key, cross_os, chunk_size)

    def _save_failure(self, state: Optional[PhaseState]) -> int:
        if state is None or state.step != STEP_RESTORE or not state.failure_key:
            logger.info("Do not save cache for failed build")
            return -1

        logger.info("Save cache for failed build..")
        remove_resolution_attempts(self.config.cache_paths)

        cache_id = save_cache(
            self.backend,
            self.config.cache_paths,
            state.failure_key,
            state.cross_os_archive,
            state.chunk_size,
        )
        if cache_id != -1:
            logger.info(
                "Cache saved for failed build. Another cache will be saved once the build is successful."
            )
        return cache_id


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="History-keyed Maven dependency cache")
    parser.add_argument("--config", default=None, help="YAML config file")
    parser.add_argument("--log-level", default="INFO")
    sub = parser.add_subparsers(dest="step", required=True)

    sub.add_parser("restore", help="Restore the dependency cache before the build")
    save_p = sub.add_parser("save", help="Save the dependency cache after the build")
    save_p.add_argument("--failed", action="store_true", help="The build failed")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    try:
        action = CacheAction(load_config(args.config))
        if args.step == "restore":
            action.run_restore()
        else:
            action.run_save(build_succeeded=not args.failed)
    except Exception as e:  # noqa: BLE001
        logger.error(f"{args.step} failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
