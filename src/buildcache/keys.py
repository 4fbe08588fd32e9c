#!/usr/bin/env python3
"""
Cache Key Derivation: History-Aware Keys

Implements:
- derive_keys(prefix, change_commits, cleared_commit_hash, content_hash_fn) -> [key, ...]
- hash_files(files) -> hex digest (hash of per-file hashes)
- find_files(patterns, workspace) -> [Path, ...]
- CacheKeyPair(prefix, commit_or_hash) -> success / failure keys

Keys come in pairs, newest candidate first:
    {prefix}-{commit}-success, {prefix}-{commit}-failure, ...
Callers treat element 0 as the success key and element 1 as the failure key.
"""

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence

logger = logging.getLogger(__name__)

SUCCESS = "success"
FAILURE = "failure"

DEFAULT_KEY_PATHS = ["**/pom.xml"]

_READ_CHUNK = 64 * 1024


@dataclass(frozen=True)
class CacheKeyPair:
    """Success and failure keys for one commit (or content hash)."""
    prefix: str
    commit_or_hash: str

    def key(self, variant: str) -> str:
        return f"{self.prefix}-{self.commit_or_hash}-{variant}"

    @property
    def success(self) -> str:
        return self.key(SUCCESS)

    @property
    def failure(self) -> str:
        return self.key(FAILURE)

    def keys(self) -> List[str]:
        return [self.success, self.failure]


def derive_keys(
    prefix: str,
    change_commits: Sequence[str],
    cleared_commit_hash: Optional[str],
    content_hash_fn: Callable[[], str],
) -> List[str]:
    """
    Turn mined history into an ordered, flat list of restore keys.

    1. change commits present -> one pair per commit, in order
    2. otherwise a cache clear commit -> one pair for that commit
    3. otherwise -> one pair for the content hash of the descriptor files

    content_hash_fn is only called in the last case.
    """
    if change_commits:
        logger.info(
            f"Attempt to restore cache from build file changes in {len(change_commits)} commits"
        )
        pairs = [CacheKeyPair(prefix, commit) for commit in change_commits]
    elif cleared_commit_hash:
        pairs = [CacheKeyPair(prefix, cleared_commit_hash)]
    else:
        logger.info("No git history found for build files, fall back to using file hash instead")
        pairs = [CacheKeyPair(prefix, content_hash_fn())]

    keys: List[str] = []
    for pair in pairs:
        keys.extend(pair.keys())
    return keys


def _file_digest(path: Path) -> bytes:
    digest = hashlib.sha256()
    with open(path, "rb") as handle:
        for chunk in iter(lambda: handle.read(_READ_CHUNK), b""):
            digest.update(chunk)
    return digest.digest()


def hash_files(files: Iterable[Path]) -> str:
    """
    SHA-256 over the concatenated raw SHA-256 digests of each file.

    File order matters. Changing this scheme changes every fallback key and
    orphans existing caches.
    """
    result = hashlib.sha256()
    for path in files:
        result.update(_file_digest(Path(path)))
    return result.hexdigest()


def find_files(patterns: Sequence[str], workspace: Path) -> List[Path]:
    """Descriptor files matching the glob patterns, relative to the workspace."""
    workspace = Path(workspace).resolve()
    found: List[Path] = []
    seen = set()

    for pattern in patterns:
        for candidate in sorted(workspace.glob(pattern)):
            resolved = candidate.resolve()
            if resolved != workspace and workspace not in resolved.parents:
                logger.info(f"Ignore '{candidate}' since it is not under the workspace.")
                continue
            if candidate.is_dir():
                logger.debug(f"Skip directory '{candidate}'.")
                continue
            if candidate in seen:
                continue
            seen.add(candidate)
            found.append(candidate)

    return found


def to_repository_paths(files: Iterable[Path], workspace: Path) -> List[str]:
    workspace = Path(workspace).resolve()
    return [Path(f).resolve().relative_to(workspace).as_posix() for f in files]


def describe_files(paths: Sequence[str]) -> str:
    """Found build file a / Found 3 build files: a, b and c"""
    if len(paths) == 1:
        return f"Found build file {paths[0]}"
    return f"Found {len(paths)} build files: {', '.join(paths[:-1])} and {paths[-1]}"
