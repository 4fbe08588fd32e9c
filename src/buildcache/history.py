#!/usr/bin/env python3
"""
History Miner

Finds the commits that changed the build descriptor files and the most recent
"[cache clear]" commit, so that cache keys follow repository history instead of
file contents.

Implements:
- HistoryMiner.get_change_commits(paths, ref) -> [hash, ...] (newest first)
- HistoryMiner.get_commit_log(ref) -> [CommitRecord, ...]
- HistoryMiner.mine(paths) -> MiningResult
- find_clear_marker(history) -> index | -1
- truncate_at(change_commits, marker_hash) -> [hash, ...]
- resolve_candidates(result) -> (candidates, cleared_commit_hash)

On a detached checkout (typically a pull request merge commit) the bounded
scans start from the detached commit's parent, and an extra unscoped scan runs
first. Both sequences are concatenated; duplicates are harmless downstream.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from .git import GitRunner

logger = logging.getLogger(__name__)

CACHE_CLEAR_MARKER = "[cache clear]"
DEFAULT_HISTORY_DEPTH = 100
NOT_FOUND = -1

# %x1f separates hash from message, %x1e terminates each record
_LOG_FORMAT = "--format=%H%x1f%B%x1e"


@dataclass(frozen=True)
class CommitRecord:
    """A commit hash and its full message."""
    hash: str
    message: str


@dataclass
class MiningResult:
    """Everything the key deriver needs from history."""
    change_commits: List[str] = field(default_factory=list)
    history: List[CommitRecord] = field(default_factory=list)
    detached: bool = False
    log_target: str = "HEAD"


def find_clear_marker(history: Sequence[CommitRecord], marker: str = CACHE_CLEAR_MARKER) -> int:
    """Index of the first commit whose message contains the marker, or -1."""
    for index, record in enumerate(history):
        if marker in record.message:
            return index
    return NOT_FOUND


def truncate_at(change_commits: Sequence[str], marker_hash: str) -> List[str]:
    """
    Drop the marker commit and everything older, then add the marker once.

    If the marker is not among the change commits, the list is kept whole and
    the marker is appended.
    """
    retained = list(change_commits)
    if marker_hash in retained:
        retained = retained[:retained.index(marker_hash)]
    retained.append(marker_hash)
    return retained


def resolve_candidates(result: MiningResult) -> Tuple[List[str], Optional[str]]:
    """Apply the cache clear override to mined change commits."""
    index = find_clear_marker(result.history)
    if index == NOT_FOUND:
        return list(result.change_commits), None

    cleared = result.history[index].hash
    logger.info(f"Cache cleaned in commit {cleared}. Ignore all previous caches.")

    if not result.change_commits:
        return [], cleared
    return truncate_at(result.change_commits, cleared), cleared


def parse_commit_log(output: str) -> List[CommitRecord]:
    records = []
    for chunk in output.split("\x1e"):
        chunk = chunk.lstrip()
        if not chunk:
            continue
        commit_hash, _, message = chunk.partition("\x1f")
        records.append(CommitRecord(commit_hash.strip(), message.strip()))
    return records


class HistoryMiner:
    """Queries git history for descriptor file changes and cache clear commits."""

    def __init__(self, git: GitRunner):
        self.git = git

    def fetch(self, depth: int = DEFAULT_HISTORY_DEPTH) -> None:
        """Deepen a shallow clone so there is history to mine."""
        self.git.run(["fetch", f"--deepen={depth}"])

    def is_detached(self) -> bool:
        output = self.git.run(["rev-parse", "--abbrev-ref", "--symbolic-full-name", "HEAD"])
        return output.text() == "HEAD"

    def detached_parent(self) -> Optional[str]:
        """First parent of the checked out commit, from `git show --pretty=raw`."""
        show = self.git.run(["show", "--pretty=raw"]).text()

        search = "parent "
        index = show.find(search)
        if index == -1:
            return None
        end = show.find("\n", index + len(search))
        if end == -1:
            return None
        return show[index + len(search):end].strip()

    def get_change_commits(self, paths: Sequence[str], ref: Optional[str] = None) -> List[str]:
        """Commits touching any of the paths, newest first. No ref means unscoped."""
        args = ["log", "--pretty=format:%H"]
        if ref:
            args.append(ref)
        args.append("--")
        args.extend(paths)
        return self.git.run(args).lines()

    def get_commit_log(self, ref: Optional[str] = None) -> List[CommitRecord]:
        args = ["log", _LOG_FORMAT]
        if ref:
            args.append(ref)
        return parse_commit_log(self.git.run(args).stdout)

    def mine(self, paths: Sequence[str]) -> MiningResult:
        detached = self.is_detached()
        log_target = "HEAD"

        if detached:
            logger.info("Try to determine parent for detached commit")
            parent = self.detached_parent()
            if parent:
                log_target = parent
                logger.info(f"Found detached parent {log_target}")
            else:
                logger.info("Unable to determine detached parent")

        change_commits: List[str] = []
        history: List[CommitRecord] = []

        if detached:
            change_commits += self.get_change_commits(paths)
        change_commits += self.get_change_commits(paths, log_target)

        if detached:
            history += self.get_commit_log()
        history += self.get_commit_log(log_target)

        logger.debug(
            f"Mined {len(change_commits)} change commits from {len(history)} log entries "
            f"(target={log_target}, detached={detached})"
        )
        return MiningResult(
            change_commits=change_commits,
            history=history,
            detached=detached,
            log_target=log_target,
        )
