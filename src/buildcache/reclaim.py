#!/usr/bin/env python3
"""
Usage Recorder / Reclaimer

A javaagent (maven-pom-recorder) runs inside the build and writes the poms it
resolved to manifest files in the Maven home:

    ~/.m2/maven-pom-recorder-poms-<id>.txt   (one absolute pom path per line)

Before a cache is saved, every artifact directory whose pom is in none of the
manifests is deleted, so the archive only holds what the build still uses.
No manifest at all means the agent did not run: nothing is deleted.

Implements:
- prepare_cleanup() -> bool       install the recorder agent via ~/.mavenrc
- UsageReclaimer.reclaim(roots)   delete stale artifact directories
- remove_resolution_attempts()    drop *.lastUpdated markers
"""

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Set

import requests

logger = logging.getLogger(__name__)

MANIFEST_PREFIX = "maven-pom-recorder-poms-"
MANIFEST_SUFFIX = ".txt"
DESCRIPTOR_SUFFIX = ".pom"
RESOLUTION_ATTEMPT_SUFFIX = ".lastUpdated"

AGENT_URL = (
    "https://repo1.maven.org/maven2/com/github/skjolber/maven-pom-recorder/"
    "agent/1.0.0/agent-1.0.0.jar"
)
AGENT_FILENAME = "agent-1.0.0.jar"
DOWNLOAD_TIMEOUT = 30


def _normalize(path: str) -> str:
    return os.path.normpath(os.path.abspath(os.path.expanduser(path)))


def _ancestors(paths: Iterable[str]) -> Set[str]:
    """Every directory above the given paths, up to the filesystem root."""
    found: Set[str] = set()
    for path in paths:
        directory = os.path.dirname(path)
        while directory not in found:
            found.add(directory)
            parent = os.path.dirname(directory)
            if parent == directory:
                break
            directory = parent
    return found


@dataclass
class ReclaimReport:
    """What a reclaim pass saw and did."""
    used: Set[str] = field(default_factory=set)
    present: Set[str] = field(default_factory=set)
    deleted: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    skipped: bool = False

    @property
    def stale(self) -> Set[str]:
        return self.present - self.used


class UsageReclaimer:
    """Deletes cached artifacts that no usage manifest mentions."""

    def __init__(
        self,
        manifest_dir: str,
        manifest_prefix: str = MANIFEST_PREFIX,
        manifest_suffix: str = MANIFEST_SUFFIX,
        descriptor_suffix: str = DESCRIPTOR_SUFFIX,
    ):
        self.manifest_dir = Path(os.path.expanduser(str(manifest_dir)))
        self.manifest_prefix = manifest_prefix
        self.manifest_suffix = manifest_suffix
        self.descriptor_suffix = descriptor_suffix

    def manifest_files(self) -> List[Path]:
        if not self.manifest_dir.is_dir():
            return []
        return sorted(
            p for p in self.manifest_dir.iterdir()
            if p.is_file()
            and p.name.startswith(self.manifest_prefix)
            and p.name.endswith(self.manifest_suffix)
        )

    def read_manifests(self) -> Set[str]:
        """Union of every manifest's descriptor identifiers."""
        used: Set[str] = set()
        for manifest in self.manifest_files():
            logger.info(f"Read file {manifest}")
            for line in manifest.read_text(encoding="utf-8").split("\n"):
                line = line.strip()
                if line:
                    used.add(_normalize(line))
        return used

    def find_descriptors(self, cache_roots: Iterable[str]) -> Set[str]:
        present: Set[str] = set()
        for root in cache_roots:
            root_path = Path(os.path.expanduser(str(root)))
            if not root_path.is_dir():
                continue
            for descriptor in root_path.rglob(f"*{self.descriptor_suffix}"):
                if descriptor.is_file():
                    present.add(_normalize(str(descriptor)))
        return present

    def reclaim(self, cache_roots: Iterable[str]) -> ReclaimReport:
        cache_roots = list(cache_roots)
        report = ReclaimReport(used=self.read_manifests())

        if not report.used:
            logger.info("Cache cleanup not necessary.")
            report.skipped = True
            return report

        logger.info("Perform cleanup of Maven cache..")
        report.present = self.find_descriptors(cache_roots)
        stale = sorted(report.stale)

        logger.info(
            f"Found {len(report.present)} cached artifacts, "
            f"of which {len(report.used)} are in use"
        )
        if not stale:
            return report

        logger.info(f"Delete {len(stale)} cached artifacts which are no longer in use.")

        protected = _ancestors(report.used)
        protected.update(_normalize(str(r)) for r in cache_roots)

        for descriptor in stale:
            parent = os.path.dirname(descriptor)
            if parent in protected:
                logger.info(f"Keep directory {parent}, it holds artifacts in use")
                continue
            if not os.path.exists(parent):
                logger.info(f"Directory {parent} already removed")
                report.missing.append(parent)
                continue

            logger.info(f"Delete directory {parent}")
            try:
                shutil.rmtree(parent)
            except FileNotFoundError:
                # removed concurrently
                logger.info(f"Directory {parent} already removed")
                report.missing.append(parent)
                continue
            report.deleted.append(parent)

        return report


def remove_resolution_attempts(cache_roots: Iterable[str]) -> int:
    """Delete *.lastUpdated files so failed resolutions are retried next build."""
    logger.info("Remove resolution attempts..")
    removed = 0
    for root in cache_roots:
        root_path = Path(os.path.expanduser(str(root)))
        if not root_path.is_dir():
            continue
        for marker in root_path.rglob(f"*{RESOLUTION_ATTEMPT_SUFFIX}"):
            marker.unlink(missing_ok=True)
            removed += 1
    return removed


def download_agent(url: str, target: Path, timeout: int = DOWNLOAD_TIMEOUT) -> None:
    response = requests.get(url, timeout=timeout, stream=True)
    response.raise_for_status()

    tmp = target.with_suffix(target.suffix + ".part")
    try:
        with open(tmp, "wb") as handle:
            for chunk in response.iter_content(chunk_size=64 * 1024):
                handle.write(chunk)
        os.replace(tmp, target)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def prepare_cleanup(m2_dir: str, mavenrc: str = "~/.mavenrc", agent_url: str = AGENT_URL) -> bool:
    """
    Make the next Maven invocation record the poms it uses.

    Returns False (and logs a warning) when the agent could not be obtained or
    registered; reclaim will then find no manifest and leave the cache alone.
    """
    logger.info("Prepare for cleanup of Maven cache..")

    try:
        m2_path = Path(os.path.expanduser(str(m2_dir)))
        m2_path.mkdir(parents=True, exist_ok=True)
        agent = m2_path / AGENT_FILENAME

        if not agent.exists():
            download_agent(agent_url, agent)

        rc_path = Path(os.path.expanduser(mavenrc))
        command = f'export MAVEN_OPTS="$MAVEN_OPTS -javaagent:{agent}"\n'
        existing = rc_path.read_text(encoding="utf-8") if rc_path.exists() else ""
        if command not in existing:
            with open(rc_path, "a", encoding="utf-8") as handle:
                handle.write(command)
    except requests.RequestException as e:
        logger.warning(f"Unable to download recorder agent: {e}")
        return False
    except OSError as e:
        logger.warning(f"Unable to prepare cleanup: {e}")
        return False
    return True
