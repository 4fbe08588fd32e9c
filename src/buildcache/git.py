#!/usr/bin/env python3
"""
Git Collaborator

Thin wrapper around the git binary used by the history miner.

Implements:
- GitRunner.run(args) -> GitOutput
- GitOutput.text() / GitOutput.lines()

Any failure (non-zero exit, timeout, missing binary) raises GitError.
History mining is all-or-nothing, so callers let it propagate.
"""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)


class GitError(RuntimeError):
    """A git query failed."""

    def __init__(self, args: Sequence[str], message: str, stderr: str = ""):
        super().__init__(f"git {' '.join(args)} failed: {message}")
        self.args_used = list(args)
        self.stderr = stderr


@dataclass
class GitOutput:
    """Captured output of a git command."""
    stdout: str
    stderr: str

    def text(self) -> str:
        return self.stdout.strip()

    def lines(self) -> List[str]:
        return [line.strip() for line in self.stdout.split("\n") if line.strip()]


class GitRunner:
    """Runs git commands inside a working tree."""

    DEFAULT_TIMEOUT = 120

    def __init__(self, cwd: Optional[str] = None, timeout: int = None):
        self.cwd = str(Path(cwd)) if cwd else None
        self.timeout = timeout or self.DEFAULT_TIMEOUT

    def run(self, args: Sequence[str]) -> GitOutput:
        logger.debug(f"git {' '.join(args)}")
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=self.cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise GitError(args, f"timed out after {self.timeout}s") from e
        except FileNotFoundError as e:
            raise GitError(args, "git executable not found") from e

        if result.returncode != 0:
            raise GitError(
                args,
                f"exit code {result.returncode}: {result.stderr.strip()}",
                stderr=result.stderr,
            )

        return GitOutput(result.stdout, result.stderr)

    def __repr__(self) -> str:
        return f"GitRunner(cwd={self.cwd!r})"
