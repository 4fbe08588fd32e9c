import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from buildcache.git import GitError, GitOutput  # noqa: E402


class FakeGit:
    """Scripted git runner: maps argument tuples to stdout."""

    def __init__(self, responses):
        self.responses = {tuple(k): v for k, v in responses.items()}
        self.calls = []

    def run(self, args):
        self.calls.append(list(args))
        key = tuple(args)
        if key not in self.responses:
            raise GitError(args, "unexpected command")
        response = self.responses[key]
        if isinstance(response, Exception):
            raise response
        return GitOutput(response, "")


@pytest.fixture
def make_git():
    return FakeGit
