#!/usr/bin/env python3
"""
Unit tests for the Usage Reclaimer
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from buildcache.reclaim import (
    AGENT_FILENAME, UsageReclaimer, prepare_cleanup, remove_resolution_attempts,
)


def add_artifact(repo: Path, group: str, name: str, version: str) -> Path:
    directory = repo / group / name / version
    directory.mkdir(parents=True)
    (directory / f"{name}-{version}.jar").write_bytes(b"jar")
    pom = directory / f"{name}-{version}.pom"
    pom.write_text("<project/>")
    return pom


@pytest.fixture
def m2(tmp_path):
    (tmp_path / "m2" / "repository").mkdir(parents=True)
    return tmp_path / "m2"


@pytest.fixture
def artifacts(m2):
    repo = m2 / "repository"
    return {
        "A": add_artifact(repo, "org", "alpha", "1.0"),
        "B": add_artifact(repo, "org", "beta", "2.0"),
        "C": add_artifact(repo, "com", "gamma", "3.1"),
    }


def write_manifest(m2: Path, name: str, poms):
    path = m2 / f"maven-pom-recorder-poms-{name}.txt"
    path.write_text("\n".join(str(p) for p in poms) + "\n")
    return path


class TestReclaim:

    def test_no_manifest_no_deletions(self, m2, artifacts):
        report = UsageReclaimer(str(m2)).reclaim([str(m2 / "repository")])

        assert report.skipped is True
        assert report.deleted == []
        assert all(p.exists() for p in artifacts.values())

    def test_empty_manifest_counts_as_no_observation(self, m2, artifacts):
        (m2 / "maven-pom-recorder-poms-1.txt").write_text("\n\n")

        report = UsageReclaimer(str(m2)).reclaim([str(m2 / "repository")])

        assert report.skipped is True
        assert all(p.exists() for p in artifacts.values())

    def test_deletes_exactly_the_unused(self, m2, artifacts):
        manifest = write_manifest(m2, "1", [artifacts["B"]])

        report = UsageReclaimer(str(m2)).reclaim([str(m2 / "repository")])

        assert sorted(report.deleted) == sorted([str(artifacts["A"].parent), str(artifacts["C"].parent)])
        assert not artifacts["A"].parent.exists()
        assert not artifacts["C"].parent.exists()
        assert artifacts["B"].exists()

        # second pass, agent did not run
        manifest.unlink()
        again = UsageReclaimer(str(m2)).reclaim([str(m2 / "repository")])
        assert again.deleted == []
        assert artifacts["B"].exists()

    def test_manifests_are_unioned(self, m2, artifacts):
        write_manifest(m2, "module-a", [artifacts["A"]])
        write_manifest(m2, "module-b", [artifacts["B"]])

        report = UsageReclaimer(str(m2)).reclaim([str(m2 / "repository")])

        assert report.deleted == [str(artifacts["C"].parent)]
        assert artifacts["A"].exists()
        assert artifacts["B"].exists()

    def test_unrelated_files_are_not_manifests(self, m2, artifacts):
        (m2 / "settings.txt").write_text(str(artifacts["A"]))
        (m2 / "maven-pom-recorder-poms-1.log").write_text(str(artifacts["A"]))

        assert UsageReclaimer(str(m2)).read_manifests() == set()

    def test_already_removed_directory_is_benign(self, m2, artifacts):
        write_manifest(m2, "1", [artifacts["A"], artifacts["B"]])

        with patch("buildcache.reclaim.shutil.rmtree", side_effect=FileNotFoundError):
            report = UsageReclaimer(str(m2)).reclaim([str(m2 / "repository")])

        assert report.deleted == []
        assert report.missing == [str(artifacts["C"].parent)]

    def test_directory_holding_used_descriptor_is_kept(self, m2, artifacts):
        extra = artifacts["B"].parent / "beta-2.0-tests.pom"
        extra.write_text("<project/>")
        write_manifest(m2, "1", [artifacts["A"], artifacts["B"], artifacts["C"]])

        report = UsageReclaimer(str(m2)).reclaim([str(m2 / "repository")])

        assert report.deleted == []
        assert extra.exists()

    def test_directory_above_used_descriptor_is_kept(self, m2, artifacts):
        repo = m2 / "repository"
        stale = add_artifact(repo, "org", "acme", "1.0")
        nested = add_artifact(stale.parent, "child", "inner", "2.0")
        write_manifest(m2, "1", [artifacts["A"], artifacts["B"], artifacts["C"], nested])

        report = UsageReclaimer(str(m2)).reclaim([str(repo)])

        assert str(stale) in report.stale
        assert report.deleted == []
        assert stale.exists()
        assert nested.exists()

    def test_report_sets(self, m2, artifacts):
        write_manifest(m2, "1", [artifacts["B"]])

        report = UsageReclaimer(str(m2)).reclaim([str(m2 / "repository")])

        assert report.present == {str(p) for p in artifacts.values()}
        assert report.used == {str(artifacts["B"])}
        assert report.stale == {str(artifacts["A"]), str(artifacts["C"])}


class TestResolutionAttempts:

    def test_removes_last_updated(self, m2, artifacts):
        marker = artifacts["A"].parent / "alpha-1.0.jar.lastUpdated"
        marker.write_text("failed")

        assert remove_resolution_attempts([str(m2 / "repository")]) == 1
        assert not marker.exists()
        assert artifacts["A"].exists()

    def test_missing_root(self, tmp_path):
        assert remove_resolution_attempts([str(tmp_path / "nope")]) == 0


class TestPrepareCleanup:

    @patch("buildcache.reclaim.requests.get")
    def test_downloads_agent_and_updates_mavenrc(self, mock_get, tmp_path):
        response = MagicMock()
        response.iter_content.return_value = [b"PK", b"jar"]
        mock_get.return_value = response
        rc = tmp_path / ".mavenrc"

        assert prepare_cleanup(str(tmp_path / "m2"), mavenrc=str(rc)) is True

        agent = tmp_path / "m2" / AGENT_FILENAME
        assert agent.read_bytes() == b"PKjar"
        assert rc.read_text() == f'export MAVEN_OPTS="$MAVEN_OPTS -javaagent:{agent}"\n'

    @patch("buildcache.reclaim.requests.get")
    def test_existing_agent_not_downloaded_and_rc_idempotent(self, mock_get, tmp_path):
        m2 = tmp_path / "m2"
        m2.mkdir()
        (m2 / AGENT_FILENAME).write_bytes(b"jar")
        rc = tmp_path / ".mavenrc"

        prepare_cleanup(str(m2), mavenrc=str(rc))
        prepare_cleanup(str(m2), mavenrc=str(rc))

        mock_get.assert_not_called()
        assert rc.read_text().count("-javaagent:") == 1

    @patch("buildcache.reclaim.requests.get")
    def test_download_failure(self, mock_get, tmp_path):
        mock_get.side_effect = requests.ConnectionError("offline")
        rc = tmp_path / ".mavenrc"

        assert prepare_cleanup(str(tmp_path / "m2"), mavenrc=str(rc)) is False
        assert not rc.exists()

    @patch("buildcache.reclaim.requests.get")
    def test_interrupted_download_leaves_no_partial_agent(self, mock_get, tmp_path):
        def broken_stream(chunk_size):
            yield b"PK"
            raise requests.ConnectionError("connection reset")

        response = MagicMock()
        response.iter_content.side_effect = broken_stream
        mock_get.return_value = response
        m2 = tmp_path / "m2"

        assert prepare_cleanup(str(m2), mavenrc=str(tmp_path / ".mavenrc")) is False
        assert list(m2.iterdir()) == []

    @patch("buildcache.reclaim.requests.get")
    def test_unwritable_mavenrc_is_a_warning(self, mock_get, tmp_path, caplog):
        m2 = tmp_path / "m2"
        m2.mkdir()
        (m2 / AGENT_FILENAME).write_bytes(b"jar")
        rc = tmp_path / ".mavenrc"
        rc.mkdir()

        with caplog.at_level("WARNING", logger="buildcache.reclaim"):
            assert prepare_cleanup(str(m2), mavenrc=str(rc)) is False

        assert "Unable to prepare cleanup" in caplog.text
        mock_get.assert_not_called()
