"""Tests for source references, fetching and the per-run registry."""

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from conftest import FakeFetcher

from esk_kernel.errors import EXTERNAL_FETCH_FAILURE, ExternalFetchFailure
from esk_kernel.plan.sources import GitFetcher, SourceRef, Sources, parse_source_ref


class TestParseSourceRef:
    """Test host:owner/repo@ref parsing."""

    def test_parse(self) -> None:
        ref = parse_source_ref("gitlab.com:simonpunk/susfs4ksu@gki-android12-5.10")
        assert ref == SourceRef("gitlab.com", "simonpunk/susfs4ksu", "gki-android12-5.10")
        assert ref.url == "https://gitlab.com/simonpunk/susfs4ksu"
        assert str(ref) == "gitlab.com:simonpunk/susfs4ksu@gki-android12-5.10"

    @pytest.mark.parametrize(
        "value",
        ["github.com/tiann/KernelSU@main", "github.com:tiann/KernelSU", "no-ref@", ""],
    )
    def test_invalid(self, value: str) -> None:
        with pytest.raises(ValueError, match="Invalid source reference"):
            parse_source_ref(value)


class TestGitFetcher:
    """Test GitFetcher."""

    def test_command_is_shallow_single_branch_without_tags(self) -> None:
        ref = parse_source_ref("github.com:WildKernels/kernel_patches@main")
        cmd = GitFetcher().command(ref, Path("/tmp/dest"))
        assert cmd == [
            "git",
            "clone",
            "-q",
            "--depth=1",
            "--single-branch",
            "--no-tags",
            "https://github.com/WildKernels/kernel_patches",
            "-b",
            "main",
            "/tmp/dest",
        ]

    @patch("esk_kernel.plan.sources.subprocess.run")
    def test_fetch_runs_git(self, mock_run: MagicMock) -> None:
        mock_run.return_value = MagicMock(returncode=0)
        ref = parse_source_ref("github.com:tiann/KernelSU@main")

        GitFetcher(timeout=30).fetch(ref, Path("/tmp/ksu"))

        args, kwargs = mock_run.call_args
        assert args[0][:2] == ["git", "clone"]
        assert kwargs["timeout"] == 30
        assert kwargs["check"] is True

    @patch("esk_kernel.plan.sources.subprocess.run")
    def test_clone_failure(self, mock_run: MagicMock) -> None:
        mock_run.side_effect = subprocess.CalledProcessError(
            128, ["git"], stderr="fatal: Remote branch nope not found"
        )
        ref = parse_source_ref("github.com:tiann/KernelSU@nope")

        with pytest.raises(ExternalFetchFailure) as exc_info:
            GitFetcher().fetch(ref, Path("/tmp/ksu"))

        assert exc_info.value.code == EXTERNAL_FETCH_FAILURE
        assert "Remote branch nope not found" in str(exc_info.value)
        assert exc_info.value.ref == str(ref)

    @patch("esk_kernel.plan.sources.subprocess.run")
    def test_clone_timeout(self, mock_run: MagicMock) -> None:
        mock_run.side_effect = subprocess.TimeoutExpired(["git"], 5)
        with pytest.raises(ExternalFetchFailure, match="timed out"):
            GitFetcher(timeout=5).fetch(
                parse_source_ref("github.com:a/b@main"), Path("/tmp/x")
            )

    @patch("esk_kernel.plan.sources.subprocess.run")
    def test_git_missing(self, mock_run: MagicMock) -> None:
        mock_run.side_effect = FileNotFoundError("git")
        with pytest.raises(ExternalFetchFailure):
            GitFetcher().fetch(parse_source_ref("github.com:a/b@main"), Path("/tmp/x"))


class TestSources:
    """Test the Sources registry."""

    def test_local_source_is_never_fetched(self, tmp_path: Path) -> None:
        fetcher = FakeFetcher(trees={})
        sources = Sources(fetcher, tmp_path / "sources")
        sources.register_local("local", tmp_path)

        assert sources.path("local") == tmp_path
        assert fetcher.calls == []

    def test_remote_fetched_lazily_once(self, tmp_path: Path) -> None:
        upstream = tmp_path / "upstream"
        upstream.mkdir()
        (upstream / "README").write_text("hi")
        fetcher = FakeFetcher(trees={"owner/repo": upstream})
        sources = Sources(fetcher, tmp_path / "sources")
        sources.register("remote", "github.com:owner/repo@main")

        assert fetcher.calls == []
        first = sources.path("remote")
        second = sources.path("remote")

        assert first == second == tmp_path / "sources" / "remote"
        assert (first / "README").read_text() == "hi"
        assert len(fetcher.calls) == 1
        assert sources.fetched == {"remote": first}

    def test_stale_destination_is_replaced(self, tmp_path: Path) -> None:
        upstream = tmp_path / "upstream"
        upstream.mkdir()
        stale = tmp_path / "sources" / "remote"
        stale.mkdir(parents=True)
        (stale / "old.patch").write_text("stale")
        sources = Sources(FakeFetcher(trees={"owner/repo": upstream}), tmp_path / "sources")
        sources.register("remote", SourceRef("github.com", "owner/repo", "main"))

        path = sources.path("remote")

        assert not (path / "old.patch").exists()

    def test_unknown_alias(self, tmp_path: Path) -> None:
        sources = Sources(FakeFetcher(trees={}), tmp_path)
        with pytest.raises(KeyError, match="Unknown patch source"):
            sources.path("nope")

    def test_fetch_failure_propagates(self, tmp_path: Path) -> None:
        sources = Sources(FakeFetcher(trees={}), tmp_path)
        sources.register("remote", "github.com:owner/missing@main")
        with pytest.raises(ExternalFetchFailure):
            sources.path("remote")
        assert sources.fetched == {}

    def test_ref_lookup(self, tmp_path: Path) -> None:
        sources = Sources(FakeFetcher(trees={}), tmp_path)
        sources.register("remote", "github.com:owner/repo@dev")
        assert sources.ref("remote") == SourceRef("github.com", "owner/repo", "dev")
        assert sources.ref("other") is None
