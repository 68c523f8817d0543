"""Tests for the tags-sync command line."""

from __future__ import annotations

from pathlib import Path

import pytest

from tags_sync import cli
from tags_sync.exceptions import RemoteRejected, RepositoryAccessError, TransientTransportError
from tags_sync.models import Signature
from tags_sync.state import read_lines
from tests.helpers import FakeRepositoryAccess


@pytest.fixture(autouse=True)
def keep_test_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    """The CLI reconfigures loguru; keep the handlers installed by the test session instead."""
    monkeypatch.setattr(cli, "configure_logger", lambda *args, **kwargs: None)
    monkeypatch.setattr(cli, "enable_debug_logging", lambda: None)


def _args(tmp_path: Path, *extra: str) -> list[str]:
    return [
        *extra,
        "--base-repository",
        "upstream/project",
        "--head-repository",
        "fork/project",
        "--workspace",
        str(tmp_path),
    ]


class TestSyncCommand:
    """Test suite for the default sync command."""

    def test_sync(self, access: FakeRepositoryAccess, tmp_path: Path) -> None:
        exit_code = cli.main(_args(tmp_path), access=access)

        assert exit_code == 0
        assert access.pushes == ["v1.1", "v2.0"]
        assert read_lines(tmp_path / "new_tags.txt") == ["v1.1", "v2.0"]
        assert read_lines(tmp_path / "synced_branches.txt") == ["v1.1", "v2.0"]

    def test_explicit_sync_subcommand(self, access: FakeRepositoryAccess, tmp_path: Path) -> None:
        assert cli.main(_args(tmp_path, "sync", "--filter-tags", r"v2\..*"), access=access) == 0
        assert access.pushes == ["v2.0"]

    def test_tag_failures_do_not_fail_the_run(self, access: FakeRepositoryAccess, tmp_path: Path) -> None:
        access.fail_on("push", RemoteRejected("v1.1", "non-fast-forward"), "v1.1")

        assert cli.main(_args(tmp_path), access=access) == 0
        assert read_lines(tmp_path / "synced_branches.txt") == ["v2.0"]

    def test_unreachable_base_is_fatal(self, access: FakeRepositoryAccess, tmp_path: Path) -> None:
        """A fatal error exits 1, and both state files are still written."""
        access.fail_on("list_tags", TransientTransportError("could not resolve host"))

        assert cli.main(_args(tmp_path), access=access) == 1
        assert (tmp_path / "new_tags.txt").read_text() == ""
        assert (tmp_path / "synced_branches.txt").read_text() == ""

    def test_dry_run(self, access: FakeRepositoryAccess, tmp_path: Path) -> None:
        assert cli.main(_args(tmp_path, "--dry-run"), access=access) == 0
        assert access.pushes == []
        assert access.clones == 0

    def test_settings_from_environment(
        self,
        access: FakeRepositoryAccess,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setenv("TAGS_SYNC_BASE_REPOSITORY", "upstream/project")
        monkeypatch.setenv("GITHUB_REPOSITORY", "fork/project")
        monkeypatch.setenv("GITHUB_WORKSPACE", str(tmp_path))

        assert cli.main([], access=access) == 0
        assert access.pushes == ["v1.1", "v2.0"]

    def test_github_outputs(
        self,
        access: FakeRepositoryAccess,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        output = tmp_path / "github_output"
        monkeypatch.setenv("GITHUB_OUTPUT", str(output))

        cli.main(_args(tmp_path), access=access)

        content = output.read_text()
        assert f"synced-branches-file={tmp_path / 'synced_branches.txt'}" in content
        assert "has-new-tags=true" in content


class TestConfigurationErrors:
    """Invalid configuration exits 1 with a clear message."""

    def test_missing_base_repository(self, access: FakeRepositoryAccess, caplog: pytest.LogCaptureFixture) -> None:
        assert cli.main(["--head-repository", "fork/project"], access=access) == 1
        assert "base_repository" in caplog.text
        assert access.calls == []

    def test_invalid_filter(self, access: FakeRepositoryAccess, tmp_path: Path) -> None:
        assert cli.main(_args(tmp_path, "--filter-tags", "v(1"), access=access) == 1

    def test_invalid_environment_value(
        self,
        access: FakeRepositoryAccess,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setenv("TAGS_SYNC_RETRY_MAX_ATTEMPTS", "many")

        assert cli.main(_args(tmp_path), access=access) == 1


class TestDetectCommand:
    """Test suite for the detect command."""

    def test_detect_writes_new_tags_only(
        self,
        access: FakeRepositoryAccess,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        output = tmp_path / "github_output"
        monkeypatch.setenv("GITHUB_OUTPUT", str(output))

        assert cli.main(_args(tmp_path, "detect"), access=access) == 0

        assert read_lines(tmp_path / "new_tags.txt") == ["v1.1", "v2.0"]
        assert not (tmp_path / "synced_branches.txt").exists()
        assert access.clones == 0
        assert access.pushes == []
        assert "has-new-tags=true" in output.read_text()

    def test_options_before_the_subcommand(self, access: FakeRepositoryAccess, tmp_path: Path) -> None:
        argv = ["--base-repository", "upstream/project", "detect", "--head-repository", "fork/project"]

        assert cli.main([*argv, "--workspace", str(tmp_path)], access=access) == 0
        assert read_lines(tmp_path / "new_tags.txt") == ["v1.1", "v2.0"]

    def test_nothing_new(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        access = FakeRepositoryAccess()
        output = tmp_path / "github_output"
        monkeypatch.setenv("GITHUB_OUTPUT", str(output))

        assert cli.main(_args(tmp_path, "detect"), access=access) == 0
        assert (tmp_path / "new_tags.txt").read_text() == ""
        assert "has-new-tags=false" in output.read_text()

    def test_detect_fatal_error(self, access: FakeRepositoryAccess, tmp_path: Path) -> None:
        access.fail_on("list_tags", TransientTransportError("timed out"))

        assert cli.main(_args(tmp_path, "detect"), access=access) == 1
        assert (tmp_path / "new_tags.txt").read_text() == ""


class TestHeadRepositoryErrors:
    """A head repository that cannot be listed exits 1 with a message naming it."""

    @pytest.mark.parametrize("command", ["sync", "detect"])
    def test_head_listing_error(
        self,
        access: FakeRepositoryAccess,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
        caplog: pytest.LogCaptureFixture,
        command: str,
    ) -> None:
        output = tmp_path / "github_output"
        monkeypatch.setenv("GITHUB_OUTPUT", str(output))
        access.fail_on("list_branches", RepositoryAccessError("head not found"))

        assert cli.main(_args(tmp_path, command), access=access) == 1

        assert "head repository fork/project: head not found" in caplog.text
        assert (tmp_path / "new_tags.txt").read_text() == ""
        assert "has-new-tags=false" in output.read_text()
        assert access.clones == 0

    def test_exhausted_retries(self, access: FakeRepositoryAccess, tmp_path: Path) -> None:
        access.fail_on("list_branches", TransientTransportError("connection reset"))

        assert cli.main(_args(tmp_path), access=access) == 1
        assert (tmp_path / "synced_branches.txt").read_text() == ""


class TestSettingsFromArgs:
    """Options override the environment, setting by setting."""

    def test_patch_identity_and_hook_options(self, tmp_path: Path) -> None:
        argv = _args(
            tmp_path,
            "--patch-author",
            "Release Bot",
            "--patch-author-email",
            "release@example.com",
            "--patch-committer",
            "CI",
            "--patch-committer-email",
            "ci@example.com",
            "--hook-shell",
            "sh",
            "--hook-timeout",
            "30",
        )

        config = cli.settings_from_args(cli.build_parser().parse_args(argv)).to_run_config()

        assert config.patch.author == Signature("Release Bot", "release@example.com")
        assert config.patch.committer == Signature("CI", "ci@example.com")
        assert config.hook_shell == "sh"
        assert config.hook_timeout_seconds == 30.0

    def test_environment_is_kept_when_option_is_absent(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TAGS_SYNC_PATCH_AUTHOR", "Env Bot")
        monkeypatch.setenv("TAGS_SYNC_HOOK_SHELL", "zsh")

        args = cli.build_parser().parse_args(_args(tmp_path, "--patch-committer", "CI"))
        config = cli.settings_from_args(args).to_run_config()

        assert config.patch.author.name == "Env Bot"
        assert config.patch.committer.name == "CI"
        assert config.hook_shell == "zsh"
