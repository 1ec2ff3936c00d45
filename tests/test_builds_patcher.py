"""Tests for builds/patcher.py module.

Uses mocked subprocess; one test drives the real `patch` tool when it
is installed.
"""

import shutil
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from esk_kernel.builds.patcher import GnuPatcher, PatcherError

MODIFY_PATCH = b"""\
--- a/hello.c
+++ b/hello.c
@@ -1,3 +1,3 @@
 int main(void)
 {
-\treturn 0;
+\treturn 1;
"""


class TestGnuPatcherCommand:
    """Tests for GnuPatcher.command."""

    def test_default(self):
        """Should strip one component and refuse reversed patches."""
        assert GnuPatcher().command() == [
            "patch",
            "-s",
            "-p1",
            "--no-backup-if-mismatch",
            "--forward",
            "--reject-file=-",
        ]

    def test_fuzz_and_strip(self):
        cmd = GnuPatcher(executable="gpatch").command(strip_level=0, fuzz=3)
        assert cmd[:4] == ["gpatch", "-s", "-p0", "--fuzz=3"]


class TestGnuPatcherApply:
    """Tests for GnuPatcher.apply with mocked subprocess."""

    def test_success(self, tmp_path):
        """Should feed the patch on stdin inside the target directory."""
        with patch("esk_kernel.builds.patcher.subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0, stdout=b"", stderr=b"")

            GnuPatcher().apply(MODIFY_PATCH, tmp_path, fuzz=3)

        args, kwargs = mock_run.call_args
        assert "--fuzz=3" in args[0]
        assert kwargs["input"] == MODIFY_PATCH
        assert kwargs["cwd"] == tmp_path
        assert kwargs["check"] is False

    def test_failure_keeps_output(self, tmp_path):
        """Should raise with the tool's output on non-zero exit."""
        with patch("esk_kernel.builds.patcher.subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(
                returncode=1,
                stdout=b"1 out of 1 hunk FAILED -- saving rejects\n",
                stderr=b"",
            )

            with pytest.raises(PatcherError) as exc_info:
                GnuPatcher().apply(MODIFY_PATCH, tmp_path)

        assert "code 1" in str(exc_info.value)
        assert "hunk FAILED" in exc_info.value.output
        assert exc_info.value.code == "patch_error"

    def test_timeout(self, tmp_path):
        with patch("esk_kernel.builds.patcher.subprocess.run") as mock_run:
            mock_run.side_effect = subprocess.TimeoutExpired(cmd="patch", timeout=5)

            with pytest.raises(PatcherError) as exc_info:
                GnuPatcher(timeout=5).apply(MODIFY_PATCH, tmp_path)

        assert exc_info.value.code == "patch_timeout"

    def test_missing_executable(self, tmp_path):
        with patch("esk_kernel.builds.patcher.subprocess.run") as mock_run:
            mock_run.side_effect = FileNotFoundError("patch")

            with pytest.raises(PatcherError) as exc_info:
                GnuPatcher().apply(MODIFY_PATCH, tmp_path)

        assert exc_info.value.code == "execution_error"


@pytest.mark.skipif(shutil.which("patch") is None, reason="patch not installed")
class TestGnuPatcherReal:
    """Tests against the installed patch utility."""

    @pytest.fixture
    def tree(self, tmp_path: Path) -> Path:
        (tmp_path / "hello.c").write_text("int main(void)\n{\n\treturn 0;\n}\n")
        return tmp_path

    def test_applies(self, tree):
        GnuPatcher().apply(MODIFY_PATCH, tree)

        assert "return 1;" in (tree / "hello.c").read_text()
        assert not list(tree.glob("*.orig"))

    def test_already_applied_is_refused(self, tree):
        """Applying twice should fail rather than reverse the first change."""
        patcher = GnuPatcher()
        patcher.apply(MODIFY_PATCH, tree)

        with pytest.raises(PatcherError):
            patcher.apply(MODIFY_PATCH, tree)

        assert "return 1;" in (tree / "hello.c").read_text()

    def test_refused_patch_leaves_no_rejects(self, tree):
        """A refused patch must not leave .rej files in the tree."""
        patcher = GnuPatcher()
        patcher.apply(MODIFY_PATCH, tree)

        with pytest.raises(PatcherError):
            patcher.apply(MODIFY_PATCH, tree)

        assert not list(tree.rglob("*.rej"))
        assert sorted(p.name for p in tree.iterdir()) == ["hello.c"]
