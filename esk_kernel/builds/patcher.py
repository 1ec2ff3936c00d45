"""Patch application capability.

A Patcher applies one unified diff to a directory. The pipeline only
depends on the Patcher protocol; GnuPatcher drives the `patch` utility
and tests substitute in-memory fakes.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class PatcherError(Exception):
    """Raised when a patch does not apply."""

    def __init__(
        self,
        message: str,
        code: str = "patch_error",
        output: str = "",
    ) -> None:
        super().__init__(message)
        self.code = code
        self.output = output


class Patcher(Protocol):
    """Capability to apply a unified diff to a directory."""

    def apply(
        self,
        patch: bytes,
        target: Path,
        strip_level: int = 1,
        fuzz: int | None = None,
    ) -> None: ...


class GnuPatcher:
    """Apply patches with GNU patch.

    Backup and reject files are suppressed, and already-applied hunks
    are refused rather than reversed.
    """

    def __init__(self, executable: str = "patch", timeout: int | None = 300) -> None:
        self.executable = executable
        self.timeout = timeout

    def command(self, strip_level: int = 1, fuzz: int | None = None) -> list[str]:
        cmd = [self.executable, "-s", f"-p{strip_level}"]
        if fuzz is not None:
            cmd.append(f"--fuzz={fuzz}")
        cmd.extend(["--no-backup-if-mismatch", "--forward", "--reject-file=-"])
        return cmd

    def apply(
        self,
        patch: bytes,
        target: Path,
        strip_level: int = 1,
        fuzz: int | None = None,
    ) -> None:
        """Apply `patch` inside `target`.

        Raises:
            PatcherError: If patch exits non-zero, times out, or cannot run.
        """
        cmd = self.command(strip_level, fuzz)
        logger.debug("Running %s in %s", shlex.join(cmd), target)
        try:
            result = subprocess.run(
                cmd,
                input=patch,
                cwd=target,
                capture_output=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise PatcherError(
                f"patch timed out after {self.timeout}s", code="patch_timeout"
            ) from e
        except OSError as e:
            raise PatcherError(
                f"Failed to run {self.executable}: {e}", code="execution_error"
            ) from e

        if result.returncode != 0:
            output = (result.stdout + result.stderr).decode("utf-8", errors="replace")
            raise PatcherError(
                f"patch exited with code {result.returncode}",
                output=output.strip(),
            )


__all__ = ["GnuPatcher", "Patcher", "PatcherError"]
