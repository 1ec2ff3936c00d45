"""Kernel build runner.

This module handles:
- Composing the kbuild `make` commands for a clang/LLVM cross build
- Executing them with subprocess, capturing output to a log file
- Querying the kernel version of the tree
- Enforcing the build timeout

The pipeline talks to a KernelBuilder; MakeKernelBuilder is the default
implementation and tests substitute fakes.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, TextIO

from esk_kernel.errors import BuildFailure

if TYPE_CHECKING:
    from esk_kernel.config import Settings

logger = logging.getLogger(__name__)

CROSS_COMPILE = "aarch64-linux-gnu-"
# Pinned for reproducible builds
KBUILD_BUILD_TIMESTAMP = "Wed Aug 28 22:16:09 UTC 2024"
LOCALVERSION = "-android12-9-00019-g4ea09a298bb4-ab12292661"

# Vendor options that must be built as modules for this tree
VENDOR_MODULE_OPTIONS = (
    "CONFIG_MEDIATEK_CPUFREQ_DEBUG",
    "CONFIG_MTK_IPI",
    "CONFIG_MTK_TINYSYS_MCUPM_SUPPORT",
    "CONFIG_MTK_MBOX",
    "CONFIG_RPMSG_MTK",
)


@dataclass
class BuildResult:
    """Result of a kernel build.

    Attributes:
        image_path: Path of the built kernel Image.
        kernel_version: Base kernel version (e.g. "5.10.209").
        log_path: Path to the build log file.
        started_at: Build start time.
        finished_at: Build finish time.
    """

    image_path: Path
    kernel_version: str
    log_path: Path
    started_at: datetime
    finished_at: datetime

    @property
    def duration(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


class KernelBuilder(Protocol):
    """Capability to compile a configured kernel tree."""

    def build(self, kernel_dir: Path, log_dir: Path) -> BuildResult: ...


def parse_kernel_version(output: str) -> str:
    """Return the base version from `make kernelversion` output.

    Any suffix after the first "-" is dropped.
    """
    lines = [line.strip() for line in output.splitlines() if line.strip()]
    if not lines:
        raise ValueError("Empty kernelversion output")
    return lines[-1].split("-", 1)[0]


class MakeKernelBuilder:
    """Build the kernel with kbuild and the clang toolchain."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    @property
    def jobs(self) -> int:
        return self.settings.jobs or os.cpu_count() or 1

    def make_args(self) -> list[str]:
        """Arguments shared by every make invocation."""
        args = [
            "make",
            f"ARCH={self.settings.arch}",
            "CC=clang",
            "LLVM=1",
            "LLVM_IAS=1",
            f"CROSS_COMPILE={CROSS_COMPILE}",
            "O=out",
        ]
        if self.settings.clang_bin is not None:
            args.append(f"LD={self.settings.clang_bin / 'ld.lld'}")
        return args

    def commands(self, from_defconfig: bool = True) -> list[list[str]]:
        """Compose the defconfig, olddefconfig and build commands.

        With `from_defconfig` false the defconfig step is left out and
        olddefconfig starts from the existing `out/.config`.
        """
        base = self.make_args()
        build = [
            *base,
            f"-j{self.jobs}",
            f"LOCALVERSION={LOCALVERSION}",
            "CONFIG_LOCALVERSION_AUTO=n",
        ]
        build.extend(f"{option}=m" for option in VENDOR_MODULE_OPTIONS)
        commands = [[*base, "-s", "olddefconfig"], build]
        if from_defconfig:
            commands.insert(0, [*base, self.settings.defconfig])
        return commands

    def environment(self) -> dict[str, str]:
        env = dict(os.environ)
        env["KBUILD_BUILD_USER"] = self.settings.build_user
        env["KBUILD_BUILD_HOST"] = self.settings.build_host
        env["KBUILD_BUILD_TIMESTAMP"] = KBUILD_BUILD_TIMESTAMP
        if self.settings.clang_bin is not None:
            env["PATH"] = f"{self.settings.clang_bin}{os.pathsep}{env.get('PATH', '')}"
        return env

    def build(self, kernel_dir: Path, log_dir: Path) -> BuildResult:
        """Configure and compile the kernel.

        An existing `out/.config` holds the pipeline's regenerated config;
        it is completed with olddefconfig instead of being replaced.

        Args:
            kernel_dir: Patched and configured kernel tree.
            log_dir: Directory for the build log.

        Returns:
            BuildResult with the image path and kernel version.

        Raises:
            BuildFailure: If any step fails, times out, or cannot start.
        """
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / "build.log"
        env = self.environment()
        timeout = self.settings.build_timeout
        started_at = datetime.now(timezone.utc)
        from_defconfig = not (kernel_dir / "out" / ".config").is_file()
        if not from_defconfig:
            logger.info("Reusing generated config out/.config")

        with log_path.open("w") as log_file:
            log_file.write(f"# Started: {started_at.isoformat()}\n")
            log_file.write(f"# CWD: {kernel_dir}\n")
            log_file.write("# " + "=" * 70 + "\n\n")
            for cmd in self.commands(from_defconfig):
                cmd_str = shlex.join(cmd)
                logger.info("Executing: %s", cmd_str)
                log_file.write(f"\n# Command: {cmd_str}\n")
                log_file.flush()
                self._run(cmd, kernel_dir, env, log_file, log_path, timeout)

        boot_dir = kernel_dir / "out" / "arch" / self.settings.arch / "boot"
        image_path = boot_dir / "Image"
        if not image_path.is_file():
            raise BuildFailure(
                f"kernel image not found: {image_path}", log_path=str(log_path)
            )

        kernel_version = self.kernel_version(kernel_dir, env)
        finished_at = datetime.now(timezone.utc)

        with log_path.open("a") as log_file:
            log_file.write(f"\n# Finished: {finished_at.isoformat()}\n")
            log_file.write(f"# Kernel version: {kernel_version}\n")
            duration = (finished_at - started_at).total_seconds()
            log_file.write(f"# Duration: {duration:.1f}s\n")

        logger.info("Kernel %s built in %.1fs", kernel_version, duration)
        return BuildResult(
            image_path=image_path,
            kernel_version=kernel_version,
            log_path=log_path,
            started_at=started_at,
            finished_at=finished_at,
        )

    def _run(
        self,
        cmd: list[str],
        cwd: Path,
        env: dict[str, str],
        log_file: TextIO,
        log_path: Path,
        timeout: int | None,
    ) -> None:
        try:
            result = subprocess.run(
                cmd,
                cwd=cwd,
                stdout=log_file,
                stderr=subprocess.STDOUT,
                timeout=timeout,
                env=env,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            log_file.write(f"\n# TIMEOUT after {timeout} seconds\n")
            logger.error(
                "Build timed out after %s seconds. See log: %s", timeout, log_path
            )
            raise BuildFailure(
                f"timed out after {timeout} seconds",
                log_path=str(log_path),
                exit_code=-1,
            ) from e
        except OSError as e:
            raise BuildFailure(
                f"failed to execute make: {e}", log_path=str(log_path)
            ) from e

        if result.returncode != 0:
            logger.error(
                "%s exited with code %d. See log: %s",
                shlex.join(cmd[:2]),
                result.returncode,
                log_path,
            )
            raise BuildFailure(
                f"make exited with code {result.returncode}",
                log_path=str(log_path),
                exit_code=result.returncode,
            )

    def kernel_version(
        self, kernel_dir: Path, env: dict[str, str] | None = None
    ) -> str:
        """Query the base kernel version of a tree.

        Raises:
            BuildFailure: If the query fails.
        """
        try:
            result = subprocess.run(
                ["make", "-s", "kernelversion"],
                cwd=kernel_dir,
                capture_output=True,
                text=True,
                timeout=60,
                env=env,
                check=True,
            )
            return parse_kernel_version(result.stdout)
        except subprocess.CalledProcessError as e:
            raise BuildFailure(
                f"make kernelversion failed: {e.stderr}", exit_code=e.returncode
            ) from e
        except subprocess.TimeoutExpired as e:
            raise BuildFailure("make kernelversion timed out", exit_code=-1) from e
        except (OSError, ValueError) as e:
            raise BuildFailure(f"cannot determine kernel version: {e}") from e


__all__ = [
    "BuildResult",
    "KernelBuilder",
    "MakeKernelBuilder",
    "parse_kernel_version",
]
