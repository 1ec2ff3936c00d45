"""Shared fixtures: fake patch sources, kernel trees and capabilities."""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from esk_kernel.builds.patcher import PatcherError
from esk_kernel.errors import ExternalFetchFailure
from esk_kernel.plan.models import InstallStep
from esk_kernel.plan.sources import (
    FIX_PATCHES_SOURCE,
    LOCAL_SOURCE,
    SUSFS_SOURCE,
    SourceRef,
    Sources,
)

SUSFS_REPO = "gitlab.com:simonpunk/susfs4ksu@gki-android12-5.10"
FIX_PATCHES_REPO = "github.com:WildKernels/kernel_patches@main"
KERNEL_REPO = "github.com:qweraqq/android_kernel_xiaomi_mt6895@ksu-susfs"

SUSFS_TOKEN = "v1.5.12"

DEFCONFIG_TEXT = """\
CONFIG_LOCALVERSION=""
CONFIG_MODULES=y
CONFIG_LTO_NONE=y
# CONFIG_LTO_CLANG is not set
CONFIG_KSU_SUSFS=y
CONFIG_HZ=250
"""

SECURITY_KCONFIG = """\
menu "Security options"

config LSM
\tstring "Ordered list of enabled LSMs"
\tdefault "landlock,lockdown,yama,loadpin,safesetid,integrity,selinux,bpf" if DEFAULT_SECURITY_SELINUX
\tdefault "landlock,lockdown,yama,loadpin,safesetid,integrity,bpf"
\thelp
\t  A comma-separated list of LSMs, in initialization order.
\t  default "bpf" in help text is not a default line.

config SECURITY_DMESG_RESTRICT
\tbool "Restrict unprivileged access to the kernel syslog"
\tdefault n

endmenu
"""


def new_file_patch(target: str, content: str) -> str:
    """Return a unified diff that creates `target` with one line."""
    return (
        "--- /dev/null\n"
        f"+++ b/{target}\n"
        "@@ -0,0 +1 @@\n"
        f"+{content}\n"
    )


def write_patch(path: Path, target: str, content: str | None = None) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(new_file_patch(target, content or path.stem))
    return path


def write_susfs_tree(root: Path, token: str = SUSFS_TOKEN) -> None:
    """Populate a SuSFS patch directory (headers, overlays, GKI patch)."""
    header = root / "include" / "linux" / "susfs.h"
    header.parent.mkdir(parents=True, exist_ok=True)
    header.write_text(
        "#ifndef KSU_SUSFS_H\n"
        "#define KSU_SUSFS_H\n"
        f'#define SUSFS_VERSION "{token}"\n'
        "#endif\n"
    )
    (root / "include" / "linux" / "susfs_def.h").write_text("/* defs */\n")
    fs_file = root / "fs" / "susfs.c"
    fs_file.parent.mkdir(parents=True, exist_ok=True)
    fs_file.write_text("/* susfs */\n")
    write_patch(root / "50_add_susfs_in_gki-android12-5.10.patch", "fs/susfs_gki.c")


@dataclass
class FakeFetcher:
    """Fetcher that copies prepared directories keyed by owner/repo."""

    trees: dict[str, Path]
    calls: list[SourceRef] = field(default_factory=list)

    def fetch(self, ref: SourceRef, dest: Path) -> None:
        self.calls.append(ref)
        if ref.repo not in self.trees:
            raise ExternalFetchFailure(str(ref), "repository not found")
        shutil.copytree(self.trees[ref.repo], dest, dirs_exist_ok=True)

    @property
    def fetched_repos(self) -> list[str]:
        return [ref.repo for ref in self.calls]


@dataclass
class FakeInstaller:
    """Installer that records steps and creates the module directories."""

    steps: list[InstallStep] = field(default_factory=list)

    def install(self, step: InstallStep, tree: Path) -> None:
        self.steps.append(step)
        if step.name.startswith("KernelSU"):
            module_dir = "KernelSU-Next" if "NEXT" in step.name else "KernelSU"
            (tree / module_dir).mkdir(exist_ok=True)
        else:
            (tree / "security" / "baseband_guard").mkdir(parents=True, exist_ok=True)


@dataclass
class FakePatcher:
    """Patcher that records calls and writes one file per applied patch."""

    calls: list[tuple[Path, int, int | None]] = field(default_factory=list)
    fail_on: set[bytes] = field(default_factory=set)

    def apply(
        self,
        patch: bytes,
        target: Path,
        strip_level: int = 1,
        fuzz: int | None = None,
    ) -> None:
        self.calls.append((target, strip_level, fuzz))
        if patch in self.fail_on:
            raise PatcherError("Hunk #1 FAILED", output="1 out of 1 hunk FAILED")
        for line in patch.decode().splitlines():
            if line.startswith("+++ b/"):
                out = target / line[len("+++ b/") :]
                out.parent.mkdir(parents=True, exist_ok=True)
                out.write_bytes(patch)


@dataclass
class PatchSources:
    """Bundled and remote patch trees used by one test."""

    local: Path
    susfs: Path
    fixes: Path
    fetcher: FakeFetcher
    root: Path

    def sources(self) -> Sources:
        sources = Sources(self.fetcher, self.root)
        sources.register_local(LOCAL_SOURCE, self.local)
        sources.register(SUSFS_SOURCE, SUSFS_REPO)
        sources.register(FIX_PATCHES_SOURCE, FIX_PATCHES_REPO)
        return sources


@pytest.fixture
def patch_sources(tmp_path: Path) -> PatchSources:
    """Bundled kernel_patches tree plus SuSFS and fix-patch repositories."""
    local = tmp_path / "kernel_patches"
    write_patch(local / "suki" / "manual_hooks.patch", "fs/suki_hooks.c")
    write_patch(local / "next" / "manual_hooks.patch", "fs/next_hooks.c")
    write_patch(local / "lxc_support.patch", "kernel/lxc_support.c")
    write_susfs_tree(local / "next" / "susfs")
    write_patch(
        local / "next" / "susfs" / "10_enable_susfs_for_ksu.patch",
        "kernel/susfs_next.c",
    )

    susfs = tmp_path / "remote" / "susfs4ksu"
    write_susfs_tree(susfs / "kernel_patches")
    write_patch(
        susfs / "kernel_patches" / "KernelSU" / "10_enable_susfs_for_ksu.patch",
        "kernel/susfs_official.c",
    )

    fixes = tmp_path / "remote" / "wild_patches"
    fix_dir = fixes / "next" / "susfs_fix_patches" / SUSFS_TOKEN
    write_patch(fix_dir / "fix_core_hook.c.patch", "kernel/fix_core_hook.c")
    write_patch(fix_dir / "fix_apk_sign.c.patch", "kernel/fix_apk_sign.c")
    (fix_dir / "README.md").write_text("not a patch\n")

    kernel = tmp_path / "remote" / "kernel"
    write_kernel_tree(kernel)

    fetcher = FakeFetcher(
        trees={
            "simonpunk/susfs4ksu": susfs,
            "WildKernels/kernel_patches": fixes,
            "qweraqq/android_kernel_xiaomi_mt6895": kernel,
        }
    )
    return PatchSources(
        local=local,
        susfs=susfs,
        fixes=fixes,
        fetcher=fetcher,
        root=tmp_path / "sources",
    )


def write_kernel_tree(root: Path, defconfig: str = "gki_defconfig") -> Path:
    """Create a minimal kernel tree with a defconfig and security/Kconfig."""
    configs = root / "arch" / "arm64" / "configs"
    configs.mkdir(parents=True, exist_ok=True)
    (configs / defconfig).write_text(DEFCONFIG_TEXT)
    security = root / "security"
    security.mkdir(parents=True, exist_ok=True)
    (security / "Kconfig").write_text(SECURITY_KCONFIG)
    (root / "Makefile").write_text("VERSION = 5\nPATCHLEVEL = 10\nSUBLEVEL = 209\n")
    return root


@pytest.fixture
def kernel_tree(tmp_path: Path) -> Path:
    """A minimal kernel tree in the test's temporary directory."""
    return write_kernel_tree(tmp_path / "kernel")
