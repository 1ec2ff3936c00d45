"""Plan execution against a kernel working tree.

This module handles:
- Applying patch steps through a Patcher
- Running install scripts through an Installer
- Copying source overlays into the tree
- Editing Kconfig default lists
- Driving ConfigStore mutations in plan order

Steps run strictly in order. The first failing required step aborts the
run with PatchApplyFailure; nothing is rolled back, so the tree must be
reset before retrying. Steps marked as non-critical log a warning and
are skipped.
"""

from __future__ import annotations

import logging
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, assert_never

from esk_kernel.builds.install import ScriptError, ScriptInstaller
from esk_kernel.builds.patcher import PatcherError
from esk_kernel.errors import PatchApplyFailure
from esk_kernel.plan.models import (
    ConfigMutation,
    CopyStep,
    InstallStep,
    KconfigEditStep,
    PatchStep,
    Plan,
    Step,
)

if TYPE_CHECKING:
    from esk_kernel.builds.install import Installer
    from esk_kernel.builds.patcher import Patcher
    from esk_kernel.kconfig.store import ConfigStore
    from esk_kernel.plan.sources import Sources

logger = logging.getLogger(__name__)

# Kconfig lines that open a new top-level entry
_KCONFIG_ENTRY = re.compile(
    r"^(config|menuconfig|choice|endchoice|menu|endmenu|if|endif|source|comment)\b"
)


class OverlayCopyError(Exception):
    """Raised when an overlay directory cannot be copied."""

    def __init__(self, message: str, code: str = "overlay_copy_error") -> None:
        super().__init__(message)
        self.code = code


@dataclass
class ApplyReport:
    """Outcome of applying a plan.

    Attributes:
        applied: Descriptions of steps that completed.
        skipped: Descriptions of non-critical steps that failed.
    """

    applied: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.applied) + len(self.skipped)


def copy_overlay(source_dir: Path, dest_dir: Path) -> int:
    """Copy a directory tree over an existing one.

    Existing files are overwritten; files only present in the destination
    are kept. Symlinks are copied as their target content and may not
    point outside the source tree.

    Returns:
        Number of files copied.

    Raises:
        OverlayCopyError: If the source is missing or copying fails.
    """
    if not source_dir.is_dir():
        raise OverlayCopyError(
            f"Overlay source not found: {source_dir}", code="overlay_not_found"
        )
    source_resolved = source_dir.resolve()
    copied = 0
    try:
        for item in sorted(source_dir.rglob("*")):
            dest_path = dest_dir / item.relative_to(source_dir)

            if item.is_symlink():
                target = item.resolve()
                try:
                    target.relative_to(source_resolved)
                except ValueError:
                    raise OverlayCopyError(
                        f"Symlink {item} points outside source tree: {target}",
                        code="symlink_escape",
                    ) from None

            if item.is_dir() and not item.is_symlink():
                dest_path.mkdir(parents=True, exist_ok=True)
            elif item.is_file():
                dest_path.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(item.resolve(), dest_path)
                copied += 1
    except OSError as e:
        raise OverlayCopyError(
            f"Failed to copy overlay {source_dir}: {e}", code="copy_error"
        ) from e
    return copied


def insert_into_config_default(
    text: str,
    symbol: str,
    anchor: str,
    insert: str,
) -> tuple[str, int]:
    """Insert a name after an anchor in the `default` lines of a Kconfig entry.

    Only the `config <symbol>` block is touched, up to its help text or the
    next entry. Lines already containing `insert` are left alone, so the
    edit is idempotent.

    Args:
        text: Kconfig file content.
        symbol: Config symbol without prefix (e.g. "LSM").
        anchor: Existing list element to insert after (e.g. "bpf").
        insert: Element to insert (e.g. "baseband_guard").

    Returns:
        Tuple of (new text, number of lines changed).
    """
    header = re.compile(rf"^config\s+{re.escape(symbol)}\s*$")
    anchor_pattern = re.compile(rf"\b{re.escape(anchor)}\b")
    lines = text.splitlines(keepends=True)
    in_block = False
    changed = 0

    for i, line in enumerate(lines):
        stripped = line.strip()
        if header.match(line.rstrip("\r\n")):
            in_block = True
            continue
        if not in_block:
            continue
        if stripped in ("help", "---help---") or _KCONFIG_ENTRY.match(line):
            in_block = False
            continue
        if not stripped.startswith("default") or insert in line:
            continue
        new_line = anchor_pattern.sub(f"{anchor},{insert}", line, count=1)
        if new_line != line:
            lines[i] = new_line
            changed += 1

    return "".join(lines), changed


class PatchApplier:
    """Execute a Plan against a kernel tree and its ConfigStore."""

    def __init__(
        self,
        sources: Sources,
        patcher: Patcher,
        config: ConfigStore,
        installer: Installer | None = None,
    ) -> None:
        self.sources = sources
        self.patcher = patcher
        self.config = config
        self.installer = installer or ScriptInstaller()

    def apply(self, plan: Plan, tree: Path) -> ApplyReport:
        """Apply every step of a plan in order.

        Args:
            plan: Resolved plan.
            tree: Kernel source tree root.

        Returns:
            ApplyReport listing applied and skipped steps.

        Raises:
            PatchApplyFailure: On the first failing required step.
            ExternalFetchFailure: If an install script cannot be fetched.
        """
        report = ApplyReport()
        logger.info("Applying %d step(s) to %s", len(plan), tree)

        for index, step in enumerate(plan.steps, start=1):
            if isinstance(step, ConfigMutation):
                self.config.set_value(step.key, step.value)
                report.applied.append(step.describe())
                continue

            logger.info("[%d/%d] %s", index, len(plan), step.describe())
            try:
                self._apply_step(step, tree)
            except PatchApplyFailure as e:
                if isinstance(step, PatchStep) and not step.must_succeed:
                    logger.warning("Skipping %s: %s", step.describe(), e.cause)
                    report.skipped.append(step.describe())
                    continue
                logger.error("%s", e)
                raise
            report.applied.append(step.describe())

        logger.info(
            "Applied %d step(s), skipped %d", len(report.applied), len(report.skipped)
        )
        return report

    def _apply_step(self, step: Step, tree: Path) -> None:
        match step:
            case PatchStep():
                self._apply_patch(step, tree)
            case InstallStep():
                try:
                    self.installer.install(step, tree)
                except ScriptError as e:
                    raise PatchApplyFailure(step, e) from e
            case CopyStep():
                source_dir = self.sources.path(step.source) / step.subpath
                try:
                    count = copy_overlay(source_dir, tree / step.dest)
                except OverlayCopyError as e:
                    raise PatchApplyFailure(step, e) from e
                logger.debug("Copied %d file(s) into %s", count, step.dest)
            case KconfigEditStep():
                self._edit_kconfig(step, tree)
            case ConfigMutation():
                self.config.set_value(step.key, step.value)
            case _:
                assert_never(step)

    def _apply_patch(self, step: PatchStep, tree: Path) -> None:
        patch_file = self.sources.path(step.source) / step.file_path
        target = tree / step.workdir
        if not target.is_dir():
            raise PatchApplyFailure(step, f"directory not found: {target}")
        try:
            data = patch_file.read_bytes()
        except OSError as e:
            raise PatchApplyFailure(step, e) from e
        try:
            self.patcher.apply(data, target, step.strip_level, step.fuzz)
        except PatcherError as e:
            if e.output:
                logger.debug("patch output:\n%s", e.output)
            raise PatchApplyFailure(step, e) from e

    def _edit_kconfig(self, step: KconfigEditStep, tree: Path) -> None:
        path = tree / step.file_path
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise PatchApplyFailure(step, e) from e
        new_text, changed = insert_into_config_default(
            text, step.symbol, step.anchor, step.insert
        )
        if not changed:
            logger.warning(
                "No %s default list in %s needed %s",
                step.symbol,
                step.file_path,
                step.insert,
            )
            return
        try:
            path.write_text(new_text, encoding="utf-8")
        except OSError as e:
            raise PatchApplyFailure(step, e) from e


__all__ = [
    "ApplyReport",
    "OverlayCopyError",
    "PatchApplier",
    "copy_overlay",
    "insert_into_config_default",
]
