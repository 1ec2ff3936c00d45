"""Build service module.

This module provides the high-level pipeline API:
- run_pipeline(): reset, fetch, resolve, apply, regenerate, build, name
- Workspace directory reset
- Build record persistence

Every run starts from freshly reset directories; a failed run leaves
the tree as-is and is retried from a clean reset.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy import select

from esk_kernel.builds.applier import ApplyReport, PatchApplier
from esk_kernel.builds.models import BuildRecord
from esk_kernel.config import get_settings
from esk_kernel.errors import BuildFailure, EskError, WorkspaceError
from esk_kernel.kconfig.store import ConfigStore, load_tree_defaults
from esk_kernel.plan.models import Plan, compute_plan_digest
from esk_kernel.plan.resolver import ResolverOptions, resolve
from esk_kernel.plan.sources import (
    FIX_PATCHES_SOURCE,
    LOCAL_SOURCE,
    SUSFS_SOURCE,
    Fetcher,
    Sources,
    parse_source_ref,
)
from esk_kernel.types import BuildStatus
from esk_kernel.variant import package_name, variant_name

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from esk_kernel.builds.install import Installer
    from esk_kernel.builds.patcher import Patcher
    from esk_kernel.builds.runner import KernelBuilder
    from esk_kernel.config import Settings
    from esk_kernel.features.schema import FeatureSpec

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Outcome of a pipeline run.

    Attributes:
        variant: Variant name of the built spec.
        plan: The resolved plan.
        plan_digest: Digest of the plan.
        report: Applied and skipped steps.
        config_path: Regenerated config file.
        kernel_version: Kernel version, if the kernel was compiled.
        package_name: Artifact name, if the kernel was compiled.
        image_path: Copied kernel image, if the kernel was compiled.
        build_id: BuildRecord id, if history is recorded.
    """

    variant: str
    plan: Plan
    plan_digest: str
    report: ApplyReport
    config_path: Path
    kernel_version: str | None = None
    package_name: str | None = None
    image_path: Path | None = None
    build_id: int | None = None


def reset_dir(path: Path) -> None:
    """Remove a directory if present and recreate it empty.

    Raises:
        WorkspaceError: If the directory cannot be removed or created.
    """
    try:
        if path.exists():
            logger.debug("Removing %s", path)
            shutil.rmtree(path)
        path.mkdir(parents=True)
    except OSError as e:
        raise WorkspaceError(e, path=str(path)) from e


def prepare_workspace(settings: Settings, reset_kernel: bool = True) -> None:
    """Reset the working directories owned by a run.

    Args:
        settings: Application settings.
        reset_kernel: Also reset the kernel tree (it is re-cloned).
    """
    assert settings.kernel_dir is not None
    assert settings.out_dir is not None
    assert settings.sources_dir is not None
    dirs = [settings.out_dir, settings.sources_dir]
    if reset_kernel:
        dirs.insert(0, settings.kernel_dir)
    logger.info("Resetting directories: %s", ", ".join(str(d) for d in dirs))
    for path in dirs:
        reset_dir(path)


def create_sources(settings: Settings, fetcher: Fetcher) -> Sources:
    """Register the bundled and companion patch sources for a run."""
    assert settings.sources_dir is not None
    assert settings.patches_dir is not None
    sources = Sources(fetcher, settings.sources_dir)
    sources.register_local(LOCAL_SOURCE, settings.patches_dir)
    sources.register(SUSFS_SOURCE, settings.susfs_repo)
    sources.register(FIX_PATCHES_SOURCE, settings.fix_patches_repo)
    return sources


def copy_image(image: Path, out_dir: Path, name: str) -> Path:
    """Copy a built kernel image to `<out_dir>/<name>.Image`."""
    out_dir.mkdir(parents=True, exist_ok=True)
    dest = out_dir / f"{name}.Image"
    shutil.copy2(image, dest)
    logger.info("Kernel image: %s", dest)
    return dest


def _record_failure(
    record: BuildRecord | None,
    session: Session | None,
    variant: str,
    error: EskError,
) -> None:
    logger.error("Pipeline failed for %s: %s", variant, error)
    if record is None or session is None:
        return
    record.mark_failed(error_type=error.code, message=str(error))
    log_path = error.details.get("log_path")
    if log_path:
        record.log_path = log_path
    session.flush()


def run_pipeline(
    spec: FeatureSpec,
    settings: Settings | None = None,
    *,
    fetcher: Fetcher,
    patcher: Patcher,
    installer: Installer | None = None,
    builder: KernelBuilder | None = None,
    session: Session | None = None,
    fetch_kernel: bool = True,
) -> PipelineResult:
    """Run the full variant pipeline for one feature specification.

    Args:
        spec: Feature selection, built once at entry.
        settings: Application settings.
        fetcher: Source fetch capability.
        patcher: Patch application capability.
        installer: Install script runner (default: ScriptInstaller).
        builder: Kernel builder; compilation is skipped when None.
        session: Database session for the build record (optional).
        fetch_kernel: Reset and clone the kernel tree first.

    Returns:
        PipelineResult describing the run.

    Raises:
        EskError: Any pipeline failure; the build record is marked failed
            and flushed, and committing it is left to the caller. OS-level
            failures in the workspace surface as WorkspaceError.
    """
    if settings is None:
        settings = get_settings()
    assert settings.kernel_dir is not None
    assert settings.out_dir is not None

    variant = variant_name(spec)
    logger.info("Building variant %s", variant)

    record: BuildRecord | None = None
    if session is not None:
        record = BuildRecord(
            variant=variant,
            feature_snapshot=spec.to_snapshot(),
            status=BuildStatus.PENDING.value,
        )
        session.add(record)
        record.mark_running()
        session.flush()

    try:
        prepare_workspace(settings, reset_kernel=fetch_kernel)
        if fetch_kernel:
            fetcher.fetch(parse_source_ref(settings.kernel_repo), settings.kernel_dir)

        sources = create_sources(settings, fetcher)
        plan = resolve(spec, sources, ResolverOptions.from_settings(settings))
        digest = compute_plan_digest(plan)
        logger.info("Plan digest: %s", digest)
        if record is not None:
            record.plan_digest = digest
            record.version_token = plan.version_token

        config = ConfigStore.open(
            settings.kernel_dir,
            settings.defconfig,
            settings.arch,
            settings.kernel_out_dir,
        )
        report = PatchApplier(sources, patcher, config, installer).apply(
            plan, settings.kernel_dir
        )
        defaults = load_tree_defaults(
            settings.kernel_dir, settings.defconfig, settings.arch
        )
        config_path = config.regenerate(defaults)

        result = PipelineResult(
            variant=variant,
            plan=plan,
            plan_digest=digest,
            report=report,
            config_path=config_path,
        )

        if builder is not None:
            build = builder.build(settings.kernel_dir, settings.out_dir / "logs")
            name = package_name(spec, settings.kernel_name, build.kernel_version)
            try:
                image = copy_image(build.image_path, settings.out_dir, name)
            except OSError as e:
                raise BuildFailure(
                    f"cannot copy kernel image: {e}", log_path=str(build.log_path)
                ) from e
            result.kernel_version = build.kernel_version
            result.package_name = name
            result.image_path = image
            if record is not None:
                record.kernel_version = build.kernel_version
                record.package_name = name
                record.image_path = str(image)
                record.log_path = str(build.log_path)
        else:
            logger.info("Skipping kernel compilation")

    except EskError as e:
        _record_failure(record, session, variant, e)
        raise
    except OSError as e:
        error = WorkspaceError(e, path=str(e.filename) if e.filename else None)
        _record_failure(record, session, variant, error)
        raise error from e
    except Exception as e:
        logger.exception("Pipeline failed for %s", variant)
        if record is not None and session is not None:
            record.mark_failed(error_type=type(e).__name__, message=str(e))
            session.flush()
        raise

    if record is not None and session is not None:
        record.mark_succeeded()
        session.flush()
        result.build_id = record.id

    logger.info("Variant %s done", variant)
    return result


def list_builds(
    session: Session,
    variant: str | None = None,
    status: BuildStatus | None = None,
    limit: int = 20,
) -> list[BuildRecord]:
    """List build records, newest first.

    Args:
        session: Database session.
        variant: Filter by variant name.
        status: Filter by status.
        limit: Maximum results to return.

    Returns:
        List of BuildRecord instances.
    """
    stmt = select(BuildRecord)
    if variant is not None:
        stmt = stmt.where(BuildRecord.variant == variant)
    if status is not None:
        stmt = stmt.where(BuildRecord.status == status.value)
    stmt = stmt.order_by(BuildRecord.id.desc()).limit(limit)
    return list(session.execute(stmt).scalars().all())


__all__ = [
    "PipelineResult",
    "copy_image",
    "create_sources",
    "list_builds",
    "prepare_workspace",
    "reset_dir",
    "run_pipeline",
]
