"""Feature specification to plan resolution.

This module handles:
- Root-management module install and hook patches per variant
- SuSFS patch source selection and version-gated fix sets
- LXC and Baseband-guard integration
- LTO selection and the unconditional BPF baseline

Resolution only reads patch sources (to extract version tokens and list
patch sets); it never touches the kernel tree or its config. The
resulting Plan is executed separately by the applier.

Ordering: root-module steps always come before SuSFS steps because the
SuSFS enabler patches target the module's tree. LXC and BBG touch
disjoint files and are emitted after SuSFS, LXC first.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, assert_never

from esk_kernel.config import DEFAULT_BBG_SETUP_URL, DEFAULT_KSU_SETUP_URL
from esk_kernel.errors import MissingPatchFile
from esk_kernel.features.schema import FeatureSpec
from esk_kernel.plan.gate import VersionGate
from esk_kernel.plan.models import (
    CopyStep,
    InstallStep,
    KconfigEditStep,
    Plan,
    PlanBuilder,
)
from esk_kernel.plan.sources import LOCAL_SOURCE, SUSFS_SOURCE, Sources
from esk_kernel.types import KsuVariant, LtoMode

if TYPE_CHECKING:
    from esk_kernel.config import Settings

logger = logging.getLogger(__name__)

# Fuzz used for patches against the vendor kernel tree
KERNEL_PATCH_FUZZ = 3

# Directories created in the kernel tree by each module's setup script
OFFICIAL_MODULE_DIR = "KernelSU"
NEXT_MODULE_DIR = "KernelSU-Next"

SUKI_HOOK_OPTIONS = (
    "CONFIG_KPM",
    "CONFIG_KSU_TRACEPOINT_HOOK",
    "CONFIG_HAVE_SYSCALL_TRACEPOINTS",
)

LTO_OPTIONS = {
    LtoMode.THIN: "CONFIG_LTO_CLANG_THIN",
    LtoMode.FULL: "CONFIG_LTO_CLANG_FULL",
}

BPF_BASELINE = (
    "CONFIG_BPF",
    "CONFIG_BPF_SYSCALL",
    "CONFIG_BPF_JIT",
    # BTF / CO-RE
    "CONFIG_DEBUG_INFO_BTF",
    # Tracing
    "CONFIG_BPF_EVENTS",
    "CONFIG_BPF_STREAM_PARSER",
    "CONFIG_CGROUP_BPF",
    "CONFIG_LWTUNNEL_BPF",
)

SUSFS_HEADER = "include/linux/susfs.h"
SUSFS_ENABLER_PATCH = "10_enable_susfs_for_ksu.patch"
SUSFS_GKI_PATCH_GLOB = "50_add_susfs_in_gki-android*-*.patch"
NEXT_SUSFS_DIR = "next/susfs"
SUSFS_KERNEL_PATCHES_DIR = "kernel_patches"


@dataclass(frozen=True)
class ResolverOptions:
    """URLs the resolver embeds into install steps."""

    ksu_setup_url_template: str = DEFAULT_KSU_SETUP_URL
    bbg_setup_url: str = DEFAULT_BBG_SETUP_URL

    @classmethod
    def from_settings(cls, settings: Settings) -> ResolverOptions:
        return cls(
            ksu_setup_url_template=settings.ksu_setup_url_template,
            bbg_setup_url=settings.bbg_setup_url,
        )


def root_module_source(spec: FeatureSpec) -> tuple[str, str] | None:
    """Return the (owner/repo, ref) of the root-management module, if any."""
    match spec.ksu_variant:
        case KsuVariant.NONE:
            return None
        case KsuVariant.OFFICIAL:
            return "tiann/KernelSU", "main"
        case KsuVariant.NEXT:
            return "KernelSU-Next/KernelSU-Next", "next"
        case KsuVariant.SUKI:
            return "SukiSU-Ultra/SukiSU-Ultra", "susfs-main" if spec.susfs else "main"
        case _:
            assert_never(spec.ksu_variant)


def _require_file(sources: Sources, source: str, rel_path: str) -> str:
    if not (sources.path(source) / rel_path).is_file():
        raise MissingPatchFile(f"{source}:{rel_path}")
    return rel_path


def _require_dir(sources: Sources, source: str, rel_path: str) -> str:
    if not (sources.path(source) / rel_path).is_dir():
        raise MissingPatchFile(f"{source}:{rel_path}", reason="directory not found")
    return rel_path


def _require_single(sources: Sources, source: str, directory: str, pattern: str) -> str:
    matches = sorted((sources.path(source) / directory).glob(pattern))
    if len(matches) != 1:
        reason = "not found" if not matches else f"ambiguous ({len(matches)} matches)"
        raise MissingPatchFile(f"{source}:{directory}/{pattern}", reason=reason)
    return f"{directory}/{matches[0].name}"


def _add_root_module(
    builder: PlanBuilder,
    spec: FeatureSpec,
    sources: Sources,
    options: ResolverOptions,
) -> None:
    module = root_module_source(spec)
    if module is None:
        return
    repo, ref = module
    builder.add(
        InstallStep(
            name=f"KernelSU ({spec.ksu_variant.value})",
            script_url=options.ksu_setup_url_template.format(repo=repo, ref=ref),
            args=(ref,),
        )
    )
    builder.enable("CONFIG_KSU")

    match spec.ksu_variant:
        case KsuVariant.SUKI:
            hooks = _require_file(sources, LOCAL_SOURCE, "suki/manual_hooks.patch")
            builder.patch(LOCAL_SOURCE, hooks, fuzz=KERNEL_PATCH_FUZZ)
            for key in SUKI_HOOK_OPTIONS:
                builder.enable(key)
        case KsuVariant.NEXT:
            hooks = _require_file(sources, LOCAL_SOURCE, "next/manual_hooks.patch")
            builder.patch(LOCAL_SOURCE, hooks, fuzz=KERNEL_PATCH_FUZZ)
            # Next hooks through tracepoints, not kprobes
            builder.disable("CONFIG_KSU_KPROBES_HOOK")
        case KsuVariant.OFFICIAL | KsuVariant.NONE:
            pass
        case _:
            assert_never(spec.ksu_variant)


def _add_susfs(
    builder: PlanBuilder,
    spec: FeatureSpec,
    sources: Sources,
    gate: VersionGate,
) -> str:
    """Append SuSFS steps and return the SuSFS version token."""
    match spec.ksu_variant:
        case KsuVariant.NEXT:
            source, patch_dir = LOCAL_SOURCE, NEXT_SUSFS_DIR
            enabler = _require_file(
                sources, source, f"{patch_dir}/{SUSFS_ENABLER_PATCH}"
            )
            # May already be present in the Next tree
            builder.patch(
                source, enabler, must_succeed=False, workdir=NEXT_MODULE_DIR
            )
            token = gate.token(source, f"{patch_dir}/{SUSFS_HEADER}")
            for fix in gate.require_fix_set(token):
                builder.patch(gate.fix_source, fix, workdir=NEXT_MODULE_DIR)
            # Removed in the 1.5.12 fix-set generation
            builder.disable("CONFIG_KSU_SUSFS_SUS_SU")
        case KsuVariant.OFFICIAL | KsuVariant.SUKI | KsuVariant.NONE:
            source, patch_dir = SUSFS_SOURCE, SUSFS_KERNEL_PATCHES_DIR
            token = gate.token(source, f"{patch_dir}/{SUSFS_HEADER}")
            if spec.ksu_variant is KsuVariant.OFFICIAL:
                enabler = _require_file(
                    sources, source, f"{patch_dir}/KernelSU/{SUSFS_ENABLER_PATCH}"
                )
                builder.patch(source, enabler, workdir=OFFICIAL_MODULE_DIR)
        case _:
            assert_never(spec.ksu_variant)

    for overlay in ("fs", "include"):
        subpath = _require_dir(sources, source, f"{patch_dir}/{overlay}")
        builder.add(CopyStep(source=source, subpath=subpath, dest=overlay))
    gki_patch = _require_single(sources, source, patch_dir, SUSFS_GKI_PATCH_GLOB)
    builder.patch(source, gki_patch, fuzz=KERNEL_PATCH_FUZZ)
    builder.enable("CONFIG_KSU_SUSFS")
    return token


def _add_lto(builder: PlanBuilder, mode: LtoMode) -> None:
    chosen = LTO_OPTIONS[mode]
    builder.disable("CONFIG_LTO_NONE")
    builder.enable("CONFIG_LTO_CLANG")
    for option in LTO_OPTIONS.values():
        if option != chosen:
            builder.disable(option)
    builder.enable(chosen)


def resolve(
    spec: FeatureSpec,
    sources: Sources,
    options: ResolverOptions | None = None,
) -> Plan:
    """Resolve a feature specification into an ordered plan.

    Args:
        spec: Feature selection.
        sources: Patch sources for this run; remote sources the plan
            depends on are fetched on demand.
        options: Install script URLs.

    Returns:
        The immutable Plan.

    Raises:
        MissingFixPatchSet: If no fix set matches the SuSFS version.
        MissingPatchFile: If a patch or overlay the plan needs is absent.
        VersionTokenNotFound: If the SuSFS header carries no version.
        ExternalFetchFailure: If a patch source cannot be fetched.
    """
    if options is None:
        options = ResolverOptions()

    logger.info("Resolving plan for %s", spec.to_snapshot())
    builder = PlanBuilder()
    token: str | None = None

    _add_root_module(builder, spec, sources, options)

    if spec.susfs:
        token = _add_susfs(builder, spec, sources, VersionGate(sources))
    else:
        # May be left enabled by a config from a previous run
        builder.disable("CONFIG_KSU_SUSFS")

    if spec.lxc:
        lxc = _require_file(sources, LOCAL_SOURCE, "lxc_support.patch")
        builder.patch(LOCAL_SOURCE, lxc, fuzz=KERNEL_PATCH_FUZZ)

    if spec.bbg:
        builder.add(
            InstallStep(
                name="Baseband-guard",
                script_url=options.bbg_setup_url,
                quiet=True,
            )
        )
        builder.add(
            KconfigEditStep(
                file_path="security/Kconfig",
                symbol="LSM",
                anchor="bpf",
                insert="baseband_guard",
            )
        )
        builder.enable("CONFIG_BBG")

    _add_lto(builder, spec.lto_mode)

    for key in BPF_BASELINE:
        builder.enable(key)

    plan = builder.build(version_token=token)
    logger.info(
        "Resolved %d step(s): %d patch(es), %d config mutation(s)",
        len(plan),
        len(plan.patch_steps),
        len(plan.mutations),
    )
    return plan


__all__ = [
    "BPF_BASELINE",
    "KERNEL_PATCH_FUZZ",
    "LTO_OPTIONS",
    "NEXT_MODULE_DIR",
    "OFFICIAL_MODULE_DIR",
    "SUKI_HOOK_OPTIONS",
    "ResolverOptions",
    "resolve",
    "root_module_source",
]
