"""Variant naming for build artifacts.

Names are built in a fixed order so that every feature combination
maps to exactly one label:

    <KSU>[-SUSFS][-LXC][-BBG][-FULL-LTO]

Thin LTO is the default and adds no suffix.
"""

from esk_kernel.features.schema import FeatureSpec
from esk_kernel.types import LtoMode

FEATURE_SUFFIXES = ("SUSFS", "LXC", "BBG")
FULL_LTO_SUFFIX = "FULL-LTO"


def variant_name(spec: FeatureSpec) -> str:
    """Return the canonical variant label for a feature specification."""
    parts = [spec.ksu_variant.value]
    flags = (spec.susfs, spec.lxc, spec.bbg)
    parts.extend(suffix for suffix, on in zip(FEATURE_SUFFIXES, flags) if on)
    if spec.lto_mode is LtoMode.FULL:
        parts.append(FULL_LTO_SUFFIX)
    return "-".join(parts)


def package_name(spec: FeatureSpec, kernel_name: str, kernel_version: str) -> str:
    """Return the artifact name: <kernel-name>-<kernel-version>-<variant>."""
    return f"{kernel_name}-{kernel_version}-{variant_name(spec)}"


__all__ = ["FEATURE_SUFFIXES", "FULL_LTO_SUFFIX", "package_name", "variant_name"]
