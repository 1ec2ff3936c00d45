"""Shared type definitions for esk_kernel.

This module contains enums and type aliases shared across subpackages
to avoid circular imports.
"""

from enum import Enum


class KsuVariant(str, Enum):
    """Root-management kernel module integrated into the kernel."""

    NONE = "NONE"
    OFFICIAL = "OFFICIAL"
    NEXT = "NEXT"
    SUKI = "SUKI"


class LtoMode(str, Enum):
    """Clang link-time optimization mode."""

    THIN = "thin"
    FULL = "full"


class Tristate(str, Enum):
    """State of a tristate kernel configuration option."""

    ENABLED = "y"
    MODULE = "m"
    DISABLED = "n"


class BuildStatus(str, Enum):
    """Status of a pipeline run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


__all__ = [
    "BuildStatus",
    "KsuVariant",
    "LtoMode",
    "Tristate",
]
