"""ESK Kernel builder - variant resolution and patching for GKI kernels.

This package resolves a kernel feature specification (root-management
module, SuSFS, LXC, Baseband-guard, LTO mode) into an ordered patch plan,
applies it to a kernel source tree, and keeps the kernel configuration
consistent with the applied patches.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
