"""Build orchestration module.

This module handles:
- Plan application (patches, install scripts, overlays, Kconfig edits)
- Running the kernel build
- Build records and the end-to-end pipeline
"""

from esk_kernel.builds.models import BuildRecord

__all__ = ["BuildRecord"]

# Submodules: esk_kernel.builds.applier, .patcher, .install, .runner, .service
