"""Plan resolution module.

This module handles:
- Plan value objects (patch steps, config mutations, install steps)
- Patch source references and per-run source trees
- Version-gated fix-patch selection
- Resolving a FeatureSpec into a Plan
"""

from esk_kernel.plan.models import (
    ConfigMutation,
    CopyStep,
    InstallStep,
    KconfigEditStep,
    PatchStep,
    Plan,
    compute_plan_digest,
)

__all__ = [
    "ConfigMutation",
    "CopyStep",
    "InstallStep",
    "KconfigEditStep",
    "PatchStep",
    "Plan",
    "compute_plan_digest",
]

# Submodules: esk_kernel.plan.resolver, .sources, .gate
