"""Kernel configuration module.

This module handles:
- Parsing and rendering kernel config files
- The ConfigStore used to mutate options during plan application
- Regeneration with tree defaults and exclusive-option checks
"""

from esk_kernel.kconfig.store import (
    EXCLUSIVE_SETS,
    ConfigStore,
    load_tree_defaults,
    normalize_key,
)

__all__ = ["EXCLUSIVE_SETS", "ConfigStore", "load_tree_defaults", "normalize_key"]
