"""Feature specification module.

This module handles:
- The immutable FeatureSpec model
- Normalization of CI feature flags
- Loading variant files (YAML/JSON)
"""

from esk_kernel.features.io import (
    export_feature_spec,
    feature_spec_to_yaml_string,
    load_feature_spec,
)
from esk_kernel.features.schema import (
    FeatureSpec,
    feature_spec_from_env,
    feature_spec_from_mapping,
    iter_feature_specs,
    norm_bool,
    parse_ksu_variant,
    parse_lto_mode,
)

__all__ = [
    "FeatureSpec",
    "export_feature_spec",
    "feature_spec_from_env",
    "feature_spec_from_mapping",
    "feature_spec_to_yaml_string",
    "iter_feature_specs",
    "load_feature_spec",
    "norm_bool",
    "parse_ksu_variant",
    "parse_lto_mode",
]
