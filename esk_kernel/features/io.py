"""Variant file loading and export.

Feature specifications can be kept as small YAML or JSON files (one per
CI variant) instead of environment flags.
"""

import json
from pathlib import Path
from typing import Any

import yaml

from esk_kernel.features.schema import FeatureSpec, feature_spec_from_mapping


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the document is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def load_json(path: Path) -> dict[str, Any]:
    """Load a JSON file and return its contents as a dict."""
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def load_feature_spec(path: Path) -> FeatureSpec:
    """Load and validate a feature specification from YAML or JSON.

    File format is determined by extension (.yaml, .yml, .json).

    Raises:
        ValueError: If file extension is not supported.
        UnsupportedVariant: If the file names an unknown variant.
        pydantic.ValidationError: If data does not match the schema.
    """
    suffix = path.suffix.lower()
    if suffix in (".yaml", ".yml"):
        data = load_yaml(path)
    elif suffix == ".json":
        data = load_json(path)
    else:
        raise ValueError(
            f"Unsupported file extension '{suffix}'. Use .yaml, .yml, or .json"
        )
    return feature_spec_from_mapping(data)


def feature_spec_to_yaml_string(spec: FeatureSpec) -> str:
    """Render a feature specification as YAML."""
    return yaml.dump(
        spec.to_snapshot(),
        default_flow_style=False,
        allow_unicode=True,
        sort_keys=False,
    )


def export_feature_spec(spec: FeatureSpec, path: Path) -> None:
    """Write a feature specification to a YAML or JSON file."""
    suffix = path.suffix.lower()
    if suffix in (".yaml", ".yml"):
        path.write_text(feature_spec_to_yaml_string(spec), encoding="utf-8")
    elif suffix == ".json":
        text = json.dumps(spec.to_snapshot(), indent=2) + "\n"
        path.write_text(text, encoding="utf-8")
    else:
        raise ValueError(
            f"Unsupported file extension '{suffix}'. Use .yaml, .yml, or .json"
        )


__all__ = [
    "export_feature_spec",
    "feature_spec_to_yaml_string",
    "load_feature_spec",
    "load_json",
    "load_yaml",
]
