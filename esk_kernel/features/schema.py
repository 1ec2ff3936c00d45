"""Feature specification model and flag normalization.

A FeatureSpec is the immutable description of one kernel variant. It is
built once at program entry, either from the CI environment flags or
from a YAML/JSON variant file, and passed explicitly to every stage of
the pipeline.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Iterable, Iterator, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from esk_kernel.errors import UnsupportedVariant
from esk_kernel.types import KsuVariant, LtoMode

logger = logging.getLogger(__name__)

# Recognized truthy tokens; anything else (including falsy tokens) is false
TRUTHY_TOKENS = frozenset({"1", "y", "yes", "t", "true", "on"})
FALSY_TOKENS = frozenset({"0", "n", "no", "f", "false", "off"})


def norm_bool(value: object) -> bool:
    """Normalize a boolean-like flag value.

    Args:
        value: Raw flag value (bool, str, int or None).

    Returns:
        True for a recognized truthy token, False otherwise.
    """
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    token = str(value).strip().lower()
    if token not in TRUTHY_TOKENS and token not in FALSY_TOKENS and token:
        logger.debug("Unrecognized boolean token %r, treating as false", value)
    return token in TRUTHY_TOKENS


def parse_ksu_variant(value: object) -> KsuVariant:
    """Parse a KernelSU variant name.

    Unset or empty values mean no root-management module.

    Raises:
        UnsupportedVariant: If the name is not a known variant.
    """
    if isinstance(value, KsuVariant):
        return value
    if value is None or not str(value).strip():
        return KsuVariant.NONE
    try:
        return KsuVariant(str(value).strip().upper())
    except ValueError:
        raise UnsupportedVariant(str(value)) from None


def parse_lto_mode(value: object) -> LtoMode:
    """Parse a Clang LTO mode, falling back to thin for unknown names."""
    if isinstance(value, LtoMode):
        return value
    token = str(value).strip().lower() if value is not None else ""
    try:
        return LtoMode(token)
    except ValueError:
        logger.warning("Unknown LTO mode %r, using thin", value)
        return LtoMode.THIN


class FeatureSpec(BaseModel):
    """Immutable feature selection for one kernel variant.

    Attributes:
        ksu_variant: Root-management module to integrate.
        susfs: Patch in the SuSFS filesystem-hiding layer.
        lxc: Apply the container support patch.
        bbg: Integrate the Baseband-guard LSM.
        lto_mode: Clang LTO mode.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    ksu_variant: KsuVariant = Field(default=KsuVariant.NONE)
    susfs: bool = Field(default=False)
    lxc: bool = Field(default=False)
    bbg: bool = Field(default=False)
    lto_mode: LtoMode = Field(default=LtoMode.THIN)

    @field_validator("ksu_variant", mode="before")
    @classmethod
    def _upper_variant(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("susfs", "lxc", "bbg", mode="before")
    @classmethod
    def _normalize_flag(cls, v: Any) -> bool:
        return norm_bool(v)

    @field_validator("lto_mode", mode="before")
    @classmethod
    def _normalize_lto(cls, v: Any) -> LtoMode:
        return parse_lto_mode(v)

    @property
    def has_root_module(self) -> bool:
        """Whether a root-management module is integrated."""
        return self.ksu_variant is not KsuVariant.NONE

    def to_snapshot(self) -> dict[str, Any]:
        """Return a JSON-serializable snapshot of the selection."""
        return self.model_dump(mode="json")


def feature_spec_from_mapping(data: Mapping[str, Any]) -> FeatureSpec:
    """Build a FeatureSpec from loosely typed mapping data.

    The variant is parsed before validation so that an unknown name
    surfaces as UnsupportedVariant rather than a generic validation error.

    Raises:
        UnsupportedVariant: If ksu_variant is not a known variant.
        pydantic.ValidationError: If other fields are invalid.
    """
    values = dict(data)
    if "ksu_variant" in values:
        values["ksu_variant"] = parse_ksu_variant(values["ksu_variant"])
    return FeatureSpec.model_validate(values)


def feature_spec_from_env(flags: Any | None = None) -> FeatureSpec:
    """Build a FeatureSpec from the process environment flags.

    Args:
        flags: Optional FeatureFlags instance; read from env if not given.

    Raises:
        UnsupportedVariant: If KSU names an unknown variant.
    """
    if flags is None:
        from esk_kernel.config import FeatureFlags

        flags = FeatureFlags()
    return FeatureSpec(
        ksu_variant=parse_ksu_variant(flags.ksu),
        susfs=norm_bool(flags.susfs),
        lxc=norm_bool(flags.lxc),
        bbg=norm_bool(flags.bbg),
        lto_mode=parse_lto_mode(flags.clang_lto),
    )


def iter_feature_specs(
    lto_modes: Iterable[LtoMode] = (LtoMode.THIN,),
) -> Iterator[FeatureSpec]:
    """Enumerate every feature combination, in a stable order."""
    for variant, lto_mode, susfs, lxc, bbg in itertools.product(
        KsuVariant, tuple(lto_modes), (False, True), (False, True), (False, True)
    ):
        yield FeatureSpec(
            ksu_variant=variant, susfs=susfs, lxc=lxc, bbg=bbg, lto_mode=lto_mode
        )


__all__ = [
    "FALSY_TOKENS",
    "TRUTHY_TOKENS",
    "FeatureSpec",
    "feature_spec_from_env",
    "feature_spec_from_mapping",
    "iter_feature_specs",
    "norm_bool",
    "parse_ksu_variant",
    "parse_lto_mode",
]
