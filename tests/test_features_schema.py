"""Tests for FeatureSpec and flag normalization."""

import pytest
from pydantic import ValidationError

from esk_kernel.config import FeatureFlags
from esk_kernel.errors import UNSUPPORTED_VARIANT, UnsupportedVariant
from esk_kernel.features.schema import (
    FeatureSpec,
    feature_spec_from_env,
    feature_spec_from_mapping,
    iter_feature_specs,
    norm_bool,
    parse_ksu_variant,
    parse_lto_mode,
)
from esk_kernel.types import KsuVariant, LtoMode


class TestNormBool:
    """Test boolean flag normalization."""

    @pytest.mark.parametrize("value", ["1", "y", "yes", "t", "true", "on", "TRUE", " On "])
    def test_truthy_tokens(self, value: str) -> None:
        """Recognized truthy tokens should be true, case-insensitively."""
        assert norm_bool(value) is True

    @pytest.mark.parametrize("value", ["0", "n", "no", "false", "off", "", "maybe", "2"])
    def test_everything_else_is_false(self, value: str) -> None:
        """Anything that is not a truthy token should be false."""
        assert norm_bool(value) is False

    def test_non_string_values(self) -> None:
        """Booleans, ints and None should normalize too."""
        assert norm_bool(True) is True
        assert norm_bool(False) is False
        assert norm_bool(1) is True
        assert norm_bool(None) is False


class TestParseKsuVariant:
    """Test KSU variant parsing."""

    def test_case_insensitive(self) -> None:
        assert parse_ksu_variant("next") is KsuVariant.NEXT
        assert parse_ksu_variant(" Suki ") is KsuVariant.SUKI

    def test_empty_means_none(self) -> None:
        """Unset or empty KSU should select no root module."""
        assert parse_ksu_variant(None) is KsuVariant.NONE
        assert parse_ksu_variant("") is KsuVariant.NONE

    def test_unknown_variant_raises(self) -> None:
        """Unknown names should be a hard error."""
        with pytest.raises(UnsupportedVariant) as exc_info:
            parse_ksu_variant("MAGISK")
        assert exc_info.value.code == UNSUPPORTED_VARIANT
        assert exc_info.value.value == "MAGISK"


class TestParseLtoMode:
    """Test LTO mode parsing."""

    def test_known_modes(self) -> None:
        assert parse_lto_mode("full") is LtoMode.FULL
        assert parse_lto_mode("THIN") is LtoMode.THIN

    def test_unknown_mode_falls_back_to_thin(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Unknown LTO names should warn and use thin."""
        with caplog.at_level("WARNING"):
            assert parse_lto_mode("none") is LtoMode.THIN
        assert "Unknown LTO mode" in caplog.text


class TestFeatureSpec:
    """Test the FeatureSpec model."""

    def test_defaults(self) -> None:
        spec = FeatureSpec()
        assert spec.ksu_variant is KsuVariant.NONE
        assert not (spec.susfs or spec.lxc or spec.bbg)
        assert spec.lto_mode is LtoMode.THIN
        assert spec.has_root_module is False

    def test_is_immutable(self) -> None:
        """FeatureSpec should be frozen."""
        spec = FeatureSpec(ksu_variant="OFFICIAL")
        with pytest.raises(ValidationError):
            spec.susfs = True  # type: ignore[misc]

    def test_normalizes_flags(self) -> None:
        """Flag fields should accept the CI string tokens."""
        spec = FeatureSpec(ksu_variant="suki", susfs="yes", lxc="0", bbg="on")
        assert spec.ksu_variant is KsuVariant.SUKI
        assert spec.susfs is True
        assert spec.lxc is False
        assert spec.bbg is True

    def test_rejects_unknown_fields(self) -> None:
        with pytest.raises(ValidationError):
            FeatureSpec(kpm=True)  # type: ignore[call-arg]

    def test_susfs_without_root_module_is_legal(self) -> None:
        spec = FeatureSpec(ksu_variant="NONE", susfs=True)
        assert spec.susfs is True

    def test_snapshot(self) -> None:
        spec = FeatureSpec(ksu_variant="NEXT", susfs=True, lto_mode="full")
        assert spec.to_snapshot() == {
            "ksu_variant": "NEXT",
            "susfs": True,
            "lxc": False,
            "bbg": False,
            "lto_mode": "full",
        }

    def test_hashable_and_comparable(self) -> None:
        a = FeatureSpec(ksu_variant="NEXT", lxc=True)
        b = FeatureSpec(ksu_variant="next", lxc="1")
        assert a == b
        assert len({a, b}) == 1


class TestFeatureSpecFactories:
    """Test constructing FeatureSpecs from mappings and the environment."""

    def test_from_mapping_unknown_variant(self) -> None:
        """Unknown variants in a mapping should raise UnsupportedVariant."""
        with pytest.raises(UnsupportedVariant):
            feature_spec_from_mapping({"ksu_variant": "apatch"})

    def test_from_mapping(self) -> None:
        spec = feature_spec_from_mapping({"ksu_variant": "official", "susfs": "true"})
        assert spec == FeatureSpec(ksu_variant=KsuVariant.OFFICIAL, susfs=True)

    def test_from_env_flags(self) -> None:
        flags = FeatureFlags(ksu="next", susfs="1", lxc="off", bbg="t", clang_lto="x")
        spec = feature_spec_from_env(flags)
        assert spec == FeatureSpec(
            ksu_variant=KsuVariant.NEXT,
            susfs=True,
            lxc=False,
            bbg=True,
            lto_mode=LtoMode.THIN,
        )

    def test_from_env_unknown_variant(self) -> None:
        with pytest.raises(UnsupportedVariant):
            feature_spec_from_env(FeatureFlags(ksu="root"))


class TestIterFeatureSpecs:
    """Test the variant matrix enumeration."""

    def test_default_enumerates_thin_combinations(self) -> None:
        specs = list(iter_feature_specs())
        assert len(specs) == 4 * 8
        assert len(set(specs)) == len(specs)
        assert all(s.lto_mode is LtoMode.THIN for s in specs)

    def test_both_lto_modes(self) -> None:
        specs = list(iter_feature_specs(tuple(LtoMode)))
        assert len(set(specs)) == 4 * 2 * 8

    def test_stable_order(self) -> None:
        assert list(iter_feature_specs()) == list(iter_feature_specs())
