"""Tests for variant and package naming."""

import itertools

import pytest

from esk_kernel.features.schema import FeatureSpec, iter_feature_specs
from esk_kernel.types import KsuVariant, LtoMode
from esk_kernel.variant import package_name, variant_name


class TestVariantName:
    """Test variant_name."""

    @pytest.mark.parametrize(
        ("spec", "expected"),
        [
            (FeatureSpec(), "NONE"),
            (FeatureSpec(ksu_variant="OFFICIAL", susfs=True), "OFFICIAL-SUSFS"),
            (FeatureSpec(ksu_variant="SUKI", lxc=True), "SUKI-LXC"),
            (
                FeatureSpec(ksu_variant="NEXT", susfs=True, lxc=True, bbg=True),
                "NEXT-SUSFS-LXC-BBG",
            ),
            (FeatureSpec(bbg=True, lto_mode="full"), "NONE-BBG-FULL-LTO"),
        ],
    )
    def test_names(self, spec: FeatureSpec, expected: str) -> None:
        assert variant_name(spec) == expected

    def test_suffix_order_is_fixed(self) -> None:
        """Suffixes should always appear as SUSFS, LXC, BBG."""
        name = variant_name(FeatureSpec(ksu_variant="NEXT", bbg=True, susfs=True))
        assert name == "NEXT-SUSFS-BBG"

    def test_injective_over_all_specs(self) -> None:
        """Distinct feature specs should never share a name."""
        specs = list(iter_feature_specs(tuple(LtoMode)))
        names = [variant_name(s) for s in specs]
        assert len(set(names)) == len(specs)


class TestPackageName:
    """Test package_name."""

    def test_format(self) -> None:
        spec = FeatureSpec(ksu_variant=KsuVariant.NEXT, susfs=True)
        assert package_name(spec, "ESK", "5.10.209") == "ESK-5.10.209-NEXT-SUSFS"

    def test_injective_for_fixed_kernel(self) -> None:
        names = {
            package_name(s, "ESK", "5.10.209")
            for s in iter_feature_specs(tuple(LtoMode))
        }
        assert len(names) == 64

    def test_version_is_part_of_name(self) -> None:
        spec = FeatureSpec()
        a, b = (package_name(spec, "ESK", v) for v in ("5.10.209", "5.10.210"))
        assert a != b

    def test_every_variant_prefix(self) -> None:
        for variant, lto in itertools.product(KsuVariant, LtoMode):
            name = package_name(FeatureSpec(ksu_variant=variant, lto_mode=lto), "K", "1")
            assert name.startswith(f"K-1-{variant.value}")
