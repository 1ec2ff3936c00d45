"""Kernel configuration store.

This module handles:
- Parsing and rendering kernel config files (.config / defconfig)
- Idempotent enable/disable/module mutations with last-write-wins
- Regeneration: filling unset options with tree defaults and enforcing
  mutually exclusive option sets

The store plays the role of `scripts/config --file`: it edits whichever
file exists, the generated `out/.config` or the defconfig template.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator, Mapping
from pathlib import Path

from esk_kernel.errors import ConfigInvariantError, DefconfigNotFound
from esk_kernel.types import Tristate

logger = logging.getLogger(__name__)

CONFIG_PREFIX = "CONFIG_"

_KEY_PATTERN = re.compile(r"^CONFIG_[A-Za-z0-9_]+$")
_SET_PATTERN = re.compile(r"^(CONFIG_[A-Za-z0-9_]+)=(.*)$")
_UNSET_PATTERN = re.compile(r"^# (CONFIG_[A-Za-z0-9_]+) is not set$")

# Options of which at most one may be enabled
EXCLUSIVE_SETS: tuple[frozenset[str], ...] = (
    frozenset({"CONFIG_LTO_CLANG_THIN", "CONFIG_LTO_CLANG_FULL"}),
    frozenset({"CONFIG_LTO_NONE", "CONFIG_LTO_CLANG"}),
)

ConfigValue = Tristate | str


def normalize_key(key: str) -> str:
    """Normalize an option name to its CONFIG_-prefixed form.

    Raises:
        ValueError: If the name is not a valid config identifier.
    """
    name = key.strip()
    if not name.startswith(CONFIG_PREFIX):
        name = CONFIG_PREFIX + name
    if not _KEY_PATTERN.match(name):
        raise ValueError(f"Invalid config option name: {key!r}")
    return name


def parse_value(raw: str) -> ConfigValue:
    """Parse the right-hand side of a CONFIG_X=... line."""
    try:
        return Tristate(raw)
    except ValueError:
        return raw


def parse_config_text(text: str) -> dict[str, ConfigValue]:
    """Parse kernel config text into an ordered mapping.

    Comments other than "is not set" markers and blank lines are dropped.
    """
    values: dict[str, ConfigValue] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        unset = _UNSET_PATTERN.match(line)
        if unset:
            values[unset.group(1)] = Tristate.DISABLED
            continue
        match = _SET_PATTERN.match(line)
        if match:
            values[match.group(1)] = parse_value(match.group(2))
    return values


def render_config(values: Mapping[str, ConfigValue]) -> str:
    """Render an ordered mapping back to kernel config text."""
    lines: list[str] = []
    for key, value in values.items():
        if value is Tristate.DISABLED:
            lines.append(f"# {key} is not set")
        elif isinstance(value, Tristate):
            lines.append(f"{key}={value.value}")
        else:
            lines.append(f"{key}={value}")
    return "\n".join(lines) + "\n" if lines else ""


def load_config_file(path: Path) -> dict[str, ConfigValue]:
    """Read and parse a kernel config file."""
    return parse_config_text(path.read_text(encoding="utf-8", errors="replace"))


class ConfigStore:
    """Ordered mapping of config options with controlled mutation.

    Attributes:
        path: File the store was loaded from and is written back to.
    """

    def __init__(
        self,
        path: Path,
        values: Mapping[str, ConfigValue] | None = None,
    ) -> None:
        self.path = path
        self._values: dict[str, ConfigValue] = {}
        self._mutations: dict[str, ConfigValue] = {}
        for key, value in (values or {}).items():
            self._values[normalize_key(key)] = value

    @classmethod
    def load(cls, path: Path) -> ConfigStore:
        """Load a store from an existing config file."""
        return cls(path, load_config_file(path))

    @classmethod
    def open(
        cls,
        kernel_dir: Path,
        defconfig: str,
        arch: str = "arm64",
        out_dir: Path | None = None,
    ) -> ConfigStore:
        """Open the generated config if present, else the defconfig template.

        Args:
            kernel_dir: Kernel source tree.
            defconfig: Name of the defconfig template.
            arch: Kernel architecture.
            out_dir: Build output directory (default: <kernel_dir>/out).

        Raises:
            DefconfigNotFound: If neither file exists.
        """
        generated = (out_dir or kernel_dir / "out") / ".config"
        template = defconfig_path(kernel_dir, defconfig, arch)
        for candidate in (generated, template):
            if candidate.is_file():
                logger.info("Using kernel config: %s", candidate)
                return cls.load(candidate)
        raise DefconfigNotFound(defconfig, [str(generated), str(template)])

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        return normalize_key(key) in self._values

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def get(self, key: str) -> ConfigValue | None:
        """Return the current value of an option, or None if absent."""
        return self._values.get(normalize_key(key))

    def items(self) -> list[tuple[str, ConfigValue]]:
        """Return options in file order."""
        return list(self._values.items())

    @property
    def mutations(self) -> dict[str, ConfigValue]:
        """Options explicitly mutated since load, in first-mutation order."""
        return dict(self._mutations)

    def is_mutated(self, key: str) -> bool:
        """Whether an option was explicitly mutated."""
        return normalize_key(key) in self._mutations

    def set_value(self, key: str, value: ConfigValue) -> None:
        """Set an option; re-setting the same value is a no-op."""
        name = normalize_key(key)
        if self._values.get(name) == value and name in self._mutations:
            return
        logger.debug("config %s=%s", name, getattr(value, "value", value))
        self._values[name] = value
        self._mutations[name] = value

    def enable(self, key: str) -> None:
        """Enable an option (built-in)."""
        self.set_value(key, Tristate.ENABLED)

    def disable(self, key: str) -> None:
        """Disable an option."""
        self.set_value(key, Tristate.DISABLED)

    def set_module(self, key: str) -> None:
        """Build an option as a loadable module."""
        self.set_value(key, Tristate.MODULE)

    def check_exclusive(
        self,
        exclusive_sets: Iterable[frozenset[str]] = EXCLUSIVE_SETS,
    ) -> None:
        """Verify no exclusive set has more than one enabled option.

        Raises:
            ConfigInvariantError: If an exclusive set is violated.
        """
        for group in exclusive_sets:
            enabled = sorted(
                key for key in group if self._values.get(key) is Tristate.ENABLED
            )
            if len(enabled) > 1:
                raise ConfigInvariantError(enabled)

    def regenerate(
        self,
        defaults: Mapping[str, ConfigValue] | None = None,
        write: bool = True,
    ) -> Path:
        """Fill absent options with tree defaults and write the config.

        Options already present, whether loaded or mutated, keep their value.

        Args:
            defaults: Tree-defined default values.
            write: Write the result back to `path`.

        Returns:
            Path of the config artifact.

        Raises:
            ConfigInvariantError: If exclusive options end up both enabled.
        """
        filled = 0
        for key, value in (defaults or {}).items():
            name = normalize_key(key)
            if name not in self._values:
                self._values[name] = value
                filled += 1
        self.check_exclusive()
        logger.info(
            "Regenerated config: %d options (%d mutated, %d defaults filled)",
            len(self._values),
            len(self._mutations),
            filled,
        )
        if write:
            self.save()
        return self.path

    def to_text(self) -> str:
        """Render the store as kernel config text."""
        return render_config(self._values)

    def save(self, path: Path | None = None) -> Path:
        """Write the store to `path` (default: the file it was loaded from)."""
        target = path or self.path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.to_text(), encoding="utf-8")
        return target


def defconfig_path(kernel_dir: Path, defconfig: str, arch: str = "arm64") -> Path:
    """Return the path of a defconfig template inside the kernel tree."""
    return kernel_dir / "arch" / arch / "configs" / defconfig


def load_tree_defaults(
    kernel_dir: Path, defconfig: str, arch: str = "arm64"
) -> dict[str, ConfigValue]:
    """Load the defconfig template as the tree-defined defaults.

    Returns an empty mapping when the template is missing.
    """
    path = defconfig_path(kernel_dir, defconfig, arch)
    if not path.is_file():
        return {}
    return load_config_file(path)


__all__ = [
    "CONFIG_PREFIX",
    "EXCLUSIVE_SETS",
    "ConfigStore",
    "ConfigValue",
    "defconfig_path",
    "load_config_file",
    "load_tree_defaults",
    "normalize_key",
    "parse_config_text",
    "parse_value",
    "render_config",
]
