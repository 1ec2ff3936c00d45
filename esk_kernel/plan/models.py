"""Plan value objects.

A Plan is the ordered, immutable list of work for one build: patch
applications, config mutations, module install scripts, overlay copies,
and Kconfig text edits. It is produced by the resolver and consumed in
order by the applier; nothing mutates it in between.

Plans are serialized to canonical JSON and hashed, so two resolutions of
the same inputs can be compared by digest.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar

from esk_kernel.kconfig.store import normalize_key
from esk_kernel.types import Tristate

# Schema version for plan serialization; bump when the format changes
PLAN_SCHEMA_VERSION = "1"


@dataclass(frozen=True)
class PatchStep:
    """Apply one unified diff from a source tree.

    Attributes:
        source: Alias of the source tree holding the patch.
        file_path: Patch path relative to the source root.
        strip_level: Leading path components to strip (-pN).
        fuzz: Allowed context mismatch lines; None uses the tool default.
        must_succeed: Abort the run if the patch does not apply.
        workdir: Directory inside the kernel tree to apply in.
    """

    kind: ClassVar[str] = "patch"

    source: str
    file_path: str
    strip_level: int = 1
    fuzz: int | None = None
    must_succeed: bool = True
    workdir: str = "."

    def describe(self) -> str:
        where = "" if self.workdir == "." else f" in {self.workdir}"
        return f"patch {self.source}:{self.file_path}{where}"


@dataclass(frozen=True)
class ConfigMutation:
    """Set one config option."""

    kind: ClassVar[str] = "config"

    key: str
    value: Tristate

    def describe(self) -> str:
        return f"config {self.key}={self.value.value}"


@dataclass(frozen=True)
class InstallStep:
    """Fetch an install script and run it in the kernel tree.

    Attributes:
        name: Human-readable component name.
        script_url: URL of the setup script.
        args: Arguments passed to the script.
        quiet: Suppress script output in logs.
    """

    kind: ClassVar[str] = "install"

    name: str
    script_url: str
    args: tuple[str, ...] = ()
    quiet: bool = False

    def describe(self) -> str:
        return f"install {self.name}"


@dataclass(frozen=True)
class CopyStep:
    """Copy an overlay directory from a source tree into the kernel tree."""

    kind: ClassVar[str] = "copy"

    source: str
    subpath: str
    dest: str

    def describe(self) -> str:
        return f"copy {self.source}:{self.subpath} -> {self.dest}"


@dataclass(frozen=True)
class KconfigEditStep:
    """Insert a name after an anchor in the default list of a Kconfig entry.

    Used to add an LSM to `config LSM` defaults, e.g. `bpf` ->
    `bpf,baseband_guard`.
    """

    kind: ClassVar[str] = "kconfig_edit"

    file_path: str
    symbol: str
    anchor: str
    insert: str

    def describe(self) -> str:
        return f"edit {self.file_path} ({self.symbol}: {self.anchor},{self.insert})"


Step = PatchStep | ConfigMutation | InstallStep | CopyStep | KconfigEditStep


def step_to_dict(step: Step) -> dict[str, Any]:
    """Convert a step to a JSON-serializable dictionary."""
    data: dict[str, Any] = {"kind": step.kind}
    for key, value in asdict(step).items():
        if isinstance(value, Tristate):
            value = value.value
        elif isinstance(value, tuple):
            value = list(value)
        data[key] = value
    return data


@dataclass(frozen=True)
class Plan:
    """Ordered, immutable sequence of steps for one build.

    Attributes:
        steps: Steps in execution order.
        version_token: SuSFS version token extracted during resolution.
    """

    steps: tuple[Step, ...] = ()
    version_token: str | None = None

    def __len__(self) -> int:
        return len(self.steps)

    @property
    def patch_steps(self) -> list[PatchStep]:
        return [s for s in self.steps if isinstance(s, PatchStep)]

    @property
    def mutations(self) -> list[ConfigMutation]:
        return [s for s in self.steps if isinstance(s, ConfigMutation)]

    @property
    def install_steps(self) -> list[InstallStep]:
        return [s for s in self.steps if isinstance(s, InstallStep)]

    def config_view(self) -> dict[str, Tristate]:
        """Return the net effect of all mutations (last write wins)."""
        view: dict[str, Tristate] = {}
        for mutation in self.mutations:
            view[mutation.key] = mutation.value
        return view

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": PLAN_SCHEMA_VERSION,
            "version_token": self.version_token,
            "steps": [step_to_dict(s) for s in self.steps],
        }


@dataclass
class PlanBuilder:
    """Accumulates steps during resolution and freezes them into a Plan."""

    steps: list[Step] = field(default_factory=list)

    def add(self, step: Step) -> PlanBuilder:
        self.steps.append(step)
        return self

    def patch(
        self,
        source: str,
        file_path: str,
        *,
        strip_level: int = 1,
        fuzz: int | None = None,
        must_succeed: bool = True,
        workdir: str = ".",
    ) -> PlanBuilder:
        return self.add(
            PatchStep(
                source=source,
                file_path=file_path,
                strip_level=strip_level,
                fuzz=fuzz,
                must_succeed=must_succeed,
                workdir=workdir,
            )
        )

    def enable(self, key: str) -> PlanBuilder:
        return self.add(ConfigMutation(normalize_key(key), Tristate.ENABLED))

    def disable(self, key: str) -> PlanBuilder:
        return self.add(ConfigMutation(normalize_key(key), Tristate.DISABLED))

    def build(self, version_token: str | None = None) -> Plan:
        return Plan(steps=tuple(self.steps), version_token=version_token)


def compute_plan_digest(plan: Plan) -> str:
    """Compute a digest of a plan's canonical JSON form.

    Returns:
        Digest as "sha256:<hex>".
    """
    canonical_json = json.dumps(plan.to_dict(), sort_keys=True, separators=(",", ":"))
    return f"sha256:{hashlib.sha256(canonical_json.encode('utf-8')).hexdigest()}"


__all__ = [
    "PLAN_SCHEMA_VERSION",
    "ConfigMutation",
    "CopyStep",
    "InstallStep",
    "KconfigEditStep",
    "PatchStep",
    "Plan",
    "PlanBuilder",
    "Step",
    "compute_plan_digest",
    "step_to_dict",
]
