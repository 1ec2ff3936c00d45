"""Patch source references and per-run source trees.

This module handles:
- Parsing `host:owner/repo@ref` source references
- The fetch capability (shallow, single-branch, tag-less git clone)
- The Sources registry mapping aliases to fetched trees for one run

Sources are fetched lazily on first use and reused for the rest of the
run. Nothing is cached across runs: a fetch always starts from an empty
destination directory.
"""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from esk_kernel.errors import ExternalFetchFailure

logger = logging.getLogger(__name__)

SOURCE_REF_PATTERN = re.compile(
    r"^(?P<host>[A-Za-z0-9.\-]+):(?P<repo>[^@\s:]+)@(?P<ref>[^\s@]+)$"
)

# Source aliases used by the resolver
LOCAL_SOURCE = "local"
SUSFS_SOURCE = "susfs"
FIX_PATCHES_SOURCE = "fix_patches"


@dataclass(frozen=True)
class SourceRef:
    """A pinned git source: host, owner/repo path and branch or tag."""

    host: str
    repo: str
    ref: str

    @property
    def url(self) -> str:
        return f"https://{self.host}/{self.repo}"

    def __str__(self) -> str:
        return f"{self.host}:{self.repo}@{self.ref}"


def parse_source_ref(value: str) -> SourceRef:
    """Parse a `host:owner/repo@ref` reference.

    Raises:
        ValueError: If the reference is malformed.
    """
    match = SOURCE_REF_PATTERN.match(value.strip())
    if not match:
        raise ValueError(
            f"Invalid source reference {value!r}, expected host:owner/repo@ref"
        )
    return SourceRef(match["host"], match["repo"], match["ref"])


class Fetcher(Protocol):
    """Capability to materialize a source reference into a directory."""

    def fetch(self, ref: SourceRef, dest: Path) -> None: ...


class GitFetcher:
    """Fetch sources with a shallow, single-branch, tag-less git clone."""

    def __init__(self, timeout: int | None = None, executable: str = "git") -> None:
        self.timeout = timeout
        self.executable = executable

    def command(self, ref: SourceRef, dest: Path) -> list[str]:
        return [
            self.executable,
            "clone",
            "-q",
            "--depth=1",
            "--single-branch",
            "--no-tags",
            ref.url,
            "-b",
            ref.ref,
            str(dest),
        ]

    def fetch(self, ref: SourceRef, dest: Path) -> None:
        """Clone `ref` into `dest`.

        Raises:
            ExternalFetchFailure: If the clone fails or times out.
        """
        logger.info("Cloning %s into %s", ref, dest)
        try:
            subprocess.run(
                self.command(ref, dest),
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=True,
            )
        except subprocess.CalledProcessError as e:
            raise ExternalFetchFailure(
                str(ref), (e.stderr or "").strip() or f"exit code {e.returncode}"
            ) from e
        except subprocess.TimeoutExpired as e:
            raise ExternalFetchFailure(
                str(ref), f"timed out after {self.timeout}s"
            ) from e
        except OSError as e:
            raise ExternalFetchFailure(str(ref), e) from e


class Sources:
    """Alias to source tree registry for one pipeline run.

    Local aliases point at directories that already exist (the bundled
    kernel_patches tree). Remote aliases are fetched into `root/<alias>`
    on first access.
    """

    def __init__(self, fetcher: Fetcher, root: Path) -> None:
        self.fetcher = fetcher
        self.root = root
        self._refs: dict[str, SourceRef] = {}
        self._local: dict[str, Path] = {}
        self._fetched: dict[str, Path] = {}

    def register(self, alias: str, ref: SourceRef | str) -> None:
        """Register a remote source under an alias."""
        if isinstance(ref, str):
            ref = parse_source_ref(ref)
        self._refs[alias] = ref

    def register_local(self, alias: str, path: Path) -> None:
        """Register an existing local directory under an alias."""
        self._local[alias] = path

    def ref(self, alias: str) -> SourceRef | None:
        return self._refs.get(alias)

    @property
    def fetched(self) -> dict[str, Path]:
        """Remote sources fetched so far in this run."""
        return dict(self._fetched)

    def path(self, alias: str) -> Path:
        """Return the root of a source tree, fetching it on first use.

        Raises:
            KeyError: If the alias is not registered.
            ExternalFetchFailure: If fetching fails.
        """
        if alias in self._local:
            return self._local[alias]
        if alias in self._fetched:
            return self._fetched[alias]
        if alias not in self._refs:
            raise KeyError(f"Unknown patch source: {alias}")

        dest = self.root / alias
        if dest.exists():
            shutil.rmtree(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        self.fetcher.fetch(self._refs[alias], dest)
        self._fetched[alias] = dest
        return dest


__all__ = [
    "FIX_PATCHES_SOURCE",
    "LOCAL_SOURCE",
    "SOURCE_REF_PATTERN",
    "SUSFS_SOURCE",
    "Fetcher",
    "GitFetcher",
    "SourceRef",
    "Sources",
    "parse_source_ref",
]
