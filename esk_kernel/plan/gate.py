"""Version gate for cross-component patch sets.

Some patch sets only apply against a specific version of another
component. The gate reads the version token from a patch source header
(`#define SUSFS_VERSION "v1.5.12"`) and uses it to select the matching
fix-patch set from a companion repository, failing the resolution when
no such set exists.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from esk_kernel.errors import MissingFixPatchSet, MissingPatchFile, VersionTokenNotFound
from esk_kernel.plan.sources import FIX_PATCHES_SOURCE, Sources

logger = logging.getLogger(__name__)

# Location of the per-version fix sets inside the companion repository
FIX_SET_SUBDIR = "next/susfs_fix_patches"

# Tokens name a directory; path separators and parent references are refused
SAFE_TOKEN = re.compile(r"[A-Za-z0-9][A-Za-z0-9._+-]*")


def is_safe_token(token: str) -> bool:
    return SAFE_TOKEN.fullmatch(token) is not None and ".." not in token


def extract_version_token(header: Path, name: str = "SUSFS") -> str:
    """Extract `<NAME>_VERSION` from a C header.

    Args:
        header: Header file to scan.
        name: Prefix of the version macro.

    Returns:
        The version token with surrounding quotes removed.

    Raises:
        MissingPatchFile: If the header does not exist.
        VersionTokenNotFound: If no matching #define is present, or the
            declared token is not a plain directory name.
    """
    if not header.is_file():
        raise MissingPatchFile(str(header))
    pattern = re.compile(rf'^#define\s+{re.escape(name)}_VERSION\s+"?([^"\s]+)"?')
    for line in header.read_text(encoding="utf-8", errors="replace").splitlines():
        match = pattern.match(line)
        if match:
            token = match.group(1)
            if not is_safe_token(token):
                logger.error("Refusing version token %r from %s", token, header)
                raise VersionTokenNotFound(str(header), name)
            return token
    raise VersionTokenNotFound(str(header), name)


class VersionGate:
    """Select version-matched fix-patch sets from a companion source."""

    def __init__(
        self,
        sources: Sources,
        fix_source: str = FIX_PATCHES_SOURCE,
        fix_subdir: str = FIX_SET_SUBDIR,
    ) -> None:
        self.sources = sources
        self.fix_source = fix_source
        self.fix_subdir = fix_subdir

    def token(self, source: str, header: str, name: str = "SUSFS") -> str:
        """Extract the version token from a header inside a source tree."""
        token = extract_version_token(self.sources.path(source) / header, name)
        logger.info("%s version: %s", name, token)
        return token

    def require_fix_set(self, token: str) -> list[str]:
        """Return the fix patches for a version token, in application order.

        Paths are relative to the fix source root.

        Raises:
            MissingFixPatchSet: If no non-empty set exists for the token.
        """
        if not is_safe_token(token):
            raise MissingFixPatchSet(token)
        root = self.sources.path(self.fix_source)
        fix_dir = root / self.fix_subdir / token
        patches = sorted(fix_dir.glob("*.patch")) if fix_dir.is_dir() else []
        patches = [p for p in patches if p.is_file()]
        if not patches:
            raise MissingFixPatchSet(token)
        logger.info("Found %d fix patch(es) for %s", len(patches), token)
        return [p.relative_to(root).as_posix() for p in patches]


__all__ = [
    "FIX_SET_SUBDIR",
    "VersionGate",
    "extract_version_token",
    "is_safe_token",
]
