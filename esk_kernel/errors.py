"""Error taxonomy for the kernel build pipeline.

Every user-facing failure is an EskError carrying a stable code that is
surfaced by the CLI, either as a message or as a JSON object. All of
them are fatal to the run; only plan steps explicitly marked as
non-critical may continue past a failure.
"""

from __future__ import annotations

from typing import Any

# Stable error codes
UNSUPPORTED_VARIANT = "unsupported_variant"
MISSING_FIX_PATCH_SET = "missing_fix_patch_set"
MISSING_PATCH_FILE = "missing_patch_file"
VERSION_TOKEN_NOT_FOUND = "version_token_not_found"
DEFCONFIG_NOT_FOUND = "defconfig_not_found"
PATCH_APPLY_FAILURE = "patch_apply_failure"
EXTERNAL_FETCH_FAILURE = "external_fetch_failure"
BUILD_FAILURE = "build_failure"
WORKSPACE_ERROR = "workspace_error"


class EskError(Exception):
    """Base error for all pipeline failures."""

    def __init__(
        self,
        message: str,
        code: str = "esk_error",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON output."""
        result: dict[str, Any] = {"code": self.code, "message": str(self)}
        if self.details:
            result["details"] = self.details
        return result


class ResolveError(EskError):
    """Raised when a feature specification cannot be resolved to a plan."""


class UnsupportedVariant(ResolveError):
    """Raised for a root-management variant name that is not recognized."""

    def __init__(self, value: str) -> None:
        super().__init__(
            f"Unsupported KernelSU variant: {value!r} "
            "(expected NONE, OFFICIAL, NEXT or SUKI)",
            code=UNSUPPORTED_VARIANT,
            details={"value": value},
        )
        self.value = value


class MissingFixPatchSet(ResolveError):
    """Raised when no fix-patch set exists for an extracted version token."""

    def __init__(self, token: str) -> None:
        super().__init__(
            f"SuSFS fix patches are unavailable for SuSFS {token}",
            code=MISSING_FIX_PATCH_SET,
            details={"token": token},
        )
        self.token = token


class MissingPatchFile(ResolveError):
    """Raised when a patch file or overlay needed by the plan is absent."""

    def __init__(self, path: str, reason: str = "not found") -> None:
        super().__init__(
            f"Patch file {reason}: {path}",
            code=MISSING_PATCH_FILE,
            details={"path": path},
        )
        self.path = path


class VersionTokenNotFound(ResolveError):
    """Raised when a header carries no version declaration."""

    def __init__(self, header: str, name: str) -> None:
        super().__init__(
            f"No {name}_VERSION declaration found in {header}",
            code=VERSION_TOKEN_NOT_FOUND,
            details={"header": header},
        )
        self.header = header


class DefconfigNotFound(EskError):
    """Raised when neither a generated config nor the defconfig exists."""

    def __init__(self, defconfig: str, searched: list[str] | None = None) -> None:
        super().__init__(
            f"Defconfig not found: {defconfig}",
            code=DEFCONFIG_NOT_FOUND,
            details={"defconfig": defconfig, "searched": searched or []},
        )
        self.defconfig = defconfig


class PatchApplyFailure(EskError):
    """Raised when a required plan step fails to apply."""

    def __init__(self, step: object, cause: BaseException | str) -> None:
        describe = getattr(step, "describe", None)
        step_text = describe() if callable(describe) else repr(step)
        super().__init__(
            f"Failed to apply {step_text}: {cause}",
            code=PATCH_APPLY_FAILURE,
            details={"step": step_text},
        )
        self.step = step
        self.cause = cause


class ExternalFetchFailure(EskError):
    """Raised when a source reference or script cannot be fetched."""

    def __init__(self, ref: str, cause: BaseException | str) -> None:
        super().__init__(
            f"Failed to fetch {ref}: {cause}",
            code=EXTERNAL_FETCH_FAILURE,
            details={"ref": ref},
        )
        self.ref = ref
        self.cause = cause


class BuildFailure(EskError):
    """Raised when the external kernel build fails."""

    def __init__(
        self,
        cause: BaseException | str,
        log_path: str | None = None,
        exit_code: int | None = None,
    ) -> None:
        details: dict[str, Any] = {}
        if log_path is not None:
            details["log_path"] = log_path
        if exit_code is not None:
            details["exit_code"] = exit_code
        super().__init__(f"Build failed: {cause}", code=BUILD_FAILURE, details=details)
        self.cause = cause
        self.log_path = log_path
        self.exit_code = exit_code


class WorkspaceError(EskError):
    """Raised when a workspace directory or config file cannot be written."""

    def __init__(self, cause: BaseException | str, path: str | None = None) -> None:
        details: dict[str, Any] = {}
        if path is not None:
            details["path"] = path
        super().__init__(
            f"Workspace error: {cause}", code=WORKSPACE_ERROR, details=details
        )
        self.cause = cause
        self.path = path


class ConfigInvariantError(RuntimeError):
    """Raised when mutually exclusive config keys are enabled together.

    Indicates a defect in plan resolution rather than a user error.
    """

    def __init__(self, keys: list[str]) -> None:
        super().__init__(
            "Mutually exclusive config options enabled together: " + ", ".join(keys)
        )
        self.keys = keys


__all__ = [
    "BUILD_FAILURE",
    "DEFCONFIG_NOT_FOUND",
    "EXTERNAL_FETCH_FAILURE",
    "MISSING_FIX_PATCH_SET",
    "MISSING_PATCH_FILE",
    "PATCH_APPLY_FAILURE",
    "UNSUPPORTED_VARIANT",
    "VERSION_TOKEN_NOT_FOUND",
    "WORKSPACE_ERROR",
    "BuildFailure",
    "ConfigInvariantError",
    "DefconfigNotFound",
    "EskError",
    "ExternalFetchFailure",
    "MissingFixPatchSet",
    "MissingPatchFile",
    "PatchApplyFailure",
    "ResolveError",
    "UnsupportedVariant",
    "VersionTokenNotFound",
    "WorkspaceError",
]
