"""Configuration settings for esk_kernel.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.

Build settings use the ESK_ prefix. Feature flags keep the unprefixed
names the CI matrix exports (KSU, SUSFS, LXC, BBG, CLANG_LTO) and are
read once into a FeatureSpec at program entry.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_KERNEL_REPO = "github.com:qweraqq/android_kernel_xiaomi_mt6895@ksu-susfs"
DEFAULT_SUSFS_REPO = "gitlab.com:simonpunk/susfs4ksu@gki-android12-5.10"
DEFAULT_FIX_PATCHES_REPO = "github.com:WildKernels/kernel_patches@main"
DEFAULT_KSU_SETUP_URL = "https://raw.githubusercontent.com/{repo}/{ref}/kernel/setup.sh"
DEFAULT_BBG_SETUP_URL = "https://github.com/vc-teahouse/Baseband-guard/raw/main/setup.sh"


def _default_db_url() -> str:
    """Return the default database URL (SQLite)."""
    db_path = Path.home() / ".local" / "share" / "esk-kernel" / "db.sqlite"
    return f"sqlite:///{db_path}"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the ESK_ prefix.
    Directories left unset are derived from the workspace.
    """

    model_config = SettingsConfigDict(
        env_prefix="ESK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Identity
    kernel_name: str = Field(default="ESK", description="Kernel name for artifacts")
    defconfig: str = Field(
        default="gki_defconfig", description="Default configuration template"
    )
    arch: str = Field(default="arm64", description="Kernel architecture")
    build_user: str = Field(default="build-user", description="KBUILD_BUILD_USER")
    build_host: str = Field(default="build-host", description="KBUILD_BUILD_HOST")

    # Paths
    workspace: Path = Field(
        default_factory=Path.cwd, description="Root of the build workspace"
    )
    kernel_dir: Path | None = Field(default=None, description="Kernel source tree")
    patches_dir: Path | None = Field(
        default=None, description="Bundled kernel_patches directory"
    )
    sources_dir: Path | None = Field(
        default=None, description="Directory for fetched companion sources"
    )
    out_dir: Path | None = Field(default=None, description="Output directory")
    clang_bin: Path | None = Field(
        default=None, description="Clang toolchain bin directory"
    )
    db_url: str = Field(
        default_factory=_default_db_url,
        description="Database connection URL for build history",
    )

    # Pinned sources (host:owner/repo@ref)
    kernel_repo: str = Field(default=DEFAULT_KERNEL_REPO)
    susfs_repo: str = Field(default=DEFAULT_SUSFS_REPO)
    fix_patches_repo: str = Field(default=DEFAULT_FIX_PATCHES_REPO)
    ksu_setup_url_template: str = Field(default=DEFAULT_KSU_SETUP_URL)
    bbg_setup_url: str = Field(default=DEFAULT_BBG_SETUP_URL)

    # Operational
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    jobs: int | None = Field(
        default=None, ge=1, description="Parallel build jobs (default: CPU count)"
    )

    # Timeouts (in seconds)
    fetch_timeout: int = Field(
        default=600,
        ge=10,
        description="Timeout for clones and script downloads",
    )
    build_timeout: int = Field(
        default=7200,
        ge=60,
        description="Timeout for the kernel build",
    )

    @model_validator(mode="after")
    def _derive_paths(self) -> "Settings":
        if self.kernel_dir is None:
            self.kernel_dir = self.workspace / "kernel"
        if self.patches_dir is None:
            self.patches_dir = self.workspace / "kernel_patches"
        if self.sources_dir is None:
            self.sources_dir = self.workspace / "sources"
        if self.out_dir is None:
            self.out_dir = self.workspace / "out"
        return self

    @property
    def kernel_out_dir(self) -> Path:
        """Return the kernel build output directory (O=out)."""
        assert self.kernel_dir is not None
        return self.kernel_dir / "out"


class FeatureFlags(BaseSettings):
    """Raw feature flags as exported by the CI matrix.

    Values are kept as strings; normalization into a FeatureSpec happens
    in esk_kernel.features.schema.
    """

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    ksu: str = Field(default="NONE", description="KernelSU variant")
    susfs: str = Field(default="false", description="Include SuSFS")
    lxc: str = Field(default="false", description="Apply LXC patch")
    bbg: str = Field(default="false", description="Include Baseband-guard")
    clang_lto: str = Field(default="thin", description="Clang LTO mode")


def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["FeatureFlags", "Settings", "get_settings", "print_settings_json"]
