"""Build ORM models.

This module defines the BuildRecord model that stores the history of
pipeline runs: which variant was built from which plan, and how the
run ended.
"""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from esk_kernel.db import Base
from esk_kernel.types import BuildStatus


class BuildRecord(Base):
    """ORM model for pipeline runs.

    Attributes:
        id: Primary key.
        variant: Variant name (e.g. "NEXT-SUSFS-LXC").
        feature_snapshot: JSON form of the FeatureSpec.
        plan_digest: Digest of the resolved plan, if resolution succeeded.
        version_token: SuSFS version token, if any.
        status: Build status (pending, running, succeeded, failed).
        requested_at: Timestamp when the run was requested.
        started_at: Timestamp when the run started.
        finished_at: Timestamp when the run finished.
        kernel_version: Kernel version reported by the tree.
        package_name: Final artifact name.
        image_path: Path of the copied kernel image.
        log_path: Path to the build log file.
        error_type: Error code if the run failed.
        error_message: Error message if the run failed.
    """

    __tablename__ = "build_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    variant: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    feature_snapshot: Mapped[dict[str, object]] = mapped_column(JSON, nullable=False)
    plan_digest: Mapped[str | None] = mapped_column(String(128), nullable=True)
    version_token: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Status and timing
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BuildStatus.PENDING.value, index=True
    )
    requested_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Outputs
    kernel_version: Mapped[str | None] = mapped_column(String(50), nullable=True)
    package_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    image_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    log_path: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Error tracking
    error_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("ix_build_records_variant_status", "variant", "status"),)

    def __repr__(self) -> str:
        """Return string representation of BuildRecord."""
        return (
            f"<BuildRecord(id={self.id}, variant='{self.variant}', "
            f"status='{self.status}')>"
        )

    def mark_running(self) -> None:
        """Mark this build as running."""
        self.status = BuildStatus.RUNNING.value
        self.started_at = datetime.now()

    def mark_succeeded(self) -> None:
        """Mark this build as succeeded."""
        self.status = BuildStatus.SUCCEEDED.value
        self.finished_at = datetime.now()

    def mark_failed(
        self, error_type: str | None = None, message: str | None = None
    ) -> None:
        """Mark this build as failed.

        Args:
            error_type: Error code of the failure.
            message: Error message details.
        """
        self.status = BuildStatus.FAILED.value
        self.finished_at = datetime.now()
        if error_type:
            self.error_type = error_type
        if message:
            self.error_message = message

    def is_succeeded(self) -> bool:
        """Check if this build succeeded."""
        return self.status == BuildStatus.SUCCEEDED.value

    def to_dict(self) -> dict[str, object]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "id": self.id,
            "variant": self.variant,
            "status": self.status,
            "features": self.feature_snapshot,
            "plan_digest": self.plan_digest,
            "version_token": self.version_token,
            "kernel_version": self.kernel_version,
            "package_name": self.package_name,
            "image_path": self.image_path,
            "log_path": self.log_path,
            "error_type": self.error_type,
            "error_message": self.error_message,
            "requested_at": self.requested_at.isoformat()
            if self.requested_at
            else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


__all__ = ["BuildRecord"]
