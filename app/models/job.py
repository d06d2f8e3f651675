"""
Job models for asynchronous AI work.

Two job kinds share one lifecycle: a Transformation (virtual staging of a
room photo) and a Description (generated listing text). Both are handed to
the AI provider with one HTTP call and finished by an out-of-band
completion signal.
"""
import uuid
import enum
from datetime import datetime
from typing import Any, ClassVar
from sqlalchemy import String, Text, Integer, DateTime, JSON, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column
from app.models.base import Base, TimestampMixin


class JobKind(str, enum.Enum):
    """Job kind enum, the discriminator for the two job tables."""
    TRANSFORMATION = "transformation"
    DESCRIPTION = "description"


class JobStatus(str, enum.Enum):
    """Job status enum."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class FailureReason(str, enum.Enum):
    """Why a job ended up failed."""
    DISPATCH_REJECTED = "dispatch_rejected"
    PROVIDER_ERROR = "provider_error"
    PROTOCOL_VIOLATION = "protocol_violation"
    TIMEOUT = "timeout"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})
IN_FLIGHT_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING)

# Forward-only state machine. A callback may beat the dispatch response,
# so pending can finish directly.
ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.PROCESSING, JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


class JobMixin(TimestampMixin):
    """
    Columns shared by both job kinds.

    Subclasses name their result column in RESULT_FIELD and list the
    columns callers may change after creation in MUTABLE_FIELDS. The
    submitted input (INPUT_FIELDS) never changes; regenerate copies it.
    """
    KIND: ClassVar[JobKind]
    RESULT_FIELD: ClassVar[str]
    INPUT_FIELDS: ClassVar[tuple[str, ...]]
    MUTABLE_FIELDS: ClassVar[frozenset] = frozenset({
        "name",
        "status",
        "error_message",
        "failure_reason",
        "dispatched_at",
        "completed_at",
        "processing_time_ms",
    })

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    project_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[JobStatus] = mapped_column(
        SQLEnum(JobStatus, native_enum=False, create_type=False),
        nullable=False,
        default=JobStatus.PENDING,
        index=True
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    failure_reason: Mapped[FailureReason | None] = mapped_column(
        SQLEnum(FailureReason, native_enum=False, create_type=False),
        nullable=True
    )
    dispatched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processing_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def result_payload(self) -> str | None:
        return getattr(self, self.RESULT_FIELD)


class Transformation(JobMixin, Base):
    """
    Virtual staging request for one photo.

    The raw image never lands in this table: original_image_ref is the
    staging token issued by ImageStager.
    """
    __tablename__ = "transformations"

    KIND = JobKind.TRANSFORMATION
    RESULT_FIELD = "transformed_image_url"
    INPUT_FIELDS = ("original_image_ref", "original_image_mime", "style", "custom_prompt", "annotations")
    MUTABLE_FIELDS = JobMixin.MUTABLE_FIELDS | {"transformed_image_url"}

    original_image_ref: Mapped[str] = mapped_column(String(100), nullable=False)
    original_image_mime: Mapped[str] = mapped_column(String(50), nullable=False, default="image/jpeg")
    style: Mapped[str] = mapped_column(String(50), nullable=False)
    custom_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    annotations: Mapped[Any] = mapped_column(JSON, nullable=True)
    transformed_image_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self):
        return f"<Transformation(id={self.id}, style={self.style}, status={self.status})>"


class Description(JobMixin, Base):
    """Generated listing text for a property."""
    __tablename__ = "descriptions"

    KIND = JobKind.DESCRIPTION
    RESULT_FIELD = "generated_text"
    INPUT_FIELDS = ("property_data", "source_image_urls", "tone", "length_option", "language")
    MUTABLE_FIELDS = JobMixin.MUTABLE_FIELDS | {"generated_text"}

    property_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    source_image_urls: Mapped[Any] = mapped_column(JSON, nullable=True)
    tone: Mapped[str] = mapped_column(String(50), nullable=False)
    length_option: Mapped[str] = mapped_column(String(20), nullable=False, default="medium")
    language: Mapped[str] = mapped_column(String(10), nullable=False, default="es")
    generated_text: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self):
        return f"<Description(id={self.id}, tone={self.tone}, status={self.status})>"


JOB_MODELS: dict[JobKind, type[Transformation] | type[Description]] = {
    JobKind.TRANSFORMATION: Transformation,
    JobKind.DESCRIPTION: Description,
}

Job = Transformation | Description
