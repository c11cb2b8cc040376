"""
SQLAlchemy models for DEX migration state.

Migrations and their batches track pipeline progress; migrated, shallow and
enriched record tables hold the data pulled from DEX; enrichment runs and
advisory locks coordinate the enrichment pass.
"""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Migration lifecycle
MIGRATION_PENDING = "pending"
MIGRATION_IN_PROGRESS = "in_progress"
MIGRATION_COMPLETED = "completed"
MIGRATION_FAILED = "failed"
MIGRATION_CANCELLED = "cancelled"
MIGRATION_STATUSES = (
    MIGRATION_PENDING,
    MIGRATION_IN_PROGRESS,
    MIGRATION_COMPLETED,
    MIGRATION_FAILED,
    MIGRATION_CANCELLED,
)
MIGRATION_TERMINAL_STATUSES = (MIGRATION_COMPLETED, MIGRATION_FAILED, MIGRATION_CANCELLED)

# Batch lifecycle
BATCH_PENDING = "pending"
BATCH_PROCESSING = "processing"
BATCH_COMPLETED = "completed"
BATCH_FAILED = "failed"
BATCH_CANCELLED = "cancelled"
BATCH_STATUSES = (BATCH_PENDING, BATCH_PROCESSING, BATCH_COMPLETED, BATCH_FAILED, BATCH_CANCELLED)
BATCH_TERMINAL_STATUSES = (BATCH_COMPLETED, BATCH_FAILED, BATCH_CANCELLED)

# Record verification
VERIFICATION_PENDING = "pending"
VERIFICATION_VERIFIED = "verified"
VERIFICATION_FAILED = "failed"
VERIFICATION_STATUSES = (VERIFICATION_PENDING, VERIFICATION_VERIFIED, VERIFICATION_FAILED)

# Enrichment runs
RUN_RUNNING = "running"
RUN_PAUSED = "paused"
RUN_COMPLETED = "completed"
RUN_FAILED = "failed"
RUN_STATUSES = (RUN_RUNNING, RUN_PAUSED, RUN_COMPLETED, RUN_FAILED)


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in DateTime columns."""
    return datetime.now(UTC).replace(tzinfo=None)


def _in(column: str, values: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{value}'" for value in values)
    return f"{column} IN ({quoted})"


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class TimestampMixin:
    # Fetch server-generated timestamps on flush; sessions hand out detached rows
    __mapper_args__ = {"eager_defaults": True}

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now(), comment="When the row was created"
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
        comment="When the row was last updated",
    )


class VerificationMixin:
    verification_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=VERIFICATION_PENDING,
        index=True,
        comment="Verification status: pending, verified, failed",
    )
    verified_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True, comment="When the record was last verified"
    )
    verification_error: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Why the last verification failed"
    )


class Migration(TimestampMixin, Base):
    """
    One migration request.

    Counters are recomputed from the migration's batches every time a batch
    finishes, so they always reflect aggregate batch state.
    """

    __tablename__ = "migrations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, comment="Operator label")
    resource_kinds: Mapped[list[str]] = mapped_column(
        JSON, nullable=False, comment="Resource kinds migrated (clients, cases, sessions)"
    )
    filters: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict, comment="Search filters applied to every batch"
    )
    batch_size: Mapped[int] = mapped_column(Integer, nullable=False, comment="Items per batch")
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=MIGRATION_PENDING,
        index=True,
        comment="Status: pending, in_progress, completed, failed, cancelled",
    )

    total_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    successful_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    summary: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True, comment="Snapshot frozen when the migration finished"
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(_in("status", MIGRATION_STATUSES), name="ck_migrations_status"),
        CheckConstraint("batch_size > 0", name="ck_migrations_batch_size"),
    )

    def __repr__(self) -> str:
        return (
            f"<Migration(id={self.id}, name='{self.name}', status='{self.status}', "
            f"processed={self.processed_items}/{self.total_items})>"
        )


class MigrationBatch(TimestampMixin, Base):
    """
    One page of one resource kind within a migration.

    ``(migration_id, resource_kind, batch_number)`` is immutable; a batch is
    never re-created, only reset to pending by retry or restart.
    """

    __tablename__ = "migration_batches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    migration_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("migrations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    resource_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    batch_number: Mapped[int] = mapped_column(Integer, nullable=False, comment="1-based")
    page_index: Mapped[int] = mapped_column(Integer, nullable=False, comment="1-based page")
    page_size: Mapped[int] = mapped_column(Integer, nullable=False)
    items_requested: Mapped[int] = mapped_column(
        Integer, nullable=False, comment="Items expected on this page"
    )
    api_filters: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, comment="Exact filters sent to the source"
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=BATCH_PENDING,
        comment="Status: pending, processing, completed, failed, cancelled",
    )
    items_received: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    items_stored: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "migration_id", "resource_kind", "batch_number", name="uq_batch_migration_kind_number"
        ),
        CheckConstraint(_in("status", BATCH_STATUSES), name="ck_migration_batches_status"),
        CheckConstraint("items_stored <= items_received", name="ck_batch_stored_received"),
        Index("idx_batch_migration_status", "migration_id", "status"),
        Index("idx_batch_dispatch_order", "migration_id", "resource_kind", "batch_number"),
    )

    def __repr__(self) -> str:
        return (
            f"<MigrationBatch(id={self.id}, migration_id={self.migration_id}, "
            f"kind='{self.resource_kind}', number={self.batch_number}, status='{self.status}')>"
        )


class MigratedClient(TimestampMixin, VerificationMixin, Base):
    """A client record copied from DEX."""

    __tablename__ = "migrated_clients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    batch_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("migration_batches.id", ondelete="SET NULL"), nullable=True, index=True
    )
    slk: Mapped[str | None] = mapped_column(String(50), comment="Statistical linkage key")
    first_name: Mapped[str | None] = mapped_column(String(255))
    last_name: Mapped[str | None] = mapped_column(String(255))
    date_of_birth: Mapped[str | None] = mapped_column(String(50))
    gender: Mapped[str | None] = mapped_column(String(50))
    suburb: Mapped[str | None] = mapped_column(String(255))
    state: Mapped[str | None] = mapped_column(String(20))
    postal_code: Mapped[str | None] = mapped_column(String(20))
    country_of_birth_code: Mapped[str | None] = mapped_column(String(20))
    language_spoken_at_home_code: Mapped[str | None] = mapped_column(String(20))
    aboriginal_or_torres_strait_islander_origin_code: Mapped[str | None] = mapped_column(
        String(50)
    )
    consent_to_provide_details: Mapped[bool] = mapped_column(Boolean, default=False)
    consented_for_future_contacts: Mapped[bool] = mapped_column(Boolean, default=False)
    is_using_pseudonym: Mapped[bool] = mapped_column(Boolean, default=False)
    has_disabilities: Mapped[bool] = mapped_column(Boolean, default=False)
    api_response: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, comment="Raw source payload"
    )

    def __repr__(self) -> str:
        return f"<MigratedClient(client_id='{self.client_id}', batch_id={self.batch_id})>"


class MigratedCase(TimestampMixin, VerificationMixin, Base):
    """A case record copied from DEX."""

    __tablename__ = "migrated_cases"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    case_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    batch_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("migration_batches.id", ondelete="SET NULL"), nullable=True, index=True
    )
    client_id: Mapped[str | None] = mapped_column(String(100), comment="First linked client")
    client_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    outlet_name: Mapped[str | None] = mapped_column(String(255))
    outlet_activity_id: Mapped[int | None] = mapped_column(Integer)
    referral_source_code: Mapped[str | None] = mapped_column(String(50))
    client_attendance_profile_code: Mapped[str | None] = mapped_column(String(50))
    created_date_time: Mapped[str | None] = mapped_column(String(50))
    end_date: Mapped[str | None] = mapped_column(String(50))
    exit_reason_code: Mapped[str | None] = mapped_column(String(50))
    program_activity_name: Mapped[str | None] = mapped_column(String(255))
    total_number_of_unidentified_clients: Mapped[int | None] = mapped_column(Integer)
    session_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    api_response: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    def __repr__(self) -> str:
        return f"<MigratedCase(case_id='{self.case_id}', batch_id={self.batch_id})>"


class MigratedSession(TimestampMixin, VerificationMixin, Base):
    """A session record copied from DEX."""

    __tablename__ = "migrated_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    batch_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("migration_batches.id", ondelete="SET NULL"), nullable=True, index=True
    )
    case_id: Mapped[str | None] = mapped_column(String(100), index=True)
    session_date: Mapped[str | None] = mapped_column(String(50))
    service_type_id: Mapped[int | None] = mapped_column(Integer)
    duration_minutes: Mapped[int | None] = mapped_column(Integer)
    total_number_of_unidentified_clients: Mapped[int | None] = mapped_column(Integer)
    fees_charged: Mapped[float | None] = mapped_column(Float)
    interpreter_present: Mapped[bool] = mapped_column(Boolean, default=False)
    service_setting_code: Mapped[str | None] = mapped_column(String(50))
    api_response: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    def __repr__(self) -> str:
        return f"<MigratedSession(session_id='{self.session_id}', case_id='{self.case_id}')>"


class ShallowCase(Base):
    """Placeholder for a case awaiting full detail."""

    __tablename__ = "shallow_cases"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    case_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    batch_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("migration_batches.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<ShallowCase(id={self.id}, case_id='{self.case_id}')>"


class ShallowSession(Base):
    """Placeholder for a session awaiting full detail."""

    __tablename__ = "shallow_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    case_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    session_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("case_id", "session_id", name="uq_shallow_session_case_session"),
    )

    def __repr__(self) -> str:
        return (
            f"<ShallowSession(id={self.id}, case_id='{self.case_id}', "
            f"session_id='{self.session_id}')>"
        )


class EnrichedCase(TimestampMixin, VerificationMixin, Base):
    """Full case detail fetched for a shallow case."""

    __tablename__ = "enriched_cases"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    case_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    shallow_case_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("shallow_cases.id", ondelete="CASCADE"), nullable=False, index=True
    )
    outlet_name: Mapped[str | None] = mapped_column(String(255))
    outlet_activity_id: Mapped[int | None] = mapped_column(Integer)
    client_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    client_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    client_attendance_profile_code: Mapped[str | None] = mapped_column(String(50))
    created_date_time: Mapped[str | None] = mapped_column(String(50))
    end_date: Mapped[str | None] = mapped_column(String(50))
    session_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    api_response: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    enriched_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    def __repr__(self) -> str:
        return f"<EnrichedCase(case_id='{self.case_id}', status='{self.verification_status}')>"


class EnrichedSession(TimestampMixin, VerificationMixin, Base):
    """Full session detail fetched for a shallow session."""

    __tablename__ = "enriched_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    case_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    shallow_session_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("shallow_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    session_date: Mapped[str | None] = mapped_column(String(50))
    service_type_id: Mapped[int | None] = mapped_column(Integer)
    total_number_of_unidentified_clients: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    fees_charged: Mapped[float | None] = mapped_column(Float)
    money_business_community_education_workshop_code: Mapped[str | None] = mapped_column(
        String(50)
    )
    interpreter_present: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    service_setting_code: Mapped[str | None] = mapped_column(String(50))
    api_response: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    enriched_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<EnrichedSession(session_id='{self.session_id}', case_id='{self.case_id}', "
            f"status='{self.verification_status}')>"
        )


class EnrichmentRun(Base):
    """
    Control record for one enrichment pass.

    Operators pause a run by setting ``pause_requested`` on it; the runner
    polls the flag between records. A new run always starts unpaused, so a
    pause left over from an earlier run cannot stop a later one.
    """

    __tablename__ = "enrichment_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    resource_kind: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=RUN_RUNNING,
        comment="running, paused, completed, failed",
    )
    pause_requested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    already_enriched: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    newly_enriched: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    errors: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(_in("status", RUN_STATUSES), name="ck_enrichment_runs_status"),
        Index("idx_enrichment_run_kind_status", "resource_kind", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<EnrichmentRun(id={self.id}, kind='{self.resource_kind}', status='{self.status}', "
            f"enriched={self.newly_enriched}, failed={self.failed})>"
        )


class AdvisoryLock(Base):
    """A named lock with an owner token and an expiry."""

    __tablename__ = "advisory_locks"

    name: Mapped[str] = mapped_column(String(100), primary_key=True)
    owner: Mapped[str] = mapped_column(String(64), nullable=False, comment="Holder's token")
    acquired_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<AdvisoryLock(name='{self.name}', expires_at={self.expires_at})>"


MIGRATED_RECORD_MODELS: dict[str, type[Base]] = {
    "clients": MigratedClient,
    "cases": MigratedCase,
    "sessions": MigratedSession,
}

SHALLOW_RECORD_MODELS: dict[str, type[Base]] = {
    "cases": ShallowCase,
    "sessions": ShallowSession,
}

ENRICHED_RECORD_MODELS: dict[str, type[Base]] = {
    "cases": EnrichedCase,
    "sessions": EnrichedSession,
}
